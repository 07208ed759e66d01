"""Submission service: the contact form request lifecycle.

Stages, strictly in order; the first failing gate raises a
SubmissionRejected subclass and nothing after it runs:

    RECEIVED → ORIGIN_OK → CSRF_OK → RATE_OK → CAPTCHA_OK → FIELDS_OK
             → MAIL_SENT → DONE

The rejection carries the stage it was raised from (``exc.stage``) so the
log line says where the request stopped. Unexpected exceptions are not
caught here; the app-level error handler turns them into a JSON 500.
"""

import html
import logging
import re

import bleach
from flask import current_app

from formgate.errors import (
    CaptchaFailed,
    ConfigurationError,
    CsrfMismatch,
    FieldValidationFailed,
    InvalidOrigin,
    RateLimited,
    SubmissionRejected,
)
from formgate.models.submission import MAX_RATING, ContactSubmission
from formgate.services import (
    captcha_service,
    csrf_service,
    mail_dispatch_service,
    origin_service,
    rate_limit_service,
)
from formgate.services.i18n_service import get_user_language

logger = logging.getLogger(__name__)

RECEIVED = "received"
ORIGIN_OK = "origin_ok"
CSRF_OK = "csrf_ok"
RATE_OK = "rate_ok"
CAPTCHA_OK = "captcha_ok"
FIELDS_OK = "fields_ok"
MAIL_SENT = "mail_sent"
DONE = "done"
REJECTED = "rejected"

STAGES = (RECEIVED, ORIGIN_OK, CSRF_OK, RATE_OK, CAPTCHA_OK, FIELDS_OK, MAIL_SENT, DONE)

# Simple email regex, not exhaustive, just a sanity check
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_RATING_CHARS_RE = re.compile(r"[^0-9.]")


class PipelineOutcome:
    """Result of a submission that reached DONE."""

    def __init__(self, submission, dispatch_result, stages):
        self.submission = submission
        self.dispatch_result = dispatch_result
        self.stages = stages

    @property
    def stage(self):
        return self.stages[-1]


# ─── Field cleaning ───────────────────────────────────────────

def _sanitize(text):
    """Strip all HTML tags from user input, keep the plain text."""
    if not text:
        return ""
    return html.unescape(bleach.clean(text, tags=[], strip=True)).strip()


def is_valid_email(email):
    """Syntax check for a submitted address (no DNS lookup)."""
    if not email or len(email) > 254 or not EMAIL_RE.match(email):
        return False
    local, _, domain = email.rpartition("@")
    if len(local) > 64 or local.startswith(".") or local.endswith(".") or ".." in local:
        return False
    if domain.startswith(".") or domain.endswith(".") or ".." in domain:
        return False
    return True


def parse_rating(raw):
    """Keep digits and the decimal point; return a float in [0, 5] or None."""
    cleaned = _RATING_CHARS_RE.sub("", raw or "")
    if not cleaned:
        return None
    try:
        rating = float(cleaned)
    except ValueError:
        return None
    if not 0 <= rating <= MAX_RATING:
        return None
    return rating


# ─── Gates ────────────────────────────────────────────────────

def check_configuration():
    """Refuse to process anything if mail/CAPTCHA settings are missing."""
    required = current_app.config.get("REQUIRED_MAIL_SETTINGS", {})
    missing = [env for key, env in required.items() if not current_app.config.get(key)]
    if missing:
        logger.critical(
            f"CRITICAL ERROR: environment configuration incomplete: {', '.join(missing)}"
        )
        raise ConfigurationError(f"missing settings: {', '.join(missing)}")


def check_origin(req):
    origin = req.headers.get("Origin", "")
    referer = req.headers.get("Referer", "")
    host = req.headers.get("Host", "")
    server_name = req.environ.get("SERVER_NAME", "")

    if not origin_service.is_trusted_origin(origin, referer, host, server_name):
        clean = origin_service.sanitize_log_value
        logger.warning(
            f"SECURITY: Contact form submission from invalid origin: "
            f"{clean(origin)} / {clean(referer)} (Server: {clean(host)})"
        )
        raise InvalidOrigin("origin/referer not allow-listed")


def check_csrf(req, session):
    candidate = csrf_service.extract_candidate(req.form, req.headers)
    if not csrf_service.verify_token(session, candidate):
        logger.warning("SECURITY: CSRF token mismatch on contact form submission")
        raise CsrfMismatch("token missing or does not match session")


def check_rate_limit(client_ip):
    rate_limit_service.maybe_sweep()
    key = rate_limit_service.client_key(client_ip)
    reason = rate_limit_service.check_and_record(key)
    if reason == RateLimited.TOO_SOON:
        logger.warning(f"SECURITY: Rate limit (min time) exceeded for IP: {client_ip}")
        raise RateLimited(reason, "minimum interval not reached")
    if reason == RateLimited.QUOTA_EXCEEDED:
        logger.warning(f"SECURITY: Rate limit (max requests) exceeded for IP: {client_ip}")
        raise RateLimited(reason, "hourly quota exhausted")


def check_captcha(form, client_ip):
    token = form.get(captcha_service.RESPONSE_FIELD, "")
    if not captcha_service.verify_captcha(token, client_ip):
        logger.warning(f"SECURITY: reCAPTCHA verification failed for IP: {client_ip}")
        raise CaptchaFailed("provider rejected token")


def validate_fields(form, client_ip=None, lang=None):
    """Clean the form fields and build a ContactSubmission.

    Raises:
        FieldValidationFailed: with ``php-error-email-invalid`` for a
            malformed address, else ``php-error-fields-incomplete``.
    """
    name = _sanitize(form.get("name"))
    email = (form.get("email") or "").strip()
    subject = _sanitize(form.get("subject"))
    message = _sanitize(form.get("message"))

    email_ok = is_valid_email(email)
    if not (name and email_ok and subject and message):
        if email and not email_ok:
            raise FieldValidationFailed(
                "malformed email address", message_id="php-error-email-invalid"
            )
        raise FieldValidationFailed("required fields missing")

    return ContactSubmission(
        name=name,
        email=email,
        subject=subject,
        message=message,
        kuerzel=_sanitize(form.get("kuerzel")),
        rating=parse_rating(form.get("rating")),
        crm_consent=form.get("hubspot_consent") == "on",
        phone=_sanitize(form.get("phone")),
        mobilephone=_sanitize(form.get("mobilephone")),
        client_ip=client_ip,
        lang=lang or get_user_language(),
    )


# ─── Pipeline ─────────────────────────────────────────────────

def process_submission(req, session):
    """Run every gate for a contact form request, then dispatch mail.

    Args:
        req:     The incoming request (flask.request).
        session: The visitor's session mapping holding the CSRF token.

    Returns:
        PipelineOutcome

    Raises:
        SubmissionRejected: from the first gate that failed, with
            ``.stage`` set to the last stage reached.
    """
    stages = [RECEIVED]
    try:
        check_configuration()

        check_origin(req)
        stages.append(ORIGIN_OK)

        check_csrf(req, session)
        stages.append(CSRF_OK)

        client_ip = rate_limit_service.resolve_client_ip(req.remote_addr, req.headers)
        check_rate_limit(client_ip)
        stages.append(RATE_OK)

        check_captcha(req.form, client_ip)
        stages.append(CAPTCHA_OK)

        submission = validate_fields(req.form, client_ip=client_ip)
        stages.append(FIELDS_OK)

        result = mail_dispatch_service.dispatch(submission)
        stages.append(MAIL_SENT)
    except SubmissionRejected as e:
        e.stage = stages[-1]
        logger.info(f"Contact form rejected after {e.stage}: {type(e).__name__}: {e.detail}")
        raise

    stages.append(DONE)
    logger.info(
        f"Contact form submitted ({submission.subject!r}); "
        f"confirmation={result.confirmation_sent} crm={result.crm_synced}"
    )
    return PipelineOutcome(submission, result, stages)
