"""Mail dispatch: what happens after a submission passed every gate.

1. Notification to the organization inbox. Mandatory: a failure raises a
   classified MailTransportError and the submission fails.
2. Confirmation to the visitor. Best-effort: failures are logged only.
3. HubSpot contact, if the visitor opted in. Best-effort as well.

Steps 2 and 3 only run after step 1 succeeded. Their outcomes are
recorded on the returned DispatchResult and never raised; once the
organization has the message, the visitor is told it was sent.
"""

import json
import logging
import os
from datetime import datetime
from email.utils import formataddr

from flask import current_app
from markupsafe import Markup

from formgate.services import crm_service
from formgate.services.email_service import send_email
from formgate.services.i18n_service import translate

logger = logging.getLogger(__name__)

EXTERNAL_LINKS_PATH = os.path.join(
    os.path.dirname(os.path.dirname(__file__)), "data", "external_links.json"
)

FALLBACK_SOCIAL_LINKS = {
    "facebook": "https://www.facebook.com/IBC.Furtwangen/",
    "instagram": "https://www.instagram.com/ibc_e.v/",
    "linkedin": "https://www.linkedin.com/company/institut-f%C3%BCr-business-consulting-e-v/",
}
FALLBACK_SITE_LINKS = {
    "website": "https://business-consulting.de",
    "contactEmail": "vorstand@business-consulting.de",
    "team": "https://business-consulting.de/ueber-uns.html#team",
    "references": "https://business-consulting.de/referenzen.html",
    "privacy": "https://business-consulting.de/datenschutz.html",
    "route": "https://www.google.com/maps/search/?api=1&query=Furtwangen",
}


class DispatchResult:
    """Outcome of each dispatch step, tracked independently."""

    def __init__(self):
        self.notification_sent = False
        self.confirmation_sent = False
        self.crm_synced = None  # None = not attempted (no consent)

    @property
    def success(self):
        return self.notification_sent

    def __repr__(self):
        return (
            f"<DispatchResult notification={self.notification_sent} "
            f"confirmation={self.confirmation_sent} crm={self.crm_synced}>"
        )


def _header_safe(value):
    """Collapse line breaks so user input cannot add mail headers."""
    return " ".join((value or "").splitlines()).strip()


def load_external_links(path=EXTERNAL_LINKS_PATH):
    """Social media and site links for the confirmation mail footer."""
    social = dict(FALLBACK_SOCIAL_LINKS)
    site = dict(FALLBACK_SITE_LINKS)
    try:
        with open(path, "r", encoding="utf-8") as fh:
            links = json.load(fh)
    except FileNotFoundError:
        return social, site
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load external links from {path}: {e}")
        return social, site

    if isinstance(links, dict):
        social.update(links.get("socialMedia") or {})
        site.update(links.get("site") or {})
    return social, site


def _rating_context(submission):
    if not submission.has_rating:
        return {"rating": None}
    return {
        "rating": f"{submission.rating:.1f}",
        "rating_stars": submission.rating_stars("⭐", "½⭐", "☆"),
        "confirmation_stars": submission.rating_stars("⭐", "✨", "☆"),
        "rating_stars_text": submission.rating_stars("★", "½", "☆"),
    }


def send_notification(submission):
    """Send the inquiry to the organization inbox (Reply-To = visitor)."""
    _, site_links = load_external_links()
    context = {
        "name": submission.name,
        "email": submission.email,
        "subject": submission.subject,
        "message": submission.message,
        "kuerzel": submission.kuerzel,
        "references_url": site_links["references"],
    }
    context.update(_rating_context(submission))

    send_email(
        to=current_app.config["MAIL_CONTACT_TO"],
        subject=f"Neue Kontaktanfrage: {_header_safe(submission.subject)}",
        template="emails/contact_notification",
        context=context,
        reply_to=formataddr((_header_safe(submission.name), submission.email)),
        from_name=current_app.config.get("MAIL_NOTIFICATION_FROM_NAME", "Kontaktformular"),
    )


def send_confirmation(submission):
    """Send the localized receipt to the visitor."""
    lang = submission.lang

    def t(message_id, **params):
        return translate(message_id, params, lang=lang)

    def t_text(message_id, **params):
        return translate(message_id, params, lang=lang, escape_params=False)

    greeting_id = (
        "email-confirm-greeting-casual"
        if submission.is_student_related
        else "email-confirm-greeting-formal"
    )
    social_links, site_links = load_external_links()
    org_name = t_text("email-confirm-contact-org-name")

    context = {
        "t": t,
        "t_text": t_text,
        # translate() already escaped the name; mark the result safe for HTML
        "greeting": Markup(t(greeting_id, name=submission.name)),
        "greeting_text": t_text(greeting_id, name=submission.name),
        "name": submission.name,
        "subject": submission.subject,
        "message": submission.message,
        "kuerzel": submission.kuerzel,
        "year": datetime.now().year,
        "social": social_links,
        "links": site_links,
        "org_name": org_name,
    }
    context.update(_rating_context(submission))

    send_email(
        to=submission.email,
        subject=_header_safe(
            t_text("email-confirm-subject", subject=submission.subject)
        ),
        template="emails/contact_confirmation",
        context=context,
        from_name=org_name,
    )


def sync_crm(submission):
    """Create the HubSpot contact. Returns True/False, never raises."""
    properties = crm_service.build_contact_properties(
        email=submission.email,
        name=submission.name,
        subject=submission.subject,
        message=submission.message,
        phone=submission.phone,
        mobilephone=submission.mobilephone,
    )
    try:
        return crm_service.create_contact(properties)
    except Exception:
        logger.exception("HubSpot: Exception occurred during contact creation")
        return False


def dispatch(submission):
    """Run the three dispatch steps for a validated submission.

    Returns:
        DispatchResult

    Raises:
        MailTransportError: The notification mail could not be sent.
    """
    result = DispatchResult()

    send_notification(submission)
    result.notification_sent = True

    try:
        send_confirmation(submission)
        result.confirmation_sent = True
    except Exception:
        logger.exception("Confirmation email could not be sent")

    if submission.crm_consent:
        result.crm_synced = sync_crm(submission)
        if not result.crm_synced:
            logger.warning("NOTICE: Email sent successfully but HubSpot sync failed")
    else:
        logger.info("HubSpot: User did not consent to CRM processing")

    return result
