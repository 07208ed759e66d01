"""CSRF token service: one anti-forgery token per session.

The token is generated on first request and kept for the session's
lifetime; it is not rotated after a submission, so a visitor can send the
form more than once from the same page. The session is passed in
explicitly (Flask's signed cookie session in the app).
"""

import hmac
import secrets

SESSION_KEY = "csrf_token"
FORM_FIELD = "csrf_token"
HEADER_NAME = "X-CSRF-Token"


def issue_token(session):
    """Return the session's token, creating it if absent.

    Args:
        session: Mutable mapping holding the visitor's session state.

    Returns:
        str: 64-char hex token (32 random bytes).
    """
    token = session.get(SESSION_KEY)
    if not token:
        token = secrets.token_hex(32)
        session[SESSION_KEY] = token
    return token


def verify_token(session, candidate):
    """Constant-time check of ``candidate`` against the session's token."""
    expected = session.get(SESSION_KEY)
    if not expected or not candidate:
        return False
    return hmac.compare_digest(
        expected.encode("utf-8"), candidate.encode("utf-8")
    )


def extract_candidate(form, headers):
    """Pick the submitted token; the form field wins over the header."""
    return form.get(FORM_FIELD) or headers.get(HEADER_NAME) or ""
