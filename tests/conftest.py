"""Shared test fixtures for the contact form backend.

Provides:
- app: Flask app configured for testing (fake secrets, Flask-Limiter off)
- client: Flask test client
- rate_limit_store: fresh rate limit directory per test (autouse)
- smtp: patched smtplib.SMTP; the yielded mock is the open connection
- captcha_ok / captcha_rejected: patched reCAPTCHA siteverify
- csrf_token: a token issued to the test client's session
"""

from unittest.mock import patch

import pytest

from formgate import create_app


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def rate_limit_store(app, tmp_path, monkeypatch):
    """Point the file-backed rate limiter at an empty directory."""
    store = tmp_path / "rate_limit"
    monkeypatch.setitem(app.config, "RATE_LIMIT_DIR", str(store))
    return store


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def request_ctx(app):
    """A bare request context for calling services directly."""
    with app.test_request_context("/"):
        yield


@pytest.fixture
def smtp():
    """Patch SMTP; yields the connection mock that receives send_message."""
    with patch("formgate.services.email_service.smtplib.SMTP") as mock_smtp:
        server = mock_smtp.return_value
        server.__enter__.return_value = server
        yield server


@pytest.fixture
def captcha_ok():
    """reCAPTCHA siteverify answers success."""
    with patch("formgate.services.captcha_service.requests.post") as mock_post:
        mock_post.return_value.json.return_value = {"success": True}
        yield mock_post


@pytest.fixture
def captcha_rejected():
    """reCAPTCHA siteverify answers failure."""
    with patch("formgate.services.captcha_service.requests.post") as mock_post:
        mock_post.return_value.json.return_value = {
            "success": False,
            "error-codes": ["invalid-input-response"],
        }
        yield mock_post


@pytest.fixture
def csrf_token(client):
    """Fetch a CSRF token; the session cookie stays on ``client``."""
    resp = client.get("/csrf-token")
    assert resp.status_code == 200
    return resp.get_json()["token"]


# ─── Helpers ──────────────────────────────────────────────────

def contact_form(token, **overrides):
    """A complete, valid contact form payload."""
    form = {
        "name": "Anna Schmidt",
        "email": "anna@example.org",
        "subject": "Projektanfrage",
        "message": "Wir suchen Unterstützung bei einer Marktanalyse.",
        "csrf_token": token,
        "g-recaptcha-response": "captcha-token",
    }
    form.update(overrides)
    return {key: value for key, value in form.items() if value is not None}


def sent_messages(server):
    """Messages handed to the patched SMTP connection, in order."""
    return [c.args[0] for c in server.send_message.call_args_list]


def body_of(msg, subtype="plain"):
    """Decoded text of the plain or html part of a multipart message."""
    for part in msg.walk():
        if part.get_content_type() == f"text/{subtype}":
            return part.get_payload(decode=True).decode("utf-8")
    return None
