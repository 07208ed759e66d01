"""
SMTP email service.

Renders a Jinja2 HTML + plain-text template pair and delivers it over SMTP.
Sending is synchronous: the caller needs to know whether the organization
actually got the contact notification before answering the visitor.

Failures are raised as one of three classified errors so the caller can
tell an unreachable server from rejected credentials:

    SmtpConnectionError — could not connect / TLS handshake failed / timed out
    SmtpAuthError       — the server refused the credentials
    SmtpGenericError    — anything else during the SMTP conversation

Usage:
    from formgate.services.email_service import send_email

    send_email(
        to="vorstand@example.com",
        subject="Hello",
        template="emails/contact_notification",
        context={"name": "Jane"},
    )
"""

import logging
import smtplib
import socket
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

from flask import current_app, render_template

from formgate.errors import SmtpAuthError, SmtpConnectionError, SmtpGenericError

logger = logging.getLogger(__name__)

_CONNECTION_HINTS = (
    "could not connect",
    "connection refused",
    "connection timed out",
    "timed out",
    "network is unreachable",
    "no route to host",
)
_AUTH_HINTS = (
    "authentication",
    "username and password not accepted",
    "invalid credentials",
)


def classify_smtp_error(exc):
    """Map a low-level SMTP/socket exception to our error taxonomy."""
    if isinstance(exc, smtplib.SMTPAuthenticationError):
        return SmtpAuthError
    if isinstance(
        exc,
        (
            smtplib.SMTPConnectError,
            smtplib.SMTPServerDisconnected,
            ssl.SSLError,
            socket.gaierror,
            ConnectionError,
            TimeoutError,
        ),
    ):
        return SmtpConnectionError

    text = str(exc).lower()
    if any(hint in text for hint in _AUTH_HINTS):
        return SmtpAuthError
    if any(hint in text for hint in _CONNECTION_HINTS):
        return SmtpConnectionError
    # Socket-level failure outside an SMTP reply (EHOSTUNREACH and friends)
    if not isinstance(exc, smtplib.SMTPException):
        return SmtpConnectionError
    return SmtpGenericError


def _connect(config):
    """Open an SMTP session using the configured encryption mode.

    ssl           — implicit TLS (SMTPS)
    anything else — plain connect, then STARTTLS

    There is no unencrypted mode. TLS always verifies the peer certificate
    and host name.
    """
    host = config.get("MAIL_SMTP_HOST")
    port = config.get("MAIL_SMTP_PORT", 587)
    timeout = config.get("MAIL_SMTP_TIMEOUT", 30)
    secure = (config.get("MAIL_SMTP_SECURE") or "").lower()

    if secure == "ssl":
        return smtplib.SMTP_SSL(
            host, port, timeout=timeout, context=ssl.create_default_context()
        )

    server = smtplib.SMTP(host, port, timeout=timeout)
    try:
        server.ehlo()
        server.starttls(context=ssl.create_default_context())
        server.ehlo()
    except Exception:
        server.close()
        raise
    return server


def _log_connection_error(config, exc):
    logger.error(
        f"SMTP CONNECTION ERROR - Host: {config.get('MAIL_SMTP_HOST')}, "
        f"Port: {config.get('MAIL_SMTP_PORT')}, "
        f"User: {config.get('MAIL_USERNAME')}: {type(exc).__name__}: {exc}"
    )


def deliver(msg):
    """Send a built message. Raises a classified MailTransportError."""
    config = current_app.config
    username = config.get("MAIL_USERNAME")
    password = config.get("MAIL_PASSWORD")

    # Anything failing before the session is up counts as a connection error
    try:
        server = _connect(config)
    except (smtplib.SMTPException, OSError) as e:
        _log_connection_error(config, e)
        raise SmtpConnectionError(f"{type(e).__name__}: {e}") from e

    try:
        with server:
            if username and password:
                server.login(username, password)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        error_cls = classify_smtp_error(e)
        if error_cls is SmtpConnectionError:
            _log_connection_error(config, e)
        logger.error(f"Failed to send email to {msg['To']}: {type(e).__name__}: {e}")
        raise error_cls(f"{type(e).__name__}: {e}") from e

    logger.info(f"Email sent to {msg['To']} — {msg['Subject']}")


def build_message(to, subject, html_body, text_body, from_name, reply_to=None):
    """Assemble a multipart/alternative message (plain text first)."""
    config = current_app.config
    from_email = config.get("MAIL_FROM_ADDRESS") or config.get("MAIL_USERNAME", "")

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = formataddr((from_name, from_email))
    msg["To"] = to if isinstance(to, str) else ", ".join(to)

    if reply_to:
        msg["Reply-To"] = reply_to

    msg.attach(MIMEText(text_body, "plain", "utf-8"))
    msg.attach(MIMEText(html_body, "html", "utf-8"))
    return msg


def send_email(to, subject, template, context=None, reply_to=None, from_name=None):
    """
    Render ``template``.html / ``template``.txt and send synchronously.

    Args:
        to:        Recipient email address (str or list).
        subject:   Email subject line.
        template:  Template path without extension (relative to templates/).
        context:   Dict of variables to pass to both templates.
        reply_to:  Optional Reply-To header, built with formataddr().
        from_name: Display name for the From header.

    Raises:
        SmtpConnectionError, SmtpAuthError, SmtpGenericError
    """
    context = context or {}
    from_name = from_name or current_app.config.get("MAIL_NOTIFICATION_FROM_NAME", "")

    html_body = render_template(f"{template}.html", **context)
    text_body = render_template(f"{template}.txt", **context)

    msg = build_message(to, subject, html_body, text_body, from_name, reply_to=reply_to)
    deliver(msg)
