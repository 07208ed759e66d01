"""Uptime check: fetch the public site and mail IT if it is down."""

import hmac
import logging
from datetime import datetime, timezone

import requests
from flask import current_app

from formgate.errors import MailTransportError
from formgate.services.email_service import send_email

logger = logging.getLogger(__name__)


def token_matches(provided):
    """Constant-time comparison against UPTIME_CHECK_TOKEN."""
    required = current_app.config.get("UPTIME_CHECK_TOKEN")
    if not required or not provided:
        return False
    return hmac.compare_digest(required.encode("utf-8"), provided.encode("utf-8"))


def check_site(url, timeout=None):
    """Fetch ``url`` once.

    Returns:
        tuple: (is_up, status_code_or_None, error_or_None)
    """
    if timeout is None:
        timeout = current_app.config.get("UPTIME_TIMEOUT", 10)
    try:
        resp = requests.get(url, timeout=timeout, allow_redirects=True)
    except requests.RequestException as e:
        return False, None, str(e)

    if resp.status_code >= 400:
        return False, resp.status_code, f"HTTP {resp.status_code}"
    return True, resp.status_code, None


def run_check():
    """Check UPTIME_URL_TO_CHECK and send an alert mail when it is down.

    Returns:
        dict: status summary for the JSON response.
    """
    url = current_app.config["UPTIME_URL_TO_CHECK"]
    is_up, status_code, error = check_site(url)
    checked_at = datetime.now(timezone.utc).isoformat()

    summary = {
        "status": "up" if is_up else "down",
        "url": url,
        "http_status": status_code,
        "checked_at": checked_at,
        "alert_sent": False,
    }
    if is_up:
        return summary

    logger.error(f"UPTIME MONITOR: {url} is down ({error})")
    alert_to = current_app.config.get("UPTIME_ALERT_EMAIL")
    if not alert_to:
        logger.warning("UPTIME MONITOR: no UPTIME_ALERT_EMAIL configured, alert skipped")
        return summary

    try:
        send_email(
            to=alert_to,
            subject=f"ALARM: {url} ist nicht erreichbar",
            template="emails/uptime_alert",
            context={"url": url, "error": error, "checked_at": checked_at},
            from_name="IBC Uptime Monitor",
        )
        summary["alert_sent"] = True
    except MailTransportError as e:
        logger.error(f"UPTIME MONITOR: alert email failed: {e.detail}")

    return summary
