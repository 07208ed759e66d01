"""Site support blueprint.

Route Map:
  GET /config.js     — public client configuration as a JS global
  GET /uptime-check  — token-protected availability check with mail alert
"""

import json
import logging

from flask import Blueprint, current_app, jsonify, make_response, request

from formgate.services import uptime_service

site_bp = Blueprint("site", __name__)

logger = logging.getLogger(__name__)


@site_bp.route("/config.js")
def config_js():
    """Expose client-safe settings as ``window.IBC_CONFIG``.

    Only public values go out here. The reCAPTCHA secret never does.
    """
    analytics_id = current_app.config.get("GOOGLE_ANALYTICS_ID") or ""
    site_key = current_app.config.get("RECAPTCHA_SITE_KEY") or ""
    if not analytics_id:
        logger.warning("WARNING: GOOGLE_ANALYTICS_ID not set in environment")
    if not site_key:
        logger.warning("WARNING: RECAPTCHA_SITE_KEY not set in environment")

    payload = json.dumps({
        "googleAnalyticsId": analytics_id,
        "recaptchaSiteKey": site_key,
    })
    response = make_response(f"window.IBC_CONFIG = {payload};\n")
    response.headers["Content-Type"] = "application/javascript; charset=utf-8"
    return response


@site_bp.route("/uptime-check")
def uptime_check():
    """Check the public site. Requires ?token=UPTIME_CHECK_TOKEN."""
    if not current_app.config.get("UPTIME_CHECK_TOKEN"):
        logger.critical("CRITICAL: Uptime check token not configured")
        return jsonify(error="Configuration error"), 500

    if not uptime_service.token_matches(request.args.get("token", "")):
        return jsonify(error="Access denied"), 403

    if not current_app.config.get("UPTIME_URL_TO_CHECK"):
        logger.critical("CRITICAL: UPTIME_URL_TO_CHECK not configured")
        return jsonify(error="Configuration error"), 500

    return jsonify(uptime_service.run_check())
