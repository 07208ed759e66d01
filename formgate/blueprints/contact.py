"""
Contact form blueprint.

Route Map:
  GET     /csrf-token           — issue the session's anti-forgery token
  OPTIONS /csrf-token           — CORS preflight
  POST    /submit-contact-form  — run the submission pipeline, send mail
  OPTIONS /submit-contact-form  — CORS preflight

CORS headers are only ever added for allow-listed origins.
"""

import logging

from flask import Blueprint, current_app, jsonify, make_response, request, session

from formgate.errors import SubmissionRejected
from formgate.extensions import limiter
from formgate.services import csrf_service, origin_service
from formgate.services.i18n_service import translate
from formgate.services.submission_service import process_submission

contact_bp = Blueprint("contact", __name__)

logger = logging.getLogger(__name__)


def _server_identity():
    return request.headers.get("Host", ""), request.environ.get("SERVER_NAME", "")


def _cors_response(response, methods, preflight=False):
    """Echo a trusted Origin back with credentialed CORS headers."""
    host, server_name = _server_identity()
    origin = origin_service.cors_origin(request.headers.get("Origin", ""), host, server_name)
    if origin:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.vary.add("Origin")
        if preflight:
            response.headers["Access-Control-Allow-Methods"] = methods
            response.headers["Access-Control-Allow-Headers"] = (
                f"Content-Type, {csrf_service.HEADER_NAME}"
            )
            response.headers["Access-Control-Max-Age"] = "86400"
    return response


def _token_rate_limit():
    return current_app.config.get("CSRF_TOKEN_RATE_LIMIT", "60 per minute")


@contact_bp.route("/csrf-token", methods=["OPTIONS"])
def csrf_token_preflight():
    """Handle CORS preflight requests."""
    return _cors_response(make_response("", 204), "GET, OPTIONS", preflight=True)


@contact_bp.route("/csrf-token", methods=["GET"], provide_automatic_options=False)
@limiter.limit(_token_rate_limit)
def csrf_token():
    """
    Return the visitor's CSRF token.

    Returns: { token: "<hex>" } or 403 { error: "Invalid origin" }
    """
    origin = request.headers.get("Origin", "")
    referer = request.headers.get("Referer", "")
    host, server_name = _server_identity()

    if not origin_service.is_trusted_origin(origin, referer, host, server_name):
        clean = origin_service.sanitize_log_value
        logger.warning(
            f"SECURITY: CSRF token request from invalid origin: "
            f"{clean(origin)} / {clean(referer)} (Server: {clean(host)})"
        )
        return jsonify(error="Invalid origin"), 403

    token = csrf_service.issue_token(session)

    response = jsonify(token=token)
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    response.headers["Pragma"] = "no-cache"
    return _cors_response(response, "GET, OPTIONS")


@contact_bp.route("/submit-contact-form", methods=["OPTIONS"])
def submit_preflight():
    """Handle CORS preflight requests."""
    return _cors_response(make_response("", 204), "POST, OPTIONS", preflight=True)


@contact_bp.route(
    "/submit-contact-form", methods=["POST"], provide_automatic_options=False
)
def submit_contact_form():
    """
    Accept a contact form submission (url-encoded or multipart).

    Required fields: name, email, subject, message, csrf_token (or
    X-CSRF-Token header), g-recaptcha-response
    Optional fields: kuerzel, rating, hubspot_consent, phone, mobilephone

    Returns: { success: true, message } or { success: false, message }
    """
    try:
        process_submission(request, session)
    except SubmissionRejected as e:
        response = jsonify(success=False, message=translate(e.message_id))
        response.status_code = e.status_code
        return _cors_response(response, "POST, OPTIONS")

    response = jsonify(success=True, message=translate("php-success-email-sent"))
    return _cors_response(response, "POST, OPTIONS")
