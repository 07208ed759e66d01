import os
import logging

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from formgate.config import config_by_name
from formgate.extensions import limiter

logger = logging.getLogger(__name__)

# Last-resort message if even the translation catalog is unusable.
FALLBACK_TECHNICAL_ERROR = (
    "Ein technischer Fehler ist aufgetreten. Bitte versuchen Sie es später "
    "erneut oder kontaktieren Sie uns direkt."
)


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    limiter.init_app(app)

    # --- Register blueprints ---
    from formgate.blueprints.contact import contact_bp
    from formgate.blueprints.site import site_bp

    app.register_blueprint(contact_bp)
    app.register_blueprint(site_bp)

    register_error_handlers(app)

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Permissions Policy (restrict browser features)
        response.headers["Permissions-Policy"] = (
            "camera=(), microphone=(), geolocation=()"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def _message(message_id):
    from formgate.services.i18n_service import translate

    try:
        return translate(message_id)
    except Exception:
        logger.exception(f"Could not translate {message_id}")
        return FALLBACK_TECHNICAL_ERROR


def register_error_handlers(app):
    """Every error leaves the app as a JSON body, never HTML or empty."""

    @app.errorhandler(HTTPException)
    def http_error(e):
        if e.code == 405:
            message_id = "php-error-invalid-request"
        elif e.code == 429:
            message_id = "php-error-rate-limit-exceeded"
        elif e.code is not None and e.code < 500:
            message_id = "php-error-invalid-request"
        else:
            message_id = "php-error-technical"
        response = jsonify(success=False, message=_message(message_id))
        response.status_code = e.code or 500
        return response

    @app.errorhandler(Exception)
    def unexpected_error(e):
        """Safety net: anything not handled as a rejection ends here."""
        logger.exception(f"FATAL ERROR while handling request: {e}")
        response = jsonify(success=False, message=_message("php-error-technical"))
        response.status_code = 500
        return response


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("sweep-rate-limits")
    @click.option("--max-age", type=int, default=None,
                  help="Delete records older than this many seconds "
                       "(default: RATE_LIMIT_GC_MAX_AGE).")
    def sweep_rate_limits(max_age):
        """Delete stale contact form rate limit records.

        Scheduled replacement for the per-request probabilistic sweep.

        Usage:
            flask sweep-rate-limits
            flask sweep-rate-limits --max-age 3600
        """
        from formgate.services.rate_limit_service import sweep

        deleted = sweep(max_age=max_age)
        click.echo(f"Removed {deleted} stale rate limit record(s) from "
                   f"{app.config['RATE_LIMIT_DIR']}")
