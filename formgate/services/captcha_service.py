"""reCAPTCHA verification.

Posts the visitor's response token to Google's siteverify endpoint. Any
failure to get a clear answer from the provider is a rejection: a missing
token never reaches the network, and transport errors raise
CaptchaUnavailable instead of letting the submission through.
"""

import logging

import requests
from flask import current_app

from formgate.errors import CaptchaMissing, CaptchaUnavailable

logger = logging.getLogger(__name__)

RESPONSE_FIELD = "g-recaptcha-response"


def verify_captcha(response_token, remote_ip=None):
    """Ask the provider whether ``response_token`` is a solved challenge.

    Args:
        response_token: Value of the g-recaptcha-response form field.
        remote_ip:      Client IP, forwarded to the provider as a hint.

    Returns:
        bool: True if the provider reported success.

    Raises:
        CaptchaMissing:     No token was submitted.
        CaptchaUnavailable: The provider could not be reached or answered
                            with something other than a JSON verdict.
    """
    if not response_token:
        raise CaptchaMissing("No reCAPTCHA response token submitted")

    payload = {
        "secret": current_app.config["RECAPTCHA_SECRET_KEY"],
        "response": response_token,
    }
    if remote_ip:
        payload["remoteip"] = remote_ip

    try:
        resp = requests.post(
            current_app.config["RECAPTCHA_VERIFY_URL"],
            data=payload,
            timeout=current_app.config.get("RECAPTCHA_TIMEOUT", 10),
        )
        resp.raise_for_status()
        result = resp.json()
    except requests.RequestException as e:
        logger.error(f"reCAPTCHA verification request failed: {e}")
        raise CaptchaUnavailable(str(e)) from e
    except ValueError as e:
        logger.error(f"reCAPTCHA verification returned invalid JSON: {e}")
        raise CaptchaUnavailable("invalid JSON from provider") from e

    if not isinstance(result, dict):
        raise CaptchaUnavailable("unexpected response shape from provider")

    if not result.get("success"):
        logger.info(f"reCAPTCHA rejected token: {result.get('error-codes', [])}")
        return False
    return True
