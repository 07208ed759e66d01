"""HubSpot CRM sync: creates a contact for visitors who opted in.

Best-effort only: every failure is logged and reported as False, never
raised, so a CRM outage cannot affect the contact form response.
"""

import logging

import requests
from flask import current_app

logger = logging.getLogger(__name__)

MESSAGE_MAX_LENGTH = 65536
ERROR_BODY_LOG_LENGTH = 500


def split_name(full_name):
    """Split a display name on the first space into (first, last)."""
    first, _, last = (full_name or "").strip().partition(" ")
    return first, last.strip()


def build_contact_properties(email, name, subject=None, message=None,
                             phone=None, mobilephone=None):
    """Map contact form fields onto HubSpot contact properties."""
    firstname, lastname = split_name(name)
    properties = {
        "email": email or "",
        "firstname": firstname,
        "lastname": lastname,
    }
    if phone:
        properties["phone"] = phone
    if mobilephone:
        properties["mobilephone"] = mobilephone
    if subject:
        properties["hs_lead_status"] = subject
    if message:
        properties["message"] = message[:MESSAGE_MAX_LENGTH]
    return properties


def create_contact(properties):
    """POST a contact to HubSpot.

    Returns:
        bool: True on HTTP 200/201; False if skipped or failed.
    """
    api_key = current_app.config.get("HUBSPOT_API_KEY")
    if not api_key:
        logger.info("HubSpot: No API key configured, skipping CRM integration")
        return False

    try:
        resp = requests.post(
            current_app.config["HUBSPOT_CONTACTS_URL"],
            json={"properties": properties},
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
            timeout=current_app.config.get("HUBSPOT_TIMEOUT", 5),
        )
    except requests.RequestException as e:
        logger.error(f"HubSpot request failed: {e}")
        return False

    if resp.status_code in (200, 201):
        logger.info("HubSpot: Contact created successfully")
        return True

    logger.error(
        f"HubSpot API error (HTTP {resp.status_code}): "
        f"{resp.text[:ERROR_BODY_LOG_LENGTH]}"
    )
    return False
