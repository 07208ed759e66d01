"""Message catalog: localized strings for API responses and emails.

Strings live in formgate/data/translations.json as
``{message_id: {lang: text}}``. The file is re-read when its mtime
changes. Missing languages fall back to German; unknown ids come back
unchanged so a gap in the catalog never breaks a response.
"""

import json
import logging
import os
import re

from flask import current_app, has_request_context, request
from markupsafe import escape

logger = logging.getLogger(__name__)

CATALOG_PATH = os.path.join(
    os.path.dirname(os.path.dirname(__file__)), "data", "translations.json"
)

_ACCEPT_LANGUAGE_RE = re.compile(
    r"([a-z]{2})(?:-[a-z]{2})?(?:;q=([0-9]+(?:\.[0-9]+)?))?", re.IGNORECASE
)

_catalog = None
_catalog_mtime = 0.0


def load_catalog(path=CATALOG_PATH):
    """Return the parsed catalog, reloading when the file changed."""
    global _catalog, _catalog_mtime

    try:
        mtime = os.path.getmtime(path)
    except OSError:
        logger.error(f"Translation file not found: {path}")
        return {}

    if _catalog is not None and mtime == _catalog_mtime:
        return _catalog

    try:
        with open(path, "r", encoding="utf-8") as fh:
            catalog = json.load(fh)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load translation file {path}: {e}")
        return _catalog or {}

    _catalog = catalog
    _catalog_mtime = mtime
    return _catalog


def _supported():
    return current_app.config.get("SUPPORTED_LANGUAGES", ("de", "en", "fr"))


def _default():
    return current_app.config.get("DEFAULT_LANGUAGE", "de")


def get_user_language():
    """Resolve the visitor's language: ?lang=, cookie, Accept-Language."""
    if not has_request_context():
        return _default()

    supported = _supported()

    lang = request.args.get("lang") or request.form.get("lang")
    if lang in supported:
        return lang

    lang = request.cookies.get("language")
    if lang in supported:
        return lang

    accept = request.headers.get("Accept-Language", "")
    ranked = {}
    for code, quality in _ACCEPT_LANGUAGE_RE.findall(accept):
        code = code.lower()
        if code in supported and code not in ranked:
            ranked[code] = float(quality) if quality else 1.0
    if ranked:
        return max(ranked, key=ranked.get)

    return _default()


def translate(message_id, params=None, lang=None, escape_params=True):
    """Look up ``message_id`` in ``lang`` (visitor's language by default).

    ``{placeholder}`` values are HTML-escaped before substitution unless
    ``escape_params`` is False (plain-text bodies, mail headers).
    """
    if lang is None:
        lang = get_user_language()

    entry = load_catalog().get(message_id)
    if entry is None:
        logger.warning(f"Translation key not found: {message_id}")
        return message_id

    text = entry.get(lang)
    if text is None:
        text = entry.get(_default())
        if text is None:
            return message_id

    for placeholder, value in (params or {}).items():
        value = str(value)
        if escape_params:
            value = str(escape(value))
        text = text.replace("{" + placeholder + "}", value)
    return text
