"""Origin service: decides whether a request comes from our own site.

Checks the Origin header (preferred) or Referer (fallback) against the
configured allow-lists. Used by both the token endpoint and the submission
pipeline; neither has side effects here; callers log rejections with
values passed through sanitize_log_value() first.
"""

import re
from urllib.parse import urlsplit

from flask import current_app

LOCAL_HOSTS = ("localhost", "127.0.0.1")
DEV_PORT_RANGE = (3000, 9000)

_CRLF_RE = re.compile(r"[\r\n]")


def sanitize_log_value(value):
    """Strip CR/LF so header values cannot forge extra log lines."""
    return _CRLF_RE.sub("", value or "")


def strip_port(host):
    """Return ``host`` without a trailing ``:port``."""
    if not host:
        return ""
    if host.startswith("["):  # IPv6 literal, e.g. [::1]:8080
        return host.split("]", 1)[0] + "]"
    name, _, _ = host.partition(":")
    return name or host


def is_development_host(*hosts):
    """True if any of the given server host names is a local dev host."""
    return any(
        local in (host or "") for host in hosts for local in LOCAL_HOSTS
    )


def allowed_origins(host="", server_name=""):
    """Configured allow-list, plus ``file://`` when running locally."""
    origins = list(current_app.config.get("ALLOWED_ORIGINS", []))
    if is_development_host(host, server_name):
        origins.append("file://")
    return origins


def _parse(url):
    try:
        parts = urlsplit(url)
        # Accessing .port raises for out-of-range or non-numeric ports
        return parts.scheme, parts.hostname, parts.port
    except ValueError:
        return None, None, None


def is_valid_origin(origin, origins):
    """Match an origin (or referer) URL against the allow-list.

    Exact string match wins. Otherwise the host is compared: local hosts
    may use port 80 or a dev-server port in 3000-9000; allow-listed hosts
    must be on 80 or 443.
    """
    if not origin:
        return False

    if origin in origins:
        return True

    scheme, host, port = _parse(origin)
    if not host:
        return False

    if host in LOCAL_HOSTS:
        port = port or 80
        return port == 80 or DEV_PORT_RANGE[0] <= port <= DEV_PORT_RANGE[1]

    for allowed in origins:
        _, allowed_host, _ = _parse(allowed)
        if allowed_host and host == allowed_host:
            if port is None:
                port = 443 if scheme == "https" else 80
            return port in (80, 443)

    return False


def is_valid_server_hostname(hostname, server_name, host_without_port):
    """True if ``hostname`` names this server or one of our domains."""
    if not hostname:
        return False
    return (
        hostname == host_without_port
        or hostname == server_name
        or hostname in current_app.config.get("VALID_DOMAINS", [])
    )


def is_trusted_origin(origin, referer, host, server_name=""):
    """Decide whether a request's declared source is trustworthy.

    Args:
        origin:      Value of the Origin header ("" if absent).
        referer:     Value of the Referer header ("" if absent).
        host:        Value of the Host header, possibly with a port.
        server_name: The server's configured name, if any.

    Returns:
        bool: True if the request may proceed.
    """
    host = host or ""
    server_name = server_name or ""
    host_without_port = strip_port(host)
    origins = allowed_origins(host, server_name)

    declared = origin or referer
    if not declared:
        valid_domains = current_app.config.get("VALID_DOMAINS", [])
        return (
            is_development_host(host, server_name)
            or server_name in valid_domains
            or host in valid_domains
            or host_without_port in valid_domains
        )

    if is_valid_origin(declared, origins):
        return True

    _, declared_host, _ = _parse(declared)
    return is_valid_server_hostname(declared_host, server_name, host_without_port)


def cors_origin(origin, host="", server_name=""):
    """Return the origin to echo in CORS headers, or None if not allowed.

    Only the allow-list decides CORS; matching our own host name is not
    enough to grant credentialed cross-origin access.
    """
    if origin and is_valid_origin(origin, allowed_origins(host, server_name)):
        return origin
    return None
