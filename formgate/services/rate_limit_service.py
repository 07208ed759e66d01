"""Rate limit service: per-client submission quotas on a file-backed store.

Each client is identified by a salted SHA-256 of its IP address and owns
one JSON file in RATE_LIMIT_DIR:

    {"requests": [1700000000, ...], "last_request": 1700000000}

Policy (checked in this order):
    1. TOO_SOON        — less than RATE_LIMIT_MIN_INTERVAL seconds since
                         the last accepted submission.
    2. QUOTA_EXCEEDED  — RATE_LIMIT_MAX_REQUESTS or more submissions within
                         the trailing RATE_LIMIT_WINDOW seconds.

check_and_record() evaluates and records under one exclusive flock on the
client's file, so two concurrent requests from the same client cannot both
pass on a stale count. flock only coordinates processes on one host; a
multi-host deployment needs a shared store instead.

Old files are removed by sweep(), either probabilistically per request
(maybe_sweep) or on a schedule via `flask sweep-rate-limits`.
"""

import fcntl
import hashlib
import ipaddress
import json
import logging
import os
import random
import time
from contextlib import contextmanager

from flask import current_app

from formgate.errors import RateLimited

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".json"

# Forwarded-IP headers, most specific first.
PROXY_HEADERS = ("CF-Connecting-IP", "X-Forwarded-For", "X-Real-IP")


# ──────────────────────────────────────────────
# Client identification
# ──────────────────────────────────────────────

def _valid_ip(value):
    try:
        return str(ipaddress.ip_address(value))
    except ValueError:
        return None


def _in_ranges(ip, ranges):
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    for cidr in ranges:
        try:
            if addr in ipaddress.ip_network(cidr, strict=False):
                return True
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy range: {cidr}")
    return False


def resolve_client_ip(remote_addr, headers):
    """Return the IP address that identifies the client.

    A forwarded header is only honoured when TRUST_PROXY_HEADERS is on and
    the direct peer is inside TRUSTED_PROXY_RANGES; anyone else could set
    those headers to dodge the limit.

    Args:
        remote_addr: The direct peer address (request.remote_addr).
        headers:     Request headers mapping.

    Returns:
        str: The client IP, or "unknown" if no peer address is available.
    """
    remote_addr = remote_addr or "unknown"

    if current_app.config.get("TRUST_PROXY_HEADERS"):
        ranges = current_app.config.get("TRUSTED_PROXY_RANGES", [])
        if _in_ranges(remote_addr, ranges):
            for header in PROXY_HEADERS:
                value = headers.get(header)
                if not value:
                    continue
                candidate = _valid_ip(value.split(",")[0].strip())
                if candidate:
                    logger.info(f"Rate limit using proxy header IP from {header}")
                    return candidate
        else:
            logger.warning(
                "SECURITY WARNING: TRUST_PROXY_HEADERS enabled but request "
                f"not from a trusted proxy: {remote_addr}"
            )

    return remote_addr


def client_key(ip, salt=None):
    """Salted one-way hash of the client IP, used as the record file name."""
    if salt is None:
        salt = current_app.config["RATE_LIMIT_SALT"]
    return hashlib.sha256(f"{ip}{salt}".encode("utf-8")).hexdigest()


# ──────────────────────────────────────────────
# Record storage
# ──────────────────────────────────────────────

def _store_dir():
    directory = current_app.config["RATE_LIMIT_DIR"]
    os.makedirs(directory, mode=0o700, exist_ok=True)
    return directory


def _record_path(key):
    return os.path.join(_store_dir(), key + RECORD_SUFFIX)


def _empty_record():
    return {"requests": [], "last_request": 0}


def _decode(raw, path):
    if not raw:
        return _empty_record()
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning(f"Discarding unreadable rate limit record {os.path.basename(path)}")
        return _empty_record()
    if not isinstance(data, dict) or not isinstance(data.get("requests"), list):
        return _empty_record()
    data.setdefault("last_request", 0)
    if not all(_is_timestamp(ts) for ts in data["requests"]) or not _is_timestamp(
        data["last_request"]
    ):
        logger.warning(f"Discarding malformed rate limit record {os.path.basename(path)}")
        return _empty_record()
    return data


def _is_timestamp(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@contextmanager
def _locked_record(key):
    """Yield ``(record, save)`` while holding an exclusive lock on the file.

    ``save(record)`` rewrites the file in place. The lock is released and
    the file closed on every exit path, including exceptions.
    """
    path = _record_path(key)
    fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
    with os.fdopen(fd, "r+", encoding="utf-8") as fh:
        fcntl.flock(fh, fcntl.LOCK_EX)
        try:
            fh.seek(0)
            record = _decode(fh.read(), path)

            def save(updated):
                fh.seek(0)
                fh.truncate()
                json.dump(updated, fh)
                fh.flush()
                os.fsync(fh.fileno())

            yield record, save
        finally:
            fcntl.flock(fh, fcntl.LOCK_UN)


def _read_record(key):
    path = _record_path(key)
    try:
        with open(path, "r", encoding="utf-8") as fh:
            fcntl.flock(fh, fcntl.LOCK_SH)
            try:
                return _decode(fh.read(), path)
            finally:
                fcntl.flock(fh, fcntl.LOCK_UN)
    except FileNotFoundError:
        return _empty_record()


# ──────────────────────────────────────────────
# Policy
# ──────────────────────────────────────────────

def _prune(record, now):
    """Drop timestamps that fell out of the trailing window."""
    window = current_app.config["RATE_LIMIT_WINDOW"]
    record["requests"] = [t for t in record["requests"] if now - t < window]
    return record


def _evaluate(record, now):
    """Return a RateLimited reason for ``record`` at ``now``, or None."""
    min_interval = current_app.config["RATE_LIMIT_MIN_INTERVAL"]
    max_requests = current_app.config["RATE_LIMIT_MAX_REQUESTS"]

    last = record.get("last_request") or 0
    if last > 0 and now - last < min_interval:
        return RateLimited.TOO_SOON

    if len(record["requests"]) >= max_requests:
        return RateLimited.QUOTA_EXCEEDED

    return None


def _append(record, now):
    record["requests"].append(now)
    record["last_request"] = max(record.get("last_request") or 0, now)
    return record


def should_reject(key, now=None):
    """Check the quota for ``key`` without recording anything.

    Returns:
        RateLimited.TOO_SOON, RateLimited.QUOTA_EXCEEDED, or None.
    """
    now = int(time.time()) if now is None else int(now)
    return _evaluate(_prune(_read_record(key), now), now)


def record(key, now=None):
    """Record an accepted submission for ``key``."""
    now = int(time.time()) if now is None else int(now)
    with _locked_record(key) as (data, save):
        save(_append(_prune(data, now), now))


def check_and_record(key, now=None):
    """Evaluate the policy and, if accepted, record, atomically.

    Returns:
        The rejection reason, or None if the submission was recorded.
    """
    now = int(time.time()) if now is None else int(now)
    with _locked_record(key) as (data, save):
        data = _prune(data, now)
        reason = _evaluate(data, now)
        if reason is None:
            save(_append(data, now))
        return reason


# ──────────────────────────────────────────────
# Garbage collection
# ──────────────────────────────────────────────

def sweep(now=None, max_age=None):
    """Delete record files not modified within ``max_age`` seconds
    (RATE_LIMIT_GC_MAX_AGE by default).

    Returns:
        int: Number of files removed.
    """
    now = time.time() if now is None else now
    if max_age is None:
        max_age = current_app.config["RATE_LIMIT_GC_MAX_AGE"]
    deleted = 0

    with os.scandir(_store_dir()) as entries:
        for entry in entries:
            if not entry.name.endswith(RECORD_SUFFIX) or not entry.is_file():
                continue
            try:
                if now - entry.stat().st_mtime > max_age:
                    os.remove(entry.path)
                    deleted += 1
            except FileNotFoundError:
                continue  # removed by a concurrent sweep

    if deleted:
        logger.info(f"SECURITY: Garbage collection removed {deleted} old rate limit files")
    return deleted


def maybe_sweep():
    """Run sweep() with probability RATE_LIMIT_GC_PROBABILITY.

    Errors are logged, never raised; cleanup must not fail a submission.
    """
    probability = current_app.config.get("RATE_LIMIT_GC_PROBABILITY", 0)
    if probability <= 0 or random.random() >= probability:
        return 0
    try:
        return sweep()
    except OSError as e:
        logger.error(f"SECURITY: Garbage collection error: {e}")
        return 0
