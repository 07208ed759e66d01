"""Tests for the file-backed rate limiter.

Covers:
- Client key hashing
- Minimum interval (TOO_SOON) and hourly quota (QUOTA_EXCEEDED)
- Rejected attempts are not recorded
- Corrupt and malformed records
- Exclusive locking across processes
- Garbage collection sweep and the probabilistic trigger
- Client IP resolution behind a trusted proxy
"""

import fcntl
import json
import multiprocessing
import os
import time

import pytest

from formgate.errors import RateLimited
from formgate.services import rate_limit_service as rl

T0 = 1_700_000_000


@pytest.fixture
def key(request_ctx):
    return rl.client_key("203.0.113.7")


def _record_file(store, key):
    return store / f"{key}.json"


class TestClientKey:
    """Salted IP hashing."""

    def test_is_sha256_hex(self, key):
        assert len(key) == 64
        int(key, 16)

    def test_stable_for_same_ip(self, key, request_ctx):
        assert rl.client_key("203.0.113.7") == key

    def test_salt_changes_key(self, key):
        assert rl.client_key("203.0.113.7", salt="other-salt") != key

    def test_raw_ip_never_on_disk(self, key, rate_limit_store):
        rl.check_and_record(key, now=T0)
        names = os.listdir(rate_limit_store)
        assert names == [f"{key}.json"]
        assert "203.0.113.7" not in _record_file(rate_limit_store, key).read_text()


class TestPolicy:
    """check_and_record / should_reject."""

    def test_first_request_allowed(self, key):
        assert rl.check_and_record(key, now=T0) is None

    def test_second_request_within_interval_too_soon(self, key):
        rl.check_and_record(key, now=T0)
        assert rl.check_and_record(key, now=T0 + 10) == RateLimited.TOO_SOON

    def test_allowed_after_min_interval(self, key):
        rl.check_and_record(key, now=T0)
        assert rl.check_and_record(key, now=T0 + 31) is None

    def test_rejected_attempt_not_recorded(self, key, rate_limit_store):
        """A TOO_SOON attempt does not push last_request forward."""
        rl.check_and_record(key, now=T0)
        assert rl.check_and_record(key, now=T0 + 10) == RateLimited.TOO_SOON
        assert rl.check_and_record(key, now=T0 + 31) is None

        data = json.loads(_record_file(rate_limit_store, key).read_text())
        assert data["requests"] == [T0, T0 + 31]
        assert data["last_request"] == T0 + 31

    def test_sixth_request_in_window_exceeds_quota(self, key):
        for i in range(5):
            assert rl.check_and_record(key, now=T0 + i * 31) is None
        assert rl.check_and_record(key, now=T0 + 5 * 31) == RateLimited.QUOTA_EXCEEDED

    def test_quota_frees_up_as_window_slides(self, key):
        for i in range(5):
            rl.check_and_record(key, now=T0 + i * 31)
        # The T0 entry has left the window; four remain.
        assert rl.check_and_record(key, now=T0 + 3600) is None

    def test_too_soon_checked_before_quota(self, key):
        for i in range(5):
            rl.check_and_record(key, now=T0 + i * 31)
        assert rl.check_and_record(key, now=T0 + 4 * 31 + 1) == RateLimited.TOO_SOON

    def test_should_reject_does_not_record(self, key):
        assert rl.should_reject(key, now=T0) is None
        assert rl.should_reject(key, now=T0 + 1) is None
        rl.record(key, now=T0)
        assert rl.should_reject(key, now=T0 + 1) == RateLimited.TOO_SOON

    def test_clients_are_independent(self, key, request_ctx):
        other = rl.client_key("198.51.100.1")
        rl.check_and_record(key, now=T0)
        assert rl.check_and_record(other, now=T0 + 1) is None

    def test_corrupt_record_treated_as_empty(self, key, rate_limit_store):
        rate_limit_store.mkdir(exist_ok=True)
        _record_file(rate_limit_store, key).write_text("{not json")
        assert rl.check_and_record(key, now=T0) is None

        data = json.loads(_record_file(rate_limit_store, key).read_text())
        assert data["requests"] == [T0]

    def test_non_numeric_entries_treated_as_empty(self, key, rate_limit_store):
        rate_limit_store.mkdir(exist_ok=True)
        _record_file(rate_limit_store, key).write_text(
            json.dumps({"requests": ["x", None], "last_request": "soon"})
        )
        assert rl.check_and_record(key, now=T0) is None

        data = json.loads(_record_file(rate_limit_store, key).read_text())
        assert data["requests"] == [T0]
        assert data["last_request"] == T0

    def test_boolean_timestamps_rejected(self, key, rate_limit_store):
        rate_limit_store.mkdir(exist_ok=True)
        _record_file(rate_limit_store, key).write_text(
            json.dumps({"requests": [True], "last_request": T0})
        )
        assert rl.check_and_record(key, now=T0 + 1) is None


def _admit_once(app, key, now, barrier, results):
    with app.app_context():
        barrier.wait(timeout=10)
        results.put(rl.check_and_record(key, now=now))


class TestLocking:
    """Exclusive flock around evaluate-and-record."""

    WORKERS = 12

    @pytest.mark.skipif(
        "fork" not in multiprocessing.get_all_start_methods(),
        reason="needs fork start method",
    )
    def test_concurrent_processes_admit_exactly_one(self, app, key, rate_limit_store):
        ctx = multiprocessing.get_context("fork")
        barrier = ctx.Barrier(self.WORKERS)
        results = ctx.Queue()
        workers = [
            ctx.Process(target=_admit_once, args=(app, key, T0, barrier, results))
            for _ in range(self.WORKERS)
        ]
        for proc in workers:
            proc.start()
        outcomes = [results.get(timeout=10) for _ in workers]
        for proc in workers:
            proc.join(timeout=10)

        assert outcomes.count(None) == 1
        assert outcomes.count(RateLimited.TOO_SOON) == self.WORKERS - 1

        data = json.loads(_record_file(rate_limit_store, key).read_text())
        assert data["requests"] == [T0]

    def test_lock_released_when_body_raises(self, key, rate_limit_store):
        with pytest.raises(RuntimeError):
            with rl._locked_record(key):
                raise RuntimeError("boom")

        with open(_record_file(rate_limit_store, key)) as fh:
            fcntl.flock(fh, fcntl.LOCK_EX | fcntl.LOCK_NB)
            fcntl.flock(fh, fcntl.LOCK_UN)

        assert rl.check_and_record(key, now=T0) is None


class TestSweep:
    """Garbage collection of stale record files."""

    def test_removes_only_old_files(self, request_ctx, rate_limit_store):
        old_key = rl.client_key("192.0.2.1")
        fresh_key = rl.client_key("192.0.2.2")
        rl.record(old_key, now=T0)
        rl.record(fresh_key, now=T0)

        now = time.time()
        old_path = _record_file(rate_limit_store, old_key)
        os.utime(old_path, (now - 90000, now - 90000))

        assert rl.sweep(now=now) == 1
        assert not old_path.exists()
        assert _record_file(rate_limit_store, fresh_key).exists()

    def test_ignores_foreign_files(self, request_ctx, rate_limit_store):
        rate_limit_store.mkdir(exist_ok=True)
        stray = rate_limit_store / "README"
        stray.write_text("keep me")
        os.utime(stray, (0, 0))
        assert rl.sweep() == 0
        assert stray.exists()

    def test_max_age_override(self, request_ctx, rate_limit_store):
        k = rl.client_key("192.0.2.3")
        rl.record(k, now=T0)
        now = time.time()
        os.utime(_record_file(rate_limit_store, k), (now - 120, now - 120))
        assert rl.sweep(now=now) == 0
        assert rl.sweep(now=now, max_age=60) == 1

    def test_maybe_sweep_disabled_at_zero_probability(self, app, request_ctx, monkeypatch):
        monkeypatch.setitem(app.config, "RATE_LIMIT_GC_PROBABILITY", 0.0)
        monkeypatch.setattr(rl, "sweep", lambda: pytest.fail("sweep must not run"))
        assert rl.maybe_sweep() == 0

    def test_maybe_sweep_runs_at_full_probability(self, app, request_ctx, monkeypatch):
        monkeypatch.setitem(app.config, "RATE_LIMIT_GC_PROBABILITY", 1.0)
        monkeypatch.setattr(rl, "sweep", lambda: 3)
        assert rl.maybe_sweep() == 3

    def test_maybe_sweep_swallows_os_errors(self, app, request_ctx, monkeypatch):
        def broken():
            raise PermissionError("read-only store")

        monkeypatch.setitem(app.config, "RATE_LIMIT_GC_PROBABILITY", 1.0)
        monkeypatch.setattr(rl, "sweep", broken)
        assert rl.maybe_sweep() == 0


class TestResolveClientIp:
    """Forwarded headers are only honoured from trusted proxies."""

    CF_PEER = "162.158.1.1"

    def test_proxy_headers_ignored_by_default(self, request_ctx):
        headers = {"CF-Connecting-IP": "198.51.100.9"}
        assert rl.resolve_client_ip("10.0.0.5", headers) == "10.0.0.5"

    def test_trusted_proxy_header_used(self, app, request_ctx, monkeypatch):
        monkeypatch.setitem(app.config, "TRUST_PROXY_HEADERS", True)
        headers = {"CF-Connecting-IP": "198.51.100.9"}
        assert rl.resolve_client_ip(self.CF_PEER, headers) == "198.51.100.9"

    def test_forwarded_for_first_hop(self, app, request_ctx, monkeypatch):
        monkeypatch.setitem(app.config, "TRUST_PROXY_HEADERS", True)
        headers = {"X-Forwarded-For": "198.51.100.9, 162.158.1.1"}
        assert rl.resolve_client_ip(self.CF_PEER, headers) == "198.51.100.9"

    def test_untrusted_peer_cannot_spoof(self, app, request_ctx, monkeypatch):
        monkeypatch.setitem(app.config, "TRUST_PROXY_HEADERS", True)
        headers = {"CF-Connecting-IP": "198.51.100.9"}
        assert rl.resolve_client_ip("203.0.113.50", headers) == "203.0.113.50"

    def test_invalid_forwarded_value_skipped(self, app, request_ctx, monkeypatch):
        monkeypatch.setitem(app.config, "TRUST_PROXY_HEADERS", True)
        headers = {"CF-Connecting-IP": "not-an-ip", "X-Real-IP": "198.51.100.10"}
        assert rl.resolve_client_ip(self.CF_PEER, headers) == "198.51.100.10"

    def test_missing_peer(self, request_ctx):
        assert rl.resolve_client_ip(None, {}) == "unknown"
