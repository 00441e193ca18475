"""
Rate limiting, idempotency, session token and audit trail tests
"""

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import orjson
import pytest
from starlette.requests import Request

from config import Config
from middleware.auth_security import AuthSecurityService, SecurityConfig, get_client_ip
from middleware.rate_limiter import RateLimiter
from models import ActorRole
from services.audit_logger import AuditLogger
from utils.helpers import generate_id, parse_datetime, to_iso
from utils.exception_handler import ValidationError
from utils.idempotency import IdempotencyCache
from utils.session_tokens import InvalidSessionToken, SessionTokenSecurity


class TestRateLimiter:

    def test_window_limit_and_recovery(self):
        limiter = RateLimiter(max_requests=2, window_seconds=60)
        assert limiter.is_rate_limited("ip:1", now=1000.0) == (False, None)
        assert limiter.is_rate_limited("ip:1", now=1001.0) == (False, None)

        limited, retry_after = limiter.is_rate_limited("ip:1", now=1010.0)
        assert limited is True
        assert retry_after == 50

        assert limiter.is_rate_limited("ip:1", now=1061.0) == (False, None)

    def test_callers_and_actions_are_separate(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        limiter.is_rate_limited("ip:1", "POST", now=0.0)
        assert limiter.is_rate_limited("ip:2", "POST", now=1.0)[0] is False
        assert limiter.is_rate_limited("ip:1", "PATCH", now=1.0)[0] is False
        assert limiter.is_rate_limited("ip:1", "POST", now=1.0)[0] is True

    def test_idle_callers_are_evicted(self):
        limiter = RateLimiter(max_requests=5, window_seconds=60, max_tracked_keys=2)
        limiter.is_rate_limited("ip:1", now=0.0)
        limiter.is_rate_limited("ip:2", now=0.0)

        limiter.is_rate_limited("ip:3", now=100.0)
        assert list(limiter._requests) == [("ip:3", "general")]

    def test_active_callers_survive_eviction(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60, max_tracked_keys=1)
        limiter.is_rate_limited("ip:1", now=0.0)
        limiter.is_rate_limited("ip:2", now=1.0)
        assert limiter.is_rate_limited("ip:1", now=2.0)[0] is True


class TestIdempotencyCache:

    def test_replay_within_ttl_only(self):
        cache = IdempotencyCache(ttl_seconds=100)
        cache.store("sid-1", "escrows.create", "k1", 201, {"id": "ES-1"}, now=0.0)

        cached = cache.get("sid-1", "escrows.create", "k1", now=50.0)
        assert (cached.status_code, cached.body) == (201, {"id": "ES-1"})
        assert cache.get("sid-1", "escrows.create", "k1", now=101.0) is None

    def test_scoped_by_caller_and_route(self):
        cache = IdempotencyCache()
        cache.store("sid-1", "wallet.deposit", "k1", 200, {}, now=0.0)
        assert cache.get("sid-2", "wallet.deposit", "k1", now=1.0) is None
        assert cache.get("sid-1", "wallet.transfer", "k1", now=1.0) is None

    def test_bounded_size(self):
        cache = IdempotencyCache(ttl_seconds=1000, max_entries=2)
        for i in range(3):
            cache.store("sid", "r", f"k{i}", 200, i, now=float(i))
        assert cache.get("sid", "r", "k0", now=3.0) is None
        assert cache.get("sid", "r", "k2", now=3.0).body == 2


class TestSessionTokens:

    def test_issue_and_verify(self):
        claims = SessionTokenSecurity.verify(SessionTokenSecurity.issue(ActorRole.CLIENT))
        assert claims.role == ActorRole.CLIENT
        assert claims.session_id.startswith("SS-")
        assert claims.expires_at > datetime.now(timezone.utc)

    def test_each_login_gets_its_own_session(self):
        first = SessionTokenSecurity.verify(SessionTokenSecurity.issue(ActorRole.CLIENT))
        second = SessionTokenSecurity.verify(SessionTokenSecurity.issue(ActorRole.CLIENT))
        assert first.session_id != second.session_id

    @pytest.mark.parametrize("token", ["", "abc", "a.b.c", "e30.deadbeef", "abc.\u00e9", "\u00e9.deadbeef"])
    def test_garbage_rejected(self, token):
        with pytest.raises(InvalidSessionToken):
            SessionTokenSecurity.verify(token)

    def test_tampered_payload_rejected(self):
        token = SessionTokenSecurity.issue(ActorRole.CLIENT)
        _, signature = token.split(".")
        forged_body = SessionTokenSecurity.issue(ActorRole.ADMIN).split(".")[0]
        with pytest.raises(InvalidSessionToken):
            SessionTokenSecurity.verify(f"{forged_body}.{signature}")

    def test_expired_rejected(self):
        token = SessionTokenSecurity.issue(ActorRole.ADMIN, ttl_hours=1)
        later = datetime.now(timezone.utc) + timedelta(hours=2)
        with patch("utils.session_tokens.datetime") as fake_datetime:
            fake_datetime.now.return_value = later
            fake_datetime.fromtimestamp.side_effect = datetime.fromtimestamp
            with pytest.raises(InvalidSessionToken):
                SessionTokenSecurity.verify(token)

    def test_password_check(self):
        from config import Config

        assert SessionTokenSecurity.check_password(ActorRole.ADMIN, Config.ADMIN_PASSWORD)
        assert not SessionTokenSecurity.check_password(ActorRole.ADMIN, Config.CLIENT_PASSWORD + "x")
        assert not SessionTokenSecurity.check_password(ActorRole.CLIENT, "")


class TestLoginLockout:

    def test_lockout_and_expiry(self):
        service = AuthSecurityService(SecurityConfig(login_max_attempts=2, login_lockout_seconds=60))
        service.record_failed_attempt("ip:admin", now=0.0)
        assert service.check_lockout("ip:admin", now=1.0) == (False, 0)
        service.record_failed_attempt("ip:admin", now=2.0)

        assert service.check_lockout("ip:admin", now=3.0) == (True, 57)
        assert service.check_lockout("ip:admin", now=61.0) == (False, 0)

    def test_success_clears_attempts(self):
        service = AuthSecurityService(SecurityConfig(login_max_attempts=1))
        service.record_failed_attempt("ip:client")
        service.record_successful_attempt("ip:client")
        assert service.check_lockout("ip:client")[0] is False

    def test_expired_identifiers_are_dropped(self):
        service = AuthSecurityService(SecurityConfig(login_max_attempts=2, login_lockout_seconds=60))
        service.record_failed_attempt("ip:admin", now=0.0)
        assert service.check_lockout("ip:admin", now=61.0) == (False, 0)
        assert "ip:admin" not in service._failed_attempts

    def test_table_is_bounded(self):
        service = AuthSecurityService(
            SecurityConfig(login_lockout_seconds=60, max_tracked_identifiers=3)
        )
        for i in range(3):
            service.record_failed_attempt(f"10.0.0.{i}:admin", now=0.0)
        service.record_failed_attempt("10.0.0.9:admin", now=120.0)
        assert list(service._failed_attempts) == ["10.0.0.9:admin"]


def _request(peer, forwarded=None):
    headers = [(b"x-forwarded-for", forwarded.encode())] if forwarded else []
    return Request({"type": "http", "method": "POST", "path": "/", "headers": headers, "client": (peer, 5000)})


class TestClientIp:

    def test_forwarded_header_ignored_from_untrusted_peer(self, monkeypatch):
        monkeypatch.setattr(Config, "TRUSTED_PROXIES", frozenset())
        assert get_client_ip(_request("203.0.113.5", "10.9.9.9")) == "203.0.113.5"

    def test_trusted_proxy_forwards_caller(self, monkeypatch):
        monkeypatch.setattr(Config, "TRUSTED_PROXIES", frozenset({"203.0.113.5"}))
        assert get_client_ip(_request("203.0.113.5", "10.9.9.9")) == "10.9.9.9"
        assert get_client_ip(_request("203.0.113.5")) == "203.0.113.5"

    def test_spoofed_leftmost_hop_is_skipped(self, monkeypatch):
        monkeypatch.setattr(Config, "TRUSTED_PROXIES", frozenset({"203.0.113.5", "10.0.0.2"}))
        request = _request("203.0.113.5", "6.6.6.6, 198.51.100.7, 10.0.0.2")
        assert get_client_ip(request) == "198.51.100.7"


class TestAuditLogger:

    def test_writes_json_line(self, caplog):
        audit = AuditLogger(log_file="")
        with caplog.at_level(logging.INFO, logger="audit"):
            audit.log_operation("escrow_created", "client", "escrow", "ES-1", {"amount": "40.00"})

        entry = orjson.loads(caplog.records[-1].getMessage())
        assert entry["action"] == "escrow_created"
        assert entry["target_id"] == "ES-1"
        assert entry["details"] == {"amount": "40.00"}

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "audit.log"
        audit = AuditLogger(log_file=str(log_file))
        audit.log_operation("wallet_deposit", "admin", "wallet", "USD")
        for handler in list(audit.audit_logger.handlers):
            if isinstance(handler, logging.FileHandler) and handler.baseFilename == str(log_file):
                handler.close()
                audit.audit_logger.removeHandler(handler)
        assert "wallet_deposit" in log_file.read_text()


class TestHelpers:

    def test_generated_ids_are_prefixed_and_unique(self):
        ids = {generate_id("escrow") for _ in range(200)}
        assert len(ids) == 200
        assert all(i.startswith("ES-") for i in ids)

    def test_iso_round_trip_uses_z_suffix(self):
        value = parse_datetime("2030-01-02T03:04:05Z")
        assert value.tzinfo is not None
        assert to_iso(value) == "2030-01-02T03:04:05Z"

    @pytest.mark.parametrize("raw", ["tomorrow", 12, "2030-13-01"])
    def test_parse_datetime_rejects(self, raw):
        with pytest.raises(ValidationError):
            parse_datetime(raw, "expiresAt")
