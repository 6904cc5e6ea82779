"""
tests/test_magic_code_auth.py — Tests for passwordless supplier authentication

Covers: success path and counters, session window extension (never
backward), grace period, revoked/unknown/expired/inactive rejections,
per-IP rate limiting with a single brute-force event per burst,
excessive-usage signal, auto-renew event, first-use binding.

Called by: pytest
Depends on: app.services.magic_code_auth, conftest fixtures
"""

from datetime import timedelta

import pytest

from app.config import settings
from app.constants import AttemptOutcome, SecurityEventType
from app.exceptions import (
    AuthError,
    CodeExpired,
    InvalidCode,
    RateLimited,
    SupplierInactive,
)
from app.models import AccessAttempt, SecurityEvent
from app.services.magic_code_auth import validate
from app.services.security_log import hash_code, recent_failures

IP = "203.0.113.7"


def _events(db, event_type):
    return db.query(SecurityEvent).filter(SecurityEvent.event_type == event_type.value).all()


class TestValidateSuccess:
    def test_first_use_opens_session(self, db_session, access_code, supplier, now):
        session = validate(db_session, access_code.code, IP, "pytest", now=now)

        assert session.supplier.id == supplier.id
        assert session.assistance_id == access_code.assistance_id
        assert session.session_expires_at == now + timedelta(minutes=settings.supplier_session_minutes)
        assert session.in_grace_period is False
        assert session.renewed is False

        db_session.refresh(access_code)
        assert access_code.access_count == 1
        assert access_code.is_used is True
        assert access_code.last_used_at == now

        attempt = db_session.query(AccessAttempt).one()
        assert attempt.success is True
        assert attempt.outcome == AttemptOutcome.SUCCESS.value
        assert attempt.supplier_id == supplier.id

    def test_code_is_case_insensitive(self, db_session, access_code, now):
        session = validate(db_session, f"  {access_code.code.lower()} ", IP, now=now)
        assert session.access_code.id == access_code.id

    def test_expires_at_is_never_touched(self, db_session, access_code, now):
        original = access_code.expires_at
        validate(db_session, access_code.code, IP, now=now)
        validate(db_session, access_code.code, IP, now=now + timedelta(days=3))
        db_session.refresh(access_code)
        assert access_code.expires_at == original
        assert access_code.access_count == 2

    def test_session_extends_on_each_use(self, db_session, access_code, now):
        validate(db_session, access_code.code, IP, now=now)
        later = now + timedelta(minutes=60)
        session = validate(db_session, access_code.code, IP, now=later)
        assert session.session_expires_at == later + timedelta(minutes=settings.supplier_session_minutes)

    def test_session_never_moves_backward(self, db_session, access_code, now):
        later = now + timedelta(minutes=60)
        validate(db_session, access_code.code, IP, now=later)
        # A request stamped earlier (clock skew between workers) must not shorten it
        session = validate(db_session, access_code.code, IP, now=now)
        assert session.session_expires_at == later + timedelta(minutes=settings.supplier_session_minutes)

    def test_auto_renew_after_session_lapsed(self, db_session, access_code, now):
        validate(db_session, access_code.code, IP, now=now)
        later = now + timedelta(minutes=settings.supplier_session_minutes + 30)
        session = validate(db_session, access_code.code, IP, now=later)

        assert session.renewed is True
        events = _events(db_session, SecurityEventType.AUTO_RENEWED)
        assert len(events) == 1
        assert events[0].severity == "low"


class TestGracePeriod:
    def test_expired_within_grace_authenticates(self, db_session, make_code, now):
        code = make_code(expires_at=now - timedelta(minutes=2))
        session = validate(db_session, code.code, IP, now=now)

        assert session.in_grace_period is True
        events = _events(db_session, SecurityEventType.EXPIRED_GRACE_PERIOD)
        assert len(events) == 1
        assert events[0].severity == "low"

    def test_expired_past_grace_rejected(self, db_session, make_code, now):
        code = make_code(expires_at=now - timedelta(minutes=settings.magic_code_grace_minutes + 1))
        with pytest.raises(CodeExpired):
            validate(db_session, code.code, IP, now=now)

        assert _events(db_session, SecurityEventType.EXPIRED_REJECTED)
        attempt = db_session.query(AccessAttempt).one()
        assert attempt.outcome == AttemptOutcome.EXPIRED.value
        db_session.refresh(code)
        assert code.access_count == 0


class TestRejections:
    def test_unknown_code(self, db_session, now):
        with pytest.raises(InvalidCode):
            validate(db_session, "NOPE2345", IP, "curl/8", now=now)

        attempt = db_session.query(AccessAttempt).one()
        assert attempt.success is False
        assert attempt.outcome == AttemptOutcome.INVALID.value
        assert attempt.code_hash == hash_code("NOPE2345")
        assert attempt.code_hash != "NOPE2345"
        event = _events(db_session, SecurityEventType.INVALID_CODE)[0]
        assert event.severity == "medium"
        assert event.ip_address == IP
        assert "NOPE2345" not in str(event.details)

    def test_empty_code(self, db_session, now):
        with pytest.raises(InvalidCode):
            validate(db_session, "   ", IP, now=now)

    def test_revoked_code(self, db_session, make_code, now):
        code = make_code(is_revoked=True, revoked_at=now - timedelta(hours=1))
        with pytest.raises(InvalidCode):
            validate(db_session, code.code, IP, now=now)

        event = _events(db_session, SecurityEventType.REVOKED_CODE)[0]
        assert event.severity == "high"
        assert event.supplier_id == code.supplier_id

    def test_inactive_supplier(self, db_session, make_code, inactive_supplier, now):
        code = make_code(supplier_id=inactive_supplier.id)
        with pytest.raises(SupplierInactive):
            validate(db_session, code.code, IP, now=now)

        event = _events(db_session, SecurityEventType.INACTIVE_SUPPLIER)[0]
        assert event.severity == "high"
        db_session.refresh(code)
        assert code.is_used is False

    def test_all_rejections_share_public_message(self):
        messages = {cls.public_message for cls in (InvalidCode, CodeExpired, SupplierInactive)}
        assert messages == {AuthError.public_message}


class TestRateLimit:
    def _fail(self, db, n, now):
        for i in range(n):
            with pytest.raises(InvalidCode):
                validate(db, f"BAD{i:05d}", IP, now=now)

    def test_blocks_before_lookup(self, db_session, access_code, now):
        self._fail(db_session, settings.magic_code_max_failures, now)

        # Even a valid code is refused while the IP is blocked
        with pytest.raises(RateLimited):
            validate(db_session, access_code.code, IP, now=now + timedelta(seconds=5))

        db_session.refresh(access_code)
        assert access_code.access_count == 0
        blocked = _events(db_session, SecurityEventType.BRUTE_FORCE_BLOCKED)
        assert len(blocked) == 1
        assert blocked[0].severity == "critical"

    def test_one_brute_force_event_per_burst(self, db_session, now):
        self._fail(db_session, settings.magic_code_max_failures, now)
        for s in range(3):
            with pytest.raises(RateLimited):
                validate(db_session, "WHATEVER", IP, now=now + timedelta(seconds=s + 1))

        assert len(_events(db_session, SecurityEventType.BRUTE_FORCE_BLOCKED)) == 1
        # Rate-limited attempts are recorded but do not extend the block
        assert recent_failures(db_session, IP, settings.magic_code_failure_window_seconds, now=now) == (
            settings.magic_code_max_failures
        )

    def test_block_lifts_after_window(self, db_session, access_code, now):
        self._fail(db_session, settings.magic_code_max_failures, now)
        later = now + timedelta(seconds=settings.magic_code_failure_window_seconds + 1)
        session = validate(db_session, access_code.code, IP, now=later)
        assert session.supplier.id == access_code.supplier_id

    def test_other_ip_unaffected(self, db_session, access_code, now):
        self._fail(db_session, settings.magic_code_max_failures, now)
        session = validate(db_session, access_code.code, "198.51.100.1", now=now)
        assert session.access_code.access_count == 1

    def test_rate_limited_is_an_auth_error(self):
        assert issubclass(RateLimited, AuthError)
        assert RateLimited.status_code == 429


class TestExcessiveUsage:
    def test_signal_fires_once_on_crossing(self, db_session, access_code, now, monkeypatch):
        monkeypatch.setattr(settings, "magic_code_excessive_usage_threshold", 2)
        for i in range(5):
            validate(db_session, access_code.code, IP, now=now + timedelta(minutes=i))

        events = _events(db_session, SecurityEventType.EXCESSIVE_USAGE)
        assert len(events) == 1
        assert events[0].details["access_count"] == 3
        # Signal only: every use still succeeded
        db_session.refresh(access_code)
        assert access_code.access_count == 5


class TestBinding:
    def test_unbound_code_binds_to_latest_open_assistance(self, db_session, make_assistance, make_code, now):
        make_assistance()
        make_assistance(status="completed")
        newest_open = make_assistance()
        make_assistance(status="cancelled")
        code = make_code()

        session = validate(db_session, code.code, IP, now=now)

        assert session.assistance_id == newest_open.id
        db_session.refresh(code)
        assert code.assistance_id == newest_open.id

    def test_binding_happens_only_on_first_use(self, db_session, make_assistance, make_code, now):
        code = make_code()
        validate(db_session, code.code, IP, now=now)
        assert code.assistance_id is None

        make_assistance()
        session = validate(db_session, code.code, IP, now=now + timedelta(minutes=1))
        assert session.assistance_id is None

    def test_bound_code_keeps_its_assistance(self, db_session, make_assistance, access_code, now):
        make_assistance()
        session = validate(db_session, access_code.code, IP, now=now)
        assert session.assistance_id == access_code.assistance_id
