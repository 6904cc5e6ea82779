"""
tests/test_security_log.py — Tests for the attempt ledger and security events

Covers: hashed codes, sliding-window failure counting, brute-force event
de-duplication, event listing filters and the summary counts.

Called by: pytest
Depends on: app.services.security_log
"""

from datetime import timedelta

from app.constants import AttemptOutcome, SecurityEventType, Severity
from app.models import AccessAttempt
from app.services.security_log import (
    hash_code,
    list_security_events,
    log_security_event,
    record_attempt,
    record_brute_force_block,
    recent_failures,
    security_summary,
)

IP = "192.0.2.10"


def test_hash_code_is_sha256_hex():
    h = hash_code("ABCD2345")
    assert len(h) == 64
    assert h == hash_code("ABCD2345")
    assert h != hash_code("ABCD2346")


def test_record_attempt_stores_hash_and_truncates_agent(db_session, now):
    record_attempt(
        db_session, code="ABCD2345", ip=IP, user_agent="x" * 900,
        outcome=AttemptOutcome.INVALID, now=now,
    )
    row = db_session.query(AccessAttempt).one()
    assert row.code_hash == hash_code("ABCD2345")
    assert len(row.user_agent) == 500
    assert row.success is False


class TestRecentFailures:
    def test_counts_only_window_and_ip(self, db_session, now):
        record_attempt(db_session, code="A", ip=IP, user_agent=None, outcome=AttemptOutcome.INVALID, now=now)
        record_attempt(db_session, code="B", ip=IP, user_agent=None, outcome=AttemptOutcome.EXPIRED, now=now)
        record_attempt(
            db_session, code="C", ip=IP, user_agent=None, outcome=AttemptOutcome.INVALID,
            now=now - timedelta(minutes=5),
        )
        record_attempt(db_session, code="D", ip="10.0.0.1", user_agent=None, outcome=AttemptOutcome.INVALID, now=now)

        assert recent_failures(db_session, IP, 60, now=now) == 2

    def test_ignores_success_and_rate_limited(self, db_session, now):
        record_attempt(db_session, code="A", ip=IP, user_agent=None, outcome=AttemptOutcome.SUCCESS, now=now)
        record_attempt(db_session, code="A", ip=IP, user_agent=None, outcome=AttemptOutcome.RATE_LIMITED, now=now)
        assert recent_failures(db_session, IP, 60, now=now) == 0


class TestBruteForceBlock:
    def test_recorded_once_per_window(self, db_session, now):
        first = record_brute_force_block(db_session, ip=IP, user_agent=None, failures=5, window_seconds=60, now=now)
        second = record_brute_force_block(
            db_session, ip=IP, user_agent=None, failures=6, window_seconds=60, now=now + timedelta(seconds=30)
        )
        assert first is not None
        assert first.severity == Severity.CRITICAL.value
        assert first.details == {"failed_attempts": 5, "window_seconds": 60}
        assert second is None

    def test_new_burst_after_window(self, db_session, now):
        record_brute_force_block(db_session, ip=IP, user_agent=None, failures=5, window_seconds=60, now=now)
        again = record_brute_force_block(
            db_session, ip=IP, user_agent=None, failures=5, window_seconds=60, now=now + timedelta(minutes=2)
        )
        assert again is not None


class TestListing:
    def _seed(self, db, now):
        log_security_event(db, SecurityEventType.INVALID_CODE, Severity.MEDIUM, ip=IP, now=now - timedelta(hours=2))
        log_security_event(db, SecurityEventType.REVOKED_CODE, Severity.HIGH, ip=IP, now=now - timedelta(hours=1))
        log_security_event(db, SecurityEventType.INVALID_CODE, Severity.MEDIUM, ip="10.0.0.2", now=now)
        db.commit()

    def test_newest_first(self, db_session, now):
        self._seed(db_session, now)
        events = list_security_events(db_session)
        assert [e.ip_address for e in events] == ["10.0.0.2", IP, IP]

    def test_filters(self, db_session, now):
        self._seed(db_session, now)
        assert len(list_security_events(db_session, event_type=SecurityEventType.INVALID_CODE.value)) == 2
        assert len(list_security_events(db_session, severity="high")) == 1
        assert len(list_security_events(db_session, ip=IP)) == 2
        assert len(list_security_events(db_session, since=now - timedelta(minutes=90))) == 2
        assert len(list_security_events(db_session, limit=1)) == 1

    def test_summary(self, db_session, now):
        self._seed(db_session, now)
        record_attempt(db_session, code="A", ip=IP, user_agent=None, outcome=AttemptOutcome.SUCCESS, now=now)
        record_attempt(db_session, code="B", ip=IP, user_agent=None, outcome=AttemptOutcome.INVALID, now=now)
        db_session.commit()

        summary = security_summary(db_session, since=now - timedelta(days=1))
        assert summary["events_by_type"][SecurityEventType.INVALID_CODE.value] == 2
        assert summary["events_by_severity"]["high"] == 1
        assert summary["successful_attempts"] == 1
        assert summary["failed_attempts"] == 1
