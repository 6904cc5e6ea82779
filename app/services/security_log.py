"""
security_log.py — Attempt ledger and security events

Append-only records of every presented access code and every anomaly the
authenticator detects. Read by the rate limiter (sliding window per IP)
and by the admin monitoring endpoints.

Business Rules:
- Presented codes are stored as SHA-256 hashes, never raw
- Rows are only ever inserted (no updates, no deletes)
- Writes are flushed immediately; the authenticator commits before
  returning an error so rejected attempts are durable
- A brute-force event is recorded once per blocked burst: a new one is
  only written if the IP has no brute-force event inside the current window

Called by: services/magic_code_auth.py, services/access_codes.py, routers/admin.py
Depends on: models (AccessAttempt, SecurityEvent), constants
"""

import hashlib
import logging
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..constants import COUNTED_FAILURES, AttemptOutcome, SecurityEventType, Severity
from ..models import AccessAttempt, SecurityEvent
from ..utils import utcnow

log = logging.getLogger("condo.security")


def hash_code(code: str) -> str:
    return hashlib.sha256((code or "").encode("utf-8")).hexdigest()


# ── Attempt ledger ────────────────────────────────────────────────────


def record_attempt(
    db: Session,
    *,
    code: str,
    ip: str,
    user_agent: str | None,
    outcome: AttemptOutcome,
    supplier_id: int | None = None,
    now: datetime | None = None,
) -> AccessAttempt:
    attempt = AccessAttempt(
        code_hash=hash_code(code),
        ip_address=ip,
        user_agent=(user_agent or "")[:500] or None,
        success=outcome == AttemptOutcome.SUCCESS,
        outcome=outcome.value,
        supplier_id=supplier_id,
        created_at=now or utcnow(),
    )
    db.add(attempt)
    db.flush()
    return attempt


def recent_failures(db: Session, ip: str, window_seconds: int, now: datetime | None = None) -> int:
    """Count failed attempts from `ip` in the trailing window."""
    cutoff = (now or utcnow()) - timedelta(seconds=window_seconds)
    return (
        db.query(func.count(AccessAttempt.id))
        .filter(
            AccessAttempt.ip_address == ip,
            AccessAttempt.created_at >= cutoff,
            AccessAttempt.outcome.in_([o.value for o in COUNTED_FAILURES]),
        )
        .scalar()
        or 0
    )


# ── Security events ───────────────────────────────────────────────────


def log_security_event(
    db: Session,
    event_type: SecurityEventType,
    severity: Severity,
    *,
    ip: str | None = None,
    user_agent: str | None = None,
    supplier_id: int | None = None,
    details: dict | None = None,
    now: datetime | None = None,
) -> SecurityEvent:
    event = SecurityEvent(
        event_type=event_type.value,
        severity=severity.value,
        ip_address=ip,
        user_agent=(user_agent or "")[:500] or None,
        supplier_id=supplier_id,
        details=details or {},
        created_at=now or utcnow(),
    )
    db.add(event)
    db.flush()
    if severity in (Severity.HIGH, Severity.CRITICAL):
        log.warning(f"Security event {event_type.value} ({severity.value}) from {ip}")
    else:
        log.info(f"Security event {event_type.value} from {ip}")
    return event


def record_brute_force_block(
    db: Session,
    *,
    ip: str,
    user_agent: str | None,
    failures: int,
    window_seconds: int,
    now: datetime | None = None,
) -> SecurityEvent | None:
    """Record a brute-force block unless one already exists for this burst."""
    now = now or utcnow()
    cutoff = now - timedelta(seconds=window_seconds)
    already = (
        db.query(SecurityEvent.id)
        .filter(
            SecurityEvent.event_type == SecurityEventType.BRUTE_FORCE_BLOCKED.value,
            SecurityEvent.ip_address == ip,
            SecurityEvent.created_at >= cutoff,
        )
        .first()
    )
    if already:
        return None
    return log_security_event(
        db,
        SecurityEventType.BRUTE_FORCE_BLOCKED,
        Severity.CRITICAL,
        ip=ip,
        user_agent=user_agent,
        details={"failed_attempts": failures, "window_seconds": window_seconds},
        now=now,
    )


def list_security_events(
    db: Session,
    *,
    event_type: str | None = None,
    severity: str | None = None,
    ip: str | None = None,
    since: datetime | None = None,
    limit: int = 200,
) -> list[SecurityEvent]:
    q = db.query(SecurityEvent).order_by(SecurityEvent.created_at.desc(), SecurityEvent.id.desc())
    if event_type:
        q = q.filter(SecurityEvent.event_type == event_type)
    if severity:
        q = q.filter(SecurityEvent.severity == severity)
    if ip:
        q = q.filter(SecurityEvent.ip_address == ip)
    if since:
        q = q.filter(SecurityEvent.created_at >= since)
    return q.limit(limit).all()


def security_summary(db: Session, since: datetime | None = None) -> dict:
    """Counts by event type and severity, plus attempt totals, for the monitoring UI."""
    since = since or (utcnow() - timedelta(hours=24))
    by_type = dict(
        db.query(SecurityEvent.event_type, func.count(SecurityEvent.id))
        .filter(SecurityEvent.created_at >= since)
        .group_by(SecurityEvent.event_type)
        .all()
    )
    by_severity = dict(
        db.query(SecurityEvent.severity, func.count(SecurityEvent.id))
        .filter(SecurityEvent.created_at >= since)
        .group_by(SecurityEvent.severity)
        .all()
    )
    attempts = dict(
        db.query(AccessAttempt.success, func.count(AccessAttempt.id))
        .filter(AccessAttempt.created_at >= since)
        .group_by(AccessAttempt.success)
        .all()
    )
    return {
        "since": since.isoformat(),
        "events_by_type": by_type,
        "events_by_severity": by_severity,
        "successful_attempts": attempts.get(True, 0),
        "failed_attempts": attempts.get(False, 0),
    }
