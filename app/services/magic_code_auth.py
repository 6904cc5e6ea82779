"""
magic_code_auth.py — Passwordless supplier authentication

Validates a presented magic code and opens (or extends) the supplier's
session window. Every mutating portal action calls validate() again;
nothing is cached between requests except session_expires_at.

Business Rules:
- Rate limit first: an IP with >= magic_code_max_failures counted
  failures inside the sliding window is refused before any code lookup
- Unknown and revoked codes fail as InvalidCode; callers see one vague
  message for every auth failure, SecurityEvents keep the precise reason
- Expired codes still authenticate during the grace period (with a
  low-severity event); past it they fail as CodeExpired
- Codes of inactive suppliers never authenticate (high-severity event)
- Success: access_count + 1, last_used_at, session_expires_at extended
  to now + supplier_session_minutes and never moved backward; expires_at
  is never touched
- Crossing the excessive-usage threshold is a signal, not a denial
- First successful use binds an unbound code to the supplier's most
  recently created open assistance
- Every rejection is committed before the error is raised

Called by: services/portal_service.py, routers/portal.py
Depends on: services/access_codes.py, services/security_log.py, models
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import case, literal, or_, update
from sqlalchemy.orm import Session

from ..config import settings
from ..constants import OPEN_STATUSES, AttemptOutcome, SecurityEventType, Severity
from ..exceptions import CodeExpired, InvalidCode, RateLimited, SupplierInactive
from ..logging_config import mask_code
from ..models import AccessCode, Assistance, Supplier
from ..utils import utc, utcnow
from .access_codes import find_code, normalize_code
from .security_log import (
    log_security_event,
    record_attempt,
    record_brute_force_block,
    recent_failures,
)

log = logging.getLogger("condo.auth")


@dataclass
class SupplierSession:
    supplier: Supplier
    access_code: AccessCode
    assistance_id: int | None
    session_expires_at: datetime
    renewed: bool = False
    in_grace_period: bool = False


def _reject(
    db: Session,
    *,
    code: str,
    ip: str,
    user_agent: str | None,
    outcome: AttemptOutcome,
    event: SecurityEventType,
    severity: Severity,
    details: dict,
    supplier_id: int | None = None,
    now: datetime,
) -> None:
    """Record a failed attempt and its security event, durably."""
    record_attempt(
        db, code=code, ip=ip, user_agent=user_agent, outcome=outcome,
        supplier_id=supplier_id, now=now,
    )
    log_security_event(
        db, event, severity, ip=ip, user_agent=user_agent,
        supplier_id=supplier_id, details={"code_prefix": mask_code(code), **details}, now=now,
    )
    db.commit()


def _latest_open_assistance(db: Session, supplier_id: int) -> Assistance | None:
    return (
        db.query(Assistance)
        .filter(
            Assistance.assigned_supplier_id == supplier_id,
            Assistance.status.in_([s.value for s in OPEN_STATUSES]),
        )
        .order_by(Assistance.created_at.desc(), Assistance.id.desc())
        .first()
    )


def validate(
    db: Session,
    code: str | None,
    ip: str | None,
    user_agent: str | None = None,
    *,
    now: datetime | None = None,
) -> SupplierSession:
    """Authenticate a presented code. Raises an AuthError subclass on failure."""
    now = now or utcnow()
    ip = ip or "unknown"
    presented = normalize_code(code)
    window = settings.magic_code_failure_window_seconds

    # 1. Rate limit, before any code store access
    failures = recent_failures(db, ip, window, now=now)
    if failures >= settings.magic_code_max_failures:
        record_attempt(
            db, code=presented, ip=ip, user_agent=user_agent,
            outcome=AttemptOutcome.RATE_LIMITED, now=now,
        )
        record_brute_force_block(
            db, ip=ip, user_agent=user_agent, failures=failures,
            window_seconds=window, now=now,
        )
        db.commit()
        log.warning(f"Magic code attempt from {ip} blocked ({failures} recent failures)")
        raise RateLimited(f"{failures} failed attempts from {ip} in {window}s")

    # 2. Lookup
    access_code = find_code(db, presented) if presented else None
    if access_code is None:
        _reject(
            db, code=presented, ip=ip, user_agent=user_agent,
            outcome=AttemptOutcome.INVALID, event=SecurityEventType.INVALID_CODE,
            severity=Severity.MEDIUM, details={}, now=now,
        )
        raise InvalidCode("Unknown access code")
    if access_code.is_revoked:
        _reject(
            db, code=presented, ip=ip, user_agent=user_agent,
            outcome=AttemptOutcome.REVOKED, event=SecurityEventType.REVOKED_CODE,
            severity=Severity.HIGH, supplier_id=access_code.supplier_id,
            details={"revoked_at": access_code.revoked_at.isoformat() if access_code.revoked_at else None},
            now=now,
        )
        raise InvalidCode("Revoked access code")

    # 3. Expiry with grace period
    expires_at = utc(access_code.expires_at)
    in_grace = False
    if now > expires_at:
        grace_end = expires_at + timedelta(minutes=settings.magic_code_grace_minutes)
        if now > grace_end:
            _reject(
                db, code=presented, ip=ip, user_agent=user_agent,
                outcome=AttemptOutcome.EXPIRED, event=SecurityEventType.EXPIRED_REJECTED,
                severity=Severity.MEDIUM, supplier_id=access_code.supplier_id,
                details={
                    "expired_at": expires_at.isoformat(),
                    "minutes_past_expiry": int((now - expires_at).total_seconds() // 60),
                },
                now=now,
            )
            raise CodeExpired("Access code expired")
        in_grace = True

    # 4. Supplier must be active
    supplier = db.get(Supplier, access_code.supplier_id)
    if supplier is None or not supplier.is_active:
        _reject(
            db, code=presented, ip=ip, user_agent=user_agent,
            outcome=AttemptOutcome.INACTIVE_SUPPLIER, event=SecurityEventType.INACTIVE_SUPPLIER,
            severity=Severity.HIGH, supplier_id=access_code.supplier_id,
            details={"supplier_id": access_code.supplier_id}, now=now,
        )
        raise SupplierInactive("Supplier is inactive")

    if in_grace:
        log_security_event(
            db, SecurityEventType.EXPIRED_GRACE_PERIOD, Severity.LOW,
            ip=ip, user_agent=user_agent, supplier_id=supplier.id,
            details={"code_prefix": mask_code(presented), "expired_at": expires_at.isoformat()},
            now=now,
        )

    # 5. Success: atomic counter, session window only moves forward
    prior_session = utc(access_code.session_expires_at)
    first_use = not access_code.is_used
    new_session = now + timedelta(minutes=settings.supplier_session_minutes)
    new_session_lit = literal(new_session, AccessCode.session_expires_at.type)
    db.execute(
        update(AccessCode)
        .where(AccessCode.id == access_code.id)
        .values(
            access_count=AccessCode.access_count + 1,
            last_used_at=now,
            is_used=True,
            session_expires_at=case(
                (
                    or_(
                        AccessCode.session_expires_at.is_(None),
                        AccessCode.session_expires_at < new_session_lit,
                    ),
                    new_session_lit,
                ),
                else_=AccessCode.session_expires_at,
            ),
        )
        .execution_options(synchronize_session=False)
    )
    db.refresh(access_code)

    renewed = prior_session is not None and prior_session < now
    if renewed:
        log_security_event(
            db, SecurityEventType.AUTO_RENEWED, Severity.LOW,
            ip=ip, user_agent=user_agent, supplier_id=supplier.id,
            details={
                "code_prefix": mask_code(presented),
                "previous_session_expired_at": prior_session.isoformat(),
            },
            now=now,
        )

    record_attempt(
        db, code=presented, ip=ip, user_agent=user_agent,
        outcome=AttemptOutcome.SUCCESS, supplier_id=supplier.id, now=now,
    )

    threshold = settings.magic_code_excessive_usage_threshold
    if access_code.access_count - 1 <= threshold < access_code.access_count:
        log_security_event(
            db, SecurityEventType.EXCESSIVE_USAGE, Severity.MEDIUM,
            ip=ip, user_agent=user_agent, supplier_id=supplier.id,
            details={"code_prefix": mask_code(presented), "access_count": access_code.access_count},
            now=now,
        )

    # 6. First use binds an unbound code to the supplier's current open assistance
    if first_use and access_code.assistance_id is None:
        assistance = _latest_open_assistance(db, supplier.id)
        if assistance is not None:
            db.execute(
                update(AccessCode)
                .where(AccessCode.id == access_code.id, AccessCode.assistance_id.is_(None))
                .values(assistance_id=assistance.id)
                .execution_options(synchronize_session=False)
            )
            db.refresh(access_code)

    db.commit()
    log.info(
        f"Supplier {supplier.id} authenticated with {mask_code(presented)} "
        f"(uses={access_code.access_count}, grace={in_grace})"
    )
    return SupplierSession(
        supplier=supplier,
        access_code=access_code,
        assistance_id=access_code.assistance_id,
        session_expires_at=utc(access_code.session_expires_at),
        renewed=renewed,
        in_grace_period=in_grace,
    )
