"""
monitoring.py — Security Events & Follow-up Router

Read-only views for the security monitoring and follow-up dashboards,
plus the manual "process now" trigger for the follow-up sweep (the same
function the scheduler runs; an external cron may call it too).

Business Rules:
- Admin only
- Security events are listed newest first; filters are exact matches
- POST /api/follow-ups/process is safe to call repeatedly

Called by: main.py (router mount)
Depends on: services/security_log.py, services/follow_ups.py
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from loguru import logger
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import require_admin
from ..models import User
from ..schemas.assistances import follow_up_out, security_event_out
from ..services.follow_ups import follow_up_stats, list_follow_ups, process_pending_follow_ups
from ..services.security_log import list_security_events, security_summary

router = APIRouter(tags=["monitoring"])


@router.get("/api/security/events")
async def security_events(
    event_type: str | None = None,
    severity: str | None = None,
    ip: str | None = None,
    since: datetime | None = None,
    limit: int = 200,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    events = list_security_events(
        db, event_type=event_type, severity=severity, ip=ip, since=since, limit=min(limit, 1000)
    )
    return [security_event_out(e) for e in events]


@router.get("/api/security/summary")
async def security_overview(
    since: datetime | None = None, user: User = Depends(require_admin), db: Session = Depends(get_db)
):
    return security_summary(db, since)


@router.get("/api/follow-ups")
async def follow_ups(
    status: str | None = None,
    follow_up_type: str | None = None,
    priority: str | None = None,
    limit: int = 200,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    items = list_follow_ups(
        db, status=status, follow_up_type=follow_up_type, priority=priority, limit=min(limit, 1000)
    )
    return [follow_up_out(f) for f in items]


@router.get("/api/follow-ups/stats")
async def follow_ups_stats(user: User = Depends(require_admin), db: Session = Depends(get_db)):
    return follow_up_stats(db)


@router.post("/api/follow-ups/process")
async def process_follow_ups(user: User = Depends(require_admin), db: Session = Depends(get_db)):
    result = process_pending_follow_ups(db)
    logger.info("Manual follow-up sweep by {}: {}", user.email, result)
    return result
