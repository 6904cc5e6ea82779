"""
dependencies.py — Shared FastAPI Dependencies

Admin authentication (session set by the external identity provider's
callback) and request metadata helpers. Suppliers never pass through
these: the portal authenticates every call with the magic code.

Business Rules:
- get_user returns None if not logged in (non-throwing)
- require_user raises 401 if not logged in, 403 if deactivated
- require_admin raises 403 if user.role != "admin"
- client_ip prefers the first X-Forwarded-For hop (app runs behind a proxy)

Called by: all routers
Depends on: models, database
"""

import logging

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from .database import get_db
from .models import User

log = logging.getLogger(__name__)


# ── Authentication ────────────────────────────────────────────────────


def get_user(request: Request, db: Session) -> User | None:
    """Return current user from session, or None if not logged in."""
    uid = request.session.get("user_id")
    if not uid:
        return None
    return db.get(User, uid)


def require_user(request: Request, db: Session = Depends(get_db)) -> User:
    """Dependency: raises 401 if no authenticated user, 403 if deactivated."""
    user = get_user(request, db)
    if not user:
        raise HTTPException(401, "Not authenticated")
    if not user.is_active:
        request.session.clear()
        raise HTTPException(403, "Account deactivated, contact an administrator")
    return user


def require_admin(request: Request, db: Session = Depends(get_db)) -> User:
    """Dependency: raises 403 if user is not an admin."""
    user = require_user(request, db)
    if user.role != "admin":
        raise HTTPException(403, "Admin access required")
    return user


# ── Request metadata ──────────────────────────────────────────────────


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")
