"""Supplier access models — AccessCode, AccessAttempt, SecurityEvent.

AccessAttempt and SecurityEvent are append-only ledgers: rows are
inserted, never updated or deleted.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime


class AccessCode(Base):
    """Opaque multi-use magic code bound to a supplier (and optionally one assistance)."""

    __tablename__ = "supplier_access_codes"
    id = Column(Integer, primary_key=True)
    supplier_id = Column(
        Integer, ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False
    )
    code = Column(String(64), nullable=False, unique=True)
    assistance_id = Column(Integer, ForeignKey("assistances.id", ondelete="SET NULL"))

    expires_at = Column(UTCDateTime, nullable=False)
    session_expires_at = Column(UTCDateTime)
    is_used = Column(Boolean, default=False, nullable=False)
    access_count = Column(Integer, default=0, nullable=False)
    last_used_at = Column(UTCDateTime)

    is_revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(UTCDateTime)

    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))

    supplier = relationship("Supplier", back_populates="access_codes")
    assistance = relationship("Assistance", foreign_keys=[assistance_id])

    __table_args__ = (
        Index("ix_access_codes_supplier", "supplier_id"),
        Index("ix_access_codes_expires", "expires_at"),
    )


class AccessAttempt(Base):
    """Every presented code, hashed, with the caller address and outcome."""

    __tablename__ = "access_attempts"
    id = Column(Integer, primary_key=True)
    code_hash = Column(String(64), nullable=False)
    ip_address = Column(String(64), nullable=False)
    user_agent = Column(String(500))
    success = Column(Boolean, nullable=False)
    outcome = Column(String(30), nullable=False)  # AttemptOutcome
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="SET NULL"))
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index("ix_access_attempts_ip_created", "ip_address", "created_at"),
        Index("ix_access_attempts_code_hash", "code_hash"),
    )


class SecurityEvent(Base):
    __tablename__ = "security_events"
    id = Column(Integer, primary_key=True)
    event_type = Column(String(50), nullable=False)  # SecurityEventType
    severity = Column(String(10), nullable=False)  # low | medium | high | critical
    ip_address = Column(String(64))
    user_agent = Column(String(500))
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="SET NULL"))
    details = Column(JSON, default=dict)
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index("ix_security_events_type_created", "event_type", "created_at"),
        Index("ix_security_events_ip_created", "ip_address", "created_at"),
        Index("ix_security_events_severity", "severity"),
    )
