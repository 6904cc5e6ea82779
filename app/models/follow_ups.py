"""Follow-up scheduling models — FollowUpSchedule and the Notification outbox."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime


class FollowUpSchedule(Base):
    """Pending reminder for one (assistance, follow-up type)."""

    __tablename__ = "follow_up_schedules"
    id = Column(Integer, primary_key=True)
    assistance_id = Column(Integer, ForeignKey("assistances.id"), nullable=False)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"))
    follow_up_type = Column(String(20), nullable=False)  # FollowUpType
    priority = Column(String(10), default="normal", nullable=False)

    scheduled_for = Column(UTCDateTime, nullable=False)
    next_attempt_at = Column(UTCDateTime, nullable=False)
    sent_at = Column(UTCDateTime)
    attempt_count = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=3, nullable=False)
    status = Column(String(20), default="pending", nullable=False)  # FollowUpStatus
    last_error = Column(Text)
    claimed_at = Column(UTCDateTime)  # set when a sweep moves the row to processing
    metadata_json = Column("metadata", JSON, default=dict)

    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    assistance = relationship("Assistance")
    supplier = relationship("Supplier")

    __table_args__ = (
        Index("ix_follow_ups_status_next", "status", "next_attempt_at"),
        # One active schedule per (assistance, type)
        Index(
            "uq_follow_ups_active",
            "assistance_id",
            "follow_up_type",
            unique=True,
            postgresql_where=text("status IN ('pending', 'processing')"),
            sqlite_where=text("status IN ('pending', 'processing')"),
        ),
    )


class Notification(Base):
    """Outbox row for the external notifier. The core never renders or delivers."""

    __tablename__ = "notifications"
    id = Column(Integer, primary_key=True)
    recipient_email = Column(String(255), nullable=False)
    template_id = Column(String(50), nullable=False)  # NotificationTemplate
    payload = Column(JSON, default=dict)
    status = Column(String(20), default="queued", nullable=False)  # NotificationStatus
    assistance_id = Column(Integer, ForeignKey("assistances.id"))
    follow_up_id = Column(Integer, ForeignKey("follow_up_schedules.id"))
    error = Column(Text)
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))
    sent_at = Column(UTCDateTime)

    __table_args__ = (
        Index("ix_notifications_status_created", "status", "created_at"),
        Index("ix_notifications_assistance", "assistance_id"),
    )
