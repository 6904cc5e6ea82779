"""Assistance models — Assistance, SupplierResponse, ActivityLog, CommunicationLog."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime


class Assistance(Base):
    """Maintenance ticket. Status only changes through services/workflow.py."""

    __tablename__ = "assistances"
    id = Column(Integer, primary_key=True)
    assistance_number = Column(Integer, nullable=False, unique=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)

    building_id = Column(Integer, ForeignKey("buildings.id"), nullable=False)
    intervention_type_id = Column(Integer, ForeignKey("intervention_types.id"), nullable=False)
    assigned_supplier_id = Column(Integer, ForeignKey("suppliers.id"))

    priority = Column(String(10), default="normal", nullable=False)  # Priority
    status = Column(String(30), default="pending", nullable=False)  # AssistanceStatus

    # Quotation bookkeeping
    requires_quotation = Column(Boolean, default=False, nullable=False)
    quotation_requested_at = Column(UTCDateTime)
    quotation_deadline = Column(UTCDateTime)
    quotation_follow_up_count = Column(Integer, default=0, nullable=False)

    # Scheduling
    scheduled_start_date = Column(UTCDateTime)
    scheduled_end_date = Column(UTCDateTime)
    actual_start_date = Column(UTCDateTime)
    actual_end_date = Column(UTCDateTime)
    completed_date = Column(UTCDateTime)

    # Response / follow-up bookkeeping
    response_deadline = Column(UTCDateTime)
    follow_up_count = Column(Integer, default=0, nullable=False)
    last_follow_up_sent = Column(UTCDateTime)
    escalated_at = Column(UTCDateTime)

    # Validation
    requires_validation = Column(Boolean, default=False, nullable=False)
    validated_at = Column(UTCDateTime)
    validated_by_id = Column(Integer, ForeignKey("users.id"))

    cancelled_at = Column(UTCDateTime)
    cancellation_reason = Column(Text)

    admin_notes = Column(Text)
    supplier_notes = Column(Text)
    estimated_cost = Column(Numeric(12, 2))
    final_cost = Column(Numeric(12, 2))

    created_by_id = Column(Integer, ForeignKey("users.id"))
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    building = relationship("Building")
    intervention_type = relationship("InterventionType")
    supplier = relationship("Supplier", back_populates="assistances")
    quotations = relationship("Quotation", back_populates="assistance")
    validated_by = relationship("User", foreign_keys=[validated_by_id])
    created_by = relationship("User", foreign_keys=[created_by_id])

    __table_args__ = (
        Index("ix_assistances_status", "status"),
        Index("ix_assistances_supplier_status", "assigned_supplier_id", "status"),
        Index("ix_assistances_response_deadline", "response_deadline"),
    )


class SupplierResponse(Base):
    __tablename__ = "supplier_responses"
    id = Column(Integer, primary_key=True)
    assistance_id = Column(Integer, ForeignKey("assistances.id"), nullable=False)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False)
    response_type = Column(String(20), nullable=False)  # accepted | declined
    decline_reason = Column(Text)
    notes = Column(Text)
    scheduled_start_date = Column(UTCDateTime)
    scheduled_end_date = Column(UTCDateTime)
    estimated_duration_hours = Column(Numeric(6, 2))
    response_date = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (Index("ix_supplier_responses_assistance", "assistance_id"),)


class ActivityLog(Base):
    """Append-only audit trail of assistance transitions and system actions."""

    __tablename__ = "activity_log"
    id = Column(Integer, primary_key=True)
    assistance_id = Column(Integer, ForeignKey("assistances.id"))
    actor_type = Column(String(20), nullable=False)  # admin | supplier | system
    actor_id = Column(Integer)
    action = Column(String(50), nullable=False)
    from_status = Column(String(30))
    to_status = Column(String(30))
    notes = Column(Text)
    details = Column(JSON, default=dict)
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("ix_activity_assistance_created", "assistance_id", "created_at"),
    )


class CommunicationLog(Base):
    """Messages exchanged between a supplier and administration on one assistance."""

    __tablename__ = "communications_log"
    id = Column(Integer, primary_key=True)
    assistance_id = Column(Integer, ForeignKey("assistances.id"), nullable=False)
    sender_type = Column(String(20), nullable=False)  # admin | supplier
    sender_id = Column(Integer)
    message = Column(Text, nullable=False)
    message_type = Column(String(30), default="general")
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (Index("ix_communications_assistance", "assistance_id"),)
