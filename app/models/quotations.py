"""Quotation model."""

from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Index, Integer, Numeric, String, Text, text
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime


class Quotation(Base):
    """A supplier's priced proposal for one assistance, subject to admin approval."""

    __tablename__ = "quotations"
    id = Column(Integer, primary_key=True)
    assistance_id = Column(Integer, ForeignKey("assistances.id"), nullable=False)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False)

    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(Text)
    notes = Column(Text)
    validity_days = Column(Integer, default=30, nullable=False)

    status = Column(String(20), default="pending", nullable=False)  # QuotationStatus
    submitted_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))
    approved_at = Column(UTCDateTime)
    approved_by_id = Column(Integer, ForeignKey("users.id"))
    rejected_at = Column(UTCDateTime)
    rejection_reason = Column(Text)
    expired_at = Column(UTCDateTime)

    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))

    assistance = relationship("Assistance", back_populates="quotations")
    supplier = relationship("Supplier")
    approved_by = relationship("User", foreign_keys=[approved_by_id])

    __table_args__ = (
        Index("ix_quotations_assistance", "assistance_id"),
        Index("ix_quotations_status", "status"),
        # At most one approved quotation per assistance
        Index(
            "uq_quotations_one_approved",
            "assistance_id",
            unique=True,
            postgresql_where=text("status = 'approved'"),
            sqlite_where=text("status = 'approved'"),
        ),
    )
