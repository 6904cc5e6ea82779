"""Supplier directory and reference records (Building, InterventionType)."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime


class Supplier(Base):
    __tablename__ = "suppliers"
    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(50))
    address = Column(String(500))
    specialization = Column(String(255))
    nif = Column(String(20))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))

    access_codes = relationship("AccessCode", back_populates="supplier")
    assistances = relationship("Assistance", back_populates="supplier")

    __table_args__ = (Index("ix_suppliers_email", "email"),)


class Building(Base):
    __tablename__ = "buildings"
    id = Column(Integer, primary_key=True)
    code = Column(String(20), unique=True)
    name = Column(String(255), nullable=False)
    address = Column(String(500))
    admin_notes = Column(Text)
    is_active = Column(Boolean, default=True)
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))


class InterventionType(Base):
    __tablename__ = "intervention_types"
    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False, unique=True)
    category = Column(String(100))
    urgency_level = Column(String(20), default="normal")
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))
