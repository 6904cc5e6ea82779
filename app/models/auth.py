"""Admin user model.

Admins are authenticated by the external identity provider; this table
only records who they are so transitions can be attributed.
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, String

from .base import Base, UTCDateTime


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(255))
    role = Column(String(20), default="admin")  # admin | employee
    is_active = Column(Boolean, default=True)
    external_id = Column(String(255), unique=True)
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))
