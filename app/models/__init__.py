"""Database models — re-exports all models.

Import from here:  from app.models import Assistance, Supplier, ...
Or from submodules: from app.models.access import AccessCode
"""

from .base import Base  # noqa: F401

# Admin users
from .auth import User  # noqa: F401

# Suppliers & reference data
from .suppliers import Building, InterventionType, Supplier  # noqa: F401

# Assistances & audit
from .assistance import (  # noqa: F401
    ActivityLog,
    Assistance,
    CommunicationLog,
    SupplierResponse,
)

# Quotations
from .quotations import Quotation  # noqa: F401

# Supplier access
from .access import AccessAttempt, AccessCode, SecurityEvent  # noqa: F401

# Follow-ups & notification outbox
from .follow_ups import FollowUpSchedule, Notification  # noqa: F401
