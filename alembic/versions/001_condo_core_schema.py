"""condo core schema - suppliers, access codes, assistances, quotations, follow-ups

Revision ID: 001_condo_core
Revises: None
Create Date: 2026-10-17

Creates every table from the model metadata, including the partial unique
indexes (one approved quotation per assistance, one active follow-up per
assistance and type).
"""
from typing import Sequence, Union

from alembic import op

revision: str = "001_condo_core"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    from app.models import Base

    Base.metadata.create_all(bind=op.get_bind(), checkfirst=True)


def downgrade() -> None:
    """Drop all tables. Destructive: dev/test environments only."""
    from app.models import Base

    Base.metadata.drop_all(bind=op.get_bind())
