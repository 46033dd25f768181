"""record received quantity on order lines

Revision ID: 8b24e6d1c5a3
Revises: 3f1c9a2b7d10
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "8b24e6d1c5a3"
down_revision: Union[str, Sequence[str], None] = "3f1c9a2b7d10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # NULL on existing rows: legacy orders carry no reception record
    op.add_column("purchase_order_lines", sa.Column("received_quantity", sa.Integer(), nullable=True))


def downgrade() -> None:
    op.drop_column("purchase_order_lines", "received_quantity")
