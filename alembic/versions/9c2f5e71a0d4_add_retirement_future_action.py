"""Add future-instance action to template retirement

Revision ID: 9c2f5e71a0d4
Revises: 4a6e0c2d9b13
Create Date: 2026-10-17

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "9c2f5e71a0d4"
down_revision: Union[str, Sequence[str], None] = "4a6e0c2d9b13"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.add_column("templates", sa.Column("future_action", sa.String(), nullable=False, server_default="keep"))
    op.add_column("templates", sa.Column("delete_after_date", sa.Date(), nullable=True))


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_column("templates", "delete_after_date")
    op.drop_column("templates", "future_action")
