"""Create users table, indexes and updated_at trigger

Revision ID: 20251101080738_init
Revises:
Create Date: 2025-11-01 08:07:38

"""

from typing import Sequence, Union

from alembic import op

from identitystore.database.schema import SchemaManager


# revision identifiers, used by Alembic.
revision: str = "20251101080738_init"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    SchemaManager(op.get_bind()).apply()


def downgrade() -> None:
    """Downgrade schema."""
    SchemaManager(op.get_bind()).revert()
