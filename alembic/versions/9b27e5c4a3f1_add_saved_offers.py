"""add saved offers

Revision ID: 9b27e5c4a3f1
Revises: 4c1f2a9d7e10
Create Date: 2026-10-19 16:40:05.512904

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "9b27e5c4a3f1"
down_revision: Union[str, Sequence[str], None] = "4c1f2a9d7e10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "saved_offers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("offer_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["offer_id"], ["offers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "offer_id", name="uq_saved_offer_user_offer"),
    )
    op.create_index(
        "idx_saved_offers_user", "saved_offers", ["user_id", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("idx_saved_offers_user", table_name="saved_offers")
    op.drop_table("saved_offers")
