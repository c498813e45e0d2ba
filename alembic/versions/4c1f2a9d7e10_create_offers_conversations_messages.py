"""create offers, conversations and messages

Revision ID: 4c1f2a9d7e10
Revises:
Create Date: 2026-10-19 10:12:41.108233

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "4c1f2a9d7e10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "offers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("poster_id", sa.Integer(), nullable=False),
        sa.Column("taker_id", sa.Integer(), nullable=True),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "HELP_WANTED",
                "OFFERING_HELP",
                name="offertype",
                native_enum=False,
                length=20,
            ),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("price", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("requirements", sa.Text(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("attachments", sa.JSON(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "OPEN",
                "IN_PROGRESS",
                "COMPLETED",
                "CANCELLED",
                name="offerstatus",
                native_enum=False,
                length=20,
            ),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_requested_by", sa.Integer(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column(
            "cancellation_requested_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_offers_poster", "offers", ["poster_id", "status"])
    op.create_index("idx_offers_taker", "offers", ["taker_id", "status"])
    op.create_index("idx_offers_status_created", "offers", ["status", "created_at"])
    op.create_index("idx_offers_category", "offers", ["category_id"])

    op.create_table(
        "conversations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("offer_id", sa.Integer(), nullable=False),
        sa.Column("poster_id", sa.Integer(), nullable=False),
        sa.Column("interested_user_id", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["offer_id"], ["offers.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "offer_id", "interested_user_id", name="uq_conversation_offer_user"
        ),
    )
    op.create_index(
        "idx_conversations_poster", "conversations", ["poster_id", "last_message_at"]
    )
    op.create_index(
        "idx_conversations_interested",
        "conversations",
        ["interested_user_id", "last_message_at"],
    )
    op.create_index("idx_conversations_active", "conversations", ["is_active"])

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("conversation_id", sa.Integer(), nullable=False),
        sa.Column("sender_id", sa.Integer(), nullable=False),
        sa.Column(
            "message_type",
            sa.Enum(
                "TEXT",
                "OFFER_RESPONSE",
                "SYSTEM",
                "CANCELLATION_REQUEST",
                name="messagetype",
                native_enum=False,
                length=30,
            ),
            nullable=False,
        ),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column(
            "offer_response_type",
            sa.Enum(
                "ACCEPT",
                "DECLINE",
                "COUNTER_OFFER",
                name="offerresponsetype",
                native_enum=False,
                length=20,
            ),
            nullable=True,
        ),
        sa.Column("counter_offer_price", sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column("counter_offer_details", sa.Text(), nullable=True),
        sa.Column(
            "cancellation_request_type",
            sa.Enum(
                "REQUEST",
                "APPROVE",
                "DENY",
                name="cancellationrequesttype",
                native_enum=False,
                length=20,
            ),
            nullable=True,
        ),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("attachments", sa.JSON(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["conversation_id"], ["conversations.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_messages_conversation_created",
        "messages",
        ["conversation_id", "created_at"],
    )
    op.create_index(
        "idx_messages_unread", "messages", ["conversation_id", "is_read", "sender_id"]
    )


def downgrade() -> None:
    op.drop_index("idx_messages_unread", table_name="messages")
    op.drop_index("idx_messages_conversation_created", table_name="messages")
    op.drop_table("messages")
    op.drop_index("idx_conversations_active", table_name="conversations")
    op.drop_index("idx_conversations_interested", table_name="conversations")
    op.drop_index("idx_conversations_poster", table_name="conversations")
    op.drop_table("conversations")
    op.drop_index("idx_offers_category", table_name="offers")
    op.drop_index("idx_offers_status_created", table_name="offers")
    op.drop_index("idx_offers_taker", table_name="offers")
    op.drop_index("idx_offers_poster", table_name="offers")
    op.drop_table("offers")
