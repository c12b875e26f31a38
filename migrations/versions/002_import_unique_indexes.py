"""Unique indexes the history import conflicts on.

Apply to production helpdesks too: ON CONFLICT needs a matching unique index.

Revision ID: 002_import_unique_indexes
Revises: 001_helpdesk_subset
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "002_import_unique_indexes"
down_revision: Union[str, Sequence[str], None] = "001_helpdesk_subset"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_index(
        "uniq_identifier_per_account_contact",
        "contacts",
        ["identifier", "account_id"],
        unique=True,
        if_not_exists=True,
    )
    op.create_index(
        "uq_conversations_open_contact",
        "conversations",
        ["account_id", "inbox_id", "contact_id"],
        unique=True,
        postgresql_where=sa.text("status = 0"),
        if_not_exists=True,
    )
    op.create_index(
        "uq_messages_conversation_created_at",
        "messages",
        ["conversation_id", "created_at"],
        unique=True,
        if_not_exists=True,
    )
    op.create_index("uq_labels_title_account", "labels", ["title", "account_id"], unique=True, if_not_exists=True)
    op.create_index(
        "uq_taggings_tag_taggable",
        "taggings",
        ["tag_id", "taggable_type", "taggable_id", "context"],
        unique=True,
        if_not_exists=True,
    )


def downgrade() -> None:
    op.drop_index("uq_taggings_tag_taggable", table_name="taggings")
    op.drop_index("uq_labels_title_account", table_name="labels")
    op.drop_index("uq_messages_conversation_created_at", table_name="messages")
    op.drop_index("uq_conversations_open_contact", table_name="conversations")
    op.drop_index("uniq_identifier_per_account_contact", table_name="contacts")
