"""Helpdesk schema subset touched by the history import: contacts, conversations, messages, labels, tags."""

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

CONVERSATION_STATUS_OPEN = 0
MESSAGE_TYPE_INCOMING = 0
MESSAGE_TYPE_OUTGOING = 1
CONTENT_TYPE_TEXT = 0
ROLE_ADMINISTRATOR = 1


class Base(DeclarativeBase):
    pass


class Contact(Base):
    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False)
    identifier: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint(
            "identifier", "account_id", name="uniq_identifier_per_account_contact"
        ),
    )


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False)
    inbox_id: Mapped[int] = mapped_column(Integer, nullable=False)
    contact_id: Mapped[int] = mapped_column(
        ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[int] = mapped_column(
        Integer, nullable=False, default=CONVERSATION_STATUS_OPEN
    )
    last_activity_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        # One open conversation per contact and inbox; the resolver's get-or-create conflicts on it.
        Index(
            "uq_conversations_open_contact",
            "account_id",
            "inbox_id",
            "contact_id",
            unique=True,
            postgresql_where=text("status = 0"),
        ),
    )


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False)
    inbox_id: Mapped[int] = mapped_column(Integer, nullable=False)
    conversation_id: Mapped[int] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    message_type: Mapped[int] = mapped_column(
        Integer, nullable=False, default=MESSAGE_TYPE_INCOMING
    )
    private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    content_type: Mapped[int] = mapped_column(
        Integer, nullable=False, default=CONTENT_TYPE_TEXT
    )
    sender_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sender_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    source_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "conversation_id", "created_at", name="uq_messages_conversation_created_at"
        ),
        Index("ix_messages_source_id", "source_id"),
    )


class Label(Base):
    __tablename__ = "labels"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str] = mapped_column(String(16), nullable=False, default="#1f93ff")
    show_on_sidebar: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("title", "account_id", name="uq_labels_title_account"),
    )


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    taggings_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Tagging(Base):
    __tablename__ = "taggings"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    tag_id: Mapped[int] = mapped_column(
        ForeignKey("tags.id", ondelete="CASCADE"), nullable=False
    )
    taggable_type: Mapped[str] = mapped_column(String(255), nullable=False)
    taggable_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tagger_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tagger_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    context: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "tag_id", "taggable_type", "taggable_id", "context", name="uq_taggings_tag_taggable"
        ),
    )


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    type: Mapped[str | None] = mapped_column(String(64), nullable=True)


class AccountUser(Base):
    __tablename__ = "account_users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
