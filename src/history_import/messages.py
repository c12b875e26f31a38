"""
Message import: commit staged messages into helpdesk conversations, in chat order.

Messages are sorted by (phone number, timestamp), resolved to a contact and its
open conversation chunk by chunk, and inserted with ON CONFLICT DO NOTHING on
(conversation_id, created_at). created_at is the only ordering signal the helpdesk
has, so messages sharing a second get consecutive microsecond offsets; replaying
the same staged data yields the same created_at values and inserts nothing new.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Sequence, TypeVar

import httpx
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import Insert, insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from helpdesk.config import settings
from helpdesk.models import (
    CONTENT_TYPE_TEXT,
    MESSAGE_TYPE_INCOMING,
    MESSAGE_TYPE_OUTGOING,
    ROLE_ADMINISTRATOR,
    AccountUser,
    Message,
    User,
)
from history_import.chunking import drain_chunks
from history_import.content import message_content
from history_import.errors import ActingUserNotFound
from history_import.identifiers import unix_timestamp
from history_import.resolver import FkPair, KeyResolver, TimestampRange, get_resolver
from history_import.staging import StagedMessage, StagingStore

logger = logging.getLogger(__name__)

SOURCE_ID_PREFIX = "WAID:"

T = TypeVar("T")


@dataclass(frozen=True)
class ActingUser:
    user_id: int
    user_type: str | None = None


@dataclass
class PendingMessage:
    staged: StagedMessage
    phone_number: str
    created_at: datetime


def get_acting_user(db: Session, account_id: int) -> ActingUser | None:
    """IMPORT_USER_EMAIL when it belongs to the account, else the account's first administrator."""
    stmt = (
        select(User.id, User.type)
        .join(AccountUser, AccountUser.user_id == User.id)
        .where(AccountUser.account_id == account_id)
    )
    if settings.IMPORT_USER_EMAIL:
        stmt = stmt.where(User.email == settings.IMPORT_USER_EMAIL)
    else:
        stmt = stmt.where(AccountUser.role == ROLE_ADMINISTRATOR)
    row = db.execute(stmt.order_by(User.id).limit(1)).first()
    return ActingUser(row[0], row[1]) if row else None


def order_messages(
    messages: Iterable[StagedMessage], seen_ids: set[str] | None = None
) -> list[StagedMessage]:
    """Importable messages sorted by (phone number, timestamp); duplicates and seen ids dropped."""
    kept: list[StagedMessage] = []
    ids: set[str] = set()
    dropped = 0
    for m in messages:
        if m.phone_number is None or unix_timestamp(m.timestamp) is None:
            dropped += 1
            continue
        if m.message_id:
            if m.message_id in ids or (seen_ids and m.message_id in seen_ids):
                dropped += 1
                continue
            ids.add(m.message_id)
        kept.append(m)
    if dropped:
        logger.info("Dropped %d staged message(s): no phone number/timestamp, duplicate or already imported", dropped)
    kept.sort(key=lambda m: (m.phone_number, m.timestamp))
    return kept


def group_by_phone(items: Iterable[T]) -> dict[str, list[T]]:
    """Group by .phone_number, keeping input order inside each group."""
    groups: dict[str, list[T]] = {}
    for item in items:
        groups.setdefault(item.phone_number, []).append(item)  # type: ignore[attr-defined]
    return groups


def first_last_timestamps(ordered: Sequence[StagedMessage]) -> dict[str, TimestampRange]:
    return {
        phone_number: TimestampRange(group[0].timestamp, group[-1].timestamp)
        for phone_number, group in group_by_phone(ordered).items()
    }


def assign_created_at(ordered: Sequence[StagedMessage]) -> list[PendingMessage]:
    """created_at = timestamp + n µs, n = earlier messages of the same number in the same second."""
    pending: list[PendingMessage] = []
    previous: tuple[str, int] | None = None
    offset = 0
    for m in ordered:
        key = (m.phone_number, m.timestamp)
        offset = offset + 1 if key == previous else 0
        previous = key
        created_at = datetime.fromtimestamp(m.timestamp, tz=timezone.utc) + timedelta(microseconds=offset)
        pending.append(PendingMessage(m, m.phone_number, created_at))
    return pending


def build_message_rows(
    by_phone: dict[str, list[PendingMessage]],
    fks: dict[str, FkPair],
    account_id: int,
    inbox_id: int,
    user: ActingUser,
) -> list[dict]:
    rows: list[dict] = []
    no_content = no_fk = 0
    for phone_number, group in by_phone.items():
        fk = fks.get(phone_number)
        for pm in group:
            if fk is None:
                no_fk += 1
                continue
            content = message_content(pm.staged.message)
            if not content:
                no_content += 1
                continue
            from_me = pm.staged.from_me
            rows.append(
                {
                    "content": content,
                    "account_id": account_id,
                    "inbox_id": inbox_id,
                    "conversation_id": fk.conversation_id,
                    "message_type": MESSAGE_TYPE_OUTGOING if from_me else MESSAGE_TYPE_INCOMING,
                    "private": False,
                    "content_type": CONTENT_TYPE_TEXT,
                    "sender_type": "User" if from_me else "Contact",
                    "sender_id": user.user_id if from_me else fk.contact_id,
                    "source_id": f"{SOURCE_ID_PREFIX}{pm.staged.message_id}" if pm.staged.message_id else None,
                    "created_at": pm.created_at,
                    "updated_at": pm.created_at,
                }
            )
    if no_content or no_fk:
        logger.debug("Skipped %d message(s) without content and %d without contact/conversation", no_content, no_fk)
    return rows


def build_message_insert(rows: Sequence[dict]) -> Insert | None:
    if not rows:
        return None
    return (
        insert(Message)
        .values(list(rows))
        .on_conflict_do_nothing(index_elements=[Message.conversation_id, Message.created_at])
    )


def load_seen_message_ids(db: Session, account_id: int, inbox_id: int) -> set[str]:
    """Session message ids already imported into this inbox (from messages.source_id)."""
    rows = db.execute(
        select(Message.source_id).where(
            Message.account_id == account_id,
            Message.inbox_id == inbox_id,
            Message.source_id.startswith(SOURCE_ID_PREFIX),
        )
    ).scalars()
    return {source_id[len(SOURCE_ID_PREFIX):] for source_id in rows}


def import_messages(
    db: Session,
    store: StagingStore,
    tenant: str,
    account_id: int,
    inbox_id: int,
    resolver: KeyResolver | None = None,
    chunk_size: int | None = None,
) -> int:
    """Insert the tenant's staged messages. Returns message rows committed."""
    try:
        user = get_acting_user(db, account_id)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error on looking up the acting user of account_id %s", account_id)
        return 0
    if user is None:
        raise ActingUserNotFound(account_id, settings.IMPORT_USER_EMAIL)

    staged = store.messages(tenant)
    if not staged:
        return 0

    ordered = order_messages(staged, store.seen_message_ids(tenant))
    ranges = first_last_timestamps(ordered)
    pending = assign_created_at(ordered)
    resolve = resolver or get_resolver()
    size = chunk_size or settings.MESSAGE_CHUNK_SIZE

    total = 0
    try:
        for chunk in drain_chunks(pending, size):
            by_phone = group_by_phone(chunk)
            fks = resolve(
                db,
                account_id,
                inbox_id,
                ranges,
                {p: [pm.staged for pm in group] for p, group in by_phone.items()},
            )
            stmt = build_message_insert(build_message_rows(by_phone, fks, account_id, inbox_id, user))
            if stmt is None:
                db.commit()
                continue
            inserted = db.execute(stmt).rowcount or 0
            db.commit()
            total += inserted
            logger.info("Messages chunk for %s: %d inserted (total %d)", tenant, inserted, total)
    except (SQLAlchemyError, httpx.HTTPError):
        db.rollback()
        logger.exception("Error on import history messages for %s", tenant)
        return total

    store.clear_messages(tenant)
    store.clear_all(tenant)
    return total
