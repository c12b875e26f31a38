"""
Resolve (contact_id, conversation_id) for each phone number of a message chunk.

Existing pairs are read with one lookup. Missing ones are created by a single
statement that upserts the contacts and their open conversations together: the
contact insert falls back to the existing row on (identifier, account_id) and the
conversation insert falls back to the open conversation of that contact in the
inbox (partial unique index uq_conversations_open_contact). Two resolvers racing
on the same new number therefore end up with the same pair instead of duplicates.
"""

import logging
from dataclasses import dataclass
from typing import NamedTuple, Protocol, Sequence

import httpx
from sqlalchemy import text
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from helpdesk.api_client import HelpdeskClient
from helpdesk.config import settings
from helpdesk.models import Contact
from history_import.staging import StagedMessage

logger = logging.getLogger(__name__)


class TimestampRange(NamedTuple):
    first: int
    last: int


@dataclass(frozen=True)
class FkPair:
    contact_id: int
    conversation_id: int


LOOKUP_SQL = text("""
    SELECT DISTINCT ON (c.identifier)
        c.identifier, c.id AS contact_id, con.id AS conversation_id
    FROM contacts c
    LEFT JOIN conversations con
        ON con.contact_id = c.id
       AND con.account_id = c.account_id
       AND con.inbox_id = :inbox_id
       AND con.status = 0
    WHERE c.account_id = :account_id
      AND c.identifier = ANY(:identifiers)
    ORDER BY c.identifier, con.id NULLS LAST
""")

GET_OR_CREATE_SQL = text("""
    WITH input AS (
        SELECT *
        FROM unnest(
            CAST(:phone_numbers AS text[]),
            CAST(:identifiers AS text[]),
            CAST(:first_timestamps AS double precision[]),
            CAST(:last_timestamps AS double precision[])
        ) AS t(phone_number, identifier, first_ts, last_ts)
    ),
    contact_row AS (
        INSERT INTO contacts (name, phone_number, account_id, identifier, created_at, updated_at)
        SELECT NULL, i.phone_number, :account_id, i.identifier,
               to_timestamp(i.first_ts), to_timestamp(i.first_ts)
        FROM input i
        ON CONFLICT (identifier, account_id)
        DO UPDATE SET identifier = EXCLUDED.identifier
        RETURNING id, identifier
    ),
    conversation_row AS (
        INSERT INTO conversations
            (account_id, inbox_id, contact_id, status, last_activity_at, created_at, updated_at)
        SELECT :account_id, :inbox_id, cr.id, 0,
               to_timestamp(i.last_ts), to_timestamp(i.first_ts), to_timestamp(i.first_ts)
        FROM contact_row cr
        JOIN input i ON i.identifier = cr.identifier
        ON CONFLICT (account_id, inbox_id, contact_id) WHERE status = 0
        DO UPDATE SET last_activity_at = GREATEST(conversations.last_activity_at, EXCLUDED.last_activity_at)
        RETURNING id, contact_id
    )
    SELECT i.phone_number, cr.id AS contact_id, cv.id AS conversation_id
    FROM input i
    JOIN contact_row cr ON cr.identifier = i.identifier
    JOIN conversation_row cv ON cv.contact_id = cr.id
""")


def identifiers_by_phone(messages_by_phone: dict[str, Sequence[StagedMessage]]) -> dict[str, str]:
    """Session identifier used as contacts.identifier: remoteJid of the number's earliest message."""
    out: dict[str, str] = {}
    for phone_number, messages in messages_by_phone.items():
        if messages and messages[0].remote_jid:
            out[phone_number] = messages[0].remote_jid
    return out


def lookup_existing(
    db: Session, account_id: int, inbox_id: int, identifiers: dict[str, str]
) -> tuple[dict[str, FkPair], dict[str, int]]:
    """Pairs that already exist, plus contact ids found without an open conversation."""
    phone_by_identifier = {v: k for k, v in identifiers.items()}
    rows = db.execute(
        LOOKUP_SQL,
        {
            "account_id": account_id,
            "inbox_id": inbox_id,
            "identifiers": list(phone_by_identifier),
        },
    ).all()
    pairs: dict[str, FkPair] = {}
    contacts_only: dict[str, int] = {}
    for identifier, contact_id, conversation_id in rows:
        phone_number = phone_by_identifier.get(identifier)
        if phone_number is None:
            continue
        if conversation_id is not None:
            pairs[phone_number] = FkPair(contact_id, conversation_id)
        else:
            contacts_only[phone_number] = contact_id
    return pairs, contacts_only


def get_or_create(
    db: Session,
    account_id: int,
    inbox_id: int,
    identifiers: dict[str, str],
    ranges: dict[str, TimestampRange],
) -> dict[str, FkPair]:
    """Run GET_OR_CREATE_SQL for the given numbers. Numbers without a timestamp range are skipped."""
    numbers = [p for p in identifiers if p in ranges]
    if not numbers:
        return {}
    rows = db.execute(
        GET_OR_CREATE_SQL,
        {
            "account_id": account_id,
            "inbox_id": inbox_id,
            "phone_numbers": numbers,
            "identifiers": [identifiers[p] for p in numbers],
            "first_timestamps": [float(ranges[p].first) for p in numbers],
            "last_timestamps": [float(ranges[p].last) for p in numbers],
        },
    ).all()
    return {phone_number: FkPair(contact_id, conversation_id) for phone_number, contact_id, conversation_id in rows}


def resolve_or_create(
    db: Session,
    account_id: int,
    inbox_id: int,
    ranges: dict[str, TimestampRange],
    messages_by_phone: dict[str, Sequence[StagedMessage]],
) -> dict[str, FkPair]:
    """phone number -> FkPair for every number of the chunk that could be resolved."""
    identifiers = identifiers_by_phone(messages_by_phone)
    if not identifiers:
        return {}
    fks: dict[str, FkPair] = {}
    try:
        with db.begin_nested():
            existing, _ = lookup_existing(db, account_id, inbox_id, identifiers)
        fks.update(existing)
        missing = {p: i for p, i in identifiers.items() if p not in fks}
        if missing:
            with db.begin_nested():
                fks.update(get_or_create(db, account_id, inbox_id, missing, ranges))
    except SQLAlchemyError as e:
        logger.error("Error on resolving contacts/conversations for account_id %s: %s", account_id, e)
    unresolved = len(identifiers) - len(fks)
    if unresolved:
        logger.warning("%d phone number(s) left without contact/conversation", unresolved)
    return fks


class KeyResolver(Protocol):
    def __call__(
        self,
        db: Session,
        account_id: int,
        inbox_id: int,
        ranges: dict[str, TimestampRange],
        messages_by_phone: dict[str, Sequence[StagedMessage]],
    ) -> dict[str, FkPair]: ...


class ApiKeyResolver:
    """Creates missing conversations through the helpdesk API instead of writing the conversations table."""

    def __init__(self, client: HelpdeskClient) -> None:
        self.client = client

    def _upsert_contacts(
        self, db: Session, account_id: int, identifiers: dict[str, str]
    ) -> dict[str, int]:
        stmt = insert(Contact).values(
            [
                {"phone_number": p, "account_id": account_id, "identifier": i}
                for p, i in identifiers.items()
            ]
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Contact.identifier, Contact.account_id],
            set_={"identifier": stmt.excluded.identifier},
        ).returning(Contact.identifier, Contact.id)
        phone_by_identifier = {v: k for k, v in identifiers.items()}
        return {phone_by_identifier[i]: cid for i, cid in db.execute(stmt).all()}

    def __call__(
        self,
        db: Session,
        account_id: int,
        inbox_id: int,
        ranges: dict[str, TimestampRange],
        messages_by_phone: dict[str, Sequence[StagedMessage]],
    ) -> dict[str, FkPair]:
        identifiers = identifiers_by_phone(messages_by_phone)
        if not identifiers:
            return {}
        fks: dict[str, FkPair] = {}
        try:
            with db.begin_nested():
                existing, contact_ids = lookup_existing(db, account_id, inbox_id, identifiers)
                fks.update(existing)
                missing = {
                    p: i for p, i in identifiers.items() if p not in fks and p not in contact_ids
                }
                if missing:
                    contact_ids.update(self._upsert_contacts(db, account_id, missing))
            # Conversations created through the API must see the contact rows.
            db.commit()
        except SQLAlchemyError as e:
            logger.error("Error on resolving contacts for account_id %s: %s", account_id, e)
            return fks

        for phone_number, contact_id in contact_ids.items():
            try:
                conversation_id = self.client.create_conversation(
                    account_id=account_id,
                    contact_id=contact_id,
                    inbox_id=inbox_id,
                    source_id=phone_number.lstrip("+"),
                )
            except httpx.HTTPError as e:
                logger.error("Error on creating conversation for %s via API: %s", phone_number, e)
                continue
            fks[phone_number] = FkPair(contact_id, conversation_id)
        return fks


def get_resolver(mode: str | None = None, client: HelpdeskClient | None = None) -> KeyResolver:
    mode = mode or settings.CONVERSATION_CREATION
    if mode == "api":
        return ApiKeyResolver(client or HelpdeskClient())
    return resolve_or_create
