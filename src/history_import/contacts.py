"""
Contact import: upsert staged contacts into the helpdesk and mark them with the
tenant's provenance label/tag.

Re-running with the same contacts is idempotent on the contacts table (upsert on
identifier + account). The tag's taggings_count is incremented on every successful
run, so a successful run must not be replayed with the same staged data; staged
contacts are cleared only after success, which keeps failed runs retryable.
"""

import logging
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import Insert, insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from helpdesk.config import settings
from helpdesk.models import Contact, Label, Tag, Tagging
from history_import.chunking import chunked, drain_chunks
from history_import.staging import StagedContact, StagingStore

logger = logging.getLogger(__name__)

TAGGABLE_CONTACT = "Contact"
TAGGING_CONTEXT = "labels"


def ensure_label(db: Session, title: str, account_id: int) -> int | None:
    """Create the provenance label once per account. Returns its id, None on failure."""
    lookup = select(Label.id).where(Label.title == title, Label.account_id == account_id)
    try:
        with db.begin_nested():
            label_id = db.execute(lookup).scalar_one_or_none()
            if label_id is not None:
                logger.info("Label %r already exists for account_id %s", title, account_id)
                return label_id
            return db.execute(
                insert(Label)
                .values(
                    title=title,
                    description=settings.LABEL_DESCRIPTION,
                    color=settings.LABEL_COLOR,
                    show_on_sidebar=True,
                    account_id=account_id,
                )
                .returning(Label.id)
            ).scalar_one()
    except IntegrityError:
        # Another import created it between the check and the insert.
        logger.info("Label %r was created concurrently for account_id %s", title, account_id)
        return db.execute(lookup).scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error("Error on insert label %r: %s", title, e)
        return None


def ensure_tag(db: Session, name: str, count: int) -> int | None:
    """Create the provenance tag or add `count` to its taggings_count. Returns the tag id."""
    stmt = insert(Tag).values(name=name, taggings_count=count)
    stmt = stmt.on_conflict_do_update(
        index_elements=[Tag.name],
        set_={"taggings_count": Tag.taggings_count + stmt.excluded.taggings_count},
    ).returning(Tag.id)
    try:
        with db.begin_nested():
            return db.execute(stmt).scalar_one()
    except SQLAlchemyError as e:
        logger.error("Error on upsert tag %r: %s", name, e)
        return None


def build_contact_upsert(chunk: Sequence[StagedContact], account_id: int) -> Insert | None:
    """One multi-row upsert for a chunk, or None when no contact in it is importable."""
    rows: dict[str, dict] = {}
    for contact in chunk:
        phone_number = contact.phone_number
        if phone_number is None:
            logger.debug("Skipping contact %r: identifier has no phone number", contact.id)
            continue
        # Same identifier twice in one statement would hit ON CONFLICT twice; last one wins.
        rows[contact.id] = {
            "name": contact.push_name,
            "phone_number": phone_number,
            "account_id": account_id,
            "identifier": contact.id,
        }
    if not rows:
        return None
    stmt = insert(Contact).values(list(rows.values()))
    return stmt.on_conflict_do_update(
        index_elements=[Contact.identifier, Contact.account_id],
        set_={
            "name": func.coalesce(stmt.excluded.name, Contact.name),
            "phone_number": stmt.excluded.phone_number,
            "identifier": stmt.excluded.identifier,
            "updated_at": func.now(),
        },
    ).returning(Contact.id)


def tag_contacts(
    db: Session, tag_id: int, contact_ids: Sequence[int], chunk_size: int | None = None
) -> int:
    """Attach the tag to every contact (one tagging row each). Returns rows inserted."""
    size = chunk_size or settings.CONTACT_CHUNK_SIZE
    tagged = 0
    try:
        for chunk in chunked(contact_ids, size):
            stmt = insert(Tagging).values(
                [
                    {
                        "tag_id": tag_id,
                        "taggable_type": TAGGABLE_CONTACT,
                        "taggable_id": contact_id,
                        "context": TAGGING_CONTEXT,
                    }
                    for contact_id in chunk
                ]
            )
            stmt = stmt.on_conflict_do_nothing(
                index_elements=[
                    Tagging.tag_id,
                    Tagging.taggable_type,
                    Tagging.taggable_id,
                    Tagging.context,
                ]
            )
            with db.begin_nested():
                tagged += db.execute(stmt).rowcount or 0
    except SQLAlchemyError as e:
        logger.error("Error on tagging contacts with tag_id %s: %s", tag_id, e)
    return tagged


def import_contacts(
    db: Session,
    store: StagingStore,
    tenant: str,
    account_id: int,
    chunk_size: int | None = None,
) -> int:
    """Upsert the tenant's staged contacts. Returns contact rows committed."""
    if store.message_count(tenant) > 0:
        logger.info("Message import in progress for %s; skipping contact import", tenant)
        return 0

    contacts = store.contacts(tenant)
    if not contacts:
        return 0

    size = chunk_size or settings.CONTACT_CHUNK_SIZE
    total = 0
    try:
        ensure_label(db, tenant, account_id)
        tag_id = ensure_tag(db, tenant, len(contacts))
        db.commit()

        contact_ids: list[int] = []
        for chunk in drain_chunks(list(contacts), size):
            stmt = build_contact_upsert(chunk, account_id)
            if stmt is None:
                continue
            ids = list(db.execute(stmt).scalars())
            db.commit()
            contact_ids.extend(ids)
            total += len(ids)
            logger.info("Contacts chunk for %s: %d upserted (total %d)", tenant, len(ids), total)

        if tag_id is not None and contact_ids:
            tag_contacts(db, tag_id, contact_ids, size)
            db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error on import history contacts for %s", tenant)
        return total

    store.clear_contacts(tenant)
    return total
