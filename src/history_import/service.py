"""Caller-facing history import: stage session data per tenant, then import contacts and messages."""

import logging
from contextlib import AbstractContextManager
from typing import Any, Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from helpdesk.database import db_session
from history_import.contacts import import_contacts
from history_import.messages import import_messages, load_seen_message_ids
from history_import.resolver import KeyResolver
from history_import.staging import StagedContact, StagedMessage, StagingStore

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]


class HistoryImporter:
    """
    Owns a StagingStore and opens one database session per import call.

    Contact and message imports of the same tenant must be called one after the
    other (contacts first); different tenants may be imported in parallel.
    """

    def __init__(
        self,
        store: StagingStore | None = None,
        session_factory: SessionFactory = db_session,
        resolver: KeyResolver | None = None,
    ) -> None:
        self.store = store or StagingStore()
        self.session_factory = session_factory
        self.resolver = resolver

    def stage_contacts(self, tenant: str, contacts: Iterable[StagedContact | dict[str, Any]]) -> None:
        self.store.add_contacts(tenant, contacts)

    def stage_messages(self, tenant: str, messages: Iterable[StagedMessage | dict[str, Any]]) -> None:
        self.store.add_messages(tenant, messages)

    def import_contacts(self, tenant: str, account_id: int) -> int:
        with self.session_factory() as db:
            return import_contacts(db, self.store, tenant, account_id)

    def import_messages(self, tenant: str, account_id: int, inbox_id: int) -> int:
        with self.session_factory() as db:
            return import_messages(db, self.store, tenant, account_id, inbox_id, resolver=self.resolver)

    def seed_seen_message_ids(self, tenant: str, account_id: int, inbox_id: int) -> int:
        """Load message ids already in the inbox so re-staged history is not imported twice."""
        try:
            with self.session_factory() as db:
                ids = load_seen_message_ids(db, account_id, inbox_id)
        except SQLAlchemyError:
            logger.exception("Error on loading imported message ids for %s", tenant)
            return 0
        self.store.set_seen_message_ids(tenant, ids)
        return len(ids)

    def clear_all(self, tenant: str) -> None:
        self.store.clear_all(tenant)
