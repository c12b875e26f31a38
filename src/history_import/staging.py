"""
In-memory staging of session history per tenant (instance), until it is imported.

The store is an explicit object owned by the caller and passed to the importers.
A tenant's stage is created on first append and dropped by clear_all. Nothing is
persisted; one import cycle per tenant at a time is the caller's responsibility.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable

from history_import.identifiers import phone_number_from_jid, unix_timestamp


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


@dataclass
class StagedContact:
    id: str
    push_name: str | None = None

    @property
    def phone_number(self) -> str | None:
        return phone_number_from_jid(self.id)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "StagedContact":
        return cls(
            id=_str(payload.get("id")),
            push_name=payload.get("pushName") or payload.get("name") or None,
        )


@dataclass
class StagedMessage:
    remote_jid: str
    timestamp: int | None
    message: dict[str, Any] | None = None
    message_id: str | None = None
    from_me: bool = False
    push_name: str | None = None

    @property
    def phone_number(self) -> str | None:
        return phone_number_from_jid(self.remote_jid)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "StagedMessage":
        key = payload.get("key")
        if not isinstance(key, dict):
            key = {}
        message = payload.get("message")
        message_id = key.get("id")
        return cls(
            remote_jid=_str(key.get("remoteJid")),
            timestamp=unix_timestamp(payload.get("messageTimestamp")),
            message=message if isinstance(message, dict) else None,
            message_id=message_id if isinstance(message_id, str) else None,
            from_me=bool(key.get("fromMe")),
            push_name=payload.get("pushName"),
        )


@dataclass
class TenantStage:
    contacts: list[StagedContact] = field(default_factory=list)
    messages: list[StagedMessage] = field(default_factory=list)
    seen_message_ids: set[str] | None = None


def _as_contacts(items: Iterable[StagedContact | dict[str, Any]]) -> list[StagedContact]:
    return [c if isinstance(c, StagedContact) else StagedContact.from_payload(c) for c in items]


def _as_messages(items: Iterable[StagedMessage | dict[str, Any]]) -> list[StagedMessage]:
    return [m if isinstance(m, StagedMessage) else StagedMessage.from_payload(m) for m in items]


class StagingStore:
    def __init__(self) -> None:
        self._stages: dict[str, TenantStage] = {}

    def _stage(self, tenant: str) -> TenantStage:
        return self._stages.setdefault(tenant, TenantStage())

    def tenants(self) -> list[str]:
        return list(self._stages)

    def add_contacts(self, tenant: str, contacts: Iterable[StagedContact | dict[str, Any]]) -> None:
        self._stage(tenant).contacts.extend(_as_contacts(contacts))

    def add_messages(self, tenant: str, messages: Iterable[StagedMessage | dict[str, Any]]) -> None:
        self._stage(tenant).messages.extend(_as_messages(messages))

    def contacts(self, tenant: str) -> list[StagedContact]:
        stage = self._stages.get(tenant)
        return stage.contacts if stage else []

    def messages(self, tenant: str) -> list[StagedMessage]:
        stage = self._stages.get(tenant)
        return stage.messages if stage else []

    def message_count(self, tenant: str) -> int:
        return len(self.messages(tenant))

    def clear_contacts(self, tenant: str) -> None:
        stage = self._stages.get(tenant)
        if stage:
            stage.contacts = []

    def clear_messages(self, tenant: str) -> None:
        stage = self._stages.get(tenant)
        if stage:
            stage.messages = []

    def clear_all(self, tenant: str) -> None:
        self._stages.pop(tenant, None)

    # Message ids already present in the helpdesk; messages listed here are not imported again.

    def seen_message_ids(self, tenant: str) -> set[str] | None:
        stage = self._stages.get(tenant)
        return stage.seen_message_ids if stage else None

    def set_seen_message_ids(self, tenant: str, ids: Iterable[str]) -> None:
        self._stage(tenant).seen_message_ids = set(ids)

    def forget_seen_message_ids(self, tenant: str) -> None:
        stage = self._stages.get(tenant)
        if stage:
            stage.seen_message_ids = None
