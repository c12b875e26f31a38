"""Session identifiers (JIDs) and timestamps as delivered by the messaging session."""

import math
import re
from typing import Any

from history_import.errors import InvalidIdentifier

# "<digits>@<domain>", optionally with a device suffix: "5521999999999:12@s.whatsapp.net"
_JID_RE = re.compile(r"^(?P<number>\d+)(?::\d+)?@(?P<domain>[^@\s]+)$")
_NON_PERSON_DOMAINS = ("g.us", "broadcast")

# 9999-12-31T23:59:59Z, the last second a datetime can represent.
MAX_UNIX_TIMESTAMP = 253402300799


def phone_number_from_jid(jid: str | None) -> str | None:
    """'5521999999999@s.whatsapp.net' -> '+5521999999999'; None for groups, broadcasts and junk."""
    if not isinstance(jid, str) or not jid:
        return None
    m = _JID_RE.match(jid.strip())
    if not m or m.group("domain") in _NON_PERSON_DOMAINS:
        return None
    return f"+{m.group('number')}"


def require_phone_number(jid: str | None) -> str:
    number = phone_number_from_jid(jid)
    if number is None:
        raise InvalidIdentifier(f"Cannot derive a phone number from {jid!r}")
    return number


def _in_range(ts: int) -> int | None:
    return ts if 0 <= ts <= MAX_UNIX_TIMESTAMP else None


def unix_timestamp(value: Any) -> int | None:
    """
    Normalise messageTimestamp: int, numeric string or protobuf Long {low, high, unsigned}.

    None for anything else, including seconds a datetime cannot hold (e.g. milliseconds).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return _in_range(value)
    if isinstance(value, float):
        return _in_range(int(value)) if math.isfinite(value) else None
    if isinstance(value, str):
        value = value.strip()
        return _in_range(int(value)) if value.isdigit() else None
    if isinstance(value, dict) and "low" in value:
        low, high = value.get("low") or 0, value.get("high") or 0
        if not isinstance(low, int) or not isinstance(high, int):
            return None
        return _in_range((high << 32) + (low & 0xFFFFFFFF))
    return None
