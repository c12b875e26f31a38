"""
Read-only consistency checks for imported contacts, conversations and messages.

Run: python main.py check --account-id N

Validates, for one account:
- No two contacts share (identifier, account_id).
- No two messages share (conversation_id, created_at).
- A contact has at most one open conversation per inbox.
- Imported messages of a conversation were inserted in chat order (id order follows created_at).
"""

from dataclasses import dataclass, field

from sqlalchemy import text
from sqlalchemy.orm import Session

from helpdesk.database import db_session

MAX_DETAILS = 50


@dataclass
class CheckResult:
    name: str
    passed: bool
    error_count: int = 0
    warning_count: int = 0
    details: list[str] = field(default_factory=list)


def _capped(lines: list[str], total: int) -> list[str]:
    if total > MAX_DETAILS:
        return lines[:MAX_DETAILS] + [f"  ... and {total - MAX_DETAILS} more"]
    return lines


def _run_check_duplicate_contacts(session: Session, account_id: int) -> CheckResult:
    r = session.execute(
        text("""
            SELECT identifier, COUNT(*) AS n, array_agg(id ORDER BY id) AS ids
            FROM contacts
            WHERE account_id = :account_id AND identifier IS NOT NULL
            GROUP BY identifier
            HAVING COUNT(*) > 1
            ORDER BY identifier
        """),
        {"account_id": account_id},
    ).fetchall()
    if not r:
        return CheckResult("Contacts unique per identifier", True)
    details = [f"  identifier={row[0]!r} count={row[1]} ids={list(row[2])}" for row in r]
    return CheckResult(
        "Contacts unique per identifier",
        False,
        error_count=len(r),
        details=_capped(details, len(r)),
    )


def _run_check_duplicate_messages(session: Session, account_id: int) -> CheckResult:
    r = session.execute(
        text("""
            SELECT conversation_id, created_at, COUNT(*) AS n
            FROM messages
            WHERE account_id = :account_id
            GROUP BY conversation_id, created_at
            HAVING COUNT(*) > 1
            ORDER BY conversation_id, created_at
        """),
        {"account_id": account_id},
    ).fetchall()
    if not r:
        return CheckResult("Messages unique per conversation and created_at", True)
    details = [f"  conversation_id={row[0]} created_at={row[1].isoformat()} count={row[2]}" for row in r]
    return CheckResult(
        "Messages unique per conversation and created_at",
        False,
        error_count=len(r),
        details=_capped(details, len(r)),
    )


def _run_check_single_open_conversation(session: Session, account_id: int) -> CheckResult:
    r = session.execute(
        text("""
            SELECT contact_id, inbox_id, array_agg(id ORDER BY id) AS ids
            FROM conversations
            WHERE account_id = :account_id AND status = 0
            GROUP BY contact_id, inbox_id
            HAVING COUNT(*) > 1
            ORDER BY contact_id
        """),
        {"account_id": account_id},
    ).fetchall()
    if not r:
        return CheckResult("One open conversation per contact and inbox", True)
    details = [f"  contact_id={row[0]} inbox_id={row[1]} conversation_ids={list(row[2])}" for row in r]
    return CheckResult(
        "One open conversation per contact and inbox",
        False,
        error_count=len(r),
        details=_capped(details, len(r)),
    )


def _run_check_message_order(session: Session, account_id: int) -> CheckResult:
    """Warn when a later-inserted imported message has an earlier created_at in the same conversation."""
    r = session.execute(
        text("""
            SELECT conversation_id, COUNT(*) AS n
            FROM (
                SELECT conversation_id, created_at,
                       LAG(created_at) OVER (PARTITION BY conversation_id ORDER BY id) AS prev_created_at
                FROM messages
                WHERE account_id = :account_id AND source_id LIKE 'WAID:%'
            ) m
            WHERE m.prev_created_at > m.created_at
            GROUP BY conversation_id
            ORDER BY conversation_id
        """),
        {"account_id": account_id},
    ).fetchall()
    if not r:
        return CheckResult("Imported messages in chat order", True)
    details = [f"  conversation_id={row[0]} out_of_order={row[1]}" for row in r]
    # Separate import runs legitimately interleave; this is informational.
    return CheckResult(
        "Imported messages in chat order",
        True,
        warning_count=sum(row[1] for row in r),
        details=_capped(details, len(r)),
    )


def run_consistency_checks(account_id: int) -> list[CheckResult]:
    """Run all read-only consistency checks. No writes."""
    results: list[CheckResult] = []
    with db_session() as session:
        results.append(_run_check_duplicate_contacts(session, account_id))
        results.append(_run_check_duplicate_messages(session, account_id))
        results.append(_run_check_single_open_conversation(session, account_id))
        results.append(_run_check_message_order(session, account_id))
    return results


def print_report(results: list[CheckResult]) -> None:
    for r in results:
        status = "PASS" if r.passed and r.error_count == 0 else "FAIL"
        w = f" ({r.warning_count} warnings)" if r.warning_count else ""
        print(f"[{status}] {r.name}{w}")
        for line in r.details:
            print(line)
        if r.details:
            print()
    errors = sum(x.error_count for x in results)
    warnings = sum(x.warning_count for x in results)
    print(f"Total: {errors} error(s), {warnings} warning(s).")
