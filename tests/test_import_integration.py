"""
End-to-end history import against a real Postgres (DATABASE_URL).

The helpdesk tables are created from the models and TRUNCATED before each test:
point DATABASE_URL at a disposable database.
"""

import threading

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from history_import.resolver import TimestampRange, resolve_or_create
from history_import.service import HistoryImporter
from history_import.staging import StagedMessage

pytestmark = pytest.mark.integration

ACCOUNT_ID = 1
INBOX_ID = 1


def _message(jid, ts, body, msg_id):
    return {
        "key": {"remoteJid": jid, "id": msg_id, "fromMe": False},
        "messageTimestamp": ts,
        "message": {"conversation": body},
    }


def _stage_scenario(importer):
    importer.stage_contacts("inst", [{"id": "100@d", "pushName": "Alice"}, {"id": "200@d", "pushName": "Bob"}])


def _stage_messages(importer):
    importer.stage_messages(
        "inst",
        [_message("100@d", 10, "hi", "M10"), _message("100@d", 5, "yo", "M5"), _message("100@d", 20, "bye", "M20")],
    )


def _scalar(engine, sql, **params):
    with engine.connect() as conn:
        return conn.execute(text(sql), params).scalar_one()


def test_end_to_end_scenario(pg_engine, admin_user):
    importer = HistoryImporter()
    _stage_scenario(importer)
    assert importer.import_contacts("inst", ACCOUNT_ID) == 2

    _stage_messages(importer)
    assert importer.import_messages("inst", ACCOUNT_ID, INBOX_ID) == 3

    assert _scalar(pg_engine, "SELECT COUNT(*) FROM contacts") == 2
    assert (
        _scalar(
            pg_engine,
            "SELECT COUNT(*) FROM conversations con JOIN contacts c ON c.id = con.contact_id"
            " WHERE c.identifier = '100@d' AND c.name = 'Alice'",
        )
        == 1
    )
    with pg_engine.connect() as conn:
        contents = conn.execute(text("SELECT content FROM messages ORDER BY created_at")).scalars().all()
        by_id = conn.execute(text("SELECT content FROM messages ORDER BY id")).scalars().all()
        phone = conn.execute(text("SELECT phone_number FROM contacts WHERE identifier = '100@d'")).scalar_one()
        tagged = conn.execute(
            text(
                "SELECT COUNT(*) FROM taggings tg JOIN tags t ON t.id = tg.tag_id"
                " WHERE t.name = 'inst' AND tg.taggable_type = 'Contact'"
            )
        ).scalar_one()
    assert contents == ["yo", "hi", "bye"]
    assert by_id == ["yo", "hi", "bye"]
    assert phone == "+100"
    assert tagged == 2
    assert _scalar(pg_engine, "SELECT COUNT(*) FROM labels WHERE title = 'inst'") == 1
    assert importer.store.tenants() == []


def test_reimport_is_idempotent(pg_engine, admin_user):
    importer = HistoryImporter()
    for _ in range(2):
        _stage_scenario(importer)
        importer.import_contacts("inst", ACCOUNT_ID)
        _stage_messages(importer)
        importer.import_messages("inst", ACCOUNT_ID, INBOX_ID)

    assert _scalar(pg_engine, "SELECT COUNT(*) FROM contacts") == 2
    assert _scalar(pg_engine, "SELECT COUNT(*) FROM conversations") == 1
    assert _scalar(pg_engine, "SELECT COUNT(*) FROM messages") == 3
    assert _scalar(pg_engine, "SELECT COUNT(*) FROM labels") == 1
    assert (
        _scalar(
            pg_engine,
            "SELECT COUNT(*) FROM (SELECT 1 FROM messages GROUP BY conversation_id, created_at HAVING COUNT(*) > 1) d",
        )
        == 0
    )


def test_second_message_import_inserts_nothing(pg_engine, admin_user):
    importer = HistoryImporter()
    _stage_messages(importer)
    assert importer.import_messages("inst", ACCOUNT_ID, INBOX_ID) == 3

    _stage_messages(importer)
    assert importer.import_messages("inst", ACCOUNT_ID, INBOX_ID) == 0


def test_seen_ids_skip_already_imported(pg_engine, admin_user):
    importer = HistoryImporter()
    _stage_messages(importer)
    importer.import_messages("inst", ACCOUNT_ID, INBOX_ID)

    assert importer.seed_seen_message_ids("inst", ACCOUNT_ID, INBOX_ID) == 3
    importer.stage_messages("inst", [_message("100@d", 30, "new", "M30")])
    _stage_messages(importer)
    assert importer.import_messages("inst", ACCOUNT_ID, INBOX_ID) == 1


def test_contact_import_guard(pg_engine, admin_user):
    importer = HistoryImporter()
    _stage_scenario(importer)
    _stage_messages(importer)

    assert importer.import_contacts("inst", ACCOUNT_ID) == 0
    assert len(importer.store.contacts("inst")) == 2
    assert _scalar(pg_engine, "SELECT COUNT(*) FROM contacts") == 0


def test_concurrent_resolvers_create_one_pair(pg_engine):
    messages = {"+300": [StagedMessage("300@d", 42, {"conversation": "x"})]}
    ranges = {"+300": TimestampRange(42, 42)}
    barrier = threading.Barrier(2)
    results, errors = [], []

    def worker():
        try:
            with Session(pg_engine) as db:
                barrier.wait()
                fks = resolve_or_create(db, ACCOUNT_ID, INBOX_ID, ranges, messages)
                db.commit()
                results.append(fks)
        except Exception as e:  # surfaced through the errors assertion
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert len(results) == 2
    assert results[0] == results[1] and "+300" in results[0]
    assert _scalar(pg_engine, "SELECT COUNT(*) FROM contacts WHERE identifier = '300@d'") == 1
    assert _scalar(pg_engine, "SELECT COUNT(*) FROM conversations") == 1
    assert (
        _scalar(pg_engine, "SELECT EXTRACT(EPOCH FROM created_at)::int FROM conversations") == 42
    )
