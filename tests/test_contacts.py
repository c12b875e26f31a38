"""Contact import: guard, statement shape, chunked upsert flow and error handling (no database)."""

from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError

from conftest import result
from history_import import contacts as contacts_mod
from history_import.contacts import build_contact_upsert, ensure_label, ensure_tag, import_contacts
from history_import.staging import StagedContact, StagingStore


def _compile(stmt):
    return stmt.compile(dialect=postgresql.dialect())


def _store_with_contacts(*pairs):
    store = StagingStore()
    store.add_contacts("inst", [{"id": jid, "pushName": name} for jid, name in pairs])
    return store


def test_guard_skips_when_messages_are_staged(mock_db):
    store = _store_with_contacts(("100@d", "Alice"))
    store.add_messages("inst", [{"key": {"remoteJid": "100@d"}, "messageTimestamp": 1}])

    assert import_contacts(mock_db, store, "inst", 1) == 0
    mock_db.execute.assert_not_called()
    assert len(store.contacts("inst")) == 1


def test_no_staged_contacts_returns_zero(mock_db):
    assert import_contacts(mock_db, StagingStore(), "inst", 1) == 0
    mock_db.execute.assert_not_called()


def test_build_contact_upsert_statement():
    stmt = build_contact_upsert(
        [StagedContact("5521999999999@s.whatsapp.net", "Alice"), StagedContact("200@d", None)], 7
    )
    compiled = _compile(stmt)
    sql = str(compiled)
    values = list(compiled.params.values())

    assert sql.startswith("INSERT INTO contacts")
    assert "ON CONFLICT (identifier, account_id) DO UPDATE" in sql
    assert "RETURNING contacts.id" in sql
    assert "+5521999999999" in values
    assert "5521999999999@s.whatsapp.net" in values
    assert "+200" in values
    assert values.count(7) == 2


def test_build_contact_upsert_skips_bad_identifiers_and_collapses_duplicates():
    stmt = build_contact_upsert(
        [
            StagedContact("100@d", "Old"),
            StagedContact("status@broadcast", "x"),
            StagedContact("100@d", "New"),
        ],
        1,
    )
    values = list(_compile(stmt).params.values())

    assert values.count("100@d") == 1
    assert "New" in values and "Old" not in values
    assert "status@broadcast" not in values


def test_build_contact_upsert_empty_chunk_is_no_statement():
    assert build_contact_upsert([], 1) is None
    assert build_contact_upsert([StagedContact("group@g.us", "x")], 1) is None


def test_import_contacts_upserts_chunks_tags_and_clears(mock_db, monkeypatch):
    calls = {}
    monkeypatch.setattr(contacts_mod, "ensure_label", lambda db, title, account_id: calls.setdefault("label", (title, account_id)))
    monkeypatch.setattr(contacts_mod, "ensure_tag", lambda db, name, count: calls.setdefault("tag", (name, count)) and 42)

    def fake_tag_contacts(db, tag_id, contact_ids, chunk_size=None):
        calls["tagging"] = (tag_id, list(contact_ids))
        return len(contact_ids)

    monkeypatch.setattr(contacts_mod, "tag_contacts", fake_tag_contacts)
    mock_db.execute.side_effect = [result(scalars=[11]), result(scalars=[12])]
    store = _store_with_contacts(("100@d", "Alice"), ("200@d", "Bob"))

    total = import_contacts(mock_db, store, "inst", 1, chunk_size=1)

    assert total == 2
    assert calls["label"] == ("inst", 1)
    assert calls["tag"] == ("inst", 2)
    assert calls["tagging"] == (42, [11, 12])
    assert mock_db.execute.call_count == 2
    assert mock_db.commit.call_count >= 2
    assert store.contacts("inst") == []


def test_import_contacts_without_tag_still_imports(mock_db, monkeypatch):
    monkeypatch.setattr(contacts_mod, "ensure_label", lambda *a: None)
    monkeypatch.setattr(contacts_mod, "ensure_tag", lambda *a: None)
    tagged = []
    monkeypatch.setattr(contacts_mod, "tag_contacts", lambda *a, **k: tagged.append(a))
    mock_db.execute.return_value = result(scalars=[1])

    assert import_contacts(mock_db, _store_with_contacts(("100@d", "Alice")), "inst", 1) == 1
    assert tagged == []


def test_import_contacts_failure_keeps_staged_and_returns_committed(mock_db, monkeypatch):
    monkeypatch.setattr(contacts_mod, "ensure_label", lambda *a: None)
    monkeypatch.setattr(contacts_mod, "ensure_tag", lambda *a: None)
    mock_db.execute.side_effect = [
        result(scalars=[11]),
        OperationalError("INSERT INTO contacts", {}, Exception("connection lost")),
    ]
    store = _store_with_contacts(("100@d", "Alice"), ("200@d", "Bob"))

    assert import_contacts(mock_db, store, "inst", 1, chunk_size=1) == 1
    mock_db.rollback.assert_called_once()
    assert len(store.contacts("inst")) == 2


def test_ensure_label_existing_is_not_inserted(mock_db):
    mock_db.execute.return_value = result(scalar=5)

    assert ensure_label(mock_db, "inst", 1) == 5
    assert mock_db.execute.call_count == 1


def test_ensure_label_race_counts_as_existing(mock_db):
    mock_db.execute.side_effect = [
        result(scalar=None),
        IntegrityError("INSERT INTO labels", {}, Exception("duplicate key")),
        result(scalar=9),
    ]

    assert ensure_label(mock_db, "inst", 1) == 9


def test_ensure_label_error_is_absorbed(mock_db):
    mock_db.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))
    assert ensure_label(mock_db, "inst", 1) is None


def test_ensure_tag_increments_on_conflict(mock_db):
    mock_db.execute.return_value = result(scalar=3)

    assert ensure_tag(mock_db, "inst", 10) == 3
    sql = str(_compile(mock_db.execute.call_args.args[0]))
    assert "ON CONFLICT (name) DO UPDATE" in sql
    assert "tags.taggings_count + excluded.taggings_count" in sql
    assert "RETURNING tags.id" in sql


def test_ensure_tag_error_is_absorbed(mock_db):
    mock_db.execute.side_effect = OperationalError("INSERT", {}, Exception("down"))
    assert ensure_tag(mock_db, "inst", 10) is None
