# test_unwind_db.py
#
#
# Imports
import sqlite3
from pathlib import Path
#
# Third-Party Imports
import pytest
#
# Local Imports
from unwind_sync.DB.Unwind_DB import (
    UnwindDB,
    UnwindDBError,
    StoreNotReadyError,
    SchemaError,
    InputError,
    RecordNotFoundError,
    ConflictError,
    CARRIED_OVER_TABLE,
)
from unwind_sync.DB.entity_descriptors import JOURNAL, MISTAKES, OVERTHINKING, TODOS
#
#######################################################################################################################
#
# Functions:


class TestLifecycle:
    def test_construction_opens_nothing(self, db_path, client_id):
        store = UnwindDB(db_path, client_id)
        assert not db_path.exists()
        assert not store.is_ready(JOURNAL.kind)

    def test_empty_client_id_rejected(self, db_path):
        with pytest.raises(ValueError):
            UnwindDB(db_path, "")

    def test_query_before_schema_fails_fast(self, db_path, client_id):
        store = UnwindDB(db_path, client_id)
        with pytest.raises(StoreNotReadyError):
            store.list_latest(JOURNAL)
        with pytest.raises(StoreNotReadyError):
            store.insert_local(JOURNAL, {"date": "2024-01-01", "content": "hello"})

    def test_only_created_tables_are_ready(self, db_path, client_id):
        store = UnwindDB(db_path, client_id)
        store.create_schema(JOURNAL)
        try:
            assert store.is_ready(JOURNAL.kind)
            assert store.list_latest(JOURNAL) == []
            with pytest.raises(StoreNotReadyError):
                store.list_latest(MISTAKES)
        finally:
            store.close_connection()

    def test_initialize_schema_is_idempotent(self, db_path, client_id):
        store = UnwindDB(db_path, client_id)
        store.initialize_schema()
        store.insert_local(JOURNAL, {"date": "2024-01-01", "content": "kept"})
        store.initialize_schema()
        assert store.count_all(JOURNAL) == 1
        assert store.get_schema_version() == UnwindDB._CURRENT_SCHEMA_VERSION
        store.close_connection()

    def test_newer_schema_version_rejected(self, db_path, client_id):
        store = UnwindDB(db_path, client_id)
        store.initialize_schema()
        store.get_connection().execute("UPDATE db_schema_version SET version = 99")
        store.close_connection()

        reopened = UnwindDB(db_path, client_id)
        with pytest.raises(SchemaError):
            reopened.initialize_schema()
        reopened.close_connection()

    def test_close_makes_tables_not_ready(self, db):
        assert db.test_connection()
        db.close_connection()
        assert not db.test_connection()
        with pytest.raises(StoreNotReadyError):
            db.list_all(JOURNAL)

    def test_memory_db(self, mem_db):
        assert mem_db.is_memory_db
        row = mem_db.insert_local(JOURNAL, {"date": "2024-01-01", "content": "in memory"})
        assert mem_db.get_by_local_id(JOURNAL, row["local_id"])["content"] == "in memory"

    def test_file_created_in_missing_directory(self, tmp_path, client_id):
        nested = tmp_path / "a" / "b" / "store.sqlite"
        store = UnwindDB(nested, client_id)
        store.initialize_schema()
        assert nested.exists()
        store.close_connection()


class TestInsertAndRead:
    def test_insert_local_is_unsynced(self, db):
        row = db.insert_local(JOURNAL, {"date": "2024-01-01", "content": "hello"})
        assert row["local_id"] > 0
        assert row["synced"] is False
        assert row["server_id"] is None
        assert row["timestamp"].endswith("Z")

        latest = db.list_latest(JOURNAL)
        assert latest[0]["local_id"] == row["local_id"]
        assert latest[0]["synced"] is False

    def test_insert_requires_fields(self, db):
        with pytest.raises(InputError):
            db.insert_local(JOURNAL, {"date": "2024-01-01", "content": "   "})
        with pytest.raises(InputError):
            db.insert_local(OVERTHINKING, {"date": "2024-01-01"})

    def test_insert_rejects_unknown_fields(self, db):
        with pytest.raises(InputError):
            db.insert_local(JOURNAL, {"date": "2024-01-01", "content": "x", "mood": "happy"})

    def test_optional_field_may_be_missing(self, db):
        row = db.insert_local(OVERTHINKING, {"date": "2024-01-01", "thought": "what if"})
        assert row["solution"] is None
        assert row["dumped"] is False

    def test_todo_defaults(self, db):
        row = db.insert_local(TODOS, {"title": "Buy milk", "category": "personal"})
        assert row["priority"] == "medium"
        assert row["completed"] is False
        assert row["created_at"] == row["updated_at"]

    def test_list_by_date_ascending(self, db):
        db.insert_local(JOURNAL, {"date": "2024-01-02", "content": "second"}, timestamp="2024-01-02T12:00:00.000Z")
        db.insert_local(JOURNAL, {"date": "2024-01-02", "content": "first"}, timestamp="2024-01-02T08:00:00.000Z")
        db.insert_local(JOURNAL, {"date": "2024-01-03", "content": "other day"})

        rows = db.list_by_date(JOURNAL, "2024-01-02")
        assert [r["content"] for r in rows] == ["first", "second"]

    def test_list_by_date_unsupported_for_todos(self, db):
        with pytest.raises(InputError):
            db.list_by_date(TODOS, "2024-01-01")

    def test_list_latest_descending_and_bounded(self, db):
        for hour in range(5):
            db.insert_local(JOURNAL, {"date": "2024-01-01", "content": f"h{hour}"},
                            timestamp=f"2024-01-01T0{hour}:00:00.000Z")
        rows = db.list_latest(JOURNAL, limit=3)
        assert [r["content"] for r in rows] == ["h4", "h3", "h2"]

    def test_ordering_keeps_milliseconds(self, db):
        db.insert_local(JOURNAL, {"date": "2024-01-01", "content": "later"}, timestamp="2024-01-01T08:00:00.900Z")
        db.insert_local(JOURNAL, {"date": "2024-01-01", "content": "earlier"}, timestamp="2024-01-01T08:00:00.100Z")
        assert [r["content"] for r in db.list_by_date(JOURNAL, "2024-01-01")] == ["earlier", "later"]
        assert [r["content"] for r in db.list_latest(JOURNAL)] == ["later", "earlier"]

    def test_list_by_field(self, db):
        db.insert_local(TODOS, {"title": "a", "category": "work"})
        db.insert_local(TODOS, {"title": "b", "category": "home"})
        assert [r["title"] for r in db.list_by_field(TODOS, "category", "work")] == ["a"]
        with pytest.raises(InputError):
            db.list_by_field(TODOS, "server_id", "x")

    def test_counts(self, db):
        first = db.insert_local(JOURNAL, {"date": "2024-01-01", "content": "a"})
        db.insert_local(JOURNAL, {"date": "2024-01-01", "content": "b"})
        db.mark_synced(JOURNAL, first["local_id"], "srv-1")
        assert db.count_all(JOURNAL) == 2
        assert db.count_unsynced(JOURNAL) == 1
        assert [r["content"] for r in db.list_unsynced(JOURNAL)] == ["b"]

    def test_kind_string_accepted(self, db):
        db.insert_local("journal", {"date": "2024-01-01", "content": "by name"})
        assert db.count_all("journal") == 1
        with pytest.raises(InputError):
            db.count_all("dreams")


class TestUpdates:
    def test_mark_synced_sets_server_id(self, db):
        row = db.insert_local(JOURNAL, {"date": "2024-01-01", "content": "hello"})
        assert db.mark_synced(JOURNAL, row["local_id"], "abc123", "2024-01-01T10:00:00Z")
        stored = db.get_by_local_id(JOURNAL, row["local_id"])
        assert stored["synced"] is True
        assert stored["server_id"] == "abc123"
        assert stored["timestamp"] == "2024-01-01T10:00:00Z"

    def test_mark_synced_requires_server_id(self, db):
        row = db.insert_local(JOURNAL, {"date": "2024-01-01", "content": "hello"})
        with pytest.raises(InputError):
            db.mark_synced(JOURNAL, row["local_id"], "")
        assert db.get_by_local_id(JOURNAL, row["local_id"])["synced"] is False

    def test_mark_synced_missing_row(self, db):
        assert db.mark_synced(JOURNAL, 999, "abc") is False

    def test_update_fields_partial(self, db):
        row = db.insert_local(TODOS, {"title": "Old", "category": "work", "description": "d"})
        assert db.update_fields(TODOS, row["local_id"], {"title": "New"})
        stored = db.get_by_local_id(TODOS, row["local_id"])
        assert stored["title"] == "New"
        assert stored["description"] == "d"
        assert stored["updated_at"] >= row["updated_at"]

    def test_update_fields_rejects_protected_columns(self, db):
        row = db.insert_local(JOURNAL, {"date": "2024-01-01", "content": "x"})
        with pytest.raises(InputError):
            db.update_fields(JOURNAL, row["local_id"], {"synced": 1})
        with pytest.raises(InputError):
            db.update_fields(JOURNAL, row["local_id"], {"content": ""})
        with pytest.raises(InputError):
            db.update_fields(JOURNAL, row["local_id"], {})

    def test_update_missing_row(self, db):
        assert db.update_fields(JOURNAL, 42, {"content": "nobody"}) is False

    def test_toggle_flag(self, db):
        row = db.insert_local(MISTAKES, {"date": "2024-01-01", "mistake": "m", "solution": "s", "category": "c"})
        assert db.toggle_flag(MISTAKES, row["local_id"]) is True
        assert db.get_by_local_id(MISTAKES, row["local_id"])["avoided"] is True
        assert db.toggle_flag(MISTAKES, row["local_id"]) is False

    def test_toggle_flag_errors(self, db):
        row = db.insert_local(JOURNAL, {"date": "2024-01-01", "content": "x"})
        with pytest.raises(InputError):
            db.toggle_flag(JOURNAL, row["local_id"])
        with pytest.raises(RecordNotFoundError):
            db.toggle_flag(OVERTHINKING, 12345)


class TestUpsertFromServer:
    def test_inserts_synced_row(self, db):
        local_id = db.upsert_from_server(JOURNAL, "srv-9", {"date": "2024-01-01", "content": "remote"},
                                         "2024-01-01T09:00:00Z")
        row = db.get_by_local_id(JOURNAL, local_id)
        assert row["synced"] is True
        assert row["server_id"] == "srv-9"

    def test_idempotent_on_server_id(self, db):
        first = db.upsert_from_server(JOURNAL, "srv-1", {"date": "2024-01-01", "content": "v1"}, "2024-01-01T09:00:00Z")
        second = db.upsert_from_server(JOURNAL, "srv-1", {"date": "2024-01-01", "content": "v2"}, "2024-01-01T09:05:00Z")
        assert first == second
        assert db.count_all(JOURNAL) == 1
        row = db.get_by_server_id(JOURNAL, "srv-1")
        assert row["content"] == "v2"
        assert row["timestamp"] == "2024-01-01T09:05:00Z"

    def test_updates_locally_pushed_row(self, db):
        row = db.insert_local(JOURNAL, {"date": "2024-01-01", "content": "mine"})
        db.mark_synced(JOURNAL, row["local_id"], "srv-7")
        assert db.upsert_from_server(JOURNAL, "srv-7", {"content": "edited elsewhere"}, None) == row["local_id"]
        assert db.get_by_local_id(JOURNAL, row["local_id"])["content"] == "edited elsewhere"

    def test_new_row_needs_required_fields(self, db):
        with pytest.raises(InputError):
            db.upsert_from_server(JOURNAL, "srv-2", {"date": "2024-01-01"}, None)
        assert db.count_all(JOURNAL) == 0

    def test_requires_server_id(self, db):
        with pytest.raises(InputError):
            db.upsert_from_server(JOURNAL, "", {"date": "2024-01-01", "content": "x"}, None)

    def test_update_cannot_blank_required_field(self, db):
        db.upsert_from_server(JOURNAL, "srv-3", {"date": "2024-01-01", "content": "kept"}, "2024-01-01T09:00:00Z")
        with pytest.raises(InputError):
            db.upsert_from_server(JOURNAL, "srv-3", {"content": None}, "2024-01-01T09:05:00Z")
        row = db.get_by_server_id(JOURNAL, "srv-3")
        assert row["content"] == "kept"
        assert row["timestamp"] == "2024-01-01T09:00:00Z"


class TestDelete:
    def test_delete_by_local_id(self, db):
        row = db.insert_local(JOURNAL, {"date": "2024-01-01", "content": "bye"})
        assert db.delete_local(JOURNAL, local_id=row["local_id"]) == 1
        assert db.get_by_local_id(JOURNAL, row["local_id"]) is None

    def test_delete_by_server_id(self, db):
        db.upsert_from_server(JOURNAL, "abc123", {"date": "2024-01-01", "content": "remote"}, None)
        assert db.delete_local(JOURNAL, server_id="abc123") == 1
        assert db.count_all(JOURNAL) == 0

    def test_delete_requires_a_key(self, db):
        with pytest.raises(InputError):
            db.delete_local(JOURNAL)


class TestCarriedOver:
    def _insert_task(self, db, title="Write report", category="work"):
        return db.insert_local(TODOS, {"title": title, "description": "quarterly", "category": category})

    def test_move_to_carried_over(self, db):
        # Push the autoincrement sequence so the moved task has id 5
        for i in range(4):
            db.delete_local(TODOS, local_id=self._insert_task(db, title=f"filler {i}")["local_id"])
        task = self._insert_task(db)
        assert task["local_id"] == 5

        db.move_to_carried_over(5)

        carried = db.list_carried_over_by_category("work")
        assert len(carried) == 1
        assert carried[0]["original_task_id"] == 5
        assert carried[0]["title"] == "Write report"
        assert carried[0]["description"] == "quarterly"
        assert carried[0]["category"] == "work"
        assert carried[0]["original_created_at"] == task["created_at"]
        assert db.get_by_local_id(TODOS, 5) is None

    def test_move_missing_task(self, db):
        with pytest.raises(RecordNotFoundError):
            db.move_to_carried_over(77)

    def test_move_is_atomic(self, db):
        task = self._insert_task(db)
        conn = db.get_connection()
        # Make the delete half of the move fail
        conn.execute(
            "CREATE TRIGGER block_todo_delete BEFORE DELETE ON todos "
            "BEGIN SELECT RAISE(ABORT, 'delete blocked'); END"
        )
        with pytest.raises(UnwindDBError):
            db.move_to_carried_over(task["local_id"])
        assert db.get_by_local_id(TODOS, task["local_id"]) is not None
        assert conn.execute(f"SELECT COUNT(*) FROM {CARRIED_OVER_TABLE}").fetchone()[0] == 0

    def test_move_all_pending(self, db):
        done = self._insert_task(db, title="done")
        db.set_flag(TODOS, done["local_id"], True)
        self._insert_task(db, title="pending one")
        self._insert_task(db, title="pending two", category="home")

        assert db.move_all_pending_to_carried_over() == 2
        remaining = db.list_all(TODOS)
        assert [r["title"] for r in remaining] == ["done"]
        assert len(db.list_carried_over_by_category("home")) == 1


class TestTransactions:
    def test_rollback_on_error(self, db):
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                conn.execute("INSERT INTO journal (date, content, timestamp) VALUES ('2024-01-01', 'x', 'now')")
                raise RuntimeError("abort")
        assert db.count_all(JOURNAL) == 0

    def test_nested_commits_once(self, db):
        with db.transaction() as outer:
            with db.transaction() as inner:
                inner.execute("INSERT INTO journal (date, content, timestamp) VALUES ('2024-01-01', 'x', 'now')")
            assert outer.in_transaction
        assert db.count_all(JOURNAL) == 1

    def test_raw_sqlite_errors_are_wrapped(self, db):
        with pytest.raises(UnwindDBError):
            db.execute_query(JOURNAL.table, "SELECT nonexistent_column FROM journal")

    def test_duplicate_primary_key_raises_conflict(self, db):
        row = db.insert_local(JOURNAL, {"date": "2024-01-01", "content": "x"})
        with pytest.raises(ConflictError):
            db.execute_query(JOURNAL.table, "INSERT INTO journal (id, date, content, timestamp) VALUES (?, ?, ?, ?)",
                             (row["local_id"], "2024-01-02", "y", "now"))

#
# End of test_unwind_db.py
#######################################################################################################################
