# Unwind_DB.py
# Description: DB Library for the offline-first journal, mistakes, overthinking and todo tables.
#
"""
Unwind_DB.py
------------

A SQLite-based local store for the Unwind journaling data. Every syncable
entity kind lives in its own table inside one database file, and every table
follows the same layout described by an ``EntityDescriptor``.

This library provides:
- An explicitly constructed store object. Nothing is opened at construction;
  ``initialize_schema()`` opens the single shared connection and creates the
  tables. Queries against a table whose schema has not been created fail fast
  with ``StoreNotReadyError``.
- Generic CRUD for any descriptor: insert-local, list (all / by date / latest /
  by field / unsynced), partial update, mark-synced, status flag toggling,
  upsert-from-server keyed on ``server_id`` and delete by local or server id.
- A carried-over table for todos, with an atomic move operation.
- A transaction context manager for grouping statements.
- Custom exceptions for not-ready, schema, input, conflict and not-found errors.

Invariants kept by this module:
- ``synced = 1`` is only ever written together with a non-empty ``server_id``.
- ``upsert_from_server`` is keyed strictly on ``server_id``.
"""
# Imports
import sqlite3
import threading
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Dict, Optional, Any, Union, Iterable, Set
#
# Third-Party Libraries
#
# Local Imports
from unwind_sync.Constants import DEFAULT_LATEST_LIMIT
from unwind_sync.DB.entity_descriptors import EntityDescriptor, ENTITY_DESCRIPTORS, TODOS
#
########################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)


# --- Custom Exceptions ---
class UnwindDBError(Exception):
    """Base exception for local store errors."""
    pass


class StoreNotReadyError(UnwindDBError):
    """Raised when a table is queried before its schema has been created."""
    pass


class SchemaError(UnwindDBError):
    """Exception for schema version mismatches or creation failures."""
    pass


class InputError(ValueError):
    """Custom exception for input validation errors."""
    pass


class RecordNotFoundError(UnwindDBError):
    """Raised when an operation needs a row that does not exist."""

    def __init__(self, message="Record not found.", entity: Optional[str] = None, entity_id: Any = None):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(UnwindDBError):
    """
    Indicates a unique constraint violation.

    Attributes:
        entity (Optional[str]): The table involved in the conflict.
        entity_id (Any): The identifier of the row involved.
    """

    def __init__(self, message="Conflict detected.", entity: Optional[str] = None, entity_id: Any = None):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id

    def __str__(self):
        base = super().__str__()
        details = []
        if self.entity:
            details.append(f"Entity: {self.entity}")
        if self.entity_id:
            details.append(f"ID: {self.entity_id}")
        return f"{base} ({', '.join(details)})" if details else base


CARRIED_OVER_TABLE = "carried_over_todos"


# --- Database Class ---
class UnwindDB:
    """
    Owns the SQLite connection and all table operations for the local store.

    One instance is created at process start and passed to the sync services;
    its lifecycle is ``initialize_schema()`` ... ``close_connection()``.

    Attributes:
        db_path (Path): The absolute path to the SQLite database file, or Path(":memory:").
        client_id (str): Identifier of this client instance, used in log lines.
        is_memory_db (bool): True if the database is in-memory.
        db_path_str (str): String representation of the database path for SQLite connection.
    """
    _CURRENT_SCHEMA_VERSION = 1
    _SCHEMA_NAME = "unwind_sync_schema"

    _SCHEMA_VERSION_SQL = """
CREATE TABLE IF NOT EXISTS db_schema_version(
  schema_name TEXT PRIMARY KEY NOT NULL,
  version     INTEGER NOT NULL
);
"""

    _CARRIED_OVER_SQL = f"""
CREATE TABLE IF NOT EXISTS {CARRIED_OVER_TABLE} (
  id                  INTEGER PRIMARY KEY AUTOINCREMENT,
  original_task_id    INTEGER,
  title               TEXT NOT NULL,
  description         TEXT,
  category            TEXT NOT NULL,
  priority            TEXT DEFAULT 'medium',
  completed           INTEGER NOT NULL DEFAULT 0,
  due_date            TEXT,
  original_created_at TEXT NOT NULL,
  carried_over_at     TEXT NOT NULL,
  updated_at          TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_carried_over_category ON {CARRIED_OVER_TABLE}(category);
CREATE INDEX IF NOT EXISTS idx_carried_over_completed ON {CARRIED_OVER_TABLE}(completed);
"""

    def __init__(self, db_path: Union[str, Path], client_id: str,
                 descriptors: Optional[Iterable[EntityDescriptor]] = None):
        """
        Creates the store object. No connection is opened here.

        Args:
            db_path: Path to the SQLite database file or ":memory:".
            client_id: Identifier for this client instance. Must not be empty.
            descriptors: Entity kinds managed by this store. Defaults to all known kinds.

        Raises:
            ValueError: If `client_id` is empty or None.
        """
        if isinstance(db_path, Path):
            self.is_memory_db = False
            self.db_path = db_path.resolve()
        else:
            self.is_memory_db = (db_path == ':memory:')
            self.db_path = Path(db_path).resolve() if not self.is_memory_db else Path(":memory:")
        self.db_path_str = str(self.db_path) if not self.is_memory_db else ':memory:'

        if not client_id:
            raise ValueError("Client ID cannot be empty or None.")
        self.client_id = client_id

        self.descriptors: Dict[str, EntityDescriptor] = {
            d.kind: d for d in (descriptors if descriptors is not None else ENTITY_DESCRIPTORS.values())
        }
        self._conn: Optional[sqlite3.Connection] = None
        self._conn_lock = threading.Lock()
        self._ready_tables: Set[str] = set()

    # --- Connection Management ---
    def _open_connection(self) -> sqlite3.Connection:
        """
        Opens the shared connection if it is not open yet.

        Autocommit mode is used (``isolation_level=None``); multi-statement work
        goes through ``transaction()``.

        Raises:
            UnwindDBError: If the database directory cannot be created or connecting fails.
        """
        with self._conn_lock:
            if self._conn is not None:
                return self._conn
            if not self.is_memory_db:
                try:
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    raise UnwindDBError(f"Failed to create database directory {self.db_path.parent}: {e}") from e
            try:
                conn = sqlite3.connect(
                    self.db_path_str,
                    check_same_thread=False,
                    isolation_level=None,
                    timeout=15
                )
                conn.row_factory = sqlite3.Row
                if not self.is_memory_db:
                    conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("SELECT 1")
                self._conn = conn
                logger.debug(f"Opened SQLite connection to {self.db_path_str} [Client ID: {self.client_id}]")
            except sqlite3.Error as e:
                logger.error(f"Failed to connect to database {self.db_path_str}: {e}", exc_info=True)
                raise UnwindDBError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
            return self._conn

    def get_connection(self) -> sqlite3.Connection:
        """
        Returns the open connection.

        Raises:
            StoreNotReadyError: If `initialize_schema()` (or `create_schema()`) has not run yet.
        """
        if self._conn is None:
            raise StoreNotReadyError(f"Database connection to {self.db_path_str} is not ready.")
        return self._conn

    def close_connection(self):
        """
        Closes the shared connection, rolling back an uncommitted transaction first.

        After closing, every table is considered not ready again.
        """
        with self._conn_lock:
            conn = self._conn
            self._conn = None
            self._ready_tables.clear()
        if conn is None:
            return
        try:
            if conn.in_transaction:
                logger.warning(f"Connection to {self.db_path_str} is in an uncommitted transaction during close. Rolling back.")
                conn.rollback()
            conn.close()
            logger.debug(f"Closed connection to {self.db_path_str}.")
        except sqlite3.Error as e:
            logger.warning(f"Error during SQLite connection close for {self.db_path_str}: {e}")

    def test_connection(self) -> bool:
        """Runs ``SELECT 1`` on the open connection. Returns False instead of raising."""
        try:
            self.get_connection().execute("SELECT 1")
            return True
        except (UnwindDBError, sqlite3.Error) as e:
            logger.warning(f"Database connection test failed for {self.db_path_str}: {e}")
            return False

    def is_ready(self, kind_or_table: str) -> bool:
        descriptor = self.descriptors.get(kind_or_table)
        table = descriptor.table if descriptor else kind_or_table
        return self._conn is not None and table in self._ready_tables

    def _require_ready(self, table: str) -> sqlite3.Connection:
        conn = self.get_connection()
        if table not in self._ready_tables:
            raise StoreNotReadyError(f"Schema for table '{table}' has not been created yet.")
        return conn

    # --- Query Execution ---
    def execute_query(self, table: str, query: str, params: Optional[Union[tuple, Dict[str, Any]]] = None) -> sqlite3.Cursor:
        """
        Executes a single SQL statement against a ready table.

        Raises:
            StoreNotReadyError: If `table` is not ready.
            ConflictError: On a unique constraint violation.
            UnwindDBError: For other SQLite errors.
        """
        conn = self._require_ready(table)
        try:
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"Executing SQL: {query[:300]}... Params: {str(params)[:200]}...")
            return conn.execute(query, params or ())
        except sqlite3.IntegrityError as e:
            logger.warning(f"Integrity constraint violation: {query[:300]}... Error: {e}")
            if "unique constraint failed" in str(e).lower():
                raise ConflictError(f"Unique constraint violation: {e}", entity=table) from e
            raise UnwindDBError(f"Database constraint violation: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"Query execution failed: {query[:300]}... Error: {e}", exc_info=True)
            raise UnwindDBError(f"Query execution failed: {e}") from e

    # --- Transaction Context ---
    def transaction(self) -> 'TransactionContextManager':
        """
        Returns a context manager for database transactions.

        Usage:
            with db.transaction() as conn:
                conn.execute(...)
                # Commit on successful exit, rollback on exception.
        """
        return TransactionContextManager(self)

    # --- Schema Initialization ---
    def _get_db_version(self, conn: sqlite3.Connection) -> int:
        try:
            cursor = conn.execute("SELECT version FROM db_schema_version WHERE schema_name = ? LIMIT 1",
                                  (self._SCHEMA_NAME,))
            result = cursor.fetchone()
            return result['version'] if result else 0
        except sqlite3.Error as e:
            if "no such table" in str(e).lower():
                return 0
            raise SchemaError(f"Could not determine schema version for '{self._SCHEMA_NAME}': {e}") from e

    @staticmethod
    def _table_sql(descriptor: EntityDescriptor) -> List[str]:
        column_lines = [
            "id INTEGER PRIMARY KEY AUTOINCREMENT",
            "server_id TEXT",
        ]
        for col in descriptor.payload_columns:
            line = f"{col} TEXT"
            if col in descriptor.required_columns:
                line += " NOT NULL"
            if col in descriptor.column_defaults:
                line += f" DEFAULT '{descriptor.column_defaults[col]}'"
            column_lines.append(line)
        column_lines.append(f"{descriptor.timestamp_column} TEXT NOT NULL")
        if descriptor.updated_at_column:
            column_lines.append(f"{descriptor.updated_at_column} TEXT NOT NULL")
        if descriptor.flag_column:
            column_lines.append(f"{descriptor.flag_column} INTEGER NOT NULL DEFAULT 0")
        column_lines.append("synced INTEGER NOT NULL DEFAULT 0")

        statements = [
            f"CREATE TABLE IF NOT EXISTS {descriptor.table} (\n  " + ",\n  ".join(column_lines) + "\n)"
        ]
        for col in descriptor.indexed_columns:
            statements.append(
                f"CREATE INDEX IF NOT EXISTS idx_{descriptor.table}_{col} ON {descriptor.table}({col})"
            )
        return statements

    def create_schema(self, descriptor: EntityDescriptor):
        """
        Creates the table and indexes for one entity kind. Idempotent.

        Opens the shared connection if needed. The table is marked ready only
        after its statements succeeded.

        Raises:
            SchemaError: If table creation fails.
        """
        conn = self._open_connection()
        try:
            with TransactionContextManager(self, conn=conn) as tx_conn:
                for statement in self._table_sql(descriptor):
                    tx_conn.execute(statement)
                if descriptor.table == TODOS.table:
                    for statement in filter(None, (s.strip() for s in self._CARRIED_OVER_SQL.split(";"))):
                        tx_conn.execute(statement)
        except sqlite3.Error as e:
            logger.error(f"Schema creation for table '{descriptor.table}' failed: {e}", exc_info=True)
            raise SchemaError(f"Schema creation for table '{descriptor.table}' failed: {e}") from e
        self._ready_tables.add(descriptor.table)
        if descriptor.table == TODOS.table:
            self._ready_tables.add(CARRIED_OVER_TABLE)
        logger.info(f"Table '{descriptor.table}' ready in {self.db_path_str}.")

    def initialize_schema(self):
        """
        Creates every managed table and records the schema version.

        Checks the stored version first:
        - 0 (new DB) or current: creates missing tables (idempotent) and records the version.
        - newer than supported: raises SchemaError.

        Raises:
            SchemaError: If the stored schema is newer than this code or creation fails.
            UnwindDBError: If the connection cannot be opened.
        """
        conn = self._open_connection()
        try:
            with TransactionContextManager(self, conn=conn) as tx_conn:
                tx_conn.execute(self._SCHEMA_VERSION_SQL)
                current_version = self._get_db_version(tx_conn)
                logger.info(f"Checking DB schema '{self._SCHEMA_NAME}'. Current version: {current_version}. "
                            f"Code supports: {self._CURRENT_SCHEMA_VERSION}")
                if current_version > self._CURRENT_SCHEMA_VERSION:
                    raise SchemaError(
                        f"Database schema '{self._SCHEMA_NAME}' version ({current_version}) is newer than "
                        f"supported by code ({self._CURRENT_SCHEMA_VERSION}). Aborting.")
                tx_conn.execute(
                    "INSERT INTO db_schema_version(schema_name, version) VALUES(?, ?) "
                    "ON CONFLICT(schema_name) DO UPDATE SET version = excluded.version",
                    (self._SCHEMA_NAME, self._CURRENT_SCHEMA_VERSION))
        except sqlite3.Error as e:
            logger.error(f"Schema version check failed for '{self._SCHEMA_NAME}': {e}", exc_info=True)
            raise SchemaError(f"Schema version check failed for '{self._SCHEMA_NAME}': {e}") from e

        for descriptor in self.descriptors.values():
            self.create_schema(descriptor)
        logger.info(f"Database schema '{self._SCHEMA_NAME}' initialized at version {self._CURRENT_SCHEMA_VERSION} "
                    f"for {self.db_path_str}.")

    def get_schema_version(self) -> int:
        return self._get_db_version(self.get_connection())

    # --- Internal Helpers ---
    @staticmethod
    def _get_current_utc_timestamp_iso() -> str:
        """
        Generates the current UTC timestamp in ISO 8601 format with 'Z' for UTC.

        Example: "2023-10-27T10:30:00.123Z"
        """
        return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')

    def _descriptor(self, descriptor_or_kind: Union[EntityDescriptor, str]) -> EntityDescriptor:
        if isinstance(descriptor_or_kind, EntityDescriptor):
            return descriptor_or_kind
        try:
            return self.descriptors[descriptor_or_kind]
        except KeyError:
            raise InputError(f"Entity kind '{descriptor_or_kind}' is not managed by this store.") from None

    @staticmethod
    def _row_to_dict(descriptor: EntityDescriptor, row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
        if row is None:
            return None
        data = dict(row)
        data["local_id"] = data.pop("id")
        data["synced"] = bool(data.get("synced"))
        if descriptor.flag_column and descriptor.flag_column in data:
            data[descriptor.flag_column] = bool(data[descriptor.flag_column])
        return data

    def _rows_to_dicts(self, descriptor: EntityDescriptor, rows: Iterable[sqlite3.Row]) -> List[Dict[str, Any]]:
        return [self._row_to_dict(descriptor, row) for row in rows]

    @staticmethod
    def _clean_value(value: Any) -> Any:
        if isinstance(value, bool):
            return 1 if value else 0
        if isinstance(value, str):
            return value.strip()
        return value

    def _validate_required(self, descriptor: EntityDescriptor, data: Dict[str, Any], partial: bool = False):
        for col in descriptor.required_columns:
            if partial and col not in data:
                continue
            value = data.get(col)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise InputError(f"{descriptor.kind} field '{col}' cannot be empty.")

    # --- Entity Reads ---
    def get_by_local_id(self, descriptor: Union[EntityDescriptor, str], local_id: int) -> Optional[Dict[str, Any]]:
        desc = self._descriptor(descriptor)
        cursor = self.execute_query(desc.table, f"SELECT * FROM {desc.table} WHERE id = ?", (local_id,))
        return self._row_to_dict(desc, cursor.fetchone())

    def get_by_server_id(self, descriptor: Union[EntityDescriptor, str], server_id: str) -> Optional[Dict[str, Any]]:
        desc = self._descriptor(descriptor)
        cursor = self.execute_query(desc.table, f"SELECT * FROM {desc.table} WHERE server_id = ? LIMIT 1",
                                    (server_id,))
        return self._row_to_dict(desc, cursor.fetchone())

    def list_all(self, descriptor: Union[EntityDescriptor, str]) -> List[Dict[str, Any]]:
        """All rows of a kind, oldest first."""
        desc = self._descriptor(descriptor)
        query = f"SELECT * FROM {desc.table} ORDER BY {desc.timestamp_column} ASC, id ASC"
        return self._rows_to_dicts(desc, self.execute_query(desc.table, query).fetchall())

    def list_by_date(self, descriptor: Union[EntityDescriptor, str], date: str) -> List[Dict[str, Any]]:
        """
        Rows whose date column equals `date`, oldest first.

        Raises:
            InputError: If the kind has no date column (todos).
        """
        desc = self._descriptor(descriptor)
        if not desc.date_column:
            raise InputError(f"Entity kind '{desc.kind}' has no date column.")
        query = (f"SELECT * FROM {desc.table} WHERE {desc.date_column} = ? "
                 f"ORDER BY {desc.timestamp_column} ASC, id ASC")
        return self._rows_to_dicts(desc, self.execute_query(desc.table, query, (date,)).fetchall())

    def list_latest(self, descriptor: Union[EntityDescriptor, str], limit: int = DEFAULT_LATEST_LIMIT) -> List[Dict[str, Any]]:
        """The `limit` most recent rows, newest first."""
        desc = self._descriptor(descriptor)
        if limit is None or int(limit) < 0:
            raise InputError("limit must be a non-negative integer.")
        query = (f"SELECT * FROM {desc.table} "
                 f"ORDER BY {desc.timestamp_column} DESC, id DESC LIMIT ?")
        return self._rows_to_dicts(desc, self.execute_query(desc.table, query, (int(limit),)).fetchall())

    def list_by_field(self, descriptor: Union[EntityDescriptor, str], column: str, value: Any) -> List[Dict[str, Any]]:
        """Equality filter on any payload column, newest first."""
        desc = self._descriptor(descriptor)
        if column not in desc.payload_columns and column != desc.flag_column:
            raise InputError(f"'{column}' is not a filterable column of '{desc.kind}'.")
        query = (f"SELECT * FROM {desc.table} WHERE {column} = ? "
                 f"ORDER BY {desc.timestamp_column} DESC, id DESC")
        return self._rows_to_dicts(desc, self.execute_query(desc.table, query, (self._clean_value(value),)).fetchall())

    def list_unsynced(self, descriptor: Union[EntityDescriptor, str]) -> List[Dict[str, Any]]:
        desc = self._descriptor(descriptor)
        query = f"SELECT * FROM {desc.table} WHERE synced = 0 ORDER BY {desc.timestamp_column} ASC, id ASC"
        return self._rows_to_dicts(desc, self.execute_query(desc.table, query).fetchall())

    def count_unsynced(self, descriptor: Union[EntityDescriptor, str]) -> int:
        desc = self._descriptor(descriptor)
        row = self.execute_query(desc.table, f"SELECT COUNT(*) AS n FROM {desc.table} WHERE synced = 0").fetchone()
        return row["n"]

    def count_all(self, descriptor: Union[EntityDescriptor, str]) -> int:
        desc = self._descriptor(descriptor)
        row = self.execute_query(desc.table, f"SELECT COUNT(*) AS n FROM {desc.table}").fetchone()
        return row["n"]

    # --- Entity Writes ---
    def insert_local(self, descriptor: Union[EntityDescriptor, str], payload: Dict[str, Any],
                     timestamp: Optional[str] = None) -> Dict[str, Any]:
        """
        Inserts a locally created row with ``synced = 0`` and ``server_id = NULL``.

        Args:
            descriptor: Entity kind.
            payload: Values for the kind's payload columns. Unknown keys raise InputError.
            timestamp: Client-assigned creation time. Defaults to now (UTC, ISO 8601).

        Returns:
            The full row as stored, including the generated ``local_id``.

        Raises:
            InputError: If a required field is missing/blank or an unknown field is given.
            StoreNotReadyError: If the table is not ready.
            UnwindDBError: For SQLite failures.
        """
        desc = self._descriptor(descriptor)
        unknown = set(payload) - set(desc.payload_columns)
        if unknown:
            raise InputError(f"Unknown {desc.kind} field(s): {sorted(unknown)}")
        self._validate_required(desc, payload)

        now = timestamp or self._get_current_utc_timestamp_iso()
        columns = ["server_id"]
        values: List[Any] = [None]
        for col in desc.payload_columns:
            if col in payload and payload[col] is not None:
                columns.append(col)
                values.append(self._clean_value(payload[col]))
            elif col in desc.column_defaults:
                columns.append(col)
                values.append(desc.column_defaults[col])
        columns.append(desc.timestamp_column)
        values.append(now)
        if desc.updated_at_column:
            columns.append(desc.updated_at_column)
            values.append(now)
        if desc.flag_column:
            columns.append(desc.flag_column)
            values.append(0)
        columns.append("synced")
        values.append(0)

        query = f"INSERT INTO {desc.table} ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})"
        cursor = self.execute_query(desc.table, query, tuple(values))
        local_id = cursor.lastrowid
        logger.info(f"Inserted local {desc.kind} row {local_id} (unsynced).")
        return self.get_by_local_id(desc, local_id)

    def update_fields(self, descriptor: Union[EntityDescriptor, str], local_id: int, fields: Dict[str, Any]) -> bool:
        """
        Partially updates payload columns (and the timestamp columns) of one row.

        For kinds with an ``updated_at`` column it is refreshed automatically unless
        given explicitly. ``server_id``, ``synced`` and the status flag are not
        updatable here; use `mark_synced` / `set_flag`.

        Returns:
            True if a row was updated, False if `local_id` does not exist.

        Raises:
            InputError: If `fields` is empty, names an unknown/protected column, or blanks a required one.
        """
        desc = self._descriptor(descriptor)
        if not fields:
            raise InputError(f"No data provided for {desc.kind} update.")
        allowed = set(desc.payload_columns) | {desc.timestamp_column}
        if desc.updated_at_column:
            allowed.add(desc.updated_at_column)
        bad = set(fields) - allowed
        if bad:
            raise InputError(f"Cannot update field(s) {sorted(bad)} of {desc.kind}.")
        self._validate_required(desc, fields, partial=True)

        updates = dict(fields)
        if desc.updated_at_column and desc.updated_at_column not in updates:
            updates[desc.updated_at_column] = self._get_current_utc_timestamp_iso()
        set_sql = ", ".join(f"{col} = ?" for col in updates)
        params = tuple(self._clean_value(v) for v in updates.values()) + (local_id,)
        cursor = self.execute_query(desc.table, f"UPDATE {desc.table} SET {set_sql} WHERE id = ?", params)
        if cursor.rowcount == 0:
            logger.warning(f"Update of {desc.kind} row {local_id} affected 0 rows.")
            return False
        logger.debug(f"Updated {desc.kind} row {local_id}: {sorted(updates)}")
        return True

    def mark_synced(self, descriptor: Union[EntityDescriptor, str], local_id: int, server_id: str,
                    timestamp: Optional[str] = None) -> bool:
        """
        Records a successful push: sets ``server_id`` and ``synced = 1`` (and the timestamp if given).

        Raises:
            InputError: If `server_id` is empty.
        """
        desc = self._descriptor(descriptor)
        if not server_id or not str(server_id).strip():
            raise InputError("Cannot mark a row synced without a server id.")
        if timestamp:
            query = f"UPDATE {desc.table} SET server_id = ?, {desc.timestamp_column} = ?, synced = 1 WHERE id = ?"
            params: tuple = (str(server_id), timestamp, local_id)
        else:
            query = f"UPDATE {desc.table} SET server_id = ?, synced = 1 WHERE id = ?"
            params = (str(server_id), local_id)
        cursor = self.execute_query(desc.table, query, params)
        if cursor.rowcount == 0:
            logger.warning(f"mark_synced: {desc.kind} row {local_id} no longer exists (server id {server_id}).")
            return False
        logger.info(f"Marked {desc.kind} row {local_id} synced with server id {server_id}.")
        return True

    def set_flag(self, descriptor: Union[EntityDescriptor, str], local_id: int, value: bool) -> bool:
        desc = self._descriptor(descriptor)
        if not desc.flag_column:
            raise InputError(f"Entity kind '{desc.kind}' has no status flag.")
        assignments = [f"{desc.flag_column} = ?"]
        params: List[Any] = [1 if value else 0]
        if desc.updated_at_column:
            assignments.append(f"{desc.updated_at_column} = ?")
            params.append(self._get_current_utc_timestamp_iso())
        params.append(local_id)
        cursor = self.execute_query(desc.table, f"UPDATE {desc.table} SET {', '.join(assignments)} WHERE id = ?",
                                    tuple(params))
        return cursor.rowcount > 0

    def toggle_flag(self, descriptor: Union[EntityDescriptor, str], local_id: int) -> bool:
        """
        Flips the kind's status flag (avoided / dumped / completed).

        Returns:
            The new flag value.

        Raises:
            InputError: If the kind has no status flag.
            RecordNotFoundError: If the row does not exist.
        """
        desc = self._descriptor(descriptor)
        if not desc.flag_column:
            raise InputError(f"Entity kind '{desc.kind}' has no status flag.")
        row = self.get_by_local_id(desc, local_id)
        if row is None:
            raise RecordNotFoundError(f"{desc.kind} row {local_id} not found.", entity=desc.table, entity_id=local_id)
        new_value = not row[desc.flag_column]
        self.set_flag(desc, local_id, new_value)
        return new_value

    def upsert_from_server(self, descriptor: Union[EntityDescriptor, str], server_id: str,
                           payload: Dict[str, Any], timestamp: Optional[str] = None) -> int:
        """
        Inserts or updates a server-originated record, keyed strictly on `server_id`.

        If a local row with this server id exists it is updated in place (fields
        present in `payload` plus the timestamp) and marked synced; otherwise a
        new row is inserted with ``synced = 1``. Runs in one transaction.

        Returns:
            The local id of the inserted or updated row.

        Raises:
            InputError: If `server_id` is empty, a new row would miss a required field,
                or an update would blank one.
        """
        desc = self._descriptor(descriptor)
        if not server_id:
            raise InputError("upsert_from_server requires a server id.")
        known = set(desc.payload_columns)
        if desc.flag_column:
            known.add(desc.flag_column)
        if desc.updated_at_column:
            known.add(desc.updated_at_column)
        values = {k: self._clean_value(v) for k, v in payload.items() if k in known}

        self._require_ready(desc.table)
        try:
            with self.transaction() as conn:
                existing = conn.execute(f"SELECT id FROM {desc.table} WHERE server_id = ? LIMIT 1",
                                        (server_id,)).fetchone()
                if existing:
                    self._validate_required(desc, values, partial=True)
                    updates = dict(values)
                    if timestamp:
                        updates[desc.timestamp_column] = timestamp
                    updates["synced"] = 1
                    set_sql = ", ".join(f"{col} = ?" for col in updates)
                    conn.execute(f"UPDATE {desc.table} SET {set_sql} WHERE server_id = ?",
                                 tuple(updates.values()) + (server_id,))
                    logger.debug(f"Upsert updated {desc.kind} row {existing['id']} (server id {server_id}).")
                    return existing["id"]

                self._validate_required(desc, values)
                now = timestamp or self._get_current_utc_timestamp_iso()
                row = dict(values)
                row["server_id"] = server_id
                row[desc.timestamp_column] = now
                if desc.updated_at_column and desc.updated_at_column not in row:
                    row[desc.updated_at_column] = now
                row["synced"] = 1
                cursor = conn.execute(
                    f"INSERT INTO {desc.table} ({', '.join(row)}) VALUES ({', '.join('?' for _ in row)})",
                    tuple(row.values()))
                logger.debug(f"Upsert inserted {desc.kind} row {cursor.lastrowid} (server id {server_id}).")
                return cursor.lastrowid
        except sqlite3.Error as e:
            logger.error(f"Upsert of {desc.kind} server id {server_id} failed: {e}", exc_info=True)
            raise UnwindDBError(f"Upsert of {desc.kind} server id {server_id} failed: {e}") from e

    def delete_local(self, descriptor: Union[EntityDescriptor, str], local_id: Optional[int] = None,
                     server_id: Optional[str] = None) -> int:
        """
        Hard-deletes a row by local id (preferred) or by server id.

        Returns:
            Number of rows removed.

        Raises:
            InputError: If neither key is given.
        """
        desc = self._descriptor(descriptor)
        if local_id is not None:
            cursor = self.execute_query(desc.table, f"DELETE FROM {desc.table} WHERE id = ?", (local_id,))
        elif server_id:
            cursor = self.execute_query(desc.table, f"DELETE FROM {desc.table} WHERE server_id = ?", (server_id,))
        else:
            raise InputError("delete_local requires a local id or a server id.")
        logger.info(f"Deleted {cursor.rowcount} {desc.kind} row(s) (local_id={local_id}, server_id={server_id}).")
        return cursor.rowcount

    # --- Carried-over Todos ---
    def move_to_carried_over(self, local_id: int) -> int:
        """
        Moves one todo into the carried-over table in a single transaction.

        The copy keeps the todo's fields, records ``original_task_id`` and
        ``original_created_at``, and stamps ``carried_over_at``. The source row
        is deleted in the same transaction, so the move either fully happens or
        not at all.

        Returns:
            The id of the new carried-over row.

        Raises:
            RecordNotFoundError: If the todo does not exist.
        """
        self._require_ready(CARRIED_OVER_TABLE)
        conn = self._require_ready(TODOS.table)
        carried_over_at = self._get_current_utc_timestamp_iso()
        try:
            with self.transaction():
                task = conn.execute(f"SELECT * FROM {TODOS.table} WHERE id = ?", (local_id,)).fetchone()
                if task is None:
                    raise RecordNotFoundError(f"Task {local_id} not found.", entity=TODOS.table, entity_id=local_id)
                cursor = conn.execute(
                    f"INSERT INTO {CARRIED_OVER_TABLE} (original_task_id, title, description, category, priority, "
                    "completed, due_date, original_created_at, carried_over_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (task["id"], task["title"], task["description"], task["category"], task["priority"],
                     task["completed"], task["due_date"], task["created_at"], carried_over_at, carried_over_at))
                conn.execute(f"DELETE FROM {TODOS.table} WHERE id = ?", (local_id,))
        except sqlite3.Error as e:
            logger.error(f"Moving task {local_id} to carried over failed: {e}", exc_info=True)
            raise UnwindDBError(f"Moving task {local_id} to carried over failed: {e}") from e
        logger.info(f"Moved task {local_id} to carried over (row {cursor.lastrowid}).")
        return cursor.lastrowid

    def move_all_pending_to_carried_over(self) -> int:
        """Moves every todo with ``completed = 0``. Returns the number of tasks moved."""
        conn = self._require_ready(TODOS.table)
        with self.transaction():
            pending = conn.execute(f"SELECT id FROM {TODOS.table} WHERE completed = 0").fetchall()
            for task in pending:
                self.move_to_carried_over(task["id"])
        logger.info(f"Moved {len(pending)} pending task(s) to carried over.")
        return len(pending)

    def list_carried_over_by_category(self, category: str) -> List[Dict[str, Any]]:
        cursor = self.execute_query(
            CARRIED_OVER_TABLE,
            f"SELECT * FROM {CARRIED_OVER_TABLE} WHERE category = ? ORDER BY carried_over_at DESC, id DESC",
            (category,))
        results = []
        for row in cursor.fetchall():
            data = dict(row)
            data["local_id"] = data.pop("id")
            data["completed"] = bool(data["completed"])
            results.append(data)
        return results


# --- Transaction Context Manager Class (Helper for `with db.transaction():`) ---
class TransactionContextManager:
    def __init__(self, db_instance: UnwindDB, conn: Optional[sqlite3.Connection] = None):
        self.db = db_instance
        self.conn: Optional[sqlite3.Connection] = conn
        self.is_outermost_transaction = False

    def __enter__(self) -> sqlite3.Connection:
        if self.conn is None:
            self.conn = self.db.get_connection()
        if not self.conn.in_transaction:
            self.conn.execute("BEGIN")
            self.is_outermost_transaction = True
            logger.debug(f"Transaction started (outermost) on thread {threading.get_ident()}.")
        else:
            # Only the outermost block commits or rolls back.
            logger.debug(f"Entering nested transaction block on thread {threading.get_ident()}.")
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self.is_outermost_transaction:
            return False
        if exc_type:
            logger.error(f"Transaction failed, rolling back: {exc_type.__name__} - {exc_val}")
            try:
                self.conn.rollback()
            except sqlite3.Error as rb_err:
                logger.critical(f"Rollback FAILED: {rb_err}", exc_info=True)
            return False
        try:
            self.conn.commit()
            logger.debug("Transaction (outermost) committed successfully.")
        except sqlite3.Error as commit_err:
            logger.error(f"Commit FAILED, attempting rollback: {commit_err}", exc_info=True)
            try:
                self.conn.rollback()
            except sqlite3.Error as rb_err_after_commit_fail:
                logger.critical(f"Rollback after failed commit also FAILED: {rb_err_after_commit_fail}",
                                exc_info=True)
            raise UnwindDBError(f"Commit failed: {commit_err}") from commit_err
        return False

#
# End of Unwind_DB.py
#######################################################################################################################
