# entity_descriptors.py
# Description: Data-only descriptions of each syncable entity kind (table layout, API path, field mapping)
#
"""
entity_descriptors.py
---------------------

Every syncable entity kind (journal entries, mistakes, overthinking thoughts
and todos) follows the same storage shape:

- ``id``         INTEGER primary key, the process-local id (``local_id``)
- ``server_id``  TEXT, NULL until the backend accepted the record
- payload columns specific to the kind
- a timestamp column used for ordering
- ``synced``     INTEGER 0/1
- an optional status flag (``avoided``, ``dumped``, ``completed``)

An ``EntityDescriptor`` captures those differences as data so the local store,
the API client and the sync service can each be written once.
"""
# Imports
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
#
# Third-Party Imports
#
# Local Imports
from unwind_sync.Constants import (
    DEFAULT_TODO_PRIORITY,
    KIND_JOURNAL,
    KIND_MISTAKES,
    KIND_OVERTHINKING,
    KIND_TODOS,
)
#
########################################################################################################################
#
# Functions:


@dataclass(frozen=True)
class EntityDescriptor:
    kind: str
    table: str
    api_path: str
    payload_columns: Tuple[str, ...]
    required_columns: Tuple[str, ...]
    timestamp_column: str = "timestamp"
    date_column: Optional[str] = "date"
    flag_column: Optional[str] = None
    # server JSON key -> local column
    server_field_map: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)
    list_response_key: str = "entries"
    supports_update: bool = False
    updated_at_column: Optional[str] = None
    column_defaults: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)
    indexed_columns: Tuple[str, ...] = ()

    @property
    def local_to_server_map(self) -> Dict[str, str]:
        return {local: remote for remote, local in self.server_field_map.items()}


JOURNAL = EntityDescriptor(
    kind=KIND_JOURNAL,
    table="journal",
    api_path="/api/journal",
    payload_columns=("date", "content"),
    required_columns=("date", "content"),
    server_field_map={"date": "date", "content": "content"},
    indexed_columns=("date", "server_id"),
)

MISTAKES = EntityDescriptor(
    kind=KIND_MISTAKES,
    table="mistakes",
    api_path="/api/mistakes",
    payload_columns=("date", "mistake", "solution", "category"),
    required_columns=("date", "mistake", "solution", "category"),
    flag_column="avoided",
    server_field_map={
        "date": "date",
        "mistake": "mistake",
        "solution": "solution",
        "category": "category",
        "avoided": "avoided",
    },
    indexed_columns=("date", "server_id", "category"),
)

OVERTHINKING = EntityDescriptor(
    kind=KIND_OVERTHINKING,
    table="overthinking",
    api_path="/api/overthinking",
    payload_columns=("date", "thought", "solution"),
    required_columns=("date", "thought"),
    flag_column="dumped",
    server_field_map={
        "date": "date",
        "thought": "thought",
        "solution": "solution",
        "dumped": "dumped",
    },
    indexed_columns=("date", "server_id"),
)

TODOS = EntityDescriptor(
    kind=KIND_TODOS,
    table="todos",
    api_path="/api/todos",
    payload_columns=("title", "description", "category", "priority", "due_date"),
    required_columns=("title", "category"),
    timestamp_column="created_at",
    date_column=None,
    flag_column="completed",
    server_field_map={
        "title": "title",
        "description": "description",
        "category": "category",
        "priority": "priority",
        "dueDate": "due_date",
        "completed": "completed",
    },
    list_response_key="todos",
    supports_update=True,
    updated_at_column="updated_at",
    column_defaults={"priority": DEFAULT_TODO_PRIORITY},
    indexed_columns=("category", "completed", "server_id"),
)

ENTITY_DESCRIPTORS: Dict[str, EntityDescriptor] = {
    d.kind: d for d in (JOURNAL, MISTAKES, OVERTHINKING, TODOS)
}


def get_descriptor(kind: str) -> EntityDescriptor:
    try:
        return ENTITY_DESCRIPTORS[kind]
    except KeyError:
        raise ValueError(f"Unknown entity kind '{kind}'. Known kinds: {sorted(ENTITY_DESCRIPTORS)}") from None


def to_request_body(descriptor: EntityDescriptor, row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Builds the JSON body the backend expects for a create/update call from a local row.

    Local snake_case columns are renamed to the backend's field names (``due_date`` -> ``dueDate``).
    The status flag is only sent for kinds whose endpoint supports updates (todos).
    """
    body: Dict[str, Any] = {}
    mapping = descriptor.local_to_server_map
    for column in descriptor.payload_columns:
        if column in row:
            body[mapping.get(column, column)] = row[column]
    if descriptor.supports_update and descriptor.flag_column and descriptor.flag_column in row:
        body[mapping.get(descriptor.flag_column, descriptor.flag_column)] = bool(row[descriptor.flag_column])
    return body


def from_server_record(descriptor: EntityDescriptor,
                       record: Dict[str, Any]) -> Tuple[str, Dict[str, Any], Optional[str]]:
    """
    Splits a server JSON object into ``(server_id, payload, timestamp)``.

    The server id is read from ``_id`` (falling back to ``id``); the timestamp from
    ``createdAt``. Only fields present in the record are put in the payload, so an
    upsert never blanks a local column the server did not send.

    Raises:
        ValueError: If the record carries no identifier.
    """
    server_id = record.get("_id") or record.get("id")
    if not server_id:
        raise ValueError(f"Server {descriptor.kind} record has no identifier: {record!r}")
    payload: Dict[str, Any] = {}
    for remote_key, local_col in descriptor.server_field_map.items():
        if remote_key in record:
            value = record[remote_key]
            if local_col == descriptor.flag_column:
                value = bool(value)
            payload[local_col] = value
    if descriptor.updated_at_column and record.get("updatedAt"):
        payload[descriptor.updated_at_column] = record["updatedAt"]
    return str(server_id), payload, record.get("createdAt")

#
# End of entity_descriptors.py
########################################################################################################################
