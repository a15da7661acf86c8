# test_entity_descriptors.py
#
#
# Imports
import pytest
#
# Local Imports
from unwind_sync.DB.entity_descriptors import (
    ENTITY_DESCRIPTORS, JOURNAL, MISTAKES, OVERTHINKING, TODOS, get_descriptor, from_server_record, to_request_body,
)
#
#######################################################################################################################
#
# Functions:


def test_registry_covers_every_kind():
    assert set(ENTITY_DESCRIPTORS) == {"journal", "mistakes", "overthinking", "todos"}
    assert get_descriptor("todos") is TODOS
    with pytest.raises(ValueError):
        get_descriptor("meditation")


def test_request_body_uses_backend_names():
    row = {"local_id": 3, "title": "t", "description": None, "category": "work", "priority": "high",
           "due_date": "2024-02-01", "completed": True, "synced": False}
    body = to_request_body(TODOS, row)
    assert body == {"title": "t", "description": None, "category": "work", "priority": "high",
                    "dueDate": "2024-02-01", "completed": True}


def test_request_body_omits_flag_for_create_only_kinds():
    row = {"date": "2024-01-01", "mistake": "m", "solution": "s", "category": "c", "avoided": True}
    assert "avoided" not in to_request_body(MISTAKES, row)


def test_from_server_record():
    server_id, payload, timestamp = from_server_record(
        JOURNAL, {"_id": "abc123", "date": "2024-01-01", "content": "hi", "createdAt": "2024-01-01T10:00:00Z",
                  "mood": "calm"})
    assert server_id == "abc123"
    assert payload == {"date": "2024-01-01", "content": "hi"}
    assert timestamp == "2024-01-01T10:00:00Z"


def test_from_server_record_todo_mapping():
    server_id, payload, _ = from_server_record(
        TODOS, {"id": 17, "title": "t", "category": "c", "dueDate": "2024-03-01", "completed": 1,
                "updatedAt": "2024-03-02T00:00:00Z"})
    assert server_id == "17"
    assert payload["due_date"] == "2024-03-01"
    assert payload["completed"] is True
    assert payload["updated_at"] == "2024-03-02T00:00:00Z"


def test_from_server_record_requires_id():
    with pytest.raises(ValueError):
        from_server_record(JOURNAL, {"content": "orphan"})


def test_descriptors_are_hashable():
    by_descriptor = {descriptor: descriptor.kind for descriptor in ENTITY_DESCRIPTORS.values()}
    assert by_descriptor[TODOS] == "todos"
    assert len({JOURNAL, MISTAKES, OVERTHINKING, TODOS}) == 4

#
# End of test_entity_descriptors.py
#######################################################################################################################
