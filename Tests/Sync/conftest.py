# Tests/Sync/conftest.py
import pytest
#
# Local Imports
from unwind_sync.DB.entity_descriptors import JOURNAL, TODOS
from unwind_sync.Sync.entity_sync import EntitySyncService, TodoSyncService
#
#######################################################################################################################
#
# Functions:


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def make_service(db, api_client, monitor, token_provider, notifications):
    """Factory building a sync service wired to the fake backend."""
    def _make(descriptor=JOURNAL, **overrides):
        kwargs = dict(token_provider=token_provider, notifier=notifications.append)
        kwargs.update(overrides)
        if descriptor is TODOS:
            return TodoSyncService(db, kwargs.pop("api_client", api_client), monitor, **kwargs)
        return EntitySyncService(db, kwargs.pop("api_client", api_client), monitor, descriptor, **kwargs)
    return _make


@pytest.fixture
def journal_service(make_service):
    return make_service(JOURNAL)


@pytest.fixture
def todo_service(make_service):
    return make_service(TODOS)
