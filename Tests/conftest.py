# Tests/conftest.py
#
# Shared fixtures: a fresh local store per test, an in-process fake backend
# served through httpx.MockTransport, and a switchable connectivity probe.
#
# Imports
import json
from itertools import count
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
#
# Third-Party Imports
import httpx
import pytest
import pytest_asyncio
#
# Local Imports
from unwind_sync.DB.Unwind_DB import UnwindDB
from unwind_sync.DB.entity_descriptors import ENTITY_DESCRIPTORS
from unwind_sync.Network.network_monitor import NetworkMonitor
from unwind_sync.unwind_api.auth import StaticTokenProvider
from unwind_sync.unwind_api.client import UnwindAPIClient
#
#######################################################################################################################
#
# Functions:

BASE_URL = "http://backend.test"


class FakeBackend:
    """Just enough of the REST backend to exercise the sync paths."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.records: Dict[str, List[Dict[str, Any]]] = {d.api_path: [] for d in ENTITY_DESCRIPTORS.values()}
        self.next_ids: List[str] = []
        self.created_at = "2024-01-01T10:00:00Z"
        self.unreachable = False
        self.fail_create: Optional[Callable[[Dict[str, Any]], bool]] = None
        # method -> (status, json body) returned for every call with that method
        self.fail_method: Dict[str, tuple] = {}
        self._counter = count(1)

    def requests_with(self, method: str, path_prefix: str = "") -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.startswith(path_prefix)]

    def _collection(self, path: str):
        for api_path in self.records:
            if path == api_path or path.startswith(api_path + "/"):
                return api_path
        return None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("Network is unreachable", request=request)
        if not request.headers.get("Authorization", "").startswith("Bearer "):
            return httpx.Response(401, json={"error": "Missing bearer token"})
        if request.method in self.fail_method:
            status, body = self.fail_method[request.method]
            return httpx.Response(status, json=body)

        path = request.url.path
        if path == "/api/auth/profile":
            return httpx.Response(200, json={"user": {"uid": "user-1", "email": "me@example.com"}})
        api_path = self._collection(path)
        if api_path is None:
            return httpx.Response(404, json={"message": "Not found"})
        descriptor = next(d for d in ENTITY_DESCRIPTORS.values() if d.api_path == api_path)

        if request.method == "GET":
            return httpx.Response(200, json={descriptor.list_response_key: list(self.records[api_path])})
        if request.method == "POST":
            body = json.loads(request.content)
            if self.fail_create is not None and self.fail_create(body):
                return httpx.Response(500, json={"error": "Could not save entry"})
            server_id = self.next_ids.pop(0) if self.next_ids else f"srv-{next(self._counter)}"
            record = {"_id": server_id, "createdAt": self.created_at, **body}
            self.records[api_path].append(record)
            return httpx.Response(201, json=record)
        if request.method in ("PUT", "DELETE"):
            return httpx.Response(200, json={"success": True})
        return httpx.Response(405, json={"error": "Method not allowed"})


class SwitchableConnectivity:
    def __init__(self, online: bool = True):
        self.online = online

    async def probe(self) -> bool:
        return self.online


# --- Store Fixtures ---

@pytest.fixture
def client_id():
    return "test_client_001"


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "unwind_test.sqlite"


@pytest.fixture
def db(db_path, client_id):
    """An initialized file-backed store, closed after the test."""
    store = UnwindDB(db_path, client_id)
    store.initialize_schema()
    yield store
    store.close_connection()


@pytest.fixture
def mem_db(client_id):
    store = UnwindDB(":memory:", client_id)
    store.initialize_schema()
    yield store
    store.close_connection()


# --- Network / API Fixtures ---

@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def token_provider():
    return StaticTokenProvider("test-id-token")


@pytest.fixture
def connectivity():
    return SwitchableConnectivity(online=True)


@pytest.fixture
def monitor(connectivity):
    return NetworkMonitor(probe=connectivity.probe, initial_state=connectivity.online)


@pytest_asyncio.fixture
async def api_client(backend, token_provider):
    client = UnwindAPIClient(BASE_URL, token_provider=token_provider, transport=httpx.MockTransport(backend.handler))
    yield client
    await client.close()
