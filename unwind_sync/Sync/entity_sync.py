# entity_sync.py
# Description: Generic offline-first sync between the local store and the backend, one instance per entity kind.
#
"""
entity_sync.py
--------------

``EntitySyncService`` keeps one entity kind's local rows and the backend in
step:

- writes always land in the local store first and are returned right away;
- a push (create on the backend, then ``mark_synced``) runs in the background
  when the device looks online, inside a task set owned by the service so it
  can be awaited or cancelled on shutdown;
- reconnects trigger a sequential ``bulk_resync`` of every unsynced row;
- mounts trigger ``pull_and_upsert`` keyed on the server id.

Network and authentication problems on background paths are logged and
dropped so the app stays usable offline. Local store errors always propagate.
"""
# Imports
import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Union
#
# 3rd-Party Imports
from loguru import logger
#
# Local Imports
from unwind_sync.Constants import DEFAULT_LATEST_LIMIT, DEFAULT_PULL_PAGE_SIZE
from unwind_sync.DB.Unwind_DB import UnwindDB, InputError, RecordNotFoundError
from unwind_sync.DB.entity_descriptors import EntityDescriptor, TODOS, from_server_record, to_request_body
from unwind_sync.Network.network_monitor import NetworkMonitor
from unwind_sync.unwind_api.auth import TokenProvider
from unwind_sync.unwind_api.client import UnwindAPIClient
from unwind_sync.unwind_api.exceptions import UnwindAPIError
from unwind_sync.Sync.exceptions import AuthenticationRequiredError, NoNetworkError
#
#######################################################################################################################
#
# Functions:

@dataclass
class SyncNotification:
    kind: str
    local_id: Optional[int]
    message: str
    level: str = "warning"


@dataclass
class BulkSyncResult:
    attempted: int = 0
    synced: int = 0
    failed_local_ids: List[int] = field(default_factory=list)


@dataclass
class DeleteResult:
    local_deleted: int
    remote_attempted: bool = False
    remote_deleted: bool = False


Notifier = Callable[[SyncNotification], Any]
RowOrId = Union[int, Dict[str, Any]]


class EntitySyncService:
    def __init__(self, db: UnwindDB, api_client: UnwindAPIClient, monitor: NetworkMonitor,
                 descriptor: EntityDescriptor, token_provider: Optional[TokenProvider] = None,
                 notifier: Optional[Notifier] = None, pull_page_size: int = DEFAULT_PULL_PAGE_SIZE):
        self.db = db
        self.api_client = api_client
        self.monitor = monitor
        self.descriptor = descriptor
        self.token_provider = token_provider
        self.notifier = notifier
        self.pull_page_size = pull_page_size
        self._pending: Set[asyncio.Task] = set()
        # local_id -> push task currently talking to the backend
        self._inflight: Dict[int, asyncio.Task] = {}
        self._notifier_tasks: Set[asyncio.Task] = set()

    @property
    def kind(self) -> str:
        return self.descriptor.kind

    def __repr__(self):
        return f"<{type(self).__name__} kind={self.kind!r} pending={len(self._pending)}>"

    # --- Helpers ---
    async def _get_token(self) -> Optional[str]:
        provider = self.token_provider or self.api_client.token_provider
        if provider is None:
            return None
        return await provider.get_token()

    @staticmethod
    def _local_id_of(row_or_local_id: RowOrId) -> int:
        if isinstance(row_or_local_id, dict):
            return row_or_local_id["local_id"]
        return int(row_or_local_id)

    def _notify(self, local_id: Optional[int], message: str, level: str = "warning"):
        if self.notifier is None:
            return
        notification = SyncNotification(kind=self.kind, local_id=local_id, message=message, level=level)
        try:
            result = self.notifier(notification)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._notifier_tasks.add(task)
                task.add_done_callback(self._on_notifier_done)
        except Exception as e:
            logger.error(f"Sync notifier failed for {self.kind} row {local_id}: {e}")

    def _on_notifier_done(self, task: asyncio.Task):
        self._notifier_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async sync notifier failed for {self.kind}: {task.exception()!r}")

    # --- Local reads ---
    def list_latest(self, limit: int = DEFAULT_LATEST_LIMIT) -> List[Dict[str, Any]]:
        return self.db.list_latest(self.descriptor, limit)

    def list_by_date(self, date: str) -> List[Dict[str, Any]]:
        return self.db.list_by_date(self.descriptor, date)

    def list_all(self) -> List[Dict[str, Any]]:
        return self.db.list_all(self.descriptor)

    def pending_count(self) -> int:
        return self.db.count_unsynced(self.descriptor)

    def toggle_flag(self, local_id: int) -> bool:
        """Flips avoided / dumped locally. Status flags are not pushed for kinds without an update endpoint."""
        return self.db.toggle_flag(self.descriptor, local_id)

    # --- Push ---
    async def _push_once(self, local_id: int, token: str) -> Optional[Dict[str, Any]]:
        row = self.db.get_by_local_id(self.descriptor, local_id)
        if row is None:
            raise RecordNotFoundError(f"{self.kind} row {local_id} not found.", entity=self.descriptor.table,
                                      entity_id=local_id)
        if row["synced"] and row["server_id"]:
            return row

        created = await self.api_client.create_record(self.descriptor, to_request_body(self.descriptor, row),
                                                       id_token=token)
        if not self.db.mark_synced(self.descriptor, local_id, created.id, created.created_at):
            # Row was deleted while the push was in flight; the server copy is now orphaned.
            logger.warning(f"{self.kind} row {local_id} disappeared during push; server record {created.id} orphaned.")
            return None
        logger.info(f"Pushed {self.kind} row {local_id} -> server id {created.id}")
        return self.db.get_by_local_id(self.descriptor, local_id)

    async def _push_guarded(self, local_id: int, token: str) -> Optional[Dict[str, Any]]:
        task = self._inflight.get(local_id)
        if task is None:
            task = asyncio.ensure_future(self._push_once(local_id, token))
            self._inflight[local_id] = task
            task.add_done_callback(lambda t, lid=local_id: self._inflight.pop(lid, None))
        else:
            logger.debug(f"Push of {self.kind} row {local_id} already in flight; awaiting it.")
        return await task

    async def push(self, row_or_local_id: RowOrId) -> Optional[Dict[str, Any]]:
        """
        Creates the row on the backend and marks it synced.

        Returns the updated row, or None if the row was deleted meanwhile.

        Raises:
            AuthenticationRequiredError: If no token is available.
            UnwindAPIError: If the backend call fails.
        """
        token = await self._get_token()
        if not token:
            raise AuthenticationRequiredError()
        return await self._push_guarded(self._local_id_of(row_or_local_id), token)

    async def _background_push(self, local_id: int):
        token = await self._get_token()
        if not token:
            logger.info(f"No auth token; background push of {self.kind} row {local_id} skipped.")
            return
        try:
            await self._push_guarded(local_id, token)
        except UnwindAPIError as e:
            logger.warning(f"Background push of {self.kind} row {local_id} failed: {e.message}")
            self._notify(local_id, f"Saved locally. Sync failed: {e.message}")

    def _on_background_done(self, task: asyncio.Task):
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background {self.kind} push raised: {exc!r}")

    def _schedule_push(self, local_id: int) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._background_push(local_id),
                                                      name=f"push-{self.kind}-{local_id}")
        self._pending.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    async def create_with_background_sync(self, payload: Dict[str, Any],
                                          timestamp: Optional[str] = None) -> Dict[str, Any]:
        """
        Stores `payload` locally (unsynced) and returns the row without waiting on the network.

        If the monitor currently reports online a push is scheduled in the
        service's task set. A failed push is reported through the notifier and
        not retried here; the next reconnect's bulk resync picks it up.

        Raises:
            InputError: If required fields are missing.
            UnwindDBError: If the local write fails.
        """
        row = self.db.insert_local(self.descriptor, payload, timestamp=timestamp)
        if self.monitor.is_online:
            self._schedule_push(row["local_id"])
        else:
            logger.debug(f"Offline; {self.kind} row {row['local_id']} stays unsynced.")
        return row

    async def wait_for_pending(self):
        """Awaits every background push scheduled so far. Store errors from a push are re-raised."""
        while self._pending:
            await asyncio.gather(*list(self._pending))
        if self._notifier_tasks:
            await asyncio.gather(*list(self._notifier_tasks), return_exceptions=True)

    async def shutdown(self, cancel: bool = False):
        pending = list(self._pending)
        if cancel and pending:
            logger.info(f"Cancelling {len(pending)} pending {self.kind} push(es).")
            for task in pending:
                task.cancel()
        results = await asyncio.gather(*pending, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"{self.kind} push ended with error during shutdown: {result!r}")
        if self._notifier_tasks:
            await asyncio.gather(*list(self._notifier_tasks), return_exceptions=True)

    # --- User-initiated sync ---
    async def manual_sync(self, row_or_local_id: RowOrId) -> Optional[Dict[str, Any]]:
        """
        Pushes one row now and reports the outcome to the caller.

        Raises:
            NoNetworkError: If a fresh connectivity check says offline.
            AuthenticationRequiredError: If there is no signed-in user.
            RecordNotFoundError: If the row does not exist.
            UnwindAPIError: If the backend rejects the push.
        """
        local_id = self._local_id_of(row_or_local_id)
        if not await self.monitor.check_now():
            raise NoNetworkError()
        token = await self._get_token()
        if not token:
            raise AuthenticationRequiredError()
        row = self.db.get_by_local_id(self.descriptor, local_id)
        if row is None:
            raise RecordNotFoundError(f"{self.kind} row {local_id} not found.", entity=self.descriptor.table,
                                      entity_id=local_id)
        if row["synced"]:
            return row
        return await self._push_guarded(local_id, token)

    async def bulk_resync(self, rows: Optional[List[Dict[str, Any]]] = None) -> BulkSyncResult:
        """Pushes every unsynced row one at a time; a failing row does not stop the rest."""
        result = BulkSyncResult()
        token = await self._get_token()
        if not token:
            logger.info(f"No auth token; {self.kind} bulk resync skipped.")
            return result
        if rows is None:
            rows = self.db.list_unsynced(self.descriptor)
        for row in rows:
            if row.get("synced"):
                continue
            local_id = row["local_id"]
            result.attempted += 1
            try:
                updated = await self._push_guarded(local_id, token)
            except UnwindAPIError as e:
                logger.warning(f"Resync of {self.kind} row {local_id} failed: {e.message}")
                result.failed_local_ids.append(local_id)
                continue
            except RecordNotFoundError:
                logger.info(f"{self.kind} row {local_id} was deleted before it could be resynced.")
                result.failed_local_ids.append(local_id)
                continue
            if updated is not None and updated["synced"]:
                result.synced += 1
            else:
                result.failed_local_ids.append(local_id)
        logger.info(f"{self.kind} bulk resync: {result.synced}/{result.attempted} synced.")
        return result

    # --- Pull ---
    async def pull_and_upsert(self, date: Optional[str] = None, category: Optional[str] = None) -> int:
        """
        Fetches one page of server records and upserts each by server id.

        Returns the number of rows upserted; 0 without a token or on network/auth failure.
        """
        token = await self._get_token()
        if not token:
            return 0
        try:
            records = await self.api_client.list_records(self.descriptor, date=date, category=category,
                                                         page=1, limit=self.pull_page_size, id_token=token)
        except UnwindAPIError as e:
            logger.warning(f"Pull of {self.kind} records failed: {e.message}")
            return 0

        count = 0
        for record in records:
            server_id, payload, timestamp = from_server_record(self.descriptor, record.to_record_dict())
            try:
                self.db.upsert_from_server(self.descriptor, server_id, payload, timestamp)
            except InputError as e:
                logger.warning(f"Skipping server {self.kind} record {server_id}: {e}")
                continue
            count += 1
        logger.info(f"Pulled {count} {self.kind} record(s) from server.")
        return count

    # --- Delete ---
    async def delete(self, local_id: Optional[int] = None, server_id: Optional[str] = None) -> DeleteResult:
        """
        Deletes locally, then best-effort on the backend if the row was ever pushed.

        The remote DELETE is only tried with a known server id, a passing
        connectivity check and a token; its failure is logged, not raised.
        """
        if local_id is not None and server_id is None:
            row = self.db.get_by_local_id(self.descriptor, local_id)
            if row is not None:
                server_id = row["server_id"]
        result = DeleteResult(local_deleted=self.db.delete_local(self.descriptor, local_id=local_id,
                                                                  server_id=server_id))
        if not server_id:
            return result
        if not await self.monitor.check_now():
            logger.info(f"Offline; remote delete of {self.kind} {server_id} not attempted.")
            return result
        token = await self._get_token()
        if not token:
            return result
        result.remote_attempted = True
        try:
            await self.api_client.delete_record(self.descriptor, server_id, id_token=token)
            result.remote_deleted = True
        except UnwindAPIError as e:
            logger.warning(f"Remote delete of {self.kind} {server_id} failed: {e.message}")
        return result


class TodoSyncService(EntitySyncService):
    """Todo-specific operations: updates pushed with PUT, and the daily carry-over."""

    def __init__(self, db: UnwindDB, api_client: UnwindAPIClient, monitor: NetworkMonitor,
                 descriptor: EntityDescriptor = TODOS, **kwargs):
        super().__init__(db, api_client, monitor, descriptor, **kwargs)

    def list_by_category(self, category: str) -> List[Dict[str, Any]]:
        return self.db.list_by_field(self.descriptor, "category", category)

    async def _push_update(self, row: Optional[Dict[str, Any]]) -> bool:
        if row is None or not row["synced"] or not row["server_id"]:
            return False
        if not await self.monitor.check_now():
            return False
        token = await self._get_token()
        if not token:
            return False
        try:
            await self.api_client.update_record(self.descriptor, row["server_id"],
                                                to_request_body(self.descriptor, row), id_token=token)
        except UnwindAPIError as e:
            logger.warning(f"Remote update of todo {row['server_id']} failed: {e.message}")
            return False
        return True

    async def update_todo(self, local_id: int, fields: Dict[str, Any]) -> Dict[str, Any]:
        if not self.db.update_fields(self.descriptor, local_id, fields):
            raise RecordNotFoundError(f"Task {local_id} not found.", entity=self.descriptor.table, entity_id=local_id)
        row = self.db.get_by_local_id(self.descriptor, local_id)
        await self._push_update(row)
        return row

    async def toggle_completed(self, local_id: int) -> Dict[str, Any]:
        self.db.toggle_flag(self.descriptor, local_id)
        row = self.db.get_by_local_id(self.descriptor, local_id)
        await self._push_update(row)
        return row

    def move_to_carried_over(self, local_id: int) -> int:
        return self.db.move_to_carried_over(local_id)

    def perform_daily_cleanup(self) -> int:
        moved = self.db.move_all_pending_to_carried_over()
        logger.info(f"Daily cleanup moved {moved} pending task(s) to carried over.")
        return moved

    def list_carried_over(self, category: str) -> List[Dict[str, Any]]:
        return self.db.list_carried_over_by_category(category)

#
# End of entity_sync.py
#######################################################################################################################
