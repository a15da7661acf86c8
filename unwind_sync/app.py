# unwind_sync/app.py
# Description: Process-level container wiring the store, API client, network monitor and sync services.
#
# Imports
from typing import Any, Dict, Optional
#
# 3rd-Party Imports
from loguru import logger
#
# Local Imports
from unwind_sync.Constants import (
    DEFAULT_API_BASE_URL, DEFAULT_CLIENT_ID, DEFAULT_PULL_PAGE_SIZE, DEFAULT_POLL_INTERVAL_SECONDS,
)
from unwind_sync.config import get_db_path, get_setting, load_settings
from unwind_sync.DB.Unwind_DB import UnwindDB, UnwindDBError
from unwind_sync.DB.entity_descriptors import ENTITY_DESCRIPTORS, TODOS
from unwind_sync.Network.network_monitor import NetworkMonitor, make_tcp_probe, probe_target_from_url
from unwind_sync.Sync.entity_sync import EntitySyncService, Notifier, TodoSyncService
from unwind_sync.Sync.reconciliation import ReconciliationDriver
from unwind_sync.unwind_api.auth import EnvTokenProvider, TokenProvider
from unwind_sync.unwind_api.client import UnwindAPIClient
#
#######################################################################################################################
#
# Functions:

class UnwindSyncApp:
    """
    Owns every long-lived object for one process.

    Construction only wires objects together; ``start()`` opens the database,
    starts connectivity polling and mounts the reconciliation driver, and
    ``stop()`` undoes all of it.
    """

    def __init__(self, settings: Optional[Dict[str, Any]] = None, token_provider: Optional[TokenProvider] = None,
                 api_client: Optional[UnwindAPIClient] = None, monitor: Optional[NetworkMonitor] = None,
                 notifier: Optional[Notifier] = None):
        self.settings = settings if settings is not None else load_settings()
        client_id = get_setting("general", "client_id", DEFAULT_CLIENT_ID, settings=self.settings)
        base_url = get_setting("api", "base_url", DEFAULT_API_BASE_URL, settings=self.settings)

        if token_provider is None:
            token_provider = EnvTokenProvider(get_setting("api", "token_env_var", "UNWIND_ID_TOKEN",
                                                          settings=self.settings))
        self.token_provider = token_provider

        self.db = UnwindDB(get_db_path(self.settings), client_id=client_id)
        self.api_client = api_client or UnwindAPIClient(base_url, token_provider=self.token_provider)
        self.monitor = monitor or self._build_monitor(base_url)

        page_size = int(get_setting("api", "pull_page_size", DEFAULT_PULL_PAGE_SIZE, settings=self.settings))
        self.services: Dict[str, EntitySyncService] = {}
        for kind, descriptor in ENTITY_DESCRIPTORS.items():
            service_cls = TodoSyncService if descriptor is TODOS else EntitySyncService
            self.services[kind] = service_cls(self.db, self.api_client, self.monitor, descriptor=descriptor,
                                              token_provider=self.token_provider, notifier=notifier,
                                              pull_page_size=page_size)
        self.driver = ReconciliationDriver(self.db, self.monitor, self.services.values())
        self._stop_polling = None

    def _build_monitor(self, base_url: str) -> NetworkMonitor:
        host, port = probe_target_from_url(base_url)
        host = get_setting("network", "probe_host", "", settings=self.settings) or host
        port = int(get_setting("network", "probe_port", 0, settings=self.settings) or port)
        timeout = float(get_setting("network", "probe_timeout", 3.0, settings=self.settings))
        interval = float(get_setting("network", "poll_interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS,
                                     settings=self.settings))
        return NetworkMonitor(probe=make_tcp_probe(host, port, timeout), interval=interval)

    @property
    def todos(self) -> TodoSyncService:
        return self.services[TODOS.kind]

    def service(self, kind: str) -> EntitySyncService:
        try:
            return self.services[kind]
        except KeyError:
            raise ValueError(f"Unknown entity kind '{kind}'.") from None

    async def start(self, poll: bool = True):
        """
        Initializes the store, then starts polling and mounts the driver.

        Raises:
            UnwindDBError: If the local store cannot be initialized. This is fatal for the process.
        """
        try:
            self.db.initialize_schema()
        except UnwindDBError as e:
            logger.critical(f"Local store initialization failed: {e}")
            raise
        logger.success(f"Local store ready at {self.db.db_path_str}")
        if poll:
            self._stop_polling = self.monitor.start_polling()
        await self.driver.mount()

    async def stop(self, cancel_pending: bool = False):
        await self.driver.unmount()
        if self._stop_polling is not None:
            await self._stop_polling()
            self._stop_polling = None
        for service in self.services.values():
            await service.shutdown(cancel=cancel_pending)
        await self.api_client.close()
        self.db.close_connection()
        logger.info("Unwind sync stopped.")

    async def run_sync_cycle(self) -> Dict[str, Dict[str, Any]]:
        """Pulls every kind, then pushes every kind's unsynced rows."""
        summary: Dict[str, Dict[str, Any]] = {}
        for kind, service in self.services.items():
            summary[kind] = {"pulled": await service.pull_and_upsert()}
        resync = await self.driver.resync_all()
        for kind, result in resync.items():
            summary[kind].update(attempted=result.attempted, synced=result.synced,
                                 failed=list(result.failed_local_ids))
        return summary

    def status(self) -> Dict[str, Any]:
        kinds = {
            kind: {"total": self.db.count_all(service.descriptor), "unsynced": service.pending_count()}
            for kind, service in self.services.items()
        }
        return {"online": self.monitor.is_online, "kinds": kinds}

#
# End of app.py
#######################################################################################################################
