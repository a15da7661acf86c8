# reconciliation.py
# Description: Mount-time pull and reconnect-time resync for a set of entity sync services.
#
# Imports
import asyncio
import enum
from typing import Callable, Dict, Iterable, Optional
#
# 3rd-Party Imports
from loguru import logger
#
# Local Imports
from unwind_sync.DB.Unwind_DB import UnwindDB, StoreNotReadyError
from unwind_sync.Network.network_monitor import NetworkMonitor
from unwind_sync.Sync.entity_sync import BulkSyncResult, EntitySyncService
#
#######################################################################################################################
#
# Functions:

class DriverState(enum.Enum):
    COLD = "cold"
    READY = "ready"


class ReconciliationDriver:
    """
    Two states, COLD and READY.

    ``mount()`` checks that every service's table exists, pulls once per
    service and subscribes to the monitor. Only then does it move COLD -> READY;
    a failed pull leaves the driver COLD so ``mount()`` can be retried. A
    False -> True network transition then runs a sequential bulk resync; that
    is the only automatic retry there is.
    """

    def __init__(self, db: UnwindDB, monitor: NetworkMonitor, services: Iterable[EntitySyncService]):
        self.db = db
        self.monitor = monitor
        self.services = list(services)
        self.state = DriverState.COLD
        self.last_resync: Dict[str, BulkSyncResult] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._resync_lock = asyncio.Lock()

    async def mount(self):
        if self.state is DriverState.READY:
            return
        not_ready = [s.kind for s in self.services if not self.db.is_ready(s.descriptor.kind)]
        if not_ready:
            raise StoreNotReadyError(f"Cannot mount, tables not ready: {', '.join(not_ready)}")
        for service in self.services:
            await service.pull_and_upsert()
        if self._unsubscribe is None:
            self._unsubscribe = self.monitor.subscribe(self._on_network_change)
        self.state = DriverState.READY
        logger.info(f"Reconciliation driver ready for {[s.kind for s in self.services]}")

    async def unmount(self):
        """Stops listening for reconnects. Pushes already in flight are left to finish."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.state = DriverState.COLD

    async def _on_network_change(self, online: bool):
        if not online or self.state is not DriverState.READY:
            return
        logger.info("Back online, resyncing unsynced rows.")
        await self.resync_all()

    async def resync_all(self) -> Dict[str, BulkSyncResult]:
        async with self._resync_lock:
            results = {}
            for service in self.services:
                results[service.kind] = await service.bulk_resync()
            self.last_resync = results
            return results

#
# End of reconciliation.py
#######################################################################################################################
