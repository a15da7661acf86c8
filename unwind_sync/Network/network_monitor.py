# network_monitor.py
# Description: Best-effort connectivity estimate with edge-triggered listener notification.
#
# Imports
import asyncio
import inspect
from typing import Awaitable, Callable, List, Optional, Set, Union
from urllib.parse import urlparse
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from unwind_sync.Constants import DEFAULT_POLL_INTERVAL_SECONDS, DEFAULT_PROBE_PORT, DEFAULT_PROBE_TIMEOUT_SECONDS
#
#######################################################################################################################
#
# Functions:

Probe = Callable[[], Awaitable[bool]]
Listener = Callable[[bool], Union[None, Awaitable[None]]]


def make_tcp_probe(host: str, port: int = DEFAULT_PROBE_PORT,
                   timeout: float = DEFAULT_PROBE_TIMEOUT_SECONDS) -> Probe:
    """Returns a probe that reports online when a TCP connection to host:port opens within `timeout`."""
    async def _probe() -> bool:
        if not host:
            return False
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True
    return _probe


def probe_target_from_url(url: str) -> tuple:
    """Extracts (host, port) from the API base URL."""
    parsed = urlparse(url)
    host = parsed.hostname or ""
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    return host, port


class NetworkMonitor:
    """
    Caches a boolean online estimate and notifies listeners when it flips.

    Listeners fire once per observed transition, not on every check. A flip
    that happens and reverses between two polls is never seen.
    """

    def __init__(self, probe: Optional[Probe] = None, interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
                 initial_state: bool = True):
        self._probe = probe
        self.interval = interval
        self._online = initial_state
        self._listeners: List[Listener] = []
        self._poll_task: Optional[asyncio.Task] = None
        self._listener_tasks: Set[asyncio.Task] = set()

    @property
    def is_online(self) -> bool:
        return self._online

    async def _query(self) -> bool:
        if self._probe is None:
            return self._online
        try:
            return bool(await self._probe())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Connectivity probe failed, treating as offline: {e!r}")
            return False

    async def check_now(self) -> bool:
        """Queries connectivity once, updates the cached state and notifies listeners on a flip."""
        online = await self._query()
        if online != self._online:
            self._online = online
            logger.info(f"Network state changed: {'online' if online else 'offline'}")
            self._notify(online)
        return online

    def _notify(self, online: bool):
        for listener in list(self._listeners):
            try:
                result = listener(online)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._listener_tasks.add(task)
                    task.add_done_callback(self._on_listener_task_done)
            except Exception as e:
                logger.error(f"Network listener {listener!r} raised: {e}")

    def _on_listener_task_done(self, task: asyncio.Task):
        self._listener_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async network listener failed: {task.exception()!r}")

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Registers `listener(online: bool)`; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    async def _poll_loop(self):
        while True:
            await self.check_now()
            await asyncio.sleep(self.interval)

    def start_polling(self) -> Callable[[], Awaitable[None]]:
        """
        Starts checking immediately and then once per `interval` seconds.

        Must be called from a running event loop. Returns an async stop handle.
        Calling this while a poller is running reuses it.
        """
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop(),
                                                                     name="network-monitor-poll")
            logger.info(f"NetworkMonitor polling started (interval={self.interval}s)")
        return self.stop_polling

    async def stop_polling(self):
        task = self._poll_task
        self._poll_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("NetworkMonitor polling stopped")

    async def wait_for_listeners(self):
        if self._listener_tasks:
            await asyncio.gather(*list(self._listener_tasks), return_exceptions=True)

#
# End of network_monitor.py
#######################################################################################################################
