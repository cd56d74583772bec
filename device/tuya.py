"""Tuya local-protocol transport - wraps the blocking tinytuya client for the event loop"""
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, AsyncIterator, Optional

import tinytuya

from device.base import (
    Connected,
    Data,
    DeviceConfig,
    DeviceEvent,
    Disconnected,
    DpRefresh,
    Error,
)
from device.discovery import DISCOVERY_TIMEOUT, discover_tuya
from errors import CommandError, DeviceConnectionError

logger = logging.getLogger(__name__)


class TuyaTransport:
    """
    Transport for a Tuya metering plug on the local network.

    tinytuya is synchronous, so every device call runs on a single worker
    thread owned by the transport. A call that timed out keeps that thread
    busy, and whatever comes next (including close) queues behind it, so
    the socket is never used from two threads at once. The asyncio lock
    keeps connect/set/refresh/disconnect from interleaving on the loop.

    Lifecycle changes and data point updates are published as DeviceEvent
    objects on an internal queue, which the supervisor drains through
    events(). Once disconnect() has been called the transport is closed
    for good; the supervisor builds a new one for the next session.
    """

    def __init__(
        self,
        config: DeviceConfig,
        connection_timeout: float = 10.0,
        command_timeout: float = 10.0
    ):
        """
        Initialize Tuya transport.

        Args:
            config: Device id, local key, IP address and protocol version
            connection_timeout: Socket timeout handed to tinytuya and upper
                bound for the initial status request (default: 10.0)
            command_timeout: Upper bound for set/refresh calls (default: 10.0)
        """
        self.config = config
        self.address = config.ip
        self.connection_timeout = connection_timeout
        self.command_timeout = command_timeout
        self.device = None
        self.is_connected = False
        self._closed = False
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tuya")
        self._queue: asyncio.Queue[DeviceEvent] = asyncio.Queue()
        self._lock = asyncio.Lock()

    def _emit(self, event: DeviceEvent) -> None:
        self._queue.put_nowait(event)

    async def events(self) -> AsyncIterator[DeviceEvent]:
        while True:
            yield await self._queue.get()

    async def _run(self, func, *args) -> Any:
        return await asyncio.get_running_loop().run_in_executor(self._executor, func, *args)

    async def _call(self, func, *args, timeout: Optional[float] = None) -> Any:
        """Run a blocking tinytuya call on the worker thread, bounded by a timeout"""
        return await asyncio.wait_for(self._run(func, *args), timeout=timeout or self.command_timeout)

    def _discard(self, device) -> None:
        # Runs after the call still holding the socket, without waiting for it
        self._executor.submit(device.close)

    async def find(self, timeout: float = DISCOVERY_TIMEOUT) -> None:
        info = await discover_tuya(self.config.id, self.config.ip, timeout=timeout)
        if info["ip"] != self.address:
            logger.info(f"Tuya: Device {self.config.id} moved from {self.address} to {info['ip']}")
        self.address = info["ip"]

    async def connect(self) -> None:
        """
        Open a persistent session and read the initial data points.

        Raises:
            DeviceConnectionError: invalid parameters, socket error, timeout,
                an error payload from the device, or the transport was
                closed before the session came up
        """
        async with self._lock:
            if self._closed:
                raise DeviceConnectionError("Transport closed")
            if self.is_connected:
                logger.debug("Tuya: Already connected")
                return

            logger.info(f"Tuya: Connecting to {self.config.id} at {self.address}")
            try:
                device = tinytuya.OutletDevice(
                    dev_id=self.config.id,
                    address=self.address,
                    local_key=self.config.key,
                    version=float(self.config.version),
                    persist=True,
                    connection_timeout=self.connection_timeout
                )
            except (OSError, ValueError) as e:
                raise DeviceConnectionError(f"Cannot connect to {self.address}: {e}") from e

            try:
                result = await self._call(device.status, timeout=self.connection_timeout)
            except asyncio.TimeoutError:
                self._discard(device)
                raise DeviceConnectionError(
                    f"No response from {self.address} within {self.connection_timeout}s"
                ) from None
            except OSError as e:
                self._discard(device)
                raise DeviceConnectionError(f"Cannot connect to {self.address}: {e}") from e
            except asyncio.CancelledError:
                self._discard(device)
                raise

            if self._closed:
                await self._run(device.close)
                raise DeviceConnectionError("Transport closed while connecting")

            if not result or "Error" in result:
                error = result.get("Error", "empty response") if result else "empty response"
                await self._run(device.close)
                raise DeviceConnectionError(f"Device rejected session: {error}")

            self.device = device
            self.is_connected = True

        self._emit(Connected())
        if result.get("dps"):
            self._emit(Data(result["dps"]))

    async def disconnect(self) -> None:
        """
        Close the session and the transport.

        Waits for an in-flight connect to finish, which then sees the
        transport closed and drops its new session.
        """
        self._closed = True
        async with self._lock:
            was_connected = self.is_connected
            self.is_connected = False
            device, self.device = self.device, None

            if device is not None:
                await self._run(device.close)
                logger.info(f"Tuya: Session with {self.config.id} closed")

        self._executor.shutdown(wait=False)
        if was_connected:
            self._emit(Disconnected())

    async def set(self, dp: str, value: Any) -> None:
        """
        Write a single data point.

        The acknowledgment may echo the new data points; if so they are
        published as a Data event.

        Raises:
            CommandError: no session, timeout or an error payload
        """
        if self.device is None:
            raise CommandError("No open session")

        async with self._lock:
            if self.device is None:
                raise CommandError("Session closed")
            try:
                result = await self._call(self.device.set_value, int(dp), value)
            except asyncio.TimeoutError:
                raise CommandError(f"Set dp {dp} timed out after {self.command_timeout}s") from None
            except OSError as e:
                raise CommandError(f"Set dp {dp} failed: {e}") from e

        if result and "Error" in result:
            raise CommandError(f"Set dp {dp} failed: {result['Error']}")

        if result and result.get("dps"):
            self._emit(Data(result["dps"]))

    async def refresh(self) -> None:
        if self.device is None or not self.is_connected:
            logger.debug("Tuya: refresh() skipped, no open session")
            return

        async with self._lock:
            if self.device is None:
                return
            try:
                result = await self._call(self.device.status)
            except asyncio.TimeoutError:
                result = {"Error": f"Refresh timed out after {self.command_timeout}s"}
            except Exception as e:
                result = {"Error": f"Refresh failed: {e}"}

            if not result or "Error" in result:
                await self._lost(result.get("Error", "empty response") if result else "empty response")
                return

        self._emit(DpRefresh(result.get("dps", {})))

    async def _lost(self, message: str) -> None:
        """Drop the session and report it as Error followed by Disconnected"""
        logger.warning(f"Tuya: Connection lost: {message}")
        self.is_connected = False
        device, self.device = self.device, None
        if device is not None:
            try:
                await self._run(device.close)
            except OSError as e:
                logger.debug(f"Tuya: Error closing socket: {e}")
        self._emit(Error(message))
        self._emit(Disconnected())
