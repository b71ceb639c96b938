"""
NeuronVault Transport - Link.

Persistent, reconnecting connection to the orchestration backend.

Background tasks (per open connection):
- receive loop: decodes frames, resolves pending requests, answers
  health checks, republishes everything else on the bus
- latency probe: ping/pong every `probe_interval` seconds

An unexpected drop moves the link to `reconnecting` and starts a bounded
exponential backoff; once `max_reconnect_attempts` is exhausted the link
settles in `error` and stays there until connect()/reconnect().
"""

from __future__ import annotations

import asyncio
import random
import time
import uuid
from collections import deque
from collections.abc import Coroutine
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from neuronvault.config import constants
from neuronvault.config.models import TransportConfig
from neuronvault.core.events import EventBus, EventTopic
from neuronvault.core.exceptions import (
    ConnectionLostError,
    ConnectivityError,
    NotConnectedError,
)
from neuronvault.core.metrics import track_reconnect
from neuronvault.core.types import ConnectionStatus
from neuronvault.transport.connectors import AiohttpConnector, Connector, WebSocketConnection
from neuronvault.transport.messages import (
    MessageDecodeError,
    MessageType,
    decode,
    encode,
    make_message,
)
from neuronvault.transport.state import (
    ConnectionState,
    ConnectResult,
    LatencyWindow,
    quality_score,
    quality_tier,
)
from neuronvault.utils.logger import log_prefix

_LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")


class TransportLink:
    """
    Connection to the orchestration backend.

    Example:
        >>> link = TransportLink(TransportConfig(host="localhost", port=8080))
        >>> result = await link.connect()
        >>> reply = await link.request(MessageType.GET_MODEL_STATUS, timeout=5)
        >>> await link.disconnect()
    """

    def __init__(
        self,
        config: TransportConfig | None = None,
        bus: EventBus | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.config = config or TransportConfig()
        self.bus = bus or EventBus()
        self.connector = connector or AiohttpConnector()

        self._host = self.config.host
        self._port = self.config.port
        self._status = ConnectionStatus.DISCONNECTED
        self._last_error: str | None = None
        self._last_connected_at: datetime | None = None
        self._latency = LatencyWindow()
        self._attempts = 0

        self._connection: WebSocketConnection | None = None
        self._receive_task: asyncio.Task | None = None
        self._probe_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()

        self._pending: dict[str, asyncio.Future] = {}
        self._ping_ids: deque[str] = deque()
        self._connect_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status == ConnectionStatus.CONNECTED and self._connection is not None

    @property
    def url(self) -> str:
        return self.build_url(self._host, self._port)

    @property
    def state(self) -> ConnectionState:
        """Current snapshot."""
        average = self._latency.average
        return ConnectionState(
            status=self._status,
            host=self._host,
            port=self._port,
            last_error=self._last_error,
            latency_samples=self._latency.samples,
            average_latency_ms=average,
            quality_score=quality_score(average),
            quality_tier=quality_tier(average),
            reconnect_attempts=self._attempts,
            max_reconnect_attempts=self.config.max_reconnect_attempts,
            last_connected_at=self._last_connected_at,
        )

    def build_url(self, host: str, port: int) -> str:
        """ws:// for local hosts, wss:// otherwise, unless forced by config."""
        secure = self.config.secure
        if secure is None:
            secure = host not in _LOCAL_HOSTS
        scheme = "wss" if secure else "ws"
        return f"{scheme}://{host}:{port}{constants.WS_PATH}"

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt N (1-based)."""
        ceiling = min(
            self.config.backoff_cap,
            self.config.backoff_base * (2 ** (attempt - 1)),
        )
        if self.config.backoff_jitter:
            return random.uniform(0, ceiling)
        return ceiling

    def _set_status(self, status: ConnectionStatus, error: str | None = None) -> None:
        if error is not None:
            self._last_error = error
        if status == self._status and error is None:
            return
        previous = self._status
        self._status = status
        logger.debug(f"{log_prefix('🌐')} Connection {previous.value} -> {status.value}")
        self._publish_state()

    def _publish_state(self) -> None:
        self.bus.publish(EventTopic.CONNECTION, self.state)

    # ------------------------------------------------------------------
    # Connect / disconnect
    # ------------------------------------------------------------------

    async def connect(self, host: str | None = None, port: int | None = None) -> ConnectResult:
        """
        Open the connection.

        Calling while already connected to the same target is a no-op
        that returns success without publishing a state event.

        Returns:
            ConnectResult with a typed FailureCause on failure.
        """
        host = host or self._host
        port = port or self._port

        async with self._connect_lock:
            if self.is_connected:
                if (host, port) == (self._host, self._port):
                    logger.debug(f"{log_prefix('🌐')} Already connected to {self.url}")
                    return ConnectResult.ok(already_connected=True)
                logger.info(f"{log_prefix('🌐')} Switching backend {self._host}:{self._port} -> {host}:{port}")
                await self._teardown("switching backend")

            self._cancel_reconnect()
            self._host, self._port = host, port
            self._attempts = 0
            self._set_status(ConnectionStatus.CONNECTING)

            result = await self._open()
            if not result.success:
                self._set_status(ConnectionStatus.ERROR, result.error)
            return result

    async def disconnect(self) -> None:
        """Tear down. Always succeeds, safe when already disconnected."""
        self._cancel_reconnect()
        await self._teardown("disconnected by client")
        self._attempts = 0
        if self._status != ConnectionStatus.DISCONNECTED:
            logger.info(f"{log_prefix('🔌')} Disconnected from {self.url}")
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def reconnect(self) -> ConnectResult:
        """
        Manual reconnect: resets the attempt counter and tries now.

        A failed immediate attempt falls back to the backoff loop.
        """
        logger.info(f"{log_prefix('🔄')} Manual reconnect to {self.url}")
        self._cancel_reconnect()
        await self._teardown("reconnect requested")
        self._attempts = 0

        async with self._connect_lock:
            self._set_status(ConnectionStatus.CONNECTING)
            result = await self._open()

        if result.success:
            return result

        if self.config.max_reconnect_attempts > 0:
            self._set_status(ConnectionStatus.RECONNECTING, result.error)
            self._reconnect_task = asyncio.create_task(
                self._reconnect_loop(), name="neuronvault-reconnect"
            )
        else:
            self._set_status(ConnectionStatus.ERROR, result.error)
        return result

    async def _open(self) -> ConnectResult:
        """Single connection attempt. Caller holds the connect lock."""
        url = self.url
        try:
            connection = await self.connector.open(url, self.config.connect_timeout)
        except ConnectivityError as e:
            logger.warning(f"{log_prefix('⚠️')} Connection to {url} failed: {e.message}")
            return ConnectResult.failed(e.cause, e.message)

        self._connection = connection
        self._attempts = 0
        self._last_error = None
        self._last_connected_at = datetime.now(UTC)
        self._latency.clear()

        self._receive_task = asyncio.create_task(
            self._receive_loop(connection), name="neuronvault-receive"
        )
        self._probe_task = asyncio.create_task(self._probe_loop(), name="neuronvault-probe")

        self._set_status(ConnectionStatus.CONNECTED)
        logger.info(f"{log_prefix('✅')} Connected to {url}")
        return ConnectResult.ok()

    async def _teardown(self, reason: str) -> None:
        connection, self._connection = self._connection, None
        current = asyncio.current_task()

        tasks = [
            task
            for task in (self._probe_task, self._receive_task)
            if task is not None and not task.done() and task is not current
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._probe_task = None
        self._receive_task = None

        self._fail_pending(reason)

        if connection is not None:
            try:
                await connection.close()
            except Exception as e:
                logger.debug(f"{log_prefix('🔌')} Error while closing socket: {e}")

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._reconnect_task = None

    def _on_connection_lost(self, reason: str) -> None:
        """Unexpected drop: fail in-flight requests and start reconnecting."""
        logger.warning(f"{log_prefix('🔌')} Connection to {self.url} lost: {reason}")
        connection, self._connection = self._connection, None

        if self._probe_task is not None and not self._probe_task.done():
            self._probe_task.cancel()
        self._probe_task = None
        self._receive_task = None

        self._fail_pending(reason)
        if connection is not None:
            self._spawn(self._close_quietly(connection))

        if self.config.max_reconnect_attempts == 0:
            self._set_status(ConnectionStatus.ERROR, reason)
            return

        self._set_status(ConnectionStatus.RECONNECTING, reason)
        self._reconnect_task = asyncio.create_task(
            self._reconnect_loop(), name="neuronvault-reconnect"
        )

    async def _reconnect_loop(self) -> None:
        max_attempts = self.config.max_reconnect_attempts

        while self._attempts < max_attempts:
            self._attempts += 1
            attempt = self._attempts
            delay = self.backoff_delay(attempt)
            logger.info(f"{log_prefix('🔄')} Reconnect attempt {attempt}/{max_attempts} in {delay:.2f}s")
            self._publish_state()

            await asyncio.sleep(delay)

            async with self._connect_lock:
                if self.is_connected:
                    return
                result = await self._open()

            track_reconnect(attempt, "success" if result.success else "failure")
            if result.success:
                return
            self._last_error = result.error

        logger.error(f"{log_prefix('❌')} Giving up on {self.url} after {max_attempts} reconnect attempts")
        self._set_status(ConnectionStatus.ERROR, self._last_error or "reconnect attempts exhausted")

    @staticmethod
    async def _close_quietly(connection: WebSocketConnection) -> None:
        try:
            await connection.close()
        except Exception as e:
            logger.debug(f"{log_prefix('🔌')} Error while closing dropped socket: {e}")

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send(self, message: dict[str, Any]) -> None:
        """
        Send one frame.

        Raises:
            NotConnectedError: If there is no active connection.
            ConnectionLostError: If the socket fails during the send.
        """
        connection = self._connection
        if connection is None or self._status != ConnectionStatus.CONNECTED:
            raise NotConnectedError("send")

        try:
            await connection.send(encode(message))
        except ConnectivityError:
            raise
        except Exception as e:
            if self._connection is connection:
                self._on_connection_lost(f"send failed: {e}")
            raise ConnectionLostError(f"send failed: {e}") from e

    async def request(
        self,
        message_type: MessageType | str,
        data: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Send a correlated frame and wait for the reply with the same request_id.

        Raises:
            NotConnectedError: If there is no active connection.
            ConnectionLostError: If the connection drops before the reply.
            TimeoutError: If no reply arrives within `timeout`.
        """
        request_id = uuid.uuid4().hex
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        if message_type == MessageType.PING:
            self._ping_ids.append(request_id)

        try:
            await self.send(make_message(message_type, data, request_id))
            async with asyncio.timeout(timeout):
                return await future
        finally:
            self._pending.pop(request_id, None)
            if request_id in self._ping_ids:
                self._ping_ids.remove(request_id)
            if not future.done():
                future.cancel()
            elif not future.cancelled():
                future.exception()  # Mark retrieved when send failed first

    def _fail_pending(self, reason: str) -> None:
        pending = [f for f in self._pending.values() if not f.done()]
        for future in pending:
            future.set_exception(ConnectionLostError(reason))
        if pending:
            logger.debug(f"{log_prefix('🔌')} Failed {len(pending)} pending request(s): {reason}")

    async def latency_sample(self) -> float | None:
        """
        One ping/pong round trip.

        Returns:
            Latency in ms, or None when not connected or the probe failed.
        """
        if not self.is_connected:
            return None

        started = time.perf_counter()
        try:
            await self.request(
                MessageType.PING,
                {"timestamp": int(time.time() * 1000)},
                timeout=self.config.probe_timeout,
            )
        except TimeoutError:
            logger.warning(f"{log_prefix('⏱️')} Latency probe timed out after {self.config.probe_timeout}s")
            return None
        except ConnectivityError as e:
            logger.debug(f"{log_prefix('🌐')} Latency probe aborted: {e.message}")
            return None

        latency_ms = (time.perf_counter() - started) * 1000
        self._latency.add(latency_ms)
        self._publish_state()
        return latency_ms

    async def _probe_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.probe_interval)
            await self.latency_sample()

    async def _receive_loop(self, connection: WebSocketConnection) -> None:
        reason = "connection closed by peer"
        try:
            while True:
                raw = await connection.receive()
                if raw is None:
                    break
                self._dispatch(raw)
        except Exception as e:
            reason = f"receive failed: {e}"

        if self._connection is connection:
            self._on_connection_lost(reason)

    def _dispatch(self, raw: str) -> None:
        try:
            message = decode(raw)
        except MessageDecodeError as e:
            logger.warning(f"{log_prefix('⚠️')} {e}")
            self.bus.publish(EventTopic.SERVER_ERROR, {"type": "decode_error", "message": str(e)})
            return

        message_type = message["type"]
        request_id = message.get("request_id")

        # Servers may answer pings without echoing the request id
        if message_type == MessageType.PONG and not request_id and self._ping_ids:
            request_id = self._ping_ids[0]

        if request_id:
            future = self._pending.get(request_id)
            if future is not None and not future.done():
                future.set_result(message)
                return

        if message_type == MessageType.HEALTH_CHECK:
            self._spawn(self._answer_health_check(message))
            return

        if message_type in (MessageType.ERROR, MessageType.ORCHESTRATION_ERROR):
            error = message["data"].get("message") or message["data"].get("error")
            logger.warning(f"{log_prefix('⚠️')} Backend error: {error}")
            self.bus.publish(EventTopic.SERVER_ERROR, message)
            return

        self.bus.publish(EventTopic.MESSAGE, message)

    async def _answer_health_check(self, message: dict[str, Any]) -> None:
        reply = make_message(
            MessageType.HEALTH_RESPONSE,
            {
                "status": "healthy",
                "timestamp": int(time.time() * 1000),
                "average_latency_ms": self._latency.average,
                "quality": quality_tier(self._latency.average).value,
            },
            message.get("request_id"),
        )
        try:
            await self.send(reply)
        except ConnectivityError as e:
            logger.debug(f"{log_prefix('🌐')} Could not answer health check: {e.message}")
