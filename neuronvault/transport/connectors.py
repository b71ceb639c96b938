"""
NeuronVault Transport - Socket connectors.

The link never touches a socket library directly; it asks a Connector
for a WebSocketConnection. Tests swap in an in-memory connector.
"""

from __future__ import annotations

import asyncio
from typing import Protocol, runtime_checkable

import aiohttp
from loguru import logger

from neuronvault.config import constants
from neuronvault.core.exceptions import (
    ConnectRefusedError,
    ConnectTimeoutError,
    ProtocolMismatchError,
)


@runtime_checkable
class WebSocketConnection(Protocol):
    """An open, text-framed, bidirectional connection."""

    @property
    def closed(self) -> bool: ...

    async def send(self, data: str) -> None:
        """Send one text frame."""
        ...

    async def receive(self) -> str | None:
        """Next text frame, or None once the peer has closed."""
        ...

    async def close(self) -> None: ...


@runtime_checkable
class Connector(Protocol):
    """Opens connections. Raises ConnectivityError subclasses on failure."""

    async def open(self, url: str, timeout: float) -> WebSocketConnection: ...


class AiohttpConnection:
    """WebSocketConnection over aiohttp's client websocket."""

    def __init__(self, session: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._session = session
        self._ws = ws

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def send(self, data: str) -> None:
        await self._ws.send_str(data)

    async def receive(self) -> str | None:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                return msg.data
            if msg.type == aiohttp.WSMsgType.BINARY:
                return msg.data.decode("utf-8", errors="replace")
            if msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
            ):
                return None
            if msg.type == aiohttp.WSMsgType.ERROR:
                logger.warning(f"⚠️ WebSocket error frame: {self._ws.exception()}")
                return None
            # PING/PONG control frames are handled by aiohttp

    async def close(self) -> None:
        try:
            if not self._ws.closed:
                await self._ws.close()
        finally:
            await self._session.close()


class AiohttpConnector:
    """Default connector using aiohttp.ClientSession.ws_connect."""

    def __init__(
        self,
        subprotocol: str = constants.WS_SUBPROTOCOL,
        user_agent: str = constants.CLIENT_USER_AGENT,
    ) -> None:
        self.subprotocol = subprotocol
        self.user_agent = user_agent

    async def open(self, url: str, timeout: float) -> AiohttpConnection:
        session = aiohttp.ClientSession(headers={"User-Agent": self.user_agent})
        try:
            async with asyncio.timeout(timeout):
                ws = await session.ws_connect(url, protocols=(self.subprotocol,), autoping=True)
        except TimeoutError as e:
            await session.close()
            raise ConnectTimeoutError(url, timeout) from e
        except aiohttp.WSServerHandshakeError as e:
            await session.close()
            raise ProtocolMismatchError(url, f"handshake rejected ({e.status}: {e.message})") from e
        except aiohttp.ClientConnectorError as e:
            await session.close()
            raise ConnectRefusedError(url, str(e)) from e
        except aiohttp.ClientError as e:
            await session.close()
            raise ConnectRefusedError(url, f"{type(e).__name__}: {e}") from e

        # Servers that ignore subprotocols are accepted; a different one is not
        if ws.protocol is not None and ws.protocol != self.subprotocol:
            await ws.close()
            await session.close()
            raise ProtocolMismatchError(url, f"server selected subprotocol '{ws.protocol}'")

        logger.debug(f"🌐 WebSocket open: {url}")
        return AiohttpConnection(session, ws)
