from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .protocol.constants import MAX_SIGNAL_BYTES

logger = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """Channel unavailable, closed, or message over the size ceiling."""


class SignalTransport(ABC):
    """
    Opaque text signals over a shared channel.

    The channel may reflect a participant's own signals back to it and gives
    no ordering guarantee beyond what the underlying connection provides.
    """

    max_message_bytes: int = MAX_SIGNAL_BYTES

    @abstractmethod
    async def send(self, text: str) -> None: ...

    @abstractmethod
    def messages(self) -> AsyncIterator[str]: ...

    async def close(self) -> None:
        return None

    def check_size(self, text: str) -> None:
        size = len(text.encode("utf-8"))
        if size > self.max_message_bytes:
            raise TransportError(f"signal of {size} bytes exceeds the {self.max_message_bytes} byte ceiling")


class WebSocketSignalTransport(SignalTransport):
    """One websocket connection to a signaling relay (see ``annotation_relay.server.app``)."""

    def __init__(self, url: str, *, max_message_bytes: int = MAX_SIGNAL_BYTES) -> None:
        self.url = url
        self.max_message_bytes = max_message_bytes
        self._ws = None

    async def __aenter__(self) -> WebSocketSignalTransport:
        await self.connect()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        try:
            self._ws = await websockets.connect(self.url, max_size=2**22)
        except (OSError, WebSocketException) as e:
            raise TransportError(f"could not connect to {self.url}: {e}") from e
        logger.info("connected to %s", self.url)

    async def send(self, text: str) -> None:
        self.check_size(text)
        if self._ws is None:
            raise TransportError("transport is not connected")
        try:
            await self._ws.send(text)
        except ConnectionClosed as e:
            raise TransportError(f"connection closed: {e}") from e

    async def messages(self) -> AsyncIterator[str]:
        if self._ws is None:
            raise TransportError("transport is not connected")
        try:
            async for raw in self._ws:
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", errors="replace")
                yield raw
        except ConnectionClosed as e:
            raise TransportError(f"connection closed: {e}") from e

    async def close(self) -> None:
        if self._ws is not None:
            ws, self._ws = self._ws, None
            await ws.close()
            logger.info("disconnected from %s", self.url)
