from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from fastapi import WebSocket

logger = logging.getLogger(__name__)


@dataclass
class Session:
    clients: set[WebSocket] = field(default_factory=set)


SESSIONS: dict[str, Session] = {}
LOCK = asyncio.Lock()


async def get_session(session_id: str) -> Session:
    async with LOCK:
        if session_id not in SESSIONS:
            SESSIONS[session_id] = Session()
        return SESSIONS[session_id]


async def drop_client(session_id: str, ws: WebSocket) -> None:
    async with LOCK:
        session = SESSIONS.get(session_id)
        if session is None:
            return
        session.clients.discard(ws)
        if not session.clients:
            del SESSIONS[session_id]


async def broadcast(session: Session, data: str) -> None:
    """Send one signal to every client, the sender included (signals echo)."""
    dead: list[WebSocket] = []
    for ws in list(session.clients):
        try:
            await ws.send_text(data)
        except Exception as e:
            logger.debug("dropping client after failed send: %s", e)
            dead.append(ws)
    for ws in dead:
        session.clients.discard(ws)
