from __future__ import annotations

import json
import logging

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from annotation_relay.protocol.constants import T_ERROR

from .config import get_settings
from .sessions import SESSIONS, broadcast, drop_client, get_session

logger = logging.getLogger(__name__)

app = FastAPI()


@app.get("/healthz")
def healthz():
    return {"ok": True, "sessions": len(SESSIONS)}


@app.websocket("/ws/{session_id}")
async def ws(session_id: str, ws: WebSocket):
    """
    Development signaling channel: opaque text signals, fanned out to every
    participant of the session including the one that sent it.
    """
    await ws.accept()
    session = await get_session(session_id)
    session.clients.add(ws)
    settings = get_settings()

    try:
        while True:
            raw = await ws.receive_text()
            size = len(raw.encode("utf-8"))
            if settings.debug_log_msgs:
                logger.debug("[ws:%s] in bytes=%d from=%s", session_id, size, getattr(ws.client, "host", None))

            if size > settings.max_signal_bytes:
                await ws.send_text(
                    json.dumps(
                        {"t": T_ERROR, "reason": "too_large", "limit": settings.max_signal_bytes},
                        separators=(",", ":"),
                    )
                )
                continue

            await broadcast(session, raw)

    except WebSocketDisconnect:
        pass
    finally:
        await drop_client(session_id, ws)
