from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from annotation_relay.protocol.messages import StrokePoint
from annotation_relay.relay import AnnotationRelay
from annotation_relay.server.config import get_settings
from annotation_relay.transport import WebSocketSignalTransport


def load_annotations(jsonl_path: Path) -> list[tuple[int | None, list[StrokePoint]]]:
    """
    Expected JSONL format:
      - record_jsonl.py output: {"ts": <ms>, "points": [...]}
      - or a bare point list per line: [...]
    """
    events: list[tuple[int | None, list[StrokePoint]]] = []
    for line in jsonl_path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        obj = json.loads(line)
        if isinstance(obj, dict) and isinstance(obj.get("points"), list):
            ts = obj.get("ts")
            raw_points = obj["points"]
            events.append((int(ts) if isinstance(ts, (int, float)) else None, raw_points))
        elif isinstance(obj, list):
            events.append((None, obj))
    return [(ts, [StrokePoint.model_validate(p) for p in pts]) for ts, pts in events]


async def replay(
    ws_url: str,
    jsonl_path: Path,
    *,
    speed: float = 1.0,
    default_dt_ms: int = 0,
) -> int:
    """Publish each recorded annotation through the chunked protocol; returns how many were sent."""
    settings = get_settings()
    events = load_annotations(jsonl_path)
    sent = 0

    async with WebSocketSignalTransport(ws_url, max_message_bytes=settings.max_signal_bytes) as transport:
        relay = AnnotationRelay.from_settings(transport, lambda _points: None, settings=settings)
        prev_ts: int | None = None
        for ts, points in events:
            if ts is not None and prev_ts is not None:
                dt_ms = max(0, ts - prev_ts)
            else:
                dt_ms = default_dt_ms

            prev_ts = ts if ts is not None else prev_ts
            if dt_ms:
                await asyncio.sleep((dt_ms / 1000.0) / max(0.01, speed))

            if await relay.publish_stroke(points) is not None:
                sent += 1
    return sent


def main() -> None:
    ap = argparse.ArgumentParser(description="Replay recorded annotations into a signaling session.")
    ap.add_argument("--ws", required=True, help="WebSocket URL, e.g. ws://127.0.0.1:8000/ws/session1")
    ap.add_argument("--in", dest="inp", required=True, help="Input JSONL path")
    ap.add_argument("--speed", type=float, default=1.0, help="Speed multiplier (2.0 = 2x faster)")
    ap.add_argument("--default-dt-ms", type=int, default=0, help="Delay between annotations if no timestamps")
    args = ap.parse_args()

    logging.basicConfig(level=get_settings().log_level)
    sent = asyncio.run(
        replay(
            args.ws,
            Path(args.inp),
            speed=args.speed,
            default_dt_ms=args.default_dt_ms,
        )
    )
    print(f"[replay] sent {sent} annotations")


if __name__ == "__main__":
    main()
