from __future__ import annotations

import argparse
import asyncio
import json
import logging
import time
from pathlib import Path

from annotation_relay.canvas import Canvas
from annotation_relay.protocol.messages import StrokePoint
from annotation_relay.relay import AnnotationRelay, ErrorNotice
from annotation_relay.server.config import get_settings
from annotation_relay.transport import WebSocketSignalTransport


def _now_ms() -> int:
    return int(time.time() * 1000)


def annotation_line(points: list[StrokePoint], ts: int) -> str:
    return json.dumps(
        {"ts": ts, "points": [p.model_dump(mode="json") for p in points]},
        ensure_ascii=False,
    )


async def record(ws_url: str, out_path: Path, *, png_path: Path | None, echo: bool) -> None:
    settings = get_settings()
    canvas = Canvas()
    out_path.parent.mkdir(parents=True, exist_ok=True)

    with out_path.open("a", encoding="utf-8") as f:

        def on_annotation(points: list[StrokePoint]) -> None:
            canvas.add_stroke(points)
            f.write(annotation_line(points, _now_ms()) + "\n")
            f.flush()
            if echo:
                print(f"[record] annotation points={len(points)} total={len(canvas.strokes)}")
            if png_path is not None:
                canvas.save_png(png_path)

        def on_error(notice: ErrorNotice) -> None:
            print(f"[record] error: {notice.error}")

        async with WebSocketSignalTransport(ws_url, max_message_bytes=settings.max_signal_bytes) as transport:
            relay = AnnotationRelay.from_settings(transport, on_annotation, settings=settings, on_error=on_error)
            await relay.run()


def main() -> None:
    ap = argparse.ArgumentParser(description="Record reassembled remote annotations to a JSONL file.")
    ap.add_argument("--ws", required=True, help="WebSocket URL, e.g. ws://127.0.0.1:8000/ws/session1")
    ap.add_argument("--out", required=True, help="Output JSONL path")
    ap.add_argument("--png", default=None, help="Re-render all received strokes to this PNG after each one")
    ap.add_argument("--print", action="store_true", help="Print a line per received annotation")
    args = ap.parse_args()

    logging.basicConfig(level=get_settings().log_level)
    asyncio.run(
        record(
            args.ws,
            Path(args.out),
            png_path=Path(args.png) if args.png else None,
            echo=args.print,
        )
    )


if __name__ == "__main__":
    main()
