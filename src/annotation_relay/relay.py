from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Callable
from uuid import UUID

from .presentation import InlineContext, PresentationContext
from .protocol.codec import encode_message
from .protocol.constants import ESTIMATED_SIZE_PER_POINT, TARGET_ESTIMATED_SIZE
from .protocol.messages import StrokePoint
from .reassembly import AnnotationSink, DuplicatePolicy, ReassemblyEngine
from .server.config import Settings, get_settings
from .splitter import SplitAnnotation, split_annotation
from .transport import SignalTransport, TransportError

logger = logging.getLogger(__name__)


@dataclass
class ErrorNotice:
    """One-shot, dismissible transport failure shown to the user."""

    error: str
    id: UUID = field(default_factory=uuid.uuid4)


class AnnotationRelay:
    """
    Per-call annotation service: publishes local strokes and reassembles remote ones.

    Owns one sender identity and one reassembly engine; built by whoever owns
    the call session and dropped with it.
    """

    def __init__(
        self,
        transport: SignalTransport,
        on_annotation: AnnotationSink,
        *,
        sender_id: UUID | None = None,
        on_error: Callable[[ErrorNotice], None] | None = None,
        context: PresentationContext | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        estimated_point_size: int = ESTIMATED_SIZE_PER_POINT,
        target_chunk_size: int = TARGET_ESTIMATED_SIZE,
        recent_stroke_window_s: float | None = 60.0,
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.APPEND,
        slot_ttl_s: float | None = None,
        max_slots: int | None = None,
        orphan_grace_s: float = 0.0,
        debug_log_msgs: bool = False,
    ) -> None:
        self.transport = transport
        self.sender_id = sender_id or uuid.uuid4()
        self.on_error = on_error
        self.context: PresentationContext = context or InlineContext()
        self.wall_clock = wall_clock
        self.estimated_point_size = estimated_point_size
        self.target_chunk_size = target_chunk_size
        self.recent_stroke_window_s = recent_stroke_window_s
        self.debug_log_msgs = debug_log_msgs
        self.last_error: ErrorNotice | None = None

        self.engine = ReassemblyEngine(
            self.sender_id,
            on_annotation,
            context=self.context,
            clock=clock,
            duplicate_policy=duplicate_policy,
            slot_ttl_s=slot_ttl_s,
            max_slots=max_slots,
            orphan_grace_s=orphan_grace_s,
        )

    @classmethod
    def from_settings(
        cls,
        transport: SignalTransport,
        on_annotation: AnnotationSink,
        *,
        settings: Settings | None = None,
        **kwargs,
    ) -> AnnotationRelay:
        """
        Build a relay from ``Settings``.

        The transport is used as given; build it with
        ``max_message_bytes=settings.max_signal_bytes`` to apply the ceiling.
        """
        s = settings or get_settings()
        options = dict(
            estimated_point_size=s.estimated_point_size,
            target_chunk_size=s.target_chunk_size,
            recent_stroke_window_s=s.recent_stroke_window_s,
            duplicate_policy=DuplicatePolicy(s.duplicate_policy),
            slot_ttl_s=s.slot_ttl_s,
            max_slots=s.max_open_slots,
            orphan_grace_s=s.orphan_grace_s,
            debug_log_msgs=s.debug_log_msgs,
        )
        options.update(kwargs)
        return cls(transport, on_annotation, **options)

    # outbound

    async def on_local_stroke(
        self, points: Sequence[StrokePoint], created_at: float | None = None
    ) -> SplitAnnotation | None:
        """Publish a stroke that just finished on the local canvas (unix seconds)."""
        if created_at is not None and self.recent_stroke_window_s is not None:
            age = self.wall_clock() - created_at
            if age > self.recent_stroke_window_s:
                logger.debug("skipping stroke created %.1fs ago", age)
                return None
        return await self.publish_stroke(points)

    async def publish_stroke(self, points: Sequence[StrokePoint]) -> SplitAnnotation | None:
        split = split_annotation(
            points,
            self.sender_id,
            estimated_size_per_point=self.estimated_point_size,
            target_size=self.target_chunk_size,
        )
        for msg in split.messages():
            text = encode_message(msg)
            if self.debug_log_msgs:
                logger.debug("out annotation=%s bytes=%d", split.annotation_id, len(text))
            try:
                await self.transport.send(text)
            except TransportError as e:
                logger.warning("annotation %s not sent: %s", split.annotation_id, e)
                self.report_error(e)
                return None
        return split

    # inbound

    def handle_signal(self, text: str | bytes) -> list[StrokePoint] | None:
        if self.debug_log_msgs:
            logger.debug("in bytes=%d", len(text))
        return self.engine.on_text(text)

    async def run(self) -> None:
        """Consume inbound signals until the transport closes."""
        try:
            async for text in self.transport.messages():
                self.handle_signal(text)
        except TransportError as e:
            logger.warning("signal channel lost: %s", e)
            self.report_error(e)

    async def close(self) -> None:
        await self.transport.close()

    # errors

    def report_error(self, error: Exception) -> None:
        self.context.submit(self._publish_error, ErrorNotice(error=str(error)))

    def _publish_error(self, notice: ErrorNotice) -> None:
        self.last_error = notice
        if self.on_error is not None:
            self.on_error(notice)
