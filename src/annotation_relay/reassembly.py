from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable
from uuid import UUID

from .presentation import InlineContext, PresentationContext
from .protocol.codec import DecodeError, decode_message
from .protocol.messages import (
    AnnotationBody,
    AnnotationBodyChunk,
    ReassemblyKey,
    SignalMsg,
    StrokePoint,
)

logger = logging.getLogger(__name__)

AnnotationSink = Callable[[list[StrokePoint]], None]


class DuplicatePolicy(str, Enum):
    """What to do with a chunk whose position was already received."""

    # Keep it; it counts towards completion.
    APPEND = "append"
    # Drop the repeat.
    IGNORE = "ignore"
    # Swap the earlier chunk out; the count does not change.
    REPLACE = "replace"


@dataclass
class ReassemblySlot:
    key: ReassemblyKey
    created_at: float
    chunks: list[AnnotationBodyChunk] = field(default_factory=list)
    completed: bool = False

    def index_of(self, position: int) -> int | None:
        for i, chunk in enumerate(self.chunks):
            if chunk.position == position:
                return i
        return None


class ReassemblyEngine:
    """
    Turns inbound headers/chunks/single messages into completed point lists.

    Not thread-safe: call it from the transport's delivery context only.
    Completed annotations are handed to ``on_annotation`` through ``context``.

    - loopback: anything sent by ``local_sender_id`` is discarded first
    - a slot is opened by a header only; chunks look it up by annotation id
    - chunks without a slot are dropped, unless ``orphan_grace_s > 0`` in which
      case they are held that long waiting for their header
    - ``slot_ttl_s`` / ``max_slots`` bound the resident slots (``None`` = unbounded);
      at the cap completed slots are evicted before in-flight ones, oldest first.
      ``max_slots`` also caps how many annotation ids may hold orphan chunks
    """

    def __init__(
        self,
        local_sender_id: UUID,
        on_annotation: AnnotationSink,
        *,
        context: PresentationContext | None = None,
        clock: Callable[[], float] = time.monotonic,
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.APPEND,
        slot_ttl_s: float | None = None,
        max_slots: int | None = None,
        orphan_grace_s: float = 0.0,
    ) -> None:
        if slot_ttl_s is not None and slot_ttl_s <= 0:
            raise ValueError("slot_ttl_s must be > 0 or None")
        if max_slots is not None and max_slots < 1:
            raise ValueError("max_slots must be >= 1 or None")
        if orphan_grace_s < 0:
            raise ValueError("orphan_grace_s must be >= 0")

        self.local_sender_id = local_sender_id
        self.on_annotation = on_annotation
        self.context: PresentationContext = context or InlineContext()
        self.clock = clock
        self.duplicate_policy = DuplicatePolicy(duplicate_policy)
        self.slot_ttl_s = slot_ttl_s
        self.max_slots = max_slots
        self.orphan_grace_s = orphan_grace_s

        # annotation id -> slot; insertion order == creation order
        self._slots: dict[UUID, ReassemblySlot] = {}
        # annotation id -> [(received_at, chunk), ...]
        self._orphans: dict[UUID, list[tuple[float, AnnotationBodyChunk]]] = {}

    @property
    def slots(self) -> dict[ReassemblyKey, ReassemblySlot]:
        return {slot.key: slot for slot in self._slots.values()}

    @property
    def open_slots(self) -> int:
        return sum(1 for slot in self._slots.values() if not slot.completed)

    def pending(self, annotation_id: UUID) -> ReassemblySlot | None:
        return self._slots.get(annotation_id)

    def on_text(self, text: str | bytes) -> list[StrokePoint] | None:
        try:
            msg = decode_message(text)
        except DecodeError as e:
            logger.debug("ignoring non-annotation signal: %s", e)
            return None
        return self.on_message(msg)

    def on_message(self, msg: SignalMsg) -> list[StrokePoint] | None:
        """Feed one decoded signal; returns the points if it completed an annotation."""
        if msg.senderID == self.local_sender_id:
            logger.debug("loopback signal dropped (sender %s)", msg.senderID)
            return None

        if isinstance(msg, AnnotationBodyChunk):
            return self._on_chunk(msg)
        if msg.totalChunksCount == 1:
            points = msg.inline_points()
            self._emit(points)
            return points
        return self._on_header(msg)

    def sweep(self, now: float | None = None) -> int:
        """Evict expired slots and orphans; returns how many slots were removed."""
        now = self.clock() if now is None else now

        if self.orphan_grace_s > 0:
            for annotation_id in list(self._orphans):
                kept = [(ts, c) for ts, c in self._orphans[annotation_id] if now - ts <= self.orphan_grace_s]
                if kept:
                    self._orphans[annotation_id] = kept
                else:
                    del self._orphans[annotation_id]

        if self.slot_ttl_s is None:
            return 0
        expired = [aid for aid, slot in self._slots.items() if now - slot.created_at > self.slot_ttl_s]
        for annotation_id in expired:
            slot = self._slots.pop(annotation_id)
            if not slot.completed:
                logger.debug(
                    "evicting incomplete annotation %s (%d/%d chunks)",
                    annotation_id,
                    len(slot.chunks),
                    slot.key.total_chunks_count,
                )
        return len(expired)

    def _on_header(self, header: AnnotationBody) -> list[StrokePoint] | None:
        now = self.clock()
        self.sweep(now)

        key = ReassemblyKey(header.id, header.totalChunksCount)
        existing = self._slots.get(header.id)
        if existing is not None:
            if existing.key != key:
                logger.debug(
                    "header for %s announces %d chunks but slot expects %d; ignored",
                    header.id,
                    header.totalChunksCount,
                    existing.key.total_chunks_count,
                )
            return None

        self._make_room()
        slot = ReassemblySlot(key=key, created_at=now)
        self._slots[header.id] = slot

        result = None
        for _, chunk in self._orphans.pop(header.id, []):
            result = self._accept(slot, chunk) or result
        return result

    def _on_chunk(self, chunk: AnnotationBodyChunk) -> list[StrokePoint] | None:
        now = self.clock()
        self.sweep(now)

        slot = self._slots.get(chunk.annotationID)
        if slot is None:
            if self.orphan_grace_s > 0:
                if chunk.annotationID not in self._orphans and self.max_slots is not None:
                    while len(self._orphans) >= self.max_slots:
                        dropped = next(iter(self._orphans))
                        del self._orphans[dropped]
                        logger.debug("orphan cap %d reached; discarded chunks of %s", self.max_slots, dropped)
                self._orphans.setdefault(chunk.annotationID, []).append((now, chunk))
                logger.debug("holding chunk %d of %s until its header arrives", chunk.position, chunk.annotationID)
            else:
                logger.debug("chunk %d of %s arrived before its header; dropped", chunk.position, chunk.annotationID)
            return None
        return self._accept(slot, chunk)

    def _accept(self, slot: ReassemblySlot, chunk: AnnotationBodyChunk) -> list[StrokePoint] | None:
        if slot.completed:
            logger.debug("chunk %d for completed annotation %s ignored", chunk.position, slot.key.annotation_id)
            return None

        if self.duplicate_policy is not DuplicatePolicy.APPEND:
            idx = slot.index_of(chunk.position)
            if idx is not None:
                if self.duplicate_policy is DuplicatePolicy.REPLACE:
                    slot.chunks[idx] = chunk
                return None

        slot.chunks.append(chunk)
        if len(slot.chunks) < slot.key.total_chunks_count:
            return None

        slot.completed = True
        ordered = sorted(slot.chunks, key=lambda c: c.position)
        points = [p for c in ordered for p in c.points]
        self._emit(points)
        return points

    def _make_room(self) -> None:
        if self.max_slots is None:
            return
        while len(self._slots) >= self.max_slots:
            # completed slots only guard against re-emission; in-flight ones go last
            victim = next((aid for aid, s in self._slots.items() if s.completed), None)
            if victim is None:
                victim = next(iter(self._slots))
            slot = self._slots.pop(victim)
            logger.debug(
                "slot cap %d reached; evicted %s (%s)",
                self.max_slots,
                victim,
                "completed" if slot.completed else "in flight",
            )

    def _emit(self, points: list[StrokePoint]) -> None:
        self.context.submit(self.on_annotation, points)
