from __future__ import annotations

import uuid
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from uuid import UUID

from .protocol.constants import (
    ESTIMATED_SIZE_PER_POINT,
    FIRST_CHUNK_POSITION,
    TARGET_ESTIMATED_SIZE,
)
from .protocol.messages import AnnotationBody, AnnotationBodyChunk, SignalMsg, StrokePoint


@dataclass
class SplitAnnotation:
    """Outbound form of one annotation: a single message, or a header plus chunks."""

    annotation_id: UUID
    sender_id: UUID
    single: AnnotationBody | None = None
    header: AnnotationBody | None = None
    chunks: list[AnnotationBodyChunk] = field(default_factory=list)

    @property
    def total_chunks_count(self) -> int:
        if self.header is not None:
            return self.header.totalChunksCount
        return 1

    @property
    def is_chunked(self) -> bool:
        return self.header is not None

    def messages(self) -> Iterator[SignalMsg]:
        """Wire order: header first, then chunks by position."""
        if self.single is not None:
            yield self.single
            return
        if self.header is not None:
            yield self.header
        yield from sorted(self.chunks, key=lambda c: c.position)


def _check_budget(estimated_size_per_point: int, target_size: int) -> None:
    if estimated_size_per_point <= 0:
        raise ValueError(f"estimated_size_per_point must be > 0, got {estimated_size_per_point}")
    if target_size <= 0:
        raise ValueError(f"target_size must be > 0, got {target_size}")


def split_points(
    points: Sequence[StrokePoint],
    *,
    estimated_size_per_point: int = ESTIMATED_SIZE_PER_POINT,
    target_size: int = TARGET_ESTIMATED_SIZE,
) -> list[list[StrokePoint]]:
    """Greedily pack points into groups whose estimated size stays within budget."""
    _check_budget(estimated_size_per_point, target_size)

    groups: list[list[StrokePoint]] = []
    current: list[StrokePoint] = []
    current_size = 0
    for point in points:
        if current and current_size + estimated_size_per_point > target_size:
            groups.append(current)
            current = []
            current_size = 0
        current.append(point)
        current_size += estimated_size_per_point
    if current:
        groups.append(current)
    return groups


def split_annotation(
    points: Sequence[StrokePoint],
    sender_id: UUID,
    *,
    annotation_id: UUID | None = None,
    estimated_size_per_point: int = ESTIMATED_SIZE_PER_POINT,
    target_size: int = TARGET_ESTIMATED_SIZE,
) -> SplitAnnotation:
    """
    Turn one stroke into outbound signals.

    - total estimate <= target_size: one self-contained message, no header
    - otherwise: a header carrying the chunk count, then chunks 1..N
    """
    _check_budget(estimated_size_per_point, target_size)
    annotation_id = annotation_id or uuid.uuid4()

    groups: list[list[StrokePoint]] = []
    if len(points) * estimated_size_per_point > target_size:
        groups = split_points(
            points,
            estimated_size_per_point=estimated_size_per_point,
            target_size=target_size,
        )

    # A lone oversized point still travels as a single message: headers need N > 1.
    if len(groups) <= 1:
        return SplitAnnotation(
            annotation_id=annotation_id,
            sender_id=sender_id,
            single=AnnotationBody.single(annotation_id, sender_id, list(points)),
        )

    chunks = [
        AnnotationBodyChunk(
            annotationID=annotation_id,
            senderID=sender_id,
            position=FIRST_CHUNK_POSITION + i,
            points=group,
        )
        for i, group in enumerate(groups)
    ]
    return SplitAnnotation(
        annotation_id=annotation_id,
        sender_id=sender_id,
        header=AnnotationBody.header(annotation_id, sender_id, len(chunks)),
        chunks=chunks,
    )
