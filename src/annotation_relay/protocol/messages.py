from __future__ import annotations

from typing import Annotated, Literal, NamedTuple, TypeAlias, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .constants import SINGLE_CHUNK_POSITION

# Stroke geometry:
# - location is [x, y] in canvas points
# - size is [width, height] of the brush tip
# - timeOffset is seconds since the stroke began
Vec2: TypeAlias = Annotated[list[float], Field(min_length=2, max_length=2)]

MessageKind: TypeAlias = Literal["single", "header", "chunk"]


class StrokePoint(BaseModel):
    # inf/nan have no JSON form; reject them before they reach the wire
    model_config = ConfigDict(extra="forbid", frozen=True, allow_inf_nan=False)

    location: Vec2
    timeOffset: float
    size: Vec2
    opacity: float
    force: float
    azimuth: float
    altitude: float
    secondaryScale: float


class AnnotationBodyChunk(BaseModel):
    """One size-bounded fragment of an annotation's points."""

    model_config = ConfigDict(extra="forbid")

    annotationID: UUID
    senderID: UUID
    position: int = Field(ge=0)
    points: list[StrokePoint]


class AnnotationBody(BaseModel):
    """
    Either a header announcing a chunked annotation or a self-contained
    single message.

    - header: ``points == []`` and ``totalChunksCount > 1``
    - single: one inline chunk at position 0 and ``totalChunksCount == 1``
    """

    model_config = ConfigDict(extra="forbid")

    id: UUID
    senderID: UUID
    points: list[AnnotationBodyChunk]
    totalChunksCount: int = Field(ge=1)

    @classmethod
    def header(cls, annotation_id: UUID, sender_id: UUID, total_chunks_count: int) -> AnnotationBody:
        return cls(id=annotation_id, senderID=sender_id, points=[], totalChunksCount=total_chunks_count)

    @classmethod
    def single(cls, annotation_id: UUID, sender_id: UUID, points: list[StrokePoint]) -> AnnotationBody:
        chunk = AnnotationBodyChunk(
            annotationID=annotation_id,
            senderID=sender_id,
            position=SINGLE_CHUNK_POSITION,
            points=list(points),
        )
        return cls(id=annotation_id, senderID=sender_id, points=[chunk], totalChunksCount=1)

    @property
    def is_header(self) -> bool:
        return self.totalChunksCount > 1 and not self.points

    @property
    def is_single(self) -> bool:
        return self.totalChunksCount == 1 and len(self.points) == 1

    def inline_points(self) -> list[StrokePoint]:
        return [p for chunk in self.points for p in chunk.points]


class ReassemblyKey(NamedTuple):
    annotation_id: UUID
    total_chunks_count: int


SignalMsg: TypeAlias = Union[AnnotationBody, AnnotationBodyChunk]
