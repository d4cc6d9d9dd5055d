from __future__ import annotations

from pydantic import ValidationError

from .messages import AnnotationBody, AnnotationBodyChunk, MessageKind, SignalMsg


class DecodeError(ValueError):
    """Text is not an annotation signal (may belong to another channel use)."""


def encode_message(msg: SignalMsg) -> str:
    return msg.model_dump_json(by_alias=True)


def decode_message(text: str | bytes) -> SignalMsg:
    """
    Classify and decode one signal.

    Bodies (header / single) are tried first, then chunks. Both schemas forbid
    unknown keys, so a message can only ever match one of them.
    """
    try:
        body = AnnotationBody.model_validate_json(text)
    except ValidationError as body_err:
        try:
            return AnnotationBodyChunk.model_validate_json(text)
        except ValidationError as chunk_err:
            raise DecodeError(
                f"not an annotation signal ({body_err.error_count()} body errors, "
                f"{chunk_err.error_count()} chunk errors)"
            ) from chunk_err

    if body.is_header or body.is_single:
        return body
    raise DecodeError(
        f"inconsistent annotation body: totalChunksCount={body.totalChunksCount} "
        f"with {len(body.points)} inline chunks"
    )


def message_kind(msg: SignalMsg) -> MessageKind:
    if isinstance(msg, AnnotationBodyChunk):
        return "chunk"
    return "single" if msg.totalChunksCount == 1 else "header"
