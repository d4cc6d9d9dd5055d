from .codec import DecodeError, decode_message, encode_message, message_kind
from .constants import (
    ESTIMATED_SIZE_PER_POINT,
    MAX_SIGNAL_BYTES,
    TARGET_ESTIMATED_SIZE,
)
from .messages import AnnotationBody, AnnotationBodyChunk, ReassemblyKey, StrokePoint

__all__ = [
    "ESTIMATED_SIZE_PER_POINT",
    "MAX_SIGNAL_BYTES",
    "TARGET_ESTIMATED_SIZE",
    "AnnotationBody",
    "AnnotationBodyChunk",
    "ReassemblyKey",
    "StrokePoint",
    "DecodeError",
    "decode_message",
    "encode_message",
    "message_kind",
]
