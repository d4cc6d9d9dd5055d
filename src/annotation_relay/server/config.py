from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from annotation_relay.protocol.constants import (
    ESTIMATED_SIZE_PER_POINT,
    MAX_SIGNAL_BYTES,
    TARGET_ESTIMATED_SIZE,
)


class Settings(BaseSettings):
    """
    Runtime config (relay clients + development signaling server).

    - Loaded from environment variables
    - Also reads `.env` if present (via pydantic-settings + python-dotenv)
    """

    model_config = SettingsConfigDict(env_file=".env", env_prefix="ANNOTATION_RELAY_", extra="ignore")

    # Chunking budget (estimates, not byte counts)
    estimated_point_size: int = ESTIMATED_SIZE_PER_POINT
    target_chunk_size: int = TARGET_ESTIMATED_SIZE

    # Hard ceiling of one signal, enforced by transports and the dev server
    max_signal_bytes: int = MAX_SIGNAL_BYTES

    # Reassembly bounds. None keeps slots forever.
    slot_ttl_s: float | None = 120.0
    max_open_slots: int | None = 256
    # 0 drops chunks that arrive before their header
    orphan_grace_s: float = 0.0
    duplicate_policy: Literal["append", "ignore", "replace"] = "append"

    # Only strokes created this recently are published
    recent_stroke_window_s: float = 60.0

    # Debugging
    debug_log_msgs: bool = False
    log_level: str = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
