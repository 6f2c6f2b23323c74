"""
Application configuration.

Responsibilities:
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No protocol constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import DEFAULT_FRAME_DURATION_MS, SINK_DELIVERY_TIMEOUT_MS


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup and handed to the app factory.
    """

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    media_dir: str

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    sink_timeout_ms: int
    frame_duration_ms: int

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    @property
    def sink_timeout_s(self) -> float:
        """Sink delivery deadline in seconds."""
        return self.sink_timeout_ms / 1000.0

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable is not an integer
            or is not positive.
        """
        sink_timeout_ms = int(
            os.environ.get("DCA_SINK_TIMEOUT_MS", str(SINK_DELIVERY_TIMEOUT_MS))
        )
        frame_duration_ms = int(
            os.environ.get("DCA_FRAME_DURATION_MS", str(DEFAULT_FRAME_DURATION_MS))
        )
        if sink_timeout_ms <= 0:
            raise ValueError("DCA_SINK_TIMEOUT_MS must be > 0")
        if frame_duration_ms <= 0:
            raise ValueError("DCA_FRAME_DURATION_MS must be > 0")

        return AppConfig(
            media_dir=os.environ.get("DCA_MEDIA_DIR", "./media"),

            sink_timeout_ms=sink_timeout_ms,
            frame_duration_ms=frame_duration_ms,

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",
        )
