"""
CONSTANTS
---------
Single source of truth for wire-format and playback invariants.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Container Header
# =============================================================================
# "DCA" + 1 ASCII digit + int32 metadata length + JSON metadata

DCA_MAGIC: Final[bytes] = b"DCA"
DCA_MAGIC_BYTES: Final[int] = len(DCA_MAGIC)
DCA_FINGERPRINT_BYTES: Final[int] = DCA_MAGIC_BYTES + 1  # magic + version digit
METADATA_LENGTH_BYTES: Final[int] = 4

DEFAULT_FORMAT_VERSION: Final[int] = 0

# =============================================================================
# Frames
# =============================================================================
# int16 length prefix + opus payload

FRAME_LENGTH_BYTES: Final[int] = 2
FRAME_LENGTH_FORMAT: Final[str] = "<h"
METADATA_LENGTH_FORMAT: Final[str] = "<i"

MAX_FRAME_BYTES: Final[int] = 2**15 - 1

# =============================================================================
# Encoder Defaults (opus @ 48kHz stereo, 20ms frames)
# =============================================================================

DEFAULT_FRAME_DURATION_MS: Final[int] = 20
DEFAULT_FRAME_RATE_HZ: Final[int] = 48_000
DEFAULT_CHANNELS: Final[int] = 2

# =============================================================================
# Delivery
# =============================================================================

# Max time the sink may take to accept a single frame before the
# session is considered stalled.
SINK_DELIVERY_TIMEOUT_MS: Final[int] = 1_000

# =============================================================================
# Transport
# =============================================================================

WS_CLOSE_UNKNOWN_MEDIA: Final[int] = 4404


def frames_to_ms(num_frames: int, frame_duration_ms: int) -> int:
    """
    Convert a frame count to playback milliseconds.

    Non-positive input returns 0.
    """
    if num_frames <= 0:
        return 0
    return num_frames * frame_duration_ms
