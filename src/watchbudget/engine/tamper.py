"""Bound check on client-reported playback positions.

Only a bound check: billed time always comes from the ledger's server-clock
delta, never from a position the client sends.
"""

from __future__ import annotations

DEFAULT_TOLERANCE_SECONDS = 10


def validate_position(
    reported_position_seconds: float,
    video_duration_seconds: float,
    tolerance_seconds: float = DEFAULT_TOLERANCE_SECONDS,
) -> bool:
    """Return True if the reported position is plausible for the video.

    Rejects negative positions and anything past the end of the video by
    more than ``tolerance_seconds``.
    """
    if reported_position_seconds < 0:
        return False
    return reported_position_seconds <= video_duration_seconds + tolerance_seconds
