"""Tests for the playback position bound check."""

from __future__ import annotations

import pytest

from watchbudget.engine.tamper import DEFAULT_TOLERANCE_SECONDS, validate_position


class TestValidatePosition:
    def test_default_tolerance(self) -> None:
        assert DEFAULT_TOLERANCE_SECONDS == 10

    @pytest.mark.parametrize("position", [0, 1, 300, 600, 610])
    def test_accepts_positions_within_tolerance(self, position: int) -> None:
        assert validate_position(position, 600) is True

    def test_rejects_one_past_tolerance(self) -> None:
        assert validate_position(611, 600) is False

    def test_rejects_negative_position(self) -> None:
        assert validate_position(-1, 600) is False

    def test_custom_tolerance(self) -> None:
        assert validate_position(605, 600, tolerance_seconds=5) is True
        assert validate_position(606, 600, tolerance_seconds=5) is False

    def test_zero_tolerance_is_exact(self) -> None:
        assert validate_position(600, 600, tolerance_seconds=0) is True
        assert validate_position(601, 600, tolerance_seconds=0) is False
