"""
Tests for interval parsing and AID lower-bound arithmetic.
"""

from __future__ import annotations

import pytest

from misskey_exporter.aid import (
    DAY_MS,
    DEFAULT_INTERVAL_MS,
    EPOCH_OFFSET_MS,
    HOUR_MS,
    MINUTE_MS,
    lower_bound_identifier,
    parse_interval,
    to_base36,
)

# =============================================================================
# Tests for parse_interval
# =============================================================================


class TestParseInterval:
    """Tests for the parse_interval function."""

    def test_one_day(self) -> None:
        assert parse_interval("1 day") == 86400000

    def test_seven_days(self) -> None:
        assert parse_interval("7 days") == 604800000

    def test_thirty_days(self) -> None:
        assert parse_interval("30 days") == 2592000000

    @pytest.mark.parametrize(
        ("interval", "expected"),
        [
            ("12 hours", 12 * HOUR_MS),
            ("1 hour", HOUR_MS),
            ("15 minutes", 15 * MINUTE_MS),
            ("2 days", 2 * DAY_MS),
        ],
    )
    def test_general_form(self, interval: str, expected: int) -> None:
        """Test the <N> unit[s] form."""
        assert parse_interval(interval) == expected

    def test_unparseable_falls_back_to_one_day(self) -> None:
        assert parse_interval("banana") == 86400000
        assert parse_interval("banana") == DEFAULT_INTERVAL_MS

    def test_empty_string_falls_back_to_one_day(self) -> None:
        assert parse_interval("") == DAY_MS


# =============================================================================
# Tests for to_base36
# =============================================================================


class TestToBase36:
    """Tests for the to_base36 function."""

    def test_zero(self) -> None:
        assert to_base36(0) == "0"

    def test_digits_and_letters(self) -> None:
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"

    def test_matches_int_parsing(self) -> None:
        value = 1_234_567_890_123
        assert int(to_base36(value), 36) == value

    def test_negative(self) -> None:
        assert to_base36(-36) == "-10"


# =============================================================================
# Tests for lower_bound_identifier
# =============================================================================


class TestLowerBoundIdentifier:
    """Tests for the lower_bound_identifier function."""

    def test_known_value(self) -> None:
        """Offset of 36 ms after the epoch encodes as "10"."""
        now_ms = EPOCH_OFFSET_MS + DAY_MS + 36
        assert lower_bound_identifier("1 day", now_ms) == "0000001000"

    def test_base36_boundary(self) -> None:
        now_ms = EPOCH_OFFSET_MS + 36**8
        result = lower_bound_identifier("1 day", now_ms)

        assert len(result) == 10
        assert result.endswith("00")
        assert result[:8] == to_base36(36**8 - DAY_MS).rjust(8, "0")

    def test_deterministic(self) -> None:
        now_ms = 1_700_000_000_000
        assert lower_bound_identifier("7 days", now_ms) == lower_bound_identifier(
            "7 days", now_ms
        )

    def test_longer_interval_gives_smaller_bound(self) -> None:
        """Fixed-width prefixes order lexicographically by time."""
        now_ms = 1_700_000_000_000
        daily = lower_bound_identifier("1 day", now_ms)
        weekly = lower_bound_identifier("7 days", now_ms)
        monthly = lower_bound_identifier("30 days", now_ms)

        assert monthly < weekly < daily

    def test_pre_epoch_target_clamps_to_zero(self) -> None:
        now_ms = EPOCH_OFFSET_MS + HOUR_MS
        assert lower_bound_identifier("1 day", now_ms) == "0000000000"

    def test_defaults_to_current_time(self) -> None:
        result = lower_bound_identifier("1 day")

        assert len(result) == 10
        assert result.endswith("00")
