"""Tests for the upload timeout policy."""

import pytest

from mediaforge.services.assembly.timeouts import hard_timeout_seconds, timeout_seconds

MIB = 1024 * 1024


def test_base_timeout_for_small_files():
    """Files up to 200 MiB get the 600s base budget."""
    assert timeout_seconds(1024) == 600
    assert timeout_seconds(100 * MIB) == 600
    assert timeout_seconds(200 * MIB) == 600


@pytest.mark.parametrize("size", [0, -5, None])
def test_degenerate_sizes_get_base_timeout(size):
    assert timeout_seconds(size) == 600


def test_scales_per_started_100_mib():
    """300s is added for every started 100 MiB above 200 MiB."""
    assert timeout_seconds(200 * MIB + 1) == 900
    assert timeout_seconds(500 * MIB) == 1500
    assert timeout_seconds(700 * MIB) == 2100
    assert timeout_seconds(1024 * MIB) == 3300


def test_capped_at_one_hour():
    assert timeout_seconds(1536 * MIB) == 3600
    assert timeout_seconds(2048 * MIB) == 3600
    assert timeout_seconds(50 * 1024 * MIB) == 3600


def test_non_decreasing():
    sizes = [0] + [n * 37 * MIB for n in range(1, 80)]
    budgets = [timeout_seconds(size) for size in sizes]
    assert budgets == sorted(budgets)


def test_hard_timeout_adds_grace_period():
    assert hard_timeout_seconds(700 * MIB) == 2160
    assert hard_timeout_seconds(10 * MIB, grace_seconds=30) == 630
