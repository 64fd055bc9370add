"""Tests for exponential backoff delays."""

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.resilience]

from cidstore.utils.backoff import ExponentialBackoff


def test_next_delay_without_jitter_doubles():
    """Test delay growth with zero jitter draw."""
    backoff = ExponentialBackoff(rand=lambda: 0.0)

    assert backoff.next_delay(1.0) == 2.0
    assert backoff.next_delay(2.0) == 4.0


def test_next_delay_adds_jitter_proportional_to_delay():
    """Test jitter is a fraction of the current delay."""
    backoff = ExponentialBackoff(jitter=0.3, rand=lambda: 1.0)

    assert backoff.next_delay(1.0) == pytest.approx(2.3)
    assert backoff.next_delay(2.0) == pytest.approx(4.6)


def test_next_delay_is_capped():
    """Test delays never exceed max_delay."""
    backoff = ExponentialBackoff(max_delay=10.0, rand=lambda: 1.0)

    assert backoff.next_delay(8.0) == 10.0
    assert backoff.next_delay(10.0) == 10.0


def test_delay_sequence_is_monotonic_up_to_cap():
    """Test successive delays only grow until the cap."""
    backoff = ExponentialBackoff()
    delay = backoff.base_delay
    seen = []
    for _ in range(8):
        delay = backoff.next_delay(delay)
        seen.append(delay)

    assert seen == sorted(seen)
    assert all(d <= backoff.max_delay for d in seen)
    assert seen[-1] == backoff.max_delay
