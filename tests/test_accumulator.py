"""Tests for the compare-and-swap error accumulator."""

import math
import threading

import pytest

from lfmrec.recommender.accumulator import (
    AtomicCounter,
    AtomicFloat,
    ErrorAccumulator,
    bits_to_float,
    float_to_bits,
)


def test_bit_pattern_round_trip():
    for value in (0.0, -0.0, 1.5, -3.25, 1e300, float("inf")):
        assert bits_to_float(float_to_bits(value)) == value
    assert float_to_bits(1.0) == 0x3FF0000000000000


def test_compare_and_swap_fails_on_stale_value():
    cell = AtomicFloat(1.0)
    stale = float_to_bits(1.0)
    assert cell.compare_and_swap(stale, float_to_bits(2.0))
    assert not cell.compare_and_swap(stale, float_to_bits(3.0))
    assert cell.load() == 2.0


def test_counter_compare_and_swap():
    counter = AtomicCounter()
    assert counter.add() == 1
    assert not counter.compare_and_swap(0, 5)
    assert counter.compare_and_swap(1, 5)
    assert counter.load() == 5


def test_concurrent_adds_match_serial_sum_exactly():
    """N workers adding k values each lose no update."""
    n_workers, k = 8, 2000
    values = [[float((w * k + j) % 13) for j in range(k)] for w in range(n_workers)]
    accumulator = ErrorAccumulator()
    barrier = threading.Barrier(n_workers)

    def work(chunk):
        barrier.wait()
        for value in chunk:
            accumulator.add(value)

    threads = [threading.Thread(target=work, args=(chunk,)) for chunk in values]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    serial = sum(v * v for chunk in values for v in chunk)
    assert accumulator.total == serial
    assert accumulator.samples == n_workers * k


def test_concurrent_atomic_float_adds_are_exact():
    cell = AtomicFloat()
    threads = [
        threading.Thread(target=lambda: [cell.add(0.25) for _ in range(5000)]) for _ in range(6)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert cell.load() == 0.25 * 5000 * 6


def test_mean_and_reset():
    accumulator = ErrorAccumulator()
    assert math.isnan(accumulator.mean())

    accumulator.add(2.0)
    accumulator.add(-4.0)
    accumulator.add(3.0)
    assert (accumulator.total, accumulator.samples) == (29.0, 3)
    assert accumulator.mean() == pytest.approx(29.0 / 3)

    accumulator.reset()
    assert (accumulator.total, accumulator.samples) == (0.0, 0)
