"""Lock-free style accumulation of training error.

Every SGD worker adds its squared residual to one shared accumulator, so the
add sits on the hot path of every update. Instead of a mutex around the whole
accumulator each add is an optimistic read-modify-write loop: read the
current IEEE-754 bit pattern, compute the new value, and publish it with a
compare-and-swap that fails if another worker got there first. Python has no
hardware CAS on floats, so :meth:`AtomicFloat.compare_and_swap` is the one
primitive that serializes, and only for the single swap.
"""

import struct
import threading


def float_to_bits(value: float) -> int:
    """Bit pattern of a float64 as an unsigned 64-bit integer."""
    return struct.unpack("<Q", struct.pack("<d", value))[0]


def bits_to_float(bits: int) -> float:
    """Inverse of :func:`float_to_bits`."""
    return struct.unpack("<d", struct.pack("<Q", bits))[0]


class AtomicFloat:
    """A float cell updated through compare-and-swap on its bit pattern."""

    def __init__(self, value: float = 0.0):
        self._bits = float_to_bits(value)
        self._swap_lock = threading.Lock()

    def load(self) -> float:
        """Current value."""
        return bits_to_float(self._bits)

    def store(self, value: float) -> None:
        """Overwrite the value unconditionally."""
        with self._swap_lock:
            self._bits = float_to_bits(value)

    def compare_and_swap(self, expected_bits: int, new_bits: int) -> bool:
        """Publish ``new_bits`` only if the cell still holds ``expected_bits``."""
        with self._swap_lock:
            if self._bits != expected_bits:
                return False
            self._bits = new_bits
            return True

    def add(self, delta: float) -> float:
        """Atomically add ``delta`` and return the new value."""
        while True:
            old_bits = self._bits
            new_value = bits_to_float(old_bits) + delta
            if self.compare_and_swap(old_bits, float_to_bits(new_value)):
                return new_value


class AtomicCounter:
    """An unsigned counter incremented through compare-and-swap."""

    def __init__(self, value: int = 0):
        self._value = value
        self._swap_lock = threading.Lock()

    def load(self) -> int:
        """Current count."""
        return self._value

    def store(self, value: int) -> None:
        """Overwrite the count unconditionally."""
        with self._swap_lock:
            self._value = value

    def compare_and_swap(self, expected: int, new: int) -> bool:
        """Set the count to ``new`` only if it still equals ``expected``."""
        with self._swap_lock:
            if self._value != expected:
                return False
            self._value = new
            return True

    def add(self, delta: int = 1) -> int:
        """Atomically add ``delta`` and return the new count."""
        while True:
            old = self._value
            if self.compare_and_swap(old, old + delta):
                return old + delta


class ErrorAccumulator:
    """Running sum of squared residuals and sample count for one epoch.

    Workers call :meth:`add` concurrently; :meth:`mean` is read once after
    every worker has finished.
    """

    def __init__(self):
        self._squared_error = AtomicFloat()
        self._samples = AtomicCounter()

    def add(self, error: float) -> None:
        """Record one residual; its square is accumulated."""
        self._squared_error.add(error * error)
        self._samples.add(1)

    def reset(self) -> None:
        """Zero the sum and the count before an epoch."""
        self._squared_error.store(0.0)
        self._samples.store(0)

    @property
    def total(self) -> float:
        """Sum of squared residuals recorded so far."""
        return self._squared_error.load()

    @property
    def samples(self) -> int:
        """Number of residuals recorded so far."""
        return self._samples.load()

    def mean(self) -> float:
        """Mean squared error, NaN when nothing was recorded."""
        samples = self.samples
        if samples == 0:
            return float("nan")
        return self.total / samples
