"""Unit tests for buffers.py and the small helpers in outcomes.py."""

import numpy as np
import pytest

from rq_autotune.buffers import RingBuffer
from rq_autotune.outcomes import (
    Failure,
    Latch,
    Ok,
    call_collaborator,
    clamp,
    collaborator_method,
    count_of,
    is_finite,
)


class TestRingBuffer:
    """Test the fixed-capacity drop-oldest buffer."""

    def test_empty_buffer(self):
        """Test an empty buffer."""
        buf = RingBuffer(4)
        assert len(buf) == 0
        assert buf.capacity == 4
        assert buf.mean() == 0.0
        assert buf.latest() is None
        assert buf.values().size == 0

    def test_drop_oldest(self):
        """Test that pushing past capacity drops the oldest value."""
        buf = RingBuffer(3)
        for value in [1.0, 2.0, 3.0, 4.0, 5.0]:
            buf.push(value)
        assert len(buf) == 3
        np.testing.assert_array_equal(buf.values(), [3.0, 4.0, 5.0])
        assert buf.latest() == 5.0
        assert buf.mean() == pytest.approx(4.0)

    def test_partial_mean(self):
        """Test mean before the buffer is full."""
        buf = RingBuffer(10)
        buf.push(2.0)
        buf.push(4.0)
        assert buf.mean() == pytest.approx(3.0)

    def test_values_is_copy(self):
        """Test that values() does not expose internal storage."""
        buf = RingBuffer(2)
        buf.push(1.0)
        values = buf.values()
        values[0] = 99.0
        assert buf.latest() == 1.0

    def test_clear(self):
        """Test that clear empties the buffer."""
        buf = RingBuffer(2)
        buf.push(1.0)
        buf.push(2.0)
        buf.clear()
        assert len(buf) == 0
        buf.push(7.0)
        np.testing.assert_array_equal(buf.values(), [7.0])

    def test_invalid_capacity(self):
        """Test that capacity must be positive."""
        with pytest.raises(ValueError, match="capacity must be at least 1"):
            RingBuffer(0)


class TestLatch:
    """Test the one-shot event latch."""

    def test_set_fires_once(self):
        """Test that set() reports only the first transition."""
        latch = Latch()
        assert not latch
        assert latch.set() is True
        assert latch.set() is False
        assert latch.is_set

    def test_take_clears(self):
        """Test take-and-clear semantics."""
        latch = Latch()
        latch.set()
        assert latch.take() is True
        assert latch.take() is False
        assert not latch.is_set

    def test_clear(self):
        """Test explicit clear re-arms the latch."""
        latch = Latch()
        latch.set()
        latch.clear()
        assert latch.set() is True


class TestCollaboratorCalls:
    """Test Ok/Failure wrapping of collaborator calls."""

    def test_ok(self):
        """Test a successful call."""
        result = call_collaborator("add", lambda a, b: a + b, 2, 3)
        assert result == Ok(5)
        assert count_of(result) == 5

    def test_failure(self):
        """Test that a raising call becomes a Failure counting as zero."""

        def boom():
            raise RuntimeError("graph locked")

        result = call_collaborator("boom", boom)
        assert isinstance(result, Failure)
        assert "graph locked" in result.reason
        assert count_of(result) == 0

    def test_missing_method_fails_on_call(self):
        """Test that a missing collaborator method only fails when invoked."""
        method = collaborator_method(object(), "weaken_overcorrelated_edges")
        result = call_collaborator("weaken", method)
        assert isinstance(result, Failure)
        assert "weaken_overcorrelated_edges" in result.reason

    def test_count_of_bad_values(self):
        """Test that non-numeric or negative counts are treated as zero."""
        assert count_of(Ok(None)) == 0
        assert count_of(Ok("many")) == 0
        assert count_of(Ok(-3)) == 0


class TestNumericHelpers:
    """Test is_finite and clamp."""

    def test_is_finite(self):
        """Test finite checks including non-numeric input."""
        assert is_finite(1.0, 2, -3.5)
        assert not is_finite(float("nan"))
        assert not is_finite(1.0, float("inf"))
        assert not is_finite(None)

    def test_clamp(self):
        """Test clamping into a closed interval."""
        assert clamp(5.0, 0.0, 1.0) == 1.0
        assert clamp(-5.0, 0.0, 1.0) == 0.0
        assert clamp(0.5, 0.0, 1.0) == 0.5
