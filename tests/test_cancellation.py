"""Tests for cancellation tokens."""

import threading
import time

import pytest

from roe.cancellation import CancellationToken, resolve_token
from roe.errors import CancelledError, DeadlineExceededError


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_fresh_token(self):
        """Test a new token is live and unbounded."""
        token = CancellationToken()

        assert not token.cancelled
        assert token.error() is None
        assert token.remaining() is None

    def test_cancel(self):
        """Test explicit cancellation."""
        token = CancellationToken()
        token.cancel()

        assert token.cancelled
        with pytest.raises(CancelledError):
            token.raise_if_cancelled()

    def test_cancel_propagates_to_children(self):
        """Test cancelling a parent cancels derived tokens."""
        parent = CancellationToken()
        child = CancellationToken.with_timeout(60, parent=parent)

        parent.cancel()

        assert child.cancelled
        assert not isinstance(child.error(), DeadlineExceededError)

    def test_child_of_cancelled_parent(self):
        """Test a child created from a cancelled parent starts cancelled."""
        parent = CancellationToken()
        parent.cancel()

        child = CancellationToken(parent=parent)

        assert child.cancelled

    def test_child_cancel_does_not_affect_parent(self):
        """Test cancellation only flows downwards."""
        parent = CancellationToken()
        child = CancellationToken(parent=parent)

        child.cancel()

        assert not parent.cancelled

    def test_deadline(self):
        """Test an expired deadline reports DeadlineExceededError."""
        token = CancellationToken.with_timeout(0)

        assert isinstance(token.error(), DeadlineExceededError)
        with pytest.raises(DeadlineExceededError, match="deadline exceeded"):
            token.raise_if_cancelled()

    def test_parent_deadline_bounds_child(self):
        """Test a child never outlives its parent's deadline."""
        parent = CancellationToken.with_timeout(1)
        child = CancellationToken.with_timeout(100, parent=parent)

        assert child.remaining() <= 1

    def test_sleep_completes(self):
        """Test sleep returns after the requested time."""
        token = CancellationToken()
        started = time.monotonic()

        token.sleep(0.02)

        assert time.monotonic() - started >= 0.02

    def test_sleep_interrupted_by_cancel(self):
        """Test cancel wakes a sleeping token promptly."""
        token = CancellationToken()
        timer = threading.Timer(0.05, token.cancel)
        timer.start()
        started = time.monotonic()

        with pytest.raises(CancelledError):
            token.sleep(10)

        assert time.monotonic() - started < 2
        timer.cancel()

    def test_sleep_stops_at_deadline(self):
        """Test sleep raises when the deadline passes first."""
        token = CancellationToken.with_timeout(0.05)
        started = time.monotonic()

        with pytest.raises(DeadlineExceededError):
            token.sleep(10)

        assert time.monotonic() - started < 2

    def test_context_manager_detaches(self):
        """Test closing a child detaches it from the parent."""
        parent = CancellationToken()
        with CancellationToken(parent=parent) as child:
            assert child in parent._children

        assert child not in parent._children


class TestResolveToken:
    """Tests for resolve_token."""

    def test_none(self):
        """Test None yields a live token."""
        token = resolve_token(None)

        assert isinstance(token, CancellationToken)
        assert not token.cancelled

    def test_passthrough(self):
        """Test an existing token is returned as-is."""
        token = CancellationToken()

        assert resolve_token(token) is token
