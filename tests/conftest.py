"""Pytest configuration and fixtures for delayloop tests."""

import pytest
from delayloop.core.event_loop.event_loop import EventLoop, _reset_default_event_loop


@pytest.fixture
def event_loop():
    """Provide a fresh EventLoop for each test"""
    return EventLoop()


@pytest.fixture(autouse=True)
def reset_default_event_loop():
    """Drop the per-thread default loop before and after each test.

    Promises created without an explicit loop bind to the default loop, so a
    test that leaves callbacks or timers on it would leak them into the next
    test.
    """
    _reset_default_event_loop()

    yield

    _reset_default_event_loop()
