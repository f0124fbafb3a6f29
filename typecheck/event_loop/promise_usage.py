"""
Exploratory type-checking tests for promises and timers.
"""

from typing import Any

from typing_extensions import assert_type

from delayloop import EventLoop, Promise, PromiseState, TimerHandle


def explore_promise() -> None:
    loop: EventLoop = EventLoop()

    promise = Promise.resolved(1, 2, loop=loop)
    _ = assert_type(promise, Promise)
    _ = assert_type(promise.state, PromiseState)

    derived = promise.then(lambda a, b: a + b)
    _ = assert_type(derived, Promise)

    values = derived.wait()
    _ = assert_type(values, tuple[Any, ...])

    combined = Promise.all(promise, derived)
    _ = assert_type(combined, Promise)


def explore_timers() -> None:
    loop: EventLoop = EventLoop()

    handle = loop.timer(0.1, lambda loop: None)
    _ = assert_type(handle, TimerHandle)

    removed = loop.remove(handle)
    _ = assert_type(removed, bool)
