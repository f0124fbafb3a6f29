"""
Exploratory type-checking tests for Delay.steps, begin and pass_.
Verifies that chaining keeps the Delay type and handles are EventHandles.
"""

from typing import Any

from typing_extensions import assert_type

from delayloop import Delay, EventHandle, EventLoop, StepOutcome


def first(delay: Delay) -> None:
    handle = delay.begin()
    _ = assert_type(handle, EventHandle)
    _ = assert_type(delay.pass_(1, 2), Delay)


def second(delay: Delay, *values: Any) -> None:
    _ = assert_type(values, tuple[Any, ...])


def explore_steps() -> None:
    loop: EventLoop = EventLoop()

    delay = loop.delay(first, second)
    _ = assert_type(delay, Delay)

    chained = Delay(loop=loop).steps(first, second)
    _ = assert_type(chained, Delay)

    values = chained.wait()
    _ = assert_type(values, tuple[Any, ...])

    outcome = chained._run_step(())
    _ = assert_type(outcome, StepOutcome)
