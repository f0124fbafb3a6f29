#!/usr/bin/env python
"""
Sequential Timers Example

This example turns three levels of nested timer callbacks into a flat chain of
steps. It shows:
  - How each step registers events with delay.begin() and hands the returned
    handle to an asynchronous API as its callback.
  - That the next step only runs once every event of the current step completed.
  - That the chain ends when a step registers no events, fulfilling the delay.

Key Lessons and Warnings:
  1. begin() drops the first argument by default; timer callbacks receive the
     loop there.
  2. Two timers started in the same step run concurrently: the second step
     below waits 3 seconds, not 4.
  3. Raising inside a step rejects the delay and skips the remaining steps.
"""

from time import time

from delayloop import Delay, EventLoop
from delayloop.core.event_loop.instrumentation import LogInstrument

loop = EventLoop()
start = time()


def elapsed() -> str:
    return f"{time() - start:.1f}s"


def first_step(delay: Delay) -> None:
    """Simple timer."""
    loop.timer(2, delay.begin())
    print(f"[{elapsed()}] Second step in 2 seconds.")


def second_step(delay: Delay) -> None:
    """Concurrent timers."""
    loop.timer(1, delay.begin())
    loop.timer(3, delay.begin())
    print(f"[{elapsed()}] Third step in 3 seconds.")


def third_step(delay: Delay) -> None:
    """The end."""
    print(f"[{elapsed()}] And done after 5 seconds total.")


if __name__ == "__main__":
    import logging

    logging.basicConfig(level=logging.INFO)

    with LogInstrument():
        loop.delay(first_step, second_step, third_step).wait()
