"""
delayloop: promises and step chains on a single-threaded callback loop.

The :class:`Delay` turns nested callbacks into a flat list of steps. Each step
registers events with :meth:`Delay.begin`; the next step runs once all of them
completed, with their results in registration order.
"""

from delayloop.core.delay import (
    Delay,
    DelayError,
    DelayState,
    EventAlreadyCompleted,
    EventHandle,
    StepOutcome,
)
from delayloop.core.event_loop.event_loop import (
    EventLoop,
    current_event_loop,
    default_event_loop,
)
from delayloop.core.event_loop.handles import TimerHandle
from delayloop.core.event_loop.instrumentation import (
    EventLoopInstrument,
    LogInstrument,
    PrintInstrument,
)
from delayloop.core.promise import (
    AggregatePromiseError,
    Promise,
    PromiseError,
    PromiseState,
    Settlement,
)

__all__ = [
    "AggregatePromiseError",
    "Delay",
    "DelayError",
    "DelayState",
    "EventAlreadyCompleted",
    "EventHandle",
    "EventLoop",
    "EventLoopInstrument",
    "LogInstrument",
    "PrintInstrument",
    "Promise",
    "PromiseError",
    "PromiseState",
    "Settlement",
    "StepOutcome",
    "TimerHandle",
    "current_event_loop",
    "default_event_loop",
]
