from .delay import Delay, DelayError, DelayState, EventAlreadyCompleted, EventHandle, StepOutcome
from .event_loop import EventLoop, TimerHandle, current_event_loop, default_event_loop
from .promise import AggregatePromiseError, Promise, PromiseError, PromiseState, Settlement

__all__ = [
    "AggregatePromiseError",
    "Delay",
    "DelayError",
    "DelayState",
    "EventAlreadyCompleted",
    "EventHandle",
    "EventLoop",
    "Promise",
    "PromiseError",
    "PromiseState",
    "Settlement",
    "StepOutcome",
    "TimerHandle",
    "current_event_loop",
    "default_event_loop",
]
