from .event_loop import EventLoop, current_event_loop, default_event_loop
from .handles import TimerHandle

__all__ = [
    "EventLoop",
    "current_event_loop",
    "default_event_loop",
    "TimerHandle",
]
