"""
Timer handles for the delayloop event loop.

A TimerHandle is returned by :meth:`EventLoop.timer` and
:meth:`EventLoop.recurring`. It identifies the scheduled callback and can be
used to cancel it before (or between) firings.

Examples:
    >>> from delayloop.core.event_loop.event_loop import EventLoop
    >>>
    >>> loop = EventLoop()
    >>> fired = []
    >>> handle = loop.timer(0.01, lambda loop: fired.append("boom"))
    >>> handle.is_finished
    False
    >>> loop.start()
    >>> fired
    ['boom']
    >>> handle.is_finished
    True
"""

from typing import TYPE_CHECKING, final

from .types import DeltaTime, Time, TimerCallback

if TYPE_CHECKING:
    from .event_loop import EventLoop


@final
class TimerHandle:
    """
    A handle to a one-shot or recurring timer.

    TimerHandle objects are created by the event loop. They can be used to:

    - Check whether the timer already fired (one-shot) or was cancelled
    - Cancel the timer so its callback never runs again
    """

    def __init__(
        self,
        event_loop: "EventLoop",
        timer_id: int,
        deadline: Time,
        callback: TimerCallback,
        interval: DeltaTime | None = None,
    ):
        """
        Initialize a TimerHandle.

        Args:
            event_loop: The event loop that owns this timer
            timer_id: Sequence number used to break ties between equal deadlines
            deadline: Absolute time at which the timer fires next
            callback: Called with the event loop as its only argument
            interval: Re-arm period for recurring timers, None for one-shot
        """
        self.event_loop = event_loop
        self.timer_id = timer_id
        self.deadline = deadline
        self.callback = callback
        self.interval = interval
        self._cancelled = False
        self._finished = False

    @property
    def is_recurring(self) -> bool:
        return self.interval is not None

    @property
    def is_cancelled(self) -> bool:
        """
        Check if the timer was cancelled.

        Returns:
            True if :meth:`cancel` or :meth:`EventLoop.remove` was called.
        """
        return self._cancelled

    @property
    def is_finished(self) -> bool:
        """
        Check if a one-shot timer already fired.

        Recurring timers never finish; they can only be cancelled.
        """
        return self._finished

    def cancel(self) -> bool:
        """
        Cancel this timer.

        Returns:
            True if the timer was still armed, False if it already fired or
            was cancelled before.
        """
        return self.event_loop.remove(self)

    def __lt__(self, other: "TimerHandle") -> bool:
        return (self.deadline, self.timer_id) < (other.deadline, other.timer_id)

    def __repr__(self) -> str:
        kind = f"recurring every {self.interval}s" if self.is_recurring else "one-shot"
        return f"<TimerHandle #{self.timer_id} {kind} deadline={self.deadline:.3f}>"


__all__ = [
    "TimerHandle",
]
