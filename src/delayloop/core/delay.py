"""
Flow-control for chains of asynchronous steps.

A Delay is a :class:`~delayloop.core.promise.Promise` that counts events.
Every call to :meth:`Delay.begin` registers an event and returns a handle to
invoke when that event completes. Once every event registered by the current
step has completed, the next step runs with the captured arguments of those
events, concatenated in the order the events were registered. The chain ends
when a step registers no events, when no steps remain, or when a step raises;
the delay is then fulfilled with the last gathered values or rejected with the
exception.

Examples:
    Synchronize several timers:

    >>> from delayloop.core.event_loop.event_loop import EventLoop
    >>>
    >>> loop = EventLoop()
    >>> delay = loop.delay(lambda delay, *values: print(f"got {values}"))
    >>> for i in (3, 1, 2):
    ...     _ = loop.timer(i / 100, delay.begin(0, 0))
    >>> delay.wait()
    got ()
    ()

    Sequentialize steps, passing values along:

    >>> def first(delay):
    ...     loop.timer(0.02, delay.begin())
    ...     delay.pass_("fast")
    >>> def second(delay, *values):
    ...     return None
    >>> loop.delay(first, second).wait()
    ('fast',)
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeAlias, final

from typing_extensions import Self

from delayloop.core.event_loop.instrumentation import (
    DelayEventCompleteMetadata,
    DelayEventMetadata,
    DelayStepFinishMetadata,
    DelayStepMetadata,
    get_current_instrument,
)
from delayloop.core.promise import Promise

if TYPE_CHECKING:
    from delayloop.core.event_loop.event_loop import EventLoop

logger = logging.getLogger(__name__)

StepCallback: TypeAlias = Callable[..., object]


class DelayState(Enum):
    AWAITING = "awaiting-events"
    ADVANCING = "advancing"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"


class StepOutcome(Enum):
    CONTINUE_WAITING = "continue-waiting"
    FINISHED = "finished"


class DelayError(Exception):
    """Raised when a Delay is used in a way it does not support."""


@dataclass
class EventAlreadyCompleted(DelayError):
    """
    Raised when an event handle is invoked a second time.
    """
    event_id: int

    def __str__(self) -> str:
        return f"Event {self.event_id} has already completed"


def _capture(args: tuple[Any, ...], offset: int, length: int | None) -> tuple[Any, ...]:
    start = offset if offset >= 0 else max(len(args) + offset, 0)
    if length is None:
        return args[start:]
    end = start + length if length >= 0 else len(args) + length
    return args[start:end]


@final
class EventHandle:
    """
    Callable returned by :meth:`Delay.begin`.

    Invoke it exactly once, with the arguments of the completed operation.
    """

    __slots__ = ("delay", "event_id", "offset", "length", "_metadata", "_completed")

    def __init__(self, delay: Delay, event_id: int, offset: int, length: int | None):
        self.delay = delay
        self.event_id = event_id
        self.offset = offset
        self.length = length
        self._metadata = DelayEventMetadata(
            delay=delay, event_id=event_id, offset=offset, length=length
        )
        self._completed = False

    @property
    def is_completed(self) -> bool:
        return self._completed

    def __call__(self, *args: Any) -> None:
        if self._completed:
            raise EventAlreadyCompleted(self.event_id)
        self._completed = True

        values = _capture(args, self.offset, self.length)
        get_current_instrument().on_delay_event_complete(
            DelayEventCompleteMetadata.from_event_metadata(self._metadata, values=values)
        )
        self.delay._complete_event(self.event_id, values)

    def __repr__(self) -> str:
        status = "completed" if self._completed else "pending"
        return f"<EventHandle {self.event_id} {status} offset={self.offset} length={self.length}>"


class Delay(Promise):
    """
    A promise that runs a chain of steps separated by event barriers.
    """

    def __init__(self, loop: EventLoop | None = None) -> None:
        super().__init__(loop=loop)
        self._counter = 0
        self._pending = 0
        self._results: dict[int, tuple[Any, ...]] = {}
        self._steps: deque[StepCallback] = deque()
        self._steps_installed = False
        self._step_index = 0
        self._delay_state = DelayState.AWAITING

    @property
    def delay_state(self) -> DelayState:
        return self._delay_state

    @property
    def pending(self) -> int:
        """Events registered in the current step that have not completed yet."""
        return self._pending

    @property
    def event_counter(self) -> int:
        """Id the next :meth:`begin` call will hand out."""
        return self._counter

    def begin(self, offset: int = 1, length: int | None = None) -> EventHandle:
        """
        Register an event and return the handle that completes it.

        Arguments passed to the handle are sliced with ``offset`` and
        ``length`` before they are stored: ``args[offset:]`` without a length,
        ``args[offset:offset + length]`` with one. The default offset of 1
        drops the leading source argument that callbacks such as
        :meth:`EventLoop.timer` receive.

        Raises:
            DelayError: If the delay already settled.
        """
        if self._delay_state in (DelayState.FULFILLED, DelayState.REJECTED):
            raise DelayError(f"Cannot begin an event on a {self._delay_state.value} delay")

        handle = EventHandle(self, self._counter, offset, length)
        # counters only move once the hook returned
        get_current_instrument().on_delay_event_begin(handle._metadata)

        self._pending += 1
        self._counter += 1
        return handle

    def pass_(self, *values: Any) -> Self:
        """
        Forward ``values`` to the next step.

        Shortcut for ``begin(0)(*values)``.
        """
        self.begin(0)(*values)
        return self

    def steps(self, *callbacks: StepCallback) -> Self:
        """
        Install the chain of steps.

        Each step is called with the delay followed by the values gathered
        from the events of the previous step. The first step runs on the next
        turn of the loop, or later if events were registered before that.

        Raises:
            DelayError: If steps were already installed.
        """
        if self._steps_installed:
            raise DelayError("Steps can only be installed once per delay")
        self._steps_installed = True
        self._steps = deque(callbacks)
        self.loop.next_tick(self.begin())
        return self

    def _complete_event(self, event_id: int, values: tuple[Any, ...]) -> None:
        self._results[event_id] = values
        self._pending -= 1

        if self._delay_state is DelayState.REJECTED:
            logger.debug(f"{self!r} ignoring event {event_id} completed after rejection")
            return
        if self._pending or self._delay_state is DelayState.ADVANCING:
            return

        self._advance()

    def _advance(self) -> None:
        self._delay_state = DelayState.ADVANCING

        results, self._results = self._results, {}
        values = tuple(value for event_id in sorted(results) for value in results[event_id])
        self._counter = 0

        try:
            outcome = self._run_step(values)
        except Exception as e:
            logger.debug(f"{self!r} step {self._step_index} raised {e!r}")
            self._delay_state = DelayState.REJECTED
            self._steps.clear()
            self.reject(e)
            return

        if outcome is StepOutcome.FINISHED:
            self._steps.clear()
            self._delay_state = DelayState.FULFILLED
            self.resolve(*values)
            return

        self._delay_state = DelayState.AWAITING
        # every event of the new step completed while it ran
        if not self._pending:
            self.loop.next_tick(self.begin())

    def _run_step(self, values: tuple[Any, ...]) -> StepOutcome:
        step = self._steps.popleft() if self._steps else None
        metadata = DelayStepMetadata(
            delay=self, step_index=self._step_index, step=step, values=values
        )
        get_current_instrument().on_delay_step_start(metadata)

        if step is None:
            outcome = StepOutcome.FINISHED
        else:
            step(self, *values)
            self._step_index += 1
            outcome = StepOutcome.CONTINUE_WAITING if self._counter else StepOutcome.FINISHED

        get_current_instrument().on_delay_step_finish(
            DelayStepFinishMetadata.from_step_metadata(metadata, outcome=outcome)
        )
        return outcome

    def __repr__(self) -> str:
        return (
            f"<Delay {self._delay_state.value} pending={self._pending} "
            f"steps_left={len(self._steps)}>"
        )


__all__ = [
    "Delay",
    "DelayError",
    "DelayState",
    "EventAlreadyCompleted",
    "EventHandle",
    "StepCallback",
    "StepOutcome",
]
