"""
Event Loop Instrumentation System.

This module provides a flexible instrumentation system for monitoring and debugging
the delayloop event loop, its promises and the step chains run by delays. It
captures timer firings, callback failures, promise settlements and every event and
step a Delay goes through.

The instrumentation system uses a context manager pattern. Instruments can be
nested; every active instrument receives each event, innermost first.

Example:
    >>> from delayloop.core.event_loop.event_loop import EventLoop
    >>> from delayloop.core.event_loop.instrumentation import PrintInstrument
    >>>
    >>> loop = EventLoop()
    >>> with PrintInstrument():
    ...     delay = loop.delay(lambda delay: delay.pass_(42), lambda delay, x: None)
    ...     delay.wait()
    ...
    [EVENT-BEGIN] delay#... event 0 (offset=1, length=None)
    ...
"""

from __future__ import annotations

from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from time import time
from types import TracebackType
from typing import TYPE_CHECKING, Any, Callable, Final, cast

from typing_extensions import Self, override

if TYPE_CHECKING:
    from delayloop.core.delay import Delay, StepOutcome
    from delayloop.core.event_loop.handles import TimerHandle
    from delayloop.core.promise import Promise

import logging

logger = logging.getLogger(__name__)

_instrument_stack: ContextVar[tuple["EventLoopInstrument", ...]] = ContextVar(
    "_instrument_stack", default=()
)


@dataclass
class CallbackErrorMetadata:
    """Metadata for a loop callback that raised."""
    callback: Callable[..., object]
    exception: Exception
    timer: "TimerHandle | None" = None


@dataclass
class DelayEventMetadata:
    """Metadata for an event registered on a delay with ``begin``."""
    delay: "Delay"
    event_id: int
    offset: int
    length: int | None
    start_time: float = field(default_factory=time)


@dataclass
class DelayEventCompleteMetadata(DelayEventMetadata):
    """Metadata for an event whose handle has been invoked."""
    values: tuple[Any, ...] = ()
    finish_time: float = field(default_factory=time)

    @classmethod
    def from_event_metadata(
        cls, metadata: DelayEventMetadata, **kwargs: Any
    ) -> "DelayEventCompleteMetadata":
        return cls(
            delay=metadata.delay,
            event_id=metadata.event_id,
            offset=metadata.offset,
            length=metadata.length,
            start_time=metadata.start_time,
            **kwargs,
        )


@dataclass
class DelayStepMetadata:
    """Metadata for one step about to run on a delay."""
    delay: "Delay"
    step_index: int
    step: Callable[..., object] | None
    values: tuple[Any, ...]
    start_time: float = field(default_factory=time)


@dataclass
class DelayStepFinishMetadata(DelayStepMetadata):
    """Metadata for a step that returned normally."""
    outcome: "StepOutcome | None" = None
    finish_time: float = field(default_factory=time)

    @classmethod
    def from_step_metadata(
        cls, metadata: DelayStepMetadata, **kwargs: Any
    ) -> "DelayStepFinishMetadata":
        return cls(
            delay=metadata.delay,
            step_index=metadata.step_index,
            step=metadata.step,
            values=metadata.values,
            start_time=metadata.start_time,
            **kwargs,
        )


class EventLoopInstrument:
    """
    Base class for event loop instrumentation.

    This class provides hooks for various event loop, promise and delay
    operations. Subclasses can override these methods to implement custom
    monitoring or logging.
    """
    _token: Token[tuple[EventLoopInstrument, ...]] | None = None

    def on_timer_fired(self, handle: "TimerHandle") -> None:
        """
        Called right before a timer callback runs.

        Args:
            handle: The timer that came due.
        """
        pass

    def on_callback_error(self, metadata: CallbackErrorMetadata) -> None:
        """
        Called when a next-tick or timer callback raised an exception.

        The loop logs the exception and keeps running.

        Args:
            metadata: The failing callback and its exception
        """
        pass

    def on_promise_resolved(self, promise: "Promise", values: tuple[Any, ...]) -> None:
        """
        Called when a promise is fulfilled.

        Args:
            promise: The promise that settled
            values: The fulfillment values
        """
        pass

    def on_promise_rejected(self, promise: "Promise", error: BaseException) -> None:
        """
        Called when a promise is rejected.

        Args:
            promise: The promise that settled
            error: The rejection reason
        """
        pass

    def on_delay_event_begin(self, metadata: DelayEventMetadata) -> None:
        """
        Called when an event is registered on a delay.

        Args:
            metadata: Event id and capture spec
        """
        pass

    def on_delay_event_complete(self, metadata: DelayEventCompleteMetadata) -> None:
        """
        Called when an event handle is invoked, after its arguments were captured.

        Args:
            metadata: Event id, captured values and timing
        """
        pass

    def on_delay_step_start(self, metadata: DelayStepMetadata) -> None:
        """
        Called when a delay advances, before the next step runs.

        ``metadata.step`` is None when no step remains and the delay is about
        to settle with the gathered values.

        Args:
            metadata: Step index and the gathered values
        """
        pass

    def on_delay_step_finish(self, metadata: DelayStepFinishMetadata) -> None:
        """
        Called when a step returned normally.

        Failing steps are reported through :meth:`on_promise_rejected`.

        Args:
            metadata: Step index, timing and the resulting StepOutcome
        """
        pass

    def __enter__(self: Self) -> Self:
        # token to restore the previous instrument stack
        self._token = _instrument_stack.set(_instrument_stack.get() + (self,))
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool:
        if self._token is not None:
            _instrument_stack.reset(self._token)
            self._token = None
        return False


class _StackedInstrument:
    """Fans every hook out to a stack of instruments, innermost first."""

    def __init__(self, instruments: tuple[EventLoopInstrument, ...]):
        self._instruments = instruments

    def __getattr__(self, name: str) -> Callable[..., None]:
        hooks = [getattr(instrument, name) for instrument in reversed(self._instruments)]

        def dispatch(*args: Any, **kwargs: Any) -> None:
            for hook in hooks:
                hook(*args, **kwargs)

        return dispatch


class PrintInstrument(EventLoopInstrument):
    """
    Event loop instrument that prints information to stdout.

    This instrument outputs one tagged line per delay, promise and timer event.
    """
    print = print

    @override
    def on_timer_fired(self, handle: TimerHandle) -> None:
        self.print(f"[TIMER] {handle!r} fired")

    @override
    def on_callback_error(self, metadata: CallbackErrorMetadata) -> None:
        self.print(f"[CALLBACK-ERROR] {metadata.callback!r} raised {metadata.exception!r}")

    @override
    def on_promise_resolved(self, promise: Promise, values: tuple[Any, ...]) -> None:
        self.print(f"[RESOLVE] {promise!r} with {values!r}")

    @override
    def on_promise_rejected(self, promise: Promise, error: BaseException) -> None:
        self.print(f"[REJECT] {promise!r} with {error!r}")

    @override
    def on_delay_event_begin(self, metadata: DelayEventMetadata) -> None:
        self.print(
            f"[EVENT-BEGIN] delay#{id(metadata.delay):x} event {metadata.event_id} "
            f"(offset={metadata.offset}, length={metadata.length})"
        )

    @override
    def on_delay_event_complete(self, metadata: DelayEventCompleteMetadata) -> None:
        duration = metadata.finish_time - metadata.start_time
        self.print(
            f"[EVENT-DONE] delay#{id(metadata.delay):x} event {metadata.event_id} "
            f"in {duration:.4f}s: {metadata.values!r}"
        )

    @override
    def on_delay_step_start(self, metadata: DelayStepMetadata) -> None:
        name = getattr(metadata.step, "__name__", None) if metadata.step else None
        self.print(
            f"[STEP] delay#{id(metadata.delay):x} step {metadata.step_index} "
            f"({name or 'none'}) with {metadata.values!r}"
        )

    @override
    def on_delay_step_finish(self, metadata: DelayStepFinishMetadata) -> None:
        duration = metadata.finish_time - metadata.start_time
        outcome = metadata.outcome.value if metadata.outcome else "unknown"
        self.print(
            f"[STEP-DONE] delay#{id(metadata.delay):x} step {metadata.step_index} "
            f"{outcome} in {duration:.4f}s"
        )


class LogInstrument(PrintInstrument):
    """
    Event loop instrument that logs information using the logging module.

    This instrument uses the debug log level for all messages.
    """
    print = logger.debug


EMPTY_INSTRUMENT: Final[EventLoopInstrument] = EventLoopInstrument()


def get_current_instrument() -> EventLoopInstrument:
    """
    Get the current instrumentation context.

    Returns:
        The active instrument, a dispatcher over all nested instruments, or an
        empty instrument if none is active.
    """
    stack = _instrument_stack.get()
    if not stack:
        return EMPTY_INSTRUMENT
    if len(stack) == 1:
        return stack[0]
    return cast(EventLoopInstrument, _StackedInstrument(stack))


__all__ = [
    "EventLoopInstrument",
    "PrintInstrument",
    "LogInstrument",
    "CallbackErrorMetadata",
    "DelayEventMetadata",
    "DelayEventCompleteMetadata",
    "DelayStepMetadata",
    "DelayStepFinishMetadata",
    "get_current_instrument",
]
