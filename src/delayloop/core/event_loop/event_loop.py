"""
Callback event loop implementation for delayloop.

This module provides a lightweight, single-threaded reactor that handles:
- Next-tick scheduling of zero-argument callbacks
- One-shot and recurring timers
- Starting, stopping and single-stepping the loop

Promises and delays defer all of their callbacks through an EventLoop, and
:meth:`EventLoop.delay` is the usual way to start a chain of steps.

This can be used as a standalone event loop without the rest of delayloop.
"""

import heapq
import logging
import signal
import threading
import time
from collections import deque
from timeit import default_timer as timer
from typing import TYPE_CHECKING, Any, Callable

from delayloop.core.event_loop.handles import TimerHandle
from delayloop.core.event_loop.instrumentation import (
    CallbackErrorMetadata,
    get_current_instrument,
)
from delayloop.core.event_loop.types import DeltaTime, TickCallback, TimerCallback

if TYPE_CHECKING:
    from delayloop.core.delay import Delay, StepCallback

logger = logging.getLogger(__name__)

# Thread-local storage for the running and default event loops
_thread_local = threading.local()


def current_event_loop() -> "EventLoop | None":
    """
    Get the EventLoop currently running on this thread.

    Returns:
        The running EventLoop instance for this thread, or None if no loop is
        running.
    """
    return getattr(_thread_local, "event_loop", None)


def _set_current_event_loop(loop: "EventLoop | None") -> None:
    """Set the running event loop for this thread."""
    _thread_local.event_loop = loop


def default_event_loop() -> "EventLoop":
    """
    Get the default EventLoop for this thread, creating it on first use.

    Promises created without an explicit loop bind to the running loop if
    there is one, and to this loop otherwise.
    """
    loop = getattr(_thread_local, "default_loop", None)
    if loop is None:
        loop = EventLoop()
        _thread_local.default_loop = loop
    return loop


def _reset_default_event_loop() -> None:
    """Forget this thread's default loop. Used by the test suite."""
    _thread_local.default_loop = None


class EventLoop:
    """
    The core event loop implementation for delayloop.

    Manages next-tick callbacks and timers for promises and delays. All state
    lives on the thread that drives the loop.
    """

    def __init__(
        self,
        debug_max_wait_time: float | None = None,
        install_signal_handlers: bool = True,
    ) -> None:
        """
        Args:
            debug_max_wait_time: Upper bound, in seconds, on a single sleep
                while waiting for the next timer. Longer waits are logged as
                errors and cut short.
            install_signal_handlers: Dump loop state to the log on SIGINT,
                SIGTERM and SIGUSR1 while :meth:`start` runs on the main thread.
        """
        self.ticks: deque[TickCallback] = deque()
        self.timers: list[TimerHandle] = []
        self._timer_counter = 0
        self._running = False
        self._stop_requested = False
        self._debug_max_wait_time = debug_max_wait_time
        self._install_signal_handlers_enabled = install_signal_handlers
        self._signal_handlers_installed = False
        self._previous_signal_handlers: dict[int, Any] = {}

    def _dump_debug_info(self, reason: str = "Signal received") -> None:
        """
        Log detailed debug information about the current state of the event loop.

        This method provides debugging information useful when the event loop is
        interrupted or appears to be stuck.

        Args:
            reason: The reason for dumping debug info (e.g., "SIGINT received")
        """
        logger.warning(f"=== EVENT LOOP DEBUG INFO ({reason}) ===")

        logger.warning(f"Next-tick callbacks in queue: {len(self.ticks)}")
        logger.warning(f"Armed timers: {len(self.timers)}")

        if self.ticks:
            logger.warning("=== NEXT-TICK CALLBACKS ===")
            for i, callback in enumerate(list(self.ticks)[:5]):
                logger.warning(f"  Callback {i}: {callback!r}")
            if len(self.ticks) > 5:
                logger.warning(f"  ... and {len(self.ticks) - 5} more callbacks")

        if self.timers:
            logger.warning("=== TIMERS ===")
            current_time = timer()
            for handle in heapq.nsmallest(5, self.timers):
                time_remaining = handle.deadline - current_time
                logger.warning(f"  {handle!r}, fires in {time_remaining:.3f}s")
            if len(self.timers) > 5:
                logger.warning(f"  ... and {len(self.timers) - 5} more timers")

        logger.warning("=== END DEBUG INFO ===")

    def _install_signal_handlers(self) -> None:
        """Install signal handlers for debugging interrupted event loops."""
        if self._signal_handlers_installed or not self._install_signal_handlers_enabled:
            return

        def signal_handler(signum: int, frame: Any) -> None:
            sig_name = signal.Signals(signum).name
            self._dump_debug_info(f"Signal {sig_name} received")
            # Re-raise KeyboardInterrupt for SIGINT to maintain normal behavior
            if signum == signal.SIGINT:
                raise KeyboardInterrupt()

        signals = [signal.SIGINT, signal.SIGTERM]
        # Only install SIGUSR1 on Unix systems
        if hasattr(signal, "SIGUSR1"):
            signals.append(signal.SIGUSR1)

        try:
            for signum in signals:
                self._previous_signal_handlers[signum] = signal.signal(signum, signal_handler)
            self._signal_handlers_installed = True
            logger.debug("Signal handlers installed for event loop debugging")
        except (OSError, ValueError) as e:
            # Signal handling is only available on the main thread
            logger.debug(f"Could not install signal handlers: {e}")
            self._restore_signal_handlers()

    def _restore_signal_handlers(self) -> None:
        for signum, previous in self._previous_signal_handlers.items():
            try:
                signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
            except (OSError, ValueError) as e:
                logger.debug(f"Could not restore handler for signal {signum}: {e}")
        self._previous_signal_handlers.clear()

    def _uninstall_signal_handlers(self) -> None:
        """Restore the signal handlers that were active before start()."""
        if not self._signal_handlers_installed:
            return
        self._restore_signal_handlers()
        self._signal_handlers_installed = False
        logger.debug("Signal handlers uninstalled")

    @property
    def is_running(self) -> bool:
        """True while :meth:`start` is driving the loop."""
        return self._running

    def has_pending_work(self) -> bool:
        """Return True if there are callbacks or armed timers left."""
        return bool(self.ticks or self.timers)

    def next_tick(self, callback: TickCallback) -> None:
        """
        Run a callback on a later turn of the loop.

        The callback is invoked with no arguments, exactly once, never before
        control returns to the loop, and in submission order relative to other
        next-tick callbacks.

        Args:
            callback: Zero-argument callable.
        """
        self.ticks.append(callback)

    def timer(self, after: DeltaTime, callback: TimerCallback) -> TimerHandle:
        """
        Run a callback once after ``after`` seconds.

        The callback receives the event loop as its only argument, which is
        why :meth:`Delay.begin` drops the first argument by default.

        Returns:
            A TimerHandle that can be passed to :meth:`remove`.
        """
        return self._arm(after, callback, None)

    def recurring(self, interval: DeltaTime, callback: TimerCallback) -> TimerHandle:
        """
        Run a callback every ``interval`` seconds until the timer is removed.

        Returns:
            A TimerHandle that can be passed to :meth:`remove`.
        """
        return self._arm(interval, callback, interval)

    def _arm(
        self, after: DeltaTime, callback: TimerCallback, interval: DeltaTime | None
    ) -> TimerHandle:
        if after < 0:
            raise ValueError(f"Timer delay must be non-negative, got {after}")
        self._timer_counter += 1
        handle = TimerHandle(self, self._timer_counter, timer() + after, callback, interval)
        heapq.heappush(self.timers, handle)
        return handle

    def remove(self, handle: TimerHandle) -> bool:
        """
        Cancel a timer.

        Returns:
            True if the timer was armed; False if it already fired or was
            removed before.
        """
        if handle.is_cancelled or handle.is_finished:
            return False
        handle._cancelled = True
        if handle in self.timers:
            self.timers.remove(handle)
            heapq.heapify(self.timers)
        return True

    def delay(self, *steps: "StepCallback") -> "Delay":
        """
        Create a Delay bound to this loop.

        Args:
            *steps: Step callbacks to install with :meth:`Delay.steps`. When
                none are given the delay is returned without steps, to be
                used as a plain counting barrier.
        """
        from delayloop.core.delay import Delay

        delay = Delay(loop=self)
        if steps:
            delay.steps(*steps)
        return delay

    def _run_callback(
        self, callback: Callable[..., object], *args: Any, handle: TimerHandle | None = None
    ) -> None:
        try:
            callback(*args)
        except Exception as e:
            logger.exception(f"Callback {callback!r} raised an exception: {e}")
            get_current_instrument().on_callback_error(
                CallbackErrorMetadata(callback=callback, exception=e, timer=handle)
            )

    def _fire_due_timers(self) -> None:
        now = timer()
        due: list[TimerHandle] = []
        while self.timers and self.timers[0].deadline <= now:
            due.append(heapq.heappop(self.timers))

        for handle in due:
            # removed by an earlier callback of this same turn
            if handle.is_cancelled:
                continue
            if handle.is_recurring:
                assert handle.interval is not None
                handle.deadline = now + handle.interval
                heapq.heappush(self.timers, handle)
            else:
                handle._finished = True
            get_current_instrument().on_timer_fired(handle)
            self._run_callback(handle.callback, self, handle=handle)

    def _wait_for_next_timer(self) -> None:
        if not self.timers:
            return
        timeout = self.timers[0].deadline - timer()
        if self._debug_max_wait_time is not None and timeout > self._debug_max_wait_time:
            logger.error(
                f"Timer wait {timeout} exceeds max wait time {self._debug_max_wait_time}."
            )
            timeout = self._debug_max_wait_time
        if timeout > 0:
            time.sleep(timeout)

    def one_tick(self) -> None:
        """
        Run a single turn of the loop.

        Due timers fire first, then the next-tick callbacks that were queued
        before the turn began. Callbacks scheduled during the turn run on the
        following one. When nothing is runnable the loop sleeps until the next
        timer deadline.
        """
        ready = len(self.ticks)
        if not ready:
            self._wait_for_next_timer()

        self._fire_due_timers()

        for _ in range(ready):
            callback = self.ticks.popleft()
            self._run_callback(callback)

    def start(self) -> None:
        """
        Run the loop until :meth:`stop` is called or no work remains.

        Raises:
            RuntimeError: If the loop is already running.
        """
        if self._running:
            raise RuntimeError("Event loop is already running")

        self._install_signal_handlers()
        previous_loop = current_event_loop()
        _set_current_event_loop(self)
        self._running = True
        self._stop_requested = False
        try:
            while self.has_pending_work() and not self._stop_requested:
                self.one_tick()
        finally:
            self._running = False
            self._stop_requested = False
            _set_current_event_loop(previous_loop)
            self._uninstall_signal_handlers()

    def stop(self) -> None:
        """Ask a running loop to return from :meth:`start` after the current turn."""
        if self._running:
            self._stop_requested = True

    def __repr__(self) -> str:
        state = "running" if self._running else "idle"
        return f"<EventLoop {state} ticks={len(self.ticks)} timers={len(self.timers)}>"


__all__ = [
    "EventLoop",
    "current_event_loop",
    "default_event_loop",
]
