"""
Settle-once promises for the delayloop event loop.

A Promise is fulfilled with zero or more values, or rejected with an
exception, exactly once. Reactions registered with :meth:`Promise.then`,
:meth:`Promise.catch` and :meth:`Promise.finally_` always run on a later turn
of the promise's event loop, never synchronously.

Examples:
    >>> from delayloop.core.event_loop.event_loop import EventLoop
    >>> from delayloop.core.promise import Promise
    >>>
    >>> loop = EventLoop()
    >>> promise = Promise(loop=loop)
    >>> doubled = promise.then(lambda x: x * 2)
    >>> _ = loop.timer(0.01, lambda loop: promise.resolve(21))
    >>> doubled.wait()
    (42,)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from typing_extensions import Self

from delayloop.core.event_loop.event_loop import (
    EventLoop,
    current_event_loop,
    default_event_loop,
)
from delayloop.core.event_loop.instrumentation import get_current_instrument

logger = logging.getLogger(__name__)

_OnFulfilled = Callable[[tuple[Any, ...]], object]
_OnRejected = Callable[[BaseException], object]


class PromiseState(Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Settlement:
    """Outcome of one promise, as reported by :meth:`Promise.all_settled`."""
    state: PromiseState
    values: tuple[Any, ...] = ()
    error: BaseException | None = None


class PromiseError(Exception):
    """Raised for promises that cannot produce a result."""


@dataclass
class AggregatePromiseError(PromiseError):
    """
    Rejection reason of :meth:`Promise.any` when every input promise rejected.
    """
    errors: tuple[BaseException, ...]

    def __str__(self) -> str:
        return f"All {len(self.errors)} promises were rejected"


class Promise:
    """
    A settle-once future bound to an event loop.
    """

    def __init__(self, loop: EventLoop | None = None) -> None:
        """
        Args:
            loop: Loop used to run reactions. Defaults to the loop running on
                this thread, or the thread's default loop.
        """
        self.loop: EventLoop = loop or current_event_loop() or default_event_loop()
        self._state = PromiseState.PENDING
        self._values: tuple[Any, ...] = ()
        self._error: BaseException | None = None
        self._reactions: list[tuple[_OnFulfilled, _OnRejected]] = []
        self._handled = False

    @property
    def state(self) -> PromiseState:
        return self._state

    @property
    def is_pending(self) -> bool:
        return self._state is PromiseState.PENDING

    @property
    def values(self) -> tuple[Any, ...]:
        """Fulfillment values; empty unless the promise is fulfilled."""
        return self._values

    @property
    def error(self) -> BaseException | None:
        """Rejection reason; None unless the promise is rejected."""
        return self._error

    def resolve(self, *values: Any) -> Self:
        """
        Fulfill the promise with ``values``.

        Settling an already settled promise does nothing.
        """
        if self._state is not PromiseState.PENDING:
            return self
        self._state = PromiseState.FULFILLED
        self._values = values
        logger.debug(f"{self!r} fulfilled with {values!r}")
        get_current_instrument().on_promise_resolved(self, values)
        self._flush()
        return self

    def reject(self, error: BaseException) -> Self:
        """
        Reject the promise with ``error``.

        Settling an already settled promise does nothing.
        """
        if self._state is not PromiseState.PENDING:
            return self
        self._state = PromiseState.REJECTED
        self._error = error
        logger.debug(f"{self!r} rejected with {error!r}")
        get_current_instrument().on_promise_rejected(self, error)
        self._flush()
        return self

    def _flush(self) -> None:
        reactions, self._reactions = self._reactions, []
        for reaction in reactions:
            self._schedule(reaction)

    def _schedule(self, reaction: tuple[_OnFulfilled, _OnRejected]) -> None:
        on_fulfilled, on_rejected = reaction
        if self._state is PromiseState.FULFILLED:
            values = self._values
            self.loop.next_tick(lambda: on_fulfilled(values))
        else:
            error = self._error
            assert error is not None
            self.loop.next_tick(lambda: on_rejected(error))

    def _subscribe(self, on_fulfilled: _OnFulfilled, on_rejected: _OnRejected) -> None:
        self._handled = True
        reaction = (on_fulfilled, on_rejected)
        if self._state is PromiseState.PENDING:
            self._reactions.append(reaction)
        else:
            self._schedule(reaction)

    def _settle_with(self, handler: Callable[..., object], *args: Any) -> None:
        try:
            result = handler(*args)
        except Exception as e:
            self.reject(e)
            return
        if isinstance(result, Promise):
            result._subscribe(lambda values: self.resolve(*values), self.reject)
        else:
            self.resolve(result)

    def then(
        self,
        on_fulfilled: Callable[..., object] | None = None,
        on_rejected: Callable[[BaseException], object] | None = None,
    ) -> Promise:
        """
        Chain reactions onto this promise.

        ``on_fulfilled`` is called with the fulfillment values as positional
        arguments, ``on_rejected`` with the rejection reason. The returned
        promise is fulfilled with the reaction's return value, adopts it when
        it is a Promise, and is rejected with any exception the reaction
        raises. A missing reaction passes the outcome through unchanged.
        """
        derived = Promise(loop=self.loop)

        def fulfilled(values: tuple[Any, ...]) -> None:
            if on_fulfilled is None:
                derived.resolve(*values)
            else:
                derived._settle_with(on_fulfilled, *values)

        def rejected(error: BaseException) -> None:
            if on_rejected is None:
                derived.reject(error)
            else:
                derived._settle_with(on_rejected, error)

        self._subscribe(fulfilled, rejected)
        return derived

    def catch(self, on_rejected: Callable[[BaseException], object]) -> Promise:
        """Shortcut for ``then(None, on_rejected)``."""
        return self.then(None, on_rejected)

    def finally_(self, callback: Callable[[], object]) -> Promise:
        """
        Run ``callback`` with no arguments once the promise settles.

        The returned promise settles like this one, unless the callback raises
        or returns a promise that rejects.
        """
        derived = Promise(loop=self.loop)

        def settle(passthrough: Callable[[], object]) -> None:
            try:
                result = callback()
            except Exception as e:
                derived.reject(e)
                return
            if isinstance(result, Promise):
                result._subscribe(lambda _values: passthrough(), derived.reject)
            else:
                passthrough()

        self._subscribe(
            lambda values: settle(lambda: derived.resolve(*values)),
            lambda error: settle(lambda: derived.reject(error)),
        )
        return derived

    def wait(self) -> tuple[Any, ...]:
        """
        Run the event loop until this promise settles.

        Returns:
            The fulfillment values.

        Raises:
            RuntimeError: If the promise's loop is already running.
            PromiseError: If the loop ran out of work before the promise settled.
            BaseException: The rejection reason, if the promise was rejected.
        """
        loop = self.loop
        if loop.is_running:
            raise RuntimeError("Cannot wait for a promise while its event loop is running")

        self._handled = True
        if self._state is PromiseState.PENDING:
            waiting = True

            def stop(_: object) -> None:
                # only the start() below may be stopped
                if waiting:
                    loop.stop()

            self._subscribe(stop, stop)
            try:
                loop.start()
            finally:
                waiting = False

        if self._state is PromiseState.FULFILLED:
            return self._values
        if self._state is PromiseState.REJECTED:
            assert self._error is not None
            raise self._error
        raise PromiseError("Event loop ran out of work before the promise settled")

    @classmethod
    def resolved(cls, *values: Any, loop: EventLoop | None = None) -> Self:
        """Create a promise already fulfilled with ``values``."""
        return cls(loop=loop).resolve(*values)

    @classmethod
    def rejected(cls, error: BaseException, loop: EventLoop | None = None) -> Self:
        """Create a promise already rejected with ``error``."""
        return cls(loop=loop).reject(error)

    @staticmethod
    def _combined(promises: tuple[Promise, ...], loop: EventLoop | None) -> Promise:
        return Promise(loop=loop or (promises[0].loop if promises else None))

    @classmethod
    def all(cls, *promises: Promise, loop: EventLoop | None = None) -> Promise:
        """
        Fulfill once every promise fulfilled, rejecting on the first rejection.

        The combined promise is fulfilled with one values-tuple per input
        promise, in argument order.
        """
        combined = cls._combined(promises, loop)
        if not promises:
            combined.loop.next_tick(combined.resolve)
            return combined

        results: list[tuple[Any, ...]] = [()] * len(promises)
        remaining = len(promises)

        def fulfilled(index: int, values: tuple[Any, ...]) -> None:
            nonlocal remaining
            results[index] = values
            remaining -= 1
            if remaining == 0:
                combined.resolve(*results)

        for index, promise in enumerate(promises):
            promise._subscribe(
                lambda values, index=index: fulfilled(index, values), combined.reject
            )
        return combined

    @classmethod
    def all_settled(cls, *promises: Promise, loop: EventLoop | None = None) -> Promise:
        """
        Fulfill once every promise settled, with one Settlement per promise.
        """
        combined = cls._combined(promises, loop)
        if not promises:
            combined.loop.next_tick(combined.resolve)
            return combined

        results: list[Settlement | None] = [None] * len(promises)
        remaining = len(promises)

        def settled(index: int, settlement: Settlement) -> None:
            nonlocal remaining
            results[index] = settlement
            remaining -= 1
            if remaining == 0:
                combined.resolve(*results)

        for index, promise in enumerate(promises):
            promise._subscribe(
                lambda values, index=index: settled(
                    index, Settlement(PromiseState.FULFILLED, values=values)
                ),
                lambda error, index=index: settled(
                    index, Settlement(PromiseState.REJECTED, error=error)
                ),
            )
        return combined

    @classmethod
    def race(cls, *promises: Promise, loop: EventLoop | None = None) -> Promise:
        """
        Settle like the first promise to settle.

        With no promises the combined promise stays pending forever.
        """
        combined = cls._combined(promises, loop)
        for promise in promises:
            promise._subscribe(lambda values: combined.resolve(*values), combined.reject)
        return combined

    @classmethod
    def any(cls, *promises: Promise, loop: EventLoop | None = None) -> Promise:
        """
        Fulfill like the first promise to fulfill.

        Rejects with an AggregatePromiseError holding every rejection reason,
        in argument order, when all promises reject.
        """
        combined = cls._combined(promises, loop)
        if not promises:
            combined.loop.next_tick(lambda: combined.reject(AggregatePromiseError(())))
            return combined

        errors: list[BaseException | None] = [None] * len(promises)
        remaining = len(promises)

        def rejected(index: int, error: BaseException) -> None:
            nonlocal remaining
            errors[index] = error
            remaining -= 1
            if remaining == 0:
                combined.reject(AggregatePromiseError(tuple(e for e in errors if e is not None)))

        for index, promise in enumerate(promises):
            promise._subscribe(
                lambda values: combined.resolve(*values),
                lambda error, index=index: rejected(index, error),
            )
        return combined

    def __del__(self) -> None:
        if getattr(self, "_state", None) is PromiseState.REJECTED and not self._handled:
            logger.warning(f"Unhandled rejected promise: {self._error!r}")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._state.value}>"


__all__ = [
    "AggregatePromiseError",
    "Promise",
    "PromiseError",
    "PromiseState",
    "Settlement",
]
