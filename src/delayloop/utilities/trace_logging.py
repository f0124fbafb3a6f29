"""
Step-chain trace logging for diagnosing stuck or misordered delays.

Provides TraceLoggingInstrument that plugs into delayloop's instrumentation
system to log every event, step and settlement of each Delay. This enables
diagnosis of issues such as:

- Chains that never advance because an event handle is never invoked
- Steps that run with unexpected arguments
- Slow events holding a barrier open
- Steps that raise and reject the chain

Usage:
    Set DELAYLOOP_TRACE_LOG environment variable to a file path to enable logging:

        export DELAYLOOP_TRACE_LOG=/tmp/delay-trace.log

    Then use the instrument:

        from delayloop.utilities.trace_logging import get_trace_logging_instrument

        instrument = get_trace_logging_instrument()
        if instrument:
            with instrument:
                # Delays will be traced
                ...
"""

from __future__ import annotations

import logging
import os
import weakref
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from time import time
from typing import TYPE_CHECKING, Any

from typing_extensions import override

from delayloop.core.event_loop.instrumentation import (
    DelayEventCompleteMetadata,
    DelayEventMetadata,
    DelayStepFinishMetadata,
    DelayStepMetadata,
    EventLoopInstrument,
)

if TYPE_CHECKING:
    from delayloop.core.promise import Promise

TRACE_LOG_ENV_VAR = "DELAYLOOP_TRACE_LOG"
TRACE_LOGGER_NAME = "delayloop.trace"


@dataclass
class ChainState:
    """Tracks state for a single Delay."""

    chain_id: str
    start_time: float = field(default_factory=time)
    events_begun: int = 0
    events_completed: int = 0
    steps_run: int = 0


class TraceLoggingInstrument(EventLoopInstrument):
    """
    Instrument that logs the life of every Delay it sees.

    Delays are tracked from their first registered event and logged as:
    - Event registration and completion, with captured values and latency
    - Step start and finish, with arguments and outcome
    - Final settlement with totals for the chain

    Log format:
        [timestamp] [chain_id] EVENT key=value ...

    Example:
        [2026-01-08T10:58:26.548] [chain-0001] BEGIN event=0 offset=1 length=None
        [2026-01-08T10:58:26.549] [chain-0001] DONE event=0 values=0 latency_ms=0.4
        [2026-01-08T10:58:26.549] [chain-0001] STEP index=0 step=fetch args=0
        [2026-01-08T10:58:26.712] [chain-0001] RESOLVE values=2 steps=3 duration_ms=164.0
    """

    def __init__(self, logger: logging.Logger | None = None):
        """
        Initialize the trace logging instrument.

        Args:
            logger: Logger to use. If None, creates one named "delayloop.trace"
                with propagate=False to avoid duplicating logs to parent handlers.
        """
        if logger is None:
            logger = logging.getLogger(TRACE_LOGGER_NAME)
            logger.propagate = False
        self._logger = logger
        # entries vanish with delays that are collected without settling
        self._chains: weakref.WeakKeyDictionary[Any, ChainState] = weakref.WeakKeyDictionary()
        self._chain_counter = 0

    def _get_chain(self, delay: Any, create: bool = False) -> ChainState | None:
        chain = self._chains.get(delay)
        if chain is None and create:
            self._chain_counter += 1
            chain = ChainState(chain_id=f"chain-{self._chain_counter:04d}")
            self._chains[delay] = chain
        return chain

    def _log(self, chain_id: str, tag: str, /, **fields: object) -> None:
        """Log a trace line with structured key=value pairs."""
        parts = [f"{k}={v}" for k, v in fields.items()]
        self._logger.info(f"[{chain_id}] {tag} {' '.join(parts)}".rstrip())

    @override
    def on_delay_event_begin(self, metadata: DelayEventMetadata) -> None:
        chain = self._get_chain(metadata.delay, create=True)
        assert chain is not None
        chain.events_begun += 1
        self._log(
            chain.chain_id,
            "BEGIN",
            event=metadata.event_id,
            offset=metadata.offset,
            length=metadata.length,
        )

    @override
    def on_delay_event_complete(self, metadata: DelayEventCompleteMetadata) -> None:
        chain = self._get_chain(metadata.delay)
        if not chain:
            return

        chain.events_completed += 1
        latency_ms = (metadata.finish_time - metadata.start_time) * 1000
        self._log(
            chain.chain_id,
            "DONE",
            event=metadata.event_id,
            values=len(metadata.values),
            latency_ms=f"{latency_ms:.1f}",
        )

    @override
    def on_delay_step_start(self, metadata: DelayStepMetadata) -> None:
        chain = self._get_chain(metadata.delay, create=True)
        assert chain is not None
        name = getattr(metadata.step, "__name__", "none") if metadata.step else "none"
        self._log(
            chain.chain_id,
            "STEP",
            index=metadata.step_index,
            step=name,
            args=len(metadata.values),
        )

    @override
    def on_delay_step_finish(self, metadata: DelayStepFinishMetadata) -> None:
        chain = self._get_chain(metadata.delay)
        if not chain:
            return

        if metadata.step is not None:
            chain.steps_run += 1
        duration_ms = (metadata.finish_time - metadata.start_time) * 1000
        self._log(
            chain.chain_id,
            "STEP_DONE",
            index=metadata.step_index,
            outcome=metadata.outcome.value if metadata.outcome else "unknown",
            duration_ms=f"{duration_ms:.1f}",
        )

    @override
    def on_promise_resolved(self, promise: Promise, values: tuple[Any, ...]) -> None:
        chain = self._chains.pop(promise, None)
        if not chain:
            return

        duration_ms = (time() - chain.start_time) * 1000
        self._log(
            chain.chain_id,
            "RESOLVE",
            values=len(values),
            steps=chain.steps_run,
            duration_ms=f"{duration_ms:.1f}",
        )

    @override
    def on_promise_rejected(self, promise: Promise, error: BaseException) -> None:
        chain = self._chains.pop(promise, None)
        if not chain:
            return

        duration_ms = (time() - chain.start_time) * 1000
        self._log(
            chain.chain_id,
            "REJECT",
            error=type(error).__name__,
            message=repr(str(error)),
            steps=chain.steps_run,
            duration_ms=f"{duration_ms:.1f}",
        )

    def get_chain_id(self, delay: Any) -> str | None:
        """Get the chain ID assigned to a delay that is still running."""
        chain = self._get_chain(delay)
        return chain.chain_id if chain else None

    def open_chains(self) -> list[str]:
        """Chain IDs of delays that have not settled yet."""
        return [chain.chain_id for chain in self._chains.values()]


def configure_file_logger(log_path: str) -> logging.Logger:
    """
    Configure a file logger for step-chain traces.

    Args:
        log_path: Path to the log file.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(TRACE_LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    # Avoid adding duplicate handlers
    if not logger.handlers:
        handler = RotatingFileHandler(
            log_path,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        formatter = logging.Formatter(
            "[%(asctime)s.%(msecs)03d] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def get_trace_logging_instrument() -> TraceLoggingInstrument | None:
    """
    Get a trace logging instrument if enabled via environment variable.

    Set DELAYLOOP_TRACE_LOG to a file path to enable step-chain tracing.

    Returns:
        TraceLoggingInstrument if DELAYLOOP_TRACE_LOG is set, None otherwise.
    """
    log_path = os.environ.get(TRACE_LOG_ENV_VAR)
    if log_path:
        logger = configure_file_logger(log_path)
        return TraceLoggingInstrument(logger)
    return None


__all__ = [
    "ChainState",
    "TraceLoggingInstrument",
    "configure_file_logger",
    "get_trace_logging_instrument",
]
