#!/usr/bin/env python
"""
Fan-in Example

Starts several simulated lookups with different latencies in one step and
collects their results in the next. Results arrive in the order the lookups
were started, not the order they finished.

Set DELAYLOOP_TRACE_LOG=/tmp/delay-trace.log to write a trace of every event
and step to that file.
"""

from delayloop import Delay, EventLoop
from delayloop.utilities.trace_logging import get_trace_logging_instrument

LATENCIES = {"users": 0.3, "orders": 0.1, "invoices": 0.2}

loop = EventLoop()


def lookup(name: str, callback) -> None:
    """Pretend to query a service, calling back with (source, name, rows)."""
    loop.timer(LATENCIES[name], lambda loop: callback(loop, name, len(name)))


def start_lookups(delay: Delay) -> None:
    for name in LATENCIES:
        lookup(name, delay.begin())


def report(delay: Delay, *results: object) -> None:
    pairs = list(zip(results[::2], results[1::2]))
    for name, rows in pairs:
        print(f"{name}: {rows} rows")


def main() -> None:
    instrument = get_trace_logging_instrument()
    if instrument:
        with instrument:
            loop.delay(start_lookups, report).wait()
    else:
        loop.delay(start_lookups, report).wait()


if __name__ == "__main__":
    main()
