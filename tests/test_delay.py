"""
Tests for Delay: event barriers, step advancement and settlement.

These tests verify:
- Results are combined in registration order, not completion order
- begin() argument capture follows slice semantics
- A step that registers no events ends the chain
- A raising step rejects the delay and skips the remaining steps
- pass_() behaves like an immediately completed event
- The chain never advances while events are still pending
"""

import pytest
from delayloop import Delay, DelayState, EventLoop, PromiseState, StepOutcome
from delayloop.core.delay import _capture


def fire_later(loop: EventLoop, after: float, handle, *args):
    """Invoke ``handle(loop, *args)`` from a timer, like an async API would."""
    loop.timer(after, lambda loop: handle(loop, *args))


# ============================================================================
# Ordering
# ============================================================================

def test_results_follow_registration_order(event_loop):
    """Events finishing in reverse order still arrive in begin() order"""
    received = []

    def first(delay):
        fire_later(event_loop, 0.03, delay.begin(), "a")
        fire_later(event_loop, 0.01, delay.begin(), "b")
        fire_later(event_loop, 0.02, delay.begin(), "c")

    def second(delay, *values):
        received.extend(values)

    result = event_loop.delay(first, second).wait()

    assert received == ["a", "b", "c"]
    assert result == ("a", "b", "c")


def test_handles_invoked_in_reverse_order(event_loop):
    """Synchronous completion in reverse order keeps registration order"""
    handles = []

    def first(delay):
        handles.extend(delay.begin(0) for _ in range(3))

    delay = event_loop.delay(first, lambda delay, *values: None)
    event_loop.one_tick()

    assert len(handles) == 3
    assert delay.pending == 3

    for index, handle in reversed(list(enumerate(handles))):
        handle(index)

    assert delay.state is PromiseState.FULFILLED
    assert delay.wait() == (0, 1, 2)


def test_two_synchronous_events_feed_next_step(event_loop):
    """steps(s1, s2) with two events completed inside s1 gives s2 (1, 2)"""
    calls = []

    def s1(delay):
        one = delay.begin(0)
        two = delay.begin(0)
        one(1)
        two(2)

    def s2(delay, *values):
        calls.append(values)

    event_loop.delay(s1, s2).wait()

    assert calls == [(1, 2)]


def test_events_begun_before_first_step(event_loop):
    """Events registered right after steps() hold back the first step"""
    delay = event_loop.delay(lambda delay, *values: None)
    fire_later(event_loop, 0.02, delay.begin(), "slow")
    fire_later(event_loop, 0.01, delay.begin(), "fast")

    assert delay.wait() == ("slow", "fast")


def test_delay_without_steps_is_a_barrier(event_loop):
    """A delay with no steps fulfills once its events completed"""
    delay = Delay(loop=event_loop)
    for index, after in enumerate((0.03, 0.01, 0.02)):
        fire_later(event_loop, after, delay.begin(), index)

    assert delay.wait() == (0, 1, 2)


# ============================================================================
# Argument capture
# ============================================================================

def test_begin_slices_arguments(event_loop):
    """begin() drops the first argument, begin(0) keeps all, begin(1, 1) keeps one"""

    def first(delay):
        delay.begin()("a", "b", "c")
        delay.begin(0)("a", "b", "c")
        delay.begin(1, 1)("a", "b", "c")

    assert event_loop.delay(first).wait() == ("b", "c", "a", "b", "c", "b")


def test_handle_without_arguments_satisfies_barrier(event_loop):
    calls = []

    def first(delay):
        fire_later(event_loop, 0.01, delay.begin())
        delay.pass_()

    def second(delay, *values):
        calls.append(values)

    event_loop.delay(first, second).wait()

    assert calls == [()]


@pytest.mark.parametrize(
    "offset, length, expected",
    [
        (1, None, ("b", "c")),
        (0, None, ("a", "b", "c")),
        (1, 1, ("b",)),
        (2, 5, ("c",)),
        (5, None, ()),
        (-1, None, ("c",)),
        (0, -1, ("a", "b")),
    ],
)
def test_capture_matches_bounded_slice(offset, length, expected):
    assert _capture(("a", "b", "c"), offset, length) == expected


# ============================================================================
# Chain termination
# ============================================================================

def test_step_without_events_finishes_chain(event_loop):
    """A step that registers nothing fulfills with the values it received"""
    ran = []

    def first(delay):
        delay.pass_(1, 2)

    def second(delay, *values):
        ran.append(values)

    def third(delay, *values):
        ran.append("third")

    delay = event_loop.delay(first, second, third)

    assert delay.wait() == (1, 2)
    assert ran == [(1, 2)]
    assert delay.delay_state is DelayState.FULFILLED


def test_raising_step_rejects_and_skips_remaining_steps(event_loop):
    ran = []

    def first(delay):
        delay.pass_()

    def second(delay):
        raise ValueError("boom")

    def third(delay):
        ran.append("third")

    delay = event_loop.delay(first, second, third)

    with pytest.raises(ValueError, match="boom"):
        delay.wait()

    assert ran == []
    assert delay.state is PromiseState.REJECTED
    assert delay.delay_state is DelayState.REJECTED
    assert isinstance(delay.error, ValueError)


def test_zero_steps_fulfill_on_next_turn(event_loop):
    delay = Delay(loop=event_loop).steps()

    assert delay.is_pending

    event_loop.one_tick()

    assert delay.state is PromiseState.FULFILLED
    assert delay.values == ()


def test_steps_run_in_sequence_with_timers(event_loop):
    """Each step waits for the timers started by the previous one"""
    order = []

    def first(delay):
        order.append("first")
        event_loop.timer(0.01, delay.begin())

    def second(delay):
        order.append("second")
        event_loop.timer(0.01, delay.begin())
        event_loop.timer(0.02, delay.begin())

    def third(delay):
        order.append("third")

    event_loop.delay(first, second, third).wait()

    assert order == ["first", "second", "third"]


def test_step_receives_delay_first(event_loop):
    seen = []

    def first(delay, *values):
        seen.append((delay, values))

    delay = event_loop.delay(first)
    delay.wait()

    assert seen == [(delay, ())]


# ============================================================================
# pass_()
# ============================================================================

def test_pass_keeps_registration_order(event_loop):
    calls = []

    def first(delay):
        end = delay.begin(0)
        event_loop.timer(0.01, lambda loop: end("timer"))
        delay.pass_("x", "y")

    def second(delay, *values):
        calls.append(values)

    event_loop.delay(first, second).wait()

    assert calls == [("timer", "x", "y")]


def test_pass_returns_delay(event_loop):
    delay = Delay(loop=event_loop)

    assert delay.pass_(1) is delay
    assert delay.wait() == (1,)


# ============================================================================
# Waiting
# ============================================================================

def test_no_advance_while_events_pending(event_loop):
    """An event completing after its step returned is the only trigger"""
    handles = []
    second_calls = []

    def first(delay):
        handles.append(delay.begin())

    def second(delay, *values):
        second_calls.append(values)

    delay = event_loop.delay(first, second)
    for _ in range(4):
        event_loop.one_tick()

    assert second_calls == []
    assert delay.pending == 1
    assert delay.is_pending

    handles[0](event_loop, "late")

    assert second_calls == [("late",)]
    assert delay.values == ("late",)


def test_synchronous_completion_inside_step_does_not_reenter(event_loop):
    """A handle invoked during its own step defers advancement to the next turn"""
    order = []

    def first(delay):
        delay.begin(0)("sync")
        order.append(("after handle", delay.delay_state))

    def second(delay, value):
        order.append(("second", value))

    delay = event_loop.delay(first, second)
    event_loop.one_tick()

    assert order == [("after handle", DelayState.ADVANCING)]
    assert delay.delay_state is DelayState.AWAITING
    assert delay.pending == 1

    event_loop.one_tick()

    assert order == [("after handle", DelayState.ADVANCING), ("second", "sync")]
    assert delay.values == ("sync",)


def test_event_counter_resets_every_step(event_loop):
    counters = []

    def first(delay):
        counters.append(delay.event_counter)
        delay.pass_()
        delay.pass_()

    def second(delay):
        counters.append(delay.event_counter)

    event_loop.delay(first, second).wait()

    assert counters == [0, 0]


# ============================================================================
# Step outcome
# ============================================================================

def test_run_step_reports_continue_waiting(event_loop):
    delay = Delay(loop=event_loop)
    delay._steps.append(lambda delay: delay.begin())

    assert delay._run_step(()) is StepOutcome.CONTINUE_WAITING


def test_run_step_reports_finished(event_loop):
    delay = Delay(loop=event_loop)
    delay._steps.append(lambda delay: None)

    assert delay._run_step(()) is StepOutcome.FINISHED
    assert delay._run_step(()) is StepOutcome.FINISHED
