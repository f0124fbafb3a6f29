import logging
import signal
from timeit import timeit

import pytest
from delayloop import Delay, EventLoop, current_event_loop


def test_braindead():
    loop = EventLoop()

    loop.next_tick(lambda: print("Hello"))

    loop.start()


def test_next_tick_is_deferred(event_loop):
    ran = []

    event_loop.next_tick(lambda: ran.append(1))

    assert ran == []
    event_loop.one_tick()
    assert ran == [1]


def test_next_tick_runs_in_submission_order(event_loop):
    ran = []

    for i in range(5):
        event_loop.next_tick(lambda i=i: ran.append(i))
    event_loop.start()

    assert ran == [0, 1, 2, 3, 4]


def test_tick_scheduled_during_turn_runs_next_turn(event_loop):
    ran = []

    def outer():
        ran.append("outer")
        event_loop.next_tick(lambda: ran.append("inner"))

    event_loop.next_tick(outer)
    event_loop.next_tick(lambda: ran.append("sibling"))

    event_loop.one_tick()
    assert ran == ["outer", "sibling"]

    event_loop.one_tick()
    assert ran == ["outer", "sibling", "inner"]


def test_timer():
    loop = EventLoop()
    fired = []

    loop.timer(0.2, lambda loop: fired.append(loop))

    actual = timeit(loop.start, number=1)
    assert 0.2 <= actual <= 0.4
    assert fired == [loop]


def test_timers_fire_in_deadline_order(event_loop):
    fired = []

    event_loop.timer(0.03, lambda loop: fired.append("c"))
    event_loop.timer(0.01, lambda loop: fired.append("a"))
    event_loop.timer(0.02, lambda loop: fired.append("b"))
    event_loop.start()

    assert fired == ["a", "b", "c"]


def test_negative_timer_rejected(event_loop):
    with pytest.raises(ValueError):
        event_loop.timer(-1, lambda loop: None)


def test_recurring_until_removed(event_loop):
    fired = []

    def tick(loop):
        fired.append(len(fired))
        if len(fired) == 3:
            assert loop.remove(handle)

    handle = event_loop.recurring(0.01, tick)
    event_loop.start()

    assert fired == [0, 1, 2]
    assert handle.is_recurring
    assert handle.is_cancelled
    assert not event_loop.remove(handle)


def test_cancelled_timer_never_fires(event_loop):
    fired = []

    handle = event_loop.timer(0.01, lambda loop: fired.append("nope"))
    assert handle.cancel()
    event_loop.start()

    assert fired == []
    assert handle.is_cancelled
    assert not handle.is_finished


def test_timer_finished_after_firing(event_loop):
    handle = event_loop.timer(0, lambda loop: None)
    event_loop.start()

    assert handle.is_finished
    assert not handle.cancel()


def test_stop_leaves_remaining_work(event_loop):
    fired = []

    def tick(loop):
        fired.append(1)
        if len(fired) == 2:
            loop.stop()

    event_loop.recurring(0.01, tick)
    event_loop.start()

    assert fired == [1, 1]
    assert event_loop.has_pending_work()
    assert not event_loop.is_running


def test_start_when_running_raises(event_loop):
    errors = []

    def nested():
        try:
            event_loop.start()
        except RuntimeError as e:
            errors.append(e)

    event_loop.next_tick(nested)
    event_loop.start()

    assert len(errors) == 1


def test_current_event_loop(event_loop):
    seen = []

    event_loop.next_tick(lambda: seen.append((current_event_loop(), event_loop.is_running)))

    assert current_event_loop() is None
    event_loop.start()
    assert current_event_loop() is None

    assert seen == [(event_loop, True)]


def test_callback_error_is_logged_and_loop_continues(event_loop, caplog):
    ran = []

    def broken():
        raise ValueError("broken callback")

    event_loop.next_tick(broken)
    event_loop.next_tick(lambda: ran.append("after"))

    with caplog.at_level(logging.ERROR, logger="delayloop.core.event_loop.event_loop"):
        event_loop.start()

    assert ran == ["after"]
    assert "broken callback" in caplog.text


def test_delay_helper_binds_loop(event_loop):
    delay = event_loop.delay()

    assert isinstance(delay, Delay)
    assert delay.loop is event_loop
    assert not event_loop.has_pending_work()

    delay = event_loop.delay(lambda delay: None)
    assert event_loop.has_pending_work()
    assert delay.wait() == ()


def test_signal_handlers_restored_after_start(event_loop):
    before = signal.getsignal(signal.SIGINT)
    inside = []

    event_loop.next_tick(lambda: inside.append(signal.getsignal(signal.SIGINT)))
    event_loop.start()

    assert inside[0] is not before
    assert signal.getsignal(signal.SIGINT) is before


def test_signal_handlers_can_be_disabled():
    loop = EventLoop(install_signal_handlers=False)
    before = signal.getsignal(signal.SIGINT)
    inside = []

    loop.next_tick(lambda: inside.append(signal.getsignal(signal.SIGINT)))
    loop.start()

    assert inside == [before]


def test_dump_debug_info(event_loop, caplog):
    event_loop.next_tick(lambda: None)
    event_loop.timer(10, lambda loop: None)

    with caplog.at_level(logging.WARNING, logger="delayloop.core.event_loop.event_loop"):
        event_loop._dump_debug_info("test")

    assert "EVENT LOOP DEBUG INFO (test)" in caplog.text
    assert "Next-tick callbacks in queue: 1" in caplog.text
    assert "Armed timers: 1" in caplog.text


def test_debug_max_wait_time_caps_sleep(caplog):
    loop = EventLoop(debug_max_wait_time=0.01)
    loop.timer(5, lambda loop: None)

    with caplog.at_level(logging.ERROR, logger="delayloop.core.event_loop.event_loop"):
        actual = timeit(loop.one_tick, number=1)

    assert actual < 1
    assert "exceeds max wait time" in caplog.text
