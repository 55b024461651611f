"""Delay/sound counters and the timer thread."""

import time

from chip8_core import Chip8CPU, Chip8Timers, TimerCounter


def test_decrement_saturates_at_zero():
    counter = TimerCounter(2)
    assert counter.decrement()
    assert counter.decrement()
    assert counter.load() == 0
    assert not counter.decrement()
    assert counter.load() == 0


def test_store_masks_to_a_byte():
    counter = TimerCounter()
    counter.store(0x1FF)
    assert counter.load() == 0xFF


def test_compare_exchange_drops_stale_update():
    counter = TimerCounter(10)
    observed = counter.load()
    # Interpreter overwrites the counter between the read and the swap
    counter.store(60)
    assert not counter.compare_exchange(observed, observed - 1)
    assert counter.load() == 60


def test_compare_exchange_applies_when_unchanged():
    counter = TimerCounter(10)
    assert counter.compare_exchange(10, 9)
    assert counter.load() == 9


def test_tick_decrements_both_timers():
    timers = Chip8Timers()
    timers.delay.store(3)
    timers.sound.store(1)
    timers.tick()
    assert timers.delay.load() == 2
    assert timers.sound.load() == 0
    timers.tick()
    assert timers.delay.load() == 1
    assert timers.sound.load() == 0


def test_timers_do_not_run_when_not_started(cpu):
    cpu.timers.delay.store(5)
    time.sleep(0.05)
    assert cpu.delay_timer == 5
    assert not cpu.timers.running


def test_timer_thread_counts_down():
    cpu = Chip8CPU()
    assert cpu.timers.running
    cpu.v[0] = 3
    cpu.execute_instruction(0xF015)
    cpu.execute_instruction(0xF018)

    deadline = time.monotonic() + 2.0
    while (cpu.delay_timer or cpu.sound_timer) and time.monotonic() < deadline:
        time.sleep(0.01)

    assert cpu.delay_timer == 0
    assert cpu.sound_timer == 0


def test_start_is_idempotent():
    timers = Chip8Timers(period=0.05)
    timers.start()
    thread = timers._thread
    timers.start()
    assert timers._thread is thread
