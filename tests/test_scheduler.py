import pytest

from chip8io import Key
from chip8vm import Scheduler, StackUnderflow
from conftest import make_cpu


class FrameHook:
    """poll_input stand-in: presses keys on chosen frames"""

    def __init__(self, keyboard, presses):
        self.keyboard = keyboard
        self.presses = presses
        self.calls = 0

    def __call__(self):
        self.calls += 1
        for key in self.presses.get(self.calls, ()):
            self.keyboard.register_press(key)


def make_scheduler(cpu, clock, presses, **kwargs):
    hook = FrameHook(cpu.keyboard, presses)
    sched = Scheduler(cpu, poll_input=hook, clock=clock, sleep=clock.sleep, **kwargs)
    return sched, hook


def test_clock_rates(fake_clock):
    cpu = make_cpu(0x1200)
    sched, hook = make_scheduler(cpu, fake_clock, {60: [Key.EXIT]})
    steps = sched.run()
    assert hook.calls == 60
    assert sched.frames == 60
    # 59 frame periods have passed: about 59/60 s of instructions at 540 Hz
    assert 528 <= steps <= 534
    assert sched.running is False


def test_exit_on_first_step(fake_clock):
    cpu = make_cpu(0x1200)
    sched, _ = make_scheduler(cpu, fake_clock, {1: [Key.EXIT]})
    assert sched.run() == 1
    assert sched.frames == 1


def test_frames_continue_while_waiting_for_key(fake_clock):
    cpu = make_cpu(0xF30A, 0x1202)
    sched, hook = make_scheduler(cpu, fake_clock, {10: [Key.K7], 20: [Key.EXIT]})
    sched.run()
    assert hook.calls == 20
    assert cpu.state.V[3] == 7
    assert cpu.state.PC == 0x202


def test_wait_for_key_stalls_until_press(fake_clock):
    cpu = make_cpu(0xF30A)
    sched, _ = make_scheduler(cpu, fake_clock, {5: [Key.EXIT]})
    steps = sched.run()
    assert steps > 30
    assert cpu.state.PC == 0x200
    assert cpu.state.V[3] == 0


def test_timers_count_down_per_frame(fake_clock):
    cpu = make_cpu(0x6A3C, 0xFA15, 0x1204)
    sched, _ = make_scheduler(cpu, fake_clock, {31: [Key.EXIT]})
    sched.run()
    # set on the first steps, then aged by frames 2..31
    assert cpu.state.delay_timer == 60 - 30


def test_display_flushed_every_frame(fake_clock):
    cpu = make_cpu(0x1200)
    flushes = []
    cpu.display.flush = lambda: flushes.append(fake_clock())
    sched, _ = make_scheduler(cpu, fake_clock, {12: [Key.EXIT]})
    sched.run()
    assert len(flushes) == 12
    gaps = [b - a for a, b in zip(flushes, flushes[1:])]
    assert all(abs(g - 1 / 60) < 1e-6 for g in gaps)


def test_fatal_error_stops_run(fake_clock):
    cpu = make_cpu(0x00E0, 0x00EE)
    sched, _ = make_scheduler(cpu, fake_clock, {})
    with pytest.raises(StackUnderflow):
        sched.run()
    assert sched.steps == 1
    assert cpu.state.PC == 0x202


def test_stop_from_frame_hook(fake_clock):
    cpu = make_cpu(0x1200)
    sched = Scheduler(cpu, clock=fake_clock, sleep=fake_clock.sleep)
    sched.poll_input = lambda: sched.frames == 2 and sched.stop()
    sched.run()
    assert sched.frames == 3


def test_resync_after_stall(fake_clock):
    cpu = make_cpu(0x1200)
    sched, hook = make_scheduler(cpu, fake_clock, {3: [Key.EXIT]})
    real_step = cpu.step

    def slow_step():
        real_step()
        if sched.steps == 0:
            fake_clock.now += 5.0

    cpu.step = slow_step
    sched.run()
    # a 5 s stall must not be replayed as 2700 instructions
    assert sched.steps < 100
