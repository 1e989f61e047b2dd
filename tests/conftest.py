import os
import random

# Run pygame headless
os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")

import pytest

from chip8io import FrameBuffer, KeyInput
from chip8vm import Chip8CPU


def program(*words: int) -> bytes:
    """Assemble 16-bit opcodes into a big-endian program image"""
    return b"".join(w.to_bytes(2, "big") for w in words)


def make_cpu(*words: int, **kwargs) -> Chip8CPU:
    kwargs.setdefault("rng", random.Random(1234))
    cpu = Chip8CPU(display=FrameBuffer(), keyboard=KeyInput(), **kwargs)
    cpu.load_program(program(*words))
    return cpu


def run_steps(cpu: Chip8CPU, count: int):
    for _ in range(count):
        cpu.step()


class FakeClock:
    """Monotonic clock that only moves when slept on"""

    def __init__(self):
        self.now = 0.0
        self.sleeps = 0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps += 1
        self.now += max(seconds, 1e-9)


@pytest.fixture
def fake_clock():
    return FakeClock()
