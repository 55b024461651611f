"""Shared fixtures for interpreter tests."""

import random

import pytest

from chip8_core import FRAME_SIZE, Chip8CPU


@pytest.fixture
def cpu() -> Chip8CPU:
    """Headless CPU with the timer thread stopped."""
    return Chip8CPU(rng=random.Random(1234), start_timers=False)


@pytest.fixture
def frame() -> bytearray:
    return bytearray(FRAME_SIZE)


@pytest.fixture
def screen_cpu(frame: bytearray) -> Chip8CPU:
    """CPU drawing into an attached RGBA buffer."""
    return Chip8CPU(frame_buffer=frame, rng=random.Random(1234), start_timers=False)
