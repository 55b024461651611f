"""Sprite drawing and screen clearing on the RGBA frame buffer."""

import pytest

from chip8_core import (
    DISPLAY_HEIGHT,
    DISPLAY_WIDTH,
    FRAME_SIZE,
    SET_COLOUR,
    UNSET_COLOUR,
    AddressBoundsError,
    FrameBuffer,
    StepResult,
)


def lit_pixels(frame: FrameBuffer):
    return {
        (x, y)
        for y in range(DISPLAY_HEIGHT)
        for x in range(DISPLAY_WIDTH)
        if frame.is_set(x, y)
    }


def test_new_screen_is_clear(screen_cpu, frame):
    assert frame == bytearray(UNSET_COLOUR * (DISPLAY_WIDTH * DISPLAY_HEIGHT))


def test_frame_buffer_size_is_checked():
    with pytest.raises(ValueError):
        FrameBuffer(bytearray(FRAME_SIZE - 4))


def test_pixel_offsets():
    assert FrameBuffer.offset(0, 0) == 0
    assert FrameBuffer.offset(1, 0) == 4
    assert FrameBuffer.offset(0, 1) == DISPLAY_WIDTH * 4
    assert FrameBuffer.offset(64, 0) == 0


def test_draw_digit_zero(screen_cpu):
    # I = sprite for 0, drawn at (0, 0)
    screen_cpu.i = 0
    assert screen_cpu.execute_instruction(0xD015) is StepResult.REDRAW_REQUESTED
    assert screen_cpu.pc == 0x202
    assert screen_cpu.v[0xF] == 0

    expected = set()
    for row, byte in enumerate([0xF0, 0x90, 0x90, 0x90, 0xF0]):
        for col in range(8):
            if byte & (0x80 >> col):
                expected.add((col, row))
    assert lit_pixels(screen_cpu.frame) == expected


def test_msb_is_leftmost(screen_cpu):
    screen_cpu.memory[0x300] = 0x80
    screen_cpu.i = 0x300
    screen_cpu.v[1] = 10
    screen_cpu.v[2] = 5
    screen_cpu.execute_instruction(0xD121)
    assert lit_pixels(screen_cpu.frame) == {(10, 5)}


def test_redraw_erases_and_sets_collision(screen_cpu, frame):
    screen_cpu.i = 0
    screen_cpu.execute_instruction(0xD015)
    screen_cpu.execute_instruction(0xD015)
    assert screen_cpu.v[0xF] == 1
    assert lit_pixels(screen_cpu.frame) == set()


def test_zero_bits_leave_cells_alone(screen_cpu):
    screen_cpu.memory[0x300] = 0xFF
    screen_cpu.memory[0x301] = 0x00
    screen_cpu.i = 0x300
    screen_cpu.execute_instruction(0xD011)
    screen_cpu.i = 0x301
    screen_cpu.execute_instruction(0xD011)
    assert screen_cpu.v[0xF] == 0
    assert lit_pixels(screen_cpu.frame) == {(x, 0) for x in range(8)}


def test_collision_flag_cleared_on_clean_draw(screen_cpu):
    screen_cpu.v[0xF] = 1
    screen_cpu.i = 0
    screen_cpu.execute_instruction(0xD015)
    assert screen_cpu.v[0xF] == 0


def test_sprite_wraps_horizontally(screen_cpu):
    screen_cpu.memory[0x300] = 0xFF
    screen_cpu.i = 0x300
    screen_cpu.v[0] = 60
    screen_cpu.v[1] = 3
    screen_cpu.execute_instruction(0xD011)
    expected = {(x, 3) for x in (60, 61, 62, 63, 0, 1, 2, 3)}
    assert lit_pixels(screen_cpu.frame) == expected


def test_sprite_wraps_vertically(screen_cpu):
    screen_cpu.memory[0x300:0x303] = bytes([0x80, 0x80, 0x80])
    screen_cpu.i = 0x300
    screen_cpu.v[0] = 7
    screen_cpu.v[1] = 31
    screen_cpu.execute_instruction(0xD013)
    assert lit_pixels(screen_cpu.frame) == {(7, 31), (7, 0), (7, 1)}


def test_clear_screen(screen_cpu, frame):
    screen_cpu.i = 0
    screen_cpu.execute_instruction(0xD015)
    assert screen_cpu.execute_instruction(0x00E0) is StepResult.REDRAW_REQUESTED
    assert frame == bytearray(UNSET_COLOUR * (DISPLAY_WIDTH * DISPLAY_HEIGHT))


def test_cells_hold_only_canonical_colours(screen_cpu, frame):
    screen_cpu.i = 0
    for x in range(0, 64, 3):
        screen_cpu.v[0] = x
        screen_cpu.v[1] = x // 2
        screen_cpu.execute_instruction(0xD015)
    for start in range(0, FRAME_SIZE, 4):
        assert bytes(frame[start:start + 4]) in (SET_COLOUR, UNSET_COLOUR)


def test_sprite_read_outside_memory(screen_cpu):
    screen_cpu.i = 0xFFE
    with pytest.raises(AddressBoundsError):
        screen_cpu.execute_instruction(0xD005)


def test_headless_draw_requests_redraw(cpu):
    cpu.v[0xF] = 1
    assert cpu.execute_instruction(0xD015) is StepResult.REDRAW_REQUESTED
    assert cpu.v[0xF] == 1
    assert cpu.execute_instruction(0x00E0) is StepResult.REDRAW_REQUESTED
