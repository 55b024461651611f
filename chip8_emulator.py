#!/usr/bin/env python3
"""
CHIP-8 Emulator
Tkinter front end for the chip8_core interpreter, with keyboard and
pygame game-controller input and a pygame mixer beep.
"""

import argparse
import logging
import sys
import threading
import time
import tkinter as tk
from array import array
from tkinter import messagebox
from typing import Callable, List, Optional

import pygame

from chip8_config import ConfigError, EmulatorConfig, resolve_rom_path
from chip8_core import (
    DISPLAY_HEIGHT,
    DISPLAY_WIDTH,
    FRAME_SIZE,
    NUM_KEYS,
    SET_COLOUR,
    UNSET_COLOUR,
    Chip8CPU,
    Chip8Error,
    FrameBuffer,
    StepResult,
)

logger = logging.getLogger(__name__)

STATUS_BAR_HEIGHT = 24

COLORS = {
    'pixel_on': '#%02X%02X%02X' % tuple(SET_COLOUR[:3]),
    'pixel_off': '#%02X%02X%02X' % tuple(UNSET_COLOUR[:3]),
    'status_bg': '#1E1E1E',
    'status_fg': '#707070',
}

# CHIP-8 Hex Keypad    PC Keyboard
#  1 2 3 C             1 2 3 4
#  4 5 6 D      →      Q W E R
#  7 8 9 E             A S D F
#  A 0 B F             Z X C V
KEYBOARD_MAP = {
    '1': 0x1, '2': 0x2, '3': 0x3, '4': 0xC,
    'q': 0x4, 'w': 0x5, 'e': 0x6, 'r': 0xD,
    'a': 0x7, 's': 0x8, 'd': 0x9, 'f': 0xE,
    'z': 0xA, 'x': 0x0, 'c': 0xB, 'v': 0xF,
}


class Chip8Audio:
    """Looping square-wave tone gated by the sound timer"""

    def __init__(self, tone_hz: int = 392):
        self.is_beeping = False
        self._sound: Optional[pygame.mixer.Sound] = None
        try:
            pygame.mixer.pre_init(44100, -16, 1, 1024)
            pygame.mixer.init()
        except pygame.error as e:
            logger.warning("Audio disabled: %s", e)
            return
        self._sound = pygame.mixer.Sound(buffer=self._build_samples(tone_hz))
        self._sound.set_volume(0.1)

    @staticmethod
    def _build_samples(tone_hz: int) -> bytes:
        """One period of a square wave at the mixer's sample rate"""
        frequency, size, _ = pygame.mixer.get_init()
        period = int(round(frequency / tone_hz))
        amplitude = 2 ** (abs(size) - 1) - 1
        samples = array("h", [amplitude if t < period / 2 else -amplitude for t in range(period)])
        return samples.tobytes()

    def start_beep(self):
        if not self.is_beeping:
            self.is_beeping = True
            if self._sound is not None:
                self._sound.play(loops=-1)

    def stop_beep(self):
        if self.is_beeping:
            self.is_beeping = False
            if self._sound is not None:
                self._sound.stop()

    def update(self, sound_timer: int):
        """Start or stop the tone on the timer's zero/non-zero transition"""
        if sound_timer > 0 and not self.is_beeping:
            self.start_beep()
        elif sound_timer == 0 and self.is_beeping:
            self.stop_beep()


class Chip8Controller:
    """Game controller input mapped onto the hex keypad"""

    BUTTON_TO_KEY = {
        0: 0x5,   # Square / X
        1: 0x6,   # Circle / B
        2: 0xA,   # Cross / A
        3: 0x4,   # Triangle / Y
        4: 0x1,   # L1
        5: 0xC,   # R1
        8: 0x0,   # Share / Back
        9: 0xF,   # Options / Start
    }

    # D-pad (as hat) -> 2/4/6/8 directional keys
    HAT_TO_KEY = {
        (0, 1): 0x2,
        (0, -1): 0x8,
        (-1, 0): 0x4,
        (1, 0): 0x6,
    }

    def __init__(self, on_key_change: Callable[[int, bool], None]):
        self.on_key_change = on_key_change
        self.joystick = None
        self.connected = False
        self.running = False
        self._thread: Optional[threading.Thread] = None
        self._hat_keys: List[int] = []

        pygame.init()
        pygame.joystick.init()

    def start(self):
        """Start controller polling thread"""
        self.running = True
        self._thread = threading.Thread(target=self._poll_loop, name="chip8-controller", daemon=True)
        self._thread.start()

    def stop(self):
        self.running = False
        if self._thread:
            self._thread.join(timeout=1.0)

    def _poll_loop(self):
        while self.running:
            self._check_connection()
            if self.connected:
                self._process_input()
            time.sleep(1 / 120)

    def _check_connection(self):
        pygame.event.pump()
        joystick_count = pygame.joystick.get_count()

        if joystick_count > 0 and not self.connected:
            self.joystick = pygame.joystick.Joystick(0)
            self.joystick.init()
            self.connected = True
            logger.info("Controller connected: %s", self.joystick.get_name())
        elif joystick_count == 0 and self.connected:
            self.connected = False
            self.joystick = None
            logger.info("Controller disconnected")

    def _process_input(self):
        for event in pygame.event.get():
            if event.type == pygame.JOYBUTTONDOWN and event.button in self.BUTTON_TO_KEY:
                self.on_key_change(self.BUTTON_TO_KEY[event.button], True)
            elif event.type == pygame.JOYBUTTONUP and event.button in self.BUTTON_TO_KEY:
                self.on_key_change(self.BUTTON_TO_KEY[event.button], False)
            elif event.type == pygame.JOYHATMOTION:
                self._handle_hat(tuple(event.value))

    def _handle_hat(self, value: tuple):
        for key in self._hat_keys:
            self.on_key_change(key, False)
        self._hat_keys = []
        key = self.HAT_TO_KEY.get(value)
        if key is not None:
            self.on_key_change(key, True)
            self._hat_keys.append(key)


class Chip8Display:
    """Tkinter canvas showing the interpreter's RGBA frame buffer"""

    def __init__(self, canvas: tk.Canvas, frame: FrameBuffer, scale: int):
        self.canvas = canvas
        self.frame = frame
        self.scale = scale
        self.pixel_rects = {}
        self._create_pixels()

    def _create_pixels(self):
        """Pre-create all pixel rectangles"""
        self.canvas.delete("all")
        self.pixel_rects.clear()
        for y in range(DISPLAY_HEIGHT):
            for x in range(DISPLAY_WIDTH):
                x1 = x * self.scale
                y1 = y * self.scale
                rect = self.canvas.create_rectangle(
                    x1, y1, x1 + self.scale, y1 + self.scale,
                    fill=COLORS['pixel_off'], outline=""
                )
                self.pixel_rects[(x, y)] = rect

    def render(self):
        """Recolour every rectangle from the frame buffer"""
        for y in range(DISPLAY_HEIGHT):
            for x in range(DISPLAY_WIDTH):
                color = COLORS['pixel_on'] if self.frame.is_set(x, y) else COLORS['pixel_off']
                self.canvas.itemconfig(self.pixel_rects[(x, y)], fill=color)


class Chip8GUI:
    """Main application window and driving loop"""

    def __init__(self, config: EmulatorConfig):
        self.config = config
        self.frame = bytearray(FRAME_SIZE)
        self.cpu = Chip8CPU(config, frame_buffer=self.frame)

        self.root = tk.Tk()
        self.root.title("CHIP-8 Emulator")
        width = DISPLAY_WIDTH * config.scale
        height = DISPLAY_HEIGHT * config.scale
        self.root.geometry(f"{width}x{height + STATUS_BAR_HEIGHT}")
        self.root.resizable(False, False)

        self.canvas = tk.Canvas(self.root, width=width, height=height, highlightthickness=0)
        self.canvas.pack(side=tk.TOP)
        self.status_label = tk.Label(
            self.root, text="Stopped", anchor="w",
            fg=COLORS['status_fg'], bg=COLORS['status_bg'], font=("Consolas", 9)
        )
        self.status_label.pack(side=tk.BOTTOM, fill=tk.X)

        self.display_renderer = Chip8Display(self.canvas, self.cpu.frame, config.scale)
        self.audio = Chip8Audio(config.tone_hz)
        self.controller = Chip8Controller(self._on_controller_key)

        # Written by input callbacks, copied into the CPU by the driving thread
        self._pending_keys = [False] * NUM_KEYS
        self._redraw = True
        self._emu_running = False
        self._emu_thread: Optional[threading.Thread] = None
        self._error: Optional[Chip8Error] = None

        self.root.bind("<KeyPress>", self._on_key_down)
        self.root.bind("<KeyRelease>", self._on_key_up)

    def load_rom(self, path) -> int:
        size = self.cpu.load_program(path)
        self.root.title(f"CHIP-8 Emulator - {path}")
        return size

    def _on_key_down(self, event):
        key = event.keysym.lower()
        if key in KEYBOARD_MAP:
            self._pending_keys[KEYBOARD_MAP[key]] = True

    def _on_key_up(self, event):
        key = event.keysym.lower()
        if key in KEYBOARD_MAP:
            self._pending_keys[KEYBOARD_MAP[key]] = False

    def _on_controller_key(self, key: int, pressed: bool):
        self._pending_keys[key] = pressed

    def _start_emulation(self):
        self._emu_running = True
        self.status_label.config(text="Running")
        self._emu_thread = threading.Thread(target=self._emulation_loop, name="chip8-cpu", daemon=True)
        self._emu_thread.start()
        self.controller.start()
        self._render_loop()

    def _emulation_loop(self):
        """Run a frame's worth of cycles, then sleep to hold the frame rate"""
        frame_time = 1.0 / self.config.frame_rate
        cycles = self.config.cycles_per_frame

        while self._emu_running:
            start_time = time.perf_counter()
            try:
                for _ in range(cycles):
                    self.cpu.keys.update(self._pending_keys)
                    result = self.cpu.execute_next_instruction()
                    if result is StepResult.REDRAW_REQUESTED:
                        self._redraw = True
                    elif result is StepResult.TERMINATED:
                        self._emu_running = False
                        break
            except Chip8Error as e:
                logger.error("CPU error at PC 0x%03X: %s", self.cpu.pc, e)
                self._error = e
                self._emu_running = False
                break

            sleep_time = frame_time - (time.perf_counter() - start_time)
            if sleep_time > 0:
                time.sleep(sleep_time)

    def _render_loop(self):
        if self._redraw:
            self._redraw = False
            self.display_renderer.render()

        self.audio.update(self.cpu.sound_timer)

        if self._error is not None:
            self.status_label.config(text=f"Halted: {self._error}")
            self.audio.stop_beep()
            messagebox.showerror("CHIP-8 Error", str(self._error))
            self._error = None
            return
        if not self._emu_running:
            self.status_label.config(text="Terminated")
            self.audio.stop_beep()
            return

        self.root.after(1000 // self.config.frame_rate, self._render_loop)

    def run(self):
        self.root.protocol("WM_DELETE_WINDOW", self._on_close)
        self._start_emulation()
        self.root.mainloop()

    def _on_close(self):
        self._emu_running = False
        self.controller.stop()
        self.audio.stop_beep()
        self.root.destroy()


def run_headless(config: EmulatorConfig, rom_path, max_cycles: int) -> int:
    """Run a ROM without a window; returns the number of cycles executed"""
    cpu = Chip8CPU(config, frame_buffer=bytearray(FRAME_SIZE))
    cpu.load_program(rom_path)
    cycles = cpu.run(max_cycles)
    logger.info("Executed %d cycles, PC=0x%03X", cycles, cpu.pc)
    return cycles


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="CHIP-8 interpreter")
    parser.add_argument("rom", nargs="?", help="ROM file (overrides the config file)")
    parser.add_argument("-c", "--config", help="JSON configuration file")
    parser.add_argument("--headless", action="store_true", help="Run without a window")
    parser.add_argument("--max-cycles", type=int, default=100_000,
                        help="Cycle budget in headless mode")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main entry point"""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s",
    )

    try:
        config = EmulatorConfig.load(args.config) if args.config else EmulatorConfig()
    except ConfigError as e:
        logger.error("%s", e)
        return 1
    rom_path = resolve_rom_path(config, args.rom)

    if args.headless:
        try:
            run_headless(config, rom_path, args.max_cycles)
        except Chip8Error as e:
            logger.error("%s", e)
            return 1
        return 0

    app = Chip8GUI(config)
    try:
        app.load_rom(rom_path)
    except Chip8Error as e:
        logger.error("%s", e)
        app.root.destroy()
        return 1

    app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
