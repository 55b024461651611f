"""
CHIP-8 interpreter core.

Opcode decoding, instruction dispatch, CPU/memory state, the background
delay/sound timers, key-press edge detection and the XOR sprite blitter.
Everything here is host independent: windows, audio devices and key mapping
live in chip8_emulator.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Dict, List, Optional, Sequence, Union

from chip8_config import EmulatorConfig

logger = logging.getLogger(__name__)

# ============================================================================
# CONSTANTS
# ============================================================================

DISPLAY_WIDTH = 64
DISPLAY_HEIGHT = 32
BYTES_PER_PIXEL = 4
FRAME_SIZE = DISPLAY_WIDTH * DISPLAY_HEIGHT * BYTES_PER_PIXEL
NUM_REGISTERS = 16
NUM_KEYS = 16
FLAG_REGISTER = 0xF
SPRITE_BYTES_PER_DIGIT = 5

# RGBA colours of a set and an unset pixel
SET_COLOUR = bytes([0xF3, 0xF3, 0xF4, 0xFF])
UNSET_COLOUR = bytes([0x14, 0x11, 0x0F, 0xFF])

# Built-in hex digit sprites (0-F), 80 bytes at address 0
FONTSET = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])

# ============================================================================
# ERRORS
# ============================================================================


class Chip8Error(Exception):
    """Base class for fatal interpreter errors"""


class RomLoadError(Chip8Error):
    """ROM could not be read or does not fit in program memory"""


class InvalidOpcodeError(Chip8Error):
    """No instruction matches the opcode"""

    def __init__(self, opcode: 'Opcode', message: str = ""):
        self.opcode = opcode
        super().__init__(message or f"Malformed opcode 0x{opcode.full:04X}")


class StackUnderflowError(InvalidOpcodeError):
    """00EE executed with no subroutine to return to"""


class AddressBoundsError(Chip8Error):
    """A computed address falls outside memory"""


# ============================================================================
# OPCODE DECODING
# ============================================================================


@dataclass(frozen=True)
class Opcode:
    """
    One 16-bit instruction word split into its bytes and nibbles.

    nibble4 is the most significant nibble and selects the instruction
    group; nibble1 is the least significant.
    """
    full: int
    left_byte: int
    right_byte: int
    nibble4: int
    nibble3: int
    nibble2: int
    nibble1: int

    @classmethod
    def from_bytes(cls, left_byte: int, right_byte: int) -> 'Opcode':
        left_byte &= 0xFF
        right_byte &= 0xFF
        return cls(
            full=(left_byte << 8) | right_byte,
            left_byte=left_byte,
            right_byte=right_byte,
            nibble4=left_byte >> 4,
            nibble3=left_byte & 0x0F,
            nibble2=right_byte >> 4,
            nibble1=right_byte & 0x0F,
        )

    @classmethod
    def from_word(cls, word: int) -> 'Opcode':
        return cls.from_bytes((word >> 8) & 0xFF, word & 0xFF)

    @property
    def x(self) -> int:
        return self.nibble3

    @property
    def y(self) -> int:
        return self.nibble2

    @property
    def n(self) -> int:
        return self.nibble1

    @property
    def nn(self) -> int:
        return self.right_byte

    @property
    def nnn(self) -> int:
        return self.full & 0x0FFF

    def __str__(self) -> str:
        return f"{self.full:04X}"


class Instruction(Enum):
    """Every instruction the interpreter understands, keyed by its pattern"""
    CLS = "00E0"
    RET = "00EE"
    HALT = "0000"
    SYS = "0NNN"
    JP = "1NNN"
    CALL = "2NNN"
    SE_VX_NN = "3XNN"
    SNE_VX_NN = "4XNN"
    SE_VX_VY = "5XY0"
    LD_VX_NN = "6XNN"
    ADD_VX_NN = "7XNN"
    LD_VX_VY = "8XY0"
    OR = "8XY1"
    AND = "8XY2"
    XOR = "8XY3"
    ADD_VX_VY = "8XY4"
    SUB = "8XY5"
    SHR = "8XY6"
    SUBN = "8XY7"
    SHL = "8XYE"
    SNE_VX_VY = "9XY0"
    LD_I = "ANNN"
    JP_V0 = "BNNN"
    RND = "CXNN"
    DRW = "DXYN"
    SKP = "EX9E"
    SKNP = "EXA1"
    LD_VX_DT = "FX07"
    LD_VX_K = "FX0A"
    LD_DT_VX = "FX15"
    LD_ST_VX = "FX18"
    ADD_I_VX = "FX1E"
    LD_F_VX = "FX29"
    LD_B_VX = "FX33"
    LD_MEM_VX = "FX55"
    LD_VX_MEM = "FX65"


# Groups selected by the top nibble alone
_PRIMARY = {
    0x1: Instruction.JP,
    0x2: Instruction.CALL,
    0x3: Instruction.SE_VX_NN,
    0x4: Instruction.SNE_VX_NN,
    0x5: Instruction.SE_VX_VY,
    0x6: Instruction.LD_VX_NN,
    0x7: Instruction.ADD_VX_NN,
    0x9: Instruction.SNE_VX_VY,
    0xA: Instruction.LD_I,
    0xB: Instruction.JP_V0,
    0xC: Instruction.RND,
    0xD: Instruction.DRW,
}

# 8XYN: keyed by the bottom nibble
_ALU = {
    0x0: Instruction.LD_VX_VY,
    0x1: Instruction.OR,
    0x2: Instruction.AND,
    0x3: Instruction.XOR,
    0x4: Instruction.ADD_VX_VY,
    0x5: Instruction.SUB,
    0x6: Instruction.SHR,
    0x7: Instruction.SUBN,
    0xE: Instruction.SHL,
}

# EXNN: keyed by the bottom byte
_KEYS = {
    0x9E: Instruction.SKP,
    0xA1: Instruction.SKNP,
}

# FXNN: keyed by the bottom byte
_MISC = {
    0x07: Instruction.LD_VX_DT,
    0x0A: Instruction.LD_VX_K,
    0x15: Instruction.LD_DT_VX,
    0x18: Instruction.LD_ST_VX,
    0x1E: Instruction.ADD_I_VX,
    0x29: Instruction.LD_F_VX,
    0x33: Instruction.LD_B_VX,
    0x55: Instruction.LD_MEM_VX,
    0x65: Instruction.LD_VX_MEM,
}


def decode(opcode: Opcode) -> Optional[Instruction]:
    """Map an opcode to its instruction, or None if no pattern matches"""
    group = opcode.nibble4
    if group == 0x0:
        if opcode.full == 0x00E0:
            return Instruction.CLS
        if opcode.full == 0x00EE:
            return Instruction.RET
        if opcode.full == 0x0000:
            return Instruction.HALT
        return Instruction.SYS
    if group == 0x8:
        return _ALU.get(opcode.nibble1)
    if group == 0xE:
        return _KEYS.get(opcode.right_byte)
    if group == 0xF:
        return _MISC.get(opcode.right_byte)
    return _PRIMARY[group]


# ============================================================================
# OUTCOMES
# ============================================================================


class Flow(Enum):
    """How control continues after an instruction"""
    CONTINUE = auto()
    SKIP_NEXT = auto()
    JUMP = auto()
    TERMINATE = auto()
    MALFORMED = auto()
    REQUEST_REDRAW = auto()
    WAITING_FOR_KEY = auto()


@dataclass(frozen=True)
class OpcodeResult:
    """Outcome of one instruction; value is the jump target or the key register"""
    flow: Flow
    value: int = 0


CONTINUE = OpcodeResult(Flow.CONTINUE)
SKIP_NEXT = OpcodeResult(Flow.SKIP_NEXT)
TERMINATE = OpcodeResult(Flow.TERMINATE)
MALFORMED = OpcodeResult(Flow.MALFORMED)
REQUEST_REDRAW = OpcodeResult(Flow.REQUEST_REDRAW)


def jump_to(address: int) -> OpcodeResult:
    return OpcodeResult(Flow.JUMP, address)


def waiting_for_key(register: int) -> OpcodeResult:
    return OpcodeResult(Flow.WAITING_FOR_KEY, register)


def skip_if(condition: bool) -> OpcodeResult:
    return SKIP_NEXT if condition else CONTINUE


class StepResult(Enum):
    """What the driving loop sees after one cycle"""
    WORKING = auto()
    REDRAW_REQUESTED = auto()
    TERMINATED = auto()


# ============================================================================
# TIMERS
# ============================================================================


class TimerCounter:
    """
    8-bit counter shared between the interpreter and the timer thread.

    load, store and compare_exchange are each atomic with respect to the
    others; a decrement that races with a store is dropped.
    """

    def __init__(self, value: int = 0):
        self._value = value & 0xFF
        self._lock = threading.Lock()

    def load(self) -> int:
        with self._lock:
            return self._value

    def store(self, value: int):
        with self._lock:
            self._value = value & 0xFF

    def compare_exchange(self, expected: int, new: int) -> bool:
        """Replace the value with new only if it still equals expected"""
        with self._lock:
            if self._value != expected:
                return False
            self._value = new & 0xFF
            return True

    def decrement(self) -> bool:
        """Count down by one toward zero; False if already zero or overwritten"""
        value = self.load()
        if value == 0:
            return False
        return self.compare_exchange(value, value - 1)


class Chip8Timers:
    """Delay and sound timers, decremented by a free-running daemon thread"""

    def __init__(self, period: float = 0.016):
        self.delay = TimerCounter()
        self.sound = TimerCounter()
        self.period = period
        self._thread: Optional[threading.Thread] = None

    def tick(self):
        """Decrement both timers once"""
        self.delay.decrement()
        self.sound.decrement()

    def start(self):
        """Start the timer thread; it runs for the life of the process"""
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._timer_loop, name="chip8-timers", daemon=True)
        self._thread.start()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _timer_loop(self):
        while True:
            self.tick()
            time.sleep(self.period)


# ============================================================================
# INPUT
# ============================================================================


class KeyState:
    """
    Current and previous-cycle state of the 16 hex keys.

    The host writes `current` before each cycle; the interpreter calls
    latch() once per cycle so that rising edges are measured against the
    cycle immediately before.
    """

    def __init__(self):
        self.current: List[bool] = [False] * NUM_KEYS
        self.previous: List[bool] = [False] * NUM_KEYS

    def update(self, states: Sequence[bool]):
        """Replace the current key vector"""
        if len(states) != NUM_KEYS:
            raise ValueError(f"Expected {NUM_KEYS} key states, got {len(states)}")
        self.current[:] = [bool(s) for s in states]

    def press(self, key: int):
        self.current[key] = True

    def release(self, key: int):
        self.current[key] = False

    def is_down(self, key: int) -> bool:
        return self.current[key]

    def latch(self):
        """previous := current"""
        self.previous[:] = self.current

    def rising_edge(self) -> Optional[int]:
        """Lowest key that is down now but was up last cycle"""
        for key in range(NUM_KEYS):
            if self.current[key] and not self.previous[key]:
                return key
        return None


# ============================================================================
# DISPLAY
# ============================================================================


class FrameBuffer:
    """64x32 monochrome view over an externally owned RGBA8 buffer"""

    def __init__(self, buffer):
        if len(buffer) != FRAME_SIZE:
            raise ValueError(f"Frame buffer must be {FRAME_SIZE} bytes, got {len(buffer)}")
        self.buffer = buffer

    @staticmethod
    def offset(x: int, y: int) -> int:
        return ((x % DISPLAY_WIDTH) + (y % DISPLAY_HEIGHT) * DISPLAY_WIDTH) * BYTES_PER_PIXEL

    def clear(self):
        """Set every cell to the unset colour"""
        self.buffer[:] = UNSET_COLOUR * (DISPLAY_WIDTH * DISPLAY_HEIGHT)

    def is_set(self, x: int, y: int) -> bool:
        start = self.offset(x, y)
        return bytes(self.buffer[start:start + BYTES_PER_PIXEL]) == SET_COLOUR

    def blit(self, sprite: bytes, x_origin: int, y_origin: int) -> bool:
        """
        XOR an 8-pixel wide sprite onto the frame, one byte per row.

        The most significant bit of each byte lands on the leftmost column.
        Rows and columns wrap around the edges independently. Returns True
        if any set pixel was turned off.
        """
        collision = False
        for row, byte in enumerate(sprite):
            for col in range(8):
                if not byte & (0x80 >> col):
                    continue
                start = self.offset(x_origin + col, y_origin + row)
                end = start + BYTES_PER_PIXEL
                if bytes(self.buffer[start:end]) == SET_COLOUR:
                    self.buffer[start:end] = UNSET_COLOUR
                    collision = True
                else:
                    self.buffer[start:end] = SET_COLOUR
        return collision


# ============================================================================
# CHIP-8 CPU
# ============================================================================


class Chip8CPU:
    """
    CHIP-8 interpreter state and instruction dispatcher.

    The program counter moves only through the OpcodeResult each
    instruction returns. Pass frame_buffer=None to run headless and
    start_timers=False to drive the timers by hand with timers.tick().
    """

    def __init__(
        self,
        config: Optional[EmulatorConfig] = None,
        frame_buffer=None,
        rng: Optional[random.Random] = None,
        start_timers: bool = True,
    ):
        self.config = config or EmulatorConfig()
        cfg = self.config

        self.memory = bytearray(cfg.memory_size)
        self.memory[:len(FONTSET)] = FONTSET

        # V0-VF, VF doubles as the flag register
        self.v = [0] * NUM_REGISTERS
        self.i = 0
        self.pc = cfg.program_start
        self.stack: List[int] = []

        self.timers = Chip8Timers(cfg.timer_period_ms / 1000)
        self.keys = KeyState()
        self.frame = FrameBuffer(frame_buffer) if frame_buffer is not None else None
        self.rng = rng or random.Random()

        self.end_loop_reached = False
        self.waiting_for_key = False
        self.key_register = 0

        self._handlers: Dict[Instruction, Callable[[Opcode], OpcodeResult]] = {
            Instruction.CLS: self._cls,
            Instruction.RET: self._ret,
            Instruction.HALT: self._halt,
            Instruction.SYS: self._sys,
            Instruction.JP: self._jp,
            Instruction.CALL: self._call,
            Instruction.SE_VX_NN: self._se_vx_nn,
            Instruction.SNE_VX_NN: self._sne_vx_nn,
            Instruction.SE_VX_VY: self._se_vx_vy,
            Instruction.LD_VX_NN: self._ld_vx_nn,
            Instruction.ADD_VX_NN: self._add_vx_nn,
            Instruction.LD_VX_VY: self._ld_vx_vy,
            Instruction.OR: self._or,
            Instruction.AND: self._and,
            Instruction.XOR: self._xor,
            Instruction.ADD_VX_VY: self._add_vx_vy,
            Instruction.SUB: self._sub,
            Instruction.SHR: self._shr,
            Instruction.SUBN: self._subn,
            Instruction.SHL: self._shl,
            Instruction.SNE_VX_VY: self._sne_vx_vy,
            Instruction.LD_I: self._ld_i,
            Instruction.JP_V0: self._jp_v0,
            Instruction.RND: self._rnd,
            Instruction.DRW: self._drw,
            Instruction.SKP: self._skp,
            Instruction.SKNP: self._sknp,
            Instruction.LD_VX_DT: self._ld_vx_dt,
            Instruction.LD_VX_K: self._ld_vx_k,
            Instruction.LD_DT_VX: self._ld_dt_vx,
            Instruction.LD_ST_VX: self._ld_st_vx,
            Instruction.ADD_I_VX: self._add_i_vx,
            Instruction.LD_F_VX: self._ld_f_vx,
            Instruction.LD_B_VX: self._ld_b_vx,
            Instruction.LD_MEM_VX: self._ld_mem_vx,
            Instruction.LD_VX_MEM: self._ld_vx_mem,
        }

        if self.frame is not None:
            self.frame.clear()
        if start_timers:
            self.timers.start()

    # ==================== PROGRAM LOADING ====================

    def load_program(self, path) -> int:
        """Load a ROM file at the program start address; returns its size"""
        try:
            with open(path, 'rb') as f:
                data = f.read()
        except OSError as e:
            raise RomLoadError(f"Failed to read ROM {path}: {e}") from e
        return self.load_program_bytes(data)

    def load_program_bytes(self, data: bytes) -> int:
        """Copy raw ROM bytes into memory at the program start address"""
        capacity = self.config.program_capacity
        if len(data) > capacity:
            raise RomLoadError(f"ROM too large: {len(data)} bytes (max {capacity})")
        start = self.config.program_start
        self.memory[start:start + len(data)] = data
        logger.info("Loaded %d byte program at 0x%03X", len(data), start)
        return len(data)

    # ==================== TIMER ACCESS ====================

    @property
    def delay_timer(self) -> int:
        return self.timers.delay.load()

    @property
    def sound_timer(self) -> int:
        return self.timers.sound.load()

    # ==================== EXECUTION ====================

    def run(self, max_cycles: int) -> int:
        """Execute until the program halts or max_cycles have run"""
        for cycle in range(max_cycles):
            if self.execute_next_instruction() is StepResult.TERMINATED:
                return cycle + 1
        return max_cycles

    def execute_next_instruction(self) -> StepResult:
        """Fetch the big-endian word at PC and execute it"""
        opcode = Opcode.from_bytes(self.memory[self.pc], self.memory[self.pc + 1])
        return self.execute_instruction(opcode)

    def execute_instruction(self, opcode: Union[Opcode, int]) -> StepResult:
        """Execute one opcode and move the program counter accordingly"""
        if isinstance(opcode, int):
            opcode = Opcode.from_word(opcode)

        if self.waiting_for_key:
            if self._check_for_pressed_keys(self.key_register):
                # FX0A is complete; step past it so it does not fire twice
                self.waiting_for_key = False
                self._advance(2)
            self.keys.latch()
            return StepResult.WORKING

        instruction = decode(opcode)
        result = self.dispatch(instruction, opcode)
        flow = result.flow

        if flow is Flow.TERMINATE:
            logger.info("Terminating")
            return StepResult.TERMINATED
        if flow is Flow.MALFORMED:
            if instruction is Instruction.RET:
                raise StackUnderflowError(opcode, "Return with an empty call stack")
            raise InvalidOpcodeError(opcode)

        if flow is Flow.JUMP:
            self._jump(result.value)
        elif flow is Flow.SKIP_NEXT:
            self._advance(4)
        elif flow is Flow.CONTINUE or flow is Flow.REQUEST_REDRAW:
            self._advance(2)
        elif flow is Flow.WAITING_FOR_KEY:
            self.waiting_for_key = True
            self.key_register = result.value

        self.keys.latch()
        if flow is Flow.REQUEST_REDRAW:
            return StepResult.REDRAW_REQUESTED
        return StepResult.WORKING

    def process_opcode(self, opcode: Union[Opcode, int]) -> OpcodeResult:
        """Apply one opcode's effect without moving the program counter"""
        if isinstance(opcode, int):
            opcode = Opcode.from_word(opcode)
        return self.dispatch(decode(opcode), opcode)

    def dispatch(self, instruction: Optional[Instruction], opcode: Opcode) -> OpcodeResult:
        if instruction is None:
            return MALFORMED
        return self._handlers[instruction](opcode)

    def _advance(self, step: int):
        self._jump(self.pc + step)

    def _jump(self, target: int):
        if target >= len(self.memory) - 1:
            raise AddressBoundsError(
                f"Program counter 0x{target:04X} outside memory (from 0x{self.pc:04X})"
            )
        self.pc = target

    def _check_range(self, start: int, length: int):
        if start + length > len(self.memory):
            raise AddressBoundsError(
                f"Access to 0x{start:04X}..0x{start + length - 1:04X} outside memory"
            )

    def _check_for_pressed_keys(self, register: int) -> bool:
        key = self.keys.rising_edge()
        if key is None:
            return False
        self.v[register] = key
        return True

    # ==================== 0x0___ ====================

    def _cls(self, op: Opcode) -> OpcodeResult:
        """00E0: Clear the display"""
        if self.frame is not None:
            self.frame.clear()
        return REQUEST_REDRAW

    def _ret(self, op: Opcode) -> OpcodeResult:
        """00EE: Return from subroutine"""
        return_address = self.stack.pop() if self.stack else 0
        if not return_address:
            logger.warning("Could not return from subroutine, no return pointers")
            return MALFORMED
        return jump_to(return_address)

    def _halt(self, op: Opcode) -> OpcodeResult:
        """0000: End of program"""
        return TERMINATE

    def _sys(self, op: Opcode) -> OpcodeResult:
        """0NNN: Machine language subroutine, not supported"""
        return CONTINUE

    # ==================== FLOW CONTROL ====================

    def _jp(self, op: Opcode) -> OpcodeResult:
        """1NNN: Jump to NNN"""
        if op.nnn == self.pc and not self.end_loop_reached:
            self.end_loop_reached = True
            logger.info("End of program loop reached at 0x%03X", self.pc)
        return jump_to(op.nnn)

    def _call(self, op: Opcode) -> OpcodeResult:
        """2NNN: Call subroutine at NNN"""
        # Return past the call so it does not run again
        self.stack.append(self.pc + 2)
        return jump_to(op.nnn)

    def _se_vx_nn(self, op: Opcode) -> OpcodeResult:
        """3XNN: Skip if VX == NN"""
        return skip_if(self.v[op.x] == op.nn)

    def _sne_vx_nn(self, op: Opcode) -> OpcodeResult:
        """4XNN: Skip if VX != NN"""
        return skip_if(self.v[op.x] != op.nn)

    def _se_vx_vy(self, op: Opcode) -> OpcodeResult:
        """5XY0: Skip if VX == VY"""
        return skip_if(self.v[op.x] == self.v[op.y])

    def _sne_vx_vy(self, op: Opcode) -> OpcodeResult:
        """9XY0: Skip if VX != VY"""
        return skip_if(self.v[op.x] != self.v[op.y])

    def _jp_v0(self, op: Opcode) -> OpcodeResult:
        """BNNN: Jump to NNN + V0"""
        return jump_to(op.nnn + self.v[0])

    # ==================== REGISTERS ====================

    def _ld_vx_nn(self, op: Opcode) -> OpcodeResult:
        """6XNN: VX = NN"""
        self.v[op.x] = op.nn
        return CONTINUE

    def _add_vx_nn(self, op: Opcode) -> OpcodeResult:
        """7XNN: VX += NN (no carry flag)"""
        self.v[op.x] = (self.v[op.x] + op.nn) & 0xFF
        return CONTINUE

    def _ld_vx_vy(self, op: Opcode) -> OpcodeResult:
        """8XY0: VX = VY"""
        self.v[op.x] = self.v[op.y]
        return CONTINUE

    def _or(self, op: Opcode) -> OpcodeResult:
        """8XY1: VX |= VY"""
        self.v[op.x] |= self.v[op.y]
        return CONTINUE

    def _and(self, op: Opcode) -> OpcodeResult:
        """8XY2: VX &= VY"""
        self.v[op.x] &= self.v[op.y]
        return CONTINUE

    def _xor(self, op: Opcode) -> OpcodeResult:
        """8XY3: VX ^= VY"""
        self.v[op.x] ^= self.v[op.y]
        return CONTINUE

    def _add_vx_vy(self, op: Opcode) -> OpcodeResult:
        """8XY4: VX += VY, VF = carry"""
        result = self.v[op.x] + self.v[op.y]
        self.v[op.x] = result & 0xFF
        self.v[FLAG_REGISTER] = 1 if result > 0xFF else 0
        return CONTINUE

    def _sub(self, op: Opcode) -> OpcodeResult:
        """8XY5: VX -= VY, VF = NOT borrow"""
        no_borrow = 1 if self.v[op.x] >= self.v[op.y] else 0
        self.v[op.x] = (self.v[op.x] - self.v[op.y]) & 0xFF
        self.v[FLAG_REGISTER] = no_borrow
        return CONTINUE

    def _shr(self, op: Opcode) -> OpcodeResult:
        """8XY6: VX >>= 1, VF = old LSB"""
        lsb = self.v[op.x] & 0x01
        self.v[op.x] >>= 1
        self.v[FLAG_REGISTER] = lsb
        return CONTINUE

    def _subn(self, op: Opcode) -> OpcodeResult:
        """8XY7: VX = VY - VX, VF = NOT borrow"""
        no_borrow = 1 if self.v[op.y] >= self.v[op.x] else 0
        self.v[op.x] = (self.v[op.y] - self.v[op.x]) & 0xFF
        self.v[FLAG_REGISTER] = no_borrow
        return CONTINUE

    def _shl(self, op: Opcode) -> OpcodeResult:
        """8XYE: VX <<= 1, VF = old MSB"""
        msb = self.v[op.x] >> 7
        self.v[op.x] = (self.v[op.x] << 1) & 0xFF
        self.v[FLAG_REGISTER] = msb
        return CONTINUE

    def _rnd(self, op: Opcode) -> OpcodeResult:
        """CXNN: VX = random byte & NN"""
        self.v[op.x] = self.rng.randint(0, 0xFF) & op.nn
        return CONTINUE

    # ==================== DISPLAY ====================

    def _drw(self, op: Opcode) -> OpcodeResult:
        """DXYN: Draw N-byte sprite from I at (VX, VY), VF = collision"""
        if self.frame is None:
            return REQUEST_REDRAW
        x_origin = self.v[op.x]
        y_origin = self.v[op.y]
        self._check_range(self.i, op.n)
        sprite = bytes(self.memory[self.i:self.i + op.n])
        collision = self.frame.blit(sprite, x_origin, y_origin)
        self.v[FLAG_REGISTER] = 1 if collision else 0
        return REQUEST_REDRAW

    # ==================== INPUT ====================

    def _skp(self, op: Opcode) -> OpcodeResult:
        """EX9E: Skip if key VX is down"""
        if self.v[op.x] >= NUM_KEYS:
            return MALFORMED
        return skip_if(self.keys.is_down(self.v[op.x]))

    def _sknp(self, op: Opcode) -> OpcodeResult:
        """EXA1: Skip if key VX is not down"""
        if self.v[op.x] >= NUM_KEYS:
            return MALFORMED
        return skip_if(not self.keys.is_down(self.v[op.x]))

    def _ld_vx_k(self, op: Opcode) -> OpcodeResult:
        """FX0A: Wait for a key press, store it in VX"""
        if self._check_for_pressed_keys(op.x):
            return CONTINUE
        logger.debug("Waiting for key into V%X", op.x)
        return waiting_for_key(op.x)

    # ==================== TIMERS ====================

    def _ld_vx_dt(self, op: Opcode) -> OpcodeResult:
        """FX07: VX = delay timer"""
        self.v[op.x] = self.timers.delay.load()
        return CONTINUE

    def _ld_dt_vx(self, op: Opcode) -> OpcodeResult:
        """FX15: delay timer = VX"""
        self.timers.delay.store(self.v[op.x])
        return CONTINUE

    def _ld_st_vx(self, op: Opcode) -> OpcodeResult:
        """FX18: sound timer = VX"""
        self.timers.sound.store(self.v[op.x])
        return CONTINUE

    # ==================== ADDRESS REGISTER & MEMORY ====================

    def _ld_i(self, op: Opcode) -> OpcodeResult:
        """ANNN: I = NNN"""
        self.i = op.nnn
        return CONTINUE

    def _add_i_vx(self, op: Opcode) -> OpcodeResult:
        """FX1E: I += VX"""
        self.i = (self.i + self.v[op.x]) % len(self.memory)
        return CONTINUE

    def _ld_f_vx(self, op: Opcode) -> OpcodeResult:
        """FX29: I = address of the built-in sprite for digit VX"""
        # Digits are stored in order from address 0, five bytes each
        self.i = self.v[op.x] * SPRITE_BYTES_PER_DIGIT
        return CONTINUE

    def _ld_b_vx(self, op: Opcode) -> OpcodeResult:
        """FX33: Store BCD of VX at I, I+1, I+2"""
        value = self.v[op.x]
        self._check_range(self.i, 3)
        self.memory[self.i] = value // 100
        self.memory[self.i + 1] = (value // 10) % 10
        self.memory[self.i + 2] = value % 10
        return CONTINUE

    def _ld_mem_vx(self, op: Opcode) -> OpcodeResult:
        """FX55: Store V0 through VX at I"""
        self._check_range(self.i, op.x + 1)
        for idx in range(op.x + 1):
            self.memory[self.i + idx] = self.v[idx]
        if self.config.increment_i_on_load_store:
            self.i = (self.i + op.x + 1) & 0xFFFF
        return CONTINUE

    def _ld_vx_mem(self, op: Opcode) -> OpcodeResult:
        """FX65: Load V0 through VX from I"""
        self._check_range(self.i, op.x + 1)
        for idx in range(op.x + 1):
            self.v[idx] = self.memory[self.i + idx]
        if self.config.increment_i_on_load_store:
            self.i = (self.i + op.x + 1) & 0xFFFF
        return CONTINUE
