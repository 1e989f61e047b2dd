"""
╔═══════════════════════════════════════════════════════════════════════════════╗
║                         chip8vm - CHIP-8 interpreter core                     ║
╚═══════════════════════════════════════════════════════════════════════════════╝

Instruction decode, execution and the two-clock run loop.

- ``decode`` turns two program bytes into an ``Instruction`` value
- ``Chip8CPU.step`` fetches, decodes and executes one instruction
- ``Scheduler`` drives ``step`` at the instruction clock and ages keys and
  timers, polls input and flushes the display at the frame clock
"""

import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from chip8io import FrameBuffer, Key, KeyInput

log = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════
# CONSTANTS & CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

MEMORY_SIZE = 4096                      # 4KB RAM
PROGRAM_START = 0x200                   # Programs load at 0x200
MAX_PROGRAM_SIZE = MEMORY_SIZE - PROGRAM_START
STACK_SIZE = 16                         # 16-level stack
NUM_REGISTERS = 16                      # V0-VF registers
FONT_BYTES = 5                          # Bytes per hex digit glyph

# CPU Timing
CLOCK_HZ = 540                          # Instructions per second
FRAME_HZ = 60                           # Display refresh, key and timer rate
MAX_LAG = 0.25                          # Seconds behind before the clocks resync

DEFAULT_QUIRKS = {
    'shift_vx': True,        # 8XY6/8XYE shift VX in place, VY ignored
    'load_store_inc': False, # FX55/FX65 leave I unchanged
    'jump_v0': True,         # BNNN jumps to NNN + V0
    'vf_reset': False,       # 8XY1/8XY2/8XY3 leave VF alone
}

# CHIP-8 Font (4x5 pixels, stored as 5 bytes each)
FONTSET = [
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
]


# ═══════════════════════════════════════════════════════════════════════════════
# ERRORS
# ═══════════════════════════════════════════════════════════════════════════════

class Chip8Error(Exception):
    """Base class for every fatal emulator error"""


class LoadError(Chip8Error):
    """ROM could not be read or does not fit in memory"""


class CPUError(Chip8Error):
    """Fatal interpreter error, tied to the instruction that raised it"""

    def __init__(self, reason: str, pc: Optional[int] = None,
                 b0: Optional[int] = None, b1: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.pc = pc
        self.b0 = b0
        self.b1 = b1

    def __str__(self):
        if self.pc is None:
            return self.reason
        where = f"{self.reason} at ${self.pc:03X}"
        if self.b0 is None:
            return where
        return f"{where} (op {self.b0:02X} {self.b1:02X})"


class DecodeError(CPUError):
    """Bit pattern is not a known instruction"""

    def __init__(self, pc: Optional[int], b0: int, b1: int):
        super().__init__("unknown instruction", pc, b0, b1)


class StackOverflow(CPUError):
    pass


class StackUnderflow(CPUError):
    pass


class MemoryAccessError(CPUError):
    """Access outside the 4KB address space"""


# ═══════════════════════════════════════════════════════════════════════════════
# INSTRUCTION DECODE
# ═══════════════════════════════════════════════════════════════════════════════

class Op(Enum):
    CLS = "00E0"
    RET = "00EE"
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


# First nibble -> op, for families with a single member
_SINGLE = {
    0x1: Op.JP, 0x2: Op.CALL, 0x3: Op.SE_VX_NN, 0x4: Op.SNE_VX_NN,
    0x6: Op.LD_VX_NN, 0x7: Op.ADD_VX_NN, 0xA: Op.LD_I, 0xB: Op.JP_V0,
    0xC: Op.RND, 0xD: Op.DRW,
}
_SYSTEM = {0xE0: Op.CLS, 0xEE: Op.RET}
_ALU = {
    0x0: Op.LD_VX_VY, 0x1: Op.OR, 0x2: Op.AND, 0x3: Op.XOR, 0x4: Op.ADD_VX_VY,
    0x5: Op.SUB, 0x6: Op.SHR, 0x7: Op.SUBN, 0xE: Op.SHL,
}
_KEYS = {0x9E: Op.SKP, 0xA1: Op.SKNP}
_MISC = {
    0x07: Op.LD_VX_DT, 0x0A: Op.LD_VX_K, 0x15: Op.LD_DT_VX, 0x18: Op.LD_ST_VX,
    0x1E: Op.ADD_I_VX, 0x29: Op.LD_F_VX, 0x33: Op.LD_B_VX, 0x55: Op.LD_MEM_VX,
    0x65: Op.LD_VX_MEM,
}


@dataclass(frozen=True)
class Instruction:
    """One decoded instruction with every operand field extracted"""
    op: Op
    b0: int
    b1: int
    x: int
    y: int
    n: int
    nn: int
    nnn: int

    @property
    def opcode(self) -> int:
        return (self.b0 << 8) | self.b1


def decode(b0: int, b1: int, pc: Optional[int] = None) -> Instruction:
    """
    Decode two program bytes.

    Raises:
        DecodeError: the pair is not in the instruction set
    """
    family = b0 >> 4
    x = b0 & 0x0F
    y = b1 >> 4
    n = b1 & 0x0F

    if family in _SINGLE:
        op = _SINGLE[family]
    elif family == 0x0:
        op = _SYSTEM.get(b1) if x == 0 else None
    elif family == 0x5:
        op = Op.SE_VX_VY if n == 0 else None
    elif family == 0x8:
        op = _ALU.get(n)
    elif family == 0x9:
        op = Op.SNE_VX_VY if n == 0 else None
    elif family == 0xE:
        op = _KEYS.get(b1)
    else:
        op = _MISC.get(b1)

    if op is None:
        raise DecodeError(pc, b0, b1)
    return Instruction(op, b0, b1, x, y, n, b1, (x << 8) | b1)


# ═══════════════════════════════════════════════════════════════════════════════
# CHIP-8 CPU CORE
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class CPUState:
    """CHIP-8 CPU state container"""
    # Memory
    memory: bytearray = field(default_factory=lambda: bytearray(MEMORY_SIZE))

    # Registers
    V: List[int] = field(default_factory=lambda: [0] * NUM_REGISTERS)  # V0-VF
    I: int = 0              # Index register (16-bit)
    PC: int = PROGRAM_START # Program counter
    SP: int = 0             # Stack pointer

    # Stack
    stack: List[int] = field(default_factory=lambda: [0] * STACK_SIZE)

    # Timers (60Hz)
    delay_timer: int = 0
    sound_timer: int = 0


class Chip8CPU:
    """CHIP-8 interpreter wired to a display and a keyboard"""

    def __init__(self, display=None, keyboard=None,
                 quirks: Optional[Dict[str, bool]] = None,
                 rng: Optional[random.Random] = None):
        self.display = display if display is not None else FrameBuffer()
        self.keyboard = keyboard if keyboard is not None else KeyInput()
        self.quirks = dict(DEFAULT_QUIRKS)
        if quirks:
            self.quirks.update(quirks)
        self.rng = rng or random.Random()
        self.program_size = 0
        self.state = CPUState()
        self._load_fontset()

    def _load_fontset(self):
        """Load built-in font sprites to memory"""
        self.state.memory[:len(FONTSET)] = bytes(FONTSET)

    def reset(self):
        """Reset CPU to initial state"""
        self.state = CPUState()
        self._load_fontset()
        self.program_size = 0

    def load_program(self, data: bytes):
        """Reset, then copy a raw program image to 0x200"""
        if len(data) > MAX_PROGRAM_SIZE:
            raise LoadError(
                f"program is {len(data)} bytes, at most {MAX_PROGRAM_SIZE} fit")
        self.reset()
        self.state.memory[PROGRAM_START:PROGRAM_START + len(data)] = data
        self.program_size = len(data)
        log.info("loaded %d byte program at $%03X", len(data), PROGRAM_START)

    def _span(self, start: int, count: int) -> int:
        if start < 0 or start + count > MEMORY_SIZE:
            raise MemoryAccessError(
                f"access to ${start:04X}+{count} outside memory")
        return start

    def fetch(self) -> Tuple[int, int]:
        """Fetch the next instruction's two bytes and advance PC"""
        s = self.state
        pc = self._span(s.PC, 2)
        s.PC += 2
        return s.memory[pc], s.memory[pc + 1]

    def step(self):
        """Execute one instruction.

        Raises:
            CPUError: decode or execution failed. PC is left on the failing
                instruction.
        """
        pc = self.state.PC
        b0 = b1 = None
        try:
            b0, b1 = self.fetch()
            ins = decode(b0, b1, pc)
            self.execute(ins)
        except CPUError as err:
            if err.pc is None:
                err.pc, err.b0, err.b1 = pc, b0, b1
            self.state.PC = pc
            raise

        if log.isEnabledFor(logging.DEBUG):
            s = self.state
            log.debug("op=%-9s %04X pc=%03x next pc=%03x i=%03x v=%s",
                      ins.op.name, ins.opcode, pc, s.PC, s.I,
                      " ".join(f"{v:02x}" for v in s.V))

    def execute(self, ins: Instruction):
        """Apply one decoded instruction; PC already points past it"""
        s = self.state
        V = s.V
        x, y = ins.x, ins.y
        op = ins.op

        # ─── 0x0XXX ───
        if op is Op.CLS:
            self.display.clear()

        elif op is Op.RET:
            if s.SP == 0:
                raise StackUnderflow("return with empty call stack")
            s.SP -= 1
            s.PC = s.stack[s.SP]

        # ─── 1NNN / 2NNN / BNNN: jumps ───
        elif op is Op.JP:
            s.PC = ins.nnn

        elif op is Op.CALL:
            if s.SP >= STACK_SIZE:
                raise StackOverflow(f"call stack full ({STACK_SIZE} entries)")
            s.stack[s.SP] = s.PC
            s.SP += 1
            s.PC = ins.nnn

        elif op is Op.JP_V0:
            if self.quirks['jump_v0']:
                s.PC = ins.nnn + V[0]
            else:
                # SCHIP: BXNN jumps to XNN + VX
                s.PC = ins.nnn + V[x]

        # ─── Skips ───
        elif op is Op.SE_VX_NN:
            if V[x] == ins.nn:
                s.PC += 2

        elif op is Op.SNE_VX_NN:
            if V[x] != ins.nn:
                s.PC += 2

        elif op is Op.SE_VX_VY:
            if V[x] == V[y]:
                s.PC += 2

        elif op is Op.SNE_VX_VY:
            if V[x] != V[y]:
                s.PC += 2

        elif op is Op.SKP:
            if self.keyboard.is_pressed(V[x] & 0xF):
                s.PC += 2

        elif op is Op.SKNP:
            if not self.keyboard.is_pressed(V[x] & 0xF):
                s.PC += 2

        # ─── 6XNN / 7XNN ───
        elif op is Op.LD_VX_NN:
            V[x] = ins.nn

        elif op is Op.ADD_VX_NN:
            V[x] = (V[x] + ins.nn) & 0xFF

        # ─── 8XYZ: ALU operations, VF written last ───
        elif op is Op.LD_VX_VY:
            V[x] = V[y]

        elif op in (Op.OR, Op.AND, Op.XOR):
            if op is Op.OR:
                V[x] |= V[y]
            elif op is Op.AND:
                V[x] &= V[y]
            else:
                V[x] ^= V[y]
            if self.quirks['vf_reset']:
                V[0xF] = 0

        elif op is Op.ADD_VX_VY:
            result = V[x] + V[y]
            V[x] = result & 0xFF
            V[0xF] = 1 if result > 0xFF else 0

        elif op is Op.SUB:
            vx, vy = V[x], V[y]
            V[x] = (vx - vy) & 0xFF
            V[0xF] = 1 if vx > vy else 0

        elif op is Op.SUBN:
            vx, vy = V[x], V[y]
            V[x] = (vy - vx) & 0xFF
            V[0xF] = 1 if vy > vx else 0

        elif op is Op.SHR:
            src = V[x] if self.quirks['shift_vx'] else V[y]
            V[x] = src >> 1
            V[0xF] = src & 0x1

        elif op is Op.SHL:
            src = V[x] if self.quirks['shift_vx'] else V[y]
            V[x] = (src << 1) & 0xFF
            V[0xF] = (src >> 7) & 0x1

        # ─── ANNN / CXNN / DXYN ───
        elif op is Op.LD_I:
            s.I = ins.nnn

        elif op is Op.RND:
            V[x] = self.rng.randint(0, 255) & ins.nn

        elif op is Op.DRW:
            start = self._span(s.I, ins.n)
            sprite = bytes(s.memory[start:start + ins.n])
            collided = self.display.draw(V[x], V[y], sprite)
            V[0xF] = 1 if collided else 0

        # ─── FX07-FX65: Misc operations ───
        elif op is Op.LD_VX_DT:
            V[x] = s.delay_timer

        elif op is Op.LD_VX_K:
            key = self.keyboard.pressed_button()
            if key is None or not key.is_hex:
                # No progress: run this instruction again next tick
                s.PC -= 2
            else:
                V[x] = int(key)

        elif op is Op.LD_DT_VX:
            s.delay_timer = V[x]

        elif op is Op.LD_ST_VX:
            s.sound_timer = V[x]

        elif op is Op.ADD_I_VX:
            s.I = (s.I + V[x]) & 0xFFFF

        elif op is Op.LD_F_VX:
            s.I = V[x] * FONT_BYTES

        elif op is Op.LD_B_VX:
            start = self._span(s.I, 3)
            value = V[x]
            s.memory[start] = value // 100
            s.memory[start + 1] = (value // 10) % 10
            s.memory[start + 2] = value % 10

        elif op is Op.LD_MEM_VX:
            start = self._span(s.I, x + 1)
            s.memory[start:start + x + 1] = bytes(V[:x + 1])
            if self.quirks['load_store_inc']:
                s.I += x + 1

        elif op is Op.LD_VX_MEM:
            start = self._span(s.I, x + 1)
            V[:x + 1] = s.memory[start:start + x + 1]
            if self.quirks['load_store_inc']:
                s.I += x + 1

        else:
            raise DecodeError(None, ins.b0, ins.b1)

    def update_timers(self):
        """Decrement timers (call at 60Hz)"""
        if self.state.delay_timer > 0:
            self.state.delay_timer -= 1

        if self.state.sound_timer > 0:
            self.state.sound_timer -= 1


def read_rom(path) -> bytes:
    """Read a raw ROM image, raising LoadError instead of OSError"""
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise LoadError(f"unable to load CHIP-8 file {path}: {e}") from e


def load_rom(path, display=None, keyboard=None, **kwargs) -> Chip8CPU:
    """Read a ROM file and return a CPU ready to run it.

    Extra keyword arguments go to ``Chip8CPU``.

    Raises:
        LoadError: the file is unreadable or too large
    """
    cpu = Chip8CPU(display=display, keyboard=keyboard, **kwargs)
    cpu.load_program(read_rom(path))
    return cpu


# ═══════════════════════════════════════════════════════════════════════════════
# RUN LOOP
# ═══════════════════════════════════════════════════════════════════════════════

class Scheduler:
    """Runs a CPU on two clocks until the exit key or a fatal error.

    The instruction clock calls ``cpu.step()`` and then checks the exit key.
    The frame clock ages key presses and timers, calls ``poll_input`` and
    flushes the display. Both run on this thread, one callback at a time.
    Deadlines advance by whole periods so the clocks do not drift.
    """

    def __init__(self, cpu: Chip8CPU, clock_hz: int = CLOCK_HZ,
                 frame_hz: int = FRAME_HZ,
                 poll_input: Optional[Callable[[], None]] = None,
                 clock: Callable[[], float] = time.perf_counter,
                 sleep: Callable[[float], None] = time.sleep):
        self.cpu = cpu
        self.step_period = 1.0 / clock_hz
        self.frame_period = 1.0 / frame_hz
        self.poll_input = poll_input
        self.clock = clock
        self.sleep = sleep
        self.running = False
        self.steps = 0
        self.frames = 0

    def frame(self):
        """Frame clock tick"""
        self.cpu.keyboard.tick()
        self.cpu.update_timers()
        if self.poll_input is not None:
            self.poll_input()
        self.cpu.display.flush()
        self.frames += 1

    def stop(self):
        self.running = False

    def run(self) -> int:
        """Run until the exit key is seen or ``stop()`` is called.

        Returns:
            Number of instructions executed

        Raises:
            CPUError: the program hit a fatal instruction
        """
        keyboard = self.cpu.keyboard
        next_step = next_frame = self.clock()
        self.running = True
        log.info("running at %.0f Hz, %.0f frames/s",
                 1 / self.step_period, 1 / self.frame_period)

        while self.running:
            now = self.clock()
            if now - min(next_step, next_frame) > MAX_LAG:
                log.debug("%.3fs behind, resyncing clocks",
                          now - min(next_step, next_frame))
                next_step = next_frame = now

            if now >= next_frame:
                self.frame()
                next_frame += self.frame_period
            elif now >= next_step:
                self.cpu.step()
                self.steps += 1
                next_step += self.step_period
                if keyboard.is_pressed(Key.EXIT):
                    log.info("exit key pressed after %d instructions", self.steps)
                    break
            else:
                self.sleep(min(next_step, next_frame) - now)

        self.running = False
        return self.steps
