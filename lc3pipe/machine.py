"""Architectural and pipeline state of the simulated machine.

Every method takes ``lock`` so the state can be shared by stage threads.
Plain attributes (``pc``, ``psr``, buffers, ...) may be read or replaced
directly; hold ``lock`` when doing so from concurrent code.
"""

from __future__ import annotations

import threading
from array import array
from dataclasses import dataclass
from enum import Enum

from .bitops import bit_range, to_int16, to_uint16
from .isa import Opcode

ADDRESS_SPACE = 1 << 16
NUM_REGISTERS = 8
NUM_PIPELINE_STAGES = 5
USER_START = 0x3000
HALT_VECTOR = 0x25
HALT_HANDLER = 0x1000
HALT_HANDLER_LENGTH = 5

CC_NEGATIVE = 4
CC_ZERO = 2
CC_POSITIVE = 1


class MachineError(Exception):
    """Raised when the machine is asked to do something it cannot do."""


class Stage(Enum):
    """The five pipeline stages."""

    IF = "if"
    ID = "id"
    EX = "ex"
    MEM = "mem"
    WB = "wb"


# Stages with an input latch that can receive a bubble or a stay signal.
_LATCHED = (Stage.ID, Stage.EX, Stage.MEM, Stage.WB)


@dataclass
class Register:
    """A register with a count of in-flight instructions that will write it."""

    busy: int = 0
    data: int = 0


@dataclass
class FetchBuffer:
    """Latch between IF and ID."""

    nop: bool = False
    pc: int = 0
    ir: int = 0


@dataclass
class DecodeBuffer:
    """Latch between ID and EX."""

    nop: bool = False
    pc: int = 0
    opcode: int = 0
    reg: int = 0
    operand1: int = 0
    operand2: int = 0
    cc: int = 0
    bit11: bool = False


@dataclass
class ExecuteBuffer:
    """Latch between EX and MEM."""

    nop: bool = False
    pc: int = 0
    opcode: int = 0
    result: int = 0
    reg: int = 0
    indirect_counter: int = 0


@dataclass
class MemoryBuffer:
    """Latch between MEM and WB."""

    nop: bool = False
    pc: int = 0
    opcode: int = 0
    result: int = 0
    reg: int = 0


def _latched(stage: Stage) -> Stage:
    if stage not in _LATCHED:
        raise ValueError(f"stage {stage.name} has no input latch")
    return stage


class Machine:
    """Memory, registers, control state and pipeline latches."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.barrier = threading.Barrier(NUM_PIPELINE_STAGES)

        self.memory = array("h", [0]) * ADDRESS_SPACE
        self.registers = [Register() for _ in range(NUM_REGISTERS)]
        self.pc = USER_START
        self.cc = Register(data=CC_POSITIVE)
        self.psr = to_int16(1 << 15)
        self.saved_ssp = 0
        self.saved_usp = 0
        self.running = True

        self.fbuf = FetchBuffer(nop=True)
        self.dbuf = DecodeBuffer(nop=True)
        self.ebuf = ExecuteBuffer(nop=True)
        self.mbuf = MemoryBuffer(nop=True)

        self.pc_override = 0
        self.pc_override_signal = False

        self._bubbles = dict.fromkeys(_LATCHED, False)
        self._stays = dict.fromkeys(_LATCHED, False)

        self.load_halt_handler()

    def supervisor_mode(self) -> bool:
        """True when PSR bit 15 is clear."""
        with self.lock:
            return not bit_range(self.psr, 15, 15)

    # memory

    def read_memory(self, addr: int) -> int:
        """Return the signed word at ``addr`` (wrapped to 16 bits)."""
        with self.lock:
            return self.memory[to_uint16(addr)]

    def write_memory(self, addr: int, value: int) -> None:
        """Store ``value`` as a signed word at ``addr`` (wrapped to 16 bits)."""
        with self.lock:
            self.memory[to_uint16(addr)] = to_int16(value)

    # register file

    def _register(self, num: int) -> Register:
        if not 0 <= num < NUM_REGISTERS:
            raise MachineError(f"invalid register R{num}")
        return self.registers[num]

    def read_register(self, num: int) -> int:
        """Return the contents of register ``num``."""
        with self.lock:
            return self._register(num).data

    def write_register(self, num: int, value: int) -> None:
        """Write register ``num``; it must have been reserved with mark_busy."""
        with self.lock:
            reg = self._register(num)
            if not reg.busy:
                raise MachineError(f"register R{num} is not reserved for writing")
            reg.data = to_int16(value)

    def is_busy(self, num: int) -> bool:
        """True while some in-flight instruction will still write ``num``."""
        with self.lock:
            return self._register(num).busy > 0

    def mark_busy(self, num: int) -> None:
        """Reserve register ``num`` for a pending write."""
        with self.lock:
            self._register(num).busy += 1

    def release(self, num: int) -> None:
        """Drop one pending-write reservation of register ``num``."""
        with self.lock:
            reg = self._register(num)
            if not reg.busy:
                raise MachineError(f"register R{num} is not reserved")
            reg.busy -= 1

    # condition codes

    def cc_busy(self) -> bool:
        """True while some in-flight instruction will still set the condition codes."""
        with self.lock:
            return self.cc.busy > 0

    def mark_cc_busy(self) -> None:
        with self.lock:
            self.cc.busy += 1

    def release_cc(self) -> None:
        with self.lock:
            if not self.cc.busy:
                raise MachineError("condition codes are not reserved")
            self.cc.busy -= 1

    def update_cc(self, opcode: int, result: int) -> None:
        """Set N, Z or P from ``result`` and release the codes; LEA leaves them alone."""
        if opcode == Opcode.LEA:
            return
        with self.lock:
            value = to_int16(result)
            if value < 0:
                self.cc.data = CC_NEGATIVE
            elif value == 0:
                self.cc.data = CC_ZERO
            else:
                self.cc.data = CC_POSITIVE
            self.release_cc()

    # bubbles and stays

    def send_bubble(self, stage: Stage) -> None:
        """Ask for the latch feeding ``stage`` to be loaded with a bubble."""
        with self.lock:
            self._bubbles[_latched(stage)] = True

    def bubble_pending(self, stage: Stage) -> bool:
        with self.lock:
            return self._bubbles[_latched(stage)]

    def take_bubble(self, stage: Stage) -> bool:
        """Return and clear the bubble request for ``stage``."""
        with self.lock:
            stage = _latched(stage)
            pending = self._bubbles[stage]
            self._bubbles[stage] = False
            return pending

    def send_stay(self, stage: Stage) -> None:
        """Hold the latch feeding ``stage`` and every latch before it."""
        with self.lock:
            stage = _latched(stage)
            for held in _LATCHED[: _LATCHED.index(stage) + 1]:
                self._stays[held] = True

    def take_stay(self, stage: Stage) -> bool:
        """Return and clear the stay signal for ``stage``."""
        with self.lock:
            stage = _latched(stage)
            held = self._stays[stage]
            self._stays[stage] = False
            return held

    def stall_pipeline(self) -> None:
        """Hold every latch for one cycle."""
        self.send_stay(Stage.WB)

    # program counter redirection

    def override_pc(self, pc: int) -> None:
        """Request that fetch continue at ``pc`` from the next cycle."""
        with self.lock:
            self.pc_override = to_uint16(pc)
            self.pc_override_signal = True

    def take_pc_override(self) -> int | None:
        """Return and clear a pending PC redirection, or None if there is none."""
        with self.lock:
            if not self.pc_override_signal:
                return None
            self.pc_override_signal = False
            return self.pc_override

    # setup and reporting

    def load_halt_handler(self) -> None:
        """Install the HALT trap vector and a handler that stops the machine."""
        with self.lock:
            self.write_memory(HALT_VECTOR, HALT_HANDLER)
            for offset in range(HALT_HANDLER_LENGTH):
                self.write_memory(HALT_HANDLER + offset, Opcode.RESERVED << 12)

    def format_register_file(self) -> str:
        """Return the register file as a two-column table."""
        with self.lock:
            rows = [
                f"{num}               0x{reg.data & 0xFFFFFFFF:x}"
                for num, reg in enumerate(self.registers)
            ]
        return "\n".join(["register_num    data", "-" * 20, *rows]) + "\n"