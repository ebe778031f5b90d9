"""The fetch (IF), execute (EX), memory (MEM) and write-back (WB) stages.

Each stage function runs one clock cycle. It does its work and raises
hazard signals, waits on ``machine.barrier`` until every stage has done the
same, and then latches its result unless a bubble or a stay signal arrived
for the latch it feeds.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from typing import TypeVar

from .bitops import bit_range, to_int16, to_uint16
from .isa import Opcode
from .machine import (
    DecodeBuffer,
    ExecuteBuffer,
    FetchBuffer,
    Machine,
    MemoryBuffer,
    Stage,
)

STACK_POINTER = 6
LINK_REGISTER = 7

_T = TypeVar("_T")

_ADDS = frozenset(
    {
        Opcode.ADD,
        Opcode.LD,
        Opcode.ST,
        Opcode.LDR,
        Opcode.STR,
        Opcode.LDI,
        Opcode.STI,
        Opcode.LEA,
    }
)

_WRITES_RESULT = frozenset(
    {
        Opcode.ADD,
        Opcode.LD,
        Opcode.AND,
        Opcode.LDR,
        Opcode.NOT,
        Opcode.LDI,
        Opcode.LEA,
    }
)


def cc_match(vm_cc: int, ir_cc: int) -> bool:
    """True if any of the N, Z, P bits is set in both ``vm_cc`` and ``ir_cc``."""
    return any(
        bit_range(vm_cc, bit, bit) and bit_range(ir_cc, bit, bit) for bit in range(3)
    )


def needs_add(opcode: int) -> bool:
    """True if the instruction uses the ALU adder in EX."""
    return opcode in _ADDS


def _synchronised(machine: Machine, work: Callable[[], _T]) -> _T:
    """Run ``work`` and then wait for the other stages, even if it fails."""
    try:
        result = work()
    except Exception:
        machine.barrier.wait()
        raise
    machine.barrier.wait()
    return result


# fetch


def _fetch(machine: Machine) -> FetchBuffer:
    with machine.lock:
        pc = machine.pc
        ir = machine.read_memory(pc)
        machine.pc = to_uint16(pc + 1)
    return FetchBuffer(pc=to_uint16(pc + 1), ir=ir)


def fetch_stage(machine: Machine) -> None:
    """Run one clock cycle of the IF stage."""
    fbuf = _synchronised(machine, lambda: _fetch(machine))

    with machine.lock:
        fbuf = replace(fbuf, nop=machine.take_bubble(Stage.ID))
        if machine.take_stay(Stage.ID):
            # the pipeline is held, so fetch the same word again
            machine.pc = to_uint16(machine.pc - 1)
        else:
            machine.fbuf = fbuf

        target = machine.take_pc_override()
        if target is not None:
            machine.pc = target


# execute


def _trap(machine: Machine, dbuf: DecodeBuffer) -> None:
    """Enter supervisor mode and redirect fetch through the trap vector."""
    machine.send_bubble(Stage.ID)
    machine.send_bubble(Stage.EX)

    with machine.lock:
        # Trap entry swaps the stack pointer itself rather than through write-back.
        stack = machine.registers[STACK_POINTER]
        machine.saved_usp = to_uint16(stack.data)
        sp = machine.saved_ssp

        sp = to_uint16(sp - 1)
        machine.write_memory(sp, dbuf.pc)
        sp = to_uint16(sp - 1)
        machine.write_memory(sp, machine.psr)
        stack.data = to_int16(sp)

        machine.psr = 0
        handler = to_uint16(machine.read_memory(dbuf.operand1))

    machine.override_pc(handler)


def _execute(machine: Machine, dbuf: DecodeBuffer) -> ExecuteBuffer:
    if dbuf.nop:
        machine.send_bubble(Stage.MEM)
        return ExecuteBuffer(nop=True)

    ebuf = ExecuteBuffer(pc=dbuf.pc, opcode=dbuf.opcode, reg=dbuf.reg)
    opcode = dbuf.opcode

    if opcode == Opcode.BR:
        with machine.lock:
            cc = machine.cc.data
        if cc_match(cc, dbuf.cc):
            machine.override_pc(dbuf.operand1 + dbuf.operand2)
            machine.send_bubble(Stage.ID)
            machine.send_bubble(Stage.EX)
    elif needs_add(opcode):
        ebuf.result = to_int16(dbuf.operand1 + dbuf.operand2)
    elif opcode == Opcode.JSR:
        machine.send_bubble(Stage.ID)
        if dbuf.bit11:
            machine.override_pc(dbuf.operand1 + dbuf.operand2)
        else:
            machine.override_pc(dbuf.reg)
    elif opcode == Opcode.AND:
        ebuf.result = to_int16(dbuf.operand1 & dbuf.operand2)
    elif opcode == Opcode.NOT:
        ebuf.result = to_int16(~dbuf.operand1)
    elif opcode == Opcode.JMP:
        machine.send_bubble(Stage.ID)
        machine.override_pc(dbuf.reg)
    elif opcode == Opcode.TRAP:
        _trap(machine, dbuf)

    return ebuf


def execute_stage(machine: Machine) -> None:
    """Run one clock cycle of the EX stage."""
    with machine.lock:
        dbuf = replace(machine.dbuf)

    ebuf = _synchronised(machine, lambda: _execute(machine, dbuf))

    with machine.lock:
        ebuf = replace(ebuf, nop=machine.take_bubble(Stage.MEM))
        if not machine.take_stay(Stage.MEM):
            machine.ebuf = ebuf


# memory


def _access(machine: Machine, ebuf: ExecuteBuffer) -> MemoryBuffer:
    if ebuf.nop:
        machine.send_bubble(Stage.WB)
        return MemoryBuffer(nop=True)

    mbuf = MemoryBuffer(
        pc=ebuf.pc, opcode=ebuf.opcode, result=ebuf.result, reg=ebuf.reg
    )
    opcode = ebuf.opcode

    if opcode in (Opcode.LD, Opcode.LDR):
        mbuf.result = machine.read_memory(ebuf.result)
    elif opcode in (Opcode.ST, Opcode.STR):
        machine.write_memory(ebuf.result, ebuf.reg)
    elif opcode in (Opcode.LDI, Opcode.STI):
        mbuf.result = machine.read_memory(ebuf.result)
        with machine.lock:
            latch = machine.ebuf
            latch.indirect_counter = (latch.indirect_counter + 1) % 2
            if latch.indirect_counter:
                # first access: keep the pointer and run MEM again next cycle
                latch.result = mbuf.result
                machine.stall_pipeline()
            elif opcode == Opcode.STI:
                machine.write_memory(ebuf.result, ebuf.reg)

    return mbuf


def memory_stage(machine: Machine) -> None:
    """Run one clock cycle of the MEM stage."""
    with machine.lock:
        ebuf = replace(machine.ebuf)

    mbuf = _synchronised(machine, lambda: _access(machine, ebuf))

    with machine.lock:
        mbuf = replace(mbuf, nop=machine.take_bubble(Stage.WB))
        if not machine.take_stay(Stage.WB):
            machine.mbuf = mbuf


# write-back


def _write_back(machine: Machine, mbuf: MemoryBuffer) -> None:
    if mbuf.nop:
        return

    opcode = mbuf.opcode
    if opcode in _WRITES_RESULT:
        with machine.lock:
            machine.write_register(mbuf.reg, mbuf.result)
            machine.release(mbuf.reg)
            machine.update_cc(opcode, mbuf.result)
    elif opcode == Opcode.JSR:
        with machine.lock:
            machine.write_register(LINK_REGISTER, mbuf.pc)
            machine.release(LINK_REGISTER)
    elif opcode == Opcode.RESERVED:
        with machine.lock:
            machine.running = False


def writeback_stage(machine: Machine) -> None:
    """Run one clock cycle of the WB stage."""
    with machine.lock:
        mbuf = replace(machine.mbuf)

    _synchronised(machine, lambda: _write_back(machine, mbuf))