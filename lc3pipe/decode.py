"""The instruction decode (ID) stage.

A stage cycle works in two halves around ``machine.barrier``: first it
decodes and raises hazard signals, then, once every stage has done so, it
latches its result unless a bubble or a stay signal arrived for it.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, replace

from .bitops import bit_range, sign_extend, to_int16
from .isa import Opcode, get_opcode
from .machine import DecodeBuffer, FetchBuffer, Machine, Stage

LINK_REGISTER = 7


class _Stall(Exception):
    """A source register is still to be written; decoding stops here."""


@dataclass(frozen=True)
class Reservation:
    """What a decoded instruction reserved: a destination register and/or the condition codes."""

    register: int | None = None
    cc: bool = False


def is_jsr(ir: int) -> bool:
    """True if ``ir`` is JSR (PC-relative subroutine call)."""
    return get_opcode(ir) == Opcode.JSR and bool(bit_range(ir, 11, 11))


def is_jsrr(ir: int) -> bool:
    """True if ``ir`` is JSRR (register subroutine call)."""
    return get_opcode(ir) == Opcode.JSRR and not bit_range(ir, 11, 11)


def _offset(ir: int, bits: int) -> int:
    return sign_extend(bit_range(ir, 0, bits - 1), bits)


def _source(machine: Machine, num: int) -> int:
    """Read source register ``num``, stalling decode if it is still to be written."""
    with machine.lock:
        if not machine.is_busy(num):
            return machine.read_register(num)
        machine.send_stay(Stage.ID)
        machine.send_bubble(Stage.EX)
    raise _Stall


def _decode_add_and(machine: Machine, ir: int, dbuf: DecodeBuffer) -> None:
    dbuf.reg = bit_range(ir, 9, 11)
    dbuf.operand1 = _source(machine, bit_range(ir, 6, 8))
    if bit_range(ir, 5, 5):
        dbuf.operand2 = _offset(ir, 5)
    else:
        dbuf.operand2 = _source(machine, bit_range(ir, 0, 2))


def _decode_ld_ldi_lea(machine: Machine, ir: int, dbuf: DecodeBuffer) -> None:
    dbuf.reg = bit_range(ir, 9, 11)
    dbuf.operand1 = to_int16(dbuf.pc)
    dbuf.operand2 = _offset(ir, 9)


def _decode_st_sti(machine: Machine, ir: int, dbuf: DecodeBuffer) -> None:
    dbuf.reg = _source(machine, bit_range(ir, 9, 11))
    dbuf.operand1 = to_int16(dbuf.pc)
    dbuf.operand2 = _offset(ir, 9)


def _decode_jsr(machine: Machine, ir: int, dbuf: DecodeBuffer) -> None:
    dbuf.operand1 = to_int16(dbuf.pc)
    dbuf.operand2 = _offset(ir, 11)
    dbuf.bit11 = True


def _decode_jmp_jsrr(machine: Machine, ir: int, dbuf: DecodeBuffer) -> None:
    dbuf.reg = _source(machine, bit_range(ir, 6, 8))
    dbuf.bit11 = False


def _decode_ldr(machine: Machine, ir: int, dbuf: DecodeBuffer) -> None:
    dbuf.reg = bit_range(ir, 9, 11)
    dbuf.operand1 = _source(machine, bit_range(ir, 6, 8))
    dbuf.operand2 = _offset(ir, 6)


def _decode_str(machine: Machine, ir: int, dbuf: DecodeBuffer) -> None:
    dbuf.reg = _source(machine, bit_range(ir, 9, 11))
    dbuf.operand1 = _source(machine, bit_range(ir, 6, 8))
    dbuf.operand2 = _offset(ir, 6)


def _decode_not(machine: Machine, ir: int, dbuf: DecodeBuffer) -> None:
    dbuf.reg = bit_range(ir, 9, 11)
    dbuf.operand1 = _source(machine, bit_range(ir, 6, 8))


def _decode_trap(machine: Machine, ir: int, dbuf: DecodeBuffer) -> None:
    dbuf.operand1 = bit_range(ir, 0, 7)


_Decoder = Callable[[Machine, int, DecodeBuffer], None]

_DECODERS: dict[Opcode, _Decoder] = {
    Opcode.ADD: _decode_add_and,
    Opcode.AND: _decode_add_and,
    Opcode.LD: _decode_ld_ldi_lea,
    Opcode.LDI: _decode_ld_ldi_lea,
    Opcode.LEA: _decode_ld_ldi_lea,
    Opcode.ST: _decode_st_sti,
    Opcode.STI: _decode_st_sti,
    Opcode.JMP: _decode_jmp_jsrr,
    Opcode.LDR: _decode_ldr,
    Opcode.STR: _decode_str,
    Opcode.NOT: _decode_not,
    Opcode.TRAP: _decode_trap,
}

# Opcodes whose result goes to the destination register and sets the condition codes.
_WRITES_DEST_AND_CC = frozenset(
    {Opcode.ADD, Opcode.AND, Opcode.LD, Opcode.LDI, Opcode.LDR, Opcode.NOT}
)


def _decoder_for(ir: int, opcode: Opcode) -> _Decoder | None:
    if opcode == Opcode.JSR:
        return _decode_jsr if is_jsr(ir) else _decode_jmp_jsrr
    return _DECODERS.get(opcode)


def _writes(opcode: Opcode, dbuf: DecodeBuffer) -> tuple[int | None, bool]:
    if opcode in _WRITES_DEST_AND_CC:
        return dbuf.reg, True
    if opcode == Opcode.LEA:
        return dbuf.reg, False
    if opcode == Opcode.JSR:
        return LINK_REGISTER, False
    return None, False


def decode_instruction(machine: Machine, fbuf: FetchBuffer) -> tuple[DecodeBuffer, Reservation]:
    """Decode ``fbuf`` and raise the hazard signals it needs.

    Returns the next decode latch and the reservations made for it; the
    reservations must be dropped if the latch is later replaced by a bubble.
    """
    if fbuf.nop:
        machine.send_bubble(Stage.EX)
        return DecodeBuffer(nop=True), Reservation()

    ir = fbuf.ir
    opcode = get_opcode(ir)
    dbuf = DecodeBuffer(pc=fbuf.pc, opcode=opcode)

    if opcode == Opcode.BR:
        dbuf.cc = bit_range(ir, 9, 11)
        dbuf.operand1 = to_int16(fbuf.pc)
        dbuf.operand2 = _offset(ir, 9)
        with machine.lock:
            if machine.cc_busy():
                machine.send_stay(Stage.ID)
                machine.send_bubble(Stage.EX)
                return DecodeBuffer(nop=True), Reservation()
        return dbuf, Reservation()

    decoder = _decoder_for(ir, opcode)
    if decoder is not None:
        with suppress(_Stall):
            decoder(machine, ir, dbuf)

    if opcode in (Opcode.JSR, Opcode.JMP):
        machine.send_bubble(Stage.ID)

    target, sets_cc = _writes(opcode, dbuf)
    if target is None:
        return dbuf, Reservation()

    with machine.lock:
        if machine.bubble_pending(Stage.EX):
            return dbuf, Reservation()
        machine.mark_busy(target)
        if sets_cc:
            machine.mark_cc_busy()
    return dbuf, Reservation(target, sets_cc)


def _latch(machine: Machine, dbuf: DecodeBuffer, reservation: Reservation) -> None:
    with machine.lock:
        bubbled = machine.take_bubble(Stage.EX)
        if bubbled:
            if reservation.register is not None:
                machine.release(reservation.register)
            if reservation.cc:
                machine.release_cc()
        dbuf = replace(dbuf, nop=bubbled)
        if not machine.take_stay(Stage.EX):
            machine.dbuf = dbuf


def decode_stage(machine: Machine) -> None:
    """Run one clock cycle of the ID stage, synchronising on ``machine.barrier``."""
    with machine.lock:
        fbuf = replace(machine.fbuf)

    try:
        dbuf, reservation = decode_instruction(machine, fbuf)
    except Exception:
        machine.barrier.wait()
        raise

    machine.barrier.wait()
    _latch(machine, dbuf, reservation)