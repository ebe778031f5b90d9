"""Instruction set: opcodes and helpers for reading them out of instruction words."""

from __future__ import annotations

from enum import IntEnum

from .bitops import bit_range


class Opcode(IntEnum):
    """The sixteen opcodes held in bits [15:12] of an instruction word."""

    BR = 0x0
    ADD = 0x1
    LD = 0x2
    ST = 0x3
    JSR = 0x4
    JSRR = 0x4  # shares the JSR opcode; bit 11 tells them apart
    AND = 0x5
    LDR = 0x6
    STR = 0x7
    RTI = 0x8
    NOT = 0x9
    LDI = 0xA
    STI = 0xB
    JMP = 0xC
    RESERVED = 0xD
    LEA = 0xE
    TRAP = 0xF


_NAMES = {
    Opcode.BR: "br",
    Opcode.ADD: "add",
    Opcode.LD: "ld",
    Opcode.ST: "st",
    Opcode.JSR: "jsr",
    Opcode.AND: "and",
    Opcode.LDR: "ldr",
    Opcode.STR: "str",
    Opcode.RTI: "rti",
    Opcode.NOT: "not",
    Opcode.LDI: "ldi",
    Opcode.STI: "sti",
    Opcode.JMP: "jmp",
    Opcode.RESERVED: "reserved",
    Opcode.LEA: "lea",
    Opcode.TRAP: "trap",
}


def get_opcode(ir: int) -> Opcode:
    """Return the opcode of the instruction word ``ir``."""
    return Opcode(bit_range(ir, 12, 15))


def opcode_name(opcode: int) -> str:
    """Return the mnemonic for ``opcode``; only its low four bits are used."""
    return _NAMES[Opcode(opcode & 0xF)]