"""Bit-field extraction and 16-bit two's-complement helpers."""

from __future__ import annotations

_WORD_BITS = 16


def to_int16(value: int) -> int:
    """Wrap ``value`` into the signed 16-bit range."""
    return ((value + 0x8000) & 0xFFFF) - 0x8000


def to_uint16(value: int) -> int:
    """Wrap ``value`` into the unsigned 16-bit range."""
    return value & 0xFFFF


def bit_range(n: int, lower: int, upper: int) -> int:
    """Return bits ``n[upper:lower]`` (both inclusive), shifted down to bit 0.

    Raises ValueError if the range is empty or reaches past bit 15.
    """
    if lower < 0 or lower > upper or upper >= _WORD_BITS:
        raise ValueError(f"invalid bit range [{upper}:{lower}]")
    width = upper - lower + 1
    mask = ((1 << width) - 1) << lower
    return to_int16((n & mask) >> lower)


def sign_extend(n: int, bit_length: int) -> int:
    """Sign-extend the ``bit_length``-bit two's-complement value ``n`` to 16 bits.

    Raises ValueError unless 0 < bit_length < 16.
    """
    if bit_length <= 0 or bit_length >= _WORD_BITS:
        raise ValueError(f"invalid bit length {bit_length}")
    if not (n >> (bit_length - 1)) & 1:
        return to_int16(n)
    return to_int16(n | ((0xFFFF << bit_length) & 0xFFFF))