"""Reading assembled object files into the machine's memory."""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from os import PathLike

from .bitops import to_int16, to_uint16
from .machine import ADDRESS_SPACE, Machine

_HEADER_LINES = 3
_UNKNOWN_WORD = "????"

_HEX_PREFIX = re.compile(r"\s*([+-]?)(?:0[xX](?=[0-9a-fA-F]))?([0-9a-fA-F]+)")
_DEC_PREFIX = re.compile(r"\s*([+-]?\d+)")


class LoaderError(Exception):
    """Raised when an object file cannot be read or is malformed."""


def _parse_hex(text: str) -> int:
    """Parse the leading hexadecimal number of ``text``; 0 if there is none."""
    match = _HEX_PREFIX.match(text)
    if match is None:
        return 0
    sign, digits = match.groups()
    value = int(digits, 16)
    return -value if sign == "-" else value


def _parse_dec(text: str) -> int:
    """Parse the leading decimal number of ``text``; 0 if there is none."""
    match = _DEC_PREFIX.match(text)
    return int(match.group(1)) if match else 0


def _next_line(lines: Iterator[tuple[int, str]], what: str) -> tuple[int, str]:
    try:
        return next(lines)
    except StopIteration:
        raise LoaderError(f"unexpected end of object file while reading {what}") from None


def parse_object(lines: Iterable[str]) -> dict[int, int]:
    """Return the words of an object file as a mapping of address to signed word.

    The first three lines are a header. After it come sections, each an
    origin in hex, a word count in decimal and that many hex words; a word
    written ``????`` is left unset. A blank line ends the sections.
    """
    words: dict[int, int] = {}
    numbered = enumerate(lines, start=1)

    for number, line in numbered:
        if number <= _HEADER_LINES:
            continue
        if not line.rstrip("\r\n"):
            break

        origin = to_uint16(_parse_hex(line))
        count_number, count_line = _next_line(numbered, f"section count after line {number}")
        count = _parse_dec(count_line)
        if count < 0:
            raise LoaderError(f"line {count_number}: negative word count {count}")

        for offset in range(count):
            word_number, word_line = _next_line(numbered, f"word {offset + 1} of {count}")
            if word_line.startswith(_UNKNOWN_WORD):
                continue
            address = origin + offset
            if address >= ADDRESS_SPACE:
                raise LoaderError(f"line {word_number}: address 0x{address:x} is out of memory")
            words[address] = to_int16(_parse_hex(word_line))

    return words


def load_object(machine: Machine, path: str | PathLike[str]) -> int:
    """Load the object file at ``path`` into ``machine``; return the number of words written."""
    try:
        with open(path, encoding="utf-8") as handle:
            words = parse_object(handle)
    except OSError as exc:
        raise LoaderError(f"cannot read object file {path}: {exc}") from exc

    for address, value in words.items():
        machine.write_memory(address, value)
    return len(words)