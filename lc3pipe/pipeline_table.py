"""A per-cycle record of which instruction occupies each pipeline stage."""

from __future__ import annotations

from collections.abc import Iterator

from .isa import get_opcode, opcode_name
from .machine import Machine

_NOP = "nop"


class PipelineTable:
    """Rows of five mnemonics, one row per clock cycle."""

    def __init__(self) -> None:
        self._rows: list[tuple[str, ...]] = []

    def add_row(self, machine: Machine) -> tuple[str, ...]:
        """Record what each stage of ``machine`` holds now and return the row."""
        with machine.lock:
            fbuf, dbuf, ebuf, mbuf = machine.fbuf, machine.dbuf, machine.ebuf, machine.mbuf
            row = (
                opcode_name(get_opcode(machine.read_memory(machine.pc))),
                _NOP if fbuf.nop else opcode_name(get_opcode(fbuf.ir)),
                _NOP if dbuf.nop else opcode_name(dbuf.opcode),
                _NOP if ebuf.nop else opcode_name(ebuf.opcode),
                _NOP if mbuf.nop else opcode_name(mbuf.opcode),
            )
        self._rows.append(row)
        return row

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[tuple[str, ...]]:
        return iter(self._rows)

    def format(self) -> str:
        """Return the table as text, one numbered line per cycle."""
        return "".join(
            f"cycle {cycle}: " + "".join(f"{name} " for name in row) + "\n"
            for cycle, row in enumerate(self._rows, start=1)
        )