"""The pipelined virtual machine: setup, the clock loop and reporting."""

from __future__ import annotations

import sys
import threading
from collections.abc import Callable, Iterator
from os import PathLike
from typing import IO

from .decode import decode_stage
from .loader import load_object
from .machine import Machine
from .pipeline_table import PipelineTable
from .stages import execute_stage, fetch_stage, memory_stage, writeback_stage

_PROMPT = "enter mem addr: 0x"

_STAGES: tuple[Callable[[Machine], None], ...] = (
    fetch_stage,
    decode_stage,
    execute_stage,
    memory_stage,
    writeback_stage,
)


class CycleError(Exception):
    """Raised when a pipeline stage fails during a clock cycle."""

    def __init__(self, cycle: int, errors: list[BaseException]) -> None:
        super().__init__(f"cycle {cycle} failed")
        self.cycle = cycle
        self.errors = errors


def _tokens(stream: IO[str]) -> Iterator[str]:
    for line in stream:
        yield from line.split()


class VM:
    """A machine, its pipeline record and a clock-cycle count.

    With no object file the machine starts with empty user memory, ready
    to have a program written into it.
    """

    def __init__(self, obj_file_path: str | PathLike[str] | None = None) -> None:
        self.machine = Machine()
        self.table = PipelineTable()
        self.clock_cycles = 0
        if obj_file_path is not None:
            load_object(self.machine, obj_file_path)

    def _cycle(self) -> None:
        errors: list[BaseException] = []
        errors_lock = threading.Lock()

        def run_stage(stage: Callable[[Machine], None]) -> None:
            try:
                stage(self.machine)
            except Exception as exc:  # collected and reported for the cycle
                with errors_lock:
                    errors.append(exc)

        threads = [
            threading.Thread(target=run_stage, args=(stage,), name=stage.__name__)
            for stage in _STAGES
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        if errors:
            raise CycleError(self.clock_cycles, errors) from errors[0]

    def run(self) -> int:
        """Clock the pipeline until the machine halts; return the cycle count."""
        while True:
            with self.machine.lock:
                if not self.machine.running:
                    break
            self.table.add_row(self.machine)
            self._cycle()
            self.clock_cycles += 1
        return self.clock_cycles

    def report(self) -> str:
        """Return the cycle count, the pipeline table and the register file as text."""
        return (
            f"vm ran {self.clock_cycles} clock cycles\n"
            + self.table.format()
            + self.machine.format_register_file()
        )

    def memory_viewer(
        self, input_stream: IO[str] | None = None, output_stream: IO[str] | None = None
    ) -> None:
        """Show memory words for hex addresses read from ``input_stream``.

        Address 0 or the end of input finishes. Raises ValueError on an
        address that is not hexadecimal.
        """
        source = sys.stdin if input_stream is None else input_stream
        sink = sys.stdout if output_stream is None else output_stream
        tokens = _tokens(source)

        while True:
            sink.write(_PROMPT)
            sink.flush()
            token = next(tokens, None)
            if token is None:
                break
            try:
                addr = int(token, 16) & 0xFFFF
            except ValueError:
                raise ValueError(f"invalid memory address {token!r}") from None
            if not addr:
                break
            data = self.machine.read_memory(addr)
            sink.write(f"mem[0x{addr:x}]=0x{data & 0xFFFFFFFF:x}\n")