"""Command line entry point: load an object file, run it and inspect the result."""

from __future__ import annotations

import sys
from collections.abc import Sequence

from .loader import LoaderError
from .vm import VM, CycleError

_USAGE = "2 additional arguments must be passed: -l <asm obj file path>"


def _teardown(vm: VM) -> None:
    sys.stdout.write(vm.report())
    vm.memory_viewer(sys.stdin, sys.stdout)


def main(argv: Sequence[str] | None = None) -> int:
    """Run ``-l <object file>``; return the process exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) != 2 or args[0] != "-l":
        print(_USAGE, file=sys.stderr)
        return 1

    obj_file_path = args[1]
    try:
        vm = VM(obj_file_path)
    except LoaderError:
        print(f"error loading file {obj_file_path}", file=sys.stderr)
        return 1

    try:
        vm.run()
    except CycleError as exc:
        print(exc, file=sys.stderr)
        _teardown(vm)
        return 1

    _teardown(vm)
    return 0


if __name__ == "__main__":
    sys.exit(main())