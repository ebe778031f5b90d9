import io

import pytest

from lc3pipe.bitops import bit_range, to_int16
from lc3pipe.isa import Opcode
from lc3pipe.loader import LoaderError
from lc3pipe.machine import CC_POSITIVE, CC_ZERO, MemoryBuffer
from lc3pipe.vm import VM, CycleError

HALT = (Opcode.TRAP << 12) | 0x25


def _run(program, registers=None, data=None, cc=None):
    vm = VM(None)
    machine = vm.machine
    for num, value in (registers or {}).items():
        machine.registers[num].data = to_int16(value)
    for offset, word in enumerate(program):
        machine.write_memory(0x3000 + offset, word)
    for addr, word in (data or {}).items():
        machine.write_memory(addr, word)
    if cc is not None:
        machine.cc.data = cc
    vm.run()
    return vm


def _reg(vm, num):
    return vm.machine.read_register(num)


def _mem(vm, addr):
    return vm.machine.read_memory(addr)


def test_branch_with_initial_codes_skips_add():
    vm = _run(
        [
            (Opcode.BR << 12) | (1 << 9) | 1,
            (Opcode.ADD << 12) | (2 << 9) | (0 << 6) | 1,
            HALT,
        ],
        registers={0: 2, 1: 4},
    )
    assert _reg(vm, 2) == 0
    assert vm.machine.cc.data == CC_POSITIVE


def test_branch_not_taken_when_codes_differ():
    vm = _run(
        [
            (Opcode.BR << 12) | (1 << 9) | 1,
            (Opcode.ADD << 12) | (2 << 9) | (0 << 6) | 1,
            HALT,
        ],
        registers={0: 2, 1: 4},
        cc=CC_ZERO,
    )
    assert _reg(vm, 2) == 6
    assert vm.machine.cc.data == 1


def test_branch_taken():
    vm = _run(
        [
            (Opcode.ADD << 12) | (2 << 9) | (0 << 6) | 1,
            (Opcode.BR << 12) | (1 << 9) | 1,
            (Opcode.ADD << 12) | (2 << 9) | (2 << 6) | (1 << 5) | bit_range(-8, 0, 4),
            HALT,
        ],
        registers={0: 2, 1: 4},
    )
    assert _reg(vm, 2) == 6
    assert vm.machine.cc.data == 1


def test_add_reg_mode():
    vm = _run(
        [(Opcode.ADD << 12) | (2 << 9) | (0 << 6) | 1, HALT],
        registers={0: 2, 1: 4},
    )
    assert _reg(vm, 2) == 6
    assert vm.machine.cc.data == 1


def test_add_imm_mode():
    vm = _run(
        [(Opcode.ADD << 12) | (6 << 9) | (6 << 6) | (1 << 5) | bit_range(-1, 0, 4), HALT],
        registers={6: 0xF000},
    )
    assert _reg(vm, 6) == to_int16(0xEFFF)
    assert vm.machine.cc.data == 4


def test_ld():
    vm = _run(
        [(Opcode.LD << 12) | (0 << 9) | 1, HALT],
        data={0x3002: 0x2110},
    )
    assert _reg(vm, 0) == 0x2110
    assert vm.machine.cc.data == 1


def test_st():
    vm = _run([(Opcode.ST << 12) | (0 << 9) | 1, HALT], registers={0: 0x2110})
    assert _mem(vm, 0x3002) == 0x2110


def test_jsr():
    vm = _run(
        [
            (Opcode.JSR << 12) | (1 << 11) | 1,
            (Opcode.ADD << 12) | (2 << 9) | (0 << 6) | 1,
            HALT,
        ],
        registers={0: 2, 1: 4},
    )
    assert _reg(vm, 2) == 0
    assert _reg(vm, 7) == 0x3001


def test_jsrr():
    vm = _run(
        [
            (Opcode.JSRR << 12) | (3 << 6),
            (Opcode.ADD << 12) | (2 << 9) | (0 << 6) | 1,
            HALT,
        ],
        registers={0: 2, 1: 4, 3: 0x3002},
    )
    assert _reg(vm, 2) == 0
    assert _reg(vm, 7) == 0x3001


def test_and_reg_mode():
    vm = _run(
        [(Opcode.AND << 12) | (2 << 9) | (0 << 6) | 1, HALT],
        registers={0: 3, 1: 6},
    )
    assert _reg(vm, 2) == 2
    assert vm.machine.cc.data == 1


def test_and_imm_mode():
    vm = _run(
        [(Opcode.AND << 12) | (0 << 9) | (0 << 6) | (1 << 5) | 0, HALT],
        registers={0: 0xF000},
    )
    assert _reg(vm, 0) == 0
    assert vm.machine.cc.data == 2


def test_ldr():
    vm = _run(
        [(Opcode.LDR << 12) | (0 << 9) | (5 << 6) | 4, HALT],
        registers={5: 0xEFFB},
        data={0xEFFF: 5},
    )
    assert _reg(vm, 0) == 5
    assert vm.machine.cc.data == 1


def test_str():
    vm = _run(
        [(Opcode.STR << 12) | (0 << 9) | (5 << 6) | 3, HALT],
        registers={0: 0x2110, 5: 0xEFFB},
    )
    assert _mem(vm, 0xEFFE) == 0x2110


def test_not():
    vm = _run([(Opcode.NOT << 12) | (0 << 9) | (0 << 6), HALT], registers={0: 2})
    assert _reg(vm, 0) == -3
    assert vm.machine.cc.data == 4


def test_ldi():
    vm = _run(
        [(Opcode.LDI << 12) | (0 << 9) | 1, HALT],
        data={0x3002: 0x3210, 0x3210: 0x4210},
    )
    assert _reg(vm, 0) == 0x4210
    assert vm.machine.cc.data == 1


def test_sti():
    vm = _run(
        [(Opcode.STI << 12) | (0 << 9) | 1, HALT],
        registers={0: 0x4210},
        data={0x3002: 0x3210},
    )
    assert _mem(vm, 0x3210) == 0x4210


def test_jmp():
    vm = _run(
        [
            (Opcode.JMP << 12) | (7 << 6),
            (Opcode.ADD << 12) | (2 << 9) | (0 << 6) | 1,
            HALT,
        ],
        registers={0: 2, 1: 4, 7: 0x3002},
    )
    assert _reg(vm, 2) == 0


def test_lea():
    vm = _run([(Opcode.LEA << 12) | (0 << 9) | 1, HALT])
    assert _reg(vm, 0) == 0x3002


def test_add_raw_hazard():
    vm = _run(
        [
            (Opcode.ADD << 12) | (2 << 9) | (0 << 6) | 1,
            (Opcode.ADD << 12) | (2 << 9) | (2 << 6) | 2,
            HALT,
        ],
        registers={0: 2, 1: 4},
    )
    assert _reg(vm, 2) == 12


def test_st_raw_hazard():
    vm = _run(
        [
            (Opcode.ADD << 12) | (2 << 9) | (0 << 6) | 1,
            (Opcode.ADD << 12) | (6 << 9) | (6 << 6) | (1 << 5) | bit_range(-1, 0, 4),
            (Opcode.ST << 12) | (2 << 9) | 1,
            HALT,
        ],
        registers={0: 2, 1: 4},
    )
    assert _mem(vm, 0x3004) == 6


def test_jsrr_raw_hazard():
    vm = _run(
        [
            (Opcode.ADD << 12) | (2 << 9) | (0 << 6) | 1,
            (Opcode.ADD << 12) | (6 << 9) | (6 << 6) | (1 << 5) | bit_range(-1, 0, 4),
            (Opcode.ST << 12) | (7 << 9) | 5,
            (Opcode.JSRR << 12) | (0 << 11) | (2 << 6),
            (Opcode.ADD << 12) | (2 << 9) | (2 << 6) | 2,
            HALT,
        ],
        registers={0: 0x3000, 1: 5},
    )
    assert _reg(vm, 2) == 0x3005


def test_and_raw_hazard():
    vm = _run(
        [
            (Opcode.ADD << 12) | (2 << 9) | (0 << 6) | 1,
            (Opcode.ADD << 12) | (6 << 9) | (6 << 6) | (1 << 5) | bit_range(-1, 0, 4),
            (Opcode.ST << 12) | (7 << 9) | 5,
            (Opcode.AND << 12) | (2 << 9) | (2 << 6) | (1 << 5) | 3,
            HALT,
        ],
        registers={0: 2, 1: 4},
    )
    assert _reg(vm, 2) == 2


def test_ldr_raw_hazard():
    vm = _run(
        [
            (Opcode.ADD << 12) | (2 << 9) | (0 << 6) | 1,
            (Opcode.ADD << 12) | (6 << 9) | (6 << 6) | (1 << 5) | bit_range(-1, 0, 4),
            (Opcode.LDR << 12) | (2 << 9) | (2 << 6) | 1,
            HALT,
        ],
        registers={0: 0x3000, 1: 3},
        data={0x3004: 0x2110},
    )
    assert _reg(vm, 2) == 0x2110


def test_str_raw_hazard():
    vm = _run(
        [
            (Opcode.ADD << 12) | (2 << 9) | (0 << 6) | 1,
            (Opcode.STR << 12) | (2 << 9) | (2 << 6) | 1,
            HALT,
        ],
        registers={0: 0x3000, 1: 2},
    )
    assert _mem(vm, 0x3003) == 0x3002


def test_not_raw_hazard():
    vm = _run(
        [
            (Opcode.ADD << 12) | (2 << 9) | (0 << 6) | 1,
            (Opcode.ADD << 12) | (6 << 9) | (6 << 6) | (1 << 5) | bit_range(-1, 0, 4),
            (Opcode.NOT << 12) | (2 << 9) | (2 << 6),
            HALT,
        ],
        registers={0: 2, 1: 4},
    )
    assert _reg(vm, 2) == -7


def test_jmp_raw_hazard():
    vm = _run(
        [
            (Opcode.JSR << 12) | (1 << 11) | 1,
            HALT,
            (Opcode.JMP << 12) | (7 << 6),
        ]
    )
    assert _reg(vm, 7) == 0x3001


def test_run_stops_and_table_has_a_row_per_cycle():
    vm = _run([(Opcode.LEA << 12) | (0 << 9) | 1, HALT])
    assert vm.machine.running is False
    assert vm.clock_cycles > 0
    assert len(vm.table) == vm.clock_cycles


def test_report_lists_cycles_table_and_registers():
    vm = _run([(Opcode.LEA << 12) | (0 << 9) | 1, HALT])
    lines = vm.report().splitlines()
    assert lines[0] == f"vm ran {vm.clock_cycles} clock cycles"
    assert lines[1].startswith("cycle 1: ")
    assert "register_num    data" in lines
    assert "0               0x3002" in lines


def test_failing_stage_raises_cycle_error():
    vm = VM(None)
    vm.machine.mbuf = MemoryBuffer(opcode=Opcode.ADD, reg=2, result=5)
    with pytest.raises(CycleError) as info:
        vm.run()
    assert info.value.cycle == 0
    assert str(info.value) == "cycle 0 failed"
    assert vm.clock_cycles == 0


def test_loads_object_file(tmp_path):
    path = tmp_path / "prog.obj"
    path.write_text("h\nh\nh\n3000\n2\nE001\nF025\n\n")
    vm = VM(path)
    assert vm.machine.read_memory(0x3000) == to_int16(0xE001)
    vm.run()
    assert vm.machine.read_register(0) == 0x3002


def test_missing_object_file_raises(tmp_path):
    with pytest.raises(LoaderError):
        VM(tmp_path / "missing.obj")


def test_memory_viewer_shows_words_until_zero():
    vm = VM(None)
    vm.machine.write_memory(0x3000, 0x1234)
    vm.machine.write_memory(0x3001, -3)
    out = io.StringIO()
    vm.memory_viewer(io.StringIO("3000\n3001\n0\n3000\n"), out)
    assert out.getvalue() == (
        "enter mem addr: 0xmem[0x3000]=0x1234\n"
        "enter mem addr: 0xmem[0x3001]=0xfffffffd\n"
        "enter mem addr: 0x"
    )


def test_memory_viewer_rejects_non_hex_address():
    vm = VM(None)
    with pytest.raises(ValueError):
        vm.memory_viewer(io.StringIO("zz\n"), io.StringIO())