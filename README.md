# lc3pipe

`lc3pipe` is a virtual machine for the LC-3 instruction set. Programs run
through a five-stage pipeline: fetch, decode, execute, memory and
write-back. Each stage runs in its own thread on every clock cycle, and the
stages meet at a barrier between their two halves. The pipeline handles
hazards in these ways:

- A read-after-write hazard holds fetch and decode in place and sends a
  bubble into execute until the source register has been written.
- A branch waits while the condition codes are still to be set.
- A taken branch, `JMP`, `JSR`/`JSRR` or `TRAP` redirects fetch and replaces
  the instructions already in flight with bubbles.
- `LDI` and `STI` hold the whole pipeline for one extra memory cycle.

## Installing

```
pip install .
```

## Running a program

Pass an assembled object file with `-l`:

```
lc3pipe -l program.obj
```

Execution starts at `0x3000`. The machine starts in user mode, with the
condition codes set to P. Address `0x25`, the HALT trap vector, points at a
built-in handler at `0x1000`. The program stops when that handler's first
instruction reaches write-back.

After the program stops, the command prints three things:

- the line `vm ran N clock cycles`;
- one line per cycle, showing the instruction in each stage (IF, ID, EX,
  MEM, WB). An empty slot shows as `nop`;
- the register file.

```
vm ran N clock cycles
cycle 1: add nop nop nop nop
cycle 2: trap add nop nop nop
...
register_num    data
--------------------
0               0x2
...
enter mem addr: 0x
```

Next comes a memory viewer. At each `enter mem addr: 0x` prompt, type a
hexadecimal address. The viewer prints the word stored there as
`mem[0x...]=0x...`. Entering `0`, or reaching the end of input, quits.

The command exits with status 1 in these cases:

- The arguments are not exactly `-l <path>`. A usage line goes to stderr.
- The file cannot be read or is malformed. The message
  `error loading file <path>` goes to stderr.
- A stage fails during a cycle. The message `cycle N failed` goes to stderr,
  and the report and memory viewer still follow.

## Object file format

The loader skips the first three lines. After them the file is a series of
sections, each made of:

- a line with the section's origin address in hexadecimal;
- a line with the number of words that follow, in decimal;
- that many lines, each holding one hexadecimal word, or `????` to leave
  that address untouched.

A blank line, or the end of the file, ends the sections. The loader raises
`LoaderError` in these cases:

- the file cannot be opened;
- a section is cut short;
- a section's word count is negative;
- a section runs past address `0xFFFF`.

## Using it from Python

```python
from lc3pipe.vm import VM

vm = VM()                                 # no object file: empty user memory
vm.machine.write_memory(0x3000, 0x1401)   # add r2, r0, r1
vm.machine.write_memory(0x3001, 0xF025)   # trap x25 (halt)
cycles = vm.run()
print(vm.report())
print(vm.machine.read_register(2))
```

Useful pieces:

- `lc3pipe.vm.VM(obj_file_path=None)`: builds a machine and, if a path is
  given, loads that object file into it.
  - `run()` clocks the pipeline until the machine halts and returns the
    cycle count. If a stage fails, it raises `CycleError`, whose `cycle` and
    `errors` attributes say which cycle failed and why.
  - `report()` returns the text that the command prints.
  - `memory_viewer(input_stream, output_stream)` runs the viewer on the
    given text streams. With no streams it uses stdin and stdout.
- `lc3pipe.machine.Machine`: memory, the register file, PC, PSR, the
  condition codes and the pipeline latches. It provides `read_memory`,
  `write_memory`, `read_register`, `write_register` and
  `format_register_file`, along with the busy-register, bubble, stay and
  PC-override signals that the stages use.
- `lc3pipe.loader.parse_object(lines)` returns an `{address: word}` mapping.
  `load_object(machine, path)` writes a file into a machine and returns the
  number of words written.
- `lc3pipe.pipeline_table.PipelineTable` holds the per-cycle record. It
  supports `len()` and iteration over rows, and `format()` renders it.
- `lc3pipe.decode.decode_stage` and `lc3pipe.stages.fetch_stage`,
  `execute_stage`, `memory_stage` and `writeback_stage` each run one cycle
  of one stage.
- `lc3pipe.isa.Opcode`, `get_opcode` and `opcode_name` decode opcodes.
- `lc3pipe.bitops.bit_range`, `sign_extend`, `to_int16` and `to_uint16`
  handle bit fields and 16-bit words.

## What it does not do

- There is no assembler. Programs must already be assembled into the object
  format above, or be written into memory word by word.
- The only trap service is HALT. `TRAP` saves the PC and PSR on the
  supervisor stack, enters supervisor mode and jumps through the vector.
  There are no console input or output services.
- `RTI` is not executed, so a trap handler cannot return.
- Memory accesses are not checked for privilege.