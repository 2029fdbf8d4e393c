# nachtools

A small toolkit for working with little-endian MIPS COFF object files, plus
a handful of classic teaching data structures.

## What it does

- **Object file conversion** (`nachtools.coff`): turn a MIPS COFF executable
  into a NOFF file or into a flat memory image. A NOFF file starts with a
  header that describes the code, initialised data and uninitialised data
  segments. A flat image can be copied straight into an address space.
- **Disassembler** (`nachtools.disasm`): print MIPS instructions in
  readable form, together with their addresses.
- **Simulated processor** (`nachtools.machine`): a `Machine` with 32
  registers, HI/LO and a byte-addressed little-endian `Memory`. It can trace
  each instruction and dump the registers.
- **Instruction fields and opcodes** (`nachtools.mips`): field extractors
  (`rs`, `rt`, `rd`, `shamt`, `immed`, ...), the `Opcode`, `Special` and
  `BCond` enums, and mnemonic lookups.
- **Directory table** (`nachtools.directory`): a fixed-size table of file
  names and their header sectors. It can be saved to bytes and read back.
- **Stacks and lists** (`nachtools.intlist`, `nachtools.stacks`): a list of
  integers that grows at its front, plus a fixed-capacity `ArrayStack` and
  an unbounded `ListStack` that share one interface.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Command-line tools

Convert a COFF file into NOFF format:

```
coff2noff program.coff program.noff
```

If the conversion fails, the output file is removed.

Convert a COFF file into a flat memory image. A 1024-byte stack area is
added at the end:

```
coff2flat program.coff program.flat
```

Disassemble the text section of a COFF file. The file defaults to `a.out`,
and leading options are ignored:

```
nachtools-disasm program.coff
```

Print the self-test output of the stack implementations. `-n` sets how
many values are pushed (default 10):

```
nachtools-stacks -n 5
```

## Library use

```python
import struct

from nachtools.intlist import IntList
from nachtools.stacks import ArrayStack, ListStack
from nachtools.directory import Directory
from nachtools.disasm import format_instruction
from nachtools.machine import Machine, Memory

items = IntList()
items.prepend(1)
items.prepend(2)
assert items.remove() == 2

stack = ArrayStack(2)
stack.push(17)
stack.push(18)
assert stack.is_full()
assert stack.pop() == 18

unbounded = ListStack()
unbounded.push(5)
assert not unbounded.is_full()

directory = Directory(10)
directory.add("notes", 7)
assert directory.find("notes") == 7
assert directory.find("missing") is None

print(format_instruction(0x24020005, 0x10000000))  # addiu r2,0,0x5

memory = Memory()
memory.load(0x10000000, struct.pack("<I", 0x24020005))
machine = Machine(memory)
machine.run(0x10000000, ["prog"], max_steps=1)
assert machine.registers[2] == 5
```

Object files are read with `nachtools.coff.read_coff`, which returns a
`CoffImage`. Pass that image to `coff_to_noff` or `coff_to_flat`, which
return the bytes of the output file. A file that is malformed or of the
wrong kind raises `CoffError`.

Errors in the other modules are raised as exceptions:

- A push onto a full `ArrayStack` raises `StackFullError`.
- A pop from an empty stack raises `StackEmptyError`.
- The simulated machine raises `MachineError`, or `UnimplementedInstruction`
  for instructions it does not carry out (for example SWL and SWR).

## What it does not do

There is no command that runs a MIPS program. `Machine` executes
instructions, but the package has no system call handler and does not load
a COFF image into `Memory` for execution.

To run code, you do two things yourself:

- Place it in memory with `Memory.load`. `read_coff` and
  `CoffImage.section_data` give you the section contents.
- For SYSCALL and BREAK instructions, pass `Machine` a `trap_handler` object
  with `trap(machine)` and `breakpoint(machine)` methods. Without one, those
  instructions raise `MachineError`.

`Machine.run` keeps stepping until an exception is raised or `max_steps` is
reached.