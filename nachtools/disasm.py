"""Disassembly of MIPS little-endian code, from raw words or COFF files."""

from __future__ import annotations

import struct
import sys
from collections.abc import Sequence
from pathlib import Path

from nachtools.coff import FileHeader, SectionHeader
from nachtools.mips import (
    NOP,
    BCond,
    Opcode,
    Special,
    immed,
    normal_op_name,
    off16,
    off26,
    rd,
    rs,
    rt,
    shamt,
    special_op_name,
    top4,
)

MEMORY_SIZE = 1 << 24
MEMORY_OFFSET = 0x10000000
COFF_MAGIC = 0x162
LOAD_ORDER = (".text", ".rdata", ".data", ".sdata", ".sbss", ".bss")

REGISTER_NAMES: tuple[str, ...] = (
    "0", "r1", "r2", "r3", "r4", "r5", "r6", "r7", "r8", "r9",
    "r10", "r11", "r12", "r13", "r14", "r15", "r16", "r17", "r18", "r19",
    "r20", "r21", "r22", "r23", "r24", "r25", "r26", "r27", "gp", "sp",
    "r30", "r31",
)

_SHIFT_IMMEDIATE = {Special.SLL, Special.SRL, Special.SRA}
_SHIFT_VARIABLE = {Special.SLLV, Special.SRLV, Special.SRAV}
_RS_ONLY = {Special.JR, Special.JALR, Special.MFLO, Special.MTLO}
_RD_ONLY = {Special.MFHI, Special.MTHI}
_RS_RT = {Special.MULT, Special.MULTU, Special.DIV, Special.DIVU}
_THREE_REGISTER = {
    Special.ADD, Special.ADDU, Special.SUB, Special.SUBU, Special.AND,
    Special.OR, Special.XOR, Special.NOR, Special.SLT, Special.SLTU,
}

_ARITH_IMMEDIATE = {
    Opcode.ADDI, Opcode.ADDIU, Opcode.SLTI, Opcode.SLTIU,
    Opcode.ANDI, Opcode.ORI, Opcode.XORI,
}
_MEMORY = {
    Opcode.LB, Opcode.LH, Opcode.LWL, Opcode.LW, Opcode.LBU, Opcode.LHU,
    Opcode.LWR, Opcode.SB, Opcode.SH, Opcode.SWL, Opcode.SW, Opcode.SWR,
    Opcode.LWC0, Opcode.LWC1, Opcode.LWC2, Opcode.LWC3,
    Opcode.SWC0, Opcode.SWC1, Opcode.SWC2, Opcode.SWC3,
}

_BCOND_NAMES = {
    BCond.BLTZ: "bltz",
    BCond.BGEZ: "bgez",
    BCond.BLTZAL: "bltzal",
    BCond.BGEZAL: "bgezal",
}


def _reg(number: int) -> str:
    return REGISTER_NAMES[number]


def _word(value: int) -> str:
    return f"{value & 0xFFFFFFFF:08x}"


def _hex(value: int) -> str:
    return f"{value & 0xFFFFFFFF:x}"


def _special_operands(instruction: int, function: int) -> str:
    if function in _SHIFT_IMMEDIATE:
        return f"{_reg(rd(instruction))},{_reg(rt(instruction))},0x{shamt(instruction):x}"
    if function in _SHIFT_VARIABLE:
        return f"{_reg(rd(instruction))},{_reg(rt(instruction))},{_reg(rs(instruction))}"
    if function in _RS_ONLY:
        return _reg(rs(instruction))
    if function in _RD_ONLY:
        return _reg(rd(instruction))
    if function in _RS_RT:
        return f"{_reg(rs(instruction))},{_reg(rt(instruction))}"
    if function in _THREE_REGISTER:
        return f"{_reg(rd(instruction))},{_reg(rs(instruction))},{_reg(rt(instruction))}"
    return ""


def _normal_operands(instruction: int, opcode: int, pc: int) -> str:
    if opcode in (Opcode.J, Opcode.JAL):
        return _word(top4(pc) | off26(instruction))
    if opcode in (Opcode.BEQ, Opcode.BNE):
        target = off16(instruction) + pc + 4
        return f"{_reg(rt(instruction))},{_reg(rs(instruction))},{_word(target)}"
    if opcode in _ARITH_IMMEDIATE:
        return f"{_reg(rt(instruction))},{_reg(rs(instruction))},0x{_hex(immed(instruction))}"
    if opcode == Opcode.LUI:
        return f"{_reg(rt(instruction))},0x{_hex(immed(instruction))}"
    if opcode in _MEMORY:
        return f"{_reg(rt(instruction))},0x{_hex(immed(instruction))}({_reg(rs(instruction))})"
    return ""


def format_instruction(instruction: int, pc: int, long_format: bool = True) -> str:
    """Render one instruction at address ``pc`` as a line of assembly."""
    instruction &= 0xFFFFFFFF
    prefix = f"{_word(pc)}: {instruction:08x}  " if long_format else ""
    prefix += "\t"
    opcode = instruction >> 26

    if instruction == NOP:
        return prefix + "nop"
    if opcode == Opcode.SPECIAL:
        function = instruction & 0x3F
        return f"{prefix}{special_op_name(function)}\t{_special_operands(instruction, function)}"
    if opcode == Opcode.BCOND:
        name = _BCOND_NAMES.get(rt(instruction), "BCOND")
        target = off16(instruction) + pc + 4
        return f"{prefix}{name}\t{_reg(rs(instruction))},{_word(target)}"
    return f"{prefix}{normal_op_name(opcode)}\t{_normal_operands(instruction, opcode, pc)}"


def disassemble(code: bytes, base: int = MEMORY_OFFSET) -> list[str]:
    """Disassemble little-endian code words loaded at address ``base``."""
    padded = bytes(code) + bytes(-len(code) % 4)
    return [
        format_instruction(word, base + 4 * index)
        for index, (word,) in enumerate(struct.iter_unpack("<I", padded))
    ]


def _find_section(sections: list[SectionHeader], name: str) -> SectionHeader | None:
    return next((section for section in sections if section.name == name), None)


def _load(data: bytes, program: str, filename: str) -> tuple[bytearray, int] | None:
    """Load a COFF file into memory; return the memory and the text size."""
    if len(data) < FileHeader.SIZE:
        print(f"{program}: Load read error on {filename}", file=sys.stderr)
        return None
    file_header = FileHeader.from_bytes(data)
    if file_header.magic != COFF_MAGIC:
        print("big-endian object file (little-endian interp)", file=sys.stderr)
        return None

    offset = FileHeader.SIZE + file_header.opthdr
    sections = []
    for _ in range(file_header.nscns):
        chunk = data[offset : offset + SectionHeader.SIZE]
        if len(chunk) < SectionHeader.SIZE:
            print(f"{program}: Load read error on {filename}", file=sys.stderr)
            return None
        sections.append(SectionHeader.from_bytes(chunk))
        offset += SectionHeader.SIZE

    memory = bytearray()
    text_size = 0
    for name in LOAD_ORDER:
        section = _find_section(sections, name)
        if section is None:
            print(f"{name[1:]} section header missing")
            continue
        if name == ".text":
            text_size = section.size
        if section.scnptr == 0:
            continue
        start = section.vaddr - MEMORY_OFFSET
        end = start + section.size
        if start < 0 or end > MEMORY_SIZE:
            print("MEMSIZE too small. Fix and recompile.")
            return None
        contents = data[section.scnptr : section.scnptr + section.size]
        contents += bytes(section.size - len(contents))
        if len(memory) < end:
            memory.extend(bytes(end - len(memory)))
        memory[start:end] = contents
    return memory, text_size


def main(argv: Sequence[str] | None = None) -> int:
    """Disassemble the text section of a COFF file (default ``a.out``)."""
    program = "disasm"
    args = list(sys.argv[1:] if argv is None else argv)
    while args and args[0].startswith("-"):
        args.pop(0)
    filename = args[0] if args else "a.out"

    try:
        data = Path(filename).read_bytes()
    except OSError:
        print(f"{program}: Could not open '{filename}'", file=sys.stderr)
        return 1

    loaded = _load(data, program, filename)
    if loaded is None:
        return 1
    memory, text_size = loaded
    code = bytes(memory[:text_size])
    code += bytes(text_size - len(code))
    for line in disassemble(code, MEMORY_OFFSET):
        print(line)
    return 0