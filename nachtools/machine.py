"""A simulated MIPS little-endian processor and its flat memory."""

from __future__ import annotations

import sys
from collections.abc import Iterable
from typing import Protocol, TextIO

from nachtools.disasm import MEMORY_OFFSET, MEMORY_SIZE, format_instruction
from nachtools.mips import BCond, Opcode, Special, immed, rd, rs, rt, shamt

MASK32 = 0xFFFFFFFF
STACK_RESERVE = 1024
ARGV_SLOTS = 32


def _s32(value: int) -> int:
    value &= MASK32
    return value - (1 << 32) if value & 0x80000000 else value


def _u32(value: int) -> int:
    return value & MASK32


class MachineError(Exception):
    """Raised when the simulated machine cannot go on."""


class UnimplementedInstruction(MachineError):
    """Raised on an instruction the simulator does not carry out."""


class TrapHandler(Protocol):
    """Something that services system calls and breakpoints."""

    def trap(self, machine: Machine) -> None: ...

    def breakpoint(self, machine: Machine) -> None: ...


class Memory:
    """Byte-addressed little-endian memory starting at ``offset``."""

    def __init__(self, size: int = MEMORY_SIZE, offset: int = MEMORY_OFFSET) -> None:
        if size <= 0:
            raise ValueError("memory size must be positive")
        self.size = size
        self.offset = offset
        self._data = bytearray(size)

    def _index(self, addr: int, width: int) -> int:
        index = _u32(addr) - self.offset
        if index < 0 or index + width > self.size:
            raise MachineError(f"address 0x{_u32(addr):08x} out of range")
        return index

    def _fetch(self, addr: int, width: int, signed: bool) -> int:
        index = self._index(addr, width)
        return int.from_bytes(self._data[index : index + width], "little", signed=signed)

    def _store(self, addr: int, width: int, value: int) -> None:
        index = self._index(addr, width)
        mask = (1 << (8 * width)) - 1
        self._data[index : index + width] = (value & mask).to_bytes(width, "little")

    def fetch_word(self, addr: int) -> int:
        """Read a signed 32-bit word."""
        return self._fetch(addr, 4, True)

    def fetch_half(self, addr: int) -> int:
        """Read a signed 16-bit half word."""
        return self._fetch(addr, 2, True)

    def fetch_uhalf(self, addr: int) -> int:
        """Read an unsigned 16-bit half word."""
        return self._fetch(addr, 2, False)

    def fetch_byte(self, addr: int) -> int:
        """Read a signed byte."""
        return self._fetch(addr, 1, True)

    def fetch_ubyte(self, addr: int) -> int:
        """Read an unsigned byte."""
        return self._fetch(addr, 1, False)

    def store_word(self, addr: int, value: int) -> None:
        """Write the low 32 bits of ``value``."""
        self._store(addr, 4, value)

    def store_half(self, addr: int, value: int) -> None:
        """Write the low 16 bits of ``value``."""
        self._store(addr, 2, value)

    def store_byte(self, addr: int, value: int) -> None:
        """Write the low 8 bits of ``value``."""
        self._store(addr, 1, value)

    def load(self, addr: int, data: bytes) -> None:
        """Copy ``data`` into memory at ``addr``."""
        if not data:
            return
        index = self._index(addr, len(data))
        self._data[index : index + len(data)] = data

    def read_bytes(self, addr: int, length: int) -> bytes:
        """Return ``length`` bytes starting at ``addr``."""
        if length <= 0:
            return b""
        index = self._index(addr, length)
        return bytes(self._data[index : index + length])


def _multiply(t1: int, t2: int, signed: bool) -> tuple[int, int]:
    """Return (HI, LO) the way the simulator computes a product."""
    negative = False
    if signed:
        if t1 < 0:
            t1 = _s32(-t1)
            negative = not negative
        if t2 < 0:
            t2 = _s32(-t2)
            negative = not negative
    lo = _s32(t1 * t2)
    t1l, t1h = t1 & 0xFFFF, (t1 >> 16) & 0xFFFF
    t2l, t2h = t2 & 0xFFFF, (t2 >> 16) & 0xFFFF
    hi = _s32(_s32(t1h * t2h) + (_s32(t1h * t2l) >> 16) + (_s32(t2h * t1l) >> 16))
    if negative:
        lo = _s32(~lo + 1)
        hi = ~hi
        if lo == 0:
            hi = _s32(hi + 1)
    return hi, lo


def _divide(a: int, b: int) -> tuple[int, int]:
    """Return (HI, LO): remainder and quotient, truncated toward zero."""
    if b == 0:
        raise MachineError("division by zero")
    quotient = abs(a) // abs(b)
    if (a < 0) != (b < 0):
        quotient = -quotient
    return _s32(a - quotient * b), _s32(quotient)


def _divide_unsigned(a: int, b: int) -> tuple[int, int]:
    ua, ub = _u32(a), _u32(b)
    if ub == 0:
        raise MachineError("division by zero")
    return _s32(ua % ub), _s32(ua // ub)


class Machine:
    """Registers, program counters and the fetch-execute cycle."""

    def __init__(
        self,
        memory: Memory | None = None,
        trap_handler: TrapHandler | None = None,
        trace: bool = False,
        regtrace: bool = False,
        out: TextIO | None = None,
    ) -> None:
        self.memory = memory if memory is not None else Memory()
        self.trap_handler = trap_handler
        self.trace = trace
        self.regtrace = regtrace
        self.out = out
        self.registers = [0] * 32
        self.hi = 0
        self.lo = 0
        self.pc = self.memory.offset
        self.npc = self.pc + 4
        self.icount = 0

    @property
    def _stream(self) -> TextIO:
        return self.out if self.out is not None else sys.stdout

    def setup_arguments(self, argv: Iterable[str | bytes]) -> None:
        """Place argc and the argument strings below the top of memory."""
        args = [arg.encode() if isinstance(arg, str) else bytes(arg) for arg in argv]
        sp = self.memory.offset + self.memory.size - STACK_RESERVE
        self.registers[29] = _s32(sp)
        self.memory.store_word(sp, len(args))
        slot = sp + 4
        text = slot + ARGV_SLOTS
        for raw in args:
            self.memory.load(text, raw + b"\0")
            self.memory.store_word(slot, text)
            slot += 4
            text += len(raw) + 1

    def run(
        self,
        start_pc: int = MEMORY_OFFSET,
        argv: Iterable[str | bytes] = (),
        max_steps: int | None = None,
    ) -> int:
        """Start at ``start_pc`` and execute until stopped; return the steps taken."""
        self.pc = _u32(start_pc)
        self.npc = _u32(start_pc + 4)
        self.setup_arguments(argv)
        steps = 0
        while max_steps is None or steps < max_steps:
            self.step()
            steps += 1
        return steps

    def step(self) -> int:
        """Execute one instruction and return it."""
        xpc = self.pc
        self.pc = self.npc
        self.npc = _u32(self.pc + 4)
        instr = _u32(self.memory.fetch_word(xpc))
        self.icount += 1
        self.registers[0] = 0
        if instr != 0:
            self._execute(instr, xpc)
        if self.trace:
            self._stream.write(format_instruction(instr, xpc, True) + "\n")
            if self.regtrace:
                self.dump_registers()
        return instr

    def dump_registers(self) -> str:
        """Write the 32 registers in four rows of eight; return the text."""
        rows = [
            f"{base:2d}:" + "".join(f" {_u32(value):08x}" for value in self.registers[base : base + 8])
            for base in range(0, 32, 8)
        ]
        text = "\n".join(rows) + "\n"
        self._stream.write(text)
        return text

    def _handler(self) -> TrapHandler:
        if self.trap_handler is None:
            raise MachineError("no system call handler")
        return self.trap_handler

    def _branch(self, xpc: int, instr: int) -> None:
        self.npc = _u32(xpc + 4 + (immed(instr) << 2))

    def _execute(self, instr: int, xpc: int) -> None:
        opcode = instr >> 26
        if opcode == Opcode.SPECIAL:
            self._special(instr, xpc)
        elif opcode == Opcode.BCOND:
            self._bcond(instr, xpc)
        else:
            self._normal(instr, opcode, xpc)

    def _special(self, instr: int, xpc: int) -> None:
        reg = self.registers
        s, t, d = rs(instr), rt(instr), rd(instr)
        match instr & 0x3F:
            case Special.SLL:
                reg[d] = _s32(reg[t] << shamt(instr))
            case Special.SRL:
                reg[d] = _s32(_u32(reg[t]) >> shamt(instr))
            case Special.SRA:
                reg[d] = reg[t] >> shamt(instr)
            case Special.SLLV:
                reg[d] = _s32(reg[t] << (reg[s] & 31))
            case Special.SRLV:
                reg[d] = _s32(_u32(reg[t]) >> (reg[s] & 31))
            case Special.SRAV:
                reg[d] = reg[t] >> (reg[s] & 31)
            case Special.JR:
                self.npc = _u32(reg[s])
            case Special.JALR:
                self.npc = _u32(reg[s])
                reg[d] = _s32(xpc + 8)
            case Special.SYSCALL:
                self._handler().trap(self)
            case Special.BREAK:
                self._handler().breakpoint(self)
            case Special.MFHI:
                reg[d] = self.hi
            case Special.MTHI:
                self.hi = reg[s]
            case Special.MFLO:
                reg[d] = self.lo
            case Special.MTLO:
                self.lo = reg[s]
            case Special.MULT:
                self.hi, self.lo = _multiply(reg[s], reg[t], True)
            case Special.MULTU:
                self.hi, self.lo = _multiply(reg[s], reg[t], False)
            case Special.DIV:
                self.hi, self.lo = _divide(reg[s], reg[t])
            case Special.DIVU:
                self.hi, self.lo = _divide_unsigned(reg[s], reg[t])
            case Special.ADD | Special.ADDU:
                reg[d] = _s32(reg[s] + reg[t])
            case Special.SUB | Special.SUBU:
                reg[d] = _s32(reg[s] - reg[t])
            case Special.AND:
                reg[d] = reg[s] & reg[t]
            case Special.OR:
                reg[d] = reg[s] | reg[t]
            case Special.XOR:
                reg[d] = reg[s] ^ reg[t]
            case Special.NOR:
                reg[d] = ~(reg[s] | reg[t])
            case Special.SLT:
                reg[d] = int(reg[s] < reg[t])
            case Special.SLTU:
                reg[d] = int(_u32(reg[s]) < _u32(reg[t]))
            case _:
                raise UnimplementedInstruction("Unimplemented Instruction")

    def _bcond(self, instr: int, xpc: int) -> None:
        reg = self.registers
        condition = rt(instr)
        if condition in (BCond.BLTZAL, BCond.BGEZAL):
            reg[31] = _s32(xpc + 8)
        value = reg[rs(instr)]
        match condition:
            case BCond.BLTZ | BCond.BLTZAL:
                taken = value < 0
            case BCond.BGEZ | BCond.BGEZAL:
                taken = value >= 0
            case _:
                raise UnimplementedInstruction("Unimplemented Instruction")
        if taken:
            self._branch(xpc, instr)

    def _normal(self, instr: int, opcode: int, xpc: int) -> None:
        reg = self.registers
        mem = self.memory
        s, t = rs(instr), rt(instr)
        imm = immed(instr)
        addr = _s32(reg[s] + imm)
        match opcode:
            case Opcode.J:
                self.npc = (xpc & 0xF0000000) | ((instr & 0x03FFFFFF) << 2)
            case Opcode.JAL:
                reg[31] = _s32(xpc + 8)
                self.npc = (xpc & 0xF0000000) | ((instr & 0x03FFFFFF) << 2)
            case Opcode.BEQ:
                if reg[s] == reg[t]:
                    self._branch(xpc, instr)
            case Opcode.BNE:
                if reg[s] != reg[t]:
                    self._branch(xpc, instr)
            case Opcode.BLEZ:
                if reg[s] <= 0:
                    self._branch(xpc, instr)
            case Opcode.BGTZ:
                if reg[s] > 0:
                    self._branch(xpc, instr)
            case Opcode.ADDI | Opcode.ADDIU:
                reg[t] = _s32(reg[s] + imm)
            case Opcode.SLTI:
                reg[t] = int(reg[s] < imm)
            case Opcode.SLTIU:
                reg[t] = int(_u32(reg[s]) < _u32(imm))
            # Logical immediates use the sign-extended field.
            case Opcode.ANDI:
                reg[t] = reg[s] & imm
            case Opcode.ORI:
                reg[t] = reg[s] | imm
            case Opcode.XORI:
                reg[t] = reg[s] ^ imm
            case Opcode.LUI:
                reg[t] = _s32(instr << 16)
            case Opcode.LB:
                reg[t] = mem.fetch_byte(addr)
            case Opcode.LH:
                reg[t] = mem.fetch_half(addr)
            case Opcode.LWL:
                word = mem.fetch_word(_u32(addr) & 0xFFFFFFFC)
                reg[t] = _s32(reg[t] | (word << (8 * (addr & 3))))
            case Opcode.LW:
                reg[t] = mem.fetch_word(addr)
            case Opcode.LBU:
                reg[t] = mem.fetch_ubyte(addr)
            case Opcode.LHU:
                reg[t] = mem.fetch_uhalf(addr)
            case Opcode.LWR:
                shift = addr & 3
                kept = 0 if shift == 0 else reg[t] & (-1 << (8 * shift))
                word = mem.fetch_word(_u32(addr) & 0xFFFFFFFC)
                reg[t] = _s32(kept | (word >> (8 * ((-addr) & 3))))
            case Opcode.SB:
                mem.store_byte(addr, reg[t])
            case Opcode.SH:
                mem.store_half(addr, reg[t])
            case Opcode.SW:
                mem.store_word(addr, reg[t])
            case Opcode.SWL:
                raise UnimplementedInstruction("sorry, no SWL yet.")
            case Opcode.SWR:
                raise UnimplementedInstruction("sorry, no SWR yet.")
            case (
                Opcode.LWC0 | Opcode.LWC1 | Opcode.LWC2 | Opcode.LWC3
                | Opcode.SWC0 | Opcode.SWC1 | Opcode.SWC2 | Opcode.SWC3
                | Opcode.COP0 | Opcode.COP1 | Opcode.COP2 | Opcode.COP3
            ):
                raise MachineError("Sorry, no coprocessors.")
            case _:
                raise UnimplementedInstruction("Unimplemented Instruction")


def ilog2(value: int) -> int:
    """Number of significant bits of ``value`` taken as an unsigned 32-bit word."""
    return _u32(value).bit_length()