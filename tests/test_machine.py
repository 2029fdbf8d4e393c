import io

import pytest

from nachtools.disasm import format_instruction
from nachtools.machine import (
    Machine,
    MachineError,
    Memory,
    UnimplementedInstruction,
    ilog2,
)
from nachtools.mips import Opcode, Special

BASE = 0x10000000
SIZE = 0x10000


def r_type(func, rs=0, rt=0, rd=0, sh=0):
    return (rs << 21) | (rt << 16) | (rd << 11) | (sh << 6) | int(func)


def i_type(op, rs, rt, imm):
    return (int(op) << 26) | (rs << 21) | (rt << 16) | (imm & 0xFFFF)


def li(reg, value):
    return i_type(Opcode.ADDIU, 0, reg, value)


class Recorder:
    def __init__(self):
        self.calls = []

    def trap(self, machine):
        self.calls.append(("trap", machine))

    def breakpoint(self, machine):
        self.calls.append(("break", machine))


class Stop(Exception):
    pass


def make_machine(program, handler=None, **kwargs):
    memory = Memory(SIZE, BASE)
    for index, word in enumerate(program):
        memory.store_word(BASE + 4 * index, word)
    kwargs.setdefault("out", io.StringIO())
    return Machine(memory, handler, **kwargs)


def execute(program, steps=None, handler=None):
    machine = make_machine(program, handler)
    machine.run(BASE, [], len(program) if steps is None else steps)
    return machine


@pytest.mark.parametrize("value", [0, 1, 123456, -123456, 0x7FFFFFFF, -0x80000000])
def test_memory_word_round_trip(value):
    memory = Memory(SIZE, BASE)
    memory.store_word(BASE + 8, value)
    assert memory.fetch_word(BASE + 8) == value


def test_memory_is_little_endian():
    memory = Memory(SIZE, BASE)
    memory.store_word(BASE, 0x11223344)
    assert memory.read_bytes(BASE, 4) == bytes([0x44, 0x33, 0x22, 0x11])


def test_half_signed_and_unsigned_views():
    memory = Memory(SIZE, BASE)
    memory.store_half(BASE + 2, -2)
    assert memory.fetch_half(BASE + 2) == -2
    assert memory.fetch_uhalf(BASE + 2) - memory.fetch_half(BASE + 2) == 0x10000


def test_byte_signed_and_unsigned_views():
    memory = Memory(SIZE, BASE)
    memory.store_byte(BASE + 3, -5)
    assert memory.fetch_byte(BASE + 3) == -5
    assert memory.fetch_ubyte(BASE + 3) - memory.fetch_byte(BASE + 3) == 0x100


def test_load_and_read_bytes_round_trip():
    memory = Memory(SIZE, BASE)
    memory.load(BASE + 100, b"hello")
    assert memory.read_bytes(BASE + 100, 5) == b"hello"


@pytest.mark.parametrize("addr", [BASE - 4, BASE + SIZE - 2, BASE + SIZE])
def test_memory_out_of_range(addr):
    memory = Memory(SIZE, BASE)
    with pytest.raises(MachineError):
        memory.fetch_word(addr)


def test_ilog2_zero_and_bit_bounds():
    assert ilog2(0) == 0
    for value in range(1, 1000):
        bits = ilog2(value)
        assert 2 ** (bits - 1) <= value < 2**bits


def test_ilog2_treats_negative_as_unsigned():
    assert ilog2(-1) == 32


def test_setup_arguments_layout():
    machine = make_machine([])
    machine.setup_arguments(["prog", "x"])
    sp = machine.registers[29]
    memory = machine.memory
    assert sp == BASE + SIZE - 1024
    assert memory.fetch_word(sp) == 2
    first = memory.fetch_word(sp + 4)
    second = memory.fetch_word(sp + 8)
    assert memory.read_bytes(first, 5) == b"prog\0"
    assert second == first + 5
    assert memory.read_bytes(second, 2) == b"x\0"


def test_immediate_loads_and_register_arithmetic():
    a, b = 1234, -77
    machine = execute([
        li(8, a),
        li(9, b),
        r_type(Special.ADDU, 8, 9, 10),
        r_type(Special.SUBU, 8, 9, 11),
        r_type(Special.AND, 8, 9, 12),
        r_type(Special.OR, 8, 9, 13),
        r_type(Special.XOR, 8, 9, 14),
        r_type(Special.NOR, 8, 9, 15),
    ])
    reg = machine.registers
    assert reg[8] == a and reg[9] == b
    assert reg[10] == a + b
    assert reg[11] == a - b
    assert reg[12] == a & b
    assert reg[13] == a | b
    assert reg[14] == a ^ b
    assert reg[15] == ~(a | b)


def test_lui_places_immediate_in_upper_half():
    machine = execute([i_type(Opcode.LUI, 0, 8, 0x1234)])
    assert machine.registers[8] == 0x1234 << 16


def test_ori_sign_extends_immediate():
    machine = execute([i_type(Opcode.ORI, 0, 8, 0x8000)])
    assert machine.registers[8] == -0x8000


def test_set_less_than_signed_and_unsigned():
    machine = execute([
        li(8, -1),
        li(9, 1),
        r_type(Special.SLT, 8, 9, 10),
        r_type(Special.SLTU, 8, 9, 11),
    ])
    assert machine.registers[10] == 1
    assert machine.registers[11] == 0


def test_shifts():
    value = -16
    machine = execute([
        li(8, value),
        r_type(Special.SRA, 0, 8, 9, 2),
        r_type(Special.SRL, 0, 8, 10, 2),
        r_type(Special.SLL, 0, 8, 11, 2),
    ])
    reg = machine.registers
    assert reg[9] == value >> 2
    assert reg[10] == (value & 0xFFFFFFFF) >> 2
    assert reg[11] == value << 2


def test_mult_positive_and_negative():
    a, b = 1000, 3000
    machine = execute([
        li(8, a), li(9, b),
        r_type(Special.MULT, 8, 9),
        r_type(Special.MFLO, rd=10), r_type(Special.MFHI, rd=11),
    ])
    assert machine.registers[10] == a * b
    assert machine.registers[11] == 0

    machine = execute([
        li(8, -7), li(9, 6),
        r_type(Special.MULT, 8, 9),
        r_type(Special.MFLO, rd=10), r_type(Special.MFHI, rd=11),
    ])
    assert machine.registers[10] == -7 * 6
    assert machine.registers[11] == -1


@pytest.mark.parametrize("a,b", [(-7, 2), (7, -2), (100, 7), (-100, -7)])
def test_div_truncates_toward_zero(a, b):
    machine = execute([li(8, a), li(9, b), r_type(Special.DIV, 8, 9)])
    quotient, remainder = machine.lo, machine.hi
    assert quotient * b + remainder == a
    assert abs(remainder) < abs(b)
    assert remainder == 0 or (remainder < 0) == (a < 0)


def test_divu_and_division_by_zero():
    machine = execute([li(8, 100), li(9, 7), r_type(Special.DIVU, 8, 9)])
    assert machine.lo * 7 + machine.hi == 100
    with pytest.raises(MachineError):
        execute([li(8, 1), r_type(Special.DIV, 8, 0)])


def test_branch_runs_delay_slot_and_skips():
    machine = execute([
        li(8, 1),
        i_type(Opcode.BEQ, 0, 0, 2),
        li(9, 7),
        li(10, 9),
        li(11, 5),
    ], steps=4)
    reg = machine.registers
    assert reg[9] == 7
    assert reg[10] == 0
    assert reg[11] == 5
    assert machine.pc == BASE + 20


def test_jal_links_return_address():
    target = BASE + 16
    machine = execute([(int(Opcode.JAL) << 26) | ((target >> 2) & 0x03FFFFFF)], steps=1)
    assert machine.registers[31] == BASE + 8
    assert machine.npc == target


def test_jr_jumps_to_register():
    machine = execute([
        i_type(Opcode.LUI, 0, 8, BASE >> 16),
        i_type(Opcode.ORI, 8, 8, 0x20),
        r_type(Special.JR, 8),
        0,
    ])
    assert machine.pc == BASE + 0x20


def test_loads_and_stores():
    machine = make_machine([
        i_type(Opcode.LUI, 0, 8, BASE >> 16),
        i_type(Opcode.LW, 8, 9, 0x100),
        i_type(Opcode.LB, 8, 10, 0x100),
        i_type(Opcode.LBU, 8, 11, 0x100),
        i_type(Opcode.LH, 8, 12, 0x100),
        i_type(Opcode.LHU, 8, 13, 0x100),
        i_type(Opcode.SW, 8, 9, 0x104),
        i_type(Opcode.SB, 8, 9, 0x108),
    ])
    memory = machine.memory
    memory.store_word(BASE + 0x100, -0x12345679)
    machine.run(BASE, [], 8)
    reg = machine.registers
    assert reg[9] == memory.fetch_word(BASE + 0x100)
    assert reg[10] == memory.fetch_byte(BASE + 0x100)
    assert reg[11] == memory.fetch_ubyte(BASE + 0x100)
    assert reg[12] == memory.fetch_half(BASE + 0x100)
    assert reg[13] == memory.fetch_uhalf(BASE + 0x100)
    assert memory.fetch_word(BASE + 0x104) == -0x12345679
    assert memory.fetch_ubyte(BASE + 0x108) == memory.fetch_ubyte(BASE + 0x100)


def test_aligned_lwr_loads_whole_word():
    machine = make_machine([
        i_type(Opcode.LUI, 0, 8, BASE >> 16),
        li(9, 55),
        i_type(Opcode.LWR, 8, 9, 0x100),
    ])
    machine.memory.store_word(BASE + 0x100, 0x0BADF00D)
    machine.run(BASE, [], 3)
    assert machine.registers[9] == 0x0BADF00D


def test_register_zero_is_forced():
    machine = execute([li(0, 5), r_type(Special.ADDU, 0, 0, 8)])
    assert machine.registers[8] == 0


def test_syscall_and_break_reach_handler():
    handler = Recorder()
    machine = execute([r_type(Special.SYSCALL), r_type(Special.BREAK)], handler=handler)
    assert [kind for kind, _ in handler.calls] == ["trap", "break"]
    assert all(seen is machine for _, seen in handler.calls)


def test_syscall_without_handler_fails():
    with pytest.raises(MachineError):
        execute([r_type(Special.SYSCALL)])


def test_handler_exception_stops_run():
    class Exiting(Recorder):
        def trap(self, machine):
            raise Stop(machine.registers[4])

    with pytest.raises(Stop) as info:
        execute([li(4, 3), r_type(Special.SYSCALL), 0, 0], handler=Exiting())
    assert info.value.args == (3,)


@pytest.mark.parametrize("word", [
    r_type(1),
    i_type(Opcode.SWL, 0, 0, 0),
    i_type(Opcode.SWR, 0, 0, 0),
    (int(Opcode.BCOND) << 26) | (2 << 16),
    0o24 << 26,
])
def test_unimplemented_instructions(word):
    with pytest.raises(UnimplementedInstruction):
        execute([word])


def test_coprocessor_instructions_fail():
    with pytest.raises(MachineError):
        execute([int(Opcode.COP1) << 26])


def test_run_returns_steps_and_counts():
    machine = make_machine([0] * 6)
    assert machine.run(BASE, [], 5) == 5
    assert machine.icount == 5
    assert machine.pc == BASE + 20


def test_trace_writes_disassembly():
    word = li(8, 42)
    out = io.StringIO()
    machine = make_machine([word], trace=True, out=out)
    machine.run(BASE, [], 1)
    assert out.getvalue() == format_instruction(word, BASE, True) + "\n"


def test_register_dump_layout():
    out = io.StringIO()
    machine = make_machine([li(8, 42)], trace=True, regtrace=True, out=out)
    machine.run(BASE, [], 1)
    text = machine.dump_registers()
    lines = text.splitlines()
    assert [line[:3] for line in lines] == [" 0:", " 8:", "16:", "24:"]
    assert all(len(line.split()) == 9 for line in lines)
    assert lines[1].split()[1] == f"{42:08x}"
    assert out.getvalue().endswith(text + text)