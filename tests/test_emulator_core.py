"""
Chifir Emulator — Core Integration Tests

Tests that prove the emulator executes Chifir machine code. Each test
uses hand-assembled word images (opcode, A, B, C per instruction), so the
assembler is not involved.
"""

import sys
import os
import threading
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from chifir_emulator.config import MachineConfig, get_profile
from chifir_emulator.emu import (
    ChifirEmulator, EngineState, StopReason, FaultKind, ExecutionError,
)
from chifir_emulator.periph.keyboard import Keyboard

# Opcode numbers
BRK, LPC, BEQ, SPC, LEA, LRA, SRA, ADD, SUB, MUL, DIV, MOD, CMP, NAD, DRW, KEY, NOP = range(17)

MASK = 0xFFFFFFFF


def make_emu(words, config=None, **kw):
    emu = ChifirEmulator(config=config or get_profile('headless'), **kw)
    emu.load(words)
    return emu


def run_binop(opcode, b_val, c_val):
    """Execute `op 100 101 102` with M[101]=b_val, M[102]=c_val; return M[100]."""
    emu = make_emu([opcode, 0x100, 0x101, 0x102])
    emu.mem.write(0x101, b_val)
    emu.mem.write(0x102, c_val)
    assert emu.step() is None
    assert emu.pc == 4
    return emu.mem.read(0x100)


# ═══════════════════════════════════════════════
# Test Group 1: Individual Instructions
# ═══════════════════════════════════════════════

class TestControlFlow:
    """brk, lpc, beq, spc, nop."""

    def test_brk_halts_in_place(self):
        """brk → HALTED, PC stays on the brk."""
        emu = make_emu([NOP, 0, 0, 0, BRK, 0, 0, 0])
        emu.step()
        assert emu.step() is StopReason.HALT
        assert emu.state is EngineState.HALTED
        assert emu.pc == 4
        assert emu.steps == 2

    def test_step_after_halt_does_nothing(self):
        emu = make_emu([BRK, 0, 0, 0])
        emu.step()
        assert emu.step() is StopReason.HALT
        assert emu.steps == 1
        assert emu.pc == 0

    def test_lpc_loads_pc_from_memory(self):
        """lpc 100 → PC ← M[100]"""
        emu = make_emu([LPC, 0x100, 0, 0])
        emu.mem.write(0x100, 0x40)
        emu.step()
        assert emu.pc == 0x40

    def test_beq_taken_when_zero(self):
        """beq 100 101: M[101] = 0 → PC ← M[100]"""
        emu = make_emu([BEQ, 0x100, 0x101, 0])
        emu.mem.write(0x100, 0x80)
        emu.step()
        assert emu.pc == 0x80

    @pytest.mark.parametrize("value", [1, 2, 0x80000000, MASK])
    def test_beq_not_taken_when_nonzero(self, value):
        """Any nonzero value falls through to PC + 4."""
        emu = make_emu([BEQ, 0x100, 0x101, 0])
        emu.mem.write(0x100, 0x80)
        emu.mem.write(0x101, value)
        emu.step()
        assert emu.pc == 4

    def test_spc_stores_own_address(self):
        """spc at address 4 stores 4, not 8."""
        emu = make_emu([NOP, 0, 0, 0, SPC, 0x100, 0, 0])
        emu.step()
        emu.step()
        assert emu.mem.read(0x100) == 4

    def test_nop_only_advances(self):
        emu = make_emu([NOP, 0x100, 0x101, 0x102])
        pages = emu.mem.allocated_pages
        emu.step()
        assert emu.pc == 4
        assert emu.mem.allocated_pages == pages
        assert emu.mem.read(0x100) == 0


class TestDataMovement:
    """lea, lra, sra."""

    def test_lea_copies(self):
        emu = make_emu([LEA, 0x100, 0x101, 0])
        emu.mem.write(0x101, 0x1234)
        emu.step()
        assert emu.mem.read(0x100) == 0x1234

    def test_lra_indirect_read(self):
        """lra 100 101 → M[100] ← M[M[101]]"""
        emu = make_emu([LRA, 0x100, 0x101, 0])
        emu.mem.write(0x101, 0x200)
        emu.mem.write(0x200, 0xBEEF)
        emu.step()
        assert emu.mem.read(0x100) == 0xBEEF

    def test_sra_indirect_write(self):
        """sra 100 101 → M[M[101]] ← M[100]"""
        emu = make_emu([SRA, 0x100, 0x101, 0])
        emu.mem.write(0x100, 0xF00D)
        emu.mem.write(0x101, 0x300)
        emu.step()
        assert emu.mem.read(0x300) == 0xF00D

    def test_lea_can_rewrite_code(self):
        """Programs may overwrite their own instruction words."""
        emu = make_emu([LEA, 4, 0x100, 0, NOP, 0, 0, 0])
        emu.mem.write(0x100, BRK)
        emu.step()
        assert emu.step() is StopReason.HALT


class TestArithmetic:
    """add, sub, mul, div, mod — all unsigned modulo 2^32."""

    def test_add(self):
        assert run_binop(ADD, 2, 3) == 5

    def test_add_wraps(self):
        assert run_binop(ADD, MASK, 2) == 1

    def test_sub(self):
        assert run_binop(SUB, 10, 3) == 7

    def test_sub_wraps(self):
        assert run_binop(SUB, 0, 1) == MASK

    def test_mul_wraps(self):
        assert run_binop(MUL, 0x10000, 0x10000) == 0
        assert run_binop(MUL, 0x10001, 0x10001) == 0x20001

    def test_div_truncates(self):
        assert run_binop(DIV, 7, 2) == 3

    def test_div_unsigned(self):
        assert run_binop(DIV, MASK, 2) == 0x7FFFFFFF

    def test_mod(self):
        assert run_binop(MOD, 7, 3) == 1

    @pytest.mark.parametrize("opcode,kind", [
        (DIV, FaultKind.DIVIDE_BY_ZERO),
        (MOD, FaultKind.MODULO_BY_ZERO),
    ])
    def test_divide_by_zero_faults(self, opcode, kind):
        """Divisor 0 → FAULTED, M[A] untouched, PC on the instruction."""
        emu = make_emu([NOP, 0, 0, 0, opcode, 0x100, 0x101, 0x102])
        emu.mem.write(0x100, 0x55)
        emu.mem.write(0x101, 9)
        emu.step()
        assert emu.step() is StopReason.FAULT
        assert emu.state is EngineState.FAULTED
        assert emu.mem.read(0x100) == 0x55
        assert emu.pc == 4
        assert emu.fault.kind is kind
        assert emu.fault.pc == 4
        assert emu.fault.opcode == opcode
        assert (emu.fault.a, emu.fault.b, emu.fault.c) == (0x100, 0x101, 0x102)


class TestLogic:
    """cmp, nad."""

    def test_cmp_less(self):
        assert run_binop(CMP, 1, 2) == 1

    def test_cmp_equal_is_not_less(self):
        assert run_binop(CMP, 2, 2) == 0

    def test_cmp_is_unsigned(self):
        """0xFFFFFFFF is the largest value, not -1."""
        assert run_binop(CMP, MASK, 1) == 0
        assert run_binop(CMP, 1, MASK) == 1

    def test_nad(self):
        assert run_binop(NAD, MASK, MASK) == 0
        assert run_binop(NAD, 0, 0x1234) == MASK
        assert run_binop(NAD, 0xF0F0F0F0, 0xFF00FF00) == 0x0FFF0FFF

    def test_nad_as_not(self):
        """nad x x is bitwise NOT."""
        assert run_binop(NAD, 0x0000FFFF, 0x0000FFFF) == 0xFFFF0000


class TestIO:
    """drw and key."""

    def test_drw_refreshes_display(self):
        emu = make_emu([DRW, 0, 0, 0, DRW, 0, 0, 0])
        emu.mem.write(0x10000, 1)
        pages = emu.mem.allocated_pages
        emu.step()
        emu.step()
        assert emu.display.frames == 2
        assert emu.display.last_frame.startswith(b"\x1b[1;1H\x1bPq")
        assert emu.mem.allocated_pages == pages

    def test_key_stores_last_key(self):
        kb = Keyboard()
        emu = make_emu([KEY, 0x100, 0, 0, KEY, 0x101, 0, 0], keyboard=kb)
        kb.feed(b"xyz")
        emu.step()
        emu.step()
        assert emu.mem.read(0x100) == ord('z')
        assert emu.mem.read(0x101) == 0

    def test_key_without_input_stores_zero_and_advances(self):
        emu = make_emu([KEY, 0x100, 0, 0])
        emu.mem.write(0x100, 0x77)
        assert emu.step() is None
        assert emu.mem.read(0x100) == 0
        assert emu.pc == 4


class TestFaults:
    """Illegal opcodes and fault reporting."""

    @pytest.mark.parametrize("opcode", [17, 0x100, MASK])
    def test_illegal_opcode(self, opcode):
        emu = make_emu([opcode, 1, 2, 3])
        assert emu.step() is StopReason.FAULT
        assert emu.fault.kind is FaultKind.ILLEGAL_OPCODE
        assert emu.fault.opcode == opcode
        assert emu.pc == 0
        assert emu.steps == 0

    def test_raise_for_fault(self):
        emu = make_emu([17, 0, 0, 0])
        emu.raise_for_fault()
        emu.run()
        with pytest.raises(ExecutionError) as exc_info:
            emu.raise_for_fault()
        assert exc_info.value.fault is emu.fault
        assert "ILLEGAL_OPCODE" in str(exc_info.value)

    def test_run_after_fault_returns_fault(self):
        emu = make_emu([17, 0, 0, 0])
        assert emu.run() is StopReason.FAULT
        assert emu.run() is StopReason.FAULT


class TestAddressWrap:
    """PC and operand fetch wrap at 2^32."""

    def test_pc_wraps_to_zero(self):
        emu = make_emu([])
        emu.mem.write(0xFFFFFFFC, NOP)
        emu.pc = 0xFFFFFFFC
        emu.step()
        assert emu.pc == 0

    def test_instruction_straddles_top(self):
        """Operands at FFFFFFFF, 0, 1 belong to the instruction at FFFFFFFE."""
        emu = make_emu([0x100, 0x101])
        emu.mem.write(0xFFFFFFFE, LEA)
        emu.mem.write(0xFFFFFFFF, 0x200)
        emu.mem.write(0x100, 0xAB)
        emu.pc = 0xFFFFFFFE
        emu.step()
        assert emu.mem.read(0x200) == 0xAB
        assert emu.pc == 2


# ═══════════════════════════════════════════════
# Test Group 2: Programs and run()
# ═══════════════════════════════════════════════

# key 2 0 3 / sub 2 2 3 / beq b 2 f / lpc e 0 0
# Halts (via the zero word at address f) once the key read equals 3.
WAIT_FOR_CTRL_C = [
    0xf, 0x2, 0x0, 0x3,
    0x8, 0x2, 0x2, 0x3,
    0x2, 0xb, 0x2, 0xf,
    0x1, 0xe, 0x0, 0x0,
]

# lpc 3 0 0 → PC ← M[3] = 0, forever
SPIN = [LPC, 3, 0, 0]


class TestPrograms:
    """Whole programs."""

    def test_wait_for_key_loops_without_key(self):
        emu = make_emu(WAIT_FOR_CTRL_C)
        assert emu.run(max_steps=200) is StopReason.TIMEOUT
        assert emu.state is EngineState.RUNNING

    def test_wait_for_key_ignores_other_keys(self):
        kb = Keyboard()
        emu = make_emu(WAIT_FOR_CTRL_C, keyboard=kb)
        kb.press(ord('a'))
        assert emu.run(max_steps=200) is StopReason.TIMEOUT

    def test_wait_for_key_halts_on_ctrl_c(self):
        kb = Keyboard()
        emu = make_emu(WAIT_FOR_CTRL_C, keyboard=kb)
        assert emu.run(max_steps=40) is StopReason.TIMEOUT
        kb.press(3)
        assert emu.run(max_steps=40) is StopReason.HALT
        assert emu.pc == 0xf

    def test_counter_loop(self):
        """Count M[100] from 0 to 5, then halt."""
        words = [
            ADD, 0x100, 0x100, 0x101,      # 0:  M[100] += 1
            SUB, 0x102, 0x103, 0x100,      # 4:  M[102] = 5 - M[100]
            BEQ, 0x104, 0x102, 0,          # 8:  done → M[104]
            LPC, 0x105, 0, 0,              # c:  loop → M[105]
            BRK, 0, 0, 0,                  # 10
        ]
        emu = make_emu(words)
        emu.mem.write(0x101, 1)
        emu.mem.write(0x103, 5)
        emu.mem.write(0x104, 0x10)
        emu.mem.write(0x105, 0)
        assert emu.run(max_steps=1000) is StopReason.HALT
        assert emu.mem.read(0x100) == 5
        assert emu.pc == 0x10


class TestRun:
    """Budgets, breakpoints, cancellation."""

    def test_timeout_counts_steps(self):
        emu = make_emu(SPIN)
        assert emu.run(max_steps=10) is StopReason.TIMEOUT
        assert emu.steps == 10

    def test_budget_from_config(self):
        emu = make_emu(SPIN, config=MachineConfig(
            display_address=0x10000, display_width=8, display_height=6, max_steps=7))
        assert emu.run() is StopReason.TIMEOUT
        assert emu.steps == 7

    def test_breakpoint_stops_before_instruction(self):
        emu = make_emu([NOP, 0, 0, 0, NOP, 0, 0, 0, BRK, 0, 0, 0])
        emu.add_breakpoint(4)
        assert emu.run() is StopReason.BREAK
        assert emu.pc == 4
        assert emu.steps == 1

    def test_run_continues_past_breakpoint(self):
        emu = make_emu([NOP, 0, 0, 0, NOP, 0, 0, 0, BRK, 0, 0, 0])
        emu.add_breakpoint(4)
        emu.run()
        assert emu.run() is StopReason.HALT
        assert emu.pc == 8

    def test_breakpoint_hit_every_loop(self):
        emu = make_emu(SPIN)
        emu.add_breakpoint(0)
        assert emu.run() is StopReason.BREAK
        assert emu.steps == 0
        assert emu.run() is StopReason.BREAK
        assert emu.steps == 1

    def test_remove_and_clear_breakpoints(self):
        emu = make_emu(SPIN)
        emu.add_breakpoint(0)
        emu.remove_breakpoint(0)
        assert emu.breakpoints == set()
        emu.add_breakpoint(0)
        emu.clear_breakpoints()
        assert emu.run(max_steps=3) is StopReason.TIMEOUT

    def test_request_stop_before_run(self):
        emu = make_emu(SPIN)
        emu.request_stop()
        assert emu.run() is StopReason.CANCELLED
        assert emu.steps == 0
        assert emu.run(max_steps=2) is StopReason.TIMEOUT

    def test_request_stop_from_other_thread(self):
        emu = make_emu(SPIN)
        result = []
        worker = threading.Thread(target=lambda: result.append(emu.run()))
        worker.start()
        emu.request_stop()
        worker.join(timeout=10)
        assert not worker.is_alive()
        assert result == [StopReason.CANCELLED]


class TestTraceAndInspect:
    """Trace, inspect, reset, load."""

    def test_trace_lines(self):
        emu = make_emu([NOP, 1, 2, 3, ADD, 0x100, 0xa, 0xb, BRK, 0, 0, 0])
        emu.enable_trace()
        emu.run()
        assert emu.get_trace().splitlines() == [
            "00000000: nop 1 2 3",
            "00000004: add 100 a b",
            "00000008: brk 0 0 0",
        ]
        emu.clear_trace()
        assert emu.get_trace() == ""

    def test_trace_off_by_default(self):
        emu = make_emu([NOP, 0, 0, 0])
        emu.step()
        assert emu.get_trace() == ""

    def test_inspect(self):
        emu = make_emu([NOP, 1, 2, 3])
        assert emu.inspect() == "RUNNING steps=0 pc=00000000: nop 1 2 3"

    def test_inspect_shows_fault(self):
        emu = make_emu([DIV, 0x100, 0x101, 0x102])
        emu.step()
        assert emu.inspect().startswith("FAULTED steps=0 pc=00000000: div 100 101 102")
        assert emu.inspect().endswith("fault=DIVIDE_BY_ZERO")

    def test_next_opcode(self):
        emu = make_emu([KEY, 0, 0, 0, DRW, 0, 0, 0])
        assert emu.next_opcode == KEY
        emu.step()
        assert emu.next_opcode == DRW

    def test_reset_keeps_memory(self):
        emu = make_emu([ADD, 0x100, 0x101, 0x101, BRK, 0, 0, 0])
        emu.mem.write(0x101, 4)
        emu.run()
        emu.reset()
        assert emu.state is EngineState.RUNNING
        assert emu.pc == 0
        assert emu.steps == 0
        assert emu.fault is None
        assert emu.mem.read(0x100) == 8

    def test_load_at_base(self):
        emu = make_emu([])
        emu.pc = 0x40
        emu.load([NOP, 0, 0, 0], base=0x20)
        assert emu.pc == 0
        assert emu.mem.read(0x20) == NOP
