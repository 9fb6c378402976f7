"""
Chifir Emulator — Main Emulator Class

Integrates:
  - Sparse word memory (mem/memory.py)
  - Opcode decoder (cpu/decoder.py)
  - Display adapter (periph/display.py) driven by `drw`
  - Keyboard adapter (periph/keyboard.py) polled by `key`

Execution model (one step):
  1. Fetch opcode, A, B, C at PC..PC+3 (addresses wrap at 2^32)
  2. Advance PC by 4
  3. Execute the handler for the opcode; `lpc` and a taken `beq`
     overwrite PC
  4. `brk` puts PC back on itself and halts

Engine states:
  RUNNING   fetching and executing
  HALTED    `brk` executed (terminal)
  FAULTED   illegal opcode or division/modulo by zero (terminal);
            PC stays on the faulting instruction, M[A] is not written

Run termination reasons:
  - HALT:       brk
  - FAULT:      engine faulted, see emu.fault
  - BREAK:      breakpoint address reached
  - TIMEOUT:    step budget exhausted
  - CANCELLED:  request_stop() called from another thread
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Set

from .config import MachineConfig
from .cpu.decoder import OPCODES, INSTRUCTION_WORDS, decode_instruction
from .mem.memory import Memory, WORD_MASK
from .periph.display import SixelDisplay
from .periph.keyboard import Keyboard

log = logging.getLogger(__name__)


class EngineState(Enum):
    RUNNING = 'RUNNING'
    HALTED = 'HALTED'
    FAULTED = 'FAULTED'


class StopReason(Enum):
    HALT = 'HALT'
    FAULT = 'FAULT'
    BREAK = 'BREAK'
    TIMEOUT = 'TIMEOUT'
    CANCELLED = 'CANCELLED'


class FaultKind(Enum):
    ILLEGAL_OPCODE = 'ILLEGAL_OPCODE'
    DIVIDE_BY_ZERO = 'DIVIDE_BY_ZERO'
    MODULO_BY_ZERO = 'MODULO_BY_ZERO'


@dataclass(frozen=True)
class Fault:
    """Why and where the engine faulted."""
    kind: FaultKind
    pc: int
    opcode: int
    a: int
    b: int
    c: int

    def __str__(self):
        return (f"{self.kind.value} at {self.pc:08X} "
                f"(op={self.opcode:#x} a={self.a:#x} b={self.b:#x} c={self.c:#x})")


class ExecutionError(Exception):
    """Raised by raise_for_fault() when the engine has faulted."""

    def __init__(self, fault: Fault):
        self.fault = fault
        super().__init__(str(fault))


class ChifirEmulator:
    """Chifir virtual machine.

    Usage:
        emu = ChifirEmulator(config=get_profile('mini'))
        emu.load(assemble(source))
        reason = emu.run(max_steps=100_000)
        emu.raise_for_fault()
    """

    def __init__(self, memory: Optional[Memory] = None, display=None,
                 keyboard=None, config: Optional[MachineConfig] = None):
        self.config = config or MachineConfig()
        self.mem = memory if memory is not None else Memory()
        self.display = display if display is not None else SixelDisplay(
            address=self.config.display_address,
            width=self.config.display_width,
            height=self.config.display_height,
            border=self.config.display_border,
        )
        self.keyboard = keyboard if keyboard is not None else Keyboard()

        self.pc = 0
        self.state = EngineState.RUNNING
        self.fault: Optional[Fault] = None
        self.steps = 0

        # Breakpoints: set of PC addresses that stop run()
        self._breakpoints: Set[int] = set()
        self._resume_pc: Optional[int] = None

        self._stop_request = threading.Event()

        self._trace = self.config.trace
        self._trace_output = []

        self._dispatch = self._build_dispatch()

    # ══════════════════════════════════════════════
    # Loading
    # ══════════════════════════════════════════════

    def load(self, words: Iterable[int], base: int = 0):
        """Write a program image at `base` and point PC at 0."""
        words = list(words)
        self.mem.load_words(words, base)
        self.pc = 0
        log.debug("loaded %d words at %08X", len(words), base)

    @property
    def next_opcode(self) -> int:
        """Opcode word at PC, without executing anything."""
        return self.mem.read(self.pc)

    @property
    def running(self) -> bool:
        return self.state is EngineState.RUNNING

    # ══════════════════════════════════════════════
    # Execution
    # ══════════════════════════════════════════════

    def step(self) -> Optional[StopReason]:
        """Execute one instruction. Returns StopReason if stopped, else None.

        Breakpoints are not consulted; single-stepping always executes.
        Stepping a halted or faulted engine does nothing.
        """
        if self.state is EngineState.HALTED:
            return StopReason.HALT
        if self.state is EngineState.FAULTED:
            return StopReason.FAULT

        pc = self.pc
        inst = decode_instruction(self.mem, pc)

        if self._trace:
            line = inst.format()
            self._trace_output.append(line)
            log.debug(line)

        handler = self._dispatch.get(inst.opcode)
        if handler is None:
            return self._raise_fault(FaultKind.ILLEGAL_OPCODE, inst)

        self.pc = (pc + INSTRUCTION_WORDS) & WORD_MASK
        try:
            handler(pc, inst.a, inst.b, inst.c)
        except _Halt:
            self.pc = pc
            self.state = EngineState.HALTED
            self.steps += 1
            log.info("halted at %08X after %d steps", pc, self.steps)
            return StopReason.HALT
        except _FaultSignal as sig:
            self.pc = pc
            return self._raise_fault(sig.kind, inst)

        self.steps += 1
        return None

    def run(self, max_steps: Optional[int] = None) -> StopReason:
        """Run until a termination condition.

        Args:
            max_steps: Instructions to execute before TIMEOUT. Defaults to
                the configured budget; None there means unbounded.

        Returns:
            StopReason indicating why execution stopped
        """
        if max_steps is None:
            max_steps = self.config.max_steps

        resume_pc, self._resume_pc = self._resume_pc, None
        executed = 0

        while True:
            if self.state is EngineState.HALTED:
                return StopReason.HALT
            if self.state is EngineState.FAULTED:
                return StopReason.FAULT

            if self._stop_request.is_set():
                self._stop_request.clear()
                log.info("run cancelled at %08X", self.pc)
                return StopReason.CANCELLED

            if self.pc in self._breakpoints and self.pc != resume_pc:
                self._resume_pc = self.pc
                log.debug("breakpoint at %08X", self.pc)
                return StopReason.BREAK
            resume_pc = None

            if max_steps is not None and executed >= max_steps:
                log.debug("step budget of %d exhausted at %08X", max_steps, self.pc)
                return StopReason.TIMEOUT

            reason = self.step()
            executed += 1
            if reason is not None:
                return reason

    def request_stop(self):
        """Ask run() to return CANCELLED at the next instruction boundary.

        Safe to call from another thread.
        """
        self._stop_request.set()

    def raise_for_fault(self):
        if self.fault is not None:
            raise ExecutionError(self.fault)

    def _raise_fault(self, kind: FaultKind, inst) -> StopReason:
        self.fault = Fault(kind, inst.address, inst.opcode, inst.a, inst.b, inst.c)
        self.state = EngineState.FAULTED
        log.warning("fault: %s", self.fault)
        return StopReason.FAULT

    # ══════════════════════════════════════════════
    # Instruction handlers
    # ══════════════════════════════════════════════

    def _build_dispatch(self) -> dict:
        """Map opcode numbers to handler methods via the decoder's table."""
        return {op: getattr(self, f'_op_{mnem}') for op, mnem in OPCODES.items()}

    def _m(self, addr: int) -> int:
        return self.mem.read(addr)

    def _set(self, addr: int, value: int):
        self.mem.write(addr, value & WORD_MASK)

    # ── Control ──

    def _op_brk(self, pc, a, b, c):
        raise _Halt()

    def _op_lpc(self, pc, a, b, c):
        self.pc = self._m(a)

    def _op_beq(self, pc, a, b, c):
        if self._m(b) == 0:
            self.pc = self._m(a)

    def _op_spc(self, pc, a, b, c):
        self._set(a, pc)

    # ── Data movement ──

    def _op_lea(self, pc, a, b, c):
        self._set(a, self._m(b))

    def _op_lra(self, pc, a, b, c):
        self._set(a, self._m(self._m(b)))

    def _op_sra(self, pc, a, b, c):
        self._set(self._m(b), self._m(a))

    # ── Arithmetic (modulo 2^32, unsigned) ──

    def _op_add(self, pc, a, b, c):
        self._set(a, self._m(b) + self._m(c))

    def _op_sub(self, pc, a, b, c):
        self._set(a, self._m(b) - self._m(c))

    def _op_mul(self, pc, a, b, c):
        self._set(a, self._m(b) * self._m(c))

    def _op_div(self, pc, a, b, c):
        divisor = self._m(c)
        if divisor == 0:
            raise _FaultSignal(FaultKind.DIVIDE_BY_ZERO)
        self._set(a, self._m(b) // divisor)

    def _op_mod(self, pc, a, b, c):
        divisor = self._m(c)
        if divisor == 0:
            raise _FaultSignal(FaultKind.MODULO_BY_ZERO)
        self._set(a, self._m(b) % divisor)

    # ── Logic ──

    def _op_cmp(self, pc, a, b, c):
        self._set(a, 1 if self._m(b) < self._m(c) else 0)

    def _op_nad(self, pc, a, b, c):
        self._set(a, ~(self._m(b) & self._m(c)))

    # ── I/O ──

    def _op_drw(self, pc, a, b, c):
        self.display.refresh(self.mem)

    def _op_key(self, pc, a, b, c):
        self._set(a, self.keyboard.poll())

    def _op_nop(self, pc, a, b, c):
        pass

    # ══════════════════════════════════════════════
    # Breakpoint API
    # ══════════════════════════════════════════════

    def add_breakpoint(self, addr: int):
        """Stop run() before the instruction at addr executes."""
        self._breakpoints.add(addr & WORD_MASK)

    def remove_breakpoint(self, addr: int):
        self._breakpoints.discard(addr & WORD_MASK)

    def clear_breakpoints(self):
        self._breakpoints.clear()

    @property
    def breakpoints(self) -> Set[int]:
        return set(self._breakpoints)

    # ══════════════════════════════════════════════
    # Trace / Debug
    # ══════════════════════════════════════════════

    def enable_trace(self, enable: bool = True):
        """Record one disassembled line per executed instruction."""
        self._trace = enable

    def get_trace(self) -> str:
        return '\n'.join(self._trace_output)

    def clear_trace(self):
        self._trace_output.clear()

    def inspect(self) -> str:
        """One-line summary: state, step count, PC and the next instruction."""
        inst = decode_instruction(self.mem, self.pc)
        text = f"{self.state.value} steps={self.steps} pc={inst.format()}"
        if self.fault is not None:
            text += f" fault={self.fault.kind.value}"
        return text

    def reset(self):
        """Back to RUNNING at PC 0. Memory and breakpoints are kept."""
        self.pc = 0
        self.state = EngineState.RUNNING
        self.fault = None
        self.steps = 0
        self._resume_pc = None
        self._stop_request.clear()
        self._trace_output.clear()
        self.display.reset()
        self.keyboard.reset()


# Internal exceptions for flow control
class _Halt(Exception):
    pass


class _FaultSignal(Exception):
    def __init__(self, kind: FaultKind):
        super().__init__(kind.value)
        self.kind = kind
