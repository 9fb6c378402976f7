# Chifir Emulator: pure-software Chifir virtual machine
# Part of the Chifir toolchain (see chifir_compiler/ for the assembler)
"""
Chifir Emulator
===============
A seventeen-opcode virtual machine over a sparse 2^32-word memory,
with a memory-mapped sixel display and a polled keyboard.

Architecture:
    ┌──────────┐  fetch/decode   ┌────────────────┐   drw   ┌──────────────┐
    │  Memory  │<───────────────>│ ChifirEmulator │───────>│ SixelDisplay │
    │ (paged)  │   read/write    │   (emu.py)     │        │ (periph/)    │
    └──────────┘                 └────────────────┘        └──────────────┘
                                         │ key
                                         v
                                 ┌────────────────┐
                                 │    Keyboard    │  in-memory / terminal / serial
                                 └────────────────┘

    - mem/memory.py:       paged word memory, reads never allocate
    - cpu/decoder.py:      opcode table, decode + disassemble
    - emu.py:              fetch/execute loop, faults, breakpoints, trace
    - periph/display.py:   frame buffer window -> sixel frames
    - periph/keyboard.py:  "last key since last poll" sources
    - config.py:           display window and run limits, named profiles
    - logs.py:             rich console / file logging for the CLI
"""

__version__ = "0.1.0"

from .mem.memory import Memory
from .cpu.decoder import (
    OPCODES, IllegalOpcode, DecodedInstruction,
    decode_instruction, disassemble, disassemble_text,
)
from .emu import (
    ChifirEmulator, EngineState, StopReason, FaultKind, Fault, ExecutionError,
)
from .config import MachineConfig, PROFILES, get_profile, load_config
from .periph.display import SixelDisplay, NullDisplay
from .periph.keyboard import Keyboard, StreamKeyboard, TerminalKeyboard, SerialKeyboard
