"""
Chifir Assembler
================
Two-pass assembler for the Chifir virtual machine.

Pipeline:
    ┌────────────┐    ┌──────────┐    ┌──────────┐    ┌──────────────┐
    │ .asm text  │───>│  Pass 1  │───>│  Pass 2  │───>│ word image   │
    │            │    │ (labels) │    │ (encode) │    │ (list / bin) │
    └────────────┘    └──────────┘    └──────────┘    └──────────────┘

    - assembler.py: line parser, operand resolution, two-pass driver
    - macros.py:    jmp / jeq / jne / jlt / ldi expansions
"""

__version__ = "0.1.0"

from .assembler import (
    Assembler, AssemblerError, AsmLine, OPCODES,
    assemble, assemble_to_bytes, words_from_bytes,
)
from .macros import MACROS, Macro
