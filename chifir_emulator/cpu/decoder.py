"""
Chifir Emulator — Opcode Decoder / Disassembler

Every instruction is four words: opcode, A, B, C. There are no addressing
modes and no prefixes, so decoding is a table lookup on the first word and
a straight read of the next three.

This table is the emulator's view of the instruction set. The assembler
keeps its own mnemonic → opcode table (chifir_compiler/assembler.py); the
round-trip tests check that the two agree.

  Op  Mnem  Effect
   0  brk   halt
   1  lpc   PC ← M[A]
   2  beq   if M[B] = 0 then PC ← M[A]
   3  spc   M[A] ← PC
   4  lea   M[A] ← M[B]
   5  lra   M[A] ← M[M[B]]
   6  sra   M[M[B]] ← M[A]
   7  add   M[A] ← M[B] + M[C]
   8  sub   M[A] ← M[B] − M[C]
   9  mul   M[A] ← M[B] × M[C]
  10  div   M[A] ← M[B] ÷ M[C]
  11  mod   M[A] ← M[B] mod M[C]
  12  cmp   M[A] ← 1 if M[B] < M[C] else 0
  13  nad   M[A] ← NOT(M[B] AND M[C])
  14  drw   refresh the display
  15  key   M[A] ← last key pressed
  16  nop   no effect
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional, Sequence, Union

from ..mem.memory import Memory, WORD_MASK

OPCODES = {
    0:  'brk',
    1:  'lpc',
    2:  'beq',
    3:  'spc',
    4:  'lea',
    5:  'lra',
    6:  'sra',
    7:  'add',
    8:  'sub',
    9:  'mul',
    10: 'div',
    11: 'mod',
    12: 'cmp',
    13: 'nad',
    14: 'drw',
    15: 'key',
    16: 'nop',
}

INSTRUCTION_WORDS = 4


class IllegalOpcode(Exception):
    """Raised when an undefined opcode is encountered."""
    pass


@dataclass(frozen=True)
class DecodedInstruction:
    """One four-word instruction as it sits in memory."""
    address: int
    opcode: int
    a: int = 0
    b: int = 0
    c: int = 0

    @property
    def is_legal(self) -> bool:
        return self.opcode in OPCODES

    @property
    def mnemonic(self) -> str:
        try:
            return OPCODES[self.opcode]
        except KeyError:
            raise IllegalOpcode(
                f"Unknown opcode {self.opcode:#x} at {self.address:08X}") from None

    @property
    def words(self) -> tuple:
        return (self.opcode, self.a, self.b, self.c)

    def format(self) -> str:
        """Render as 'ADDRESS: mnm a b c', or a .word line for data."""
        if self.is_legal:
            return (f"{self.address:08X}: {self.mnemonic} "
                    f"{self.a:x} {self.b:x} {self.c:x}")
        return (f"{self.address:08X}: .word "
                f"{self.opcode:x} {self.a:x} {self.b:x} {self.c:x}")


def decode_instruction(memory: Memory, pc: int) -> DecodedInstruction:
    """Fetch the four words at pc. Addresses wrap at the top of memory."""
    return DecodedInstruction(
        address=pc,
        opcode=memory.read(pc),
        a=memory.read((pc + 1) & WORD_MASK),
        b=memory.read((pc + 2) & WORD_MASK),
        c=memory.read((pc + 3) & WORD_MASK),
    )


def disassemble(source: Union[Memory, Sequence[int]], start: int = 0,
                count: Optional[int] = None) -> Iterator[DecodedInstruction]:
    """Yield decoded instructions every four words from `start`.

    `source` is a Memory or a flat word list (as returned by the assembler).
    With a word list and no count, decoding stops at the end of the list;
    with a Memory, `count` is required.
    """
    if not isinstance(source, Memory):
        words = list(source)
        if count is None:
            count = max(0, (len(words) - start + INSTRUCTION_WORDS - 1) // INSTRUCTION_WORDS)
        mem = Memory()
        mem.load_words(words)
        source = mem
    elif count is None:
        raise ValueError("count is required when disassembling from Memory")

    for i in range(count):
        yield decode_instruction(source, (start + i * INSTRUCTION_WORDS) & WORD_MASK)


def disassemble_text(source: Union[Memory, Sequence[int]], start: int = 0,
                     count: Optional[int] = None) -> str:
    return '\n'.join(inst.format() for inst in disassemble(source, start, count))
