"""
Chifir assembler macros.

The instruction set has no immediate operands and no relative jumps:
every operand is an address, and `lpc`/`beq` load the new PC from memory.
Each macro therefore plants its target inside its own instruction words
and points the jump at that word. `k` below is the macro's own address,
and all arithmetic wraps at 2^32.

  jmp T        lpc k+3 0 T                   PC ← T
  jeq T X      beq k+3 X T                   if M[X] = 0: PC ← T
  jne T X      beq k+3 X k+8                 if M[X] = 0: skip the lpc
               lpc k+7 0 T                   PC ← T
  jlt T X Y    cmp k+10 X Y                  scratch ← M[X] < M[Y]
               beq k+7 k+10 k+12             if not less: skip the lpc
               lpc k+11 0 T                  PC ← T
  ldi A V      lea A k+3 V                   M[A] ← V

`jlt` uses the unused B word of its own `lpc` (k+10) as the scratch cell
for the comparison result.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence, Tuple

WORD_MASK = 0xFFFFFFFF

# Opcode numbers the expansions are built from
LPC = 1
BEQ = 2
LEA = 4
CMP = 12

Instruction = Tuple[int, int, int, int]


@dataclass(frozen=True)
class Macro:
    name: str
    operands: int       # exact operand count, no defaulting
    length: int         # instructions emitted
    expander: Callable[[int, Sequence[int]], List[Instruction]]

    def expand(self, k: int, operands: Sequence[int]) -> List[Instruction]:
        """Expand at address k with already-resolved operand values."""
        if len(operands) != self.operands:
            raise ValueError(
                f"{self.name} takes {self.operands} operand(s), got {len(operands)}")
        insts = self.expander(k, operands)
        return [tuple(w & WORD_MASK for w in inst) for inst in insts]


def _jmp(k, ops):
    target, = ops
    return [(LPC, k + 3, 0, target)]


def _jeq(k, ops):
    target, x = ops
    return [(BEQ, k + 3, x, target)]


def _jne(k, ops):
    target, x = ops
    return [
        (BEQ, k + 3, x, k + 8),
        (LPC, k + 7, 0, target),
    ]


def _jlt(k, ops):
    target, x, y = ops
    return [
        (CMP, k + 10, x, y),
        (BEQ, k + 7, k + 10, k + 12),
        (LPC, k + 11, 0, target),
    ]


def _ldi(k, ops):
    dest, value = ops
    return [(LEA, dest, k + 3, value)]


MACROS: Dict[str, Macro] = {
    m.name: m for m in (
        Macro('jmp', 1, 1, _jmp),
        Macro('jeq', 2, 1, _jeq),
        Macro('jne', 2, 2, _jne),
        Macro('jlt', 3, 3, _jlt),
        Macro('ldi', 2, 1, _ldi),
    )
}
