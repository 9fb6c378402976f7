"""
Chifir Two-Pass Assembler.

Assembles Chifir assembly text into a flat image of 32-bit words that
loads at address 0.

Input:  Assembly text
Output: Word list, little-endian binary, or a listing

Source format:
  - One statement per line. Line breaks: LF, CRLF, CR, VT, FF, NEL,
    LS, PS.
  - ';' starts a comment that runs to end of line.
  - `name:` defines a label at the address of the next instruction. An
    instruction may follow on the same line.
  - An instruction is a mnemonic and up to three operands separated by
    whitespace. Omitted trailing operands are 0.

Mnemonics (case-insensitive), checked in this order:
  opcode    brk lpc beq spc lea lra sra add sub mul div mod cmp nad drw key nop
  macro     jmp jeq jne jlt ldi (see macros.py)
  hex word  a bare hex number is emitted as the first word verbatim; this
            is how data and constants are placed

Operands:
  label     absolute address of the label (a defined label wins over a
            hex reading of the same token, so `add` can be a label)
  hex       literal value, at most 32 bits
  /n        relative: k + 4n for an instruction at k (n hex, may be
            negative), i.e. n instructions away

How the two-pass algorithm works:
  Pass 1: Walk the lines with an address counter, bind labels, check the
          syntax of every token and count instructions (macros by their
          expansion length).
  Pass 2: All labels are known; resolve operands and emit four words per
          instruction at the address pass 1 assigned.

The first error stops assembly with an AssemblerError naming the line.
"""

from __future__ import annotations
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, field
import logging
import re
import struct

from .macros import MACROS, WORD_MASK

__all__ = [
    'Assembler', 'AssemblerError', 'assemble', 'assemble_to_bytes',
    'words_from_bytes', 'OPCODES',
]

log = logging.getLogger(__name__)


class AssemblerError(Exception):
    """Raised on assembly errors."""
    def __init__(self, message: str, line_num: int = 0, line_text: str = ""):
        self.line_num = line_num
        self.line_text = line_text
        super().__init__(f"Line {line_num}: {message}" if line_num else message)


# ──────────────────────────────────────────────
# Opcode Table
# ──────────────────────────────────────────────
# mnemonic → opcode number. Every instruction is (opcode, A, B, C).

OPCODES: Dict[str, int] = {
    'brk': 0,
    'lpc': 1,
    'beq': 2,
    'spc': 3,
    'lea': 4,
    'lra': 5,
    'sra': 6,
    'add': 7,
    'sub': 8,
    'mul': 9,
    'div': 10,
    'mod': 11,
    'cmp': 12,
    'nad': 13,
    'drw': 14,
    'key': 15,
    'nop': 16,
}

MAX_OPERANDS = 3
INSTRUCTION_WORDS = 4

_LINE_BREAK_RE = re.compile(r'\r\n|[\n\r\x0b\x0c\x85\u2028\u2029]')
_IDENT_RE = re.compile(r'[A-Za-z_.][A-Za-z0-9_.\-]*\Z')
_HEX_RE = re.compile(r'[0-9A-Fa-f]+\Z')
_REL_RE = re.compile(r'/(-?)([0-9A-Fa-f]+)\Z')


def _split_lines(source: str) -> List[str]:
    return _LINE_BREAK_RE.split(source)


# ──────────────────────────────────────────────
# Line Parser
# ──────────────────────────────────────────────

@dataclass
class AsmLine:
    """Parsed assembly source line."""
    label: Optional[str] = None
    mnemonic: Optional[str] = None
    operands: List[str] = field(default_factory=list)
    comment: Optional[str] = None
    line_num: int = 0
    raw: str = ""
    address: int = 0                  # assigned in pass 1
    size: int = 0                     # instructions emitted
    emitted: List[Tuple[int, int, int, int]] = field(default_factory=list)


def _parse_line(line: str, line_num: int) -> AsmLine:
    """Split one line into label, mnemonic, operands and comment."""
    result = AsmLine(line_num=line_num, raw=line)

    text = line
    semi_pos = text.find(';')
    if semi_pos >= 0:
        result.comment = text[semi_pos+1:].strip()
        text = text[:semi_pos]

    tokens = text.split()
    if not tokens:
        return result

    if tokens[0].endswith(':'):
        name = tokens[0][:-1]
        if not _IDENT_RE.match(name):
            raise AssemblerError(f"Malformed label '{tokens[0]}'", line_num, line)
        result.label = name
        tokens = tokens[1:]
        if not tokens:
            return result

    result.mnemonic = tokens[0]
    result.operands = tokens[1:]
    return result


# ──────────────────────────────────────────────
# Operand Analysis
# ──────────────────────────────────────────────

def _check_operand(text: str, line: AsmLine):
    """Syntax-only check, done in pass 1 before labels are known."""
    if _REL_RE.match(text) or _HEX_RE.match(text) or _IDENT_RE.match(text):
        return
    raise AssemblerError(f"Malformed operand '{text}'", line.line_num, line.raw)


def _parse_hex(text: str, line: AsmLine) -> int:
    value = int(text, 16)
    if value > WORD_MASK:
        raise AssemblerError(
            f"Hex literal '{text}' does not fit in 32 bits", line.line_num, line.raw)
    return value


def _resolve_operand(text: str, k: int, symbols: Dict[str, int], line: AsmLine) -> int:
    """Operand text → 32-bit value, for an instruction at address k."""
    if text in symbols:
        return symbols[text]

    m = _REL_RE.match(text)
    if m:
        n = _parse_hex(m.group(2), line)
        if m.group(1):
            n = -n
        return (k + INSTRUCTION_WORDS * n) & WORD_MASK

    if _HEX_RE.match(text):
        return _parse_hex(text, line)

    if _IDENT_RE.match(text):
        raise AssemblerError(f"Undefined label '{text}'", line.line_num, line.raw)

    raise AssemblerError(f"Malformed operand '{text}'", line.line_num, line.raw)


# ──────────────────────────────────────────────
# The Assembler
# ──────────────────────────────────────────────

class Assembler:
    """Two-pass Chifir assembler.

    Usage:
        asm = Assembler()
        words = asm.assemble(source_text)
        asm.load_into(memory)
        image = asm.to_bytes()
    """

    def __init__(self):
        self.symbols: Dict[str, int] = {}    # label → absolute address
        self.pc: int = 0                      # address counter
        self.words: List[int] = []            # final image, loads at 0
        self._lines: List[AsmLine] = []

    def assemble(self, source: str) -> List[int]:
        """Assemble source text into a flat word list.

        Pass 1 lays out addresses and binds labels; pass 2 encodes.
        Raises AssemblerError on the first problem found.
        """
        self.symbols = {}
        self.words = []
        self._lines = []

        self._pass1(_split_lines(source))
        self._pass2()

        return list(self.words)

    # ── Pass 1 ──

    def _pass1(self, raw_lines: List[str]):
        """Parse, bind labels and size every statement."""
        self.pc = 0
        for i, raw in enumerate(raw_lines, 1):
            line = _parse_line(raw, i)
            self._lines.append(line)
            self._pass1_line(line)
        log.debug("pass 1: %d lines, %d labels, %d words",
                  len(self._lines), len(self.symbols), self.pc)

    def _pass1_line(self, line: AsmLine):
        if line.label:
            if line.label in self.symbols:
                raise AssemblerError(
                    f"Duplicate label '{line.label}' "
                    f"(already at {self.symbols[line.label]:08X})",
                    line.line_num, line.raw)
            self.symbols[line.label] = self.pc

        if line.mnemonic is None:
            return

        mnem = line.mnemonic.lower()
        nops = len(line.operands)

        if mnem in OPCODES or (mnem not in MACROS and _HEX_RE.match(mnem)):
            if nops > MAX_OPERANDS:
                raise AssemblerError(
                    f"Too many operands for '{line.mnemonic}' "
                    f"(max {MAX_OPERANDS}, got {nops})", line.line_num, line.raw)
            if mnem not in OPCODES:
                _parse_hex(mnem, line)
            line.size = 1
        elif mnem in MACROS:
            macro = MACROS[mnem]
            if nops < macro.operands:
                raise AssemblerError(
                    f"Missing operands for macro '{mnem}' "
                    f"(needs {macro.operands}, got {nops})", line.line_num, line.raw)
            if nops > macro.operands:
                raise AssemblerError(
                    f"Too many operands for macro '{mnem}' "
                    f"(takes {macro.operands}, got {nops})", line.line_num, line.raw)
            line.size = macro.length
        else:
            raise AssemblerError(
                f"Unknown mnemonic '{line.mnemonic}'", line.line_num, line.raw)

        for op in line.operands:
            _check_operand(op, line)

        line.address = self.pc
        self.pc = (self.pc + INSTRUCTION_WORDS * line.size) & WORD_MASK

    # ── Pass 2 ──

    def _pass2(self):
        """Encode every statement using the complete symbol table."""
        image: List[int] = []
        for line in self._lines:
            if line.mnemonic is None:
                continue
            line.emitted = self._pass2_line(line)
            for inst in line.emitted:
                image.extend(inst)
        self.words = image
        log.debug("pass 2: %d instructions, %d words",
                  len(image) // INSTRUCTION_WORDS, len(image))

    def _pass2_line(self, line: AsmLine) -> List[Tuple[int, int, int, int]]:
        k = line.address
        mnem = line.mnemonic.lower()
        values = [_resolve_operand(op, k, self.symbols, line) for op in line.operands]

        if mnem in OPCODES:
            values += [0] * (MAX_OPERANDS - len(values))
            return [(OPCODES[mnem], *values)]

        if mnem in MACROS:
            return MACROS[mnem].expand(k, values)

        values += [0] * (MAX_OPERANDS - len(values))
        return [(_parse_hex(mnem, line), *values)]

    # ── Output ──

    def load_into(self, memory, base: int = 0):
        """Write the image into a Memory at `base`.

        Labels are absolute addresses for an image loaded at 0.
        """
        memory.load_words(self.words, base)

    def to_bytes(self) -> bytes:
        """Image as little-endian unsigned 32-bit words."""
        return struct.pack(f'<{len(self.words)}I', *self.words)

    def get_listing(self) -> str:
        """Return a human-readable listing showing address, words, and source."""
        lines = []
        lines.append(f"{'ADDR':>8}  {'WORDS':<35}  SOURCE")
        lines.append("-" * 72)

        for asmline in self._lines:
            raw = asmline.raw.strip()
            if len(raw) > 40:
                raw = raw[:40]

            if not asmline.emitted:
                if raw:
                    lines.append(f"{'':8}  {'':35}  {raw}")
                continue

            addr = asmline.address
            for i, inst in enumerate(asmline.emitted):
                words = ' '.join(f'{w:08X}' for w in inst)
                lines.append(f"{addr:08X}  {words:<35}  {raw if i == 0 else ''}".rstrip())
                addr = (addr + INSTRUCTION_WORDS) & WORD_MASK

        if self.symbols:
            lines.append("")
            lines.append("SYMBOLS")
            for name, addr in sorted(self.symbols.items(), key=lambda kv: (kv[1], kv[0])):
                lines.append(f"{addr:08X}  {name}")

        return '\n'.join(lines)


# ──────────────────────────────────────────────
# Convenience functions
# ──────────────────────────────────────────────

def assemble(source: str) -> List[int]:
    """Assemble source text, return the word image."""
    return Assembler().assemble(source)


def assemble_to_bytes(source: str) -> bytes:
    """Assemble source text, return the little-endian binary image."""
    asm = Assembler()
    asm.assemble(source)
    return asm.to_bytes()


def words_from_bytes(data: bytes) -> List[int]:
    """Inverse of to_bytes(): little-endian bytes → word list."""
    if len(data) % 4:
        raise ValueError(f"Binary image length {len(data)} is not a multiple of 4")
    return list(struct.unpack(f'<{len(data) // 4}I', data))
