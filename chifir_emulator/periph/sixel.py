"""
Chifir Emulator — DEC Sixel Encoder

Sixel packs six vertical pixels into one printable character:
char = 63 + bits, where bit y (0 = top) is set when pixel (x, band+y) is
lit. A band is terminated with '$-' (carriage return + next line).

  ESC P q   <bands...>   ESC \\

The frame buffer is row-major, one word per pixel, nonzero = on.
Heights that are not a multiple of six leave the missing rows dark.

The optional border draws a one-pixel frame around the image: a top row
of '_' (only the bottom bit), '~' (all six bits) at both ends of each
band, and a bottom row of '@' (only the top bit).
"""

from typing import Sequence

DCS_BEGIN = "\x1bPq"
ST_END = "\x1b\\"
CURSOR_HOME = "\x1b[1;1H"

SIXEL_BASE = 63
NEXT_BAND = "$-"


def begin() -> str:
    return DCS_BEGIN


def end() -> str:
    return ST_END


def encode(pixels: Sequence[int], width: int, height: int, border: bool = False) -> str:
    """Encode a row-major pixel buffer as sixel band data (no DCS wrapper)."""
    out = []
    size = len(pixels)

    if border:
        out.append('_' * (width + 2))
        out.append(NEXT_BAND)

    for row in range(0, height, 6):
        if border:
            out.append('~')
        for x in range(width):
            bits = 0
            for y in range(6):
                offset = x + (row + y) * width
                if offset < size and pixels[offset]:
                    bits |= 1 << y
            out.append(chr(SIXEL_BASE + bits))
        if border:
            out.append('~')
        out.append(NEXT_BAND)

    if border:
        out.append('@' * (width + 2))
        out.append(NEXT_BAND)

    return ''.join(out)


def frame(pixels: Sequence[int], width: int, height: int, border: bool = False) -> str:
    """Full terminal frame: cursor home, DCS, sixel data, ST."""
    return CURSOR_HOME + begin() + encode(pixels, width, height, border) + end()
