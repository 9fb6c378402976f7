"""
Chifir Emulator — Frame Buffer Display

The display is a window of memory: `width * height` words starting at
`address`, row-major, one word per pixel. The machine has no display
registers; the `drw` instruction is the only signal, and it simply asks
the adapter to repaint from the window.

SixelDisplay renders the window as DEC sixel graphics. The last frame is
always kept in `last_frame` (bytes) so tests and headless runs can inspect
it; when an output stream is bound the frame is also written and flushed.

Default window: address 0x100000, 512 x 684 pixels.
"""

import logging
from typing import BinaryIO, Optional

from . import sixel

log = logging.getLogger(__name__)

DEFAULT_ADDRESS = 0x100000
DEFAULT_WIDTH = 512
DEFAULT_HEIGHT = 684


class SixelDisplay:
    """Render a memory window to a sixel-capable terminal."""

    def __init__(self, output: Optional[BinaryIO] = None,
                 address: int = DEFAULT_ADDRESS,
                 width: int = DEFAULT_WIDTH,
                 height: int = DEFAULT_HEIGHT,
                 border: bool = False):
        if width <= 0 or height <= 0:
            raise ValueError(f"Display size must be positive, got {width}x{height}")
        if address < 0 or address + width * height > 1 << 32:
            raise ValueError(
                f"Display window {address:#x}+{width * height:#x} exceeds address space")
        self.output = output
        self.address = address
        self.width = width
        self.height = height
        self.border = border

        self.last_frame: bytes = b''
        self.frames = 0

    def refresh(self, memory):
        """Repaint from memory. Reads only; never allocates pages."""
        pixels = memory.read_block(self.address, self.width * self.height)
        self.last_frame = sixel.frame(
            pixels, self.width, self.height, self.border).encode('ascii')
        self.frames += 1

        if self.output is not None:
            self.output.write(self.last_frame)
            self.output.flush()

        log.debug("frame %d: %dx%d from %08X (%d bytes)",
                  self.frames, self.width, self.height, self.address,
                  len(self.last_frame))

    def reset(self):
        self.last_frame = b''
        self.frames = 0


class NullDisplay:
    """Display that only counts refreshes. Used for --no-display runs."""

    def __init__(self):
        self.frames = 0

    def refresh(self, memory):
        self.frames += 1

    def reset(self):
        self.frames = 0
