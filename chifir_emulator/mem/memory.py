"""
Chifir Emulator — Sparse 32-bit Word Memory

The address space is 2^32 words of 32 bits each (16 GiB if it were ever
fully backed). Programs touch a tiny fraction of it: code near address 0,
a frame buffer somewhere above, a handful of scratch cells. Memory is
therefore paged:

  address  →  page number (address >> PAGE_BITS), offset (address & PAGE_MASK)

A page is a plain list of PAGE_SIZE ints, allocated on the first WRITE
that lands in it. Reads of unallocated pages return 0 and allocate
nothing, so scanning a frame buffer or a stray pointer never grows the
backing store.

Addresses outside [0, 2^32) are a caller error (ValueError). Values are
masked to 32 bits on write.
"""

from typing import Callable, Dict, Iterable, List, Optional

WORD_MASK = 0xFFFFFFFF
ADDRESS_LIMIT = 1 << 32

PAGE_BITS = 12
PAGE_SIZE = 1 << PAGE_BITS   # 4096 words per page
PAGE_MASK = PAGE_SIZE - 1


def _check_address(addr: int) -> int:
    if not 0 <= addr < ADDRESS_LIMIT:
        raise ValueError(f"Address out of range: {addr:#x}")
    return addr


class Memory:
    """Sparse word-addressable memory with write watchpoints.

    Usage:
        mem = Memory()
        mem.write(0x100000, 1)
        mem.read(0x100000)      # 1
        mem.read(0xDEADBEEF)    # 0, nothing allocated
    """

    def __init__(self):
        self._pages: Dict[int, List[int]] = {}

        # Watchpoints: addr → [callback(addr, old_val, new_val)]
        self._watchpoints: Dict[int, List[Callable]] = {}

    # --- Core read/write ---

    def read(self, addr: int) -> int:
        """Read one word. Never-written addresses read as 0."""
        _check_address(addr)
        page = self._pages.get(addr >> PAGE_BITS)
        if page is None:
            return 0
        return page[addr & PAGE_MASK]

    def write(self, addr: int, value: int):
        """Write one word, allocating its page on demand."""
        _check_address(addr)
        value &= WORD_MASK

        page = self._pages.get(addr >> PAGE_BITS)
        if page is None:
            page = [0] * PAGE_SIZE
            self._pages[addr >> PAGE_BITS] = page

        offset = addr & PAGE_MASK
        old = page[offset]
        page[offset] = value

        if addr in self._watchpoints:
            for cb in self._watchpoints[addr]:
                cb(addr, old, value)

    # --- Bulk access ---

    def read_block(self, start: int, length: int) -> List[int]:
        """Read `length` consecutive words starting at `start`.

        Walks page by page so untouched pages cost one dict lookup and
        are never allocated. The block may not run past the top of the
        address space.
        """
        _check_address(start)
        if length < 0 or start + length > ADDRESS_LIMIT:
            raise ValueError(f"Block {start:#x}+{length:#x} exceeds address space")

        out: List[int] = []
        addr = start
        end = start + length
        while addr < end:
            page_no = addr >> PAGE_BITS
            offset = addr & PAGE_MASK
            take = min(PAGE_SIZE - offset, end - addr)
            page = self._pages.get(page_no)
            if page is None:
                out.extend([0] * take)
            else:
                out.extend(page[offset:offset + take])
            addr += take
        return out

    def load_words(self, words: Iterable[int], base: int = 0):
        """Write a sequence of words starting at `base` (program image load)."""
        for i, word in enumerate(words):
            self.write(base + i, word)

    def clear(self):
        """Discard every allocated page. Watchpoints are kept."""
        self._pages.clear()

    # --- Introspection ---

    @property
    def allocated_pages(self) -> int:
        """Number of pages that have been physically allocated."""
        return len(self._pages)

    @property
    def touched(self) -> List[int]:
        """Base addresses of the allocated pages, ascending."""
        return sorted(page << PAGE_BITS for page in self._pages)

    def is_allocated(self, addr: int) -> bool:
        return (_check_address(addr) >> PAGE_BITS) in self._pages

    def dump(self, start: int = 0, length: int = 16) -> List[int]:
        """Return a list copy of a memory window."""
        return self.read_block(start, length)

    def hexdump(self, start: int, length: int = 64) -> str:
        """Four words per row, one instruction's worth, for debugging."""
        words = self.read_block(start, length)
        lines = []
        for offset in range(0, len(words), 4):
            row = ' '.join(f'{w:08X}' for w in words[offset:offset + 4])
            lines.append(f'{start + offset:08X}  {row}')
        return '\n'.join(lines)

    # --- Watchpoints ---

    def add_watchpoint(self, addr: int, callback: Callable):
        """Call callback(addr, old_val, new_val) on every write to addr."""
        _check_address(addr)
        self._watchpoints.setdefault(addr, []).append(callback)

    def remove_watchpoint(self, addr: int, callback: Optional[Callable] = None):
        """Remove a watchpoint. If callback is None, removes all on that addr."""
        if addr in self._watchpoints:
            if callback is None:
                del self._watchpoints[addr]
            else:
                self._watchpoints[addr] = [
                    cb for cb in self._watchpoints[addr] if cb != callback
                ]
