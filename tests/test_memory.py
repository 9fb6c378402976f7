"""
Sparse memory tests.

Reads of never-written words are zero and allocate nothing; writes mask
to 32 bits; addresses outside the 32-bit space are caller errors.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from chifir_emulator.mem.memory import Memory, PAGE_SIZE, WORD_MASK


class TestReadWrite:
    """Basic word access."""

    def test_unwritten_reads_zero(self):
        """Every never-written address reads 0."""
        mem = Memory()
        for addr in (0, 1, 0x100000, 0xDEADBEEF, WORD_MASK):
            assert mem.read(addr) == 0

    def test_read_does_not_allocate(self):
        """Reads never grow the backing store."""
        mem = Memory()
        mem.read(0x12345678)
        mem.read_block(0x100000, 512 * 684)
        assert mem.allocated_pages == 0
        assert not mem.is_allocated(0x12345678)

    def test_write_then_read(self):
        mem = Memory()
        mem.write(0x100000, 0xCAFEBABE)
        assert mem.read(0x100000) == 0xCAFEBABE
        assert mem.allocated_pages == 1
        assert mem.touched == [0x100000]

    def test_write_masks_to_32_bits(self):
        """Values wider than 32 bits keep the low word."""
        mem = Memory()
        mem.write(5, 0x1_0000_0007)
        assert mem.read(5) == 7
        mem.write(6, -1)
        assert mem.read(6) == WORD_MASK

    def test_top_of_address_space(self):
        mem = Memory()
        mem.write(WORD_MASK, 42)
        assert mem.read(WORD_MASK) == 42

    @pytest.mark.parametrize("addr", [-1, 1 << 32])
    def test_out_of_range_address(self, addr):
        """Addresses outside [0, 2^32) raise ValueError."""
        mem = Memory()
        with pytest.raises(ValueError):
            mem.read(addr)
        with pytest.raises(ValueError):
            mem.write(addr, 0)

    def test_sparse_far_apart_writes(self):
        """Two far-apart writes cost two pages."""
        mem = Memory()
        mem.write(0, 1)
        mem.write(0xF0000000, 2)
        assert mem.allocated_pages == 2


class TestBlocks:
    """Bulk access helpers."""

    def test_read_block_across_pages(self):
        mem = Memory()
        start = PAGE_SIZE - 2
        for i in range(4):
            mem.write(start + i, i + 1)
        assert mem.read_block(start, 6) == [1, 2, 3, 4, 0, 0]

    def test_read_block_past_end_raises(self):
        mem = Memory()
        with pytest.raises(ValueError):
            mem.read_block(WORD_MASK, 2)

    def test_load_words_and_dump(self):
        mem = Memory()
        mem.load_words([7, 8, 9], base=0x10)
        assert mem.dump(0x10, 4) == [7, 8, 9, 0]

    def test_hexdump_rows(self):
        mem = Memory()
        mem.load_words([1, 2, 3, 4, 5])
        text = mem.hexdump(0, 8)
        assert text.splitlines() == [
            "00000000  00000001 00000002 00000003 00000004",
            "00000004  00000005 00000000 00000000 00000000",
        ]

    def test_clear(self):
        mem = Memory()
        mem.write(1, 1)
        mem.clear()
        assert mem.read(1) == 0
        assert mem.allocated_pages == 0


class TestWatchpoints:
    """Write watchpoints."""

    def test_callback_receives_old_and_new(self):
        mem = Memory()
        seen = []
        mem.add_watchpoint(0x20, lambda addr, old, new: seen.append((addr, old, new)))
        mem.write(0x20, 5)
        mem.write(0x20, 6)
        mem.write(0x21, 7)
        assert seen == [(0x20, 0, 5), (0x20, 5, 6)]

    def test_remove_watchpoint(self):
        mem = Memory()
        seen = []
        cb = lambda addr, old, new: seen.append(new)
        mem.add_watchpoint(3, cb)
        mem.remove_watchpoint(3, cb)
        mem.write(3, 1)
        assert seen == []
