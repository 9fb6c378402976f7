"""
Keyboard source tests: in-memory, stream, pipe-backed terminal, serial loop://.
"""
import sys
import os
import io
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
import serial
from chifir_emulator.periph.keyboard import (
    Keyboard, StreamKeyboard, TerminalKeyboard, SerialKeyboard, NO_KEY,
)


class TestKeyboard:
    """Last key since last poll, 0 when none."""

    def test_no_key(self):
        assert Keyboard().poll() == NO_KEY == 0

    def test_press_then_poll_clears(self):
        kb = Keyboard()
        kb.press(0x41)
        assert kb.poll() == 0x41
        assert kb.poll() == 0

    def test_last_key_wins(self):
        kb = Keyboard()
        kb.press(1)
        kb.press(2)
        kb.feed(b"abc")
        assert kb.poll() == ord('c')

    def test_empty_feed_keeps_pending(self):
        kb = Keyboard()
        kb.press(7)
        kb.feed(b"")
        assert kb.poll() == 7

    @pytest.mark.parametrize("code", [0x100, -1])
    def test_press_rejects_out_of_range(self, code):
        kb = Keyboard()
        with pytest.raises(ValueError):
            kb.press(code)
        assert kb.poll() == 0

    def test_reset(self):
        kb = Keyboard()
        kb.press(9)
        kb.reset()
        assert kb.poll() == 0


class TestStreamKeyboard:
    """Draining a non-blocking stream."""

    def test_drains_bytes_io(self):
        stream = io.BytesIO(b"hello")
        kb = StreamKeyboard(stream)
        assert kb.poll() == ord('o')
        assert kb.poll() == 0

    def test_none_from_stream_is_no_key(self):
        class Empty:
            def read(self):
                return None
        assert StreamKeyboard(Empty()).poll() == 0


class TestTerminalKeyboard:
    """select()-based draining, exercised on a pipe (no TTY needed)."""

    def test_drains_pipe(self):
        r, w = os.pipe()
        try:
            kb = TerminalKeyboard(fd=r)
            assert kb.poll() == 0
            os.write(w, b"\x01\x02\x03")
            assert kb.poll() == 3
            assert kb.poll() == 0
        finally:
            os.close(r)
            os.close(w)

    def test_close_without_enter_is_noop(self):
        r, w = os.pipe()
        try:
            TerminalKeyboard(fd=r).close()
        finally:
            os.close(r)
            os.close(w)


class TestSerialKeyboard:
    """pyserial loop:// port."""

    def test_loopback(self):
        with SerialKeyboard("loop://", baudrate=115200) as kb:
            assert kb.poll() == 0
            kb.port.write(b"xy")
            assert kb.poll() == ord('y')
            assert kb.poll() == 0

    def test_existing_port(self):
        port = serial.serial_for_url("loop://", timeout=0)
        kb = SerialKeyboard(port=port)
        port.write(b"\x03")
        assert kb.poll() == 3
        kb.close()
        assert not port.is_open

    def test_needs_url_or_port(self):
        with pytest.raises(ValueError):
            SerialKeyboard()
