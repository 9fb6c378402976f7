"""
Chifir Emulator — Keyboard Input Sources

The `key` instruction asks for "the most recent key code since the last
poll". Every source here implements that one call:

    poll() -> int     last byte received since the previous poll, or 0

Only the last byte matters: if three keys arrive between two polls, the
program sees the third. Polling never blocks.

Sources:
  Keyboard          in-memory; keys injected with press()/feed() (tests, scripts)
  StreamKeyboard    drains a non-blocking binary stream on each poll
  TerminalKeyboard  raw-mode TTY stdin, drained with select()
  SerialKeyboard    pyserial port (any serial_for_url URL, incl. loop://)
"""

import logging
import os
import select
import sys
from typing import BinaryIO, Optional

import serial

log = logging.getLogger(__name__)

NO_KEY = 0


class Keyboard:
    """In-memory key source. Also the base class for the stream sources."""

    def __init__(self):
        self._last: Optional[int] = None

    def press(self, code: int):
        """Inject one key code (0..0xFF)."""
        if not 0 <= code <= 0xFF:
            raise ValueError(f"Key code out of range: {code:#x}")
        self._last = code

    def feed(self, data: bytes):
        """Inject a burst of bytes; only the last one is kept."""
        if data:
            self._last = data[-1]

    def _drain(self) -> bytes:
        """Collect bytes that arrived since the last poll (override)."""
        return b''

    def poll(self) -> int:
        self.feed(self._drain())
        code = self._last
        self._last = None
        return NO_KEY if code is None else code

    def reset(self):
        self._last = None


class StreamKeyboard(Keyboard):
    """Key source backed by a binary stream.

    The stream's read() must not block: a BytesIO, a pipe opened with
    O_NONBLOCK, or anything returning b'' / None when empty.
    """

    def __init__(self, stream: BinaryIO):
        super().__init__()
        self.stream = stream

    def _drain(self) -> bytes:
        data = self.stream.read()
        return data or b''


class TerminalKeyboard(Keyboard):
    """Raw-mode terminal input.

    Use as a context manager so the terminal settings are restored:

        with TerminalKeyboard() as kb:
            emu = ChifirEmulator(keyboard=kb)
            emu.run()

    In raw mode Ctrl+C arrives as byte 0x03 instead of raising
    KeyboardInterrupt, so programs can test for it themselves.
    """

    def __init__(self, fd: Optional[int] = None):
        super().__init__()
        self.fd = sys.stdin.fileno() if fd is None else fd
        self._saved = None

    def __enter__(self):
        import termios
        import tty

        self._saved = termios.tcgetattr(self.fd)
        tty.setraw(self.fd)
        log.debug("terminal fd %d in raw mode", self.fd)
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        if self._saved is not None:
            import termios

            termios.tcsetattr(self.fd, termios.TCSADRAIN, self._saved)
            self._saved = None
            log.debug("terminal fd %d restored", self.fd)

    def _drain(self) -> bytes:
        chunks = []
        while True:
            ready, _, _ = select.select([self.fd], [], [], 0)
            if not ready:
                break
            data = os.read(self.fd, 1024)
            if not data:
                break
            chunks.append(data)
        return b''.join(chunks)


class SerialKeyboard(Keyboard):
    """Key source on a serial line.

    `url` is anything serial.serial_for_url() accepts: a device path
    (/dev/ttyUSB0, COM3) or a URL such as loop:// or socket://host:port.
    An already-open port can be passed instead with `port=`.
    """

    def __init__(self, url: Optional[str] = None, baudrate: int = 9600,
                 port: Optional[serial.SerialBase] = None):
        super().__init__()
        if port is None:
            if url is None:
                raise ValueError("SerialKeyboard needs a url or an open port")
            port = serial.serial_for_url(url, baudrate=baudrate, timeout=0)
            log.info("keyboard on serial %s @ %d baud", url, baudrate)
        self.port = port

    def _drain(self) -> bytes:
        waiting = self.port.in_waiting
        if not waiting:
            return b''
        return self.port.read(waiting)

    def close(self):
        self.port.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
