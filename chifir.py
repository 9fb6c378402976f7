#!/usr/bin/env python3
"""
chifir — Chifir Virtual Machine Toolkit
=======================================

One CLI for everything:
    chifir assemble  — Assemble Chifir source to binary / hex / listing
    chifir run       — Run a program on a sixel terminal
    chifir disasm    — Disassemble a program
    chifir monitor   — Interactive step/break/inspect prompt

PROGRAM arguments accept either assembly source or a .bin image
(little-endian 32-bit words).

Examples:
    python chifir.py assemble demo.asm -o demo.bin
    python chifir.py run demo.asm --profile mini
    python chifir.py run demo.bin --serial-port /dev/ttyUSB0 --no-display
    python chifir.py disasm demo.bin --start 10 --count 8
    python chifir.py monitor demo.asm
"""

import argparse
import contextlib
import logging
import os
import signal
import sys

# Allow running from project root without installing
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from chifir_compiler.assembler import Assembler, AssemblerError, words_from_bytes
from chifir_emulator import __version__
from chifir_emulator.config import PROFILES, DEFAULT_PROFILE, get_profile, load_config
from chifir_emulator.cpu.decoder import disassemble_text, INSTRUCTION_WORDS
from chifir_emulator.emu import ChifirEmulator, ExecutionError, StopReason
from chifir_emulator.logs import setup_logging, default_log_file
from chifir_emulator.periph.display import SixelDisplay, NullDisplay
from chifir_emulator.periph.keyboard import Keyboard, TerminalKeyboard, SerialKeyboard

log = logging.getLogger("chifir")


def parse_int_arg(value: str) -> int:
    """Parse an integer argument that may be hex (0x...), $ prefix, or decimal."""
    value = value.strip()
    if value.startswith("0x") or value.startswith("0X"):
        return int(value, 16)
    if value.startswith("$"):
        return int(value[1:], 16)
    return int(value)


def _parse_hex(s):
    """Parse hex string with optional 0x or $ prefix. Bare digits are hex."""
    s = s.strip()
    if s.startswith("0x") or s.startswith("0X"):
        return int(s, 16)
    if s.startswith("$"):
        return int(s[1:], 16)
    return int(s, 16)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chifir",
        description="Chifir virtual machine — assemble, run, disassemble, debug",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="profiles: " + ", ".join(sorted(PROFILES)),
    )
    parser.add_argument("--version", action="version", version=f"chifir {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Debug logging and tracebacks on internal errors")
    parser.add_argument("--log-dir", default=None,
                        help="Also write a detailed log file into this directory")
    sub = parser.add_subparsers(dest="command", metavar="command")

    # ── assemble ─────────────────────────────────────────────────────────
    p_asm = sub.add_parser("assemble", help="Assemble source to binary, hex or listing")
    p_asm.add_argument("input", help="Input source file")
    p_asm.add_argument("-o", "--output", help="Output file (default: stdout)")
    p_asm.add_argument("--format", choices=["bin", "hex", "listing"], default=None,
                       help="Output format (auto-detected from -o extension if not set)")

    # ── run ──────────────────────────────────────────────────────────────
    p_run = sub.add_parser("run", help="Run a program")
    p_run.add_argument("program", help="Source file or .bin image")
    p_run.add_argument("--profile", default=DEFAULT_PROFILE, choices=sorted(PROFILES),
                       help=f"Machine profile (default: {DEFAULT_PROFILE})")
    p_run.add_argument("--config", help="JSON file with overrides on top of the profile")
    p_run.add_argument("--max-steps", type=parse_int_arg, default=None,
                       help="Stop with TIMEOUT after this many instructions")
    p_run.add_argument("--serial-port", default=None,
                       help="Read keys from a serial port or pyserial URL")
    p_run.add_argument("--baud", type=int, default=9600, help="Serial baud rate")
    p_run.add_argument("--no-display", action="store_true",
                       help="Do not write sixel frames to stdout")
    p_run.add_argument("--trace", action="store_true",
                       help="Log every executed instruction (DEBUG)")
    p_run.add_argument("-v", "--verbose", action="store_true", dest="run_verbose")

    # ── disasm ───────────────────────────────────────────────────────────
    p_dis = sub.add_parser("disasm", help="Disassemble a program")
    p_dis.add_argument("program", help="Source file or .bin image")
    p_dis.add_argument("--start", default="0", help="Start address (hex)")
    p_dis.add_argument("--count", type=parse_int_arg, default=None,
                       help="Number of instructions (default: to end of image)")

    # ── monitor ──────────────────────────────────────────────────────────
    p_mon = sub.add_parser("monitor", help="Interactive debugger prompt")
    p_mon.add_argument("program", help="Source file or .bin image")
    p_mon.add_argument("--profile", default="headless", choices=sorted(PROFILES))

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    verbose = args.verbose or getattr(args, "run_verbose", False)
    setup_logging(
        console_level=logging.DEBUG if verbose else logging.WARNING,
        log_file=default_log_file(args.log_dir) if args.log_dir else None,
    )

    try:
        return COMMANDS[args.command](args)
    except FileNotFoundError as e:
        print(f"Error: File not found: {e.filename}", file=sys.stderr)
        return 1
    except AssemblerError as e:
        print(f"Assembler error: {e}", file=sys.stderr)
        return 1
    except ExecutionError as e:
        print(f"Execution error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Internal error: {e}", file=sys.stderr)
        if verbose:
            import traceback
            traceback.print_exc()
        return 2


# ═════════════════════════════════════════════════════════════════════════════
# COMMAND IMPLEMENTATIONS
# ═════════════════════════════════════════════════════════════════════════════

def load_program(path):
    """Read a program file. Returns (words, symbols).

    `.bin` files are word images; anything else is assembled as source.
    """
    if os.path.splitext(path)[1].lower() == ".bin":
        with open(path, "rb") as f:
            return words_from_bytes(f.read()), {}

    with open(path, "r", encoding="utf-8") as f:
        source = f.read()
    asm = Assembler()
    words = asm.assemble(source)
    return words, dict(asm.symbols)


def format_hex(words) -> str:
    """One instruction (four words) per line."""
    lines = []
    for i in range(0, len(words), INSTRUCTION_WORDS):
        lines.append(' '.join(f'{w:08x}' for w in words[i:i + INSTRUCTION_WORDS]))
    return '\n'.join(lines)


# ── assemble ─────────────────────────────────────────────────────────────
def cmd_assemble(args):
    with open(args.input, "r", encoding="utf-8") as f:
        source = f.read()

    asm = Assembler()
    asm.assemble(source)

    if args.format:
        out_format = args.format
    elif args.output:
        ext = os.path.splitext(args.output)[1].lower()
        out_format = {".bin": "bin", ".lst": "listing"}.get(ext, "hex")
    else:
        out_format = "hex"

    if out_format == "bin":
        result = asm.to_bytes()
    elif out_format == "listing":
        result = asm.get_listing()
    else:
        result = format_hex(asm.words)

    if args.output:
        if out_format == "bin":
            with open(args.output, "wb") as f:
                f.write(result)
        else:
            with open(args.output, "w", encoding="utf-8") as f:
                f.write(result + "\n")
        print(f"Assembled {len(asm.words)} words -> {args.output}", file=sys.stderr)
    elif out_format == "bin":
        sys.stdout.buffer.write(result)
    else:
        print(result)
    return 0


# ── run ──────────────────────────────────────────────────────────────────
def _machine_config(args):
    if args.config:
        config = load_config(args.config, profile=args.profile)
    else:
        config = get_profile(args.profile)
    overrides = {}
    if args.max_steps is not None:
        overrides["max_steps"] = args.max_steps
    if args.trace:
        overrides["trace"] = True
    if overrides:
        config = config.from_dict(overrides, base=config)
    return config


def cmd_run(args):
    words, _ = load_program(args.program)
    config = _machine_config(args)

    if args.no_display:
        display = NullDisplay()
    else:
        display = SixelDisplay(
            output=sys.stdout.buffer,
            address=config.display_address,
            width=config.display_width,
            height=config.display_height,
            border=config.display_border,
        )

    with contextlib.ExitStack() as stack:
        if args.serial_port:
            keyboard = stack.enter_context(SerialKeyboard(args.serial_port, baudrate=args.baud))
        elif sys.stdin.isatty():
            keyboard = stack.enter_context(TerminalKeyboard())
        else:
            keyboard = Keyboard()

        emu = ChifirEmulator(display=display, keyboard=keyboard, config=config)
        emu.load(words)
        log.info("running %s (%d words, profile %s)", args.program, len(words), args.profile)

        previous = signal.signal(signal.SIGINT, lambda signum, frame: emu.request_stop())
        try:
            reason = emu.run()
        finally:
            signal.signal(signal.SIGINT, previous)

    print(f"{reason.value}: {emu.inspect()}", file=sys.stderr)
    if reason is StopReason.FAULT:
        emu.raise_for_fault()
    return 0


# ── disasm ───────────────────────────────────────────────────────────────
def cmd_disasm(args):
    words, _ = load_program(args.program)
    print(disassemble_text(words, start=_parse_hex(args.start), count=args.count))
    return 0


# ── monitor ──────────────────────────────────────────────────────────────
MONITOR_HELP = """\
commands:
  help               this text
  step [n]           execute n instructions (default 1), ignoring breakpoints
  run [n]            run until halt, fault, breakpoint or n instructions
  inspect            state, PC and next instruction
  break ADDR|LABEL   stop run before the instruction at ADDR
  watch ADDR|LABEL   report every write to ADDR as old -> new
  unwatch ADDR|LABEL stop reporting writes to ADDR
  mem ADDR [N]       hexdump N words (default 16) from ADDR
  key CODE           queue a key code for the next `key` instruction
  reset              reload the program and restart at PC 0
  quit               leave the monitor
addresses are hex (0x / $ prefixes accepted) or label names"""


class Monitor:
    """Line-oriented debugger around one ChifirEmulator."""

    def __init__(self, emu: ChifirEmulator, words, symbols=None, out=None):
        self.emu = emu
        self.words = list(words)
        self.symbols = symbols or {}
        self.out = out or sys.stdout
        self._watched = set()
        self.emu.load(self.words)

    def _print(self, text):
        print(text, file=self.out)

    def _address(self, token):
        if token in self.symbols:
            return self.symbols[token]
        return _parse_hex(token)

    def _on_write(self, addr, old, new):
        self._print(f"watch {addr:08X}: {old:08X} -> {new:08X}")

    def execute(self, line: str) -> bool:
        """Run one command. Returns False when the monitor should exit."""
        parts = line.split()
        if not parts:
            return True
        cmd, params = parts[0].lower(), parts[1:]

        try:
            if cmd in ("quit", "exit", "q"):
                return False
            elif cmd in ("help", "?"):
                self._print(MONITOR_HELP)
            elif cmd in ("step", "s"):
                n = parse_int_arg(params[0]) if params else 1
                for _ in range(n):
                    reason = self.emu.step()
                    if reason is not None:
                        self._print(reason.value)
                        break
                self._print(self.emu.inspect())
            elif cmd in ("run", "r"):
                n = parse_int_arg(params[0]) if params else None
                reason = self.emu.run(max_steps=n)
                self._print(f"{reason.value}: {self.emu.inspect()}")
                if self.emu.fault is not None:
                    self._print(f"fault: {self.emu.fault}")
            elif cmd in ("inspect", "i"):
                self._print(self.emu.inspect())
            elif cmd in ("break", "b"):
                addr = self._address(params[0])
                self.emu.add_breakpoint(addr)
                self._print(f"breakpoint at {addr:08X}")
            elif cmd in ("watch", "w"):
                addr = self._address(params[0])
                if addr not in self._watched:
                    self.emu.mem.add_watchpoint(addr, self._on_write)
                    self._watched.add(addr)
                self._print(f"watchpoint at {addr:08X}")
            elif cmd == "unwatch":
                addr = self._address(params[0])
                self.emu.mem.remove_watchpoint(addr, self._on_write)
                self._watched.discard(addr)
            elif cmd in ("mem", "m"):
                addr = self._address(params[0])
                count = parse_int_arg(params[1]) if len(params) > 1 else 16
                self._print(self.emu.mem.hexdump(addr, count))
            elif cmd == "key":
                self.emu.keyboard.press(_parse_hex(params[0]))
            elif cmd == "reset":
                self.emu.mem.clear()
                self.emu.reset()
                self.emu.load(self.words)
                self._print(self.emu.inspect())
            else:
                self._print(f"unknown command '{cmd}' (try help)")
        except IndexError:
            self._print(f"{cmd}: missing argument (try help)")
        except ValueError as e:
            self._print(f"{cmd}: {e}")
        return True

    def loop(self, prompt="chifir> "):
        self._print("Chifir monitor. Type 'help' for commands.")
        while True:
            try:
                line = input(prompt)
            except EOFError:
                break
            if not self.execute(line):
                break


def cmd_monitor(args):
    words, symbols = load_program(args.program)
    config = get_profile(args.profile)
    emu = ChifirEmulator(keyboard=Keyboard(), config=config)
    Monitor(emu, words, symbols).loop()
    return 0


COMMANDS = {
    "assemble": cmd_assemble,
    "run": cmd_run,
    "disasm": cmd_disasm,
    "monitor": cmd_monitor,
}


if __name__ == "__main__":
    sys.exit(main())
