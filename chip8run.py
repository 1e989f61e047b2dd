#!/usr/bin/env python3
"""
Command line entry point: run a CHIP-8 ROM in a pygame window, or print its
disassembly.

Usage:
  chip8vm ROM [--disassemble] [--logfile PATH] [--debug]
              [--clock-hz N] [--scale N] [--color NAME] [--hold]

Exit status is 0 when the program is closed with the exit key, 1 when the ROM
cannot be loaded, the window cannot be opened or the program hits a fatal
instruction.
"""

import argparse
import logging
import sys

import pygame

from chip8dis import iter_disassembly
from chip8gfx import FG_COLORS, SCALE, PygameFrontend
from chip8vm import CLOCK_HZ, PROGRAM_START, CPUError, LoadError, Scheduler, load_rom, read_rom

log = logging.getLogger("chip8vm")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="chip8vm", description="CHIP-8 virtual machine")
    parser.add_argument("rom",
        help="Raw CHIP-8 program image, loaded at 0x200")
    parser.add_argument("-d", "--disassemble",
        help="Print the program's instructions instead of running it",
        action="store_true")
    parser.add_argument("--logfile",
        help="Write log output to this file instead of stderr",
        metavar="PATH")
    parser.add_argument("--debug",
        help="Log every executed instruction",
        action="store_true")
    parser.add_argument("--clock-hz",
        help=f"Instructions per second (default {CLOCK_HZ})",
        type=int,
        default=CLOCK_HZ)
    parser.add_argument("--scale",
        help=f"Window pixels per CHIP-8 pixel (default {SCALE})",
        type=int,
        default=SCALE)
    parser.add_argument("--color",
        help="Phosphor color",
        choices=FG_COLORS,
        default="green")
    parser.add_argument("--hold",
        help="After a fatal error keep the window open until a key is pressed",
        action="store_true")
    return parser.parse_args(argv)


def configure_logging(logfile=None, debug=False):
    logging.basicConfig(
        filename=logfile,
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s")


def print_disassembly(path, out=None):
    for line in iter_disassembly(read_rom(path), PROGRAM_START):
        print(line, file=out or sys.stdout)


def run(args) -> int:
    cpu = load_rom(args.rom)

    print("CHIP-8 keypad: 1234 / QWER / ASDF / ZXCV    ESC = Exit")

    with PygameFrontend(scale=args.scale, color=args.color) as frontend:
        cpu.display = frontend.display
        cpu.keyboard = frontend.keys
        scheduler = Scheduler(cpu, clock_hz=args.clock_hz,
                              poll_input=frontend.keyboard.poll)
        try:
            scheduler.run()
        except CPUError as e:
            log.error("program failed: %s", e)
            if args.hold:
                pygame.display.set_caption(f"CHIP-8 halted: {e}")
                frontend.wait_for_any_key()
            return 1
    return 0


def main(argv=None) -> int:
    """Main entry point"""
    args = parse_args(argv)
    configure_logging(args.logfile, args.debug)

    try:
        if args.disassemble:
            print_disassembly(args.rom)
            return 0
        return run(args)
    except LoadError as e:
        log.error("%s", e)
        return 1
    except pygame.error as e:
        log.error("unable to initialise graphics: %s", e)
        return 1
    except KeyboardInterrupt:
        log.info("interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
