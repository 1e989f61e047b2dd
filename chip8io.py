"""
Display and keyboard state shared between the CHIP-8 core and its backends.

The interpreter only ever talks to these two objects:

- a display exposing ``clear()``, ``draw(x, y, sprite) -> bool`` and ``flush()``
- a keyboard exposing ``is_pressed(key)``, ``pressed_button()`` and ``tick()``

``FrameBuffer`` implements the XOR/collision draw algorithm and is the base
class of every rendering backend. ``KeyInput`` is the only piece of state a
backend may write from another thread, so every operation on it takes a lock.
"""

import logging
import threading
from enum import IntEnum
from typing import Callable, Dict, Optional

import numpy as np

log = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════════════

DISPLAY_W, DISPLAY_H = 64, 32          # CHIP-8 native resolution
PRESS_DURATION = 1                      # Frame ticks a registered press stays live


class Key(IntEnum):
    """Hex keypad keys plus the emulator's exit key"""
    K0 = 0x0
    K1 = 0x1
    K2 = 0x2
    K3 = 0x3
    K4 = 0x4
    K5 = 0x5
    K6 = 0x6
    K7 = 0x7
    K8 = 0x8
    K9 = 0x9
    KA = 0xA
    KB = 0xB
    KC = 0xC
    KD = 0xD
    KE = 0xE
    KF = 0xF
    EXIT = 0x10

    @property
    def is_hex(self) -> bool:
        return self is not Key.EXIT


# ═══════════════════════════════════════════════════════════════════════════════
# DISPLAY SURFACE
# ═══════════════════════════════════════════════════════════════════════════════

class FrameBuffer:
    """Monochrome XOR framebuffer with wraparound addressing.

    ``flush`` is a no-op here; rendering backends override it to push
    ``pixels`` to the screen.
    """

    def __init__(self, width: int = DISPLAY_W, height: int = DISPLAY_H):
        self.width = width
        self.height = height
        # (height, width) boolean array, row-major like the screen
        self.pixels = np.zeros((height, width), dtype=bool)
        self._columns = np.arange(8)

    def clear(self):
        self.pixels.fill(False)

    def draw(self, x: int, y: int, sprite: bytes) -> bool:
        """
        XOR a sprite onto the buffer.

        Each sprite byte is one row, most significant bit leftmost. Columns
        past the right edge wrap to the left edge of the same row and rows
        past the bottom wrap to the top.

        Returns:
            True if any lit pixel was switched off
        """
        collision = False
        xs = (x + self._columns) % self.width
        for dy, line in enumerate(bytes(sprite)):
            if not line:
                continue
            bits = np.unpackbits(np.array([line], dtype=np.uint8)).astype(bool)
            row = self.pixels[(y + dy) % self.height]
            if np.any(row[xs] & bits):
                collision = True
            row[xs] ^= bits
        return collision

    def flush(self):
        pass

    def lit(self) -> int:
        """Number of pixels currently on"""
        return int(np.count_nonzero(self.pixels))


# ═══════════════════════════════════════════════════════════════════════════════
# KEY INPUT STATE
# ═══════════════════════════════════════════════════════════════════════════════

class KeyInput:
    """Debounced set of pressed keys.

    A press is live for ``duration`` frame ticks after the backend last
    registered it. One caller at a time may subscribe to the next press.
    """

    def __init__(self, duration: int = PRESS_DURATION):
        self._lock = threading.Lock()
        self._counters: Dict[Key, int] = {}
        self._subscriber: Optional[Callable[[Key], None]] = None
        self._duration = duration

    def is_pressed(self, key) -> bool:
        with self._lock:
            return key in self._counters

    def pressed_button(self) -> Optional[Key]:
        """First live key in press order, or None"""
        with self._lock:
            for key in self._counters:
                return key
            return None

    def register_press(self, key):
        key = Key(key)
        with self._lock:
            self._counters[key] = self._duration
            subscriber, self._subscriber = self._subscriber, None
        # delivered outside the lock so the callback may touch the keyboard
        if subscriber is not None:
            log.debug("delivering key %s to waiting subscriber", key.name)
            subscriber(key)

    def wait_for_press(self, callback: Callable[[Key], None]):
        """Deliver the next registered press to ``callback``, once"""
        with self._lock:
            self._subscriber = callback

    def tick(self):
        with self._lock:
            for key in list(self._counters):
                self._counters[key] -= 1
                if self._counters[key] <= 0:
                    del self._counters[key]
