"""
Pygame window backend for the CHIP-8 core.

- ``GlowRenderer`` turns the boolean framebuffer into a phosphor-glow surface
- ``PygameDisplay`` is a ``FrameBuffer`` whose ``flush`` paints the window
- ``PygameKeyboard`` turns window events into ``KeyInput`` presses
- ``PygameFrontend`` owns pygame's lifetime as a context manager
"""

import logging
from typing import Dict, Optional, Tuple

import numpy as np
import pygame

from chip8io import DISPLAY_H, DISPLAY_W, FrameBuffer, Key, KeyInput

log = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════
# CONSTANTS & CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

SCALE = 12                              # Display scale factor
GLOW_UPSCALE = 4                        # Internal upscale for glow blur
BLOOM_STRENGTH = 0.55                   # Glow intensity (0.0-1.0)
BLUR_RADIUS = 1                         # Box blur passes (0-3)
TITLE = "CHIP-8"

# Colors (RGB)
COLORS = {
    'bg_dark': (15, 15, 25),
    'green': (0, 255, 128),
    'amber': (255, 176, 0),
    'white': (220, 220, 220),
    'blue': (100, 180, 255),
}
FG_COLORS = ('green', 'amber', 'white', 'blue')

# Keyboard mapping (QWERTY -> CHIP-8 hex keypad)
# CHIP-8 Keypad:    Keyboard:
# 1 2 3 C          1 2 3 4
# 4 5 6 D          Q W E R
# 7 8 9 E          A S D F
# A 0 B F          Z X C V
KEY_MAP = {
    pygame.K_1: Key.K1, pygame.K_2: Key.K2, pygame.K_3: Key.K3, pygame.K_4: Key.KC,
    pygame.K_q: Key.K4, pygame.K_w: Key.K5, pygame.K_e: Key.K6, pygame.K_r: Key.KD,
    pygame.K_a: Key.K7, pygame.K_s: Key.K8, pygame.K_d: Key.K9, pygame.K_f: Key.KE,
    pygame.K_z: Key.KA, pygame.K_x: Key.K0, pygame.K_c: Key.KB, pygame.K_v: Key.KF,
}
EXIT_KEY = pygame.K_ESCAPE


# ═══════════════════════════════════════════════════════════════════════════════
# GLOW EFFECT SYSTEM
# ═══════════════════════════════════════════════════════════════════════════════

class GlowRenderer:
    """Phosphor glow/bloom post-processing effect"""

    def __init__(self, width: int, height: int, scale: int,
                 fg_color: Tuple[int, int, int] = COLORS['green'],
                 bg_color: Tuple[int, int, int] = COLORS['bg_dark']):
        self.width = width
        self.height = height
        self.fg_color = fg_color
        self.bg_color = bg_color
        self.bloom_strength = BLOOM_STRENGTH
        self.blur_radius = BLUR_RADIUS
        self.glow_upscale = GLOW_UPSCALE

        self.final_size = (width * scale, height * scale)
        self._cell = np.ones((GLOW_UPSCALE, GLOW_UPSCALE), dtype=np.float32)

    @staticmethod
    def box_blur(arr: np.ndarray, passes: int = 1) -> np.ndarray:
        """Fast box blur using rolling averages"""
        a = arr.copy()
        for _ in range(passes):
            # Horizontal blur
            a = (np.roll(a, 1, axis=1) + a + np.roll(a, -1, axis=1)) / 3.0
            # Vertical blur
            a = (np.roll(a, 1, axis=0) + a + np.roll(a, -1, axis=0)) / 3.0
        return a

    def intensity(self, pixels: np.ndarray) -> np.ndarray:
        """
        Per-subpixel brightness in 0..1

        Args:
            pixels: (height, width) boolean framebuffer

        Returns:
            (height * upscale, width * upscale) float array; lit pixels are
            1.0, the halo around them fades with the blur
        """
        base = np.kron(pixels.astype(np.float32), self._cell)
        glow = self.box_blur(base, passes=1 + self.blur_radius)
        glow = np.clip(glow * self.bloom_strength, 0.0, 1.0)
        return np.maximum(base, glow)

    def render(self, pixels: np.ndarray) -> pygame.Surface:
        level = self.intensity(pixels)[..., None]
        bg = np.array(self.bg_color, dtype=np.float32)
        fg = np.array(self.fg_color, dtype=np.float32)
        rgb = (bg + (fg - bg) * level).astype(np.uint8)

        # surfarray is indexed (x, y)
        surf = pygame.surfarray.make_surface(np.ascontiguousarray(rgb.transpose(1, 0, 2)))
        return pygame.transform.scale(surf, self.final_size)


# ═══════════════════════════════════════════════════════════════════════════════
# DEVICES
# ═══════════════════════════════════════════════════════════════════════════════

class PygameDisplay(FrameBuffer):
    """Framebuffer that paints itself into a pygame window on flush"""

    def __init__(self, screen: pygame.Surface, renderer: GlowRenderer):
        super().__init__(renderer.width, renderer.height)
        self.screen = screen
        self.renderer = renderer

    def flush(self):
        self.screen.blit(self.renderer.render(self.pixels), (0, 0))
        pygame.display.flip()


class PygameKeyboard:
    """Feeds window key events into a KeyInput"""

    def __init__(self, keys: KeyInput, key_map: Optional[Dict[int, Key]] = None):
        self.keys = keys
        self.key_map = KEY_MAP if key_map is None else key_map

    def poll(self):
        """Drain the event queue, then refresh keys still held down"""
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                self.keys.register_press(Key.EXIT)
            elif event.type == pygame.KEYDOWN:
                if event.key == EXIT_KEY:
                    self.keys.register_press(Key.EXIT)
                elif event.key in self.key_map:
                    self.keys.register_press(self.key_map[event.key])

        held = pygame.key.get_pressed()
        for code, key in self.key_map.items():
            if held[code]:
                self.keys.register_press(key)


class PygameFrontend:
    """Window, display and keyboard for one run.

    Use as a context manager; pygame is shut down on exit whatever happens
    inside the block.
    """

    def __init__(self, scale: int = SCALE, color: str = 'green', title: str = TITLE):
        self.scale = scale
        self.color = color
        self.title = title
        self.keys = KeyInput()
        self.display: Optional[PygameDisplay] = None
        self.keyboard = PygameKeyboard(self.keys)

    def __enter__(self):
        pygame.init()
        try:
            pygame.display.set_caption(self.title)
            screen = pygame.display.set_mode((DISPLAY_W * self.scale, DISPLAY_H * self.scale))
        except pygame.error:
            pygame.quit()
            raise
        renderer = GlowRenderer(DISPLAY_W, DISPLAY_H, self.scale, COLORS[self.color])
        self.display = PygameDisplay(screen, renderer)
        log.debug("opened %dx%d window", *renderer.final_size)
        return self

    def __exit__(self, exc_type, exc, tb):
        pygame.quit()
        return False

    def wait_for_any_key(self, fps: int = 60) -> Key:
        """Keep the window alive until the next key press, and return it"""
        pressed = []
        self.keys.wait_for_press(pressed.append)
        clock = pygame.time.Clock()
        while not pressed:
            self.keyboard.poll()
            self.display.flush()
            clock.tick(fps)
        return pressed[0]
