"""Module GUI: rendu de l'égaliseur circulaire avec pygame.

La GUI reçoit les `Snapshot` publiés par le `SessionController` et les
affiche. L'API principale est `CircularEqualizerGUI(controller).run()`; la
boucle d'affichage appelle `controller.tick()` une fois par image.

Touches: espace = démarrer/arrêter le micro, 1/2/3 = motif de test
(sinus/pulse/aléatoire), q ou échap = quitter.
"""
import math
import time
from typing import Optional

from .analysis import format_frequency
from .colors import frequency_color, frequency_gradient_stops, hsl_to_rgb
from .config import Config
from .session import SessionController, SessionState, Snapshot

_PATTERN_KEYS = {"1": "sine", "2": "pulse", "3": "random"}
IDLE_BARS = 60
BAR_WIDTH = 3


class CircularEqualizerGUI:
    def __init__(self, controller: SessionController, config: Optional[Config] = None,
                 title: Optional[str] = None):
        self.controller = controller
        self.config = config or controller.config
        self.width = self.config.width
        self.height = self.config.height
        self.title = title or "Circular Equalizer"
        self._stop = False
        self._font = None
        self._latest = controller.snapshot
        controller.subscribe(self._on_snapshot)

    def _on_snapshot(self, snap: Snapshot):
        self._latest = snap

    # ---------- Drawing ----------

    def _draw(self, screen, pygame):
        snap = self._latest
        center = (self.width // 2, self.height // 2)
        half = min(center)
        base_radius = half * 0.4

        # translucent fill leaves a short trail behind moving bars
        fade = pygame.Surface((self.width, self.height), pygame.SRCALPHA)
        fade.fill((15, 15, 25, 60))
        screen.blit(fade, (0, 0))

        if snap.bars and snap.frequency_data is not None:
            self._draw_bars(screen, pygame, snap, center, base_radius, half * 0.5)
            self._draw_center(screen, pygame, snap, center, base_radius * 0.6)
        else:
            self._draw_idle(screen, pygame, center, base_radius)

        self._draw_hud(screen, pygame, snap)
        pygame.display.flip()

    def _draw_bars(self, screen, pygame, snap, center, base_radius, max_len):
        layer = pygame.Surface((self.width, self.height), pygame.SRCALPHA)
        for bar in snap.bars:
            length = bar.height * max_len
            cos_a, sin_a = math.cos(bar.angle), math.sin(bar.angle)
            stops = frequency_gradient_stops(bar.frequency, snap.loudness)
            # one segment per pair of stops, coloured by the inner stop
            for (t0, col), (t1, _) in zip(stops, stops[1:]):
                r0 = base_radius + t0 * length
                r1 = base_radius + t1 * length
                p0 = (center[0] + r0 * cos_a, center[1] + r0 * sin_a)
                p1 = (center[0] + r1 * cos_a, center[1] + r1 * sin_a)
                pygame.draw.line(layer, col, p0, p1, BAR_WIDTH)
            if bar.height > 0.7:
                r, g, b = frequency_color(bar.frequency, 0.8, "rgb")
                tip = (center[0] + (base_radius + length) * cos_a,
                       center[1] + (base_radius + length) * sin_a)
                pygame.draw.circle(layer, (r, g, b, 70), (int(tip[0]), int(tip[1])),
                                   int(4 + bar.height * 6))
        screen.blit(layer, (0, 0))

    def _draw_center(self, screen, pygame, snap, center, radius):
        centroid = snap.statistics.spectral.centroid
        hue = 200 + (min(centroid, 4000.0) / 4000.0) * 160
        pulse = radius * (0.9 + snap.loudness * 0.3)
        layer = pygame.Surface((self.width, self.height), pygame.SRCALPHA)
        r, g, b = hsl_to_rgb(hue, 80, 70)
        pygame.draw.circle(layer, (r, g, b, int(255 * (0.3 + snap.loudness * 0.4))), center, int(pulse))
        pygame.draw.circle(layer, (25, 25, 45, 230), center, int(radius))
        screen.blit(layer, (0, 0))

    def _draw_idle(self, screen, pygame, center, base_radius):
        t = time.monotonic()
        pulse = base_radius * (0.8 + 0.2 * math.sin(t * 2))
        layer = pygame.Surface((self.width, self.height), pygame.SRCALPHA)
        pygame.draw.circle(layer, (100, 100, 255, 90), center, int(pulse))
        bar_len = base_radius * 0.3
        for i in range(IDLE_BARS):
            angle = i * 2 * math.pi / IDLE_BARS
            freq = (i / IDLE_BARS) * 10000
            _, col = frequency_gradient_stops(freq, 0.3)[0]
            p0 = (center[0] + math.cos(angle) * base_radius, center[1] + math.sin(angle) * base_radius)
            p1 = (center[0] + math.cos(angle) * (base_radius + bar_len),
                  center[1] + math.sin(angle) * (base_radius + bar_len))
            pygame.draw.line(layer, col, p0, p1, BAR_WIDTH)
        screen.blit(layer, (0, 0))

    def _draw_hud(self, screen, pygame, snap):
        font = self._font
        lines = [f"{snap.state.value.upper()}  RMS: {round(snap.loudness * 100)}%"]
        if snap.frequency_data is not None:
            spectral = snap.statistics.spectral
            lines.append(f"Center: {format_frequency(spectral.centroid)}  "
                         f"Flatness: {spectral.flatness:.3f}  "
                         f"Rolloff: {format_frequency(spectral.rolloff)}")
        if snap.state is SessionState.FAILED and snap.error:
            lines.append(f"Error: {snap.error}")
        y = 10
        for line in lines:
            screen.blit(font.render(line, True, (200, 200, 200)), (10, y))
            y += 18

    # ---------- Loop ----------

    def _handle_key(self, pygame, evt):
        if evt.key in (pygame.K_q, pygame.K_ESCAPE):
            self._stop = True
        elif evt.key == pygame.K_SPACE:
            self.controller.toggle()
        elif evt.unicode in _PATTERN_KEYS:
            self.controller.generate_test_audio(_PATTERN_KEYS[evt.unicode])

    def run(self):
        try:
            import pygame
        except Exception as e:
            raise RuntimeError(f"pygame requis pour la GUI: {e}")

        pygame.init()
        screen = pygame.display.set_mode((self.width, self.height))
        pygame.display.set_caption(self.title)
        screen.fill((15, 15, 25))
        clock = pygame.time.Clock()
        self._font = pygame.font.SysFont(None, 20)

        try:
            while not self._stop:
                for evt in pygame.event.get():
                    if evt.type == pygame.QUIT:
                        self._stop = True
                        break
                    if evt.type == pygame.KEYDOWN:
                        self._handle_key(pygame, evt)

                self.controller.tick()
                self._draw(screen, pygame)
                clock.tick(self.config.fps)
        finally:
            pygame.quit()
