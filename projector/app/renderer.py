"""
Force-field renderer.

Composites one frame per tick: a mirrored, dimmed camera backdrop, a grid of
field lines bent away from every tracked object, optional flow particles, and a
marker (ring, label, confidence bar) per object. Positional state lives in the
registry; the renderer only keeps its tick counter, particle trails and the
last good frame.
"""
from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional, Tuple

import cv2
import numpy as np

from .config import FieldSettings
from .field import FlowParticles, sample_field, screen_position, screen_positions
from .state import TrackedObject

logger = logging.getLogger(__name__)

# Colors (BGR)
BACKGROUND = (0, 0, 0)
FIELD_BASE = (110, 55, 20)       # Dim blue
FIELD_HOT = (255, 235, 120)      # Bright cyan
MARKER = (255, 170, 0)           # Sky blue ring
MARKER_TEXT = (255, 200, 60)
BAR_BG = (70, 50, 30)
BAR_FILL = (120, 230, 90)        # Green

MAX_EXTRA_THICKNESS = 3


def field_color(strength: float) -> Tuple[int, int, int]:
    """Interpolate from base to hot; every channel rises with strength."""
    s = min(1.0, max(0.0, float(strength)))
    return tuple(int(round(b + (h - b) * s)) for b, h in zip(FIELD_BASE, FIELD_HOT))


def field_thickness(strength: float) -> int:
    s = min(1.0, max(0.0, float(strength)))
    return 1 + int(round(s * MAX_EXTRA_THICKNESS))


class FieldRenderer:
    """Draws the reactive field for a registry snapshot."""

    def __init__(
        self,
        width: int = 1280,
        height: int = 720,
        settings: Optional[FieldSettings] = None,
        *,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.width = width
        self.height = height
        self.settings = settings or FieldSettings()
        self.frame_count = 0
        self.font = cv2.FONT_HERSHEY_SIMPLEX
        self._last_frame: Optional[np.ndarray] = None

        self._particles: Optional[FlowParticles] = None
        self._trails: Optional[np.ndarray] = None
        if self.settings.style in ("particles", "both"):
            self._particles = FlowParticles(self.settings.particle_count, width, height, rng=rng)
            self._trails = np.zeros((height, width, 3), dtype=np.uint8)

    def screen_position(self, obj: TrackedObject) -> Tuple[int, int]:
        px, py = screen_position(obj, self.width, self.height)
        return int(round(px)), int(round(py))

    def marker_positions(self, snapshot: Mapping[str, TrackedObject]) -> Dict[str, Tuple[int, int]]:
        return {obj_id: self.screen_position(obj) for obj_id, obj in snapshot.items()}

    def render(
        self,
        snapshot: Mapping[str, TrackedObject],
        video_frame: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Compose one frame. Never raises; a failed frame falls back to the last good one."""
        try:
            canvas = self._compose(snapshot, video_frame)
        except Exception as e:
            logger.warning("Field render error: %s", e)
            logger.debug("Field render traceback", exc_info=True)
            canvas = self._last_frame.copy() if self._last_frame is not None else self._blank()
        else:
            self._last_frame = canvas
        finally:
            self.frame_count += 1
        return canvas

    def _blank(self) -> np.ndarray:
        return np.full((self.height, self.width, 3), BACKGROUND, dtype=np.uint8)

    def _compose(self, snapshot: Mapping[str, TrackedObject], video_frame: Optional[np.ndarray]) -> np.ndarray:
        canvas = self._blank()

        if video_frame is not None:
            self._draw_backdrop(canvas, video_frame)

        objects = list(snapshot.values())
        centers = screen_positions(objects, self.width, self.height)

        if self.settings.style in ("grid", "both"):
            self._draw_grid(canvas, centers)
        if self._particles is not None:
            self._draw_particles(canvas, centers)

        for obj in objects:
            self._draw_marker(canvas, obj)

        return canvas

    def _draw_backdrop(self, canvas: np.ndarray, frame: np.ndarray) -> None:
        """Mirrored grayscale camera feed at reduced opacity."""
        mirrored = cv2.flip(frame, 1)
        if mirrored.shape[:2] != (self.height, self.width):
            mirrored = cv2.resize(mirrored, (self.width, self.height), interpolation=cv2.INTER_LINEAR)
        gray = mirrored if mirrored.ndim == 2 else cv2.cvtColor(mirrored, cv2.COLOR_BGR2GRAY)
        backdrop = cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR)
        opacity = self.settings.video_opacity
        cv2.addWeighted(backdrop, opacity, canvas, 1 - opacity, 0, canvas)

    def _draw_grid(self, canvas: np.ndarray, centers: np.ndarray) -> None:
        samples = sample_field(
            self.width,
            self.height,
            self.settings.grid_spacing,
            centers,
            self.settings.influence_radius,
            self.settings.push_scale,
        )
        px = np.rint(samples.x).astype(np.int32)
        py = np.rint(samples.y).astype(np.int32)
        rows, cols = samples.shape

        for r in range(rows):
            self._draw_field_line(canvas, px[r], py[r], samples.strength[r])
        if self.settings.draw_columns:
            for c in range(cols):
                self._draw_field_line(canvas, px[:, c], py[:, c], samples.strength[:, c])

    def _draw_field_line(self, canvas: np.ndarray, xs: np.ndarray, ys: np.ndarray, strength: np.ndarray) -> None:
        if not strength.any():
            pts = np.stack([xs, ys], axis=1).reshape(-1, 1, 2)
            cv2.polylines(canvas, [pts], False, FIELD_BASE, 1, cv2.LINE_AA)
            return

        # A segment glows as much as its most-disturbed endpoint
        segment_strength = np.maximum(strength[:-1], strength[1:])
        for i, s in enumerate(segment_strength):
            cv2.line(
                canvas,
                (int(xs[i]), int(ys[i])),
                (int(xs[i + 1]), int(ys[i + 1])),
                field_color(s),
                field_thickness(s),
                cv2.LINE_AA,
            )

    def _draw_particles(self, canvas: np.ndarray, centers: np.ndarray) -> None:
        force = self._particles.step(centers, self.settings.influence_radius)

        # Fade old trails, then lay this tick's strokes on top
        self._trails = (self._trails * self.settings.trail_decay).astype(np.uint8)

        # Particles pushed harder wash out toward white
        saturation = np.clip(230 - force * 40, 60, 230)
        hsv = np.stack(
            [self._particles.hue, saturation, np.full_like(saturation, 255)], axis=1
        ).astype(np.uint8).reshape(-1, 1, 3)
        colors = cv2.cvtColor(hsv, cv2.COLOR_HSV2BGR).reshape(-1, 3)

        for (start, end), color in zip(self._particles.segments(), colors):
            cv2.line(self._trails, tuple(int(v) for v in start), tuple(int(v) for v in end),
                     tuple(int(c) for c in color), 2, cv2.LINE_AA)

        cv2.add(canvas, self._trails, dst=canvas)

    def _draw_marker(self, canvas: np.ndarray, obj: TrackedObject) -> None:
        """Pulsing ring, type label above, confidence bar below."""
        cx, cy = self.screen_position(obj)
        diameter = 60 + np.sin(self.frame_count * 0.1) * 5
        radius = int(diameter / 2)

        cv2.circle(canvas, (cx, cy), radius, MARKER, 2, cv2.LINE_AA)

        label = obj.type.value.upper()
        text_size = cv2.getTextSize(label, self.font, 0.45, 1)[0]
        cv2.putText(canvas, label, (cx - text_size[0] // 2, cy - radius - 10),
                    self.font, 0.45, MARKER_TEXT, 1, cv2.LINE_AA)

        bar_width = 50
        bar_height = 4
        bar_x = cx - bar_width // 2
        bar_y = cy + radius + 8
        cv2.rectangle(canvas, (bar_x, bar_y), (bar_x + bar_width, bar_y + bar_height), BAR_BG, -1)
        filled = int(bar_width * min(1.0, max(0.0, obj.confidence)))
        if filled > 0:
            cv2.rectangle(canvas, (bar_x, bar_y), (bar_x + filled, bar_y + bar_height), BAR_FILL, -1)


__all__ = ["FieldRenderer", "field_color", "field_thickness"]
