"""
Force-field numerics for the table visualization.

Everything here works in screen pixels. Tracked objects are converted with
``screen_position`` (which applies the mirror transform) before any distance
math happens.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

from .state import TrackedObject

Point = Tuple[float, float]


def screen_position(obj: TrackedObject, width: int, height: int) -> Point:
    """Mirror a normalized detector position into canvas pixels."""
    return (1.0 - obj.x) * width, obj.y * height


def screen_positions(objects: Iterable[TrackedObject], width: int, height: int) -> np.ndarray:
    points = [screen_position(obj, width, height) for obj in objects]
    if not points:
        return np.zeros((0, 2), dtype=np.float64)
    return np.asarray(points, dtype=np.float64)


@dataclass(frozen=True)
class FieldSamples:
    """Per-frame grid samples: base coordinates, displacement and strength."""

    base_x: np.ndarray
    base_y: np.ndarray
    dx: np.ndarray
    dy: np.ndarray
    strength: np.ndarray

    @property
    def x(self) -> np.ndarray:
        return self.base_x + self.dx

    @property
    def y(self) -> np.ndarray:
        return self.base_y + self.dy

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.base_x.shape


def grid_axes(width: int, height: int, spacing: int) -> Tuple[np.ndarray, np.ndarray]:
    """Sample coordinates covering the canvas, edges included."""
    xs = np.arange(0, width + 1, spacing, dtype=np.float64)
    ys = np.arange(0, height + 1, spacing, dtype=np.float64)
    if xs[-1] < width:
        xs = np.append(xs, float(width))
    if ys[-1] < height:
        ys = np.append(ys, float(height))
    return xs, ys


def compute_distortion(
    sample_x: np.ndarray,
    sample_y: np.ndarray,
    centers: np.ndarray,
    radius: float,
    push_scale: float,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Sum of repulsion vectors at each sample point.

    Each center within ``radius`` pushes the sample along ``normalize(s - p)``
    with magnitude ``((radius - d) / radius) ** 2 * push_scale``. Beyond the
    radius the contribution is exactly zero. Returns ``(dx, dy, strength)``
    where strength is the max per-object strength at the sample.
    """
    sample_x = np.asarray(sample_x, dtype=np.float64)
    sample_y = np.asarray(sample_y, dtype=np.float64)
    dx = np.zeros_like(sample_x)
    dy = np.zeros_like(sample_y)
    strength = np.zeros_like(sample_x)

    for cx, cy in np.asarray(centers, dtype=np.float64).reshape(-1, 2):
        ox = sample_x - cx
        oy = sample_y - cy
        dist = np.hypot(ox, oy)
        inside = dist < radius
        if not inside.any():
            continue
        s = np.where(inside, ((radius - dist) / radius) ** 2, 0.0)
        # A sample sitting on the object has no defined direction
        nonzero = inside & (dist > 0)
        ux = np.divide(ox, dist, out=np.zeros_like(ox), where=nonzero)
        uy = np.divide(oy, dist, out=np.zeros_like(oy), where=nonzero)
        dx += ux * s * push_scale
        dy += uy * s * push_scale
        np.maximum(strength, s, out=strength)

    return dx, dy, strength


def sample_field(
    width: int,
    height: int,
    spacing: int,
    centers: np.ndarray,
    radius: float,
    push_scale: float,
) -> FieldSamples:
    xs, ys = grid_axes(width, height, spacing)
    base_x, base_y = np.meshgrid(xs, ys)
    dx, dy, strength = compute_distortion(base_x, base_y, centers, radius, push_scale)
    return FieldSamples(base_x=base_x, base_y=base_y, dx=dx, dy=dy, strength=strength)


class FlowParticles:
    """Particles streaming left to right that swerve around objects."""

    def __init__(
        self,
        count: int,
        width: int,
        height: int,
        *,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.width = width
        self.height = height
        self.rng = rng or np.random.default_rng()
        self.x = self.rng.uniform(0, width, count)
        self.y = self.rng.uniform(0, height, count)
        self.prev_x = self.x.copy()
        self.prev_y = self.y.copy()
        self.speed = self.rng.uniform(3.0, 7.0, count)
        self.hue = self.rng.uniform(90.0, 115.0, count)  # OpenCV hue scale (0-180)

    def __len__(self) -> int:
        return self.x.shape[0]

    def step(self, centers: np.ndarray, radius: float) -> np.ndarray:
        """Advance one tick; returns the per-particle max force (0-4) for shading."""
        self.prev_x = self.x.copy()
        self.prev_y = self.y.copy()

        vx = self.speed.copy()
        vy = np.zeros_like(vx)
        peak = np.zeros_like(vx)

        for cx, cy in np.asarray(centers, dtype=np.float64).reshape(-1, 2):
            ox = self.x - cx
            oy = self.y - cy
            dist = np.hypot(ox, oy)
            inside = dist < radius
            if not inside.any():
                continue
            force = np.where(inside, 4.0 * (1.0 - dist / radius), 0.0)
            angle = np.arctan2(oy, ox)
            # Stronger vertical swerve so streams part around the object
            vx += np.cos(angle) * force * 3.0
            vy += np.sin(angle) * force * 8.0
            np.maximum(peak, force, out=peak)

        self.x += vx
        self.y += vy

        wrapped = self.x > self.width
        if wrapped.any():
            n = int(wrapped.sum())
            self.x[wrapped] = 0.0
            self.prev_x[wrapped] = 0.0
            self.y[wrapped] = self.rng.uniform(0, self.height, n)
            self.prev_y[wrapped] = self.y[wrapped]

        escaped = (self.y < 0) | (self.y > self.height)
        if escaped.any():
            self._respawn(escaped)

        return peak

    def segments(self) -> Sequence[np.ndarray]:
        """Per-particle line segments (prev -> current) as int32 point pairs."""
        starts = np.stack([self.prev_x, self.prev_y], axis=1)
        ends = np.stack([self.x, self.y], axis=1)
        return np.stack([starts, ends], axis=1).round().astype(np.int32)

    def _respawn(self, mask: np.ndarray) -> None:
        n = int(mask.sum())
        self.x[mask] = 0.0
        self.y[mask] = self.rng.uniform(0, self.height, n)
        self.prev_x[mask] = self.x[mask]
        self.prev_y[mask] = self.y[mask]
        self.speed[mask] = self.rng.uniform(3.0, 7.0, n)
        self.hue[mask] = self.rng.uniform(90.0, 115.0, n)


__all__ = [
    "FieldSamples",
    "FlowParticles",
    "compute_distortion",
    "grid_axes",
    "sample_field",
    "screen_position",
    "screen_positions",
]
