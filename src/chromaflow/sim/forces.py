"""
Force injection into the velocity field.

An impulse adds a vector to every velocity texel within a band around a
segment (capped: a capsule; uncapped: a rectangle), weighted by a
``1 - r^2`` falloff in local coordinates, then clamps the speed.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from chromaflow.core.field import GridField, texel_uv
from chromaflow.core.kernel import Composer, Kernel

Point = Tuple[float, float]


@dataclass
class Impulse:
    """One queued force application, in canvas pixels with the origin bottom-left."""
    point1: Point
    point2: Point
    thickness: float
    vector: Point
    end_caps: bool = True


def segment_frame(
    pixels: np.ndarray,
    point1: Point,
    point2: Point,
    thickness: float,
    end_caps: bool = True,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Coverage mask and local coordinates of ``pixels`` relative to a segment band.

    Args:
        pixels: (H, W, 2) pixel positions.
        thickness: Full width of the band.
        end_caps: Round caps past the endpoints (capsule) or a flat-ended band.

    Returns:
        (mask, local): (H, W) bool and (H, W, 2) float32 with |local| <= 1
        inside a capsule; for a flat band local = (2t - 1, 2s) along and across.
    """
    a = np.asarray(point1, dtype=np.float32)
    b = np.asarray(point2, dtype=np.float32)
    half = max(float(thickness), 1e-6) / 2.0
    ab = b - a
    length_sq = float(np.dot(ab, ab))
    rel = pixels - a

    if end_caps:
        if length_sq > 0:
            t = np.clip(rel @ ab / length_sq, 0.0, 1.0)
        else:
            t = np.zeros(pixels.shape[:-1], dtype=np.float32)
        closest = a + t[..., None] * ab
        local = (pixels - closest) / half
        mask = np.sum(local * local, axis=-1) <= 1.0
        return mask, local.astype(np.float32)

    if length_sq == 0:
        return np.zeros(pixels.shape[:-1], dtype=bool), np.zeros_like(pixels, dtype=np.float32)
    length = np.sqrt(length_sq)
    along = rel @ ab / length_sq
    normal = np.array([-ab[1], ab[0]], dtype=np.float32) / length
    across = rel @ normal / half
    local = np.stack([2.0 * along - 1.0, across], axis=-1)
    mask = (along >= 0.0) & (along <= 1.0) & (np.abs(across) <= 1.0)
    return mask, local.astype(np.float32)


class ForceInjector:
    """Applies impulses to the velocity field through the touch kernel."""

    def __init__(self, composer: Composer, kernel: Kernel, canvas: Tuple[int, int]):
        self.composer = composer
        self.kernel = kernel
        self.canvas = tuple(canvas)

    def set_canvas(self, canvas: Tuple[int, int]):
        self.canvas = tuple(canvas)

    def _pixels(self, velocity: GridField) -> np.ndarray:
        uv = texel_uv(velocity.width, velocity.height)
        return uv * np.asarray(self.canvas, dtype=np.float32)

    def apply_impulse(
        self,
        velocity: GridField,
        point1: Point,
        point2: Point,
        thickness: float,
        vector: Point,
        max_velocity: float,
        force_scale: float,
        end_caps: bool = True,
    ):
        mask, local = segment_frame(self._pixels(velocity), point1, point2, thickness, end_caps)
        if not mask.any():
            return
        self.kernel.set_param("u_vector", vector)
        self.kernel.set_param("u_touchForceScale", force_scale)
        self.kernel.set_param("u_maxVelocity", max_velocity)
        self.composer.step_region(self.kernel, [velocity], velocity, mask, local)

    def apply_region(
        self,
        velocity: GridField,
        rect: Tuple[float, float, float, float],
        vector: Point,
        max_velocity: float,
        force_scale: float,
    ):
        """Uncapped impulse filling the axis-aligned rectangle (x0, y0, x1, y1)."""
        x0, y0, x1, y1 = rect
        mid_y = (y0 + y1) / 2.0
        self.apply_impulse(
            velocity, (x0, mid_y), (x1, mid_y), y1 - y0, vector,
            max_velocity, force_scale, end_caps=False,
        )

    def apply(self, velocity: GridField, impulse: Impulse, max_velocity: float, force_scale: float):
        self.apply_impulse(
            velocity, impulse.point1, impulse.point2, impulse.thickness, impulse.vector,
            max_velocity, force_scale, impulse.end_caps,
        )
