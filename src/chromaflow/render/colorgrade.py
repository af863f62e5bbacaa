"""
Color grading for the output surface.

Turns the trail accumulation field, the pressure field or the velocity
field into an RGB frame. Float helpers work in field orientation (row 0 at
the bottom); ``to_display`` flips to image orientation and quantizes.
"""

from typing import Tuple

import numpy as np
from PIL import Image, ImageDraw

Color = Tuple[float, float, float]

TRAIL_BACKGROUND: Color = (0.1, 0.1, 0.2)


def mix_trail_color(
    trail: np.ndarray,
    particle_color: Color,
    background: Color = TRAIL_BACKGROUND,
) -> np.ndarray:
    """
    Blend the background toward the particle color by trail intensity squared.

    Args:
        trail: (H, W) float array in [0, 1].
        particle_color: RGB in [0, 1].
        background: RGB in [0, 1].

    Returns:
        (H, W, 3) float32 RGB array.
    """
    t = np.clip(trail, 0.0, 1.0).astype(np.float32) ** 2
    bg = np.asarray(background, dtype=np.float32)
    fg = np.asarray(particle_color, dtype=np.float32)
    return bg + (fg - bg) * t[..., None]


def signed_amplitude(
    values: np.ndarray,
    scale: float = 0.5,
    positive: Color = (1.0, 0.0, 0.0),
    negative: Color = (0.0, 0.0, 1.0),
    zero: Color = (1.0, 1.0, 1.0),
) -> np.ndarray:
    """
    Diverging color map for signed scalar fields.

    Args:
        values: (H, W) float array.
        scale: Multiplier applied before clamping to [-1, 1].

    Returns:
        (H, W, 3) float32 RGB array.
    """
    a = np.clip(values.astype(np.float32) * scale, -1.0, 1.0)[..., None]
    z = np.asarray(zero, dtype=np.float32)
    pos = np.asarray(positive, dtype=np.float32)
    neg = np.asarray(negative, dtype=np.float32)
    return np.where(a >= 0, z + (pos - z) * a, z + (neg - z) * -a)


def vector_field_image(
    points: np.ndarray,
    vectors: np.ndarray,
    width: int,
    height: int,
    scale: float = 2.5,
    color: Tuple[int, int, int] = (0, 0, 0),
    background: Tuple[int, int, int] = (255, 255, 255),
) -> np.ndarray:
    """
    Draw one line segment per sample point.

    Args:
        points: (N, 2) canvas pixel positions (y up).
        vectors: (N, 2) vectors in canvas pixels (y up).

    Returns:
        (H, W, 3) uint8 RGB array in image orientation.
    """
    img = Image.new("RGB", (width, height), background)
    draw = ImageDraw.Draw(img)
    for (x, y), (vx, vy) in zip(points, vectors):
        x0, y0 = float(x), height - float(y)
        draw.line([(x0, y0), (x0 + vx * scale, y0 - vy * scale)], fill=color, width=1)
    return np.asarray(img, dtype=np.uint8).copy()


def to_display(rgb: np.ndarray) -> np.ndarray:
    """Flip a field-oriented float RGB array to image rows and quantize to uint8."""
    return (np.clip(rgb[::-1], 0.0, 1.0) * 255).astype(np.uint8)


def shift_frame(frame: np.ndarray, offset: Tuple[float, float]) -> np.ndarray:
    """Translate an image-oriented frame by whole pixels, wrapping at the edges (canvas shake)."""
    dx, dy = int(round(offset[0])), int(round(offset[1]))
    if dx == 0 and dy == 0:
        return frame
    return np.roll(frame, (dy, dx), axis=(0, 1))
