"""
Frame export.

Writes the engine's color buffer to disk as PNG, plus a small JSON sidecar
describing the simulation state the frame was taken from.
"""

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Union

import numpy as np
from PIL import Image

DEFAULT_PNG_NAME = "fluid.png"


def save_png(rgb: np.ndarray, path: Union[str, Path, None] = None) -> Path:
    """
    Save an (H, W, 3) uint8 frame as PNG.

    Args:
        rgb: Frame in image orientation.
        path: Output file; a directory gets ``fluid.png`` inside it.

    Returns:
        Path written.
    """
    path = Path(path) if path is not None else Path(DEFAULT_PNG_NAME)
    if path.is_dir():
        path = path / DEFAULT_PNG_NAME
    path.parent.mkdir(parents=True, exist_ok=True)
    frame = np.asarray(rgb)
    if frame.dtype != np.uint8 or frame.ndim != 3 or frame.shape[-1] != 3:
        raise ValueError(f"Expected (H, W, 3) uint8 frame, got {frame.shape} {frame.dtype}")
    Image.fromarray(frame).save(path)
    return path


def snapshot_metadata(engine) -> dict[str, Any]:
    """Serializable description of the state behind the current frame."""
    return {
        "frame_index": engine.frame_index,
        "canvas": list(engine.canvas),
        "grid": list(engine.grid),
        "particles": engine.particles.count,
        "color": [round(float(c), 4) for c in engine.adapter.color],
        "params": asdict(engine.params),
    }


def export_snapshot(engine, path: Union[str, Path]) -> Path:
    """Write the current frame as PNG and its metadata next to it as JSON."""
    png = save_png(engine.color_buffer, path)
    with open(png.with_suffix(".json"), "w", encoding="utf-8") as f:
        json.dump(snapshot_metadata(engine), f, indent=2)
    return png
