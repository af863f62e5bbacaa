"""Backend capability query, consulted once when an engine is created."""

from dataclasses import dataclass

import numpy as np

MAX_DIMENSION = 16384
MAX_PARTICLES = 100000


@dataclass(frozen=True)
class Capabilities:
    backend: str = "numpy"
    float16_supported: bool = True
    max_dimension: int = MAX_DIMENSION
    max_particles: int = MAX_PARTICLES


def query_capabilities() -> Capabilities:
    """Report what the numpy backend supports."""
    try:
        np.zeros(1, dtype=np.float16)
        float16 = True
    except TypeError:
        float16 = False
    return Capabilities(backend=f"numpy {np.__version__}", float16_supported=float16)
