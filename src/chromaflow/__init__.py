"""Audio-reactive 2D fluid simulation with particle trails."""

from chromaflow.config import EngineConfig, from_preset, load_config
from chromaflow.engine import FluidEngine, SurfaceDescriptor
from chromaflow.errors import AllocationError, EngineDisposedError, EngineError, InvalidParameterError

__version__ = "0.1.0"
__all__ = [
    "EngineConfig",
    "from_preset",
    "load_config",
    "FluidEngine",
    "SurfaceDescriptor",
    "EngineError",
    "InvalidParameterError",
    "AllocationError",
    "EngineDisposedError",
]
