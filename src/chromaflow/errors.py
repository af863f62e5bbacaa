"""
Error types raised at the engine's allocation and parameter boundaries.

Solver steps never raise on their own; failures only surface when storage
is (re)allocated, when a parameter is rejected, or when a released engine
is touched again.
"""


class EngineError(Exception):
    """Base class for all engine errors."""


class InvalidParameterError(EngineError, ValueError):
    """A runtime parameter or surface dimension was rejected. Nothing was mutated."""


class AllocationError(EngineError, MemoryError):
    """Field storage could not be allocated. Prior storage is left intact."""


class EngineDisposedError(EngineError, RuntimeError):
    """A field, kernel or engine was used (or disposed) after being disposed."""
