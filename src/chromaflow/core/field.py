"""
Grid fields: typed, optionally ping-pong buffered arrays of numeric tuples.

2-D fields are stored as (height, width, components) with row 0 at the
bottom (y = 0), matching texture coordinates. 1-D fields (particle arrays)
are stored as (length, components).
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.ndimage import map_coordinates

from chromaflow.errors import AllocationError, EngineDisposedError, InvalidParameterError

FLOAT32 = np.float32
FLOAT16 = np.float16
INT16 = np.int16
INT32 = np.int32
NUMERIC_TYPES = (FLOAT32, FLOAT16, INT16, INT32)

REPEAT = "repeat"
CLAMP = "clamp"
NEAREST = "nearest"
LINEAR = "linear"

Dimensions = Union[int, Tuple[int, int], Sequence[int]]


def texel_uv(width: int, height: int) -> np.ndarray:
    """(H, W, 2) array of texel-centre uv coordinates."""
    u = (np.arange(width, dtype=np.float32) + 0.5) / width
    v = (np.arange(height, dtype=np.float32) + 0.5) / height
    uu, vv = np.meshgrid(u, v)
    return np.stack([uu, vv], axis=-1)


@dataclass
class StagedStorage:
    """Buffers allocated for a field but not yet attached to it."""
    dimensions: Tuple[int, ...]
    buffers: List[np.ndarray]


class GridField:
    """
    A named array of numeric tuples with wrap, filter and buffering attributes.

    Kernels read ``front`` and write ``back``; ``swap()`` makes the freshly
    written buffer the read buffer. Single-buffered fields have
    ``front is back`` and may only be used as write-once outputs.
    """

    def __init__(
        self,
        name: str,
        dimensions: Dimensions,
        num_components: int = 1,
        dtype=FLOAT32,
        wrap_x: str = REPEAT,
        wrap_y: str = REPEAT,
        filter: str = NEAREST,
        num_buffers: int = 1,
        data: Optional[np.ndarray] = None,
    ):
        if not 1 <= num_components <= 4:
            raise InvalidParameterError(f"{name}: num_components must be 1-4, got {num_components}")
        if np.dtype(dtype) not in [np.dtype(t) for t in NUMERIC_TYPES]:
            raise InvalidParameterError(f"{name}: unsupported numeric type {dtype}")
        if num_buffers not in (1, 2):
            raise InvalidParameterError(f"{name}: num_buffers must be 1 or 2, got {num_buffers}")
        if wrap_x not in (REPEAT, CLAMP) or wrap_y not in (REPEAT, CLAMP):
            raise InvalidParameterError(f"{name}: wrap modes must be '{REPEAT}' or '{CLAMP}'")
        if filter not in (NEAREST, LINEAR):
            raise InvalidParameterError(f"{name}: filter must be '{NEAREST}' or '{LINEAR}'")

        self.name = name
        self.num_components = num_components
        self.dtype = np.dtype(dtype)
        self.wrap_x = wrap_x
        self.wrap_y = wrap_y
        self.filter = filter
        self.num_buffers = num_buffers

        self._buffers: List[np.ndarray] = []
        self._front = 0
        self._dimensions: Tuple[int, ...] = ()
        self._disposed = False

        self.resize(dimensions, data)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    @staticmethod
    def _normalize_dimensions(name: str, dimensions: Dimensions) -> Tuple[int, ...]:
        if isinstance(dimensions, (int, np.integer)):
            dims = (int(dimensions),)
        else:
            dims = tuple(int(d) for d in dimensions)
            if len(dims) != 2:
                raise InvalidParameterError(f"{name}: dimensions must be a length or (width, height)")
        if any(d <= 0 for d in dims):
            raise InvalidParameterError(f"{name}: dimensions must be positive, got {dims}")
        return dims

    def _shape(self, dims: Tuple[int, ...]) -> Tuple[int, ...]:
        if len(dims) == 1:
            return (dims[0], self.num_components)
        width, height = dims
        return (height, width, self.num_components)

    def stage(self, dimensions: Dimensions, data: Optional[np.ndarray] = None) -> StagedStorage:
        """
        Allocate storage for new dimensions without touching the current buffers.

        Args:
            dimensions: Length or (width, height).
            data: Optional initial contents, flat or shaped, matching the element count.

        Returns:
            StagedStorage to hand to ``commit``.
        """
        self._check_alive()
        dims = self._normalize_dimensions(self.name, dimensions)
        shape = self._shape(dims)
        try:
            if data is None:
                buffers = [np.zeros(shape, dtype=self.dtype) for _ in range(self.num_buffers)]
            else:
                src = np.asarray(data)
                if src.size != math.prod(shape):
                    raise InvalidParameterError(
                        f"{self.name}: initial data has {src.size} values, expected {math.prod(shape)}"
                    )
                first = src.reshape(shape).astype(self.dtype, copy=True)
                buffers = [first] + [first.copy() for _ in range(self.num_buffers - 1)]
        except MemoryError as e:
            raise AllocationError(f"{self.name}: cannot allocate {shape} {self.dtype}") from e
        return StagedStorage(dims, buffers)

    def commit(self, staged: StagedStorage):
        """Attach staged storage, releasing the previous buffers."""
        self._check_alive()
        self._dimensions = staged.dimensions
        self._buffers = staged.buffers
        self._front = 0

    def allocate(self, dimensions: Dimensions):
        self.commit(self.stage(dimensions))

    def resize(self, dimensions: Dimensions, data: Optional[np.ndarray] = None):
        self.commit(self.stage(dimensions, data))

    def dispose(self):
        """Release backing storage. Disposing twice is a programming error."""
        self._check_alive()
        self._buffers = []
        self._disposed = True

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _check_alive(self):
        if self._disposed:
            raise EngineDisposedError(f"Field '{self.name}' has been disposed")

    # ------------------------------------------------------------------
    # Buffer access
    # ------------------------------------------------------------------

    @property
    def dimensions(self) -> Tuple[int, ...]:
        return self._dimensions

    @property
    def width(self) -> int:
        return self._dimensions[0]

    @property
    def height(self) -> int:
        return self._dimensions[1] if len(self._dimensions) == 2 else 1

    @property
    def length(self) -> int:
        return math.prod(self._dimensions)

    @property
    def is_1d(self) -> bool:
        return len(self._dimensions) == 1

    @property
    def front(self) -> np.ndarray:
        self._check_alive()
        return self._buffers[self._front]

    @property
    def back(self) -> np.ndarray:
        self._check_alive()
        return self._buffers[(self._front + 1) % self.num_buffers]

    def swap(self):
        self._check_alive()
        self._front = (self._front + 1) % self.num_buffers

    def read(self) -> np.ndarray:
        """Texel-aligned read of the front buffer (sampling each texel at its own centre)."""
        return self.front.astype(np.float32) if self.dtype.kind == "f" else self.front

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def _wrap_index(self, idx: np.ndarray, size: int, mode: str) -> np.ndarray:
        if mode == REPEAT:
            return np.mod(idx, size)
        return np.clip(idx, 0, size - 1)

    def sample(self, uv: np.ndarray, buffer: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Sample the front buffer (or ``buffer``) at arbitrary uv coordinates.

        Follows texture conventions: texel i covers [i/W, (i+1)/W), linear
        filtering interpolates between texel centres, and out-of-range
        coordinates wrap or clamp per axis.

        Args:
            uv: (..., 2) array of coordinates.
            buffer: Optional array shaped like ``front`` to sample instead.

        Returns:
            (..., num_components) float32 array.
        """
        if self.is_1d:
            raise ValueError(f"Field '{self.name}' is 1-D and cannot be sampled by uv")
        buf = self.front if buffer is None else buffer
        uv = np.asarray(uv, dtype=np.float64)
        out_shape = uv.shape[:-1] + (self.num_components,)
        uv = uv.reshape(-1, 2)
        x = uv[:, 0] * self.width
        y = uv[:, 1] * self.height

        if self.filter == NEAREST:
            ix = self._wrap_index(np.floor(x).astype(np.int64), self.width, self.wrap_x)
            iy = self._wrap_index(np.floor(y).astype(np.int64), self.height, self.wrap_y)
            return buf[iy, ix].astype(np.float32).reshape(out_shape)

        coords = np.stack([y - 0.5, x - 0.5])
        if self.wrap_x == self.wrap_y:
            mode = "grid-wrap" if self.wrap_x == REPEAT else "nearest"
            out = np.empty((uv.shape[0], self.num_components), dtype=np.float32)
            for c in range(self.num_components):
                out[:, c] = map_coordinates(
                    buf[..., c].astype(np.float32), coords, order=1, mode=mode, prefilter=False
                )
            return out.reshape(out_shape)

        # Mixed wrap modes: manual bilinear.
        x0 = np.floor(coords[1]).astype(np.int64)
        y0 = np.floor(coords[0]).astype(np.int64)
        fx = (coords[1] - x0)[:, None]
        fy = (coords[0] - y0)[:, None]
        xa = self._wrap_index(x0, self.width, self.wrap_x)
        xb = self._wrap_index(x0 + 1, self.width, self.wrap_x)
        ya = self._wrap_index(y0, self.height, self.wrap_y)
        yb = self._wrap_index(y0 + 1, self.height, self.wrap_y)
        f = buf.astype(np.float32)
        top = f[ya, xa] * (1 - fx) + f[ya, xb] * fx
        bottom = f[yb, xa] * (1 - fx) + f[yb, xb] * fx
        return (top * (1 - fy) + bottom * fy).astype(np.float32).reshape(out_shape)

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else f"dims={self._dimensions}"
        return (
            f"GridField({self.name!r}, {state}, components={self.num_components}, "
            f"dtype={self.dtype.name}, buffers={self.num_buffers})"
        )
