"""
Kernels and the composer that dispatches them.

A kernel is plain data: a name, a parameter table and a pure body
``body(inputs, params, ctx) -> ndarray``. The composer owns every kernel and
field of one engine, evaluates bodies over whole fields (the data-parallel
dispatch) and enforces the ping-pong discipline.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from chromaflow.core.field import GridField, texel_uv
from chromaflow.errors import EngineDisposedError

PARAM_KINDS = ("field", "float", "int", "vec2", "vec3")


@dataclass
class KernelParam:
    """One entry of a kernel's parameter table. Field params hold their input slot."""
    name: str
    kind: str
    value: Any = None

    def __post_init__(self):
        if self.kind not in PARAM_KINDS:
            raise ValueError(f"Unknown parameter kind {self.kind!r} for {self.name}")


@dataclass
class StepContext:
    """Per-dispatch information handed to kernel bodies."""
    dimensions: Tuple[int, ...]
    uv: Optional[np.ndarray] = None
    # Region dispatch: local radial coordinates in [-1, 1] per covered texel.
    local: Optional[np.ndarray] = None
    # Point dispatch: particle positions in canvas pixels.
    positions: Optional[np.ndarray] = None


class Kernel:
    """A stateless per-element transform with a mutable parameter table."""

    def __init__(self, name: str, params: Sequence[KernelParam], body: Callable[..., np.ndarray]):
        self.name = name
        self.params: Dict[str, KernelParam] = {p.name: p for p in params}
        self.body = body
        self._disposed = False

    def set_param(self, name: str, value: Any):
        self._check_alive()
        if name not in self.params:
            raise KeyError(f"Kernel '{self.name}' has no parameter '{name}'")
        param = self.params[name]
        if param.kind in ("vec2", "vec3"):
            value = tuple(float(v) for v in value)
        elif param.kind == "float":
            value = float(value)
        elif param.kind in ("int", "field"):
            value = int(value)
        param.value = value

    def get_param(self, name: str) -> Any:
        return self.params[name].value

    def values(self) -> Dict[str, Any]:
        return {name: p.value for name, p in self.params.items() if p.kind != "field"}

    def field_slots(self) -> List[int]:
        return [p.value for p in self.params.values() if p.kind == "field"]

    def dispose(self):
        self._check_alive()
        self._disposed = True

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _check_alive(self):
        if self._disposed:
            raise EngineDisposedError(f"Kernel '{self.name}' has been disposed")

    def __repr__(self) -> str:
        return f"Kernel({self.name!r}, params={list(self.params)})"


class Composer:
    """
    Dispatches kernels in the order they are called.

    Every kernel and field created for an engine is registered here and
    released together by ``dispose``.
    """

    def __init__(self):
        self.kernels: List[Kernel] = []
        self.fields: List[GridField] = []
        self._uv_cache: Dict[Tuple[int, int], np.ndarray] = {}
        self._disposed = False

    def add_kernel(self, kernel: Kernel) -> Kernel:
        self._check_alive()
        self.kernels.append(kernel)
        return kernel

    def add_field(self, grid_field: GridField) -> GridField:
        self._check_alive()
        self.fields.append(grid_field)
        return grid_field

    def _uv(self, width: int, height: int) -> np.ndarray:
        key = (width, height)
        if key not in self._uv_cache:
            # Stale sizes accumulate across resizes.
            if len(self._uv_cache) >= 4:
                self._uv_cache.clear()
            self._uv_cache[key] = texel_uv(width, height)
        return self._uv_cache[key]

    def _bind(self, kernel: Kernel, inputs: Sequence[GridField], output: Optional[GridField]) -> List[GridField]:
        self._check_alive()
        kernel._check_alive()
        bound = []
        for slot in kernel.field_slots():
            if slot >= len(inputs):
                raise ValueError(f"Kernel '{kernel.name}' expects input slot {slot}, got {len(inputs)} inputs")
            bound.append(inputs[slot])
        if output is not None and output.num_buffers == 1 and any(f is output for f in bound):
            raise ValueError(
                f"Kernel '{kernel.name}' reads and writes single-buffered field '{output.name}'"
            )
        return bound

    def step(
        self,
        kernel: Kernel,
        inputs: Sequence[GridField] = (),
        output: Optional[GridField] = None,
        dimensions: Optional[Tuple[int, int]] = None,
    ) -> np.ndarray:
        """
        Run ``kernel`` over every element of ``output``.

        With no output the result is returned for display; ``dimensions``
        then gives the surface size.
        """
        bound = self._bind(kernel, inputs, output)
        if output is not None:
            dims = output.dimensions
        elif dimensions is not None:
            dims = tuple(dimensions)
        else:
            raise ValueError(f"Kernel '{kernel.name}' needs an output field or surface dimensions")

        uv = self._uv(*dims) if len(dims) == 2 else None
        ctx = StepContext(dimensions=dims, uv=uv)
        result = kernel.body(bound, kernel.values(), ctx)
        if output is None:
            return result

        output.back[...] = np.asarray(result).reshape(output.back.shape)
        output.swap()
        return output.front

    def step_region(
        self,
        kernel: Kernel,
        inputs: Sequence[GridField],
        output: GridField,
        mask: np.ndarray,
        local: np.ndarray,
    ) -> np.ndarray:
        """
        Run ``kernel`` only where ``mask`` is set; other texels are copied through.

        Args:
            mask: (H, W) boolean coverage of the output.
            local: (H, W, 2) local radial coordinates of each texel.
        """
        bound = self._bind(kernel, inputs, output)
        dims = output.dimensions
        ctx = StepContext(dimensions=dims, uv=self._uv(*dims), local=local)
        result = kernel.body(bound, kernel.values(), ctx)
        output.back[...] = np.where(mask[..., None], result, output.front)
        output.swap()
        return output.front

    def draw_points(
        self,
        kernel: Kernel,
        positions: np.ndarray,
        canvas: Tuple[int, int],
        inputs: Sequence[GridField],
        output: GridField,
    ) -> np.ndarray:
        """
        Splat one value per point into ``output`` in place.

        Points wrap around the output in both axes. When several points land
        on the same texel the brightest wins.
        """
        bound = self._bind(kernel, inputs, None)
        width, height = canvas
        uv = positions / np.array([width, height], dtype=np.float32)
        ctx = StepContext(dimensions=output.dimensions, uv=uv, positions=positions)
        values = np.asarray(kernel.body(bound, kernel.values(), ctx), dtype=np.float32)

        ix = np.mod(np.floor(uv[:, 0] * output.width).astype(np.int64), output.width)
        iy = np.mod(np.floor(uv[:, 1] * output.height).astype(np.int64), output.height)
        target = output.front
        np.maximum.at(target[..., 0], (iy, ix), values.astype(target.dtype))
        return target

    def dispose(self):
        """Release every registered kernel and field exactly once."""
        self._check_alive()
        for kernel in self.kernels:
            if not kernel.disposed:
                kernel.dispose()
        for grid_field in self.fields:
            if not grid_field.disposed:
                grid_field.dispose()
        self.kernels = []
        self.fields = []
        self._uv_cache = {}
        self._disposed = True

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _check_alive(self):
        if self._disposed:
            raise EngineDisposedError("Composer has been disposed")
