"""
Canvas resize handling.

A resize reallocates every field for the new canvas, recomputes the
particle count, reseeds the particles and pushes the new sizes into every
kernel. All storage is staged before any of it is attached, so a rejected
size or failed allocation leaves the engine exactly as it was.
"""

import math
from typing import Tuple

from chromaflow.core.capabilities import Capabilities
from chromaflow.errors import InvalidParameterError
from chromaflow.sim.particles import count_for


class LifecycleManager:
    def __init__(self, capabilities: Capabilities, velocity_scale_factor: int = 8):
        self.capabilities = capabilities
        self.velocity_scale_factor = velocity_scale_factor
        self.pending: Tuple[int, int] | None = None
        self.pending_density: float | None = None
        self._in_frame = False

    def grid_dimensions(self, width: int, height: int) -> Tuple[int, int]:
        f = self.velocity_scale_factor
        return (int(math.ceil(width / f)), int(math.ceil(height / f)))

    def validate(self, width: int, height: int) -> Tuple[int, int]:
        if int(width) != width or int(height) != height:
            raise InvalidParameterError(f"Canvas size must be whole pixels, got {width}x{height}")
        width, height = int(width), int(height)
        if width <= 0 or height <= 0:
            raise InvalidParameterError(f"Canvas size must be positive, got {width}x{height}")
        limit = self.capabilities.max_dimension
        if width > limit or height > limit:
            raise InvalidParameterError(
                f"Canvas size {width}x{height} exceeds the backend limit of {limit}"
            )
        return width, height

    def particle_count(self, width: int, height: int, density: float, max_particles: int) -> int:
        return count_for(width, height, density, min(max_particles, self.capabilities.max_particles))

    # ------------------------------------------------------------------
    # Frame bracketing
    # ------------------------------------------------------------------

    def begin_frame(self):
        self._in_frame = True

    def end_frame(self):
        self._in_frame = False

    @property
    def in_frame(self) -> bool:
        return self._in_frame

    def request_resize(self, engine, width: int, height: int, density: float | None = None) -> bool:
        """
        Resize now, or at the start of the next frame if one is running.

        A ``density`` replaces the particle density only once the resize
        that reallocates the particles has succeeded.

        Returns:
            True if the resize was applied immediately.
        """
        size = self.validate(width, height)
        if self._in_frame:
            self.pending = size
            if density is not None:
                self.pending_density = density
            return False
        self.resize(engine, *size, density=density)
        return True

    def apply_pending(self, engine) -> bool:
        if self.pending is None:
            return False
        size, self.pending = self.pending, None
        density, self.pending_density = self.pending_density, None
        self.resize(engine, *size, density=density)
        return True

    # ------------------------------------------------------------------
    # Resize
    # ------------------------------------------------------------------

    def resize(self, engine, width: int, height: int, density: float | None = None):
        """Reallocate and rewire every part of ``engine`` for a new canvas."""
        width, height = self.validate(width, height)
        canvas = (width, height)
        grid = self.grid_dimensions(width, height)
        params = engine.params
        if density is None:
            density = params.particle_density
        count = self.particle_count(width, height, density, params.max_particles)

        staged = [(f, f.stage(grid)) for f in engine.solver.fields]
        staged.append((engine.boundary, engine.boundary.stage(canvas)))
        particle_staged = engine.particles.stage_reseed(canvas, count)

        for grid_field, storage in staged:
            grid_field.commit(storage)
        engine.particles.commit(particle_staged, canvas)
        params.particle_density = density

        engine.solver.set_dimensions(grid, canvas)
        engine.injector.set_canvas(canvas)
        engine.update_boundary.set_param("u_center", (width / 2, height / 2))
        engine.update_boundary.set_param("u_dimensions", canvas)
        engine.canvas = canvas
        engine.grid = grid
        engine.reset_color_buffer()
