"""
Particle tracers advected through the velocity field.

Positions are stored split into an absolute part and a small displacement
so sub-pixel motion survives float32 rounding on large canvases. Each
particle leaves a fading trail in a canvas-sized accumulation field.
"""

import math
from typing import List, Tuple

import numpy as np

from chromaflow.core import kernels
from chromaflow.core.field import FLOAT32, INT16, GridField, StagedStorage
from chromaflow.core.kernel import Composer

POSITION_NUM_COMPONENTS = 4


def count_for(width: int, height: int, density: float, max_particles: int) -> int:
    """Number of particles for a canvas: ceil(w * h * density), capped."""
    return min(int(math.ceil(width * height * density)), max_particles)


def seed_positions(canvas: Tuple[int, int], count: int, rng: np.random.Generator) -> np.ndarray:
    """(count, 4) array: uniform absolute positions, zero displacement."""
    width, height = canvas
    positions = np.zeros((count, POSITION_NUM_COMPONENTS), dtype=np.float32)
    positions[:, 0] = rng.uniform(0, width, count)
    positions[:, 1] = rng.uniform(0, height, count)
    return positions


class ParticleSystem:
    def __init__(
        self,
        composer: Composer,
        velocity: GridField,
        canvas: Tuple[int, int],
        count: int,
        lifetime: int = 1000,
        trail_length: float = 15.0,
        num_render_steps: int = 3,
        rng: np.random.Generator | None = None,
    ):
        self.composer = composer
        self.velocity = velocity
        self.canvas = tuple(canvas)
        self.lifetime = int(lifetime)
        self.num_render_steps = num_render_steps
        self.rng = rng or np.random.default_rng()

        self.position = composer.add_field(
            GridField("positions", count, num_components=POSITION_NUM_COMPONENTS, dtype=FLOAT32, num_buffers=2)
        )
        self.initial_position = composer.add_field(
            GridField("initialPositions", count, num_components=POSITION_NUM_COMPONENTS, dtype=FLOAT32)
        )
        self.age = composer.add_field(GridField("ages", count, dtype=INT16, num_buffers=2))
        self.trails = composer.add_field(GridField("trails", self.canvas, num_buffers=2))

        self.age_kernel = composer.add_kernel(kernels.make_age_particles(self.lifetime))
        self.advect_kernel = composer.add_kernel(
            kernels.make_advect_particles(self.canvas, num_render_steps)
        )
        self.render_kernel = composer.add_kernel(kernels.make_render_particles(self.lifetime))
        self.fade_kernel = composer.add_kernel(kernels.make_fade_trails(trail_length))

        self.reseed(self.canvas, count)

    @property
    def count(self) -> int:
        return self.position.length

    @property
    def fields(self) -> List[GridField]:
        return [self.position, self.initial_position, self.age, self.trails]

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def stage_reseed(self, canvas: Tuple[int, int], count: int) -> List[Tuple[GridField, StagedStorage]]:
        """
        Allocate fresh particle storage for a canvas without attaching it.

        The trails are cleared; positions are uniform over the canvas and ages
        uniform over [0, lifetime).
        """
        positions = seed_positions(canvas, count, self.rng)
        ages = self.rng.integers(0, self.lifetime, count).astype(np.int16)
        return [
            (self.position, self.position.stage(count, positions)),
            (self.initial_position, self.initial_position.stage(count, positions)),
            (self.age, self.age.stage(count, ages)),
            (self.trails, self.trails.stage(canvas)),
        ]

    def commit(self, staged: List[Tuple[GridField, StagedStorage]], canvas: Tuple[int, int]):
        for grid_field, storage in staged:
            grid_field.commit(storage)
        self.canvas = tuple(canvas)
        self.advect_kernel.set_param("u_dimensions", self.canvas)

    def reseed(self, canvas: Tuple[int, int], count: int):
        self.commit(self.stage_reseed(canvas, count), canvas)

    # ------------------------------------------------------------------
    # Runtime parameters
    # ------------------------------------------------------------------

    def set_lifetime(self, lifetime: int):
        self.lifetime = max(int(lifetime), 1)
        self.age_kernel.set_param("u_lifetime", self.lifetime)
        self.render_kernel.set_param("u_lifetime", self.lifetime)

    def set_trail_length(self, trail_length: float):
        self.fade_kernel.set_param("u_increment", -1.0 / trail_length)

    # ------------------------------------------------------------------
    # Per-frame passes
    # ------------------------------------------------------------------

    def age_particles(self):
        self.composer.step(self.age_kernel, [self.age], self.age)

    def fade_trails(self):
        self.composer.step(self.fade_kernel, [self.trails], self.trails)

    def advect(self):
        self.composer.step(
            self.advect_kernel,
            [self.position, self.velocity, self.age, self.initial_position],
            self.position,
        )

    def current_positions(self) -> np.ndarray:
        """(N, 2) particle positions in canvas pixels."""
        data = self.position.read()
        return data[:, :2] + data[:, 2:4]

    def render(self):
        self.composer.draw_points(
            self.render_kernel,
            self.current_positions(),
            self.canvas,
            [self.age, self.velocity],
            self.trails,
        )

    def step(self):
        self.age_particles()
        self.fade_trails()
        for _ in range(self.num_render_steps):
            self.advect()
            self.render()
