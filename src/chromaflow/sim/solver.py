"""
Incompressible fluid solver on a coarse velocity grid.

Each step advects the velocity field through itself, computes its
divergence, relaxes a pressure field with a few Jacobi iterations and
subtracts the pressure gradient to make the flow (approximately)
divergence-free.
"""

from typing import Tuple

from chromaflow.core import kernels
from chromaflow.core.field import LINEAR, NEAREST, GridField
from chromaflow.core.kernel import Composer


def px_size(grid: Tuple[int, int]) -> Tuple[float, float]:
    return (1.0 / grid[0], 1.0 / grid[1])


class FluidSolver:
    """
    Owns the velocity, divergence and pressure fields and the kernels that
    update them. Construction is the only place pipeline wiring happens.
    """

    def __init__(
        self,
        composer: Composer,
        grid_dimensions: Tuple[int, int],
        canvas_dimensions: Tuple[int, int],
        num_jacobi_steps: int = 3,
        pressure_alpha: float = -1.0,
        pressure_beta: float = 0.25,
        damping: float = 1.0,
    ):
        self.composer = composer
        self.num_jacobi_steps = num_jacobi_steps
        self.damping = damping

        self.velocity = composer.add_field(
            GridField("velocity", grid_dimensions, num_components=2, filter=LINEAR, num_buffers=2)
        )
        self.divergence = composer.add_field(
            GridField("divergence", grid_dimensions, filter=NEAREST)
        )
        self.pressure = composer.add_field(
            GridField("pressure", grid_dimensions, filter=NEAREST, num_buffers=2)
        )

        px = px_size(grid_dimensions)
        self.advection = composer.add_kernel(kernels.make_advection(canvas_dimensions))
        self.divergence2d = composer.add_kernel(kernels.make_divergence(px))
        self.jacobi = composer.add_kernel(kernels.make_jacobi(px, pressure_alpha, pressure_beta))
        self.gradient_subtraction = composer.add_kernel(kernels.make_gradient_subtraction(px))
        self.damping_kernel = composer.add_kernel(kernels.make_damping(damping))

    @property
    def fields(self):
        return [self.velocity, self.divergence, self.pressure]

    def set_dimensions(self, grid: Tuple[int, int], canvas: Tuple[int, int]):
        """Push new pixel sizes and canvas dimensions into every solver kernel."""
        px = px_size(grid)
        self.advection.set_param("u_dimensions", canvas)
        for kernel in (self.divergence2d, self.jacobi, self.gradient_subtraction):
            kernel.set_param("u_pxSize", px)

    def set_damping(self, damping: float):
        self.damping = damping
        self.damping_kernel.set_param("u_damping", damping)

    def step(self):
        c = self.composer
        c.step(self.advection, [self.velocity, self.velocity], self.velocity)
        c.step(self.divergence2d, [self.velocity], self.divergence)
        for _ in range(self.num_jacobi_steps):
            c.step(self.jacobi, [self.pressure, self.divergence], self.pressure)
        c.step(self.gradient_subtraction, [self.pressure, self.velocity], self.velocity)
        if self.damping < 1.0:
            c.step(self.damping_kernel, [self.velocity], self.velocity)
