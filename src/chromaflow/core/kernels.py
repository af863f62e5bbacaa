"""
Kernel library for the fluid, particle, force and display passes.

Each ``make_*`` function returns a Kernel whose body is a pure function of
its bound input fields and parameter values. Fields are bound in the order
their "field" parameters are declared.
"""

from typing import Tuple

import numpy as np

from chromaflow.core.kernel import Kernel, KernelParam
from chromaflow.render.colorgrade import mix_trail_color, signed_amplitude

FADE_TIME = 0.1
MERGE_THRESHOLD = 20.0


def _offsets(px: Tuple[float, float]):
    dx = np.array([px[0], 0.0], dtype=np.float32)
    dy = np.array([0.0, px[1]], dtype=np.float32)
    return dx, dy


# ---------------------------------------------------------------------------
# Fluid solver
# ---------------------------------------------------------------------------

def _advection(inputs, p, ctx):
    state, velocity = inputs
    backtrace = ctx.uv - velocity.read()[..., :2] / np.asarray(p["u_dimensions"], dtype=np.float32)
    return state.sample(backtrace)[..., :2]


def make_advection(canvas: Tuple[int, int]) -> Kernel:
    return Kernel(
        "advection",
        [
            KernelParam("u_state", "field", 0),
            KernelParam("u_velocity", "field", 1),
            KernelParam("u_dimensions", "vec2", tuple(float(d) for d in canvas)),
        ],
        _advection,
    )


def _divergence(inputs, p, ctx):
    (field,) = inputs
    dx, dy = _offsets(p["u_pxSize"])
    n = field.sample(ctx.uv + dy)[..., 1]
    s = field.sample(ctx.uv - dy)[..., 1]
    e = field.sample(ctx.uv + dx)[..., 0]
    w = field.sample(ctx.uv - dx)[..., 0]
    return (0.5 * (e - w + n - s))[..., None]


def make_divergence(px_size: Tuple[float, float]) -> Kernel:
    return Kernel(
        "divergence2D",
        [
            KernelParam("u_vectorField", "field", 0),
            KernelParam("u_pxSize", "vec2", px_size),
        ],
        _divergence,
    )


def _jacobi(inputs, p, ctx):
    previous, divergence = inputs
    dx, dy = _offsets(p["u_pxSize"])
    n = previous.sample(ctx.uv + dy)
    s = previous.sample(ctx.uv - dy)
    e = previous.sample(ctx.uv + dx)
    w = previous.sample(ctx.uv - dx)
    d = divergence.sample(ctx.uv)
    return (n + s + e + w + p["u_alpha"] * d) * p["u_beta"]


def make_jacobi(px_size: Tuple[float, float], alpha: float = -1.0, beta: float = 0.25) -> Kernel:
    return Kernel(
        "jacobi",
        [
            KernelParam("u_alpha", "float", alpha),
            KernelParam("u_beta", "float", beta),
            KernelParam("u_pxSize", "vec2", px_size),
            KernelParam("u_previousState", "field", 0),
            KernelParam("u_divergence", "field", 1),
        ],
        _jacobi,
    )


def _gradient_subtraction(inputs, p, ctx):
    scalar, vector = inputs
    dx, dy = _offsets(p["u_pxSize"])
    n = scalar.sample(ctx.uv + dy)[..., 0]
    s = scalar.sample(ctx.uv - dy)[..., 0]
    e = scalar.sample(ctx.uv + dx)[..., 0]
    w = scalar.sample(ctx.uv - dx)[..., 0]
    return vector.read()[..., :2] - 0.5 * np.stack([e - w, n - s], axis=-1)


def make_gradient_subtraction(px_size: Tuple[float, float]) -> Kernel:
    return Kernel(
        "gradientSubtraction",
        [
            KernelParam("u_pxSize", "vec2", px_size),
            KernelParam("u_scalarField", "field", 0),
            KernelParam("u_vectorField", "field", 1),
        ],
        _gradient_subtraction,
    )


def _damping(inputs, p, ctx):
    return inputs[0].read()[..., :2] * p["u_damping"]


def make_damping(factor: float) -> Kernel:
    return Kernel(
        "damping",
        [
            KernelParam("u_velocity", "field", 0),
            KernelParam("u_damping", "float", factor),
        ],
        _damping,
    )


# ---------------------------------------------------------------------------
# Boundary
# ---------------------------------------------------------------------------

def _smoothstep(edge0, edge1, x):
    t = np.clip((x - edge0) / (edge1 - edge0), 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def _update_boundary(inputs, p, ctx):
    dims = np.asarray(p["u_dimensions"], dtype=np.float32)
    distance = np.linalg.norm(ctx.uv * dims - np.asarray(p["u_center"], dtype=np.float32), axis=-1)
    r = p["u_boundaryRadius"]
    edge = p["u_edge"]
    return _smoothstep(r + edge, r - edge, distance)[..., None]


def make_update_boundary(canvas: Tuple[int, int], radius: float = 100.0, edge: float = 5.0) -> Kernel:
    return Kernel(
        "updateBoundary",
        [
            KernelParam("u_boundaryRadius", "float", radius),
            KernelParam("u_edge", "float", edge),
            KernelParam("u_center", "vec2", (canvas[0] / 2, canvas[1] / 2)),
            KernelParam("u_dimensions", "vec2", tuple(float(d) for d in canvas)),
        ],
        _update_boundary,
    )


def _apply_boundaries(inputs, p, ctx):
    velocity, boundary = inputs
    return velocity.read()[..., :2] * boundary.sample(ctx.uv)[..., :1]


def make_apply_boundaries() -> Kernel:
    return Kernel(
        "applyBoundaries",
        [
            KernelParam("u_velocity", "field", 0),
            KernelParam("u_boundary", "field", 1),
        ],
        _apply_boundaries,
    )


# ---------------------------------------------------------------------------
# Force injection
# ---------------------------------------------------------------------------

def _touch(inputs, p, ctx):
    (velocity,) = inputs
    radius_sq = np.sum(ctx.local * ctx.local, axis=-1, keepdims=True)
    falloff = np.maximum(1.0 - radius_sq, 0.0)
    vector = np.asarray(p["u_vector"], dtype=np.float32)
    v = velocity.read()[..., :2] + falloff * vector * p["u_touchForceScale"]
    magnitude = np.linalg.norm(v, axis=-1, keepdims=True)
    limit = np.minimum(magnitude, p["u_maxVelocity"])
    scale = np.divide(limit, magnitude, out=np.zeros_like(magnitude), where=magnitude > 0)
    return v * scale


def make_touch(force_scale: float, max_velocity: float) -> Kernel:
    return Kernel(
        "touch",
        [
            KernelParam("u_velocity", "field", 0),
            KernelParam("u_vector", "vec2", (0.0, 0.0)),
            KernelParam("u_touchForceScale", "float", force_scale),
            KernelParam("u_maxVelocity", "float", max_velocity),
        ],
        _touch,
    )


# ---------------------------------------------------------------------------
# Particles
# ---------------------------------------------------------------------------

def _age_particles(inputs, p, ctx):
    age = inputs[0].read().astype(np.int32) + 1
    return np.where(age >= int(p["u_lifetime"]), 0, age)


def make_age_particles(lifetime: float) -> Kernel:
    return Kernel(
        "ageParticles",
        [
            KernelParam("u_ages", "field", 0),
            KernelParam("u_lifetime", "float", lifetime),
        ],
        _age_particles,
    )


def make_advect_particles(canvas: Tuple[int, int], num_render_steps: int) -> Kernel:
    """RK2 particle advection. The sub-step fraction is fixed for the kernel's lifetime."""
    step_fraction = 1.0 / num_render_steps

    def _advect_particles(inputs, p, ctx):
        positions, velocity, ages, initial = inputs
        dims = np.asarray(p["u_dimensions"], dtype=np.float32)
        data = positions.read()
        absolute = data[:, :2]
        displacement = data[:, 2:4].copy()
        position = absolute + displacement

        px_size = 1.0 / dims
        velocity1 = velocity.sample(position * px_size)[:, :2]
        half_step = position + velocity1 * 0.5 * step_fraction
        velocity2 = velocity.sample(half_step * px_size)[:, :2]
        displacement += velocity2 * step_fraction

        # Fold large displacements into the absolute position to keep precision.
        should_merge = np.sum(displacement * displacement, axis=-1, keepdims=True) >= MERGE_THRESHOLD
        merged = np.mod(absolute + displacement, dims)
        merged = np.where(merged >= dims, merged - dims, merged)
        absolute = np.where(should_merge, merged, absolute)
        displacement = np.where(should_merge, 0.0, displacement).astype(np.float32)

        advected = np.concatenate([absolute, displacement], axis=-1)
        should_reset = ages.read()[:, :1] <= 0
        return np.where(should_reset, initial.read(), advected)

    return Kernel(
        "advectParticles",
        [
            KernelParam("u_positions", "field", 0),
            KernelParam("u_velocity", "field", 1),
            KernelParam("u_ages", "field", 2),
            KernelParam("u_initialPositions", "field", 3),
            KernelParam("u_dimensions", "vec2", tuple(float(d) for d in canvas)),
        ],
        _advect_particles,
    )


def particle_opacity(age_fraction: np.ndarray) -> np.ndarray:
    """Fade in over the first 10% of life and out over the last 10%."""
    fade_in = np.minimum(age_fraction / FADE_TIME, 1.0)
    fade_out = np.clip((1.0 - age_fraction) / FADE_TIME, 0.0, 1.0)
    return fade_in * fade_out


def _render_particles(inputs, p, ctx):
    ages, velocity = inputs
    age_fraction = ages.read()[:, 0].astype(np.float32) / float(p["u_lifetime"])
    opacity = particle_opacity(age_fraction)
    v = velocity.sample(ctx.uv)[:, :2]
    # Fastest regions render darker.
    multiplier = np.clip(np.sum(v * v, axis=-1) * 0.05 + 0.7, 0.0, 1.0)
    return opacity * multiplier


def make_render_particles(lifetime: float) -> Kernel:
    return Kernel(
        "renderParticles",
        [
            KernelParam("u_ages", "field", 0),
            KernelParam("u_velocity", "field", 1),
            KernelParam("u_lifetime", "float", lifetime),
        ],
        _render_particles,
    )


def _fade_trails(inputs, p, ctx):
    increment = p["u_increment"]
    faded = np.maximum(inputs[0].read() + increment, 0.0)
    # float32 residue would otherwise leave texels a hair above zero.
    faded[faded < abs(increment) * 1e-4] = 0.0
    return faded


def make_fade_trails(trail_length: float) -> Kernel:
    return Kernel(
        "fadeTrails",
        [
            KernelParam("u_image", "field", 0),
            KernelParam("u_increment", "float", -1.0 / trail_length),
        ],
        _fade_trails,
    )


# ---------------------------------------------------------------------------
# Display
# ---------------------------------------------------------------------------

def _render_trails(inputs, p, ctx):
    return mix_trail_color(inputs[0].read()[..., 0], p["u_particleColor"])


def make_render_trails(color=(0.0, 0.0, 1.0)) -> Kernel:
    return Kernel(
        "renderTrails",
        [
            KernelParam("u_trailState", "field", 0),
            KernelParam("u_particleColor", "vec3", color),
        ],
        _render_trails,
    )


def _render_pressure(inputs, p, ctx):
    return signed_amplitude(inputs[0].sample(ctx.uv)[..., 0], scale=p["u_scale"])


def make_render_pressure(scale: float = 0.5) -> Kernel:
    return Kernel(
        "renderPressure",
        [
            KernelParam("u_state", "field", 0),
            KernelParam("u_scale", "float", scale),
        ],
        _render_pressure,
    )
