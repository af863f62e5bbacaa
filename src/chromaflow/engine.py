"""
Engine facade.

Wires the fluid solver, particle system, force injector, audio adapter and
lifecycle manager into one frame loop, and exposes both an object API
(``FluidEngine``) and the functional API used by hosts (``init``, ``step``,
``resize``, ``set_parameter``, ``apply_force``, ``feed_audio_spectrum``,
``dispose``).
"""

import copy
import math
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence, Tuple

import numpy as np

from chromaflow.audio.adapter import AudioForcingAdapter
from chromaflow.config import MAX_PARTICLE_LIFETIME, RENDER_MODES, EngineConfig, from_preset, validate_config
from chromaflow.core import kernels
from chromaflow.core.capabilities import query_capabilities
from chromaflow.core.field import CLAMP, GridField
from chromaflow.core.kernel import Composer
from chromaflow.errors import AllocationError, EngineDisposedError, InvalidParameterError
from chromaflow.io.exporter import save_png
from chromaflow.render.colorgrade import to_display, vector_field_image
from chromaflow.sim.forces import ForceInjector, Impulse
from chromaflow.sim.lifecycle import LifecycleManager
from chromaflow.sim.particles import ParticleSystem
from chromaflow.sim.solver import FluidSolver

VECTOR_SPACING = 10
VECTOR_SCALE = 2.5

# Host-facing names accepted by set_parameter.
PARAMETER_ALIASES = {
    "trailLength": "trail_length",
    "render": "render_mode",
    "renderMode": "render_mode",
    "particleDensity": "particle_density",
    "maxVelocity": "max_velocity",
    "touchForceScale": "touch_force_scale",
    "sensitivityLow": "sensitivity_low",
    "sensitivityMid": "sensitivity_mid",
    "sensitivityHigh": "sensitivity_high",
    "particleLifetime": "particle_lifetime",
    "boundaryScale": "boundary_scale",
}


@dataclass
class SurfaceDescriptor:
    """Size of the drawing surface in pixels."""
    width: int
    height: int


def _number(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        raise InvalidParameterError(f"{name} must be a number, got {value!r}")
    value = float(value)
    if not math.isfinite(value):
        raise InvalidParameterError(f"{name} must be finite, got {value}")
    return value


class FluidEngine:
    """
    One simulation instance bound to one surface.

    Every frame runs: pending resize, audio adapter, queued impulses, solver
    (with damping), boundary mask, particles and trails (Fluid mode) and the
    display composite into ``color_buffer``.
    """

    def __init__(
        self,
        surface: SurfaceDescriptor,
        config: EngineConfig | None = None,
        seed: int | None = None,
    ):
        self.config = validate_config(copy.deepcopy(config) if config is not None else from_preset())
        self.params = self.config.params
        self.capabilities = query_capabilities()
        self.lifecycle = LifecycleManager(self.capabilities, self.params.velocity_scale_factor)

        width, height = self.lifecycle.validate(surface.width, surface.height)
        self.canvas: Tuple[int, int] = (width, height)
        self.grid: Tuple[int, int] = self.lifecycle.grid_dimensions(width, height)

        particle_seed, audio_seed = np.random.SeedSequence(seed).spawn(2)
        self.adapter = AudioForcingAdapter(self.config.audio, np.random.default_rng(audio_seed))

        p = self.params
        self.composer = Composer()
        self.solver = FluidSolver(
            self.composer,
            self.grid,
            self.canvas,
            num_jacobi_steps=p.num_jacobi_steps,
            pressure_alpha=p.pressure_alpha,
            pressure_beta=p.pressure_beta,
            damping=p.damping,
        )
        self.particles = ParticleSystem(
            self.composer,
            self.solver.velocity,
            self.canvas,
            self.lifecycle.particle_count(width, height, p.particle_density, p.max_particles),
            lifetime=p.particle_lifetime,
            trail_length=p.trail_length,
            num_render_steps=p.num_render_steps,
            rng=np.random.default_rng(particle_seed),
        )
        self.touch = self.composer.add_kernel(kernels.make_touch(p.touch_force_scale, p.max_velocity))
        self.injector = ForceInjector(self.composer, self.touch, self.canvas)

        b = self.config.boundary
        self.boundary = self.composer.add_field(
            GridField("boundary", self.canvas, wrap_x=CLAMP, wrap_y=CLAMP)
        )
        self.update_boundary = self.composer.add_kernel(
            kernels.make_update_boundary(self.canvas, b.base_radius, b.edge)
        )
        self.apply_boundaries = self.composer.add_kernel(kernels.make_apply_boundaries())

        self.render_trails = self.composer.add_kernel(kernels.make_render_trails(self.adapter.color))
        self.render_pressure = self.composer.add_kernel(kernels.make_render_pressure())

        self.pending_impulses: list[Impulse] = []
        self.shake: Tuple[float, float] = (0.0, 0.0)
        self.frame_index = 0
        self.color_buffer = np.zeros((height, width, 3), dtype=np.uint8)

        self._spectrum: Tuple[np.ndarray, float | None] | None = None
        self._audio_open = True
        self._png_path: Path | None = None
        self.png_ready = False
        self.last_png: Path | None = None
        self._disposed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _check_alive(self):
        if self._disposed:
            raise EngineDisposedError("Engine has been disposed")

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self):
        """Release every field and kernel. The engine is unusable afterwards."""
        self._check_alive()
        self.composer.dispose()
        self._spectrum = None
        self.pending_impulses = []
        self._disposed = True

    def resize(self, width: int, height: int) -> bool:
        """
        Resize the canvas. Inside a running frame the resize is deferred to
        the start of the next one.

        Returns:
            True if applied immediately.
        """
        self._check_alive()
        return self.lifecycle.request_resize(self, width, height)

    def reset_color_buffer(self):
        width, height = self.canvas
        self.color_buffer = np.zeros((height, width, 3), dtype=np.uint8)

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    def set_parameter(self, name: str, value: Any):
        """
        Change one runtime parameter; invalid names or values leave the
        engine untouched.
        """
        self._check_alive()
        key = PARAMETER_ALIASES.get(name, name)
        p = self.params

        if key == "render_mode":
            if value not in RENDER_MODES:
                raise InvalidParameterError(f"render_mode must be one of {RENDER_MODES}, got {value!r}")
            p.render_mode = value
            return

        if key == "trail_length":
            v = _number(key, value)
            if v <= 0:
                raise InvalidParameterError(f"trail_length must be > 0, got {v}")
            p.trail_length = v
            self.particles.set_trail_length(v)
        elif key == "particle_density":
            v = _number(key, value)
            if not 0 < v <= 1:
                raise InvalidParameterError(f"particle_density must be in (0, 1], got {v}")
            self.lifecycle.request_resize(self, *self.canvas, density=v)
        elif key == "max_velocity":
            v = _number(key, value)
            if v <= 0:
                raise InvalidParameterError(f"max_velocity must be > 0, got {v}")
            p.max_velocity = v
            self.touch.set_param("u_maxVelocity", v)
        elif key in ("touch_force_scale", "sensitivity_low", "sensitivity_mid", "sensitivity_high"):
            v = _number(key, value)
            if v < 0:
                raise InvalidParameterError(f"{key} must be >= 0, got {v}")
            setattr(p, key, v)
            if key == "touch_force_scale":
                self.touch.set_param("u_touchForceScale", v)
        elif key == "damping":
            v = _number(key, value)
            if not 0 < v <= 1:
                raise InvalidParameterError(f"damping must be in (0, 1], got {v}")
            p.damping = v
            self.solver.set_damping(v)
        elif key == "boundary_scale":
            v = _number(key, value)
            if v < 0:
                raise InvalidParameterError(f"boundary_scale must be >= 0, got {v}")
            self.config.boundary.scale = v
        elif key == "particle_lifetime":
            v = _number(key, value)
            if v != int(v) or not 1 <= v <= MAX_PARTICLE_LIFETIME:
                raise InvalidParameterError(
                    f"particle_lifetime must be an integer in [1, {MAX_PARTICLE_LIFETIME}], got {value}"
                )
            p.particle_lifetime = int(v)
            self.particles.set_lifetime(int(v))
        else:
            raise InvalidParameterError(f"Unknown parameter: {name!r}")

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def apply_force(
        self,
        point1: Sequence[float],
        point2: Sequence[float],
        thickness: float,
        vector: Sequence[float],
        end_caps: bool = True,
    ):
        """Queue an impulse (canvas pixels, origin bottom-left) for the next frame."""
        self._check_alive()
        thickness = _number("thickness", thickness)
        if thickness <= 0:
            raise InvalidParameterError(f"thickness must be > 0, got {thickness}")
        self.pending_impulses.append(
            Impulse(
                (float(point1[0]), float(point1[1])),
                (float(point2[0]), float(point2[1])),
                thickness,
                (float(vector[0]), float(vector[1])),
                end_caps,
            )
        )

    def open_audio(self):
        self._check_alive()
        self._audio_open = True

    def close_audio(self):
        self._check_alive()
        self._audio_open = False
        self._spectrum = None

    @property
    def audio_open(self) -> bool:
        return self._audio_open

    def feed_audio_spectrum(self, magnitudes, sample_rate: float | None = None) -> bool:
        """
        Hand the latest analyser snapshot to the engine.

        Only the most recent snapshot is used, once, by the next frame.
        Snapshots fed while audio is closed, and empty ones, are ignored.
        """
        self._check_alive()
        if not self._audio_open or magnitudes is None:
            return False
        data = np.asarray(magnitudes, dtype=np.float64).ravel()
        if data.size == 0:
            return False
        self._spectrum = (data, sample_rate)
        return True

    # ------------------------------------------------------------------
    # PNG capture
    # ------------------------------------------------------------------

    def request_png(self, path: str | Path | None = None):
        """Save the next rendered frame as PNG."""
        self._check_alive()
        self._png_path = Path(path) if path is not None else Path("fluid.png")
        self.png_ready = False

    def save_png(self, path: str | Path | None = None) -> Path:
        """Save the current color buffer as PNG."""
        self._check_alive()
        return save_png(self.color_buffer, path)

    # ------------------------------------------------------------------
    # Frame
    # ------------------------------------------------------------------

    def _apply_audio(self):
        if self._spectrum is None:
            return
        magnitudes, sample_rate = self._spectrum
        self._spectrum = None
        p = self.params

        levels = self.adapter.get_frequency_ranges(magnitudes, sample_rate)
        forces = self.adapter.apply_audio_forces(
            levels,
            self.canvas[0],
            self.canvas[1],
            p.max_velocity,
            (p.sensitivity_low, p.sensitivity_mid, p.sensitivity_high),
        )
        self.pending_impulses.extend(forces.impulses)
        self.shake = forces.shake
        self.adapter.update_color(levels)
        self.particles.set_lifetime(self.adapter.particle_lifetime(levels, p.particle_lifetime))

    def _apply_boundary(self):
        radius = self.adapter.boundary_radius(self.adapter.levels, self.config.boundary)
        self.update_boundary.set_param("u_boundaryRadius", radius)
        self.composer.step(self.update_boundary, [], self.boundary)
        self.composer.step(self.apply_boundaries, [self.solver.velocity, self.boundary], self.solver.velocity)

    def velocity_view(self) -> np.ndarray:
        """Vector-field view of the velocity, one segment every 10 px, image orientation."""
        width, height = self.canvas
        xs = np.arange(VECTOR_SPACING / 2, width, VECTOR_SPACING, dtype=np.float32)
        ys = np.arange(VECTOR_SPACING / 2, height, VECTOR_SPACING, dtype=np.float32)
        gx, gy = np.meshgrid(xs, ys)
        points = np.stack([gx.ravel(), gy.ravel()], axis=-1)
        uv = points / np.array([width, height], dtype=np.float32)
        vectors = self.solver.velocity.sample(uv)
        return vector_field_image(points, vectors, width, height, scale=VECTOR_SCALE)

    def _render(self) -> np.ndarray:
        mode = self.params.render_mode
        if mode == "Pressure":
            rgb = self.composer.step(self.render_pressure, [self.solver.pressure], dimensions=self.canvas)
            return to_display(rgb)
        if mode == "Velocity":
            return self.velocity_view()
        self.particles.step()
        rgb = self.composer.step(self.render_trails, [self.particles.trails], dimensions=self.canvas)
        return to_display(rgb)

    def step(self) -> bool:
        """
        Advance and render one frame.

        Returns:
            True if a frame was rendered, False if it was skipped.
        """
        self._check_alive()
        self.lifecycle.begin_frame()
        try:
            self.lifecycle.apply_pending(self)
            if self._audio_open:
                self._apply_audio()

            p = self.params
            impulses, self.pending_impulses = self.pending_impulses, []
            for impulse in impulses:
                self.injector.apply(self.solver.velocity, impulse, p.max_velocity, p.touch_force_scale)

            self.solver.step()
            if self.config.boundary.enabled:
                self._apply_boundary()

            self.render_trails.set_param("u_particleColor", self.adapter.smooth_color())
            self.color_buffer = self._render()
        except (AllocationError, MemoryError) as e:
            print(f"chromaflow: skipping frame {self.frame_index}: {e}", file=sys.stderr)
            return False
        finally:
            self.lifecycle.end_frame()

        self.frame_index += 1
        if self._png_path is not None:
            self.last_png = save_png(self.color_buffer, self._png_path)
            self._png_path = None
            self.png_ready = True
        return True

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else f"canvas={self.canvas}, particles={self.particles.count}"
        return f"FluidEngine({state})"


# ---------------------------------------------------------------------------
# Functional API
# ---------------------------------------------------------------------------

def init(surface: SurfaceDescriptor, config: EngineConfig | None = None, seed: int | None = None) -> FluidEngine:
    return FluidEngine(surface, config, seed)


def step(engine: FluidEngine) -> bool:
    return engine.step()


def resize(engine: FluidEngine, width: int, height: int) -> bool:
    return engine.resize(width, height)


def set_parameter(engine: FluidEngine, name: str, value: Any):
    engine.set_parameter(name, value)


def apply_force(engine: FluidEngine, point1, point2, thickness: float, vector):
    engine.apply_force(point1, point2, thickness, vector)


def feed_audio_spectrum(engine: FluidEngine, magnitudes, sample_rate: float | None = None) -> bool:
    return engine.feed_audio_spectrum(magnitudes, sample_rate)


def dispose(engine: FluidEngine):
    engine.dispose()
