"""Tests for canvas resize handling and frame bracketing."""

import numpy as np
import pytest

from chromaflow.config import from_preset
from chromaflow.core.capabilities import Capabilities, query_capabilities
from chromaflow.engine import FluidEngine, SurfaceDescriptor
from chromaflow.errors import AllocationError, InvalidParameterError
from chromaflow.sim.lifecycle import LifecycleManager


def _engine(width=100, height=100, preset="regions"):
    return FluidEngine(SurfaceDescriptor(width, height), from_preset(preset), seed=1)


# ---------------------------------------------------------------------------
# Sizes
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "canvas, grid",
    [((100, 100), (13, 13)), ((81, 8), (11, 1)), ((8, 8), (1, 1)), ((1, 1), (1, 1))],
)
def test_grid_dimensions(canvas, grid):
    assert LifecycleManager(Capabilities()).grid_dimensions(*canvas) == grid


@pytest.mark.parametrize("size", [(0, 10), (10, -1), (10.5, 10), (20000, 10)])
def test_validate_rejects(size):
    with pytest.raises(InvalidParameterError):
        LifecycleManager(Capabilities()).validate(*size)


def test_validate_accepts_whole_floats():
    assert LifecycleManager(Capabilities()).validate(64.0, 48) == (64, 48)


def test_particle_count_respects_backend_limit():
    manager = LifecycleManager(Capabilities(max_particles=500))
    assert manager.particle_count(100, 100, 0.1, 100000) == 500


def test_capabilities_query():
    caps = query_capabilities()
    assert caps.backend.startswith("numpy")
    assert caps.float16_supported
    assert caps.max_dimension >= 4096


# ---------------------------------------------------------------------------
# Resize
# ---------------------------------------------------------------------------

class TestResize:
    def test_initial_allocation(self):
        eng = _engine()
        assert eng.grid == (13, 13)
        assert eng.particles.count == 1000
        assert eng.solver.velocity.dimensions == (13, 13)
        assert eng.boundary.dimensions == (100, 100)
        assert eng.particles.trails.dimensions == (100, 100)
        eng.dispose()

    def test_resize_reallocates_everything(self):
        eng = _engine()
        assert eng.resize(50, 50)
        assert eng.canvas == (50, 50)
        assert eng.grid == (7, 7)
        assert eng.particles.count == 250
        for f in eng.solver.fields:
            assert f.dimensions == (7, 7)
        assert eng.boundary.dimensions == (50, 50)
        assert eng.particles.trails.dimensions == (50, 50)
        assert eng.color_buffer.shape == (50, 50, 3)
        eng.dispose()

    def test_resize_updates_kernel_sizes(self):
        eng = _engine()
        eng.resize(50, 40)
        assert eng.solver.advection.get_param("u_dimensions") == (50.0, 40.0)
        assert eng.solver.divergence2d.get_param("u_pxSize") == pytest.approx((1 / 7, 1 / 5))
        assert eng.update_boundary.get_param("u_center") == (25.0, 20.0)
        assert eng.particles.advect_kernel.get_param("u_dimensions") == (50.0, 40.0)
        eng.dispose()

    def test_resize_clears_velocity(self):
        eng = _engine()
        eng.solver.velocity.front[...] = 3.0
        eng.resize(60, 60)
        assert np.all(eng.solver.velocity.front == 0.0)
        eng.dispose()

    def test_positions_inside_new_canvas(self):
        eng = _engine()
        eng.resize(30, 20)
        pos = eng.particles.position.front
        assert np.all((pos[:, 0] >= 0) & (pos[:, 0] < 30))
        assert np.all((pos[:, 1] >= 0) & (pos[:, 1] < 20))
        eng.dispose()

    def test_invalid_size_leaves_engine_untouched(self):
        eng = _engine()
        with pytest.raises(InvalidParameterError):
            eng.resize(0, 50)
        assert eng.canvas == (100, 100)
        assert eng.particles.count == 1000
        assert eng.step()
        eng.dispose()

    def test_failed_allocation_leaves_engine_untouched(self, monkeypatch):
        eng = _engine()

        def fail(canvas, count):
            raise AllocationError("out of memory")

        monkeypatch.setattr(eng.particles, "stage_reseed", fail)
        with pytest.raises(AllocationError):
            eng.resize(50, 50)
        assert eng.canvas == (100, 100)
        assert eng.solver.velocity.dimensions == (13, 13)
        assert eng.boundary.dimensions == (100, 100)
        eng.dispose()

    def test_failed_density_change_keeps_old_density(self, monkeypatch):
        eng = _engine()

        def fail(canvas, count):
            raise AllocationError("out of memory")

        monkeypatch.setattr(eng.particles, "stage_reseed", fail)
        with pytest.raises(AllocationError):
            eng.set_parameter("particle_density", 0.05)
        assert eng.params.particle_density == pytest.approx(0.1)
        assert eng.particles.count == 1000
        monkeypatch.undo()

        # An unrelated resize must not pick up the rejected density.
        eng.resize(50, 50)
        assert eng.particles.count == 250
        eng.dispose()

    def test_resize_then_step(self):
        eng = _engine()
        eng.resize(40, 24)
        assert eng.step()
        assert eng.color_buffer.shape == (24, 40, 3)
        eng.dispose()


class TestDeferredResize:
    def test_resize_inside_frame_is_deferred(self):
        eng = _engine()
        eng.lifecycle.begin_frame()
        assert eng.resize(50, 50) is False
        assert eng.canvas == (100, 100)
        assert eng.lifecycle.pending == (50, 50)
        eng.lifecycle.end_frame()

        assert eng.step()
        assert eng.canvas == (50, 50)
        assert eng.lifecycle.pending is None
        assert eng.color_buffer.shape == (50, 50, 3)
        eng.dispose()

    def test_latest_pending_wins(self):
        eng = _engine()
        eng.lifecycle.begin_frame()
        eng.resize(50, 50)
        eng.resize(30, 30)
        eng.lifecycle.end_frame()
        eng.step()
        assert eng.canvas == (30, 30)
        eng.dispose()

    def test_density_change_inside_frame_is_deferred(self):
        eng = _engine()
        eng.lifecycle.begin_frame()
        eng.set_parameter("particle_density", 0.05)
        assert eng.params.particle_density == pytest.approx(0.1)
        assert eng.particles.count == 1000
        eng.lifecycle.end_frame()

        assert eng.step()
        assert eng.params.particle_density == pytest.approx(0.05)
        assert eng.particles.count == 500
        assert eng.lifecycle.pending_density is None
        eng.dispose()

    def test_frame_flag_cleared_after_step(self):
        eng = _engine()
        eng.step()
        assert not eng.lifecycle.in_frame
        eng.dispose()
