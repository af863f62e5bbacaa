"""Tests for grid fields: storage, ping-pong buffers, sampling and disposal."""

import numpy as np
import pytest

from chromaflow.core.field import (
    CLAMP,
    INT16,
    LINEAR,
    NEAREST,
    REPEAT,
    GridField,
    texel_uv,
)
from chromaflow.errors import EngineDisposedError, InvalidParameterError


class TestStorage:
    def test_2d_shape(self):
        f = GridField("v", (4, 3), num_components=2)
        assert f.front.shape == (3, 4, 2)
        assert f.dimensions == (4, 3)
        assert f.width == 4 and f.height == 3

    def test_1d_shape(self):
        f = GridField("ages", 10, dtype=INT16)
        assert f.front.shape == (10, 1)
        assert f.front.dtype == np.int16
        assert f.is_1d
        assert f.length == 10

    def test_single_buffer_front_is_back(self):
        f = GridField("d", (2, 2))
        assert f.front is f.back

    def test_ping_pong_swap(self):
        f = GridField("p", (2, 2), num_buffers=2)
        assert f.front is not f.back
        f.back[...] = 5.0
        f.swap()
        assert np.all(f.front == 5.0)
        assert np.all(f.back == 0.0)

    def test_initial_data_flat(self):
        f = GridField("pos", 3, num_components=4, data=np.arange(12))
        np.testing.assert_array_equal(f.front[1], [4, 5, 6, 7])

    def test_initial_data_copied_to_every_buffer(self):
        f = GridField("pos", 2, num_components=2, num_buffers=2, data=[1, 2, 3, 4])
        np.testing.assert_array_equal(f.front, f.back)
        assert f.front is not f.back

    def test_initial_data_size_mismatch(self):
        with pytest.raises(InvalidParameterError):
            GridField("pos", 3, num_components=4, data=np.zeros(5))

    @pytest.mark.parametrize("dims", [(0, 4), (4, -1), 0, (1, 2, 3)])
    def test_invalid_dimensions(self, dims):
        with pytest.raises(InvalidParameterError):
            GridField("bad", dims)

    def test_invalid_attributes(self):
        with pytest.raises(InvalidParameterError):
            GridField("bad", (2, 2), num_components=5)
        with pytest.raises(InvalidParameterError):
            GridField("bad", (2, 2), dtype=np.float64)
        with pytest.raises(InvalidParameterError):
            GridField("bad", (2, 2), num_buffers=3)
        with pytest.raises(InvalidParameterError):
            GridField("bad", (2, 2), wrap_x="mirror")


class TestResize:
    def test_resize_keeps_attributes(self):
        f = GridField("v", (4, 4), num_components=2, filter=LINEAR, num_buffers=2)
        f.front[...] = 1.0
        f.resize((8, 2))
        assert f.front.shape == (2, 8, 2)
        assert f.filter == LINEAR
        assert f.num_buffers == 2
        assert np.all(f.front == 0.0)

    def test_failed_resize_leaves_field_intact(self):
        f = GridField("v", (4, 4))
        f.front[...] = 3.0
        with pytest.raises(InvalidParameterError):
            f.resize((0, 4))
        assert f.dimensions == (4, 4)
        assert np.all(f.front == 3.0)

    def test_stage_does_not_attach(self):
        f = GridField("v", (4, 4))
        staged = f.stage((2, 2))
        assert f.dimensions == (4, 4)
        f.commit(staged)
        assert f.dimensions == (2, 2)


class TestDispose:
    def test_double_dispose_raises(self):
        f = GridField("v", (2, 2))
        f.dispose()
        assert f.disposed
        with pytest.raises(EngineDisposedError):
            f.dispose()

    def test_access_after_dispose_raises(self):
        f = GridField("v", (2, 2))
        f.dispose()
        with pytest.raises(EngineDisposedError):
            _ = f.front
        with pytest.raises(EngineDisposedError):
            f.resize((4, 4))


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------

def _ramp(width, height, **kwargs) -> GridField:
    values = np.arange(width * height, dtype=np.float32)
    return GridField("ramp", (width, height), data=values, **kwargs)


def test_texel_uv_centres():
    uv = texel_uv(4, 2)
    assert uv.shape == (2, 4, 2)
    np.testing.assert_allclose(uv[0, 0], [0.125, 0.25])
    np.testing.assert_allclose(uv[1, 3], [0.875, 0.75])


def test_nearest_at_texel_centres_matches_read():
    f = _ramp(5, 3)
    np.testing.assert_array_equal(f.sample(texel_uv(5, 3)), f.read())


def test_nearest_repeat_wraps():
    f = _ramp(4, 1, wrap_x=REPEAT)
    # Just left of the origin is the last texel.
    assert f.sample(np.array([-0.1, 0.5]))[0] == 3.0


def test_nearest_clamp():
    f = _ramp(4, 1, wrap_x=CLAMP, wrap_y=CLAMP)
    assert f.sample(np.array([-0.5, 0.5]))[0] == 0.0
    assert f.sample(np.array([1.5, 0.5]))[0] == 3.0


def test_linear_midpoint():
    f = GridField("lin", (2, 1), filter=LINEAR, data=[0.0, 1.0])
    assert f.sample(np.array([0.5, 0.5]))[0] == pytest.approx(0.5)


def test_linear_repeat_interpolates_across_edge():
    f = GridField("lin", (2, 1), filter=LINEAR, data=[0.0, 1.0])
    assert f.sample(np.array([0.0, 0.5]))[0] == pytest.approx(0.5)


def test_linear_clamp_holds_edge_value():
    f = GridField("lin", (2, 1), filter=LINEAR, wrap_x=CLAMP, wrap_y=CLAMP, data=[0.0, 1.0])
    assert f.sample(np.array([0.0, 0.5]))[0] == pytest.approx(0.0)


def test_linear_mixed_wrap_modes():
    f = GridField("lin", (2, 1), filter=LINEAR, wrap_x=REPEAT, wrap_y=CLAMP, data=[0.0, 1.0])
    assert f.sample(np.array([0.0, 0.5]))[0] == pytest.approx(0.5)
    assert f.sample(np.array([0.5, 0.5]))[0] == pytest.approx(0.5)


def test_sample_multi_component_shape():
    f = GridField("v", (4, 4), num_components=2, filter=LINEAR)
    out = f.sample(np.zeros((7, 2)))
    assert out.shape == (7, 2)
    assert out.dtype == np.float32


def test_sample_1d_raises():
    f = GridField("ages", 4, filter=NEAREST)
    with pytest.raises(ValueError):
        f.sample(np.zeros((1, 2)))
