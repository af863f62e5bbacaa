"""Tests for trail, pressure and velocity color grading."""

import numpy as np
import pytest

from chromaflow.render.colorgrade import (
    TRAIL_BACKGROUND,
    mix_trail_color,
    shift_frame,
    signed_amplitude,
    to_display,
    vector_field_image,
)


class TestMixTrailColor:
    def test_zero_trail_is_background(self):
        rgb = mix_trail_color(np.zeros((4, 5)), (1.0, 0.0, 0.0))
        assert rgb.shape == (4, 5, 3)
        np.testing.assert_allclose(rgb, np.broadcast_to(TRAIL_BACKGROUND, (4, 5, 3)), atol=1e-6)

    def test_full_trail_is_particle_color(self):
        rgb = mix_trail_color(np.ones((2, 2)), (1.0, 0.5, 0.0))
        np.testing.assert_allclose(rgb[0, 0], [1.0, 0.5, 0.0], atol=1e-6)

    def test_intensity_is_squared(self):
        rgb = mix_trail_color(np.full((1, 1), 0.5), (1.0, 1.0, 1.0), background=(0.0, 0.0, 0.0))
        np.testing.assert_allclose(rgb[0, 0], [0.25, 0.25, 0.25], atol=1e-6)


class TestSignedAmplitude:
    def test_zero_is_white(self):
        np.testing.assert_allclose(signed_amplitude(np.zeros((2, 2)))[0, 0], [1.0, 1.0, 1.0])

    def test_positive_is_red(self):
        np.testing.assert_allclose(signed_amplitude(np.full((1, 1), 2.0))[0, 0], [1.0, 0.0, 0.0])

    def test_negative_is_blue(self):
        np.testing.assert_allclose(signed_amplitude(np.full((1, 1), -4.0))[0, 0], [0.0, 0.0, 1.0])

    def test_scale(self):
        rgb = signed_amplitude(np.full((1, 1), 1.0), scale=0.5)
        np.testing.assert_allclose(rgb[0, 0], [1.0, 0.5, 0.5], atol=1e-6)


class TestDisplay:
    def test_rows_flipped(self):
        rgb = np.zeros((3, 2, 3), dtype=np.float32)
        rgb[0] = 1.0  # bottom row in field orientation
        out = to_display(rgb)
        assert out.dtype == np.uint8
        assert np.all(out[-1] == 255)
        assert np.all(out[0] == 0)

    def test_clipped(self):
        out = to_display(np.full((1, 1, 3), 2.0, dtype=np.float32))
        assert np.all(out == 255)


class TestVectorField:
    def test_segment_drawn_upward(self):
        points = np.array([[10.0, 10.0]])
        vectors = np.array([[0.0, 2.0]])
        img = vector_field_image(points, vectors, 20, 20, scale=2.5)
        assert img.shape == (20, 20, 3)
        # Start at image row 10, end 5 px higher on screen.
        assert np.all(img[10, 10] == 0)
        assert np.all(img[6, 10] == 0)
        assert np.all(img[14, 10] == 255)

    def test_background(self):
        img = vector_field_image(np.zeros((0, 2)), np.zeros((0, 2)), 8, 4, background=(1, 2, 3))
        assert np.all(img == (1, 2, 3))


class TestShiftFrame:
    def test_no_offset_returns_same(self):
        frame = np.zeros((4, 4, 3), dtype=np.uint8)
        assert shift_frame(frame, (0.2, -0.4)) is frame

    def test_wraps(self):
        frame = np.zeros((4, 4, 3), dtype=np.uint8)
        frame[0, 0] = 255
        out = shift_frame(frame, (1.0, 2.0))
        assert np.all(out[2, 1] == 255)
        assert out.sum() == 255 * 3

    @pytest.mark.parametrize("offset", [(3.6, 0.0), (-7.0, 9.9)])
    def test_shape_kept(self, offset):
        frame = np.zeros((6, 8, 3), dtype=np.uint8)
        assert shift_frame(frame, offset).shape == frame.shape
