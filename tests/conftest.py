"""Pytest configuration and shared fixtures."""

import numpy as np
import pytest

from chromaflow.config import from_preset
from chromaflow.engine import FluidEngine, SurfaceDescriptor

# Default sample rate for test audio
TEST_SR = 22050


@pytest.fixture
def sample_rate() -> int:
    """Default sample rate for tests."""
    return TEST_SR


@pytest.fixture
def pure_sine(sample_rate: int) -> tuple[np.ndarray, int]:
    """
    Generate a pure 440Hz sine wave (A4 note).

    Returns:
        Tuple of (audio_signal, sample_rate).
    """
    duration = 2.0  # 2 seconds
    t = np.linspace(0, duration, int(sample_rate * duration), endpoint=False)
    frequency = 440.0  # A4
    y = 0.5 * np.sin(2 * np.pi * frequency * t)
    return y.astype(np.float32), sample_rate


@pytest.fixture
def white_noise(sample_rate: int) -> tuple[np.ndarray, int]:
    """
    Generate white noise.

    Returns:
        Tuple of (audio_signal, sample_rate).
    """
    rng = np.random.default_rng(42)
    duration = 2.0
    samples = int(sample_rate * duration)
    y = rng.standard_normal(samples).astype(np.float32) * 0.3
    return y, sample_rate


@pytest.fixture
def temp_audio_file(tmp_path, pure_sine):
    """Create a temporary audio file for testing file I/O."""
    import soundfile as sf

    y, sr = pure_sine
    audio_path = tmp_path / "test_audio.wav"
    sf.write(audio_path, y, sr)
    return audio_path


@pytest.fixture
def loud_spectrum() -> np.ndarray:
    """Analyser snapshot with every bin at full scale."""
    return np.full(1024, 255, dtype=np.uint8)


@pytest.fixture
def engine():
    """Small engine on a 64x48 canvas with a fixed seed."""
    eng = FluidEngine(SurfaceDescriptor(64, 48), from_preset("regions"), seed=7)
    yield eng
    if not eng.disposed:
        eng.dispose()
