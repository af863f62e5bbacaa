"""
Offline spectrum analyser.

Reproduces the snapshots a browser AnalyserNode hands to the adapter:
Blackman-windowed FFT of the most recent ``fft_size`` samples, magnitude
smoothed over time, converted to decibels and scaled to bytes.
"""

from pathlib import Path
from typing import Iterator, Tuple

import librosa
import numpy as np
from scipy.signal import get_window


class SpectrumAnalyser:
    def __init__(
        self,
        fft_size: int = 2048,
        smoothing_time_constant: float = 0.8,
        min_decibels: float = -100.0,
        max_decibels: float = -30.0,
    ):
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two >= 32, got {fft_size}")
        if not 0.0 <= smoothing_time_constant <= 1.0:
            raise ValueError("smoothing_time_constant must be in [0, 1]")
        if min_decibels >= max_decibels:
            raise ValueError("min_decibels must be below max_decibels")

        self.fft_size = fft_size
        self.smoothing_time_constant = smoothing_time_constant
        self.min_decibels = min_decibels
        self.max_decibels = max_decibels
        self._window = get_window("blackman", fft_size).astype(np.float64)
        self._previous = np.zeros(self.frequency_bin_count, dtype=np.float64)

    @property
    def frequency_bin_count(self) -> int:
        return self.fft_size // 2

    def reset(self):
        self._previous[:] = 0.0

    def byte_frequency_data(self, frame: np.ndarray) -> np.ndarray:
        """
        One analyser snapshot.

        Args:
            frame: The most recent samples; shorter frames are zero-padded at
                the front, longer ones use the last ``fft_size`` samples.

        Returns:
            (fft_size // 2,) uint8 magnitudes.
        """
        samples = np.asarray(frame, dtype=np.float64).ravel()[-self.fft_size:]
        if samples.size < self.fft_size:
            samples = np.concatenate([np.zeros(self.fft_size - samples.size), samples])

        spectrum = np.abs(np.fft.rfft(samples * self._window))[: self.frequency_bin_count] / self.fft_size
        tau = self.smoothing_time_constant
        self._previous = tau * self._previous + (1.0 - tau) * spectrum

        with np.errstate(divide="ignore"):
            db = 20.0 * np.log10(self._previous)
        scaled = 255.0 / (self.max_decibels - self.min_decibels) * (db - self.min_decibels)
        return np.clip(np.floor(scaled), 0, 255).astype(np.uint8)

    def frames_from_signal(
        self, y: np.ndarray, sr: int, fps: float, max_duration: float | None = None
    ) -> Iterator[Tuple[np.ndarray, int]]:
        """Yield one (magnitudes, sample_rate) snapshot per video frame."""
        duration = len(y) / sr
        if max_duration is not None:
            duration = min(duration, max_duration)
        n_frames = int(np.ceil(duration * fps))
        for i in range(n_frames):
            end = min(int(round((i + 1) * sr / fps)), len(y))
            start = max(end - self.fft_size, 0)
            yield self.byte_frequency_data(y[start:end]), sr

    def frames(
        self, path: str | Path, fps: float, max_duration: float | None = None
    ) -> Iterator[Tuple[np.ndarray, int]]:
        y, sr = load(path)
        yield from self.frames_from_signal(y, sr, fps, max_duration)


def load(path: str | Path) -> Tuple[np.ndarray, int]:
    """Load audio as mono at its native sample rate."""
    y, sr = librosa.load(str(path), sr=None, mono=True)
    return y, int(sr)
