"""
Audio forcing adapter.

Turns analyser snapshots (byte magnitudes, 0-255, one per frequency bin)
into smoothed low/mid/high band levels, and the levels into impulses, a
particle color, a particle lifetime and a boundary radius. The adapter
never touches simulation fields; the engine applies what it returns.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import librosa
import numpy as np

from chromaflow.config import AudioConfig, BoundaryConfig
from chromaflow.sim.forces import Impulse

Color = Tuple[float, float, float]

# Absolute band edges in Hz; low is inclusive at both ends, mid/high exclude their start.
LOW_BAND = (20.0, 250.0)
MID_BAND = (251.0, 4000.0)
HIGH_BAND = (4001.0, 20000.0)

# Fraction partition edges.
LOW_FRACTION = 0.1
MID_FRACTION = 0.5

# Force directions for the three-region topology (y up): low pushes down, mid right, high up.
REGION_ANGLES = (-math.pi / 2, 0.0, math.pi / 2)

SPECTRUM_COLORS = ((0.0, 0.0, 1.0), (0.0, 1.0, 0.0), (1.0, 0.0, 0.0))
INITIAL_COLOR: Color = (0.0, 0.0, 1.0)

LOG_255 = math.log1p(255.0)


@dataclass
class BandLevels:
    """Normalised band energies, each in [0, 1]."""
    low: float = 0.0
    mid: float = 0.0
    high: float = 0.0

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.low, self.mid, self.high)


@dataclass
class AudioForces:
    """What one spectrum snapshot asks the engine to do to the flow."""
    impulses: List[Impulse] = field(default_factory=list)
    shake: Tuple[float, float] = (0.0, 0.0)
    magnitudes: Tuple[float, float, float] = (0.0, 0.0, 0.0)


def bin_frequencies(num_bins: int, sample_rate: float) -> np.ndarray:
    """Centre frequency of each analyser bin: i * sr / 2 / n."""
    return librosa.fft_frequencies(sr=sample_rate, n_fft=2 * num_bins)[:num_bins]


def _mean(values: np.ndarray) -> float:
    return float(values.mean()) if values.size else 0.0


class AudioForcingAdapter:
    """
    Stateful mapping from spectra to forcing.

    State is the smoothed band levels and the current display color. Random
    draws (scatter positions, global force direction, shake) come from the
    adapter's own generator so identical seeds give identical forcing.
    """

    def __init__(self, config: AudioConfig | None = None, rng: np.random.Generator | None = None):
        self.cfg = config or AudioConfig()
        self.rng = rng if rng is not None else np.random.default_rng()
        self.levels = BandLevels()
        self.target_color: Color = INITIAL_COLOR
        self.color: Color = INITIAL_COLOR

    def reset(self):
        self.levels = BandLevels()
        self.target_color = INITIAL_COLOR
        self.color = INITIAL_COLOR

    # ------------------------------------------------------------------
    # Bands
    # ------------------------------------------------------------------

    def _normalise(self, average: float) -> float:
        if self.cfg.log_compress:
            return math.log1p(average) / LOG_255
        return average / 255.0

    def band_averages(self, magnitudes: Sequence[float], sample_rate: Optional[float] = None) -> Tuple[float, float, float]:
        """Raw (unsmoothed) average magnitude per band."""
        data = np.asarray(magnitudes, dtype=np.float64).ravel()
        n = data.size
        if self.cfg.partition == "frequency" and sample_rate:
            freqs = bin_frequencies(n, sample_rate)
            low = data[(freqs >= LOW_BAND[0]) & (freqs <= LOW_BAND[1])]
            mid = data[(freqs > MID_BAND[0]) & (freqs <= MID_BAND[1])]
            high = data[(freqs > HIGH_BAND[0]) & (freqs <= HIGH_BAND[1])]
        else:
            low_end = int(math.floor(n * LOW_FRACTION))
            mid_end = int(math.floor(n * MID_FRACTION))
            low, mid, high = data[:low_end], data[low_end:mid_end], data[mid_end:]
        return (_mean(low), _mean(mid), _mean(high))

    def get_frequency_ranges(self, magnitudes: Sequence[float], sample_rate: Optional[float] = None) -> BandLevels:
        """
        Reduce a spectrum snapshot to smoothed band levels.

        Args:
            magnitudes: Byte magnitudes (0-255), one per bin.
            sample_rate: Needed for the absolute-frequency partition; without
                it the fraction partition is used.

        Returns:
            The new smoothed BandLevels (also kept as ``self.levels``).
        """
        k = self.cfg.smoothing
        raw = [self._normalise(avg) for avg in self.band_averages(magnitudes, sample_rate)]
        prev = self.levels.as_tuple()
        self.levels = BandLevels(*(k * r + (1.0 - k) * p for r, p in zip(raw, prev)))
        return self.levels

    # ------------------------------------------------------------------
    # Forces
    # ------------------------------------------------------------------

    def band_forces(
        self,
        levels: BandLevels,
        max_velocity: float,
        sensitivity: Sequence[float] = (1.0, 1.0, 1.0),
    ) -> Tuple[float, float, float]:
        """Force magnitude per band for the configured curve."""
        cfg = self.cfg
        forces = []
        for i, level in enumerate(levels.as_tuple()):
            if cfg.force_curve == "power":
                shaped = max(level, 0.0) ** cfg.band_exponents[i]
            else:
                shaped = level
            force = shaped * max_velocity * cfg.band_scales[i] * sensitivity[i]
            if cfg.max_force is not None:
                force = min(force, cfg.max_force)
            forces.append(force)
        return tuple(forces)

    def _random_vector(self, magnitude: float) -> Tuple[float, float]:
        angle = self.rng.uniform(0.0, 2.0 * math.pi)
        return (magnitude * math.cos(angle), magnitude * math.sin(angle))

    def apply_audio_forces(
        self,
        levels: BandLevels,
        canvas_width: float,
        canvas_height: float,
        max_velocity: float,
        sensitivity: Sequence[float] = (1.0, 1.0, 1.0),
    ) -> AudioForces:
        """Impulses (canvas pixels, origin bottom-left) for the configured topology."""
        cfg = self.cfg
        magnitudes = self.band_forces(levels, max_velocity, sensitivity)
        result = AudioForces(magnitudes=magnitudes)
        w, h = float(canvas_width), float(canvas_height)

        if cfg.topology == "three_region":
            third = w / 3.0
            for i, (force, angle) in enumerate(zip(magnitudes, REGION_ANGLES)):
                if force == 0:
                    continue
                vector = (force * math.cos(angle), force * math.sin(angle))
                x0, x1 = third * i, third * (i + 1)
                result.impulses.append(Impulse((x0, h / 2), (x1, h / 2), h, vector, end_caps=False))

        elif cfg.topology == "scatter":
            for force, thickness in zip(magnitudes, cfg.scatter_thickness):
                if force <= cfg.scatter_threshold:
                    continue
                point = (self.rng.uniform(0.0, w), self.rng.uniform(0.0, h))
                result.impulses.append(Impulse(point, point, thickness, self._random_vector(force)))

        elif cfg.topology == "global":
            limit = max_velocity * cfg.global_force_limit
            total = min(sum(magnitudes), limit)
            if total > 0:
                result.impulses.append(
                    Impulse((0.0, 0.0), (w, h), max(w, h), self._random_vector(total), end_caps=False)
                )
                if cfg.shake_enabled:
                    amount = total / limit * cfg.max_shake
                    result.shake = (
                        float(self.rng.uniform(-1.0, 1.0) * amount),
                        float(self.rng.uniform(-1.0, 1.0) * amount),
                    )

        return result

    # ------------------------------------------------------------------
    # Color, lifetime, boundary
    # ------------------------------------------------------------------

    def update_color(self, levels: BandLevels) -> Color:
        """Set the target particle color from band levels."""
        bands = levels.as_tuple()
        if self.cfg.color_mode == "direct":
            target = bands
        else:
            target = tuple(
                sum(level * color[c] for level, color in zip(bands, SPECTRUM_COLORS))
                for c in range(3)
            )
        self.target_color = tuple(float(v) for v in target)
        return self.target_color

    def smooth_color(self) -> Color:
        """Move the display color toward the target by ``color_smoothing``."""
        k = self.cfg.color_smoothing
        self.color = tuple(c + (t - c) * k for c, t in zip(self.color, self.target_color))
        return self.color

    def particle_lifetime(self, levels: BandLevels, base_lifetime: int) -> int:
        if not self.cfg.lifetime_modulation:
            return int(base_lifetime)
        return int(round(base_lifetime * (1.0 + levels.low)))

    @staticmethod
    def boundary_radius(levels: BandLevels, boundary: BoundaryConfig) -> float:
        return boundary.base_radius + levels.low * boundary.scale
