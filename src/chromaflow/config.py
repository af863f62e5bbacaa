"""
Engine configuration.

One parameterized configuration covers every forcing variant.
Boundary, damping and forcing topology are independent switches and compose
freely.
"""

import copy
import json
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from chromaflow.errors import InvalidParameterError

RENDER_MODES = ("Fluid", "Pressure", "Velocity")
# Ages are int16; lifetime modulation can double the base lifetime.
MAX_PARTICLE_LIFETIME = 16383
TOPOLOGIES = ("three_region", "scatter", "global", "none")


@dataclass
class SimulationParams:
    """Mutable runtime parameters consumed by the kernels between frames."""
    trail_length: float = 15.0
    render_mode: str = "Fluid"  # "Fluid", "Pressure", "Velocity"
    particle_density: float = 0.1
    max_velocity: float = 30.0
    touch_force_scale: float = 2.0

    # Per-band audio sensitivity
    sensitivity_low: float = 1.0
    sensitivity_mid: float = 1.0
    sensitivity_high: float = 1.0

    # Particles
    particle_lifetime: int = 1000
    max_particles: int = 100000
    num_render_steps: int = 3

    # Solver (fixed at construction)
    num_jacobi_steps: int = 3
    pressure_alpha: float = -1.0
    pressure_beta: float = 0.25
    velocity_scale_factor: int = 8
    damping: float = 1.0  # 1.0 disables damping


@dataclass
class AudioConfig:
    """How spectrum snapshots turn into forces, colors and lifetimes."""
    partition: str = "frequency"  # "frequency" (needs sample rate) or "fraction"
    log_compress: bool = False
    smoothing: float = 0.2  # 1.0 = no smoothing

    # Force mapping
    topology: str = "three_region"  # "three_region", "scatter", "global", "none"
    force_curve: str = "linear"  # "linear" or "power"
    band_scales: Tuple[float, float, float] = (2.0, 0.5, 1.0 / 3.0)
    band_exponents: Tuple[float, float, float] = (1.2, 1.5, 2.0)
    max_force: Optional[float] = 50.0
    scatter_threshold: float = 5.0
    scatter_thickness: Tuple[float, float, float] = (50.0, 30.0, 10.0)
    global_force_limit: float = 1.5  # multiple of max_velocity
    shake_enabled: bool = False
    max_shake: float = 10.0

    # Color
    color_mode: str = "spectrum"  # "spectrum" (low blue, mid green, high red) or "direct"
    color_smoothing: float = 0.8

    lifetime_modulation: bool = True


@dataclass
class BoundaryConfig:
    """Audio-driven circular boundary that confines the flow."""
    enabled: bool = False
    base_radius: float = 100.0
    scale: float = 50.0
    edge: float = 5.0


@dataclass
class EngineConfig:
    params: SimulationParams = field(default_factory=SimulationParams)
    audio: AudioConfig = field(default_factory=AudioConfig)
    boundary: BoundaryConfig = field(default_factory=BoundaryConfig)


# Named starting points; overrides are applied on top.
PRESETS: Dict[str, Dict[str, Any]] = {
    "regions": {},
    "scatter": {
        "audio": {
            "partition": "fraction",
            "log_compress": True,
            "smoothing": 1.0,
            "topology": "scatter",
            "band_scales": (1.0, 0.5, 0.25),
            "max_force": None,
            "color_mode": "direct",
            "lifetime_modulation": False,
        },
        "boundary": {"enabled": True},
    },
    "global": {
        "params": {
            "particle_density": 0.05,
            "max_velocity": 15.0,
            "touch_force_scale": 1.0,
            "particle_lifetime": 2000,
            "damping": 0.98,
        },
        "audio": {
            "partition": "fraction",
            "log_compress": True,
            "smoothing": 0.5,
            "topology": "global",
            "force_curve": "power",
            "band_scales": (1.0, 0.5, 0.25),
            "max_force": None,
            "shake_enabled": True,
            "color_mode": "direct",
            "color_smoothing": 0.1,
            "lifetime_modulation": False,
        },
    },
}


def _apply_overrides(target: Any, overrides: Dict[str, Any], path: str = ""):
    names = {f.name for f in fields(target)}
    for key, value in overrides.items():
        if key not in names:
            raise InvalidParameterError(f"Unknown config key: {path}{key}")
        current = getattr(target, key)
        if is_dataclass(current):
            if not isinstance(value, dict):
                raise InvalidParameterError(f"Config section {path}{key} must be an object")
            _apply_overrides(current, value, f"{path}{key}.")
        else:
            if isinstance(value, list):
                value = tuple(value)
            setattr(target, key, value)


def validate_config(cfg: EngineConfig) -> EngineConfig:
    """Reject configurations the engine cannot run with."""
    p = cfg.params
    if p.trail_length <= 0:
        raise InvalidParameterError(f"trail_length must be > 0, got {p.trail_length}")
    if not 0 < p.particle_density <= 1:
        raise InvalidParameterError(f"particle_density must be in (0, 1], got {p.particle_density}")
    if p.max_velocity <= 0:
        raise InvalidParameterError(f"max_velocity must be > 0, got {p.max_velocity}")
    if p.render_mode not in RENDER_MODES:
        raise InvalidParameterError(f"render_mode must be one of {RENDER_MODES}, got {p.render_mode!r}")
    if not 1 <= p.particle_lifetime <= MAX_PARTICLE_LIFETIME:
        raise InvalidParameterError(
            f"particle_lifetime must be in [1, {MAX_PARTICLE_LIFETIME}], got {p.particle_lifetime}"
        )
    if p.max_particles < 1:
        raise InvalidParameterError(f"max_particles must be >= 1, got {p.max_particles}")
    if p.num_jacobi_steps < 0 or p.num_render_steps < 1 or p.velocity_scale_factor < 1:
        raise InvalidParameterError("solver step counts and velocity_scale_factor must be positive")
    if not 0 < p.damping <= 1:
        raise InvalidParameterError(f"damping must be in (0, 1], got {p.damping}")
    for name in ("touch_force_scale", "sensitivity_low", "sensitivity_mid", "sensitivity_high"):
        if getattr(p, name) < 0:
            raise InvalidParameterError(f"{name} must be >= 0, got {getattr(p, name)}")
    if cfg.boundary.scale < 0 or cfg.boundary.edge <= 0:
        raise InvalidParameterError("boundary scale must be >= 0 and edge > 0")

    a = cfg.audio
    if a.partition not in ("frequency", "fraction"):
        raise InvalidParameterError(f"Unknown band partition: {a.partition!r}")
    if a.topology not in TOPOLOGIES:
        raise InvalidParameterError(f"Unknown forcing topology: {a.topology!r}")
    if a.force_curve not in ("linear", "power"):
        raise InvalidParameterError(f"Unknown force curve: {a.force_curve!r}")
    if a.color_mode not in ("spectrum", "direct"):
        raise InvalidParameterError(f"Unknown color mode: {a.color_mode!r}")
    if not 0 < a.smoothing <= 1 or not 0 < a.color_smoothing <= 1:
        raise InvalidParameterError("smoothing factors must be in (0, 1]")
    return cfg


def from_preset(name: str = "regions", overrides: Optional[Dict[str, Any]] = None) -> EngineConfig:
    """Build a config from one of PRESETS plus optional nested overrides."""
    if name not in PRESETS:
        raise InvalidParameterError(f"Unknown preset {name!r}; choose from {sorted(PRESETS)}")
    cfg = EngineConfig()
    _apply_overrides(cfg, copy.deepcopy(PRESETS[name]))
    if overrides:
        _apply_overrides(cfg, overrides)
    return validate_config(cfg)


def load_config(path: Union[str, Path]) -> EngineConfig:
    """
    Load a JSON config file.

    The file holds an optional "preset" name plus nested "params", "audio"
    and "boundary" overrides.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    preset = data.pop("preset", "regions")
    return from_preset(preset, data)
