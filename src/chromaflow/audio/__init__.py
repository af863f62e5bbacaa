"""Spectrum analysis and audio-to-force mapping."""

from chromaflow.audio.adapter import AudioForcingAdapter, BandLevels
from chromaflow.audio.spectrum import SpectrumAnalyser

__all__ = ["AudioForcingAdapter", "BandLevels", "SpectrumAnalyser"]
