"""Tests for the command line renderer."""

import numpy as np
import pytest

from chromaflow import cli
from chromaflow.cli import PROFILES, build_parser, main, render_frames
from chromaflow.config import from_preset
from chromaflow.engine import FluidEngine, SurfaceDescriptor


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args(["song.wav"])
        assert args.preset == "regions"
        assert args.profile == "medium"
        assert args.output is None
        assert args.render is None
        assert args.seed is None

    def test_options(self):
        args = build_parser().parse_args(
            ["song.wav", "--preset", "global", "-p", "low", "--render", "Pressure", "--seed", "3", "-f", "24"]
        )
        assert args.preset == "global"
        assert args.render == "Pressure"
        assert args.seed == 3
        assert args.fps == 24

    def test_rejects_unknown_preset(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["song.wav", "--preset", "vortex"])

    def test_profiles(self):
        assert PROFILES["high"]["fps"] == 60
        assert (PROFILES["low"]["width"], PROFILES["low"]["height"]) == (640, 360)


class TestMain:
    def test_missing_audio(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc:
            main([str(tmp_path / "missing.wav")])
        assert exc.value.code == 1
        assert "not found" in capsys.readouterr().err

    def test_bad_config(self, tmp_path, temp_audio_file, capsys):
        cfg = tmp_path / "bad.json"
        cfg.write_text('{"params": {"trail_length": -1}}')
        with pytest.raises(SystemExit) as exc:
            main([str(temp_audio_file), "--config", str(cfg)])
        assert exc.value.code == 2
        assert "trail_length" in capsys.readouterr().err

    def test_renders_through_encoder(self, tmp_path, temp_audio_file, monkeypatch):
        seen = {}

        def fake_encode(frames, output_path, width, height, fps, audio_path, quality, duration):
            seen["frames"] = [f.copy() for f in frames]
            seen["size"] = (width, height, fps, quality, duration)
            output_path.write_bytes(b"mp4")
            return output_path

        monkeypatch.setattr(cli, "encode_video", fake_encode)
        out = tmp_path / "out.mp4"
        main([
            str(temp_audio_file), "-o", str(out), "--width", "32", "--height", "24",
            "-f", "10", "--max-duration", "0.5", "--seed", "1", "--png", str(tmp_path),
        ])
        assert seen["size"] == (32, 24, 10, "medium", 0.5)
        assert len(seen["frames"]) == 5
        assert seen["frames"][0].shape == (24, 32, 3)
        assert (tmp_path / "fluid.png").exists()


def test_render_frames_one_per_spectrum(loud_spectrum):
    eng = FluidEngine(SurfaceDescriptor(32, 24), from_preset("global"), seed=2)
    spectra = [(loud_spectrum, 44100)] * 3
    progress = []
    frames = list(render_frames(eng, spectra, 3, lambda cur, tot: progress.append(cur)))
    assert len(frames) == 3
    assert all(f.shape == (24, 32, 3) and f.dtype == np.uint8 for f in frames)
    assert progress == [1, 2, 3]
    eng.dispose()
