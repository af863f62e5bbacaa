"""
CLI entry point: render an audio file through the fluid engine to MP4.

Usage:
    chromaflow <audio_file> [options]
"""

import argparse
import sys
import time
from pathlib import Path
from typing import Callable, Iterable, Iterator, Tuple

import numpy as np

from chromaflow.audio.spectrum import SpectrumAnalyser, load
from chromaflow.config import PRESETS, RENDER_MODES, from_preset, load_config
from chromaflow.encoder import encode_video
from chromaflow.engine import FluidEngine, SurfaceDescriptor
from chromaflow.errors import EngineError
from chromaflow.render.colorgrade import shift_frame

PROFILES = {
    "low": {"width": 640, "height": 360, "fps": 30, "quality": "fast"},
    "medium": {"width": 1280, "height": 720, "fps": 30, "quality": "medium"},
    "high": {"width": 1920, "height": 1080, "fps": 60, "quality": "high"},
}


def _progress_bar(current: int, total: int, width: int = 35):
    """Print a progress bar to stdout."""
    pct = current / max(total, 1) * 100
    filled = int(width * current / max(total, 1))
    bar = "#" * filled + "-" * (width - filled)
    if sys.stdout.isatty():
        sys.stdout.write(f"\r[{bar}] {pct:5.1f}%  frame {current}/{total}")
        sys.stdout.flush()
        if current >= total:
            sys.stdout.write("\n")
    else:
        if current % max(1, total // 20) == 0 or current >= total:
            print(f"{pct:5.1f}%  frame {current}/{total}", flush=True)


def render_frames(
    engine: FluidEngine,
    spectra: Iterable[Tuple[np.ndarray, int]],
    total_frames: int | None = None,
    progress_callback: Callable[[int, int], None] | None = None,
) -> Iterator[np.ndarray]:
    """
    Feed one spectrum per frame and yield the rendered frames.

    Skipped frames repeat the previous color buffer so the video keeps sync
    with the audio. Canvas shake is applied to the yielded frame.
    """
    for i, (magnitudes, sr) in enumerate(spectra):
        engine.feed_audio_spectrum(magnitudes, sr)
        engine.step()
        yield shift_frame(engine.color_buffer, engine.shake)
        if progress_callback and total_frames:
            progress_callback(i + 1, total_frames)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chromaflow",
        description="Audio-reactive fluid simulation video renderer",
    )
    parser.add_argument("audio", type=Path, help="Input audio file (wav, mp3, flac)")
    parser.add_argument(
        "-o", "--output", type=Path, default=None,
        help="Output MP4 path (default: <audio>_fluid.mp4)",
    )

    parser.add_argument(
        "--preset", type=str, default="regions", choices=sorted(PRESETS),
        help="Forcing preset (default: regions)",
    )
    parser.add_argument(
        "--config", type=Path, default=None,
        help="JSON config file (preset name plus overrides); replaces --preset",
    )

    # Resolution & Profile
    parser.add_argument(
        "-p", "--profile", type=str, default="medium", choices=list(PROFILES),
        help="Target profile (low: 360p 30fps, medium: 720p 30fps, high: 1080p 60fps)",
    )
    parser.add_argument("--width", type=int, default=None, help="Video width (overrides profile)")
    parser.add_argument("--height", type=int, default=None, help="Video height (overrides profile)")
    parser.add_argument("-f", "--fps", type=int, default=None, help="Frames per second (overrides profile)")

    # Visual
    parser.add_argument(
        "--render", type=str, default=None, choices=list(RENDER_MODES),
        help="What to draw (default: from preset, Fluid)",
    )
    parser.add_argument("--trail-length", type=float, default=None, help="Trail length in frames")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for particles and forcing")

    # Limits
    parser.add_argument("--max-duration", type=float, default=None, help="Limit output to N seconds")

    # Quality
    parser.add_argument(
        "-q", "--quality", type=str, default=None, choices=["high", "medium", "fast"],
        help="Encoding quality (defaults to profile quality)",
    )
    parser.add_argument(
        "--png", type=Path, default=None,
        help="Also save the last frame as PNG",
    )
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.audio.exists():
        print(f"Error: Audio file not found: {args.audio}", file=sys.stderr)
        sys.exit(1)

    p_cfg = PROFILES[args.profile]
    width = args.width or p_cfg["width"]
    height = args.height or p_cfg["height"]
    fps = args.fps or p_cfg["fps"]
    quality = args.quality or p_cfg["quality"]

    output = args.output
    if output is None:
        output = args.audio.with_name(f"{args.audio.stem}_fluid.mp4")

    try:
        config = load_config(args.config) if args.config else from_preset(args.preset)
        engine = FluidEngine(SurfaceDescriptor(width, height), config, seed=args.seed)
        if args.render:
            engine.set_parameter("render_mode", args.render)
        if args.trail_length is not None:
            engine.set_parameter("trail_length", args.trail_length)
    except (EngineError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    # Step 1: Audio
    print(f"Loading audio: {args.audio}")
    t0 = time.time()
    y, sr = load(args.audio)
    duration = len(y) / sr
    if args.max_duration is not None:
        duration = min(duration, args.max_duration)
    total_frames = int(np.ceil(duration * fps))
    print(f"  Duration: {duration:.1f}s")
    print(f"  Sample rate: {sr} Hz")
    print(f"  Frames: {total_frames}")
    print(f"  Loading took {time.time() - t0:.1f}s")

    # Step 2: Render + encode
    print(f"\nRendering {total_frames} frames at {width}x{height} @ {fps}fps ({engine.particles.count} particles)")
    analyser = SpectrumAnalyser()
    spectra = analyser.frames_from_signal(y, sr, fps, args.max_duration)
    frames = render_frames(engine, spectra, total_frames, progress_callback=_progress_bar)

    t1 = time.time()
    encode_video(
        frames,
        output_path=output,
        width=width,
        height=height,
        fps=fps,
        audio_path=args.audio,
        quality=quality,
        duration=duration,
    )

    if args.png is not None:
        png = engine.save_png(args.png)
        print(f"  Last frame: {png}")
    engine.dispose()

    elapsed = time.time() - t1
    file_size_mb = output.stat().st_size / 1024 / 1024
    print(f"\nDone! {file_size_mb:.1f} MB")
    print(f"  Render+encode took {elapsed:.1f}s ({total_frames / max(elapsed, 0.01):.1f} fps)")
    print(f"  Output: {output}")


if __name__ == "__main__":
    main()
