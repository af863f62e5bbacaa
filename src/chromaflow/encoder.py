"""
FFmpeg video encoder.

Pipes raw RGB frames to ffmpeg via stdin and optionally muxes the audio
that drove the simulation. Frames go straight from numpy arrays to the
encoder.
"""

import subprocess
import tempfile
from pathlib import Path
from typing import Iterable, List

# Quality presets: (preset, crf, pix_fmt)
QUALITY_PRESETS = {
    "high": ("slow", "18", "yuv444p"),
    "medium": ("medium", "23", "yuv420p"),
    "fast": ("ultrafast", "28", "yuv420p"),
}


def build_command(
    output_path: Path,
    width: int,
    height: int,
    fps: int,
    audio_path: Path | None = None,
    quality: str = "high",
    duration: float | None = None,
) -> List[str]:
    """ffmpeg argument list for a raw rgb24 pipe input."""
    preset, crf, pix_fmt = QUALITY_PRESETS.get(quality, QUALITY_PRESETS["high"])
    cmd = [
        "ffmpeg", "-y",
        "-nostats",
        "-loglevel", "error",
        "-f", "rawvideo",
        "-pix_fmt", "rgb24",
        "-s", f"{width}x{height}",
        "-r", str(fps),
        "-i", "pipe:0",
    ]
    if audio_path is not None:
        cmd += ["-i", str(audio_path)]
    cmd += [
        "-c:v", "libx264",
        "-preset", preset,
        "-crf", crf,
        "-pix_fmt", pix_fmt,
    ]
    if audio_path is not None:
        cmd += ["-c:a", "aac", "-b:a", "192k", "-shortest"]
    if duration is not None:
        cmd += ["-t", str(duration)]
    cmd.append(str(output_path))
    return cmd


def encode_video(
    frames: Iterable,
    output_path: Path,
    width: int,
    height: int,
    fps: int = 60,
    audio_path: Path | None = None,
    quality: str = "high",
    duration: float | None = None,
) -> Path:
    """
    Encode frames to MP4.

    Progress is reported by whatever produces ``frames``; ffmpeg's own
    log goes to a temporary file and is only read back on failure.

    Args:
        frames: Yields (H, W, 3) uint8 numpy arrays.
        output_path: Output MP4 path.
        audio_path: Optional audio file to mux in.
        quality: "high", "medium", or "fast".
        duration: Optional output duration limit in seconds.

    Returns:
        Path to the output file.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    cmd = build_command(output_path, width, height, fps, audio_path, quality, duration)

    with tempfile.TemporaryFile() as log:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.DEVNULL,
            stderr=log,
        )

        try:
            for frame in frames:
                proc.stdin.write(frame.tobytes())
        except BrokenPipeError:
            pass
        finally:
            if proc.stdin:
                proc.stdin.close()

        proc.wait()

        if proc.returncode != 0:
            log.seek(0)
            stderr = log.read().decode("utf-8", errors="replace")
            error_lines = [
                line for line in stderr.split("\n")
                if "error" in line.lower() or "invalid" in line.lower()
            ]
            error_msg = "\n".join(error_lines[-5:]) if error_lines else stderr[-500:]
            raise RuntimeError(f"ffmpeg exited with code {proc.returncode}: {error_msg}")

    return output_path
