from __future__ import annotations

import json
import logging
import shutil
import subprocess
import tempfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from fractions import Fraction
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .config import MAX_OFFSET_SEC, MediaTrack

logger = logging.getLogger(__name__)

Prober = Callable[[Path], Tuple[Optional[float], Optional[float]]]
Extractor = Callable[[Path, Path], None]


class MissingVideoStreamError(RuntimeError):
    def __init__(self, path: Path):
        super().__init__(f"No video stream found in {path}")
        self.path = path


@dataclass(frozen=True)
class SampledTrack:
    track: MediaTrack
    directory: Path
    frames: Tuple[Path, ...]


def parse_frame_rate(value: Optional[str]) -> Optional[float]:
    """Evaluate an ffprobe rational such as ``24000/1001``."""
    if not value:
        return None
    try:
        rate = Fraction(value)
    except (ValueError, ZeroDivisionError):
        return None
    if rate <= 0:
        return None
    return float(rate)


def _as_float(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def probe_video(path: Path) -> Tuple[Optional[float], Optional[float]]:
    """Return ``(duration, frame_rate)`` of the first video stream of ``path``."""
    cmd = [
        "ffprobe",
        "-v", "error",
        "-show_streams",
        "-show_format",
        "-of", "json",
        str(path),
    ]
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed for {path}: {result.stderr}")
    data = json.loads(result.stdout)

    videos = [s for s in data.get("streams", []) if s.get("codec_type") == "video"]
    if not videos:
        raise MissingVideoStreamError(path)
    video = videos[0]

    # Matroska keeps the duration on the container, not the stream
    duration = _as_float(video.get("duration"))
    if duration is None:
        duration = _as_float(data.get("format", {}).get("duration"))
    return duration, parse_frame_rate(video.get("avg_frame_rate"))


def extract_frames(path: Path, directory: Path, limit: float = MAX_OFFSET_SEC) -> None:
    """Write the first ``limit`` seconds of ``path`` as 001.png, 002.png, ..."""
    cmd = [
        "ffmpeg",
        "-y",
        "-v", "error",
        "-i", str(path),
        "-t", str(limit),
        str(directory / "%03d.png"),
    ]
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise RuntimeError(
            f"ffmpeg failed to extract frames from {path}:\n"
            f"STDOUT:\n{result.stdout}\nSTDERR:\n{result.stderr}"
        )


def _load_gray(path: str) -> np.ndarray:
    image = cv2.imread(path, cv2.IMREAD_GRAYSCALE)
    if image is None:
        raise RuntimeError(f"Unable to read frame image {path}")
    return image


@dataclass(frozen=True)
class FrameComparator:
    """Decides whether two frame images show the same picture.

    Pixels may differ by up to ``pixel_tolerance`` grey levels to absorb
    encoding noise; at most ``max_diff_ratio`` of the pixels may exceed it.

    The first argument is the reference frame, which is compared against
    every candidate; decoded reference frames are kept until ``clear``.
    """

    pixel_tolerance: int = 8
    max_diff_ratio: float = 0.001
    cache: Dict[str, np.ndarray] = field(default_factory=dict, repr=False, compare=False)

    def __call__(self, first: Path, second: Path) -> bool:
        key = str(first)
        a = self.cache.get(key)
        if a is None:
            a = self.cache.setdefault(key, _load_gray(key))
        b = _load_gray(str(second))
        if a.shape != b.shape:
            b = cv2.resize(b, (a.shape[1], a.shape[0]), interpolation=cv2.INTER_AREA)
        diff = cv2.absdiff(a, b)
        over = np.count_nonzero(diff > self.pixel_tolerance)
        return over / diff.size <= self.max_diff_ratio

    def clear(self) -> None:
        self.cache.clear()


def list_frames(directory: Path) -> Tuple[Path, ...]:
    # %03d widens to four digits past frame 999
    return tuple(sorted(directory.glob("*.png"), key=lambda p: int(p.stem)))


def sample_track(
    track: MediaTrack,
    workspace: Optional[Path] = None,
    prober: Prober = probe_video,
    extractor: Extractor = extract_frames,
) -> SampledTrack:
    duration, frame_rate = prober(track.path)
    directory = Path(tempfile.mkdtemp(prefix=f"temp-{track.lang.code}-", dir=workspace))
    try:
        extractor(track.path, directory)
    except Exception:
        remove_workspace(directory)
        raise
    frames = list_frames(directory)
    logger.debug("Sampled %d frames from %s into %s", len(frames), track.path, directory)
    return SampledTrack(
        track=replace(track, duration=duration, frame_rate=frame_rate),
        directory=directory,
        frames=frames,
    )


def sample_tracks(
    tracks: Sequence[MediaTrack],
    workspace: Optional[Path] = None,
    prober: Prober = probe_video,
    extractor: Extractor = extract_frames,
    max_workers: Optional[int] = None,
) -> List[SampledTrack]:
    """Sample every track concurrently; results keep the input order."""
    if workspace is not None:
        workspace.mkdir(parents=True, exist_ok=True)
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [
            executor.submit(sample_track, track, workspace, prober, extractor)
            for track in tracks
        ]
        sampled: List[SampledTrack] = []
        errors: List[BaseException] = []
        for future in futures:
            try:
                sampled.append(future.result())
            except Exception as exc:
                errors.append(exc)
    if errors:
        for item in sampled:
            remove_workspace(item.directory)
        raise errors[0]
    return sampled


def remove_workspace(directory: Path) -> None:
    try:
        shutil.rmtree(directory)
    except FileNotFoundError:
        pass
