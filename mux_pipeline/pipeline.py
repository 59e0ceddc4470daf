from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, List, Mapping, Optional

from .alignment import Comparator, detect_delays, propagate_delays
from .backends import FFMPEG, MKVMERGE, select_backends
from .commands import Command, build_ffmpeg_command, build_mkvmerge_command, is_mp4_family
from .config import CleanupPolicy, MergeJob, normalize_job
from .processing import (
    Extractor,
    FrameComparator,
    Prober,
    extract_frames,
    probe_video,
    remove_workspace,
    sample_tracks,
)

logger = logging.getLogger(__name__)

Runner = Callable[[List[str]], "subprocess.CompletedProcess[str]"]

# mkvmerge exits with 1 when it finished but emitted warnings
MKVMERGE_WARNING_CODE = 1


class MuxingError(RuntimeError):
    def __init__(self, kind: str, returncode: int, stdout: str = "", stderr: str = ""):
        super().__init__(
            f"[{kind}] Merging failed with exit code {returncode}:\n"
            f"STDOUT:\n{stdout}\nSTDERR:\n{stderr}"
        )
        self.kind = kind
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


@dataclass(frozen=True)
class MergeResult:
    backend: Optional[str]
    ok: bool
    warnings: bool = False


def run_command(argv: List[str]) -> "subprocess.CompletedProcess[str]":
    return subprocess.run(argv, capture_output=True, text=True)


class MergePipeline:
    def __init__(
        self,
        job: MergeJob,
        comparator: Optional[Comparator] = None,
        runner: Runner = run_command,
        prober: Prober = probe_video,
        extractor: Extractor = extract_frames,
        max_workers: Optional[int] = None,
    ):
        self.job = normalize_job(job)
        self.comparator = comparator or FrameComparator()
        self.runner = runner
        self.prober = prober
        self.extractor = extractor
        self.max_workers = max_workers

    def create_delays(self) -> MergeJob:
        """Detect per-track frame delays and carry them onto paired subtitles."""
        if len(self.job.video_and_audio) <= 1:
            return self.job

        sampled = sample_tracks(
            self.job.video_and_audio,
            workspace=self.job.workspace,
            prober=self.prober,
            extractor=self.extractor,
            max_workers=self.max_workers,
        )
        try:
            tracks = detect_delays(sampled, self.comparator, max_workers=self.max_workers)
        finally:
            for item in sampled:
                remove_workspace(item.directory)
            clear = getattr(self.comparator, "clear", None)
            if clear is not None:
                clear()

        # the base track keeps its video unless the job named another source
        if not any(track.is_video_source for track in tracks):
            tracks = (replace(tracks[0], is_video_source=True),) + tuple(tracks[1:])

        self.job = replace(
            self.job,
            video_and_audio=tracks,
            subtitles=propagate_delays(tracks, self.job.subtitles),
        )
        return self.job

    def build_command(self, kind: str) -> Command:
        if kind == FFMPEG:
            return build_ffmpeg_command(self.job)
        if kind == MKVMERGE:
            return build_mkvmerge_command(self.job)
        raise ValueError(f"Unknown muxer {kind!r}")

    def merge(self, kind: str, binary: str) -> MergeResult:
        command = self.build_command(kind)
        logger.info("[%s] Started merging", kind)
        logger.debug("[%s] %s", kind, command.render(binary))

        result = self.runner(command.argv(binary))
        if result.returncode == 0:
            logger.info("[%s] Done", kind)
            return MergeResult(backend=kind, ok=True)
        if kind == MKVMERGE and result.returncode == MKVMERGE_WARNING_CODE:
            logger.info("[%s] Mkvmerge finished with at least one warning", kind)
            return MergeResult(backend=kind, ok=True, warnings=True)

        logger.error("[%s] Merging failed with exit code %s", kind, result.returncode)
        raise MuxingError(kind, result.returncode, result.stdout or "", result.stderr or "")

    def clean_up(self) -> None:
        """Delete every source media and subtitle file of the job."""
        for path in self.job.source_paths:
            Path(path).unlink(missing_ok=True)
            logger.debug("Removed %s", path)

    def run(self, binaries: Mapping[str, Optional[str]], force: Optional[str] = None) -> MergeResult:
        result = MergeResult(backend=None, ok=False)
        try:
            selection = select_backends(binaries, is_mp4_family(self.job.output), force)
            kind = selection.primary
            if kind is None:
                logger.warning("Unable to merge files.")
                return result
            self.create_delays()
            result = self.merge(kind, selection.binary(kind))
            return result
        finally:
            if self._should_clean_up(result):
                self.clean_up()

    def _should_clean_up(self, result: MergeResult) -> bool:
        policy = self.job.cleanup
        if policy is CleanupPolicy.ALWAYS:
            return True
        if policy is CleanupPolicy.ON_SUCCESS:
            return result.ok
        return False
