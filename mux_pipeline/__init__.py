from .config import (
    CleanupPolicy,
    DefaultLanguages,
    Font,
    LanguageItem,
    MediaTrack,
    MergeJob,
    MuxerOptions,
    SubtitleTrack,
    load_job,
    normalize_job,
)
from .alignment import detect_delays, find_delay, propagate_delays
from .backends import BackendSelection, find_binaries, select_backends
from .commands import Command, build_ffmpeg_command, build_mkvmerge_command, delay_to_ms
from .fonts import make_fonts_list
from .pipeline import MergePipeline, MergeResult, MuxingError
from .processing import FrameComparator, MissingVideoStreamError

__all__ = [
    "CleanupPolicy",
    "DefaultLanguages",
    "Font",
    "LanguageItem",
    "MediaTrack",
    "MergeJob",
    "MuxerOptions",
    "SubtitleTrack",
    "load_job",
    "normalize_job",
    "detect_delays",
    "find_delay",
    "propagate_delays",
    "BackendSelection",
    "find_binaries",
    "select_backends",
    "Command",
    "build_ffmpeg_command",
    "build_mkvmerge_command",
    "delay_to_ms",
    "make_fonts_list",
    "MergePipeline",
    "MergeResult",
    "MuxingError",
    "FrameComparator",
    "MissingVideoStreamError",
]
