from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

# Frames must match this many times in a row before an offset is accepted.
SECURITY_FRAMES = 30
# Seconds of each video sampled for alignment; bounds the largest detectable offset.
MAX_OFFSET_SEC = 15


@dataclass(frozen=True)
class LanguageItem:
    code: str
    name: str
    language: Optional[str] = None
    locale: Optional[str] = None

    @property
    def label(self) -> str:
        return self.language or self.name


@dataclass(frozen=True)
class MediaTrack:
    path: Path
    lang: LanguageItem
    duration: Optional[float] = None
    delay: Optional[int] = None
    is_primary: bool = False
    frame_rate: Optional[float] = None
    is_video_source: bool = False


@dataclass(frozen=True)
class SubtitleTrack:
    language: LanguageItem
    file: Path
    closed_caption: bool = False
    delay: Optional[int] = None
    frame_rate: Optional[float] = None
    fonts: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Font:
    name: str
    path: Path
    mime: str


@dataclass(frozen=True)
class MuxerOptions:
    ffmpeg: Tuple[str, ...] = ()
    mkvmerge: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DefaultLanguages:
    audio: LanguageItem
    sub: LanguageItem


class CleanupPolicy(enum.Enum):
    """When source files are deleted after a merge attempt."""

    ALWAYS = "always"
    ON_SUCCESS = "on_success"
    NEVER = "never"


@dataclass(frozen=True)
class MergeJob:
    output: Path
    defaults: DefaultLanguages
    video_and_audio: Tuple[MediaTrack, ...] = ()
    only_vid: Tuple[MediaTrack, ...] = ()
    only_audio: Tuple[MediaTrack, ...] = ()
    subtitles: Tuple[SubtitleTrack, ...] = ()
    fonts: Tuple[Font, ...] = ()
    cc_tag: str = "CC"
    video_title: Optional[str] = None
    simul: bool = False
    inverse_track_order: bool = False
    keep_all_videos: bool = False
    skip_sub_mux: bool = False
    options: MuxerOptions = field(default_factory=MuxerOptions)
    cleanup: CleanupPolicy = CleanupPolicy.ALWAYS
    workspace: Optional[Path] = None

    @property
    def source_paths(self) -> Tuple[Path, ...]:
        media = self.only_audio + self.only_vid + self.video_and_audio
        return tuple(t.path for t in media) + tuple(s.file for s in self.subtitles)


def normalize_job(job: MergeJob) -> MergeJob:
    """Return the job with container switches applied; nothing mutates it afterwards."""
    changes: Dict[str, Any] = {}
    if job.skip_sub_mux and job.subtitles:
        changes["subtitles"] = ()
    if job.video_title:
        changes["video_title"] = job.video_title.replace('"', "'")
    return replace(job, **changes) if changes else job


def _language(data: Mapping[str, Any]) -> LanguageItem:
    return LanguageItem(
        code=data["code"],
        name=data.get("name", data["code"]),
        language=data.get("language"),
        locale=data.get("locale"),
    )


def _media(data: Mapping[str, Any]) -> MediaTrack:
    return MediaTrack(
        path=Path(data["path"]),
        lang=_language(data["lang"]),
        is_primary=bool(data.get("is_primary", False)),
        is_video_source=bool(data.get("is_video_source", False)),
    )


def _subtitle(data: Mapping[str, Any]) -> SubtitleTrack:
    return SubtitleTrack(
        language=_language(data["language"]),
        file=Path(data["file"]),
        closed_caption=bool(data.get("closed_caption", False)),
        fonts=tuple(data.get("fonts", ())),
    )


def load_job(path: Path) -> MergeJob:
    """Read a JSON job description and return the normalized job."""
    from .fonts import make_fonts_list

    data = json.loads(Path(path).read_text(encoding="utf-8"))
    subtitles = tuple(_subtitle(s) for s in data.get("subtitles", []))

    if "fonts" in data:
        fonts = tuple(
            Font(name=f["name"], path=Path(f["path"]), mime=f["mime"]) for f in data["fonts"]
        )
    elif "fonts_dir" in data:
        fonts = tuple(
            make_fonts_list(Path(data["fonts_dir"]), subtitles, data.get("font_families", {}))
        )
    else:
        fonts = ()

    options = data.get("options", {})
    defaults = data["defaults"]
    workspace = data.get("workspace")

    job = MergeJob(
        output=Path(data["output"]),
        defaults=DefaultLanguages(
            audio=_language(defaults["audio"]), sub=_language(defaults["sub"])
        ),
        video_and_audio=tuple(_media(t) for t in data.get("video_and_audio", [])),
        only_vid=tuple(_media(t) for t in data.get("only_vid", [])),
        only_audio=tuple(_media(t) for t in data.get("only_audio", [])),
        subtitles=subtitles,
        fonts=fonts,
        cc_tag=data.get("cc_tag", "CC"),
        video_title=data.get("video_title"),
        simul=bool(data.get("simul", False)),
        inverse_track_order=bool(data.get("inverse_track_order", False)),
        keep_all_videos=bool(data.get("keep_all_videos", False)),
        skip_sub_mux=bool(data.get("skip_sub_mux", False)),
        options=MuxerOptions(
            ffmpeg=tuple(options.get("ffmpeg", ())),
            mkvmerge=tuple(options.get("mkvmerge", ())),
        ),
        cleanup=CleanupPolicy(data.get("cleanup", CleanupPolicy.ALWAYS.value)),
        workspace=Path(workspace) if workspace else None,
    )
    return normalize_job(job)
