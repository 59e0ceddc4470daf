from __future__ import annotations

import logging
import math
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .config import LanguageItem, MediaTrack, MergeJob, SubtitleTrack

logger = logging.getLogger(__name__)

MP4_FAMILY = {".mp4", ".m4v", ".mov"}


@dataclass
class Command:
    """Ordered argument tokens for one backend invocation."""

    tokens: List[str] = field(default_factory=list)

    def add(self, *tokens: str) -> "Command":
        self.tokens.extend(tokens)
        return self

    def extend(self, other: "Command") -> "Command":
        self.tokens.extend(other.tokens)
        return self

    def argv(self, binary: str) -> List[str]:
        return [binary, *self.tokens]

    def render(self, binary: Optional[str] = None) -> str:
        tokens = self.argv(binary) if binary else self.tokens
        return shlex.join(tokens)


def delay_to_ms(delay: int, frame_rate: float) -> int:
    """Convert a frame delay into whole milliseconds, rounding up.

    The quotient is snapped to six decimals before the ceiling so that float
    noise just above a whole millisecond cannot add one; real fractions of a
    millisecond still round up.
    """
    return math.ceil(round(delay * 1000 / frame_rate, 6))


def is_mp4_family(output: Path) -> bool:
    return Path(output).suffix.lower() in MP4_FAMILY


def subtitle_title(sub: SubtitleTrack, cc_tag: str) -> str:
    title = sub.language.label
    if sub.closed_caption:
        title += f" {cc_tag}"
    return title


def _seek(cmd: Command, delay: int, frame_rate: Optional[float], what: str) -> None:
    if not frame_rate:
        logger.error("Missing framerate for %s", what)
        return
    cmd.add("-ss", f"{delay_to_ms(delay, frame_rate)}ms")


def _video_source(job: MergeJob) -> Optional[MediaTrack]:
    for vid in job.video_and_audio:
        if vid.is_video_source:
            return vid
    return None


def _keeps_video(job: MergeJob, vid: MediaTrack, has_video: bool) -> bool:
    """Whether the video stream of a combined track goes into the output.

    A track flagged ``is_video_source`` supplies the video; without a flag
    the first combined track does.
    """
    if job.keep_all_videos:
        return True
    source = _video_source(job)
    if source is None:
        return not has_video
    return vid is source


def _video_title(cmd: Command, job: MergeJob, video_index: int) -> None:
    if job.video_title:
        cmd.add(f"-metadata:s:v:{video_index}", f"title={job.video_title}")


def build_ffmpeg_command(job: MergeJob) -> Command:
    inputs = Command()
    metadata = Command()

    index = 0
    audio_index = 0
    video_index = 0
    has_video = False

    for vid in job.video_and_audio:
        # the first input is the sync base and is never seeked
        if vid.delay and index:
            _seek(inputs, vid.delay, vid.frame_rate, f"video {vid.lang.code}")
        inputs.add("-i", str(vid.path))
        if _keeps_video(job, vid, has_video):
            metadata.add("-map", f"{index}:a", "-map", f"{index}:v")
            metadata.add(f"-metadata:s:a:{audio_index}", f"language={vid.lang.code}")
            _video_title(metadata, job, video_index)
            video_index += 1
            has_video = True
        else:
            metadata.add("-map", f"{index}:a")
            metadata.add(f"-metadata:s:a:{audio_index}", f"language={vid.lang.code}")
        audio_index += 1
        index += 1

    for vid in job.only_vid:
        if has_video and not job.keep_all_videos:
            continue
        inputs.add("-i", str(vid.path))
        metadata.add("-map", str(index), "-map", f"-{index}:a")
        _video_title(metadata, job, video_index)
        video_index += 1
        has_video = True
        index += 1

    for aud in job.only_audio:
        inputs.add("-i", str(aud.path))
        metadata.add("-map", str(index))
        metadata.add(f"-metadata:s:a:{audio_index}", f"language={aud.lang.code}")
        index += 1
        audio_index += 1

    for sub in job.subtitles:
        if sub.delay:
            _seek(inputs, sub.delay, sub.frame_rate, f"subtitle {sub.file}")
        inputs.add("-i", str(sub.file))

    mp4 = is_mp4_family(job.output)

    cmd = Command().extend(inputs)
    if not mp4:
        for font_index, font in enumerate(job.fonts):
            cmd.add("-attach", str(font.path), f"-metadata:s:t:{font_index}", f"mimetype={font.mime}")
    cmd.extend(metadata)
    for sub_index, _ in enumerate(job.subtitles):
        cmd.add("-map", str(index + sub_index))
    cmd.add("-c:v", "copy", "-c:a", "copy", "-c:s", "mov_text" if mp4 else "ass")
    for sub_index, sub in enumerate(job.subtitles):
        cmd.add(f"-metadata:s:s:{sub_index}", f"title={subtitle_title(sub, job.cc_tag)}")
        cmd.add(f"-metadata:s:s:{sub_index}", f"language={sub.language.code}")
    cmd.add(*job.options.ffmpeg)
    cmd.add(str(job.output))
    return cmd


def _default_track(cmd: Command, track_id: str, lang: LanguageItem, default: LanguageItem) -> None:
    if default.code == lang.code:
        cmd.add("--default-track-flag", track_id)
    else:
        cmd.add("--default-track-flag", f"{track_id}:0")


def _video_track_name(job: MergeJob, vid: MediaTrack) -> str:
    return (job.video_title or vid.lang.name) + (" [Simulcast]" if job.simul else " [Uncut]")


def build_mkvmerge_command(job: MergeJob) -> Command:
    cmd = Command()
    cmd.add("-o", str(job.output))
    cmd.add(*job.options.mkvmerge)

    has_video = False

    for vid in job.only_vid:
        if has_video and not job.keep_all_videos:
            continue
        cmd.add("--video-tracks", "0", "--no-audio")
        cmd.add("--track-name", f"0:{_video_track_name(job, vid)}")
        cmd.add("--language", f"0:{vid.lang.code}")
        has_video = True
        cmd.add(str(vid.path))

    # some sources store audio before video
    audio_tid = "0" if job.inverse_track_order else "1"
    video_tid = "1" if job.inverse_track_order else "0"

    for vid in job.video_and_audio:
        if vid.delay:
            if vid.frame_rate:
                cmd.add("--sync", f"{audio_tid}:-{delay_to_ms(vid.delay, vid.frame_rate)}")
            else:
                logger.error("Unable to find framerate for stream %s", vid.lang.code)
        if _keeps_video(job, vid, has_video):
            cmd.add("--video-tracks", video_tid, "--audio-tracks", audio_tid)
            cmd.add("--track-name", f"{video_tid}:{_video_track_name(job, vid)}")
            cmd.add("--language", f"{audio_tid}:{vid.lang.code}")
            _default_track(cmd, audio_tid, vid.lang, job.defaults.audio)
            has_video = True
        else:
            cmd.add("--no-video", "--audio-tracks", audio_tid)
            _default_track(cmd, audio_tid, vid.lang, job.defaults.audio)
            cmd.add("--track-name", f"{audio_tid}:{vid.lang.name}")
            cmd.add("--language", f"{audio_tid}:{vid.lang.code}")
        cmd.add(str(vid.path))

    for aud in job.only_audio:
        cmd.add("--track-name", f"0:{aud.lang.name}")
        cmd.add("--language", f"0:{aud.lang.code}")
        cmd.add("--no-video", "--audio-tracks", "0")
        _default_track(cmd, "0", aud.lang, job.defaults.audio)
        cmd.add(str(aud.path))

    if job.subtitles:
        for sub in job.subtitles:
            if sub.delay:
                if sub.frame_rate:
                    cmd.add("--sync", f"0:-{delay_to_ms(sub.delay, sub.frame_rate)}")
                else:
                    logger.error("Missing framerate for subtitle %s", sub.file)
            cmd.add("--track-name", f"0:{subtitle_title(sub, job.cc_tag)}")
            cmd.add("--language", f"0:{sub.language.code}")
            if sub.closed_caption:
                cmd.add("--default-track-flag", "0:0")
            else:
                _default_track(cmd, "0", sub.language, job.defaults.sub)
            cmd.add(str(sub.file))
    else:
        cmd.add("--no-subtitles")

    if job.fonts:
        for font in job.fonts:
            cmd.add("--attachment-name", font.name)
            cmd.add("--attachment-mime-type", font.mime)
            cmd.add("--attach-file", str(font.path))
    else:
        cmd.add("--no-attachments")

    return cmd
