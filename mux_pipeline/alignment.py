from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

from tqdm import tqdm

from .config import MAX_OFFSET_SEC, SECURITY_FRAMES, MediaTrack, SubtitleTrack
from .processing import SampledTrack

logger = logging.getLogger(__name__)

Comparator = Callable[[Path, Path], bool]
BatchMap = Callable[..., Iterator[bool]]


def sort_by_duration(sampled: Iterable[SampledTrack]) -> List[SampledTrack]:
    """Shortest first; tracks with an unknown duration go last, in input order."""
    return sorted(
        sampled,
        key=lambda s: (s.track.duration is None, s.track.duration or 0.0),
    )


def find_delay(
    reference: Sequence[Path],
    candidate: Sequence[Path],
    compare: Comparator,
    window: int = SECURITY_FRAMES,
    batch_map: BatchMap = map,
) -> Optional[int]:
    """Return the frame offset of ``candidate`` against ``reference``.

    The first reference frame that matches a candidate frame and keeps
    matching for ``window`` consecutive frames (or until either sequence
    ends) decides the offset. A single coincidental match, e.g. two black
    frames, does not.
    """
    for r, ref_frame in enumerate(reference):
        for c in range(r, len(candidate)):
            if not compare(ref_frame, candidate[c]):
                continue
            run = min(window, len(reference) - r, len(candidate) - c)
            confirmed = all(
                batch_map(compare, reference[r + 1:r + run], candidate[c + 1:c + run])
            )
            if confirmed:
                return c - r
    return None


def detect_delays(
    sampled: Sequence[SampledTrack],
    compare: Comparator,
    window: int = SECURITY_FRAMES,
    max_workers: Optional[int] = None,
) -> Tuple[MediaTrack, ...]:
    """Assign a frame delay to every track relative to the shortest one.

    Returns the tracks in ascending duration order. Tracks for which no
    confirmed offset exists keep ``delay=None``.
    """
    ordered = sort_by_duration(sampled)
    if not ordered:
        return ()

    base = ordered[0]
    logger.info("Using %s as the base for syncing", base.track.lang.code)
    tracks = [base.track]

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        for item in tqdm(ordered[1:], desc="Syncing", unit="track"):
            logger.info("Trying to find delay for %s...", item.track.lang.code)
            if item.track.frame_rate:
                logger.debug(
                    "Offsets beyond %d frames are undetectable for %s",
                    max_detectable_offset(item.track.frame_rate, MAX_OFFSET_SEC),
                    item.track.lang.code,
                )
            delay = find_delay(
                base.frames,
                item.frames,
                compare,
                window=window,
                batch_map=executor.map,
            )
            if delay is None:
                logger.error("Unable to find delay for %s", item.track.lang.code)
                tracks.append(item.track)
                continue
            logger.info("Found %d frames delay for %s", delay, item.track.lang.code)
            tracks.append(replace(item.track, delay=delay))

    logger.info("Processed all files to find a delay.")
    return tuple(tracks)


def propagate_delays(
    tracks: Iterable[MediaTrack],
    subtitles: Sequence[SubtitleTrack],
) -> Tuple[SubtitleTrack, ...]:
    """Copy track delays onto the subtitles paired with them.

    Only subtitles of the primary track's language, and closed captions of
    any delayed track's language, inherit timing.
    """
    result = list(subtitles)
    for track in tracks:
        if track.delay is None:
            continue
        for index, sub in enumerate(result):
            if sub.language.code != track.lang.code:
                continue
            if track.is_primary or sub.closed_caption:
                result[index] = replace(sub, delay=track.delay, frame_rate=track.frame_rate)
    return tuple(result)


def max_detectable_offset(frame_rate: float, seconds: float) -> int:
    """Largest offset in frames that the sampled window can reveal."""
    return int(frame_rate * seconds)

