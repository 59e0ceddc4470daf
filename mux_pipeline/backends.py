from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)

FFMPEG = "ffmpeg"
MKVMERGE = "mkvmerge"
BACKENDS = (FFMPEG, MKVMERGE)


@dataclass(frozen=True)
class BackendSelection:
    ffmpeg: Optional[str] = None
    mkvmerge: Optional[str] = None

    @property
    def primary(self) -> Optional[str]:
        """Backend that builds the final container; ffmpeg alone may only assist mkvmerge."""
        if self.mkvmerge:
            return MKVMERGE
        if self.ffmpeg:
            return FFMPEG
        return None

    def binary(self, kind: str) -> Optional[str]:
        return self.mkvmerge if kind == MKVMERGE else self.ffmpeg


def find_binaries(ffmpeg: Optional[str] = None, mkvmerge: Optional[str] = None) -> Dict[str, Optional[str]]:
    """Locate the backend binaries; explicit paths win over PATH lookup."""
    return {
        FFMPEG: ffmpeg or shutil.which(FFMPEG),
        MKVMERGE: mkvmerge or shutil.which(MKVMERGE),
    }


def select_backends(
    binaries: Mapping[str, Optional[str]],
    use_mp4: bool,
    force: Optional[str] = None,
) -> BackendSelection:
    if force is not None and force not in BACKENDS:
        raise ValueError(f"Unknown muxer {force!r}, expected one of {', '.join(BACKENDS)}")

    ffmpeg = binaries.get(FFMPEG)
    mkvmerge = binaries.get(MKVMERGE)

    if force and binaries.get(force):
        return BackendSelection(
            ffmpeg=ffmpeg if force == FFMPEG else None,
            mkvmerge=mkvmerge if force == MKVMERGE else None,
        )
    if use_mp4 and ffmpeg:
        return BackendSelection(ffmpeg=ffmpeg)
    if not use_mp4 and (mkvmerge or ffmpeg):
        return BackendSelection(ffmpeg=ffmpeg, mkvmerge=mkvmerge)

    if use_mp4:
        logger.warning("FFmpeg not found, skip muxing...")
    else:
        logger.warning("MKVMerge not found, skip muxing...")
    return BackendSelection()
