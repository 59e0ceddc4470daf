from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Mapping, Sequence

from .config import Font, SubtitleTrack

logger = logging.getLogger(__name__)


def font_mime(font_file: str) -> str:
    suffix = Path(font_file).suffix.lower()
    if suffix == ".otf":
        return "application/vnd.ms-opentype"
    if suffix == ".ttf":
        return "application/x-truetype-font"
    return "application/octet-stream"


def make_fonts_list(
    fonts_dir: Path,
    subs: Iterable[SubtitleTrack],
    families: Mapping[str, Sequence[str]],
) -> List[Font]:
    """Resolve the font families the subtitles ask for into attachable files.

    ``families`` maps a family name to its file names inside ``fonts_dir``.
    Files that are missing or empty are left out.
    """
    names: List[str] = []
    locales: List[str] = []
    for sub in subs:
        names.extend(sub.fonts)
        locales.append(sub.language.locale or sub.language.code)
    # de-duplicate, keep request order
    names = list(dict.fromkeys(names))

    if locales:
        logger.info("Subtitles: %s (Total: %s)", ", ".join(locales), len(locales))
    if names:
        logger.info("Required fonts: %s (Total: %s)", ", ".join(names), len(names))

    fonts: List[Font] = []
    for name in names:
        for font_file in families.get(name, ()):
            font_path = Path(fonts_dir) / font_file
            if font_path.is_file() and font_path.stat().st_size != 0:
                fonts.append(Font(name=font_file, path=font_path, mime=font_mime(font_file)))
            else:
                logger.debug("Font file %s not available, skipping", font_path)
    return fonts
