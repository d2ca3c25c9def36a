"""
Output writer: writes merged subtitle tracks as .vtt and .srt files.
"""

import re
import logging
from pathlib import Path

from subchunker.core.models import RunResult

logger = logging.getLogger(__name__)

# Characters forbidden in file names (macOS + Windows + safety)
_UNSAFE_FILENAME_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_MAX_STEM_LEN = 200


def sanitize_stem(name: str) -> str:
    """Make a string safe to use as a file name stem."""
    stem = _UNSAFE_FILENAME_RE.sub('_', name).strip().strip('.')
    stem = re.sub(r'\s+', ' ', stem)
    return stem[:_MAX_STEM_LEN] or "subtitles"


def output_paths(output_root: Path, stem: str, lang: str | None = None) -> tuple[Path, Path]:
    base = sanitize_stem(stem)
    if lang:
        base = f"{base}.{sanitize_stem(lang)}"
    return output_root / f"{base}.vtt", output_root / f"{base}.srt"


def write_result(result: RunResult, output_root: Path, stem: str,
                 lang: str | None = None) -> tuple[Path, Path]:
    """
    Write <output_root>/<stem>[.<lang>].vtt and .srt.
    Returns the two paths written.
    """
    output_root.mkdir(parents=True, exist_ok=True)
    vtt_path, srt_path = output_paths(output_root, stem, lang)
    vtt_path.write_text(result.vtt, encoding='utf-8')
    srt_path.write_text(result.srt, encoding='utf-8')

    logger.info("Wrote subtitles: %s, %s", vtt_path, srt_path)
    return vtt_path, srt_path
