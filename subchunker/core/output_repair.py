"""
Repairs and sanity checks for subtitle text returned by a model.
Every repair reports a warning; nothing here is applied to user input.
"""

import re
import logging

from subchunker.core.constants import (
    MAX_LINES_PER_CUE, LOOP_LINE_REPEATS, LOOP_TOKEN_REPEATS, LOOP_TRIGRAM_REPEATS,
)
from subchunker.core.models import Cue

logger = logging.getLogger(__name__)

_CODE_FENCE_RE = re.compile(r'^```(?:\w+)?\s*\n(.*?)\n?```$', re.DOTALL)
_DIGITS_RE = re.compile(r'\d+')


def _normalize_newlines(text: str) -> str:
    return text.replace('\r\n', '\n').replace('\r', '\n')


def strip_code_fence(text: str) -> tuple[str, list[str]]:
    m = _CODE_FENCE_RE.match(text.strip())
    if m:
        return m.group(1), ["Removed code block wrapper from output"]
    return text, []


def strip_duplicate_headers(text: str) -> tuple[str, list[str]]:
    """Keep only the first WEBVTT header line, adding one if none is present."""
    warnings = []
    kept = []
    header_seen = False
    for line in _normalize_newlines(text).split('\n'):
        if line.strip().upper().startswith('WEBVTT'):
            if header_seen:
                warnings.append("Removed duplicate WEBVTT header")
                continue
            header_seen = True
        kept.append(line)
    cleaned = '\n'.join(kept)
    if not header_seen:
        cleaned = "WEBVTT\n\n" + cleaned.lstrip('\n')
    return cleaned, warnings


def _normalize_timecode(segment: str) -> str | None:
    groups = _DIGITS_RE.findall(segment)
    if len(groups) < 3:
        return None
    ms = groups.pop()
    sec = groups.pop()
    minute = groups.pop()
    hour = groups.pop() if groups else "0"
    return f"{hour.zfill(2)}:{minute.zfill(2)}:{sec.zfill(2)}.{ms.ljust(3, '0')[:3]}"


def sanitize_timecodes(text: str) -> tuple[str, list[str]]:
    """Re-pad the numeric groups of timing lines into HH:MM:SS.mmm."""
    warnings = []
    cleaned = []
    for line in _normalize_newlines(text).split('\n'):
        if '-->' not in line:
            cleaned.append(line)
            continue
        raw_start, _, raw_end = line.partition('-->')
        start = _normalize_timecode(raw_start)
        end = _normalize_timecode(raw_end.split()[0] if raw_end.split() else "")
        if start and end:
            fixed = f"{start} --> {end}"
            if line.strip() != fixed:
                warnings.append("Sanitized malformed timecode line")
            cleaned.append(fixed)
        else:
            cleaned.append(line)
    return '\n'.join(cleaned), warnings


def ensure_blank_lines(text: str) -> tuple[str, list[str]]:
    """Insert a blank line before any timing line glued to the previous cue's text."""
    warnings = []
    lines = _normalize_newlines(text).split('\n')
    parts = []
    for idx, line in enumerate(lines):
        parts.append(line)
        next_line = lines[idx + 1] if idx + 1 < len(lines) else ""
        if '-->' not in line and line.strip() and '-->' in next_line:
            # a bare numeric line is a cue index, it belongs to the next block
            if line.strip().isdigit():
                if idx > 0 and lines[idx - 1].strip():
                    parts.insert(len(parts) - 1, "")
                    warnings.append("Inserted blank line between cues")
                continue
            parts.append("")
            warnings.append("Inserted blank line between cues")
    return '\n'.join(parts), warnings


def auto_repair(text: str) -> tuple[str, list[str]]:
    """
    Apply all repairs in order. Returns the repaired Format A text and the
    de-duplicated warnings, in the order they were first raised.
    """
    warnings = []
    for step in (strip_code_fence, strip_duplicate_headers, sanitize_timecodes, ensure_blank_lines):
        text, step_warnings = step(text)
        warnings.extend(step_warnings)
    if warnings:
        logger.debug("Auto-repaired model output: %s", ", ".join(dict.fromkeys(warnings)))
    return _normalize_newlines(text), list(dict.fromkeys(warnings))


def cue_warnings(cues: list[Cue]) -> list[str]:
    return [
        f"Cue {i + 1} has many lines; consider splitting later"
        for i, cue in enumerate(cues)
        if len(cue.text.split('\n')) > MAX_LINES_PER_CUE
    ]


def detect_looping(text: str,
                   line_threshold: int = LOOP_LINE_REPEATS,
                   token_threshold: int = LOOP_TOKEN_REPEATS,
                   trigram_threshold: int = LOOP_TRIGRAM_REPEATS) -> bool:
    """Heuristic for degenerate generations that repeat the same line or phrase."""
    lines = [
        line.strip() for line in text.split('\n')
        if line.strip() and '-->' not in line and not line.strip().upper().startswith('WEBVTT')
    ]
    if not lines:
        return False

    counts: dict[str, int] = {}
    for line in lines:
        counts[line] = counts.get(line, 0) + 1
        if counts[line] >= line_threshold:
            return True

    tokens = ' '.join(lines).split()
    counts = {}
    for tok in tokens:
        counts[tok] = counts.get(tok, 0) + 1
        if counts[tok] >= token_threshold:
            return True

    counts = {}
    for i in range(len(tokens) - 2):
        tri = ' '.join(tokens[i:i + 3])
        counts[tri] = counts.get(tri, 0) + 1
        if counts[tri] >= trigram_threshold:
            return True
    return False


def snap_timecodes(source: list[Cue], produced: list[Cue]) -> tuple[list[Cue], list[str], str | None]:
    """
    Force produced cues onto the source timecodes.
    Returns (cues, warnings, error); error is set when the cue count changed.
    """
    if len(source) != len(produced):
        return produced, [], f"Cue count changed: expected {len(source)}, got {len(produced)}"

    adjusted = False
    fixed = []
    for src, cue in zip(source, produced):
        if round(src.start, 3) != round(cue.start, 3) or round(src.end, 3) != round(cue.end, 3):
            adjusted = True
            cue = Cue(start=src.start, end=src.end, text=cue.text)
        fixed.append(cue)

    warnings = ["Adjusted cue timecodes to match source"] if adjusted else []
    return fixed, warnings, None
