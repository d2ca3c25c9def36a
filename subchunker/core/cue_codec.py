"""
Subtitle cue codec.
Parses and writes Format A (WebVTT) and Format B (SRT) cue tracks,
converts between them and checks cue sequence integrity.
"""

import re
import math
import logging
from typing import Iterable, Optional

from subchunker.core.error_codes import CueParseError, CueIntegrityError, TimecodeParseError
from subchunker.core.models import Cue

logger = logging.getLogger(__name__)

FORMAT_VTT = "vtt"
FORMAT_SRT = "srt"

# [HH:]MM:SS(.|,)mmm, hours optional in both formats
_TIMECODE_RE = re.compile(r'^(?:(\d{1,3}):)?(\d{2}):(\d{2})[.,](\d{3})$')
_ARROW = '-->'


# ── Timecodes ─────────────────────────────────────────────────────────

def _to_ms(seconds: float) -> int:
    # round half up, matching how players display timecodes
    return int(math.floor(seconds * 1000 + 0.5))


def parse_timecode(token: str) -> Optional[float]:
    """Parse a single timecode into seconds. Returns None if malformed."""
    m = _TIMECODE_RE.match(token.strip())
    if not m:
        return None
    hours = int(m.group(1) or 0)
    minutes = int(m.group(2))
    seconds = int(m.group(3))
    millis = int(m.group(4))
    if minutes > 59 or seconds > 59:
        return None
    return hours * 3600 + minutes * 60 + seconds + millis / 1000


def format_timecode(seconds: float, decimal_sep: str = '.') -> str:
    total_ms = max(0, _to_ms(seconds))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}{decimal_sep}{millis:03d}"


def _parse_timing_line(line: str, line_number: int) -> tuple[float, float]:
    left, _, right = line.partition(_ARROW)
    end_tokens = right.split()
    # anything after the end timecode is a cue setting and is ignored
    start = parse_timecode(left) if left.strip() else None
    end = parse_timecode(end_tokens[0]) if end_tokens else None
    if start is None or end is None:
        raise TimecodeParseError(line_number, line)
    return start, end


# ── Parsing ───────────────────────────────────────────────────────────

def _normalize(text: str) -> list[str]:
    text = text.replace('\r\n', '\n').replace('\r', '\n')
    if text.startswith('\ufeff'):
        text = text[1:]
    return text.split('\n')


def detect_format(text: str) -> str:
    """Guess the grammar of a subtitle document: WEBVTT header or dot decimals mean Format A."""
    lines = _normalize(text)
    for line in lines:
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith('WEBVTT'):
            return FORMAT_VTT
        break
    for line in lines:
        if _ARROW in line:
            return FORMAT_SRT if ',' in line.partition(_ARROW)[0] else FORMAT_VTT
    return FORMAT_VTT


def _read_cue_text(lines: list[str], i: int) -> tuple[str, int]:
    text_lines = []
    while i < len(lines) and lines[i].strip():
        text_lines.append(lines[i])
        i += 1
    return '\n'.join(text_lines), i


def parse_vtt(text: str) -> list[Cue]:
    """
    Parse Format A. The header block, cue identifiers and NOTE/STYLE blocks
    are skipped; every line carrying '-->' outside cue text is a timing line.
    """
    lines = _normalize(text)
    cues = []
    i = 0
    while i < len(lines):
        line = lines[i]
        if _ARROW not in line:
            i += 1
            continue
        start, end = _parse_timing_line(line, i + 1)
        body, i = _read_cue_text(lines, i + 1)
        cues.append(Cue(start=start, end=end, text=body))
    return cues


def parse_srt(text: str) -> list[Cue]:
    """Parse Format B: blocks of optional index, timing line, text lines."""
    lines = _normalize(text)
    cues = []
    i = 0
    while i < len(lines):
        if not lines[i].strip():
            i += 1
            continue

        # optional numeric index
        if lines[i].strip().isdigit() and i + 1 < len(lines) and lines[i + 1].strip():
            i += 1

        line = lines[i]
        if _ARROW not in line:
            raise TimecodeParseError(i + 1, line)
        start, end = _parse_timing_line(line, i + 1)
        body, i = _read_cue_text(lines, i + 1)
        cues.append(Cue(start=start, end=end, text=body))
    return cues


def parse_cues(text: str, fmt: str | None = None) -> list[Cue]:
    """Parse subtitle text in either format (auto-detected unless fmt is given)."""
    fmt = fmt or detect_format(text)
    if fmt == FORMAT_VTT:
        return parse_vtt(text)
    if fmt == FORMAT_SRT:
        return parse_srt(text)
    raise CueParseError(f"Unknown subtitle format: {fmt}")


# ── Serialization ─────────────────────────────────────────────────────

def serialize_vtt(cues: Iterable[Cue]) -> str:
    blocks = [
        f"{format_timecode(c.start)} {_ARROW} {format_timecode(c.end)}\n{c.text}"
        for c in cues
    ]
    if not blocks:
        return "WEBVTT\n"
    return "WEBVTT\n\n" + "\n\n".join(blocks) + "\n"


def serialize_srt(cues: Iterable[Cue]) -> str:
    blocks = [
        f"{n}\n{format_timecode(c.start, ',')} {_ARROW} {format_timecode(c.end, ',')}\n{c.text}"
        for n, c in enumerate(cues, start=1)
    ]
    if not blocks:
        return ""
    return "\n\n".join(blocks) + "\n"


def convert_to_srt(text: str) -> str:
    """Re-emit any parseable subtitle text as Format B."""
    return serialize_srt(parse_cues(text))


def convert_to_vtt(text: str) -> str:
    return serialize_vtt(parse_cues(text))


def shift_cues(cues: Iterable[Cue], offset: float) -> list[Cue]:
    if not offset:
        return list(cues)
    return [Cue(start=c.start + offset, end=c.end + offset, text=c.text) for c in cues]


# ── Integrity ─────────────────────────────────────────────────────────

def _first_violation(cues: list[Cue]) -> tuple[int, str] | None:
    for i, cue in enumerate(cues):
        start_ms, end_ms = _to_ms(cue.start), _to_ms(cue.end)
        if start_ms < 0:
            return i + 1, f"Cue {i + 1}: start time ({cue.start:.3f}s) is negative"
        if end_ms <= start_ms:
            return i + 1, (
                f"Cue {i + 1}: end time ({format_timecode(cue.end)}) must be greater "
                f"than start time ({format_timecode(cue.start)})"
            )
        if i > 0 and start_ms < _to_ms(cues[i - 1].end):
            return i + 1, (
                f"Cue {i + 1}: overlaps with previous cue (starts at "
                f"{format_timecode(cue.start)}, previous ends at {format_timecode(cues[i - 1].end)})"
            )
    return None


def validate_cues(cues: list[Cue]) -> str | None:
    """Return a message describing the first violation, or None when the sequence is valid."""
    violation = _first_violation(cues)
    return violation[1] if violation else None


def check_cues(cues: list[Cue]):
    """Raise CueIntegrityError naming the first offending cue position."""
    violation = _first_violation(cues)
    if violation:
        position, message = violation
        raise CueIntegrityError(message, cue_position=position)
