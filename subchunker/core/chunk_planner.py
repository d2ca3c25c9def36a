"""
Chunk planning.
Cue-driven plans group existing cues for translation; duration-driven plans
cut a media timeline into overlapping windows for transcription.
"""

import logging
from typing import Optional

from subchunker.core.constants import (
    DEFAULT_CHUNK_SECONDS, DEFAULT_OVERLAP_CUES,
    TRANSCRIPTION_CHUNK_SECONDS, TRANSCRIPTION_OVERLAP_SECONDS,
    CHUNK_TIMEOUT_FLOOR_SEC, CHUNK_TIMEOUT_PER_MEDIA_SEC, CHUNK_TIMEOUT_SLACK_SEC,
)
from subchunker.core.models import Cue, TaggedCue, ChunkDescriptor

logger = logging.getLogger(__name__)


def plan_cue_chunks(cues: list[Cue],
                    target_seconds: float = DEFAULT_CHUNK_SECONDS,
                    overlap_cues: int = DEFAULT_OVERLAP_CUES) -> list[ChunkDescriptor]:
    """
    Group cues into chunks whose span (last end minus first start) stays
    within target_seconds. A cue that alone exceeds the target still gets a
    chunk of its own. Each chunk after the first is prefixed with the last
    overlap_cues new cues of its predecessor, tagged as context.
    """
    if target_seconds <= 0:
        raise ValueError("target_seconds must be positive")
    overlap_cues = max(0, int(overlap_cues))

    groups: list[tuple[int, int]] = []     # inclusive index ranges of new cues
    first = 0
    for i in range(1, len(cues)):
        if cues[i].end - cues[first].start > target_seconds:
            groups.append((first, i - 1))
            first = i
    if cues:
        groups.append((first, len(cues) - 1))

    chunks = []
    for idx, (first, last) in enumerate(groups):
        context_start = first
        if idx > 0 and overlap_cues:
            prev_first, _ = groups[idx - 1]
            context_start = max(prev_first, first - overlap_cues)
        tagged = tuple(
            TaggedCue(cue=cues[i], is_context=i < first)
            for i in range(context_start, last + 1)
        )
        chunks.append(ChunkDescriptor(
            idx=idx,
            cues=tagged,
            cue_range=(first, last),
            base_offset=0.0,
        ))

    logger.info("Planned %d cue chunk(s) from %d cues (target %.0fs, overlap %d cues)",
                len(chunks), len(cues), target_seconds, overlap_cues)
    return chunks


def plan_time_chunks(duration_sec: Optional[float],
                     target_seconds: float = TRANSCRIPTION_CHUNK_SECONDS,
                     overlap_seconds: float = TRANSCRIPTION_OVERLAP_SECONDS) -> list[ChunkDescriptor]:
    """
    Cut [0, duration) into windows [k*(T-o), min(D, k*(T-o)+T)).
    A duration that is unknown or fits into one window yields a single chunk.
    """
    if target_seconds <= 0:
        raise ValueError("target_seconds must be positive")
    if overlap_seconds < 0 or overlap_seconds >= target_seconds:
        raise ValueError("overlap_seconds must be >= 0 and smaller than target_seconds")

    if not duration_sec or duration_sec <= 0:
        return [ChunkDescriptor(idx=0, time_range=(0.0, None), owned_range=(0.0, None))]
    if duration_sec <= target_seconds:
        return [ChunkDescriptor(idx=0, time_range=(0.0, duration_sec),
                                owned_range=(0.0, None))]

    step = target_seconds - overlap_seconds
    windows = []
    k = 0
    while True:
        start = k * step
        end = min(duration_sec, start + target_seconds)
        windows.append((start, end))
        if end >= duration_sec:
            break
        k += 1

    chunks = []
    for idx, (start, end) in enumerate(windows):
        # each overlap is split at its midpoint between the two windows sharing it
        owned_start = 0.0 if idx == 0 else (start + windows[idx - 1][1]) / 2
        owned_end = None if idx == len(windows) - 1 else (windows[idx + 1][0] + end) / 2
        chunks.append(ChunkDescriptor(
            idx=idx,
            time_range=(start, end),
            base_offset=start,
            owned_range=(owned_start, owned_end),
        ))

    logger.info("Planned %d time chunk(s) over %.1fs (target %.0fs, overlap %.0fs)",
                len(chunks), duration_sec, target_seconds, overlap_seconds)
    return chunks


def chunk_timeout(descriptor: ChunkDescriptor) -> float:
    """
    Provider timeout for one chunk: scales with the media span it covers,
    never below CHUNK_TIMEOUT_FLOOR_SEC.
    """
    span = descriptor.span
    if span is None:
        return float(CHUNK_TIMEOUT_FLOOR_SEC * 4)
    return max(float(CHUNK_TIMEOUT_FLOOR_SEC),
               span * CHUNK_TIMEOUT_PER_MEDIA_SEC + CHUNK_TIMEOUT_SLACK_SEC)
