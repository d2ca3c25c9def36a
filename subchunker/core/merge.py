"""
Merge chunk results into a single subtitle track.
Overlap is trimmed by ownership, cues are re-sorted and the whole track is
validated once more.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from subchunker.core.constants import ChunkState
from subchunker.core.cue_codec import serialize_srt, serialize_vtt, validate_cues
from subchunker.core.models import ChunkDescriptor, ChunkStatus, Cue, RunResult

logger = logging.getLogger(__name__)


@dataclass
class MergeOutcome:
    cues: list[Cue] = field(default_factory=list)
    vtt: str = ""
    srt: str = ""
    error: Optional[str] = None


def _owned(cue: Cue, owned_range: tuple[float, Optional[float]]) -> bool:
    start, end = owned_range
    if cue.start < start:
        return False
    return end is None or cue.start < end


def merge_chunks(chunks: list[ChunkStatus], descriptors: list[ChunkDescriptor]) -> MergeOutcome:
    """
    Collect the cues of every chunk that produced any (including chunks
    flagged failed by an integrity check), in chunk order, keep the ones
    inside each chunk's owned range, and sort by (start, end).
    """
    by_idx = {d.idx: d for d in descriptors}
    merged = []
    for status in sorted(chunks, key=lambda s: s.idx):
        if not status.cues:
            continue
        descriptor = by_idx.get(status.idx)
        owned_range = descriptor.owned_range if descriptor else (0.0, None)
        merged.extend(c for c in status.cues if _owned(c, owned_range))

    # stable sort keeps chunk order for identical timings
    merged.sort(key=lambda c: (c.start, c.end))
    error = validate_cues(merged)
    if error:
        logger.warning("Merged track failed validation: %s", error)
    return MergeOutcome(cues=merged, vtt=serialize_vtt(merged), srt=serialize_srt(merged), error=error)


def summarize(result: RunResult, descriptors: list[ChunkDescriptor]) -> RunResult:
    """Recompute the merged track, warnings and ok flag of a run result in place."""
    outcome = merge_chunks(result.chunks, descriptors)
    result.vtt = outcome.vtt
    result.srt = outcome.srt

    warnings = []
    failed = [s.idx for s in result.chunks if s.status == ChunkState.FAILED]
    pending = [s.idx for s in result.chunks if s.status in (ChunkState.PENDING, ChunkState.PROCESSING)]
    if failed:
        warnings.append(f"{len(failed)} chunk(s) failed: {', '.join(str(i) for i in failed)}")
    if pending:
        warnings.append(f"{len(pending)} chunk(s) not processed: {', '.join(str(i) for i in pending)}")
    if outcome.error:
        warnings.append(outcome.error)

    result.warnings = warnings
    result.ok = not failed and not pending and outcome.error is None
    return result
