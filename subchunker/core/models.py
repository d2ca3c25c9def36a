"""
Data models (plain dataclasses) for SubChunker.
"""

from dataclasses import dataclass, field
from typing import Optional

from subchunker.core.constants import ChunkState


@dataclass(frozen=True)
class Cue:
    start: float                     # seconds
    end: float                       # seconds, must exceed start
    text: str


@dataclass(frozen=True)
class TaggedCue:
    """A cue inside a chunk's working set, marked as read-only context or new."""
    cue: Cue
    is_context: bool = False


@dataclass(frozen=True)
class ChunkDescriptor:
    """
    What a chunk covers. Cue-driven chunks carry tagged cues and the index range
    of their new cues; duration-driven chunks carry a [start, end) time window.
    """
    idx: int
    cues: tuple[TaggedCue, ...] = ()
    cue_range: Optional[tuple[int, int]] = None
    time_range: Optional[tuple[float, Optional[float]]] = None
    base_offset: float = 0.0
    # cues starting inside this interval are the ones the merge keeps
    owned_range: tuple[float, Optional[float]] = (0.0, None)

    @property
    def new_cues(self) -> list[Cue]:
        return [t.cue for t in self.cues if not t.is_context]

    @property
    def context_cues(self) -> list[Cue]:
        return [t.cue for t in self.cues if t.is_context]

    @property
    def context_cue_count(self) -> int:
        return sum(1 for t in self.cues if t.is_context)

    @property
    def span(self) -> Optional[float]:
        """Expected media duration covered by this chunk, if known."""
        if self.time_range is not None:
            start, end = self.time_range
            return None if end is None else end - start
        if self.cues:
            return self.cues[-1].cue.end - self.cues[0].cue.start
        return None


@dataclass(frozen=True)
class ChunkStatus:
    idx: int
    status: str = ChunkState.PENDING
    warnings: tuple[str, ...] = ()
    cues: tuple[Cue, ...] = ()       # absolute times, ready to merge
    raw_output: str = ""
    resolved_vtt: str = ""
    chunk_vtt: str = ""
    context_vtt: str = ""
    time_range: Optional[tuple[float, Optional[float]]] = None
    attempts: int = 0
    tokens_estimate: int = 0
    started_at: Optional[float] = None
    finished_at: Optional[float] = None


@dataclass
class ChunkOutput:
    """What a processor hands back for one chunk (cue times relative to base_offset)."""
    cues: list[Cue]
    raw_output: str = ""
    warnings: list[str] = field(default_factory=list)
    # set when the output is kept but must be flagged as failed
    failure: Optional[str] = None


@dataclass
class RunResult:
    ok: bool = False
    warnings: list[str] = field(default_factory=list)
    chunks: list[ChunkStatus] = field(default_factory=list)
    vtt: str = ""
    srt: str = ""
    media_ref: Optional[str] = None
