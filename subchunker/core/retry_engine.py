"""
Manual retries for chunks of a run.
A chunk id can be in flight at most once; bulk retries drain the run's
retry queue with the same bounded worker pattern as the main run.
"""

import time
import asyncio
import logging
from dataclasses import replace
from typing import Iterable, Optional

from subchunker.core.constants import ChunkState, WARN_MANUAL_EDIT
from subchunker.core.cue_codec import check_cues, parse_cues, serialize_vtt
from subchunker.core.error_codes import RetryInProgressError, RunStateError
from subchunker.core.job_runner import JobRunner, Run
from subchunker.core.merge import summarize
from subchunker.core.models import ChunkStatus, RunResult

logger = logging.getLogger(__name__)


class RetryEngine:

    def __init__(self, runner: JobRunner):
        self.runner = runner

    def _check_slot(self, run: Run, idx: int):
        if idx < 0 or idx >= len(run.descriptors):
            raise RunStateError(f"Run has no chunk {idx}")
        if idx in run.retrying_chunk_ids:
            raise RetryInProgressError(idx)
        if run.chunk(idx).status == ChunkState.PROCESSING:
            raise RunStateError(f"Chunk {idx} is still being processed")
        if run.is_running and idx >= run.next_chunk_cursor:
            # the main run will still claim this one
            raise RunStateError(f"Chunk {idx} has not been processed yet")

    async def retry_chunk(self, run: Run, idx: int,
                          override_text: Optional[str] = None) -> ChunkStatus:
        """
        Re-run one chunk, optionally with user-edited source text, and
        re-merge the run. Raises RetryInProgressError if idx is already
        being retried.
        """
        self._check_slot(run, idx)
        if override_text is not None:
            run.processor.check_override(override_text)

        # no await between the check above and this claim
        run.retrying_chunk_ids.add(idx)
        logger.info("Retrying chunk %d%s", idx, " with edited text" if override_text else "")
        try:
            return await self.runner.process_chunk(run, idx, override_text)
        finally:
            run.retrying_chunk_ids.discard(idx)
            summarize(run.result, run.descriptors)

    async def bulk_retry(self, run: Run, idxs: Iterable[int] | None = None,
                         concurrency: int | None = None) -> RunResult:
        """Retry the given chunks (default: every failed chunk) with bounded concurrency."""
        if run.is_running:
            raise RunStateError("Wait for the run to finish before a bulk retry")
        if idxs is None:
            idxs = [s.idx for s in run.result.chunks if s.status == ChunkState.FAILED]

        for idx in idxs:
            if idx in run.retry_queue or idx in run.retrying_chunk_ids:
                continue
            run.retry_queue.append(idx)

        run.cancelled = False
        limit = min(concurrency or run.concurrency, self.runner.max_concurrency, len(run.retry_queue))
        if limit > 0:
            logger.info("Bulk retry of %d chunk(s) with %d worker(s)", len(run.retry_queue), limit)
            await asyncio.gather(*(self._drain_queue(run) for _ in range(limit)))

        return summarize(run.result, run.descriptors)

    async def _drain_queue(self, run: Run):
        while run.retry_queue and not run.cancelled:
            if run.paused:
                await run.wait_until_resumed()
                continue
            idx = run.retry_queue.popleft()
            try:
                await self.retry_chunk(run, idx)
            except (RetryInProgressError, RunStateError) as e:
                logger.info("Skipping retry of chunk %d: %s", idx, e.message)

    def apply_manual_override(self, run: Run, idx: int, text: str) -> ChunkStatus:
        """
        Store user-supplied subtitle text (absolute times) as the chunk's
        result. Parse and integrity errors propagate to the caller.
        """
        self._check_slot(run, idx)
        cues = parse_cues(text)
        check_cues(cues)

        status = replace(
            run.chunk(idx),
            status=ChunkState.OK,
            warnings=(WARN_MANUAL_EDIT,),
            cues=tuple(cues),
            resolved_vtt=serialize_vtt(cues),
            finished_at=time.time(),
        )
        run.replace_chunk(status)
        logger.info("Chunk %d manually edited (%d cues)", idx, len(cues))
        summarize(run.result, run.descriptors)
        return status
