"""
Job Runner.
Processes the chunks of a run with a bounded pool of asyncio workers that
share one cursor. Each chunk status slot has exactly one writer at a time,
so slots are replaced without locks.
"""

import time
import asyncio
import logging
from collections import deque
from dataclasses import replace
from typing import Optional

from subchunker.core.constants import (
    ChunkState, ErrorCode, DEFAULT_CONCURRENCY, MAX_CONCURRENCY,
    DEFAULT_CHUNK_SECONDS, DEFAULT_OVERLAP_CUES,
    TRANSCRIPTION_CHUNK_SECONDS, TRANSCRIPTION_OVERLAP_SECONDS,
    TRANSCRIPTION_MAX_CONCURRENCY, WARN_CANCELLED,
)
from subchunker.core.chunk_planner import chunk_timeout, plan_cue_chunks, plan_time_chunks
from subchunker.core.cue_codec import check_cues, parse_cues, serialize_vtt, shift_cues, validate_cues
from subchunker.core.error_codes import JobError, ProviderTransportError, RunStateError
from subchunker.core.merge import summarize
from subchunker.core.models import ChunkDescriptor, ChunkOutput, ChunkStatus, RunResult
from subchunker.core.processors import ChunkProcessor, TranscriptionProcessor, TranslationProcessor
from subchunker.core.progress import ProgressSink
from subchunker.core.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)


def _tokens_estimate(text: str) -> int:
    return -(-len(text) // 4)


def _error_message(error: BaseException) -> str:
    if isinstance(error, JobError):
        return error.message
    return str(error) or type(error).__name__


class Run:
    """
    One chunked job: its descriptors, the chunk status slots and the
    control state shared by its workers. Every operation takes a Run.
    """

    def __init__(self, descriptors: list[ChunkDescriptor], processor: ChunkProcessor,
                 concurrency: int = DEFAULT_CONCURRENCY, media_ref: str | None = None,
                 progress: ProgressSink | None = None):
        self.descriptors = list(descriptors)
        self.processor = processor
        self.concurrency = concurrency
        self.media_ref = media_ref
        self.progress = progress or ProgressSink()

        self.is_running = False
        self.paused = False
        self.cancelled = False
        self.next_chunk_cursor = 0
        self.retrying_chunk_ids: set[int] = set()
        self.retry_queue: deque[int] = deque()

        self._resume_event = asyncio.Event()
        self._resume_event.set()
        self._inflight: set[asyncio.Task] = set()
        self.result = self._fresh_result()

    def _fresh_result(self) -> RunResult:
        chunks = []
        for d in self.descriptors:
            chunk_vtt, context_vtt = self.processor.describe(d)
            chunks.append(ChunkStatus(
                idx=d.idx,
                chunk_vtt=chunk_vtt,
                context_vtt=context_vtt,
                time_range=d.time_range,
                tokens_estimate=_tokens_estimate(chunk_vtt),
            ))
        return RunResult(chunks=chunks, media_ref=self.media_ref)

    # ── Control ───────────────────────────────────────────────────────

    def pause(self):
        """Hold workers at their next claim; chunks already in flight finish."""
        self.paused = True
        self._resume_event.clear()
        self.progress.publish_message("Paused")

    def resume(self):
        self.paused = False
        self._resume_event.set()
        self.progress.publish_message("Resumed")

    def cancel(self):
        """Stop claiming chunks and abort in-flight provider calls."""
        self.cancelled = True
        self._resume_event.set()
        for task in list(self._inflight):
            task.cancel()
        self.is_running = False
        self.progress.publish_message("Cancelled")

    def reset(self):
        """Return the run to its initial state so it can be started again."""
        if self.is_running or self._inflight:
            raise RunStateError("Cannot reset a run while it is processing")
        self.paused = False
        self.cancelled = False
        self.next_chunk_cursor = 0
        self.retrying_chunk_ids.clear()
        self.retry_queue.clear()
        self._resume_event.set()
        self.result = self._fresh_result()

    async def wait_until_resumed(self):
        await self._resume_event.wait()

    # ── Slots ─────────────────────────────────────────────────────────

    def claim_next(self) -> Optional[int]:
        if self.next_chunk_cursor >= len(self.descriptors):
            return None
        idx = self.next_chunk_cursor
        self.next_chunk_cursor += 1
        return idx

    def chunk(self, idx: int) -> ChunkStatus:
        return self.result.chunks[idx]

    def replace_chunk(self, status: ChunkStatus):
        self.result.chunks[status.idx] = status
        self.progress.publish_chunk(status)


class JobRunner:
    """
    Creates runs and drives their chunks through a provider.
    Emits progress through each run's ProgressSink.
    """

    def __init__(self, provider, retry_policy: RetryPolicy | None = None,
                 max_concurrency: int = MAX_CONCURRENCY):
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_concurrency = max_concurrency

    # ── Run creation ──────────────────────────────────────────────────

    def create_translation_run(self, subtitle_text: str,
                               processor: TranslationProcessor | None = None,
                               chunk_seconds: float = DEFAULT_CHUNK_SECONDS,
                               overlap_cues: int = DEFAULT_OVERLAP_CUES,
                               concurrency: int = DEFAULT_CONCURRENCY,
                               progress: ProgressSink | None = None) -> Run:
        """Parse and check the source track, then plan cue chunks. Bad input raises before anything runs."""
        cues = parse_cues(subtitle_text)
        check_cues(cues)
        descriptors = plan_cue_chunks(cues, chunk_seconds, overlap_cues)
        return Run(descriptors, processor or TranslationProcessor(),
                   concurrency=concurrency, progress=progress)

    def create_transcription_run(self, media_ref: str, duration_sec: float | None,
                                 processor: ChunkProcessor | None = None,
                                 chunk_seconds: float = TRANSCRIPTION_CHUNK_SECONDS,
                                 overlap_seconds: float = TRANSCRIPTION_OVERLAP_SECONDS,
                                 concurrency: int = DEFAULT_CONCURRENCY,
                                 progress: ProgressSink | None = None) -> Run:
        descriptors = plan_time_chunks(duration_sec, chunk_seconds, overlap_seconds)
        return Run(descriptors, processor or TranscriptionProcessor(media_ref),
                   concurrency=min(concurrency, TRANSCRIPTION_MAX_CONCURRENCY),
                   media_ref=media_ref, progress=progress)

    # ── Processing ────────────────────────────────────────────────────

    async def start(self, run: Run) -> RunResult:
        """Process every chunk of the run and return the merged result."""
        if run.is_running:
            raise RunStateError("Run is already running")
        if run.next_chunk_cursor:
            raise RunStateError("Run was already started; reset it first")

        run.is_running = True
        run.cancelled = False
        worker_count = max(1, min(run.concurrency, self.max_concurrency, len(run.descriptors)))
        logger.info("Starting run: %d chunk(s), %d worker(s)", len(run.descriptors), worker_count)
        run.progress.publish_message(f"Processing {len(run.descriptors)} chunk(s)")

        workers = [asyncio.create_task(self._worker_loop(run, n)) for n in range(worker_count)]
        try:
            await asyncio.gather(*workers)
        finally:
            run.is_running = False

        summarize(run.result, run.descriptors)
        if run.cancelled:
            logger.info("Run cancelled")
        elif run.result.ok:
            logger.info("Run completed: %d chunk(s) ok", len(run.descriptors))
        else:
            logger.warning("Run finished with problems: %s", "; ".join(run.result.warnings))
        run.progress.publish_message("Done" if run.result.ok else "Finished with errors")
        return run.result

    async def _worker_loop(self, run: Run, worker_id: int):
        """Claim and process chunks until the cursor is exhausted or the run is cancelled."""
        while True:
            if run.cancelled:
                return
            if run.paused:
                await run.wait_until_resumed()
                continue

            idx = run.claim_next()
            if idx is None:
                return
            logger.debug("Worker %d claimed chunk %d", worker_id, idx)
            await self.process_chunk(run, idx)

    async def process_chunk(self, run: Run, idx: int,
                            override_text: Optional[str] = None) -> ChunkStatus:
        """
        Run one chunk through the processor under the retry policy and write
        its final status. The caller must own the slot for idx.
        """
        descriptor = run.descriptors[idx]
        timeout = chunk_timeout(descriptor)
        previous = run.chunk(idx)
        processing = replace(previous, status=ChunkState.PROCESSING, warnings=(),
                             started_at=time.time(), finished_at=None)
        run.replace_chunk(processing)
        attempts = 0

        async def attempt() -> ChunkOutput:
            nonlocal attempts
            attempts += 1
            try:
                return await asyncio.wait_for(
                    run.processor.process(self.provider, descriptor, override_text, timeout),
                    timeout,
                )
            except asyncio.TimeoutError:
                raise ProviderTransportError(f"Chunk {idx} timed out after {timeout:.0f}s",
                                             code=ErrorCode.PROVIDER_TIMEOUT)

        call = asyncio.create_task(self.retry_policy.call(attempt, label=f"Chunk {idx}"))
        run._inflight.add(call)
        try:
            output = await call
        except asyncio.CancelledError:
            status = self._cancelled_status(previous, processing, attempts)
            current = asyncio.current_task()
            if not run.cancelled or (current is not None and current.cancelling()):
                # our caller was cancelled; the slot must not stay processing
                run.replace_chunk(status)
                raise
        except Exception as e:
            logger.error("Chunk %d failed: %s", idx, e)
            status = replace(processing, status=ChunkState.FAILED,
                             warnings=(_error_message(e),), cues=(), raw_output="",
                             resolved_vtt="", attempts=attempts, finished_at=time.time())
        else:
            status = self._resolve(processing, descriptor, output, attempts)
        finally:
            run._inflight.discard(call)

        run.replace_chunk(status)
        run.progress.publish_message(f"Chunk {idx + 1}/{len(run.descriptors)} {status.status}")
        return status

    @staticmethod
    def _cancelled_status(previous: ChunkStatus, processing: ChunkStatus,
                          attempts: int) -> ChunkStatus:
        if previous.status == ChunkState.OK:
            # an aborted retry keeps the chunk's earlier result
            return previous
        return replace(processing, status=ChunkState.FAILED, warnings=(WARN_CANCELLED,),
                       cues=(), attempts=attempts, finished_at=time.time())

    def _resolve(self, processing: ChunkStatus, descriptor: ChunkDescriptor,
                 output: ChunkOutput, attempts: int) -> ChunkStatus:
        cues = shift_cues(output.cues, descriptor.base_offset)
        warnings = list(output.warnings)
        state = ChunkState.OK
        if output.failure:
            warnings.append(output.failure)
            state = ChunkState.FAILED
        else:
            # a broken chunk is still merged, but flagged
            error = validate_cues(cues)
            if error:
                warnings.append(error)
                state = ChunkState.FAILED

        if state == ChunkState.OK:
            logger.info("Chunk %d ok (%d cues, %d attempt(s))", descriptor.idx, len(cues), attempts)
        else:
            logger.warning("Chunk %d failed: %s", descriptor.idx, warnings[-1])

        return replace(
            processing,
            status=state,
            warnings=tuple(dict.fromkeys(warnings)),
            cues=tuple(cues),
            raw_output=output.raw_output,
            resolved_vtt=serialize_vtt(cues) if cues else "",
            attempts=attempts,
            finished_at=time.time(),
        )
