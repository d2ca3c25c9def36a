#!/usr/bin/env python3
"""
SubChunker v1.0.0 — Main entry point.
Translates or transcribes long subtitle tracks chunk by chunk from the command line.
"""

import sys
import asyncio
import logging
import argparse
import traceback
from pathlib import Path
from datetime import datetime

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from subchunker.core.constants import APP_LOG_DIR, APP_NAME, APP_VERSION, ChunkState

logger = logging.getLogger("subchunker")

EXIT_OK = 0
EXIT_INVALID_INPUT = 1
EXIT_CHUNKS_FAILED = 2


def setup_logging(verbose: bool = False) -> Path:
    """Log to ~/.cache/subchunker/logs/app.log, and to stderr with --verbose."""
    APP_LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = APP_LOG_DIR / "app.log"
    handlers: list[logging.Handler] = [logging.FileHandler(log_file, encoding="utf-8")]
    if verbose:
        handlers.append(logging.StreamHandler(sys.stderr))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
    return log_file


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="subchunker", description=f"{APP_NAME} {APP_VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="log to stderr as well")
    parser.add_argument("--out", type=Path, default=None, help="output directory")
    parser.add_argument("--concurrency", type=int, default=None)
    parser.add_argument("--model", default=None)
    parser.add_argument("--base-url", default=None)
    parser.add_argument("--retry-failed", action="store_true",
                        help="retry failed chunks once after the run")
    parser.add_argument("--check-key", action="store_true",
                        help="verify the API key before processing")
    sub = parser.add_subparsers(dest="command", required=True)

    tr = sub.add_parser("translate", help="translate a .vtt or .srt file")
    tr.add_argument("input", type=Path)
    tr.add_argument("--target", default=None, help="target language")
    tr.add_argument("--chunk-seconds", type=float, default=None)
    tr.add_argument("--overlap-cues", type=int, default=None)
    tr.add_argument("--glossary", type=Path, default=None)
    tr.add_argument("--summary", type=Path, default=None)

    tc = sub.add_parser("transcribe", help="transcribe a media reference in time windows")
    tc.add_argument("--media-ref", required=True)
    tc.add_argument("--duration", type=float, default=None, help="media duration in seconds")
    tc.add_argument("--name", default=None, help="output file stem")
    tc.add_argument("--chunk-seconds", type=float, default=None)
    tc.add_argument("--overlap-seconds", type=float, default=None)
    return parser


def _print_chunk(status):
    mark = {ChunkState.OK: "ok", ChunkState.FAILED: "FAILED"}.get(status.status)
    if mark:
        line = f"  chunk {status.idx}: {mark}"
        if status.warnings:
            line += f" ({status.warnings[-1]})"
        print(line)


async def run_command(args, config) -> int:
    from subchunker.core.error_codes import JobError
    from subchunker.core.job_runner import JobRunner
    from subchunker.core.output_writer import write_result
    from subchunker.core.processors import TranslationProcessor, TranscriptionProcessor
    from subchunker.core.progress import ProgressSink
    from subchunker.core.provider_http import HttpProvider
    from subchunker.core.retry_engine import RetryEngine

    progress = ProgressSink()
    progress.on_chunk_updated = _print_chunk

    try:
        provider = HttpProvider(base_url=args.base_url or config.get('base_url'),
                                model=args.model or config.get('model_name'))
    except JobError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_INVALID_INPUT

    if args.check_key:
        ok, message = await asyncio.to_thread(provider.verify_api_key)
        logger.info("API key check: %s", message)
        if not ok:
            print(f"Error: {message}", file=sys.stderr)
            return EXIT_INVALID_INPUT

    runner = JobRunner(provider, retry_policy=config.retry_policy())
    concurrency = args.concurrency or config.concurrency
    output_root = args.out or Path(config.output_root)

    if args.command == "translate":
        target = args.target or config.target_lang
        processor = TranslationProcessor(
            target_lang=target,
            glossary=args.glossary.read_text(encoding="utf-8") if args.glossary else None,
            summary=args.summary.read_text(encoding="utf-8") if args.summary else None,
            temperature=config.get('temperature'),
        )
        try:
            text = args.input.read_text(encoding="utf-8")
            run = runner.create_translation_run(
                text, processor,
                chunk_seconds=args.chunk_seconds or config.chunk_seconds,
                overlap_cues=args.overlap_cues if args.overlap_cues is not None else config.overlap_cues,
                concurrency=concurrency,
                progress=progress,
            )
        except (OSError, JobError) as e:
            print(f"Error: {getattr(e, 'message', e)}", file=sys.stderr)
            return EXIT_INVALID_INPUT
        stem, lang = args.input.stem, target
    else:
        try:
            run = runner.create_transcription_run(
                args.media_ref, args.duration,
                TranscriptionProcessor(args.media_ref, temperature=config.get('temperature')),
                chunk_seconds=args.chunk_seconds or config.get('transcription_chunk_seconds'),
                overlap_seconds=(args.overlap_seconds if args.overlap_seconds is not None
                                 else config.get('transcription_overlap_seconds')),
                concurrency=concurrency,
                progress=progress,
            )
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_INVALID_INPUT
        stem, lang = args.name or Path(args.media_ref).stem or "transcript", None

    print(f"Processing {len(run.descriptors)} chunk(s)...")
    result = await runner.start(run)
    if not result.ok and args.retry_failed:
        print("Retrying failed chunks...")
        result = await RetryEngine(runner).bulk_retry(run)

    vtt_path, srt_path = write_result(result, output_root, stem, lang)
    print(f"Wrote {vtt_path}\nWrote {srt_path}")
    for warning in result.warnings:
        print(f"Warning: {warning}", file=sys.stderr)
    return EXIT_OK if result.ok else EXIT_CHUNKS_FAILED


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    log_file = setup_logging(args.verbose)

    logger.info("=" * 60)
    logger.info("%s v%s starting at %s", APP_NAME, APP_VERSION, datetime.now().isoformat())
    logger.info("Python: %s", sys.executable)
    logger.info("Command: %s", args.command)
    logger.info("=" * 60)

    try:
        from subchunker.core.config import AppConfig
        return asyncio.run(run_command(args, AppConfig()))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_CHUNKS_FAILED
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        logger.critical("Fatal error: %s\n%s", error_msg, traceback.format_exc())
        print(f"Fatal error: {error_msg}\nCheck logs at: {log_file}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
