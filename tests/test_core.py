#!/usr/bin/env python3
"""
Unit tests for SubChunker core modules.
Tests cover: cue codec, output repair, chunk planning, merge, error codes,
retry classification, config, output writer, progress sink, HTTP provider.
"""

import sys
import json
import tempfile
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest
import unittest.mock

import requests

from subchunker.core.constants import ChunkState, ErrorCode, RETRYABLE_ERRORS, MAX_CONCURRENCY
from subchunker.core.cue_codec import (
    parse_cues, parse_vtt, parse_srt, serialize_vtt, serialize_srt,
    convert_to_srt, convert_to_vtt, detect_format, format_timecode, parse_timecode,
    validate_cues, check_cues, shift_cues, FORMAT_SRT, FORMAT_VTT,
)
from subchunker.core.error_codes import (
    JobError, is_retryable, CueParseError, TimecodeParseError, CueIntegrityError,
    ProviderRateLimitError, ProviderTransportError, ProviderSchemaError,
    RetryInProgressError, RunStateError,
)
from subchunker.core.models import Cue, ChunkStatus, ChunkDescriptor, RunResult
from subchunker.core.output_repair import (
    auto_repair, strip_code_fence, strip_duplicate_headers, sanitize_timecodes,
    ensure_blank_lines, detect_looping, snap_timecodes, cue_warnings,
)
from subchunker.core.chunk_planner import plan_cue_chunks, plan_time_chunks, chunk_timeout
from subchunker.core.merge import merge_chunks, summarize
from subchunker.core.retry_policy import (
    RetryPolicy, classify_error, declared_retry_after, RATE_LIMIT, TRANSIENT, FATAL,
)
from subchunker.core.config import AppConfig
from subchunker.core.output_writer import sanitize_stem, write_result
from subchunker.core.progress import ProgressSink
from subchunker.core.prompts import build_user_prompt
from subchunker.core.provider import GenerateRequest
from subchunker.core.provider_http import HttpProvider


SAMPLE_VTT = """WEBVTT

00:00:00.000 --> 00:00:01.500
Hello

00:00:02.000 --> 00:00:03.000
World
"""

SAMPLE_SRT = """1
00:00:00,000 --> 00:00:01,500
Hello

2
00:00:02,000 --> 00:00:03,000
World
"""


class TestCueCodec(unittest.TestCase):
    """Test Format A / Format B parsing and serialization."""

    def test_parse_vtt_basic(self):
        cues = parse_cues(SAMPLE_VTT)
        self.assertEqual(cues, [Cue(0.0, 1.5, "Hello"), Cue(2.0, 3.0, "World")])

    def test_parse_srt_basic(self):
        self.assertEqual(detect_format(SAMPLE_SRT), FORMAT_SRT)
        self.assertEqual(parse_cues(SAMPLE_SRT), [Cue(0.0, 1.5, "Hello"), Cue(2.0, 3.0, "World")])

    def test_detect_vtt(self):
        self.assertEqual(detect_format(SAMPLE_VTT), FORMAT_VTT)
        self.assertEqual(detect_format("00:01.000 --> 00:02.000\nHi\n"), FORMAT_VTT)

    def test_hours_optional_and_settings_ignored(self):
        text = "WEBVTT\n\n01:02.250 --> 01:04.000 align:start position:10%\nShort\n"
        self.assertEqual(parse_vtt(text), [Cue(62.25, 64.0, "Short")])

    def test_crlf_bom_and_identifiers(self):
        text = "\ufeffWEBVTT\r\n\r\nintro\r\n00:00:01.000 --> 00:00:02.000\r\nLine one\r\nLine two\r\n\r\n\r\n\r\n00:00:03.000 --> 00:00:04.000\r\nNext\r\n"
        cues = parse_vtt(text)
        self.assertEqual(len(cues), 2)
        self.assertEqual(cues[0].text, "Line one\nLine two")
        self.assertEqual(cues[1].start, 3.0)

    def test_malformed_timecode_names_line(self):
        text = "WEBVTT\n\n00:00:01.000 --> 00:0x:02.000\nHi\n"
        with self.assertRaises(TimecodeParseError) as ctx:
            parse_vtt(text)
        self.assertEqual(ctx.exception.line_number, 3)
        self.assertEqual(ctx.exception.line, "00:00:01.000 --> 00:0x:02.000")
        self.assertIn("line 3", ctx.exception.message)
        self.assertIsInstance(ctx.exception, CueParseError)

    def test_srt_block_without_timing_line(self):
        with self.assertRaises(TimecodeParseError) as ctx:
            parse_srt("1\nHello there\n")
        self.assertEqual(ctx.exception.line_number, 2)

    def test_parse_timecode(self):
        self.assertAlmostEqual(parse_timecode("01:00:00.001"), 3600.001)
        self.assertEqual(parse_timecode("00:10,500"), 10.5)
        self.assertIsNone(parse_timecode("00:61:00.000"))
        self.assertIsNone(parse_timecode("1:2:3"))

    def test_serialize_vtt_exact(self):
        self.assertEqual(serialize_vtt(parse_cues(SAMPLE_VTT)), SAMPLE_VTT)
        self.assertEqual(serialize_vtt([]), "WEBVTT\n")

    def test_serialize_srt_exact(self):
        self.assertEqual(serialize_srt(parse_cues(SAMPLE_VTT)), SAMPLE_SRT)

    def test_millisecond_rounding(self):
        self.assertEqual(format_timecode(0.0004), "00:00:00.000")
        self.assertEqual(format_timecode(0.0006), "00:00:00.001")
        self.assertEqual(format_timecode(3725.5, ','), "01:02:05,500")

    def test_round_trip(self):
        cues = [Cue(0.0, 1.25, "a"), Cue(1.25, 2.0, "b\nc"), Cue(3600.5, 3601.0, "d")]
        self.assertEqual(parse_cues(serialize_vtt(cues)), cues)

    def test_convert_a_to_b_to_a(self):
        srt = convert_to_srt(SAMPLE_VTT)
        self.assertEqual(srt, SAMPLE_SRT)
        self.assertEqual(parse_cues(convert_to_vtt(srt)), parse_cues(SAMPLE_VTT))

    def test_shift_cues(self):
        self.assertEqual(shift_cues([Cue(1.0, 2.0, "x")], 10), [Cue(11.0, 12.0, "x")])


class TestCueValidation(unittest.TestCase):
    """Test cue sequence integrity checks."""

    def test_valid_sequence(self):
        self.assertIsNone(validate_cues([Cue(0, 1, "a"), Cue(1, 2, "b")]))
        self.assertIsNone(validate_cues([]))

    def test_non_positive_duration(self):
        msg = validate_cues([Cue(0, 1, "a"), Cue(2, 2, "b")])
        self.assertTrue(msg.startswith("Cue 2: end time"))

    def test_overlap(self):
        msg = validate_cues([Cue(0, 2, "a"), Cue(1.5, 3, "b")])
        self.assertTrue(msg.startswith("Cue 2: overlaps with previous cue"))

    def test_check_raises_with_position(self):
        with self.assertRaises(CueIntegrityError) as ctx:
            check_cues([Cue(0, 1, "a"), Cue(2, 3, "b"), Cue(2.5, 4, "c")])
        self.assertEqual(ctx.exception.cue_position, 3)
        self.assertEqual(ctx.exception.code, ErrorCode.CUE_INTEGRITY)

    def test_float_noise_is_not_overlap(self):
        self.assertIsNone(validate_cues([Cue(0, 0.1 + 0.2, "a"), Cue(0.3, 1, "b")]))


class TestOutputRepair(unittest.TestCase):
    """Test repairs applied to model output."""

    def test_strip_code_fence(self):
        text, warnings = strip_code_fence("```vtt\nWEBVTT\n\n00:00:00.000 --> 00:00:01.000\nHi\n```")
        self.assertTrue(text.startswith("WEBVTT"))
        self.assertEqual(warnings, ["Removed code block wrapper from output"])

    def test_duplicate_and_missing_headers(self):
        text, warnings = strip_duplicate_headers("WEBVTT\n\nWEBVTT\n\n00:00:00.000 --> 00:00:01.000\nHi")
        self.assertEqual(text.count("WEBVTT"), 1)
        self.assertEqual(warnings, ["Removed duplicate WEBVTT header"])
        text, _ = strip_duplicate_headers("\n00:00:00.000 --> 00:00:01.000\nHi")
        self.assertTrue(text.startswith("WEBVTT\n\n00:00:00.000"))

    def test_sanitize_timecodes(self):
        text, warnings = sanitize_timecodes("0:0:1.5 --> 0:0:2.25\nHi")
        self.assertEqual(text.split("\n")[0], "00:00:01.500 --> 00:00:02.250")
        self.assertEqual(warnings, ["Sanitized malformed timecode line"])

    def test_ensure_blank_lines(self):
        text, warnings = ensure_blank_lines(
            "00:00:00.000 --> 00:00:01.000\nHi\n00:00:01.000 --> 00:00:02.000\nThere")
        self.assertEqual(len(parse_vtt(text)), 2)
        self.assertEqual(warnings, ["Inserted blank line between cues"])

    def test_ensure_blank_lines_keeps_index_with_its_block(self):
        text, _ = ensure_blank_lines("1\n00:00:00,000 --> 00:00:01,000\nHi\n2\n00:00:01,000 --> 00:00:02,000\nThere")
        self.assertEqual([c.text for c in parse_vtt(text)], ["Hi", "There"])

    def test_auto_repair_dedupes_warnings(self):
        raw = "```\n00:00:00.000 --> 00:00:01.000\nA\n00:00:01.000 --> 00:00:02.000\nB\n00:00:02.000 --> 00:00:03.000\nC\n```"
        repaired, warnings = auto_repair(raw)
        self.assertEqual(len(parse_vtt(repaired)), 3)
        self.assertEqual(warnings.count("Inserted blank line between cues"), 1)

    def test_detect_looping(self):
        self.assertTrue(detect_looping("\n".join(["same line"] * 10)))
        self.assertFalse(detect_looping("WEBVTT\n\n00:00:00.000 --> 00:00:01.000\nHello"))
        self.assertTrue(detect_looping(" ".join(["la la la"] * 20)))

    def test_snap_timecodes(self):
        source = [Cue(0, 1, "a"), Cue(1, 2, "b")]
        fixed, warnings, error = snap_timecodes(source, [Cue(0, 1, "A"), Cue(1.2, 2, "B")])
        self.assertIsNone(error)
        self.assertEqual(fixed, [Cue(0, 1, "A"), Cue(1, 2, "B")])
        self.assertEqual(warnings, ["Adjusted cue timecodes to match source"])
        _, _, error = snap_timecodes(source, [Cue(0, 2, "AB")])
        self.assertEqual(error, "Cue count changed: expected 2, got 1")

    def test_cue_warnings(self):
        self.assertEqual(len(cue_warnings([Cue(0, 1, "a\nb\nc\nd")])), 1)


class TestChunkPlanner(unittest.TestCase):
    """Test cue-driven and duration-driven chunk planning."""

    def test_three_cue_example(self):
        cues = [Cue(0, 2, "a"), Cue(2, 4, "b"), Cue(5, 7, "c")]
        chunks = plan_cue_chunks(cues, target_seconds=3, overlap_cues=0)
        self.assertEqual(len(chunks), 3)
        self.assertEqual([c.cue_range for c in chunks], [(0, 0), (1, 1), (2, 2)])
        self.assertTrue(all(len(c.new_cues) == 1 for c in chunks))

    def test_context_cues_are_tagged(self):
        cues = [Cue(i, i + 1, str(i)) for i in range(6)]
        chunks = plan_cue_chunks(cues, target_seconds=2.5, overlap_cues=1)
        self.assertEqual([c.cue_range for c in chunks], [(0, 1), (2, 3), (4, 5)])
        self.assertEqual(chunks[0].context_cues, [])
        self.assertEqual(chunks[1].context_cues, [cues[1]])
        self.assertEqual(chunks[1].new_cues, cues[2:4])
        self.assertEqual(chunks[2].context_cue_count, 1)

    def test_overlap_never_reaches_past_previous_chunk(self):
        cues = [Cue(0, 1, "a"), Cue(10, 11, "b"), Cue(20, 21, "c")]
        chunks = plan_cue_chunks(cues, target_seconds=5, overlap_cues=5)
        self.assertEqual(chunks[2].context_cues, [cues[1]])

    def test_every_cue_new_exactly_once(self):
        cues = [Cue(i * 1.5, i * 1.5 + 1, str(i)) for i in range(40)]
        chunks = plan_cue_chunks(cues, target_seconds=7, overlap_cues=2)
        emitted = [c for chunk in chunks for c in chunk.new_cues]
        self.assertEqual(emitted, cues)
        for chunk in chunks:
            span = chunk.new_cues[-1].end - chunk.new_cues[0].start
            self.assertLessEqual(span, 7)

    def test_empty_and_oversized(self):
        self.assertEqual(plan_cue_chunks([]), [])
        chunks = plan_cue_chunks([Cue(0, 900, "long")], target_seconds=600)
        self.assertEqual(len(chunks), 1)

    def test_time_windows_cover_duration(self):
        for duration, target, overlap in [(25, 10, 2), (3600, 600, 20), (1201, 600, 0), (601, 600, 599)]:
            chunks = plan_time_chunks(duration, target, overlap)
            ranges = [c.time_range for c in chunks]
            self.assertEqual(ranges[0][0], 0)
            self.assertEqual(ranges[-1][1], duration)
            for (s1, e1), (s2, _) in zip(ranges, ranges[1:]):
                self.assertEqual(e1 - s1, target)
                self.assertAlmostEqual(e1 - s2, overlap)
            for c in chunks:
                self.assertEqual(c.base_offset, c.time_range[0])

    def test_time_windows_example(self):
        chunks = plan_time_chunks(25, 10, 2)
        self.assertEqual([c.time_range for c in chunks], [(0, 10), (8, 18), (16, 25)])
        self.assertEqual([c.owned_range for c in chunks], [(0.0, 9.0), (9.0, 17.0), (17.0, None)])

    def test_single_window(self):
        self.assertEqual(plan_time_chunks(600, 600, 20)[0].time_range, (0.0, 600))
        chunks = plan_time_chunks(None, 600, 20)
        self.assertEqual(len(chunks), 1)
        self.assertEqual(chunks[0].time_range, (0.0, None))

    def test_invalid_overlap(self):
        with self.assertRaises(ValueError):
            plan_time_chunks(100, 10, 10)

    def test_chunk_timeout_scales(self):
        short = plan_time_chunks(30, 600, 20)[0]
        long = plan_time_chunks(1200, 1200, 20)[0]
        self.assertEqual(chunk_timeout(short), 120.0)
        self.assertGreater(chunk_timeout(long), 1200)


class TestMerge(unittest.TestCase):
    """Test stitching chunk cues into one track."""

    def test_merge_sorts_and_skips_empty(self):
        descriptors = [ChunkDescriptor(idx=0), ChunkDescriptor(idx=1), ChunkDescriptor(idx=2)]
        chunks = [
            ChunkStatus(idx=0, status=ChunkState.OK, cues=(Cue(0, 1, "a"),)),
            ChunkStatus(idx=1, status=ChunkState.FAILED, warnings=("boom",)),
            ChunkStatus(idx=2, status=ChunkState.OK, cues=(Cue(5, 6, "c"), Cue(2, 3, "b"))),
        ]
        outcome = merge_chunks(list(reversed(chunks)), descriptors)
        self.assertEqual([c.text for c in outcome.cues], ["a", "b", "c"])
        self.assertIsNone(outcome.error)

    def test_merge_trims_by_ownership(self):
        descriptors = plan_time_chunks(25, 10, 2)
        chunks = [
            ChunkStatus(idx=0, status=ChunkState.OK, cues=(Cue(7, 8, "x"), Cue(8.5, 9.5, "dup"))),
            ChunkStatus(idx=1, status=ChunkState.OK, cues=(Cue(8.5, 9.5, "dup"), Cue(10, 11, "y"))),
            ChunkStatus(idx=2, status=ChunkState.OK, cues=(Cue(20, 21, "z"),)),
        ]
        outcome = merge_chunks(chunks, descriptors)
        self.assertEqual([c.text for c in outcome.cues], ["x", "dup", "y", "z"])

    def test_summarize_flags(self):
        descriptors = [ChunkDescriptor(idx=0), ChunkDescriptor(idx=1)]
        result = RunResult(chunks=[
            ChunkStatus(idx=0, status=ChunkState.OK, cues=(Cue(0, 1, "a"),)),
            ChunkStatus(idx=1, status=ChunkState.OK, cues=(Cue(2, 3, "b"),)),
        ])
        summarize(result, descriptors)
        self.assertTrue(result.ok)
        self.assertEqual(result.warnings, [])
        self.assertEqual(parse_cues(result.srt), [Cue(0, 1, "a"), Cue(2, 3, "b")])

        result.chunks[1] = ChunkStatus(idx=1, status=ChunkState.FAILED, cues=(Cue(0.5, 3, "b"),))
        summarize(result, descriptors)
        self.assertFalse(result.ok)
        self.assertEqual(len(result.warnings), 2)
        self.assertIn("overlaps", result.warnings[1])


class TestErrorCodes(unittest.TestCase):
    """Test error code classification."""

    def test_retryable_errors(self):
        self.assertTrue(is_retryable(ErrorCode.PROVIDER_RATE_LIMIT))
        self.assertTrue(is_retryable(ErrorCode.PROVIDER_TIMEOUT))
        self.assertTrue(is_retryable(ErrorCode.PROVIDER_SCHEMA))

    def test_non_retryable_errors(self):
        self.assertFalse(is_retryable(ErrorCode.CUE_PARSE))
        self.assertFalse(is_retryable(ErrorCode.PROVIDER_AUTH))
        self.assertNotIn(ErrorCode.RETRY_IN_PROGRESS, RETRYABLE_ERRORS)

    def test_every_code_has_an_error_class(self):
        raised = {
            CueParseError("x").code,
            TimecodeParseError(1, "x").code,
            CueIntegrityError("x").code,
            ProviderRateLimitError("x").code,
            ProviderSchemaError("x").code,
            ProviderTransportError("x").code,
            ProviderTransportError("x", code=ErrorCode.PROVIDER_AUTH).code,
            ProviderTransportError("x", code=ErrorCode.PROVIDER_REJECTED).code,
            ProviderTransportError("x", code=ErrorCode.PROVIDER_TIMEOUT).code,
            ProviderTransportError("x", code=ErrorCode.NETWORK_TRANSIENT).code,
            RetryInProgressError(0).code,
            RunStateError("x").code,
        }
        declared = {v for k, v in vars(ErrorCode).items() if not k.startswith('_')}
        self.assertEqual(raised, declared)

    def test_job_error_auto_retryable(self):
        e1 = JobError(ErrorCode.NETWORK_TRANSIENT, "test")
        self.assertTrue(e1.retryable)
        e2 = JobError(ErrorCode.CUE_INTEGRITY, "test")
        self.assertFalse(e2.retryable)
        e3 = ProviderTransportError("denied", code=ErrorCode.PROVIDER_AUTH, retryable=False)
        self.assertFalse(e3.retryable)
        self.assertEqual(str(e1), f"[{ErrorCode.NETWORK_TRANSIENT}] test")


class TestRetryClassification(unittest.TestCase):
    """Test structured-first classification of provider errors."""

    def test_structured_rate_limits(self):
        self.assertEqual(classify_error(ProviderRateLimitError("slow down")), RATE_LIMIT)
        self.assertEqual(classify_error(ProviderTransportError("x", status_code=429)), RATE_LIMIT)
        self.assertEqual(classify_error(JobError("RESOURCE_EXHAUSTED", "x", retryable=False)), RATE_LIMIT)

    def test_fatal_and_transient(self):
        self.assertEqual(classify_error(
            ProviderTransportError("bad key", code=ErrorCode.PROVIDER_AUTH, retryable=False)), FATAL)
        self.assertEqual(classify_error(CueParseError("bad")), FATAL)
        self.assertEqual(classify_error(ProviderSchemaError("empty")), TRANSIENT)
        self.assertEqual(classify_error(RuntimeError("connection reset")), TRANSIENT)
        self.assertEqual(classify_error(TimeoutError()), TRANSIENT)

    def test_text_fallback(self):
        self.assertEqual(classify_error(RuntimeError("Quota exceeded for project")), RATE_LIMIT)
        self.assertEqual(classify_error(RuntimeError("HTTP 429 Too Many Requests")), RATE_LIMIT)

    def test_declared_retry_after(self):
        self.assertEqual(declared_retry_after(ProviderRateLimitError("x", retry_after=2)), 2.0)
        self.assertEqual(declared_retry_after(RuntimeError("Please retry in 3.5s")), 3.5)
        self.assertEqual(declared_retry_after(RuntimeError("retry after 500ms")), 0.5)
        self.assertIsNone(declared_retry_after(RuntimeError("nope")))

    def test_rate_limit_delay_bounds(self):
        policy = RetryPolicy(jitter=0)
        self.assertEqual(policy.rate_limit_delay(0, None), 2.0)
        self.assertEqual(policy.rate_limit_delay(3, None), 16.0)
        self.assertEqual(policy.rate_limit_delay(10, None), 120.0)
        self.assertEqual(policy.rate_limit_delay(0, 0.2), 1.0)
        self.assertEqual(policy.rate_limit_delay(0, 2), 2.0)
        self.assertEqual(policy.rate_limit_delay(0, 500), 120.0)


class TestConfig(unittest.TestCase):
    """Test JSON config loading and validation."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self.tmpdir.name) / "config.json"

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_defaults(self):
        cfg = AppConfig(self.path)
        self.assertEqual(cfg.chunk_seconds, 600)
        self.assertEqual(cfg.overlap_cues, 2)
        self.assertEqual(cfg.concurrency, 2)

    def test_clamps_saved_values(self):
        self.path.write_text(json.dumps({
            'concurrency': 50, 'chunk_seconds': 'abc', 'overlap_cues': -3,
            'transcription_chunk_seconds': 30, 'transcription_overlap_seconds': 40,
        }))
        cfg = AppConfig(self.path)
        self.assertEqual(cfg.concurrency, MAX_CONCURRENCY)
        self.assertEqual(cfg.chunk_seconds, 600)
        self.assertEqual(cfg.overlap_cues, 0)
        self.assertLess(cfg.get('transcription_overlap_seconds'), cfg.get('transcription_chunk_seconds'))

    def test_set_persists(self):
        cfg = AppConfig(self.path)
        cfg.concurrency = 0
        self.assertEqual(AppConfig(self.path).concurrency, 1)
        cfg.set('target_lang', '  French ')
        self.assertEqual(AppConfig(self.path).target_lang, 'French')

    def test_corrupt_file_falls_back(self):
        self.path.write_text("{not json")
        self.assertEqual(AppConfig(self.path).chunk_seconds, 600)

    def test_retry_policy(self):
        cfg = AppConfig(self.path)
        cfg.set('transient_attempts', 1)
        self.assertEqual(cfg.retry_policy().transient_attempts, 1)


class TestOutputWriter(unittest.TestCase):
    """Test writing merged tracks."""

    def test_sanitize_stem(self):
        self.assertEqual(sanitize_stem('ep: 1/2?'), 'ep_ 1_2_')
        self.assertEqual(sanitize_stem('...'), 'subtitles')

    def test_write_result(self):
        with tempfile.TemporaryDirectory() as tmp:
            result = RunResult(ok=True, vtt=SAMPLE_VTT, srt=SAMPLE_SRT)
            vtt_path, srt_path = write_result(result, Path(tmp) / "out", "episode", "English")
            self.assertEqual(vtt_path.name, "episode.English.vtt")
            self.assertEqual(srt_path.read_text(encoding='utf-8'), SAMPLE_SRT)


class TestProgressSink(unittest.TestCase):
    """Test the bounded progress channel."""

    def test_drops_oldest_when_full(self):
        sink = ProgressSink(maxlen=2)
        for i in range(3):
            sink.publish_message(f"m{i}")
        events = sink.drain()
        self.assertEqual([e.message for e in events], ["m1", "m2"])
        self.assertEqual(sink.dropped, 1)
        self.assertEqual(len(sink), 0)

    def test_observer_errors_are_contained(self):
        sink = ProgressSink()
        seen = []

        def broken(status):
            raise RuntimeError("observer bug")

        sink.on_chunk_updated = broken
        sink.on_progress = seen.append
        with self.assertLogs("subchunker.core.progress", level="ERROR"):
            sink.publish_chunk(ChunkStatus(idx=0, status=ChunkState.OK))
        sink.publish_message("hi")
        self.assertEqual(seen, ["hi"])
        self.assertEqual([e.kind for e in sink.drain()], ["chunk", "message"])


class TestPrompts(unittest.TestCase):
    """Test user prompt layout."""

    def test_sections_in_order(self):
        prompt = build_user_prompt("German", "WEBVTT\n\nnew", "WEBVTT\n\nold",
                                   glossary="cat = Katze", summary="A story")
        self.assertLess(prompt.index("GLOSSARY"), prompt.index("SUMMARY"))
        self.assertLess(prompt.index("SUMMARY"), prompt.index("CONTEXT"))
        self.assertTrue(prompt.endswith("CUES TO TRANSLATE into German:\nWEBVTT\n\nnew"))

    def test_context_is_labelled_as_source(self):
        prompt = build_user_prompt("German", "WEBVTT\n\nnew", "WEBVTT\n\nold")
        context_line = prompt.split("\n", 1)[0]
        self.assertIn("source cues", context_line)
        self.assertNotIn("translated", context_line)

    def test_no_context_section_when_empty(self):
        prompt = build_user_prompt("German", "WEBVTT\n\nnew")
        self.assertTrue(prompt.startswith("CUES TO TRANSLATE into German:"))


class _FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None, headers=None):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text

    def json(self):
        if self._payload is None:
            raise json.JSONDecodeError("no json", self.text, 0)
        return self._payload


class _FakeSession:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    def get(self, url, **kwargs):
        return self.post(url, **kwargs)


def _chat(content):
    return {"choices": [{"message": {"content": content}}], "usage": {"total_tokens": 7}}


class TestHttpProvider(unittest.TestCase):
    """Test HTTP status mapping of the reference provider (no network)."""

    def _provider(self, outcome):
        session = _FakeSession(outcome)
        return HttpProvider(api_key="test-key", base_url="https://example.test/v1", session=session), session

    def test_success(self):
        provider, session = self._provider(_FakeResponse(payload=_chat("WEBVTT\n")))
        resp = provider.generate_sync(GenerateRequest("sys", "user", timeout=30))
        self.assertEqual(resp.text, "WEBVTT\n")
        self.assertEqual(resp.usage, {"total_tokens": 7})
        url, kwargs = session.calls[0]
        self.assertEqual(url, "https://example.test/v1/chat/completions")
        self.assertEqual(kwargs["timeout"][1], 30)
        self.assertEqual(kwargs["json"]["messages"][0], {"role": "system", "content": "sys"})

    def test_rate_limit_carries_retry_after(self):
        provider, _ = self._provider(_FakeResponse(429, text="slow", headers={"Retry-After": "2"}))
        with self.assertRaises(ProviderRateLimitError) as ctx:
            provider.generate_sync(GenerateRequest("", "user"))
        self.assertEqual(ctx.exception.retry_after, 2.0)
        self.assertEqual(ctx.exception.status_code, 429)

    def test_auth_failure_not_retryable(self):
        provider, _ = self._provider(_FakeResponse(401, text="no"))
        with self.assertRaises(ProviderTransportError) as ctx:
            provider.generate_sync(GenerateRequest("", "user"))
        self.assertFalse(ctx.exception.retryable)

    def test_server_error_and_timeout_retryable(self):
        provider, _ = self._provider(_FakeResponse(503, text="busy"))
        with self.assertRaises(ProviderTransportError) as ctx:
            provider.generate_sync(GenerateRequest("", "user"))
        self.assertTrue(ctx.exception.retryable)

        provider, _ = self._provider(requests.exceptions.Timeout())
        with self.assertRaises(ProviderTransportError) as ctx:
            provider.generate_sync(GenerateRequest("", "user"))
        self.assertEqual(ctx.exception.code, ErrorCode.PROVIDER_TIMEOUT)

    def test_empty_content_is_schema_error(self):
        provider, _ = self._provider(_FakeResponse(payload=_chat("   ")))
        with self.assertRaises(ProviderSchemaError):
            provider.generate_sync(GenerateRequest("", "user"))
        provider, _ = self._provider(_FakeResponse(text="<html>"))
        with self.assertRaises(ProviderSchemaError):
            provider.generate_sync(GenerateRequest("", "user"))

    def test_media_ref_in_prompt(self):
        provider, session = self._provider(_FakeResponse(payload=_chat("x")))
        provider.generate_sync(GenerateRequest("", "Transcribe", media_ref="file://a.mp4",
                                               time_range=(8.0, 18.0)))
        content = session.calls[0][1]["json"]["messages"][0]["content"]
        self.assertIn("file://a.mp4", content)
        self.assertIn("8.000s to 18.000s", content)

    def test_verify_api_key(self):
        provider, session = self._provider(_FakeResponse(200))
        self.assertEqual(provider.verify_api_key(), (True, "Key verified"))
        url, kwargs = session.calls[0]
        self.assertEqual(url, "https://example.test/v1/models")
        self.assertEqual(kwargs["headers"], {"Authorization": "Bearer test-key"})

        provider, _ = self._provider(_FakeResponse(401))
        self.assertEqual(provider.verify_api_key(), (False, "Key invalid or rejected"))

        provider, _ = self._provider(_FakeResponse(500))
        self.assertEqual(provider.verify_api_key(), (False, "Unexpected response: 500"))

        provider, _ = self._provider(requests.exceptions.ConnectionError())
        ok, message = provider.verify_api_key()
        self.assertFalse(ok)
        self.assertIn("could not reach", message)

    def test_missing_key(self):
        with unittest.mock.patch.dict("os.environ", {"SUBCHUNKER_API_KEY": ""}):
            with self.assertRaises(ProviderTransportError):
                HttpProvider(api_key=None, session=_FakeSession(None))


if __name__ == "__main__":
    unittest.main()
