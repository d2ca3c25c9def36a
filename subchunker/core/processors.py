"""
Chunk processors.
A processor builds the provider payload for one chunk, calls the provider
once and turns the answer into cues relative to the chunk's base offset.
Retries, timeouts and status bookkeeping belong to the job runner.
"""

import logging
from pathlib import Path
from typing import Callable, Optional, Union

from subchunker.core.constants import (
    DEFAULT_TARGET_LANG, DEFAULT_TEMPERATURE, WARN_EMPTY_OUTPUT, WARN_LOOPING,
)
from subchunker.core.cue_codec import parse_cues, parse_vtt, serialize_vtt
from subchunker.core.error_codes import CueParseError, ProviderSchemaError
from subchunker.core.models import ChunkDescriptor, ChunkOutput, Cue
from subchunker.core.output_repair import auto_repair, cue_warnings, detect_looping, snap_timecodes
from subchunker.core.prompts import PROMPT_TRANSCRIBE, build_user_prompt, system_prompt
from subchunker.core.provider import AudioProvider, GenerateRequest, Provider

logger = logging.getLogger(__name__)


def read_model_vtt(raw: str) -> tuple[list[Cue], list[str]]:
    """
    Repair and parse subtitle text produced by a model.
    Empty or unparseable output raises ProviderSchemaError so it is retried.
    """
    if not raw.strip():
        raise ProviderSchemaError(WARN_EMPTY_OUTPUT)

    warnings = []
    if detect_looping(raw):
        warnings.append(WARN_LOOPING)

    repaired, repair_warnings = auto_repair(raw)
    warnings.extend(repair_warnings)
    try:
        cues = parse_vtt(repaired)
    except CueParseError as e:
        raise ProviderSchemaError(f"Unparseable model output: {e.message}") from e

    if not any(c.text.strip() for c in cues):
        raise ProviderSchemaError(WARN_EMPTY_OUTPUT)

    warnings.extend(cue_warnings(cues))
    return cues, warnings


class ChunkProcessor:
    """Base class; subclasses implement process()."""

    def describe(self, descriptor: ChunkDescriptor) -> tuple[str, str]:
        """(chunk source text, context text) kept on the chunk status for inspection."""
        return "", ""

    def check_override(self, text: str):
        """Reject unusable override text before a retry starts."""

    async def process(self, provider, descriptor: ChunkDescriptor,
                      override_text: Optional[str] = None,
                      timeout: Optional[float] = None) -> ChunkOutput:
        raise NotImplementedError


class TranslationProcessor(ChunkProcessor):
    """Translates the new cues of a cue-driven chunk, using its context cues as reference."""

    def __init__(self, target_lang: str = DEFAULT_TARGET_LANG,
                 glossary: str | None = None, summary: str | None = None,
                 custom_prompt: str | None = None,
                 temperature: float = DEFAULT_TEMPERATURE):
        self.target_lang = target_lang
        self.glossary = glossary
        self.summary = summary
        self.custom_prompt = custom_prompt
        self.temperature = temperature

    def describe(self, descriptor: ChunkDescriptor) -> tuple[str, str]:
        context = descriptor.context_cues
        return serialize_vtt(descriptor.new_cues), serialize_vtt(context) if context else ""

    def check_override(self, text: str):
        parse_cues(text)

    async def process(self, provider: Provider, descriptor: ChunkDescriptor,
                      override_text: Optional[str] = None,
                      timeout: Optional[float] = None) -> ChunkOutput:
        chunk_vtt, context_vtt = self.describe(descriptor)
        source = descriptor.new_cues
        if override_text is not None:
            source = parse_cues(override_text)
            chunk_vtt = serialize_vtt(source)

        request = GenerateRequest(
            system_prompt=system_prompt(self.custom_prompt),
            user_prompt=build_user_prompt(self.target_lang, chunk_vtt, context_vtt,
                                          glossary=self.glossary, summary=self.summary),
            temperature=self.temperature,
            timeout=timeout,
        )
        response = await provider.generate(request)

        cues, warnings = read_model_vtt(response.text)
        # translated cues must keep the source timing
        cues, snap_warnings, error = snap_timecodes(source, cues)
        warnings.extend(snap_warnings)
        if error:
            logger.warning("Chunk %d: %s", descriptor.idx, error)
            return ChunkOutput(cues=[], raw_output=response.text, warnings=warnings, failure=error)
        return ChunkOutput(cues=cues, raw_output=response.text, warnings=warnings)


class TranscriptionProcessor(ChunkProcessor):
    """Asks a media-capable model to transcribe one time window of media_ref."""

    def __init__(self, media_ref: str, prompt: str = PROMPT_TRANSCRIBE,
                 temperature: float = DEFAULT_TEMPERATURE):
        self.media_ref = media_ref
        self.prompt = prompt
        self.temperature = temperature

    async def process(self, provider: Provider, descriptor: ChunkDescriptor,
                      override_text: Optional[str] = None,
                      timeout: Optional[float] = None) -> ChunkOutput:
        request = GenerateRequest(
            system_prompt="",
            user_prompt=override_text or self.prompt,
            temperature=self.temperature,
            media_ref=self.media_ref,
            time_range=descriptor.time_range,
            timeout=timeout,
        )
        response = await provider.generate(request)
        cues, warnings = read_model_vtt(response.text)
        return ChunkOutput(cues=cues, raw_output=response.text, warnings=warnings)


class AudioTranscriptionProcessor(ChunkProcessor):
    """
    Transcribes pre-cut audio segments, one file per chunk.
    segments maps chunk idx to a path, or is a callable doing the same.
    """

    def __init__(self, segments: Union[dict[int, Path], Callable[[ChunkDescriptor], Path]],
                 language: str | None = None, model: str | None = None):
        self.segments = segments
        self.language = language
        self.model = model

    def _segment_path(self, descriptor: ChunkDescriptor) -> Path:
        if callable(self.segments):
            return Path(self.segments(descriptor))
        return Path(self.segments[descriptor.idx])

    async def process(self, provider: AudioProvider, descriptor: ChunkDescriptor,
                      override_text: Optional[str] = None,
                      timeout: Optional[float] = None) -> ChunkOutput:
        text = await provider.transcribe_audio(
            self._segment_path(descriptor),
            language=self.language,
            duration_hint=descriptor.span,
            model=self.model,
            timeout=timeout,
        )
        cues, warnings = read_model_vtt(text)
        return ChunkOutput(cues=cues, raw_output=text, warnings=warnings)
