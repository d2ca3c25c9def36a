"""
Standardised error handling for SubChunker.
"""

from subchunker.core.constants import ErrorCode, RETRYABLE_ERRORS


class JobError(Exception):
    """Raised when a job encounters a known error condition."""

    def __init__(self, code: str, message: str, retryable: bool | None = None):
        self.code = code
        self.message = message
        # auto-detect retryable from code if not explicitly set
        self.retryable = retryable if retryable is not None else (code in RETRYABLE_ERRORS)
        super().__init__(f"[{code}] {message}")


# ── Cue input errors ──────────────────────────────────────────────────

class CueParseError(JobError):
    """Subtitle text could not be read as Format A (WebVTT) or Format B (SRT)."""

    def __init__(self, message: str, line_number: int | None = None, line: str | None = None):
        self.line_number = line_number
        self.line = line
        super().__init__(ErrorCode.CUE_PARSE, message)


class TimecodeParseError(CueParseError):
    """A timing line or one of its timecodes is malformed."""

    def __init__(self, line_number: int, line: str):
        super().__init__(
            f"Failed to parse timecodes on line {line_number}: {line}",
            line_number=line_number,
            line=line,
        )


class CueIntegrityError(JobError):
    """A cue sequence breaks ordering or duration rules."""

    def __init__(self, message: str, cue_position: int | None = None):
        self.cue_position = cue_position
        super().__init__(ErrorCode.CUE_INTEGRITY, message)


# ── Provider errors ───────────────────────────────────────────────────

class ProviderError(JobError):
    """Base class for failures reported by (or while reaching) a model provider."""

    def __init__(self, code: str, message: str, status_code: int | None = None,
                 retry_after: float | None = None, retryable: bool | None = None):
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(code, message, retryable=retryable)


class ProviderRateLimitError(ProviderError):
    def __init__(self, message: str, retry_after: float | None = None,
                 status_code: int | None = 429):
        super().__init__(ErrorCode.PROVIDER_RATE_LIMIT, message,
                         status_code=status_code, retry_after=retry_after)


class ProviderTransportError(ProviderError):
    def __init__(self, message: str, status_code: int | None = None,
                 code: str = ErrorCode.PROVIDER_TRANSPORT, retryable: bool | None = None):
        super().__init__(code, message, status_code=status_code, retryable=retryable)


class ProviderSchemaError(ProviderError):
    """The provider answered, but the answer is empty or unusable."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.PROVIDER_SCHEMA, message)


# ── Run control errors ────────────────────────────────────────────────

class RetryInProgressError(JobError):
    def __init__(self, idx: int):
        self.idx = idx
        super().__init__(ErrorCode.RETRY_IN_PROGRESS, f"Chunk {idx} is already being retried")


class RunStateError(JobError):
    def __init__(self, message: str):
        super().__init__(ErrorCode.RUN_STATE, message)


def is_retryable(code: str) -> bool:
    return code in RETRYABLE_ERRORS
