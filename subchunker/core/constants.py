"""
Shared constants for SubChunker.
Single source of truth — imported by every other module.
"""

import pathlib

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "SubChunker"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

DEFAULT_OUTPUT_ROOT = HOME / "Downloads" / "SubChunker"
APP_CONFIG_DIR = HOME / ".config" / "subchunker"
APP_LOG_DIR = HOME / ".cache" / "subchunker" / "logs"
CONFIG_PATH = APP_CONFIG_DIR / "config.json"

# ── Environment ───────────────────────────────────────────────────────
API_KEY_ENV = "SUBCHUNKER_API_KEY"
BASE_URL_ENV = "SUBCHUNKER_BASE_URL"

# ── Chunk status ──────────────────────────────────────────────────────
class ChunkState:
    PENDING = "pending"
    PROCESSING = "processing"
    OK = "ok"
    FAILED = "failed"

# ── Chunk warnings ────────────────────────────────────────────────────
WARN_CANCELLED = "Cancelled"
WARN_EMPTY_OUTPUT = "Model returned empty subtitle text for this chunk."
WARN_LOOPING = "Model output looks like a repetition loop"
WARN_MANUAL_EDIT = "Manually edited"

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    # Non-retryable
    CUE_PARSE = "ERR_CUE_PARSE"
    CUE_INTEGRITY = "ERR_CUE_INTEGRITY"
    PROVIDER_AUTH = "ERR_PROVIDER_AUTH"
    PROVIDER_REJECTED = "ERR_PROVIDER_REJECTED"
    RETRY_IN_PROGRESS = "ERR_RETRY_IN_PROGRESS"
    RUN_STATE = "ERR_RUN_STATE"

    # Retryable
    PROVIDER_RATE_LIMIT = "ERR_PROVIDER_RATE_LIMIT"
    PROVIDER_TIMEOUT = "ERR_PROVIDER_TIMEOUT"
    PROVIDER_TRANSPORT = "ERR_PROVIDER_TRANSPORT"
    PROVIDER_SCHEMA = "ERR_PROVIDER_SCHEMA"
    NETWORK_TRANSIENT = "ERR_NETWORK_TRANSIENT"

RETRYABLE_ERRORS = {
    ErrorCode.PROVIDER_RATE_LIMIT,
    ErrorCode.PROVIDER_TIMEOUT,
    ErrorCode.PROVIDER_TRANSPORT,
    ErrorCode.PROVIDER_SCHEMA,
    ErrorCode.NETWORK_TRANSIENT,
}

# Codes that providers use for quota exhaustion
RATE_LIMIT_CODES = {
    ErrorCode.PROVIDER_RATE_LIMIT,
    "RESOURCE_EXHAUSTED",
    "rate_limit_exceeded",
    "insufficient_quota",
}

# ── Chunk planning defaults ───────────────────────────────────────────
DEFAULT_CHUNK_SECONDS = 600           # 10 minutes of cues per translation chunk
DEFAULT_OVERLAP_CUES = 2
TRANSCRIPTION_CHUNK_SECONDS = 600
TRANSCRIPTION_OVERLAP_SECONDS = 20
MIN_CHUNK_SECONDS = 30
MAX_CHUNK_SECONDS = 7200

# ── Concurrency ───────────────────────────────────────────────────────
DEFAULT_CONCURRENCY = 2
MAX_CONCURRENCY = 10
TRANSCRIPTION_MAX_CONCURRENCY = 4

# ── Retry policy ──────────────────────────────────────────────────────
RATE_LIMIT_MAX_ATTEMPTS = 5           # first call + 4 retries
RATE_LIMIT_BASE_DELAY = 2.0           # seconds, doubles each retry
RATE_LIMIT_MIN_DELAY = 1.0
RATE_LIMIT_MAX_DELAY = 120.0
RATE_LIMIT_JITTER = 0.1               # +/- 10%
TRANSIENT_MAX_ATTEMPTS = 3
TRANSIENT_RETRY_DELAY = 1.0

# ── Timeouts ──────────────────────────────────────────────────────────
CHUNK_TIMEOUT_FLOOR_SEC = 120
CHUNK_TIMEOUT_PER_MEDIA_SEC = 1.0     # one second of wait per second of media
CHUNK_TIMEOUT_SLACK_SEC = 60
HTTP_CONNECT_TIMEOUT_SEC = 10

# ── Model defaults ────────────────────────────────────────────────────
DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TRANSCRIBE_MODEL = "whisper-1"
DEFAULT_TEMPERATURE = 0.2
DEFAULT_TARGET_LANG = "English"

# ── Output sanity thresholds ──────────────────────────────────────────
MAX_LINES_PER_CUE = 3
LOOP_LINE_REPEATS = 10
LOOP_TOKEN_REPEATS = 50
LOOP_TRIGRAM_REPEATS = 20

# ── Progress ──────────────────────────────────────────────────────────
PROGRESS_QUEUE_SIZE = 256
