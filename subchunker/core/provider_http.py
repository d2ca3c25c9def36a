"""
OpenAI-compatible HTTP provider.
Chat completions for translation / media transcription and the audio
transcriptions endpoint for pre-cut segments. Blocking requests calls run in
a worker thread so the event loop keeps serving other chunks.
"""

import os
import asyncio
import logging
from pathlib import Path
from typing import Optional

import requests

from subchunker.core.error_codes import (
    ProviderRateLimitError, ProviderTransportError, ProviderSchemaError,
)
from subchunker.core.constants import (
    ErrorCode, API_KEY_ENV, BASE_URL_ENV, DEFAULT_BASE_URL, DEFAULT_MODEL,
    DEFAULT_TRANSCRIBE_MODEL, CHUNK_TIMEOUT_FLOOR_SEC, HTTP_CONNECT_TIMEOUT_SEC,
)
from subchunker.core.provider import GenerateRequest, GenerateResponse

logger = logging.getLogger(__name__)


def _parse_retry_after(resp: requests.Response) -> Optional[float]:
    value = resp.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        # HTTP-date form is not worth parsing; fall back to backoff
        return None


def _raise_for_status(resp: requests.Response):
    if resp.status_code == 200:
        return

    # Sanitize error message (never log API key)
    body = resp.text[:300] if resp.text else "No response body"

    if resp.status_code == 429:
        raise ProviderRateLimitError(f"Provider rate limited (429): {body}",
                                     retry_after=_parse_retry_after(resp))
    if resp.status_code in (401, 403):
        raise ProviderTransportError(f"Provider rejected credentials ({resp.status_code})",
                                     status_code=resp.status_code,
                                     code=ErrorCode.PROVIDER_AUTH, retryable=False)
    if resp.status_code in (408, 504):
        raise ProviderTransportError(f"Provider timed out ({resp.status_code})",
                                     status_code=resp.status_code,
                                     code=ErrorCode.PROVIDER_TIMEOUT)
    if resp.status_code >= 500:
        raise ProviderTransportError(f"Provider returned {resp.status_code}: {body}",
                                     status_code=resp.status_code)
    raise ProviderTransportError(f"Provider returned {resp.status_code}: {body}",
                                 status_code=resp.status_code,
                                 code=ErrorCode.PROVIDER_REJECTED, retryable=False)


class HttpProvider:
    """Provider backed by an OpenAI-compatible REST API."""

    def __init__(self, api_key: str | None = None, base_url: str | None = None,
                 model: str = DEFAULT_MODEL, session: requests.Session | None = None):
        self.api_key = api_key or os.environ.get(API_KEY_ENV, "")
        self.base_url = (base_url or os.environ.get(BASE_URL_ENV) or DEFAULT_BASE_URL).rstrip('/')
        self.model = model
        self.session = session or requests.Session()
        if not self.api_key:
            raise ProviderTransportError(f"No API key configured (set {API_KEY_ENV})",
                                         code=ErrorCode.PROVIDER_AUTH, retryable=False)

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}"}

    def verify_api_key(self) -> tuple[bool, str]:
        """
        Verify the API key with a lightweight request.
        Returns (success: bool, message: str).
        """
        try:
            resp = self.session.get(f"{self.base_url}/models", headers=self._headers(),
                                    timeout=HTTP_CONNECT_TIMEOUT_SEC)
        except requests.exceptions.ConnectionError:
            return False, "Network error, could not reach the provider"
        except requests.exceptions.Timeout:
            return False, "Network error, request timed out"
        except requests.exceptions.RequestException as e:
            return False, f"Network error: {e}"

        if resp.status_code == 200:
            return True, "Key verified"
        if resp.status_code in (401, 403):
            return False, "Key invalid or rejected"
        return False, f"Unexpected response: {resp.status_code}"

    def _post(self, path: str, timeout: float, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            return self.session.post(url, headers=self._headers(),
                                     timeout=(HTTP_CONNECT_TIMEOUT_SEC, timeout), **kwargs)
        except requests.exceptions.Timeout:
            raise ProviderTransportError("Provider request timed out",
                                         code=ErrorCode.PROVIDER_TIMEOUT)
        except requests.exceptions.ConnectionError:
            raise ProviderTransportError("Network error connecting to provider",
                                         code=ErrorCode.NETWORK_TRANSIENT)
        except requests.exceptions.RequestException as e:
            raise ProviderTransportError(f"Provider request failed: {e}")

    # ── Chat completions ──────────────────────────────────────────────

    def _build_messages(self, request: GenerateRequest) -> list[dict]:
        user_prompt = request.user_prompt
        if request.media_ref:
            start, end = request.time_range or (0.0, None)
            span = f"{start:.3f}s to {'end' if end is None else f'{end:.3f}s'}"
            user_prompt = f"Media: {request.media_ref}\nSegment: {span}\n\n{user_prompt}"
        messages = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": user_prompt})
        return messages

    def generate_sync(self, request: GenerateRequest) -> GenerateResponse:
        payload = {
            "model": self.model,
            "messages": self._build_messages(request),
            "temperature": request.temperature,
        }
        resp = self._post("/chat/completions", request.timeout or CHUNK_TIMEOUT_FLOOR_SEC,
                          json=payload)
        _raise_for_status(resp)

        try:
            data = resp.json()
        except ValueError:
            raise ProviderSchemaError("Failed to parse provider response JSON")

        try:
            text = data["choices"][0]["message"]["content"] or ""
        except (IndexError, KeyError, TypeError):
            raise ProviderSchemaError("Provider response has no message content")
        if not text.strip():
            raise ProviderSchemaError("Provider returned empty content")

        return GenerateResponse(text=text, usage=data.get("usage") or {})

    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        return await asyncio.to_thread(self.generate_sync, request)

    # ── Audio transcriptions ──────────────────────────────────────────

    def transcribe_audio_sync(self, path: Path, language: Optional[str] = None,
                              duration_hint: Optional[float] = None,
                              model: Optional[str] = None,
                              timeout: Optional[float] = None) -> str:
        data = {
            "model": model or DEFAULT_TRANSCRIBE_MODEL,
            "response_format": "vtt",
        }
        if language:
            data["language"] = language

        if timeout is None:
            # Adaptive timeout: ~1s per second of audio, minimum 120s
            timeout = max(CHUNK_TIMEOUT_FLOOR_SEC, int(duration_hint or 0) + 60)

        with open(path, 'rb') as f:
            resp = self._post("/audio/transcriptions", timeout,
                              data=data, files={"file": (path.name, f)})
        _raise_for_status(resp)

        if not resp.text.strip():
            raise ProviderSchemaError("Provider returned an empty transcript")
        return resp.text

    async def transcribe_audio(self, path: Path, language: Optional[str] = None,
                               duration_hint: Optional[float] = None,
                               model: Optional[str] = None,
                               timeout: Optional[float] = None) -> str:
        return await asyncio.to_thread(self.transcribe_audio_sync, path, language,
                                       duration_hint, model, timeout)
