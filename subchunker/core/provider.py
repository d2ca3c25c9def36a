"""
Generative-model provider contract.
The runner only ever talks to a provider through these types.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable


@dataclass
class GenerateRequest:
    system_prompt: str
    user_prompt: str
    temperature: float = 0.2
    media_ref: Optional[str] = None
    time_range: Optional[tuple[float, Optional[float]]] = None
    timeout: Optional[float] = None


@dataclass
class GenerateResponse:
    text: str
    usage: dict = field(default_factory=dict)


@runtime_checkable
class Provider(Protocol):
    """
    generate() raises ProviderRateLimitError, ProviderTransportError or
    ProviderSchemaError; anything else is treated as a transient failure.
    """

    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        ...


@runtime_checkable
class AudioProvider(Protocol):
    async def transcribe_audio(self, path: Path, language: Optional[str] = None,
                               duration_hint: Optional[float] = None,
                               model: Optional[str] = None,
                               timeout: Optional[float] = None) -> str:
        """Return Format A text for one audio segment, times relative to its start."""
        ...
