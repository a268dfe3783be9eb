# core/models.py
"""Gateway data model. Everything here is immutable once built."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from core.exceptions import ConfigurationError


class ProviderId(str, Enum):
    GEMINI = "gemini"
    ALIBABA = "alibaba"
    VOLCANO = "volcano"
    CUSTOM = "custom"


class ProviderFamily(str, Enum):
    SCHEMA_NATIVE = "schema_native"
    MESSAGE_PROTOCOL = "message_protocol"


class RequestState(str, Enum):
    IDLE = "idle"
    DISPATCHED = "dispatched"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (RequestState.COMPLETED, RequestState.FAILED, RequestState.CANCELLED)


@dataclass(frozen=True)
class ProviderConfig:
    """
    Per-request provider selection supplied by the caller.

    base_url is only consulted for ProviderId.CUSTOM; named providers use
    their well-known endpoint.
    """
    provider: ProviderId
    credential: Optional[str] = None
    model: Optional[str] = None
    base_url: Optional[str] = None
    max_output_tokens: Optional[int] = None

    def __post_init__(self):
        # Accept plain strings ("alibaba") from callers and config files
        if not isinstance(self.provider, ProviderId):
            try:
                provider = ProviderId(str(self.provider).lower())
            except ValueError:
                known = ", ".join(p.value for p in ProviderId)
                raise ConfigurationError(f"Unknown provider {self.provider!r} (expected one of: {known})") from None
            object.__setattr__(self, "provider", provider)


@dataclass(frozen=True)
class GenerationRequest:
    task: str
    prompt: str
    provider: ProviderId
    model: str
    system_instruction: Optional[str] = None
    max_output_tokens: Optional[int] = None
    temperature: float = 0.7
    schema: Optional[Dict[str, Any]] = None
    thinking_budget: Optional[int] = None


@dataclass(frozen=True)
class UsageDelta:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class StreamToken:
    text: str


StreamEvent = Union[StreamToken, UsageDelta]


@dataclass(frozen=True)
class Completion:
    """One-shot adapter output."""
    text: str
    usage: Tuple[UsageDelta, ...] = ()


@dataclass(frozen=True)
class TextResult:
    """
    One-shot gateway result.

    value holds the parsed payload for structured tasks and is None for
    free-text tasks.
    """
    text: str
    usage: Tuple[UsageDelta, ...] = ()
    value: Any = None
    provider: Optional[str] = None
    model: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)
