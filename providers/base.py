# providers/base.py
"""Provider adapter interface."""

from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from core.models import Completion, GenerationRequest, StreamEvent
from providers.registry import ResolvedProvider, ProviderSpec

MODERATION_DIRECTIVE = (
    "Content policy: keep all output suitable for general audiences. Depict violence, "
    "crime and romance without graphic, explicit or politically sensitive detail."
)


def shape_system_instruction(spec: ProviderSpec, system: Optional[str]) -> Optional[str]:
    """
    Provider-specific request shaping: backends with strict moderation get an
    extra directive so benign fiction is less likely to be rejected outright.
    """
    if not spec.strict_moderation:
        return system
    if not system:
        return MODERATION_DIRECTIVE
    return f"{system}\n\n{MODERATION_DIRECTIVE}"


class ProviderAdapter(ABC):
    """
    One adapter per backend family. Adapters hold no per-request state;
    everything request-specific arrives through the call arguments.
    """

    family = None

    @abstractmethod
    async def complete_once(self, request: GenerationRequest, provider: ResolvedProvider) -> Completion:
        """Issue one request and return the complete text."""

    @abstractmethod
    async def complete_streaming(
        self, request: GenerationRequest, provider: ResolvedProvider
    ) -> AsyncIterator[StreamEvent]:
        """
        Open a stream and return its event iterator.

        Awaiting this performs the request and fails on a bad status, so it
        can be retried. The returned iterator is lazy and single-use.
        """

    async def aclose(self) -> None:
        pass
