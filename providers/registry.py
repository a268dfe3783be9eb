# providers/registry.py
"""
Provider lookup table and endpoint resolution.

PROVIDERS is a read-only table; nothing here reads the environment, so a
request resolves the same way wherever it is issued.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional

from core.exceptions import MissingConfigurationError
from core.models import ProviderConfig, ProviderFamily, ProviderId


@dataclass(frozen=True)
class ProviderSpec:
    provider: ProviderId
    family: ProviderFamily
    endpoint: Optional[str] = None
    default_model: Optional[str] = None
    long_form_model: Optional[str] = None
    strict_moderation: bool = False


PROVIDERS: Mapping[ProviderId, ProviderSpec] = MappingProxyType({
    ProviderId.GEMINI: ProviderSpec(
        ProviderId.GEMINI,
        ProviderFamily.SCHEMA_NATIVE,
        default_model="gemini-3-flash-preview",
        long_form_model="gemini-3-pro-preview",
    ),
    ProviderId.ALIBABA: ProviderSpec(
        ProviderId.ALIBABA,
        ProviderFamily.MESSAGE_PROTOCOL,
        endpoint="https://dashscope.aliyuncs.com/compatible-mode/v1/chat/completions",
        default_model="qwen-plus",
        strict_moderation=True,
    ),
    ProviderId.VOLCANO: ProviderSpec(
        ProviderId.VOLCANO,
        ProviderFamily.MESSAGE_PROTOCOL,
        # Volcano Ark addresses models by endpoint id, there is no default
        endpoint="https://ark.cn-beijing.volces.com/api/v3/chat/completions",
        strict_moderation=True,
    ),
    ProviderId.CUSTOM: ProviderSpec(
        ProviderId.CUSTOM,
        ProviderFamily.MESSAGE_PROTOCOL,
    ),
})


@dataclass(frozen=True)
class ResolvedProvider:
    """Everything an adapter needs to issue a call."""
    spec: ProviderSpec
    credential: str
    model: str
    endpoint: Optional[str] = None
    max_output_tokens: Optional[int] = None
    model_pinned: bool = True

    @property
    def name(self) -> str:
        return self.spec.provider.value


def resolve(config: ProviderConfig, *, long_form: bool = False) -> ResolvedProvider:
    """
    Resolve endpoint, credential and model for a request.

    Raises MissingConfigurationError naming every absent field. Schema-native
    providers talk through their SDK and need no endpoint.
    """
    spec = PROVIDERS[config.provider]

    endpoint = spec.endpoint
    if config.provider is ProviderId.CUSTOM:
        endpoint = (config.base_url or "").strip() or None

    model = (config.model or "").strip() or None
    pinned = model is not None
    if model is None:
        model = (spec.long_form_model if long_form else None) or spec.default_model

    missing = []
    if spec.family is ProviderFamily.MESSAGE_PROTOCOL and not endpoint:
        missing.append("endpoint")
    if not (config.credential or "").strip():
        missing.append("credential")
    if not model:
        missing.append("model")
    if missing:
        raise MissingConfigurationError(spec.provider.value, tuple(missing))

    return ResolvedProvider(
        spec=spec,
        credential=config.credential.strip(),
        model=model,
        endpoint=endpoint,
        max_output_tokens=config.max_output_tokens,
        model_pinned=pinned,
    )


def provider_table() -> list:
    """Public view of the lookup table (no credentials involved)."""
    return [
        {
            "provider": spec.provider.value,
            "family": spec.family.value,
            "endpoint": spec.endpoint,
            "default_model": spec.default_model,
            "long_form_model": spec.long_form_model,
            "strict_moderation": spec.strict_moderation,
        }
        for spec in PROVIDERS.values()
    ]
