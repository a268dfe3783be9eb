# tests/test_registry.py
import pytest

from core.exceptions import ConfigurationError, MissingConfigurationError
from core.models import ProviderConfig, ProviderFamily, ProviderId
from providers.base import MODERATION_DIRECTIVE, shape_system_instruction
from providers.registry import PROVIDERS, provider_table, resolve


def test_named_providers_use_well_known_endpoints():
    resolved = resolve(ProviderConfig(provider="alibaba", credential="sk"))
    assert resolved.endpoint == "https://dashscope.aliyuncs.com/compatible-mode/v1/chat/completions"
    assert resolved.model == "qwen-plus"
    assert not resolved.model_pinned

    resolved = resolve(ProviderConfig(provider=ProviderId.VOLCANO, credential="ark", model="ep-2024"))
    assert resolved.endpoint == "https://ark.cn-beijing.volces.com/api/v3/chat/completions"
    assert resolved.model == "ep-2024"
    assert resolved.model_pinned


def test_named_provider_ignores_base_url():
    config = ProviderConfig(provider=ProviderId.ALIBABA, credential="sk", base_url="http://elsewhere")
    assert resolve(config).endpoint == PROVIDERS[ProviderId.ALIBABA].endpoint


def test_gemini_defaults_and_long_form_model():
    config = ProviderConfig(provider=ProviderId.GEMINI, credential="k")
    assert resolve(config).model == "gemini-3-flash-preview"
    assert resolve(config, long_form=True).model == "gemini-3-pro-preview"
    assert resolve(config).endpoint is None


def test_custom_requires_base_url_and_model():
    with pytest.raises(MissingConfigurationError) as info:
        resolve(ProviderConfig(provider=ProviderId.CUSTOM, credential="k"))

    assert info.value.missing == ("endpoint", "model")
    assert info.value.provider == "custom"


def test_missing_credential():
    with pytest.raises(ConfigurationError) as info:
        resolve(ProviderConfig(provider=ProviderId.ALIBABA, credential="   "))

    assert info.value.missing == ("credential",)
    assert "credential" in str(info.value)


def test_volcano_has_no_default_model():
    with pytest.raises(MissingConfigurationError) as info:
        resolve(ProviderConfig(provider=ProviderId.VOLCANO, credential="k"))
    assert info.value.missing == ("model",)


def test_unknown_provider_string_is_rejected():
    with pytest.raises(ConfigurationError) as info:
        ProviderConfig(provider="openrouter", credential="k")

    assert "openrouter" in str(info.value)
    assert info.value.__cause__ is None


def test_families():
    assert PROVIDERS[ProviderId.GEMINI].family is ProviderFamily.SCHEMA_NATIVE
    assert {p for p, s in PROVIDERS.items() if s.family is ProviderFamily.MESSAGE_PROTOCOL} == {
        ProviderId.ALIBABA, ProviderId.VOLCANO, ProviderId.CUSTOM,
    }


def test_table_is_read_only():
    with pytest.raises(TypeError):
        PROVIDERS[ProviderId.CUSTOM] = PROVIDERS[ProviderId.GEMINI]


def test_moderation_directive_only_for_strict_providers():
    alibaba = PROVIDERS[ProviderId.ALIBABA]
    custom = PROVIDERS[ProviderId.CUSTOM]

    assert shape_system_instruction(alibaba, None) == MODERATION_DIRECTIVE
    assert shape_system_instruction(alibaba, "Be terse.") == "Be terse.\n\n" + MODERATION_DIRECTIVE
    assert shape_system_instruction(custom, "Be terse.") == "Be terse."


def test_provider_table():
    rows = {row["provider"]: row for row in provider_table()}
    assert set(rows) == {"gemini", "alibaba", "volcano", "custom"}
    assert rows["gemini"]["family"] == "schema_native"
    assert rows["volcano"]["default_model"] is None
    assert "credential" not in rows["alibaba"]
