"""Tests for the generation-service provider registry."""

from __future__ import annotations

import pytest

from radscribe.config import RadscribeSettings, load_settings
from radscribe.providers import PROVIDERS, get_provider_aliases, resolve_provider

# ---------------------------------------------------------------------------
# Provider registry tests
# ---------------------------------------------------------------------------


class TestProviderSpec:
    def test_anthropic_spec(self) -> None:
        spec = PROVIDERS["anthropic"]
        assert spec.display_name == "Claude"
        assert "claude" in spec.aliases
        assert spec.supports_json_mode is False

    def test_openai_spec(self) -> None:
        spec = PROVIDERS["openai"]
        assert spec.display_name == "ChatGPT"
        assert {"chatgpt", "gpt"} <= set(spec.aliases)
        assert spec.default_model == "gpt-4o"
        assert spec.supports_json_mode is True

    def test_local_spec(self) -> None:
        spec = PROVIDERS["local"]
        assert "ollama" in spec.aliases
        assert spec.key_url == ""  # no key needed
        assert all(not f.required for f in spec.config_fields)


class TestResolveProvider:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("anthropic", "anthropic"),
            ("Claude", "anthropic"),
            ("chatgpt", "openai"),
            ("GPT", "openai"),
            ("ollama", "local"),
            ("local", "local"),
        ],
    )
    def test_names_and_aliases(self, name: str, expected: str) -> None:
        assert resolve_provider(name) == expected

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError, match="Unknown LLM provider: gemini"):
            resolve_provider("gemini")

    def test_alias_map(self) -> None:
        aliases = get_provider_aliases()
        assert aliases["claude"] == "anthropic"
        assert aliases["ollama"] == "local"
        assert "anthropic" not in aliases


class TestMissingSettings:
    def _settings(self, **kwargs: object) -> RadscribeSettings:
        return RadscribeSettings(_env_file=None, **kwargs)  # type: ignore[call-arg, arg-type]

    def test_missing_key_reported(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("RADSCRIBE_OPENAI_API_KEY", raising=False)
        missing = PROVIDERS["openai"].missing_settings(self._settings())
        assert [f.env_var for f in missing] == ["RADSCRIBE_OPENAI_API_KEY"]

    def test_key_present(self) -> None:
        settings = self._settings(anthropic_api_key="sk-ant-test")
        assert PROVIDERS["anthropic"].missing_settings(settings) == []

    def test_local_never_missing(self) -> None:
        assert PROVIDERS["local"].missing_settings(self._settings(local_url="")) == []


class TestLoadSettingsAliases:
    @pytest.mark.parametrize(
        ("alias", "expected"), [("claude", "anthropic"), ("chatgpt", "openai"), ("ollama", "local")]
    )
    def test_alias_normalised(self, alias: str, expected: str) -> None:
        assert load_settings(llm_provider=alias).llm_provider == expected

    def test_canonical_name_unchanged(self) -> None:
        assert load_settings(llm_provider="OpenAI").llm_provider == "openai"
