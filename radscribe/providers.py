"""Generation-service provider registry.

One place for provider names, CLI aliases, the settings each provider reads,
and what the provider can do.  Used by config.py, llm/client.py and cli.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ConfigField:
    """A setting a provider reads."""

    name: str  # RadscribeSettings attribute, e.g. "anthropic_api_key"
    env_var: str  # e.g. "RADSCRIBE_ANTHROPIC_API_KEY"
    secret: bool = True
    required: bool = True


@dataclass
class ProviderSpec:
    name: str  # Internal name: "anthropic", "openai", "local"
    display_name: str
    aliases: list[str] = field(default_factory=list)
    config_fields: list[ConfigField] = field(default_factory=list)
    default_model: str = ""
    # Native JSON-object response format; otherwise the prompt alone asks for JSON
    supports_json_mode: bool = False
    key_url: str = ""

    def missing_settings(self, settings: object) -> list[ConfigField]:
        """Required fields that are empty on *settings*."""
        return [
            f for f in self.config_fields if f.required and not getattr(settings, f.name, "")
        ]


PROVIDERS: dict[str, ProviderSpec] = {
    "anthropic": ProviderSpec(
        name="anthropic",
        display_name="Claude",
        aliases=["claude"],
        config_fields=[ConfigField("anthropic_api_key", "RADSCRIBE_ANTHROPIC_API_KEY")],
        default_model="claude-sonnet-4-20250514",
        supports_json_mode=False,
        key_url="console.anthropic.com",
    ),
    "openai": ProviderSpec(
        name="openai",
        display_name="ChatGPT",
        aliases=["chatgpt", "gpt"],
        config_fields=[ConfigField("openai_api_key", "RADSCRIBE_OPENAI_API_KEY")],
        default_model="gpt-4o",
        supports_json_mode=True,
        key_url="platform.openai.com",
    ),
    "local": ProviderSpec(
        name="local",
        display_name="Local (Ollama)",
        aliases=["ollama"],
        config_fields=[
            ConfigField("local_url", "RADSCRIBE_LOCAL_URL", secret=False, required=False),
            ConfigField("local_model", "RADSCRIBE_LOCAL_MODEL", secret=False, required=False),
        ],
        default_model="llama3.2:3b",
        supports_json_mode=True,  # Ollama's OpenAI-compatible endpoint
    ),
}


def resolve_provider(name: str) -> str:
    """Resolve a provider alias to its canonical name.

    Raises:
        ValueError: If the provider is not recognised.
    """
    name = name.lower()
    if name in PROVIDERS:
        return name
    for provider_name, spec in PROVIDERS.items():
        if name in spec.aliases:
            return provider_name
    valid = sorted(PROVIDERS.keys())
    aliases = [a for spec in PROVIDERS.values() for a in spec.aliases]
    raise ValueError(
        f"Unknown LLM provider: {name}. Valid providers: {', '.join(valid + aliases)}"
    )


def get_provider_aliases() -> dict[str, str]:
    """Map every alias to its canonical provider name."""
    return {alias: name for name, spec in PROVIDERS.items() for alias in spec.aliases}
