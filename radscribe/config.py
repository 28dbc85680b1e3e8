"""Application settings loaded from environment variables or .env."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_env_files() -> list[Path]:
    """Find .env files to load: the package directory, then upward from CWD.

    pydantic-settings gives the last file priority, so a project-local .env
    overrides one next to an editable install.
    """
    candidates: list[Path] = []

    pkg_env = Path(__file__).resolve().parent.parent / ".env"
    if pkg_env.is_file():
        candidates.append(pkg_env)

    cwd = Path.cwd().resolve()
    for parent in [cwd, *cwd.parents]:
        env_path = parent / ".env"
        if env_path.is_file() and env_path not in candidates:
            candidates.append(env_path)
            break  # stop at first match going upward

    return candidates


class RadscribeSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="RADSCRIBE_",
        env_file=_find_env_files(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Generation service
    llm_provider: str = "anthropic"  # "anthropic", "openai", or "local"
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    llm_model: str = "claude-sonnet-4-20250514"
    llm_max_tokens: int = 2000

    # Local LLM (Ollama or any OpenAI-compatible server)
    local_url: str = "http://localhost:11434/v1"
    local_model: str = "llama3.2:3b"

    # Report generation
    strictness: str = "standard"  # "relaxed", "standard", or "strict"
    generation_timeout_seconds: float = 120.0
    generation_max_retries: int = Field(default=1, ge=0)

    # Knowledge retrieval
    retrieval_url: str = ""  # empty disables the HTTP vector search
    retrieval_api_key: str = ""
    retrieval_timeout_seconds: float = 10.0

    # Templates
    templates_dir: Path | None = None  # extra YAML templates, override bundled ones

    # Speech-to-text
    whisper_model: str = "whisper-1"
    whisper_language: str = "en"

    # PII
    pii_custom_names: list[str] = Field(default_factory=list)

    # Storage and credits
    db_url: str = ""  # empty means <output_dir>/.radscribe/radscribe.db
    default_org_id: str = "default"
    credits_granted: float = 1000.0

    output_dir: Path = Path("output")


def load_settings(**overrides: object) -> RadscribeSettings:
    """Load settings with optional CLI overrides.

    Normalises LLM provider aliases (claude → anthropic, chatgpt/gpt → openai,
    ollama → local).
    """
    # Import here to avoid circular import at module load time
    from radscribe.providers import get_provider_aliases

    if "llm_provider" in overrides and isinstance(overrides["llm_provider"], str):
        provider = overrides["llm_provider"].lower()
        aliases = get_provider_aliases()
        overrides["llm_provider"] = aliases.get(provider, provider)

    return RadscribeSettings(**overrides)  # type: ignore[arg-type]
