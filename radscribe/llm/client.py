"""Multi-provider client for the external generation service."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from radscribe.config import RadscribeSettings
from radscribe.errors import GenerationTransportError
from radscribe.providers import PROVIDERS

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.3


@dataclass(frozen=True)
class GenerationResult:
    content: str
    input_tokens: int = 0
    output_tokens: int = 0


class LLMUsageTracker:
    """Accumulates token usage across calls made by one client.

    Safe to share across concurrent asyncio tasks (single-threaded event loop).
    """

    def __init__(self) -> None:
        self.input_tokens: int = 0
        self.output_tokens: int = 0
        self.calls: int = 0

    def record(self, input_tokens: int, output_tokens: int) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.calls += 1

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


def _is_transport_error(exc: Exception) -> bool:
    """Timeouts, connection failures and 5xx answers from either SDK."""
    import anthropic
    import httpx
    import openai

    # APITimeoutError subclasses APIConnectionError in both SDKs
    connection_errors = (
        httpx.TransportError,
        asyncio.TimeoutError,
        anthropic.APIConnectionError,
        openai.APIConnectionError,
    )
    if isinstance(exc, connection_errors):
        return True
    status = getattr(exc, "status_code", None)
    return isinstance(status, int) and (status >= 500 or status == 429)


class GenerationClient:
    """Sends one system/user prompt pair to the configured provider.

    Supports Claude (Anthropic), ChatGPT (OpenAI), and Local (Ollama).  The
    SDKs' own retries are disabled: the orchestrator owns the retry policy,
    and every call is bounded by ``generation_timeout_seconds``.

    Transport-level failures become :class:`GenerationTransportError`.  Any
    other SDK error (bad request, auth) is also wrapped, with
    ``retryable=False``.
    """

    def __init__(self, settings: RadscribeSettings) -> None:
        self.settings = settings
        self.provider = settings.llm_provider
        self._anthropic_client: object | None = None
        self._openai_client: object | None = None
        self._local_client: object | None = None
        self.tracker = LLMUsageTracker()

    def configuration_problem(self) -> str | None:
        """Why this client cannot work as configured, or None."""
        spec = PROVIDERS.get(self.provider)
        if spec is None:
            return f"Unsupported LLM provider: {self.provider}"
        missing = spec.missing_settings(self.settings)
        if missing:
            where = spec.key_url and f" Get a key from {spec.key_url}"
            return f"{spec.display_name} API key not set. Set {missing[0].env_var}.{where}"
        return None

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = False,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int | None = None,
    ) -> GenerationResult:
        """Run one completion.

        Raises:
            GenerationTransportError: the call failed; check ``retryable``.
        """
        problem = self.configuration_problem()
        if problem:
            raise GenerationTransportError(problem, retryable=False)

        max_tokens = max_tokens or self.settings.llm_max_tokens
        if self.provider == "anthropic":
            call = self._generate_anthropic(system_prompt, user_prompt, temperature, max_tokens)
        else:
            call = self._generate_openai_compatible(
                system_prompt, user_prompt, json_mode, temperature, max_tokens
            )

        try:
            result = await asyncio.wait_for(call, timeout=self.settings.generation_timeout_seconds)
        except GenerationTransportError:
            raise
        except Exception as exc:
            retryable = _is_transport_error(exc)
            logger.warning(
                "Generation call failed (%s, retryable=%s)", type(exc).__name__, retryable
            )
            raise GenerationTransportError(
                f"{self.provider} generation failed: {type(exc).__name__}", retryable=retryable
            ) from exc

        self.tracker.record(result.input_tokens, result.output_tokens)
        return result

    async def _generate_anthropic(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> GenerationResult:
        import anthropic

        if self._anthropic_client is None:
            self._anthropic_client = anthropic.AsyncAnthropic(
                api_key=self.settings.anthropic_api_key,
                max_retries=0,
            )

        client: anthropic.AsyncAnthropic = self._anthropic_client  # type: ignore[assignment]

        logger.debug("Calling Anthropic API: model=%s", self.settings.llm_model)

        response = await client.messages.create(
            model=self.settings.llm_model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        usage = getattr(response, "usage", None)
        return GenerationResult(
            content=text,
            input_tokens=usage.input_tokens if usage else 0,
            output_tokens=usage.output_tokens if usage else 0,
        )

    def _openai_client_for_provider(self) -> object:
        import openai

        if self.provider == "local":
            if self._local_client is None:
                self._local_client = openai.AsyncOpenAI(
                    base_url=self.settings.local_url,
                    api_key="ollama",  # Required by SDK but ignored by Ollama
                    max_retries=0,
                )
            return self._local_client

        if self._openai_client is None:
            self._openai_client = openai.AsyncOpenAI(
                api_key=self.settings.openai_api_key,
                max_retries=0,
            )
        return self._openai_client

    async def _generate_openai_compatible(
        self,
        system_prompt: str,
        user_prompt: str,
        json_mode: bool,
        temperature: float,
        max_tokens: int,
    ) -> GenerationResult:
        """OpenAI and local (Ollama) share the chat completions API."""
        import openai

        client: openai.AsyncOpenAI = self._openai_client_for_provider()  # type: ignore[assignment]
        model = self.settings.local_model if self.provider == "local" else self.settings.llm_model

        logger.debug("Calling %s API: model=%s json=%s", self.provider, model, json_mode)

        kwargs: dict[str, object] = {}
        if json_mode and PROVIDERS[self.provider].supports_json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await client.chat.completions.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            **kwargs,  # type: ignore[arg-type]
        )

        usage = getattr(response, "usage", None)
        return GenerationResult(
            content=response.choices[0].message.content or "",
            input_tokens=(usage.prompt_tokens or 0) if usage else 0,
            output_tokens=(usage.completion_tokens or 0) if usage else 0,
        )
