"""Shared test fixtures and fakes for radscribe tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from radscribe.config import RadscribeSettings
from radscribe.llm.client import GenerationResult, LLMUsageTracker
from radscribe.models import RetrievedChunk
from radscribe.pipeline import ReportPipeline
from radscribe.templates import YamlTemplateStore
from radscribe.usage import InMemoryUsageLedger

CT_HEAD_REPORT = """\
Clinical Information:
Headache for 3 days.

Technique:
Non-contrast axial CT of the head.

Comparison:
None.

Findings:

Brain parenchyma:
Normal grey-white matter differentiation. No haemorrhage.

Ventricles:
Normal size and configuration.

Cisterns:
Patent.

Skull and bones:
No fracture.

Soft tissues:
Unremarkable.

Impression:
1. No acute intracranial abnormality.

Recommendations:
None.
"""

CHEST_XRAY_PAYLOAD = """\
{
  "clinical_information": "Cough.",
  "technique": "PA chest radiograph.",
  "comparison": "None.",
  "findings": {
    "heart": "Normal size.",
    "lungs": "Clear.",
    "pleura": "No effusion.",
    "bones": "Intact.",
    "soft_tissues": "Unremarkable."
  },
  "impression": "No acute cardiopulmonary abnormality.",
  "recommendations": "None."
}
"""


class FakeGenerator:
    """Generation service double.

    Each call pops the next scripted outcome: a :class:`GenerationResult` is
    returned, an exception is raised.  The last outcome repeats.
    """

    def __init__(self, *outcomes: GenerationResult | Exception) -> None:
        self._outcomes = list(outcomes) or [GenerationResult(CT_HEAD_REPORT, 500, 250)]
        self.calls: list[dict[str, Any]] = []
        self.tracker = LLMUsageTracker()

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = False,
        temperature: float = 0.3,
        max_tokens: int | None = None,
    ) -> GenerationResult:
        self.calls.append(
            {
                "system": system_prompt,
                "user": user_prompt,
                "json_mode": json_mode,
                "temperature": temperature,
            }
        )
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        self.tracker.record(outcome.input_tokens, outcome.output_tokens)
        return outcome


class FakeSearch:
    def __init__(
        self, chunks: list[RetrievedChunk] | None = None, error: Exception | None = None
    ) -> None:
        self.chunks = chunks or []
        self.error = error
        self.queries: list[str] = []

    async def search(
        self, query: str, org_scope: str, threshold: float, limit: int
    ) -> list[RetrievedChunk]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return list(self.chunks)


@pytest.fixture
def settings(tmp_path: Path) -> RadscribeSettings:
    """Settings isolated from any .env file or RADSCRIBE_* variables on the machine."""
    return RadscribeSettings(
        _env_file=None,  # type: ignore[call-arg]
        anthropic_api_key="test-key",
        output_dir=tmp_path,
        generation_max_retries=1,
    )


@pytest.fixture
def templates() -> YamlTemplateStore:
    return YamlTemplateStore()


@pytest.fixture
def ledger() -> InMemoryUsageLedger:
    return InMemoryUsageLedger()


@pytest.fixture
def make_pipeline(
    settings: RadscribeSettings, templates: YamlTemplateStore, ledger: InMemoryUsageLedger
) -> Callable[..., ReportPipeline]:
    """Build a pipeline around the shared fixtures with the given fakes."""

    def _make(
        generator: FakeGenerator | None = None, search: FakeSearch | None = None
    ) -> ReportPipeline:
        return ReportPipeline(
            settings,
            templates=templates,
            generator=generator or FakeGenerator(),
            ledger=ledger,
            search=search,
        )

    return _make
