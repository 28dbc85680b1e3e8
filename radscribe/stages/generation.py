"""Prompt assembly, generation with retry, compliance check and rendering.

Every function here except :func:`generate_with_retry` is pure.  The
orchestrator (:mod:`radscribe.pipeline`) calls them in order and records a
state transition after each one.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from typing import Any, Protocol

from pydantic import TypeAdapter, ValidationError

from radscribe.errors import GenerationMalformedOutput, GenerationTransportError
from radscribe.llm.client import GenerationResult
from radscribe.llm.profiles import StrictnessProfile
from radscribe.llm.prompts import PromptPair, get_prompt
from radscribe.models import (
    Citation,
    ComplianceIssue,
    FileAttachment,
    RetrievedChunk,
    Template,
)
from radscribe.stages.pii_detection import PiiDetector

logger = logging.getLogger(__name__)

_EXCERPT_CHARS = 200
_MAX_HEADER_CHARS = 60
_NONE = "(none)"

_PAYLOAD = TypeAdapter(dict[str, Any])
_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*\n(.*?)\n\s*```\s*$", re.DOTALL | re.IGNORECASE)


class GenerationService(Protocol):
    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = False,
        temperature: float = 0.3,
        max_tokens: int | None = None,
    ) -> GenerationResult: ...


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def _normalise(heading: str) -> str:
    text = heading.replace("**", "").strip().lstrip("#*-• \t").rstrip(": \t")
    return " ".join(text.split()).lower()


def required_sections(template: Template) -> list[str]:
    """Section headings in the template's skeleton, in order.

    A heading is a skeleton line ending in ``:`` or starting with ``#``.
    Parenthesised checklist lines and prose lines are not headings.
    """
    sections: list[str] = []
    seen: set[str] = set()
    for line in template.output_contract.template_format.splitlines():
        text = line.strip()
        if not text or text.startswith("("):
            continue
        if text.startswith("#"):
            name = text.lstrip("#").strip().rstrip(":")
        elif text.endswith(":"):
            name = text[:-1].strip()
        else:
            continue
        key = _normalise(name)
        if key and key not in seen:
            seen.add(key)
            sections.append(name)
    return sections


def document_headers(document: str) -> list[str]:
    """Normalised headings found in a generated document, in order of appearance.

    Recognises Markdown headings, ``Label:`` lines and ``- Label: value``
    bullets (with or without bold markers).
    """
    headers: list[str] = []
    for line in document.splitlines():
        text = line.strip()
        if not text:
            continue
        if text.startswith("#"):
            headers.append(_normalise(text))
            continue
        body = text.replace("**", "").lstrip("-*• \t")
        label, sep, _ = body.partition(":")
        if sep and 0 < len(label.strip()) <= _MAX_HEADER_CHARS:
            headers.append(_normalise(label))
    return headers


def check_compliance(document: str, template: Template) -> list[ComplianceIssue]:
    """Required sections that are missing from, or out of order in, *document*."""
    found = document_headers(document)
    positions = {h: i for i, h in reversed(list(enumerate(found)))}

    issues: list[ComplianceIssue] = []
    last = -1
    for section in required_sections(template):
        pos = positions.get(_normalise(section))
        if pos is None:
            issues.append(ComplianceIssue(section=section, message="Required section is missing"))
        elif pos < last:
            issues.append(
                ComplianceIssue(section=section, message="Section is out of template order")
            )
        else:
            last = pos
    return issues


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------


def _bullets(items: Sequence[str]) -> str:
    return "\n".join(f"- {item}" for item in items) if items else _NONE


def _output_contract_text(template: Template) -> str:
    if template.wants_structured_output:
        schema = json.dumps(template.output_contract.json_schema, indent=2)
        return (
            "Respond with a single JSON object, and nothing else, that follows "
            f"this JSON schema:\n{schema}"
        )
    return (
        "Respond with the finished report in Markdown. Put each required section "
        "heading on its own line, followed by a colon, then its content."
    )


def _context_text(chunks: Sequence[RetrievedChunk]) -> str:
    if not chunks:
        return _NONE
    return "\n\n".join(
        f'{i}. From "{chunk.source}":\n{chunk.text}' for i, chunk in enumerate(chunks, 1)
    )


def _attachments_text(attachments: Sequence[FileAttachment], detector: PiiDetector) -> str:
    if not attachments:
        return _NONE
    lines = []
    for attachment in attachments:
        # File names can carry identifiers ("smith_john_cxr.pdf")
        name = detector.detect(attachment.name).redacted_text
        pages = f", {attachment.pages} pages" if attachment.pages else ""
        lines.append(f"- {name} ({attachment.type}{pages})")
    return "\n".join(lines)


def build_prompt(
    template: Template,
    redacted_text: str,
    *,
    profile: StrictnessProfile,
    chunks: Sequence[RetrievedChunk] = (),
    attachments: Sequence[FileAttachment] = (),
    skeleton_requested: bool = False,
    detector: PiiDetector | None = None,
) -> PromptPair:
    """Fill the report-generation prompt for one request.

    *redacted_text* must be the detector's redacted form of the canonical
    input.  Nothing else from the request reaches the prompt except the
    attachment listing, which is redacted here.
    """
    prompt = get_prompt("report-generation")
    macros = [f"{token}: {text}" for token, text in sorted(template.macros.items())]
    system = prompt.system.format(
        template_name=template.name,
        instructions=template.generation_instructions or _NONE,
        rules=_bullets(template.rules),
        macros=_bullets(macros),
        sections=_bullets(required_sections(template)),
        template_format=template.output_contract.template_format or _NONE,
        output_contract=_output_contract_text(template),
        context=_context_text(chunks),
        guidance="\n".join(f"- {line}" for line in profile.guidance),
    )
    user = prompt.user.format(
        input_label="Request" if skeleton_requested else "Dictation",
        input_text=redacted_text,
        attachments=_attachments_text(attachments, detector or PiiDetector()),
    )
    return PromptPair(system=system, user=user)


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


async def generate_with_retry(
    service: GenerationService,
    prompt: PromptPair,
    *,
    json_mode: bool,
    temperature: float,
    max_retries: int,
) -> GenerationResult | None:
    """Call the service, retrying transport failures up to *max_retries* times.

    Returns None when every attempt failed or the failure is not retryable;
    the caller renders a placeholder document instead.
    """
    for attempt in range(max_retries + 1):
        try:
            return await service.generate(
                prompt.system, prompt.user, json_mode=json_mode, temperature=temperature
            )
        except GenerationTransportError as exc:
            logger.warning(
                "Generation attempt %d/%d failed: %s", attempt + 1, max_retries + 1, exc
            )
            if not exc.retryable:
                break
    return None


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def parse_structured(content: str) -> dict[str, Any]:
    """Parse a JSON object from the service, tolerating a Markdown code fence.

    Raises:
        GenerationMalformedOutput: Not a JSON object.
    """
    text = content.strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        return _PAYLOAD.validate_json(text)
    except ValidationError as exc:
        raise GenerationMalformedOutput(
            f"Expected a JSON object ({exc.error_count()} validation errors)"
        ) from exc


def _title(key: str, schema: dict[str, Any] | None) -> str:
    if schema and isinstance(schema.get("title"), str):
        return schema["title"]
    return key.replace("_", " ").strip().capitalize()


def _scalar(value: Any) -> str:
    if value is None or value == "":
        return "Not reported."
    if isinstance(value, bool):
        return "Yes" if value else "No"
    return str(value).strip()


def _ordered_items(
    payload: dict[str, Any], properties: dict[str, Any]
) -> list[tuple[str, Any, dict[str, Any] | None]]:
    ordered = [(k, payload[k], properties.get(k)) for k in properties if k in payload]
    ordered += [(k, v, None) for k, v in payload.items() if k not in properties]
    return ordered


def _render_value(value: Any, schema: dict[str, Any] | None) -> list[str]:
    if isinstance(value, dict):
        properties = (schema or {}).get("properties") or {}
        lines = []
        for key, inner, inner_schema in _ordered_items(value, properties):
            if isinstance(inner, list):
                rendered = "; ".join(_scalar(item) for item in inner) or _scalar(None)
            elif isinstance(inner, dict):
                rendered = "; ".join(f"{_title(k, None)}: {_scalar(v)}" for k, v in inner.items())
            else:
                rendered = _scalar(inner)
            lines.append(f"- {_title(key, inner_schema)}: {rendered}")
        return lines or ["Not reported."]
    if isinstance(value, list):
        return [f"- {_scalar(item)}" for item in value] or ["Not reported."]
    return [_scalar(value)]


def render_structured(payload: dict[str, Any], template: Template) -> str:
    """Render a structured payload as Markdown, sections in schema order.

    Keys the schema does not know come last, in payload order.
    """
    schema = template.output_contract.json_schema or {}
    properties = schema.get("properties") or {}
    parts = [f"# {template.name}"]
    for key, value, prop_schema in _ordered_items(payload, properties):
        body = "\n".join(_render_value(value, prop_schema))
        parts.append(f"## {_title(key, prop_schema)}\n\n{body}")
    return "\n\n".join(parts) + "\n"


def degraded_document(template: Template) -> str:
    """Placeholder rendered when the generation service cannot be used."""
    skeleton = template.output_contract.template_format
    text = (
        f"# {template.name}\n\n"
        "Report generation is unavailable: the generation service could not be "
        "reached or its configuration is incomplete. Check the service "
        "configuration and try again, or complete the report manually."
    )
    if skeleton:
        text += f"\n\n{skeleton}"
    return text + "\n"


def build_citations(chunks: Sequence[RetrievedChunk]) -> list[Citation]:
    """One citation per retrieved chunk used in the prompt."""
    citations = []
    for chunk in chunks:
        excerpt = chunk.text[:_EXCERPT_CHARS]
        if len(chunk.text) > _EXCERPT_CHARS:
            excerpt += "..."
        citations.append(
            Citation(
                source=chunk.source,
                title=chunk.title or chunk.source,
                excerpt=excerpt,
                relevance_score=chunk.similarity_score,
            )
        )
    return citations
