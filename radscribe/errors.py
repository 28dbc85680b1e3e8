"""Pipeline error taxonomy.

Every failure inside the report pipeline is one of these.  The orchestrator
(:mod:`radscribe.pipeline`) catches them at its boundary and converts them
into a :class:`~radscribe.models.PipelineResult`; none of them reach an HTTP
caller directly.

Categories:

- user-correctable: :class:`PiiBlocked`
- not-found: :class:`TemplateNotFound`
- transient infrastructure: :class:`GenerationTransportError`,
  :class:`RetrievalUnavailable`
- data quality: :class:`GenerationMalformedOutput`
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from radscribe.models import EntitySummary


class PipelineError(Exception):
    """Base class for every error raised by a pipeline stage."""

    #: Stable machine-readable code, surfaced in API error bodies.
    code = "PIPELINE_ERROR"


class PiiBlocked(PipelineError):
    """High-risk PII found in the canonical input.  The user must edit and resubmit."""

    code = "PII_DETECTED"

    def __init__(self, entities: list[EntitySummary]) -> None:
        types = sorted({e.type.value for e in entities})
        super().__init__(f"High-risk PII detected: {', '.join(types)}")
        # Summaries only (type/confidence/span) -- never the matched values.
        self.entities = entities


class TemplateNotFound(PipelineError):
    """The requested template does not exist in the template store."""

    code = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str) -> None:
        super().__init__(f"Template not found: {template_id!r}")
        self.template_id = template_id


class GenerationTransportError(PipelineError):
    """The generation service could not be reached or answered with a server error.

    ``retryable`` is False when retrying cannot help (e.g. no API key configured).
    """

    code = "GENERATION_UNAVAILABLE"

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class GenerationMalformedOutput(PipelineError):
    """The generation service answered, but not in the shape the template asked for."""

    code = "GENERATION_MALFORMED"


class RetrievalUnavailable(PipelineError):
    """The vector search service failed or timed out."""

    code = "RETRIEVAL_UNAVAILABLE"
