"""Domain models shared by the pipeline stages, the server and the CLI."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# PII detection
# ---------------------------------------------------------------------------


class PiiType(str, Enum):
    NATIONAL_ID = "nationalId"
    POSTCODE = "postcode"
    PHONE = "phone"
    EMAIL = "email"
    PERSON_NAME = "personName"
    ADDRESS = "address"
    DATE_OF_BIRTH = "dateOfBirth"


class PIIEntity(BaseModel):
    """One detected PII span.

    Holds the matched ``value``, so instances must stay inside the request
    that produced them.  Use :meth:`summary` for anything that leaves it.
    """

    model_config = ConfigDict(frozen=True)

    type: PiiType
    value: str
    start: int
    end: int
    confidence: float = Field(ge=0.0, le=1.0)

    def summary(self) -> EntitySummary:
        return EntitySummary(
            type=self.type, confidence=self.confidence, start=self.start, end=self.end
        )


class EntitySummary(BaseModel):
    """A PII entity without its value: the only form exposed to callers."""

    model_config = ConfigDict(frozen=True)

    type: PiiType
    confidence: float
    start: int
    end: int


class DetectionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    detected: bool
    entities: list[PIIEntity] = Field(default_factory=list)
    redacted_text: str


# ---------------------------------------------------------------------------
# Transcript reconciliation
# ---------------------------------------------------------------------------


class InputSource(str, Enum):
    SERVER = "server"
    MANUAL = "manual"
    LOCAL = "local"
    NONE = "none"


class ReconciledInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    manual_text: str | None = None
    local_transcript: str | None = None
    server_transcript: str | None = None
    combined_text: str
    source: InputSource
    skeleton_requested: bool = False


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


class OutputFormat(str, Enum):
    MARKDOWN = "markdown"
    JSON = "json"


class OutputContract(BaseModel):
    """What the generated document must look like.

    ``template_format`` is the literal report skeleton; its headings are the
    required sections, in order.  ``json_schema`` is only set for templates
    whose generation returns a structured payload.
    """

    model_config = ConfigDict(frozen=True)

    format: OutputFormat = OutputFormat.MARKDOWN
    template_format: str = ""
    json_schema: dict[str, Any] | None = None


class RetrievalConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    max_chunks: int = Field(default=5, ge=1)


class Template(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    generation_instructions: str
    output_contract: OutputContract = Field(default_factory=OutputContract)
    retrieval_config: RetrievalConfig | None = None
    rules: tuple[str, ...] = ()
    macros: dict[str, str] = Field(default_factory=dict)
    description: str = ""

    @property
    def wants_structured_output(self) -> bool:
        return self.output_contract.format == OutputFormat.JSON

    @property
    def wants_retrieval(self) -> bool:
        return self.retrieval_config is not None and self.retrieval_config.enabled


# ---------------------------------------------------------------------------
# Retrieval and generation
# ---------------------------------------------------------------------------


class RetrievedChunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    source: str
    similarity_score: float
    title: str = ""


class Citation(BaseModel):
    source: str
    title: str
    excerpt: str
    relevance_score: float


class ComplianceIssue(BaseModel):
    section: str
    message: str


class GenerationOutcome(BaseModel):
    rendered_document: str
    structured_output: dict[str, Any] | None = None
    compliance_issues: list[ComplianceIssue] = Field(default_factory=list)
    tokens_in: int = 0
    tokens_out: int = 0
    # True when the generation service was unreachable and a placeholder
    # document was rendered instead.
    degraded: bool = False


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------


class UsageRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    tokens_in: int = 0
    tokens_out: int = 0
    audio_seconds: float = 0.0
    pages: int = 0
    credits_charged: float

    @property
    def tokens_used(self) -> int:
        return self.tokens_in + self.tokens_out


# ---------------------------------------------------------------------------
# Requests and pipeline results
# ---------------------------------------------------------------------------


class FileAttachment(BaseModel):
    name: str
    type: str = "application/octet-stream"
    size: int = 0
    pages: int = Field(default=0, ge=0)
    url: str | None = None


class MessageRequest(BaseModel):
    text: str | None = None
    local_transcript: str | None = None
    server_transcript: str | None = None
    attachments: list[FileAttachment] = Field(default_factory=list)
    template_id: str
    audio_seconds: float = Field(default=0.0, ge=0.0)


class PipelineState(str, Enum):
    RECEIVED = "received"
    PII_CHECKED = "pii_checked"
    TEMPLATE_RESOLVED = "template_resolved"
    CONTEXT_ASSEMBLED = "context_assembled"
    GENERATED = "generated"
    VALIDATED = "validated"
    RENDERED = "rendered"
    ACCOUNTED = "accounted"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    FAILED = "failed"


class PipelineStatus(str, Enum):
    COMPLETED = "completed"
    BLOCKED = "blocked"
    FAILED = "failed"


class PipelineResult(BaseModel):
    """What the orchestrator hands back to its caller.

    A blocked result carries entity summaries and nothing else: no raw,
    redacted or generated text.
    """

    status: PipelineStatus
    states: list[PipelineState] = Field(default_factory=list)
    entities: list[EntitySummary] = Field(default_factory=list)
    error: str | None = None
    outcome: GenerationOutcome | None = None
    citations: list[Citation] = Field(default_factory=list)
    usage: UsageRecord | None = None
    # Types of low-risk PII redacted from a completed run
    pii_types: list[PiiType] = Field(default_factory=list)
    # Redacted canonical input, kept so the caller can store the user turn.
    redacted_input: str | None = None
