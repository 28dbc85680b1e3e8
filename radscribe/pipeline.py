"""Report pipeline orchestrator: runs all stages for one message, in sequence.

State trail of a successful run::

    received → pii_checked → template_resolved → context_assembled →
    generated → validated → rendered → accounted → completed

``blocked`` is only reachable straight after ``pii_checked``.  ``failed``
covers an unknown template and unexpected internal errors.  Every
:class:`~radscribe.errors.PipelineError` is handled here; callers only ever
see a :class:`~radscribe.models.PipelineResult`.
"""

from __future__ import annotations

import logging
from typing import Any

from radscribe.config import RadscribeSettings
from radscribe.errors import (
    GenerationMalformedOutput,
    PiiBlocked,
    RetrievalUnavailable,
    TemplateNotFound,
)
from radscribe.llm.profiles import get_profile
from radscribe.models import (
    ComplianceIssue,
    GenerationOutcome,
    MessageRequest,
    PipelineResult,
    PipelineState,
    PipelineStatus,
    RetrievedChunk,
)
from radscribe.stages.generation import (
    GenerationService,
    build_citations,
    build_prompt,
    check_compliance,
    degraded_document,
    generate_with_retry,
    parse_structured,
    render_structured,
)
from radscribe.stages.pii_detection import PiiDetector, is_high_risk, pii_summary
from radscribe.stages.reconcile import reconcile
from radscribe.stages.retrieval import ContextRetriever, VectorSearchService
from radscribe.templates import TemplateStore
from radscribe.usage import UsageAccountant, UsageLedger

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "INTERNAL_ERROR"


def default_detector(settings: RadscribeSettings) -> PiiDetector:
    if settings.pii_custom_names:
        return PiiDetector.with_known_names(settings.pii_custom_names)
    return PiiDetector()


class ReportPipeline:
    """One orchestrator for every template and strictness profile.

    Holds no per-request state, so one instance can serve concurrent runs.
    The only shared mutable state is behind *ledger*.
    """

    def __init__(
        self,
        settings: RadscribeSettings,
        *,
        templates: TemplateStore,
        generator: GenerationService,
        ledger: UsageLedger,
        search: VectorSearchService | None = None,
        detector: PiiDetector | None = None,
    ) -> None:
        self.settings = settings
        self._templates = templates
        self._generator = generator
        self._accountant = UsageAccountant(ledger)
        self._retriever = (
            ContextRetriever(search, timeout_seconds=settings.retrieval_timeout_seconds)
            if search is not None
            else None
        )
        self._detector = detector or default_detector(settings)
        self._profile = get_profile(settings.strictness)

    async def run(self, request: MessageRequest, *, org_id: str | None = None) -> PipelineResult:
        """Process one message.  Never raises."""
        states: list[PipelineState] = [PipelineState.RECEIVED]
        try:
            return await self._run(request, org_id or self.settings.default_org_id, states)
        except PiiBlocked as exc:
            states.append(PipelineState.BLOCKED)
            return PipelineResult(
                status=PipelineStatus.BLOCKED,
                states=states,
                entities=exc.entities,
                error=exc.code,
            )
        except TemplateNotFound as exc:
            logger.warning("%s", exc)
            states.append(PipelineState.FAILED)
            return PipelineResult(status=PipelineStatus.FAILED, states=states, error=exc.code)
        except Exception:
            logger.exception("Report pipeline failed after state %s", states[-1].value)
            states.append(PipelineState.FAILED)
            return PipelineResult(status=PipelineStatus.FAILED, states=states, error=INTERNAL_ERROR)

    async def _run(
        self, request: MessageRequest, org_id: str, states: list[PipelineState]
    ) -> PipelineResult:
        reconciled = reconcile(
            manual_text=request.text,
            local_transcript=request.local_transcript,
            server_transcript=request.server_transcript,
        )

        # ── PII gate ───────────────────────────────────────────────────
        detection = self._detector.detect(reconciled.combined_text)
        states.append(PipelineState.PII_CHECKED)
        if detection.detected:
            logger.info("PII check: %s", pii_summary(detection))
        if is_high_risk(detection.entities):
            raise PiiBlocked([e.summary() for e in detection.entities])

        template = self._templates.resolve(request.template_id)
        states.append(PipelineState.TEMPLATE_RESOLVED)

        # ── Context ────────────────────────────────────────────────────
        chunks: list[RetrievedChunk] = []
        if template.wants_retrieval and self._retriever is not None:
            try:
                chunks = await self._retriever.retrieve(
                    detection.redacted_text, template.retrieval_config, org_id
                )
            except RetrievalUnavailable as exc:
                logger.warning("Continuing without reference context: %s", exc)
        states.append(PipelineState.CONTEXT_ASSEMBLED)

        # ── Generation ─────────────────────────────────────────────────
        prompt = build_prompt(
            template,
            detection.redacted_text,
            profile=self._profile,
            chunks=chunks,
            attachments=request.attachments,
            skeleton_requested=reconciled.skeleton_requested,
            detector=self._detector,
        )
        result = await generate_with_retry(
            self._generator,
            prompt,
            json_mode=template.wants_structured_output,
            temperature=self._profile.temperature,
            max_retries=self.settings.generation_max_retries,
        )
        states.append(PipelineState.GENERATED)

        # ── Validation ─────────────────────────────────────────────────
        payload: dict[str, Any] | None = None
        issues: list[ComplianceIssue] = []
        if result is None or not result.content.strip():
            logger.warning("Generation unavailable for %s; rendering placeholder", template.id)
            degraded = True
            document = degraded_document(template)
        else:
            degraded = False
            if template.wants_structured_output:
                try:
                    payload = parse_structured(result.content)
                except GenerationMalformedOutput as exc:
                    logger.warning("Structured output unusable, keeping raw text: %s", exc)
            if payload is not None:
                document = render_structured(payload, template)
            else:
                document = result.content.strip() + "\n"
            issues = check_compliance(document, template)
            if issues:
                logger.info(
                    "Compliance: %d issue(s) for template %s: %s",
                    len(issues),
                    template.id,
                    ", ".join(i.section for i in issues),
                )
        states.append(PipelineState.VALIDATED)

        outcome = GenerationOutcome(
            rendered_document=document,
            structured_output=payload,
            compliance_issues=issues,
            tokens_in=result.input_tokens if result else 0,
            tokens_out=result.output_tokens if result else 0,
            degraded=degraded,
        )
        states.append(PipelineState.RENDERED)

        # ── Accounting ─────────────────────────────────────────────────
        usage = self._accountant.charge(
            outcome.tokens_in,
            outcome.tokens_out,
            audio_seconds=request.audio_seconds,
            pages=sum(a.pages for a in request.attachments),
        )
        states.append(PipelineState.ACCOUNTED)

        states.append(PipelineState.COMPLETED)
        return PipelineResult(
            status=PipelineStatus.COMPLETED,
            states=states,
            outcome=outcome,
            citations=[] if degraded else build_citations(chunks),
            usage=usage,
            pii_types=sorted({e.type for e in detection.entities}, key=lambda t: t.value),
            redacted_input=detection.redacted_text,
        )
