"""PII detection and redaction for UK clinical text.

A detector is an ordered list of independent rules.  Each rule is any
callable ``text -> list[PIIEntity]``; the defaults are regex rules for
structured identifiers plus honorific-prefixed names.  A future NER-backed
detector only has to provide rules with the same signature -- the gating
contract (:func:`is_high_risk`) does not change.

After the rules run, :meth:`PiiDetector.detect`:

1. drops overlapping spans, keeping the highest-confidence entity;
2. re-scores entities that have a structural validator (NHS check digit,
   NI number prefix): +0.1 on pass, -0.2 on fail, then drops anything at or
   below the minimum confidence;
3. marks every further occurrence of a surviving value with the same type
   and confidence;
4. replaces each surviving span with a type placeholder such as
   ``[NATIONAL_ID]``, left to right with cumulative offset correction.

Everything here is pure: no I/O, no shared state, same input, same output.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping, Sequence

from radscribe.models import DetectionResult, PIIEntity, PiiType

logger = logging.getLogger(__name__)

Rule = Callable[[str], list[PIIEntity]]
Validator = Callable[[str], "bool | None"]

#: Entities at or below this confidence are discarded after validation.
MIN_CONFIDENCE = 0.3

#: An entity of a high-risk type above this confidence blocks the request.
HIGH_RISK_CONFIDENCE = 0.8

HIGH_RISK_TYPES = frozenset(
    {PiiType.NATIONAL_ID, PiiType.PERSON_NAME, PiiType.ADDRESS, PiiType.DATE_OF_BIRTH}
)

_VALIDATION_BONUS = 0.1
_VALIDATION_PENALTY = 0.2

PLACEHOLDERS: dict[PiiType, str] = {
    PiiType.NATIONAL_ID: "[NATIONAL_ID]",
    PiiType.POSTCODE: "[POSTCODE]",
    PiiType.PHONE: "[PHONE]",
    PiiType.EMAIL: "[EMAIL]",
    PiiType.PERSON_NAME: "[PATIENT_NAME]",
    PiiType.ADDRESS: "[ADDRESS]",
    PiiType.DATE_OF_BIRTH: "[DATE_OF_BIRTH]",
}
DEFAULT_PLACEHOLDER = "[REDACTED]"

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_NHS_NUMBER_RE = re.compile(r"\b\d{3}[ -]?\d{3}[ -]?\d{4}\b")
_NI_NUMBER_RE = re.compile(
    r"\b[A-CEGHJ-PR-TW-Z][A-CEGHJ-NPR-TW-Z]\s?\d{2}\s?\d{2}\s?\d{2}\s?[A-D]\b",
    re.IGNORECASE,
)
# Inward-code letters never include C, I, K, M, O or V, so "L4 3mm" is not a postcode
_POSTCODE_RE = re.compile(
    r"\b[A-Z]{1,2}[0-9R][0-9A-Z]? ?[0-9][ABD-HJLNP-UW-Z]{2}\b", re.IGNORECASE
)
_PHONE_RE = re.compile(
    r"(?<![\w+])(?:\+44\s?|0)(?:\d{2,4}|\(\d{2,4}\))[\s-]?\d{3,4}[\s-]?\d{3,4}\b"
)
_CARD_NUMBER_RE = re.compile(r"\b(?:\d{4}[\s-]?){3}\d{4}\b")
_EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_DATE_RE = re.compile(
    r"\b(?:\d{1,2}[/.-]\d{1,2}[/.-]\d{4}|\d{4}[/.-]\d{1,2}[/.-]\d{1,2})\b"
)
_ADDRESS_RE = re.compile(
    r"\b\d{1,4}[A-Za-z]?,?\s+(?:[A-Z][a-z]+\s+){1,3}"
    r"(?:Road|Rd|Street|St|Avenue|Ave|Lane|Drive|Close|Crescent|Way|Place"
    r"|Court|Gardens|Terrace|Grove|Square|Hill|Row|Mews)\b"
)

_CAPITALISED_NAME = r"([A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+)*)"
_NAME_RES: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bDr\.?\s+" + _CAPITALISED_NAME + r"\b"),
    re.compile(r"\b(?:Mr|Mrs|Ms|Miss|Mx)\.?\s+" + _CAPITALISED_NAME + r"\b"),
    # Only the keyword is case-insensitive; the name itself must be capitalised
    # so that "patient presents with ..." is not taken for a name.
    re.compile(r"\b(?i:patient)(?:\s+(?i:name))?:?\s*" + _CAPITALISED_NAME + r"\b"),
    re.compile(r"^(?i:name):?\s*" + _CAPITALISED_NAME, re.MULTILINE),
)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def pattern_rule(
    pii_type: PiiType,
    pattern: re.Pattern[str],
    confidence: float,
    group: int = 0,
) -> Rule:
    """Build a rule that reports every match of *pattern* (or one of its groups)."""

    def _rule(text: str) -> list[PIIEntity]:
        return [
            PIIEntity(
                type=pii_type,
                value=match.group(group),
                start=match.start(group),
                end=match.end(group),
                confidence=confidence,
            )
            for match in pattern.finditer(text)
            if match.group(group)
        ]

    return _rule


def person_name_rule(text: str) -> list[PIIEntity]:
    """Names introduced by an honorific, ``Patient`` or a ``Name:`` label."""
    entities: list[PIIEntity] = []
    for pattern in _NAME_RES:
        entities.extend(pattern_rule(PiiType.PERSON_NAME, pattern, 0.7, group=1)(text))
    return entities


def known_names_rule(names: Iterable[str], confidence: float = 0.9) -> Rule:
    """Flag exact, whole-word occurrences of names supplied by configuration."""
    cleaned = sorted({n.strip() for n in names if n.strip()}, key=len, reverse=True)
    if not cleaned:
        return lambda text: []
    pattern = re.compile(
        r"\b(?:" + "|".join(re.escape(n) for n in cleaned) + r")\b", re.IGNORECASE
    )
    return pattern_rule(PiiType.PERSON_NAME, pattern, confidence)


DEFAULT_RULES: tuple[Rule, ...] = (
    pattern_rule(PiiType.NATIONAL_ID, _NHS_NUMBER_RE, 0.95),
    pattern_rule(PiiType.POSTCODE, _POSTCODE_RE, 0.9),
    pattern_rule(PiiType.NATIONAL_ID, _NI_NUMBER_RE, 0.95),
    pattern_rule(PiiType.PHONE, _PHONE_RE, 0.85),
    # Card numbers have no type of their own; they redact as [PHONE]
    pattern_rule(PiiType.PHONE, _CARD_NUMBER_RE, 0.9),
    pattern_rule(PiiType.EMAIL, _EMAIL_RE, 0.9),
    pattern_rule(PiiType.DATE_OF_BIRTH, _DATE_RE, 0.8),
    pattern_rule(PiiType.ADDRESS, _ADDRESS_RE, 0.85),
    person_name_rule,
)


# ---------------------------------------------------------------------------
# Structural validators
# ---------------------------------------------------------------------------

_INVALID_NI_PREFIXES = frozenset({"BG", "GB", "NK", "KN", "TN", "NT", "ZZ"})
_NI_SHAPE_RE = re.compile(r"^[A-CEGHJ-PR-TW-Z][A-CEGHJ-NPR-TW-Z]\d{6}[A-D]$")


def is_valid_nhs_number(value: str) -> bool:
    """Modulus 11 check over the first nine digits.

    A remainder of 0 or 1 both expect a check digit of 0.
    """
    digits = re.sub(r"[\s-]", "", value)
    if len(digits) != 10 or not digits.isdigit():
        return False
    total = sum(int(d) * (10 - i) for i, d in enumerate(digits[:9]))
    remainder = total % 11
    expected = 0 if remainder < 2 else 11 - remainder
    return int(digits[9]) == expected


def is_valid_ni_number(value: str) -> bool:
    clean = re.sub(r"\s", "", value).upper()
    if not _NI_SHAPE_RE.match(clean):
        return False
    return clean[:2] not in _INVALID_NI_PREFIXES


def validate_national_id(value: str) -> bool | None:
    """Dispatch to the right check for the identifier's shape.

    Returns None when the value matches neither shape (no re-scoring).
    """
    compact = re.sub(r"[\s-]", "", value)
    if compact.isdigit():
        return is_valid_nhs_number(compact)
    if compact[:1].isalpha():
        return is_valid_ni_number(compact)
    return None


DEFAULT_VALIDATORS: dict[PiiType, Validator] = {
    PiiType.NATIONAL_ID: validate_national_id,
}


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------


def deduplicate(entities: Iterable[PIIEntity]) -> list[PIIEntity]:
    """Remove overlapping spans, keeping the higher-confidence (then longer) one."""
    ranked = sorted(entities, key=lambda e: (-e.confidence, -(e.end - e.start), e.start))
    taken: list[PIIEntity] = []
    for entity in ranked:
        if not any(entity.start < t.end and entity.end > t.start for t in taken):
            taken.append(entity)
    return sorted(taken, key=lambda e: e.start)


def rescore(
    entities: Iterable[PIIEntity],
    validators: Mapping[PiiType, Validator],
    min_confidence: float = MIN_CONFIDENCE,
) -> list[PIIEntity]:
    """Apply structural validators and drop entities that fall too low."""
    kept: list[PIIEntity] = []
    for entity in entities:
        confidence = entity.confidence
        validator = validators.get(entity.type)
        verdict = validator(entity.value) if validator else None
        if verdict is True:
            confidence = min(confidence + _VALIDATION_BONUS, 1.0)
        elif verdict is False:
            confidence = max(confidence - _VALIDATION_PENALTY, min_confidence)
        if confidence <= min_confidence:
            continue
        if confidence != entity.confidence:
            entity = entity.model_copy(update={"confidence": round(confidence, 4)})
        kept.append(entity)
    return kept


def propagate(text: str, entities: Sequence[PIIEntity]) -> list[PIIEntity]:
    """Extend detection to every other whole-word occurrence of a detected value.

    Rules often need context (an honorific, a label) to spot a value the
    first time; later bare repeats of the same value are covered here with
    the type and confidence of the entity that found it.
    """
    repeats: list[PIIEntity] = []
    for entity in entities:
        pattern = re.compile(r"(?<!\w)" + re.escape(entity.value) + r"(?!\w)", re.IGNORECASE)
        repeats.extend(
            entity.model_copy(
                update={"value": match.group(), "start": match.start(), "end": match.end()}
            )
            for match in pattern.finditer(text)
            if match.start() != entity.start
        )
    if not repeats:
        return list(entities)
    return deduplicate([*entities, *repeats])


def redact(text: str, entities: Sequence[PIIEntity]) -> str:
    """Replace entity spans with placeholders, in ascending start order."""
    redacted = text
    offset = 0
    for entity in sorted(entities, key=lambda e: e.start):
        placeholder = PLACEHOLDERS.get(entity.type, DEFAULT_PLACEHOLDER)
        start = entity.start + offset
        end = entity.end + offset
        redacted = redacted[:start] + placeholder + redacted[end:]
        offset += len(placeholder) - (entity.end - entity.start)
    return redacted


class PiiDetector:
    """Rule-based PII detector.  Instances are immutable and safe to share."""

    def __init__(
        self,
        rules: Sequence[Rule] = DEFAULT_RULES,
        validators: Mapping[PiiType, Validator] | None = None,
        min_confidence: float = MIN_CONFIDENCE,
    ) -> None:
        self._rules = tuple(rules)
        self._validators = dict(DEFAULT_VALIDATORS if validators is None else validators)
        self._min_confidence = min_confidence

    @classmethod
    def with_known_names(cls, names: Iterable[str]) -> PiiDetector:
        """Default rules plus exact matches for the given names."""
        return cls(rules=(*DEFAULT_RULES, known_names_rule(names)))

    def detect(self, text: str) -> DetectionResult:
        if not text:
            return DetectionResult(detected=False, entities=[], redacted_text=text)

        found: list[PIIEntity] = []
        for rule in self._rules:
            found.extend(rule(text))

        entities = rescore(deduplicate(found), self._validators, self._min_confidence)
        entities = propagate(text, entities)
        return DetectionResult(
            detected=bool(entities),
            entities=entities,
            redacted_text=redact(text, entities) if entities else text,
        )


_DEFAULT_DETECTOR = PiiDetector()


def detect(text: str) -> DetectionResult:
    """Run the default detector over *text*."""
    return _DEFAULT_DETECTOR.detect(text)


def is_high_risk(entities: Iterable[PIIEntity]) -> bool:
    """True if any entity is of a high-risk type with confidence above 0.8."""
    return any(
        e.type in HIGH_RISK_TYPES and e.confidence > HIGH_RISK_CONFIDENCE for e in entities
    )


def pii_summary(result: DetectionResult) -> dict[str, object]:
    """Value-free summary of a detection, safe to log or audit."""
    entities = result.entities
    average = sum(e.confidence for e in entities) / len(entities) if entities else 0.0
    return {
        "total_entities": len(entities),
        "types_detected": sorted({e.type.value for e in entities}),
        "high_risk": is_high_risk(entities),
        "confidence_avg": round(average, 2),
    }
