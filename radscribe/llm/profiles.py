"""Strictness profiles for report generation.

A profile sets the sampling temperature and adds guidance lines to the
prompt.  There is one orchestrator for every profile; nothing else changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class StrictnessProfile:
    name: str
    temperature: float
    guidance: list[str] = field(default_factory=list)


PROFILES: dict[str, StrictnessProfile] = {
    "relaxed": StrictnessProfile(
        name="relaxed",
        temperature=0.5,
        guidance=[
            "You may rephrase dictated findings for readability.",
            "Sections with nothing dictated may be summarised as unremarkable.",
        ],
    ),
    "standard": StrictnessProfile(
        name="standard",
        temperature=0.3,
        guidance=[
            "Keep to the dictated findings; do not invent measurements or findings.",
            "Use every section heading of the report skeleton, in order.",
        ],
    ),
    "strict": StrictnessProfile(
        name="strict",
        temperature=0.0,
        guidance=[
            "Report only what was dictated. Never infer, soften or add findings.",
            "Use every section heading of the report skeleton exactly as written, in order.",
            "Write 'Not dictated.' under any heading with no dictated content.",
        ],
    ),
}

DEFAULT_PROFILE = "standard"


def get_profile(name: str) -> StrictnessProfile:
    """Return a profile by name (case-insensitive).

    Raises:
        ValueError: If the profile is not recognised.
    """
    try:
        return PROFILES[name.lower()]
    except KeyError:
        msg = f"Unknown strictness profile: {name}. Valid profiles: {', '.join(PROFILES)}"
        raise ValueError(msg) from None
