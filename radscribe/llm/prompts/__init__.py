"""Prompt loader: reads prompt templates from Markdown files.

Each prompt is a Markdown file in this directory with a system prompt and a
user prompt template, under ``## System`` and ``## User`` headings.  The
user template uses ``str.format`` placeholders.
"""

from __future__ import annotations

import re
from functools import cache
from pathlib import Path
from typing import NamedTuple

_PROMPTS_DIR = Path(__file__).resolve().parent

_SECTION_RE = re.compile(r"^##\s+(system|user)\s*$", re.IGNORECASE | re.MULTILINE)


class PromptPair(NamedTuple):
    system: str
    user: str


@cache
def _load_prompt(name: str) -> PromptPair:
    path = _PROMPTS_DIR / f"{name}.md"
    text = path.read_text(encoding="utf-8")

    sections: dict[str, str] = {}
    matches = list(_SECTION_RE.finditer(text))

    for i, match in enumerate(matches):
        section_name = match.group(1).lower()
        start = match.end()
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        sections[section_name] = text[start:end].strip()

    for required in ("system", "user"):
        if required not in sections:
            msg = f"Prompt file {path.name} missing '## {required.title()}' section"
            raise ValueError(msg)

    return PromptPair(system=sections["system"], user=sections["user"])


def get_prompt(name: str) -> PromptPair:
    """Load a prompt pair by kebab-case name (e.g. ``"report-generation"``)."""
    return _load_prompt(name)
