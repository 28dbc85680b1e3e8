"""Pick the one text the rest of the pipeline works on.

A message can arrive with up to three versions of what the clinician said:
text typed into the box, a transcript captured on the device while
recording, and a refined transcript from the server speech-to-text pass.
Only one of them moves downstream.  Priority is server > manual > local:
the refined transcript is the most accurate, and typed text beats the
rough on-device capture.
"""

from __future__ import annotations

import logging

from radscribe.models import InputSource, ReconciledInput

logger = logging.getLogger(__name__)

#: Sent downstream when every source is empty.
SKELETON_REQUEST = "Please generate a standard report template."


def _present(value: str | None) -> bool:
    return value is not None and value.strip() != ""


def reconcile(
    manual_text: str | None = None,
    local_transcript: str | None = None,
    server_transcript: str | None = None,
) -> ReconciledInput:
    """Choose the canonical text.  The chosen source is passed through unmodified."""
    ordered = (
        (InputSource.SERVER, server_transcript),
        (InputSource.MANUAL, manual_text),
        (InputSource.LOCAL, local_transcript),
    )
    for source, value in ordered:
        if _present(value):
            combined = value
            break
    else:
        source, combined = InputSource.NONE, None

    if combined is None:
        logger.debug("No input text; requesting a template skeleton")
        return ReconciledInput(
            manual_text=manual_text,
            local_transcript=local_transcript,
            server_transcript=server_transcript,
            combined_text=SKELETON_REQUEST,
            source=InputSource.NONE,
            skeleton_requested=True,
        )

    logger.debug("Canonical input from %s source (%d chars)", source.value, len(combined))
    return ReconciledInput(
        manual_text=manual_text,
        local_transcript=local_transcript,
        server_transcript=server_transcript,
        combined_text=combined,
        source=source,
    )
