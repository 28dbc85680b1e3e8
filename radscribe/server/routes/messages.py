"""Chats and the message endpoint that runs the report pipeline."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from radscribe.models import MessageRequest, PipelineResult, PipelineStatus
from radscribe.server.models import Chat, Message

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Pipeline error code → HTTP status for runs that did not complete
_STATUS_FOR_ERROR = {
    "PII_DETECTED": 422,
    "TEMPLATE_NOT_FOUND": 404,
}


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class CreateChatRequest(BaseModel):
    title: str = Field(default="New report", max_length=200)
    template_id: str | None = None


class ChatResponse(BaseModel):
    id: int
    title: str
    template_id: str | None
    created_at: datetime


class MessageResponse(BaseModel):
    id: int
    role: str
    text: str
    structured_output: dict[str, Any] | None = None
    citations: list[dict[str, Any]] = Field(default_factory=list)
    compliance_issues: list[dict[str, Any]] = Field(default_factory=list)
    pii_types: list[str] = Field(default_factory=list)
    created_at: datetime


# ---------------------------------------------------------------------------
# Database dependency
# ---------------------------------------------------------------------------


def _get_db(request: Request) -> Session:
    return request.app.state.db_factory()


def _org_id(request: Request) -> str:
    return request.app.state.settings.default_org_id


def _check_chat(db: Session, chat_id: int, org_id: str) -> Chat:
    chat = db.get(Chat, chat_id)
    if chat is None or chat.org_id != org_id:
        raise HTTPException(status_code=404, detail="Chat not found")
    return chat


def _loads(raw: str | None, default: Any) -> Any:
    return json.loads(raw) if raw else default


def _chat_response(chat: Chat) -> ChatResponse:
    return ChatResponse(
        id=chat.id, title=chat.title, template_id=chat.template_id, created_at=chat.created_at
    )


def _message_response(message: Message) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        role=message.role,
        text=message.text,
        structured_output=_loads(message.json_output, None),
        citations=_loads(message.citations_json, []),
        compliance_issues=_loads(message.compliance_json, []),
        pii_types=[t for t in message.pii_types.split(",") if t],
        created_at=message.created_at,
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/chats", response_model=ChatResponse, status_code=201)
def create_chat(
    body: CreateChatRequest,
    request: Request,
    db: Session = Depends(_get_db),  # type: ignore[assignment]
) -> ChatResponse:
    try:
        chat = Chat(org_id=_org_id(request), title=body.title, template_id=body.template_id)
        db.add(chat)
        db.commit()
        db.refresh(chat)
        return _chat_response(chat)
    finally:
        db.close()


@router.get("/chats", response_model=list[ChatResponse])
def list_chats(
    request: Request,
    db: Session = Depends(_get_db),  # type: ignore[assignment]
) -> list[ChatResponse]:
    """The organisation's chats, newest first."""
    try:
        chats = db.scalars(
            select(Chat)
            .where(Chat.org_id == _org_id(request))
            .order_by(Chat.created_at.desc(), Chat.id.desc())
        ).all()
        return [_chat_response(c) for c in chats]
    finally:
        db.close()


@router.get("/chats/{chat_id}/messages", response_model=list[MessageResponse])
def list_messages(
    chat_id: int,
    request: Request,
    db: Session = Depends(_get_db),  # type: ignore[assignment]
) -> list[MessageResponse]:
    try:
        chat = _check_chat(db, chat_id, _org_id(request))
        return [_message_response(m) for m in chat.messages]
    finally:
        db.close()


def _store_turns(db: Session, chat: Chat, result: PipelineResult) -> Message:
    """Persist the redacted user turn and the assistant report; return the latter."""
    outcome = result.outcome
    assert outcome is not None
    pii_types = ",".join(t.value for t in result.pii_types)
    db.add(
        Message(
            chat_id=chat.id,
            role="user",
            text=result.redacted_input or "",
            pii_detected=bool(pii_types),
            pii_types=pii_types,
        )
    )
    assistant = Message(
        chat_id=chat.id,
        role="assistant",
        text=outcome.rendered_document,
        json_output=(
            json.dumps(outcome.structured_output) if outcome.structured_output is not None else None
        ),
        citations_json=json.dumps([c.model_dump() for c in result.citations]),
        compliance_json=json.dumps([i.model_dump() for i in outcome.compliance_issues]),
    )
    db.add(assistant)
    db.commit()
    db.refresh(assistant)
    return assistant


@router.post("/chats/{chat_id}/messages")
async def post_message(
    chat_id: int,
    body: MessageRequest,
    request: Request,
    db: Session = Depends(_get_db),  # type: ignore[assignment]
) -> JSONResponse:
    """Run the report pipeline for one message.

    - 200: the report was generated (possibly as a degraded placeholder)
    - 422: high-risk PII in the input; only entity types and confidences return
    - 404: unknown chat or template
    - 500: unexpected failure
    """
    try:
        org_id = _org_id(request)
        chat = _check_chat(db, chat_id, org_id)

        result: PipelineResult = await request.app.state.pipeline.run(body, org_id=org_id)

        if result.status is PipelineStatus.BLOCKED:
            return JSONResponse(
                status_code=422,
                content={
                    "error": result.error,
                    "entities": [
                        {"type": e.type.value, "confidence": e.confidence} for e in result.entities
                    ],
                },
            )
        if result.status is PipelineStatus.FAILED:
            error = result.error or "INTERNAL_ERROR"
            return JSONResponse(
                status_code=_STATUS_FOR_ERROR.get(error, 500), content={"error": error}
            )

        assistant = _store_turns(db, chat, result)
        outcome = result.outcome
        usage = result.usage
        assert outcome is not None and usage is not None
        return JSONResponse(
            status_code=200,
            content={
                "message_id": assistant.id,
                "rendered_document": outcome.rendered_document,
                "structured_output": outcome.structured_output,
                "citations": [c.model_dump() for c in result.citations],
                "compliance_issues": [i.model_dump() for i in outcome.compliance_issues],
                "degraded": outcome.degraded,
                "usage": {
                    "tokens_used": usage.tokens_used,
                    "credits_charged": usage.credits_charged,
                },
            },
        )
    finally:
        db.close()
