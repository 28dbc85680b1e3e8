"""Report template endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from radscribe.models import Template
from radscribe.stages.generation import required_sections
from radscribe.templates import YamlTemplateStore

router = APIRouter(prefix="/api")


class TemplateSummaryResponse(BaseModel):
    id: str
    name: str
    description: str
    output_format: str
    retrieval_enabled: bool


class TemplateDetailResponse(TemplateSummaryResponse):
    instructions: str
    rules: list[str]
    macros: dict[str, str]
    sections: list[str]
    template_format: str
    json_schema: dict[str, Any] | None


def _store(request: Request) -> YamlTemplateStore:
    return request.app.state.templates


def _summary_fields(template: Template) -> dict[str, Any]:
    return {
        "id": template.id,
        "name": template.name,
        "description": template.description,
        "output_format": template.output_contract.format.value,
        "retrieval_enabled": template.wants_retrieval,
    }


@router.get("/templates", response_model=list[TemplateSummaryResponse])
def list_templates(request: Request) -> list[TemplateSummaryResponse]:
    return [TemplateSummaryResponse(**_summary_fields(t)) for t in _store(request).list_templates()]


@router.get("/templates/{template_id}", response_model=TemplateDetailResponse)
def get_template(template_id: str, request: Request) -> TemplateDetailResponse:
    template = _store(request).get(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail="Template not found")
    return TemplateDetailResponse(
        **_summary_fields(template),
        instructions=template.generation_instructions,
        rules=list(template.rules),
        macros=template.macros,
        sections=required_sections(template),
        template_format=template.output_contract.template_format,
        json_schema=template.output_contract.json_schema,
    )
