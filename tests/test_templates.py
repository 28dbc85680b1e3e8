"""Tests for the YAML report template store."""

from __future__ import annotations

from pathlib import Path

import pytest

from radscribe.errors import TemplateNotFound
from radscribe.models import OutputFormat
from radscribe.templates import YamlTemplateStore, parse_template

_MINIMAL = """\
id: {id}
name: {name}
instructions: Write a short report.
output:
  template_format: |
    Findings:

    Impression:
"""


class TestBundledTemplates:
    def test_lists_bundled_templates(self, templates: YamlTemplateStore) -> None:
        ids = {t.id for t in templates.list_templates()}
        assert {"chest-xray", "ct-head", "mri-lumbar-spine"} <= ids

    def test_chest_xray_is_structured(self, templates: YamlTemplateStore) -> None:
        template = templates.resolve("chest-xray")
        assert template.output_contract.format == OutputFormat.JSON
        assert template.wants_structured_output
        assert "findings" in template.output_contract.json_schema["properties"]
        assert template.wants_retrieval

    def test_ct_head_is_markdown_without_retrieval(self, templates: YamlTemplateStore) -> None:
        template = templates.resolve("ct-head")
        assert template.output_contract.format == OutputFormat.MARKDOWN
        assert template.output_contract.json_schema is None
        assert not template.wants_retrieval
        assert template.output_contract.template_format.startswith("Clinical Information:")

    def test_mri_macros(self, templates: YamlTemplateStore) -> None:
        template = templates.resolve("mri-lumbar-spine")
        assert set(template.macros) == {"BMI", "LABRUM"}
        assert template.macros["LABRUM"].startswith("Within the limitations")
        assert template.retrieval_config is not None
        assert template.retrieval_config.similarity_threshold == 0.7
        assert template.retrieval_config.max_chunks == 5

    def test_resolve_is_cached(self, templates: YamlTemplateStore) -> None:
        assert templates.resolve("ct-head") is templates.resolve("ct-head")


class TestResolve:
    def test_unknown_id_raises(self, templates: YamlTemplateStore) -> None:
        with pytest.raises(TemplateNotFound) as exc_info:
            templates.resolve("pet-ct")
        assert exc_info.value.template_id == "pet-ct"
        assert exc_info.value.code == "TEMPLATE_NOT_FOUND"

    def test_path_like_id_is_not_found(self, templates: YamlTemplateStore) -> None:
        with pytest.raises(TemplateNotFound):
            templates.resolve("../templates/ct-head")

    def test_get_returns_none(self, templates: YamlTemplateStore) -> None:
        assert templates.get("missing") is None

    def test_extra_dir_adds_and_overrides(self, tmp_path: Path) -> None:
        (tmp_path / "ct-head.yaml").write_text(_MINIMAL.format(id="ct-head", name="Local CT"))
        (tmp_path / "us-abdomen.yaml").write_text(
            _MINIMAL.format(id="us-abdomen", name="US Abdomen")
        )
        store = YamlTemplateStore(extra_dir=tmp_path)

        assert store.resolve("ct-head").name == "Local CT"
        assert store.resolve("us-abdomen").retrieval_config is None
        assert "us-abdomen" in {t.id for t in store.list_templates()}


class TestParseTemplate:
    def test_missing_required_key(self) -> None:
        with pytest.raises(ValueError, match="missing required key 'instructions'"):
            parse_template({"id": "x", "name": "X"}, "x.yaml")

    def test_json_output_needs_schema(self) -> None:
        raw = {"id": "x", "name": "X", "instructions": "i", "output": {"format": "json"}}
        with pytest.raises(ValueError, match="schema"):
            parse_template(raw, "x.yaml")

    def test_unknown_format(self) -> None:
        raw = {"id": "x", "name": "X", "instructions": "i", "output": {"format": "html"}}
        with pytest.raises(ValueError, match="not one of"):
            parse_template(raw, "x.yaml")

    def test_macro_tokens_are_upper_cased(self) -> None:
        raw = {"id": "x", "name": "X", "instructions": "i", "macros": {"bmi": " text \n"}}
        assert parse_template(raw, "x.yaml").macros == {"BMI": "text"}
