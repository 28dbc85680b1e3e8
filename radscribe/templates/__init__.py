"""Report template store: reads YAML files from this directory.

Each report type (chest X-ray, CT head, MRI lumbar spine, ...) is a
separate YAML file holding the generation instructions, house rules,
dictation macros, the report skeleton and, optionally, a JSON schema and
knowledge retrieval settings.  Files are auto-discovered: drop a new
``.yaml`` file here (or in ``RADSCRIBE_TEMPLATES_DIR``) and it can be
requested by its ``id``.

YAML layout::

    id: ct-head
    name: CT Head
    description: ...
    instructions: >
      ...
    rules: [...]
    macros: {TOKEN: expansion}
    output:
      format: markdown          # or json
      template_format: |
        Findings:
        ...
      schema: {...}             # json only
    retrieval:
      enabled: true
      similarity_threshold: 0.7
      max_chunks: 5

Public API::

    from radscribe.templates import YamlTemplateStore, TemplateStore
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol

import yaml

from radscribe.errors import TemplateNotFound
from radscribe.models import OutputContract, OutputFormat, RetrievalConfig, Template

logger = logging.getLogger(__name__)

BUNDLED_TEMPLATES_DIR = Path(__file__).resolve().parent


class TemplateStore(Protocol):
    def resolve(self, template_id: str) -> Template: ...

    def list_templates(self) -> list[Template]: ...


# ---------------------------------------------------------------------------
# YAML → model parsing
# ---------------------------------------------------------------------------


def _str(value: Any) -> str:
    """Convert a YAML value to a stripped string.

    Folded (``>``) scalars carry a trailing newline; callers always get clean text.
    """
    if value is None:
        return ""
    return str(value).strip()


def _require(raw: dict[str, Any], key: str, filename: str) -> Any:
    if key not in raw:
        msg = f"{filename}: missing required key '{key}'"
        raise ValueError(msg)
    return raw[key]


def _parse_output(raw: dict[str, Any] | None, filename: str) -> OutputContract:
    raw = raw or {}
    fmt = _str(raw.get("format")) or OutputFormat.MARKDOWN.value
    try:
        output_format = OutputFormat(fmt)
    except ValueError:
        msg = f"{filename}: output format '{fmt}' is not one of markdown, json"
        raise ValueError(msg) from None
    schema = raw.get("schema")
    if output_format is OutputFormat.JSON and not isinstance(schema, dict):
        msg = f"{filename}: json output requires a 'schema' mapping"
        raise ValueError(msg)
    return OutputContract(
        format=output_format,
        # Keep inner line structure; only trim the block's outer whitespace
        template_format=_str(raw.get("template_format")),
        json_schema=schema if output_format is OutputFormat.JSON else None,
    )


def _parse_retrieval(raw: dict[str, Any] | None) -> RetrievalConfig | None:
    if raw is None:
        return None
    return RetrievalConfig(
        enabled=bool(raw.get("enabled", False)),
        similarity_threshold=float(raw.get("similarity_threshold", 0.7)),
        max_chunks=int(raw.get("max_chunks", 5)),
    )


def parse_template(raw: dict[str, Any], filename: str) -> Template:
    """Validate and convert a raw YAML mapping to a :class:`Template`."""
    if not isinstance(raw, dict):
        msg = f"{filename}: expected a mapping at the top level"
        raise ValueError(msg)

    raw_macros = raw.get("macros") or {}
    macros = {_str(k).upper(): _str(v) for k, v in raw_macros.items()}
    rules = tuple(_str(r) for r in (raw.get("rules") or []) if _str(r))

    return Template(
        id=_str(_require(raw, "id", filename)),
        name=_str(_require(raw, "name", filename)),
        description=_str(raw.get("description")),
        generation_instructions=_str(_require(raw, "instructions", filename)),
        output_contract=_parse_output(raw.get("output"), filename),
        retrieval_config=_parse_retrieval(raw.get("retrieval")),
        rules=rules,
        macros=macros,
    )


def load_template_file(path: Path) -> Template:
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    return parse_template(raw, path.name)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class YamlTemplateStore:
    """Templates from the bundled directory, optionally overlaid by *extra_dir*.

    A template in *extra_dir* with the same ``id`` replaces the bundled one.
    Parsed templates are cached per instance, so repeated resolution of the
    same id returns the same object.
    """

    def __init__(
        self,
        directory: Path = BUNDLED_TEMPLATES_DIR,
        extra_dir: Path | None = None,
    ) -> None:
        self._dirs = [directory] + ([extra_dir] if extra_dir is not None else [])
        self._cache: dict[str, Template] = {}

    def _path_for(self, template_id: str) -> Path | None:
        # Ids are file stems; anything with a path separator is not an id.
        if not template_id or "/" in template_id or "\\" in template_id:
            return None
        for directory in reversed(self._dirs):
            path = directory / f"{template_id}.yaml"
            if path.is_file():
                return path
        return None

    def resolve(self, template_id: str) -> Template:
        """Return the template with this id.

        Raises:
            TemplateNotFound: No YAML file defines *template_id*.
        """
        if template_id in self._cache:
            return self._cache[template_id]
        path = self._path_for(template_id)
        if path is None:
            raise TemplateNotFound(template_id)
        template = load_template_file(path)
        if template.id != template_id:
            logger.warning("%s declares id %r; using file name", path.name, template.id)
            template = template.model_copy(update={"id": template_id})
        self._cache[template_id] = template
        return template

    def get(self, template_id: str) -> Template | None:
        """Like :meth:`resolve`, but None when missing."""
        try:
            return self.resolve(template_id)
        except TemplateNotFound:
            return None

    def list_templates(self) -> list[Template]:
        """Every available template, sorted by name."""
        ids: set[str] = set()
        for directory in self._dirs:
            ids.update(p.stem for p in directory.glob("*.yaml"))
        templates = [self.resolve(i) for i in ids]
        templates.sort(key=lambda t: (t.name.lower(), t.id))
        return templates
