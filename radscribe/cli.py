"""Command-line interface for radscribe."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from radscribe import __version__
from radscribe.config import load_settings

app = typer.Typer(
    name="radscribe",
    help="Privacy-gated radiology report generation.",
    no_args_is_help=True,
)
console = Console(width=min(100, Console().width))


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"radscribe {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version", "-V",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Privacy-gated radiology report generation."""


# ---------------------------------------------------------------------------
# Detect command
# ---------------------------------------------------------------------------


@app.command()
def detect(
    text: Annotated[str, typer.Argument(help="Text to scan for PII.")],
) -> None:
    """Show the PII the detector finds in TEXT and the redacted result.

    Matched values are never printed, only types, spans and confidences.
    """
    from radscribe.pipeline import default_detector
    from radscribe.stages.pii_detection import is_high_risk

    result = default_detector(load_settings()).detect(text)

    if not result.detected:
        console.print("[green]No PII detected.[/green]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Type")
    table.add_column("Span", justify="right")
    table.add_column("Confidence", justify="right")
    for entity in result.entities:
        table.add_row(entity.type.value, f"{entity.start}-{entity.end}", f"{entity.confidence:.2f}")
    console.print(table)
    console.print(f"[dim]Redacted:[/dim] {escape(result.redacted_text)}", highlight=False)

    if is_high_risk(result.entities):
        console.print("[red]High risk: this input would be blocked.[/red]")
        raise typer.Exit(2)
    console.print("[yellow]Low risk: the redacted text would be sent.[/yellow]")


# ---------------------------------------------------------------------------
# Templates command
# ---------------------------------------------------------------------------


@app.command()
def templates(
    templates_dir: Annotated[
        Path | None,
        typer.Option("--templates-dir", help="Extra directory of YAML templates."),
    ] = None,
) -> None:
    """List available report templates."""
    from radscribe.stages.generation import required_sections
    from radscribe.templates import YamlTemplateStore

    settings = load_settings()
    store = YamlTemplateStore(extra_dir=templates_dir or settings.templates_dir)

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Output")
    table.add_column("Retrieval")
    table.add_column("Sections", justify="right")
    for template in store.list_templates():
        table.add_row(
            template.id,
            template.name,
            template.output_contract.format.value,
            "on" if template.wants_retrieval else "off",
            str(len(required_sections(template))),
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Generate command
# ---------------------------------------------------------------------------


@app.command()
def generate(
    template: Annotated[str, typer.Option("--template", "-t", help="Template ID.")],
    text: Annotated[str | None, typer.Option("--text", help="Dictated or typed findings.")] = None,
    transcript: Annotated[
        Path | None,
        typer.Option("--transcript", help="File holding a server-refined transcript."),
    ] = None,
    llm: Annotated[
        str | None,
        typer.Option("--llm", "-l", help="LLM provider: claude, chatgpt, or local."),
    ] = None,
    strictness: Annotated[
        str | None,
        typer.Option("--strictness", help="relaxed, standard, or strict."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging."),
    ] = False,
) -> None:
    """Run the report pipeline once and print the report.

    Usage is tallied in memory only; nothing is written to the database.
    """
    from radscribe.llm.client import GenerationClient
    from radscribe.logging import setup_logging
    from radscribe.models import MessageRequest, PipelineStatus
    from radscribe.pipeline import ReportPipeline
    from radscribe.stages.retrieval import HttpVectorSearch
    from radscribe.templates import YamlTemplateStore
    from radscribe.usage import InMemoryUsageLedger

    overrides: dict[str, object] = {}
    if llm:
        overrides["llm_provider"] = llm
    if strictness:
        overrides["strictness"] = strictness
    settings = load_settings(**overrides)
    setup_logging(output_dir=settings.output_dir, verbose=verbose)

    server_transcript = transcript.read_text(encoding="utf-8") if transcript else None
    search = (
        HttpVectorSearch(settings.retrieval_url, settings.retrieval_api_key)
        if settings.retrieval_url
        else None
    )
    ledger = InMemoryUsageLedger(settings.credits_granted)
    generator = GenerationClient(settings)
    pipeline = ReportPipeline(
        settings,
        templates=YamlTemplateStore(extra_dir=settings.templates_dir),
        generator=generator,
        ledger=ledger,
        search=search,
    )
    request = MessageRequest(text=text, server_transcript=server_transcript, template_id=template)
    result = asyncio.run(pipeline.run(request))

    if result.status is PipelineStatus.BLOCKED:
        types = ", ".join(sorted({e.type.value for e in result.entities}))
        console.print(f"[red]Blocked: high-risk PII detected ({types}).[/red]")
        console.print("Remove patient identifiers and try again.")
        raise typer.Exit(2)
    if result.status is PipelineStatus.FAILED:
        console.print(f"[red]Failed: {result.error}[/red]")
        raise typer.Exit(1)

    assert result.outcome is not None and result.usage is not None
    console.print(result.outcome.rendered_document, markup=False, highlight=False)
    for issue in result.outcome.compliance_issues:
        console.print(f"   [dim yellow]{issue.section}: {issue.message}[/dim yellow]")
    for citation in result.citations:
        console.print(f"   [dim]Source: {citation.title} ({citation.relevance_score:.2f})[/dim]")
    tracker = generator.tracker
    console.print(
        f"[dim]{result.usage.tokens_used} tokens, "
        f"{result.usage.credits_charged:g} credits "
        f"({tracker.calls} LLM call{'' if tracker.calls == 1 else 's'}: "
        f"{tracker.input_tokens} in, {tracker.output_tokens} out)[/dim]"
    )


# ---------------------------------------------------------------------------
# Serve command
# ---------------------------------------------------------------------------


@app.command()
def serve(
    port: Annotated[
        int,
        typer.Option("--port", "-p", help="Port to serve on."),
    ] = 8160,
    host: Annotated[
        str,
        typer.Option("--host", help="Interface to bind."),
    ] = "127.0.0.1",
    reload: Annotated[
        bool,
        typer.Option("--reload", help="Development mode: auto-reload on Python changes."),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging."),
    ] = False,
) -> None:
    """Run the HTTP API."""
    import uvicorn

    if reload:
        # uvicorn needs an import string to reload; -v travels via the environment
        import os

        if verbose:
            os.environ["_RADSCRIBE_VERBOSE"] = "1"
        uvicorn.run(
            "radscribe.server.app:create_app",
            host=host,
            port=port,
            reload=True,
            factory=True,
            log_level="info" if verbose else "warning",
        )
        return

    from radscribe.server.app import create_app

    uvicorn.run(
        create_app(verbose=verbose),
        host=host,
        port=port,
        log_level="info" if verbose else "warning",
    )


if __name__ == "__main__":
    app()
