"""
codegen-rag - CLI Entry Point
------------------------------
Exposes Typer commands for indexing and generation.

Usage:
    python -m codegen_rag.main index schema.sql notes.md --version v1
    python -m codegen_rag.main delete --file-id <id>
    python -m codegen_rag.main delete --version v1
    python -m codegen_rag.main generate "get all orders" --type sql --version v1
    python -m codegen_rag.main generate "..." --type formio --version v1 --stream
    python -m codegen_rag.main ambiguity "show that"
    python -m codegen_rag.main health
"""
from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from codegen_rag.chunking.extract import is_supported
from codegen_rag.config import DEFAULT_CONFIG_PATH, load_settings
from codegen_rag.errors import CodegenError
from codegen_rag.generation.ambiguity import AmbiguityDetector
from codegen_rag.schemas import GenerationRequest, GenerationResult, OutputType
from codegen_rag.serving.pipeline import Components, build_components
from codegen_rag.utils.logger import setup_logger

app = typer.Typer(
    name="codegen-rag",
    help="Retrieval-augmented generation of SQL, n8n workflows and Form.io forms",
    add_completion=False,
)
console = Console()

_SYNTAX = {OutputType.SQL: "sql", OutputType.N8N: "json", OutputType.FORMIO: "json"}


# --- Helpers ------------------------------------------------------------------

def _components(config: str) -> Components:
    settings = load_settings(config)
    setup_logger(
        log_level=settings.logging.level,
        log_file=settings.logging.file,
        json_file=settings.logging.json_file,
    )
    return build_components(settings)


def _run(coro) -> object:
    """Run a coroutine; typed core errors become a red message and exit code 1."""
    try:
        return asyncio.run(coro)
    except CodegenError as exc:
        console.print(f"[red]{exc.code}:[/red] {exc.user_message}")
        logger.debug(f"{type(exc).__name__} at stage={exc.stage}: {exc}")
        for suggestion in exc.suggestions:
            console.print(f"  [yellow]-[/yellow] {suggestion}")
        raise typer.Exit(1)


_CONFIG_OPTION = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config YAML")


# --- Commands -----------------------------------------------------------------

@app.command()
def index(
    paths: list[Path] = typer.Argument(..., help="DDL files or documents to index"),
    version: str = typer.Option(..., "--version", "-v", help="Version the files belong to"),
    file_id: Optional[str] = typer.Option(
        None, "--file-id", help="Stable file id (single file only; random when omitted)"
    ),
    config: str = _CONFIG_OPTION,
) -> None:
    """
    Chunk, embed and index files for one version.

    \b
    Re-indexing a file id replaces its previous chunks.
    """
    if file_id and len(paths) > 1:
        console.print("[red]--file-id can only be used with a single file[/red]")
        raise typer.Exit(1)

    components = _components(config)
    _run(_index_async(components, paths, version, file_id))


async def _index_async(
    components: Components, paths: list[Path], version: str, file_id: Optional[str]
) -> None:
    await components.start()

    table = Table("File", "File ID", "Chunks", box=box.SIMPLE, header_style="bold dim")
    for path in paths:
        if not path.is_file():
            console.print(f"[yellow]Skipping {path}: not a file[/yellow]")
            continue
        if not is_supported(path.name):
            console.print(f"[yellow]Skipping {path}: unsupported file type[/yellow]")
            continue
        fid, count = await components.indexer.index_file(path, version, file_id)
        table.add_row(path.name, fid, str(count))

    console.print(table)
    total = await components.index.count(version)
    console.print(f"[green][OK] Version {version}: {total} chunks indexed[/green]")


@app.command()
def delete(
    file_id: Optional[str] = typer.Option(None, "--file-id", help="Delete one file's chunks"),
    version: Optional[str] = typer.Option(None, "--version", "-v", help="Delete a whole version"),
    config: str = _CONFIG_OPTION,
) -> None:
    """Remove indexed chunks by file id or by version."""
    if bool(file_id) == bool(version):
        console.print("[red]Pass exactly one of --file-id or --version[/red]")
        raise typer.Exit(1)

    components = _components(config)
    removed = _run(_delete_async(components, file_id, version))
    console.print(f"[green][OK] Removed {removed} chunks[/green]")


async def _delete_async(components: Components, file_id: Optional[str], version: Optional[str]) -> int:
    await components.start()
    if file_id:
        return await components.indexer.delete_file_embeddings(file_id)
    return await components.indexer.delete_version_embeddings(version)


@app.command()
def generate(
    request: str = typer.Argument(..., help="Natural-language description of what to generate"),
    output_type: str = typer.Option("sql", "--type", "-t", help="sql | n8n | formio"),
    version: str = typer.Option(..., "--version", "-v", help="Version whose context to use"),
    json_out: bool = typer.Option(False, "--json", help="Print the result as JSON"),
    check_ambiguity: bool = typer.Option(
        False, "--check-ambiguity", help="Stop with a clarification question if the request is vague"
    ),
    stream: bool = typer.Option(False, "--stream", help="Print fragments as they arrive (no validation)"),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Overall deadline in seconds (default from config)"
    ),
    config: str = _CONFIG_OPTION,
) -> None:
    """
    Generate SQL, an n8n workflow or a Form.io form from indexed context.

    \b
    Steps:
      1. Retrieve the most relevant chunks of the version
      2. Build the prompt for the output type
      3. Call the completion model (with retry)
      4. Validate the generated code
    """
    components = _components(config)
    generation_request = GenerationRequest(request=request, output_type=output_type, version_id=version)
    deadline = timeout or components.settings.retrieval.request_deadline_s
    _run(_generate_async(components, generation_request, json_out, check_ambiguity, stream, deadline))


async def _generate_async(
    components: Components,
    request: GenerationRequest,
    json_out: bool,
    check_ambiguity: bool,
    stream: bool,
    deadline_s: float,
) -> None:
    await components.start()
    orchestrator = components.orchestrator

    if check_ambiguity:
        verdict = await orchestrator.detect_ambiguity(request.request)
        if verdict.is_ambiguous:
            console.print(
                Panel(
                    verdict.clarification_prompt or "Please clarify your request.",
                    title="[yellow]Clarification needed[/yellow]",
                    border_style="yellow",
                    expand=False,
                )
            )
            raise typer.Exit(2)

    if stream:
        async for fragment in orchestrator.stream_code(request):
            console.out(fragment, end="", highlight=False)
        console.out("")
        return

    result = await orchestrator.generate_code_with_deadline(request, deadline_s=deadline_s)
    if json_out:
        console.print_json(json.dumps(result.model_dump()))
    else:
        _print_result(result, OutputType.parse(request.output_type))


def _print_result(result: GenerationResult, output_type: OutputType) -> None:
    """Render a GenerationResult to the terminal using Rich."""
    console.print()
    console.print(
        Panel(
            Syntax(result.generated_code, _SYNTAX[output_type], word_wrap=True),
            title=f"[bold green]Generated {output_type.value}[/bold green]",
            border_style="green",
            expand=True,
        )
    )

    validation = result.validation
    if validation.is_valid:
        console.print("[green][OK] Validation passed[/green]")
    for error in validation.errors:
        console.print(f"[red]error:[/red] {error}")
    for suggestion in validation.suggestions:
        console.print(f"[yellow]suggestion:[/yellow] {suggestion}")

    meta = result.metadata
    console.print(
        f"[dim]"
        f"model={meta.model}  "
        f"tokens={meta.tokens_used}  "
        f"time={meta.processing_time_ms}ms  |  "
        f"context={', '.join(meta.context_files)}"
        f"[/dim]\n"
    )


@app.command()
def ambiguity(
    request: str = typer.Argument(..., help="Request text to check"),
    llm: bool = typer.Option(True, "--llm/--no-llm", help="Ask the model when heuristics pass"),
    config: str = _CONFIG_OPTION,
) -> None:
    """Check whether a request needs clarification before generation."""
    components = _components(config)
    detector = components.orchestrator.ambiguity_detector
    if not llm:
        detector = AmbiguityDetector()

    verdict = _run(detector.detect(request))
    if verdict.is_ambiguous:
        console.print(f"[yellow]Ambiguous[/yellow] ({verdict.source}): {verdict.clarification_prompt}")
        raise typer.Exit(2)
    console.print(f"[green]Clear[/green] ({verdict.source})")


@app.command()
def health(config: str = _CONFIG_OPTION) -> None:
    """Check that the vector index is loaded and consistent."""
    components = _components(config)
    ok, total = _run(_health_async(components))
    if not ok:
        console.print("[red]Vector index: unhealthy[/red]")
        raise typer.Exit(1)
    console.print(f"[green][OK] Vector index healthy[/green] | {total:,} chunks")


async def _health_async(components: Components) -> tuple[bool, int]:
    await components.start()
    ok = await components.index.health_check()
    return ok, (await components.index.count() if ok else 0)


# --- Entry Point --------------------------------------------------------------

if __name__ == "__main__":
    app()
