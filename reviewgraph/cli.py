"""Typer-based CLI for ReviewGraph pre-merge PR analysis."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__, config, config_manager
from .diff_mapper import map_file_line_to_pr_line
from .embeddings import EMBEDDING_MODELS, EmbeddingGenerator, get_embedder
from .full_indexer import LocalSourceProvider, RepositoryIndexer
from .impact import summarize_impact
from .indexer import CodebaseIndexer
from .llm import LLMBreakageOracle, LocalLLM
from .models import IndexingProgress, ReviewReport
from .reviewer import Reviewer, collect_pr_files
from .storage import ProjectManager, project_name_from_path
from .vector_store import open_vector_store

console = Console()

app = typer.Typer(
    help="🔎 ReviewGraph — pre-merge breaking change, impact and duplicate analysis.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

PROVIDERS = tuple(config_manager.DEFAULT_CONFIGS)

_SEVERITY_STYLE = {"high": "red", "medium": "yellow", "low": "green"}


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"ReviewGraph CLI v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
):
    """ReviewGraph CLI: index a codebase and review a change against it."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _build_index(
    root: Path,
    project_name: Optional[str],
    use_vectors: bool,
    embedding_model: Optional[str] = None,
):
    """Index *root* and, when asked, embed its symbols into project memory."""
    indexer = CodebaseIndexer()
    embeddings = None
    store = None
    if use_vectors:
        embeddings = EmbeddingGenerator(get_embedder(embedding_model or config.EMBEDDING_MODEL))
        pm = ProjectManager()
        name = project_name or project_name_from_path(root)
        store = open_vector_store(pm.create_or_get_project(name), model_key=embeddings.model_key)
        if store is None:
            embeddings = None

    progress = RepositoryIndexer(
        indexer,
        LocalSourceProvider(root),
        embeddings=embeddings,
        vector_store=store,
    ).index_repository()
    return indexer, embeddings, store, progress


def _print_progress(progress: IndexingProgress, indexer: CodebaseIndexer) -> None:
    stats = indexer.stats()
    typer.echo(
        f"Files: {progress.processed_files}/{progress.total_files} | "
        f"Symbols: {stats['symbols']} | Edges: {stats['edges']} | "
        f"Embeddings: {progress.generated_embeddings} | Errors: {progress.errors}"
    )
    for path in progress.failed_files:
        typer.echo(f"  failed: {path}", err=True)


@app.command("index")
def index_project(
    project_path: Path = typer.Argument(..., exists=True, file_okay=False, help="Path to source project."),
    project_name: Optional[str] = typer.Option(None, "--name", "-n", help="Explicit memory name for project."),
    vectors: bool = typer.Option(True, "--vectors/--no-vectors", help="Store symbol embeddings in LanceDB."),
    embedding_model: Optional[str] = typer.Option(
        None, "--embedding-model", help=f"Embedding model: {', '.join(EMBEDDING_MODELS)}.",
    ),
):
    """Parse a project, build its call graph and embed its symbols."""
    resolved = project_path.resolve()
    name = project_name or project_name_from_path(resolved)
    indexer, embeddings, store, progress = _build_index(resolved, name, vectors, embedding_model)

    if store is not None:
        pm = ProjectManager()
        pm.set_metadata(name, {
            "project_name": name,
            "source_path": str(resolved),
            "embedding_model": embeddings.model_key if embeddings else None,
            "indexed_at": datetime.now().isoformat(),
        })

    typer.echo(f"Indexed '{resolved}' as project '{name}'.")
    _print_progress(progress, indexer)


def _render_report(report: ReviewReport) -> None:
    if report.breaking_changes:
        table = Table(title="Breaking changes")
        table.add_column("Severity")
        table.add_column("Type")
        table.add_column("Symbol")
        table.add_column("Detail")
        table.add_column("Call sites", justify="right")
        for change in report.breaking_changes:
            style = _SEVERITY_STYLE.get(change.severity, "white")
            table.add_row(
                f"[{style}]{change.severity}[/{style}]",
                change.change_type,
                escape(change.symbol.location),
                escape(change.message),
                str(len(change.call_sites)),
            )
        console.print(table)
    else:
        console.print("[green]No breaking changes detected.[/green]")

    duplicates = report.duplicates_within_pr + report.duplicates_cross_repo
    if duplicates:
        table = Table(title="Possible duplicates")
        table.add_column("Type")
        table.add_column("Similarity", justify="right")
        table.add_column("Symbol")
        table.add_column("Matches")
        table.add_column("Reason")
        for match in duplicates:
            table.add_row(
                match.type,
                f"{match.similarity:.0%}",
                escape(match.symbol1.location),
                escape(match.symbol2.location),
                escape(match.reason),
            )
        console.print(table)

    impact = report.impact
    console.print(
        f"Impact: {len(impact.impacted_files)} file(s), "
        f"{len(impact.impacted_features)} feature(s), "
        f"{len(impact.cascade_failures)} cascade risk(s)"
    )
    console.print(
        f"Comments: {len(report.comments)} anchored, {report.unanchored_findings} outside the diff"
    )


@app.command("review")
def review(
    base: Path = typer.Argument(..., exists=True, file_okay=False, help="Checkout before the change."),
    head: Path = typer.Argument(..., exists=True, file_okay=False, help="Checkout after the change."),
    as_json: bool = typer.Option(False, "--json", help="Print the full report as JSON."),
    vectors: bool = typer.Option(False, "--vectors/--no-vectors", help="Use LanceDB for cross-repo duplicates."),
    project_name: Optional[str] = typer.Option(None, "--name", "-n", help="Project memory for the vector table."),
    use_llm: bool = typer.Option(False, "--llm/--no-llm", help="Ask the configured LLM for breakage scenarios."),
    summary: bool = typer.Option(False, "--summary", help="Also print the markdown impact summary."),
    fail_on_breaking: bool = typer.Option(
        False, "--fail-on-breaking", help="Exit with code 1 when a high severity breaking change is found.",
    ),
):
    """Review the change from BASE to HEAD against the BASE index."""
    base = base.resolve()
    indexer, embeddings, store, progress = _build_index(base, project_name, vectors)
    if progress.errors:
        typer.echo(f"Warning: {progress.errors} file(s) could not be indexed.", err=True)

    oracle = LLMBreakageOracle(LocalLLM()) if use_llm else None
    reviewer = Reviewer(indexer, embeddings=embeddings, vector_store=store, oracle=oracle)
    report = reviewer.review(collect_pr_files(base, head.resolve()))

    if as_json:
        typer.echo(json.dumps(report.to_dict(), indent=2))
    else:
        _render_report(report)
        if summary:
            typer.echo("")
            typer.echo(summarize_impact(report.impact))

    if fail_on_breaking and any(c.severity == "high" for c in report.breaking_changes):
        raise typer.Exit(code=1)


@app.command("map-line")
def map_line(
    patch_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Unified diff for one file."),
    line: int = typer.Argument(..., help="Line number in the post-change file."),
):
    """Check whether a post-change line can carry a review comment."""
    mapped = map_file_line_to_pr_line(patch_file.read_text(encoding="utf-8"), line)
    if mapped is None:
        typer.echo(f"Line {line} is not part of the diff.", err=True)
        raise typer.Exit(code=1)
    typer.echo(str(mapped))


@app.command("list-projects")
def list_projects():
    """List all persisted project memories."""
    projects = ProjectManager().list_projects()
    if not projects:
        typer.echo("No projects indexed yet.")
        raise typer.Exit(code=0)
    for name in projects:
        typer.echo(name)


@app.command("delete-project")
def delete_project(project_name: str = typer.Argument(..., help="Project memory to delete.")):
    """Delete persisted project memory."""
    if not ProjectManager().delete_project(project_name):
        raise typer.BadParameter(f"Project '{project_name}' not found.")
    typer.echo(f"Deleted project '{project_name}'.")


@app.command("set-llm")
def set_llm(
    provider: str = typer.Argument(..., help=f"LLM provider: {', '.join(PROVIDERS)}."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model name (uses provider default if not set)."),
    api_key: Optional[str] = typer.Option(None, "--api-key", "-k", help="API key for cloud providers."),
    endpoint: Optional[str] = typer.Option(None, "--endpoint", "-e", help="Custom endpoint URL."),
):
    """Choose the LLM used for breakage predictions."""
    provider = provider.lower().strip()
    if provider not in PROVIDERS:
        raise typer.BadParameter(f"Unknown provider '{provider}'. Choose from: {', '.join(PROVIDERS)}")

    defaults = config_manager.get_provider_config(provider)
    resolved_model = model or defaults.get("model", "")
    resolved_endpoint = endpoint or defaults.get("endpoint", "")
    if provider != "ollama" and not api_key:
        typer.echo(f"Warning: no API key given for {provider}.", err=True)

    if not config_manager.save_config(provider, resolved_model, api_key or "", resolved_endpoint):
        typer.echo("Failed to save configuration.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"LLM set to {provider} ({resolved_model}).")


@app.command("set-embedding")
def set_embedding(
    model: str = typer.Argument(..., help=f"Embedding model key: {', '.join(EMBEDDING_MODELS)}."),
):
    """Set the embedding model used for vector duplicate search.

    Available models (smallest to largest):

        hash        0 bytes    No download, keyword-level only
        minilm      ~80 MB     Tiny, fast, decent quality
        bge-base    ~440 MB    Solid general-purpose
        jina-code   ~550 MB    Code-aware, good quality
    """
    model = model.lower().strip()
    if model not in EMBEDDING_MODELS:
        raise typer.BadParameter(f"Unknown model '{model}'. Choose from: {', '.join(EMBEDDING_MODELS)}")

    if not config_manager.save_embedding_config(model):
        typer.echo("Failed to save configuration.", err=True)
        raise typer.Exit(code=1)
    spec = EMBEDDING_MODELS[model]
    typer.echo(f"Embedding model set to: {model} ({spec['name']}, dim {spec['dim']})")
    if model != "hash":
        typer.echo("Re-index your project after changing: reviewgraph index <path>")


@app.command("set-threshold")
def set_threshold(
    key: str = typer.Argument(..., help=f"One of: {', '.join(config_manager.ANALYSIS_KEYS)}."),
    value: float = typer.Argument(..., help="New value."),
):
    """Override an analysis threshold or limit in config.toml."""
    if key not in config_manager.ANALYSIS_KEYS:
        raise typer.BadParameter(f"Unknown key '{key}'. Choose from: {', '.join(config_manager.ANALYSIS_KEYS)}")
    stored = int(value) if key in ("vector_top_k", "batch_size", "max_chain_depth") else value
    if not config_manager.save_analysis_config({key: stored}):
        typer.echo("Failed to save configuration.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"{key} = {stored} (applies from the next run)")


@app.command("show-llm")
def show_llm():
    """Show current LLM provider configuration."""
    cfg = config_manager.load_config()
    api_key = cfg.get("api_key", "")
    typer.echo(f"Provider  {cfg.get('provider', 'ollama')}")
    typer.echo(f"Model     {cfg.get('model', '')}")
    if cfg.get("endpoint"):
        typer.echo(f"Endpoint  {cfg['endpoint']}")
    typer.echo(f"API Key   {api_key[:8] + '****' if api_key else '(not set)'}")
    typer.echo(f"Config    {config_manager.CONFIG_FILE}")


if __name__ == "__main__":
    app()
