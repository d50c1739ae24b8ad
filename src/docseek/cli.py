"""CLI entry point for docseek."""

import json
import logging
import time
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import (
    add_source,
    find_project_root,
    initialize_project,
    is_initialized,
    load_config,
    models_dir,
    save_config,
)
from .errors import DocseekError
from .models import Source

console = Console()


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # Model libraries are chatty at INFO
    for noisy in ("sentence_transformers", "chromadb", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


@click.group()
@click.option("--root", "-r", "root", default=None, type=click.Path(file_okay=False),
              help="Project root (default: auto-detect)")
@click.pass_context
def cli(ctx, root):
    """docseek - local hybrid search over your documents."""
    ctx.ensure_object(dict)
    ctx.obj["root"] = Path(root).resolve() if root else find_project_root()


def _get_config(ctx) -> dict:
    root = ctx.obj["root"]
    try:
        config = load_config(root)
    except DocseekError as e:
        raise click.ClickException(str(e)) from e
    _setup_logging(config["runtime"]["log_level"])
    return config


def _services(ctx, with_reranker: bool = False) -> dict:
    """Open the store and build the pipeline objects for this project."""
    from .embeddings import Embedder, Reranker
    from .ingest.indexer import Indexer
    from .query.retrieval import Retriever
    from .storage import open_store

    root = ctx.obj["root"]
    config = _get_config(ctx)
    try:
        store = open_store(root, config)
    except DocseekError as e:
        raise click.ClickException(str(e)) from e
    ctx.call_on_close(store.close)

    embedder = Embedder(config, cache_dir=models_dir(root))
    reranker = Reranker(config, cache_dir=models_dir(root)) if with_reranker else None
    return {
        "config": config,
        "store": store,
        "embedder": embedder,
        "indexer": Indexer(root, config, store, embedder),
        "retriever": Retriever(config, store, embedder, reranker),
    }


@cli.command()
@click.pass_context
def init(ctx):
    """Initialize docseek in the project root."""
    root = ctx.obj["root"]
    base = initialize_project(root)
    console.print(f"[bold green]✓ Initialized docseek at {base}[/]")
    console.print("  Run: docseek add <path>")


@cli.command()
@click.argument("path", type=click.Path(exists=True))
@click.option("--name", default=None, help="Source name (default: the path)")
@click.option("--include", multiple=True, help="Glob pattern to include (repeatable)")
@click.option("--exclude", multiple=True, help="Pattern to exclude (repeatable)")
@click.option("--watch/--no-watch", default=True, help="Watch this source for changes")
@click.pass_context
def add(ctx, path, name, include, exclude, watch):
    """Add a file or directory as a source and index it."""
    root = ctx.obj["root"]
    if not is_initialized(root):
        initialize_project(root)

    abs_path = Path(path).resolve()
    try:
        rel_path = abs_path.relative_to(root).as_posix() or "."
    except ValueError:
        rel_path = str(abs_path)

    source = Source(
        name=name or rel_path,
        path=rel_path,
        include=list(include),
        exclude=list(exclude),
        watch=watch,
    )
    services = _services(ctx)
    config = add_source(services["config"], source)
    save_config(config, root)

    with console.status(f"[blue]Indexing {source.name}...[/]"):
        result = services["indexer"].index_source(source)

    console.print(f"[green]✓ Indexed {result.indexed} file(s)[/], {result.skipped} unchanged")
    if result.errors:
        console.print(f"[red]✗ {len(result.errors)} error(s):[/]")
        for err in result.errors:
            console.print(f"  [red]{err}[/]")


@cli.command()
@click.argument("query", required=False)
@click.option("--limit", "-n", default=None, type=int, help="Number of results")
@click.option("--cursor", default=None, help="Cursor from a previous page")
@click.option("--batch", "batch_file", default=None, type=click.Path(exists=True, dir_okay=False),
              help="Run one query per line of FILE")
@click.option("--rerank", is_flag=True, help="Rerank results with a cross-encoder")
@click.option("--json", "as_json", is_flag=True, help="Print the raw JSON response")
@click.pass_context
def search(ctx, query, limit, cursor, batch_file, rerank, as_json):
    """Hybrid keyword + semantic search over indexed documents."""
    if batch_file:
        queries = [
            line.strip()
            for line in Path(batch_file).read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]
    elif query:
        queries = [query]
    else:
        raise click.UsageError("Provide a QUERY or --batch FILE")

    services = _services(ctx, with_reranker=rerank)
    responses = []
    for q in queries:
        try:
            # Cursors belong to a single query
            responses.append(services["retriever"].search(
                q, limit=limit, cursor=None if batch_file else cursor, rerank=rerank
            ))
        except DocseekError as e:
            raise click.ClickException(str(e)) from e

    if as_json:
        payload = [r.to_dict() for r in responses] if batch_file else responses[0].to_dict()
        click.echo(json.dumps(payload, indent=2))
        return

    for response in responses:
        _print_response(response)


def _print_response(response) -> None:
    if not response.results:
        console.print(f"[yellow]No results for '{response.query}'. Have you run 'docseek add'?[/]")
        return

    table = Table(title=f"Results for '{response.query}' (confidence {response.confidence:.2f})")
    table.add_column("#", style="dim", width=3)
    table.add_column("Location", style="cyan")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Snippet", max_width=70)

    for i, r in enumerate(response.results, 1):
        location = f"{r.path}:{r.line_start}-{r.line_end}"
        if r.page_start:
            location += f" (p{r.page_start})"
        table.add_row(str(i), location, f"{r.score:.3f}", r.snippet[:140].replace("\n", " "))

    console.print(table)
    if response.pii_redacted:
        console.print("[dim]Some snippets had personal data redacted.[/]")
    if response.next_cursor:
        console.print(f"[dim]More results: --cursor {response.next_cursor}[/]")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print the raw JSON status")
@click.pass_context
def status(ctx, as_json):
    """Show index statistics."""
    services = _services(ctx)
    s = services["retriever"].status()

    if as_json:
        click.echo(json.dumps(s.to_dict(), indent=2))
        return

    console.print(f"\n[bold]docseek index: {s.project_id}[/]")
    console.print(f"  State: {s.index_state}")
    console.print(f"  Documents: {s.documents}")
    console.print(f"  Chunks: {s.chunks}")
    if s.last_event:
        console.print(f"  Last event: {s.last_event.type} {s.last_event.path} at {s.last_event.at}")
    for warning in s.warnings:
        console.print(f"  [yellow]! {warning}[/]")


@cli.command("list")
@click.pass_context
def list_documents(ctx):
    """List indexed documents."""
    services = _services(ctx)
    docs = services["store"].list_documents()
    if not docs:
        console.print("[yellow]No documents indexed.[/]")
        return

    table = Table(title=f"{len(docs)} document(s)")
    table.add_column("Document", style="cyan")
    table.add_column("Source")
    table.add_column("Format")
    table.add_column("Size", justify="right")
    table.add_column("Updated", style="dim")
    for d in docs:
        table.add_row(d.doc_id, d.source_name, d.format, f"{d.size_bytes:,}", d.updated_at[:19])
    console.print(table)


@cli.command()
@click.argument("path")
@click.pass_context
def delete(ctx, path):
    """Remove a document, or every document under a directory, from the index."""
    services = _services(ctx)
    if services["indexer"].delete_document(path):
        console.print(f"[green]✓ Removed {path} from the index[/]")
    else:
        raise click.ClickException(f"Not found in index: {path}")


@cli.command()
@click.option("--reranker", "with_reranker", is_flag=True, help="Also download the reranker model")
@click.pass_context
def bootstrap(ctx, with_reranker):
    """Download the models into the project's model cache."""
    from .embeddings import Embedder, Reranker

    root = ctx.obj["root"]
    if not is_initialized(root):
        base = initialize_project(root)
        console.print(f"[green]✓ Initialized docseek at {base}[/]")
    config = _get_config(ctx)
    cache = models_dir(root)
    cache.mkdir(parents=True, exist_ok=True)

    holders = [("Embedding", Embedder(config, cache_dir=cache))]
    if with_reranker:
        holders.append(("Reranker", Reranker(config, cache_dir=cache)))

    for label, holder in holders:
        start = time.monotonic()
        with console.status(f"[blue]Downloading {label.lower()} model {holder.model_name}...[/]"):
            try:
                _ = holder.model
            except DocseekError as e:
                raise click.ClickException(str(e)) from e
        console.print(f"[green]✓ {label} model ready[/] ({time.monotonic() - start:.1f}s)")

    console.print(f"  Models directory: {cache}")
    if not with_reranker:
        console.print("  [dim]Run 'docseek bootstrap --reranker' to enable --rerank[/]")


@cli.group()
def audit():
    """Inspect the index for quality issues."""


@audit.command("duplicates")
@click.option("--threshold", "-t", default=None, type=click.FloatRange(0.0, 1.0),
              help="Minimum cosine similarity (default: from config)")
@click.option("--limit", "-l", default=None, type=click.IntRange(min=1), help="Maximum groups")
@click.option("--json", "as_json", is_flag=True, help="Print the groups as JSON")
@click.pass_context
def audit_duplicates(ctx, threshold, limit, as_json):
    """Find groups of near-duplicate chunks."""
    services = _services(ctx)
    groups = services["retriever"].find_duplicates(threshold=threshold, limit=limit)

    if as_json:
        click.echo(json.dumps([g.to_dict() for g in groups], indent=2))
        return

    if not groups:
        console.print("[green]No near-duplicates found.[/]")
        return

    console.print(f"[bold]Found {len(groups)} duplicate group(s)[/]\n")
    for i, group in enumerate(groups, 1):
        table = Table(title=f"Group {i} (similarity {group.similarity:.1%})", title_justify="left")
        table.add_column("Location", style="cyan")
        table.add_column("Snippet", max_width=80)
        for r in group.chunks:
            table.add_row(f"{r.path}:{r.line_start}-{r.line_end}", r.snippet[:80].replace("\n", " "))
        console.print(table)


@cli.command()
@click.pass_context
def watch(ctx):
    """Watch configured sources and re-index on change."""
    from .watcher import ChangeWatcher

    services = _services(ctx)
    watcher = ChangeWatcher(ctx.obj["root"], services["config"], services["indexer"])
    try:
        watcher.run()
    except DocseekError as e:
        raise click.ClickException(str(e)) from e


if __name__ == "__main__":
    cli()
