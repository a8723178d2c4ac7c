"""
Docsyphon CLI - command-line interface for the batch documentation pipeline.

Runs processing, inspects and resets per-stream watermarks, indexes the
documentation corpus and manages the tenant ruleset.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from docsyphon.logging_config import setup_logging

app = typer.Typer(
    name="docsyphon",
    help="Docsyphon - turns community chat into documentation proposals",
    no_args_is_help=True,
)

console = Console()


def _setup_logging() -> None:
    # Fall back to console logging if the log directory is not writable
    try:
        setup_logging(context="cli")
    except PermissionError:
        import logging

        logging.basicConfig(level=logging.INFO)


def _parse_time(value: str) -> datetime:
    from docsyphon.utils.time import as_utc

    try:
        return as_utc(datetime.fromisoformat(value))
    except ValueError:
        console.print(f"[bold red]Error:[/bold red] Not an ISO 8601 timestamp: {value}")
        raise typer.Exit(1)


@app.command()
def process(
    stream: Optional[str] = typer.Option(
        None, "--stream", help="Process only this stream (ignores the exclusion list)"
    ),
    skip_checks: bool = typer.Option(
        False, "--skip-checks", help="Skip startup dependency checks"
    ),
) -> None:
    """
    Process PENDING messages into classifications and proposals.

    Exits with status 1 when any message failed; those messages stay
    PENDING and are retried by the next run.
    """
    _setup_logging()

    from docsyphon.config import settings
    from docsyphon.db.connection import SessionLocal, db_session
    from docsyphon.exceptions import ConfigurationError
    from docsyphon.pipeline import BatchProcessor
    from docsyphon.retrieval.document_index import DocumentIndex, OpenAIEmbeddingClient
    from docsyphon.startup import StartupCheckError, run_all_startup_checks

    if not skip_checks:

        def report(name: str, ok: bool, duration_ms: float) -> None:
            status = "[green]PASS[/green]" if ok else "[red]FAIL[/red]"
            console.print(f"  Checking {name}... {status} ({duration_ms:.1f}ms)")

        try:
            run_all_startup_checks(report)
        except StartupCheckError as e:
            console.print(str(e))
            raise typer.Exit(1)

    console.print(f"[bold blue]Processing streams:[/bold blue] {stream or 'all'}")

    try:
        search = DocumentIndex(
            SessionLocal,
            OpenAIEmbeddingClient(settings.openai_api_key, settings.embedding_model),
        )
        with db_session() as session:
            processor = BatchProcessor.from_settings(session, search)
            result = processor.process_batches(stream_id=stream)
    except (ConfigurationError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    if result.skipped:
        console.print("[yellow]Another processing run holds the lock, skipped[/yellow]")
        return

    console.print()
    console.print("[bold]Summary:[/bold]")
    console.print(f"  Streams: {', '.join(result.streams) or 'none'}")
    console.print(f"  Messages processed: {result.messages_processed}")
    console.print(f"  Conversations: {result.conversations_processed}")
    console.print(f"  Proposals created: {result.proposals_created}")
    console.print(f"  Proposals rejected by ruleset: {result.proposals_rejected}")
    console.print(f"  Failed messages: {result.failed_messages}")

    if result.lock_lost:
        console.print("[bold red]Job lock was taken over by another run, stopped early[/bold red]")
    if result.failed_messages > 0 or result.lock_lost:
        raise typer.Exit(1)


@app.command()
def status() -> None:
    """Show the watermark and pending message count of every stream."""
    from docsyphon.db.connection import db_session
    from docsyphon.db.repositories import MessageRepository, WatermarkRepository
    from docsyphon.utils.time import as_utc

    table = Table(title="Streams")
    table.add_column("Stream", style="cyan")
    table.add_column("Watermark")
    table.add_column("Last batch")
    table.add_column("Pending", justify="right")

    with db_session() as session:
        messages = MessageRepository(session)
        watermarks = WatermarkRepository(session)
        streams = set(messages.get_streams_with_pending())
        streams.update(w.stream_id for w in watermarks.get_all())

        for stream_id in sorted(streams):
            watermark = watermarks.get_by_stream(stream_id)
            last_batch = watermark.last_processed_batch if watermark else None
            table.add_row(
                stream_id,
                as_utc(watermark.watermark_time).isoformat() if watermark else "-",
                as_utc(last_batch).isoformat() if last_batch else "-",
                str(messages.count_pending(stream_id)),
            )

    console.print(table)


@app.command("reset-watermark")
def reset_watermark(
    stream: str = typer.Argument(..., help="Stream id"),
    to: str = typer.Option(..., "--to", help="New watermark (ISO 8601)"),
) -> None:
    """
    Set a stream's watermark, moving it backwards if needed.

    Messages already COMPLETED are not reprocessed; only PENDING messages
    at or after the new watermark are picked up by the next run.
    """
    _setup_logging()
    from docsyphon.db.connection import db_session
    from docsyphon.db.repositories import WatermarkRepository

    new_time = _parse_time(to)
    with db_session() as session:
        WatermarkRepository(session).reset(stream, new_time)

    console.print(f"[green]Watermark for {stream} set to {new_time.isoformat()}[/green]")


@app.command("index-docs")
def index_docs(
    path: Path = typer.Argument(..., help="Root directory of the documentation"),
) -> None:
    """Embed and index every markdown page under PATH."""
    _setup_logging()
    from docsyphon.config import settings
    from docsyphon.db.connection import SessionLocal, db_session
    from docsyphon.retrieval.document_index import DocumentIndex, OpenAIEmbeddingClient

    if not path.is_dir():
        console.print(f"[bold red]Error:[/bold red] Not a directory: {path}")
        raise typer.Exit(1)
    if not settings.openai_api_key:
        console.print("[bold red]Error:[/bold red] OPENAI_API_KEY not set in environment")
        raise typer.Exit(1)

    index = DocumentIndex(
        SessionLocal,
        OpenAIEmbeddingClient(settings.openai_api_key, settings.embedding_model),
    )
    console.print(f"[bold blue]Indexing docs from:[/bold blue] {path}")
    with db_session() as session:
        counts = index.index_directory(path, session)

    console.print(
        f"[green]✓ Indexed {counts['indexed']} pages[/green] "
        f"({counts['unchanged']} unchanged, {counts['total']} total)"
    )


@app.command("init-db")
def init_db() -> None:
    """Create all tables from the ORM models (prefer `alembic upgrade head`)."""
    from docsyphon.db.connection import init_db as create_tables

    create_tables()
    console.print("[green]✓ Database tables created[/green]")


@app.command("set-ruleset")
def set_ruleset(
    file: Path = typer.Argument(..., help="Markdown ruleset file"),
    tenant: Optional[str] = typer.Option(None, help="Tenant id (defaults to TENANT_ID)"),
) -> None:
    """Store the tenant ruleset used to reject and flag proposals."""
    from docsyphon.config import settings
    from docsyphon.db.connection import db_session
    from docsyphon.db.repositories import RulesetRepository
    from docsyphon.quality.ruleset import RuleKind, parse_ruleset

    if not file.is_file():
        console.print(f"[bold red]Error:[/bold red] File not found: {file}")
        raise typer.Exit(1)

    content = file.read_text(encoding="utf-8")
    parsed = parse_ruleset(content)
    tenant_id = tenant or settings.tenant_id
    with db_session() as session:
        RulesetRepository(session).save(tenant_id, content)

    rules = parsed.rejection_rules + parsed.quality_gates
    unrecognized = [r.text for r in rules if r.kind is RuleKind.UNRECOGNIZED]
    console.print(
        f"[green]✓ Saved ruleset for {tenant_id}[/green]: "
        f"{len(parsed.prompt_context)} prompt rules, "
        f"{len(parsed.rejection_rules)} rejection rules, "
        f"{len(parsed.quality_gates)} quality gates"
    )
    for text in unrecognized:
        console.print(f"[yellow]⚠ Rule not recognized, it will never match:[/yellow] {text}")


@app.command("clear-cache")
def clear_cache(
    expired: bool = typer.Option(False, "--expired", help="Only remove expired entries"),
) -> None:
    """Clear the LLM response cache."""
    from docsyphon.config import settings
    from docsyphon.llm.cache import LLMResponseCache

    cache = LLMResponseCache(Path(settings.llm_cache_dir), settings.llm_cache_ttl_days)
    removed = cache.clear_expired() if expired else cache.clear()
    console.print(f"[green]✓ Removed {removed} cached responses[/green]")


if __name__ == "__main__":
    app()
