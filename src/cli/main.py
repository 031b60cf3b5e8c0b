"""
Typer CLI for the examdeck study engine.

Commands:
    examdeck db init                  - Create database tables
    examdeck db health                - Check database connectivity
    examdeck exam create NAME         - Create an exam
    examdeck exam list                - List exams with progress
    examdeck exam show EXAM_ID        - Exam stats by section
    examdeck exam delete EXAM_ID      - Delete an exam and all its progress
    examdeck questions load FILE      - Ingest a JSON file of questions
    examdeck study EXAM_ID            - Interactive study session
    examdeck bookmark EXAM_ID NUMBER  - Toggle a bookmark
    examdeck progress export EXAM_ID  - Write a progress snapshot
    examdeck progress import EXAM_ID FILE - Replay a progress snapshot
    examdeck serve                    - Run the HTTP API

Usage:
    examdeck --help
    examdeck exam create "CCNA 200-301"
    examdeck questions load questions.json --exam <exam-id>
    examdeck study <exam-id> --limit 20
    examdeck progress export <exam-id> -o progress.json
"""

from __future__ import annotations

import json
import os
import re
import sys
import time
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

# Fix Windows encoding issues for Unicode characters (box drawing)
if sys.platform == "win32":
    os.environ.setdefault("PYTHONIOENCODING", "utf-8")
    if hasattr(sys.stdout, "reconfigure"):
        sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    if hasattr(sys.stderr, "reconfigure"):
        sys.stderr.reconfigure(encoding="utf-8", errors="replace")

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import Settings, get_settings
from src.bank.question_bank import QuestionBank
from src.core.errors import StudyEngineError, ValidationError
from src.core.logging_setup import configure_logging
from src.core.retry import retry_transient
from src.db.storage import SqlStudyStorage, build_storage
from src.progress.codec import ProgressCodec
from src.study.models import QuestionRecord
from src.study.session_engine import GradingResult, SessionEngine, StudySession
from src.study.stats_aggregator import StatsAggregator

T = TypeVar("T")

app = typer.Typer(
    help="examdeck CLI: spaced-repetition exam study",
    no_args_is_help=True,
)

console = Console()


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Self-hosted exam study with SM-2 spaced repetition."""
    configure_logging(get_settings(), level="DEBUG" if verbose else None)


# ========================================
# Context Builder (Dependency Injection)
# ========================================


class CLIContext:
    """
    Dependency container for CLI commands.

    The storage handle is built on first use and its tables are created if
    missing, so every command works against a fresh SQLite file.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._storage: SqlStudyStorage | None = None

    @property
    def storage(self) -> SqlStudyStorage:
        if self._storage is None:
            self._storage = build_storage(self.settings)
            self._storage.create_schema()
        return self._storage

    @property
    def bank(self) -> QuestionBank:
        return QuestionBank(self.storage)

    @property
    def engine(self) -> SessionEngine:
        return SessionEngine(self.storage, settings=self.settings)

    @property
    def stats(self) -> StatsAggregator:
        return StatsAggregator(self.storage)

    @property
    def codec(self) -> ProgressCodec:
        return ProgressCodec(self.storage, settings=self.settings)

    def call(self, fn: Callable[[], T]) -> T:
        """Run an engine call with transient-failure backoff; report engine errors and exit 1."""
        try:
            return retry_transient(
                fn,
                attempts=self.settings.transient_retry_attempts,
                base_delay=self.settings.transient_retry_base_delay,
            )
        except StudyEngineError as e:
            _print_error(e)
            raise typer.Exit(code=1)


def _build_context() -> CLIContext:
    return CLIContext()


def _print_error(error: StudyEngineError) -> None:
    rprint(f"[red]Error:[/red] {error.message} [dim]({error.code})[/dim]")
    if error.details:
        rprint(f"[dim]{json.dumps(error.details, default=str)}[/dim]")


def _read_json(path: Path):
    if not path.exists():
        rprint(f"[red]Error:[/red] File not found: {path}")
        raise typer.Exit(code=1)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        rprint(f"[red]Error:[/red] {path} is not valid JSON: {e}")
        raise typer.Exit(code=1)


# ========================================
# DATABASE COMMANDS
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """
    Create database tables from the SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    ctx = _build_context()
    logger.info("Initializing database tables...")
    ctx.call(lambda: ctx.storage.create_schema())
    rprint("[green]✓[/green] Database initialized!")


@db_app.command("health")
def db_health() -> None:
    """Check database connectivity."""
    ctx = _build_context()
    status, error = build_storage(ctx.settings).health()
    if status == "ok":
        rprint("[green]✓[/green] Database reachable")
        return
    rprint(f"[red]✗[/red] Database unavailable: {error}")
    raise typer.Exit(code=1)


# ========================================
# EXAM COMMANDS
# ========================================

exam_app = typer.Typer(help="Exam provisioning and progress")
app.add_typer(exam_app, name="exam")


@exam_app.command("create")
def exam_create(
    name: str = typer.Argument(..., help="Exam name"),
    description: str | None = typer.Option(None, "--description", "-d"),
) -> None:
    """Create an empty exam."""
    ctx = _build_context()
    exam = ctx.call(lambda: ctx.bank.create_exam(name, description))
    rprint(f"[green]✓[/green] Created exam [bold]{exam.name}[/bold]")
    rprint(f"  id: {exam.id}")


@exam_app.command("list")
def exam_list() -> None:
    """List exams with question counts, accuracy and due reviews."""
    ctx = _build_context()
    rows = ctx.call(lambda: ctx.stats.exam_overview())

    if not rows:
        rprint("[yellow]No exams yet[/yellow]")
        return

    table = Table(title=f"Exams ({len(rows)})")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Questions", justify="right")
    table.add_column("Answered", justify="right")
    table.add_column("Accuracy", justify="right", style="green")
    table.add_column("Due", justify="right", style="yellow")

    for row in rows:
        table.add_row(
            row.id,
            row.name,
            str(row.question_count),
            str(row.answered_count),
            f"{row.accuracy}%",
            str(row.due_for_review),
        )

    console.print(table)


@exam_app.command("show")
def exam_show(exam_id: str = typer.Argument(..., help="Exam id")) -> None:
    """Show progress statistics for one exam, by section."""
    ctx = _build_context()
    exam = ctx.call(lambda: ctx.bank.get_exam(exam_id))
    stats = ctx.call(lambda: ctx.stats.exam_stats(exam_id))

    rprint(f"[bold]{exam.name}[/bold]")
    if exam.description:
        rprint(f"[dim]{exam.description}[/dim]")
    rprint(
        f"  Questions: {stats.total_questions}  Answered: {stats.answered}  "
        f"Correct: {stats.correct}  Accuracy: {stats.accuracy}%  "
        f"Due for review: {stats.due_for_review}"
    )

    if stats.by_section:
        table = Table(title="By section")
        table.add_column("Section ID", style="dim")
        table.add_column("Section", style="cyan")
        table.add_column("Mastered", justify="right")
        table.add_column("Accuracy", justify="right", style="green")
        for section in stats.by_section:
            table.add_row(
                section.section_id,
                section.section,
                f"{section.correct}/{section.total}",
                f"{section.accuracy}%",
            )
        console.print(table)


@exam_app.command("delete")
def exam_delete(
    exam_id: str = typer.Argument(..., help="Exam id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete an exam with all its questions, answers, cards and bookmarks."""
    ctx = _build_context()
    if not yes:
        typer.confirm(f"Delete exam {exam_id} and all of its progress?", abort=True)

    counts = ctx.call(lambda: ctx.bank.delete_exam(exam_id))
    rprint(
        f"[green]✓[/green] Deleted exam {exam_id}: {counts['questions']} questions, "
        f"{counts['answers']} answers, {counts['srsCards']} cards, {counts['bookmarks']} bookmarks"
    )


# ========================================
# QUESTION COMMANDS
# ========================================

questions_app = typer.Typer(help="Question bank")
app.add_typer(questions_app, name="questions")


@questions_app.command("load")
def questions_load(
    path: Path = typer.Argument(..., help="JSON file: a list of questions or {\"questions\": [...]}"),
    exam_id: str = typer.Option(..., "--exam", "-e", help="Target exam id"),
    start_number: int | None = typer.Option(None, "--start", help="First number to assign"),
) -> None:
    """
    Validate and ingest question documents.

    Every document is validated first; nothing is stored if any is invalid.
    """
    ctx = _build_context()
    document = _read_json(path)
    documents = document.get("questions", []) if isinstance(document, dict) else document
    if not isinstance(documents, list):
        rprint("[red]Error:[/red] Expected a list of question documents")
        raise typer.Exit(code=1)

    stored = ctx.call(lambda: ctx.bank.ingest(exam_id, documents, start_number=start_number))
    if stored:
        rprint(
            f"[green]✓[/green] Loaded {len(stored)} questions "
            f"(#{stored[0].number}-#{stored[-1].number})"
        )
    else:
        rprint("[yellow]No questions in file[/yellow]")


# ========================================
# STUDY COMMANDS
# ========================================


def _render_question(question: QuestionRecord) -> None:
    body = [question.text, ""]
    for key, text in question.options.items():
        body.append(f"[bold cyan]{key}[/bold cyan]  {text}")
    subtitle = question.section or None
    console.print(Panel("\n".join(body), title=f"#{question.number}", subtitle=subtitle))


def _parse_selection(raw: str, question: QuestionRecord) -> list[str]:
    keys_by_upper = {key.upper(): key for key in question.options}
    tokens = [token for token in re.split(r"[,\s]+", raw.strip()) if token]
    return [keys_by_upper.get(token.upper(), token) for token in tokens]


def _render_result(result: GradingResult, question: QuestionRecord) -> None:
    if result.correct:
        rprint("[green]✓ Correct[/green]")
    else:
        rprint(f"[red]✗ Incorrect[/red]  answer: {', '.join(sorted(question.correct))}")
        for key in result.answer.selected:
            if key in question.why_wrong:
                rprint(f"  [dim]{key}: {question.why_wrong[key]}[/dim]")
    if question.explanation:
        rprint(f"[dim]{question.explanation}[/dim]")
    rprint(f"[dim]Next review in {result.card.interval_days} day(s)[/dim]\n")


@app.command("study")
def study(
    exam_id: str = typer.Argument(..., help="Exam id"),
    limit: int | None = typer.Option(None, "--limit", "-n", min=1, help="Stop after N answers"),
) -> None:
    """
    Interactive study session.

    Due reviews come first, then unseen questions. Enter option keys
    separated by commas (e.g. "A" or "A,C"); "q" quits.
    """
    ctx = _build_context()
    engine = ctx.call(lambda: ctx.engine)
    session: StudySession = engine.start_session(exam_id)

    while limit is None or session.answered < limit:
        question = ctx.call(lambda: session.advance())
        if question is None:
            rprint("[green]Nothing left to study right now.[/green]")
            break

        _render_question(question)
        started = time.monotonic()
        result = None
        while result is None:
            raw = typer.prompt("Answer (q to quit)", default="", show_default=False)
            if raw.strip().lower() == "q":
                _print_summary(session)
                return
            elapsed_ms = int((time.monotonic() - started) * 1000)
            selected = _parse_selection(raw, question)
            try:
                result = retry_transient(
                    lambda: session.submit(selected, elapsed_ms),
                    attempts=ctx.settings.transient_retry_attempts,
                    base_delay=ctx.settings.transient_retry_base_delay,
                )
            except ValidationError as e:
                rprint(f"[yellow]{e.message}[/yellow]")
            except StudyEngineError as e:
                _print_error(e)
                raise typer.Exit(code=1)

        _render_result(result, question)

    _print_summary(session)


def _print_summary(session: StudySession) -> None:
    rprint(
        f"[bold]Session:[/bold] {session.answered} answered, {session.correct} correct "
        f"({session.accuracy:.0%})"
    )


@app.command("bookmark")
def bookmark(
    exam_id: str = typer.Argument(..., help="Exam id"),
    number: int = typer.Argument(..., help="Question number"),
) -> None:
    """Toggle the bookmark on a question."""
    ctx = _build_context()
    marked = ctx.call(lambda: ctx.engine.toggle_bookmark(exam_id, number))
    if marked:
        rprint(f"[green]★[/green] Bookmarked question #{number}")
    else:
        rprint(f"[dim]☆[/dim] Removed bookmark from question #{number}")


# ========================================
# PROGRESS COMMANDS
# ========================================

progress_app = typer.Typer(help="Progress snapshot export/import")
app.add_typer(progress_app, name="progress")


@progress_app.command("export")
def progress_export(
    exam_id: str = typer.Argument(..., help="Exam id"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write to file instead of stdout"),
) -> None:
    """Export answers, SRS cards and bookmarks as a versioned JSON snapshot."""
    ctx = _build_context()
    snapshot = ctx.call(lambda: ctx.codec.export(exam_id))
    payload = ctx.codec.dumps(snapshot)

    if output is None:
        typer.echo(payload)
        return

    output.write_text(payload, encoding="utf-8")
    rprint(
        f"[green]✓[/green] Exported {len(snapshot.answers)} answers, {len(snapshot.srs_cards)} cards, "
        f"{len(snapshot.bookmarks)} bookmarks to {output}"
    )


@progress_app.command("import")
def progress_import(
    exam_id: str = typer.Argument(..., help="Target exam id"),
    path: Path = typer.Argument(..., help="Snapshot JSON file"),
    remap: bool = typer.Option(
        False, "--remap", help="Accept a snapshot exported from another exam id"
    ),
) -> None:
    """
    Replay a progress snapshot into an exam.

    Safe to repeat: answers already present are skipped and cards converge
    to the snapshot's state.
    """
    ctx = _build_context()
    if not path.exists():
        rprint(f"[red]Error:[/red] File not found: {path}")
        raise typer.Exit(code=1)

    raw = path.read_text(encoding="utf-8")
    report = ctx.call(lambda: ctx.codec.import_snapshot(exam_id, raw, remap=remap))

    rprint("[green]Import complete:[/green]")
    rprint(f"  Answers imported: {report.answers_imported}")
    rprint(f"  Answers already present: {report.answers_skipped}")
    rprint(f"  Cards written: {report.cards_written}")
    rprint(f"  Bookmarks imported: {report.bookmarks_imported}")


# ========================================
# SERVER
# ========================================


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host", help="Bind host (default from settings)"),
    port: int | None = typer.Option(None, "--port", help="Bind port (default from settings)"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@app.command("info")
def show_info() -> None:
    """Show configuration."""
    settings = get_settings()

    table = Table(title="examdeck Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Database URL", settings.database_url.split("@")[-1])
    table.add_row("Storage timeout", f"{settings.storage_timeout_seconds}s")
    table.add_row("Snapshot version", settings.snapshot_version)
    table.add_row("Import batch size", str(settings.import_batch_size))
    table.add_row("Log Level", settings.log_level)

    console.print(table)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
