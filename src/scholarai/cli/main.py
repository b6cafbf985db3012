import os
import json
import asyncio
from pathlib import Path
from typing import List, Optional
import typer
from rich.console import Console
from rich.table import Table
from scholarai.core.logging_config import configure_logging, get_audit_logger
from scholarai.core.settings import PipelineConfig, get_pipeline_config
from scholarai.core.model_client import ModelClient
from scholarai.core.structure import ContentStructurer, filter_notes, note_search_metadata
from scholarai.core.orchestrator import IngestionOrchestrator
from scholarai.core.blob_store import ObjectStore
from scholarai.core.models import IngestionJob, Note
from scholarai.cli.config_manager import get_config_manager

app = typer.Typer(help="ScholarAI CLI: turn lectures, PDFs and photos into study notes")
console = Console()

STATUS_ICONS = {
    "processing": "[blue]🔄",
    "organizing": "[magenta]🧠",
    "success": "[green]✅",
    "error": "[red]❌",
}


@app.callback()
def main():
    # Persisted settings must reach the environment before logging reads it
    get_config_manager().apply_to_environment()
    configure_logging(
        log_level=os.getenv("LOG_LEVEL", "WARNING"),
        json_logs=os.getenv("JSON_LOGS", "false").lower() == "true"
    )


def _load_config(pages_per_chunk: Optional[int] = None) -> PipelineConfig:
    config = get_pipeline_config()
    if pages_per_chunk is not None:
        config.pages_per_chunk = pages_per_chunk
    return config


def _build_structurer(config: PipelineConfig) -> ContentStructurer:
    return ContentStructurer(ModelClient(config), config)


def _notes_file(notes_file: Optional[str]) -> Path:
    return Path(notes_file or os.getenv("SCHOLAR_NOTES_FILE", "./notes.json"))


def _load_notes(path: Path) -> List[Note]:
    if not path.exists():
        return []
    with open(path, 'r') as f:
        return [Note.model_validate(item) for item in json.load(f)]


def _save_notes(path: Path, new_notes: List[Note]):
    """Prepend new notes to the notes file (newest first)."""
    notes = new_notes + _load_notes(path)
    with open(path, 'w') as f:
        json.dump([note.model_dump(mode="json") for note in notes], f, indent=2)


def _find_note(path: Path, note_id: str) -> Note:
    for note in _load_notes(path):
        if note.id == note_id:
            return note
    console.print(f"[red]Error:[/] Note {note_id} not found in {path}")
    raise typer.Exit(1)


def _note_context(note: Note) -> str:
    if note.raw_content:
        return note.raw_content
    if note.original_transcript:
        return note.original_transcript
    parts = [note.summary] + [f"{s.heading}\n{s.content}" for s in note.sections]
    return "\n\n".join(parts)


def _print_status(job: IngestionJob):
    line = f"{STATUS_ICONS.get(job.status, '')} {job.message}[/]"
    if job.detail:
        line += f" [dim]({job.detail})[/]"
    console.print(line)


def _print_note(note: Note):
    console.print(f"[bold]{note.title}[/] [dim]{note.id}[/]")
    console.print(f"   [blue]Subject:[/] {note.subject}   [blue]Type:[/] {note.type}")
    if note.tags:
        console.print(f"   [blue]Tags:[/] {', '.join(note.tags)}")
    if note.summary:
        console.print(f"   [green]Summary:[/] {note.summary}")
    for section in note.sections:
        console.print(f"   • [bold]{section.heading}[/] [dim]({section.type})[/]")


def _run_job(source: str, path: str, subject: Optional[str], notes_file: Optional[str],
             pages_per_chunk: Optional[int] = None):
    input_path = Path(path)
    if not input_path.is_file():
        console.print(f"[red]Error:[/] File {path} does not exist")
        raise typer.Exit(1)

    config = _load_config(pages_per_chunk)
    store_path = _notes_file(notes_file)
    object_store = ObjectStore(Path(os.getenv("SCHOLAR_OBJECT_STORE_DIR", "./object_store")))

    orchestrator = IngestionOrchestrator(
        _build_structurer(config),
        config=config,
        on_notes=lambda notes: _save_notes(store_path, notes),
        store_blob=object_store,
    )
    orchestrator.subscribe(_print_status)

    data = input_path.read_bytes()
    if source == "pdf":
        job = asyncio.run(orchestrator.ingest_pdf(data, subject=subject))
    elif source == "audio":
        job = asyncio.run(orchestrator.ingest_audio(data, filename=input_path.name, subject=subject))
    else:
        job = asyncio.run(orchestrator.ingest_image(data, subject=subject))

    if job.status == "error":
        raise typer.Exit(1)

    console.print()
    for note in job.notes:
        _print_note(note)
    console.print(f"\n[bold]Notes saved to:[/] {store_path}")


@app.command()
def ingest_pdf(
    path: str,
    subject: Optional[str] = typer.Option(None, help="Subject register for the notes"),
    pages_per_chunk: Optional[int] = typer.Option(None, min=1, help="Pages per note"),
    notes_file: Optional[str] = typer.Option(None, help="Notes JSON file"),
):
    """Split a PDF into parts and create one note per part."""
    _run_job("pdf", path, subject, notes_file, pages_per_chunk)


@app.command()
def ingest_audio(
    path: str,
    subject: Optional[str] = typer.Option(None, help="Subject register (auto-detected if omitted)"),
    notes_file: Optional[str] = typer.Option(None, help="Notes JSON file"),
):
    """Transcribe a lecture recording and organize it into a note."""
    _run_job("audio", path, subject, notes_file)


@app.command()
def ingest_image(
    path: str,
    subject: Optional[str] = typer.Option(None, help="Subject register for the note"),
    notes_file: Optional[str] = typer.Option(None, help="Notes JSON file"),
):
    """Read a photo of notes or a whiteboard and turn it into a note."""
    _run_job("image", path, subject, notes_file)


@app.command()
def ask(
    note_id: str,
    question: str,
    deep: bool = typer.Option(False, "--deep", help="Step-by-step explanation"),
    notes_file: Optional[str] = typer.Option(None, help="Notes JSON file"),
):
    """Ask a question about a note."""
    note = _find_note(_notes_file(notes_file), note_id)
    structurer = _build_structurer(_load_config())
    context = _note_context(note)

    with console.status("[bold green]Thinking..."):
        if deep:
            answer = asyncio.run(structurer.solve_with_thinking(context, question))
        else:
            answer = asyncio.run(structurer.quick_answer(context, question))

    if not answer:
        console.print("[yellow]Could not generate an answer.[/]")
        raise typer.Exit(1)
    console.print(answer)


@app.command()
def search(
    query: str,
    local: bool = typer.Option(False, "--local", help="Keyword filter instead of semantic search"),
    notes_file: Optional[str] = typer.Option(None, help="Notes JSON file"),
):
    """Find notes relevant to a query."""
    audit_logger = get_audit_logger("search")
    notes = _load_notes(_notes_file(notes_file))

    if local:
        results = filter_notes(notes, query)
    else:
        structurer = _build_structurer(_load_config())
        with console.status("[bold green]Searching..."):
            ids = asyncio.run(structurer.semantic_search(query, note_search_metadata(notes)))
        by_id = {note.id: note for note in notes}
        results = [by_id[note_id] for note_id in ids]

    audit_logger.info("search_completed", query=query, local=local, results_count=len(results))

    if not results:
        console.print("[yellow]No results found.[/]")
        return

    console.print(f"[green]Found {len(results)} notes:[/]\n")
    for note in results:
        _print_note(note)
        console.print()


@app.command()
def flashcards(
    note_id: str,
    notes_file: Optional[str] = typer.Option(None, help="Notes JSON file"),
):
    """Generate flashcards for a note."""
    note = _find_note(_notes_file(notes_file), note_id)
    structurer = _build_structurer(_load_config())

    with console.status("[bold green]Generating flashcards..."):
        cards = asyncio.run(structurer.generate_flashcards(_note_context(note)))

    if not cards:
        console.print("[yellow]No flashcards generated.[/]")
        raise typer.Exit(1)

    table = Table(title=f"Flashcards: {note.title}")
    table.add_column("Front", style="bold")
    table.add_column("Back")
    for card in cards:
        table.add_row(card.front, card.back)
    console.print(table)


@app.command()
def quiz(
    note_id: str,
    notes_file: Optional[str] = typer.Option(None, help="Notes JSON file"),
):
    """Generate a multiple-choice quiz for a note."""
    note = _find_note(_notes_file(notes_file), note_id)
    structurer = _build_structurer(_load_config())

    with console.status("[bold green]Generating quiz..."):
        questions = asyncio.run(structurer.generate_quiz(_note_context(note)))

    if not questions:
        console.print("[yellow]No questions generated.[/]")
        raise typer.Exit(1)

    for i, q in enumerate(questions, 1):
        console.print(f"[bold]{i}. {q.question}[/]")
        for j, option in enumerate(q.options):
            marker = "[green]✔[/]" if j == q.correct_answer else " "
            console.print(f"   {marker} {chr(65 + j)}. {option}")
        if q.explanation:
            console.print(f"   [dim]{q.explanation}[/]")
        console.print()


@app.command()
def config(
    action: str = typer.Argument(..., help="Action: show, set, reset, validate"),
    key: Optional[str] = typer.Argument(None, help="Configuration key"),
    value: Optional[str] = typer.Argument(None, help="Configuration value")
):
    """Manage ScholarAI configuration settings."""
    manager = get_config_manager()

    if action == "show":
        console.print("\n[bold]Current Configuration:[/]")
        for item_key, item_value in manager.get_all().items():
            if item_key == "openai_api_key":
                item_value = "***" if item_value else "Not set"
            console.print(f"  [blue]{item_key}:[/] {item_value}")
    elif action == "set":
        if not key or value is None:
            console.print("[red]Error:[/] Both key and value required for 'set' action")
            raise typer.Exit(1)
        manager.set(key, value)
        console.print(f"[green]✅ Set {key}[/]")
    elif action == "reset":
        if not key:
            console.print("[red]Error:[/] Key required for 'reset' action")
            raise typer.Exit(1)
        if manager.reset(key):
            console.print(f"[green]✅ Reset {key} to default[/]")
        else:
            console.print(f"[yellow]Note:[/] {key} has no default")
    elif action == "validate":
        validation = manager.validate()
        for warning in validation["warnings"]:
            console.print(f"[yellow]⚠️ {warning}[/]")
        if not validation["valid"]:
            console.print(f"\n[red]❌ Configuration issues found:[/]")
            for issue in validation["issues"]:
                console.print(f"  • {issue}")
            raise typer.Exit(1)
        console.print(f"\n[green]✅ Configuration validation passed![/]")
    else:
        console.print(f"[red]Error:[/] Unknown action: {action}")
        console.print("Available actions: show, set, reset, validate")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
