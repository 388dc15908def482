"""CLI commands for CleverCard.

Developer tooling around the capture capabilities:
- scan: read a photographed register page into student rows, optionally
  matched against a class roster
- transcribe: turn an existing audio file into text
- record: record a voice remark from the microphone and transcribe it
- insights: generate AI insights for a report saved as JSON
- config: show the effective configuration
"""

import asyncio
import json
import logging
from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.table import Table

from clevercard.capture.audio import VoiceRecorder, format_duration
from clevercard.capture.devices import AudioHandle, ImageFileCamera, SoundDeviceMicrophone
from clevercard.capture.image import RegisterScanner
from clevercard.capture.recognition import VisionRegisterRecognizer, WhisperTranscriber
from clevercard.config.app_config import load_app_config
from clevercard.core.errors import CleverCardError
from clevercard.core.insights import generate_insights
from clevercard.core.models import Student
from clevercard.core.selectors import match_register_rows
from clevercard.llm.client import LLMClient, LLMConfig

app = typer.Typer(
    name="clevercard",
    help="Report card tooling: register scanning, voice remarks and AI insights.",
    no_args_is_help=True,
)

console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
) -> None:
    """Report card tooling: register scanning, voice remarks and AI insights."""
    level = logging.DEBUG if verbose else logging.WARNING
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


def _make_client(model: str | None = None) -> LLMClient:
    """Build the AI client from the app config."""
    return LLMClient(LLMConfig.from_app_config(load_app_config().ai), model=model)


def _fail(message: str) -> None:
    console.print(f"[red]✗ {message}[/red]")
    raise typer.Exit(code=1)


def _load_roster(path: Path) -> list[Student]:
    """Read a JSON list of student rows."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        _fail(f"Roster not found: {path}")
    except json.JSONDecodeError as e:
        _fail(f"Invalid JSON in {path.name}: {e}")

    if not isinstance(data, list):
        _fail("Roster must be a JSON list of students")
    try:
        return [Student.from_row(row) for row in data]
    except CleverCardError as e:
        _fail(str(e))


@app.command()
def scan(
    image: str = typer.Argument(..., help="Path to a photo of the register page"),
    as_json: bool = typer.Option(False, "--json", help="Print rows as JSON"),
    roster: str | None = typer.Option(
        None, "--roster", "-r", help="JSON list of students to match rows against"
    ),
) -> None:
    """Scan a register photo into student names and scores."""
    image_path = Path(image).expanduser().resolve()
    students = _load_roster(Path(roster).expanduser().resolve()) if roster else None
    scanner = RegisterScanner(
        ImageFileCamera(image_path),
        VisionRegisterRecognizer(_make_client()),
    )

    try:
        with console.status("Reading register..."):
            result = asyncio.run(scanner.scan())
    except CleverCardError as e:
        _fail(str(e))

    if result is None:
        _fail("Scan was cancelled")

    if as_json:
        rows = [{"name": r.name, "scores": r.scores} for r in result.rows]
        if students is not None:
            for row, (_, student) in zip(rows, match_register_rows(result.rows, students)):
                row["student_id"] = student.id if student else None
        console.print_json(json.dumps({"rows": rows, "confidence": result.confidence}))
        return

    if not result.rows:
        console.print("[yellow]⚠ No student rows recognized[/yellow]")
        console.print(result.text)
        return

    subjects: list[str] = []
    for row in result.rows:
        for subject in row.scores:
            if subject not in subjects:
                subjects.append(subject)

    matches = match_register_rows(result.rows, students or [])

    table = Table(show_header=True, header_style="bold")
    table.add_column("Student")
    for subject in subjects:
        table.add_column(subject, justify="right")
    if students is not None:
        table.add_column("Reg. No.")
    for row, student in matches:
        cells = [f"{row.scores[s]:g}" if s in row.scores else "-" for s in subjects]
        if students is not None:
            cells.append(student.registration_number if student else "[yellow]unmatched[/yellow]")
        table.add_row(row.name, *cells)

    console.print(table)
    summary = f"{len(result.rows)} rows"
    if students is not None:
        summary += f", {sum(1 for _, s in matches if s)} matched"
    console.print(f"[green]✓ {summary}[/green]", end="")
    if result.confidence is not None:
        console.print(f"  [dim]confidence:[/dim] {result.confidence:.0%}")
    else:
        console.print()


@app.command()
def transcribe(
    audio: str = typer.Argument(..., help="Path to an audio file (wav, mp3, m4a)"),
    language: str | None = typer.Option(None, "--language", "-l", help="Spoken language code"),
) -> None:
    """Transcribe an existing audio file."""
    audio_path = Path(audio).expanduser().resolve()
    if not audio_path.is_file():
        _fail(f"Audio not found: {audio_path}")

    transcriber = WhisperTranscriber(_make_client(), language=language)
    try:
        with console.status("Transcribing..."):
            text = asyncio.run(transcriber.transcribe(AudioHandle(path=audio_path)))
    except CleverCardError as e:
        _fail(str(e))

    if not text.strip():
        _fail("Transcription returned no text")
    console.print(text.strip())


async def _record_remark(recorder: VoiceRecorder, preview: bool):
    await recorder.start()
    console.print("[bold]● Recording[/bold] [dim](press Enter to stop)[/dim]")
    await asyncio.to_thread(input)

    take = await recorder.stop()
    if take is None:
        return None
    console.print(f"  [dim]length:[/dim] {format_duration(take.duration_seconds)}")
    if preview:
        await recorder.preview()
    return await recorder.process()


@app.command()
def record(
    preview: bool = typer.Option(False, "--preview", "-p", help="Play the take back before transcribing"),
    language: str | None = typer.Option(None, "--language", "-l", help="Spoken language code"),
) -> None:
    """Record a voice remark and transcribe it."""
    capture = load_app_config().capture
    microphone = SoundDeviceMicrophone(
        Path(capture.recordings_dir),
        sample_rate=capture.sample_rate,
        channels=capture.channels,
    )
    recorder = VoiceRecorder(microphone, WhisperTranscriber(_make_client(), language=language))

    try:
        result = asyncio.run(_record_remark(recorder, preview))
    except CleverCardError as e:
        _fail(str(e))

    if result is None:
        _fail("Recording was cancelled")
    console.print(f"[green]✓ Remark ({format_duration(result.duration_seconds or 0)})[/green]")
    console.print(result.text)


@app.command()
def insights(
    report: str = typer.Argument(..., help="JSON file with 'scores' and 'teacher_remarks'"),
    model: str | None = typer.Option(None, "--model", "-m", help="Override the chat model"),
    as_json: bool = typer.Option(False, "--json", help="Print insights as JSON"),
) -> None:
    """Generate AI insights for a report card."""
    report_path = Path(report).expanduser().resolve()
    try:
        data = json.loads(report_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        _fail(f"Report not found: {report_path}")
    except json.JSONDecodeError as e:
        _fail(f"Invalid JSON in {report_path.name}: {e}")

    if not isinstance(data, dict):
        _fail("Report must be a JSON object")

    scores = data.get("scores") or {}
    remarks = data.get("teacher_remarks") or ""
    try:
        scores = {str(k): float(v) for k, v in scores.items()}
    except (AttributeError, TypeError, ValueError):
        _fail("'scores' must map subjects to numbers")

    try:
        with console.status("Generating insights..."):
            results = generate_insights(scores, remarks, client=_make_client(model))
    except CleverCardError as e:
        _fail(str(e))

    if as_json:
        console.print_json(json.dumps([i.model_dump() for i in results]))
        return

    if not results:
        console.print("[yellow]⚠ No insights generated[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Type")
    table.add_column("Subject")
    table.add_column("Insight")
    table.add_column("Conf.", justify="right")
    for insight in results:
        table.add_row(insight.type, insight.subject or "-", insight.message, f"{insight.confidence:.0%}")
    console.print(table)


@app.command()
def config() -> None:
    """Show the effective configuration (secrets are not printed)."""
    cfg = load_app_config()

    table = Table(show_header=True, header_style="bold")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("remote.base_url", cfg.remote.base_url or "[dim]not set[/dim]")
    table.add_row("remote.api_key", _key_status(cfg.remote.api_key_env, cfg.remote.get_api_key()))
    table.add_row("remote.timeout", f"{cfg.remote.timeout:g}s")
    table.add_row("ai.provider", cfg.ai.provider)
    table.add_row("ai.base_url", cfg.ai.base_url or "[dim]default[/dim]")
    table.add_row("ai.model", cfg.ai.model)
    table.add_row("ai.vision_model", cfg.ai.vision_model)
    table.add_row("ai.transcription_model", cfg.ai.transcription_model)
    table.add_row("ai.api_key", _key_status(cfg.ai.api_key_env, cfg.ai.get_api_key()))
    table.add_row("capture.sample_rate", str(cfg.capture.sample_rate))
    table.add_row("capture.channels", str(cfg.capture.channels))
    table.add_row("capture.recordings_dir", cfg.capture.recordings_dir)
    console.print(table)


def _key_status(env_name: str | None, value: str | None) -> str:
    if not env_name:
        return "[dim]not configured[/dim]"
    if value:
        return f"[green]set[/green] [dim]({env_name})[/dim]"
    return f"[yellow]missing[/yellow] [dim]({env_name})[/dim]"


if __name__ == "__main__":
    app()
