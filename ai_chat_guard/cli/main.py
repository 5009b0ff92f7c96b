"""
CLI interface for AI Chat Guard.

Provides command-line access to the chat flow and its stores.
"""

import asyncio
import base64
import logging
import mimetypes
import sys
from typing import Optional, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ai_chat_guard.config.loader import load_config
from ai_chat_guard.core.assistant import ChatAssistant, ChatQuestion
from ai_chat_guard.core.errors import ChatGuardError
from ai_chat_guard.core.identity import Identity
from ai_chat_guard.sdk.openai_backend import OpenAIBackend
from ai_chat_guard.storage.db import DEFAULT_DB_PATH
from ai_chat_guard.storage.repository import ChatRepository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1
EXIT_CODE_LIMIT = 2

DEFAULT_CONFIG_PATH = "ai_chat_guard.yaml"

CONFIG_OPTION = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to YAML config")
DB_OPTION = typer.Option(DEFAULT_DB_PATH, "--db", help="Path to SQLite database")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def _build_assistant(config_path: str, db_path: str) -> Tuple[ChatAssistant, ChatRepository]:
    config = load_config(config_path)
    repository = ChatRepository(db_path)
    backend = OpenAIBackend(config.backend)
    return ChatAssistant.from_config(config, repository, backend), repository


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """AI Chat Guard CLI."""
    _configure_logging(verbose)
    if ctx.invoked_subcommand is None:
        console.print("AI Chat Guard - Use --help to see available commands")


@app.command()
def init(db: str = DB_OPTION):
    """Initialize the AI Chat Guard database."""
    try:
        initialize_schema(db)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def ask(
    message: str = typer.Argument(..., help="Question to ask"),
    config: str = CONFIG_OPTION,
    db: str = DB_OPTION,
    user_id: Optional[str] = typer.Option(None, "--user-id", "-u", help="Ask as this identity"),
    session_id: Optional[str] = typer.Option(None, "--session-id", "-s", help="Persist into this session"),
    language: Optional[str] = typer.Option(None, "--language", help="Answer language"),
    country: Optional[str] = typer.Option(None, "--country", help="Country for guidelines"),
    region: Optional[str] = typer.Option(None, "--region", help="Region for guidelines"),
    role: Optional[str] = typer.Option(None, "--role", help="Professional role for context"),
    short: bool = typer.Option(False, "--short", help="Concise answer mode"),
):
    """Ask one question through the fallback chain."""
    question = ChatQuestion(
        message=message,
        session_id=session_id,
        language=language,
        country=country,
        region=region,
        user_role=role,
        short_answer=short,
    )
    identity = Identity(id=user_id) if user_id else None

    async def _run():
        assistant, _ = _build_assistant(config, db)
        try:
            return await assistant.ask(question, identity)
        finally:
            await assistant.drain()

    try:
        reply = asyncio.run(_run())
    except ChatGuardError as e:
        console.print(f"[red]{e.code}:[/] {e.message}")
        sys.exit(EXIT_CODE_LIMIT if e.code == "LIMIT_REACHED" else EXIT_CODE_FAIL)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(reply.text)
    console.print(f"\n[dim]Answered by {reply.endpoint_id}[/]")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def health(config: str = CONFIG_OPTION, db: str = DB_OPTION):
    """Check database connectivity and run an AI smoke test."""
    try:
        assistant, repository = _build_assistant(config, db)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    healthy = True
    try:
        latency = repository.ping()
        console.print(f"[green]✓[/] Database connected ({latency:.1f} ms)")
    except Exception as e:
        healthy = False
        console.print(f"[red]✗[/] Database error: {str(e)}")

    report = asyncio.run(assistant.health_check())
    if report.healthy:
        console.print(f"[green]✓[/] AI answered via {report.endpoint_id}: {report.response}")
    else:
        healthy = False
        console.print(f"[red]✗[/] AI smoke test failed: {report.error}")

    sys.exit(EXIT_CODE_PASS if healthy else EXIT_CODE_FAIL)


@app.command()
def transcribe(
    audio_file: str = typer.Argument(..., help="WAV or MP3 recording"),
    config: str = CONFIG_OPTION,
    db: str = DB_OPTION,
    language_code: Optional[str] = typer.Option(None, "--language-code", help="Spoken language hint, e.g. en-US"),
):
    """Transcribe a recording through an audio-capable endpoint."""
    try:
        with open(audio_file, "rb") as f:
            audio = base64.b64encode(f.read()).decode("ascii")
    except OSError as e:
        console.print(f"[red]Error reading audio:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    mime_type, _ = mimetypes.guess_type(audio_file)

    async def _run():
        assistant, _ = _build_assistant(config, db)
        return await assistant.transcribe(audio, mime_type=mime_type, language_code=language_code)

    try:
        text = asyncio.run(_run())
    except ChatGuardError as e:
        console.print(f"[red]{e.code}:[/] {e.message}")
        sys.exit(EXIT_CODE_FAIL)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(text)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def usage(
    user_id: str = typer.Argument(..., help="Identity to inspect"),
    db: str = DB_OPTION,
):
    """Show how many questions an identity has asked."""
    try:
        record = ChatRepository(db).get_usage(user_id)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    count = record.questions_count if record else 0
    console.print(f"Questions asked by {user_id}: {count}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def history(
    session_id: str = typer.Argument(..., help="Session to display"),
    db: str = DB_OPTION,
):
    """Print the stored messages of a session."""
    try:
        messages = ChatRepository(db).list_messages(session_id)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not messages:
        console.print(f"[yellow]No messages stored for session {session_id}[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Session {session_id}")
    table.add_column("When")
    table.add_column("Role")
    table.add_column("Content")
    for message in messages:
        table.add_row(
            message.created_at.strftime("%Y-%m-%d %H:%M") if message.created_at else "",
            message.role,
            message.content,
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
