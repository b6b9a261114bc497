"""
Interactive terminal runner for a form.

Walks one response through a form definition loaded from a JSON file (answers
kept in memory) or from Directus (answers upserted to the remote store).

Usage: formflow [JSON_PATH] [--directus --slug SLUG] [--interval-ms N]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import uuid
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt

from formflow.answers.persistence import AnswerPersistence, InMemoryAnswerPersistence
from formflow.clients.directus import DirectusClient
from formflow.core.logging import session_log_context, setup_logging
from formflow.navigation.ir import FormDefinition, Question, ResponseItem
from formflow.navigation.loader import FormLoadError, load_form_definition
from formflow.session import FormSession, RequiredAnswerMissing
from formflow.settings import get_settings

console = Console()

BACK_COMMAND = "/back"
QUIT_COMMANDS = ("/quit", "/exit")


def _playground_form_path() -> Path:
    """Return playground/demo_form.json resolved from this file."""
    # __file__ = formflow/cli.py -> parents[1] = project root
    return Path(__file__).resolve().parents[1] / "playground" / "demo_form.json"


def parse_answer(question: Question, raw: str) -> Any:
    """Convert typed input into the value stored for ``question``.

    Choices can be picked by their 1-based position or by value; multiple
    choice takes a comma separated list. Empty input means no answer.

    Raises:
        ValueError: If the input is not valid for the question type.
    """
    text = raw.strip()
    if not text:
        return None

    if question.type == "numeric_scale":
        try:
            number = int(text)
        except ValueError:
            raise ValueError(f"{text!r} is not a whole number") from None
        low = question.settings_json.get("min")
        high = question.settings_json.get("max")
        if (low is not None and number < low) or (high is not None and number > high):
            raise ValueError(f"{number} is outside {low}..{high}")
        return number

    if question.is_choice:
        tokens = [t.strip() for t in text.split(",") if t.strip()] if question.is_multi_valued else [text]
        values: list[str] = []
        for token in tokens:
            if token.isdigit() and 1 <= int(token) <= len(question.choices):
                values.append(question.choices[int(token) - 1].value)
            elif token in question.choice_values():
                values.append(token)
            else:
                raise ValueError(f"Unknown choice {token!r}")
        if question.is_multi_valued:
            return list(dict.fromkeys(values))
        return values[0]

    return text


def format_answer(value: Any) -> str:
    """Render a stored value back as prompt input."""
    if value is None:
        return ""
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value)


class FormRunner:
    """Renders questions and feeds typed answers into a FormSession."""

    def __init__(self, session: FormSession):
        self.session = session
        self.save_status = "no changes"
        session.cache.on_save_state_change(self._on_save_state)

    def _on_save_state(self, is_saving: bool, has_unsaved: bool) -> None:
        if is_saving:
            self.save_status = "saving..."
        elif has_unsaved:
            self.save_status = "unsaved changes"
        else:
            self.save_status = "all changes saved"

    def _render(self, question: Question) -> None:
        position, total = self.session.position()
        lines = [f"[bold]{escape(question.label or question.uid)}[/bold]"]
        if question.required:
            lines.append("[red]* required[/red]")
        if question.is_choice:
            lines.append("")
            for i, choice in enumerate(question.choices, start=1):
                lines.append(f"  {i}. {escape(choice.label)} [dim]({escape(choice.value)})[/dim]")
            if question.is_multi_valued:
                lines.append("[dim]Pick several with commas, e.g. 1,3[/dim]")
        elif question.type == "numeric_scale":
            low = question.settings_json.get("min", "")
            high = question.settings_json.get("max", "")
            lines.append(f"[dim]Number {low}..{high}[/dim]")

        console.print()
        console.print(
            Panel(
                "\n".join(lines),
                title=f"Question {position}/{total}  ·  {self.session.progress()}%",
                subtitle=f"[dim]{self.save_status}[/dim]",
                border_style="cyan",
            )
        )

    async def run(self, existing: list[ResponseItem]) -> None:
        await self.session.start(existing)
        console.print(f"[dim]Type {BACK_COMMAND} to go back, {QUIT_COMMANDS[0]} to stop.[/dim]")

        while not self.session.is_finished:
            question = self.session.current_question
            if question is None:
                break
            self._render(question)
            default = format_answer(self.session.current_answer())
            raw = await asyncio.to_thread(
                Prompt.ask,
                "[bold cyan]Your answer[/bold cyan]",
                console=console,
                default=default,
                show_default=bool(default),
            )
            command = raw.strip().lower()
            if command in QUIT_COMMANDS:
                await self.session.cache.save_all()
                await self.session.abandon()
                console.print("[yellow]Stopped. Your answers so far were saved.[/yellow]")
                return
            if command == BACK_COMMAND:
                if self.session.back() is None:
                    console.print("[yellow]Already at the first question.[/yellow]")
                continue

            try:
                value = parse_answer(question, raw)
            except ValueError as e:
                console.print(f"[red]{escape(str(e))}[/red]")
                continue
            self.session.answer(value)

            try:
                await self.session.advance()
            except RequiredAnswerMissing:
                console.print("[yellow]This question needs an answer.[/yellow]")

        message = self.session.exit_message() or "Thank you!"
        console.print()
        console.print(
            Panel(
                escape(message),
                title=f"Finished ({self.session.exit_key or 'no exit key'})",
                border_style="green",
            )
        )


async def _open_remote(args: argparse.Namespace) -> tuple[FormDefinition, AnswerPersistence, str, list[ResponseItem]]:
    settings = get_settings()
    client = DirectusClient(settings)
    form = await client.load_form(args.slug or settings.default_form_slug)

    existing: list[ResponseItem] = []
    if args.response_id:
        response_id = args.response_id
        rows = await client.get_response_items(response_id)
        existing = [ResponseItem.model_validate(row) for row in rows if row.get("question_id")]
    else:
        created = await client.create_response(form.version_id or form.id, args.user_id)
        if created is None:
            raise FormLoadError("Could not create a response in Directus")
        response_id = created
    return form, client, response_id, existing


async def _main(args: argparse.Namespace) -> None:
    if args.directus:
        form, persistence, response_id, existing = await _open_remote(args)
    else:
        form = load_form_definition(args.json_path)
        persistence = InMemoryAnswerPersistence()
        response_id = f"local-{uuid.uuid4().hex[:8]}"
        existing = []

    console.print(
        Panel(
            escape(form.description or ""),
            title=f"[bold]{escape(form.title or form.slug or form.id)}[/bold]",
            border_style="blue",
        )
    )

    with session_log_context(response_id, form.slug):
        session = FormSession(form, persistence, response_id, autosave_interval_ms=args.interval_ms)
        await FormRunner(session).run(existing)

    if isinstance(persistence, InMemoryAnswerPersistence):
        stored = persistence.responses.get(response_id, {})
        console.print("\n[blue]Stored answers:[/blue]")
        console.print(json.dumps(stored, indent=2, ensure_ascii=False, default=str))


def run_cli() -> None:
    parser = argparse.ArgumentParser(description="Fill in a form interactively")
    parser.add_argument(
        "json_path",
        nargs="?",
        type=Path,
        default=_playground_form_path(),
        help="Path to form JSON file (default: playground/demo_form.json)",
    )
    parser.add_argument("--directus", action="store_true", help="Load the form from Directus and save answers there")
    parser.add_argument("--slug", type=str, help="Form slug to load with --directus (default: DEFAULT_FORM_SLUG)")
    parser.add_argument("--response-id", type=str, help="Resume an existing Directus response")
    parser.add_argument("--user-id", type=str, default="cli-user", help="User id for new Directus responses")
    parser.add_argument(
        "--interval-ms",
        type=int,
        default=None,
        help="Autosave interval in milliseconds, <= 0 disables it (default: AUTOSAVE_INTERVAL_MS)",
    )
    parser.add_argument("--log-level", type=str, default=None, help="Override LOG_LEVEL")
    args = parser.parse_args()

    setup_logging(args.log_level)

    try:
        asyncio.run(_main(args))
    except FormLoadError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        raise SystemExit(1) from e
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")


if __name__ == "__main__":
    run_cli()
