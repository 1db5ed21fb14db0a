from __future__ import annotations

import logging
import os
from pathlib import Path

import typer

from .attachments import Attachment
from .config import AppConfig, ChatSettings, ConfigError, load_config
from .error_log import RotatingErrorLogger
from .events import TurnEvent
from .generation import GenerationClient
from .orchestrator import TurnOrchestrator
from .settings_sync import BroadcastChannel, SettingsService
from .store import LocalStore
from .transcript import TranscriptStore
from .turns import Turn
from .web_search import DuckDuckGoSearch

app = typer.Typer(add_completion=False, help="cyberchat: streaming AI chat with web-search fallback")

settings_app = typer.Typer(help="Show or change provider settings")
app.add_typer(settings_app, name="settings")

_state: dict = {"config_path": None}


@app.callback()
def main(
    config: Path | None = typer.Option(None, "--config", help="Path to config.json"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _state["config_path"] = config


def _load_config() -> AppConfig:
    try:
        return load_config(_state["config_path"])
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _settings_service(config: AppConfig, store: LocalStore) -> SettingsService:
    env_key = os.getenv("OPENROUTER_API_KEY", "")
    service = SettingsService(store, BroadcastChannel(config.channel_name), default=ChatSettings(api_key=env_key))
    if env_key and not service.get().has_api_key:
        service.update(api_key=env_key)
    return service


class StreamPrinter:
    """Echo live turn events to the terminal.

    `last_shown` holds the text streamed into the most recently settled turn.
    """

    def __init__(self) -> None:
        self.shown = ""
        self.last_shown = ""

    def __call__(self, event: TurnEvent) -> None:
        if event["type"] == "token":
            if event["replace"]:
                if self.shown:
                    typer.echo("")
                self.shown = event["text"]
            else:
                self.shown += event["text"]
            typer.echo(event["text"], nl=False)
        elif event["type"] == "status":
            typer.secho(f"\n[{event['state']}] {event['text'].splitlines()[-1]}", fg=typer.colors.BLUE)
        elif event["type"] == "settled":
            if self.shown:
                typer.echo("")
            self.last_shown, self.shown = self.shown, ""


def build_orchestrator(config: AppConfig, listener=None) -> TurnOrchestrator:
    store = LocalStore(config.store_path)
    return TurnOrchestrator(
        transcript=TranscriptStore(store),
        settings=_settings_service(config, store),
        generator=GenerationClient.from_config(config),
        searcher=DuckDuckGoSearch(config.search_url),
        config=config,
        error_logger=RotatingErrorLogger(config.error_log_path),
        listener=listener,
    )


def _print_settled(turn: Turn | None, shown: str = "") -> None:
    """Print whatever part of the settled turn was not already streamed."""
    if turn is None:
        return
    if turn.kind == "error":
        typer.secho(turn.text, fg=typer.colors.RED)
    elif shown and turn.text.startswith(shown):
        rest = turn.text[len(shown):].strip()
        if rest:
            typer.echo(rest)
    else:
        typer.echo(turn.text)
    typer.secho(f"({turn.duration_seconds}s, {turn.kind})", fg=typer.colors.BRIGHT_BLACK)


@app.command("ask")
def ask_cmd(
    text: str = typer.Argument("", help="Message to send"),
    attach: Path | None = typer.Option(None, "--attach", help="File to attach"),
    elevated: bool = typer.Option(False, "--elevated", help="Run with creator privilege"),
) -> None:
    """Send one message and stream the answer."""
    if not text and attach is None:
        typer.secho("Error: provide a message or --attach", fg=typer.colors.RED)
        raise typer.Exit(code=2)
    attachment = None
    if attach is not None:
        if not attach.exists():
            raise typer.BadParameter(f"File not found: {attach}")
        attachment = Attachment.from_path(attach)

    printer = StreamPrinter()
    orchestrator = build_orchestrator(_load_config(), listener=printer)
    turn = orchestrator.submit(text, attachment=attachment, elevated=elevated)
    _print_settled(turn, printer.last_shown)
    if turn is not None and turn.kind == "error":
        raise typer.Exit(code=1)


@app.command("chat")
def chat_cmd(
    elevated: bool = typer.Option(False, "--elevated", help="Run with creator privilege"),
) -> None:
    """Interactive chat. /clear resets the transcript, /exit quits."""
    printer = StreamPrinter()
    orchestrator = build_orchestrator(_load_config(), listener=printer)
    typer.secho(orchestrator.transcript.turns[-1].text, fg=typer.colors.GREEN)

    while True:
        try:
            text = typer.prompt("you", prompt_suffix="> ", default="", show_default=False)
        except (EOFError, typer.Abort):
            break
        command = text.strip()
        if command in {"/exit", "/quit"}:
            break
        if command == "/clear":
            orchestrator.clear()
            typer.secho("Chat cleared.", fg=typer.colors.YELLOW)
            continue
        if not command:
            continue
        turn = orchestrator.submit(text, elevated=elevated)
        _print_settled(turn, printer.last_shown)


@app.command("search")
def search_cmd(query: str = typer.Argument(..., help="Search query")) -> None:
    """Search the web and store the findings as a turn."""
    orchestrator = build_orchestrator(_load_config())
    turn = orchestrator.search_web(query)
    _print_settled(turn)


@app.command("history")
def history_cmd() -> None:
    """Print the stored transcript."""
    config = _load_config()
    transcript = TranscriptStore(LocalStore(config.store_path))
    for turn in transcript.turns:
        color = typer.colors.CYAN if turn.sender == "user" else typer.colors.GREEN
        if turn.kind == "error":
            color = typer.colors.RED
        typer.secho(f"[{turn.sender}] ", fg=color, bold=True, nl=False)
        typer.echo(turn.text)


@app.command("clear")
def clear_cmd() -> None:
    """Reset the transcript."""
    config = _load_config()
    TranscriptStore(LocalStore(config.store_path)).clear()
    typer.secho("Chat cleared.", fg=typer.colors.GREEN)


@settings_app.command("show")
def settings_show_cmd() -> None:
    """Print provider, model and whether a key is set."""
    config = _load_config()
    settings = _settings_service(config, LocalStore(config.store_path)).get()
    typer.echo(f"Provider: {settings.provider}")
    typer.echo(f"Model: {settings.model}")
    typer.echo(f"API key: {'set' if settings.has_api_key else 'not set'}")


@settings_app.command("set")
def settings_set_cmd(
    provider: str | None = typer.Option(None, "--provider", help="Provider name"),
    model: str | None = typer.Option(None, "--model", help="Model identifier"),
    api_key: str | None = typer.Option(None, "--api-key", help="API key"),
) -> None:
    """Change provider settings."""
    if provider is None and model is None and api_key is None:
        typer.secho("Nothing to change.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=2)
    config = _load_config()
    service = _settings_service(config, LocalStore(config.store_path))
    settings = service.update(provider=provider, model=model, api_key=api_key)
    typer.secho(f"Settings saved (provider={settings.provider}, model={settings.model}).", fg=typer.colors.GREEN)


if __name__ == "__main__":
    app()
