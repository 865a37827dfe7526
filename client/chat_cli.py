#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import time
from pathlib import Path
from typing import Optional

import typer
from aioconsole import ainput
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from client.client import ChatSession
from client.config import ConfigError, load_config, with_server
from client.state import ConnectionStatus, SessionView
from shared.log import configure_root_logging, get_logger
from shared.message import Message

app = typer.Typer(help="roomchat terminal client")
console = Console()
logger = get_logger(__name__)

HELP_TEXT = "/join <room> <user>, /leave, /status, /history, /quit; anything else is sent as a message"

_STATUS_STYLES = {
    ConnectionStatus.CONNECTED: "bold green",
    ConnectionStatus.ERROR: "bold red",
    ConnectionStatus.CONNECTING: "yellow",
    ConnectionStatus.CLOSING: "yellow",
}


def _status_markup(status: ConnectionStatus) -> str:
    style = _STATUS_STYLES.get(status, "dim")
    return f"[{style}]{status.label}[/]"


def format_time(timestamp_ms: int) -> str:
    return time.strftime("%H:%M", time.localtime(timestamp_ms / 1000))


def format_message(message: Message, current_user: Optional[str]) -> str:
    is_self = current_user is not None and message.user_name == current_user
    who = "[bold cyan]You[/]" if is_self else f"[bold]{escape(message.user_name)}[/]"
    return f"[dim]{format_time(message.timestamp)}[/] {who}: {escape(message.text)}"


class TranscriptPrinter:
    """Prints status changes, errors and new or edited lines as the session view changes."""

    def __init__(self) -> None:
        self._status: Optional[ConnectionStatus] = None
        self._error: Optional[str] = None
        self._seen: dict = {}

    def __call__(self, view: SessionView) -> None:
        if view.status is not self._status:
            self._status = view.status
            console.print(f"[dim]status:[/] {_status_markup(view.status)}")
        if view.last_error != self._error:
            self._error = view.last_error
            if view.last_error:
                console.print(f"[red]{escape(view.last_error)}[/]")

        if not view.transcript:
            self._seen = {}
            return
        current = {m.id: m for m in view.transcript}
        if any(i not in current for i in self._seen):
            # History replaced the transcript
            self._seen = {}
        user = view.identity.user_name or None
        for message in view.transcript:
            if self._seen.get(message.id) != message:
                console.print(format_message(message, user))
        self._seen = current


def _print_status(session: ChatSession) -> None:
    view = session.view()
    identity = view.identity
    console.print(
        f"Active room: {identity.room_id or 'None'} | User: {identity.user_name or 'None'} | "
        f"{_status_markup(view.status)}"
    )
    if view.has_session and not session.can_send:
        console.print("[dim]Waiting for the socket to connect before sending messages.[/]")


def _print_history(session: ChatSession) -> None:
    view = session.view()
    if not view.has_session:
        console.print("[dim]Provide a room ID and username to start chatting.[/]")
        return
    if not view.transcript:
        console.print("[dim]No messages yet. Say hello to get the conversation started.[/]")
        return
    table = Table(title=f"#{view.identity.room_id}")
    table.add_column("Time")
    table.add_column("User")
    table.add_column("Message")
    for message in view.transcript:
        name = "You" if message.user_name == view.identity.user_name else message.user_name
        table.add_row(format_time(message.timestamp), escape(name), escape(message.text))
    console.print(table)


async def _handle_line(session: ChatSession, line: str) -> bool:
    """Run one input line. Returns False when the user asked to quit."""
    parts = line.split(maxsplit=2)
    if line in {"/quit", "/exit"}:
        return False
    if line == "/help":
        console.print(HELP_TEXT)
    elif parts and parts[0] == "/join":
        room = parts[1] if len(parts) > 1 else ""
        user = parts[2] if len(parts) > 2 else ""
        await session.join(room, user)
    elif line == "/leave":
        await session.leave()
    elif line == "/status":
        _print_status(session)
    elif line == "/history":
        _print_history(session)
    elif line.startswith("/"):
        console.print(f"Unknown command. {HELP_TEXT}")
    else:
        sent = await session.send_text(line)
        if not sent and session.view().has_session:
            console.print("[dim]Waiting for the socket to connect before sending messages.[/]")
    return True


async def _chat_loop(session: ChatSession, room: Optional[str], user: Optional[str]) -> None:
    session.subscribe(TranscriptPrinter())
    if room or user:
        await session.join(room, user)
    else:
        console.print("[dim]Provide a room ID and username to start chatting: /join <room> <user>[/]")

    try:
        while True:
            try:
                line = (await ainput(": ")).strip()
            except EOFError:
                break
            if not line:
                continue
            if not await _handle_line(session, line):
                break
    finally:
        await session.close()


@app.command()
def chat(
    room: Optional[str] = typer.Option(None, help="Room ID to join on start"),
    user: Optional[str] = typer.Option(None, help="Username to join as"),
    server: Optional[str] = typer.Option(None, help="Base WebSocket URL, overrides config"),
    config: Optional[Path] = typer.Option(None, help="Path to a YAML config file"),
    log_level: str = typer.Option("WARNING", help="Log level (DEBUG, INFO, WARNING, ERROR)"),
):
    """Join a room and chat interactively."""
    configure_root_logging(log_level)
    try:
        cfg = with_server(load_config(config), server)
        logger.debug("Resolved config: %s", cfg)
        console.print(f"[bold green]roomchat[/] using {cfg.base_url()}")
    except ConfigError as e:
        console.print(f"[red]Config error[/]: {e}")
        raise typer.Exit(code=2)

    try:
        asyncio.run(_chat_loop(ChatSession(cfg), room, user))
    except KeyboardInterrupt:
        console.print("[dim]bye[/]")


@app.command()
def endpoint(
    room: str = typer.Argument(..., help="Room ID"),
    user: str = typer.Argument(..., help="Username"),
    server: Optional[str] = typer.Option(None, help="Base WebSocket URL, overrides config"),
    config: Optional[Path] = typer.Option(None, help="Path to a YAML config file"),
):
    """Print the URL the client would dial for ROOM and USER."""
    try:
        cfg = with_server(load_config(config), server)
        console.print(cfg.build_endpoint(room.strip(), user.strip()), markup=False, highlight=False)
    except ConfigError as e:
        console.print(f"[red]Config error[/]: {e}")
        raise typer.Exit(code=2)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
