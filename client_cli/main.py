from __future__ import annotations

from typing import Iterator, Optional, Tuple
from pathlib import Path
import json
import os
import uuid

import typer
from rich.console import Console
import httpx


app = typer.Typer()
console = Console()
trace_console = Console(stderr=True)


def _server_url() -> str:
    return os.getenv("CITY_EXPLORER_URL", "http://localhost:4000").rstrip("/")


def iter_sse(lines: Iterator[str]) -> Iterator[Tuple[str, dict]]:
    """Yield (event, payload) pairs from the lines of a text/event-stream body."""
    event = "message"
    data_parts: list[str] = []
    for raw_line in lines:
        line = raw_line.decode("utf-8") if isinstance(raw_line, (bytes, bytearray)) else raw_line
        line = line.rstrip("\r")
        if not line:
            if data_parts:
                try:
                    payload = json.loads("\n".join(data_parts))
                except json.JSONDecodeError:
                    payload = {}
                yield event, payload if isinstance(payload, dict) else {}
            event, data_parts = "message", []
            continue
        if line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data_parts.append(line[len("data:"):].strip())
    if data_parts:
        try:
            payload = json.loads("\n".join(data_parts))
        except json.JSONDecodeError:
            payload = {}
        yield event, payload if isinstance(payload, dict) else {}


def _print_route(payload: dict) -> None:
    data = payload.get("data") or {}
    try:
        km = float(data.get("distanceMeters", 0.0)) / 1000.0
        minutes = float(data.get("durationSeconds", 0.0)) / 60.0
    except (TypeError, ValueError):
        km, minutes = 0.0, 0.0
    stops = " -> ".join(str(s.get("label", "?")) for s in data.get("stops") or [])
    trace_console.print(
        f"[route] {data.get('mode', 'driving')}: {km:.1f} km, {minutes:.0f} min ({stops})",
        style="dim",
    )


def send_message(client: httpx.Client, conversation_id: str, message: str) -> str:
    """Start an exchange and stream the reply to the console. Returns the reply text."""
    base = _server_url()
    resp = client.post(f"{base}/chat", json={"conversationId": conversation_id, "message": message})
    if resp.status_code >= 400:
        error = resp.json().get("error") if resp.headers.get("content-type", "").startswith("application/json") else None
        trace_console.print(error or f"Request failed: {resp.status_code}", style="bold red")
        return ""
    session_id = resp.json()["sessionId"]

    reply = ""
    with client.stream(
        "GET",
        f"{base}/chat/events/{session_id}",
        headers={"Accept": "text/event-stream"},
    ) as stream:
        for event, payload in iter_sse(stream.iter_lines()):
            if event == "token":
                content = payload.get("content", "")
                console.print(content, end="")
                reply += content
            elif event == "tool-result":
                if payload.get("error"):
                    trace_console.print(f"[{payload.get('tool')}] {payload['error']}", style="yellow")
                else:
                    _print_route(payload)
            elif event == "error":
                trace_console.print(payload.get("message") or "Something went wrong", style="bold red")
                break
            elif event == "done":
                break
    console.print()
    return reply


def _append_output(output_file: Path, text: str) -> None:
    try:
        output_file.parent.mkdir(parents=True, exist_ok=True)
        with output_file.open("a", encoding="utf-8") as f:
            if f.tell() > 0:
                f.write("\n\n---\n\n")
            f.write(text)
    except OSError as e:
        trace_console.print(f"Failed to write file: {e}", style="bold red")


@app.command()
def chat(
    message: Optional[str] = typer.Argument(None, help="Message to send to the assistant."),
    conversation_id: Optional[str] = typer.Option(
        None, "--conversation", "-c", help="Continue an existing conversation id."
    ),
    output_file: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Append replies to a Markdown file."
    ),
    interactive: bool = typer.Option(
        False, "--interactive", "-i", help="Keep chatting after the first reply."
    ),
) -> None:
    conversation_id = conversation_id or str(uuid.uuid4())
    trace_console.print(f"conversation: {conversation_id}", style="dim")

    with httpx.Client(timeout=60) as client:
        def run_once(text: str) -> None:
            try:
                reply = send_message(client, conversation_id, text)
            except httpx.HTTPError as e:
                trace_console.print(f"Request failed: {e}", style="bold red")
                return
            if output_file and reply:
                _append_output(output_file, reply)

        if message:
            run_once(message)
        elif not interactive:
            try:
                message = typer.prompt("Ask about a city, landmark or route")
            except (EOFError, KeyboardInterrupt):
                raise typer.Exit(code=1)
            if not message.strip():
                console.print("No input provided.", style="bold red")
                raise typer.Exit(code=1)
            run_once(message.strip())

        if interactive:
            while True:
                try:
                    user_in = typer.prompt("You (type 'exit' to quit)")
                except (EOFError, KeyboardInterrupt):
                    break
                if not user_in.strip():
                    continue
                if user_in.strip().lower() in {"exit", "quit", "q"}:
                    break
                run_once(user_in.strip())


@app.command()
def history(conversation_id: str = typer.Argument(..., help="Conversation id to show.")) -> None:
    try:
        resp = httpx.get(f"{_server_url()}/chat/{conversation_id}", timeout=30)
    except httpx.HTTPError as e:
        trace_console.print(f"Request failed: {e}", style="bold red")
        raise typer.Exit(code=1)
    messages = resp.json().get("messages", [])
    if not messages:
        console.print("No messages for this conversation.", style="yellow")
        return
    for m in messages:
        role = m.get("role")
        if role == "tool" or not m.get("content"):
            continue
        style = "bold cyan" if role == "user" else None
        console.print(f"{role}: {m['content']}", style=style)


if __name__ == "__main__":
    app()
