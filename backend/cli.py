"""Command line front end: run a generation or serve the proxy."""

from __future__ import annotations

import asyncio
from typing import Optional

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from backend.client.orchestrator import GenerationClient, GenerationState
from backend.config import get_client_settings, get_settings
from backend.errors import VideoProxyError
from backend.models.schemas import AspectRatio

app = typer.Typer(no_args_is_help=True, help="Generate videos through the Veo proxy.")

_console = Console()

_STATE_STYLES = {
    GenerationState.SUBMITTING: "cyan",
    GenerationState.POLLING: "yellow",
    GenerationState.READY: "bright_green",
    GenerationState.FAILED: "red",
}


def _print_state(state: GenerationState, detail: Optional[str]) -> None:
    style = _STATE_STYLES.get(state, "white")
    suffix = f" [dim]{detail}[/dim]" if detail and state is not GenerationState.READY else ""
    _console.print(f"[{style}]{state.value}[/{style}]{suffix}")


def _print_details(error: VideoProxyError) -> None:
    table = Table(title="Error details")
    table.add_column("Field", style="bright_green", no_wrap=True)
    table.add_column("Value", style="white")
    table.add_row("kind", error.kind)
    table.add_row("status", str(error.status_code))
    for key, value in error.details.items():
        table.add_row(key, str(value))
    _console.print(table)


@app.command()
def generate(
    prompt: str = typer.Argument(..., help="Text prompt describing the video."),
    aspect_ratio: AspectRatio = typer.Option(AspectRatio.LANDSCAPE, "--aspect-ratio", "-a"),
    api_key: Optional[str] = typer.Option(None, "--api-key", envvar="VIDEO_CLIENT_API_KEY", help="Upstream API key."),
    base_url: Optional[str] = typer.Option(None, "--base-url", help="Proxy base URL, e.g. https://host/api."),
    details: bool = typer.Option(False, "--details", help="Show raw diagnostic details on failure."),
) -> None:
    """Submit a prompt and wait until the video is ready."""

    settings = get_client_settings()
    if base_url:
        settings = settings.model_copy(update={"base_url": base_url.rstrip("/")})

    try:
        client = GenerationClient(settings=settings, listener=_print_state)
        outcome = asyncio.run(client.submit(prompt, aspect_ratio.value, api_key))
    except VideoProxyError as exc:
        _console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(code=2)

    if outcome.state is GenerationState.READY:
        _console.print(f"\nVideo URL: [bold]{outcome.video_url}[/bold]")
        return

    _console.print(f"\n[red]Generation failed:[/red] {outcome.error.message}")
    if details:
        _print_details(outcome.error)
    else:
        _console.print("[dim]Run again with --details to see the raw response.[/dim]")
    raise typer.Exit(code=1)


@app.command()
def serve(reload: bool = typer.Option(False, "--reload", help="Reload on code changes.")) -> None:
    """Run the proxy server."""

    settings = get_settings()
    uvicorn.run("backend.app:app", host=settings.app_host, port=settings.app_port, reload=reload)


if __name__ == "__main__":
    app()
