"""
CLI for the program store.

Commands:
    progstore serve - Run the HTTP API
    progstore migrate - Apply database migrations
    progstore hash FILE - Classify and hash a program locally
    progstore upload FILE - Upload a program to a running server
    progstore fetch HASH - Download a program from a running server
    progstore config - Show current configuration
    progstore version - Print version
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from progstore import __version__
from progstore.config import Settings, clear_settings_cache, get_settings
from progstore.exceptions import ConfigurationError, ProgramStoreError
from progstore.hashing import HashOptions, identify
from progstore.storage import ConnectionPool, ProgramStore

app = typer.Typer(
    name="progstore",
    help="Program Store - content-addressed storage for compiled Cairo programs",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)


def _load_settings() -> Settings:
    """Load settings or exit with a readable error."""
    try:
        clear_settings_cache()
        return get_settings()
    except ConfigurationError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def _server_url(settings: Settings, url: str | None) -> str:
    if url:
        return url
    host = "127.0.0.1" if settings.HOST in ("0.0.0.0", "::") else settings.HOST
    return f"http://{host}:{settings.PORT}"


@app.command()
def serve(
    host: Annotated[Optional[str], typer.Option("--host", help="Bind host")] = None,
    port: Annotated[Optional[int], typer.Option("--port", "-p", help="Bind port")] = None,
) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    settings = _load_settings()
    settings.ensure_directories()
    uvicorn.run(
        "progstore.api.server:create_app",
        factory=True,
        host=host or settings.HOST,
        port=port or settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


@app.command()
def migrate() -> None:
    """Apply pending database migrations."""
    settings = _load_settings()
    settings.ensure_directories()

    async def run() -> list[int]:
        async with ConnectionPool(settings.DATABASE_PATH, size=1) as pool:
            return await ProgramStore(pool).init()

    try:
        applied = asyncio.run(run())
    except ProgramStoreError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    if applied:
        console.print(f"Applied migrations: {', '.join(str(v) for v in applied)}")
    else:
        console.print("[dim]Database is up to date.[/dim]")


@app.command("hash")
def hash_file(
    path: Annotated[Path, typer.Argument(help="Program JSON file", exists=True, dir_okay=False)],
) -> None:
    """Classify and hash a program file without storing it."""
    settings = _load_settings()
    options = HashOptions(
        bootloader_version=settings.BOOTLOADER_VERSION,
        entrypoint=settings.PROGRAM_ENTRYPOINT,
    )
    try:
        identification = identify(path.read_bytes(), options)
    except ProgramStoreError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    console.print(
        Panel(
            f"[bold]Format:[/bold] {identification.format_version.label} "
            f"({int(identification.format_version)})\n"
            f"[bold]Hash:[/bold] {identification.content_hash}",
            title=f"[bold cyan]{path.name}[/bold cyan]",
            border_style="cyan",
        )
    )


@app.command()
def upload(
    path: Annotated[Path, typer.Argument(help="Program JSON file", exists=True, dir_okay=False)],
    url: Annotated[Optional[str], typer.Option("--url", "-u", help="Server URL")] = None,
) -> None:
    """Upload a program to a running server and print its hash."""
    from progstore.client import ProgramStoreClient

    settings = _load_settings()

    async def run() -> str:
        async with ProgramStoreClient(_server_url(settings, url)) as client:
            return await client.upload_program(path.read_bytes(), filename=path.name)

    try:
        content_hash = asyncio.run(run())
    except ProgramStoreError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    console.print(content_hash)


@app.command()
def fetch(
    program_hash: Annotated[str, typer.Argument(help="Content hash")],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write to file instead of stdout"),
    ] = None,
    url: Annotated[Optional[str], typer.Option("--url", "-u", help="Server URL")] = None,
) -> None:
    """Download a program from a running server."""
    from progstore.client import ProgramStoreClient

    settings = _load_settings()

    async def run() -> bytes:
        async with ProgramStoreClient(_server_url(settings, url)) as client:
            return await client.get_program(program_hash)

    try:
        payload = asyncio.run(run())
    except ProgramStoreError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    if output is None:
        typer.echo(payload.decode("utf-8", errors="replace"))
    else:
        output.write_bytes(payload)
        console.print(f"[dim]Wrote {len(payload)} bytes to[/dim] {output}")


@app.command()
def config() -> None:
    """Show current configuration."""
    settings = _load_settings()

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"program-store version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
