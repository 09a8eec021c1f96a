import asyncio
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from apiwatch.api import connect
from apiwatch.cli.callbacks import method_callback, parameters_callback
from apiwatch.config import ApiConfig
from apiwatch.exceptions import ApiWatchError
from apiwatch.models import ApiError, ApiResponse, EventKind
from apiwatch.utils.logging import setup_logging

app = typer.Typer(no_args_is_help=True)
console = Console()

DocumentArgument = Annotated[
    Path,
    typer.Argument(help="Path to the OpenAPI/Swagger document (JSON or YAML)", exists=True),
]
PathArgument = Annotated[str, typer.Argument(help="Declared path template, e.g. /characters/{id}/mail")]
MethodOption = Annotated[
    str,
    typer.Option("-m", "--method", help="HTTP method", callback=method_callback),
]
ParametersOption = Annotated[
    list[str] | None,
    typer.Option(
        "-p",
        "--param",
        help="Parameter as name=value. Repeat a name to build a batch.",
    ),
]
UsersOption = Annotated[
    list[str] | None,
    typer.Option("-u", "--user", help="Acting user. Repeat for one user per request."),
]
ServerUrlOption = Annotated[
    str | None,
    typer.Option("--server-url", help="Override the server URL declared by the document"),
]
VerboseOption = Annotated[bool, typer.Option("-v", "--verbose", help="Enable debug logging")]


def _configure(verbose: bool) -> None:
    setup_logging(level=logging.DEBUG if verbose else logging.WARNING)


def print_response(response: ApiResponse, title: str) -> None:
    values = {
        "Status": response.status_code,
        "Version": response.version,
        "Expires At": response.expires_at.strftime("%Y-%m-%d %H:%M:%S %Z"),
    }
    if isinstance(response, ApiError):
        values["Error"] = f"[red]{response.message}[/red]"
    lines = "\n".join(f"{key}: {value}" for key, value in values.items())
    console.print(Panel(lines, title=title, expand=False, highlight=True))


@app.command(name="requests")
def show_requests(
    document: DocumentArgument,
    path: PathArgument,
    method: MethodOption = "GET",
    params: ParametersOption = None,
    users: UsersOption = None,
    server_url: ServerUrlOption = None,
    verbose: VerboseOption = False,
):
    """Print the requests a call expands to, without sending them"""
    _configure(verbose)
    client = connect(document, server_url=server_url)
    try:
        requests = client.get_requests(path, method, parameters_callback(params), users)
    except ApiWatchError as error:
        console.print(f"[red]{error}[/red]")
        raise typer.Exit(code=1)

    table = Table("#", "Method", "URL", "User", "Scope", "Identity", title=path)
    for index, request in enumerate(requests):
        table.add_row(
            str(index),
            str(request.method),
            request.url,
            request.user,
            request.scope,
            request.identity[:12],
        )
    console.print(table)


@app.command(name="fetch")
def fetch(
    document: DocumentArgument,
    path: PathArgument,
    method: MethodOption = "GET",
    params: ParametersOption = None,
    users: UsersOption = None,
    server_url: ServerUrlOption = None,
    verbose: VerboseOption = False,
):
    """Resolve a call once and print each response"""
    _configure(verbose)

    async def run() -> list[ApiResponse]:
        async with connect(document, server_url=server_url) as client:
            return await client.request(path, method, parameters_callback(params), users)

    try:
        responses = asyncio.run(run())
    except ApiWatchError as error:
        console.print(f"[red]{error}[/red]")
        raise typer.Exit(code=1)

    for index, response in enumerate(responses):
        print_response(response, title=f"{path} #{index}")
    if any(response.is_error for response in responses):
        raise typer.Exit(code=1)


@app.command(name="watch")
def watch(
    document: DocumentArgument,
    path: PathArgument,
    method: MethodOption = "GET",
    params: ParametersOption = None,
    users: UsersOption = None,
    server_url: ServerUrlOption = None,
    event_kind: Annotated[
        EventKind,
        typer.Option("-e", "--event", help="Event to print", case_sensitive=False),
    ] = EventKind.update,
    max_events: Annotated[
        int | None,
        typer.Option("-n", "--max-events", help="Stop after this many events", min=1),
    ] = None,
    verbose: VerboseOption = False,
):
    """Watch a call and print update or change events until interrupted"""
    _configure(verbose)

    async def run() -> None:
        done = asyncio.Event()
        received = 0

        def on_event(current: ApiResponse, previous: ApiResponse | None) -> None:
            nonlocal received
            received += 1
            print_response(current, title=f"{event_kind} #{received}")
            if max_events is not None and received >= max_events:
                done.set()

        config = ApiConfig.from_env()
        async with connect(document, server_url=server_url, config=config) as client:
            await client.subscribe(
                path,
                method,
                event_kind,
                on_event,
                parameters_callback(params),
                users,
            )
            await done.wait()

    try:
        asyncio.run(run())
    except ApiWatchError as error:
        console.print(f"[red]{error}[/red]")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print("Stopped watching")
