import asyncio
import logging
import typing as t
from typing import Annotated

import typer
from rich.console import Console

from wikibatch.cli.callbacks import max_requests_callback, params_callback
from wikibatch.cli.enums import Method
from wikibatch.exceptions import ApiErrors, ApiWarnings, HttpStatusError
from wikibatch.logging import setup_logging
from wikibatch.session import HttpxSession

app = typer.Typer(no_args_is_help=True)

ApiUrlArgument = Annotated[
    str,
    typer.Argument(help="The api.php URL, or just the wiki domain (e.g. en.wikipedia.org)"),
]
ParamsArgument = Annotated[
    list[str] | None,
    typer.Argument(help="Request parameters as key=value", callback=params_callback),
]
MethodOption = Annotated[
    Method,
    typer.Option("-m", "--method", help="The HTTP method", case_sensitive=False),
]
UserAgentOption = Annotated[
    str | None,
    typer.Option(
        "--user-agent",
        envvar="WIKIBATCH_USER_AGENT",
        help="User-Agent to send, see the Wikimedia User-Agent policy",
        rich_help_panel="Session",
    ),
]
AccessTokenOption = Annotated[
    str | None,
    typer.Option(
        "--access-token",
        envvar="WIKIBATCH_ACCESS_TOKEN",
        help="OAuth 2.0 access token",
        rich_help_panel="Session",
    ),
]
VerboseOption = Annotated[
    bool,
    typer.Option("-v", "--verbose", help="Log requests and retries"),
]


def build_params(items: list[str] | None) -> dict[str, str]:
    params: dict[str, str] = {}
    for item in items or []:
        key, _, value = item.partition("=")
        params[key] = value
    return params


def make_session(*, api_url: str, user_agent: str | None, access_token: str | None) -> HttpxSession:
    error_console = Console(stderr=True)

    def warn(warning: Exception) -> None:
        if isinstance(warning, ApiWarnings):
            for item in warning.warnings:
                text = item.get("text") or item.get("warnings") or item.get("*") or item.get("code")
                error_console.print(f"[yellow]warning ({item.get('module', '?')}): {text}[/yellow]")
        else:
            error_console.print(f"[yellow]warning: {warning}[/yellow]")

    return HttpxSession(
        api_url,
        {"formatversion": 2},
        {"user_agent": user_agent, "access_token": access_token, "warn": warn},
    )


def fail(error: Exception) -> t.NoReturn:
    error_console = Console(stderr=True)
    if isinstance(error, ApiErrors):
        for item in error.errors:
            text = item.get("text") or item.get("info") or item.get("*") or ""
            error_console.print(f"[red]API error {item.get('code')}: {text}[/red]")
    else:
        error_console.print(f"[red]{error}[/red]")
    raise typer.Exit(1)


@app.command(name="request")
def request_command(
    api_url: ApiUrlArgument,
    params: ParamsArgument = None,
    method: MethodOption = Method.GET,
    user_agent: UserAgentOption = None,
    access_token: AccessTokenOption = None,
    verbose: VerboseOption = False,
):
    """Make a single API request and print the response"""
    setup_logging(level=logging.DEBUG if verbose else logging.WARNING)

    async def run() -> t.Any:
        async with make_session(api_url=api_url, user_agent=user_agent, access_token=access_token) as session:
            return await session.request(build_params(params), {"method": method.value})

    try:
        body = asyncio.run(run())
    except (ApiErrors, HttpStatusError) as error:
        fail(error)
    console = Console()
    console.print_json(data=body)


@app.command(name="continue")
def continue_command(
    api_url: ApiUrlArgument,
    params: ParamsArgument = None,
    method: MethodOption = Method.GET,
    max_requests: Annotated[
        int | None,
        typer.Option(
            "-n",
            "--max-requests",
            help="Stop following continuation after this many requests",
            callback=max_requests_callback,
        ),
    ] = None,
    user_agent: UserAgentOption = None,
    access_token: AccessTokenOption = None,
    verbose: VerboseOption = False,
):
    """Make API requests following continuation and print each response"""
    setup_logging(level=logging.DEBUG if verbose else logging.WARNING)
    console = Console()

    async def run() -> int:
        count = 0
        async with make_session(api_url=api_url, user_agent=user_agent, access_token=access_token) as session:
            async for body in session.request_and_continue(build_params(params), {"method": method.value}):
                console.print_json(data=body)
                count += 1
                if max_requests is not None and count >= max_requests:
                    break
        return count

    try:
        count = asyncio.run(run())
    except (ApiErrors, HttpStatusError) as error:
        fail(error)
    Console(stderr=True).print(f"[green]{count} response(s)[/green]")
