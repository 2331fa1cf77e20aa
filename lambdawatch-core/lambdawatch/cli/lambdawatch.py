import json
import logging
import os
import sys
import traceback
from typing import Dict, List, Optional

import click
import requests

from lambdawatch import config
from lambdawatch.cli.exceptions import CLIError
from lambdawatch.constants import (
    HEADER_FUNCTION_ERROR,
    HEADER_INVOKE_TIMEOUT,
    INVOKE_API_VERSION,
    VERSION,
)
from lambdawatch.utils.strings import to_str

from .console import BANNER, console

EXIT_FUNCTION_ERROR = 1
EXIT_TOOLING_ERROR = 2


class LambdaWatchCliGroup(click.Group):
    """
    A Click group used for the top-level ``lambdawatch`` command group. It implements global exception handling
    by:

    - Ignoring click exceptions (already handled)
    - Wrapping all unexpected exceptions in a ClickException (for a unified error message)
    """

    def invoke(self, ctx: click.Context):
        try:
            return super(LambdaWatchCliGroup, self).invoke(ctx)
        except click.exceptions.Exit:
            # raise Exit exceptions unmodified (e.g., raised on --help)
            raise
        except click.ClickException:
            # don't handle ClickExceptions, just reraise
            if ctx and ctx.params.get("debug"):
                click.echo(traceback.format_exc())
            raise
        except Exception as e:
            if ctx and ctx.params.get("debug"):
                click.echo(traceback.format_exc())
            # If we have a generic exception, we wrap it in a ClickException
            raise CLIError(str(e)) from e


def _setup_cli_debug() -> None:
    from lambdawatch.logging.setup import setup_logging_for_cli

    config.DEBUG = True
    os.environ["DEBUG"] = "1"

    setup_logging_for_cli(logging.DEBUG if config.DEBUG else logging.INFO)


def _base_url(host: Optional[str], port: Optional[int]) -> str:
    return f"http://{config.runtime_api_address(host, port)}"


@click.group(
    name="lambdawatch",
    help="Build, run, and invoke Lambda functions locally",
    cls=LambdaWatchCliGroup,
    context_settings={
        # add "-h" as a synonym for "--help"
        "help_option_names": ["-h", "--help"],
        # show default values for options by default
        "show_default": True,
    },
)
@click.version_option(
    VERSION,
    "--version",
    "-v",
    message="lambdawatch %(version)s",
    help="Show the version of lambdawatch and exit",
)
@click.option("-d", "--debug", is_flag=True, help="Enable CLI debugging mode")
@click.option("-p", "--profile", type=str, help="Set the configuration profile")
def lambdawatch(debug, profile) -> None:
    # --profile is read manually in lambdawatch.cli.main because it needs to be read before lambdawatch.config is read
    if debug:
        _setup_cli_debug()


@lambdawatch.command(name="start", short_help="Start the local control plane")
@click.option(
    "--manifest-path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to the Cargo.toml of the workspace [default: LAMBDA_MANIFEST_PATH]",
)
@click.option("--host", type=str, default=None, help="Address to bind the runtime API to")
@click.option("--port", type=int, default=None, help="Port to bind the runtime API to")
@click.option("--target", type=str, default=None, help="Target triple, or arm64 / x86_64")
@click.option("--release", is_flag=True, default=False, help="Build functions in release mode")
@click.option("--no-watch", is_flag=True, default=False, help="Do not rebuild functions on change")
@click.option("--no-banner", is_flag=True, default=False, help="Disable the banner")
def cmd_start(
    manifest_path: Optional[str],
    host: Optional[str],
    port: Optional[int],
    target: Optional[str],
    release: bool,
    no_watch: bool,
    no_banner: bool,
) -> None:
    """
    Start the runtime API emulator and the invoke endpoint in the foreground.

    Functions of the workspace are built and started on their first invocation, and rebuilt on the next
    invocation after their sources changed. Stop with CTRL+C.
    """
    from lambdawatch.logging.setup import setup_logging_from_config
    from lambdawatch.runtime.runtime import create_from_environment

    if not no_banner:
        console.print(BANNER, style="bold", highlight=False)

    setup_logging_from_config()

    runtime = create_from_environment(
        manifest_path=manifest_path,
        host=host,
        port=port,
        build_target=target,
        build_profile="release" if release else None,
        watch=False if no_watch else None,
    )
    try:
        runtime.run()
    except KeyboardInterrupt:
        console.print("\n[bold]Shutting down ...[/bold]")
    except OSError as e:
        raise CLIError(f"unable to start the runtime API on {_base_url(host, port)}: {e}") from e


def _read_payload(data_ascii: Optional[str], data_file: Optional[str]) -> bytes:
    if data_ascii is not None and data_file is not None:
        raise click.UsageError("--data-ascii and --data-file are mutually exclusive")
    if data_file == "-":
        return sys.stdin.buffer.read()
    if data_file:
        with open(data_file, "rb") as fd:
            return fd.read()
    return (data_ascii or "").encode("utf-8")


def _print_payload(payload: bytes) -> None:
    text = to_str(payload, errors="replace")
    try:
        json.loads(text)
    except ValueError:
        console.print(text, highlight=False, markup=False)
        return
    console.print_json(text)


@lambdawatch.command(name="invoke", short_help="Invoke a function")
@click.argument("function_name")
@click.option("-A", "--data-ascii", type=str, default=None, help="Payload of the invocation")
@click.option(
    "-F",
    "--data-file",
    type=click.Path(dir_okay=False, allow_dash=True),
    default=None,
    help="File with the payload of the invocation, or - for stdin",
)
@click.option("--timeout", type=float, default=None, help="Invocation timeout in seconds")
@click.option("--host", type=str, default=None, help="Address of the runtime API")
@click.option("--port", type=int, default=None, help="Port of the runtime API")
def cmd_invoke(
    function_name: str,
    data_ascii: Optional[str],
    data_file: Optional[str],
    timeout: Optional[float],
    host: Optional[str],
    port: Optional[int],
) -> None:
    """
    Invoke a function of a running lambdawatch and print its response.

    \b
    Exits with 0 if the function succeeded, 1 if the function
    returned an error, and 2 if the invocation itself failed.
    """
    payload = _read_payload(data_ascii, data_file)
    url = f"{_base_url(host, port)}/{INVOKE_API_VERSION}/functions/{function_name}/invocations"

    headers = {"Content-Type": "application/json"}
    if timeout:
        headers[HEADER_INVOKE_TIMEOUT] = str(timeout)

    try:
        response = requests.post(url, data=payload, headers=headers)
    except requests.ConnectionError as e:
        if config.DEBUG:
            console.print_exception()
        raise CLIError(
            f"could not connect to lambdawatch at {_base_url(host, port)}, is it running?",
            exit_code=EXIT_TOOLING_ERROR,
        ) from e

    if not response.ok:
        try:
            doc = response.json()
            message = f"{doc.get('errorType')}: {doc.get('errorMessage')}"
            if doc.get("diagnostics"):
                console.print(doc["diagnostics"], highlight=False, markup=False)
        except ValueError:
            message = f"{response.status_code} {to_str(response.content, errors='replace')}"
        raise CLIError(message, exit_code=EXIT_TOOLING_ERROR)

    _print_payload(response.content)
    if response.headers.get(HEADER_FUNCTION_ERROR):
        sys.exit(EXIT_FUNCTION_ERROR)


@lambdawatch.command(name="functions", short_help="List functions and their state")
@click.option("--host", type=str, default=None, help="Address of the runtime API")
@click.option("--port", type=int, default=None, help="Port of the runtime API")
@click.option(
    "-f",
    "--format",
    "format_",
    type=click.Choice(["table", "json"]),
    default="table",
    help="The formatting style for the command output.",
)
def cmd_functions(host: Optional[str], port: Optional[int], format_: str) -> None:
    """
    List the functions of a running lambdawatch with their lifecycle state.
    """
    url = _base_url(host, port)
    try:
        doc = requests.get(f"{url}/_lambdawatch/functions", timeout=5).json()
    except requests.ConnectionError as e:
        if config.DEBUG:
            console.print_exception()
        raise CLIError(f"could not connect to lambdawatch at {url}, is it running?") from e

    functions = doc.get("functions", [])
    if format_ == "json":
        console.print_json(json.dumps(functions))
    else:
        _print_function_table(functions)


def _print_function_table(functions: List[Dict]) -> None:
    from rich.table import Table

    state_display = {
        "Ready": "[green]:heavy_check_mark:[/green] Ready",
        "Invoking": "[green]:arrow_forward:[/green] Invoking",
        "Building": ":hammer: Building",
        "Rebuilding": ":hammer: Rebuilding",
        "Starting": ":hourglass_flowing_sand: Starting",
        "Crashed": "[red]:heavy_multiplication_x:[/red] Crashed",
    }

    table = Table()
    table.add_column("Function")
    table.add_column("State")
    table.add_column("PID")
    table.add_column("Queued")
    table.add_column("Crashes")

    for function in sorted(functions, key=lambda f: f["name"]):
        state = state_display.get(function["state"], function["state"])
        if function.get("stale"):
            state += " (changed)"
        table.add_row(
            function["name"],
            state,
            str(function.get("pid") or "-"),
            str(function.get("queued", 0)),
            str(function.get("crashes", 0)),
        )

    console.print(table)
