#!/usr/bin/env python3
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "typer",
#     "rich",
#     "platformdirs",
#     "readchar",
#     "httpx",
#     "truststore",
#     "websockets",
# ]
# ///
"""
nevermore-scripts - deploy, log and develop Nevermore workers and plugins

Usage:
    nevermore-scripts deploy [-c nevermore.json] [-e http://localhost:8000/graphql]
    nevermore-scripts log
    nevermore-scripts develop
    nevermore-scripts hash [FILES...]
"""

import asyncio
import ssl
from pathlib import Path
from typing import Optional

import httpx
import truststore
import typer
from rich.markup import escape

from .binary import (
    HostPlatform,
    descriptor_for,
    ensure_binary,
    fetch_release_digests,
    file_sha256,
    release_descriptors,
)
from .config import CONFIG_FILENAME, DEFAULT_ENDPOINT, Settings, resolve_settings
from .deploy import log_query, submit_and_restart
from .errors import NevermoreError
from .graphql import GraphQLClient
from .launcher import dev_command, make_executable, run_until_exit
from .session import Session
from .ui import BannerGroup, StepTracker, console, err_console, print_error

__version__ = "0.4.2"

ssl_context = truststore.SSLContext(ssl.PROTOCOL_TLS_CLIENT)

app = typer.Typer(
    name="nevermore-scripts",
    help="Deploy, log and develop Nevermore workers and plugins",
    add_completion=False,
    invoke_without_command=True,
    no_args_is_help=False,
    cls=BannerGroup,
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _version_callback(value: bool):
    if value:
        console.print(f"nevermore-scripts {__version__}")
        raise typer.Exit()


@app.callback()
def callback(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", callback=_version_callback, is_eager=True, help="Show the version and exit"),
):
    """Report a missing sub-command instead of silently doing nothing."""
    if ctx.invoked_subcommand is None:
        err_console.print('[red]Undefined command to run![/red] Ex: "nevermore-scripts deploy <...>"')
        console.print("Use -h or --help for more information.")
        raise typer.Exit(1)


def _http_client(skip_tls: bool = False) -> httpx.AsyncClient:
    return httpx.AsyncClient(verify=False if skip_tls else ssl_context)


def _ws_ssl(skip_tls: bool = False) -> ssl.SSLContext:
    if not skip_tls:
        return ssl_context
    insecure = ssl.create_default_context()
    insecure.check_hostname = False
    insecure.verify_mode = ssl.CERT_NONE
    return insecure


def _settings(config: Optional[Path], endpoint: Optional[str], *, require_file: bool = True) -> Settings:
    try:
        return resolve_settings(config, endpoint, require_file=require_file)
    except NevermoreError as e:
        print_error(e)
        raise typer.Exit(1)


def _run(main, *args) -> int:
    """Run an async command body with a fresh `Session`, mapping errors to exit codes."""
    session = Session()

    async def runner():
        session.install_signal_handlers()
        try:
            return await main(session, *args)
        except asyncio.CancelledError:
            # Shutdown signal: the session has already been cancelled
            session.cancel()
            return 0
        finally:
            session.cancel()

    try:
        return asyncio.run(runner())
    except NevermoreError as e:
        print_error(e)
        return 1


async def _deploy(session: Session, settings: Settings, follow: bool, skip_tls: bool) -> int:
    project = settings.project
    async with _http_client(skip_tls) as http:
        client = GraphQLClient(settings.endpoint, http)
        if follow:
            console.clear()
            session.subscribe(settings.ws_endpoint, log_query(project), ssl_context=_ws_ssl(skip_tls))
        if not await submit_and_restart(client, project):
            return 1
    if follow and session.subscription is not None:
        return 0 if await session.subscription.wait() else 1
    return 0


async def _log(session: Session, settings: Settings, skip_tls: bool) -> int:
    console.clear()
    subscription = session.subscribe(settings.ws_endpoint, log_query(settings.project), ssl_context=_ws_ssl(skip_tls))
    return 0 if await subscription.wait() else 1


async def _develop(session: Session, settings: Settings, skip_tls: bool, bin_dir: Optional[Path]) -> int:
    project = settings.project
    tracker = StepTracker("Nevermore Develop")
    tracker.add("platform", "Detect platform")
    tracker.add("binary", "Verify Nevermore binary")
    tracker.add("launch", "Launch Nevermore")

    descriptor = descriptor_for(bin_dir=bin_dir)
    tracker.complete("platform", descriptor.platform.value)

    async with _http_client(skip_tls) as http:
        tracker.start("binary", str(descriptor.local_path))
        binary = await ensure_binary(descriptor, http)
        make_executable(binary)
        tracker.complete("binary", descriptor.expected_sha256[:12])
        tracker.start("launch", " ".join(dev_command(binary)[1:]))
        console.print(tracker.render())

        client = GraphQLClient(settings.endpoint, http)

        async def on_ready():
            session.subscribe(settings.ws_endpoint, log_query(project), ssl_context=_ws_ssl(skip_tls))
            await submit_and_restart(client, project)

        returncode = await run_until_exit(session, dev_command(binary), on_ready)

    if returncode:
        err_console.print(f"[red]Nevermore exited with code {returncode}[/red]")
    return returncode


async def _hash(session: Session, files: list[Path], skip_tls: bool) -> int:
    if files:
        status = 0
        for path in files:
            digest = file_sha256(path)
            if digest is None:
                err_console.print(f"[red]Couldn't read[/red] {escape(str(path))}")
                status = 1
            else:
                console.print(f"{digest}  {escape(str(path))}", highlight=False)
        return status

    descriptors = release_descriptors()
    async with _http_client(skip_tls) as http:
        digests = await fetch_release_digests(http, descriptors)

    status = 0
    for host in HostPlatform:
        result = digests[host]
        url = descriptors[host].download_url
        if isinstance(result, NevermoreError):
            err_console.print(f"[red]{host.value:<8}[/red] {escape(str(result))}")
            status = 1
            continue
        pinned = "[green]pinned[/green]" if result == descriptors[host].expected_sha256 else "[yellow]differs from pinned[/yellow]"
        console.print(f"[cyan]{host.value:<8}[/cyan] {result}  {pinned}  [dim]{escape(url)}[/dim]")
    return status


ConfigOption = typer.Option(None, "--config", "-c", help=f"Path to the `{CONFIG_FILENAME}` config file.")
EndpointOption = typer.Option(None, "--endpoint", "-e", help=f"GraphQL endpoint (default {DEFAULT_ENDPOINT}, or graphqlEndpoint from the config).")
SkipTlsOption = typer.Option(False, "--skip-tls", help="Skip SSL/TLS verification (not recommended)")


@app.command()
def deploy(
    config: Optional[Path] = ConfigOption,
    endpoint: Optional[str] = EndpointOption,
    follow: bool = typer.Option(True, "--follow/--no-follow", help="Keep printing logs after deploying"),
    skip_tls: bool = SkipTlsOption,
):
    """Deploys a worker or plugin based on the config."""
    settings = _settings(config, endpoint)
    raise typer.Exit(_run(_deploy, settings, follow, skip_tls))


@app.command()
def log(
    config: Optional[Path] = ConfigOption,
    endpoint: Optional[str] = EndpointOption,
    skip_tls: bool = SkipTlsOption,
):
    """Watches the Nevermore logger."""
    settings = _settings(config, endpoint, require_file=endpoint is None)
    raise typer.Exit(_run(_log, settings, skip_tls))


@app.command()
def develop(
    config: Optional[Path] = ConfigOption,
    endpoint: Optional[str] = EndpointOption,
    skip_tls: bool = SkipTlsOption,
    bin_dir: Optional[Path] = typer.Option(None, "--bin-dir", help="Where to keep the Nevermore binary (default: user cache dir)"),
):
    """Runs a local Nevermore server and deploys the project to it."""
    settings = _settings(config, endpoint)
    raise typer.Exit(_run(_develop, settings, skip_tls, bin_dir))


@app.command("hash")
def hash_command(
    files: Optional[list[Path]] = typer.Argument(None, help="Local files to hash; without any, hashes the pinned release binaries"),
    skip_tls: bool = SkipTlsOption,
):
    """Prints SHA-256 digests of local files or of the Nevermore release binaries."""
    raise typer.Exit(_run(_hash, files or [], skip_tls))


def main():
    app()


if __name__ == "__main__":
    main()
