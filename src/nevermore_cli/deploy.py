"""Uploading a bundled worker or plugin and restarting its engine."""

from pathlib import Path

from rich.markup import escape

from .config import ProjectConfig
from .errors import ArtifactReadError
from .graphql import (
    CREATE_PLUGIN,
    CREATE_WORKER,
    PLUGIN_LOG_SUBSCRIPTION,
    RESTART_PLUGINS,
    RESTART_WORKER,
    WORKER_LOG_SUBSCRIPTION,
    GraphQLClient,
    GraphQLError,
)
from .ui import console, err_console


def read_artifact(path: str) -> str:
    if not path:
        raise ArtifactReadError("No artifact path configured (set workerPath or pluginPath in nevermore.json)")
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ArtifactReadError(f"Couldn't read {path}: {e}") from e


def log_query(config: ProjectConfig) -> str:
    return PLUGIN_LOG_SUBSCRIPTION if config.is_plugin else WORKER_LOG_SUBSCRIPTION


def build_create_request(config: ProjectConfig) -> tuple[str, dict]:
    """Mutation text and variables for uploading ``config``'s artifact."""
    code = read_artifact(config.artifact_path)
    if not config.is_plugin:
        return CREATE_WORKER, {
            "name": config.name,
            "description": config.description,
            "code": code,
            "enabled": config.enabled,
        }

    frontend_code = read_artifact(config.frontend_path) if config.has_frontend else ""
    return CREATE_PLUGIN, {
        "name": config.name,
        "readme": config.description,
        "code": code,
        "enabled": config.enabled,
        "author": config.author,
        "email": config.email,
        "url": config.url,
        "pluginType": config.plugin_type,
        "hasFrontend": config.has_frontend,
        "frontendCode": frontend_code,
    }


async def submit_and_restart(client: GraphQLClient, config: ProjectConfig) -> bool:
    """Upload the artifact, then restart the engine.

    Returns False when the upload itself failed, in which case the restart is
    not attempted. A failed restart is reported but still returns True. No
    call is retried.

    Raises:
        ArtifactReadError: the bundle could not be read; nothing was sent.
    """
    mutation, variables = build_create_request(config)
    engine = "Plugin" if config.is_plugin else "Worker"

    try:
        await client.request(mutation, variables)
    except GraphQLError as e:
        err_console.print(f"[bold red]Couldn't upload your code:[/bold red] {escape(str(e))}")
        return False
    console.print("[bold green]Successfully uploaded your code![/bold green]")

    try:
        await client.request(RESTART_PLUGINS if config.is_plugin else RESTART_WORKER)
    except GraphQLError as e:
        err_console.print(f"[bold red]Couldn't restart the Nevermore {engine} Engine:[/bold red] {escape(str(e))}")
        return True
    console.print(f"[bold green]Successfully restarted the Nevermore {engine} Engine![/bold green]")
    return True
