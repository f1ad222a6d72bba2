"""Reading `nevermore.json` and layering CLI overrides on top of it.

Resolution order, lowest priority first: built-in defaults, the JSON file
(`--config`, default ``nevermore.json``), then explicit flags such as
``--endpoint``. Fields that are missing or carry the wrong JSON type are
treated as absent; only a missing or malformed file is an error.
"""

import json
import re
from dataclasses import dataclass, field, replace
from pathlib import Path

from .errors import ConfigError

CONFIG_FILENAME = "nevermore.json"
DEFAULT_ENDPOINT = "http://localhost:8000/graphql"

WORKER = "worker"
PLUGIN = "plugin"


@dataclass(frozen=True)
class ProjectConfig:
    name: str = "no-name"
    description: str = ""
    author: str = ""
    email: str = ""
    url: str = ""
    plugin_type: str = ""
    permissions: tuple[str, ...] = ()
    artifact_path: str = ""
    frontend_path: str = ""
    graphql_endpoint: str = DEFAULT_ENDPOINT
    enabled: bool = False
    has_frontend: bool = False
    kind: str = WORKER

    @property
    def is_plugin(self) -> bool:
        return self.kind == PLUGIN


# (json key, attribute, expected type)
_FIELDS = [
    ("name", "name", str),
    ("description", "description", str),
    ("author", "author", str),
    ("email", "email", str),
    ("url", "url", str),
    ("pluginType", "plugin_type", str),
    ("frontendPath", "frontend_path", str),
    ("graphqlEndpoint", "graphql_endpoint", str),
    ("enabled", "enabled", bool),
    ("hasFrontend", "has_frontend", bool),
]


def config_from_dict(data: dict) -> ProjectConfig:
    """Build a `ProjectConfig` from decoded JSON, dropping wrongly typed fields."""
    values = {}
    for key, attr, expected in _FIELDS:
        value = data.get(key)
        if isinstance(value, expected):
            values[attr] = value

    permissions = data.get("permissions")
    if isinstance(permissions, list) and all(isinstance(p, str) for p in permissions):
        values["permissions"] = tuple(permissions)

    if isinstance(data.get("pluginPath"), str) or "plugin_type" in values:
        values["kind"] = PLUGIN
        if isinstance(data.get("pluginPath"), str):
            values["artifact_path"] = data["pluginPath"]
    elif isinstance(data.get("workerPath"), str):
        values["artifact_path"] = data["workerPath"]

    # An explicit frontendPath implies a frontend bundle unless the file says otherwise
    if "frontend_path" in values and "has_frontend" not in values:
        values["has_frontend"] = True

    return ProjectConfig(**values)


def load_config(path: Path | str = CONFIG_FILENAME) -> ProjectConfig:
    """Read and decode a project config file.

    Raises:
        ConfigError: the file is missing, unreadable, or not a JSON object.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"{path} doesn't exist or can't be read: {e}") from e
    except ValueError as e:
        raise ConfigError(f"{path} has invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a JSON object")
    return config_from_dict(data)


def http_to_ws_url(url: str) -> str:
    """Derive the subscription URL: ``http`` becomes ``ws``, ``https`` becomes ``wss``."""
    return re.sub(r"^http(s)?://", r"ws\1://", url)


@dataclass(frozen=True)
class Settings:
    """Effective settings for one `nevermore-scripts` invocation."""

    project: ProjectConfig = field(default_factory=ProjectConfig)
    config_path: Path = Path(CONFIG_FILENAME)

    @property
    def endpoint(self) -> str:
        return self.project.graphql_endpoint

    @property
    def ws_endpoint(self) -> str:
        return http_to_ws_url(self.endpoint)


def resolve_settings(
    config_path: Path | str | None = None,
    endpoint: str | None = None,
    *,
    require_file: bool = True,
) -> Settings:
    """Layer defaults, the config file and CLI flags into a `Settings`.

    When ``require_file`` is false a missing or broken file falls back to
    defaults instead of raising.
    """
    path = Path(config_path) if config_path else Path(CONFIG_FILENAME)
    try:
        project = load_config(path)
    except ConfigError:
        if require_file:
            raise
        project = ProjectConfig()

    if endpoint:
        project = replace(project, graphql_endpoint=endpoint)
    elif not project.graphql_endpoint:
        project = replace(project, graphql_endpoint=DEFAULT_ENDPOINT)

    return Settings(project=project, config_path=path)
