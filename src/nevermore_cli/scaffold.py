"""Project generation for `create-nevermore-app` and `create-nevermore-plugin`.

A scaffold copies one of the bundled template trees and then renders two
files into it: `nevermore.json` (read later by `nevermore-scripts`) and
`package.json`.
"""

import json
import re
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from rich.markup import escape

from .config import DEFAULT_ENDPOINT, PLUGIN, WORKER
from .errors import ScaffoldError
from .ui import StepTracker, console, err_console

TEMPLATES_DIR = Path(__file__).parent / "templates"

LANGUAGE_CHOICES = {"js": "Javascript (JS)", "ts": "Typescript (TS)"}
PLUGIN_TYPE_CHOICES = {
    "GENERIC": "General purpose plugin",
    "GAME": "Game logic for a season",
    "NETWORK_CONFIGURATOR": "Configures the field network",
}
PERMISSION_CHOICES = ["database", "network", "endpoint", "socket", "teams", "scores", "schedules"]

WORKER_BUNDLE = "dist/worker.bundle.js"
PLUGIN_BUNDLE = "dist/plugin.bundle.js"
FRONTEND_BUNDLE = "dist/frontend.bundle.js"

# Same rule as npm's package-name-regex, plus npm's length limit
PACKAGE_NAME_RE = re.compile(r"^(@[a-z0-9-~][a-z0-9-._~]*/)?[a-z0-9-~][a-z0-9-._~]*$")
MAX_PACKAGE_NAME_LENGTH = 214


def is_valid_package_name(name: str) -> bool:
    return 0 < len(name) <= MAX_PACKAGE_NAME_LENGTH and bool(PACKAGE_NAME_RE.match(name))


@dataclass
class ScaffoldAnswers:
    name: str
    description: str = ""
    language: str = "js"
    kind: str = WORKER
    author: str = ""
    email: str = ""
    url: str = ""
    plugin_type: str = "GENERIC"
    permissions: list[str] = field(default_factory=list)
    has_frontend: bool = True
    run_install: bool = False

    @property
    def is_typescript(self) -> bool:
        return self.language == "ts"

    @property
    def is_plugin(self) -> bool:
        return self.kind == PLUGIN


def template_dir(kind: str, language: str) -> Path:
    name = f"nevermore-{kind}" + ("-ts" if language == "ts" else "")
    return TEMPLATES_DIR / name


def generate_nevermore_json(answers: ScaffoldAnswers) -> dict:
    if not answers.is_plugin:
        return {
            "name": answers.name,
            "description": answers.description,
            "workerPath": WORKER_BUNDLE,
            "graphqlEndpoint": DEFAULT_ENDPOINT,
            "enabled": True,
        }

    data = {
        "name": answers.name,
        "description": answers.description,
        "author": answers.author,
        "email": answers.email,
        "url": answers.url,
        "pluginType": answers.plugin_type,
        "permissions": list(answers.permissions),
        "pluginPath": PLUGIN_BUNDLE,
    }
    if answers.has_frontend:
        data["frontendPath"] = FRONTEND_BUNDLE
    data.update({
        "hasFrontend": answers.has_frontend,
        "graphqlEndpoint": DEFAULT_ENDPOINT,
        "enabled": True,
    })
    return data


def _scripts(answers: ScaffoldAnswers) -> dict:
    scripts = {
        "build-dev": "webpack --mode=development",
        "build": "webpack --mode=production",
        "deploy": "npm run build && nevermore-scripts deploy",
        "deploy-dev": "npm run build-dev && nevermore-scripts deploy",
    }
    if answers.is_plugin:
        scripts["run-local"] = "npm run build-dev && nevermore-scripts develop"
        scripts["log"] = "nevermore-scripts log"
    scripts["develop"] = "nodemon"
    return scripts


def _dev_dependencies(answers: ScaffoldAnswers) -> dict:
    if answers.is_plugin:
        deps = {
            "@types/react": "^17.0.11",
            "@nevermore-fms/scripts": "^0.2.0",
            "@nevermore-fms/plugin-types": "^0.2.1",
        }
    else:
        deps = {
            "@types/react": "^17.0.11",
            "@nevermore-fms/scripts": "^0.0.1",
            "@nevermore-fms/worker-types": "^0.0.1",
        }
    deps["nodemon"] = "2.0.4"
    if answers.is_typescript:
        deps["ts-loader"] = "^9.2.3"
        deps["typescript"] = "^4.3.4"
    deps["webpack"] = "^5.42.0"
    deps["webpack-cli"] = "^4.7.2"
    return deps


def generate_package_json(answers: ScaffoldAnswers) -> dict:
    data = {
        "name": answers.name,
        "version": "0.0.0",
        "description": answers.description,
    }
    if answers.is_plugin:
        data["author"] = answers.author
    data.update({
        "private": True,
        "scripts": _scripts(answers),
        "devDependencies": _dev_dependencies(answers),
        "dependencies": {"react": "^17.0.2"},
    })
    return data


def _dump(data: dict) -> str:
    return json.dumps(data, indent="\t") + "\n"


def scaffold_project(answers: ScaffoldAnswers, root: Path = Path("."), *, tracker: StepTracker | None = None) -> Path:
    """Create ``root/<name>`` from the matching template.

    The template copy happens first; if it fails nothing else is written and
    the partial tree is removed.

    Raises:
        ScaffoldError: the target exists or the template could not be copied.
    """
    if not is_valid_package_name(answers.name):
        raise ScaffoldError(f"'{answers.name}' is not a valid NPM package name")

    project_path = Path(root) / answers.name
    if project_path.exists():
        raise ScaffoldError(
            f"Directory '{project_path}' already exists\n"
            "Please choose a different name or remove the existing directory."
        )

    source = template_dir(answers.kind, answers.language)
    language_label = "TS" if answers.is_typescript else "JS"
    if tracker:
        tracker.start("copy", source.name)
    try:
        shutil.copytree(source, project_path)
        if answers.is_plugin and not answers.has_frontend:
            shutil.rmtree(project_path / "frontend", ignore_errors=True)
    except (OSError, shutil.Error) as e:
        if tracker:
            tracker.error("copy", str(e))
        if project_path.exists():
            shutil.rmtree(project_path, ignore_errors=True)
        raise ScaffoldError(f"Couldn't copy {language_label} template! Error:\n{e}") from e
    if tracker:
        tracker.complete("copy", str(project_path))

    for key, filename, generate in [
        ("nevermore-json", "nevermore.json", generate_nevermore_json),
        ("package-json", "package.json", generate_package_json),
    ]:
        if tracker:
            tracker.start(key)
        (project_path / filename).write_text(_dump(generate(answers)), encoding="utf-8")
        if tracker:
            tracker.complete(key, filename)

    return project_path


def run_install(project_path: Path, package_manager: str = "npm") -> int:
    """Run ``<package_manager> install`` inside the project, streaming its output.

    Returns the exit code; 127 when the package manager is not on PATH.
    """
    executable = shutil.which(package_manager)
    if executable is None:
        err_console.print(f"[red]{escape(package_manager)} not found[/red] - run '{escape(package_manager)} install' in '{escape(str(project_path))}' yourself.")
        return 127

    console.print(f"[cyan]Running {escape(package_manager)} install in {escape(str(project_path))}...[/cyan]")
    process = subprocess.Popen(
        [executable, "install"],
        cwd=project_path,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        errors="replace",
    )
    with process:
        for line in process.stdout:
            console.print(escape(line.rstrip("\n")), highlight=False)
    return process.returncode
