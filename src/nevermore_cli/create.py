"""
create-nevermore-app / create-nevermore-plugin - interactive project generators

Usage:
    create-nevermore-app my-worker
    create-nevermore-app my-worker --language ts --install
    create-nevermore-plugin my-plugin --plugin-type GAME --permission teams --permission scores

Any answer not given as an option is asked for interactively.
"""

import sys
from pathlib import Path
from typing import Optional

import typer
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm, Prompt

from .config import PLUGIN, WORKER
from .errors import ScaffoldError
from .scaffold import (
    LANGUAGE_CHOICES,
    PERMISSION_CHOICES,
    PLUGIN_TYPE_CHOICES,
    ScaffoldAnswers,
    is_valid_package_name,
    run_install,
    scaffold_project,
)
from .ui import (
    StepTracker,
    checkbox_with_arrows,
    console,
    print_error,
    select_with_arrows,
    show_banner,
)

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}

worker_app = typer.Typer(
    name="create-nevermore-app",
    help="Create a new Nevermore worker project",
    add_completion=False,
    context_settings=CONTEXT_SETTINGS,
)
plugin_app = typer.Typer(
    name="create-nevermore-plugin",
    help="Create a new Nevermore plugin project",
    add_completion=False,
    context_settings=CONTEXT_SETTINGS,
)


def _interactive() -> bool:
    return sys.stdin.isatty()


def ask_name(kind: str) -> str:
    """Prompt until the answer is a valid NPM package name."""
    while True:
        value = Prompt.ask(
            f"What would you like to name this {kind}? [dim](Must abide by NPM Package naming scheme)[/dim]",
            console=console,
        ).strip()
        if is_valid_package_name(value):
            return value
        console.print("[red]Please enter a valid NPM package name.[/red]")


def _ask_text(question: str, value: Optional[str]) -> str:
    if value is not None:
        return value
    if not _interactive():
        return ""
    return Prompt.ask(question, default="", show_default=False, console=console)


def _resolve_name(name: Optional[str], kind: str) -> str:
    if name is not None:
        if not is_valid_package_name(name):
            console.print(f"[red]Error:[/red] '{escape(name)}' is not a valid NPM package name.")
            raise typer.Exit(1)
        return name
    if not _interactive():
        console.print(f"[red]Error:[/red] A {kind} name is required when not running interactively.")
        raise typer.Exit(1)
    return ask_name(kind)


def _resolve_choice(value: Optional[str], choices: dict, prompt_text: str, default: str, label: str) -> str:
    if value:
        if value not in choices:
            console.print(f"[red]Error:[/red] Invalid {label} '{escape(value)}'. Choose from: {', '.join(choices)}")
            raise typer.Exit(1)
        return value
    if not _interactive():
        return default
    return select_with_arrows(choices, prompt_text, default)


def _resolve_confirm(value: Optional[bool], question: str, default: bool) -> bool:
    if value is not None:
        return value
    if not _interactive():
        return default
    return Confirm.ask(question, default=default, console=console)


def run_scaffold(answers: ScaffoldAnswers, root: Path = Path(".")) -> Path:
    """Generate the project with a live step tree, then optionally install."""
    kind_label = "plugin" if answers.is_plugin else "worker"
    tracker = StepTracker(f"Create Nevermore {kind_label.title()}")
    for key, label in [
        ("copy", "Copy template"),
        ("nevermore-json", "Write nevermore.json"),
        ("package-json", "Write package.json"),
        ("install", "Install dependencies"),
    ]:
        tracker.add(key, label)

    with Live(tracker.render(), console=console, refresh_per_second=8, transient=True) as live:
        tracker.attach_refresh(lambda: live.update(tracker.render()))
        try:
            project_path = scaffold_project(answers, root, tracker=tracker)
        except ScaffoldError as e:
            live.stop()
            console.print(tracker.render())
            print_error(e)
            raise typer.Exit(1)
        except OSError as e:
            live.stop()
            console.print(tracker.render())
            print_error(e, "Write Error")
            raise typer.Exit(1)

    if not answers.run_install:
        tracker.skip("install", "not requested")
        console.print(tracker.render())
        console.print(f"\nPlease run [cyan]npm install[/cyan] within [cyan]{escape(str(project_path))}[/cyan] to begin developing.")
        return project_path

    tracker.start("install", "npm install")
    code = run_install(project_path)
    if code == 0:
        tracker.complete("install", "npm install")
        console.print(tracker.render())
        console.print(f"\n[bold green]The {kind_label} {escape(answers.name)} has been created at \"{escape(str(project_path))}\"![/bold green]")
    else:
        tracker.error("install", f"exit code {code}")
        console.print(tracker.render())
        console.print(Panel(
            f"The {kind_label} was created at [cyan]{escape(str(project_path))}[/cyan], "
            f"but [cyan]npm install[/cyan] exited with code {code}.\n"
            f"Fix the problem above and run [cyan]npm install[/cyan] in the project again.",
            title="[red]Install Failed[/red]",
            border_style="red",
            padding=(1, 2),
        ))
        raise typer.Exit(code if code > 0 else 1)
    return project_path


@worker_app.command()
def create_worker(
    name: Optional[str] = typer.Argument(None, help="Worker name (must be a valid NPM package name)"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Short description of the worker"),
    language: Optional[str] = typer.Option(None, "--language", "-l", help="Template language: js or ts"),
    install: Optional[bool] = typer.Option(None, "--install/--no-install", help="Run `npm install` after creating the project"),
):
    """Create a new Nevermore worker in ./<name>."""
    show_banner("Create Nevermore App")
    name = _resolve_name(name, WORKER)
    answers = ScaffoldAnswers(
        name=name,
        description=_ask_text("Write a quick description of your worker to tell users what to expect", description),
        language=_resolve_choice(language, LANGUAGE_CHOICES, "What language do you want to use?", "js", "language"),
        kind=WORKER,
        run_install=_resolve_confirm(install, "Would you like to run `npm install` after this worker is created?", False),
    )
    run_scaffold(answers)


@plugin_app.command()
def create_plugin(
    name: Optional[str] = typer.Argument(None, help="Plugin name (must be a valid NPM package name)"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Short description of the plugin"),
    author: Optional[str] = typer.Option(None, "--author", help="Name of the plugin's author"),
    email: Optional[str] = typer.Option(None, "--email", help="Contact email for the plugin"),
    url: Optional[str] = typer.Option(None, "--url", help="Website of the plugin"),
    plugin_type: Optional[str] = typer.Option(None, "--plugin-type", help=f"One of: {', '.join(PLUGIN_TYPE_CHOICES)}"),
    permissions: Optional[list[str]] = typer.Option(None, "--permission", "-p", help=f"Permission to request (repeatable): {', '.join(PERMISSION_CHOICES)}"),
    frontend: Optional[bool] = typer.Option(None, "--frontend/--no-frontend", help="Include a frontend bundle"),
    language: Optional[str] = typer.Option(None, "--language", "-l", help="Template language: js or ts"),
    install: Optional[bool] = typer.Option(None, "--install/--no-install", help="Run `npm install` after creating the project"),
):
    """Create a new Nevermore plugin in ./<name>."""
    show_banner("Create Nevermore Plugin - A project by the Edgar Allan Ohms, FRC Team 5276")
    name = _resolve_name(name, PLUGIN)
    description = _ask_text("Write a quick description of your plugin to tell users what to expect", description)
    author = _ask_text("Enter the name of this plugin's author", author)
    email = _ask_text("Enter the contact email for this plugin (Leave blank if not used)", email)
    url = _ask_text("Enter the website of this plugin (Leave blank if not used)", url)
    plugin_type = _resolve_choice(plugin_type, PLUGIN_TYPE_CHOICES, "What type of plugin is this?", "GENERIC", "plugin type")

    if permissions:
        unknown = [p for p in permissions if p not in PERMISSION_CHOICES]
        if unknown:
            console.print(f"[red]Error:[/red] Unknown permission(s): {', '.join(unknown)}. Choose from: {', '.join(PERMISSION_CHOICES)}")
            raise typer.Exit(1)
    elif _interactive():
        permissions = checkbox_with_arrows(PERMISSION_CHOICES, "What permissions would you like to include? (This can be changed later)")
    else:
        permissions = []

    answers = ScaffoldAnswers(
        name=name,
        description=description,
        author=author,
        email=email,
        url=url,
        plugin_type=plugin_type,
        permissions=list(permissions),
        has_frontend=_resolve_confirm(frontend, "Does this plugin have a frontend?", True),
        language=_resolve_choice(language, LANGUAGE_CHOICES, "What language do you want to use?", "js", "language"),
        kind=PLUGIN,
        run_install=_resolve_confirm(install, "Would you like to run `npm install` after this plugin is created?", False),
    )
    run_scaffold(answers)


def app_main():
    worker_app()


def plugin_main():
    plugin_app()
