"""Console helpers shared by the Nevermore CLIs.

Holds the rich consoles, the banner, the step tracker tree and the
arrow-key selectors used by the interactive scaffolders.
"""

import readchar
from rich.align import Align
from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.tree import Tree
import typer
from typer.core import TyperGroup

console = Console()
err_console = Console(stderr=True)

# ASCII Art Banner
BANNER = """
███╗   ██╗███████╗██╗   ██╗███████╗██████╗ ███╗   ███╗ ██████╗ ██████╗ ███████╗
████╗  ██║██╔════╝██║   ██║██╔════╝██╔══██╗████╗ ████║██╔═══██╗██╔══██╗██╔════╝
██╔██╗ ██║█████╗  ██║   ██║█████╗  ██████╔╝██╔████╔██║██║   ██║██████╔╝█████╗  
██║╚██╗██║██╔══╝  ╚██╗ ██╔╝██╔══╝  ██╔══██╗██║╚██╔╝██║██║   ██║██╔══██╗██╔══╝  
██║ ╚████║███████╗ ╚████╔╝ ███████╗██║  ██║██║ ╚═╝ ██║╚██████╔╝██║  ██║███████╗
╚═╝  ╚═══╝╚══════╝  ╚═══╝  ╚══════╝╚═╝  ╚═╝╚═╝     ╚═╝ ╚═════╝ ╚═╝  ╚═╝╚══════╝
"""

TAGLINE = "Nevermore - Worker & Plugin Developer Tools"


class StepTracker:
    """Track and render hierarchical steps as a tree.
    Supports live auto-refresh via an attached refresh callback.
    """
    def __init__(self, title: str):
        self.title = title
        self.steps = []  # list of dicts: {key, label, status, detail}
        self._refresh_cb = None

    def attach_refresh(self, cb):
        self._refresh_cb = cb

    def add(self, key: str, label: str):
        if key not in [s["key"] for s in self.steps]:
            self.steps.append({"key": key, "label": label, "status": "pending", "detail": ""})
            self._maybe_refresh()

    def start(self, key: str, detail: str = ""):
        self._update(key, status="running", detail=detail)

    def complete(self, key: str, detail: str = ""):
        self._update(key, status="done", detail=detail)

    def error(self, key: str, detail: str = ""):
        self._update(key, status="error", detail=detail)

    def skip(self, key: str, detail: str = ""):
        self._update(key, status="skipped", detail=detail)

    def _update(self, key: str, status: str, detail: str):
        for s in self.steps:
            if s["key"] == key:
                s["status"] = status
                if detail:
                    s["detail"] = detail
                self._maybe_refresh()
                return
        self.steps.append({"key": key, "label": key, "status": status, "detail": detail})
        self._maybe_refresh()

    def _maybe_refresh(self):
        if self._refresh_cb:
            self._refresh_cb()

    def render(self):
        tree = Tree(f"[cyan]{self.title}[/cyan]", guide_style="grey50")
        symbols = {
            "done": "[green]●[/green]",
            "pending": "[green dim]○[/green dim]",
            "running": "[cyan]○[/cyan]",
            "error": "[red]●[/red]",
            "skipped": "[yellow]○[/yellow]",
        }
        for step in self.steps:
            label = step["label"]
            detail_text = step["detail"].strip() if step["detail"] else ""
            status = step["status"]
            symbol = symbols.get(status, " ")

            if status == "pending":
                # Entire line light gray
                if detail_text:
                    line = f"{symbol} [bright_black]{label} ({detail_text})[/bright_black]"
                else:
                    line = f"{symbol} [bright_black]{label}[/bright_black]"
            else:
                if detail_text:
                    line = f"{symbol} [white]{label}[/white] [bright_black]({detail_text})[/bright_black]"
                else:
                    line = f"{symbol} [white]{label}[/white]"

            tree.add(line)
        return tree


def get_key():
    """Get a single keypress in a cross-platform way using readchar."""
    key = readchar.readkey()

    if key == readchar.key.UP:
        return 'up'
    if key == readchar.key.DOWN:
        return 'down'
    if key == readchar.key.ENTER:
        return 'enter'
    if key == readchar.key.SPACE:
        return 'space'
    if key == readchar.key.ESC:
        return 'escape'
    if key == readchar.key.CTRL_C:
        raise KeyboardInterrupt

    return key


def _cancel_selection():
    console.print("\n[yellow]Selection cancelled[/yellow]")
    raise typer.Exit(1)


def select_with_arrows(options: dict, prompt_text: str = "Select an option", default_key: str = None) -> str:
    """
    Interactive selection using arrow keys with Rich Live display.

    Args:
        options: Dict with keys as option keys and values as descriptions
        prompt_text: Text to show above the options
        default_key: Default option key to start with

    Returns:
        Selected option key
    """
    option_keys = list(options.keys())
    if default_key and default_key in option_keys:
        selected_index = option_keys.index(default_key)
    else:
        selected_index = 0

    def create_selection_panel():
        table = Table.grid(padding=(0, 2))
        table.add_column(style="cyan", justify="left", width=3)
        table.add_column(style="white", justify="left")

        for i, key in enumerate(option_keys):
            marker = "▶" if i == selected_index else " "
            table.add_row(marker, f"[cyan]{key}[/cyan] [dim]({options[key]})[/dim]")

        table.add_row("", "")
        table.add_row("", "[dim]Use ↑/↓ to navigate, Enter to select, Esc to cancel[/dim]")

        return Panel(table, title=f"[bold]{prompt_text}[/bold]", border_style="cyan", padding=(1, 2))

    console.print()
    with Live(create_selection_panel(), console=console, transient=True, auto_refresh=False) as live:
        while True:
            try:
                key = get_key()
            except KeyboardInterrupt:
                _cancel_selection()
            if key == 'up':
                selected_index = (selected_index - 1) % len(option_keys)
            elif key == 'down':
                selected_index = (selected_index + 1) % len(option_keys)
            elif key == 'enter':
                return option_keys[selected_index]
            elif key == 'escape':
                _cancel_selection()
            live.update(create_selection_panel(), refresh=True)


def checkbox_with_arrows(options: list[str], prompt_text: str = "Select options") -> list[str]:
    """Multi-select variant of `select_with_arrows`; space toggles, Enter confirms.

    Returns the chosen options in their original order.
    """
    selected_index = 0
    checked: set[str] = set()

    def create_checkbox_panel():
        table = Table.grid(padding=(0, 2))
        table.add_column(style="cyan", justify="left", width=3)
        table.add_column(style="white", justify="left")

        for i, option in enumerate(options):
            marker = "▶" if i == selected_index else " "
            box = "[green]◉[/green]" if option in checked else "○"
            table.add_row(marker, f"{box} [cyan]{option}[/cyan]")

        table.add_row("", "")
        table.add_row("", "[dim]Use ↑/↓ to navigate, Space to toggle, Enter to confirm, Esc to cancel[/dim]")

        return Panel(table, title=f"[bold]{prompt_text}[/bold]", border_style="cyan", padding=(1, 2))

    console.print()
    with Live(create_checkbox_panel(), console=console, transient=True, auto_refresh=False) as live:
        while True:
            try:
                key = get_key()
            except KeyboardInterrupt:
                _cancel_selection()
            if key == 'up':
                selected_index = (selected_index - 1) % len(options)
            elif key == 'down':
                selected_index = (selected_index + 1) % len(options)
            elif key == 'space':
                checked ^= {options[selected_index]}
            elif key == 'enter':
                return [option for option in options if option in checked]
            elif key == 'escape':
                _cancel_selection()
            live.update(create_checkbox_panel(), refresh=True)


def show_banner(tagline: str = TAGLINE):
    """Display the ASCII art banner."""
    banner_lines = BANNER.strip().split('\n')
    colors = ["bright_magenta", "magenta", "bright_blue", "blue", "cyan", "bright_cyan"]

    styled_banner = Text()
    for i, line in enumerate(banner_lines):
        color = colors[i % len(colors)]
        styled_banner.append(line + "\n", style=color)

    console.print(Align.center(styled_banner))
    console.print(Align.center(Text(tagline, style="italic bright_yellow")))
    console.print()


class BannerGroup(TyperGroup):
    """Custom group that shows banner before help."""

    def format_help(self, ctx, formatter):
        show_banner()
        super().format_help(ctx, formatter)


def print_error(exc: Exception, title: str | None = None):
    """Render an error as a red panel on stderr."""
    err_console.print(Panel(escape(str(exc)), title=f"[red]{title or getattr(exc, 'title', 'Error')}[/red]", border_style="red"))
