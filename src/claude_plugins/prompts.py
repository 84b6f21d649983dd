"""Interactive terminal helpers: a single-select picker and confirmation."""

import sys
from dataclasses import dataclass
from typing import List, Optional

import readchar
import typer
from rich.console import Console
from rich.live import Live
from rich.panel import Panel


@dataclass
class Choice:
    value: str
    label: str
    hint: str = ""


def is_interactive() -> bool:
    return sys.stdin.isatty() and sys.stdout.isatty()


def get_key() -> str:
    """Get a single keypress in a cross-platform way using readchar."""
    key = readchar.readkey()

    if key in (readchar.key.UP, readchar.key.CTRL_P) or key == "k":
        return "up"
    if key in (readchar.key.DOWN, readchar.key.CTRL_N) or key == "j":
        return "down"
    if key in (readchar.key.ENTER, readchar.key.CR, readchar.key.LF):
        return "enter"
    if key == readchar.key.ESC or key == "q":
        return "esc"
    if key == readchar.key.CTRL_C:
        raise KeyboardInterrupt
    return key


def select_one(
    choices: List[Choice],
    prompt_text: str = "Select an option",
    initial: Optional[str] = None,
    console: Optional[Console] = None,
) -> Optional[str]:
    """
    Interactive single-select using arrow keys.

    Controls:
    - ↑/↓ (or j/k): Navigate
    - Enter: Confirm
    - Esc/q: Cancel

    Returns the chosen value, or None when cancelled or not on a TTY.
    """
    if not choices or not is_interactive():
        return None

    console = console or Console()
    values = [c.value for c in choices]
    cursor_index = values.index(initial) if initial in values else 0

    def create_selection_panel():
        lines = []
        for i, choice in enumerate(choices):
            hint = f" [dim]{choice.hint}[/dim]" if choice.hint else ""
            if i == cursor_index:
                lines.append(f"[bold cyan]→ {choice.label}[/bold cyan]{hint}")
            else:
                lines.append(f"[white]  {choice.label}[/white]{hint}")

        lines.append("")
        lines.append("[dim]↑/↓: navigate  Enter: confirm  Esc: cancel[/dim]")

        return Panel(
            "\n".join(lines),
            title=f"[bold cyan]{prompt_text}[/bold cyan]",
            border_style="cyan",
        )

    with Live(create_selection_panel(), console=console, transient=True, refresh_per_second=10) as live:
        while True:
            try:
                key = get_key()
            except KeyboardInterrupt:
                return None

            if key == "up":
                cursor_index = (cursor_index - 1) % len(choices)
            elif key == "down":
                cursor_index = (cursor_index + 1) % len(choices)
            elif key == "enter":
                return choices[cursor_index].value
            elif key == "esc":
                return None

            live.update(create_selection_panel())


def confirm(message: str, assume_yes: bool = False) -> bool:
    """Ask a yes/no question, defaulting to no. `assume_yes` skips the prompt."""
    if assume_yes:
        return True
    return typer.confirm(message, default=False)
