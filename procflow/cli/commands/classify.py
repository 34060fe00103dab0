"""procflow classify: show how each action is executed."""

from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

console = Console()


def classify_actions(
    action: Optional[str] = typer.Argument(None, help="Single action to classify, e.g. APPROVAL"),
):
    """List every step action with its execution type (HUMAN or AUTO)."""
    from procflow.engine.classifier import classify
    from procflow.types import StepAction

    if action is not None:
        try:
            console.print(classify(action.upper()).value)
        except ValueError:
            console.print(f"[red]Unknown action:[/red] {action}")
            raise typer.Exit(1)
        return

    table = Table(box=box.ROUNDED, header_style="bold dim", title="[bold]Step actions[/bold]")
    table.add_column("Action", style="cyan")
    table.add_column("Execution")
    for member in StepAction:
        kind = classify(member).value
        style = "yellow" if kind == "HUMAN" else "green"
        table.add_row(member.value, f"[{style}]{kind}[/{style}]")
    console.print(table)
