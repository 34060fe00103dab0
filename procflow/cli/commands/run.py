"""procflow run: execute a procedure definition against an in-memory store."""

import json

import typer
from rich import box
from rich.console import Console
from rich.table import Table

console = Console()


def run_procedure(
    path: str = typer.Argument(..., help="Procedure JSON file"),
    input_json: str = typer.Option("{}", "--input", "-i", help="Initial input as a JSON object"),
    actor: str = typer.Option("cli-user", "--actor", help="User id that starts the run"),
):
    """Start a Run of the procedure in PATH and show where it stopped.

    Uses a throwaway in-memory store, so HUMAN steps stop the run at
    WAITING_FOR_USER. Useful to check the AUTO steps and variable wiring.

    Example:
        procflow run invoice.json --input '{"amount": 120}'
    """
    import asyncio

    from procflow.engine.runner import RunEngine
    from procflow.store.memory import MemoryDocumentStore
    from procflow.store.repository import Repository
    from procflow.types import OrgContext, Procedure, output_value

    try:
        with open(path) as fh:
            procedure = Procedure.model_validate(json.load(fh))
        initial_input = json.loads(input_json)
    except (OSError, ValueError) as exc:
        console.print(f"[red]Could not load input:[/red] {exc}")
        raise typer.Exit(1)

    async def _run():
        repo = Repository(MemoryDocumentStore())
        await repo.save_procedure(procedure)
        engine = RunEngine(repo)
        ctx = OrgContext(organization_id=procedure.organization_id, actor_id=actor)
        started = await engine.start(procedure.id, ctx, initial_input=initial_input)
        return await engine.get_run(started.run_id, ctx)

    run = asyncio.run(_run())

    table = Table(box=box.ROUNDED, header_style="bold dim", title=f"[bold]{procedure.title}[/bold]")
    table.add_column("Step", style="cyan")
    table.add_column("Action")
    table.add_column("Outcome")
    table.add_column("Output", overflow="fold")
    for log in run.logs:
        outcome = log.outcome.value if log.outcome else "[yellow]PENDING[/yellow]"
        table.add_row(log.step_title or log.step_id, log.action.value, outcome,
                      json.dumps(output_value(log.output), default=str)[:120])
    console.print(table)

    status_style = {"COMPLETED": "green", "FLAGGED": "red"}.get(run.status.value, "yellow")
    console.print(f"Status: [{status_style}]{run.status.value}[/{status_style}]")
    if run.error_detail:
        console.print(f"[red]{run.error_detail}[/red]")
