"""procflow CLI: Typer application."""

import typer
from rich.console import Console

from procflow.version import __version__

app = typer.Typer(
    name="procflow",
    help="procflow: run execution engine for human and automated procedures.",
    no_args_is_help=True,
    invoke_without_command=True,
)
console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-v", is_eager=True, help="Show version"),
):
    """procflow CLI."""
    if version:
        console.print(f"procflow v{__version__}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


# ── Services ───────────────────────────────────────────────────────────────────
from procflow.cli.commands import serve, scheduler, watch  # noqa: E402

app.command(name="serve", help="Start the API server")(serve.serve)
app.command(name="scheduler", help="Resume delayed process runs on a timer")(scheduler.run_scheduler)
app.command(name="watch", help="Poll local folders and trigger file procedures")(watch.watch_folders)

# ── Tools ──────────────────────────────────────────────────────────────────────
from procflow.cli.commands import classify, config, run  # noqa: E402

app.command(name="classify", help="Show which actions need a human")(classify.classify_actions)
app.command(name="run", help="Run a procedure file in memory")(run.run_procedure)
app.command(name="config", help="Show resolved configuration")(config.config_show)


if __name__ == "__main__":
    app()
