"""procflow scheduler: standalone delay scheduler."""

import typer
from rich.console import Console

console = Console()


def run_scheduler(
    once: bool = typer.Option(False, "--once", help="Resume what is due now and exit"),
):
    """Resume ProcessRuns whose delay has elapsed.

    Without ``--once`` this polls every PROCFLOW_SCHEDULER_TICK_SECONDS until
    interrupted.
    """
    import asyncio

    if not once:
        from procflow.process.scheduler import main
        console.print("[green]Starting delay scheduler[/green] (Ctrl+C to stop)")
        main()
        return

    from procflow.config import config
    from procflow.runtime import build_runtime

    async def _once():
        runtime = await build_runtime(config)
        try:
            return await runtime.coordinator.resume_due()
        finally:
            await runtime.close()

    summary = asyncio.run(_once())
    console.print(f"Resumed [bold]{len(summary['resumed'])}[/bold] process run(s)")
    for prun_id, err in summary["errors"].items():
        console.print(f"  [red]✗[/red] {prun_id}: {err}")
    if summary["errors"]:
        raise typer.Exit(1)
