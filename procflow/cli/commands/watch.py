"""procflow watch: poll a local directory tree for new files."""

import typer
from rich.console import Console

console = Console()


def watch_folders(
    root: str = typer.Argument(..., help="Directory the procedures' folder paths are relative to"),
    once: bool = typer.Option(False, "--once", help="Check every folder once and exit"),
):
    """Trigger ON_FILE_CREATED procedures for files that appear under ROOT."""
    import asyncio
    import logging

    from procflow.config import config
    from procflow.runtime import build_runtime
    from procflow.triggers.watcher import FolderWatcher, LocalFileSource

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    async def _watch():
        runtime = await build_runtime(config)
        watcher = FolderWatcher(
            LocalFileSource(root),
            runtime.dispatcher,
            runtime.repo,
            tick_seconds=config.watcher_tick_seconds,
        )
        try:
            if once:
                return await watcher.tick()
            while True:
                summary = await watcher.tick()
                for run_id in summary["runs_created"]:
                    console.print(f"  [green]✓[/green] started {run_id}")
                await asyncio.sleep(config.watcher_tick_seconds)
        finally:
            await runtime.close()

    try:
        summary = asyncio.run(_watch())
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")
        return
    console.print(
        f"Checked [bold]{summary['checked_folders']}[/bold] folder(s), "
        f"started [bold]{len(summary['runs_created'])}[/bold] run(s)"
    )
    for err in summary["errors"]:
        console.print(f"  [red]✗[/red] {err}")
