"""procflow serve: start the API server."""

from typing import Optional

import typer
from rich.console import Console

console = Console()


def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind to (default: PROCFLOW_HOST)"),
    port: Optional[int] = typer.Option(None, help="Port to listen on (default: PROCFLOW_PORT)"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Start the procflow API server."""
    import uvicorn
    from procflow.config import config

    host = host or config.host
    port = port or config.port
    console.print(f"[green]Starting procflow on {host}:{port}[/green]")
    uvicorn.run("procflow.api.main:app", host=host, port=port, reload=reload,
                log_level=config.log_level.lower())
