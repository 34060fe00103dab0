"""procflow config: show resolved configuration."""

from rich import box
from rich.console import Console
from rich.table import Table

console = Console()


def config_show():
    """Show the resolved procflow configuration.

    Reads from environment variables and .env file. The cron secret is masked.

    Example:
        procflow config
    """
    from procflow.config import ProcflowConfig
    cfg = ProcflowConfig()

    def mask(val: str) -> str:
        s = str(val)
        if len(s) <= 8:
            return "***"
        return s[:4] + "…" + "***"

    sensitive = {"cron_secret"}

    table = Table(
        box=box.ROUNDED,
        header_style="bold dim",
        show_lines=False,
        title="[bold]procflow Configuration[/bold]",
    )
    table.add_column("Key", style="cyan", width=26)
    table.add_column("Value", width=45)
    table.add_column("Env Var", style="dim", width=36)

    sections = [
        ("App", ["app_name", "debug", "log_level"]),
        ("Storage", ["database_url", "redis_url", "use_redis_locks", "lock_ttl_seconds", "lock_timeout_seconds"]),
        ("Server", ["host", "port", "cors_origins"]),
        ("Scheduling", ["cron_secret", "scheduler_tick_seconds", "watcher_tick_seconds"]),
        ("Triggers", ["provider_id_min_length", "system_actor_id", "default_assignee_id"]),
        ("Connectors", ["http_timeout_seconds"]),
    ]

    first = True
    for section_name, fields in sections:
        if not first:
            table.add_row("", "", "")
        first = False
        table.add_row(f"[bold dim]── {section_name} ──[/bold dim]", "", "")
        for attr in fields:
            val = getattr(cfg, attr, None)
            if val is None:
                display = "[dim](not set)[/dim]"
            elif attr in sensitive:
                display = mask(str(val))
            else:
                display = str(val)
            table.add_row(f"  {attr}", display, f"PROCFLOW_{attr.upper()}")

    console.print()
    console.print(table)
    console.print()
    console.print("[dim]Source: environment variables + .env file (prefix: PROCFLOW_)[/dim]")
