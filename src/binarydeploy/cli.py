"""binarydeploy CLI entry point."""

import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from binarydeploy import __version__
from binarydeploy.config import AgentSettings, default_warnings, load_deploy_config, load_settings
from binarydeploy.errors import ConfigError, RollbackError
from binarydeploy.updater import SelfUpdateEngine

console = Console()

DEFAULT_CONFIG = "config.json"


def setup_logging(verbose: bool = False, log_file: Path | None = None) -> None:
    """Configure logging with rich handler, plus a plain file handler if requested."""
    level = logging.DEBUG if verbose else logging.INFO
    handlers: list[logging.Handler] = [RichHandler(rich_tracebacks=True, console=console)]

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )


def _load_settings_or_exit(config_path: str) -> AgentSettings:
    try:
        return load_settings(Path(config_path))
    except ConfigError as err:
        console.print(f"[red]{err}[/red]")
        raise SystemExit(1)


@click.group()
@click.version_option(__version__, prog_name="binarydeploy")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """binarydeploy - webhook-driven deployment agent."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command()
@click.option("-c", "--config", "config_path", default=DEFAULT_CONFIG, help="Settings file (JSON or YAML)")
@click.option("--host", default=None, help="Host to bind to (overrides the settings file)")
@click.option("--port", default=None, type=int, help="Port to bind to (overrides the settings file)")
@click.pass_context
def serve(ctx: click.Context, config_path: str, host: str | None, port: int | None) -> None:
    """Start the webhook server."""
    import uvicorn

    from binarydeploy.api import create_app

    settings = _load_settings_or_exit(config_path)
    updates = {k: v for k, v in {"host": host, "port": port}.items() if v is not None}
    if updates:
        settings = settings.model_copy(update=updates)

    setup_logging(ctx.obj["verbose"], settings.log_file)
    log = logging.getLogger(__name__)
    for warning in default_warnings(settings):
        log.warning(warning)

    console.print(
        f"[bold green]Starting webhook server on {settings.host}:{settings.port}[/bold green]"
    )
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)


@cli.command()
@click.option("-c", "--config", "config_path", default=DEFAULT_CONFIG, help="Settings file (JSON or YAML)")
@click.pass_context
def rollback(ctx: click.Context, config_path: str) -> None:
    """Restore the backed-up binary over the live one."""
    settings = _load_settings_or_exit(config_path)
    setup_logging(ctx.obj["verbose"], settings.log_file)

    engine = SelfUpdateEngine(
        binary_path=settings.binary_path,
        self_update_dir=settings.self_update_dir,
        backup_path=settings.backup_path,
    )
    try:
        engine.rollback()
    except RollbackError as err:
        console.print(f"[red]✗[/red] Rollback failed: {err}")
        raise SystemExit(1)

    console.print(f"[green]✓[/green] Restored {settings.binary_path} from {engine.backup_path}")
    console.print("Restart binarydeploy to use the previous version")


@cli.command("check-config")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--self-update", is_flag=True, help="Validate as a self-update descriptor (run_command optional)")
def check_config(path: str, self_update: bool) -> None:
    """Validate a deploy.config descriptor."""
    try:
        config = load_deploy_config(Path(path), require_run_command=not self_update)
    except ConfigError as err:
        console.print(f"[red]Invalid deploy config: {err}[/red]")
        raise SystemExit(1)

    table = Table(title=f"Deploy config: {path}")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    for key, value in config.model_dump().items():
        table.add_row(key, "" if value is None else str(value))

    console.print(table)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
