"""CLI entrypoint for townhall."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

import click

from townhall import __version__
from townhall.config.loader import default_config_path, load_townhall_yaml
from townhall.config.schema import ReloadOptions, ResetOptions
from townhall.coordinator.reload import ReloadController
from townhall.coordinator.reset import ResetController
from townhall.errors import TownhallError
from townhall.log import setup_logging
from townhall.routing.routes import Route, RouteTable
from townhall.services.control_daemon import ControlDaemonUnit, HeartbeatLoop
from townhall.services.tmux import Tmux
from townhall.workspace.locator import discover
from townhall.workspace.town import Town, find_town_root, short_path


@dataclass(slots=True)
class CliContext:
    town_option: Path | None
    config_option: Path | None

    def town(self) -> Town:
        try:
            root = self.town_option or find_town_root()
            config_path = self.config_option or default_config_path(Path(root))
            return Town(root=Path(root), config=load_townhall_yaml(config_path))
        except TownhallError as exc:
            raise click.ClickException(str(exc)) from exc


@click.group()
@click.version_option(__version__, prog_name="townhall")
@click.option(
    "--town",
    "town_option",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    envvar="TOWNHALL_ROOT",
    default=None,
    help="Town root (default: search upward from the current directory)",
)
@click.option(
    "--config",
    "config_option",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: <town>/mayor/townhall.yaml)",
)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--log-json", is_flag=True, help="Emit logs as JSON")
@click.pass_context
def main(
    ctx: click.Context,
    town_option: Path | None,
    config_option: Path | None,
    debug: bool,
    log_json: bool,
) -> None:
    """Control plane for a multi-agent town."""
    setup_logging(debug=debug, json_output=log_json)
    ctx.obj = CliContext(town_option=town_option, config_option=config_option)


@main.command("reload")
@click.option("-q", "--quiet", is_flag=True, help="Only show errors")
@click.option("--mayor", "include_mayor", is_flag=True, help="Also reload the mayor session")
@click.option("-p", "--polecats", "include_polecats", is_flag=True, help="Also reload polecats with pinned work")
@click.option("-f", "--force", "force_kill", is_flag=True, help="Force kill without graceful shutdown")
@click.pass_obj
def reload_command(
    obj: CliContext,
    quiet: bool,
    include_mayor: bool,
    include_polecats: bool,
    force_kill: bool,
) -> None:
    """Stop and restart every town service (after installing new binaries)."""
    town = obj.town()
    options = ReloadOptions(
        include_mayor=include_mayor,
        include_polecats=include_polecats,
        force_kill=force_kill,
        quiet=quiet,
    )
    controller = ReloadController(town, options, mux=Tmux(town.config.sessions.binary))
    try:
        asyncio.run(controller.run())
    except TownhallError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command("reset")
@click.option("-f", "--force", is_flag=True, help="Skip confirmation prompt")
@click.option("-a", "--all", "stop_mayor", is_flag=True, help="Also stop the mayor (preserved by default)")
@click.pass_obj
def reset_command(obj: CliContext, force: bool, stop_mayor: bool) -> None:
    """Reset the town to a freshly installed state.

    Stops agents, deletes all work items, logs and runtime state, then
    recreates the store and restores its configuration and routes.
    """
    town = obj.town()
    controller = ResetController(
        town,
        ResetOptions(force=force, stop_mayor=stop_mayor),
        mux=Tmux(town.config.sessions.binary),
    )
    try:
        controller.run()
    except TownhallError as exc:
        raise click.ClickException(str(exc)) from exc


@main.group("routes")
def routes_group() -> None:
    """Inspect and extend the prefix route table."""


@routes_group.command("list")
@click.pass_obj
def routes_list_command(obj: CliContext) -> None:
    table = RouteTable.for_town(obj.town())
    routes = table.routes()
    if not routes:
        click.echo(f"No routes in {table.routes_path}")
        return
    for route in routes:
        click.echo(f"{route.prefix:<12} {route.path}")


@routes_group.command("resolve")
@click.argument("identifier")
@click.pass_obj
def routes_resolve_command(obj: CliContext, identifier: str) -> None:
    """Print the workspace directory that owns IDENTIFIER."""
    table = RouteTable.for_town(obj.town())
    try:
        click.echo(str(table.resolve(identifier)))
    except TownhallError as exc:
        raise click.ClickException(str(exc)) from exc


@routes_group.command("add")
@click.argument("prefix")
@click.argument("path")
@click.pass_obj
def routes_add_command(obj: CliContext, prefix: str, path: str) -> None:
    """Append a route from PREFIX (including its separator) to PATH."""
    if not prefix.endswith("-"):
        raise click.BadParameter("prefix must end with '-'", param_hint="PREFIX")
    table = RouteTable.for_town(obj.town())
    try:
        table.append(Route(prefix=prefix, path=path))
    except TownhallError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Added route {prefix} -> {path}")


@main.command("workspaces")
@click.pass_obj
def workspaces_command(obj: CliContext) -> None:
    """List every discovered store workspace."""
    for workspace in discover(obj.town()):
        click.echo(short_path(workspace))


@main.group("daemon")
def daemon_group() -> None:
    """Local control daemon."""


@daemon_group.command("run")
@click.pass_obj
def daemon_run_command(obj: CliContext) -> None:
    """Run the daemon in the foreground."""
    town = obj.town()
    HeartbeatLoop(town.root, town.config.daemon).run()


@daemon_group.command("status")
@click.pass_obj
def daemon_status_command(obj: CliContext) -> None:
    town = obj.town()
    pid = ControlDaemonUnit(town.root, town.config.daemon).pid()
    if pid is None:
        click.echo("Daemon: stopped")
    else:
        click.echo(f"Daemon: running (PID {pid})")
