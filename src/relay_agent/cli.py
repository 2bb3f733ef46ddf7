"""relay-agent CLI - Command line interface."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import TYPE_CHECKING, Any

import click
import structlog
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel

if TYPE_CHECKING:
    from relay_agent.core.config import AgentConfig

console = Console()

_shutdown_requested = False

RECOMMENDED = {
    "server": "https://relay.example.com",
    "app": "app_F63GRnbJR6xINLyK",
    "token": "testmyrelaytoken",
    "port": "8082",
}

REQUIRED_OPTIONS = (
    ("server", "server address", "--server", "-s", "specify the relay server address"),
    ("app", "application ID", "--app", "-a", "specify the application ID"),
    ("token", "authorization token", "--token", "-t", "specify the authorization token"),
    ("port", "target service port", "--port", "-p", "specify the target service port"),
)


def print_usage() -> None:
    """Print usage guidance with recommended values."""
    console.print("Usage: relay-agent OPTIONS", style="yellow", markup=False)
    console.print("\nRequired Options:", style="bold")
    console.print("  -s, --server  relay server address", style="dim", markup=False)
    console.print("  -a, --app     application ID", style="dim", markup=False)
    console.print("  -t, --token   relay authorization token", style="dim", markup=False)
    console.print("  -p, --port    local target service port", style="dim", markup=False)
    console.print("\nRecommended values:", style="bold")
    console.print(f"  -s, --server: {RECOMMENDED['server']}", markup=False)
    console.print(f"  -a, --app: {RECOMMENDED['app']}", markup=False)
    console.print(f"  -t, --token: {RECOMMENDED['token']}", markup=False)
    console.print(f"  -p, --port: {RECOMMENDED['port']}", markup=False)
    console.print("\nExample:", style="bold")
    console.print(
        f"  relay-agent -s {RECOMMENDED['server']} -a {RECOMMENDED['app']} "
        f"-t {RECOMMENDED['token']} -p {RECOMMENDED['port']}",
        markup=False,
    )


def _fail_configuration(message: str, hint: str | None = None) -> None:
    console.print(f"Error: {message}", style="red", markup=False)
    if hint:
        console.print(hint, markup=False)
    console.print()
    print_usage()
    sys.exit(1)


def _merge_file_config(values: dict[str, Any], file_config: dict[str, Any]) -> dict[str, Any]:
    """Fill options not given on the command line from a config file."""
    aliases = {
        "server": ("server", "relay_server"),
        "app": ("app", "app_id", "relay_app_id"),
        "token": ("token", "relay_token"),
        "port": ("port", "target_port"),
    }
    merged = dict(values)
    for name, keys in aliases.items():
        if merged.get(name) not in (None, ""):
            continue
        for key in keys:
            if file_config.get(key) not in (None, ""):
                merged[name] = str(file_config[key])
                break
    return merged


def build_agent_config(values: dict[str, Any]) -> AgentConfig:
    """Validate option values into an ``AgentConfig``.

    Raises:
        ConfigurationError: If an option is missing or invalid.
    """
    from relay_agent.core.config import AgentConfig
    from relay_agent.core.exceptions import ConfigurationError
    from relay_agent.core.urls import parse_server

    for name, label, long_flag, short_flag, purpose in REQUIRED_OPTIONS:
        if not values.get(name):
            raise ConfigurationError(
                f"{label} is required",
                hint=f"Use {short_flag} or {long_flag} to {purpose}",
            )

    try:
        agent_config = AgentConfig(
            server=values["server"],
            app_id=values["app"],
            token=values["token"],
            port=values["port"],
        )
        parse_server(agent_config.server)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise ConfigurationError(f"invalid {field}: {first['msg']}") from e
    except ValueError as e:
        raise ConfigurationError(f"invalid server: {e}") from e
    return agent_config


def configure_logging(log_level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
    )


@click.group(invoke_without_command=True)
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option("--server", "-s", envvar="RELAY_AGENT_SERVER", help="Relay server address")
@click.option("--app", "-a", envvar="RELAY_AGENT_APP", help="Application ID")
@click.option("--token", "-t", envvar="RELAY_AGENT_TOKEN", help="Relay authorization token")
@click.option("--port", "-p", envvar="RELAY_AGENT_PORT", help="Local target service port")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="info",
    help="Log level (default: info, use --verbose for debug)",
)
@click.pass_context
def main(
    ctx: click.Context,
    config_file: str | None,
    server: str | None,
    app: str | None,
    token: str | None,
    port: str | None,
    verbose: bool,
    log_level: str,
):
    """relay-agent - expose a local HTTP service through a relay.

    Examples:

        relay-agent -s https://relay.example.com -a app_F63GRnbJR6xINLyK -t TOKEN -p 8082

        relay-agent --config agent.yaml

    The agent keeps reconnecting until interrupted with Ctrl+C.
    """
    if ctx.invoked_subcommand is not None:
        return

    values: dict[str, Any] = {"server": server, "app": app, "token": token, "port": port}
    if config_file:
        from relay_agent.core.config import flatten_config, load_config_from_file

        try:
            file_config = flatten_config(load_config_from_file(config_file))
        except (OSError, ValueError) as e:
            console.print(f"[red]Failed to load config: {e}[/red]")
            sys.exit(1)
        values = _merge_file_config(values, file_config)
        console.print(f"Loaded config from {config_file}", style="dim")

    from relay_agent.core.exceptions import ConfigurationError

    try:
        agent_config = build_agent_config(values)
    except ConfigurationError as e:
        _fail_configuration(e.message, e.hint)
    relay_url = agent_config.relay_url

    effective_log_level = "debug" if verbose else log_level
    configure_logging(effective_log_level)

    console.print(
        Panel(
            f"[bold]Relay:[/bold] {relay_url}\n"
            f"[bold]Access URL:[/bold] [cyan]{agent_config.access_url}[/cyan]\n"
            f"[bold]Forwarding:[/bold] {agent_config.target_url}",
            title="relay-agent",
            border_style="cyan",
        )
    )
    console.print("\nPress Ctrl+C to stop.\n", style="dim")

    _run_agent_with_signal_handling(agent_config)


def _run_agent_with_signal_handling(agent_config: AgentConfig) -> None:
    """Run the agent with proper signal handling for clean Ctrl+C shutdown."""
    global _shutdown_requested
    _shutdown_requested = False

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    main_task = loop.create_task(start_agent(agent_config))

    def signal_handler(sig: int, frame: object) -> None:
        """Handle Ctrl+C signal."""
        global _shutdown_requested
        if _shutdown_requested:
            console.print("\n[red]Force shutdown![/red]")
            sys.exit(1)
        _shutdown_requested = True
        console.print("\n[yellow]Shutting down...[/yellow]")
        main_task.cancel()

    signal.signal(signal.SIGINT, signal_handler)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, signal_handler)

    try:
        loop.run_until_complete(main_task)
    except asyncio.CancelledError:
        pass
    except KeyboardInterrupt:
        pass
    finally:
        pending = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        if pending:
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.close()


async def start_agent(agent_config: AgentConfig) -> None:
    """Run the connection manager until cancelled.

    Args:
        agent_config: Validated ``AgentConfig``
    """
    from relay_agent.client.manager import ConnectionManager, ConnectionState
    from relay_agent.core.config import get_config

    config = get_config()
    manager = ConnectionManager(
        agent_config,
        timeouts=config.timeouts,
        performance=config.performance,
    )

    def on_state(state: ConnectionState) -> None:
        if state == ConnectionState.CONNECTED:
            console.print(
                f"[green]Connected.[/green] Use [cyan]{agent_config.access_url}[/cyan] "
                "to access the target service"
            )

    manager.add_state_hook(on_state)
    try:
        await manager.run()
    finally:
        console.print("[green]Agent stopped.[/green]", style="dim")
        console.print(f"Stats: {manager.stats}", style="dim", markup=False)


@main.command()
def version():
    """Show version information."""
    from relay_agent import __version__

    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version}")


@main.command("config")
def show_config():
    """Show the effective timeout and size settings."""
    from relay_agent.core.config import get_config

    for section, values in get_config().to_display_dict().items():
        console.print(f"[bold]{section}[/bold]")
        for key, value in values.items():
            console.print(f"  {key}: {value}", markup=False)


if __name__ == "__main__":
    main()
