"""CLI entrypoint for the directory-driven mock server."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from .constants import DEFAULT_MOCK_DIR, DEFAULT_SERVER_SETTINGS_PATH, DEFAULT_USER_SETTINGS_PATH
from .dispatcher import MockDispatcher
from .evaluator import RuleEvaluator, ScriptRegistry
from .logging_utils import LOG_FORMAT_ENV_VAR, LogFormat, configure_logging, resolve_log_format
from .registry import MockRegistry
from .resolver import ParserFileResolver
from .server import MockServerRunner, describe_routes
from .settings import UserSettingsStore, load_server_settings

app = typer.Typer(help="Serve API mocks discovered from a directory tree.")


def build_dispatcher(
    mock_dir: Path,
    user_settings_path: Path,
    scripts: ScriptRegistry | None = None,
) -> MockDispatcher:
    """Wire settings, discovery and evaluation into a dispatcher."""

    user_settings = UserSettingsStore(user_settings_path)
    user_settings.load()
    registry = MockRegistry(mock_dir)
    registry.discover()
    return MockDispatcher(
        registry,
        user_settings,
        resolver=ParserFileResolver(),
        evaluator=RuleEvaluator(scripts),
    )


@app.command()
def serve(
    mock_dir: Path = typer.Option(DEFAULT_MOCK_DIR, help="Root directory of the mock definitions."),
    user_settings: Path = typer.Option(DEFAULT_USER_SETTINGS_PATH, help="YAML file storing per-route parser overrides."),
    server_settings: Path = typer.Option(DEFAULT_SERVER_SETTINGS_PATH, help="YAML file with http host/port."),
    host: Optional[str] = typer.Option(None, help="Override the bind host from server settings."),
    port: Optional[int] = typer.Option(None, help="Override the bind port from server settings."),
    log_level: str = typer.Option("INFO", help="Log level (DEBUG, INFO, WARNING, ...)."),
    log_format: str = typer.Option(
        LogFormat.CONSOLE.value,
        envvar=LOG_FORMAT_ENV_VAR,
        help="Log format: console, plain or json.",
    ),
) -> None:
    """Start the mock server and block until interrupted."""

    if port is not None and not 0 < port <= 65535:
        raise typer.BadParameter("Port must be between 1 and 65535", param_hint="--port")
    try:
        resolved_format = resolve_log_format(log_format)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--log-format") from exc

    configure_logging(log_level, resolved_format)
    settings = load_server_settings(server_settings)
    if host is not None:
        settings.http.host = host
    if port is not None:
        settings.http.port = port

    dispatcher = build_dispatcher(mock_dir, user_settings)
    runner = MockServerRunner(dispatcher, settings)
    typer.secho(
        f"[mock-api-server] listening on {settings.http.host}:{settings.http.port}",
        fg=typer.colors.GREEN,
    )
    for line in describe_routes(dispatcher.routes):
        typer.echo(line)
    try:
        runner.serve_forever()
    except KeyboardInterrupt:  # pragma: no cover - interactive stop
        typer.secho("Stopped.", fg=typer.colors.CYAN)


@app.command()
def routes(
    mock_dir: Path = typer.Option(DEFAULT_MOCK_DIR, help="Root directory of the mock definitions."),
    user_settings: Path = typer.Option(DEFAULT_USER_SETTINGS_PATH, help="YAML file storing per-route parser overrides."),
    log_level: str = typer.Option("WARNING", help="Log level (DEBUG, INFO, WARNING, ...)."),
) -> None:
    """List discovered routes with their active parser file."""

    configure_logging(log_level, LogFormat.PLAIN)
    dispatcher = build_dispatcher(mock_dir, user_settings)
    if not dispatcher.routes:
        typer.secho("No mock routes found.", fg=typer.colors.YELLOW)
        return
    for route in dispatcher.routes:
        try:
            current = dispatcher.get_rule_set(route.id).current
        except Exception as exc:
            current = f"<{exc.__class__.__name__}>"
        typer.echo(f"{route.method:<7} {route.url_path}  {current}  id={route.id}")


def run() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run()
