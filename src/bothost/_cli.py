"""Command-line entry point (Typer-based).

``bothost`` parses process-level options (``--version``,
``--log-level``, ``--log-format``, ``--env-file``, ``--host``,
``--port``), builds :class:`~bothost._settings.Settings`, configures
logging and serves the HTTP API until interrupted.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from typing import Annotated, Any, get_args

import typer
from pydantic import ValidationError

from bothost import __version__
from bothost._app import BotHost
from bothost._logging import configure_logging
from bothost._settings import LoggingSettings, Settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 3


def _logging_choices(field: str) -> tuple[str, ...]:
    return get_args(LoggingSettings.model_fields[field].annotation)


def _pick(value: str | None, choices: tuple[str, ...], option: str) -> str | None:
    """Match *value* case-insensitively against *choices*."""
    if value is None:
        return None
    for choice in choices:
        if choice.lower() == value.lower():
            return choice
    msg = f"'{value}' is not one of: {', '.join(choices)}"
    raise typer.BadParameter(msg, param_hint=f"'{option}'")


def _apply_overrides(
    settings: Settings, logging_update: dict[str, Any], server_update: dict[str, Any]
) -> None:
    logging_update = {k: v for k, v in logging_update.items() if v is not None}
    server_update = {k: v for k, v in server_update.items() if v is not None}
    if logging_update:
        settings.logging = settings.logging.model_copy(update=logging_update)
    if server_update:
        settings.server = settings.server.model_copy(update=server_update)


def _serve(settings: Settings) -> None:
    asyncio.run(BotHost(settings).serve())


def build_cli() -> typer.Typer:
    """Construct the ``bothost`` Typer application."""
    cli = typer.Typer(help=f"bothost v{__version__} — multi-tenant bot session host")

    @cli.callback(invoke_without_command=True)
    def main(
        version_flag: Annotated[
            bool | None,
            typer.Option("--version", is_eager=True, help="Show version and exit."),
        ] = None,
        log_level: Annotated[
            str | None,
            typer.Option("--log-level", help="Override log level."),
        ] = None,
        log_format: Annotated[
            str | None,
            typer.Option("--log-format", help="Override log format."),
        ] = None,
        env_file: Annotated[
            str,
            typer.Option("--env-file", help="Path to .env file."),
        ] = ".env",
        host: Annotated[
            str | None,
            typer.Option("--host", help="Override the listen address."),
        ] = None,
        port: Annotated[
            int | None,
            typer.Option("--port", min=1, max=65535, help="Override the listen port."),
        ] = None,
    ) -> None:
        if version_flag:
            typer.echo(f"bothost v{__version__}")
            raise typer.Exit()

        level = _pick(log_level, _logging_choices("level"), "--log-level")
        fmt = _pick(log_format, _logging_choices("format"), "--log-format")

        try:
            settings = Settings(_env_file=env_file)  # type: ignore[call-arg]
        except ValidationError as exc:
            logger.error("Invalid configuration in %s: %s", env_file, exc)
            raise SystemExit(EXIT_CONFIG_ERROR) from exc

        _apply_overrides(settings, {"level": level, "format": fmt}, {"host": host, "port": port})

        configure_logging(settings.logging, service="bothost", version=__version__)

        try:
            with contextlib.suppress(KeyboardInterrupt):
                _serve(settings)
        except Exception:
            logger.exception("bothost stopped on an unexpected error")
            sys.exit(EXIT_RUNTIME_ERROR)

    return cli


def main() -> None:
    """Console-script entry point."""
    build_cli()()
