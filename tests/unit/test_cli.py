"""Tests for bothost._cli — command-line entry point.

Test Techniques Used:
    - Specification-based Testing: flag parsing and overrides
    - Error Condition Testing: invalid flag values, configuration errors
    - Behavioural Testing: exit codes and output text
    - Mock-based Isolation: the server and logging setup are patched out
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from bothost import __version__
from bothost._cli import EXIT_CONFIG_ERROR, EXIT_OK, EXIT_RUNTIME_ERROR, build_cli
from bothost._settings import Settings


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def serve(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[MagicMock]:
    """Patched server runner and logging setup; runs in an empty directory."""
    monkeypatch.chdir(tmp_path)
    with (
        patch("bothost._cli._serve") as fake_serve,
        patch("bothost._cli.configure_logging") as fake_logging,
    ):
        fake_serve.configure_logging = fake_logging
        yield fake_serve


def _settings(serve: MagicMock) -> Settings:
    serve.assert_called_once()
    return serve.call_args.args[0]


class TestVersionAndHelp:
    """Informational flags.

    Technique: Specification-based Testing.
    """

    def test_version(self, runner: CliRunner, serve: MagicMock) -> None:
        result = runner.invoke(build_cli(), ["--version"])
        assert result.exit_code == EXIT_OK
        assert f"bothost v{__version__}" in result.output
        serve.assert_not_called()

    def test_help_lists_options(self, runner: CliRunner) -> None:
        result = runner.invoke(build_cli(), ["--help"])
        assert result.exit_code == EXIT_OK
        for option in ("--log-level", "--log-format", "--env-file", "--host", "--port"):
            assert option in result.output


class TestOverrides:
    """CLI flags override configuration.

    Technique: Specification-based Testing.
    """

    def test_defaults_run_the_server(self, runner: CliRunner, serve: MagicMock) -> None:
        result = runner.invoke(build_cli(), [])
        assert result.exit_code == EXIT_OK
        settings = _settings(serve)
        assert settings.server.port == 3000
        serve.configure_logging.assert_called_once()

    def test_host_and_port(self, runner: CliRunner, serve: MagicMock) -> None:
        result = runner.invoke(build_cli(), ["--host", "127.0.0.1", "--port", "8080"])
        assert result.exit_code == EXIT_OK
        settings = _settings(serve)
        assert settings.server.host == "127.0.0.1"
        assert settings.server.port == 8080

    def test_log_level_and_format(self, runner: CliRunner, serve: MagicMock) -> None:
        result = runner.invoke(build_cli(), ["--log-level", "debug", "--log-format", "TEXT"])
        assert result.exit_code == EXIT_OK
        settings = _settings(serve)
        assert settings.logging.level == "DEBUG"
        assert settings.logging.format == "text"

    def test_env_file(self, runner: CliRunner, serve: MagicMock, tmp_path: Path) -> None:
        env_file = tmp_path / "prod.env"
        env_file.write_text("BOTHOST_MAX_TENANTS=9\nBOTHOST_STORAGE__URL=memory:\n")
        result = runner.invoke(build_cli(), ["--env-file", str(env_file)])
        assert result.exit_code == EXIT_OK
        settings = _settings(serve)
        assert settings.max_tenants == 9
        assert settings.storage.url == "memory:"


class TestErrors:
    """Exit codes on failure.

    Technique: Error Condition Testing.
    """

    def test_invalid_log_level(self, runner: CliRunner, serve: MagicMock) -> None:
        result = runner.invoke(build_cli(), ["--log-level", "LOUD"])
        assert result.exit_code != EXIT_OK
        serve.assert_not_called()

    def test_invalid_log_format(self, runner: CliRunner, serve: MagicMock) -> None:
        result = runner.invoke(build_cli(), ["--log-format", "xml"])
        assert result.exit_code != EXIT_OK
        serve.assert_not_called()

    def test_config_error_exits_one(
        self, runner: CliRunner, serve: MagicMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("BOTHOST_SERVER__PORT", "not-a-port")
        result = runner.invoke(build_cli(), [])
        assert result.exit_code == EXIT_CONFIG_ERROR
        serve.assert_not_called()

    def test_runtime_error_exits_three(self, runner: CliRunner, serve: MagicMock) -> None:
        serve.side_effect = RuntimeError("bridge unreachable")
        result = runner.invoke(build_cli(), [])
        assert result.exit_code == EXIT_RUNTIME_ERROR

    def test_exit_code_values(self) -> None:
        assert (EXIT_OK, EXIT_CONFIG_ERROR, EXIT_RUNTIME_ERROR) == (0, 1, 3)
