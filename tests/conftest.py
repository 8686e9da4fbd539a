"""Pytest configuration and shared fixtures."""

import pytest

# The bothost testing plugin is registered via a ``pytest11`` entry
# point (pyproject.toml) for external consumers.  Our own suite
# disables it (``-p no:bothost``) and loads it here instead, so that
# the bothost import chain happens while coverage is tracing.
pytest_plugins = ["bothost.testing._plugin"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (whole host, in-process)"
    )
