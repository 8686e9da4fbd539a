"""Test factory for Settings.

Provides :func:`make_settings` — a convenience factory that creates
:class:`~bothost._settings.Settings` instances without depending on
``.env`` files or real environment variables.
"""

from __future__ import annotations

from typing import Any

from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from bothost._settings import ReconnectSettings, Settings, StorageSettings


class _IsolatedSettings(Settings):
    """Settings subclass that ignores all ambient configuration sources.

    Overrides :meth:`settings_customise_sources` to return only
    ``init_settings``, stripping ``EnvSettingsSource``,
    ``DotEnvSettingsSource``, and ``SecretsSettingsSource``.
    """

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],  # noqa: ARG003
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings,)


def make_settings(**overrides: Any) -> Settings:
    """Create a ``Settings`` instance with fast, hermetic test defaults.

    Defaults differ from production in three places so tests never
    touch disk or wait on real backoff:

    - ``storage.url`` is ``memory:``
    - reconnect delays are a millisecond, without jitter
    - storage retries are immediate

    Parameters:
        **overrides: Keyword arguments forwarded to the ``Settings``
            constructor.

    Example::

        settings = make_settings(max_tenants=2)
        assert settings.storage.url == "memory:"
    """
    overrides.setdefault("storage", StorageSettings(url="memory:"))
    overrides.setdefault(
        "reconnect",
        ReconnectSettings(initial_delay=0.001, max_delay=0.01, jitter=0.0),
    )
    overrides.setdefault("store_retry_interval", 0.0)
    # _env_file is a valid pydantic-settings runtime kwarg that disables
    # dotenv loading, but it isn't reflected in the generated __init__
    # signature, hence the type: ignore.
    return _IsolatedSettings(_env_file=None, **overrides)  # type: ignore[call-arg]
