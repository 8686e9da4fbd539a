"""Composition root.

:class:`BotHost` wires settings, storage, the engine adapter, the
supervisor, the tenant service, the cleanup sweeper and the HTTP
surface together, and owns their start/stop order::

    start: open storage → restore tenants → launch sweeper
    stop:  cancel sweeper → stop every tenant → close storage

Example::

    host = BotHost(Settings())
    asyncio.run(host.serve())
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from datetime import timedelta

import uvicorn
from fastapi import FastAPI

from bothost._api import create_api
from bothost._clock import ClockPort, SystemClock
from bothost._engine import BridgeEngine, EnginePort
from bothost._service import TenantService
from bothost._settings import Settings
from bothost._storage import Storage, open_storage
from bothost._supervisor import ConnectionRegistry, ConnectionSupervisor
from bothost._sweeper import CleanupSweeper

logger = logging.getLogger(__name__)


def _default_engine(settings: Settings) -> EnginePort:
    token = settings.engine.bridge_token
    return BridgeEngine(
        settings.engine.bridge_url,
        token.get_secret_value() if token is not None else None,
    )


class BotHost:
    """A running lifecycle manager: storage, supervisor, sweeper and API.

    Args:
        settings: Configuration; read from the environment when omitted.
        engine: Engine adapter.  Defaults to a :class:`BridgeEngine`
            pointed at ``settings.engine.bridge_url``.
        storage: Pre-opened storage.  When omitted, storage is opened
            from ``settings.storage.url`` on :meth:`start` and closed on
            :meth:`stop`.
        clock: Wall clock.  Defaults to :class:`SystemClock`.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        engine: EnginePort | None = None,
        storage: Storage | None = None,
        clock: ClockPort | None = None,
    ) -> None:
        self.settings = settings if settings is not None else Settings()
        self.engine = engine if engine is not None else _default_engine(self.settings)
        self.clock = clock if clock is not None else SystemClock()
        self.connections = ConnectionRegistry()
        self._storage = storage
        self._owns_storage = storage is None
        self._supervisor: ConnectionSupervisor | None = None
        self._service: TenantService | None = None
        self._sweeper: CleanupSweeper | None = None
        self._sweeper_task: asyncio.Task[None] | None = None

    # -- components (available after start) ---------------------------------

    @property
    def storage(self) -> Storage:
        return self._require(self._storage, "storage")

    @property
    def supervisor(self) -> ConnectionSupervisor:
        return self._require(self._supervisor, "supervisor")

    @property
    def service(self) -> TenantService:
        return self._require(self._service, "service")

    @property
    def sweeper(self) -> CleanupSweeper:
        return self._require(self._sweeper, "sweeper")

    @property
    def running(self) -> bool:
        return self._service is not None

    @staticmethod
    def _require[T](component: T | None, name: str) -> T:
        if component is None:
            msg = f"BotHost is not started ({name} unavailable)"
            raise RuntimeError(msg)
        return component

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Open storage, restore tenants and launch the sweeper."""
        if self.running:
            return
        settings = self.settings
        if self._storage is None:
            self._storage = await open_storage(settings.storage.url)

        supervisor = ConnectionSupervisor(
            engine=self.engine,
            credentials=self._storage.credentials,
            registry=self._storage.registry,
            clock=self.clock,
            policy=settings.reconnect.to_policy(),
            connections=self.connections,
            store_retry_interval=settings.store_retry_interval,
            store_retry_attempts=settings.store_retry_attempts,
        )
        self._supervisor = supervisor
        self._sweeper = CleanupSweeper(
            supervisor=supervisor,
            registry=self._storage.registry,
            credentials=self._storage.credentials,
            clock=self.clock,
            retention=timedelta(seconds=settings.sweeper.retention_s),
            interval=settings.sweeper.interval_s,
        )
        self._service = TenantService(
            supervisor=supervisor,
            registry=self._storage.registry,
            credentials=self._storage.credentials,
            clock=self.clock,
            max_tenants=settings.max_tenants,
        )

        if settings.restore_on_startup:
            await self._service.restore()
        self._sweeper_task = asyncio.create_task(self._sweeper.run(), name="bothost:sweeper")
        logger.info("bothost started (storage %s)", settings.storage.url)

    async def stop(self) -> None:
        """Cancel the sweeper, stop every tenant and close owned storage."""
        if self._sweeper_task is not None:
            self._sweeper_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper_task
            self._sweeper_task = None

        if self._supervisor is not None:
            await self._supervisor.shutdown()

        if self._storage is not None and self._owns_storage:
            await self._storage.aclose()
            self._storage = None

        self._supervisor = None
        self._service = None
        self._sweeper = None
        logger.info("bothost stopped")

    @contextlib.asynccontextmanager
    async def lifespan(self) -> AsyncIterator[BotHost]:
        """Run the host between :meth:`start` and :meth:`stop`."""
        await self.start()
        try:
            yield self
        finally:
            await self.stop()

    @contextlib.asynccontextmanager
    async def _serve_app(self, app: FastAPI) -> AsyncIterator[None]:
        async with self.lifespan():
            app.state.service = self._service
            try:
                yield
            finally:
                app.state.service = None

    # -- HTTP ---------------------------------------------------------------

    def asgi(self) -> FastAPI:
        """FastAPI application that starts and stops this host with the server."""
        return create_api(self.settings, lifespan=self._serve_app)

    async def serve(self) -> None:
        """Serve the HTTP API with uvicorn until interrupted."""
        config = uvicorn.Config(
            self.asgi(),
            host=self.settings.server.host,
            port=self.settings.server.port,
            log_config=None,
            lifespan="on",
        )
        server = uvicorn.Server(config)
        await server.serve()
