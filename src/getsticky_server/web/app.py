"""
FastAPI application for the GetSticky board server.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import Settings
from ..config import settings as default_settings
from ..services.llm_backend import LLMBackend, create_backend
from ..services.query_service import QueryOrchestrator
from ..storage.graph_store import GraphStore
from ..storage.settings_store import SettingsStore
from ..sync.dispatcher import MessageDispatcher
from ..sync.registry import ConnectionRegistry
from .api.bridge import router as bridge_router
from .dependencies import AppServices
from .websocket import router as websocket_router

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, backend: LLMBackend | None = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: configuration, defaults to the process-wide settings
        backend: LLM backend override; when omitted one is built from the
            stored API key or the environment
    """
    config = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        store = GraphStore(config.database.path, busy_timeout=config.database.busy_timeout)
        settings_store = SettingsStore(
            config.database.path,
            busy_timeout=config.database.busy_timeout,
            default_agent_name=config.llm.default_agent_name,
        )
        try:
            await store.initialize()
            await settings_store.initialize()
        except Exception:
            logger.exception(f"Failed to open board database at {config.database.path}")
            raise

        llm_backend = backend
        if llm_backend is None:
            env_key = config.llm.api_key.get_secret_value() if config.llm.api_key else None
            llm_backend = create_backend(await settings_store.get_api_key() or env_key, config.llm)

        registry = ConnectionRegistry()
        orchestrator = QueryOrchestrator(store, registry, settings_store, backend=llm_backend)
        dispatcher = MessageDispatcher(store, registry, orchestrator, settings_store, config.llm)

        app.state.services = AppServices(
            settings=config,
            store=store,
            settings_store=settings_store,
            registry=registry,
            orchestrator=orchestrator,
            dispatcher=dispatcher,
        )
        logger.info(f"GetSticky server ready (database: {config.database.path})")

        try:
            yield
        finally:
            logger.info("Shutting down GetSticky server...")
            await dispatcher.shutdown()
            await registry.close_all()
            await settings_store.close()
            await store.close()
            app.state.services = None

    app = FastAPI(title="GetSticky Board Server", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(bridge_router, prefix="/api")
    app.include_router(websocket_router)
    return app
