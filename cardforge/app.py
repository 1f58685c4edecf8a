"""FastAPI application factory and CORS."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cardforge.agent.service import AgentService
from cardforge.config import get_settings
from cardforge.routers.sessions import router as sessions_router
from cardforge.utils.logging_config import get_logger, setup_logging

logger = get_logger("cardforge.app")


async def build_service() -> AgentService:
    """Shared registry + configured store, created once per process."""
    from cardforge.tools import build_default_registry

    settings = get_settings()
    if settings.session_store == "memory":
        from cardforge.store.memory import InMemorySessionStore
        store = InMemorySessionStore()
    else:
        # Ensure tables exist
        from cardforge.database import AsyncSessionLocal, engine, init_models
        from cardforge.store.sql import SqlSessionStore
        await init_models(engine)
        store = SqlSessionStore(AsyncSessionLocal)

    logger.info("service_ready | store=%s | llm=%s", settings.session_store, settings.llm_type)
    return AgentService(build_default_registry(), store, settings=settings)


def create_app(service: Optional[AgentService] = None) -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        app.state.service = service or await build_service()
        yield

    app = FastAPI(title="CardForge Engine", version="1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(sessions_router)
    return app


app = create_app()
