# Run from project root: uvicorn tripmate.main:app --reload

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tripmate.agent.orchestrator import build_default_deps, shutdown
from tripmate.api.routes import router
from tripmate.core.config import LOG_LEVEL
from tripmate.mcp.server import mcp_router

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests may install their own deps before startup
    if getattr(app.state, "deps", None) is None:
        app.state.deps = build_default_deps()
    logger.info("Tripmate booting...")
    yield
    await shutdown(app.state.deps)
    logger.info("Tripmate stopped")


def create_app() -> FastAPI:
    app = FastAPI(title="Tripmate Travel Assistant", lifespan=lifespan)
    app.state.deps = None
    app.include_router(router)
    app.include_router(mcp_router, prefix="/mcp")
    return app


app = create_app()
