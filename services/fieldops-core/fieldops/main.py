from contextlib import asynccontextmanager

from fastapi import FastAPI

from fieldops.api import router
from fieldops.config import settings
from fieldops.db import engine, init_db
from fieldops.logging_config import configure_logging
from fieldops.observability import RequestContextMiddleware, metrics_endpoint
from fieldops.orchestrator import Orchestrator


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    orchestrator = Orchestrator.from_settings(settings, engine)
    await orchestrator.startup()
    app.state.orchestrator = orchestrator
    yield
    await orchestrator.shutdown()


def create_app() -> FastAPI:
    configure_logging(settings.log_level, service=settings.app_name)
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(RequestContextMiddleware)
    app.include_router(router, prefix=settings.api_prefix)
    app.add_api_route("/metrics", metrics_endpoint, include_in_schema=False)
    return app


app = create_app()
