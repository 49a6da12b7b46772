from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from app.api.v1.router import api_router
from app.core.config import settings
from app.core.context import CoreContext, build_core_context
from app.core.errors import DomainError
from app.core.logging import configure_logging
from app.middleware.rate_limit import RedisRateLimitMiddleware


configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    owned = getattr(app.state, "core", None) is None
    if owned:
        app.state.core = build_core_context(settings)
    try:
        yield
    finally:
        if owned:
            await app.state.core.aclose()
            app.state.core = None


async def domain_error_handler(request: Request, exc: DomainError) -> ORJSONResponse:
    return ORJSONResponse(status_code=exc.status_code, content={"detail": exc.to_payload()})


def create_app(context: CoreContext | None = None) -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        default_response_class=ORJSONResponse,
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.core = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RedisRateLimitMiddleware)
    app.add_exception_handler(DomainError, domain_error_handler)

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
Instrumentator().instrument(app).expose(app)
