"""FastAPI application factory for AFT-Engine."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from aft_engine.common.config import get_settings
from aft_engine.common.exceptions import AFTError
from aft_engine.common.logging import setup_logging
from aft_engine.common.schemas import ErrorResponse, HealthResponse


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        from aft_engine.deps import get_db
        db = get_db()
        await db.init()
        await db.create_all()
        yield
        # Shutdown
        await db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AFTError)
    async def aft_error_handler(request: Request, exc: AFTError):
        body = ErrorResponse(error=type(exc).__name__, code=exc.code, detail=exc.message)
        return JSONResponse(status_code=exc.http_status, content=body.model_dump())

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(version=settings.api_version)

    # Mount routers
    from aft_engine.users.router import router as users_router
    from aft_engine.aft_requests.router import router as requests_router
    from aft_engine.workflow.router import router as workflow_router
    from aft_engine.signatures.router import router as signatures_router
    from aft_engine.audit.router import router as audit_router

    prefix = settings.api_prefix
    app.include_router(users_router, prefix=prefix)
    app.include_router(requests_router, prefix=prefix)
    app.include_router(workflow_router, prefix=prefix)
    app.include_router(signatures_router, prefix=prefix)
    app.include_router(audit_router, prefix=prefix, tags=["audit"])

    return app
