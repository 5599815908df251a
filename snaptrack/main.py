import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from snaptrack.api import render, stream, upload
from snaptrack.config import Settings, get_settings
from snaptrack.exceptions import SnapTrackError
from snaptrack.render.supervisor import RenderSupervisor
from snaptrack.services.chunk_assembler import ChunkAssembler
from snaptrack.services.job_registry import JobRegistry
from snaptrack.services.storage_service import LocalStorageService

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    supervisor_factory=None,
) -> FastAPI:
    """Build the application.

    ``supervisor_factory(registry, store, settings)`` replaces the default
    RenderSupervisor, which lets tests swap in a fake engine.
    """
    settings = settings or get_settings()
    factory = supervisor_factory or RenderSupervisor

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        store = LocalStorageService(settings)
        store.ensure_dirs()
        registry = JobRegistry()
        app.state.store = store
        app.state.registry = registry
        app.state.assembler = ChunkAssembler(store)
        app.state.supervisor = factory(registry, store, settings)
        logger.info(f"{settings.app_name} v{settings.app_version} online (storage: {settings.ram_path})")
        yield
        # Shutdown
        await app.state.supervisor.shutdown()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Cross-origin isolation for the browser client (SharedArrayBuffer)
    @app.middleware("http")
    async def isolation_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["Cross-Origin-Embedder-Policy"] = "require-corp"
        response.headers["Cross-Origin-Opener-Policy"] = "same-origin"
        return response

    @app.exception_handler(SnapTrackError)
    async def snaptrack_exception_handler(request: Request, exc: SnapTrackError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"[{exc.code}] {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers or None)

    # Global exception handler to ensure errors return proper JSON
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    # Routers
    app.include_router(upload.router, tags=["upload"])
    app.include_router(render.router, tags=["render"])
    app.include_router(stream.router, tags=["stream"])

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "version": settings.app_version}

    if settings.web_root and Path(settings.web_root).is_dir():
        app.mount("/", StaticFiles(directory=settings.web_root, html=True), name="web")

    return app


def run() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
