"""Main FastAPI application: dashboard API plus the probe scheduler."""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from . import __version__
from .config import settings
from .database import init_db, close_db
from .routers import pings_router
from .services.prober import prober_service
from .services.scheduler import scheduler_service

logger = logging.getLogger(__name__)


def configure_logging(level: str = settings.log_level):
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # APScheduler logs every job execution at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown.

    A missing probe binary or an unusable database aborts startup.
    """
    logger.info(f"Starting LAN monitor for targets: {', '.join(settings.targets)}")

    try:
        prober_service.verify_available()
        await init_db()
    except Exception as e:
        logger.critical(f"Startup failed: {e}")
        raise

    scheduler_service.start()

    yield

    scheduler_service.stop()
    await close_db()
    logger.info("Shutdown complete")


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report malformed query parameters in the API's {ok, err} shape."""
    errors = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse({"ok": False, "err": errors}, status_code=400)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="LAN Monitor",
        description="Ping and traceroute monitor for a fixed set of targets",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(pings_router)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "targets": len(settings.targets),
            "scheduler": scheduler_service.running,
        }

    # Serve the static dashboard, if one is configured
    if settings.static_dir and os.path.isdir(settings.static_dir):
        app.mount("/", StaticFiles(directory=settings.static_dir, html=True), name="dashboard")

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    configure_logging()
    uvicorn.run(app, host=settings.web_host, port=settings.web_port)
