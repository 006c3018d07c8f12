import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from docscan import __version__
from docscan.api.routes import documents, health, jobs, search
from docscan.config import settings
from docscan.ocr import RecognitionEngineRegistry
from docscan.worker.startup import Services, build_services

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def create_app(services: Services | None = None, run_scheduler: bool | None = None) -> FastAPI:
    """
    Create the API application.

    Args:
        services: Prebuilt services. Built from settings at startup if None.
        run_scheduler: Run the job scheduler inside the API process.
            Defaults to ``settings.run_scheduler``.
    """
    run_scheduler = settings.run_scheduler if run_scheduler is None else run_scheduler

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info("Starting docscan API")
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services()
        app_services: Services = app.state.services

        uploads_dir = app_services.documents.uploads_dir
        uploads_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Uploads directory: {uploads_dir}")
        logger.info(f"Registered recognition engines: {RecognitionEngineRegistry.list_registered()}")

        if run_scheduler:
            await app_services.scheduler.start()
        else:
            logger.info("Scheduler disabled in this process; run docscan-worker")

        yield

        logger.info("Shutting down docscan API")
        if run_scheduler:
            await app_services.scheduler.stop()
        await app_services.recognition.unload()

    app = FastAPI(
        title="docscan API",
        description="Document OCR processing with a bounded asynchronous job scheduler",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    app.include_router(health.router)
    app.include_router(documents.router)
    app.include_router(jobs.router)
    app.include_router(search.router)

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "docscan API",
            "version": __version__,
            "docs": "/docs",
        }

    return app


app = create_app()
