"""
FastAPI application initialization
"""

from typing import Optional
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from api.routes import ingest, system
from api.middleware import RequestContextMiddleware
from core.config import settings
from core.exceptions import ValidationError
from core.logging import setup_logging
from ingestion.scheduler import IngestionScheduler
import logging

logger = logging.getLogger(__name__)


def create_app(
    ingestion: Optional[IngestionScheduler] = None,
    start_ingestion: bool = True
) -> FastAPI:
    """
    Build the application.

    ingestion defaults to a service wired from settings on startup; tests
    pass their own and start_ingestion=False.
    """
    app = FastAPI(
        title="Horizon Indexer Ingestion API",
        description="Control surface for Stellar ledger ingestion",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(RequestContextMiddleware)
    app.state.ingestion = ingestion

    app.include_router(ingest.router)
    app.include_router(system.router)

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        logger.info(f"Rejected request {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": exc.message}
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": "Invalid request body", "details": jsonable_errors(exc)}
        )

    @app.on_event("startup")
    async def startup_event():
        """Application startup event"""
        setup_logging()
        logger.info("Starting Horizon Indexer ingestion API")
        logger.info(f"Environment: {settings.ENVIRONMENT}, network: {settings.STELLAR_NETWORK}")
        logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

        if app.state.ingestion is None:
            app.state.ingestion = IngestionScheduler.from_settings(settings)
        if start_ingestion:
            await app.state.ingestion.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        """Application shutdown event"""
        logger.info("Shutting down Horizon Indexer ingestion API")
        if start_ingestion and app.state.ingestion is not None:
            await app.state.ingestion.stop()

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": "Horizon Indexer ingestion API",
            "version": "1.0.0",
            "docs": "/docs",
            "endpoints": {
                "ingest": ["/ingest/events", "/ingest/contracts/operations", "/ingest/comprehensive", "/ingest/full", "/ingest/backfill"],
                "system": ["/system/queue/status", "/system/health"]
            }
        }

    return app


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )
