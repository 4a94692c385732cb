"""
Bookworm API - FastAPI backend for the library mirror and recommendations
Supports Server-Sent Events (SSE) for streaming crawls
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import find_dotenv, load_dotenv

from .routes import (
    calibre,
    hardcover,
    logs,
    recommendations,
    settings,
    suggested,
)
from bookworm.config import get_settings
from bookworm.infrastructure.queue.scheduler import PeriodicScheduler, default_jobs
from bookworm.utils.logging_config import LogFiles, Logger

# Load local .env automatically so the Hardcover key and Calibre path are available.
load_dotenv(find_dotenv(usecwd=True), override=False)

app = FastAPI(
    title="Bookworm API",
    description="API for the Calibre mirror, Hardcover list crawls and ranked suggestions",
    version="0.1.0",
)

# CORS for CLI and web clients
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "version": "0.1.0"}


# Include routers
app.include_router(recommendations.router, prefix="/api", tags=["Recommendations"])
app.include_router(suggested.router, prefix="/api", tags=["Suggested"])
app.include_router(calibre.router, prefix="/api", tags=["Calibre"])
app.include_router(hardcover.router, prefix="/api", tags=["Hardcover"])
app.include_router(settings.router, prefix="/api", tags=["Settings"])
app.include_router(logs.router, prefix="/api", tags=["Logs"])


@app.on_event("startup")
async def _startup_scheduler():
    app.state.scheduler = None
    if not get_settings().scheduler_enabled:
        Logger.info("Scheduler disabled (BOOKWORM_SCHEDULER_ENABLED=false)", file=LogFiles.SCHEDULER)
        return
    scheduler = PeriodicScheduler(default_jobs())
    scheduler.start()
    app.state.scheduler = scheduler


@app.on_event("shutdown")
async def _shutdown_scheduler():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        await scheduler.stop()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
