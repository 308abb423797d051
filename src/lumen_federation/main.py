"""Main entry point for the Lumen federation application."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.gzip import GZipMiddleware

from lumen_federation.api.v1 import activitypub_router, actors_router, delivery_events_router
from lumen_federation.core.logging import configure_logging
from lumen_federation.core.settings import settings
from lumen_federation.services.runtime import FederationRuntime

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="ActivityPub federation engine for the Lumen photo-sharing server",
    version=settings.app_version,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# ActivityPub routes live at the paths remote servers were given in actor documents
app.include_router(activitypub_router)
app.include_router(actors_router)
app.include_router(delivery_events_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    configure_logging()
    runtime: FederationRuntime | None = getattr(app.state, "runtime", None)
    if runtime is None:
        runtime = FederationRuntime()
        app.state.runtime = runtime
    await runtime.start()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    runtime: FederationRuntime | None = getattr(app.state, "runtime", None)
    if runtime:
        await runtime.stop()
    app.state.runtime = None


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("lumen_federation.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
