"""
FastAPI Application - Main entry point.
Exposes page loading and mutations as a thin HTTP tool layer over the session pool.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI

from .. import __version__
from ..core.config import settings
from ..services.pool import SessionPool

from .routes import pages


def create_app(pool: SessionPool | None = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        pool: Session pool to serve (defaults to one built from config)

    Returns:
        Configured FastAPI app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Hold one session pool for the app's lifetime."""
        app.state.pool = pool or SessionPool(max_size=settings.pool_size)
        print(f"Page metadata API ready ({settings.base_url}, pool size {app.state.pool.max_size})")

        yield

        print("Shutting down...")
        await app.state.pool.close()

    app = FastAPI(
        title="Business Central Page Metadata",
        description=(
            "Opens pages over the web client protocol and returns their fields, "
            "actions, and permissions"
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.include_router(pages.router, prefix="/api/pages", tags=["Pages"])

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        pool_ = getattr(app.state, "pool", None)
        return {
            "status": "healthy",
            "sessions": len(pool_.slots) if pool_ else 0,
            "open_pages": pool_.pages if pool_ else [],
        }

    return app


# Create app instance
app = create_app()


def run() -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    run()
