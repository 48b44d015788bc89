"""FastAPI application entrypoint and configuration.

This module provides the main FastAPI application factory that sets up
CORS middleware, includes the mesh and layer routers, and exposes a health
check endpoint for monitoring.

Example:
    The application can be run with uvicorn:
        $ uvicorn meshstore.main:app --reload
"""

import fastapi
from fastapi.middleware import cors

from meshstore.api import layers, mesh
from meshstore.core import config


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    settings = config.get_settings()
    app = fastapi.FastAPI(title="Mesh Store", version="0.1.0")

    app.include_router(mesh.router)
    app.include_router(layers.router)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers."""
        return {"status": "ok"}

    return app


app = create_app()
