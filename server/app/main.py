"""FastAPI application entrypoint for the persona realtime relay."""
from pathlib import Path
import sys

# Ensure the project root (parent of this file's directory) is on sys.path
_THIS_DIR = Path(__file__).resolve().parent
_PROJECT_ROOT = _THIS_DIR.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.dependencies import get_persona_registry
from app.routers import personas, realtime, tokens


logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Load the catalog eagerly so a broken PERSONAS_FILE fails at startup.
    registry = get_persona_registry()
    logger.info("Persona relay starting with %d personas", len(registry))
    yield
    logger.info("Persona relay shutting down")


def create_app() -> FastAPI:
    """Instantiate and configure the FastAPI application."""
    application = FastAPI(
        title="Persona Realtime Relay",
        description=(
            "Issues persona-scoped realtime session tokens and relays caller audio "
            "to the upstream realtime API."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(personas.router)
    application.include_router(tokens.router)
    application.include_router(realtime.router)

    @application.get("/")
    async def root() -> dict[str, str]:
        """Lightweight health endpoint for service discovery."""
        return {"service": "persona-realtime-relay", "status": "ok"}

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        # Audio frames arrive as base64 JSON; leave room for large bursts.
        ws_max_size=16 * 1024 * 1024,
    )
