"""
FlipFlop API - Team knowledge capture

Single FastAPI application with route groups:
- /api/integrations: Provider OAuth, sync, Slack webhook
- /api/memories: Team memory search and management
- /api/queries: Questions answered from team memory
- /api/extension: Browser extension backend
- /ws/teams/{team_id}: Real-time new-memory events
"""

import os
import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Configure logging - ensure INFO level logs are visible
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from routes import extension, integrations, memories, queries, realtime, webhooks
from services.errors import FlipFlopError

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def _cors_origins() -> list[str]:
    origins = ["http://localhost:3000"]
    frontend_url = os.environ.get("FRONTEND_URL")
    if frontend_url:
        origins.append(frontend_url.rstrip("/"))
    return origins


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error as {"error": message, "code": code}."""

    @app.exception_handler(FlipFlopError)
    async def flipflop_error_handler(request: Request, exc: FlipFlopError):
        if exc.status_code >= 500:
            logger.error(f"[API] {exc.code} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "error": "Invalid request",
                "code": "validation_error",
                "details": jsonable_errors(exc),
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "code": f"http_{exc.status_code}"},
            headers=getattr(exc, "headers", None),
        )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


def create_app(services: Optional[object] = None) -> FastAPI:
    """
    Build the API. With no services given they are built from the
    environment at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            from services.container import build_services
            app.state.services = build_services()
        yield

    app = FastAPI(
        title="FlipFlop API",
        description="Team knowledge capture and recall",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_origin_regex=r"chrome-extension://.*",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": VERSION}

    # Mount routers
    # Webhook first: /integrations/slack/webhook must not fall into /{provider} routes
    app.include_router(webhooks.router, prefix="/api", tags=["webhooks"])
    app.include_router(integrations.router, prefix="/api", tags=["integrations"])
    app.include_router(memories.router, prefix="/api/memories", tags=["memories"])
    app.include_router(queries.router, prefix="/api/queries", tags=["queries"])
    app.include_router(extension.router, prefix="/api/extension", tags=["extension"])
    app.include_router(realtime.router, tags=["realtime"])

    return app


app = create_app()
