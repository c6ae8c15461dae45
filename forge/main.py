"""Forge — FastAPI relay that streams generated React components.

Loads config.yaml on startup. Exposes /api/generate for SSE streaming,
/api/preview for the preview document, and the browser page at /.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from forge.config import get_config, load_config
from forge.errors import ErrorHandler, ForgeError
from forge.preview import render_document
from forge.relay import RelayService
from forge.schemas import GenerateRequest, PreviewRequest
from forge.upstream import UpstreamClient
from forge.validation import PROMPT_REQUIRED

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).parent / "static"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "origin-when-cross-origin",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the per-application services and close the upstream client on shutdown."""
    config = load_config()
    http_client = httpx.AsyncClient(timeout=config.upstream.timeout)
    errors = ErrorHandler()
    app.state.config = config
    app.state.errors = errors
    app.state.http_client = http_client
    app.state.relay = RelayService(config, UpstreamClient(http_client, config), errors)
    logger.info(
        f"Forge started (origins={config.allowed_origins}, "
        f"model={config.generation.model}, "
        f"credential={'present' if config.api_key() else 'missing'})"
    )
    yield
    await http_client.aclose()
    logger.info("Forge shutting down")


# Load config early so we can read allowed_origins for CORS middleware.
_boot_config = get_config()

app = FastAPI(title="Forge", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_boot_config.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


def _error_response(error: ForgeError) -> JSONResponse:
    body = {"error": error.message}
    if error.status_code >= 500:
        body["details"] = "Please check server logs for more information"
    return JSONResponse(body, status_code=error.status_code, headers=SECURITY_HEADERS)


# ---------------------------------------------------------------------------
# Generation endpoint
# ---------------------------------------------------------------------------


@app.post("/api/generate")
@app.post("/generate")
async def generate(request: Request):
    """Stream a generated component as Server-Sent Events.

    Errors found before streaming starts get an HTTP status; later ones
    arrive as a terminal ``error`` event.
    """
    try:
        body = GenerateRequest.model_validate(await request.json())
    except (json.JSONDecodeError, ValueError):
        return JSONResponse({"error": PROMPT_REQUIRED}, status_code=400)

    relay: RelayService = request.app.state.relay
    try:
        stream = await relay.open(body.prompt)
    except ForgeError as e:
        return _error_response(e)

    return StreamingResponse(
        stream.frames(),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, **SECURITY_HEADERS},
        background=BackgroundTask(stream.aclose),
    )


# ---------------------------------------------------------------------------
# Preview and page
# ---------------------------------------------------------------------------


@app.post("/api/preview", response_class=HTMLResponse)
async def preview(request: PreviewRequest):
    """Return the standalone preview document for a piece of component code."""
    return HTMLResponse(render_document(request.code))


@app.get("/")
async def index():
    return FileResponse(STATIC_DIR / "index.html", media_type="text/html")


# ---------------------------------------------------------------------------
# Operational endpoints
# ---------------------------------------------------------------------------


@app.get("/health")
async def health(request: Request):
    """Liveness check."""
    config = request.app.state.config
    return {
        "status": "healthy",
        "model": config.generation.model,
        "configured": config.api_key() is not None,
    }


@app.get("/errors")
async def error_statistics(request: Request):
    """Error counts by code since startup."""
    return request.app.state.errors.statistics()
