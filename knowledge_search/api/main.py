"""
HTTP surface for the retrieval service.

Each search endpoint validates its input, requires a bearer credential, then
runs the pipeline under a per-request deadline. A client disconnect cancels
the pipeline and every outbound call still in flight.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Dict, Optional

import httpx
from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import (
    ErrorResponse,
    HealthResponse,
    ImageSearchRequest,
    KnowledgeSearchRequest,
    QuoteSearchRequest,
    SearchResponse,
    SourceSearchRequest,
    SourceSearchResponse,
)
from ..core import config
from ..core.augment import require_query
from ..core.context import RequestContext, new_context
from ..core.errors import AuthError, ConfigurationError, RetrievalError
from ..core.search_service import RetrievalService, create_search_service
from util.logging import logger

SEARCH_RESPONSES = {
    200: {"model": SearchResponse},
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    504: {"model": ErrorResponse},
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate configuration and share one pooled HTTP client across requests."""
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(config.REQUEST_TIMEOUT_SEC, connect=config.HTTP_CONNECT_TIMEOUT_SEC)
    )
    try:
        app.state.search_service = create_search_service(http_client)
        logger.log_operation("startup", "success", {
            "version": config.VERSION,
            "embed_provider": config.EMBED_PROVIDER,
            "index_provider": config.INDEX_PROVIDER,
        })
        yield
    except ConfigurationError as e:
        logger.log_operation("startup", "failed", {"error": e.message}, level=logging.ERROR)
        raise
    finally:
        await http_client.aclose()


app = FastAPI(
    title="Knowledge Search API",
    version=config.VERSION,
    description="Semantic retrieval over quotes, chart images and knowledge items",
    docs_url="/docs" if config.debug_enabled() else None,
    redoc_url="/redoc" if config.debug_enabled() else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=config.CORS_ALLOW_HEADERS,
)


def get_search_service(request: Request) -> RetrievalService:
    service = getattr(request.app.state, "search_service", None)
    if service is None:
        raise ConfigurationError("Search service not initialized")
    return service


def require_authorization(authorization: Optional[str]) -> str:
    if not authorization or not authorization.strip():
        raise AuthError("Authorization required")
    return authorization.strip()


async def _watch_disconnect(request: Request, ctx: RequestContext, task: asyncio.Task) -> None:
    while not task.done():
        if await request.is_disconnected():
            logger.log_operation("request", "client_disconnected", {"path": request.url.path}, level=logging.WARNING)
            ctx.cancel()
            task.cancel()
            return
        await asyncio.sleep(config.DISCONNECT_POLL_SEC)


async def run_pipeline(request: Request, ctx: RequestContext, pipeline: Awaitable[Dict[str, Any]]) -> Dict[str, Any]:
    """Run a retrieval pipeline, cancelling it if the client goes away."""
    task = asyncio.ensure_future(pipeline)
    watcher = asyncio.ensure_future(_watch_disconnect(request, ctx, task))
    try:
        return await task
    finally:
        watcher.cancel()


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint():
    """Report configuration health without touching upstream providers."""
    issues = config.validate_config()
    return HealthResponse(
        status="healthy" if not issues else "unhealthy",
        version=config.VERSION,
        embed_provider=config.EMBED_PROVIDER,
        index_provider=config.INDEX_PROVIDER,
        issues=issues,
    )


@app.options("/{path:path}")
def preflight_endpoint(path: str):
    """Plain OPTIONS requests succeed with no body."""
    return Response(status_code=200)


@app.post("/search/knowledge", responses=SEARCH_RESPONSES)
async def search_knowledge_endpoint(
    request: Request,
    body: Optional[KnowledgeSearchRequest] = None,
    authorization: Optional[str] = Header(None),
    service: RetrievalService = Depends(get_search_service),
):
    body = body or KnowledgeSearchRequest()
    require_query(body.query)
    ctx = new_context(authorization=require_authorization(authorization))
    return await run_pipeline(request, ctx, service.search_knowledge(body.query, body.count, ctx))


@app.post("/search/quotes", responses=SEARCH_RESPONSES)
async def find_quotes_endpoint(
    request: Request,
    body: Optional[QuoteSearchRequest] = None,
    authorization: Optional[str] = Header(None),
    service: RetrievalService = Depends(get_search_service),
):
    body = body or QuoteSearchRequest()
    require_query(body.query)
    ctx = new_context(authorization=require_authorization(authorization))
    return await run_pipeline(request, ctx, service.find_quotes(body.query, body.context, body.count, ctx))


@app.post("/search/images", responses=SEARCH_RESPONSES)
async def find_images_endpoint(
    request: Request,
    body: Optional[ImageSearchRequest] = None,
    authorization: Optional[str] = Header(None),
    service: RetrievalService = Depends(get_search_service),
):
    body = body or ImageSearchRequest()
    require_query(body.query)
    ctx = new_context(authorization=require_authorization(authorization))
    return await run_pipeline(request, ctx, service.find_images(body.query, body.chart_type, body.count, ctx))


@app.post("/search/sources", responses={**SEARCH_RESPONSES, 200: {"model": SourceSearchResponse}})
async def find_sources_endpoint(
    request: Request,
    body: Optional[SourceSearchRequest] = None,
    authorization: Optional[str] = Header(None),
    service: RetrievalService = Depends(get_search_service),
):
    body = body or SourceSearchRequest()
    require_query(body.question, field="question")
    ctx = new_context(authorization=require_authorization(authorization))
    return await run_pipeline(request, ctx, service.find_sources(body.question, body.mode, ctx))


@app.exception_handler(RetrievalError)
async def retrieval_error_handler(request: Request, exc: RetrievalError):
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log_operation("request", "failed", {
        "path": request.url.path,
        "status": exc.status_code,
        "error_type": type(exc).__name__,
        "error": exc.message,
    }, level=level)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
    message = "Invalid request body"
    if any(fields):
        message = f"Invalid request body: {', '.join(f for f in fields if f)}"
    logger.log_operation("request", "invalid", {"path": request.url.path, "fields": fields}, level=logging.WARNING)
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions."""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}")
    content = {"error": "Internal server error"}
    if config.debug_enabled():
        content["debug"] = str(exc)
    # Rendered outside the CORS middleware
    headers = {"Access-Control-Allow-Origin": "*"} if "*" in config.CORS_ALLOW_ORIGINS else None
    return JSONResponse(status_code=500, content=content, headers=headers)
