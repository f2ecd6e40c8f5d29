import logging
import time

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request, Response, HTTPException
from fastapi.responses import PlainTextResponse, JSONResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

from adapters.db.factory import build_adapter
from app.dependencies import get_pipeline
from app.exception_handlers import register_exception_handlers
from app.routers import ask
from app.settings import get_settings
from sqlgrep.config import resolve, resolve_database
from sqlgrep.pipeline import Pipeline
from sqlgrep.prom import REGISTRY

load_dotenv()

log = logging.getLogger(__name__)

settings = get_settings()

# ----------------------------------------------------------------------------
#  App definition
# ----------------------------------------------------------------------------
application = FastAPI(
    title="SQLGrep",
    version=settings.app_version,
    description="Answer natural-language questions with safe, read-only SQL",
)
register_exception_handlers(application)
app = application

# Register only versioned API
application.include_router(ask.router, prefix="/api/v1")


@application.exception_handler(HTTPException)
async def http_exception_to_error_contract(request: Request, exc: HTTPException):
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail)

    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# ----------------------------------------------------------------------------
#  Prometheus Metrics Middleware
# ----------------------------------------------------------------------------
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["path", "method", "status_code"],
    registry=REGISTRY,
)
REQUEST_LATENCY = Histogram(
    "http_request_latency_seconds",
    "Request latency (seconds)",
    ["path", "method"],
    registry=REGISTRY,
)


@application.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.perf_counter()
    response: Response = await call_next(request)
    elapsed = time.perf_counter() - start
    route = request.scope.get("route")
    path = getattr(route, "path", None) or request.url.path
    name = getattr(route, "name", None) or path

    REQUEST_COUNT.labels(
        path=name,
        method=request.method,
        status_code=str(getattr(response, "status_code", 500)),
    ).inc()
    REQUEST_LATENCY.labels(path=name, method=request.method).observe(elapsed)
    return response


# ----------------------------------------------------------------------------
#  System Endpoints
# ----------------------------------------------------------------------------
@application.get("/healthz", response_class=PlainTextResponse, tags=["system"])
def healthz() -> str:
    return "ok"


@application.get("/readyz", response_class=PlainTextResponse, tags=["system"])
def readyz(pipeline: Pipeline = Depends(get_pipeline)) -> str:
    """
    Lightweight readiness probe: ping the database of the "default" context
    (or the base config when no such context exists).
    """
    try:
        config = resolve(pipeline.base_config, "default")
        adapter = build_adapter(resolve_database(config), timeout=settings.query_timeout_sec)
        adapter.ping()
        return "ready"
    except Exception as exc:
        log.warning("Readiness check failed", extra={"error": str(exc)})
        raise HTTPException(status_code=503, detail="not ready")


@application.get("/metrics", tags=["system"])
def metrics():
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
