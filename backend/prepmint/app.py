"""FastAPI application setup for PrepMint."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from prepmint.api.dependencies import get_app_settings, get_backend, get_job_store, reset_state
from prepmint.api.routes_admin import router as admin_router
from prepmint.api.routes_evaluate import router as evaluate_router
from prepmint.api.routes_gamify import router as gamify_router
from prepmint.api.routes_notifications import router as notifications_router
from prepmint.api.routes_records import router as records_router
from prepmint.core.errors import PrepMintError
from prepmint.core.logging import configure_logging, get_logger, log_context
from prepmint.core.metrics import REQUEST_COUNT

configure_logging()
logger = get_logger(__name__)

app = FastAPI(
    title="PrepMint",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:3000",
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(records_router, prefix="/records", tags=["records"])
app.include_router(evaluate_router, prefix="/evaluate", tags=["evaluate"])
app.include_router(gamify_router, prefix="/gamify", tags=["gamify"])
app.include_router(notifications_router, prefix="/notifications", tags=["notifications"])
app.include_router(admin_router, prefix="", tags=["admin"])


@app.exception_handler(PrepMintError)
async def handle_prepmint_error(request: Request, exc: PrepMintError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning(
            "%s %s failed: %s",
            request.method,
            request.url.path,
            exc.message,
            extra=log_context(source=exc.source, record_id=exc.record_id, status=exc.status_code),
        )
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.middleware("http")
async def count_requests(request: Request, call_next):
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", "unmatched")
    REQUEST_COUNT.labels(endpoint=endpoint, method=request.method, status=str(response.status_code)).inc()
    return response


@app.on_event("startup")
async def startup() -> None:
    """Warm up core singletons on startup."""
    get_app_settings()
    get_backend()
    get_job_store()


@app.on_event("shutdown")
async def shutdown() -> None:
    await get_backend().close()
    reset_state()


@app.get("/health", tags=["admin"])
def health() -> dict[str, bool]:
    """Simple liveness check."""
    return {"ok": True}
