import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import execute, health, quote, status
from .config import settings
from .errors import BridgeEngineError, RateLimitError
from .logging_config import setup_logging
from .middleware import RateLimitMiddleware, RequestLoggingMiddleware
from .workers.finality_reconciler import FinalityReconciler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and run the finality reconciler for the app's lifetime."""
    setup_logging()
    reconciler = None
    if settings.finality_reconcile_interval_seconds > 0:
        reconciler = FinalityReconciler(interval_seconds=settings.finality_reconcile_interval_seconds)
        reconciler.start()
    yield
    if reconciler is not None:
        await reconciler.stop()


# Create FastAPI app
app = FastAPI(
    title="ToSolana Bridge API",
    description="Quote aggregation and session-driven execution for bridging into Solana",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Middleware runs outermost-last: logging wraps rate limiting
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BridgeEngineError)
async def bridge_error_handler(request: Request, exc: BridgeEngineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    headers = {"Retry-After": str(exc.retry_after)} if isinstance(exc, RateLimitError) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def _validation_details(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in errors
    ]


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": _validation_details(list(exc.errors()))},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    message = str(exc) if settings.debug else "An error occurred"
    return JSONResponse(status_code=500, content={"error": message, "code": "internal_error"})


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(quote.router, prefix=settings.api_prefix, tags=["Quote"])
app.include_router(execute.router, prefix=settings.api_prefix, tags=["Execute"])
app.include_router(status.router, prefix=settings.api_prefix, tags=["Status"])


@app.get("/")
async def root():
    """Root endpoint with basic info"""
    return {
        "name": "ToSolana Bridge API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/healthz",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "tosolana.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower()
    )
