import io
import time
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from config import get_settings
from errors import InputFormatError
from logging_setup import configure_logging
from models import ErrorResponse, HealthResponse
from services import run

settings = get_settings()
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger()

# Rate limiting
limiter = Limiter(key_func=get_remote_address)


def rate_limit() -> str:
    return f"{get_settings().rate_limit_per_minute}/minute"


# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Payments Engine API")
    yield
    # Shutdown
    logger.info("Shutting down Payments Engine API")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Replays CSV transaction batches and returns final client balances",
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Batch counters reported by /health
app.state.batches_processed = 0
app.state.last_batch = None

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        client_ip=request.client.host if request.client else None,
    )

    response = await call_next(request)

    process_time = time.time() - start_time
    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time=round(process_time, 4),
    )

    return response


@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Check API health and get counters for the last processed batch",
)
async def health_check(request: Request):
    return HealthResponse(
        status="healthy",
        batches_processed=request.app.state.batches_processed,
        last_batch=request.app.state.last_batch,
    )


@app.post(
    "/accounts/process",
    summary="Process Transactions",
    description="Replay a CSV batch (type,client,tx,amount) and return client balances as CSV",
    response_class=Response,
    responses={
        200: {"description": "Final balances", "content": {"text/csv": {}}},
        413: {"description": "Request body too large"},
        422: {"description": "Malformed CSV input"},
        429: {"description": "Rate limit exceeded"},
    },
)
@limiter.limit(rate_limit)
async def process_transactions(request: Request):
    max_size = get_settings().max_request_size
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > max_size:
        raise HTTPException(
            status_code=413,
            detail="Request body too large",
        )

    # Chunked bodies carry no length header, so re-check once read.
    body = await request.body()
    if len(body) > max_size:
        raise HTTPException(
            status_code=413,
            detail="Request body too large",
        )

    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InputFormatError("Request body is not valid UTF-8") from e

    # Each batch gets fresh stores; nothing carries over between requests.
    output = io.StringIO()
    stats = run(io.StringIO(text, newline=""), output, get_settings())

    request.app.state.batches_processed += 1
    request.app.state.last_batch = stats

    logger.info(
        "Batch processed",
        seen=stats.seen,
        applied=stats.applied,
        ignored=stats.ignored,
    )

    return Response(content=output.getvalue(), media_type="text/csv")


@app.exception_handler(InputFormatError)
async def input_format_exception_handler(request: Request, exc: InputFormatError):
    logger.warning(
        "Rejected malformed input",
        error=exc.message,
        line=exc.line,
        url=str(request.url),
    )

    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            detail=exc.message,
            error_code="INVALID_INPUT",
            line=exc.line,
        ).model_dump(mode="json"),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            detail=exc.detail,
            error_code=f"HTTP_{exc.status_code}",
        ).model_dump(mode="json"),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        error=str(exc),
        url=str(request.url),
        method=request.method,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            detail="Internal server error",
            error_code="INTERNAL_ERROR",
        ).model_dump(mode="json"),
    )


@app.get("/", include_in_schema=False)
async def root():
    return {"message": settings.app_name, "docs": "/docs"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
