from fastapi import FastAPI, HTTPException, Request, Depends
from fastapi.responses import JSONResponse, Response
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
import structlog
import io
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from config import Settings, get_settings
from csv_io import CsvTransactionReader, write_accounts_csv
from exceptions import InputFormatError, LedgerError
from logging_config import configure_logging
from models import ErrorResponse, HealthResponse
from repositories import get_account_repository, get_transaction_history_repository
from services import LedgerService, get_ledger_service

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"

# Replay rate limit, per client address
limiter = Limiter(key_func=get_remote_address)


def _replay_rate_limit() -> str:
    return f"{get_settings().rate_limit_per_minute}/minute"


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings)
    logger.info("Ledger API ready", app=settings.app_name, version=settings.app_version)
    yield
    logger.info("Ledger API stopped", app=settings.app_name)


_settings = get_settings()

app = FastAPI(
    title=f"{_settings.app_name} API",
    description="Replays CSV transaction streams against client accounts and returns the final balances",
    version=_settings.app_version,
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.middleware("http")
async def bind_request_context(request: Request, call_next):
    """Tag every log line of a request, ledger events included, with its request id."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path)

    started = time.perf_counter()
    response = await call_next(request)

    response.headers[REQUEST_ID_HEADER] = request_id
    logger.info(
        "Request handled",
        method=request.method,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2)
    )
    return response


def get_service() -> LedgerService:
    # One ledger per request, nothing is shared between replays
    return get_ledger_service(get_account_repository(), get_transaction_history_repository())


def _check_body_size(size: int, settings: Settings) -> None:
    if size > settings.max_request_size:
        raise HTTPException(
            status_code=413,
            detail=f"Request body exceeds {settings.max_request_size} bytes"
        )


@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Liveness check for the replay service"
)
async def health_check(settings: Settings = Depends(get_settings)):
    return HealthResponse(status="healthy", version=settings.app_version)


@app.post(
    "/ledger/replay",
    summary="Replay Transactions",
    description="Apply a CSV of transactions (type, client, tx, amount) to an empty ledger and return the accounts as CSV",
    responses={
        200: {"description": "Final accounts", "content": {"text/csv": {}}},
        400: {"description": "Malformed CSV input", "model": ErrorResponse},
        413: {"description": "Request body too large", "model": ErrorResponse},
        422: {"description": "A transaction was rejected by the ledger", "model": ErrorResponse},
        429: {"description": "Rate limit exceeded"}
    }
)
@limiter.limit(_replay_rate_limit)
async def replay_ledger(
    request: Request,
    skip_rejected: Optional[bool] = None,
    settings: Settings = Depends(get_settings),
    service: LedgerService = Depends(get_service)
):
    # Refuse announced oversized uploads before buffering them
    content_length = request.headers.get("content-length")
    if content_length is not None and content_length.isdigit():
        _check_body_size(int(content_length), settings)

    body = await request.body()
    # Chunked uploads carry no length header
    _check_body_size(len(body), settings)

    try:
        text = body.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise InputFormatError(1, "request body is not valid UTF-8") from e

    if skip_rejected is None:
        skip_rejected = settings.skip_rejected

    reader = CsvTransactionReader(io.StringIO(text, newline=""), delimiter=settings.csv_delimiter)
    stats = service.replay(reader, skip_rejected=skip_rejected)

    output = io.StringIO()
    write_accounts_csv(
        service.export(),
        output,
        precision=settings.amount_precision,
        sort_by_client=settings.sort_output
    )

    return Response(
        content=output.getvalue(),
        media_type="text/csv",
        headers={
            "X-Applied-Count": str(stats.applied),
            "X-Rejected-Count": str(stats.rejected),
        }
    )


def _error_response(status_code: int, detail: str, error_code: str, line: Optional[int] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(detail=detail, error_code=error_code, line=line).model_dump(mode="json")
    )


@app.exception_handler(InputFormatError)
async def input_format_exception_handler(request: Request, exc: InputFormatError):
    logger.warning("Malformed replay input", line=exc.line, error=exc.detail)
    return _error_response(400, exc.detail, exc.error_code, line=exc.line)


@app.exception_handler(LedgerError)
async def ledger_exception_handler(request: Request, exc: LedgerError):
    logger.warning("Replay aborted by rejected transaction", error_code=exc.error_code, error=str(exc))
    return _error_response(422, str(exc), exc.error_code)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _error_response(exc.status_code, exc.detail, f"HTTP_{exc.status_code}")


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error("Replay failed unexpectedly", error=str(exc), exc_info=True)
    return _error_response(500, "Internal server error", "INTERNAL_ERROR")


@app.get("/", include_in_schema=False)
async def root(settings: Settings = Depends(get_settings)):
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "replay": "/ledger/replay",
        "docs": "/docs"
    }


def serve() -> None:
    """Run the replay API under uvicorn with the configured host and port."""
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "api:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    serve()
