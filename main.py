from fastapi import FastAPI, HTTPException, Request, Depends, status
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
import structlog
import io
import time
from datetime import datetime
from zoneinfo import ZoneInfo
from contextlib import asynccontextmanager

from config import get_settings
from errors import LedgerError, SourceUnavailableError
from logging_config import configure_logging
from models import ErrorResponse, HealthResponse, LedgerResponse, ProcessingSummary
from parsing import TransactionParser, read_rows
from repositories import get_account_repository, get_deposit_repository
from services import TransactionProcessor, get_transaction_processor

settings = get_settings()

# Configure structured logging
configure_logging(settings)

logger = structlog.get_logger()

# Rate limiting
limiter = Limiter(key_func=get_remote_address)

# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Account Ledger API", version=settings.app_version)
    yield
    # Shutdown
    logger.info("Shutting down Account Ledger API")

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Applies client transaction logs and reports the resulting account balances",
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=settings.allowed_methods,
    allow_headers=settings.allowed_headers,
)

# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        client_ip=request.client.host if request.client else None
    )

    response = await call_next(request)

    process_time = time.time() - start_time
    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time=round(process_time, 4)
    )

    return response

# Dependency injection: every request gets its own accounts and deposits
def get_processor(
    account_repo=Depends(get_account_repository),
    deposit_repo=Depends(get_deposit_repository)
) -> TransactionProcessor:
    return get_transaction_processor(
        account_repo,
        deposit_repo,
        detailed_logging=settings.enable_detailed_logging
    )

# Health check endpoint
@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Check API health"
)
async def health_check():
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        timestamp=datetime.now(ZoneInfo(settings.timezone))
    )

# Main ledger endpoint
@app.post(
    "/ledger/process",
    response_model=LedgerResponse,
    status_code=status.HTTP_200_OK,
    summary="Process Transaction Log",
    description="Apply a CSV transaction log (type, client, tx, amount) and return every client account",
    responses={
        200: {"description": "Log applied; rows that could not be applied are counted in the summary"},
        400: {"description": "Transaction log could not be read"},
        413: {"description": "Transaction log too large"},
        429: {"description": "Rate limit exceeded"},
        500: {"description": "Internal server error"}
    }
)
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def process_ledger(
    request: Request,
    processor: TransactionProcessor = Depends(get_processor)
):
    body = await request.body()
    if len(body) > settings.max_request_size:
        logger.warning(
            "Transaction log rejected",
            size=len(body),
            max_request_size=settings.max_request_size
        )
        raise HTTPException(
            status_code=413,
            detail="Transaction log too large"
        )

    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise SourceUnavailableError("Transaction log is not valid UTF-8 text") from e

    # Parsing and applying the log is CPU bound; keep it off the event loop
    return await run_in_threadpool(apply_transaction_log, text, processor)


def apply_transaction_log(text: str, processor: TransactionProcessor) -> LedgerResponse:
    parser = TransactionParser(detailed_logging=settings.enable_detailed_logging)
    summary = ProcessingSummary()
    rows = read_rows(
        io.StringIO(text, newline=""),
        has_header=settings.csv_has_header,
        on_error=parser.reject
    )
    processor.process(parser.parse(rows), summary)
    summary.add_rejections(parser.rejections())

    logger.info(
        "Transaction log processed",
        accounts=processor.account_repo.count(),
        applied=summary.applied,
        skipped=summary.skipped,
        rejected=summary.rejected
    )

    return LedgerResponse(accounts=processor.account_repo.snapshot(), summary=summary)

# Global exception handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            detail=exc.detail,
            error_code=f"HTTP_{exc.status_code}"
        ).model_dump(mode="json")
    )

@app.exception_handler(LedgerError)
async def ledger_exception_handler(request: Request, exc: LedgerError):
    logger.warning(
        "Ledger request failed",
        error_code=exc.error_code.value,
        detail=exc.detail,
        url=str(request.url)
    )

    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            detail=exc.detail,
            error_code=exc.error_code.value
        ).model_dump(mode="json")
    )

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        error=str(exc),
        url=str(request.url),
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            detail="Internal server error",
            error_code="INTERNAL_ERROR"
        ).model_dump(mode="json")
    )

# Root endpoint
@app.get("/", include_in_schema=False)
async def root():
    return {"message": settings.app_name, "docs": "/docs"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
