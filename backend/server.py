from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from database import database
from textbuilder import __product__, __version__
from textbuilder.errors import InsufficientCreditsError, TextBuilderError
from textbuilder.routes import images, articles, credits, payment, settings

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

CREDIT_RECONCILE_INTERVAL_SECONDS = int(os.getenv("CREDIT_RECONCILE_INTERVAL_SECONDS", "60"))
GENERATION_JOB_INTERVAL_SECONDS = int(os.getenv("GENERATION_JOB_INTERVAL_SECONDS", "10"))

scheduler = AsyncIOScheduler()

from job_runner import run_credit_hold_reconciliation, run_generation_jobs

# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    if os.getenv("PYTEST_RUNNING"):
        yield
        return

    # Startup
    logger.info(f"Starting {__product__} API")
    await database.connect()

    # Stripe config: log mode (test/live) from key prefix (no secret keys)
    stripe_key = (os.environ.get("STRIPE_SECRET_KEY") or os.environ.get("STRIPE_API_KEY") or "").strip()
    if not stripe_key:
        logger.error("STRIPE_API_KEY / STRIPE_SECRET_KEY is not set. Plan and credit purchases will fail.")
    else:
        stripe_mode = "test" if stripe_key.startswith("sk_test_") else "live"
        logger.info("STRIPE_MODE = %s (from Stripe key prefix)", stripe_mode)
    if not os.environ.get("STRIPE_WEBHOOK_SECRET"):
        logger.warning("STRIPE_WEBHOOK_SECRET is not set. Webhooks will be rejected.")

    # Resolve credit holds left behind by crashed or timed-out requests
    scheduler.add_job(
        run_credit_hold_reconciliation,
        IntervalTrigger(seconds=CREDIT_RECONCILE_INTERVAL_SECONDS),
        id="credit_hold_reconciliation",
        name="Credit Hold Reconciliation",
        replace_existing=True
    )

    # Queued article generation jobs (bulk and async single)
    scheduler.add_job(
        run_generation_jobs,
        IntervalTrigger(seconds=GENERATION_JOB_INTERVAL_SECONDS),
        id="generation_jobs",
        name="Article Generation Jobs",
        replace_existing=True
    )

    scheduler.start()
    logger.info("Background job scheduler started")

    yield

    # Shutdown
    logger.info(f"Shutting down {__product__} API")
    scheduler.shutdown(wait=False)
    logger.info("Background job scheduler stopped")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title=f"{__product__} API",
    description="AI article and image generation with prepaid credits",
    version=__version__,
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(images.router)
app.include_router(articles.router)
app.include_router(credits.router)
app.include_router(payment.router)
app.include_router(settings.router)

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": __product__,
        "version": __version__,
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development")
    }


# Version/build stamp for deployment verification (commit SHA set by CI/CD, e.g. GIT_COMMIT_SHA)
@app.get("/api/version")
async def version_info():
    return {
        "version": __version__,
        "commit_sha": os.getenv("GIT_COMMIT_SHA", os.getenv("BUILD_SHA", "unknown")),
        "environment": os.getenv("ENVIRONMENT", "development"),
    }


def error_response(status_code: int, message: str, data: dict = None) -> JSONResponse:
    content = {"success": False, "error": message}
    if data is not None:
        content["data"] = data
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))


# Validation errors are client errors: 400 with the first message
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    logger.info(
        "Validation failed path=%s errors=%s",
        request.url.path,
        [(e.get("loc"), e.get("msg")) for e in errors],
    )
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return error_response(400, message)


@app.exception_handler(InsufficientCreditsError)
async def insufficient_credits_handler(request: Request, exc: InsufficientCreditsError):
    return error_response(
        exc.status_code,
        str(exc),
        {"required": exc.required, "available": exc.available},
    )


@app.exception_handler(TextBuilderError)
async def textbuilder_exception_handler(request: Request, exc: TextBuilderError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc}")
        return error_response(exc.status_code, "Internal server error")
    return error_response(exc.status_code, str(exc))


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return error_response(500, "Internal server error")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
