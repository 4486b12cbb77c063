# paylink/main.py
"""
FastAPI app entrypoint
"""
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from paylink.api.v1.router import api_router
from paylink.core.config import settings
from paylink.core.dependencies import cleanup_services, initialize_services
from paylink.core.exception import BaseAppException
from paylink.core.logging import log_error, log_request, logger, setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle"""

    setup_logging()
    logger.info(f"🚀 Starting {settings.APP_NAME} v{settings.APP_VERSION} ({settings.ENVIRONMENT})")

    # Database, Redis, provider clients and domain services
    await initialize_services()

    logger.info("✅ Ready!")

    yield

    await cleanup_services()
    logger.info("👋 Stopped")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Wallet, savings, rewards and bill payment core for PAYLINK",
    lifespan=lifespan,
    docs_url="/docs",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_logging(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    log_request(
        endpoint=request.url.path,
        method=request.method,
        user_id=request.headers.get(settings.USER_ID_HEADER),
        duration_ms=(time.perf_counter() - start) * 1000,
        status_code=response.status_code,
    )
    return response


@app.exception_handler(BaseAppException)
async def app_exception_handler(request: Request, exc: BaseAppException):
    """Domain errors carry their own HTTP status"""
    if exc.status_code >= 500:
        log_error(exc, {"path": request.url.path, **exc.details})
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(
            {"error": type(exc).__name__, "message": exc.message, "details": exc.details}
        ),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": "InternalServerError", "message": "An unexpected error occurred"},
    )


app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/")
async def root():
    return {"status": "running", "app": settings.APP_NAME, "version": settings.APP_VERSION}
