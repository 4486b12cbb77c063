# paylink/core/logging.py
"""
Structured logging configuration with context
"""
import logging
import sys
from typing import Any

from loguru import logger

from paylink.core.config import settings


class InterceptHandler(logging.Handler):
    """Intercept standard logging and route to loguru"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging() -> None:
    """Configure application logging"""

    # Remove default handler
    logger.remove()

    # Console handler with colors
    logger.add(
        sys.stdout,
        level=settings.LOG_LEVEL,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        colorize=True,
    )

    if settings.LOG_TO_FILE:
        log_path = settings.LOG_DIR
        log_path.mkdir(parents=True, exist_ok=True)

        if settings.ENVIRONMENT == "production":
            logger.add(
                log_path / "paylink.log",
                rotation="500 MB",
                retention="10 days",
                compression="zip",
                level="INFO",
                serialize=True,  # JSON format
            )
        else:
            logger.add(
                log_path / "paylink.log",
                rotation="100 MB",
                retention="7 days",
                level="DEBUG",
            )

        # Money-path failures are kept longer
        logger.add(
            log_path / "error.log",
            rotation="100 MB",
            retention="30 days",
            level="ERROR",
            backtrace=True,
            diagnose=settings.ENVIRONMENT != "production",
        )

    # Intercept standard library logging
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    logging.getLogger("uvicorn").handlers = [InterceptHandler()]
    logging.getLogger("uvicorn.access").handlers = [InterceptHandler()]
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DB_ECHO else logging.WARNING
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def log_request(
    endpoint: str,
    method: str,
    user_id: str | None,
    duration_ms: float,
    status_code: int,
) -> None:
    """Log API request"""
    logger.bind(
        endpoint=endpoint,
        method=method,
        user_id=user_id,
        duration_ms=duration_ms,
        status_code=status_code,
    ).info(f"{method} {endpoint} -> {status_code} ({duration_ms:.1f} ms)")


def log_error(
    error: Exception,
    context: dict[str, Any] | None = None,
) -> None:
    """Log error with context"""
    logger.bind(
        error_type=type(error).__name__,
        context=context or {},
    ).error(f"Error: {error}")
