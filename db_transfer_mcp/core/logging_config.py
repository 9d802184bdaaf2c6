"""structlog setup: readable console output plus JSON log files."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog
from structlog.stdlib import BoundLogger, LoggerFactory, ProcessorFormatter

# stdlib logger name -> file it writes to
LOG_FILES = {
    "db_transfer_mcp": "transfer_engine.log",
    "middleware": "middleware.log",
}


def _file_handler(path: Path, max_bytes: int, level: int) -> RotatingFileHandler:
    # backupCount=0 truncates in place instead of keeping rotated copies
    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=0, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(ProcessorFormatter(processor=structlog.processors.JSONRenderer()))
    return handler


def setup_logging(
    log_dir: Path | str = Path("logs"),
    log_level: str | None = None,
    max_file_size_mb: int = 10,
) -> None:
    """Route structlog through stdlib handlers.

    Engine events go to ``transfer_engine.log`` and MCP request handling to
    ``middleware.log``; both also reach the console.

    Args:
        log_dir: Directory for log files
        log_level: Defaults to the LOG_LEVEL env var, then INFO
        max_file_size_mb: Size at which a log file is truncated
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_level = log_level or os.getenv("LOG_LEVEL", "INFO")
    level = getattr(logging, log_level.upper(), logging.INFO)
    max_bytes = max_file_size_mb * 1024 * 1024

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(
        ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer()
            if sys.stdout.isatty()
            else structlog.processors.JSONRenderer()
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(console)

    for name, filename in LOG_FILES.items():
        file_logger = logging.getLogger(name)
        file_logger.handlers.clear()
        file_logger.addHandler(_file_handler(log_dir / filename, max_bytes, level))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.TimeStamper(fmt="iso"),
            ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.get_logger("db_transfer_mcp").info(
        "Logging system initialized", log_dir=str(log_dir.absolute()), log_level=log_level
    )


def get_middleware_logger() -> Any:
    return structlog.get_logger("middleware")


def get_server_logger() -> Any:
    return structlog.get_logger("db_transfer_mcp.server")
