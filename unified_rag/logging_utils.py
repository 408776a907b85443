import logging
import os
import sys
from typing import Optional
from logging.handlers import RotatingFileHandler

from pythonjsonlogger import jsonlogger
from rich.console import Console
from rich.logging import RichHandler


def get_console_handler(level: int = logging.INFO, stderr: bool = False) -> logging.Handler:
    """Get console handler with Rich formatting."""
    handler = RichHandler(
        console=Console(stderr=stderr),
        level=level,
        show_level=True,
        show_path=False,
        show_time=True,
        omit_repeated_times=True,
    )
    handler.setLevel(level)
    return handler


def get_json_handler(service: str, level: int = logging.INFO, stderr: bool = False) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr if stderr else sys.stdout)
    formatter = jsonlogger.JsonFormatter(
        fmt='%(asctime)s %(name)s %(levelname)s %(message)s',
        datefmt='%Y-%m-%dT%H:%M:%S%z',
        static_fields={'service': service},
    )
    handler.setFormatter(formatter)
    handler.setLevel(level)
    return handler


def get_file_handler(log_dir: str, service_name: str, level: int = logging.INFO) -> logging.Handler:
    """Get rotating file handler."""
    log_file = os.path.join(log_dir, f"{service_name}.log")
    os.makedirs(log_dir, exist_ok=True)
    handler = RotatingFileHandler(
        log_file, maxBytes=10*1024*1024, backupCount=5  # 10MB, 5 backups
    )
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    handler.setFormatter(formatter)
    handler.setLevel(level)
    return handler


def get_logger(name: str, service: Optional[str] = None, stderr: bool = False) -> logging.Logger:
    """
    Configure the ``unified_rag`` logger tree and return ``name``.

    Handlers sit on the package root logger so module loggers created with
    ``logging.getLogger(__name__)`` share them. ``stderr=True`` keeps stdout
    free for protocols that own it.
    """
    service = service or name.split('.')[0]
    root = logging.getLogger("unified_rag")
    if root.hasHandlers():
        root.handlers.clear()  # Avoid duplicate handlers

    level = os.getenv("UNIFIED_RAG_LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, level, logging.INFO)
    use_json = os.getenv("UNIFIED_RAG_LOG_JSON", "0").lower() == "1"
    log_dir = os.getenv("UNIFIED_RAG_LOG_DIR", "logs")

    if use_json:
        root.addHandler(get_json_handler(service, log_level, stderr=stderr))
    else:
        root.addHandler(get_console_handler(log_level, stderr=stderr))
    root.addHandler(get_file_handler(log_dir, service, log_level))
    root.setLevel(log_level)

    # Suppress verbose logs from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)

    return logging.getLogger(name)
