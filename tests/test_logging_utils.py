import logging
import sys

import pytest
from pythonjsonlogger import jsonlogger
from rich.logging import RichHandler

from unified_rag.logging_utils import get_logger


@pytest.fixture
def log_env(monkeypatch, tmp_path):
    monkeypatch.setenv("UNIFIED_RAG_LOG_DIR", str(tmp_path))
    monkeypatch.delenv("UNIFIED_RAG_LOG_JSON", raising=False)
    monkeypatch.delenv("UNIFIED_RAG_LOG_LEVEL", raising=False)
    yield tmp_path
    root = logging.getLogger("unified_rag")
    for handler in list(root.handlers):
        handler.close()
        root.removeHandler(handler)


def test_console_logging_on_stderr(log_env):
    logger = get_logger("unified_rag.mcp_server", service="unified_rag_mcp", stderr=True)

    handlers = logging.getLogger("unified_rag").handlers
    console = next(h for h in handlers if isinstance(h, RichHandler))
    assert console.console.stderr is True
    assert logger.name == "unified_rag.mcp_server"
    logger.info("stdio server starting")
    assert (log_env / "unified_rag_mcp.log").exists()


def test_json_logging_when_enabled(log_env, monkeypatch):
    monkeypatch.setenv("UNIFIED_RAG_LOG_JSON", "1")
    monkeypatch.setenv("UNIFIED_RAG_LOG_LEVEL", "debug")

    get_logger("unified_rag.main", service="unified_rag", stderr=True)

    root = logging.getLogger("unified_rag")
    json_handler = next(h for h in root.handlers if isinstance(h.formatter, jsonlogger.JsonFormatter))
    assert json_handler.stream is sys.stderr
    assert root.level == logging.DEBUG
    assert not any(isinstance(h, RichHandler) for h in root.handlers)


def test_repeated_setup_does_not_duplicate_handlers(log_env):
    get_logger("unified_rag.main")
    get_logger("unified_rag.main")

    assert len(logging.getLogger("unified_rag").handlers) == 2
