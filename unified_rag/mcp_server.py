"""MCP server exposing hybrid memory search and storage as tools over stdio."""

import asyncio
import json
from typing import Any, Dict, List, Optional

from mcp.server import Server
from mcp.types import TextContent, Tool
from pydantic import ValidationError

from .config import get_settings, log_settings_summary
from .coordinator import RetrievalCoordinator, build_coordinator
from .errors import UnifiedRagError
from .logging_utils import get_logger
from .models import SearchRequest, StoreRequest

# stdout carries the protocol
logger = get_logger("unified_rag.mcp_server", service="unified_rag_mcp", stderr=True)

server = Server("unified-rag")

_state: Dict[str, Optional[RetrievalCoordinator]] = {"coordinator": None}


def _schema(model) -> Dict[str, Any]:
    schema = model.model_json_schema()
    schema.pop("title", None)
    return schema


TOOLS = [
    Tool(
        name="rag_search",
        description="Search for memories using hybrid L1/L2 retrieval with Redis caching and Qdrant semantic search",
        inputSchema=_schema(SearchRequest),
    ),
    Tool(
        name="rag_store",
        description="Store a memory with automatic embedding generation and indexing in both Redis and Qdrant",
        inputSchema=_schema(StoreRequest),
    ),
]


def _text(payload: Any) -> List[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, default=str))]


async def execute_tool(coordinator: RetrievalCoordinator, name: str, arguments: Dict[str, Any]) -> List[TextContent]:
    """Run a tool against the coordinator and return MCP-formatted content."""
    try:
        if name == "rag_search":
            result = await coordinator.search(SearchRequest(**arguments))
            return _text(result.model_dump(mode="json"))
        if name == "rag_store":
            result = await coordinator.store(StoreRequest(**arguments))
            return _text(result.model_dump(mode="json"))
    except ValidationError as e:
        return _text({"error": f"Invalid arguments for '{name}': {e}"})
    except UnifiedRagError as e:
        logger.error(f"Tool {name} failed: {e}")
        message = f"{name} failed: {e}"
        if name == "rag_search":
            message += ". Please check that Qdrant is running and accessible."
        return _text({"error": message, "retryable": e.retryable})
    return _text({"error": f"Unknown tool '{name}'"})


@server.list_tools()
async def handle_list_tools() -> List[Tool]:
    """MCP handler: list available tools."""
    return TOOLS


@server.call_tool()
async def handle_call_tool(name: str, arguments: Optional[Dict[str, Any]] = None) -> List[TextContent]:
    """MCP handler: execute a tool."""
    coordinator = _state["coordinator"]
    if coordinator is None:
        return _text({"error": "Retrieval coordinator is not available"})
    return await execute_tool(coordinator, name, arguments or {})


async def _run_stdio_async():
    from mcp.server.stdio import stdio_server

    settings = get_settings()
    log_settings_summary(logger, settings)
    logger.info("Starting UnifiedRAG MCP server")
    coordinator = await build_coordinator(settings)
    _state["coordinator"] = coordinator
    try:
        async with stdio_server() as (read_stream, write_stream):
            init_options = server.create_initialization_options()
            await server.run(read_stream, write_stream, init_options)
    finally:
        logger.info("UnifiedRAG MCP server shutting down")
        await coordinator.close()


def run_stdio():
    """Run MCP server over stdio transport."""
    asyncio.run(_run_stdio_async())


if __name__ == "__main__":
    run_stdio()
