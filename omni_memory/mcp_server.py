#!/usr/bin/env python3
"""
MCP Server for Omni Memory
Exposes memory operations as tools for MCP clients over stdio.

Setup:
1. Install:
   pipx install omni-memory-mcp

2. Add to the client's MCP config:
   {
     "mcpServers": {
       "omni-memory": {
         "command": "omni-memory-mcp",
         "env": {"OMNI_MEMORY_DIR": "~/.omni-memory"}
       }
     }
   }

Environment:
   OMNI_MEMORY_DIR        storage directory
   OMNI_MEMORY_DB         database file, or ":memory:"
   OMNI_MEMORY_LOG_LEVEL  log level for stderr (default: WARNING)
"""

import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from functools import partial
from typing import Any, Mapping, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import CallToolResult, TextContent, Tool

from .backends import AREAS, Memory, MemoryStats, SearchResult
from .errors import NotFoundError, SearchSyntaxError, ValidationError
from .memory import LIST_MAX_LIMIT, SEARCH_MAX_LIMIT, MemoryStore, close_store, get_store
from .tool_requests import AddRequest, IdRequest, ListRequest, SearchRequest, UpdateRequest

logger = logging.getLogger(__name__)

SERVER_NAME = "omni-memory-mcp"

_AREA_SCHEMA = {"type": "string", "enum": list(AREAS)}

TOOLS = [
    Tool(
        name="memory_add",
        description="Add a memory to the universal memory store. Memories can be searched and retrieved later.",
        inputSchema={
            "type": "object",
            "properties": {
                "content": {"type": "string", "description": "The content to store in memory"},
                "area": {**_AREA_SCHEMA, "description": "Memory area (default: general)"},
                "project": {"type": "string", "description": "Project identifier for organization"},
                "tags": {"type": "array", "items": {"type": "string"}, "description": "Tags for categorization"},
            },
            "required": ["content"],
        },
    ),
    Tool(
        name="memory_get",
        description="Retrieve a specific memory by its ID.",
        inputSchema={
            "type": "object",
            "properties": {"id": {"type": "string", "description": "The memory ID to retrieve"}},
            "required": ["id"],
        },
    ),
    Tool(
        name="memory_update",
        description="Update an existing memory's content, area, project, or tags.",
        inputSchema={
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "The memory ID to update"},
                "content": {"type": "string", "description": "New content (optional)"},
                "area": {**_AREA_SCHEMA, "description": "New area (optional)"},
                "project": {"type": ["string", "null"], "description": "New project (optional, null to clear)"},
                "tags": {"type": "array", "items": {"type": "string"}, "description": "New tags (optional)"},
            },
            "required": ["id"],
        },
    ),
    Tool(
        name="memory_delete",
        description="Delete a memory by its ID.",
        inputSchema={
            "type": "object",
            "properties": {"id": {"type": "string", "description": "The memory ID to delete"}},
            "required": ["id"],
        },
    ),
    Tool(
        name="memory_list",
        description="List memories with optional filters by area, project, or tag.",
        inputSchema={
            "type": "object",
            "properties": {
                "area": {**_AREA_SCHEMA, "description": "Filter by area"},
                "project": {"type": "string", "description": "Filter by project"},
                "tag": {"type": "string", "description": "Filter by tag"},
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "description": f"Max results (default: 50, max: {LIST_MAX_LIMIT})",
                },
            },
        },
    ),
    Tool(
        name="memory_search",
        description="Full-text search across all memories using FTS5.",
        inputSchema={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query"},
                "area": {**_AREA_SCHEMA, "description": "Filter by area"},
                "project": {"type": "string", "description": "Filter by project"},
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "description": f"Max results (default: 10, max: {SEARCH_MAX_LIMIT})",
                },
                "enable_advanced_syntax": {
                    "type": "boolean",
                    "description": "Pass the query to FTS5 unmodified (AND/OR/NOT, quoted phrases)",
                },
            },
            "required": ["query"],
        },
    ),
    Tool(
        name="memory_stats",
        description=(
            "Get statistics about the Omni Memory database, including total memories, "
            "size on disk, and counts by area and project."
        ),
        inputSchema={"type": "object", "properties": {}},
    ),
]

# Prefix for errors the caller can act on
_FAILURE_PREFIX = {
    "memory_add": "Failed to add memory",
    "memory_get": "Failed to get memory",
    "memory_update": "Failed to update memory",
    "memory_delete": "Failed to delete memory",
    "memory_list": "Failed to list memories",
    "memory_search": "Search failed",
    "memory_stats": "Failed to retrieve stats",
}


async def run_sync(func, *args, **kwargs):
    """Run a synchronous function in a thread pool to avoid blocking."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(func, *args, **kwargs))


# === FORMATTING ===

def _preview(content: str, width: int) -> str:
    return content if len(content) <= width else content[:width] + "..."


def format_memory(memory: Memory) -> str:
    project = f"\nProject: {memory.project}" if memory.project else ""
    tags = f"\nTags: {', '.join(memory.tags)}" if memory.tags else ""
    return (
        f"ID: {memory.id}\nArea: {memory.area}{project}{tags}\n"
        f"Created: {memory.created_at}\nUpdated: {memory.updated_at}\n\n{memory.content}"
    )


def format_memory_list(memories: list[Memory], request: ListRequest) -> str:
    if not memories:
        filters = [
            f"{name}={value}"
            for name, value in (("area", request.area), ("project", request.project), ("tag", request.tag))
            if value
        ]
        filter_text = f" with filters: {', '.join(filters)}" if filters else ""
        return f"No memories found{filter_text}"

    lines = []
    for i, mem in enumerate(memories, 1):
        project = f" [{mem.project}]" if mem.project else ""
        tags = f" #{' #'.join(mem.tags)}" if mem.tags else ""
        lines.append(f"{i}. [{mem.area}]{project}{tags}\n   ID: {mem.id}\n   {_preview(mem.content, 150)}")
    return f"{len(memories)} memories:\n\n" + "\n\n".join(lines)


def format_search_results(results: list[SearchResult], query: str) -> str:
    if not results:
        return f'No memories found matching: "{query}"'

    lines = []
    for i, mem in enumerate(results, 1):
        project = f" [{mem.project}]" if mem.project else ""
        lines.append(
            f"{i}. ({mem.score * 100:.0f}%) [{mem.area}]{project}\n   ID: {mem.id}\n   {_preview(mem.content, 200)}"
        )
    return f'Found {len(results)} memories for "{query}":\n\n' + "\n\n".join(lines)


def format_bytes(size: int) -> str:
    if size == 0:
        return "0 Bytes"
    value = float(size)
    for unit in ("Bytes", "KB", "MB"):
        if value < 1024:
            return f"{round(value, 2):g} {unit}"
        value /= 1024
    return f"{round(value, 2):g} GB"


def format_stats(stats: MemoryStats) -> str:
    size = format_bytes(stats.total_size_bytes) if stats.total_size_bytes > 0 else "Unknown (Memory DB)"
    areas = "\n".join(f"  - {area}: {count}" for area, count in stats.by_area.items())
    projects = "\n".join(f"  - {project}: {count}" for project, count in stats.by_project.items())
    return (
        "Omni Memory Database Statistics:\n"
        f"Total Memories: {stats.total_memories}\n"
        f"Total Size on Disk: {size}\n\n"
        f"By Area:\n{areas or '  (None)'}\n\n"
        f"By Project:\n{projects or '  (None)'}"
    )


# === DISPATCH ===

@dataclass
class ToolReply:
    """Reply text for one tool call, flagged when it reports a failure."""
    text: str
    is_error: bool = False

    def to_result(self) -> CallToolResult:
        return CallToolResult(content=[TextContent(type="text", text=self.text)], isError=self.is_error)


def dispatch(store: MemoryStore, name: str, arguments: Optional[Mapping[str, Any]]) -> ToolReply:
    """
    Execute one tool call against the store and render the reply.

    Validation, not-found and search syntax problems come back as error
    replies; storage failures propagate.
    """
    arguments = arguments or {}
    if name not in _FAILURE_PREFIX:
        return ToolReply(f"Unknown tool: {name}", is_error=True)
    try:
        return ToolReply(_execute(store, name, arguments))
    except NotFoundError as e:
        return ToolReply(str(e), is_error=True)
    except (ValidationError, SearchSyntaxError) as e:
        logger.info(f"{name} rejected: {e}")
        return ToolReply(f"{_FAILURE_PREFIX[name]}: {e}", is_error=True)


def _execute(store: MemoryStore, name: str, arguments: Mapping[str, Any]) -> str:
    if name == "memory_add":
        request = AddRequest.from_arguments(arguments)
        memory_id = store.add(request.content, area=request.area, project=request.project, tags=request.tags)
        return f"Memory added successfully\nID: {memory_id}"

    elif name == "memory_get":
        request = IdRequest.from_arguments(arguments)
        return format_memory(store.require(request.id))

    elif name == "memory_update":
        request = UpdateRequest.from_arguments(arguments)
        store.require(request.id)
        changes = store.update(request.id, **request.fields)
        if changes == 0:
            return f"No changes made to memory: {request.id}"
        return f"Memory updated successfully\nID: {request.id}\nChanges: {changes}"

    elif name == "memory_delete":
        request = IdRequest.from_arguments(arguments)
        store.require(request.id)
        store.delete(request.id)
        return f"Memory deleted successfully\nID: {request.id}"

    elif name == "memory_list":
        request = ListRequest.from_arguments(arguments)
        memories = store.list_memories(
            area=request.area, project=request.project, tag=request.tag, limit=request.limit
        )
        return format_memory_list(memories, request)

    elif name == "memory_search":
        request = SearchRequest.from_arguments(arguments)
        results = store.search(
            request.query,
            area=request.area,
            project=request.project,
            limit=request.limit,
            enable_advanced_syntax=request.enable_advanced_syntax,
        )
        return format_search_results(results, request.query)

    # memory_stats
    return format_stats(store.stats())


def create_server(store: Optional[MemoryStore] = None) -> Server:
    server = Server(SERVER_NAME)

    @server.list_tools()
    async def list_tools():
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict):
        # Store calls block on SQLite, keep them off the event loop
        reply = await run_sync(dispatch, store or get_store(), name, arguments)
        return reply.to_result()

    return server


async def main():
    logging.basicConfig(
        stream=sys.stderr,
        level=os.environ.get("OMNI_MEMORY_LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    server = create_server()
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        close_store()


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
