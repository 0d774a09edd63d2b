"""SSE push server: streams booking notices and availability to UI clients."""

import asyncio
import json
import logging
from datetime import UTC, datetime
from typing import Any

import uvicorn
from fastapi import FastAPI, Request
from sse_starlette.sse import EventSourceResponse

from .endpoints.booking import booking_endpoint
from .server import mcp

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 30.0
QUEUE_SIZE = 256


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


class SSEManager:
    """Fans booking events out to UI connections.

    A connection may follow a single booking view (``/events?view_id=...``);
    it then receives only that view's notices and availability snapshots.
    Without a view id it receives every view's events.
    """

    def __init__(self):
        """Initialize SSE manager."""
        # queue -> followed view id, None for all views
        self.connections: dict[asyncio.Queue, str | None] = {}
        self.app = FastAPI(title="CourtBook MCP SSE Server")
        self._setup_routes()

    def _setup_routes(self):
        """Setup FastAPI routes."""

        @self.app.get("/")
        async def root():
            return {
                "message": "CourtBook MCP SSE Server",
                "version": "0.1.0",
                "endpoints": {
                    "sse": "/events",
                    "health": "/health",
                    "views": "/views/{view_id}",
                    "tools": "/tools",
                },
            }

        @self.app.get("/health")
        async def health():
            return {
                "status": "healthy",
                "connections": len(self.connections),
                "open_views": len(booking_endpoint.views),
            }

        @self.app.get("/views/{view_id}")
        async def view_snapshot(view_id: str):
            """Current slots and selection of one view, for a UI (re)connecting."""
            return await booking_endpoint.get_view(view_id)

        @self.app.get("/events")
        async def events(request: Request, view_id: str | None = None):
            """Stream notices and availability snapshots."""
            if view_id is not None and view_id not in booking_endpoint.views:
                return {
                    "success": False,
                    "message": f"Unknown booking view {view_id}",
                }
            queue = self.connect(view_id)
            return EventSourceResponse(self._stream(queue, view_id))

        @self.app.post("/tools/{tool_name}")
        async def execute_tool(tool_name: str, request: Request):
            """Call an MCP tool over HTTP; its events reach /events through the listener."""
            try:
                body = await request.json()
            except ValueError as e:
                return {"success": False, "message": f"Request error: {e}"}
            params = body.get("params", {})

            tool = (await mcp.get_tools()).get(tool_name)
            if tool is None:
                return {"success": False, "message": f"Tool '{tool_name}' not found"}

            try:
                return {"success": True, "result": await tool.fn(**params)}
            except Exception as e:
                logger.error(f"Error executing tool {tool_name}: {e}")
                return {"success": False, "message": f"Error executing tool: {e}"}

        @self.app.get("/tools")
        async def list_tools():
            return {
                "tools": [
                    {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": (tool.parameters or {}).get("properties", {}),
                    }
                    for tool in (await mcp.get_tools()).values()
                ]
            }

    def connect(self, view_id: str | None = None) -> asyncio.Queue:
        """Register a connection queue, optionally bound to one view."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_SIZE)
        self.connections[queue] = view_id
        queue.put_nowait(
            {
                "type": "connected",
                "data": {"message": "Connected to CourtBook MCP SSE Server", "view_id": view_id},
            }
        )
        return queue

    def disconnect(self, queue: asyncio.Queue) -> None:
        self.connections.pop(queue, None)

    async def _stream(self, queue: asyncio.Queue, view_id: str | None):
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except TimeoutError:
                    yield {"event": "ping", "data": json.dumps({"timestamp": _timestamp()})}
                    continue
                yield {
                    "event": event.get("type", "message"),
                    "data": json.dumps(event.get("data", {})),
                }
                if event.get("type") == "view_closed":
                    break
        finally:
            self.disconnect(queue)
            logger.debug(f"SSE connection for view {view_id or '*'} closed")

    async def broadcast(self, event: dict[str, Any]):
        """Deliver a booking event to the connections following its view.

        Args:
            event: Event with "type" and "data" keys; "data.view_id" selects
                the receiving connections
        """
        target = (event.get("data") or {}).get("view_id")
        for queue, followed in list(self.connections.items()):
            if followed is not None and followed != target:
                continue
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Dropping {event.get('type')} event for a slow SSE connection")

    def run(self, host: str = "0.0.0.0", port: int = 8000):
        """Run the SSE server.

        Args:
            host: Host to bind to
            port: Port to bind to
        """
        logger.info(f"Starting SSE server on {host}:{port}")
        uvicorn.run(self.app, host=host, port=port, log_level="info")


# Global SSE manager instance; booking notices and refreshes are pushed to it
sse_manager = SSEManager()
booking_endpoint.add_listener(sse_manager.broadcast)


def run_sse_server(host: str = "0.0.0.0", port: int = 8000):
    """Run the SSE server in blocking mode."""
    sse_manager.run(host, port)


async def run_sse_server_async(host: str = "0.0.0.0", port: int = 8000) -> asyncio.Task:
    """Run the SSE server in non-blocking mode.

    Args:
        host: Host to bind to
        port: Port to bind to
    """
    server_config = uvicorn.Config(sse_manager.app, host=host, port=port, log_level="info")
    server = uvicorn.Server(server_config)

    return asyncio.create_task(server.serve())
