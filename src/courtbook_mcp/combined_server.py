"""Combined server supporting both STDIO and SSE modes."""

import argparse
import asyncio
import contextlib
import logging

from .endpoints.booking import booking_endpoint
from .server import initialize as mcp_initialize
from .server import mcp
from .sse_server import run_sse_server_async

logger = logging.getLogger(__name__)

MODES = ("stdio", "sse", "both")


async def run_combined_server(
    mode: str = "stdio", sse_host: str = "0.0.0.0", sse_port: int = 8000
) -> None:
    """Run the server in the specified mode.

    Args:
        mode: Server mode ("stdio", "sse", or "both")
        sse_host: Host for SSE server
        sse_port: Port for SSE server
    """
    if mode not in MODES:
        logger.error(f"Unknown mode: {mode}")
        raise ValueError(f"Mode must be 'stdio', 'sse', or 'both', got: {mode}")

    logger.info(f"Starting CourtBook MCP Server in {mode} mode")
    await mcp_initialize()

    sse_task = None
    try:
        if mode in ("sse", "both"):
            logger.info(f"Running SSE server on {sse_host}:{sse_port}")
            sse_task = await run_sse_server_async(sse_host, sse_port)

        if mode in ("stdio", "both"):
            await mcp.run_async(show_banner=False)
        elif sse_task is not None:
            await sse_task
    finally:
        logger.info("Shutting down servers...")
        await booking_endpoint.close_all()
        if sse_task is not None and not sse_task.done():
            sse_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sse_task


def main() -> None:
    """Main entry point for combined server."""
    parser = argparse.ArgumentParser(description="CourtBook MCP Server")
    parser.add_argument(
        "--mode",
        choices=MODES,
        default="stdio",
        help="Server mode: stdio (MCP), sse (HTTP), or both",
    )
    parser.add_argument(
        "--sse-host", default="0.0.0.0", help="Host for SSE server (default: 0.0.0.0)"
    )
    parser.add_argument(
        "--sse-port", type=int, default=8000, help="Port for SSE server (default: 8000)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Wait for a debugger on port 5678"
    )

    args = parser.parse_args()

    # server.py may already have configured a log file; force the CLI level
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        force=True,
    )

    try:
        asyncio.run(
            run_combined_server(
                mode=args.mode, sse_host=args.sse_host, sse_port=args.sse_port
            )
        )
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception as e:
        logger.error(f"Server error: {e}")
        raise


if __name__ == "__main__":
    main()
