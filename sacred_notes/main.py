"""
Main entry points for Sacred Notes.

``main()`` runs the MCP server over stdio; ``serve()`` runs the HTTP API
with uvicorn. Both open the database and load the theology corpus first.
"""

import asyncio

import uvicorn
from mcp.server.stdio import stdio_server

from .api import create_app
from .auth import cleanup_expired_sessions
from .config import settings
from .db import get_database
from .loader import load_theology_if_needed
from .logging import configure_logging, get_logger
from .tools import server

logger = get_logger(__name__)


async def _prepare_database():
    db = get_database()
    await load_theology_if_needed(db)
    cleanup_expired_sessions(db)
    return db


def main():
    """MCP server entry point."""
    configure_logging()

    async def run():
        await _prepare_database()
        logger.info("mcp_server_starting", db_path=str(settings.db_path))
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())

    asyncio.run(run())


def serve():
    """HTTP API entry point."""
    configure_logging()
    db = asyncio.run(_prepare_database())
    logger.info("http_server_starting", host=settings.host, port=settings.port)
    uvicorn.run(create_app(db), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
