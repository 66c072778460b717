"""HTTP host running the DNS responder, with health checks and MCP over Streamable HTTP."""

import json
import logging
from typing import Callable, Optional

from mcp.server.streamable_http_manager import StreamableHTTPSessionManager

from dns_responder import config
from dns_responder.responder import DNSResponder, ServerState, create_responder
from dns_responder.server import create_server

logger = logging.getLogger(__name__)


def create_http_server(responder: Optional[DNSResponder] = None) -> Callable:
    """Create the ASGI application hosting the responder.

    The ASGI lifespan starts and stops the responder, so the UDP listener
    lives exactly as long as the HTTP server. ``/health`` reports its state
    and ``/mcp`` serves the inspection tools.
    """
    if responder is None:
        responder = create_responder()
    mcp_server = create_server(responder)

    # Create the session manager for handling HTTP connections
    session_manager = StreamableHTTPSessionManager(
        app=mcp_server,
        json_response=False,  # Use SSE streaming
        stateless=False,  # Maintain session state
    )

    # Track whether the session manager is running
    session_manager_context = None

    async def json_response(send, status: int, payload: dict):
        await send({
            "type": "http.response.start",
            "status": status,
            "headers": [[b"content-type", b"application/json"]],
        })
        await send({
            "type": "http.response.body",
            "body": json.dumps(payload).encode(),
        })

    async def health_response(send):
        """Send a health check response."""
        if responder.state == ServerState.LISTENING:
            await json_response(send, 200, {"status": "healthy", "responder": responder.state.value})
        else:
            await json_response(send, 503, {"status": "unavailable", "responder": responder.state.value})

    async def app(scope, receive, send):
        """ASGI application entry point."""
        nonlocal session_manager_context

        if scope["type"] == "lifespan":
            while True:
                message = await receive()
                if message["type"] == "lifespan.startup":
                    try:
                        await responder.start()
                        session_manager_context = session_manager.run()
                        await session_manager_context.__aenter__()
                        logger.info("DNS responder and MCP session manager started")
                        await send({"type": "lifespan.startup.complete"})
                    except Exception as e:
                        logger.error(f"Startup failed: {e}")
                        await responder.stop()
                        await send({"type": "lifespan.startup.failed", "message": str(e)})
                elif message["type"] == "lifespan.shutdown":
                    if session_manager_context:
                        await session_manager_context.__aexit__(None, None, None)
                        logger.info("MCP session manager stopped")
                    await responder.stop()
                    await send({"type": "lifespan.shutdown.complete"})
                    return

        elif scope["type"] == "http":
            path = scope["path"]

            if path == "/health":
                await health_response(send)
            elif path == "/mcp":
                # Delegate to the MCP session manager
                await session_manager.handle_request(scope, receive, send)
            else:
                await json_response(send, 404, {"error": "Not found"})

    return app


def main():
    """Run the HTTP host."""
    import uvicorn

    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)

    host = config.DEFAULT_HTTP_HOST
    port = config.DEFAULT_HTTP_PORT

    logger.info(f"Starting DNS responder host on http://{host}:{port}")

    app = create_http_server()

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
