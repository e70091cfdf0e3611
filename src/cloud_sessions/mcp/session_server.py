"""MCP server exposing session lifecycle operations as tools.

Pattern: Tool Registry over the Session Registry
-------------------------------------------------
The server registers one MCP tool per lifecycle operation and forwards each
call to the same ``SessionRegistry`` the CLI uses, so an agent starting a
session goes through exactly the same handlers, persistence and audit
logging as a human would.

Identity comes from the environment: ``VAULT_TOKEN`` is required (there is
no one to prompt on stdio), and ``CLOUD_SESSIONS_CONFIG`` optionally points
at a settings file.  Handlers are blocking, so every tool call runs on a
worker thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Awaitable, Callable

from mcp.server import Server
from mcp.types import TextContent, Tool

from cloud_sessions.auth.session import VaultSession
from cloud_sessions.context import AppContext, build_context
from cloud_sessions.lifecycle.errors import LifecycleError
from cloud_sessions.lifecycle.switch import change_region, start_session_async
from cloud_sessions.settings import load_settings

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[list[TextContent]]]

_SESSION_ID_SCHEMA = {
    "type": "object",
    "properties": {"session_id": {"type": "string", "description": "Session id."}},
    "required": ["session_id"],
}


def _text(payload: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload))]


class SessionMCPServer:
    """Stdio MCP server over an ``AppContext``."""

    def __init__(self, ctx: AppContext, server_name: str = "cloud-sessions") -> None:
        self._ctx = ctx
        self._server = Server(server_name)
        self._tools: dict[str, Tool] = {}
        self._tool_handlers: dict[str, ToolHandler] = {}
        self._register_all_tools()
        logger.info("MCP server '%s' ready with tools %s", server_name, sorted(self._tools))

    # -- tool registration ----------------------------------------------------

    def _register_tool(
        self,
        name: str,
        description: str,
        input_schema: dict[str, Any],
        handler: ToolHandler,
    ) -> None:
        self._tools[name] = Tool(name=name, description=description, inputSchema=input_schema)
        self._tool_handlers[name] = handler

    def _register_all_tools(self) -> None:
        self._register_tool(
            name="list_sessions",
            description="List every session with its type, status and region.",
            input_schema={"type": "object", "properties": {}},
            handler=self._list_sessions,
        )
        self._register_tool(
            name="start_session",
            description="Start a session so its credentials become usable locally.",
            input_schema=_SESSION_ID_SCHEMA,
            handler=self._start_session,
        )
        self._register_tool(
            name="stop_session",
            description="Stop a session and withdraw its credentials.",
            input_schema=_SESSION_ID_SCHEMA,
            handler=self._stop_session,
        )
        self._register_tool(
            name="change_region",
            description="Change a session's default region (AWS) or location (Azure).",
            input_schema={
                "type": "object",
                "properties": {
                    "session_id": {"type": "string", "description": "Session id."},
                    "region": {"type": "string", "description": "Region or location name."},
                },
                "required": ["session_id", "region"],
            },
            handler=self._change_region,
        )
        self._register_tool(
            name="generate_credentials",
            description="Issue temporary AWS credentials for a session without starting it.",
            input_schema=_SESSION_ID_SCHEMA,
            handler=self._generate_credentials,
        )

    def list_tools(self) -> list[Tool]:
        return list(self._tools.values())

    async def call(self, name: str, arguments: dict[str, Any]) -> list[TextContent]:
        handler = self._tool_handlers.get(name)
        if handler is None:
            raise ValueError(f"Unknown tool: {name}")
        try:
            return await handler(arguments)
        except LifecycleError as exc:
            logger.warning("Tool %s failed: %s", name, exc)
            return _text({"error": type(exc).__name__, "message": str(exc)})

    # -- tool handlers --------------------------------------------------------

    async def _list_sessions(self, args: dict[str, Any]) -> list[TextContent]:
        return _text({"sessions": [s.to_dict() for s in self._ctx.workspace.sessions()]})

    async def _start_session(self, args: dict[str, Any]) -> list[TextContent]:
        session = await start_session_async(self._ctx.registry, args["session_id"])
        return _text({"status": session.status.value, "session_id": session.session_id})

    async def _stop_session(self, args: dict[str, Any]) -> list[TextContent]:
        handler = self._ctx.registry.handler_for_session(args["session_id"])
        session = await asyncio.to_thread(handler.stop, args["session_id"])
        return _text({"status": session.status.value, "session_id": session.session_id})

    async def _change_region(self, args: dict[str, Any]) -> list[TextContent]:
        session = self._ctx.workspace.get_session(args["session_id"])
        allowed = (
            self._ctx.settings.aws_regions if session.type.is_aws else self._ctx.settings.azure_locations
        )
        result = await asyncio.to_thread(
            change_region, self._ctx.registry, args["session_id"], args.get("region"), allowed
        )
        return _text({
            "session_id": result.session.session_id,
            "region": result.session.region,
            "status": result.session.status.value,
            "restarted": result.restarted,
            "restart_error": str(result.restart_error) if result.restart_error else None,
        })

    async def _generate_credentials(self, args: dict[str, Any]) -> list[TextContent]:
        handler = self._ctx.registry.aws_handler_for_session(args["session_id"])
        credentials = await asyncio.to_thread(handler.generate_credentials, args["session_id"])
        session = self._ctx.workspace.get_session(args["session_id"])
        return _text({"env": credentials.as_env(session.region), "ttl_seconds": credentials.ttl_seconds})

    # -- lifecycle ------------------------------------------------------------

    def setup_handlers(self) -> None:
        """Wire up MCP protocol handlers."""
        server = self._server

        @server.list_tools()
        async def list_tools() -> list[Tool]:
            return self.list_tools()

        @server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
            return await self.call(name, arguments)

    async def run(self) -> None:
        """Start the MCP server on stdio."""
        from mcp.server.stdio import stdio_server

        self.setup_handlers()
        async with stdio_server() as (read_stream, write_stream):
            await self._server.run(
                read_stream,
                write_stream,
                self._server.create_initialization_options(),
            )


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    token = os.environ.get("VAULT_TOKEN")
    if not token:
        raise RuntimeError("VAULT_TOKEN environment variable is required but not set")
    settings = load_settings(os.environ.get("CLOUD_SESSIONS_CONFIG"))
    ctx = build_context(settings, VaultSession.from_token(token))
    asyncio.run(SessionMCPServer(ctx).run())


if __name__ == "__main__":
    main()
