"""
MailBridge MCP server - exposes a mailbox to an agent host over stdio

Handles:
- Tool listing and dispatch through the tool registry
- Startup checks for the SMTP transport and the IMAP session
- Optional auto-sync scheduling
- Graceful shutdown on SIGINT/SIGTERM
- Process exit on unhandled asynchronous errors
"""

import asyncio
import signal
import sys
from typing import Any, Dict, List, Optional

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server
from rich.console import Console

from mailbridge import __version__
from mailbridge.core.analytics import AnalyticsService
from mailbridge.core.email.imap import MailboxSession
from mailbridge.core.email.smtp import TransmissionClient
from mailbridge.server.handlers import MailToolHandlers, register_tools
from mailbridge.server.scheduler import SyncScheduler
from mailbridge.server.tools import ToolRegistry
from mailbridge.utils.config import AppConfig, load_config
from mailbridge.utils.errors import ConfigurationError, MailBridgeError
from mailbridge.utils.logging import LogManager, get_logger

SERVER_NAME = "mailbridge"

logger = get_logger(__name__)


class MailBridgeServer:
    """Owns the services behind the tool surface and their lifecycle."""

    def __init__(self, config: AppConfig, log_manager: LogManager):
        self.config = config
        self.log_manager = log_manager

        self.session = MailboxSession(cache_enabled=config.features.cache_enabled)
        self.transmission = TransmissionClient(config.smtp)
        self.analytics = AnalyticsService()

        self.handlers = MailToolHandlers(
            self.session,
            self.transmission,
            self.analytics,
            log_manager,
            features=config.features,
        )
        self.registry = register_tools(ToolRegistry(), self.handlers)
        self.scheduler = SyncScheduler(config.features, self.handlers.sync)
        self.server = self._build_server()

        self._stop: Optional[asyncio.Event] = None
        self._fatal_error: Optional[str] = None
        self._shut_down = False

    ## MCP Wiring

    def _build_server(self) -> Server:
        server = Server(SERVER_NAME, version=__version__)

        @server.list_tools()
        async def list_tools() -> List[types.Tool]:
            logger.debug("Listing available tools")
            return [
                types.Tool(name=meta.name, description=meta.description, inputSchema=meta.input_schema())
                for meta in self.registry.list_tools()
            ]

        # Arguments are validated by the registry so failures keep the structured payload
        @server.call_tool(validate_input=False)
        async def call_tool(name: str, arguments: Dict[str, Any]) -> types.CallToolResult:
            result = await self.registry.dispatch(name, arguments)
            return types.CallToolResult(
                content=[types.TextContent(type="text", text=result.text)],
                isError=result.is_error,
            )

        return server

    ## Lifecycle

    async def startup(self) -> None:
        """Verify SMTP and connect IMAP; either failing only limits features."""
        logger.info("Starting MailBridge MCP server...")

        logger.info("Verifying SMTP connection...")
        try:
            await self.transmission.verify_connection()
        except MailBridgeError as e:
            logger.warning(
                "SMTP connection failed - email sending features will be limited",
                extra={"data": {"error": e.message}},
            )
            logger.info("Make sure you are using the Bridge password, not the account password")

        imap = self.config.imap
        logger.info(f"Connecting to IMAP at {imap.host}:{imap.port}...")
        try:
            await self.session.connect(imap.host, imap.port, imap.username, imap.password, imap.secure)
            logger.info("IMAP connection established")
        except MailBridgeError as e:
            logger.warning(
                "IMAP connection failed - email reading features will be limited",
                extra={"data": {"error": e.message}},
            )
            logger.info(f"Make sure the mail bridge is running on {imap.host}:{imap.port}")

        self.scheduler.start()

    async def shutdown(self) -> None:
        """Stop scheduling, disconnect IMAP and close SMTP (once)."""
        if self._shut_down:
            return
        self._shut_down = True

        logger.info("Shutting down...")
        self.scheduler.stop()
        try:
            await self.session.disconnect()
        except Exception as e:
            logger.error(f"Error disconnecting IMAP: {e}")
        await self.transmission.close()
        logger.info("Server shutdown complete")

    def request_stop(self) -> None:
        if self._stop is not None and not self._stop.is_set():
            logger.info("Received shutdown signal, shutting down gracefully...")
            self._stop.set()

    def _handle_loop_exception(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        error = context.get("exception")
        message = context.get("message", "Unhandled error")
        logger.error(
            f"Unhandled asynchronous error: {message}",
            exc_info=(type(error), error, error.__traceback__) if error else None,
        )
        self._fatal_error = str(error or message)
        if self._stop is not None:
            self._stop.set()

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except NotImplementedError:
                signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(self.request_stop))

    async def run(self) -> int:
        """Serve over stdio until the host disconnects or a stop is requested.

        Returns:
            Process exit code: 0 after a clean shutdown, 1 after a fatal error
        """
        loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        loop.set_exception_handler(self._handle_loop_exception)
        self._install_signal_handlers(loop)

        try:
            await self.startup()

            async with stdio_server() as (read_stream, write_stream):
                serve = asyncio.create_task(
                    self.server.run(read_stream, write_stream, self.server.create_initialization_options())
                )
                stop = asyncio.create_task(self._stop.wait())
                logger.info("MailBridge MCP server started")

                done, pending = await asyncio.wait({serve, stop}, return_when=asyncio.FIRST_COMPLETED)
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

                if serve in done and serve.exception() is not None:
                    raise serve.exception()

        except Exception as e:
            logger.exception(f"Fatal server error: {e}")
            self._fatal_error = str(e)

        finally:
            await self.shutdown()

        return 1 if self._fatal_error else 0


## Entry Point


def main() -> None:
    """Console script entry point."""
    console = Console(stderr=True)

    try:
        config = load_config()
        log_manager = LogManager(
            debug=config.logging.debug,
            buffer_size=config.logging.buffer_size,
            log_file=config.logging.log_file,
        )
    except ConfigurationError as e:
        console.print(f"[red]{e.message}[/red]")
        sys.exit(1)

    server = MailBridgeServer(config, log_manager)
    try:
        exit_code = asyncio.run(server.run())
    except KeyboardInterrupt:
        logger.info("Server interrupted by user")
        exit_code = 0
    finally:
        log_manager.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
