"""IMAP connection management - handles connection setup, loss and reconnection."""

import asyncio
import ssl
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

import aioimaplib

from mailbridge.core.email.constants import IMAPResponse, Timeouts
from mailbridge.utils.errors import (
    IMAPError,
    MailBridgeError,
    NetworkError,
    NetworkTimeoutError,
    NotConnectedError,
)
from mailbridge.utils.logging import async_log_call, get_logger

logger = get_logger(__name__)

LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")


class ConnectionState(str, Enum):
    """Lifecycle states of the mailbox connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class ConnectionParams:
    """Parameters of the last connection attempt, reused for reconnects."""

    host: str = "localhost"
    port: int = 1143
    username: Optional[str] = None
    password: Optional[str] = None
    secure: bool = False

    def __repr__(self) -> str:
        return (
            f"ConnectionParams(host={self.host!r}, port={self.port}, "
            f"username={self.username!r}, secure={self.secure})"
        )


@dataclass
class ConnectionStats:
    """Tracks IMAP connection metrics."""

    connections_created: int = 0
    reconnections: int = 0
    connections_lost: int = 0
    failed_attempts: int = 0


def check_response(response, operation: str, **details: Any) -> None:
    """Raise ``IMAPError`` unless the server answered OK.

    Args:
        response: aioimaplib Response
        operation: Description of the operation performed
        **details: Extra context recorded on the error

    Raises:
        IMAPError: With the server's text in ``details["response"]``
    """
    if response.result == IMAPResponse.OK:
        return

    lines = [
        line.decode("utf-8", errors="replace") if isinstance(line, (bytes, bytearray)) else str(line)
        for line in (response.lines or [])
    ]
    text = " ".join(lines) if lines else "No response"
    raise IMAPError(
        f"IMAP operation failed: {operation}",
        details={"response": text, "result": str(response.result), "operation": operation, **details},
    )


def create_client(params: ConnectionParams, on_lost: Callable) -> aioimaplib.IMAP4:
    """Build an unconnected aioimaplib client wired to ``on_lost``."""
    ssl_context = None
    if params.secure:
        ssl_context = ssl.create_default_context()
        # Local bridges present self-signed certificates
        if params.host in LOCAL_HOSTS:
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

    return aioimaplib.IMAP4(
        host=params.host,
        port=params.port,
        timeout=Timeouts.IMAP_COMMAND,
        conn_lost_cb=on_lost,
        ssl_context=ssl_context,
    )


class IMAPConnection:
    """Manages an IMAP connection lifecycle.

    ``disconnected -> connecting -> connected``, and back to ``disconnected``
    on explicit close or when the transport reports the connection lost.
    The last parameters are kept so ``ensure_connected`` can make exactly
    one reconnect attempt; a failed attempt propagates its error.
    """

    def __init__(self, client_factory: Optional[Callable] = None):
        """Initialise the connection.

        Args:
            client_factory: ``(params, on_lost) -> client``; defaults to
                ``create_client``
        """
        self._client_factory = client_factory or create_client
        self._client = None
        self._lock = asyncio.Lock()
        self._generation = 0
        self.state = ConnectionState.DISCONNECTED
        self.params: Optional[ConnectionParams] = None
        self.last_error: Optional[str] = None
        self.last_check: Optional[datetime] = None
        self._stats = ConnectionStats()

    @property
    def client(self):
        """The live client; raises if there is none."""
        if self._client is None or self.state != ConnectionState.CONNECTED:
            raise NotConnectedError()
        return self._client

    def is_active(self) -> bool:
        return self._client is not None and self.state == ConnectionState.CONNECTED

    def get_stats(self) -> ConnectionStats:
        return self._stats

    async def connect(self, params: Optional[ConnectionParams] = None) -> None:
        """Connect (or reconnect) and authenticate.

        Args:
            params: New parameters; the stored ones are reused when omitted

        Raises:
            NotConnectedError: If no parameters were ever supplied
            NetworkTimeoutError: If the greeting or login times out
            IMAPError: If the server rejects the login
            NetworkError: If the transport fails
        """
        async with self._lock:
            if params is not None:
                self.params = params
            await self._open()

    async def ensure_connected(self):
        """Return a live client, reconnecting once if the session dropped.

        Raises:
            NotConnectedError: If there is nothing to reconnect with
            NetworkError: If the single reconnect attempt fails
        """
        async with self._lock:
            if self.is_active():
                return self._client

            if self.params is None:
                raise NotConnectedError(
                    "IMAP client not connected",
                    details={"reason": "no connection parameters stored"},
                )

            logger.warning("IMAP connection lost, attempting to reconnect")
            self._stats.reconnections += 1
            await self._open()
            return self._client

    async def get_client(self):
        return await self.ensure_connected()

    async def _open(self) -> None:
        params = self.params
        if params is None:
            raise NotConnectedError("Cannot connect: no connection parameters stored")

        await self._discard_client()

        self._generation += 1
        generation = self._generation
        self.state = ConnectionState.CONNECTING
        self.last_check = datetime.now(timezone.utc)
        start_time = time.time()

        logger.debug(
            "Connecting to IMAP server",
            extra={"data": {"host": params.host, "port": params.port}},
        )

        def on_lost(exc=None):
            if generation == self._generation:
                self._handle_connection_lost(exc)

        client = None
        try:
            client = self._client_factory(params, on_lost)
            await asyncio.wait_for(
                client.wait_hello_from_server(), timeout=Timeouts.IMAP_CONNECT
            )

            if params.username and params.password:
                response = await asyncio.wait_for(
                    client.login(params.username, params.password),
                    timeout=Timeouts.IMAP_CONNECT,
                )
                check_response(response, "login", host=params.host)

        except asyncio.TimeoutError as e:
            await self._abandon(client)
            self._mark_failed("IMAP connection timeout")
            raise NetworkTimeoutError(
                "IMAP connection timeout",
                details={"host": params.host, "port": params.port},
            ) from e

        except MailBridgeError as e:
            await self._abandon(client)
            self._mark_failed(e.message)
            raise

        except Exception as e:
            await self._abandon(client)
            self._mark_failed(str(e))
            raise NetworkError(
                f"Failed to connect to IMAP server: {e}",
                details={"host": params.host, "port": params.port},
            ) from e

        self._client = client
        self.state = ConnectionState.CONNECTED
        self.last_error = None
        self._stats.connections_created += 1

        logger.info(
            "IMAP connection established",
            extra={
                "data": {
                    "host": params.host,
                    "port": params.port,
                    "duration_seconds": round(time.time() - start_time, 2),
                }
            },
        )

    def _mark_failed(self, error: str) -> None:
        self.state = ConnectionState.DISCONNECTED
        self._client = None
        self.last_error = error
        self._stats.failed_attempts += 1
        logger.error("IMAP connection failed", extra={"data": {"error": error}})

    def _handle_connection_lost(self, exc: Optional[BaseException]) -> None:
        if self.state == ConnectionState.DISCONNECTED:
            return
        self.state = ConnectionState.DISCONNECTED
        self._client = None
        self._stats.connections_lost += 1
        if exc is not None:
            self.last_error = str(exc)
        logger.warning(
            "IMAP connection closed",
            extra={"data": {"error": str(exc) if exc else None}},
        )

    async def _discard_client(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        await self._abandon(client)

    async def _abandon(self, client) -> None:
        """Log out a client that will not be used again, ignoring errors."""
        if client is None:
            return
        # Invalidate the client's loss callback before closing it
        self._generation += 1
        try:
            await asyncio.wait_for(client.logout(), timeout=5.0)
        except Exception as e:
            logger.debug(f"Error closing stale IMAP connection: {e}")

    @async_log_call
    async def disconnect(self) -> None:
        """Log out and close the connection. Stored parameters are kept."""
        async with self._lock:
            was_active = self.is_active()
            await self._discard_client()
            self.state = ConnectionState.DISCONNECTED
            if was_active:
                logger.info("IMAP disconnected")

    def status(self) -> Dict[str, Any]:
        """Connection summary for the status tool."""
        params = self.params or ConnectionParams()
        status = {
            "connected": self.is_active(),
            "state": self.state.value,
            "host": params.host,
            "port": params.port,
            "last_check": self.last_check.isoformat() if self.last_check else None,
        }
        if self.last_error:
            status["error"] = self.last_error
        return status

    ## Context Manager Helpers

    async def __aenter__(self):
        await self.ensure_connected()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
