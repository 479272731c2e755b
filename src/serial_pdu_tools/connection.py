"""PDU connection: exclusive ownership of the serial channel.

Only one connection may be live per process.  The PDU protocol relies on
strictly ordered timeout-mode switches and line reads, so two owners of the
same device (or two devices driven through one code path) are refused
outright rather than left to interleave.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, ClassVar, Optional

from typeguard import typechecked

from . import DEFAULT_PDU_PORT, PDU_READ_TIMEOUT_S
from .channel import PySerialChannel, SerialChannel
from .exceptions import (
    ContractViolationError,
    PDUAlreadyConnectedError,
    PDUConnectionError,
    PDUDisconnectError,
    PDUError,
    PDUNotConnectedError,
    SerialChannelError,
)
from .timeouts import TimeoutController
from .types import ConnectionState, TimeoutMode

logger = logging.getLogger("serial_pdu_tools.connection")

ChannelFactory = Callable[[str, float], SerialChannel]


def pyserial_channel_factory(port: str, read_timeout: float) -> SerialChannel:
    return PySerialChannel(port, read_timeout=read_timeout)


@typechecked
class PDUConnection:
    """Owns the serial channel to the PDU and tracks its lifecycle state.

    States: ``DISCONNECTED`` → ``connect()`` → ``CONNECTED`` →
    ``mark_initialized()`` → ``INITIALIZED``; ``disconnect()`` returns to
    ``DISCONNECTED`` from either.
    """

    _live: ClassVar[Optional[PDUConnection]] = None
    _live_lock = threading.Lock()

    def __init__(
        self,
        channel_factory: ChannelFactory = pyserial_channel_factory,
        timeouts: Optional[TimeoutController] = None,
    ) -> None:
        """Initialize a disconnected connection.

        Args:
            channel_factory: Called as ``factory(port, read_timeout)`` to
                create an unopened ``SerialChannel``.  Defaults to a
                pyserial-backed channel.
            timeouts: Timeout controller to use.  A new one by default.
        """
        self.channel_factory = channel_factory
        self.timeouts = timeouts if timeouts is not None else TimeoutController()
        self.port: str = DEFAULT_PDU_PORT
        self.read_timeout: float = PDU_READ_TIMEOUT_S
        self.state = ConnectionState.DISCONNECTED
        self.timeout_mode: Optional[TimeoutMode] = None
        self._channel: Optional[SerialChannel] = None

    # ---- State ----

    def is_connected(self) -> bool:
        """``True`` in the CONNECTED and INITIALIZED states."""
        return self.state is not ConnectionState.DISCONNECTED

    def get_channel(self, context: str) -> SerialChannel:
        """Return the owned channel.

        Raises:
            PDUNotConnectedError: If the connection is not open.
        """
        if not self.is_connected() or self._channel is None:
            msg = (
                f"[{context}] PDU is not connected. "
                f"Call connect() or initialize() first."
            )
            logger.error("[PDU-CONN] %s", msg)
            raise PDUNotConnectedError(msg)
        return self._channel

    def set_timeout_mode(self, mode: TimeoutMode, context: str) -> None:
        """Apply *mode* with this connection's default WAIT timeout."""
        channel = self.get_channel(context)
        self.timeout_mode = None
        self.timeouts.set_mode(channel, mode, self.read_timeout, context=context)
        self.timeout_mode = mode

    def mark_initialized(self) -> None:
        if not self.is_connected():
            raise PDUNotConnectedError("Cannot mark a disconnected PDU as initialized.")
        self.state = ConnectionState.INITIALIZED

    # ---- Lifecycle primitives ----

    def connect(
        self,
        port: str = DEFAULT_PDU_PORT,
        timeout: float = PDU_READ_TIMEOUT_S,
        context: str = "connect",
    ) -> None:
        """Open the serial port and put it in WAIT mode.

        Raises:
            PDUAlreadyConnectedError: If this or any other connection is live.
            PDUConnectionError: If the port cannot be opened.
            PDUTimeoutConfigurationError: If WAIT mode cannot be applied.  The
                port is closed again before the error is raised.
            ContractViolationError: If *timeout* is not positive.  Nothing is
                opened.
        """
        if timeout <= 0:
            raise ContractViolationError(
                f"[{context}] Read timeout must be a positive number of seconds, "
                f"got {timeout!r}."
            )

        with PDUConnection._live_lock:
            if self.is_connected():
                msg = f"[{context}] PDU is already connected on {self.port}."
                logger.error("[PDU-CONNECT] %s", msg)
                raise PDUAlreadyConnectedError(msg)
            live = PDUConnection._live
            if live is not None and live is not self:
                msg = (
                    f"[{context}] Another PDU connection is already live on "
                    f"{live.port}; only one connection may be open at a time."
                )
                logger.error("[PDU-CONNECT] %s", msg)
                raise PDUAlreadyConnectedError(msg)

            logger.info(
                "[PDU-CONNECT] [%s] Connecting to PDU on %s (read timeout %.2fs) ...",
                context, port, timeout,
            )
            try:
                channel = self.channel_factory(port, timeout)
                channel.open(context)
            except SerialChannelError as exc:
                msg = f"[{context}] Failed to connect to PDU on {port}: {exc}"
                logger.error("[PDU-CONNECT] FAILED — %s", msg)
                raise PDUConnectionError(msg) from exc

            self._channel = channel
            self.port = port
            self.read_timeout = timeout
            self.state = ConnectionState.CONNECTED
            PDUConnection._live = self

        try:
            self.set_timeout_mode(TimeoutMode.WAIT, context)
        except (PDUError, ContractViolationError):
            logger.warning(
                "[PDU-CONNECT] [%s] Could not apply WAIT mode on %s — disconnecting",
                context, port,
            )
            try:
                self.disconnect(context=f"{context}/rollback")
            except PDUError as close_exc:
                logger.warning(
                    "[PDU-CONNECT] [%s] Rollback disconnect also failed: %s",
                    context, close_exc,
                )
            raise

        logger.info("[PDU-CONNECT] [%s] Connected to PDU on %s", context, port)

    def disconnect(self, context: str = "disconnect") -> None:
        """Close the serial port.

        The handle is released and the state returns to DISCONNECTED even
        when closing reports an error.

        Raises:
            PDUNotConnectedError: If already disconnected.
            PDUDisconnectError: If the port reported an error while closing.
        """
        with PDUConnection._live_lock:
            if not self.is_connected():
                msg = f"[{context}] Cannot disconnect: PDU is not connected."
                logger.error("[PDU-DISCONNECT] %s", msg)
                raise PDUNotConnectedError(msg)

            channel = self._channel
            self._channel = None
            self.state = ConnectionState.DISCONNECTED
            self.timeout_mode = None
            if PDUConnection._live is self:
                PDUConnection._live = None

            try:
                if channel is not None:
                    channel.close()
            except SerialChannelError as exc:
                msg = f"[{context}] Failed to close PDU port {self.port}: {exc}"
                logger.error("[PDU-DISCONNECT] FAILED — %s", msg)
                raise PDUDisconnectError(msg) from exc

        logger.info("[PDU-DISCONNECT] [%s] Disconnected from PDU on %s", context, self.port)
