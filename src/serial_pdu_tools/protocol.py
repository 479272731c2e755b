"""Command/response protocol engine for the PDU.

One call to ``ProtocolEngine.execute`` is one complete exchange with the
device.  The device's serial behaviour dictates an unusual sequence:

1. **WAIT mode + write** — the command line goes out with a blocking read
   timeout in effect.
2. **Echo read** — the device echoes the command line back, but characters
   are routinely dropped in transit, so the echo is read only to get past
   it and never compared against what was sent.  The null probe does not
   produce this line reliably; a silent read is expected there.
3. **IMMEDIATE mode + response read** — the remaining lines are not all
   newline-terminated, so they are read without waiting.  The null probe's
   prompt sits one line further down than every other command's response.
4. **Settle delay** — the device answers *before* relays finish moving and
   never reports completion, so the engine dwells for a fixed time.
5. **Restore WAIT mode** — so the next exchange starts from a known state.
   A failure here is logged but never discards the captured response.

Any failure in steps 1–3 is raised immediately, without restoring WAIT
mode; the next exchange re-applies it in step 1.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Union

from typeguard import typechecked

from .channel import SerialChannel
from .codec import PDUCommand, build_command
from .connection import PDUConnection
from .exceptions import (
    ContractViolationError,
    PDUError,
    PDUNoResponseError,
    PDUNotConnectedError,
    PDUReadError,
    PDUWriteError,
    SerialChannelError,
)
from .types import TimeoutMode

logger = logging.getLogger("serial_pdu_tools.protocol")

_STRIP_CHARS = "\r\n\0 \t"


def _decode_line(raw: bytes) -> str:
    return raw.decode("ascii", errors="replace").strip(_STRIP_CHARS)


@typechecked
class ProtocolEngine:
    """Runs single command exchanges over a ``PDUConnection``.

    Example::

        connection = PDUConnection()
        connection.connect("/dev/ttyUSB0")
        engine = ProtocolEngine(connection)
        print(engine.execute(PDUCommand.GET_STATUS, context="read status"))
    """

    def __init__(
        self,
        connection: PDUConnection,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            connection: The connection whose channel every exchange uses.
            sleep: Blocking sleep primitive used for settle delays.
        """
        self.connection = connection
        self.sleep = sleep

    def execute(
        self,
        command: Union[PDUCommand, str],
        arg1: str = "",
        arg2: str = "",
        delay: Optional[float] = None,
        context: str = "execute PDU command",
    ) -> str:
        """Send one command and return the device's response line.

        Args:
            command: A ``PDUCommand`` or a raw wire code (``""`` for the
                null probe).
            arg1: First argument, ``""`` when absent.
            arg2: Second argument, ``""`` when absent.
            delay: Settle delay in seconds after the response is read.
                ``None`` uses the command's nominal delay.
            context: Description of the purpose, embedded into error messages.

        Returns:
            The response line with line terminators, NUL bytes and
            surrounding whitespace stripped.

        Raises:
            PDUNotConnectedError: If the connection is not open.
            PDUInvalidCommandError: If a raw code is not a known command.
            ContractViolationError: If the argument count is wrong.
            PDUTimeoutConfigurationError: If a timeout mode cannot be applied
                before the response is captured.
            PDUWriteError: If the command cannot be written.
            PDUReadError: If the echo (non-null commands) or response line
                cannot be read.
            PDUNoResponseError: If the response line is empty.
        """
        if not self.connection.is_connected():
            msg = f"[{context}] Cannot execute command: PDU is not connected."
            logger.error("[PDU-CMD] %s", msg)
            raise PDUNotConnectedError(msg)

        if not isinstance(command, PDUCommand):
            command = PDUCommand.from_code(command)
        line = build_command(command, arg1, arg2)
        settle = command.settle_delay if delay is None else delay
        if settle < 0:
            raise ContractViolationError(
                f"[{context}] Settle delay must not be negative, got {settle!r}s."
            )
        is_null = command is PDUCommand.NULL

        channel = self.connection.get_channel(context)
        port_name = channel.port

        logger.info(
            "[PDU-CMD] [%s] %s on %s: %r (settle %.2fs)",
            context, command.name, port_name, line, settle,
        )

        # ---- Phase 1: WAIT mode + write ----
        self.connection.set_timeout_mode(TimeoutMode.WAIT, context)
        try:
            channel.write_line(line, context)
        except SerialChannelError as exc:
            msg = f"[{context}] Failed to write {line!r} to PDU on {port_name}: {exc}"
            logger.error("[PDU-CMD] WRITE ERROR — %s", msg)
            raise PDUWriteError(msg) from exc

        # ---- Phase 2: echo line (discarded) ----
        try:
            echo = channel.read_line(context)
        except SerialChannelError as exc:
            if not is_null:
                msg = f"[{context}] Failed to read echo of {line!r} from {port_name}: {exc}"
                logger.error("[PDU-CMD] READ ERROR — %s", msg)
                raise PDUReadError(msg) from exc
            logger.debug("[PDU-CMD] [%s] Null probe echo read failed (expected): %s", context, exc)
            echo = b""

        if not echo and not is_null:
            msg = (
                f"[{context}] No echo received for {line!r} from PDU on {port_name} "
                f"within {self.connection.read_timeout:.2f}s. Check the cable, the "
                f"port, and that the PDU is powered."
            )
            logger.error("[PDU-CMD] READ ERROR — %s", msg)
            raise PDUReadError(msg)
        logger.debug("[PDU-CMD] [%s] Discarded echo %r", context, echo)

        # ---- Phase 3: IMMEDIATE mode + response line(s) ----
        self.connection.set_timeout_mode(TimeoutMode.IMMEDIATE, context)
        if is_null:
            # prompt marker is one line further down; the line before it may be empty
            skipped = self._read_line(channel, line, context)
            logger.debug("[PDU-CMD] [%s] Skipping null probe line %r", context, skipped)
        raw = self._read_response_line(channel, line, context)
        response = _decode_line(raw)

        # ---- Phase 4: settle ----
        if settle > 0:
            logger.debug("[PDU-CMD] [%s] Settling %.2fs", context, settle)
            self.sleep(settle)

        # ---- Phase 5: restore WAIT mode ----
        try:
            self.connection.set_timeout_mode(TimeoutMode.WAIT, context)
        except PDUError as exc:
            logger.warning(
                "[PDU-CMD] [%s] Could not restore WAIT mode on %s after %s: %s "
                "(response %r kept; timeout mode now unknown)",
                context, port_name, command.name, exc, response,
            )

        logger.info("[PDU-CMD] [%s] %s response: %r", context, command.name, response)
        return response

    def _read_line(self, channel: SerialChannel, line: str, context: str) -> bytes:
        try:
            return channel.read_line(context)
        except SerialChannelError as exc:
            msg = f"[{context}] Failed to read response to {line!r} from {channel.port}: {exc}"
            logger.error("[PDU-CMD] READ ERROR — %s", msg)
            raise PDUReadError(msg) from exc

    def _read_response_line(self, channel: SerialChannel, line: str, context: str) -> bytes:
        raw = self._read_line(channel, line, context)
        if not raw:
            msg = f"[{context}] PDU on {channel.port} sent no response to {line!r}."
            logger.error("[PDU-CMD] NO RESPONSE — %s", msg)
            raise PDUNoResponseError(msg)
        return raw
