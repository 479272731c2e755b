"""Read-timeout mode switching for the PDU serial channel."""

from __future__ import annotations

import logging
from typing import Optional

from typeguard import typechecked

from .channel import SerialChannel
from .exceptions import (
    ContractViolationError,
    PDUNotConnectedError,
    PDUTimeoutConfigurationError,
    SerialChannelError,
)
from .types import TimeoutMode

logger = logging.getLogger("serial_pdu_tools.timeouts")


@typechecked
class TimeoutController:
    """Switches a channel between the WAIT and IMMEDIATE read regimes.

    WAIT makes a line read block until data arrives or ``timeout_seconds``
    elapses.  IMMEDIATE makes it return whatever is already buffered; the
    device's prompt line is not newline-terminated, so reading it in WAIT
    mode would always sit out the full timeout.
    """

    def set_mode(
        self,
        channel: Optional[SerialChannel],
        mode: TimeoutMode,
        timeout_seconds: float,
        context: str = "set timeout mode",
    ) -> None:
        """Apply *mode* to *channel*.

        Raises:
            PDUNotConnectedError: If *channel* is missing or closed.
            ContractViolationError: If *mode* is not a ``TimeoutMode`` or the
                WAIT timeout is not positive.
            PDUTimeoutConfigurationError: If the channel rejects the setting.
        """
        if channel is None or not channel.is_open():
            msg = f"[{context}] Cannot set timeout mode {mode}: PDU is not connected."
            logger.error("[PDU-TIMEOUT] %s", msg)
            raise PDUNotConnectedError(msg)

        if mode is TimeoutMode.WAIT:
            if timeout_seconds <= 0:
                raise ContractViolationError(
                    f"[{context}] WAIT mode needs a positive timeout, got {timeout_seconds!r}s."
                )
            value = timeout_seconds
        elif mode is TimeoutMode.IMMEDIATE:
            value = 0.0
        else:
            raise ContractViolationError(f"[{context}] Unknown timeout mode {mode!r}.")

        try:
            channel.set_read_timeout(value, context)
        except SerialChannelError as exc:
            msg = (
                f"[{context}] Failed to apply {mode.value} mode "
                f"(read timeout {value}s) on {channel.port}: {exc}"
            )
            logger.error("[PDU-TIMEOUT] %s", msg)
            raise PDUTimeoutConfigurationError(msg) from exc

        logger.debug(
            "[PDU-TIMEOUT] [%s] %s mode on %s (read timeout %.3fs)",
            context, mode.value, channel.port, value,
        )
