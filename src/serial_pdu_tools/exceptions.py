"""Custom exceptions for PDU serial operations."""

from __future__ import annotations

import enum
from typing import Optional


class ErrorCode(enum.Enum):
    """Closed taxonomy of device and channel failures."""

    NOT_CONNECTED = "NotConnected"
    ALREADY_CONNECTED = "AlreadyConnected"
    FAILED_CONNECTION = "FailedConnection"
    FAILED_DISCONNECT = "FailedDisconnect"
    TIMEOUT_CONFIGURATION_FAILED = "TimeoutConfigurationFailed"
    FAILED_WRITE = "FailedWrite"
    FAILED_READ = "FailedRead"
    INVALID_COMMAND = "InvalidCommand"
    COMMAND_FAILED = "CommandFailed"
    UNKNOWN_RESPONSE = "UnknownResponse"
    NO_RESPONSE = "NoResponse"


class SerialPDUToolsError(Exception):
    """Common base exception for all serial_pdu_tools errors."""
    pass


class SerialChannelError(SerialPDUToolsError):
    """Exception raised by a serial channel implementation.

    Raised when the port cannot be opened, configured, read from, written
    to, or closed. The protocol layer translates it into the matching
    ``PDUError`` subclass, so callers of the driver normally never see it.
    """
    pass


class ContractViolationError(SerialPDUToolsError, ValueError):
    """Exception for caller bugs detected before any I/O takes place.

    Covers wrong argument arity, outlet numbers outside {1, 2}, switch
    states other than OFF/ON and unknown timeout modes. These are never
    device faults and must not be retried.
    """
    pass


class PDUError(SerialPDUToolsError):
    """Base exception for device and channel failures.

    Attributes:
        code: The ``ErrorCode`` identifying the failure.
    """

    code: ErrorCode


class PDUNotConnectedError(PDUError):
    """Exception for operations attempted without an open connection."""
    code = ErrorCode.NOT_CONNECTED


class PDUAlreadyConnectedError(PDUError):
    """Exception for a connect while a connection is already live."""
    code = ErrorCode.ALREADY_CONNECTED


class PDUConnectionError(PDUError):
    """Exception for failures opening the serial port."""
    code = ErrorCode.FAILED_CONNECTION


class PDUDisconnectError(PDUError):
    """Exception for failures closing the serial port."""
    code = ErrorCode.FAILED_DISCONNECT


class PDUTimeoutConfigurationError(PDUError):
    """Exception for failures applying a read-timeout mode to the channel."""
    code = ErrorCode.TIMEOUT_CONFIGURATION_FAILED


class PDUWriteError(PDUError):
    """Exception for failures writing a command line."""
    code = ErrorCode.FAILED_WRITE


class PDUReadError(PDUError):
    """Exception for failures reading a response line."""
    code = ErrorCode.FAILED_READ


class PDUInvalidCommandError(PDUError):
    """Exception for command codes the device does not understand."""
    code = ErrorCode.INVALID_COMMAND


class PDUCommandFailedError(PDUError):
    """Exception for commands the device answered with the FAILED code."""
    code = ErrorCode.COMMAND_FAILED


class PDUUnknownResponseError(PDUError):
    """Exception for responses matching none of the expected patterns.

    Attributes:
        response: The response line that could not be interpreted.
    """
    code = ErrorCode.UNKNOWN_RESPONSE

    def __init__(self, message: str, *, response: Optional[str] = None) -> None:
        super().__init__(message)
        self.response = response


class PDUNoResponseError(PDUError):
    """Exception for a command that produced no response line at all."""
    code = ErrorCode.NO_RESPONSE
