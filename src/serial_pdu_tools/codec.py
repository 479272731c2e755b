"""Command table and command-line framing for the PDU."""

from __future__ import annotations

import enum

from . import (
    PDU_NULL_SETTLE_S,
    PDU_REBOOT_SETTLE_S,
    PDU_STATUS_SETTLE_S,
    PDU_SWITCH_SETTLE_S,
)
from .exceptions import ContractViolationError, PDUInvalidCommandError


class PDUCommand(enum.Enum):
    """Commands understood by the device.

    Each member carries its wire code, the number of arguments it takes,
    and the nominal settle delay to dwell after it is sent.
    """

    NULL = ("", 0, PDU_NULL_SETTLE_S)
    SWITCH_OUTLET = ("$A3", 2, PDU_SWITCH_SETTLE_S)
    REBOOT = ("$A4", 1, PDU_REBOOT_SETTLE_S)
    GET_STATUS = ("$A5", 0, PDU_STATUS_SETTLE_S)
    SWITCH_ALL = ("$A7", 1, PDU_SWITCH_SETTLE_S)

    def __init__(self, code: str, arity: int, settle_delay: float) -> None:
        self.code = code
        self.arity = arity
        self.settle_delay = settle_delay

    @classmethod
    def from_code(cls, code: str) -> PDUCommand:
        """Look up a command by its wire code (``""`` is the null probe).

        Raises:
            PDUInvalidCommandError: If the code is not one the device knows.
        """
        for command in cls:
            if command.code == code:
                return command
        known = ", ".join(repr(c.code) for c in cls)
        raise PDUInvalidCommandError(
            f"Unknown PDU command code {code!r}. Known codes: {known}."
        )


def build_command(command: PDUCommand, arg1: str = "", arg2: str = "") -> str:
    """Frame *command* and its arguments as a single command line.

    Arguments are joined with single spaces and absent (empty) trailing
    arguments are omitted.  No line terminator is appended.

    The device cannot reliably report malformed commands, so arity is
    checked here before anything reaches the wire.

    Raises:
        ContractViolationError: If the argument count does not match the
            command's arity.
    """
    given = [arg for arg in (arg1, arg2) if arg]
    if command.arity == 0:
        valid = not arg1 and not arg2
    elif command.arity == 1:
        valid = bool(arg1) and not arg2
    else:
        valid = bool(arg1) and bool(arg2)

    if not valid:
        raise ContractViolationError(
            f"Command {command.name} ({command.code or 'null'}) takes "
            f"{command.arity} argument(s), got arg1={arg1!r} arg2={arg2!r}."
        )

    return " ".join([command.code] + given)
