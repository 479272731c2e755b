"""Type definitions for Serial PDU Tools."""

import enum
from typing import Tuple


class SwitchState(enum.IntEnum):
    """Power state of an outlet; the integer value is the wire digit."""

    OFF = 0
    ON = 1


class TimeoutMode(enum.Enum):
    """Read-timeout regime of the serial channel."""

    WAIT = "wait"            # block until data arrives or the timeout elapses
    IMMEDIATE = "immediate"  # return whatever is buffered, never block


class ConnectionState(enum.Enum):
    """Lifecycle state of the PDU connection."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    INITIALIZED = "initialized"


# Outlet status types
OutletStatus = Tuple[SwitchState, SwitchState]  # (outlet_1, outlet_2)
