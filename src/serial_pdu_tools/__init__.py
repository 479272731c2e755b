"""
Serial PDU Tools - driver for a two-outlet switched power distribution unit

This package controls a serially attached dual-outlet PDU. It includes:

- **Outlet status** queries returning a typed state per outlet
- **Switching** of a single outlet or both outlets at once
- **Reboot** (power-cycle) of a single outlet
- **Warm-up sequence** that brings a freshly powered device into a known state
- **Lifecycle management** with a single process-wide connection and cleanup

The device's serial dialect is quirky: echoed command lines are unreliable,
responses are only partially newline-terminated, and physical switching is
never acknowledged. The protocol engine hides all of that behind plain
method calls that either return a result or raise a typed error.
"""

import logging
import os

logging.getLogger("serial_pdu_tools").addHandler(logging.NullHandler())

__version__ = "0.1.0"

# Serial device path of the PDU.
# On Windows this is a COM port (COM3, COM4, …).
# On Linux this is a /dev/ttyS*, /dev/ttyUSB*, or /dev/ttyACM* path.
# Override via the PDU_SERIAL_PORT environment variable.
DEFAULT_PDU_PORT = os.environ.get("PDU_SERIAL_PORT", "/dev/ttyUSB0")

# Serial line settings — fixed by the device firmware: 9600 8N1, no flow control
PDU_BAUD_RATE = 9600
PDU_BYTESIZE = 8       # 8 data bits
PDU_PARITY = "N"       # No parity
PDU_STOPBITS = 1       # 1 stop bit

# Timeout settings
PDU_READ_TIMEOUT_S = float(os.environ.get("PDU_READ_TIMEOUT_S", "2.0"))  # wait-mode read timeout
PDU_WRITE_TIMEOUT_S = 10  # seconds — blocking with failsafe; prevents infinite hangs

# Settle delays — dwell after each command while the relays physically move.
# The device answers before the action completes and never reports completion.
PDU_NULL_SETTLE_S = 0.0
PDU_STATUS_SETTLE_S = 0.0
PDU_SWITCH_SETTLE_S = 1.5   # observed switch cycle ~1 s
PDU_REBOOT_SETTLE_S = 3.0   # observed reboot cycle ~2 s

# Wire codes
PDU_RESPONSE_OK = "$A0"
PDU_RESPONSE_FAILED = "$AF"
PDU_PROMPT_MARKER = ">"

# Outlets addressable on the device
PDU_OUTLETS = (1, 2)
