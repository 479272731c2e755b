"""Serial channel used to talk to the PDU.

``SerialChannel`` is the narrow byte-channel interface the protocol engine
consumes: open/close, write one line, read one line, and change the read
timeout. ``PySerialChannel`` implements it on top of ``serial.Serial``.

The PDU speaks 9600 8N1 without flow control; those are the defaults here.

A read timeout of ``0`` makes every read return immediately with whatever is
buffered; a positive value makes a read block until data arrives or the
timeout elapses. The protocol engine toggles between the two mid-exchange.
"""

from __future__ import annotations

import abc
import logging
import platform
from typing import List, Optional

import serial
import serial.tools.list_ports

from . import (
    PDU_BAUD_RATE,
    PDU_BYTESIZE,
    PDU_PARITY,
    PDU_STOPBITS,
    PDU_READ_TIMEOUT_S,
    PDU_WRITE_TIMEOUT_S,
)
from .exceptions import SerialChannelError

logger = logging.getLogger("serial_pdu_tools.channel")

_IS_WINDOWS = platform.system() == "Windows"

_LINE_TERMINATOR = b"\n"
_ENCODING = "ascii"

# Map string parity values to pyserial constants
_PARITY_MAP = {
    "N": serial.PARITY_NONE,
    "E": serial.PARITY_EVEN,
    "O": serial.PARITY_ODD,
}

# Map integer stopbits to pyserial constants
_STOPBITS_MAP = {
    1: serial.STOPBITS_ONE,
    2: serial.STOPBITS_TWO,
}

# Map integer bytesize to pyserial constants
_BYTESIZE_MAP = {
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}


class SerialChannel(abc.ABC):
    """Byte-oriented duplex channel with a settable read timeout.

    Implementations raise ``SerialChannelError`` for every I/O failure.
    """

    port: str

    @abc.abstractmethod
    def open(self, context: str) -> None:
        """Open the underlying port."""

    @abc.abstractmethod
    def close(self) -> None:
        """Close the underlying port."""

    @abc.abstractmethod
    def is_open(self) -> bool:
        """Return ``True`` while the port is open."""

    @abc.abstractmethod
    def set_read_timeout(self, timeout_s: float, context: str) -> None:
        """Set the read timeout; ``0`` means return immediately."""

    @abc.abstractmethod
    def write_line(self, text: str, context: str) -> int:
        """Write *text* followed by the line terminator; return bytes written."""

    @abc.abstractmethod
    def read_line(self, context: str) -> bytes:
        """Read up to and including the next line terminator.

        Returns whatever arrived before the read timed out when no
        terminator is seen, and ``b""`` when nothing arrived at all.
        """


def _write_all(
    ser: serial.Serial,
    data: bytes,
    port_name: str,
    context: str = "",
) -> int:
    """Write *all* bytes to the serial port and flush the OS transmit buffer.

    Does **not** catch pyserial exceptions; the caller translates them.

    Raises:
        SerialChannelError: If a short write is detected.
    """
    n = ser.write(data)
    if n != len(data):
        raise SerialChannelError(
            f"[{context}] Short write on {port_name}: "
            f"wrote {n}/{len(data)} bytes. "
            f"This usually means write_timeout is 0 (non-blocking) "
            f"and the kernel buffer is full."
        )
    ser.flush()
    logger.debug(
        "[PDU-WRITE-ALL] [%s] Wrote %d bytes to %s",
        context, n, port_name,
    )
    return n


class PySerialChannel(SerialChannel):
    """``SerialChannel`` backed by a pyserial port.

    Example::

        channel = PySerialChannel("/dev/ttyUSB0")
        channel.open(context="probe PDU")
        channel.write_line("$A5", context="probe PDU")
        print(channel.read_line(context="probe PDU"))
        channel.close()
    """

    def __init__(
        self,
        port: str,
        read_timeout: float = PDU_READ_TIMEOUT_S,
        write_timeout: Optional[float] = PDU_WRITE_TIMEOUT_S,
        baud_rate: int = PDU_BAUD_RATE,
        bytesize: int = PDU_BYTESIZE,
        parity: str = PDU_PARITY,
        stopbits: int = PDU_STOPBITS,
    ) -> None:
        """Initialize the channel without opening it.

        Args:
            port: Serial port path — e.g. ``/dev/ttyUSB0`` (Linux) or ``COM3`` (Windows).
            read_timeout: Initial read timeout in seconds.  Default: 2.0.
            write_timeout: Write timeout in seconds.  Default: 10.  ``None``
                          blocks forever.
            baud_rate: Baud rate (default: 9600).
            bytesize: Number of data bits (7 or 8; default: 8).
            parity: ``"N"``, ``"E"`` or ``"O"``.  Default: ``"N"``.
            stopbits: Number of stop bits (1 or 2; default: 1).

        Raises:
            SerialChannelError: If any parameter value is invalid.
        """
        self.port = port
        self.baud_rate = baud_rate
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout
        self._serial: Optional[serial.Serial] = None

        if bytesize not in _BYTESIZE_MAP:
            valid = ", ".join(str(k) for k in sorted(_BYTESIZE_MAP))
            raise SerialChannelError(
                f"Invalid bytesize {bytesize!r} for port {port}. "
                f"Must be one of: {valid}."
            )
        self.bytesize = _BYTESIZE_MAP[bytesize]

        parity_upper = parity.upper()
        if parity_upper not in _PARITY_MAP:
            valid = ", ".join(f'"{k}"' for k in sorted(_PARITY_MAP))
            raise SerialChannelError(
                f"Invalid parity {parity!r} for port {port}. "
                f"Must be one of: {valid}."
            )
        self.parity = _PARITY_MAP[parity_upper]

        if stopbits not in _STOPBITS_MAP:
            valid = ", ".join(str(k) for k in sorted(_STOPBITS_MAP))
            raise SerialChannelError(
                f"Invalid stopbits {stopbits!r} for port {port}. "
                f"Must be one of: {valid}."
            )
        self.stopbits = _STOPBITS_MAP[stopbits]

        if baud_rate <= 0:
            raise SerialChannelError(
                f"Invalid baud rate {baud_rate!r} for port {port}. "
                f"Baud rate must be a positive integer. The PDU uses 9600."
            )

        if read_timeout < 0:
            raise SerialChannelError(
                f"Invalid read_timeout {read_timeout!r} for port {port}. "
                f"Must be 0 (immediate) or a positive number of seconds."
            )

        logger.debug(
            "[PDU-CHANNEL] Configured %s — %d %d%s%s (read_timeout=%.2fs, write_timeout=%s)",
            port, baud_rate, bytesize, parity_upper, stopbits, read_timeout,
            f"{write_timeout:.2f}s" if write_timeout is not None else "None (blocking)",
        )

    def open(self, context: str) -> None:
        """Open the serial port.

        Raises:
            SerialChannelError: If the port cannot be opened.  The message
                includes the OS-level reason and a platform-specific hint.
        """
        if self.is_open():
            logger.debug("[PDU-OPEN] [%s] Port %s is already open — skipping", context, self.port)
            return

        logger.info(
            "[PDU-OPEN] [%s] Opening %s at %d baud ...", context, self.port, self.baud_rate,
        )

        try:
            self._serial = serial.Serial(
                port=self.port,
                baudrate=self.baud_rate,
                bytesize=self.bytesize,
                parity=self.parity,
                stopbits=self.stopbits,
                timeout=self.read_timeout,
                write_timeout=self.write_timeout,
                xonxoff=False,
                rtscts=False,
                dsrdtr=False,
            )
        except (serial.SerialException, OSError) as exc:
            msg = (
                f"[{context}] Failed to open serial port {self.port} at "
                f"{self.baud_rate} baud: {exc}. {self._platform_hint()}"
            )
            logger.error("[PDU-OPEN] FAILED — %s", msg)
            raise SerialChannelError(msg) from exc

        logger.info("[PDU-OPEN] [%s] Successfully opened %s", context, self.port)

    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def close(self) -> None:
        """Close the serial port.

        Raises:
            SerialChannelError: If the driver reports an error while closing.
                The handle is released either way.
        """
        if self._serial is None:
            logger.debug("[PDU-CLOSE] close() called on already-closed port %s", self.port)
            return

        try:
            self._serial.close()
        except (serial.SerialException, OSError) as exc:
            msg = f"Error closing serial port {self.port}: {exc}"
            logger.error("[PDU-CLOSE] %s", msg)
            raise SerialChannelError(msg) from exc
        finally:
            self._serial = None

        logger.info("[PDU-CLOSE] Closed %s", self.port)

    def get_serial(self) -> serial.Serial:
        """Return the underlying ``serial.Serial`` object.

        Raises:
            SerialChannelError: If the port is not open.
        """
        if self._serial is None or not self._serial.is_open:
            raise SerialChannelError(
                f"Cannot access serial port {self.port}: port is not open. "
                f"Call open() first."
            )
        return self._serial

    def set_read_timeout(self, timeout_s: float, context: str) -> None:
        ser = self.get_serial()
        try:
            ser.timeout = timeout_s
        except (serial.SerialException, ValueError, OSError) as exc:
            msg = (
                f"[{context}] Failed to set read timeout {timeout_s!r}s on "
                f"{self.port}: {exc}"
            )
            logger.error("[PDU-TIMEOUT] %s", msg)
            raise SerialChannelError(msg) from exc
        self.read_timeout = timeout_s

    def write_line(self, text: str, context: str) -> int:
        ser = self.get_serial()
        data = text.encode(_ENCODING) + _LINE_TERMINATOR
        try:
            return _write_all(ser, data, self.port, context=context)
        except (serial.SerialException, OSError) as exc:
            msg = (
                f"[{context}] Failed to write to serial port {self.port}: {exc}. "
                f"Attempted to send {len(data)} bytes: {data!r}."
            )
            logger.error("[PDU-WRITE] ERROR — %s", msg)
            raise SerialChannelError(msg) from exc

    def read_line(self, context: str) -> bytes:
        ser = self.get_serial()
        buffer = bytearray()
        try:
            while True:
                byte = ser.read(1)
                if not byte:
                    break
                buffer.extend(byte)
                if byte == _LINE_TERMINATOR:
                    break
        except (serial.SerialException, OSError) as exc:
            msg = (
                f"[{context}] Serial read error on {self.port} after "
                f"{len(buffer)} bytes: {exc}. The device may have been disconnected."
            )
            logger.error("[PDU-READ] ERROR — %s", msg)
            raise SerialChannelError(msg) from exc

        logger.debug(
            "[PDU-READ] [%s] %d bytes from %s (timeout=%ss): %r",
            context, len(buffer), self.port, self.read_timeout, bytes(buffer),
        )
        return bytes(buffer)

    # ---- Helpers ----

    @staticmethod
    def list_available_ports() -> List[str]:
        """Return a list of serial port names visible to the operating system."""
        ports = serial.tools.list_ports.comports()
        descriptions = []
        for p in ports:
            descriptions.append(f"{p.device} — {p.description}")
            logger.debug("[PDU-LIST] Found port: %s (%s)", p.device, p.description)
        return descriptions

    def _platform_hint(self) -> str:
        """Return a platform-specific troubleshooting hint."""
        available = ", ".join(p.device for p in serial.tools.list_ports.comports())
        if _IS_WINDOWS:
            return (
                "On Windows: verify the COM port number in Device Manager "
                "(Ports → COM & LPT) and that no other application has the port open. "
                f"Available ports: {available}."
            )
        return (
            "On Linux: verify the device path exists (ls /dev/ttyUSB* /dev/ttyS*), "
            "that your user is in the 'dialout' group, and that no other process "
            f"(minicom, screen, picocom) has the port open. Available ports: {available}."
        )
