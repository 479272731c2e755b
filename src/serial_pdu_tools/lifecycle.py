"""Connection lifecycle for the PDU: connect, initialize, terminate.

``PDUController`` is the entry point most callers want.  It wires a
``PDUConnection``, a ``ProtocolEngine`` and ``OutletOperations`` together and
adds the two composite sequences:

* ``initialize`` — the device ignores the first command it receives after
  power-up, so a fresh connection is negotiated, a null probe is spent to
  wake it, both outlets are rebooted and everything is switched off.
* ``terminate`` — switch everything off, then disconnect.  Refuses to drop
  the connection when switching off failed, unless forced.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Union

from typeguard import typechecked

from . import DEFAULT_PDU_PORT, PDU_READ_TIMEOUT_S
from .connection import ChannelFactory, PDUConnection, pyserial_channel_factory
from .exceptions import PDUError
from .outlets import OutletOperations
from .protocol import ProtocolEngine
from .types import ConnectionState, OutletStatus, SwitchState

logger = logging.getLogger("serial_pdu_tools.lifecycle")


@typechecked
class PDUController:
    """High-level driver for the dual-outlet PDU.

    Example::

        pdu = PDUController("/dev/ttyUSB0")
        pdu.initialize()
        pdu.switch(1, SwitchState.ON)
        print(pdu.get_status())
        pdu.terminate()

    Or, for short sessions against an already-initialized device::

        with PDUController("/dev/ttyUSB0") as pdu:
            print(pdu.get_status())
    """

    def __init__(
        self,
        port: str = DEFAULT_PDU_PORT,
        read_timeout: float = PDU_READ_TIMEOUT_S,
        channel_factory: ChannelFactory = pyserial_channel_factory,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the controller without touching the port.

        Args:
            port: Serial port path — e.g. ``/dev/ttyUSB0`` or ``COM3``.
            read_timeout: WAIT-mode read timeout in seconds (default: 2.0).
            channel_factory: Creates the ``SerialChannel``; pyserial by default.
            sleep: Blocking sleep primitive used for settle delays.
        """
        self.port = port
        self.read_timeout = read_timeout
        self.connection = PDUConnection(channel_factory=channel_factory)
        self.engine = ProtocolEngine(self.connection, sleep=sleep)
        self.outlets = OutletOperations(self.engine)

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    def is_connected(self) -> bool:
        return self.connection.is_connected()

    # ---- Lifecycle ----

    def connect(
        self,
        port: Optional[str] = None,
        timeout: Optional[float] = None,
        context: str = "connect",
    ) -> None:
        """Open the port (defaults to the values given at construction).

        Raises:
            PDUAlreadyConnectedError: If a connection is already live.
            PDUConnectionError: If the port cannot be opened.
            PDUTimeoutConfigurationError: If WAIT mode cannot be applied.
        """
        if port is not None:
            self.port = port
        if timeout is not None:
            self.read_timeout = timeout
        self.connection.connect(self.port, self.read_timeout, context=context)

    def disconnect(self, context: str = "disconnect") -> None:
        """Close the port.

        Raises:
            PDUNotConnectedError: If not connected.
            PDUDisconnectError: If closing failed.
        """
        self.connection.disconnect(context=context)

    def initialize(
        self,
        port: Optional[str] = None,
        timeout: Optional[float] = None,
        context: str = "initialize PDU",
    ) -> None:
        """Bring the PDU into a known state: connected, probed, rebooted, all OFF.

        Runs connect → null probe → reboot 1 → reboot 2 → switch all OFF.
        If any step fails, the port is closed (best effort) and the first
        error is raised; the state is INITIALIZED only after full success.
        """
        if self.connection.is_connected():
            logger.info(
                "[PDU-INIT] [%s] Already connected on %s — reconnecting for a fresh session",
                context, self.connection.port,
            )
            self.disconnect(context=f"{context}/reset")

        logger.info("[PDU-INIT] [%s] Initializing PDU on %s ...", context, port or self.port)
        self.connect(port, timeout, context=context)

        steps = (
            ("null probe", lambda ctx: self.outlets.null_probe(context=ctx)),
            ("reboot outlet 1", lambda ctx: self.outlets.reboot(1, context=ctx)),
            ("reboot outlet 2", lambda ctx: self.outlets.reboot(2, context=ctx)),
            ("switch all off", lambda ctx: self.outlets.switch_all(SwitchState.OFF, context=ctx)),
        )
        for index, (label, step) in enumerate(steps, start=1):
            logger.info("[PDU-INIT] [%s] Step %d/%d: %s", context, index, len(steps), label)
            try:
                step(f"{context}/{label}")
            except PDUError as exc:
                logger.error(
                    "[PDU-INIT] [%s] Step %d/%d (%s) failed: %s — disconnecting",
                    context, index, len(steps), label, exc,
                )
                self._disconnect_quietly(f"{context}/abort")
                raise

        self.connection.mark_initialized()
        logger.info("[PDU-INIT] [%s] PDU on %s initialized; all outlets OFF", context, self.port)

    def terminate(self, force: bool = False, context: str = "terminate PDU") -> None:
        """Switch all outlets OFF, then disconnect.

        Args:
            force: Disconnect even if switching off failed.  The switch error
                is still raised afterwards.
            context: Description of the purpose, embedded into error messages.

        Raises:
            PDUError: The switch-off error when it failed and ``force`` is
                false (the connection stays open), the disconnect error when
                closing failed, otherwise the switch-off error when forced.
        """
        switch_error: Optional[PDUError] = None
        try:
            self.outlets.switch_all(SwitchState.OFF, context=f"{context}/switch all off")
        except PDUError as exc:
            if not force:
                logger.error(
                    "[PDU-TERM] [%s] Switching off failed: %s — leaving the connection "
                    "open (pass force=True to disconnect anyway)",
                    context, exc,
                )
                raise
            logger.warning(
                "[PDU-TERM] [%s] Switching off failed: %s — disconnecting anyway (force)",
                context, exc,
            )
            switch_error = exc

        self.disconnect(context=f"{context}/disconnect")

        if switch_error is not None:
            raise switch_error
        logger.info("[PDU-TERM] [%s] PDU terminated; all outlets OFF", context)

    def _disconnect_quietly(self, context: str) -> None:
        if not self.connection.is_connected():
            return
        try:
            self.disconnect(context=context)
        except PDUError as exc:
            logger.warning("[PDU-DISCONNECT] [%s] Best-effort disconnect failed: %s", context, exc)

    # ---- Outlet operations ----

    def null_probe(self, context: str = "null probe") -> None:
        self.outlets.null_probe(context=context)

    def get_status(self, context: str = "get outlet status") -> OutletStatus:
        return self.outlets.get_status(context=context)

    def get_outlet_state(self, outlet: int, context: str = "get outlet state") -> SwitchState:
        return self.outlets.get_outlet_state(outlet, context=context)

    def reboot(self, outlet: int, context: str = "reboot outlet") -> None:
        self.outlets.reboot(outlet, context=context)

    def switch(
        self,
        outlet: int,
        state: Union[SwitchState, int],
        context: str = "switch outlet",
    ) -> None:
        self.outlets.switch(outlet, state, context=context)

    def switch_all(self, state: Union[SwitchState, int], context: str = "switch all outlets") -> None:
        self.outlets.switch_all(state, context=context)

    # ---- Context manager ----

    def __enter__(self) -> PDUController:
        """Context manager entry — connects unless already connected."""
        if not self.connection.is_connected():
            self.connect(context=f"Opening {self.port}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        """Context manager exit — releases the port; outlets are left as they are."""
        self._disconnect_quietly(context=f"Closing {self.port}")
