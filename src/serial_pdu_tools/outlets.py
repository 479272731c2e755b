"""Typed outlet operations on top of the protocol engine."""

from __future__ import annotations

import logging
from typing import Union

from typeguard import typechecked

from . import (
    PDU_OUTLETS,
    PDU_PROMPT_MARKER,
    PDU_REBOOT_SETTLE_S,
    PDU_RESPONSE_FAILED,
    PDU_RESPONSE_OK,
    PDU_SWITCH_SETTLE_S,
)
from .codec import PDUCommand
from .exceptions import (
    ContractViolationError,
    PDUCommandFailedError,
    PDUUnknownResponseError,
)
from .protocol import ProtocolEngine
from .types import OutletStatus, SwitchState

logger = logging.getLogger("serial_pdu_tools.outlets")

_STATUS_DIGITS = {"0": SwitchState.OFF, "1": SwitchState.ON}


def _check_outlet(outlet: int, context: str) -> int:
    if isinstance(outlet, bool) or outlet not in PDU_OUTLETS:
        raise ContractViolationError(
            f"[{context}] Invalid outlet {outlet!r}. "
            f"The PDU has outlets {', '.join(str(o) for o in PDU_OUTLETS)}."
        )
    return outlet


def _check_state(state: Union[SwitchState, int], context: str) -> SwitchState:
    if isinstance(state, bool) or state not in (SwitchState.OFF, SwitchState.ON):
        raise ContractViolationError(
            f"[{context}] Invalid switch state {state!r}. "
            f"Use SwitchState.OFF (0) or SwitchState.ON (1)."
        )
    return SwitchState(state)


@typechecked
class OutletOperations:
    """Outlet-level operations: probe, status, switch, switch all, reboot.

    Every method either returns normally or raises a ``PDUError`` subclass.
    Invalid outlet numbers and states raise ``ContractViolationError`` before
    anything is written to the device.
    """

    def __init__(self, engine: ProtocolEngine) -> None:
        self.engine = engine

    def null_probe(self, context: str = "null probe") -> None:
        """Send the null command and expect the interactive prompt back.

        Raises:
            PDUUnknownResponseError: If the response does not end with ``>``.
        """
        response = self.engine.execute(PDUCommand.NULL, context=context)
        if not response.endswith(PDU_PROMPT_MARKER):
            msg = (
                f"[{context}] Expected the PDU prompt ending in "
                f"{PDU_PROMPT_MARKER!r}, got {response!r}."
            )
            logger.error("[PDU-PROBE] %s", msg)
            raise PDUUnknownResponseError(msg, response=response)
        logger.info("[PDU-PROBE] [%s] PDU is at its prompt (%r)", context, response)

    def get_status(self, context: str = "get outlet status") -> OutletStatus:
        """Return ``(outlet_1_state, outlet_2_state)``.

        Raises:
            PDUUnknownResponseError: If the response is not two 0/1 digits.
        """
        response = self.engine.execute(PDUCommand.GET_STATUS, context=context)
        if len(response) != 2 or any(ch not in _STATUS_DIGITS for ch in response):
            msg = (
                f"[{context}] Unexpected status response {response!r}; "
                f"expected one of '00', '01', '10', '11'."
            )
            logger.error("[PDU-STATUS] %s", msg)
            raise PDUUnknownResponseError(msg, response=response)
        status = (_STATUS_DIGITS[response[0]], _STATUS_DIGITS[response[1]])
        logger.info(
            "[PDU-STATUS] [%s] outlet 1=%s outlet 2=%s",
            context, status[0].name, status[1].name,
        )
        return status

    def get_outlet_state(self, outlet: int, context: str = "get outlet state") -> SwitchState:
        """Return the state of a single outlet."""
        outlet = _check_outlet(outlet, context)
        return self.get_status(context=context)[outlet - 1]

    def reboot(self, outlet: int, context: str = "reboot outlet") -> None:
        """Power-cycle *outlet* and wait out the device's reboot cycle."""
        outlet = _check_outlet(outlet, context)
        response = self.engine.execute(
            PDUCommand.REBOOT, str(outlet),
            delay=PDU_REBOOT_SETTLE_S, context=context,
        )
        self._check_ack(response, f"reboot outlet {outlet}", context)

    def switch(
        self,
        outlet: int,
        state: Union[SwitchState, int],
        context: str = "switch outlet",
    ) -> None:
        """Switch *outlet* to *state* and wait out the switch cycle."""
        outlet = _check_outlet(outlet, context)
        state = _check_state(state, context)
        response = self.engine.execute(
            PDUCommand.SWITCH_OUTLET, str(outlet), str(state.value),
            delay=PDU_SWITCH_SETTLE_S, context=context,
        )
        self._check_ack(response, f"switch outlet {outlet} {state.name}", context)

    def switch_all(
        self,
        state: Union[SwitchState, int],
        context: str = "switch all outlets",
    ) -> None:
        """Switch both outlets to *state* at once."""
        state = _check_state(state, context)
        response = self.engine.execute(
            PDUCommand.SWITCH_ALL, str(state.value),
            delay=PDU_SWITCH_SETTLE_S, context=context,
        )
        self._check_ack(response, f"switch all outlets {state.name}", context)

    def _check_ack(self, response: str, action: str, context: str) -> None:
        if response == PDU_RESPONSE_OK:
            logger.info("[PDU-ACK] [%s] %s: OK", context, action)
            return
        if response == PDU_RESPONSE_FAILED:
            msg = f"[{context}] PDU reported FAILED ({PDU_RESPONSE_FAILED}) for {action}."
            logger.error("[PDU-ACK] %s", msg)
            raise PDUCommandFailedError(msg)
        msg = (
            f"[{context}] Unexpected response {response!r} for {action}; expected "
            f"{PDU_RESPONSE_OK} (OK) or {PDU_RESPONSE_FAILED} (FAILED)."
        )
        logger.error("[PDU-ACK] %s", msg)
        raise PDUUnknownResponseError(msg, response=response)
