"""
Protocol engine test suite.

Drives ``ProtocolEngine.execute`` against a scripted in-process channel and
checks the exact order of timeout-mode switches, writes, reads and settle
delays for every kind of exchange, plus every failure path.

Run with full visibility:
    pytest tests/test_protocol.py -v -s
"""

from __future__ import annotations

import sys
from typing import List

import pytest

# ---------------------------------------------------------------------------
# Dependency gate — report clearly if anything is missing
# ---------------------------------------------------------------------------
_MISSING: List[str] = []

try:
    import serial  # noqa: F401
except ImportError:
    _MISSING.append("pyserial")

try:
    from typeguard import typechecked  # noqa: F401
except ImportError:
    _MISSING.append("typeguard")

# typeguard 4.x raises TypeCheckError (extends Exception, not TypeError).
# typeguard 2.x raises plain TypeError.  Accept either in enforcement tests.
try:
    from typeguard import TypeCheckError
    _TYPEGUARD_ERRORS = (TypeError, TypeCheckError)
except ImportError:
    _TYPEGUARD_ERRORS = (TypeError,)

if _MISSING:
    print(
        "\n"
        "=" * 72 + "\n"
        "  MISSING REQUIRED LIBRARIES\n"
        "=" * 72 + "\n"
        f"  The following packages are not installed: {', '.join(_MISSING)}\n"
        f"  Install them with:  pip install {' '.join(_MISSING)}\n"
        "=" * 72 + "\n",
        file=sys.stderr,
    )
    pytest.skip(
        f"Required libraries missing: {', '.join(_MISSING)}",
        allow_module_level=True,
    )

from serial_pdu_tools.codec import PDUCommand
from serial_pdu_tools.connection import PDUConnection
from serial_pdu_tools.exceptions import (
    ContractViolationError,
    ErrorCode,
    PDUInvalidCommandError,
    PDUNoResponseError,
    PDUNotConnectedError,
    PDUReadError,
    PDUTimeoutConfigurationError,
    PDUWriteError,
    SerialChannelError,
)
from serial_pdu_tools.protocol import ProtocolEngine
from serial_pdu_tools.types import TimeoutMode

from simulated_pdu import RecordingSleep, ScriptedChannel

WAIT_S = 2.0


# ═══════════════════════════════════════════════════════════════════════════
#  HELPERS
# ═══════════════════════════════════════════════════════════════════════════

def _report(label: str, detail: str = "") -> None:
    """Uniform test-level print."""
    if detail:
        print(f"  [{label}] {detail}")
    else:
        print(f"  [{label}]")


# ═══════════════════════════════════════════════════════════════════════════
#  FIXTURES
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture()
def channel():
    return ScriptedChannel(port="SIM0", read_timeout=WAIT_S)


@pytest.fixture()
def connection(channel: ScriptedChannel):
    """A connected PDUConnection with the connect-time WAIT switch cleared."""
    conn = PDUConnection(channel_factory=lambda port, timeout: channel)
    conn.connect("SIM0", WAIT_S, context="protocol test connect")
    channel.events.clear()
    yield conn
    if conn.is_connected():
        conn.disconnect(context="protocol test teardown")


@pytest.fixture()
def engine(connection: PDUConnection, channel: ScriptedChannel):
    return ProtocolEngine(connection, sleep=RecordingSleep(channel.events))


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Successful exchanges
# ═══════════════════════════════════════════════════════════════════════════

class TestExchangeSequence:
    """Order of timeout switches, writes, reads and the settle delay."""

    def test_status_exchange(self, engine: ProtocolEngine, channel: ScriptedChannel) -> None:
        _report("TEST", "GET_STATUS: WAIT, write, echo, IMMEDIATE, response, WAIT")
        channel.script = [b"$A5\r\n", b"10\x00\r\n"]

        response = engine.execute(PDUCommand.GET_STATUS, context="test status")

        _report("RESULT", f"response={response!r} events={channel.events}")
        assert response == "10"
        assert channel.events == [
            ("timeout", WAIT_S),
            ("write", "$A5"),
            ("read", b"$A5\r\n"),
            ("timeout", 0.0),
            ("read", b"10\x00\r\n"),
            ("timeout", WAIT_S),
        ]
        _report("PASS", "Exact sequence, no settle delay for a query")

    def test_switch_exchange_dwells_before_restoring(
        self, engine: ProtocolEngine, channel: ScriptedChannel,
    ) -> None:
        _report("TEST", "SWITCH_OUTLET dwells its nominal settle delay")
        channel.script = [b"$A3 1 1\r\n", b"$A0\x00\r\n"]

        response = engine.execute(PDUCommand.SWITCH_OUTLET, "1", "1", context="test switch")

        assert response == "$A0"
        assert channel.events[-2:] == [
            ("sleep", PDUCommand.SWITCH_OUTLET.settle_delay),
            ("timeout", WAIT_S),
        ]
        assert ("write", "$A3 1 1") in channel.events
        _report("PASS", "Settle delay sits between response and WAIT restore")

    def test_explicit_delay_overrides_nominal(
        self, engine: ProtocolEngine, channel: ScriptedChannel,
    ) -> None:
        channel.script = [b"$A4 2\r\n", b"$A0\r\n"]
        engine.execute(PDUCommand.REBOOT, "2", delay=0.25, context="test delay")
        assert engine.sleep.calls == [0.25]

    def test_zero_delay_does_not_sleep(
        self, engine: ProtocolEngine, channel: ScriptedChannel,
    ) -> None:
        channel.script = [b"$A7 0\r\n", b"$A0\r\n"]
        engine.execute(PDUCommand.SWITCH_ALL, "0", delay=0.0, context="test no delay")
        assert engine.sleep.calls == []

    def test_garbled_echo_is_not_validated(
        self, engine: ProtocolEngine, channel: ScriptedChannel,
    ) -> None:
        _report("TEST", "Echo with dropped characters is skipped, not checked")
        channel.script = [b"$3 1\r\n", b"$A0\r\n"]
        assert engine.execute(PDUCommand.SWITCH_OUTLET, "2", "0", context="test garbled") == "$A0"
        _report("PASS", "Garbled echo ignored")

    def test_raw_code_string_is_accepted(
        self, engine: ProtocolEngine, channel: ScriptedChannel,
    ) -> None:
        channel.script = [b"$A5\r\n", b"01\r\n"]
        assert engine.execute("$A5", context="test raw code") == "01"
        assert channel.writes == ["$A5"]

    def test_response_whitespace_and_nul_are_stripped(
        self, engine: ProtocolEngine, channel: ScriptedChannel,
    ) -> None:
        channel.script = [b"$A5\r\n", b"  11 \x00\x00\r\n"]
        assert engine.execute(PDUCommand.GET_STATUS, context="test strip") == "11"

    def test_connection_ends_in_wait_mode(
        self, engine: ProtocolEngine, channel: ScriptedChannel, connection: PDUConnection,
    ) -> None:
        channel.script = [b"$A5\r\n", b"00\r\n"]
        engine.execute(PDUCommand.GET_STATUS, context="test final mode")
        assert connection.timeout_mode is TimeoutMode.WAIT
        assert channel.read_timeout == WAIT_S


class TestNullCommand:
    """The null probe's response sits one line further down."""

    def test_null_reads_three_lines(self, engine: ProtocolEngine, channel: ScriptedChannel) -> None:
        _report("TEST", "NULL: echo, blank line, prompt")
        channel.script = [b"\r\n", b"\r\n", b"PDU>"]

        response = engine.execute(PDUCommand.NULL, context="test null")

        _report("RESULT", f"response={response!r}")
        assert response == "PDU>"
        assert channel.writes == [""]
        reads = [e for e in channel.events if e[0] == "read"]
        assert len(reads) == 3
        assert channel.timeouts == [WAIT_S, 0.0, WAIT_S]
        _report("PASS", "Prompt taken from the third line")

    def test_null_tolerates_empty_echo(self, engine: ProtocolEngine, channel: ScriptedChannel) -> None:
        channel.script = [b"", b"\r\n", b"PDU>"]
        assert engine.execute(PDUCommand.NULL, context="test null empty echo") == "PDU>"

    def test_null_tolerates_failed_echo_read(
        self, engine: ProtocolEngine, channel: ScriptedChannel,
    ) -> None:
        _report("TEST", "A failing first read is expected for NULL")
        channel.script = [SerialChannelError("simulated read fault"), b"\r\n", b"PDU>"]
        assert engine.execute(PDUCommand.NULL, context="test null failed echo") == "PDU>"
        _report("PASS", "Failed echo read tolerated for NULL")

    def test_null_missing_prompt_line_is_no_response(
        self, engine: ProtocolEngine, channel: ScriptedChannel,
    ) -> None:
        channel.script = [b"\r\n", b"\r\n"]
        with pytest.raises(PDUNoResponseError):
            engine.execute(PDUCommand.NULL, context="test null no prompt")

    def test_null_tolerates_empty_skipped_line(
        self, engine: ProtocolEngine, channel: ScriptedChannel,
    ) -> None:
        _report("TEST", "An empty line before the prompt does not abort the probe")
        channel.script = [b"\r\n", b"", b"PDU>"]
        assert engine.execute(PDUCommand.NULL, context="test null empty skip") == "PDU>"
        reads = [e for e in channel.events if e[0] == "read"]
        assert len(reads) == 3
        _report("PASS", "Prompt read from the following line")

    def test_null_skipped_line_read_error_is_failed_read(
        self, engine: ProtocolEngine, channel: ScriptedChannel,
    ) -> None:
        channel.script = [b"\r\n", SerialChannelError("device unplugged"), b"PDU>"]
        with pytest.raises(PDUReadError):
            engine.execute(PDUCommand.NULL, context="test null skip error")


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Failures
# ═══════════════════════════════════════════════════════════════════════════

class TestExchangeFailures:
    """Every failure is raised at once; nothing is retried."""

    def test_empty_echo_is_failed_read(self, engine: ProtocolEngine, channel: ScriptedChannel) -> None:
        _report("TEST", "Silent line after a non-null command")
        channel.script = []
        with pytest.raises(PDUReadError) as exc_info:
            engine.execute(PDUCommand.GET_STATUS, context="test silent")
        assert exc_info.value.code is ErrorCode.FAILED_READ
        assert channel.timeouts == [WAIT_S]
        _report("PASS", "FailedRead before switching to IMMEDIATE")

    def test_echo_read_error_is_failed_read(
        self, engine: ProtocolEngine, channel: ScriptedChannel,
    ) -> None:
        channel.script = [SerialChannelError("device unplugged")]
        with pytest.raises(PDUReadError) as exc_info:
            engine.execute(PDUCommand.REBOOT, "1", context="test echo error")
        assert isinstance(exc_info.value.__cause__, SerialChannelError)

    def test_response_read_error_is_failed_read(
        self, engine: ProtocolEngine, channel: ScriptedChannel,
    ) -> None:
        channel.script = [b"$A5\r\n", SerialChannelError("device unplugged")]
        with pytest.raises(PDUReadError):
            engine.execute(PDUCommand.GET_STATUS, context="test response error")

    def test_missing_response_is_no_response_and_mode_not_restored(
        self, engine: ProtocolEngine, channel: ScriptedChannel, connection: PDUConnection,
    ) -> None:
        _report("TEST", "Echo but no response line")
        channel.script = [b"$A5\r\n"]
        with pytest.raises(PDUNoResponseError) as exc_info:
            engine.execute(PDUCommand.GET_STATUS, context="test no response")
        assert exc_info.value.code is ErrorCode.NO_RESPONSE
        # short-circuit: no WAIT restore, no settle
        assert channel.timeouts == [WAIT_S, 0.0]
        assert connection.timeout_mode is TimeoutMode.IMMEDIATE
        assert engine.sleep.calls == []
        _report("PASS", "NoResponse raised, channel left in IMMEDIATE mode")

    def test_next_exchange_starts_in_wait_mode_after_failure(
        self, engine: ProtocolEngine, channel: ScriptedChannel,
    ) -> None:
        channel.script = [b"$A5\r\n"]
        with pytest.raises(PDUNoResponseError):
            engine.execute(PDUCommand.GET_STATUS, context="test fail first")
        channel.events.clear()
        channel.script = [b"$A5\r\n", b"11\r\n"]
        assert engine.execute(PDUCommand.GET_STATUS, context="test recover") == "11"
        assert channel.events[0] == ("timeout", WAIT_S)

    def test_write_failure(self, engine: ProtocolEngine, channel: ScriptedChannel) -> None:
        _report("TEST", "Write fault surfaces as FailedWrite")
        channel.write_error = SerialChannelError("write timeout")
        channel.script = [b"$A5\r\n", b"00\r\n"]
        with pytest.raises(PDUWriteError) as exc_info:
            engine.execute(PDUCommand.GET_STATUS, context="test write failure")
        assert exc_info.value.code is ErrorCode.FAILED_WRITE
        assert not [e for e in channel.events if e[0] == "read"]
        _report("PASS", "Nothing read after a failed write")

    def test_wait_mode_failure_before_write(
        self, engine: ProtocolEngine, channel: ScriptedChannel,
    ) -> None:
        channel.timeout_failures = {2}  # 1 = connect, 2 = pre-write WAIT
        with pytest.raises(PDUTimeoutConfigurationError) as exc_info:
            engine.execute(PDUCommand.GET_STATUS, context="test wait failure")
        assert exc_info.value.code is ErrorCode.TIMEOUT_CONFIGURATION_FAILED
        assert channel.writes == []

    def test_immediate_mode_failure(self, engine: ProtocolEngine, channel: ScriptedChannel) -> None:
        channel.timeout_failures = {3}
        channel.script = [b"$A5\r\n", b"00\r\n"]
        with pytest.raises(PDUTimeoutConfigurationError):
            engine.execute(PDUCommand.GET_STATUS, context="test immediate failure")
        assert channel.writes == ["$A5"]

    def test_restore_failure_keeps_response(
        self, engine: ProtocolEngine, channel: ScriptedChannel, connection: PDUConnection,
    ) -> None:
        _report("TEST", "Failing WAIT restore must not discard the captured response")
        channel.timeout_failures = {4}
        channel.script = [b"$A3 2 1\r\n", b"$A0\r\n"]

        response = engine.execute(PDUCommand.SWITCH_OUTLET, "2", "1", context="test restore")

        _report("RESULT", f"response={response!r} mode={connection.timeout_mode}")
        assert response == "$A0"
        assert connection.timeout_mode is None
        assert engine.sleep.calls == [PDUCommand.SWITCH_OUTLET.settle_delay]
        _report("PASS", "Response returned, timeout mode recorded as unknown")


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Rejected before any I/O
# ═══════════════════════════════════════════════════════════════════════════

class TestRejectedWithoutIO:
    """Validation happens before anything reaches the channel."""

    def test_not_connected(self) -> None:
        _report("TEST", "execute() on a disconnected connection")
        channel = ScriptedChannel()
        conn = PDUConnection(channel_factory=lambda port, timeout: channel)
        engine = ProtocolEngine(conn, sleep=RecordingSleep())
        with pytest.raises(PDUNotConnectedError) as exc_info:
            engine.execute(PDUCommand.GET_STATUS, context="test not connected")
        assert exc_info.value.code is ErrorCode.NOT_CONNECTED
        assert channel.events == []
        _report("PASS", "NotConnected, no I/O")

    def test_unknown_code(self, engine: ProtocolEngine, channel: ScriptedChannel) -> None:
        with pytest.raises(PDUInvalidCommandError):
            engine.execute("$A9", context="test unknown code")
        assert channel.events == []

    @pytest.mark.parametrize(
        "command, arg1, arg2",
        [
            (PDUCommand.GET_STATUS, "1", ""),
            (PDUCommand.REBOOT, "", ""),
            (PDUCommand.SWITCH_OUTLET, "1", ""),
            (PDUCommand.SWITCH_ALL, "1", "1"),
        ],
    )
    def test_arity_violation(
        self, engine: ProtocolEngine, channel: ScriptedChannel,
        command: PDUCommand, arg1: str, arg2: str,
    ) -> None:
        with pytest.raises(ContractViolationError):
            engine.execute(command, arg1, arg2, context="test arity")
        assert channel.events == []

    def test_negative_delay(self, engine: ProtocolEngine, channel: ScriptedChannel) -> None:
        with pytest.raises(ContractViolationError):
            engine.execute(PDUCommand.GET_STATUS, delay=-1.0, context="test negative delay")
        assert channel.events == []


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Typeguard Enforcement
# ═══════════════════════════════════════════════════════════════════════════

class TestTypeguardEnforcement:
    """@typechecked classes reject wrong argument types at runtime."""

    def test_engine_rejects_wrong_connection_type(self) -> None:
        _report("TEST", "ProtocolEngine('not_a_connection') should raise")
        with pytest.raises(_TYPEGUARD_ERRORS):
            ProtocolEngine("not_a_connection")  # type: ignore[arg-type]
        _report("PASS", "TypeError raised for wrong type")

    def test_execute_rejects_non_string_argument(
        self, engine: ProtocolEngine, channel: ScriptedChannel,
    ) -> None:
        with pytest.raises(_TYPEGUARD_ERRORS):
            engine.execute(PDUCommand.REBOOT, 1)  # type: ignore[arg-type]
        assert channel.events == []
