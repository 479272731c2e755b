"""Pytest configuration — path setup and logging for full visibility."""

import logging
import os
import sys

import pytest

# ---------------------------------------------------------------------------
# Path setup: ensure the package is importable regardless of installation
# ---------------------------------------------------------------------------
_SRC_DIR = os.path.join(os.path.dirname(__file__), os.pardir, "src")
_SRC_DIR = os.path.normpath(_SRC_DIR)
if _SRC_DIR not in sys.path:
    sys.path.insert(0, _SRC_DIR)

# ---------------------------------------------------------------------------
# Logging: route all library log output to the console so pytest -s shows it
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)


# ---------------------------------------------------------------------------
# Only one PDU connection may be live per process; never let one leak
# from a failing test into the next.
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _release_live_pdu_connection():
    yield
    connection_module = sys.modules.get("serial_pdu_tools.connection")
    if connection_module is None:
        return
    live = connection_module.PDUConnection._live
    if live is not None:
        live._channel = None
        live.state = live.state.__class__.DISCONNECTED
        connection_module.PDUConnection._live = None
