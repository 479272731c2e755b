"""Command-line interface for the serial PDU."""

from __future__ import annotations

import argparse
import sys

from . import DEFAULT_PDU_PORT, PDU_READ_TIMEOUT_S
from .channel import PySerialChannel
from .exceptions import PDUError, PDUUnknownResponseError, SerialPDUToolsError
from .lifecycle import PDUController
from .types import SwitchState


def create_controller(args) -> PDUController:
    """Create a controller for the port selected on the command line."""
    return PDUController(port=args.port, read_timeout=args.timeout)


def _print_status(status) -> None:
    for outlet, state in enumerate(status, start=1):
        print(f"Outlet {outlet}: {state.name}")


def command_status(args) -> int:
    """Print the state of both outlets."""
    try:
        with create_controller(args) as pdu:
            _print_status(pdu.get_status(context=f"CLI status on {args.port}"))
            return 0

    except PDUUnknownResponseError as e:
        print(f"Unexpected response from PDU: {e.response!r}", file=sys.stderr)
        return 1
    except SerialPDUToolsError as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


def _command_switch(args, state: SwitchState) -> int:
    ctx = f"CLI switch outlet {args.outlet} {state.name} on {args.port}"
    try:
        with create_controller(args) as pdu:
            pdu.switch(args.outlet, state, context=ctx)
            print(f"Outlet {args.outlet}: {state.name}")
            return 0

    except SerialPDUToolsError as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


def command_on(args) -> int:
    """Switch one outlet on."""
    return _command_switch(args, SwitchState.ON)


def command_off(args) -> int:
    """Switch one outlet off."""
    return _command_switch(args, SwitchState.OFF)


def command_all(args) -> int:
    """Switch both outlets at once."""
    state = SwitchState.ON if args.state == "on" else SwitchState.OFF
    ctx = f"CLI switch all {state.name} on {args.port}"
    try:
        with create_controller(args) as pdu:
            pdu.switch_all(state, context=ctx)
            print(f"All outlets: {state.name}")
            return 0

    except SerialPDUToolsError as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


def command_reboot(args) -> int:
    """Power-cycle one outlet."""
    ctx = f"CLI reboot outlet {args.outlet} on {args.port}"
    try:
        with create_controller(args) as pdu:
            pdu.reboot(args.outlet, context=ctx)
            print(f"Outlet {args.outlet}: rebooted")
            return 0

    except SerialPDUToolsError as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


def command_probe(args) -> int:
    """Send the null probe and check for the prompt."""
    try:
        with create_controller(args) as pdu:
            pdu.null_probe(context=f"CLI probe on {args.port}")
            print("PDU is responding")
            return 0

    except SerialPDUToolsError as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


def command_init(args) -> int:
    """Run the warm-up sequence: probe, reboot both outlets, all off."""
    pdu = create_controller(args)
    try:
        # initialize() releases the port itself when a step fails
        pdu.initialize(context=f"CLI init on {args.port}")
        with pdu:
            _print_status(pdu.get_status(context=f"CLI init status on {args.port}"))
        return 0

    except SerialPDUToolsError as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


def command_shutdown(args) -> int:
    """Switch both outlets off and release the port.

    Without ``--force`` a failed switch-off leaves the port open, as
    ``terminate`` does; it is released when the process exits.
    """
    pdu = create_controller(args)
    try:
        pdu.connect(context=f"CLI shutdown on {args.port}")
        pdu.terminate(force=args.force, context=f"CLI shutdown on {args.port}")
        print("All outlets: OFF")
        return 0

    except PDUError as e:
        print(f"Error ({e.code.value}): {str(e)}", file=sys.stderr)
        if pdu.is_connected():
            print(
                f"Port {args.port} was left open; rerun with --force to release it "
                f"even if switching off fails.",
                file=sys.stderr,
            )
        return 1
    except SerialPDUToolsError as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


def command_list_ports(args) -> int:
    """List available serial ports."""
    ports = PySerialChannel.list_available_ports()
    if not ports:
        print("No serial ports found.")
    else:
        print("Available serial ports:")
        for p in ports:
            print(f"  {p}")
    return 0


def main() -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="Serial PDU Tools - control a dual-outlet serial power switch"
    )

    parser.add_argument(
        "--port",
        type=str,
        default=DEFAULT_PDU_PORT,
        help=f"Serial port path (default: {DEFAULT_PDU_PORT}, or $PDU_SERIAL_PORT)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=PDU_READ_TIMEOUT_S,
        help=f"Read timeout in seconds (default: {PDU_READ_TIMEOUT_S})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    status_parser = subparsers.add_parser("status", help="Show the state of both outlets")
    status_parser.set_defaults(func=command_status)

    on_parser = subparsers.add_parser("on", help="Switch one outlet on")
    on_parser.add_argument("outlet", type=int, choices=[1, 2], help="Outlet number")
    on_parser.set_defaults(func=command_on)

    off_parser = subparsers.add_parser("off", help="Switch one outlet off")
    off_parser.add_argument("outlet", type=int, choices=[1, 2], help="Outlet number")
    off_parser.set_defaults(func=command_off)

    all_parser = subparsers.add_parser("all", help="Switch both outlets at once")
    all_parser.add_argument("state", choices=["on", "off"], help="Target state")
    all_parser.set_defaults(func=command_all)

    reboot_parser = subparsers.add_parser("reboot", help="Power-cycle one outlet")
    reboot_parser.add_argument("outlet", type=int, choices=[1, 2], help="Outlet number")
    reboot_parser.set_defaults(func=command_reboot)

    probe_parser = subparsers.add_parser("probe", help="Check that the PDU answers")
    probe_parser.set_defaults(func=command_probe)

    init_parser = subparsers.add_parser(
        "init", help="Warm up a freshly powered PDU (reboots both outlets, then all off)",
    )
    init_parser.set_defaults(func=command_init)

    shutdown_parser = subparsers.add_parser(
        "shutdown", help="Switch both outlets off and release the port",
    )
    shutdown_parser.add_argument(
        "--force", action="store_true", default=False,
        help="Release the port even if switching off fails",
    )
    shutdown_parser.set_defaults(func=command_shutdown)

    list_parser = subparsers.add_parser("list-ports", help="List available serial ports")
    list_parser.set_defaults(func=command_list_ports)

    args = parser.parse_args()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
