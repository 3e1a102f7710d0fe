"""
Main command-line interface for pyciv.

This script provides a CLI to query and control an Icom radio over CI-V.
"""

import argparse
import asyncio
import logging

from pyciv.enums import Channel, OperatingMode
from pyciv.errors import NotConnectedError
from pyciv.listener import LoggingListener
from pyciv.session import RadioSession
from pyciv.status import StatusServer


def build_session(args) -> RadioSession:
    return RadioSession(
        args.port,
        baudrate=args.baud,
        command_timeout=args.timeout,
        status_interval=args.status_interval,
        telemetry_interval=args.telemetry_interval,
        enable_polling=not args.no_poll,
        default_channel=Channel(args.channel),
    )


async def open_session(args) -> RadioSession:
    print(f"Connecting to radio on {args.port} at {args.baud} baud...")
    session = build_session(args)
    await session.connect()
    if not session.connected:
        raise NotConnectedError(f"Session on {args.port} did not come up")
    return session


def print_status(session: RadioSession):
    print("\nChannels:")
    print("-" * 72)
    for channel in Channel:
        state = session.get_channel_state(channel)
        marker = "*" if session.selected_channel is channel else " "
        frequency = state.as_dict()["frequency"] or "unknown"
        mode = str(state.mode) if state.mode else "--"
        print(f"{marker} {channel.value}: {frequency:20s} | Mode: {mode:5s} | Tone: {state.tone_summary()}")
    print("-" * 72)

    meters = session.meters
    print(f"S-meter: {meters.s_meter}  AF: {meters.af_level}  SQL: {meters.squelch}")
    gps = session.telemetry.gps
    if gps:
        print(f"GPS: {gps.latitude:.5f}, {gps.longitude:.5f}  alt {gps.altitude_m:.1f} m")


async def show_status(args):
    """Connect, read both channels, print them and disconnect."""
    session = await open_session(args)
    try:
        # Let one status poll land
        await asyncio.sleep(max(args.status_interval * 2, 0.5))
        print_status(session)
    finally:
        await session.disconnect()


async def watch(args):
    """Stay connected and log every change until interrupted."""
    session = build_session(args)
    session.register_listener(LoggingListener(logging.getLogger("pyciv.watch")))
    await session.connect()
    try:
        while session.connected:
            await asyncio.sleep(1)
    finally:
        await session.disconnect()


async def set_frequency(args, mhz: float):
    session = await open_session(args)
    try:
        hz = round(mhz * 1_000_000)
        print(f"Setting channel {session.selected_channel.value} to {hz} Hz...")
        response = await session.set_frequency(hz)
        if response is None:
            print("No answer from radio")
        print_status(session)
    finally:
        await session.disconnect()


async def set_mode(args, mode: str):
    try:
        parsed = OperatingMode.parse(mode)
    except ValueError as e:
        print(f"Error: {e}. Use one of: {', '.join(str(m) for m in OperatingMode)}")
        return
    session = await open_session(args)
    try:
        print(f"Setting channel {session.selected_channel.value} to {parsed}...")
        await session.set_mode(parsed)
        print_status(session)
    finally:
        await session.disconnect()


async def serve(args):
    session = await open_session(args)
    server = StatusServer(session, args.host, args.http_port)
    await server.start()
    print(f"Serving status on http://{args.host}:{args.http_port}/status (Ctrl+C to stop)")
    try:
        while session.connected:
            await asyncio.sleep(1)
    finally:
        await server.stop()
        await session.disconnect()


def main():
    parser = argparse.ArgumentParser(description="Control an Icom radio over CI-V")
    parser.add_argument("--port", required=True, help="Serial port, e.g. /dev/ttyUSB0 or COM3")
    parser.add_argument("--baud", type=int, default=19200, help="Baud rate (default: 19200)")
    parser.add_argument("--timeout", type=float, default=2.0, help="Command timeout in seconds (default: 2.0)")
    parser.add_argument("--status-interval", type=float, default=0.5,
                        help="Meter/level poll interval in seconds (default: 0.5)")
    parser.add_argument("--telemetry-interval", type=float, default=5.0,
                        help="GPS poll interval in seconds (default: 5.0)")
    parser.add_argument("--no-poll", action="store_true", help="Disable status and telemetry polling")
    parser.add_argument("--channel", choices=["A", "B"], default="A", help="Default channel (default: A)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("status", help="Show both channels and meters")
    subparsers.add_parser("watch", help="Log radio changes until interrupted")

    freq_parser = subparsers.add_parser("set-frequency", help="Set the default channel's frequency")
    freq_parser.add_argument("mhz", type=float, help="Frequency in MHz, e.g. 145.500")

    mode_parser = subparsers.add_parser("set-mode", help="Set the default channel's mode")
    mode_parser.add_argument("mode", help="FM, FM-N, AM, AM-N or DV")

    serve_parser = subparsers.add_parser("serve", help="Serve session status over HTTP")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Listen address (default: 127.0.0.1)")
    serve_parser.add_argument("--http-port", type=int, default=8080, help="Listen port (default: 8080)")

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        if args.command == "status":
            asyncio.run(show_status(args))
        elif args.command == "watch":
            asyncio.run(watch(args))
        elif args.command == "set-frequency":
            asyncio.run(set_frequency(args, args.mhz))
        elif args.command == "set-mode":
            asyncio.run(set_mode(args, args.mode))
        elif args.command == "serve":
            asyncio.run(serve(args))
        else:
            parser.print_help()
    except KeyboardInterrupt:
        pass
    except (OSError, NotConnectedError) as e:
        print(f"Error: {e}")


if __name__ == "__main__":
    main()
