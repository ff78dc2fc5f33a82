"""Entry point for simlink.

Usage:
    # Show info (default)
    python -m simlink

    # Print updates for datarefs until interrupted
    python -m simlink watch sim/flightmodel/position/latitude --min-delta 0.5

    # Read datarefs once
    python -m simlink get sim/time/total_running_time_sec

    # Run a command (once, or hold with --phase begin / end)
    python -m simlink command sim/flight_controls/landing_gear_toggle

    # Common options
    python -m simlink --host sim-pc --port 9003 --debug watch ...

Configuration:
    SIMLINK_HOST, SIMLINK_PRIMARY_PORT, SIMLINK_FALLBACK_PORT, ...
    (see simlink.settings.SimSettings)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import structlog

from simlink import __version__
from simlink.client import SimClient
from simlink.constants import SimConstants as c
from simlink.settings import SimSettings

log = structlog.get_logger("simlink.cli")

_PHASES = {
    "once": c.Protocol.CommandPhase.ONCE,
    "begin": c.Protocol.CommandPhase.BEGIN,
    "end": c.Protocol.CommandPhase.END,
}


def _setup_logging(*, debug: bool) -> None:
    """Configure stdlib logging for the library and structlog for the CLI."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="simlink", description="Flight simulator instrument client"
    )
    parser.add_argument("--host", help="Server host (default: SIMLINK_HOST)")
    parser.add_argument("-p", "--port", type=int, help="Primary port")
    parser.add_argument(
        "--debug", "-d", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="Seconds to wait for the handshake and replies (default: 10)",
    )

    sub = parser.add_subparsers(dest="action")
    sub.add_parser("info", help="Show version and configuration")

    watch = sub.add_parser("watch", help="Print dataref updates")
    watch.add_argument("datarefs", nargs="+")
    watch.add_argument("--min-delta", type=float, default=0.0)
    watch.add_argument("--precision", type=float, default=None)

    get = sub.add_parser("get", help="Read datarefs once")
    get.add_argument("datarefs", nargs="+")

    command = sub.add_parser("command", help="Run a simulator command")
    command.add_argument("name")
    command.add_argument("--phase", choices=sorted(_PHASES), default="once")
    return parser


def _endpoint(args: argparse.Namespace, settings: SimSettings) -> str:
    host = args.host or settings.host
    if args.port is None:
        return host
    return f"{host}:{args.port}"


def _metadata() -> dict[str, str]:
    return {"name": "simlink-cli", "version": __version__}


async def _watch(args: argparse.Namespace, settings: SimSettings) -> int:
    def on_update(*values: object) -> None:
        log.info("update", **dict(zip(args.datarefs, values, strict=True)))

    def on_ready(client: SimClient) -> None:
        client.subscribe(
            args.datarefs,
            on_update,
            min_delta_time=args.min_delta,
            precision=args.precision,
        )
        log.info("subscribed", datarefs=args.datarefs, endpoint=client.endpoint)

    async with SimClient(
        _endpoint(args, settings), _metadata(), on_ready, settings=settings
    ) as client:
        client.on(c.Events.CONNECTION_TIMEOUT, lambda: log.warning("connection_error"))
        client.on(
            c.Events.LOADING_STATE_CHANGES,
            lambda loading: log.info("loading_state", loading=loading),
        )
        await asyncio.Event().wait()
    return 0


async def _get(args: argparse.Namespace, settings: SimSettings) -> int:
    result: asyncio.Future[object] = asyncio.get_running_loop().create_future()

    async with SimClient(
        _endpoint(args, settings), _metadata(), settings=settings
    ) as client:
        await asyncio.wait_for(client.wait_ready(), timeout=args.timeout)
        client.get_datarefs(args.datarefs, result.set_result)
        value = await asyncio.wait_for(result, timeout=args.timeout)
    log.info("values", result=value)
    return 0


async def _command(args: argparse.Namespace, settings: SimSettings) -> int:
    async with SimClient(
        _endpoint(args, settings), _metadata(), settings=settings
    ) as client:
        await asyncio.wait_for(client.wait_ready(), timeout=args.timeout)
        sent = client.run_command(args.name, _PHASES[args.phase])
    log.info("command_sent", name=args.name, phase=args.phase, sent=sent)
    return 0 if sent else 1


def _print_info(settings: SimSettings) -> int:
    log.info(
        "simlink",
        version=__version__,
        host=settings.host,
        ports=settings.ports,
        reconnect_delay=settings.reconnect_delay,
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:]).

    Returns:
        Exit code (0 for success, 1 for error).

    """
    args = _build_parser().parse_args(argv)
    _setup_logging(debug=args.debug)
    settings = SimSettings()

    actions = {"watch": _watch, "get": _get, "command": _command}
    action = actions.get(args.action)
    if action is None:
        return _print_info(settings)

    try:
        return asyncio.run(action(args, settings))
    except KeyboardInterrupt:
        log.info("interrupted")
        return 0
    except TimeoutError:
        log.error("timeout", seconds=args.timeout)
        return 1


if __name__ == "__main__":
    sys.exit(main())
