"""Command line front end: ``reconbox scan|discover|serve|client``."""
from __future__ import annotations

import asyncio
import json
import logging
from argparse import ArgumentParser, Namespace
from typing import Iterator, Sequence

from rich.console import Console
from rich.progress import Progress
from rich.table import Table

from .config import ScanSettings, load_settings
from .discovery import HostDiscoveryEngine
from .errors import InvalidPortRange, InvalidRangeSpec, TransportUnavailable
from .local import default_cidr
from .logging_config import level_for_verbosity, setup_logging
from .models import HostRecord, PortProbeResult, host_record_to_dict, port_result_to_dict
from .portscan import PortScanEngine, open_ports
from .progress import ProgressReporter
from .testserver import ECHO, exchange, serve_forever

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="reconbox",
        description="TCP connect scanning and ICMP host discovery.",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument("--config", help="JSON settings file (default ~/.reconbox/config.json)")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Perform a TCP connect scan on a host")
    scan.add_argument("-H", "--hostname", default="localhost", help="The host to scan")
    scan.add_argument("-s", "--start-port", type=int, default=1, help="First port to scan")
    scan.add_argument("-e", "--end-port", type=int, default=1024, help="Last port to scan")
    scan.add_argument("--concurrency", type=int, help="Simultaneous connection attempts")
    scan.add_argument("--timeout", type=float, help="Connect timeout in seconds")
    scan.add_argument("--all", action="store_true", help="Show closed ports too")
    scan.add_argument("--json", action="store_true", help="Print results as JSON")
    scan.set_defaults(func=cmd_scan)

    discover = sub.add_parser(
        "discover",
        help="Find hosts that answer ICMP echo in a network",
        description=(
            "Sweep a CIDR range with ICMP echo requests. Only hosts that answer "
            "are listed; a silent host is simply absent. Needs root or "
            "unprivileged ping sockets."
        ),
    )
    discover.add_argument("-c", "--cidr", help="Network to sweep (default: first local network)")
    discover.add_argument("-t", "--time", type=int, dest="sweep_duration", help="Seconds to wait for replies")
    discover.add_argument("--json", action="store_true", help="Print results as JSON")
    discover.set_defaults(func=cmd_discover)

    serve = sub.add_parser("serve", help="Run a line-based TCP test server")
    serve.add_argument("-p", "--port", type=int, default=5000)
    serve.add_argument("-r", "--reply", default=ECHO, help=f"Fixed reply, or {ECHO} to echo lines back")
    serve.add_argument("--bind", default=None, help="Address to bind (default: all)")
    serve.set_defaults(func=cmd_serve)

    client = sub.add_parser("client", help="Interactive line client for a TCP server")
    client.add_argument("-s", "--server", default="localhost")
    client.add_argument("-p", "--port", type=int, default=5000)
    client.set_defaults(func=cmd_client)
    return parser


def render_ports(results: Sequence[PortProbeResult], *, show_all: bool = False) -> Table:
    table = Table("Port", "State", "Service")
    for result in results if show_all else open_ports(results):
        style = "green" if result.is_open else "dim"
        table.add_row(str(result.port), f"[{style}]{result.state.value}[/]", result.protocol)
    return table


def render_hosts(records: Sequence[HostRecord]) -> Table:
    table = Table("Address", "State", "Hostnames", "Response time")
    for record in sorted(records, key=lambda r: r.address):
        table.add_row(
            str(record.address),
            f"[green]{record.state.value}[/]",
            ", ".join(record.hostnames),
            f"{record.response_time * 1000:.1f}ms",
        )
    return table


def cmd_scan(args: Namespace, settings: ScanSettings) -> int:
    settings = settings.with_overrides(dial_timeout=args.timeout)
    engine = PortScanEngine(settings)

    with Progress(console=err_console, disable=args.json, transient=True) as progress:
        task = progress.add_task("scan", total=1.0)

        def update(value: float | None) -> None:
            progress.update(task, completed=1.0 if value is None else value)

        results = asyncio.run(
            engine.scan(
                args.hostname,
                args.start_port,
                args.end_port,
                args.concurrency,
                progress=update,
            )
        )

    if args.json:
        shown = results if args.all else open_ports(results)
        console.print_json(json.dumps([port_result_to_dict(r) for r in shown]))
    else:
        console.print(render_ports(results, show_all=args.all))
        console.print(f"{len(open_ports(results))} open of {len(results)} scanned")
    return 0


def cmd_discover(args: Namespace, settings: ScanSettings) -> int:
    cidr = args.cidr or default_cidr()
    duration = settings.sweep_duration if args.sweep_duration is None else args.sweep_duration
    engine = HostDiscoveryEngine(settings)
    reporter = ProgressReporter(duration, console=err_console, disable=args.json)
    if not args.json:
        console.print(f"This scan will run for {duration} seconds to find hosts in {cidr}.")

    records = asyncio.run(engine.discover(cidr, duration, reporter=reporter))

    if args.json:
        console.print_json(json.dumps([host_record_to_dict(r) for r in records]))
    else:
        console.print(render_hosts(records))
        console.print(f"{len(records)} hosts up")
    return 0


def cmd_serve(args: Namespace, settings: ScanSettings) -> int:
    console.print(f"TCP server on port {args.port}, reply: {args.reply}")
    asyncio.run(serve_forever(args.port, args.reply, args.bind))
    return 0


def _prompt_lines() -> Iterator[str]:
    console.print("Type the messages to send to the server, Ctrl-D to quit.")
    while True:
        try:
            yield console.input(">> ")
        except EOFError:
            return


def cmd_client(args: Namespace, settings: ScanSettings) -> int:
    asyncio.run(
        exchange(
            args.server,
            args.port,
            _prompt_lines(),
            timeout=settings.dial_timeout,
            on_reply=lambda reply: console.print(f"-> {reply}", markup=False),
        )
    )
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(level_for_verbosity(args.verbose), args.log_file, console=err_console)

    try:
        settings = load_settings(args.config)
    except ValueError as exc:
        err_console.print(f"[red]error:[/] {exc}")
        return 2

    try:
        return args.func(args, settings)
    except (InvalidRangeSpec, InvalidPortRange, ValueError) as exc:
        err_console.print(f"[red]error:[/] {exc}")
        return 2
    except TransportUnavailable as exc:
        err_console.print(f"[red]error:[/] {exc}")
        return 1
    except OSError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1
    except KeyboardInterrupt:
        err_console.print("Interrupted")
        return 130


__all__ = ["build_parser", "main", "render_hosts", "render_ports"]
