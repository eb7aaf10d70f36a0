from __future__ import annotations

import argparse
import sys

from tcpecho.common import DEFAULT_PORT, BindError, TcpTarget, configure_logging
from tcpecho.loadtest import run_echo_client, run_load_test
from tcpecho.server import ServerConfig, run_echo_server


def _positive_int(value: str) -> int:
    n = int(value)
    if n <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return n


def _non_negative_int(value: str) -> int:
    n = int(value)
    if n < 0:
        raise argparse.ArgumentTypeError(f"must not be negative, got {value}")
    return n


def _add_server(sub: argparse._SubParsersAction) -> None:
    srv = sub.add_parser("server", help="Run the TCP echo server")
    srv.add_argument("--bind", default="0.0.0.0")
    srv.add_argument("--port", type=int, default=DEFAULT_PORT)
    srv.add_argument("--backlog", type=_non_negative_int, default=1024, help="Listen queue length (default: 1024)")
    srv.add_argument("--chunk-size", type=_positive_int, default=4096, help="Max bytes read per echo (default: 4096)")
    srv.add_argument(
        "--max-connections",
        type=_non_negative_int,
        default=0,
        help="Refuse connections beyond this many open ones (default: 0, unlimited)",
    )


def _add_clients(sub: argparse._SubParsersAction) -> None:
    cli = sub.add_parser("client", help="Send one message to the echo server and print the reply")
    cli.add_argument("--host", default="127.0.0.1")
    cli.add_argument("--port", type=int, default=DEFAULT_PORT)
    cli.add_argument("--message", default="hello")
    cli.add_argument("--timeout", type=float, default=5.0)

    load = sub.add_parser("loadtest", help="Open many concurrent connections and verify every echo")
    load.add_argument("--host", default="127.0.0.1")
    load.add_argument("--port", type=int, default=DEFAULT_PORT)
    load.add_argument("--connections", type=int, default=10000)
    load.add_argument("--timeout", type=float, default=30.0, help="Per-connection socket timeout in seconds")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tcpecho",
        description="Minimal TCP echo server and a concurrent load-test client for it.",
    )
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", default=None, help="Also write logs to this file (rotated at 5 MB)")
    sub = parser.add_subparsers(dest="cmd", required=True)
    _add_server(sub)
    _add_clients(sub)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    if args.cmd == "server":
        config = ServerConfig(
            host=args.bind,
            port=args.port,
            backlog=args.backlog,
            chunk_size=args.chunk_size,
            max_connections=args.max_connections or None,
        )
        try:
            run_echo_server(config)
        except BindError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
        return 0

    if args.cmd == "client":
        try:
            data = run_echo_client(TcpTarget(args.host, args.port), args.message.encode("utf-8"), args.timeout)
        except OSError as e:
            print(f"ERROR: could not reach tcp://{args.host}:{args.port} ({e})", file=sys.stderr)
            return 1
        print(data.decode("utf-8", errors="replace"))
        return 0

    if args.cmd == "loadtest":
        result = run_load_test(TcpTarget(args.host, args.port), args.connections, args.timeout)
        print("Needed time:", round(result.elapsed * 1000), "ms")
        if not result.ok:
            print(f"{len(result.failures)} of {result.connections} connections failed:", file=sys.stderr)
            for index in sorted(result.failures)[:10]:
                print(f"  #{index}: {result.failures[index]}", file=sys.stderr)
            return 1
        return 0

    print(f"Unknown command: {args.cmd}", file=sys.stderr)
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
