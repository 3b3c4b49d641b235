"""
Command-line interface for the backend orchestrator.

Provides the one-shot utilities used by launch scripts and the
long-running backend commands:
- Port discovery
- Health checking
- Backend serving
- Backend launching
"""

import sys
import argparse
import logging
from typing import Optional, List
from enum import Enum

from core import (
    DefaultPortRange,
    OrchestratorError,
    TimeoutValue,
    parse_port_range,
)
from server_mgmt import (
    find_available_port,
    poll_health,
    start_backend,
    launch_backend,
)


class ExitCode(int, Enum):
    """CLI exit codes"""
    SUCCESS = 0
    ERROR = 1


SERVER_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def setup_logging(verbose: int, log_format: str = '%(levelname)s: %(message)s') -> None:
    """
    Setup logging based on verbosity level.

    Args:
        verbose: Verbosity count (0=WARNING, 1=INFO, 2+=DEBUG)
        log_format: Record format
    """
    if verbose == 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format=log_format
    )


def _parse_positive_int(value: Optional[str]) -> Optional[int]:
    if value is None or not (value.isascii() and value.isdigit()):
        return None
    number = int(value, 10)
    return number if number >= 1 else None


def cmd_find_port(args) -> int:
    """
    Print the first available port in the range.

    Only the port number goes to stdout so callers can capture it.

    Args:
        args: Parsed command arguments

    Returns:
        Exit code
    """
    try:
        port_range = parse_port_range(args.start, args.end)
        port = find_available_port(port_range.start, port_range.end)
    except OrchestratorError as e:
        print(f"Error: Failed to find available port: {e}", file=sys.stderr)
        return ExitCode.ERROR.value

    print(port)
    return ExitCode.SUCCESS.value


def cmd_health_check(args) -> int:
    """
    Poll the backend /health endpoint until healthy or timeout.

    Args:
        args: Parsed command arguments

    Returns:
        Exit code
    """
    port = _parse_positive_int(args.port)
    if port is None or port > 65535:
        print("Error: Port argument is required and must be a number", file=sys.stderr)
        print("Usage: cli.py health-check <port> [timeout]", file=sys.stderr)
        return ExitCode.ERROR.value

    timeout = _parse_positive_int(args.timeout)
    if timeout is None:
        print("Error: Timeout must be a positive number", file=sys.stderr)
        return ExitCode.ERROR.value

    try:
        poll_health(port, timeout)
    except OrchestratorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return ExitCode.ERROR.value

    print(f"Backend health check passed (port {port})")
    return ExitCode.SUCCESS.value


def cmd_serve(args) -> int:
    """
    Run the backend in this process (PORT must be set).

    Args:
        args: Parsed command arguments

    Returns:
        Exit code
    """
    return start_backend()


def cmd_start(args) -> int:
    """
    Allocate a port, launch the backend and wait for it to exit.

    Args:
        args: Parsed command arguments

    Returns:
        Exit code
    """
    try:
        port_range = parse_port_range(args.start, args.end)
    except OrchestratorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return ExitCode.ERROR.value

    return launch_backend(port_range, health_timeout=args.timeout)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Backend orchestrator CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s find-port               # First free port in 3401-3410
  %(prog)s find-port 4000 4010     # Custom range
  %(prog)s health-check 3401       # Wait up to 30s for /health
  %(prog)s health-check 3402 60    # Wait up to 60s
  PORT=3401 %(prog)s serve         # Run the backend on port 3401
  %(prog)s start                   # Allocate, launch and supervise
        """
    )

    # Global options
    parser.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Increase verbosity (can be repeated: -v, -vv)'
    )

    # Subcommands
    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Find port command
    find_parser = subparsers.add_parser(
        'find-port',
        help='Print the first available port in a range'
    )
    find_parser.add_argument(
        'start',
        nargs='?',
        help=f'First port to try (default: {DefaultPortRange.START.value}, '
             f'env: BACKEND_PORT_RANGE_START)'
    )
    find_parser.add_argument(
        'end',
        nargs='?',
        help=f'Last port to try (default: {DefaultPortRange.END.value}, '
             f'env: BACKEND_PORT_RANGE_END)'
    )

    # Health check command
    health_parser = subparsers.add_parser(
        'health-check',
        help='Wait for the backend /health endpoint to report ok'
    )
    health_parser.add_argument(
        'port',
        nargs='?',
        help='Backend port to check'
    )
    health_parser.add_argument(
        'timeout',
        nargs='?',
        default=str(int(TimeoutValue.HEALTH_CHECK_OVERALL.value)),
        help='Maximum wait time in seconds (default: 30)'
    )

    # Serve command
    subparsers.add_parser(
        'serve',
        help='Run the backend server (reads PORT from the environment)'
    )

    # Start command
    start_parser = subparsers.add_parser(
        'start',
        help='Allocate a port, launch the backend and supervise it'
    )
    start_parser.add_argument('start', nargs='?', help='First port to try')
    start_parser.add_argument('end', nargs='?', help='Last port to try')
    start_parser.add_argument(
        '--timeout',
        type=float,
        default=TimeoutValue.HEALTH_CHECK_OVERALL.value,
        help='Seconds to wait for the backend to become healthy'
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    # Setup logging
    if args.command in ('serve', 'start'):
        setup_logging(max(args.verbose, 1), SERVER_LOG_FORMAT)
    else:
        setup_logging(args.verbose)

    # Route to command handler
    if not args.command:
        parser.print_help()
        return ExitCode.SUCCESS.value

    if args.command == 'find-port':
        return cmd_find_port(args)
    elif args.command == 'health-check':
        return cmd_health_check(args)
    elif args.command == 'serve':
        return cmd_serve(args)
    elif args.command == 'start':
        return cmd_start(args)
    else:
        print(f"Error: Unknown command '{args.command}'", file=sys.stderr)
        return ExitCode.ERROR.value


if __name__ == '__main__':
    sys.exit(main())
