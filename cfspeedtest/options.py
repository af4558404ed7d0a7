"""Argument parser options for speedtest"""

import argparse

from .constants import BASE_URL, DEFAULT_NR_LATENCY_TESTS, DEFAULT_NR_TESTS
from .types import PayloadSize, SpeedTestConfig


def bounded_count(value: str) -> int:
    """argparse type for test counts in the range 1-999."""
    try:
        count = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid count: {value!r}")
    if not 1 <= count <= 999:
        raise argparse.ArgumentTypeError(f"{count} is not in the range 1-999")
    return count


def payload_size(value: str) -> PayloadSize:
    try:
        return PayloadSize.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def add_run_options(parser):
    """
    Add speedtest-specific command line options to an argument parser.

    Args:
        parser: argparse.ArgumentParser instance

    Returns:
        The parser with added options
    """
    parser.add_argument(
        '-n', '--nr-tests',
        type=bounded_count,
        default=DEFAULT_NR_TESTS,
        help=f'Number of test runs per payload size (1-999, default: {DEFAULT_NR_TESTS})'
    )
    parser.add_argument(
        '--nr-latency-tests',
        type=bounded_count,
        default=DEFAULT_NR_LATENCY_TESTS,
        help=f'Number of latency tests (1-999, default: {DEFAULT_NR_LATENCY_TESTS})'
    )
    parser.add_argument(
        '-p', '--max-payload-size',
        type=payload_size,
        default=PayloadSize.M25,
        help='Largest payload size to test: 100k, 1m, 10m, 25m or 100m (default: 25m)'
    )
    parser.add_argument(
        '-d', '--disable-dynamic-max-payload-size',
        action='store_true',
        help='Keep testing larger payloads even after one took longer than 5 seconds'
    )

    direction = parser.add_mutually_exclusive_group()
    direction.add_argument('--download-only', action='store_true', help='Skip the upload tests')
    direction.add_argument('--upload-only', action='store_true', help='Skip the download tests')

    family = parser.add_mutually_exclusive_group()
    family.add_argument(
        '--ipv4',
        nargs='?',
        const='0.0.0.0',
        metavar='ADDR',
        help='Force IPv4, optionally binding to a local address'
    )
    family.add_argument(
        '--ipv6',
        nargs='?',
        const='::',
        metavar='ADDR',
        help='Force IPv6, optionally binding to a local address'
    )

    parser.add_argument(
        '--base-url',
        default=BASE_URL,
        help=f'Speedtest server (default: {BASE_URL})'
    )
    return parser


def add_output_options(parser):
    """
    Add the mutually exclusive output format flags.

    Without any of them the live progress line is drawn on stderr and a
    summary is printed at the end.
    """
    output = parser.add_mutually_exclusive_group()
    output.add_argument('--simple', action='store_true', help='One-line output')
    output.add_argument('--json', action='store_true', help='JSON output')
    output.add_argument('--json-pretty', action='store_true', help='Pretty-printed JSON output')
    output.add_argument('--csv', action='store_true', help='CSV output')
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Debug logging plus attempt counts and box plots in the summary'
    )
    return parser


def config_from_args(args) -> SpeedTestConfig:
    """Build the run configuration from parsed arguments."""
    return SpeedTestConfig(
        nr_tests=args.nr_tests,
        nr_latency_tests=args.nr_latency_tests,
        max_payload_size=args.max_payload_size,
        disable_dynamic_max_payload_size=args.disable_dynamic_max_payload_size,
        download=not args.upload_only,
        upload=not args.download_only,
    )
