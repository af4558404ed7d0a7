"""Command line entry point"""

import argparse
import concurrent.futures
import logging
import sys
from typing import List, Optional

from . import __version__
from .client import build_session, resolve_local_address
from .consumers import HeadlessCollector, LiveView
from .errors import MetadataError, SpeedTestCancelled, SpeedTestError
from .logging_setup import configure_logging
from .options import add_output_options, add_run_options, config_from_args
from .output import print_csv, print_json, print_simple, print_summary
from .runner import SpeedTestRun

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130

CANCEL_GRACE = 5  # seconds to wait for the engine after Ctrl-C


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='cfspeedtest',
        description='Unofficial CLI for speed.cloudflare.com',
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    add_run_options(parser)
    add_output_options(parser)
    return parser


def _render(result, args) -> None:
    if args.simple:
        print_simple(result)
    elif args.json:
        print_json(result)
    elif args.json_pretty:
        print_json(result, pretty=True)
    elif args.csv:
        print_csv(result)
    else:
        print_summary(result, verbose=args.verbose)


def _wait_cancelled(run: SpeedTestRun) -> None:
    try:
        run.result(timeout=CANCEL_GRACE)
    except SpeedTestError as e:
        logger.debug("Run stopped after interrupt: %s", e)
    except concurrent.futures.TimeoutError:
        logger.warning("Speedtest did not stop within %ss", CANCEL_GRACE)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose)

    try:
        local_address = resolve_local_address(args.ipv4, args.ipv6)
    except ValueError as e:
        parser.error(str(e))

    config = config_from_args(args)
    session = build_session(local_address)
    run = SpeedTestRun(session, config, base_url=args.base_url)

    interactive = not (args.simple or args.json or args.json_pretty or args.csv)
    view = None
    collector = None
    if interactive:
        view = LiveView(run.subscribe(), sys.stderr, latency_total=config.nr_latency_tests)
        view.start()
    else:
        collector = HeadlessCollector()
        events = run.subscribe()

    run.start()
    try:
        if collector is not None:
            collector.consume(events)
            logger.debug(
                "Collected %d progress ticks and %d failed attempts",
                collector.progress_ticks, collector.failed_attempts,
            )
        result = run.result()
    except KeyboardInterrupt:
        run.cancel()
        _wait_cancelled(run)
        print("\nSpeedtest cancelled", file=sys.stderr)
        return EXIT_INTERRUPTED
    except SpeedTestCancelled:
        print("Speedtest cancelled", file=sys.stderr)
        return EXIT_INTERRUPTED
    except MetadataError as e:
        print(f"Error fetching metadata: {e}", file=sys.stderr)
        return EXIT_ERROR
    except SpeedTestError as e:
        print(f"Speedtest failed: {e}", file=sys.stderr)
        return EXIT_ERROR
    finally:
        if view is not None:
            view.join(timeout=1)
        session.close()

    _render(result, args)
    return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())
