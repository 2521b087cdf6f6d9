"""CLI entrypoint for the snapshot pipeline."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from kube_snapshot import __version__
from kube_snapshot.config import get_settings
from kube_snapshot.errors import CollectionError, PublishError, StoreError
from kube_snapshot.hooks import CountingHooks
from kube_snapshot.pipeline import print_result, run_collection, run_consumer, run_retention

logger = logging.getLogger("kube_snapshot")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Kube Snapshot: capture Kubernetes cluster state and keep a queryable history.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--kubeconfig",
        type=Path,
        default=None,
        help="Path to kubeconfig (default: in-cluster config, then KUBECONFIG or ~/.kube/config)",
    )
    parser.add_argument(
        "--context",
        default=None,
        help="Kubernetes context to use",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("collect", help="Collect one snapshot and publish it (Kafka) or store it (direct)")
    sub.add_parser("consume", help="Consume snapshots from Kafka into the database until stopped")
    sub.add_parser("retention", help="Run one retention cleanup pass")
    return parser.parse_args(argv)


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handle(signum: int, frame: object) -> None:
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def main(argv: list[str] | None = None) -> int:
    """Entrypoint for kube-snapshot CLI."""
    args = _parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
    )
    for noisy in ("kubernetes", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    if args.kubeconfig:
        settings.kubeconfig = args.kubeconfig
    if args.context:
        settings.context = args.context

    hooks = CountingHooks()
    stop_event = threading.Event()
    _install_signal_handlers(stop_event)

    try:
        if args.command == "collect":
            print_result(run_collection(settings, hooks=hooks, cancel=stop_event), Console())
        elif args.command == "consume":
            run_consumer(stop_event, settings=settings, hooks=hooks)
        else:
            print_result(run_retention(settings, hooks=hooks), Console())
        return 0
    except (CollectionError, PublishError, StoreError) as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    except Exception as e:
        logging.exception("Pipeline failed")
        print(f"Error: {e}", file=sys.stderr)
        return 2
    finally:
        logger.info("Totals: %s", hooks.snapshot())


if __name__ == "__main__":
    sys.exit(main())
