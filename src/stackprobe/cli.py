"""Command-line interface for stackprobe."""

import asyncio
import sys
import json
from typing import List

from stackprobe.config import ScanConfig, settings
from stackprobe.database import get_db_client
from stackprobe.exceptions import StackProbeError
from stackprobe.logging_config import parse_module_levels, setup_logging
from stackprobe.models import CATEGORY_FIELDS, ScanRecord, Subscription
from stackprobe.monitor import RescanWorker
from stackprobe.scanner import normalize_domain, normalize_url
from stackprobe.service import ScanService


def _emit(data, args) -> None:
    output = json.dumps(data, indent=2, default=str)
    if getattr(args, "output_file", None):
        with open(args.output_file, "w") as f:
            f.write(output)
        print(f"Results written to {args.output_file}")
    else:
        print(output)


def print_record(record: ScanRecord) -> None:
    """Print a scan record in a readable layout.

    Args:
        record: ScanRecord to print
    """
    print(f"\n{'=' * 60}")
    print(f"Stack for: {record.url}")
    print(f"{'=' * 60}")
    print(f"Scan id: {record.id}    mode: {record.scan_mode.value}")
    phases = record.scan_phases
    print(f"Phases: passive={phases.passive.value} render={phases.render.value} probe={phases.probe.value}")
    print()
    for name in CATEGORY_FIELDS:
        cv = record.category(name)
        if cv.is_set:
            print(f"  • {name.title():<10} {cv.value} ({cv.confidence.value})")
        else:
            print(f"  • {name.title():<10} -")

    ai = record.ai
    print(f"\nAI provider: {ai.provider or '-'}" + (f" ({ai.confidence.value})" if ai.confidence else ""))
    if ai.transport:
        print(f"  Transport: {ai.transport}")
    if ai.gateway:
        print(f"  Gateway: {ai.gateway}")
    if ai.inferred_model:
        print(f"  Inferred model: {ai.inferred_model} (TTFT {ai.ttft}ms, {ai.tps} tok/s)")

    evidence = record.evidence
    if evidence.domains:
        print(f"\nDomains: {', '.join(evidence.domains)}")
    if evidence.patterns:
        print("Matched patterns:")
        for pattern in evidence.patterns:
            print(f"  - {pattern}")
    for group, hosts in evidence.third_party.items():
        print(f"Third-party {group}: {', '.join(hosts)}")


def _print_records(records: List[ScanRecord], args) -> None:
    if args.output == "json":
        _emit([r.to_dict() for r in records], args)
        return
    if not records:
        print("No scans found.")
        return
    for record in records:
        print(f"{record.scanned_at:%Y-%m-%d %H:%M}  {record.id}  {record.domain:<30} "
              f"{record.framework.value or '-':<12} {record.ai.provider or '-'}")


def scan_command(args):
    """Scan a URL and print the resulting record."""
    store = get_db_client()
    service = ScanService(store, config=ScanConfig.from_env())

    async def run():
        try:
            return await service.scan(
                args.url,
                user_id=args.user,
                render=args.render or args.probe,
                probe=args.probe,
            )
        finally:
            await service.close()

    try:
        record = asyncio.run(run())
    except StackProbeError as e:
        print(f"Error: {e.message}")
        sys.exit(1)
    finally:
        store.close()

    if args.output == "json":
        _emit(record.to_dict(), args)
    else:
        print_record(record)


def get_command(args):
    """Print a stored scan."""
    store = get_db_client()
    try:
        record = store.get_scan_record(args.scan_id)
    except StackProbeError as e:
        print(f"Error: {e.message}")
        sys.exit(1)
    finally:
        store.close()

    if record is None:
        print(f"Scan not found: {args.scan_id}")
        sys.exit(1)

    if args.output == "json":
        _emit(record.to_dict(), args)
    else:
        print_record(record)


def recent_command(args):
    """List recent scans, optionally for one user."""
    store = get_db_client()
    try:
        if args.user:
            records = store.list_scans_for_user(args.user, args.limit)
        else:
            records = store.list_recent_scans(args.limit)
    finally:
        store.close()
    _print_records(records, args)


def subscribe_command(args):
    """Track a domain for background rescans."""
    store = get_db_client()
    try:
        url = normalize_url(args.url)
        subscription = store.create_subscription(Subscription(
            url=url,
            domain=normalize_domain(url),
            user_id=args.user,
            notify_on_change=not args.no_notify,
        ))
    except StackProbeError as e:
        print(f"Error: {e.message}")
        sys.exit(1)
    finally:
        store.close()
    print(f"Subscribed to {subscription.domain} (id={subscription.id})")


def worker_command(args):
    """Run the rescan worker."""
    store = get_db_client()
    worker = RescanWorker(store, config=ScanConfig.from_env())
    try:
        if args.once:
            events = asyncio.run(worker.run_cycle())
            print(f"Rescan cycle complete: {len(events)} change event(s)")
            for event in events:
                print(f"  - {event.change_summary}")
        else:
            asyncio.run(worker.run_forever())
    except KeyboardInterrupt:
        print("Worker stopped")
    finally:
        store.close()


def _add_output_args(parser) -> None:
    parser.add_argument(
        "--output",
        "-o",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    parser.add_argument(
        "--output-file",
        "-f",
        help="Write output to file (only for json format)",
    )


def main():
    """Main CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="stackprobe - detect the technology and AI stack behind a website"
    )

    # Global flags (before subcommands)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=settings.LOG_LEVEL,
        help="Set logging verbosity (default: LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--log-file",
        help="Write logs to file in addition to console",
    )
    parser.add_argument(
        "--log-module",
        action="append",
        metavar="NAME=LEVEL",
        help="Override the level of one logger, e.g. stackprobe.probe=DEBUG (repeatable)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    scan_parser = subparsers.add_parser("scan", help="Scan a URL.")
    scan_parser.add_argument("url", help="URL or domain to scan")
    scan_parser.add_argument(
        "--render",
        action="store_true",
        help="Also render the page in a headless browser",
    )
    scan_parser.add_argument(
        "--probe",
        action="store_true",
        help="Render, then send a chat message to measure the AI backend (implies --render)",
    )
    scan_parser.add_argument("--user", help="User id to attach to the scan")
    _add_output_args(scan_parser)
    scan_parser.set_defaults(func=scan_command)

    get_parser = subparsers.add_parser("get", help="Show a stored scan.")
    get_parser.add_argument("scan_id", help="Scan id")
    _add_output_args(get_parser)
    get_parser.set_defaults(func=get_command)

    recent_parser = subparsers.add_parser("recent", help="List recent scans.")
    recent_parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Maximum scans to list (default: 20)",
    )
    recent_parser.add_argument("--user", help="Only scans for this user id")
    _add_output_args(recent_parser)
    recent_parser.set_defaults(func=recent_command)

    subscribe_parser = subparsers.add_parser("subscribe", help="Track a domain for stack changes.")
    subscribe_parser.add_argument("url", help="URL or domain to track")
    subscribe_parser.add_argument("--user", help="Owning user id")
    subscribe_parser.add_argument(
        "--no-notify",
        action="store_true",
        help="Record changes without requesting notifications",
    )
    subscribe_parser.set_defaults(func=subscribe_command)

    worker_parser = subparsers.add_parser("worker", help="Run the background rescan worker.")
    worker_parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single rescan cycle and exit",
    )
    worker_parser.set_defaults(func=worker_command)

    args = parser.parse_args()

    # Configure logging based on flags
    setup_logging(
        level=args.log_level,
        log_file=getattr(args, 'log_file', None),
        module_levels=parse_module_levels(args.log_module),
    )

    if hasattr(args, "func"):
        args.func(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
