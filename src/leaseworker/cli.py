"""
leaseworker command line.

    leaseworker run [--bounded | --continuous] [--workers N]
    leaseworker enqueue [--file items.jsonl] [PAYLOAD ...]
    leaseworker reclaim
    leaseworker requeue [ID ...]
    leaseworker stats
    leaseworker init-db
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any, Optional, Sequence

from leaseworker.bootstrap import Runtime, build_runtime
from leaseworker.config import LifecycleMode, Settings, settings
from leaseworker.db import init_db
from leaseworker.engine import LeaseManager
from leaseworker.instance import resolve_worker_ids
from leaseworker.observability import configure_logging

logger = logging.getLogger("leaseworker.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="leaseworker", description="Lease-based batch generation worker")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a pool of worker loops")
    mode = run.add_mutually_exclusive_group()
    mode.add_argument(
        "--bounded",
        dest="mode",
        action="store_const",
        const=LifecycleMode.BOUNDED,
        help="Exit after --max-empty-polls consecutive empty polls",
    )
    mode.add_argument(
        "--continuous",
        dest="mode",
        action="store_const",
        const=LifecycleMode.CONTINUOUS,
        help="Poll until interrupted",
    )
    run.add_argument("--workers", type=int, default=None, help="Number of worker loops (default: pool_size)")
    run.add_argument("--max-empty-polls", type=int, default=None, help="Bounded mode exit threshold")
    run.add_argument("--worker-id", default=None, help="Lease owner token (suffixed per loop)")
    run.add_argument("--init-db", action="store_true", help="Create missing tables before starting")

    enqueue = sub.add_parser("enqueue", help="Insert pending work items")
    enqueue.add_argument("payloads", nargs="*", help="Payloads; parsed as JSON when possible")
    enqueue.add_argument("--file", default=None, help="JSON Lines file, one payload per line ('-' for stdin)")

    sub.add_parser("reclaim", help="Clear stale leases now")

    requeue = sub.add_parser("requeue", help="Return failed items to pending")
    requeue.add_argument("ids", nargs="*", type=int, help="Item ids (default: every failed item)")

    sub.add_parser("stats", help="Print item counts by status")
    sub.add_parser("init-db", help="Create missing tables (use alembic in production)")

    return parser


def parse_payload(text: str) -> Any:
    """JSON when it parses, the raw string otherwise."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def read_payloads(args: argparse.Namespace) -> list[Any]:
    payloads = [parse_payload(p) for p in args.payloads]
    if args.file:
        stream = sys.stdin if args.file == "-" else open(args.file, encoding="utf-8")
        try:
            for line in stream:
                line = line.strip()
                if line:
                    payloads.append(parse_payload(line))
        finally:
            if stream is not sys.stdin:
                stream.close()
    return payloads


async def cmd_run(runtime: Runtime, args: argparse.Namespace) -> int:
    if args.init_db:
        await init_db(runtime.engine)

    pool = runtime.build_pool(mode=args.mode)
    if args.max_empty_polls is not None:
        pool.config.max_empty_polls = args.max_empty_polls
    if args.worker_id:
        pool.worker_id = args.worker_id

    loop = asyncio.get_running_loop()
    handled = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, pool.stop)
            handled.append(sig)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still cancels
            pass

    try:
        workers = args.workers if args.workers is not None else runtime.settings.pool_size
        report = await pool.run(workers)
    finally:
        for sig in handled:
            loop.remove_signal_handler(sig)
    print(json.dumps(report.to_dict(), indent=2))
    return 1 if report.crashed else 0


async def cmd_enqueue(runtime: Runtime, args: argparse.Namespace) -> int:
    payloads = read_payloads(args)
    if not payloads:
        logger.error("Nothing to enqueue: pass payloads or --file")
        return 2
    items = await runtime.repository.enqueue(payloads)
    print(json.dumps({"enqueued": len(items), "ids": [item.id for item in items]}))
    return 0


async def cmd_reclaim(runtime: Runtime, args: argparse.Namespace) -> int:
    worker_id = resolve_worker_ids(runtime.settings.worker_id, 1)[0]
    manager = LeaseManager(runtime.repository, worker_id, runtime.lease_ttl)
    cleared = await manager.reclaim_stale()
    print(json.dumps({"reclaimed": cleared}))
    return 0


async def cmd_requeue(runtime: Runtime, args: argparse.Namespace) -> int:
    requeued = await runtime.repository.requeue_failed(args.ids or None)
    print(json.dumps({"requeued": requeued}))
    return 0


async def cmd_stats(runtime: Runtime, args: argparse.Namespace) -> int:
    counts = await runtime.repository.count_by_status()
    print(json.dumps({status.value: count for status, count in counts.items()}))
    return 0


async def cmd_init_db(runtime: Runtime, args: argparse.Namespace) -> int:
    await init_db(runtime.engine)
    logger.info("Tables created")
    return 0


COMMANDS = {
    "run": cmd_run,
    "enqueue": cmd_enqueue,
    "reclaim": cmd_reclaim,
    "requeue": cmd_requeue,
    "stats": cmd_stats,
    "init-db": cmd_init_db,
}


async def dispatch(args: argparse.Namespace, config: Settings, runtime: Optional[Runtime] = None) -> int:
    runtime = runtime or build_runtime(config)
    try:
        return await COMMANDS[args.command](runtime, args)
    finally:
        await runtime.aclose()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(settings.log_level)
    try:
        return asyncio.run(dispatch(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
