"""Periodic runner for the dispatch background jobs.

Runs the unassigned-order sweep and the consolidation job on fixed
intervals. Each pass is processed as a command inside the dispatch domain
context, on a worker thread so lock waits never stall the event loop.

Usage:
    python src/server.py                           # sweep every 30s, consolidate every 300s
    python src/server.py --sweep-every 10 --consolidate-every 60
    python src/server.py --dispatch-ready          # also bind drivers to ready batches
"""

import argparse
import asyncio

import structlog

logger = structlog.get_logger(__name__)


def _process(domain, command):
    with domain.domain_context():
        return domain.process(command, asynchronous=False)


async def every(seconds: float, domain, make_command):
    while True:
        command = make_command()
        try:
            await asyncio.to_thread(_process, domain, command)
        except Exception:
            logger.exception("Background job failed", command=type(command).__name__)
        await asyncio.sleep(seconds)


async def run(sweep_every: float, consolidate_every: float, dispatch_ready: bool):
    from dispatch.batch.assignment import SweepUnassignedOrders
    from dispatch.batch.consolidation import RunConsolidation
    from dispatch.batch.lifecycle import DispatchReadyBatches
    from dispatch.domain import dispatch

    dispatch.init()

    jobs = [
        every(sweep_every, dispatch, lambda: SweepUnassignedOrders(requested_by="scheduler")),
        every(consolidate_every, dispatch, lambda: RunConsolidation(requested_by="scheduler")),
    ]
    if dispatch_ready:
        jobs.append(every(sweep_every, dispatch, lambda: DispatchReadyBatches(requested_by="scheduler")))

    logger.info("Dispatch scheduler started", sweep_every=sweep_every, consolidate_every=consolidate_every)
    await asyncio.gather(*jobs)


def main():
    from dispatch.utils.logging import configure_logging

    parser = argparse.ArgumentParser(description="Dispatch background job runner")
    parser.add_argument("--sweep-every", type=float, default=30.0, help="Seconds between sweeps")
    parser.add_argument("--consolidate-every", type=float, default=300.0, help="Seconds between consolidations")
    parser.add_argument("--dispatch-ready", action="store_true", help="Also assign drivers to ready batches")
    args = parser.parse_args()

    configure_logging()
    asyncio.run(run(args.sweep_every, args.consolidate_every, args.dispatch_ready))


if __name__ == "__main__":
    main()
