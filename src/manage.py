"""Dispatch management CLI.

Usage:
    python src/manage.py setup-db      # Create the batch table (SQL providers)
    python src/manage.py drop-db       # Drop the batch table (SQL providers)
    python src/manage.py sweep         # Assign approved orders without a batch
    python src/manage.py consolidate   # Run the consolidation/repair job once
    python src/manage.py audit         # Report batch invariant violations

The database provider comes from ``src/dispatch/domain.toml``, selected by
``PROTEAN_ENV`` (``sqlite``, ``postgres``, ``production``).
"""

import argparse
import sys


def _domain():
    from dispatch.domain import dispatch
    from dispatch.utils.logging import configure_logging

    configure_logging()
    dispatch.init()
    return dispatch


def _services():
    from dispatch.services import get_services

    return _domain(), get_services()


def setup_database():
    from dispatch.utils.db import setup_db

    domain = _domain()
    print(f"Creating batch tables ({domain.config['databases']['default']['provider']})...")
    setup_db(domain)
    print("Done.")


def drop_database():
    from dispatch.utils.db import drop_db

    domain = _domain()
    print(f"Dropping batch tables ({domain.config['databases']['default']['provider']})...")
    drop_db(domain)
    print("Done.")


def sweep():
    domain, services = _services()
    with domain.domain_context():
        report = services.assignment.sweep_unassigned()
    print(f"Assigned {len(report.assigned)} order(s), {len(report.failed)} failed.")
    for order_id, reason in report.failed.items():
        print(f"  {order_id}: {reason}")
    return 1 if report.failed else 0


def consolidate():
    domain, services = _services()
    with domain.domain_context():
        report = services.consolidation.run()
    for key, count in report.summary().items():
        print(f"  {key}: {count}")
    return 0


def audit():
    domain, services = _services()
    with domain.domain_context():
        violations = services.consolidation.audit()
    if not violations:
        print("No violations.")
        return 0
    for violation in violations:
        subject = violation.batch_id or violation.order_id
        print(f"  [{violation.kind}] {subject}: {violation.detail}")
    return 1


def main():
    parser = argparse.ArgumentParser(description="Dispatch management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create the batch tables")
    subparsers.add_parser("drop-db", help="Drop the batch tables")
    subparsers.add_parser("sweep", help="Assign approved orders that have no batch")
    subparsers.add_parser("consolidate", help="Run the consolidation/repair job once")
    subparsers.add_parser("audit", help="Report batch invariant violations")

    args = parser.parse_args()

    commands = {
        "setup-db": setup_database,
        "drop-db": drop_database,
        "sweep": sweep,
        "consolidate": consolidate,
        "audit": audit,
    }
    sys.exit(commands[args.command]() or 0)


if __name__ == "__main__":
    main()
