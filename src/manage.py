"""Marketplace management CLI.

Schema management plus the scheduled sweeps, for cron jobs and manual runs.

Usage:
    python src/manage.py setup-db
    python src/manage.py drop-db
    python src/manage.py complete-stale-orders [--as-of 2025-01-31T00:00:00+00:00]
    python src/manage.py expire-pending-orders
"""

import argparse
import json
import sys
from datetime import datetime


def _domain():
    from marketplace.domain import marketplace

    marketplace.init()
    return marketplace


def setup_database():
    from marketplace.utils.db import setup_db

    providers = setup_db(_domain())
    print(f"Schema ready for providers: {', '.join(providers) or 'none (memory)'}")


def drop_database():
    from marketplace.utils.db import drop_db

    providers = drop_db(_domain())
    print(f"Schema dropped for providers: {', '.join(providers) or 'none (memory)'}")


def run_sweep(name: str, as_of: datetime | None):
    from marketplace.order.sweeps import complete_stale_orders, expire_pending_orders

    sweeps = {
        "complete-stale-orders": complete_stale_orders,
        "expire-pending-orders": expire_pending_orders,
    }
    domain = _domain()
    with domain.domain_context():
        summary = sweeps[name](as_of=as_of)
    print(json.dumps(summary.to_dict(), indent=2))
    return summary


def main():
    from marketplace.utils.logging import configure_logging

    configure_logging()

    parser = argparse.ArgumentParser(description="Marketplace management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")
    for name, help_text in (
        ("complete-stale-orders", "Complete orders paid more than five days ago"),
        ("expire-pending-orders", "Cancel pending orders whose payment never arrived"),
    ):
        sweep_parser = subparsers.add_parser(name, help=help_text)
        sweep_parser.add_argument("--as-of", type=datetime.fromisoformat, default=None)

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    elif args.command in ("complete-stale-orders", "expire-pending-orders"):
        summary = run_sweep(args.command, args.as_of)
        sys.exit(1 if summary.failed else 0)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
