"""Bistro management CLI.

Usage:
    python src/manage.py setup-db          # Create all tables
    python src/manage.py drop-db           # Drop all tables
    python src/manage.py expire-payments   # Expire overdue payment authorizations
"""

import argparse
import sys


def _domain():
    from bistro.domain import bistro

    print("Initializing bistro domain...")
    bistro.init()
    return bistro


def setup_database():
    from bistro.utils.db import setup_db

    domain = _domain()
    print("Creating bistro database schema...")
    setup_db(domain)
    print("Done.")


def drop_database():
    from bistro.utils.db import drop_db

    domain = _domain()
    print("Dropping bistro database schema...")
    drop_db(domain)
    print("Done.")


def expire_payments():
    """Run one expiry sweep; meant for cron when the API's sweeper is not running."""
    from bistro.payment.reconciliation import expire_stale_payments

    domain = _domain()
    with domain.domain_context():
        expired = expire_stale_payments()
    print(f"Expired {len(expired)} payment authorization(s).")
    for authorization_id in expired:
        print(f"  {authorization_id}")


def main():
    parser = argparse.ArgumentParser(description="Bistro management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")
    subparsers.add_parser("expire-payments", help="Expire overdue payment authorizations")

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    elif args.command == "expire-payments":
        expire_payments()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
