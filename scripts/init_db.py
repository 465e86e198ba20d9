#!/usr/bin/env python3
"""
Create the schema and seed the business settings.

Settings that already exist are left alone unless --force is given.
With --demo-customer EMAIL an active customer with an active mandate is
created as well, for local runs against the mock gateway.

Usage:
  python3 scripts/init_db.py [--config PATH] [--max-unpaid N] [--max-retries N]
                             [--retry-gap-days N] [--currency EUR]
                             [--demo-customer EMAIL] [--force]
"""

import argparse
import sys
from pathlib import Path
from uuid import uuid4

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Create tables and seed settings")
    p.add_argument("--config", default=None, help="YAML configuration file (default: $DEBIT_CONFIG)")
    p.add_argument("--max-unpaid", type=int, default=3, help="max_unpaid_allowed (default: 3)")
    p.add_argument("--max-retries", type=int, default=3, help="max_retries (default: 3)")
    p.add_argument("--retry-gap-days", type=int, default=3, help="retry_gap_days (default: 3)")
    p.add_argument("--currency", default="EUR", help="default_currency (default: EUR)")
    p.add_argument("--demo-customer", default=None, metavar="EMAIL", help="Create a chargeable demo customer")
    p.add_argument("--force", action="store_true", help="Overwrite existing settings")
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from sqlalchemy import select

    from debit_config import get_active_config
    from debit_kernel.db.engine import create_tables, init_engine_from_url, session_scope
    from debit_kernel.exceptions import DebitKernelError
    from debit_kernel.models import Customer, CustomerStatus, Mandate, MandateStatus, Setting
    from debit_kernel.services.settings_loader import SettingsLoader

    try:
        config = get_active_config(args.config)
    except DebitKernelError as exc:
        print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1

    print()
    print("  [1/3] Connecting...")
    init_engine_from_url(config.database.url, echo=config.database.echo)

    print("  [2/3] Creating tables...")
    create_tables()

    print("  [3/3] Seeding settings...")
    values = {
        "max_unpaid_allowed": args.max_unpaid,
        "max_retries": args.max_retries,
        "retry_gap_days": args.retry_gap_days,
        "default_currency": args.currency.upper(),
    }
    with session_scope() as session:
        existing = set(session.execute(select(Setting.key)).scalars())
        loader = SettingsLoader(session)
        for key, value in values.items():
            if key in existing and not args.force:
                print(f"    {key}: kept existing value")
                continue
            loader.put(key, value)
            print(f"    {key} = {value}")

        if args.demo_customer:
            customer = Customer(
                email=args.demo_customer,
                name="Demo Customer",
                status=CustomerStatus.ACTIVE.value,
            )
            session.add(customer)
            session.flush()
            session.add(
                Mandate(
                    customer_id=customer.id,
                    gateway_mandate_ref=f"MD{uuid4().hex[:10].upper()}",
                    status=MandateStatus.ACTIVE.value,
                )
            )
            print(f"    demo customer {customer.id} ({args.demo_customer})")

    print()
    print("  Done.")
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
