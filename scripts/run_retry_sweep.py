#!/usr/bin/env python3
"""
Run one retry sweep over FAILED payments (cron entrypoint).

Loads configuration from --config or DEBIT_CONFIG, builds the services and
runs RetryDaemon.sweep() once.  Exit code 0 when the sweep completed (even
if individual retries failed), 1 when it could not run.

Usage:
  python3 scripts/run_retry_sweep.py [--config PATH] [--batch-size N] [--json]
"""

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Retry eligible FAILED payments once")
    p.add_argument(
        "--config",
        default=None,
        help="YAML configuration file (default: $DEBIT_CONFIG)",
    )
    p.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Maximum payments to attempt in this sweep (default: retry_batch_size from config)",
    )
    p.add_argument(
        "--json",
        action="store_true",
        help="Print the sweep result as JSON",
    )
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from debit_config import get_active_config
    from debit_kernel.exceptions import DebitKernelError
    from debit_services.wiring import build_services

    try:
        config = get_active_config(args.config)
        if args.batch_size is not None:
            config = replace(config, retry_batch_size=args.batch_size)
        services = build_services(config)
        result = services.retry_daemon.sweep()
    except DebitKernelError as exc:
        print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1

    if args.json:
        print(
            json.dumps(
                {
                    "selected": result.selected,
                    "retried": result.retried,
                    "skipped": result.skipped,
                    "failed": result.failed,
                    "unknown": result.unknown,
                    "payment_ids": [str(pid) for pid in result.payment_ids],
                }
            )
        )
    else:
        print(
            f"  Sweep done: selected={result.selected} retried={result.retried} "
            f"skipped={result.skipped} failed={result.failed} unknown={result.unknown}"
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
