"""
Debit Kernel - recurring direct-debit collections

A store-backed payment lifecycle with:
- Policy-gated charge scheduling
- Idempotent webhook reconciliation
- Bounded, cooldown-aware retry sweeps
- Pre-submission adjustments and post-submission refunds
- Append-only audit log of every lifecycle event
"""

__version__ = "0.1.0"
