"""
Pharmacy Kernel - inventory consistency and alerting engine

Tracks pharmaceutical lots (batches) through receipt, sale, expiry and recall:
- Atomic stock mutations with an append-only movement trail
- Prescription gating and oversell protection under concurrency
- Deduplicated alerts derived from ledger state transitions
- Automatic purchase orders and supplier scoring
- Before/after audit snapshots for every mutation
"""

__version__ = "0.1.0"
