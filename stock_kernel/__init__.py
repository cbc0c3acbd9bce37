"""
Stock Kernel

Transactional core of the multi-location stock ledger:
- Per-period, per-location, per-item on-hand quantity and weighted average cost
- Row-locked, all-or-nothing stock mutations
- Period lifecycle with locked price book and close snapshots
- Structured logging and typed errors
"""

__version__ = "0.1.0"
