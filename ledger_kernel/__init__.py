"""
Ledger Kernel

Card-account posting engine with:
- Gapless, monotonic transaction identifiers
- Atomic posting of transaction, balance and category aggregate
- Legacy fixed-point rounding (2 digits, half-up)
- Durable capture of rejected input
"""

__version__ = "0.1.0"
