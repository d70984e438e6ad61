"""RentFlow booking lifecycle and financial ledger engine."""

__version__ = "1.0.0"
