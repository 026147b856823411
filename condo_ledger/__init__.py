"""Condo Ledger: payment distribution and allocation engine for shared-property finances."""

__version__ = "0.1.0"
