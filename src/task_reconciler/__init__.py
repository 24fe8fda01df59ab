"""Reconciles marketplace task assignments with a local processing ledger."""

__version__ = "0.1.0"
