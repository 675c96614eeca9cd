"""Notary - document verification workflows anchored on the Stellar ledger."""

__version__ = "1.0.0"
