"""Silo yield workbench: mirror ledger, mint-rate EMAs and forward yield simulation."""

__version__ = "0.4.0"
