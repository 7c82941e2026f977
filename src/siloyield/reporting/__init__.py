"""CSV and JSON export of yield records and ledger deltas."""

from .export import export_csv, export_json, export_snapshots_csv

__all__ = ["export_csv", "export_json", "export_snapshots_csv"]
