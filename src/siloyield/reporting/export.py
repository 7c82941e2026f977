"""Export functionality for CSV and JSON."""

import json
from dataclasses import asdict
from decimal import Decimal
from typing import Any, Dict, Optional

import pandas as pd

from ..config.schema import Config
from ..engine.ledger import SnapshotRecorder
from ..simulation.runner import YieldStore


def _plain(record) -> Dict[str, Any]:
    # Decimals are written as strings so no digits are lost
    row = asdict(record)
    for key, value in row.items():
        if isinstance(value, Decimal):
            row[key] = str(value)
        elif isinstance(value, tuple):
            row[key] = list(value)
    return row


def yields_frame(store: YieldStore) -> pd.DataFrame:
    """Token yield records, one row per (token, period, window)."""
    columns = ["token", "period", "window", "bean_apy", "stalk_apy", "created_at"]
    rows = [_plain(r) for _, r in sorted(store.token_yields.items())]
    return pd.DataFrame(rows, columns=columns)


def ema_frame(store: YieldStore) -> pd.DataFrame:
    """EMA records, one row per (period, window)."""
    columns = ["period", "window", "u", "beta", "smoothed_rate", "whitelisted_tokens", "created_at"]
    rows = []
    for _, record in sorted(store.ema.items()):
        row = _plain(record)
        row["whitelisted_tokens"] = ",".join(row["whitelisted_tokens"])
        rows.append(row)
    return pd.DataFrame(rows, columns=columns)


def fertilizer_frame(store: YieldStore) -> pd.DataFrame:
    """Fertilizer yield records, one row per (period, window)."""
    columns = [
        "period", "window", "humidity", "outstanding_supply",
        "rate_ema", "delta_rate_per_unit", "simple_apy", "created_at"
    ]
    rows = [_plain(r) for _, r in sorted(store.fertilizer.items())]
    return pd.DataFrame(rows, columns=columns)


def export_csv(store: YieldStore, filepath: str, kind: str = "yields"):
    """
    Export one record family to CSV.

    Args:
        store: Output records
        filepath: Destination path
        kind: "yields", "ema" or "fertilizer"
    """
    frames = {
        "yields": yields_frame,
        "ema": ema_frame,
        "fertilizer": fertilizer_frame,
    }
    if kind not in frames:
        raise ValueError(f"Unknown export kind {kind!r}, expected one of {sorted(frames)}")
    frames[kind](store).to_csv(filepath, index=False)


def export_snapshots_csv(recorder: SnapshotRecorder, filepath: str, rollup: bool = False):
    """Export ledger balance deltas (or their per-period rollup) to CSV."""
    frame = recorder.period_rollup() if rollup else recorder.to_frame()
    frame.to_csv(filepath, index=False)


def export_json(store: YieldStore, filepath: str, config: Optional[Config] = None):
    """Export every record family to JSON."""
    export_data = {
        'token_yields': [_plain(r) for _, r in sorted(store.token_yields.items())],
        'ema': [_plain(r) for _, r in sorted(store.ema.items())],
        'fertilizer': [_plain(r) for _, r in sorted(store.fertilizer.items())],
    }
    if config is not None:
        export_data['config'] = config.to_dict()
        export_data['config_hash'] = config.compute_hash()

    with open(filepath, 'w') as f:
        json.dump(export_data, f, indent=2)
