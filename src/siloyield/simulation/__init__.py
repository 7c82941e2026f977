"""Yield runners."""

from .batch import BatchResult, BatchRunner
from .runner import TokenYieldRecord, WindowResult, YieldRunner, YieldStore

__all__ = [
    "YieldRunner",
    "YieldStore",
    "TokenYieldRecord",
    "WindowResult",
    "BatchRunner",
    "BatchResult",
]
