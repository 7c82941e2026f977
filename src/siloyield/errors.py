"""Exception types raised by the ledger and estimators."""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class SiloYieldError(Exception):
    """Base error carrying a short machine-readable code."""

    code: str
    reason: str
    details: Optional[Any] = None

    def __str__(self) -> str:
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class DepositVersionError(SiloYieldError):
    """A deposit was resolved under the wrong key scheme (season vs stem) for its token era."""


class LedgerInvariantError(SiloYieldError):
    """A mutation would break a ledger invariant (e.g. withdraw more than deposited)."""


class ExternalReadError(SiloYieldError):
    """An on-demand read of external protocol state failed or reverted."""
