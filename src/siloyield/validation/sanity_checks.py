"""Sanity checks and validation for ledger state and yield outputs."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from ..config.schema import Config
from ..engine.ema import EMARecord
from ..engine.ledger import PROTOCOL, LedgerSnapshot
from ..simulation.runner import TokenYieldRecord


@dataclass
class ValidationWarning:
    """A validation warning with severity and message."""
    severity: str  # "warning" or "error"
    category: str  # e.g., "input", "conservation", "bounds"
    message: str
    details: Optional[str] = None


class SanityChecker:
    """Run sanity checks on configuration, ledger snapshots and yield records."""

    def __init__(self, config: Config):
        """Initialize with configuration."""
        self.config = config

    def check_config_inputs(self) -> List[ValidationWarning]:
        """
        Check configuration inputs for implausible values.

        Returns:
            List of validation warnings
        """
        warnings = []

        if self.config.simulation.horizon != 8760:
            warnings.append(ValidationWarning(
                severity="warning",
                category="input",
                message="Horizon is not one year of seasons; APYs are not annualized",
                details=f"Current horizon: {self.config.simulation.horizon}"
            ))

        if self.config.simulation.decimal_precision < 28:
            warnings.append(ValidationWarning(
                severity="warning",
                category="input",
                message="Decimal precision below 28 digits loses accuracy over a full horizon",
                details=f"Current precision: {self.config.simulation.decimal_precision}"
            ))

        history = self.config.gauge.activation_period - self.config.ema.origin_period
        longest = max(self.config.ema.windows)
        if history < longest:
            warnings.append(ValidationWarning(
                severity="warning",
                category="input",
                message="Longest EMA window is not saturated when the gauge activates",
                details=f"{history} periods of history vs window {longest}"
            ))

        return warnings

    def check_ledger(self, snapshot: LedgerSnapshot) -> List[ValidationWarning]:
        """
        Check that protocol balances reconcile with account balances.

        The protocol's deposited BDV and amount per token must equal the sum over
        accounts, and no balance may be negative.
        """
        warnings = []
        account_sums: Dict[str, Tuple[int, int]] = {}

        for (scope, token), balance in snapshot.balances.items():
            if balance.deposited_bdv < 0 or balance.deposited_amount < 0:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="bounds",
                    message=f"Negative balance for {scope}/{token}",
                    details=f"bdv={balance.deposited_bdv}, amount={balance.deposited_amount}"
                ))
            if scope == PROTOCOL:
                continue
            bdv, amount = account_sums.get(token, (0, 0))
            account_sums[token] = (bdv + balance.deposited_bdv, amount + balance.deposited_amount)

        tokens = set(account_sums) | {t for (s, t) in snapshot.balances if s == PROTOCOL}
        for token in sorted(tokens):
            protocol = snapshot.balance(PROTOCOL, token)
            bdv, amount = account_sums.get(token, (0, 0))
            if protocol.deposited_bdv != bdv or protocol.deposited_amount != amount:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="conservation",
                    message=f"Protocol balance of {token} does not reconcile with accounts",
                    details=(
                        f"protocol bdv={protocol.deposited_bdv} amount={protocol.deposited_amount}, "
                        f"accounts bdv={bdv} amount={amount}"
                    )
                ))

        return warnings

    def check_yields(self, records: Iterable[TokenYieldRecord]) -> List[ValidationWarning]:
        """Flag negative yields and suspiciously large ones."""
        warnings = []
        for record in records:
            if record.bean_apy < 0 or record.stalk_apy < 0:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="bounds",
                    message=f"Negative yield for {record.token} at period {record.period}",
                    details=f"bean={record.bean_apy}, stalk={record.stalk_apy}, window={record.window}"
                ))
            elif record.bean_apy > Decimal(10000):
                warnings.append(ValidationWarning(
                    severity="warning",
                    category="bounds",
                    message=f"Bean vAPY above 10000% for {record.token}",
                    details=f"bean={record.bean_apy}, window={record.window}"
                ))
        return warnings

    def check_ema(self, records: Iterable[EMARecord]) -> List[ValidationWarning]:
        """EMA records must use beta = 2 / (u + 1) with u at most the window."""
        warnings = []
        for record in records:
            if record.u > record.window:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="bounds",
                    message=f"EMA sample count exceeds window at period {record.period}",
                    details=f"u={record.u}, window={record.window}"
                ))
            if record.smoothed_rate < 0:
                warnings.append(ValidationWarning(
                    severity="warning",
                    category="bounds",
                    message=f"Negative smoothed mint rate at period {record.period}",
                    details=f"rate={record.smoothed_rate}, window={record.window}"
                ))
        return warnings


def validate_yield_results(
    config: Config,
    snapshot: LedgerSnapshot,
    token_yields: Iterable[TokenYieldRecord],
    ema_records: Iterable[EMARecord] = ()
) -> List[ValidationWarning]:
    """
    Validate a ledger snapshot and the yields computed from it.

    Args:
        config: Workbench configuration
        snapshot: Ledger state the yields were computed from
        token_yields: Token yield records
        ema_records: EMA records

    Returns:
        List of all validation warnings
    """
    checker = SanityChecker(config)
    warnings = []

    warnings.extend(checker.check_config_inputs())
    warnings.extend(checker.check_ledger(snapshot))
    warnings.extend(checker.check_ema(ema_records))
    warnings.extend(checker.check_yields(token_yields))

    return warnings
