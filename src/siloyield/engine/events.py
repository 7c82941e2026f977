"""Structured silo events and the single-writer processor that mirrors them onto the ledger.

Events arrive already decoded from the source chain. The processor applies them in
the order given and rejects an event whose (period, timestamp) precedes the last
event applied to the same (account, token) pair, since deposit and withdraw deltas
do not commute (removed BDV is inferred from the prior deposit state).
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from ..errors import LedgerInvariantError
from .ledger import DepositKey, LedgerStore, TokenGaugeSetting

logger = logging.getLogger(__name__)

# Stalk issued per BDV for tokens whitelisted before Silo V3 (1 stalk, 10 decimals)
LEGACY_STALK_ISSUED_PER_BDV = 10_000_000_000


@dataclass(frozen=True)
class DepositEvent:
    account: str
    token: str
    key: DepositKey
    amount: int
    bdv: int
    period: int
    timestamp: int


@dataclass(frozen=True)
class WithdrawEvent:
    """Removal from a deposit. Legacy (season) events carry no BDV."""
    account: str
    token: str
    key: DepositKey
    amount: int
    period: int
    timestamp: int
    bdv: Optional[int] = None


@dataclass(frozen=True)
class StalkChangeEvent:
    account: str
    token: str
    delta_stalk: int
    period: int
    timestamp: int
    delta_roots: int = 0


@dataclass(frozen=True)
class SeedsChangeEvent:
    account: str
    token: str
    delta_seeds: int
    period: int
    timestamp: int


@dataclass(frozen=True)
class WithdrawalEvent:
    """Legacy withdrawal queued until ``withdraw_season``."""
    account: str
    token: str
    withdraw_season: int
    amount: int
    period: int
    timestamp: int


@dataclass(frozen=True)
class ClaimWithdrawalEvent:
    account: str
    token: str
    withdraw_season: int
    period: int
    timestamp: int


@dataclass(frozen=True)
class WhitelistEvent:
    """
    Token whitelisting.

    ``stalk_issued_per_bdv`` follows the event's own units: pre-V3 events give the
    stalk per BDV without decimals and ``legacy=True``; V3 events give it in
    stalk units per 1e6 BDV.
    """
    token: str
    stalk_issued_per_bdv: int
    stalk_earned_per_season: int
    period: int
    timestamp: int
    gauge_points: Optional[int] = None
    optimal_percent_deposited_bdv: Optional[int] = None
    legacy: bool = False


@dataclass(frozen=True)
class DewhitelistEvent:
    token: str
    period: int
    timestamp: int


@dataclass(frozen=True)
class StalkPerBdvPerSeasonEvent:
    token: str
    season: int
    stalk_earned_per_season: int
    period: int
    timestamp: int


@dataclass(frozen=True)
class GaugeSettingEvent:
    token: str
    gauge_points: Optional[int]
    period: int
    timestamp: int
    optimal_percent_deposited_bdv: Optional[int] = None
    gauge_point_function: str = "identity"


@dataclass(frozen=True)
class GerminationEvent:
    """BDV starting (positive) or finishing (``finished=True``) germination."""
    token: str
    bdv: int
    period: int
    timestamp: int
    finished: bool = False


class EventProcessor:
    """Applies structured events to a LedgerStore in source-chain order."""

    def __init__(self, ledger: LedgerStore):
        self.ledger = ledger
        self._last_seen: Dict[Tuple[str, str], Tuple[int, int]] = {}
        self._handlers: Dict[type, Callable] = {
            DepositEvent: self._on_deposit,
            WithdrawEvent: self._on_withdraw,
            StalkChangeEvent: self._on_stalk_change,
            SeedsChangeEvent: self._on_seeds_change,
            WithdrawalEvent: self._on_withdrawal,
            ClaimWithdrawalEvent: self._on_claim,
            WhitelistEvent: self._on_whitelist,
            DewhitelistEvent: self._on_dewhitelist,
            StalkPerBdvPerSeasonEvent: self._on_stalk_per_bdv_per_season,
            GaugeSettingEvent: self._on_gauge_setting,
            GerminationEvent: self._on_germination,
        }

    def apply(self, event) -> None:
        """Apply one event."""
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"Unsupported event type: {type(event).__name__}")
        if event.period > self.ledger.period:
            self.ledger.set_period(event.period)
        handler(event)

    def apply_all(self, events: Iterable) -> int:
        """Apply events in order; returns how many were applied."""
        count = 0
        for event in events:
            self.apply(event)
            count += 1
        logger.info("applied %d events, ledger at period %d", count, self.ledger.period)
        return count

    def _check_order(self, account: str, token: str, period: int, timestamp: int) -> None:
        position = (period, timestamp)
        last = self._last_seen.get((account, token))
        if last is not None and position < last:
            raise LedgerInvariantError(
                "out_of_order",
                f"event for {account}/{token} at {position} precedes {last}",
            )
        self._last_seen[(account, token)] = position

    def _on_deposit(self, event: DepositEvent) -> None:
        self._check_order(event.account, event.token, event.period, event.timestamp)
        self.ledger.record_deposit(
            event.account, event.token, event.key, event.amount, event.bdv, timestamp=event.timestamp
        )

    def _on_withdraw(self, event: WithdrawEvent) -> None:
        self._check_order(event.account, event.token, event.period, event.timestamp)
        self.ledger.reduce_deposit(
            event.account, event.token, event.key, event.amount, bdv=event.bdv, timestamp=event.timestamp
        )

    def _on_stalk_change(self, event: StalkChangeEvent) -> None:
        self._check_order(event.account, event.token, event.period, event.timestamp)
        self.ledger.change_stalk(
            event.account, event.token, event.delta_stalk, event.delta_roots, timestamp=event.timestamp
        )

    def _on_seeds_change(self, event: SeedsChangeEvent) -> None:
        self._check_order(event.account, event.token, event.period, event.timestamp)
        self.ledger.change_seeds(event.account, event.token, event.delta_seeds, timestamp=event.timestamp)

    def _on_withdrawal(self, event: WithdrawalEvent) -> None:
        self._check_order(event.account, event.token, event.period, event.timestamp)
        self.ledger.add_withdrawal(
            event.account, event.token, event.withdraw_season, event.amount, timestamp=event.timestamp
        )

    def _on_claim(self, event: ClaimWithdrawalEvent) -> None:
        self.ledger.claim_withdrawal(event.account, event.token, event.withdraw_season)

    def _on_whitelist(self, event: WhitelistEvent) -> None:
        if event.legacy:
            stalk_issued = LEGACY_STALK_ISSUED_PER_BDV
            earned = event.stalk_earned_per_season * 1_000_000
        else:
            stalk_issued = event.stalk_issued_per_bdv * 1_000_000
            earned = event.stalk_earned_per_season
        self.ledger.whitelist_token(
            TokenGaugeSetting(
                token=event.token,
                stalk_issued_per_bdv=stalk_issued,
                stalk_earned_per_season=earned,
                gauge_points=event.gauge_points,
                optimal_percent_deposited_bdv=event.optimal_percent_deposited_bdv,
                milestone_season=event.period,
            ),
            timestamp=event.timestamp,
        )

    def _on_dewhitelist(self, event: DewhitelistEvent) -> None:
        self.ledger.dewhitelist_token(event.token)

    def _on_stalk_per_bdv_per_season(self, event: StalkPerBdvPerSeasonEvent) -> None:
        self.ledger.update_stalk_per_bdv_per_season(
            event.token, event.season, event.stalk_earned_per_season, timestamp=event.timestamp
        )

    def _on_gauge_setting(self, event: GaugeSettingEvent) -> None:
        self.ledger.set_gauge(
            event.token,
            event.gauge_points,
            event.optimal_percent_deposited_bdv,
            gauge_point_function=event.gauge_point_function,
            timestamp=event.timestamp,
        )

    def _on_germination(self, event: GerminationEvent) -> None:
        if event.finished:
            self.ledger.end_germination(event.token, event.period)
        else:
            self.ledger.add_germinating(event.token, event.period, event.bdv)
