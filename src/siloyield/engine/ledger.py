"""Ledger Store - read-side mirror of silo balances, deposits and token settings.

Scopes:
- PROTOCOL: protocol-wide balances
- any other string: an account address

Every account-scope mutation is applied to the account and then to PROTOCOL with
the same delta, so that for each token the protocol balance equals the sum of the
account balances. Balances are scaled integers:

- BDV: 6 decimals
- stalk: 10 decimals
- seeds: 6 decimals
- amounts: token decimals

Mutations for one (account, token) pair must arrive in source-chain order; the
store itself is single-writer and does no locking.
"""

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, fields, replace
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Tuple, Union

import pandas as pd

from ..errors import DepositVersionError, LedgerInvariantError
from .fixed_point import mul_div

logger = logging.getLogger(__name__)

PROTOCOL = "protocol"

STALK_PER_BDV_SEASON_PRECISION = 1_000_000


@dataclass(frozen=True)
class Season:
    """Legacy deposit key: the season the deposit was made in."""
    season: int

    @property
    def scheme(self) -> str:
        return "season"


@dataclass(frozen=True)
class Stem:
    """Silo V3 deposit key: the token's grown-stalk-per-BDV counter at deposit time."""
    stem: int

    @property
    def scheme(self) -> str:
        return "stem"


DepositKey = Union[Season, Stem]


@dataclass
class AccountBalance:
    """Balance of one token within one scope."""
    scope: str
    token: str
    deposited_bdv: int = 0
    deposited_amount: int = 0
    withdrawn_amount: int = 0
    stalk: int = 0
    seeds: int = 0
    roots: int = 0


@dataclass(frozen=True)
class ScopeTotals:
    """Balances of a scope summed over all of its tokens."""
    scope: str
    deposited_bdv: int = 0
    stalk: int = 0
    seeds: int = 0
    roots: int = 0


@dataclass
class Deposit:
    """A versioned deposit record."""
    account: str
    token: str
    key: DepositKey
    deposit_version: str
    amount: int = 0
    bdv: int = 0
    withdrawn_amount: int = 0
    withdrawn_bdv: int = 0
    created_at: int = 0
    updated_at: int = 0


@dataclass
class Withdrawal:
    """Legacy (season era) withdrawal awaiting claim."""
    account: str
    token: str
    season: int
    amount: int = 0
    claimed: bool = False
    created_at: int = 0


@dataclass
class TokenGaugeSetting:
    """Whitelist and gauge settings of a token. Unregistered tokens read as all zero."""
    token: str
    stalk_issued_per_bdv: int = 0
    stalk_earned_per_season: int = 0  # 6 decimals
    gauge_points: Optional[int] = None  # 18 decimals, None for non-gauge tokens
    optimal_percent_deposited_bdv: Optional[int] = None  # 6 decimals
    milestone_season: int = 0
    gauge_point_function: str = "identity"
    updated_at: int = 0

    @property
    def is_gauge(self) -> bool:
        return self.gauge_points is not None


@dataclass(frozen=True)
class BalanceDelta:
    """Snapshot write emitted after a balance mutation: the delta and the resulting totals."""
    scope: str
    token: str
    period: int
    timestamp: int
    delta_deposited_bdv: int
    delta_deposited_amount: int
    delta_withdrawn_amount: int
    delta_stalk: int
    delta_seeds: int
    delta_roots: int
    deposited_bdv: int
    deposited_amount: int
    stalk: int
    seeds: int
    roots: int


class SnapshotRecorder:
    """In-memory snapshot sink collecting every BalanceDelta."""

    def __init__(self):
        self.deltas: List[BalanceDelta] = []

    def __call__(self, delta: BalanceDelta) -> None:
        self.deltas.append(delta)

    def to_frame(self) -> pd.DataFrame:
        """All deltas as a DataFrame, one row per write."""
        columns = [f.name for f in fields(BalanceDelta)]
        return pd.DataFrame([asdict(d) for d in self.deltas], columns=columns)

    def period_rollup(self) -> pd.DataFrame:
        """
        Sum the deltas per (scope, token, period).

        Rollups are delta-summed, so they do not depend on when the totals were read.
        """
        frame = self.to_frame()
        delta_columns = [c for c in frame.columns if c.startswith("delta_")]
        if frame.empty:
            return pd.DataFrame(columns=["scope", "token", "period"] + delta_columns)
        return frame.groupby(["scope", "token", "period"], as_index=False)[delta_columns].sum()


@dataclass(frozen=True)
class LedgerSnapshot:
    """Immutable view of the ledger handed to the simulators."""
    period: int
    balances: Mapping[Tuple[str, str], AccountBalance]
    settings: Mapping[str, TokenGaugeSetting]
    whitelisted_tokens: Tuple[str, ...]
    dewhitelisted_tokens: Tuple[str, ...]
    germinating: Mapping[str, Tuple[int, int]]
    bean_to_max_lp_gp_per_bdv_ratio: int
    grown_stalk_per_season: int

    def balance(self, scope: str, token: str) -> AccountBalance:
        found = self.balances.get((scope, token))
        return replace(found) if found is not None else AccountBalance(scope=scope, token=token)

    def totals(self, scope: str = PROTOCOL) -> ScopeTotals:
        return _sum_scope(scope, self.balances.values())

    def setting(self, token: str) -> TokenGaugeSetting:
        found = self.settings.get(token)
        return replace(found) if found is not None else TokenGaugeSetting(token=token)

    def germinating_bdv(self, token: str) -> Tuple[int, int]:
        """(even, odd) germinating BDV of a token."""
        return self.germinating.get(token, (0, 0))


def _sum_scope(scope: str, balances) -> ScopeTotals:
    bdv = stalk = seeds = roots = 0
    for b in balances:
        if b.scope != scope:
            continue
        bdv += b.deposited_bdv
        stalk += b.stalk
        seeds += b.seeds
        roots += b.roots
    return ScopeTotals(scope=scope, deposited_bdv=bdv, stalk=stalk, seeds=seeds, roots=roots)


class LedgerStore:
    """Mirror ledger of silo balances keyed by (scope, token)."""

    def __init__(
        self,
        snapshot_sink: Optional[Callable[[BalanceDelta], None]] = None,
        stem_v31_period: Optional[int] = None
    ):
        """
        Initialize ledger store.

        Args:
            snapshot_sink: Receives a BalanceDelta after every balance mutation
                (defaults to an in-memory SnapshotRecorder)
            stem_v31_period: First period whose stem deposits are tagged "v3.1"
        """
        self.snapshot_sink = snapshot_sink if snapshot_sink is not None else SnapshotRecorder()
        self.stem_v31_period = stem_v31_period
        self.period = 0

        self._balances: Dict[Tuple[str, str], AccountBalance] = {}
        self._deposits: Dict[Tuple[str, str, DepositKey], Deposit] = {}
        self._withdrawals: Dict[Tuple[str, str, int], Withdrawal] = {}
        self._settings: Dict[str, TokenGaugeSetting] = {}
        self._eras: Dict[str, str] = {}
        self._germinating: Dict[str, List[int]] = defaultdict(lambda: [0, 0])
        self.whitelisted_tokens: List[str] = []
        self.dewhitelisted_tokens: List[str] = []
        self.active_accounts: set = set()
        self.grown_stalk_per_season = 0
        self.bean_to_max_lp_gp_per_bdv_ratio = 0

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def balance(self, scope: str, token: str) -> AccountBalance:
        """Copy of the balance for (scope, token); zero if never touched."""
        found = self._balances.get((scope, token))
        return replace(found) if found is not None else AccountBalance(scope=scope, token=token)

    def totals(self, scope: str = PROTOCOL) -> ScopeTotals:
        """Balances of ``scope`` summed over tokens."""
        return _sum_scope(scope, self._balances.values())

    def credit(
        self,
        scope: str,
        token: str,
        bdv: int = 0,
        amount: int = 0,
        stalk: int = 0,
        seeds: int = 0,
        roots: int = 0,
        timestamp: int = 0
    ) -> None:
        """Add to a balance (and to the protocol balance when ``scope`` is an account)."""
        self._apply(scope, token, bdv, amount, 0, stalk, seeds, roots, timestamp)

    def debit(
        self,
        scope: str,
        token: str,
        bdv: int = 0,
        amount: int = 0,
        stalk: int = 0,
        seeds: int = 0,
        roots: int = 0,
        timestamp: int = 0
    ) -> None:
        """Subtract from a balance (and from the protocol balance when ``scope`` is an account)."""
        self._apply(scope, token, -bdv, -amount, 0, -stalk, -seeds, -roots, timestamp)

    def _apply(
        self,
        scope: str,
        token: str,
        d_bdv: int,
        d_amount: int,
        d_withdrawn: int,
        d_stalk: int,
        d_seeds: int,
        d_roots: int,
        timestamp: int
    ) -> None:
        scopes = [scope] if scope == PROTOCOL else [scope, PROTOCOL]

        # Validate every scope before touching any of them
        updated = []
        for s in scopes:
            current = self._balances.get((s, token)) or AccountBalance(scope=s, token=token)
            new = replace(
                current,
                deposited_bdv=current.deposited_bdv + d_bdv,
                deposited_amount=current.deposited_amount + d_amount,
                withdrawn_amount=current.withdrawn_amount + d_withdrawn,
                stalk=current.stalk + d_stalk,
                seeds=current.seeds + d_seeds,
                roots=current.roots + d_roots,
            )
            if new.deposited_bdv < 0 or new.deposited_amount < 0:
                raise LedgerInvariantError(
                    "negative_balance",
                    f"{s}/{token} would go negative",
                    {"deposited_bdv": new.deposited_bdv, "deposited_amount": new.deposited_amount},
                )
            updated.append(new)

        for new in updated:
            self._balances[(new.scope, token)] = new
            self.snapshot_sink(BalanceDelta(
                scope=new.scope,
                token=token,
                period=self.period,
                timestamp=timestamp,
                delta_deposited_bdv=d_bdv,
                delta_deposited_amount=d_amount,
                delta_withdrawn_amount=d_withdrawn,
                delta_stalk=d_stalk,
                delta_seeds=d_seeds,
                delta_roots=d_roots,
                deposited_bdv=new.deposited_bdv,
                deposited_amount=new.deposited_amount,
                stalk=new.stalk,
                seeds=new.seeds,
                roots=new.roots,
            ))
        logger.debug(
            "applied %s/%s bdv=%+d amount=%+d stalk=%+d seeds=%+d roots=%+d",
            scope, token, d_bdv, d_amount, d_stalk, d_seeds, d_roots
        )

    # ------------------------------------------------------------------
    # Deposits
    # ------------------------------------------------------------------

    def deposit(self, account: str, token: str, key: DepositKey) -> Deposit:
        """Copy of a deposit record (zero if it does not exist yet)."""
        self._check_era(token, key)
        found = self._deposits.get((account, token, key))
        if found is None:
            return Deposit(account=account, token=token, key=key, deposit_version=self._version_tag(key))
        return replace(found)

    def deposits_of(self, account: str, token: Optional[str] = None) -> List[Deposit]:
        """All deposit records of an account, optionally filtered by token."""
        return [
            replace(d) for (acct, tok, _), d in self._deposits.items()
            if acct == account and (token is None or tok == token)
        ]

    def token_era(self, token: str) -> Optional[str]:
        """Active deposit key scheme of a token ("season", "stem" or None before any deposit)."""
        return self._eras.get(token)

    def migrate_to_stems(self, token: str) -> None:
        """Move a token from the season era to the stem era. The move is one-way."""
        if self._eras.get(token) == "stem":
            return
        self._eras[token] = "stem"
        logger.info("token %s switched to stem deposit keys", token)

    def _check_era(self, token: str, key: DepositKey) -> None:
        era = self._eras.get(token)
        if era is not None and era != key.scheme:
            raise DepositVersionError(
                "deposit_version_mismatch",
                f"token {token} uses {era} keys, got {key.scheme}",
                key,
            )

    def _version_tag(self, key: DepositKey) -> str:
        if isinstance(key, Season):
            return "season"
        if self.stem_v31_period is not None and self.period >= self.stem_v31_period:
            return "v3.1"
        return "v3"

    def record_deposit(
        self,
        account: str,
        token: str,
        key: DepositKey,
        amount: int,
        bdv: int,
        timestamp: int = 0
    ) -> Deposit:
        """
        Add to a deposit record and credit the account and protocol balances.

        Returns:
            Copy of the updated deposit
        """
        self._check_era(token, key)
        self._eras.setdefault(token, key.scheme)

        deposit_id = (account, token, key)
        deposit = self._deposits.get(deposit_id)
        if deposit is None:
            deposit = Deposit(
                account=account,
                token=token,
                key=key,
                deposit_version=self._version_tag(key),
                created_at=timestamp,
            )
            self._deposits[deposit_id] = deposit
        deposit.amount += amount
        deposit.bdv += bdv
        deposit.updated_at = timestamp

        self.credit(account, token, bdv=bdv, amount=amount, timestamp=timestamp)
        self.grown_stalk_per_season += mul_div(
            bdv, self.setting(token).stalk_earned_per_season, STALK_PER_BDV_SEASON_PRECISION
        )
        return replace(deposit)

    def reduce_deposit(
        self,
        account: str,
        token: str,
        key: DepositKey,
        amount: int,
        bdv: Optional[int] = None,
        timestamp: int = 0
    ) -> int:
        """
        Remove from a deposit record, then debit the balances.

        Args:
            bdv: Removed BDV; when omitted (legacy events) it is inferred as
                amount * deposit.bdv // deposit.amount

        Returns:
            The BDV removed

        Raises:
            DepositVersionError: If ``key`` does not match the token's era
            LedgerInvariantError: If more than the remaining amount/bdv is removed
        """
        self._check_era(token, key)
        deposit = self._deposits.get((account, token, key))
        if deposit is None:
            deposit = Deposit(account=account, token=token, key=key, deposit_version=self._version_tag(key))

        removed_bdv = bdv if bdv is not None else mul_div(amount, deposit.bdv, deposit.amount)
        if amount > deposit.amount or removed_bdv > deposit.bdv:
            raise LedgerInvariantError(
                "withdraw_exceeds_deposit",
                f"{account}/{token}/{key} holds {deposit.amount} ({deposit.bdv} bdv)",
                {"amount": amount, "bdv": removed_bdv},
            )

        deposit.amount -= amount
        deposit.bdv -= removed_bdv
        deposit.withdrawn_amount += amount
        deposit.withdrawn_bdv += removed_bdv
        deposit.updated_at = timestamp
        self._deposits[(account, token, key)] = deposit

        self.debit(account, token, bdv=removed_bdv, amount=amount, timestamp=timestamp)
        self.grown_stalk_per_season -= mul_div(
            removed_bdv, self.setting(token).stalk_earned_per_season, STALK_PER_BDV_SEASON_PRECISION
        )
        return removed_bdv

    # ------------------------------------------------------------------
    # Stalk, seeds, withdrawals
    # ------------------------------------------------------------------

    def change_stalk(self, account: str, token: str, delta_stalk: int, delta_roots: int = 0, timestamp: int = 0) -> None:
        """Apply a stalk/roots change and refresh the active account set."""
        self._apply(account, token, 0, 0, 0, delta_stalk, 0, delta_roots, timestamp)
        if account == PROTOCOL:
            return
        if self.totals(account).stalk > 0:
            self.active_accounts.add(account)
        else:
            self.active_accounts.discard(account)

    def change_seeds(self, account: str, token: str, delta_seeds: int, timestamp: int = 0) -> None:
        self._apply(account, token, 0, 0, 0, 0, delta_seeds, 0, timestamp)

    def add_withdrawal(self, account: str, token: str, season: int, amount: int, timestamp: int = 0) -> Withdrawal:
        """Record a legacy withdrawal; only the withdrawn amount moves on the balances."""
        withdrawal_id = (account, token, season)
        withdrawal = self._withdrawals.get(withdrawal_id)
        if withdrawal is None:
            withdrawal = Withdrawal(account=account, token=token, season=season, created_at=timestamp)
            self._withdrawals[withdrawal_id] = withdrawal
        withdrawal.amount += amount
        self._apply(account, token, 0, 0, amount, 0, 0, 0, timestamp)
        return replace(withdrawal)

    def claim_withdrawal(self, account: str, token: str, season: int) -> None:
        withdrawal = self._withdrawals.get((account, token, season))
        if withdrawal is None:
            withdrawal = Withdrawal(account=account, token=token, season=season)
            self._withdrawals[(account, token, season)] = withdrawal
        withdrawal.claimed = True

    def withdrawal(self, account: str, token: str, season: int) -> Optional[Withdrawal]:
        found = self._withdrawals.get((account, token, season))
        return replace(found) if found is not None else None

    # ------------------------------------------------------------------
    # Token settings
    # ------------------------------------------------------------------

    def setting(self, token: str) -> TokenGaugeSetting:
        """Copy of a token's settings; zero-valued defaults for unregistered tokens."""
        found = self._settings.get(token)
        return replace(found) if found is not None else TokenGaugeSetting(token=token)

    def whitelist_token(self, setting: TokenGaugeSetting, timestamp: int = 0) -> None:
        """Register or replace a token's settings and add it to the whitelist."""
        self._settings[setting.token] = replace(setting, updated_at=timestamp)
        if setting.token in self.dewhitelisted_tokens:
            self.dewhitelisted_tokens.remove(setting.token)
        if setting.token not in self.whitelisted_tokens:
            self.whitelisted_tokens.append(setting.token)

    def dewhitelist_token(self, token: str) -> None:
        """Move a token to the dewhitelist. Its deposits stay on the ledger."""
        if token in self.whitelisted_tokens:
            self.whitelisted_tokens.remove(token)
            self.dewhitelisted_tokens.append(token)

    def update_stalk_per_bdv_per_season(self, token: str, season: int, stalk_earned_per_season: int, timestamp: int = 0) -> None:
        setting = self._settings.get(token) or TokenGaugeSetting(token=token)
        self._settings[token] = replace(
            setting,
            milestone_season=season,
            stalk_earned_per_season=stalk_earned_per_season,
            updated_at=timestamp,
        )

    def set_gauge(
        self,
        token: str,
        gauge_points: Optional[int],
        optimal_percent_deposited_bdv: Optional[int] = None,
        gauge_point_function: str = "identity",
        timestamp: int = 0
    ) -> None:
        """Set (or with ``gauge_points=None`` remove) a token's gauge settings."""
        setting = self._settings.get(token) or TokenGaugeSetting(token=token)
        self._settings[token] = replace(
            setting,
            gauge_points=gauge_points,
            optimal_percent_deposited_bdv=optimal_percent_deposited_bdv if gauge_points is not None else None,
            gauge_point_function=gauge_point_function,
            updated_at=timestamp,
        )

    def set_bean_to_max_lp_ratio(self, ratio: int) -> None:
        self.bean_to_max_lp_gp_per_bdv_ratio = ratio

    # ------------------------------------------------------------------
    # Germination and time
    # ------------------------------------------------------------------

    def add_germinating(self, token: str, period: int, bdv: int) -> None:
        """Add BDV to the germinating bucket of ``period``'s parity."""
        self._germinating[token][period % 2] += bdv

    def end_germination(self, token: str, period: int) -> int:
        """Empty the bucket of ``period``'s parity; returns the BDV that finished germinating."""
        bucket = self._germinating[token]
        finished = bucket[period % 2]
        bucket[period % 2] = 0
        return finished

    def set_period(self, period: int) -> None:
        if period < self.period:
            raise LedgerInvariantError("period_regression", f"period {period} precedes {self.period}")
        self.period = period

    def snapshot(self) -> LedgerSnapshot:
        """Immutable copy of everything the simulators read."""
        return LedgerSnapshot(
            period=self.period,
            balances=MappingProxyType({k: replace(v) for k, v in self._balances.items()}),
            settings=MappingProxyType({k: replace(v) for k, v in self._settings.items()}),
            whitelisted_tokens=tuple(self.whitelisted_tokens),
            dewhitelisted_tokens=tuple(self.dewhitelisted_tokens),
            germinating=MappingProxyType({k: (v[0], v[1]) for k, v in self._germinating.items()}),
            bean_to_max_lp_gp_per_bdv_ratio=self.bean_to_max_lp_gp_per_bdv_ratio,
            grown_stalk_per_season=self.grown_stalk_per_season,
        )
