from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from walletsync.config.settings import SYNC_LOOKBACK_DAYS, UNKNOWN_TOKEN_NAME
from walletsync.core.dto import RawTransaction


ZERO = Decimal("0")


def trade_id(wallet: str, token_address: str) -> str:
    return f"{wallet}|{token_address}"


# Request models

@dataclass(frozen=True)
class TradesQuery:
    """
    Validated parameters of an on-demand trades query.
    """

    wallet: str
    days: int = SYNC_LOOKBACK_DAYS


@dataclass(frozen=True)
class SyncRequest:

    wallets: Tuple[str, ...]
    days: int = SYNC_LOOKBACK_DAYS


@dataclass(frozen=True)
class StoredTradesQuery:

    wallet: str
    sort_by: str = "last_trade"
    order: str = "DESC"


@dataclass(frozen=True)
class TokenTradesQuery:

    token_address: str
    sort_by: str = "last_trade"
    order: str = "DESC"


# Aggregation models

@dataclass
class TokenTradeMetrics:

    token_address: str
    token_name: str = UNKNOWN_TOKEN_NAME

    buys: int = 0
    sells: int = 0

    invested_sol: Decimal = ZERO
    total_sol_received: Decimal = ZERO
    realized_pnl: Decimal = ZERO
    roi: Decimal = ZERO

    first_trade: Optional[datetime] = None
    last_trade: Optional[datetime] = None

    def touch(self, block_time: datetime) -> None:
        if self.first_trade is None or block_time < self.first_trade:
            self.first_trade = block_time
        if self.last_trade is None or block_time > self.last_trade:
            self.last_trade = block_time


@dataclass
class TokenActivity:

    metrics: TokenTradeMetrics
    transactions: List[RawTransaction] = field(default_factory=list)


@dataclass
class PersistedTrade:

    wallet: str
    token_address: str
    token_name: str = UNKNOWN_TOKEN_NAME

    first_trade: Optional[datetime] = None
    last_trade: Optional[datetime] = None

    buys: int = 0
    sells: int = 0

    invested_sol: Decimal = ZERO
    total_sol_received: Decimal = ZERO
    realized_pnl: Decimal = ZERO
    roi: Decimal = ZERO

    # USD mirrors, priced at merge time (approximate, not a time series)
    invested_sol_usd: Optional[Decimal] = None
    realized_pnl_usd: Optional[Decimal] = None

    @property
    def id(self) -> str:
        return trade_id(self.wallet, self.token_address)


# Results

@dataclass
class WalletSyncResult:

    wallet: str
    start_time: Optional[datetime] = None
    trades_processed: int = 0
    persisted: bool = False
    error: Optional[str] = None


@dataclass
class TradesQueryResult:

    wallet: str
    start_time: Optional[datetime] = None
    activity: Dict[str, TokenActivity] = field(default_factory=dict)
    error: Optional[str] = None
