from __future__ import annotations

import logging
import math
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional

from walletsync.config.settings import UNKNOWN_TOKEN_NAME
from walletsync.core.models import PersistedTrade, TokenTradeMetrics, ZERO
from walletsync.services.trade_aggregator import compute_roi, round_sol

logger = logging.getLogger(__name__)


def to_decimal(value: Any) -> Decimal:
    """Lenient numeric coercion: anything unusable counts as zero."""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value)) if math.isfinite(value) else ZERO
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return ZERO
    return d if d.is_finite() else ZERO


def to_int(value: Any) -> int:
    return int(to_decimal(value))


def _earliest(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


def _latest(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def _usd(amount: Decimal, rate: Optional[Decimal]) -> Optional[Decimal]:
    if rate is None:
        return None
    return round_sol(amount * rate)


class TradeMerger:
    """
    Combines fresh per-token metrics with the persisted row for the same
    (wallet, token).

    Merging adds, it does not replace: submitting the same window twice
    counts it twice. Callers must hand in non-overlapping windows.
    """

    def create(self, wallet: str, fresh: TokenTradeMetrics, exchange_rate: Optional[Decimal] = None) -> PersistedTrade:
        return self.merge(PersistedTrade(wallet=wallet, token_address=fresh.token_address), fresh, exchange_rate)

    def merge(self, existing: PersistedTrade, fresh: TokenTradeMetrics, exchange_rate: Optional[Decimal] = None) -> PersistedTrade:
        invested = to_decimal(existing.invested_sol) + to_decimal(fresh.invested_sol)
        received = to_decimal(existing.total_sol_received) + to_decimal(fresh.total_sol_received)
        pnl = to_decimal(existing.realized_pnl) + to_decimal(fresh.realized_pnl)

        name = fresh.token_name
        if (not name or name == UNKNOWN_TOKEN_NAME) and existing.token_name:
            name = existing.token_name

        rate = to_decimal(exchange_rate) if exchange_rate is not None else None

        return PersistedTrade(
            wallet=existing.wallet,
            token_address=existing.token_address or fresh.token_address,
            token_name=name or UNKNOWN_TOKEN_NAME,
            first_trade=_earliest(existing.first_trade, fresh.first_trade),
            last_trade=_latest(existing.last_trade, fresh.last_trade),
            buys=to_int(existing.buys) + to_int(fresh.buys),
            sells=to_int(existing.sells) + to_int(fresh.sells),
            invested_sol=round_sol(invested),
            total_sol_received=round_sol(received),
            realized_pnl=round_sol(pnl),
            roi=compute_roi(pnl, invested),
            # priced from merged native totals, never summed USD
            invested_sol_usd=_usd(invested, rate),
            realized_pnl_usd=_usd(pnl, rate),
        )

    def merge_all(
        self,
        wallet: str,
        existing: Mapping[str, PersistedTrade],
        fresh: Mapping[str, TokenTradeMetrics],
        exchange_rate: Optional[Decimal] = None,
    ) -> List[PersistedTrade]:
        out: List[PersistedTrade] = []
        for mint, metrics in fresh.items():
            prior = existing.get(mint)
            if prior is None:
                out.append(self.create(wallet, metrics, exchange_rate))
            else:
                out.append(self.merge(prior, metrics, exchange_rate))
        logger.debug("Merged %d token(s) for %s (%d pre-existing)", len(out), wallet,
                     sum(1 for m in fresh if m in existing))
        return out


def index_by_token(trades: List[PersistedTrade]) -> Dict[str, PersistedTrade]:
    return {t.token_address: t for t in trades}
