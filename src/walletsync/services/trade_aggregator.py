from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Iterable, Optional, Set

from walletsync.config.settings import (
    LAMPORTS_PER_SOL,
    MOVEMENT_EPSILON,
    NATIVE_MINTS,
    ROI_PRECISION,
    SOL_PRECISION,
    UNKNOWN_TOKEN_NAME,
)
from walletsync.core.dto import RawTransaction, TokenBalance
from walletsync.core.errors import DataSourceError
from walletsync.core.models import TokenActivity, TokenTradeMetrics, ZERO
from walletsync.ports.chain_data_port import ChainDataPort

logger = logging.getLogger(__name__)

_PARSE_ERRORS = (KeyError, TypeError, ValueError, InvalidOperation, AttributeError, IndexError)


def round_sol(x: Decimal) -> Decimal:
    return Decimal(x).quantize(SOL_PRECISION, rounding=ROUND_HALF_UP)


def compute_roi(realized_pnl: Decimal, invested: Decimal) -> Decimal:
    if invested <= 0:
        return ZERO.quantize(ROI_PRECISION)
    return (realized_pnl / invested * Decimal(100)).quantize(ROI_PRECISION, rounding=ROUND_HALF_UP)


def native_change(tx: RawTransaction, wallet: str) -> Optional[Decimal]:
    """
    SOL delta of the wallet's own account in this transaction, or None when
    the wallet is not in the account list or the move is below epsilon.
    """
    if tx.meta is None:
        return None
    idx = tx.account_index(wallet)
    if idx < 0:
        return None
    pre = tx.meta.pre_balances
    post = tx.meta.post_balances
    if idx >= len(pre) or idx >= len(post):
        return None
    diff = (Decimal(post[idx]) - Decimal(pre[idx])) / LAMPORTS_PER_SOL
    if abs(diff) <= MOVEMENT_EPSILON:
        return None
    return diff


def _amount_for(balances: Iterable[TokenBalance], mint: str) -> Decimal:
    for b in balances:
        if b.mint == mint:
            return b.ui_amount
    return ZERO


class TradeAggregator:
    """
    Folds a wallet's raw transactions into per-token trade metrics.

    - Buy:  token balance up, SOL down (beyond epsilon)
    - Sell: token balance down, SOL up (beyond epsilon)
    - Anything else only moves first/last trade timestamps
    """

    def __init__(self, chain: Optional[ChainDataPort] = None) -> None:
        # chain is only used for token name lookups
        self.chain = chain

    def aggregate(self, wallet: str, transactions: Iterable[RawTransaction]) -> Dict[str, TokenTradeMetrics]:
        return {mint: a.metrics for mint, a in self.aggregate_activity(wallet, transactions).items()}

    def aggregate_activity(self, wallet: str, transactions: Iterable[RawTransaction]) -> Dict[str, TokenActivity]:
        by_mint: Dict[str, TokenActivity] = {}

        for tx in transactions:
            try:
                self._fold(wallet, tx, by_mint)
            except _PARSE_ERRORS as e:
                logger.warning("Skipping transaction %s: %s", getattr(tx, "signature", "?"), e)
                continue

        for activity in by_mint.values():
            self._finalize(activity.metrics)

        self._resolve_names(by_mint)
        logger.info("Aggregated %d token(s) for %s", len(by_mint), wallet)
        return by_mint

    # -------------------------
    # Folding
    # -------------------------

    def _fold(self, wallet: str, tx: RawTransaction, by_mint: Dict[str, TokenActivity]) -> None:
        if tx.meta is None:
            return

        pre = tx.pre_token_balances_for(wallet)
        post = tx.post_token_balances_for(wallet)
        sol_change = native_change(tx, wallet)

        if not pre and not post and sol_change is None:
            return

        # one pass per mint per transaction
        seen: Set[str] = set()
        for balance in list(pre) + list(post):
            mint = balance.mint
            if mint in seen or mint in NATIVE_MINTS:
                continue
            seen.add(mint)

            activity = by_mint.get(mint)
            if activity is None:
                activity = TokenActivity(metrics=TokenTradeMetrics(token_address=mint))
                by_mint[mint] = activity
            activity.transactions.append(tx)

            m = activity.metrics
            m.touch(tx.block_time)

            if not tx.success or sol_change is None:
                continue

            token_diff = _amount_for(post, mint) - _amount_for(pre, mint)
            if token_diff > MOVEMENT_EPSILON and sol_change < 0:
                m.buys += 1
                m.invested_sol += abs(sol_change)
            elif token_diff < -MOVEMENT_EPSILON and sol_change > 0:
                m.sells += 1
                m.total_sol_received += sol_change

    @staticmethod
    def _finalize(m: TokenTradeMetrics) -> None:
        invested = m.invested_sol
        received = m.total_sol_received
        pnl = received - invested
        m.roi = compute_roi(pnl, invested)
        m.invested_sol = round_sol(invested)
        m.total_sol_received = round_sol(received)
        m.realized_pnl = round_sol(pnl)

    # -------------------------
    # Names
    # -------------------------

    def _resolve_names(self, by_mint: Dict[str, TokenActivity]) -> None:
        if not by_mint or self.chain is None:
            return
        try:
            meta = self.chain.get_token_meta(list(by_mint.keys()))
        except DataSourceError as e:
            # best effort: names stay Unknown
            logger.warning("Token metadata lookup failed: %s", e)
            return

        for mint, activity in by_mint.items():
            tm = meta.get(mint)
            name = tm.name if tm is not None else None
            activity.metrics.token_name = name or UNKNOWN_TOKEN_NAME
