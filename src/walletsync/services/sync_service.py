from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional

from walletsync.core.errors import WalletSyncError
from walletsync.core.models import (
    PersistedTrade,
    StoredTradesQuery,
    SyncRequest,
    TokenActivity,
    TokenTradesQuery,
    TradesQuery,
    TradesQueryResult,
    WalletSyncResult,
)
from walletsync.ports.chain_data_port import ChainDataPort
from walletsync.ports.price_port import PricePort
from walletsync.ports.trade_store_port import TradeStorePort
from walletsync.services.sync_planner import SyncPlanner, max_lookback
from walletsync.services.trade_aggregator import TradeAggregator
from walletsync.services.trade_merger import TradeMerger, index_by_token

logger = logging.getLogger(__name__)

ProgressFn = Callable[[str, dict], None]


def _noop(event: str, data: dict) -> None:
    return None


class WalletSyncService:
    """
    Wallet sync pipeline: plan -> fetch -> aggregate -> merge -> persist.

    - Wallets are processed one after another, never in parallel
    - One wallet's rows are written as a single batch
    - A failing wallet is reported with zero trades processed; the batch goes on
    """

    def __init__(
        self,
        chain: ChainDataPort,
        store: TradeStorePort,
        price: Optional[PricePort] = None,
        planner: Optional[SyncPlanner] = None,
        aggregator: Optional[TradeAggregator] = None,
        merger: Optional[TradeMerger] = None,
    ) -> None:
        self.chain = chain
        self.store = store
        self.price = price
        self.planner = planner or SyncPlanner(store)
        self.aggregator = aggregator or TradeAggregator(chain)
        self.merger = merger or TradeMerger()
        # one sync at a time per process: overlapping windows would double count
        self._sync_lock = threading.Lock()

    # -------------------------
    # Fetch
    # -------------------------

    def fetch_token_activity(self, address: str, start_time: datetime) -> Dict[str, TokenActivity]:
        # transport errors propagate so the caller decides what to do
        txs = self.chain.iter_transactions(address, start_time)
        return self.aggregator.aggregate_activity(address, txs)

    # -------------------------
    # Sync
    # -------------------------

    def _truncation_note(self, wallet: str) -> Optional[str]:
        if not self.chain.is_truncated(wallet):
            return None
        logger.warning("Fetch for %s hit the signature page limit; older activity in the window was skipped", wallet)
        return "Signature history truncated: older transactions in the window were not fetched"

    def sync_wallet(self, wallet: str, days: Optional[int] = None, on_progress: ProgressFn = _noop) -> WalletSyncResult:
        with self._sync_lock:
            return self._sync_wallet(wallet, days, on_progress)

    def _sync_wallet(self, wallet: str, days: Optional[int], on_progress: ProgressFn) -> WalletSyncResult:
        result = WalletSyncResult(wallet=wallet)
        on_progress("wallet_start", {"wallet": wallet})
        try:
            start = self.planner.plan_start(wallet, days)
            result.start_time = start

            existing = index_by_token(self.store.read_by_wallet(wallet))

            on_progress("fetch", {"wallet": wallet, "start_time": start})
            activity = self.fetch_token_activity(wallet, start)
            fresh = {mint: a.metrics for mint, a in activity.items()}
            truncation = self._truncation_note(wallet)

            if not fresh:
                logger.info("No new trades found for wallet %s", wallet)
                result.persisted = True
                result.error = truncation
                on_progress("wallet_done", {"wallet": wallet, "trades": 0})
                return result

            # one rate for the whole pass
            rate = self.price.get_native_usd_price() if self.price is not None else None
            trades = self.merger.merge_all(wallet, existing, fresh, rate)

            if not self.store.upsert_batch(trades):
                logger.error("Failed to persist %d trade(s) for wallet %s", len(trades), wallet)
                result.error = "Failed to persist trades"
                on_progress("error", {"wallet": wallet, "message": result.error})
                return result

            result.persisted = True
            result.trades_processed = len(trades)
            result.error = truncation
            logger.info("Processed %d trade(s) for wallet %s", len(trades), wallet)
            on_progress("wallet_done", {"wallet": wallet, "trades": len(trades)})
            return result

        except WalletSyncError as e:
            logger.error("Error processing wallet %s: %s", wallet, e)
            result.error = str(e)
            result.trades_processed = 0
            on_progress("error", {"wallet": wallet, "message": result.error})
            return result

    def sync_all(self, request: SyncRequest, on_progress: ProgressFn = _noop) -> List[WalletSyncResult]:
        logger.info("Starting wallet sync job for %d wallet(s)", len(request.wallets))
        on_progress("start", {"wallets": len(request.wallets)})

        results: List[WalletSyncResult] = []
        for wallet in request.wallets:
            try:
                results.append(self.sync_wallet(wallet, request.days, on_progress=on_progress))
            except Exception as e:
                # unexpected failure: report this wallet, keep the batch going
                logger.exception("Unexpected error processing wallet %s", wallet)
                results.append(WalletSyncResult(wallet=wallet, error=f"{e.__class__.__name__}: {e}"))
                on_progress("error", {"wallet": wallet, "message": str(e)})

        total = sum(r.trades_processed for r in results)
        logger.info("Sync job completed: %d trade(s) across %d wallet(s)", total, len(results))
        on_progress("done", {"wallets": len(results), "trades": total})
        return results

    # -------------------------
    # Reads
    # -------------------------

    def query_trades(self, query: TradesQuery, now: Optional[datetime] = None) -> TradesQueryResult:
        """On-demand view of chain activity; degrades to empty plus an error."""
        start = max_lookback(query.days, now or datetime.now().astimezone())
        result = TradesQueryResult(wallet=query.wallet, start_time=start)
        try:
            result.activity = self.fetch_token_activity(query.wallet, start)
            result.error = self._truncation_note(query.wallet)
        except WalletSyncError as e:
            logger.error("Error fetching transactions for %s: %s", query.wallet, e)
            result.activity = {}
            result.error = str(e) or "Error fetching transactions"
        return result

    def stored_trades(self, query: StoredTradesQuery) -> List[PersistedTrade]:
        return self.store.read_by_wallet(query.wallet, sort_by=query.sort_by, order=query.order)

    def token_trades(self, query: TokenTradesQuery) -> List[PersistedTrade]:
        return self.store.read_by_token(query.token_address, sort_by=query.sort_by, order=query.order)
