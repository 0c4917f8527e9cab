from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from walletsync.core.dto import RawTransaction
from walletsync.core.models import (
    PersistedTrade,
    TokenActivity,
    TokenTradeMetrics,
    TradesQueryResult,
    WalletSyncResult,
)
from walletsync.services.trade_aggregator import native_change


def _dec_to_str(x: Optional[Decimal]) -> Optional[str]:
    # keep as string for JSON precision safety
    if x is None:
        return None
    return format(x, "f")


def _ts(x: Optional[datetime]) -> Optional[str]:
    return x.isoformat() if x is not None else None


def metrics_to_dict(m: TokenTradeMetrics) -> Dict[str, Any]:
    return {
        "token_name": m.token_name,
        "token_address": m.token_address,
        "first_trade": _ts(m.first_trade),
        "last_trade": _ts(m.last_trade),
        "buys": m.buys,
        "sells": m.sells,
        "invested_sol": _dec_to_str(m.invested_sol),
        "total_sol_received": _dec_to_str(m.total_sol_received),
        "realized_pnl": _dec_to_str(m.realized_pnl),
        "roi": _dec_to_str(m.roi),
    }


def transaction_to_dict(tx: RawTransaction, wallet: str) -> Dict[str, Any]:
    change = native_change(tx, wallet)
    return {
        "signature": tx.signature,
        "block_time": _ts(tx.block_time),
        "slot": tx.slot,
        "success": tx.success,
        "fee": _dec_to_str(tx.fee_sol),
        "sol_change": _dec_to_str(change),
        "pre_token_balances": [
            {"mint": b.mint, "amount": _dec_to_str(b.ui_amount)} for b in tx.pre_token_balances_for(wallet)
        ],
        "post_token_balances": [
            {"mint": b.mint, "amount": _dec_to_str(b.ui_amount)} for b in tx.post_token_balances_for(wallet)
        ],
    }


def activity_to_dict(wallet: str, activity: Mapping[str, TokenActivity]) -> Dict[str, Any]:
    return {
        mint: {
            "metadata": metrics_to_dict(a.metrics),
            "transactions": [transaction_to_dict(tx, wallet) for tx in a.transactions],
        }
        for mint, a in activity.items()
    }


def trades_result_to_dict(r: TradesQueryResult) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "wallet": r.wallet,
        "start_time": _ts(r.start_time),
        "transactions": activity_to_dict(r.wallet, r.activity),
    }
    if r.error:
        out["error"] = r.error
    return out


def trade_to_dict(t: PersistedTrade) -> Dict[str, Any]:
    return {
        "id": t.id,
        "wallet": t.wallet,
        "token_name": t.token_name,
        "token_address": t.token_address,
        "first_trade": _ts(t.first_trade),
        "last_trade": _ts(t.last_trade),
        "buys": t.buys,
        "sells": t.sells,
        "invested_sol": _dec_to_str(t.invested_sol),
        "total_sol_received": _dec_to_str(t.total_sol_received),
        "realized_pnl": _dec_to_str(t.realized_pnl),
        "roi": _dec_to_str(t.roi),
        "invested_sol_usd": _dec_to_str(t.invested_sol_usd),
        "realized_pnl_usd": _dec_to_str(t.realized_pnl_usd),
    }


def trades_to_list(trades: Iterable[PersistedTrade]) -> List[Dict[str, Any]]:
    return [trade_to_dict(t) for t in trades]


def sync_result_to_dict(r: WalletSyncResult) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "wallet": r.wallet,
        "tradesProcessed": r.trades_processed,
        "persisted": r.persisted,
        "start_time": _ts(r.start_time),
    }
    if r.error:
        out["error"] = r.error
    return out
