from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from walletsync.config.settings import SYNC_LOOKBACK_DAYS, TRADES_MAX_DAYS, TRADES_MIN_DAYS
from walletsync.core.errors import ValidationError
from walletsync.core.models import TradesQuery
from walletsync.core.validation import WALLET_PATTERN, validate_stored_query, validate_sync_request, validate_token_query
from walletsync.io.schemas import sync_result_to_dict, trades_result_to_dict, trades_to_list
from walletsync.services.sync_service import WalletSyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wallets", tags=["wallets"])
tokens_router = APIRouter(prefix="/tokens", tags=["tokens"])


class SyncBody(BaseModel):
    wallets: Optional[List[str]] = None
    days: int = Field(SYNC_LOOKBACK_DAYS, ge=TRADES_MIN_DAYS, le=TRADES_MAX_DAYS)


def get_service(request: Request) -> WalletSyncService:
    return request.app.state.service


@router.get("/trades")
def wallet_trades(
    wallet: str = Query(..., pattern=WALLET_PATTERN),
    days: int = Query(SYNC_LOOKBACK_DAYS, ge=TRADES_MIN_DAYS, le=TRADES_MAX_DAYS),
    svc: WalletSyncService = Depends(get_service),
):
    """
    Per-token activity for one wallet over the last `days` days.
    Read only; a chain failure comes back as empty transactions plus an error.
    """
    result = svc.query_trades(TradesQuery(wallet=wallet, days=days))
    return trades_result_to_dict(result)


@router.post("/sync")
def sync_wallets(
    request: Request,
    body: Optional[SyncBody] = None,
    svc: WalletSyncService = Depends(get_service),
):
    body = body or SyncBody()
    wallets = body.wallets if body.wallets else request.app.state.wallets
    sync_request = validate_sync_request(wallets, body.days)
    if not sync_request.wallets:
        raise ValidationError("Validation error", ["no wallets given and none configured"])

    results = svc.sync_all(sync_request)
    return {
        "results": [sync_result_to_dict(r) for r in results],
        "tradesProcessed": sum(r.trades_processed for r in results),
    }


@router.get("/{wallet}/stored")
def stored_trades(
    wallet: str,
    sort_by: str = "last_trade",
    order: str = "DESC",
    svc: WalletSyncService = Depends(get_service),
):
    query = validate_stored_query(wallet, sort_by, order)
    trades = svc.stored_trades(query)
    return {"wallet": wallet, "trades": trades_to_list(trades)}


@tokens_router.get("/{token}/stored")
def token_trades(
    token: str,
    sort_by: str = "last_trade",
    order: str = "DESC",
    svc: WalletSyncService = Depends(get_service),
):
    """Persisted rows for one token across every tracked wallet."""
    query = validate_token_query(token, sort_by, order)
    trades = svc.token_trades(query)
    return {"token": token, "trades": trades_to_list(trades)}
