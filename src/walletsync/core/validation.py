from __future__ import annotations

import re
from typing import Iterable, List, Optional

from walletsync.config.settings import TRADES_MAX_DAYS, TRADES_MIN_DAYS
from walletsync.core.errors import ValidationError
from walletsync.core.models import StoredTradesQuery, SyncRequest, TokenTradesQuery, TradesQuery


# Base58 Solana address (no 0, O, I, l)
WALLET_PATTERN = r"^[1-9A-HJ-NP-Za-km-z]{32,44}$"
_WALLET_RE = re.compile(WALLET_PATTERN)

VALID_SORT_FIELDS = (
    "token_name",
    "first_trade",
    "last_trade",
    "buys",
    "sells",
    "invested_sol",
    "realized_pnl",
    "roi",
)
VALID_SORT_ORDERS = ("ASC", "DESC")


def is_valid_wallet(address: Optional[str]) -> bool:
    return bool(address) and bool(_WALLET_RE.match(address))


def _check_days(days, errors: List[str]) -> int:
    try:
        d = int(days)
    except (TypeError, ValueError):
        errors.append(f"days must be an integer, got {days!r}")
        return 0
    if d < TRADES_MIN_DAYS or d > TRADES_MAX_DAYS:
        errors.append(f"days must be between {TRADES_MIN_DAYS} and {TRADES_MAX_DAYS}")
    return d


def validate_trades_query(wallet: Optional[str], days=30) -> TradesQuery:
    errors: List[str] = []
    if not wallet:
        errors.append("wallet is required")
    elif not is_valid_wallet(wallet):
        errors.append(f"wallet is not a valid address: {wallet}")
    d = _check_days(days, errors)
    if errors:
        raise ValidationError("Validation error", errors)
    return TradesQuery(wallet=wallet, days=d)


def validate_sync_request(wallets: Iterable[str], days=30) -> SyncRequest:
    errors: List[str] = []
    items = [w.strip() for w in wallets if w and w.strip()]
    for w in items:
        if not is_valid_wallet(w):
            errors.append(f"wallet is not a valid address: {w}")
    d = _check_days(days, errors)
    if errors:
        raise ValidationError("Validation error", errors)
    # keep order, drop duplicates
    return SyncRequest(wallets=tuple(dict.fromkeys(items)), days=d)


def _check_sort(sort_by: str, order: str, errors: List[str]) -> str:
    if sort_by not in VALID_SORT_FIELDS:
        errors.append(f"sort_by must be one of {', '.join(VALID_SORT_FIELDS)}")
    normalized = str(order or "").upper()
    if normalized not in VALID_SORT_ORDERS:
        errors.append("order must be ASC or DESC")
    return normalized


def validate_stored_query(wallet: Optional[str], sort_by: str = "last_trade", order: str = "DESC") -> StoredTradesQuery:
    errors: List[str] = []
    if not is_valid_wallet(wallet):
        errors.append(f"wallet is not a valid address: {wallet}")
    normalized = _check_sort(sort_by, order, errors)
    if errors:
        raise ValidationError("Validation error", errors)
    return StoredTradesQuery(wallet=wallet, sort_by=sort_by, order=normalized)


def validate_token_query(token_address: Optional[str], sort_by: str = "last_trade", order: str = "DESC") -> TokenTradesQuery:
    errors: List[str] = []
    # mints share the base58 address format
    if not is_valid_wallet(token_address):
        errors.append(f"token is not a valid address: {token_address}")
    normalized = _check_sort(sort_by, order, errors)
    if errors:
        raise ValidationError("Validation error", errors)
    return TokenTradesQuery(token_address=token_address, sort_by=sort_by, order=normalized)
