from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from walletsync.core.errors import PersistenceError, ValidationError
from walletsync.core.models import PersistedTrade
from walletsync.core.validation import VALID_SORT_FIELDS, VALID_SORT_ORDERS
from walletsync.ports.trade_store_port import TradeStorePort


class StaticTradeStore(TradeStorePort):
    """In-memory trade rows (dev/testing)."""

    def __init__(self,
                 trades: Optional[Iterable[PersistedTrade]] = None,
                 fail_reads: bool = False,
                 fail_writes: bool = False,
                 ) -> None:
        self._rows: Dict[str, PersistedTrade] = {t.id: t for t in (trades or [])}
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes
        self.batches: List[List[PersistedTrade]] = []

    def _sorted(self, items: List[PersistedTrade], sort_by: str, order: str) -> List[PersistedTrade]:
        if sort_by not in VALID_SORT_FIELDS:
            raise ValidationError("Invalid sort field", [sort_by])
        direction = str(order or "").upper()
        if direction not in VALID_SORT_ORDERS:
            raise ValidationError("Invalid sort order", [order])

        present = [t for t in items if getattr(t, sort_by) is not None]
        missing = [t for t in items if getattr(t, sort_by) is None]
        present.sort(key=lambda t: getattr(t, sort_by), reverse=direction == "DESC")
        # NULLS LAST either way
        return present + missing

    def read_by_wallet(self, wallet, sort_by="last_trade", order="DESC"):
        if self.fail_reads:
            raise PersistenceError("store unavailable")
        return self._sorted([t for t in self._rows.values() if t.wallet == wallet], sort_by, order)

    def read_by_token(self, token_address, sort_by="last_trade", order="DESC"):
        if self.fail_reads:
            raise PersistenceError("store unavailable")
        return self._sorted([t for t in self._rows.values() if t.token_address == token_address], sort_by, order)

    def read_latest_timestamp(self, wallet: str) -> Optional[datetime]:
        if self.fail_reads:
            raise PersistenceError("store unavailable")
        stamps = [t.last_trade for t in self._rows.values() if t.wallet == wallet and t.last_trade is not None]
        return max(stamps) if stamps else None

    def upsert_batch(self, trades: Sequence[PersistedTrade]) -> bool:
        if self.fail_writes:
            return False
        batch = [replace(t) for t in trades]
        for t in batch:
            self._rows[t.id] = t
        self.batches.append(batch)
        return True
