from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from walletsync.core.models import PersistedTrade


class TradeStorePort(ABC):
    """
    Persisted per-(wallet, token) trade rows.
    """

    @abstractmethod
    def read_by_wallet(self, wallet: str, sort_by: str = "last_trade", order: str = "DESC") -> List[PersistedTrade]:
        raise NotImplementedError

    @abstractmethod
    def read_by_token(self, token_address: str, sort_by: str = "last_trade", order: str = "DESC") -> List[PersistedTrade]:
        raise NotImplementedError

    @abstractmethod
    def read_latest_timestamp(self, wallet: str) -> Optional[datetime]:
        raise NotImplementedError

    # all-or-nothing; False means nothing was applied
    @abstractmethod
    def upsert_batch(self, trades: Sequence[PersistedTrade]) -> bool:
        raise NotImplementedError
