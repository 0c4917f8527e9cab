from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable

from walletsync.core.dto import RawTransaction, TokenMeta


class ChainDataPort(ABC):
    """
    Abstract Class for fetching raw wallet activity from the chain.
    """

    # --- Transactions touching an address, strictly after start_time ---

    @abstractmethod
    def iter_transactions(self, address: str, start_time: datetime) -> Iterable[RawTransaction]:
        raise NotImplementedError

    # --- True when the last fetch for address stopped before reaching start_time ---
    def is_truncated(self, address: str) -> bool:
        return False

    # --- token metadata (best effort, missing mints are simply absent) ---
    @abstractmethod
    def get_token_meta(self, mints: Iterable[str]) -> Dict[str, TokenMeta]:
        raise NotImplementedError
