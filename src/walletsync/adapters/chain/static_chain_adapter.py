from walletsync.ports.chain_data_port import ChainDataPort
from walletsync.core.dto import RawTransaction, TokenMeta
from typing import Optional, Dict, Iterable, List, Set

class StaticChainAdapter(ChainDataPort):
    def __init__(self,
                 transactions: Optional[List[RawTransaction]] = None,
                 token_meta: Optional[Dict[str, TokenMeta]] = None,
                 failing_mints: Optional[Set[str]] = None,
                 error: Optional[Exception] = None,
                 truncated: Optional[Set[str]] = None,
                 ):
        self._txs = transactions or []
        self._meta = token_meta or {}
        self._failing = set(failing_mints or ())
        self._error = error
        self._truncated = set(truncated or ())
        self.calls = []

    def iter_transactions(self, address, start_time):
        self.calls.append((address, start_time))
        if self._error is not None:
            raise self._error
        items = [
            t for t in self._txs
            if t.block_time > start_time
            and (address in t.account_keys or self._owns_token(t, address))
        ]
        items.sort(key=lambda x: (x.block_time, x.slot))
        return items

    def is_truncated(self, address: str) -> bool:
        return address in self._truncated

    def get_token_meta(self, mints: Iterable[str]) -> Dict[str, TokenMeta]:
        out = {}
        for m in set(mints):
            if m in self._failing:
                continue
            if m in self._meta:
                out[m] = self._meta[m]
        return out

    @staticmethod
    def _owns_token(tx: RawTransaction, address: str) -> bool:
        return bool(tx.pre_token_balances_for(address) or tx.post_token_balances_for(address))
