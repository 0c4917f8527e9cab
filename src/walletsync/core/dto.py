from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from walletsync.config.settings import LAMPORTS_PER_SOL


@dataclass(frozen=True)
class TokenBalance:
    account_index: int
    mint: str
    owner: Optional[str]
    ui_amount: Decimal          # decimals already applied


@dataclass(frozen=True)
class TransactionMeta:
    err: Optional[object] = None
    fee_lamports: int = 0
    pre_balances: Tuple[int, ...] = ()      # lamports, indexed like account_keys
    post_balances: Tuple[int, ...] = ()
    pre_token_balances: Tuple[TokenBalance, ...] = ()
    post_token_balances: Tuple[TokenBalance, ...] = ()


@dataclass(frozen=True)
class RawTransaction:
    signature: str
    slot: int
    block_time: datetime
    account_keys: Tuple[str, ...] = ()
    meta: Optional[TransactionMeta] = None

    @property
    def success(self) -> bool:
        return self.meta is not None and self.meta.err is None

    @property
    def fee_sol(self) -> Decimal:
        if self.meta is None:
            return Decimal("0")
        return Decimal(self.meta.fee_lamports) / LAMPORTS_PER_SOL

    def account_index(self, address: str) -> int:
        for i, key in enumerate(self.account_keys):
            if key == address:
                return i
        return -1

    def pre_token_balances_for(self, owner: str) -> Tuple[TokenBalance, ...]:
        if self.meta is None:
            return ()
        return tuple(b for b in self.meta.pre_token_balances if b.owner == owner)

    def post_token_balances_for(self, owner: str) -> Tuple[TokenBalance, ...]:
        if self.meta is None:
            return ()
        return tuple(b for b in self.meta.post_token_balances if b.owner == owner)


@dataclass(frozen=True)
class TokenMeta:
    token_address: str
    name: Optional[str]
    symbol: Optional[str] = None


@dataclass(frozen=True)
class SignatureInfo:
    signature: str
    slot: int
    block_time: Optional[int]       # unix seconds, may be missing on old slots
    err: Optional[object] = None
