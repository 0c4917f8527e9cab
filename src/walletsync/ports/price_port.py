from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal


class PricePort(ABC):

    @abstractmethod
    def get_native_usd_price(self) -> Decimal:
        raise NotImplementedError
