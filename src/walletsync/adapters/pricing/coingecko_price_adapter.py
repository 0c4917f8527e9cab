from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import requests

from walletsync.adapters.chain.rate_limiter import SimpleRateLimiter, backoff_sleep
from walletsync.config import settings
from walletsync.core.errors import PriceUnavailableError
from walletsync.ports.price_port import PricePort

logger = logging.getLogger(__name__)


class CoinGeckoPriceAdapter(PricePort):
    """
    Current native-currency USD rate. There is no fallback rate: a missing
    price raises instead of producing zero USD values.
    """

    def __init__(
        self,
        base_url: str = settings.COINGECKO_BASE_URL,
        coin_id: str = settings.COINGECKO_NATIVE_ID,
        api_key: Optional[str] = settings.COINGECKO_API_KEY,
        min_call_interval_sec: float = settings.COINGECKO_MIN_CALL_INTERVAL_SEC,
        timeout_sec: int = settings.COINGECKO_TIMEOUT_SEC,
        max_retries: int = settings.COINGECKO_MAX_RETRIES,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._coin_id = coin_id
        self._headers = {"x-cg-demo-api-key": api_key} if api_key else {}
        self._timeout = timeout_sec
        self._max_retries = max(1, int(max_retries))
        self._rl = SimpleRateLimiter(min_call_interval_sec)
        self._session = session or requests.Session()

    def _call(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        last_err: Optional[Exception] = None
        url = f"{self._base_url}/{path.lstrip('/')}"
        for attempt in range(self._max_retries):
            try:
                self._rl.wait()
                resp = self._session.get(url, params=params, headers=self._headers, timeout=self._timeout)
                resp.raise_for_status()
                data = resp.json()
                if not isinstance(data, dict):
                    raise ValueError(f"Invalid CoinGecko response: {data}")
                return data
            except (requests.RequestException, ValueError) as e:
                last_err = e
                if attempt + 1 < self._max_retries:
                    backoff_sleep(attempt)
        raise PriceUnavailableError(f"CoinGecko failed after retries: {last_err}")

    def get_native_usd_price(self) -> Decimal:
        data = self._call("simple/price", {"ids": self._coin_id, "vs_currencies": "usd"})
        raw = (data.get(self._coin_id) or {}).get("usd")
        if raw is None:
            raise PriceUnavailableError(f"No USD price for {self._coin_id} in CoinGecko response")
        try:
            price = Decimal(str(raw))
        except InvalidOperation as e:
            raise PriceUnavailableError(f"Invalid USD price for {self._coin_id}: {raw!r}") from e
        if price <= 0:
            raise PriceUnavailableError(f"Non-positive USD price for {self._coin_id}: {price}")
        logger.info("%s price: %s USD", self._coin_id, price)
        return price
