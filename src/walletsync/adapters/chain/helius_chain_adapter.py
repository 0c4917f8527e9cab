import logging
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Set

import requests

from walletsync.config.settings import (
    HELIUS_RPC_URL,
    HELIUS_MIN_CALL_INTERVAL_SEC,
    HELIUS_TIMEOUT_SEC,
    HELIUS_MAX_RETRIES,
    HELIUS_SIGNATURE_PAGE_SIZE,
    HELIUS_MAX_SIGNATURE_PAGES,
)

from walletsync.adapters.chain.rate_limiter import SimpleRateLimiter, backoff_sleep
from walletsync.core.errors import DataSourceError, RateLimitError
from walletsync.ports.chain_data_port import ChainDataPort
from walletsync.core.dto import RawTransaction, SignatureInfo, TokenBalance, TokenMeta, TransactionMeta

logger = logging.getLogger(__name__)

_PARSE_ERRORS = (KeyError, TypeError, ValueError, InvalidOperation, AttributeError)


class HeliusChainAdapter(ChainDataPort):
    """
    Solana JSON-RPC (Helius) source. Every call goes through one rate limiter,
    so signature pages, transaction details and metadata lookups are all
    spaced by the same minimum interval.
    """

    def __init__(
        self,
        rpc_url: str = HELIUS_RPC_URL,
        min_call_interval_sec: float = HELIUS_MIN_CALL_INTERVAL_SEC,
        timeout_sec: int = HELIUS_TIMEOUT_SEC,
        max_retries: int = HELIUS_MAX_RETRIES,
        page_size: int = HELIUS_SIGNATURE_PAGE_SIZE,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._timeout = timeout_sec
        self._max_retries = max(1, int(max_retries))
        self._page_size = page_size

        self._rl = SimpleRateLimiter(min_call_interval_sec)
        self._session = session or requests.Session()
        self._request_id = 0

        self._token_meta_cache: Dict[str, TokenMeta] = {}
        self._truncated: Set[str] = set()

    # ---------- internal ----------

    def _call(self, method: str, params: Any) -> Any:
        last_err: Optional[Exception] = None

        for attempt in range(self._max_retries):
            self._request_id += 1
            payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
            try:
                self._rl.wait()
                logger.debug("RPC %s (attempt %d)", method, attempt + 1)
                resp = self._session.post(self._rpc_url, json=payload, timeout=self._timeout)
                if resp.status_code == 429:
                    raise RateLimitError(f"{method}: HTTP 429")
                resp.raise_for_status()
                data = resp.json()
            except (requests.RequestException, ValueError, RateLimitError) as e:
                last_err = e
                if attempt + 1 < self._max_retries:
                    backoff_sleep(attempt)
                continue

            err = data.get("error") if isinstance(data, dict) else {"message": f"Invalid response: {data}"}
            if err:
                message = str(err.get("message", err)) if isinstance(err, dict) else str(err)
                code = err.get("code") if isinstance(err, dict) else None
                if code == 429 or "rate" in message.lower():
                    last_err = RateLimitError(message)
                    if attempt + 1 < self._max_retries:
                        backoff_sleep(attempt)
                    continue
                logger.error("RPC error for %s: %s", method, message)
                raise DataSourceError(f"Helius {method} failed: {message}")

            return data.get("result")

        raise DataSourceError(f"Helius {method} failed after retries: {last_err}")

    @staticmethod
    def _ui_amount(raw: Optional[Dict[str, Any]]) -> Decimal:
        if not raw:
            return Decimal("0")
        if raw.get("uiAmountString") not in (None, ""):
            return Decimal(str(raw["uiAmountString"]))
        if raw.get("uiAmount") is not None:
            return Decimal(str(raw["uiAmount"]))
        amount = raw.get("amount")
        decimals = raw.get("decimals")
        if amount is not None and decimals is not None:
            return Decimal(str(amount)) / (Decimal(10) ** int(decimals))
        return Decimal("0")

    @classmethod
    def _token_balances(cls, rows: Optional[List[Dict[str, Any]]]) -> tuple:
        out = []
        for r in rows or []:
            out.append(
                TokenBalance(
                    account_index=int(r.get("accountIndex", -1)),
                    mint=str(r["mint"]),
                    owner=r.get("owner"),
                    ui_amount=cls._ui_amount(r.get("uiTokenAmount")),
                )
            )
        return tuple(out)

    @classmethod
    def parse_transaction(cls, signature: str, tx: Dict[str, Any], fallback_block_time: Optional[int] = None) -> RawTransaction:
        block_ts = tx.get("blockTime") or fallback_block_time
        if block_ts is None:
            raise ValueError(f"Transaction {signature} has no block time")

        keys = []
        for k in ((tx.get("transaction") or {}).get("message") or {}).get("accountKeys") or []:
            # jsonParsed gives {"pubkey": ...}; other encodings plain strings
            keys.append(k if isinstance(k, str) else str(k.get("pubkey", "")))

        meta = None
        m = tx.get("meta")
        if m is not None:
            meta = TransactionMeta(
                err=m.get("err"),
                fee_lamports=int(m.get("fee") or 0),
                pre_balances=tuple(int(x) for x in m.get("preBalances") or []),
                post_balances=tuple(int(x) for x in m.get("postBalances") or []),
                pre_token_balances=cls._token_balances(m.get("preTokenBalances")),
                post_token_balances=cls._token_balances(m.get("postTokenBalances")),
            )

        return RawTransaction(
            signature=signature,
            slot=int(tx.get("slot") or 0),
            block_time=datetime.fromtimestamp(int(block_ts), tz=timezone.utc),
            account_keys=tuple(keys),
            meta=meta,
        )

    @staticmethod
    def _parse_signature(row: Dict[str, Any]) -> SignatureInfo:
        bt = row.get("blockTime")
        signature = row["signature"]
        if not isinstance(signature, str) or not signature:
            raise ValueError(f"bad signature {signature!r}")
        return SignatureInfo(
            signature=signature,
            slot=int(row.get("slot") or 0),
            block_time=int(bt) if bt is not None else None,
            err=row.get("err"),
        )

    @staticmethod
    def _parse_asset(mint: str, result: Any) -> Optional[TokenMeta]:
        if not isinstance(result, dict):
            return None
        content = result.get("content")
        md = content.get("metadata") if isinstance(content, dict) else None
        if not isinstance(md, dict):
            md = {}
        symbol = md.get("symbol") or result.get("symbol")
        name = md.get("name") or symbol
        if not name:
            return None
        return TokenMeta(token_address=mint, name=str(name), symbol=str(symbol) if symbol else None)

    # ---------- signatures ----------

    def iter_signatures(self, address: str, start_time: datetime) -> List[SignatureInfo]:
        start_ts = start_time.timestamp()
        end_ts = time.time()

        before: Optional[str] = None
        pages = 0
        out: List[SignatureInfo] = []

        self._truncated.discard(address)

        while True:
            cfg: Dict[str, Any] = {"limit": self._page_size, "commitment": "confirmed"}
            if before:
                cfg["before"] = before
            rows = self._call("getSignaturesForAddress", [address, cfg]) or []
            pages += 1
            if not isinstance(rows, list):
                raise DataSourceError(f"Helius getSignaturesForAddress returned {type(rows).__name__}, expected a list")
            if not rows:
                break

            page: List[SignatureInfo] = []
            for r in rows:
                try:
                    page.append(self._parse_signature(r))
                except _PARSE_ERRORS as e:
                    logger.warning("Skipping malformed signature row for %s: %s", address, e)

            out.extend(
                s for s in page
                if s.block_time is not None and start_ts < s.block_time <= end_ts
            )

            # newest first: once a page reaches the window start we are done
            if not page:
                break
            last = page[-1]
            if last.block_time is not None and last.block_time <= start_ts:
                break
            if len(rows) < self._page_size:
                break
            if pages >= HELIUS_MAX_SIGNATURE_PAGES:
                self._truncated.add(address)
                logger.warning(
                    "Stopping signature paging for %s after %d pages; older signatures in the window are not fetched",
                    address,
                    pages,
                )
                break
            before = last.signature

        logger.info("Found %d signature(s) for %s since %s", len(out), address, start_time.isoformat())
        return out

    # ---------- port methods ----------

    def iter_transactions(self, address: str, start_time: datetime) -> Iterable[RawTransaction]:
        # signature failures propagate; detail failures only skip that transaction
        signatures = self.iter_signatures(address, start_time)

        for sig in reversed(signatures):
            try:
                tx = self._call(
                    "getTransaction",
                    [
                        sig.signature,
                        {
                            "encoding": "jsonParsed",
                            "maxSupportedTransactionVersion": 0,
                            "commitment": "confirmed",
                        },
                    ],
                )
                if not tx:
                    logger.debug("No transaction body for %s", sig.signature)
                    continue
                raw = self.parse_transaction(sig.signature, tx, fallback_block_time=sig.block_time)
            except DataSourceError as e:
                logger.warning("Skipping transaction %s: %s", sig.signature, e)
                continue
            except _PARSE_ERRORS as e:
                logger.warning("Skipping malformed transaction %s: %s", sig.signature, e)
                continue

            yield raw

    def is_truncated(self, address: str) -> bool:
        return address in self._truncated

    def get_token_meta(self, mints: Iterable[str]) -> Dict[str, TokenMeta]:
        out: Dict[str, TokenMeta] = {}
        for mint in sorted(set(mints)):
            if mint in self._token_meta_cache:
                out[mint] = self._token_meta_cache[mint]
                continue
            try:
                result = self._call("getAsset", {"id": mint})
            except DataSourceError as e:
                logger.warning("Metadata lookup failed for %s: %s", mint, e)
                continue
            try:
                meta = self._parse_asset(mint, result)
            except _PARSE_ERRORS as e:
                logger.warning("Malformed metadata for %s: %s", mint, e)
                continue
            if meta is None:
                continue

            self._token_meta_cache[mint] = meta
            out[mint] = meta
        return out
