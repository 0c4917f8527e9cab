from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Optional

from walletsync.config.settings import SYNC_LOOKBACK_DAYS
from walletsync.core.errors import WalletSyncError
from walletsync.ports.trade_store_port import TradeStorePort

logger = logging.getLogger(__name__)


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _is_local(now: datetime) -> bool:
    # astimezone() output carries a fixed offset equal to the local one
    return isinstance(now.tzinfo, timezone) and now.utcoffset() == now.astimezone().utcoffset()


def max_lookback(days: int, now: datetime) -> datetime:
    """
    Midnight `days` calendar days before `now`, in `now`'s timezone.

    Local-time input is re-resolved against the local zone, so a DST change
    inside the window still lands on 00:00 wall time.
    """
    if now.tzinfo is None:
        now = now.astimezone()
    day = (now - timedelta(days=int(days))).date()
    midnight = datetime.combine(day, time.min)
    if _is_local(now):
        return midnight.astimezone()
    return midnight.replace(tzinfo=now.tzinfo)


class SyncPlanner:
    """
    Picks where a wallet's next fetch starts: the persisted high-water mark
    when it is inside the requested window, otherwise the window start.
    """

    def __init__(
        self,
        store: TradeStorePort,
        default_days: int = SYNC_LOOKBACK_DAYS,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self.store = store
        self.default_days = default_days
        self._clock = clock

    def plan_start(self, wallet: str, requested_days: Optional[int] = None) -> datetime:
        days = self.default_days if requested_days is None else int(requested_days)
        lookback = max_lookback(days, self._clock())

        try:
            latest = self.store.read_latest_timestamp(wallet)
        except WalletSyncError as e:
            # fail closed: a larger refetch, never a skipped sync
            logger.warning("High-water mark lookup failed for %s, using max lookback: %s", wallet, e)
            return lookback

        if latest is not None and latest.tzinfo is None:
            latest = latest.astimezone()

        start = latest if latest is not None and latest > lookback else lookback
        logger.info(
            "Planned start for %s: %s (max lookback %s, latest persisted %s)",
            wallet,
            start.isoformat(),
            lookback.isoformat(),
            latest.isoformat() if latest else None,
        )
        return start
