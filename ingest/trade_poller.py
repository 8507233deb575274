import asyncio
import logging
import random
import time
from typing import Callable, List, Optional, Sequence

from api.metrics import metrics
from config import config
from config.utils import as_float, as_int
from monitoring.async_utils import gather_isolated
from .data_api import DataAPIClient
from .models import TradeActivityRecord, WatchedWallet
from .position_sync import PositionSynchronizer
from .subscription_tracker import AssetSubscriptionTracker


logger = logging.getLogger(__name__)


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, asyncio.TimeoutError):
        return True
    return 'timeout' in str(exc).lower()


class TradePoller:
    """Fixed-cadence detection of new trades for every watched wallet.

    Each cycle fans out one fetch/dedup/persist chain per wallet. Chains are
    isolated: a failing wallet is logged and never delays or aborts the others
    beyond the cycle's own completion.
    """

    def __init__(
        self,
        wallets: Sequence[WatchedWallet],
        client: DataAPIClient,
        tracker: AssetSubscriptionTracker,
        position_sync: PositionSynchronizer,
        too_old_timestamp: Optional[int] = None,
        interval_ms: Optional[float] = None,
        position_refresh_probability: Optional[float] = None,
        rng: Optional[Callable[[], float]] = None,
    ):
        poll_cfg = config.section('polling')
        self.wallets: List[WatchedWallet] = list(wallets)
        self.client = client
        self.tracker = tracker
        self.position_sync = position_sync
        self.too_old_timestamp = (
            too_old_timestamp if too_old_timestamp is not None
            else as_int(poll_cfg.get('too_old_timestamp'), 0)
        )
        self.interval_ms = (
            interval_ms if interval_ms is not None
            else as_float(poll_cfg.get('interval_ms'), 200.0)
        )
        self.position_refresh_probability = (
            position_refresh_probability if position_refresh_probability is not None
            else as_float(poll_cfg.get('position_refresh_probability'), 0.2)
        )
        self._rng = rng or random.random
        self.running = False
        self._stop_requested = False
        self._history_marked = False

    async def mark_history_once(self) -> int:
        """Flag every stored, unprocessed trade as processed; only the first call acts."""
        if self._history_marked:
            return 0
        logger.info("First run: marking all historical trades as processed...")
        total = 0
        for wallet in self.wallets:
            count = await wallet.activity.mark_all_processed()
            if count > 0:
                logger.info(
                    "Marked %s historical trades as processed for %s", count, wallet.label
                )
            total += count
        self._history_marked = True
        metrics.record_historical_marked(total)
        logger.info("Historical trades processed. Now monitoring for new trades only.")
        return total

    async def poll_once(self) -> int:
        started = time.monotonic()
        results = await gather_isolated(
            (self._poll_wallet_safe(wallet) for wallet in self.wallets),
        )
        metrics.record_poll_cycle(time.monotonic() - started)
        return sum(result for result in results if isinstance(result, int))

    async def _poll_wallet_safe(self, wallet: WatchedWallet) -> int:
        try:
            return await self.poll_wallet(wallet)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if _is_timeout(e):
                metrics.record_poll_error('timeout')
            else:
                metrics.record_poll_error('error')
                logger.error("Error polling %s: %s", wallet.label, e)
            return 0

    async def poll_wallet(self, wallet: WatchedWallet) -> int:
        activities = await self.client.fetch_trade_activity(wallet.address)

        new_trades = 0
        for entry in activities:
            if not isinstance(entry, dict):
                continue
            new_trades += await self._ingest(wallet, entry)

        if self._rng() < self.position_refresh_probability:
            await self.position_sync.sync_wallet(wallet)

        return new_trades

    async def _ingest(self, wallet: WatchedWallet, entry: dict) -> int:
        try:
            timestamp = int(float(entry.get('timestamp') or 0))
        except (TypeError, ValueError):
            metrics.record_trade_skipped('bad_timestamp')
            return 0
        if timestamp < self.too_old_timestamp:
            return 0

        tx_hash = entry.get('transactionHash')
        if not tx_hash:
            metrics.record_trade_skipped('missing_hash')
            return 0

        if await wallet.activity.find_by_transaction(tx_hash) is not None:
            return 0

        record = TradeActivityRecord.from_api(wallet.address, entry)
        if not await wallet.activity.insert(record):
            return 0
        metrics.record_trade_ingested()

        if record.asset:
            await self.tracker.track([record.asset])

        logger.info(
            "NEW TRADE from %s: %s $%.2f on %s",
            wallet.label,
            record.side,
            record.usdc_size,
            record.label(),
        )
        return 1

    async def run(self):
        self.running = not self._stop_requested
        interval_s = max(self.interval_ms, 0.0) / 1000.0
        try:
            while self.running:
                await self.poll_once()
                if not self.running:
                    break
                try:
                    await asyncio.sleep(interval_s)
                except asyncio.CancelledError:
                    break
        finally:
            self.running = False

    async def stop(self):
        self._stop_requested = True
        self.running = False
