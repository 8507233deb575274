import logging
from typing import Any, Iterable, List

from api.metrics import metrics
from .data_api import DataAPIClient
from .models import PositionRecord, WatchedWallet
from .subscription_tracker import AssetSubscriptionTracker


logger = logging.getLogger(__name__)


def _held_entries(positions: Any) -> List[dict]:
    if not isinstance(positions, list):
        return []
    return [entry for entry in positions if isinstance(entry, dict) and entry.get('asset')]


class PositionSynchronizer:
    """Mirror each wallet's reported positions into its position store.

    Consistent with the exchange snapshot, not with the local trade log.
    """

    def __init__(self, client: DataAPIClient, tracker: AssetSubscriptionTracker):
        self.client = client
        self.tracker = tracker

    async def sync_wallet(self, wallet: WatchedWallet) -> int:
        entries = _held_entries(await self.client.fetch_positions(wallet.address))
        if not entries:
            return 0

        await self.tracker.track(entry['asset'] for entry in entries)

        upserted = 0
        for entry in entries:
            await wallet.positions.upsert(PositionRecord.from_api(wallet.address, entry))
            upserted += 1

        metrics.record_positions_upserted(upserted)
        return upserted

    async def prime_subscriptions(self, wallets: Iterable[WatchedWallet]) -> int:
        """Subscribe the feed to every asset the wallets currently hold."""
        logger.info("Initializing trader market subscriptions...")
        total = 0
        for wallet in wallets:
            try:
                entries = _held_entries(await self.client.fetch_positions(wallet.address))
            except Exception as e:
                logger.warning("Failed to fetch positions for %s: %s", wallet.label, e)
                continue
            asset_ids = [entry['asset'] for entry in entries]
            if not asset_ids:
                continue
            total += await self.tracker.track(asset_ids)
            logger.info("%s: subscribed to %s market assets", wallet.label, len(asset_ids))
        return total
