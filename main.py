import asyncio
import logging
from typing import List, Optional

from api.metrics import metrics, start_metrics_server
from config import config
from config.utils import as_int, get_config_section, optional_str, parse_wallet_list
from ingest.book_manager import OrderBookCache
from ingest.data_api import DataAPIClient
from ingest.models import WatchedWallet
from ingest.persister import DataPersister
from ingest.position_sync import PositionSynchronizer
from ingest.subscription_tracker import AssetSubscriptionTracker
from ingest.trade_poller import TradePoller
from ingest.websocket_client import MarketFeedClient
from monitoring.async_utils import run_tasks_with_cleanup
from monitoring.logging_utils import setup_logging
from monitoring.reporting import (
    log_own_positions,
    log_store_counts,
    log_traders_positions,
    summarize_positions,
)


logger = logging.getLogger(__name__)


class MirrorSystem:
    """Wire the REST pollers, the market feed and the stores for the watched wallets."""
    def __init__(self, config_obj=None, persister=None, client=None, feed=None):
        self.config = config_obj or config
        wallets_cfg = get_config_section(self.config, 'wallets')
        monitoring_cfg = get_config_section(self.config, 'monitoring')

        self.addresses: List[str] = parse_wallet_list(wallets_cfg.get('watched'))
        if not self.addresses:
            raise RuntimeError("USER_ADDRESSES is not defined or empty")
        self.proxy_wallet: Optional[str] = optional_str(wallets_cfg.get('proxy_wallet'))
        self.prometheus_port = as_int(monitoring_cfg.get('prometheus_port'), 0)

        self.persister = persister or DataPersister()
        self.client = client or DataAPIClient()
        self.book_cache = OrderBookCache()
        self.tracker = AssetSubscriptionTracker()
        self.feed = feed or MarketFeedClient(self.book_cache)
        self.feed.set_asset_source(self.tracker.known)
        self.tracker.register_listener(self.feed.notify_new_assets)
        self.position_sync = PositionSynchronizer(self.client, self.tracker)

        self.wallets: List[WatchedWallet] = []
        self.poller: Optional[TradePoller] = None
        self.running = False
        self._stopped = False

    async def initialize(self):
        await self.persister.initialize()
        self.wallets = []
        for address in self.addresses:
            activity, positions = self.persister.stores_for(address)
            self.wallets.append(WatchedWallet(address, activity, positions))
        self.poller = TradePoller(
            self.wallets,
            self.client,
            self.tracker,
            self.position_sync,
        )

    async def show_startup_snapshot(self):
        counts = [await wallet.activity.count() for wallet in self.wallets]
        log_store_counts(self.addresses, counts)

        if self.proxy_wallet:
            try:
                own_positions = await self.client.fetch_positions(self.proxy_wallet)
                log_own_positions(self.proxy_wallet, summarize_positions(own_positions, top_n=5))
            except Exception as e:
                logger.error("Failed to fetch your positions: %s", e)

        summaries = []
        for wallet in self.wallets:
            stored = await wallet.positions.find_all()
            summaries.append(summarize_positions(stored, top_n=3))
        log_traders_positions(self.addresses, summaries)

    async def start(self):
        self.running = True
        try:
            await self.initialize()

            if self.prometheus_port:
                start_metrics_server(self.prometheus_port)

            await self.show_startup_snapshot()

            await self.feed.start()
            await self.position_sync.prime_subscriptions(self.wallets)
            metrics.update_subscribed_assets(len(self.tracker))
            logger.info(
                "Monitor active: polling every %sms + real-time market data",
                int(self.poller.interval_ms),
            )

            await self.poller.mark_history_once()
        except Exception:
            logger.exception("Startup failed; releasing resources")
            await self.stop()
            raise

        if not self.running:
            return

        tasks = [asyncio.create_task(self.poller.run())]

        async def _cleanup():
            await self.stop()

        await run_tasks_with_cleanup(tasks, cleanup=_cleanup)

    async def stop(self):
        if self._stopped:
            return
        self._stopped = True
        self.running = False
        logger.info("Trade monitor shutdown requested...")
        if self.poller is not None:
            await self.poller.stop()
        await self.feed.stop()
        await self.client.close()
        await self.persister.close()
        logger.info("Trade monitor stopped")


async def main():
    system = MirrorSystem(config)
    try:
        await system.start()
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("System shutting down on interrupt")
        await system.stop()

if __name__ == "__main__":
    setup_logging(config.section('monitoring').get('log_level', 'INFO'))
    asyncio.run(main())
