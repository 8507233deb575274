import asyncio
import sys

sys.path.insert(0, '.')

import pytest

from ingest.models import TradeActivityRecord
from main import MirrorSystem
from tests.fakes import FakeDataAPIClient, FakePersister, wait_for

WALLET = '0x5555555555555555555555555555555555555555'


class FakeFeed:
    def __init__(self):
        self.started = False
        self.stopped = False
        self.notified = []
        self.asset_source = None

    def set_asset_source(self, source):
        self.asset_source = source

    async def notify_new_assets(self, asset_ids):
        self.notified.append(list(asset_ids))

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True


def _config(watched):
    return {
        'wallets': {'watched': watched, 'proxy_wallet': '${PROXY_WALLET}'},
        'monitoring': {'prometheus_port': 0},
    }


def test_empty_wallet_list_is_fatal():
    with pytest.raises(RuntimeError):
        MirrorSystem(_config(''), persister=FakePersister(), client=FakeDataAPIClient(), feed=FakeFeed())
    with pytest.raises(RuntimeError):
        MirrorSystem(_config('${USER_ADDRESSES}'), persister=FakePersister(), client=FakeDataAPIClient(), feed=FakeFeed())


def test_startup_marks_history_before_live_polling():
    async def _run():
        persister = FakePersister()
        activity, _ = persister.stores_for(WALLET)
        await activity.insert(TradeActivityRecord(wallet=WALLET, transaction_hash='OLD', timestamp=1))

        client = FakeDataAPIClient(
            activity={WALLET: [{
                'transactionHash': 'NEW',
                'timestamp': 4_000_000_000,
                'asset': 'tok-live',
                'side': 'BUY',
                'usdcSize': 3.0,
            }]},
            positions={WALLET: [{'asset': 'tok-held', 'conditionId': '0xc'}]},
        )
        feed = FakeFeed()
        system = MirrorSystem(_config(WALLET), persister=persister, client=client, feed=feed)

        task = asyncio.create_task(system.start())
        await wait_for(lambda: 'NEW' in activity.records, timeout=2.0)

        assert feed.started
        assert activity.records['OLD'].processed is True
        assert activity.records['NEW'].processed is False
        assert sorted(system.tracker.known()) == ['tok-held', 'tok-live']
        assert ['tok-held'] in feed.notified

        await system.stop()
        await asyncio.wait_for(task, timeout=2.0)
        assert feed.stopped
        assert client.closed
        assert persister.closed

    asyncio.run(_run())


def test_startup_failure_releases_resources():
    async def _run():
        persister = FakePersister()
        activity, _ = persister.stores_for(WALLET)

        async def _database_down():
            raise ConnectionError("database unavailable")

        activity.mark_all_processed = _database_down
        client = FakeDataAPIClient()
        feed = FakeFeed()
        system = MirrorSystem(_config(WALLET), persister=persister, client=client, feed=feed)

        with pytest.raises(ConnectionError):
            await system.start()

        assert feed.started
        assert feed.stopped
        assert client.closed
        assert persister.closed
        assert system.running is False

    asyncio.run(_run())
