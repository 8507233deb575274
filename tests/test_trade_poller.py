import asyncio
import sys

sys.path.insert(0, '.')

from ingest.models import TradeActivityRecord
from ingest.position_sync import PositionSynchronizer
from ingest.subscription_tracker import AssetSubscriptionTracker
from ingest.trade_poller import TradePoller
from tests.fakes import FakeDataAPIClient, make_wallet, wait_for

CUTOFF = 1_700_000_000
WALLET_W = '0x1111111111111111111111111111111111111111'
WALLET_V = '0x2222222222222222222222222222222222222222'


def _trade(tx_hash, timestamp=CUTOFF + 60, asset='asset-1', **extra):
    entry = {
        'proxyWallet': WALLET_W,
        'timestamp': timestamp,
        'conditionId': '0xcond',
        'type': 'TRADE',
        'size': 20,
        'usdcSize': 10.5,
        'transactionHash': tx_hash,
        'price': 0.525,
        'asset': asset,
        'side': 'BUY',
        'outcomeIndex': 0,
        'title': 'Will it rain?',
        'slug': 'will-it-rain',
        'outcome': 'Yes',
    }
    entry.update(extra)
    return entry


def _poller(wallets, client, refresh=0.0, rng=None):
    tracker = AssetSubscriptionTracker()
    position_sync = PositionSynchronizer(client, tracker)
    poller = TradePoller(
        wallets,
        client,
        tracker,
        position_sync,
        too_old_timestamp=CUTOFF,
        interval_ms=1,
        position_refresh_probability=refresh,
        rng=rng or (lambda: 0.5),
    )
    return poller, tracker


def test_same_transaction_twice_persists_once():
    async def _run():
        wallet = make_wallet(WALLET_W)
        client = FakeDataAPIClient(activity={WALLET_W: [_trade('T1')]})
        poller, _ = _poller([wallet], client)

        assert await poller.poll_once() == 1
        records = wallet.activity.records
        assert list(records) == ['T1']
        record = records['T1']
        assert record.processed is False
        assert record.execution_attempts == 0
        assert record.usdc_size == 10.5
        assert record.side == 'BUY'

        assert await poller.poll_once() == 0
        assert len(wallet.activity.records) == 1

    asyncio.run(_run())


def test_entries_below_cutoff_never_persisted():
    async def _run():
        wallet = make_wallet(WALLET_W)
        client = FakeDataAPIClient(activity={WALLET_W: [
            _trade('OLD', timestamp=CUTOFF - 1),
            _trade('EDGE', timestamp=CUTOFF),
        ]})
        poller, tracker = _poller([wallet], client)

        assert await poller.poll_once() == 1
        assert await poller.poll_once() == 0
        assert list(wallet.activity.records) == ['EDGE']

    asyncio.run(_run())


def test_new_trade_asset_is_tracked():
    async def _run():
        wallet = make_wallet(WALLET_W)
        client = FakeDataAPIClient(activity={WALLET_W: [_trade('T1', asset='tok-9')]})
        poller, tracker = _poller([wallet], client)
        await poller.poll_once()
        assert tracker.known() == ['tok-9']

    asyncio.run(_run())


def test_known_trade_does_not_retrack():
    async def _run():
        wallet = make_wallet(WALLET_W)
        existing = TradeActivityRecord.from_api(WALLET_W, _trade('T1', asset='tok-1'))
        await wallet.activity.insert(existing)
        client = FakeDataAPIClient(activity={WALLET_W: [_trade('T1', asset='tok-1')]})
        poller, tracker = _poller([wallet], client)
        assert await poller.poll_once() == 0
        assert tracker.known() == []

    asyncio.run(_run())


def test_entries_without_hash_are_skipped():
    async def _run():
        wallet = make_wallet(WALLET_W)
        client = FakeDataAPIClient(activity={WALLET_W: [_trade(None), 'garbage']})
        poller, _ = _poller([wallet], client)
        assert await poller.poll_once() == 0
        assert wallet.activity.records == {}

    asyncio.run(_run())


def test_one_wallet_failure_does_not_affect_others():
    async def _run():
        failing = make_wallet(WALLET_V)
        healthy = make_wallet(WALLET_W)
        client = FakeDataAPIClient(activity={
            WALLET_V: RuntimeError("boom"),
            WALLET_W: [_trade('T1')],
        })
        poller, _ = _poller([failing, healthy], client)

        assert await poller.poll_once() == 1
        assert list(healthy.activity.records) == ['T1']
        assert failing.activity.records == {}

        client.activity[WALLET_V] = asyncio.TimeoutError()
        assert await poller.poll_once() == 0

    asyncio.run(_run())


def test_position_refresh_sampled_per_wallet():
    async def _run():
        wallet = make_wallet(WALLET_W)
        client = FakeDataAPIClient(
            activity={WALLET_W: []},
            positions={WALLET_W: [{'asset': 'tok-2', 'conditionId': '0xc', 'size': 3}]},
        )
        draws = iter([0.9, 0.1])
        poller, tracker = _poller([wallet], client, refresh=0.2, rng=lambda: next(draws))

        await poller.poll_once()
        assert client.position_calls == []

        await poller.poll_once()
        assert client.position_calls == [WALLET_W]
        assert len(wallet.positions.records) == 1
        assert tracker.known() == ['tok-2']

    asyncio.run(_run())


def test_history_marked_exactly_once():
    async def _run():
        wallet = make_wallet(WALLET_W)
        await wallet.activity.insert(TradeActivityRecord.from_api(WALLET_W, _trade('OLD1')))
        await wallet.activity.insert(TradeActivityRecord.from_api(WALLET_W, _trade('OLD2')))
        client = FakeDataAPIClient(activity={WALLET_W: [_trade('NEW1')]})
        poller, _ = _poller([wallet], client)

        assert await poller.mark_history_once() == 2
        assert wallet.activity.records['OLD1'].processed is True
        assert wallet.activity.records['OLD1'].execution_attempts == 999

        await poller.poll_once()
        assert await poller.mark_history_once() == 0
        assert wallet.activity.records['NEW1'].processed is False

    asyncio.run(_run())


def test_run_loop_stops_after_current_cycle():
    async def _run():
        wallet = make_wallet(WALLET_W)
        client = FakeDataAPIClient(activity={WALLET_W: [_trade('T1')]})
        poller, _ = _poller([wallet], client)

        task = asyncio.create_task(poller.run())
        await wait_for(lambda: len(client.activity_calls) >= 2)
        await poller.stop()
        await asyncio.wait_for(task, timeout=1.0)
        assert poller.running is False
        assert len(wallet.activity.records) == 1

    asyncio.run(_run())


def test_stop_before_run_prevents_loop():
    async def _run():
        wallet = make_wallet(WALLET_W)
        client = FakeDataAPIClient(activity={WALLET_W: [_trade('T1')]})
        poller, _ = _poller([wallet], client)
        await poller.stop()
        await asyncio.wait_for(poller.run(), timeout=1.0)
        assert client.activity_calls == []

    asyncio.run(_run())
