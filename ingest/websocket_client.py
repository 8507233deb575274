import asyncio
import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed

from api.metrics import metrics
from config import config
from config.utils import as_float, optional_str
from .book_manager import OrderBookCache


logger = logging.getLogger(__name__)

DEFAULT_FEED_BASE_URL = 'wss://ws-subscriptions-clob.polymarket.com'
PING_MESSAGE = 'PING'
PONG_MESSAGE = 'PONG'


class MarketFeedClient:
    """Own the single market-channel websocket and keep the book cache current.

    Reconnects on a fixed delay for as long as the client is running. Every
    new connection starts from an empty cache and re-subscribes the full
    asset set returned by ``asset_source``.
    """

    def __init__(
        self,
        book_cache: OrderBookCache,
        asset_source: Optional[Callable[[], Iterable[str]]] = None,
        base_url: Optional[str] = None,
        reconnect_delay_s: Optional[float] = None,
        ping_interval_s: Optional[float] = None,
        connect: Optional[Callable[..., Any]] = None,
    ):
        feed_cfg = config.section('feed')
        base = (
            optional_str(base_url)
            or optional_str(feed_cfg.get('base_url'))
            or optional_str(feed_cfg.get('default_base_url'))
            or DEFAULT_FEED_BASE_URL
        )
        self.url = f"{base.rstrip('/')}/ws/market"
        self.reconnect_delay_s = (
            reconnect_delay_s if reconnect_delay_s is not None
            else as_float(feed_cfg.get('reconnect_delay_s'), 2.0)
        )
        self.ping_interval_s = (
            ping_interval_s if ping_interval_s is not None
            else as_float(feed_cfg.get('ping_interval_s'), 10.0)
        )

        self.book_cache = book_cache
        self._asset_source = asset_source or (lambda: [])
        self._connect = connect or websockets.connect

        self.running = False
        self._ws = None
        self._subscribed: Set[str] = set()
        self._task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    def set_asset_source(self, asset_source: Callable[[], Iterable[str]]) -> None:
        self._asset_source = asset_source

    async def start(self):
        if self._task is not None and not self._task.done():
            return
        self.running = True
        self._task = asyncio.create_task(self._connection_loop())

    async def stop(self):
        self.running = False
        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except ConnectionClosed:
                pass
        await self._cancel_ping()
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        self._ws = None
        metrics.set_feed_connected(False)

    async def notify_new_assets(self, asset_ids: List[str]) -> None:
        ws = self._ws
        if ws is None:
            # Picked up by the subscription burst of the next connection
            return
        delta = [asset_id for asset_id in asset_ids if asset_id not in self._subscribed]
        if not delta:
            return
        self._subscribed.update(delta)
        logger.info("Subscribing to %s new market assets", len(delta))
        try:
            await self._send_subscription(ws, delta)
        except ConnectionClosed as exc:
            logger.debug("Delta subscription lost with closing socket: %s", exc)

    # Connection lifecycle -------------------------------------------------
    async def _connection_loop(self):
        while self.running:
            try:
                logger.info("Connecting to market feed %s", self.url)
                async with self._connect(self.url, ping_interval=None) as ws:
                    try:
                        await self._on_open(ws)
                        async for raw in ws:
                            self.handle_message(raw)
                    finally:
                        await self._on_closed()
                if self.running:
                    logger.warning(
                        "Market feed closed; reconnecting in %.1fs", self.reconnect_delay_s
                    )
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(
                    "Market feed error: %s; reconnecting in %.1fs", e, self.reconnect_delay_s
                )

            if not self.running:
                break
            metrics.record_reconnect()
            try:
                await asyncio.sleep(self.reconnect_delay_s)
            except asyncio.CancelledError:
                break

    async def _on_open(self, ws):
        self._ws = ws
        self._subscribed = set()
        self.book_cache.clear()
        metrics.set_feed_connected(True)
        metrics.update_cached_books(0)
        logger.info("Market feed connected; real-time book data active")

        asset_ids = [str(asset_id) for asset_id in self._asset_source() if asset_id]
        if asset_ids:
            self._subscribed.update(asset_ids)
            logger.info("Subscribing to %s market assets", len(asset_ids))
            await self._send_subscription(ws, asset_ids)

        await self._cancel_ping()
        self._ping_task = asyncio.create_task(self._ping_loop(ws))

    async def _on_closed(self):
        await self._cancel_ping()
        self._ws = None
        metrics.set_feed_connected(False)

    async def _send_subscription(self, ws, asset_ids: List[str]):
        await ws.send(json.dumps({'assets_ids': asset_ids, 'type': 'market'}))

    async def _ping_loop(self, ws):
        while self.running:
            try:
                await asyncio.sleep(self.ping_interval_s)
                if not self.running or ws is not self._ws:
                    break
                await ws.send(PING_MESSAGE)
            except asyncio.CancelledError:
                break
            except ConnectionClosed:
                break

    async def _cancel_ping(self):
        task = self._ping_task
        self._ping_task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    # Inbound messages -----------------------------------------------------
    def handle_message(self, raw: Any) -> None:
        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = raw.decode('utf-8')
            except UnicodeDecodeError:
                return
        if raw == PONG_MESSAGE:
            return
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            return

        events = payload if isinstance(payload, list) else [payload]
        for event in events:
            if not isinstance(event, dict):
                continue
            try:
                self._apply_event(event)
            except (AttributeError, KeyError, TypeError, ValueError, IndexError):
                continue
        metrics.update_cached_books(len(self.book_cache))

    def _apply_event(self, event: Dict[str, Any]) -> None:
        event_type = event.get('event_type')

        if event_type == 'price_change' and isinstance(event.get('price_changes'), list):
            for change in event['price_changes']:
                asset_id = change.get('asset_id')
                if asset_id:
                    self.book_cache.apply_price_change(asset_id, [change])
            metrics.record_feed_message(event_type)
            return

        asset_id = event.get('asset_id')
        if not asset_id:
            return

        if event_type == 'book':
            bids = event.get('bids') or event.get('buys') or []
            asks = event.get('asks') or event.get('sells') or []
            self.book_cache.apply_snapshot(asset_id, bids, asks)
        elif event_type in ('price_change', 'tick_size_change'):
            self.book_cache.apply_price_change(asset_id, event.get('changes') or [])
        elif event_type == 'last_trade_price':
            self.book_cache.touch(asset_id)
        else:
            return
        metrics.record_feed_message(event_type)
