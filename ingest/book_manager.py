from sortedcontainers import SortedDict
from typing import Any, Callable, Dict, Iterable, Optional
import logging
import time

from config import config
from .models import BookLevel, OrderBookSnapshot


logger = logging.getLogger(__name__)


def _level_fields(level: Any):
    if isinstance(level, dict):
        return level.get('price'), level.get('size')
    price, size = level[0], level[1]
    return price, size


class _AssetBook:
    __slots__ = ('bids', 'asks', 'timestamp')

    def __init__(self):
        # Keyed by numeric price; both ascending, bids are read back reversed
        self.bids = SortedDict()
        self.asks = SortedDict()
        self.timestamp = 0.0


class OrderBookCache:
    """Per-asset level-2 ladders fed by the market websocket.

    Only the feed client writes here. Readers get a copy through
    :meth:`read`, bounded by freshness; stale or unknown assets read as
    ``None`` and callers fall back to REST data.
    """

    def __init__(self, default_max_age_ms: Optional[float] = None,
                 clock: Callable[[], float] = time.time):
        ob_cfg = config.section('orderbook')
        self.default_max_age_ms = float(
            default_max_age_ms if default_max_age_ms is not None else ob_cfg.get('max_age_ms', 5000)
        )
        self._clock = clock
        self._books: Dict[str, _AssetBook] = {}

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _book(self, asset_id: str) -> _AssetBook:
        book = self._books.get(asset_id)
        if book is None:
            book = _AssetBook()
            self._books[asset_id] = book
        return book

    # Writes ---------------------------------------------------------------
    def apply_snapshot(self, asset_id: str, bids: Iterable[Any], asks: Iterable[Any]) -> None:
        new_bids = SortedDict()
        new_asks = SortedDict()
        for level in bids or []:
            self._write_level(new_bids, *_level_fields(level))
        for level in asks or []:
            self._write_level(new_asks, *_level_fields(level))

        book = self._book(asset_id)
        book.bids = new_bids
        book.asks = new_asks
        book.timestamp = self._now_ms()

    def apply_price_change(self, asset_id: str, changes: Iterable[Dict[str, Any]]) -> None:
        # A malformed entry rejects the whole batch before any level is written
        parsed = []
        for change in changes or []:
            price, size = change.get('price'), change.get('size')
            is_bid = str(change.get('side', '')).upper() == 'BUY'
            parsed.append((is_bid, float(price), float(size), BookLevel(str(price), str(size))))

        book = self._book(asset_id)
        for is_bid, key, amount, level in parsed:
            side = book.bids if is_bid else book.asks
            if amount <= 0:
                side.pop(key, None)
            else:
                side[key] = level
        book.timestamp = self._now_ms()

    def touch(self, asset_id: str) -> None:
        self._book(asset_id).timestamp = self._now_ms()

    def clear(self) -> None:
        self._books.clear()

    # Reads ----------------------------------------------------------------
    def read(self, asset_id: str, max_age_ms: Optional[float] = None) -> Optional[OrderBookSnapshot]:
        book = self._books.get(asset_id)
        if book is None:
            return None
        bound = self.default_max_age_ms if max_age_ms is None else max_age_ms
        if self._now_ms() - book.timestamp >= bound:
            return None
        return OrderBookSnapshot(
            asset_id=asset_id,
            bids=[BookLevel(lvl.price, lvl.size) for lvl in reversed(book.bids.values())],
            asks=[BookLevel(lvl.price, lvl.size) for lvl in book.asks.values()],
            timestamp=book.timestamp,
        )

    def best_bid(self, asset_id: str, max_age_ms: Optional[float] = None) -> Optional[BookLevel]:
        snapshot = self.read(asset_id, max_age_ms)
        return snapshot.best_bid() if snapshot else None

    def best_ask(self, asset_id: str, max_age_ms: Optional[float] = None) -> Optional[BookLevel]:
        snapshot = self.read(asset_id, max_age_ms)
        return snapshot.best_ask() if snapshot else None

    def __len__(self) -> int:
        return len(self._books)

    def __contains__(self, asset_id: str) -> bool:
        return asset_id in self._books

    # Internal helpers -----------------------------------------------------
    @staticmethod
    def _write_level(side: SortedDict, price: Any, size: Any) -> None:
        key = float(price)
        if float(size) <= 0:
            side.pop(key, None)
            return
        side[key] = BookLevel(str(price), str(size))
