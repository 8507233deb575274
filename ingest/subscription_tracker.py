import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Set

from api.metrics import metrics


logger = logging.getLogger(__name__)

Listener = Callable[[List[str]], Awaitable[None]]


class AssetSubscriptionTracker:
    """Process-lifetime set of asset ids the market feed should follow.

    Membership only grows. New ids are forwarded to the registered listener
    (the feed client) as a delta; the full set is read back by the feed when
    it (re)connects.
    """

    def __init__(self, listener: Optional[Listener] = None):
        self._known: Set[str] = set()
        self._listener = listener

    def register_listener(self, listener: Listener) -> None:
        self._listener = listener

    async def track(self, asset_ids: Iterable[Optional[str]]) -> int:
        new_ids: List[str] = []
        for asset_id in asset_ids or []:
            if not asset_id:
                continue
            asset_id = str(asset_id)
            if asset_id in self._known:
                continue
            # Added before any await so concurrent callers never forward the same id twice
            self._known.add(asset_id)
            new_ids.append(asset_id)

        if not new_ids:
            return 0

        metrics.update_subscribed_assets(len(self._known))
        if self._listener is not None:
            await self._listener(new_ids)
        return len(new_ids)

    def known(self) -> List[str]:
        return list(self._known)

    def __contains__(self, asset_id: str) -> bool:
        return asset_id in self._known

    def __len__(self) -> int:
        return len(self._known)
