from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import time


def _float(value: Any, default: float = 0.0) -> float:
    if value is None or value == '':
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _int(value: Any, default: int = 0) -> int:
    if value is None or value == '':
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def short_address(address: str) -> str:
    if not address or len(address) <= 10:
        return address or ''
    return f"{address[:6]}...{address[-4:]}"


@dataclass
class TradeActivityRecord:
    """One observed TRADE activity entry for a watched wallet.

    Trade fields are written once; only ``processed`` and
    ``execution_attempts`` change afterwards, and only downstream.
    """
    wallet: str
    transaction_hash: str
    timestamp: int
    condition_id: Optional[str] = None
    activity_type: str = 'TRADE'
    asset: Optional[str] = None
    side: Optional[str] = None
    size: float = 0.0
    usdc_size: float = 0.0
    price: float = 0.0
    outcome_index: Optional[int] = None
    title: Optional[str] = None
    slug: Optional[str] = None
    icon: Optional[str] = None
    event_slug: Optional[str] = None
    outcome: Optional[str] = None
    name: Optional[str] = None
    pseudonym: Optional[str] = None
    bio: Optional[str] = None
    profile_image: Optional[str] = None
    profile_image_optimized: Optional[str] = None
    processed: bool = False
    execution_attempts: int = 0

    @classmethod
    def from_api(cls, wallet: str, entry: Dict[str, Any]) -> 'TradeActivityRecord':
        outcome_index = entry.get('outcomeIndex')
        return cls(
            wallet=entry.get('proxyWallet') or wallet,
            transaction_hash=str(entry.get('transactionHash')),
            timestamp=_int(entry.get('timestamp')),
            condition_id=_str(entry.get('conditionId')),
            activity_type=entry.get('type') or 'TRADE',
            asset=_str(entry.get('asset')),
            side=_str(entry.get('side')),
            size=_float(entry.get('size')),
            usdc_size=_float(entry.get('usdcSize')),
            price=_float(entry.get('price')),
            outcome_index=_int(outcome_index) if outcome_index is not None else None,
            title=entry.get('title'),
            slug=entry.get('slug'),
            icon=entry.get('icon'),
            event_slug=entry.get('eventSlug'),
            outcome=entry.get('outcome'),
            name=entry.get('name'),
            pseudonym=entry.get('pseudonym'),
            bio=entry.get('bio'),
            profile_image=entry.get('profileImage'),
            profile_image_optimized=entry.get('profileImageOptimized'),
        )

    def label(self) -> str:
        return self.slug or self.asset or self.transaction_hash


@dataclass
class PositionRecord:
    """Snapshot of a wallet's holding in one outcome; keyed by (asset, condition_id)."""
    wallet: str
    asset: str
    condition_id: str
    size: float = 0.0
    avg_price: float = 0.0
    initial_value: float = 0.0
    current_value: float = 0.0
    cash_pnl: float = 0.0
    percent_pnl: float = 0.0
    total_bought: float = 0.0
    realized_pnl: float = 0.0
    percent_realized_pnl: float = 0.0
    cur_price: float = 0.0
    redeemable: bool = False
    mergeable: bool = False
    title: Optional[str] = None
    slug: Optional[str] = None
    icon: Optional[str] = None
    event_slug: Optional[str] = None
    outcome: Optional[str] = None
    outcome_index: Optional[int] = None
    opposite_outcome: Optional[str] = None
    opposite_asset: Optional[str] = None
    end_date: Optional[str] = None
    negative_risk: bool = False

    @property
    def key(self) -> Tuple[str, str]:
        return self.asset, self.condition_id

    @classmethod
    def from_api(cls, wallet: str, entry: Dict[str, Any]) -> 'PositionRecord':
        outcome_index = entry.get('outcomeIndex')
        return cls(
            wallet=entry.get('proxyWallet') or wallet,
            asset=str(entry.get('asset')),
            condition_id=str(entry.get('conditionId') or ''),
            size=_float(entry.get('size')),
            avg_price=_float(entry.get('avgPrice')),
            initial_value=_float(entry.get('initialValue')),
            current_value=_float(entry.get('currentValue')),
            cash_pnl=_float(entry.get('cashPnl')),
            percent_pnl=_float(entry.get('percentPnl')),
            total_bought=_float(entry.get('totalBought')),
            realized_pnl=_float(entry.get('realizedPnl')),
            percent_realized_pnl=_float(entry.get('percentRealizedPnl')),
            cur_price=_float(entry.get('curPrice')),
            redeemable=bool(entry.get('redeemable')),
            mergeable=bool(entry.get('mergeable')),
            title=entry.get('title'),
            slug=entry.get('slug'),
            icon=entry.get('icon'),
            event_slug=entry.get('eventSlug'),
            outcome=entry.get('outcome'),
            outcome_index=_int(outcome_index) if outcome_index is not None else None,
            opposite_outcome=entry.get('oppositeOutcome'),
            opposite_asset=_str(entry.get('oppositeAsset')),
            end_date=_str(entry.get('endDate')),
            negative_risk=bool(entry.get('negativeRisk')),
        )


@dataclass
class BookLevel:
    price: str
    size: str


@dataclass
class OrderBookSnapshot:
    """Fresh view of one asset's book: bids best-first (descending), asks ascending."""
    asset_id: str
    bids: List[BookLevel] = field(default_factory=list)
    asks: List[BookLevel] = field(default_factory=list)
    timestamp: float = field(default_factory=lambda: time.time() * 1000)

    def best_bid(self) -> Optional[BookLevel]:
        return self.bids[0] if self.bids else None

    def best_ask(self) -> Optional[BookLevel]:
        return self.asks[0] if self.asks else None


@dataclass
class WatchedWallet:
    """A trader address under observation plus its two per-wallet stores."""
    address: str
    activity: Any
    positions: Any

    @property
    def label(self) -> str:
        return short_address(self.address)
