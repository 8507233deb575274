"""Startup snapshot display: stored trade counts and position summaries."""
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Sequence

from ingest.models import short_address


logger = logging.getLogger(__name__)


def _value(position: Any, attr: str, key: str) -> float:
    if isinstance(position, dict):
        raw = position.get(key)
    else:
        raw = getattr(position, attr, None)
    try:
        return float(raw or 0.0)
    except (TypeError, ValueError):
        return 0.0


def _title(position: Any) -> str:
    if isinstance(position, dict):
        return position.get('title') or position.get('slug') or position.get('asset') or '?'
    return position.title or position.slug or position.asset or '?'


@dataclass
class PositionSummary:
    count: int = 0
    total_value: float = 0.0
    initial_value: float = 0.0
    overall_pnl: float = 0.0
    top: List[Any] = field(default_factory=list)


def summarize_positions(positions: Sequence[Any], top_n: int = 5) -> PositionSummary:
    """Value-weighted percent P&L plus the best ``top_n`` by percent P&L.

    Accepts raw API dicts (camelCase) or ``PositionRecord`` objects.
    """
    total_value = 0.0
    initial_value = 0.0
    weighted_pnl = 0.0
    for pos in positions:
        value = _value(pos, 'current_value', 'currentValue')
        total_value += value
        initial_value += _value(pos, 'initial_value', 'initialValue')
        weighted_pnl += value * _value(pos, 'percent_pnl', 'percentPnl')

    ranked = sorted(positions, key=lambda p: _value(p, 'percent_pnl', 'percentPnl'), reverse=True)
    return PositionSummary(
        count=len(positions),
        total_value=total_value,
        initial_value=initial_value,
        overall_pnl=weighted_pnl / total_value if total_value > 0 else 0.0,
        top=ranked[:top_n],
    )


def log_store_counts(addresses: Iterable[str], counts: Iterable[int]) -> None:
    for address, count in zip(addresses, counts):
        logger.info("%s: %s trades in store", short_address(address), count)


def log_own_positions(address: str, summary: PositionSummary) -> None:
    logger.info(
        "Your positions (%s): %s open, value $%.2f (initial $%.2f), P&L %.2f%%",
        short_address(address),
        summary.count,
        summary.total_value,
        summary.initial_value,
        summary.overall_pnl,
    )
    for pos in summary.top:
        logger.info(
            "  %s: %.2f%% ($%.2f)",
            _title(pos),
            _value(pos, 'percent_pnl', 'percentPnl'),
            _value(pos, 'current_value', 'currentValue'),
        )


def log_traders_positions(addresses: Sequence[str], summaries: Sequence[PositionSummary]) -> None:
    for address, summary in zip(addresses, summaries):
        logger.info(
            "%s: %s positions, P&L %.2f%%",
            short_address(address),
            summary.count,
            summary.overall_pnl,
        )
        for pos in summary.top:
            logger.info("  %s: %.2f%%", _title(pos), _value(pos, 'percent_pnl', 'percentPnl'))

