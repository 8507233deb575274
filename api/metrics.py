import errno
import logging
from prometheus_client import Counter, Gauge, Histogram, start_http_server
from typing import Optional

from config import config


logger = logging.getLogger(__name__)

_METRICS_SERVER_STARTED = False


def _get_port_scan_limit() -> int:
    try:
        return int(config.section('monitoring').get('prometheus_port_scan', 0))
    except (TypeError, ValueError):
        return 0


class MetricsCollector:
    def __init__(self):
        self.trades_ingested = Counter('mirror_trades_ingested_total', 'New trade activity records persisted')
        self.trades_skipped = Counter('mirror_trades_skipped_total', 'Activity entries skipped before persistence', ['reason'])
        self.poll_cycles = Counter('mirror_poll_cycles_total', 'Completed trade poll cycles')
        self.poll_cycle_latency = Histogram(
            'mirror_poll_cycle_seconds',
            'Wall time of one full poll cycle across all wallets',
            buckets=(0.05, 0.1, 0.2, 0.5, 1, 2, 5, 10),
        )
        self.poll_errors = Counter('mirror_poll_errors_total', 'Per-wallet poll failures', ['kind'])
        self.positions_upserted = Counter('mirror_positions_upserted_total', 'Position snapshots written')
        self.historical_marked = Counter('mirror_historical_marked_total', 'Records bulk-marked processed at startup')

        self.feed_messages = Counter('mirror_feed_messages_total', 'Inbound market feed events', ['event_type'])
        self.feed_reconnects = Counter('mirror_feed_reconnects_total', 'Market feed reconnect attempts')
        self.feed_connected = Gauge('mirror_feed_connected', 'Market feed connection state')
        self.subscribed_assets = Gauge('mirror_subscribed_assets', 'Asset ids tracked for the market feed')
        self.cached_books = Gauge('mirror_cached_books', 'Assets present in the order book cache')

    def record_trade_ingested(self):
        self.trades_ingested.inc()

    def record_trade_skipped(self, reason: str):
        self.trades_skipped.labels(reason=reason).inc()

    def record_poll_cycle(self, latency_seconds: Optional[float] = None):
        self.poll_cycles.inc()
        if latency_seconds is not None:
            self.poll_cycle_latency.observe(latency_seconds)

    def record_poll_error(self, kind: str):
        self.poll_errors.labels(kind=kind).inc()

    def record_positions_upserted(self, count: int):
        if count > 0:
            self.positions_upserted.inc(count)

    def record_historical_marked(self, count: int):
        if count > 0:
            self.historical_marked.inc(count)

    def record_feed_message(self, event_type: str):
        self.feed_messages.labels(event_type=event_type or 'unknown').inc()

    def record_reconnect(self):
        self.feed_reconnects.inc()

    def set_feed_connected(self, connected: bool):
        self.feed_connected.set(1 if connected else 0)

    def update_subscribed_assets(self, count: int):
        self.subscribed_assets.set(count)

    def update_cached_books(self, count: int):
        self.cached_books.set(count)


def start_metrics_server(port: int = 9108):
    global _METRICS_SERVER_STARTED
    if _METRICS_SERVER_STARTED:
        return
    port_scan_limit = max(0, _get_port_scan_limit())
    last_error: Optional[OSError] = None
    for offset in range(port_scan_limit + 1):
        candidate = port + offset
        try:
            start_http_server(candidate)
        except OSError as exc:
            last_error = exc
            if exc.errno == errno.EADDRINUSE:
                logger.warning(
                    "Prometheus metrics server port %s already in use; trying next candidate",
                    candidate,
                )
                continue
            raise
        _METRICS_SERVER_STARTED = True
        logger.info("Prometheus metrics server started on port %s", candidate)
        return
    if last_error and last_error.errno == errno.EADDRINUSE:
        raise RuntimeError(
            f"Unable to bind Prometheus metrics server on ports {port}-{port + port_scan_limit}"
        ) from last_error
    if last_error:
        raise last_error

metrics = MetricsCollector()
