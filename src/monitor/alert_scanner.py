"""
Large Order Scanner

Walks the best bids of every enabled market and reports resting orders whose
size is strictly above the market's threshold.

Only the top of the book is inspected (SCAN_DEPTH orders, best price first):
orders far from the touch are not actionable, and bounding the walk keeps
each iteration's cost independent of book depth. Asks are not scanned.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from config.constants import SCAN_DEPTH
from core.market_context import MarketContext
from utils.logger import get_logger, log_alert_event


logger = get_logger(__name__)


@dataclass(frozen=True)
class AlertRecord:
    market: str
    owner: str
    size: float
    price: float
    side: str = 'buy'

    def format(self) -> str:
        return f"[{self.market}] owner: {self.owner} - size: {self.size} - price: {self.price}"


@dataclass
class ScanResult:
    alerts: List[AlertRecord] = field(default_factory=list)
    message: str = ''
    markets_scanned: int = 0
    markets_skipped: int = 0


class AlertScanner:
    def __init__(self, scan_depth: int = SCAN_DEPTH):
        if scan_depth <= 0:
            raise ValueError(f"scan_depth must be positive, got {scan_depth}")
        self.scan_depth = scan_depth

    def scan_market(self, context: MarketContext, now: Optional[float] = None) -> List[AlertRecord]:
        """
        Alerts for one market's bid side.

        Disabled markets and empty books produce an empty list. One WARNING
        line is logged per alert.

        Args:
            context: Market with freshly loaded book sides
            now: Unix time used to drop expired orders (defaults to the clock)
        """
        if not context.params.enabled:
            return []

        threshold = context.params.threshold_size
        alerts = []
        for order in context.bids.top(self.scan_depth, now):
            if order.size > threshold:
                record = AlertRecord(
                    market=context.market_name,
                    owner=str(order.owner),
                    size=order.size,
                    price=order.price,
                    side=order.side,
                )
                log_alert_event(
                    logger,
                    record.market,
                    owner=record.owner,
                    size=record.size,
                    price=record.price,
                    threshold=threshold,
                )
                alerts.append(record)
        return alerts

    def scan(self, contexts: Iterable[MarketContext], now: Optional[float] = None) -> ScanResult:
        """Scan every market in order and collect alerts plus the iteration message"""
        result = ScanResult()
        lines = []
        for context in contexts:
            if not context.params.enabled:
                result.markets_skipped += 1
                continue

            market_alerts = self.scan_market(context, now)
            result.markets_scanned += 1
            result.alerts.extend(market_alerts)
            lines.extend(record.format() for record in market_alerts)

        result.message = '\n'.join(lines)
        return result
