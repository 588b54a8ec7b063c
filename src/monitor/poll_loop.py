"""
Poll Loop

Drives the monitor: load a snapshot, scan it, sleep, repeat until stopped.

    BOOTSTRAPPING -> RUNNING <-> SLEEPING -> DRAINING -> STOPPED

Iterations are strictly sequential. Every iteration runs inside its own
failure boundary, so a failed fetch or decode is logged and counted and the
loop carries on after the usual pause. The stop event is only looked at
between iterations; an iteration already in flight always completes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional
import asyncio
import time

from config.constants import DEFAULT_INTERVAL_MS, SCAN_DEPTH
from core.accounts import MangoAccount
from core.market_context import MarketRegistry
from core.snapshot import Snapshot, SnapshotAssembler
from monitor.alert_scanner import AlertScanner, ScanResult
from utils.logger import get_logger, log_error_with_context


logger = get_logger(__name__)


class MonitorState(Enum):
    BOOTSTRAPPING = 'bootstrapping'
    RUNNING = 'running'
    SLEEPING = 'sleeping'
    DRAINING = 'draining'
    STOPPED = 'stopped'


@dataclass(frozen=True)
class PollConfig:
    interval_sec: float = DEFAULT_INTERVAL_MS / 1000.0
    scan_depth: int = SCAN_DEPTH

    def __post_init__(self):
        if self.interval_sec <= 0:
            raise ValueError(f"interval_sec must be positive, got {self.interval_sec}")
        if self.scan_depth <= 0:
            raise ValueError(f"scan_depth must be positive, got {self.scan_depth}")


class PollLoop:
    """
    Sequential snapshot/scan loop with a graceful stop.

    Args:
        assembler: Loads one snapshot per iteration
        scanner: Scans the registry after each snapshot
        registry: Markets being watched (book sides refreshed by the assembler)
        account: Account state from bootstrap, replaced after each good snapshot
        config: Interval and scan depth
        stop_event: Set to request shutdown (created if not given)
    """

    def __init__(
        self,
        assembler: SnapshotAssembler,
        scanner: AlertScanner,
        registry: MarketRegistry,
        account: MangoAccount,
        config: PollConfig,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.assembler = assembler
        self.scanner = scanner
        self.registry = registry
        self.account = account
        self.config = config
        self.stop_event = stop_event or asyncio.Event()

        self.state = MonitorState.BOOTSTRAPPING
        self.last_snapshot: Optional[Snapshot] = None
        self.iterations = 0
        self.failed_iterations = 0
        self.alerts_total = 0
        self.last_error: Optional[str] = None

    def request_stop(self) -> None:
        """Ask the loop to stop after the current iteration (safe from a signal handler)"""
        if not self.stop_event.is_set():
            logger.info("Stop requested, finishing current iteration")
        self.stop_event.set()

    async def run_once(self) -> Optional[ScanResult]:
        """
        One iteration: snapshot then scan.

        Never raises; a failure is logged and counted and None is returned.
        The account and the registry keep their previous values in that case.
        """
        self.iterations += 1
        started = time.monotonic()
        try:
            snapshot = await self.assembler.load(self.account)
            result = self.scanner.scan(self.registry)
        except Exception as e:
            self.failed_iterations += 1
            self.last_error = str(e)
            log_error_with_context(
                logger,
                f"Iteration {self.iterations} failed",
                e,
                iteration=self.iterations,
                failed_iterations=self.failed_iterations,
            )
            return None

        self.account = snapshot.account
        self.last_snapshot = snapshot
        self.alerts_total += len(result.alerts)
        logger.debug(
            f"Iteration {self.iterations} done in {time.monotonic() - started:.3f}s: "
            f"{result.markets_scanned} markets scanned, {len(result.alerts)} alerts",
            extra={
                'iteration': self.iterations,
                'alerts': len(result.alerts),
                'slot': snapshot.slot,
            }
        )
        return result

    async def run(self) -> None:
        """Loop until the stop event is set"""
        if self.state not in (MonitorState.BOOTSTRAPPING, MonitorState.STOPPED):
            logger.warning(f"Poll loop already {self.state.value}")
            return

        logger.info(
            f"Watching {len(self.registry)} markets every {self.config.interval_sec}s "
            f"(top {self.config.scan_depth} bids)"
        )

        while not self.stop_event.is_set():
            self.state = MonitorState.RUNNING
            await self.run_once()

            if self.stop_event.is_set():
                break

            self.state = MonitorState.SLEEPING
            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=self.config.interval_sec)
            except asyncio.TimeoutError:
                continue

        self.state = MonitorState.DRAINING
        logger.info(
            f"Poll loop stopping after {self.iterations} iterations "
            f"({self.failed_iterations} failed, {self.alerts_total} alerts)"
        )
        self.state = MonitorState.STOPPED

    def get_status(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'iterations': self.iterations,
            'failed_iterations': self.failed_iterations,
            'alerts_total': self.alerts_total,
            'markets': [context.market_name for context in self.registry],
            'last_error': self.last_error,
            'last_slot': self.last_snapshot.slot if self.last_snapshot else None,
        }
