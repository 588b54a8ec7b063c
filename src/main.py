"""
Main Entry Point for the Mango Owner Monitor
Watches the best bids of configured Mango perp markets and logs the owner of
every unusually large resting order, until interrupted.
"""

import os
import sys
import signal
import asyncio
from datetime import datetime
from typing import Optional

from pydantic import ValidationError

# Add src to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from config.settings import MonitorSettings, get_settings
from core.bootstrap import MonitorContext, bootstrap
from core.snapshot import SnapshotAssembler
from monitor.alert_scanner import AlertScanner
from monitor.poll_loop import MonitorState, PollConfig, PollLoop
from utils.logger import get_logger, setup_logging
from utils.exceptions import ConfigurationError, MonitorError


logger = get_logger(__name__)


class OwnerMonitor:
    """
    Lifecycle owner: bootstrap, run the poll loop, shut down cleanly.

    SIGINT and SIGTERM only set the stop event; the iteration in flight
    finishes and the loop exits at the next iteration boundary.
    """

    def __init__(self, settings: MonitorSettings):
        self.settings = settings
        self.context: Optional[MonitorContext] = None
        self.loop: Optional[PollLoop] = None
        self.start_time: Optional[datetime] = None
        self._stop_event = asyncio.Event()

    async def initialize(self) -> None:
        """Bootstrap and wire the poll loop (fatal on any error)"""
        logger.info("Initializing monitor...")
        self.context = await bootstrap(self.settings)

        assembler = SnapshotAssembler(
            self.context.rpc,
            self.context.group,
            self.context.registry,
            max_attempts=self.settings.fetch_max_attempts,
            backoff_base_sec=self.settings.fetch_backoff_base_sec,
            backoff_max_sec=self.settings.fetch_backoff_max_sec,
        )
        config = PollConfig(
            interval_sec=self.context.params.interval_sec,
            scan_depth=self.settings.scan_depth,
        )
        self.loop = PollLoop(
            assembler,
            AlertScanner(scan_depth=config.scan_depth),
            self.context.registry,
            self.context.account,
            config,
            stop_event=self._stop_event,
        )
        logger.info("Monitor initialized")

    def _signal_handler(self, signum: int) -> None:
        """Handle shutdown signals gracefully"""
        signal_name = signal.Signals(signum).name
        logger.info(f"Received {signal_name} signal, initiating graceful shutdown...")
        if self.loop:
            self.loop.request_stop()
        else:
            self._stop_event.set()

    def _install_signal_handlers(self) -> None:
        event_loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                event_loop.add_signal_handler(signum, self._signal_handler, signum)
            except NotImplementedError:
                # Event loops without signal support (Windows)
                signal.signal(
                    signum,
                    lambda s, _frame: event_loop.call_soon_threadsafe(self._signal_handler, s)
                )

    async def start(self) -> None:
        """Run the poll loop until a stop is requested"""
        if self.loop is None:
            raise MonitorError("Monitor not initialized", error_code='NOT_INITIALIZED')
        if self.loop.state is not MonitorState.BOOTSTRAPPING:
            logger.warning("Monitor is already running")
            return

        self.start_time = datetime.now()
        self._install_signal_handlers()

        account = self.context.account
        logger.info("=" * 80)
        logger.info("Starting Mango Owner Monitor")
        logger.info(f"Group: {self.context.group_config.name} ({self.context.group.address})")
        logger.info(f"Account: {account.address} ({account.name or 'unnamed'})")
        logger.info(f"Owner: {self.context.owner}")
        logger.info(f"Markets: {', '.join(c.market_name for c in self.context.registry)}")
        logger.info(f"Interval: {self.loop.config.interval_sec}s")
        logger.info("=" * 80)

        try:
            await self.loop.run()
        finally:
            await self.shutdown()

    def stop(self) -> None:
        """Request a graceful stop"""
        self._signal_handler(signal.SIGTERM)

    async def shutdown(self) -> None:
        """Close the RPC session and log final statistics"""
        logger.info("Shutting down monitor...")
        if self.context:
            try:
                await self.context.rpc.close()
            except Exception as e:
                logger.error(f"Error closing RPC client: {e}")
        self._log_final_stats()
        logger.info("Exiting ...")

    def _log_final_stats(self) -> None:
        """Log final statistics on shutdown"""
        if not self.start_time or not self.loop:
            return

        runtime = datetime.now() - self.start_time
        status = self.loop.get_status()

        logger.info("=" * 80)
        logger.info("MONITOR FINAL STATISTICS")
        logger.info("=" * 80)
        logger.info(f"Runtime: {runtime}")
        logger.info(f"Iterations: {status['iterations']}")
        logger.info(f"Failed iterations: {status['failed_iterations']}")
        logger.info(f"Alerts: {status['alerts_total']}")
        if status['last_error']:
            logger.info(f"Last error: {status['last_error']}")
        logger.info("=" * 80)


async def main() -> int:
    """
    Main entry point

    Returns:
        Process exit code (0 on graceful stop, 1 on fatal error)
    """
    try:
        settings = get_settings()
    except ValidationError as e:
        setup_logging()
        logger.error(f"Invalid settings: {e}")
        return 1

    setup_logging(
        log_level=settings.log_level,
        log_file=settings.log_file,
        structured=settings.structured_logging,
    )
    logger.info("Starting Mango Owner Monitor...")

    monitor = OwnerMonitor(settings)
    try:
        await monitor.initialize()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except MonitorError as e:
        logger.error(f"Bootstrap failed: {e}")
        return 1

    await monitor.start()
    return 0


def run() -> None:
    """Console script entry point"""
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Monitor stopped by user")
        code = 0
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    """
    Entry point for deployment
    Run with: python src/main.py
    """
    run()
