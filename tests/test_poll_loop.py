"""
Tests for Poll Loop
"""

import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

import builders
from builders import ACCOUNT_KEY, CACHE_KEY, GROUP_KEY, OWNER_KEY, FakeFetcher, make_context, order, pk
from core.accounts import AccountKind
from core.layouts import decode
from core.market_context import MarketRegistry
from core.snapshot import SnapshotAssembler
from monitor.alert_scanner import AlertScanner, ScanResult
from monitor.poll_loop import MonitorState, PollConfig, PollLoop
from utils.exceptions import RpcError


def account():
    return decode(AccountKind.ACCOUNT, ACCOUNT_KEY, builders.mango_account(GROUP_KEY, OWNER_KEY))


def make_loop(assembler, interval_sec=0.01, registry=None, stop_event=None):
    return PollLoop(
        assembler,
        AlertScanner(),
        registry if registry is not None else MarketRegistry(),
        account(),
        PollConfig(interval_sec=interval_sec),
        stop_event=stop_event,
    )


class TestPollConfig:
    """Immutable loop configuration"""

    def test_defaults(self):
        """Test the default interval and depth"""
        config = PollConfig()

        assert config.interval_sec == 10.0
        assert config.scan_depth == 50

    def test_rejects_non_positive_interval(self):
        """Test a zero interval is refused"""
        with pytest.raises(ValueError):
            PollConfig(interval_sec=0)

    def test_frozen(self):
        """Test the config cannot be mutated"""
        config = PollConfig()

        with pytest.raises(AttributeError):
            config.interval_sec = 1.0


@pytest.mark.asyncio
class TestRunOnce:
    """One iteration inside its failure boundary"""

    async def test_failure_is_isolated(self):
        """Test an iteration error is counted and the next iteration still runs"""
        snapshot = MagicMock()
        snapshot.account = account()
        assembler = MagicMock()
        assembler.load = AsyncMock(side_effect=[RpcError("node down"), snapshot])
        loop = make_loop(assembler)
        previous = loop.account

        first = await loop.run_once()

        assert first is None
        assert loop.failed_iterations == 1
        assert loop.account is previous
        assert "node down" in loop.last_error

        second = await loop.run_once()

        assert isinstance(second, ScanResult)
        assert loop.iterations == 2
        assert loop.failed_iterations == 1
        assert loop.account is snapshot.account

    async def test_unexpected_exception_is_isolated(self):
        """Test non-monitor exceptions are treated the same way"""
        assembler = MagicMock()
        assembler.load = AsyncMock(side_effect=KeyError("boom"))
        loop = make_loop(assembler)

        assert await loop.run_once() is None
        assert loop.failed_iterations == 1

    async def test_failure_is_logged(self, caplog):
        """Test the iteration failure is logged as an error"""
        assembler = MagicMock()
        assembler.load = AsyncMock(side_effect=RpcError("node down"))
        loop = make_loop(assembler)

        await loop.run_once()

        errors = [r for r in caplog.records if r.name == 'monitor.poll_loop']
        assert errors and errors[0].levelname == 'ERROR'
        assert errors[0].error_type == 'RpcError'

    async def test_previous_account_passed_to_next_load(self):
        """Test each load receives the account of the last good snapshot"""
        first_snapshot = MagicMock()
        first_snapshot.account = account()
        assembler = MagicMock()
        assembler.load = AsyncMock(return_value=first_snapshot)
        loop = make_loop(assembler)
        initial = loop.account

        await loop.run_once()
        await loop.run_once()

        assert assembler.load.await_args_list[0].args[0] is initial
        assert assembler.load.await_args_list[1].args[0] is first_snapshot.account


@pytest.mark.asyncio
class TestRun:
    """Loop lifecycle and shutdown"""

    async def test_stop_before_start(self):
        """Test a stop requested before running drains without iterating"""
        assembler = MagicMock()
        assembler.load = AsyncMock()
        loop = make_loop(assembler)
        loop.request_stop()

        await loop.run()

        assembler.load.assert_not_awaited()
        assert loop.state is MonitorState.STOPPED

    async def test_stop_finishes_current_iteration(self):
        """Test a stop during a fetch lets the iteration complete, then exits"""
        stop_event = asyncio.Event()
        release = asyncio.Event()
        snapshot = MagicMock()
        snapshot.account = account()

        async def slow_load(previous):
            await release.wait()
            return snapshot

        assembler = MagicMock()
        assembler.load = AsyncMock(side_effect=slow_load)
        loop = make_loop(assembler, interval_sec=60, stop_event=stop_event)

        task = asyncio.create_task(loop.run())
        await asyncio.sleep(0.01)
        assert loop.state is MonitorState.RUNNING

        loop.request_stop()
        await asyncio.sleep(0.01)
        assert not task.done()

        release.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert loop.iterations == 1
        assert loop.failed_iterations == 0
        assert loop.account is snapshot.account
        assert loop.state is MonitorState.STOPPED

    async def test_stop_interrupts_sleep(self):
        """Test the stop event wakes the loop out of its pause"""
        snapshot = MagicMock()
        snapshot.account = account()
        assembler = MagicMock()
        assembler.load = AsyncMock(return_value=snapshot)
        loop = make_loop(assembler, interval_sec=60)

        task = asyncio.create_task(loop.run())
        await asyncio.sleep(0.01)
        assert loop.state is MonitorState.SLEEPING

        loop.request_stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert loop.iterations == 1
        assert loop.state is MonitorState.STOPPED

    async def test_keeps_running_after_failures(self):
        """Test failing iterations do not stop the loop"""
        assembler = MagicMock()
        assembler.load = AsyncMock(side_effect=RpcError("down"))
        loop = make_loop(assembler, interval_sec=0.001)

        task = asyncio.create_task(loop.run())
        while loop.iterations < 3:
            await asyncio.sleep(0.005)
        loop.request_stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert loop.failed_iterations == loop.iterations
        assert loop.iterations >= 3
        assert loop.get_status()['state'] == 'stopped'


@pytest.mark.asyncio
class TestEndToEnd:
    """Real assembler and scanner over synthetic accounts"""

    async def test_enabled_market_alerts_disabled_market_silent(self, group, caplog):
        """Test A (threshold 1.0, enabled) alerts on a 2.0 bid; B (5.0, disabled) stays silent"""
        registry = MarketRegistry([
            make_context('AAA', 0, pk(10), pk(11), enabled=True, threshold=1.0),
            make_context('BBB', 1, pk(20), pk(21), enabled=False, threshold=5.0),
        ])
        fetcher = FakeFetcher({
            CACHE_KEY: builders.mango_cache(),
            ACCOUNT_KEY: builders.mango_account(GROUP_KEY, OWNER_KEY),
            pk(10): builders.book_side([order(50, 2, owner=pk(60)), order(49, 1, owner=pk(62))]),
            pk(11): builders.book_side([], is_bids=False),
            pk(20): builders.book_side([order(70, 10, owner=pk(61))]),
            pk(21): builders.book_side([], is_bids=False),
        })
        loop = make_loop(SnapshotAssembler(fetcher, group, registry), registry=registry)

        result = await loop.run_once()

        assert len(result.alerts) == 1
        assert result.alerts[0].owner == str(pk(60))
        assert result.alerts[0].size == 2.0
        assert loop.alerts_total == 1
        assert fetcher.calls[0] == [CACHE_KEY, ACCOUNT_KEY, pk(10), pk(20), pk(11), pk(21)]

        warnings = [r.getMessage() for r in caplog.records if r.name == 'monitor.alert_scanner']
        assert warnings == [f"[AAA-PERP] owner: {pk(60)} - size: 2.0 - price: 50.0"]

    async def test_corrupt_book_keeps_previous_state(self, group, two_market_registry):
        """Test a corrupt bid tree fails the iteration with account and books untouched"""
        fetcher = FakeFetcher({
            CACHE_KEY: builders.mango_cache(),
            ACCOUNT_KEY: builders.mango_account(GROUP_KEY, OWNER_KEY, name='fresh'),
            pk(10): builders.book_side([order(50, 2), order(49, 1)], corrupt_tag=True),
            pk(11): builders.book_side([], is_bids=False),
            pk(20): builders.book_side([], is_bids=True),
            pk(21): builders.book_side([], is_bids=False),
        })
        loop = make_loop(SnapshotAssembler(fetcher, group, two_market_registry), registry=two_market_registry)
        initial = loop.account
        books_before = [(ctx.bids, ctx.asks) for ctx in two_market_registry]

        assert await loop.run_once() is None

        assert loop.failed_iterations == 1
        assert loop.account is initial
        assert loop.last_snapshot is None
        assert [(ctx.bids, ctx.asks) for ctx in two_market_registry] == books_before
        assert "node tag" in loop.last_error

    async def test_scan_failure_keeps_previous_account(self):
        """Test the account is only carried forward once the scan has succeeded"""
        snapshot = MagicMock()
        snapshot.account = account()
        assembler = MagicMock()
        assembler.load = AsyncMock(return_value=snapshot)
        loop = make_loop(assembler)
        loop.scanner = MagicMock()
        loop.scanner.scan.side_effect = ValueError("scan failed")
        initial = loop.account

        assert await loop.run_once() is None

        assert loop.account is initial
        assert loop.failed_iterations == 1
