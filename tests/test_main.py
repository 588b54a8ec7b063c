"""
Tests for the Monitor Entry Point
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import builders
from builders import ACCOUNT_KEY, GROUP_KEY, OWNER_KEY
from config.settings import MonitorSettings
from core.accounts import AccountKind
from core.layouts import decode
from core.market_context import MarketRegistry
from monitor.poll_loop import MonitorState
from utils.exceptions import ConfigurationError, MonitorError, RpcError

import main
from main import OwnerMonitor


def fake_context():
    context = MagicMock()
    context.rpc = AsyncMock()
    context.params.interval_sec = 0.01
    context.registry = MarketRegistry()
    context.account = decode(AccountKind.ACCOUNT, ACCOUNT_KEY, builders.mango_account(GROUP_KEY, OWNER_KEY))
    return context


@pytest.fixture
def settings():
    return MonitorSettings(_env_file=None, scan_depth=20, fetch_max_attempts=2)


@pytest.mark.asyncio
class TestOwnerMonitor:
    """Lifecycle of the monitor"""

    async def test_initialize_wires_settings(self, settings):
        """Test interval comes from params and depth/retries from settings"""
        with patch('main.bootstrap', new=AsyncMock(return_value=fake_context())):
            monitor = OwnerMonitor(settings)
            await monitor.initialize()

        assert monitor.loop.config.interval_sec == 0.01
        assert monitor.loop.config.scan_depth == 20
        assert monitor.loop.scanner.scan_depth == 20
        assert monitor.loop.assembler.max_attempts == 2

    async def test_start_requires_initialize(self, settings):
        """Test start before initialize is refused"""
        with pytest.raises(MonitorError) as exc_info:
            await OwnerMonitor(settings).start()

        assert exc_info.value.error_code == 'NOT_INITIALIZED'

    async def test_stop_then_start_shuts_down(self, settings):
        """Test a stop requested before start exits without fetching and closes the client"""
        context = fake_context()
        with patch('main.bootstrap', new=AsyncMock(return_value=context)):
            monitor = OwnerMonitor(settings)
            await monitor.initialize()

        monitor.stop()
        with patch.object(monitor, '_install_signal_handlers'):
            await monitor.start()

        assert monitor.loop.state is MonitorState.STOPPED
        assert monitor.loop.iterations == 0
        context.rpc.get_multiple_accounts.assert_not_awaited()
        context.rpc.close.assert_awaited_once()

    async def test_shutdown_logs_close_failure(self, settings, caplog):
        """Test an error closing the session does not escape shutdown"""
        context = fake_context()
        context.rpc.close.side_effect = RpcError("already closed")
        monitor = OwnerMonitor(settings)
        monitor.context = context

        await monitor.shutdown()

        assert any('Error closing RPC client' in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
class TestMain:
    """Process exit codes"""

    async def test_configuration_error_exits_1(self, settings):
        """Test a fatal bootstrap error returns exit code 1"""
        failing = AsyncMock(side_effect=ConfigurationError("Group x not found", error_code='UNKNOWN_GROUP'))

        with patch('main.get_settings', return_value=settings), \
                patch('main.setup_logging'), \
                patch('main.bootstrap', new=failing):
            assert await main.main() == 1

    async def test_rpc_error_at_bootstrap_exits_1(self, settings):
        """Test an unreachable cluster at startup returns exit code 1"""
        with patch('main.get_settings', return_value=settings), \
                patch('main.setup_logging'), \
                patch('main.bootstrap', new=AsyncMock(side_effect=RpcError("connection refused"))):
            assert await main.main() == 1

    async def test_graceful_stop_exits_0(self, settings):
        """Test a normal run ending in a stop returns exit code 0"""
        async def stopped_start(self):
            await self.shutdown()

        with patch('main.get_settings', return_value=settings), \
                patch('main.setup_logging'), \
                patch('main.bootstrap', new=AsyncMock(return_value=fake_context())), \
                patch.object(OwnerMonitor, 'start', stopped_start):
            assert await main.main() == 0
