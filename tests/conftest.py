"""
Test Configuration Module
Provides fixtures and shared test utilities
"""

import pytest
import json
import sys
import os
from unittest.mock import AsyncMock

# Add src and tests to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), 'src'))
sys.path.insert(0, os.path.dirname(__file__))

import builders
from builders import ACCOUNT_KEY, CACHE_KEY, GROUP_KEY, PROGRAM_ID, FakeFetcher, make_context, pk
from core.accounts import AccountKind
from core.layouts import decode
from core.market_context import MarketRegistry


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def group():
    """Decoded MangoGroup whose cache is CACHE_KEY"""
    return decode(AccountKind.GROUP, GROUP_KEY, builders.mango_group(CACHE_KEY))


@pytest.fixture
def two_market_registry():
    """SOL (enabled, threshold 1.0) and BTC (disabled, threshold 5.0) with empty books"""
    return MarketRegistry([
        make_context('SOL', 0, pk(10), pk(11), enabled=True, threshold=1.0),
        make_context('BTC', 1, pk(20), pk(21), enabled=False, threshold=5.0),
    ])


@pytest.fixture
def mock_rpc():
    """AsyncMock with the SolanaRpcClient calls used at bootstrap"""
    rpc = AsyncMock()
    rpc.last_slot = None
    return rpc


@pytest.fixture
def write_json(tmp_path):
    """Write a JSON document under tmp_path and return its path"""
    def _write(name, content):
        path = tmp_path / name
        path.write_text(json.dumps(content))
        return str(path)
    return _write


@pytest.fixture
def sample_params():
    return {
        'group': 'devnet.2',
        'interval': 5000,
        'mangoAccountPubkey': str(ACCOUNT_KEY),
        'assets': {
            'SOL': {'perp': {'isCheck': True, 'thresholdSize': 1.0}},
            'BTC': {'perp': {'isCheck': False, 'thresholdSize': 5.0}},
        },
    }


@pytest.fixture
def sample_ids():
    return {
        'cluster_urls': {'devnet': 'https://rpc.devnet.test'},
        'groups': [{
            'name': 'devnet.2',
            'cluster': 'devnet',
            'publicKey': str(GROUP_KEY),
            'mangoProgramId': str(PROGRAM_ID),
            'serumProgramId': str(pk(6)),
            'perpMarkets': [
                {'name': 'SOL-PERP', 'publicKey': str(pk(100)), 'baseSymbol': 'SOL',
                 'baseDecimals': 0, 'quoteDecimals': 0, 'marketIndex': 0},
                {'name': 'BTC-PERP', 'publicKey': str(pk(101)), 'baseSymbol': 'BTC',
                 'baseDecimals': 0, 'quoteDecimals': 0, 'marketIndex': 1},
            ],
        }],
    }
