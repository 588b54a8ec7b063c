"""Core package initialization"""

# Import classes only when needed to avoid circular imports
# Use direct imports in your code: from core.snapshot import SnapshotAssembler

__all__ = [
    'SolanaRpcClient',
    'SnapshotAssembler',
    'MarketRegistry',
    'bootstrap',
]
