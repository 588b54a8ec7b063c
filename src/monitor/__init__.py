"""Monitor package initialization"""

# Import classes only when needed to avoid circular imports
# Use direct imports in your code: from monitor.poll_loop import PollLoop

__all__ = [
    'AlertScanner',
    'PollLoop',
]
