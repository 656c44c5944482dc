"""Utility modules for Bastion.

This package contains shared utilities:
- retry: Retry logic with exponential backoff
"""

from bastion.utils.retry import RetryConfig, retry_sync

__all__ = [
    "RetryConfig",
    "retry_sync",
]
