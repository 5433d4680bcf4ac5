"""
Utilities

Run context, bounded retry loops, logging setup and remote execution.
"""

from .context import RunContext
from .retry import NotReady, RetryPolicy, try_do

__all__ = [
    "RunContext",
    "NotReady",
    "RetryPolicy",
    "try_do",
]
