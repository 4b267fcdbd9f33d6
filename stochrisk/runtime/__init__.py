"""Host-side dispatch of engine analyses."""

from .execution import ExecutionTimeoutError, timed, with_retry, with_timeout
from .registry import Registry, build_registry

__all__ = [
    'ExecutionTimeoutError',
    'Registry',
    'build_registry',
    'timed',
    'with_retry',
    'with_timeout',
]
