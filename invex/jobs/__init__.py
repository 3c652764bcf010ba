"""
InvEX Jobs Module

Async execution support for invoice pipelines.

Components:
- Worker: Runs pipelines on a bounded asyncio pool
- RunLeaseManager: One live run per invoice
- CircuitBreaker: Fails fast while the extraction service is unhealthy
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from .lease import RunLeaseManager
from .worker import Worker, WorkerConfig, run_worker

__all__ = [
    # Worker
    'Worker',
    'WorkerConfig',
    'run_worker',

    # Leases
    'RunLeaseManager',

    # Circuit breaking
    'CircuitBreaker',
    'CircuitBreakerConfig',
    'CircuitState'
]
