"""
Reliability module: Circuit breaking for best-effort dependencies.
"""

from sessionstore.reliability.circuit_breaker import CircuitBreaker, CircuitState, CircuitStats

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "CircuitStats",
]
