"""
Domain Services Package

Architectural Intent:
- Contains domain services coordinating pools, listeners and health checks
- Services depend only on domain ports, never on concrete adapters
"""

from bluegreen.domain.services.retry import RetryPolicy, RetryExhausted
from bluegreen.domain.services.health_oracle import HealthOracle, HealthCheckPolicy
from bluegreen.domain.services.traffic_controller import TrafficController

__all__ = [
    "RetryPolicy",
    "RetryExhausted",
    "HealthOracle",
    "HealthCheckPolicy",
    "TrafficController",
]
