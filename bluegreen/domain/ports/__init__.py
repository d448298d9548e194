"""
Domain Ports Package

Architectural Intent:
- Contains port interfaces (abstract contracts) for external dependencies
- Ports define what the domain needs, adapters implement how
- Follows Hexagonal Architecture principles
"""

from bluegreen.domain.ports.scheduler_port import SchedulerPort, PoolSpec
from bluegreen.domain.ports.load_balancer_port import LoadBalancerPort
from bluegreen.domain.ports.monitoring_port import MetricsPort, AlarmPort, TrafficProbePort
from bluegreen.domain.ports.registry_port import ArtifactRegistryPort
from bluegreen.domain.ports.event_bus_port import EventBusPort
from bluegreen.domain.ports.deployment_repository_port import DeploymentRepositoryPort

__all__ = [
    "SchedulerPort",
    "PoolSpec",
    "LoadBalancerPort",
    "MetricsPort",
    "AlarmPort",
    "TrafficProbePort",
    "ArtifactRegistryPort",
    "EventBusPort",
    "DeploymentRepositoryPort",
]
