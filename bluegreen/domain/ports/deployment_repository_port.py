"""
Deployment Repository Port

Architectural Intent:
- Durable storage for deployments, pools, the production record and the
  per-service deployment queue
- A crash mid-deployment is recovered by reloading these records and
  re-entering the state machine at the recorded state
"""

from abc import ABC, abstractmethod
from typing import Optional

from bluegreen.domain.entities.deployment import Deployment
from bluegreen.domain.entities.descriptor import DeploymentDescriptor
from bluegreen.domain.entities.pool import Pool


class DeploymentRepositoryPort(ABC):

    # -- Deployments -------------------------------------------------------

    @abstractmethod
    def save_deployment(self, deployment: Deployment) -> None:
        pass

    @abstractmethod
    def get_deployment(self, deployment_id: str) -> Optional[Deployment]:
        pass

    @abstractmethod
    def get_active_deployment(self, service: str) -> Optional[Deployment]:
        """The non-terminal deployment for service, if any."""
        pass

    @abstractmethod
    def latest_completed(self, service: str) -> Optional[Deployment]:
        pass

    @abstractmethod
    def list_deployments(self, service: str, limit: int = 20) -> list[Deployment]:
        pass

    @abstractmethod
    def request_cancel(self, deployment_id: str) -> bool:
        """Flag a deployment for cancellation. False if it is not active."""
        pass

    @abstractmethod
    def is_cancel_requested(self, deployment_id: str) -> bool:
        pass

    # -- Pools ---------------------------------------------------------------

    @abstractmethod
    def save_pool(self, pool: Pool) -> None:
        pass

    @abstractmethod
    def list_pools(self, service: str) -> list[Pool]:
        pass

    @abstractmethod
    def delete_pool(self, pool_id: str) -> None:
        pass

    @abstractmethod
    def set_production_pool(self, service: str, pool_id: str) -> None:
        pass

    @abstractmethod
    def get_production_pool_id(self, service: str) -> Optional[str]:
        pass

    # -- Queue ---------------------------------------------------------------

    @abstractmethod
    def enqueue(self, descriptor: DeploymentDescriptor) -> None:
        pass

    @abstractmethod
    def dequeue(self, service: str) -> Optional[DeploymentDescriptor]:
        """Pop the oldest queued descriptor for service."""
        pass

    @abstractmethod
    def list_queue(self, service: str) -> list[DeploymentDescriptor]:
        pass

    @abstractmethod
    def clear_queue(self, service: str) -> list[str]:
        """Drop every queued descriptor for service; returns their ids."""
        pass

    # -- Coordination lease ----------------------------------------------------

    @abstractmethod
    def acquire_lease(self, service: str, owner: str, ttl_seconds: float) -> bool:
        """Claim or renew the right to drive deployments of service.

        Succeeds when the lease is free, expired, or already held by owner.
        """
        pass

    @abstractmethod
    def release_lease(self, service: str, owner: str) -> None:
        pass

    @abstractmethod
    def lease_holder(self, service: str) -> Optional[str]:
        """The owner of an unexpired lease on service, if any."""
        pass

    @abstractmethod
    def lease_generation(self, service: str) -> int:
        """Incremented whenever a different owner acquires the lease."""
        pass
