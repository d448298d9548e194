"""
Deployment Coordinator Use Case

Architectural Intent:
- Enforces at most one non-terminal Deployment per service
- Requests that arrive while a deployment is active wait in a persisted
  FIFO queue and are admitted one at a time as deployments terminate
- Each admitted deployment runs on its own task through the state machine

Design Decisions:
- Re-submitting the artifact version that production already serves from a
  completed deployment is a no-op: no pool is created
- Queue policy 'run_each' runs every queued request in order; 'keep_latest'
  drops older queued requests when a newer one arrives, and their waiters
  resolve as superseded
- Driving deployments requires the service lease in the repository; it is
  renewed while work is in flight and released when the coordinator goes
  idle. Without it, submissions are queued for the lease holder and a
  persisted in-flight deployment is left to the process driving it
- A persisted non-terminal deployment found at start() is resumed at its
  recorded state once the lease is free or expired
"""

from __future__ import annotations
import asyncio
import logging
import os
import socket
import uuid
from typing import Any, Optional

from bluegreen.application.dtos.deployment_dtos import (
    DeploymentReport,
    SubmissionOutcome,
    SubmissionResult,
)
from bluegreen.application.orchestration.state_machine import DeploymentStateMachine
from bluegreen.domain.entities.deployment import Deployment
from bluegreen.domain.entities.descriptor import DeploymentDescriptor
from bluegreen.domain.events.deployment_events import DeploymentTerminatedEvent
from bluegreen.domain.ports.deployment_repository_port import DeploymentRepositoryPort
from bluegreen.domain.ports.event_bus_port import EventBusPort
from bluegreen.domain.services.traffic_controller import TrafficController

logger = logging.getLogger(__name__)

QUEUE_POLICIES = ("run_each", "keep_latest")

SKIPPED_NOOP = "noop"
SKIPPED_SUPERSEDED = "superseded"


def default_owner_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class DeploymentCoordinator:
    def __init__(
        self,
        service: str,
        state_machine: DeploymentStateMachine,
        traffic: TrafficController,
        repository: DeploymentRepositoryPort,
        event_bus: Optional[EventBusPort] = None,
        queue_policy: str = "run_each",
        owner_id: Optional[str] = None,
        lease_seconds: float = 30.0,
        poll_interval: float = 1.0,
    ) -> None:
        if queue_policy not in QUEUE_POLICIES:
            raise ValueError(f"queue_policy must be one of {QUEUE_POLICIES}, got {queue_policy!r}")
        if lease_seconds <= 0:
            raise ValueError(f"lease_seconds must be positive, got {lease_seconds}")
        self.service = service
        self.state_machine = state_machine
        self.traffic = traffic
        self.repository = repository
        self.event_bus = event_bus
        self.queue_policy = queue_policy
        self.owner_id = owner_id or default_owner_id()
        self.lease_seconds = lease_seconds
        self.poll_interval = poll_interval
        self._lock = asyncio.Lock()
        self._active: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._holds_lease = False
        self._lease_generation: Optional[int] = None
        self._results: dict[str, Optional[Deployment]] = {}
        self._skipped: dict[str, str] = {}
        self._waiters: dict[str, list[asyncio.Future]] = {}

    @property
    def active_deployment_id(self) -> Optional[str]:
        return self._active

    @property
    def holds_lease(self) -> bool:
        return self._holds_lease

    # -- Lease -----------------------------------------------------------------

    def _claim(self) -> bool:
        if not self.repository.acquire_lease(self.service, self.owner_id, self.lease_seconds):
            self._holds_lease = False
            return False
        if not self._holds_lease:
            self._holds_lease = True
            self._heartbeat_task = asyncio.create_task(
                self._heartbeat(), name=f"lease-{self.service}"
            )
            logger.debug("Acquired %s lease as %s", self.service, self.owner_id)
        return True

    async def _acquire(self) -> bool:
        """Claim the lease; pool state is reloaded if another owner held it since."""
        if not self._claim():
            return False
        generation = self.repository.lease_generation(self.service)
        if generation != self._lease_generation:
            await self.traffic.load()
            self._lease_generation = generation
        return True

    def _release(self) -> None:
        heartbeat = self._heartbeat_task
        self._heartbeat_task = None
        if heartbeat is not None and heartbeat is not asyncio.current_task():
            heartbeat.cancel()
        if self._holds_lease:
            self._holds_lease = False
            self.repository.release_lease(self.service, self.owner_id)
            logger.debug("Released %s lease", self.service)

    async def _heartbeat(self) -> None:
        interval = self.lease_seconds / 3
        while True:
            await asyncio.sleep(interval)
            if self.repository.acquire_lease(self.service, self.owner_id, self.lease_seconds):
                continue
            logger.error(
                "Lost the %s lease to %s; stopping deployment %s",
                self.service,
                self.repository.lease_holder(self.service),
                self._active,
            )
            self._holds_lease = False
            self._heartbeat_task = None
            task = self._task
            self._active = None
            self._task = None
            if task is not None:
                task.cancel()
            return

    # -- Admission -------------------------------------------------------------

    async def start(self) -> Optional[Deployment]:
        """Load pool state and resume a persisted in-flight deployment, if any."""
        await self.traffic.load()
        async with self._lock:
            if self._active is not None:
                return None
            return await self._take_over()

    async def _take_over(self, quiet: bool = False) -> Optional[Deployment]:
        if not await self._acquire():
            log = logger.debug if quiet else logger.info
            log(
                "Deployments of %s are driven by %s; not taking over",
                self.service,
                self.repository.lease_holder(self.service),
            )
            return None
        active = self.repository.get_active_deployment(self.service)
        if active is not None:
            logger.warning(
                "Resuming deployment %s (%s) at %s",
                active.deployment_id,
                active.artifact_version,
                active.state.value,
            )
            self._launch(active)
            return active
        await self._admit_next()
        return None

    async def submit(self, descriptor: DeploymentDescriptor) -> SubmissionResult:
        async with self._lock:
            if self._is_noop(descriptor):
                logger.info(
                    "%s is already serving production; nothing to deploy",
                    descriptor.artifact_version,
                )
                return SubmissionResult(SubmissionOutcome.NOOP, None, descriptor.artifact_version)

            if self._active is None and await self._acquire():
                active = self.repository.get_active_deployment(self.service)
                if active is None:
                    self._launch(Deployment(descriptor=descriptor))
                    return SubmissionResult(
                        SubmissionOutcome.ADMITTED,
                        descriptor.descriptor_id,
                        descriptor.artifact_version,
                    )
                # an interrupted deployment goes first
                self._enqueue(descriptor)
                self._launch(active)
                return SubmissionResult(
                    SubmissionOutcome.QUEUED, descriptor.descriptor_id, descriptor.artifact_version
                )

            self._enqueue(descriptor)
            logger.info(
                "Queued %s behind active deployment %s",
                descriptor.artifact_version,
                self._active or self.repository.lease_holder(self.service),
            )
            return SubmissionResult(
                SubmissionOutcome.QUEUED, descriptor.descriptor_id, descriptor.artifact_version
            )

    def _enqueue(self, descriptor: DeploymentDescriptor) -> None:
        if self.queue_policy == "keep_latest":
            dropped = self.repository.clear_queue(self.service)
            if dropped:
                logger.info("Dropped %d superseded queued request(s)", len(dropped))
            for descriptor_id in dropped:
                self._skip(descriptor_id, SKIPPED_SUPERSEDED)
        self.repository.enqueue(descriptor)

    def _is_noop(self, descriptor: DeploymentDescriptor) -> bool:
        latest = self.repository.latest_completed(self.service)
        return (
            latest is not None
            and latest.artifact_version == descriptor.artifact_version
            and latest.candidate_pool_id is not None
            and latest.candidate_pool_id == self.repository.get_production_pool_id(self.service)
        )

    def _launch(self, deployment: Deployment) -> None:
        self.repository.save_deployment(deployment)
        self._active = deployment.deployment_id
        self._task = asyncio.create_task(
            self._drive(deployment), name=f"deployment-{deployment.deployment_id[:8]}"
        )
        logger.info(
            "Admitted deployment %s for %s", deployment.deployment_id, deployment.artifact_version
        )

    async def _drive(self, deployment: Deployment) -> None:
        try:
            final = await self.state_machine.run(deployment)
        except asyncio.CancelledError:
            logger.warning(
                "Deployment %s interrupted; it can be resumed from its last recorded state",
                deployment.deployment_id,
            )
            raise
        except Exception:
            logger.exception("Deployment %s aborted unexpectedly", deployment.deployment_id)
            final = self.repository.get_deployment(deployment.deployment_id) or deployment

        report = self.report(final)
        log = logger.info if report.succeeded else logger.error
        log("Deployment %s %s: %s", final.deployment_id, report.state, report.summary)
        if report.remediation:
            logger.critical(report.remediation)
        if self.event_bus:
            await self.event_bus.publish([
                DeploymentTerminatedEvent(
                    aggregate_id=final.deployment_id,
                    service=final.service,
                    state=report.state,
                    artifact_version=final.artifact_version,
                    summary=report.summary,
                )
            ])
        self._resolve(final.deployment_id, final)

        async with self._lock:
            if self._task is not asyncio.current_task():
                return
            self._active = None
            self._task = None
            await self._admit_next()

    async def _admit_next(self) -> None:
        while self._active is None:
            descriptor = self.repository.dequeue(self.service)
            if descriptor is None:
                self._release()
                return
            if self._is_noop(descriptor):
                logger.info("Skipping queued %s: already in production", descriptor.artifact_version)
                self._skip(descriptor.descriptor_id, SKIPPED_NOOP)
                continue
            self._launch(Deployment(descriptor=descriptor))

    # -- Waiting ---------------------------------------------------------------

    def _skip(self, deployment_id: str, reason: str) -> None:
        self._skipped[deployment_id] = reason
        self._resolve(deployment_id, None)

    def _resolve(self, deployment_id: str, result: Optional[Deployment]) -> None:
        self._results[deployment_id] = result
        for waiter in self._waiters.pop(deployment_id, []):
            if not waiter.done():
                waiter.set_result(result)

    def skip_reason(self, deployment_id: str) -> Optional[str]:
        """'noop' or 'superseded' for a queued request that never ran."""
        return self._skipped.get(deployment_id)

    async def wait(self, deployment_id: str, timeout: Optional[float] = None) -> Optional[Deployment]:
        """Wait for deployment_id to terminate.

        Returns None for a queued request that never ran: it was skipped as a
        no-op or superseded by a newer one (see skip_reason). Deployments
        driven by another process are followed through the repository.
        """
        if deployment_id in self._results:
            return self._results[deployment_id]
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(deployment_id, []).append(waiter)
        try:
            return await asyncio.wait_for(self._follow(deployment_id, waiter), timeout)
        finally:
            pending = self._waiters.get(deployment_id)
            if pending and waiter in pending:
                pending.remove(waiter)

    async def _follow(self, deployment_id: str, waiter: asyncio.Future) -> Optional[Deployment]:
        while True:
            done, _ = await asyncio.wait({waiter}, timeout=self.poll_interval)
            if done:
                return waiter.result()
            if self._active is not None:
                continue
            deployment = self.repository.get_deployment(deployment_id)
            if deployment is not None and deployment.is_terminal:
                # finished elsewhere; pick up the pools it left behind
                await self.traffic.load()
                return deployment
            await self._adopt_if_idle()

    async def _adopt_if_idle(self) -> None:
        # the lease holder may have gone away with work outstanding
        async with self._lock:
            if self._active is None:
                await self._take_over(quiet=True)

    async def supervise(
        self,
        interval_seconds: Optional[float] = None,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        """Periodically pick up queued or interrupted work left by another process."""
        interval = interval_seconds or self.poll_interval
        while True:
            try:
                await self._adopt_if_idle()
            except Exception as e:
                logger.error("Coordinator supervision failed: %s", e)

            if stop is None:
                await asyncio.sleep(interval)
                continue
            try:
                await asyncio.wait_for(stop.wait(), interval)
                break
            except asyncio.TimeoutError:
                pass

    async def wait_idle(self) -> None:
        """Wait until no deployment is active and the queue is drained."""
        while self._task is not None:
            await asyncio.shield(self._task)
            # let the finished task admit the next queued request
            await asyncio.sleep(0)

    async def cancel(self, deployment_id: Optional[str] = None) -> bool:
        """Persist a cancel request; whichever process drives the deployment acts on it."""
        target = deployment_id or self._active
        if target is None:
            active = self.repository.get_active_deployment(self.service)
            target = active.deployment_id if active else None
        if target is None:
            return False
        accepted = self.repository.request_cancel(target)
        if accepted:
            self.state_machine.request_cancel(target)
            logger.warning("Cancellation requested for %s", target)
        return accepted

    async def shutdown(self) -> None:
        """Stop the in-flight task and hand the lease back; persisted state stays resumable."""
        task = self._task
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._release()

    # -- Reporting -------------------------------------------------------------

    def report(self, deployment: Deployment) -> DeploymentReport:
        production = self.traffic.production_pool_id
        orphaned = [
            p.pool_id
            for p in self.traffic.pools()
            if p.current_count > 0 and p.pool_id != production
        ]
        return DeploymentReport.from_deployment(deployment, production, orphaned)

    def status(self) -> dict[str, Any]:
        active = self.repository.get_active_deployment(self.service)
        latest = self.repository.latest_completed(self.service)
        return {
            "service": self.service,
            "production_pool_id": self.traffic.production_pool_id,
            "active": active.to_dict() if active else None,
            "driven_by": self.repository.lease_holder(self.service),
            "latest_completed": latest.artifact_version if latest else None,
            "queue": [d.artifact_version for d in self.repository.list_queue(self.service)],
            "pools": [p.to_dict() for p in self.traffic.pools()],
        }
