"""
Workflow Orchestration Module

Architectural Intent:
- DAG-based workflow execution for multi-step deployment processes
- Enforces dependency ordering: a step starts only after every step it
  depends on has reported success
- Steps may carry a bounded retry policy for transient errors

Parallelization Strategy:
- The graph is layered once, up front; every step in a layer runs concurrently
- Results from earlier layers are visible to later ones
- A linear chain of depends_on yields strictly sequential stages
"""

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Awaitable, Any, Optional

from bluegreen.domain.services.retry import RetryExhausted, RetryPolicy

logger = logging.getLogger(__name__)

StepFn = Callable[[dict[str, Any], dict[str, Any]], Awaitable[Any]]


@dataclass
class WorkflowStep:
    name: str
    execute: StepFn
    depends_on: list[str] = field(default_factory=list)
    is_critical: bool = True
    retry: Optional[RetryPolicy] = None
    retry_on: tuple[type[BaseException], ...] = (Exception,)


class OrchestrationError(Exception):
    pass


class StepFailed(OrchestrationError):
    def __init__(self, step: str, attempts: int, cause: BaseException) -> None:
        super().__init__(f"Critical step {step} failed after {attempts} attempt(s): {cause}")
        self.step = step
        self.attempts = attempts
        self.cause = cause


class DAGOrchestrator:
    def __init__(self, steps: list[WorkflowStep]) -> None:
        self.steps: dict[str, WorkflowStep] = {s.name: s for s in steps}
        self._layers: Optional[list[list[str]]] = None

    def plan(self) -> list[list[str]]:
        """Group step names into layers; each layer depends only on earlier ones."""
        if self._layers is not None:
            return self._layers

        for step in self.steps.values():
            missing = [d for d in step.depends_on if d not in self.steps]
            if missing:
                raise OrchestrationError(
                    f"Step {step.name} has unsatisfied dependencies: {', '.join(missing)}"
                )

        indegree = {name: len(set(s.depends_on)) for name, s in self.steps.items()}
        dependents: dict[str, list[str]] = {name: [] for name in self.steps}
        for step in self.steps.values():
            for dep in set(step.depends_on):
                dependents[dep].append(step.name)

        layers: list[list[str]] = []
        ready = sorted(name for name, n in indegree.items() if n == 0)
        while ready:
            layers.append(ready)
            unlocked = []
            for name in ready:
                for child in dependents[name]:
                    indegree[child] -= 1
                    if indegree[child] == 0:
                        unlocked.append(child)
            ready = sorted(unlocked)

        placed = sum(len(layer) for layer in layers)
        if placed != len(self.steps):
            stuck = sorted(name for name, n in indegree.items() if n > 0)
            raise OrchestrationError(
                f"Circular dependency detected among steps: {', '.join(stuck)}"
            )
        self._layers = layers
        return layers

    async def _attempt(
        self, step: WorkflowStep, context: dict[str, Any], results: dict[str, Any]
    ) -> Any:
        if step.retry is None:
            return await step.execute(context, results)
        return await step.retry.run(
            step.name, lambda: step.execute(context, results), retry_on=step.retry_on
        )

    async def execute(self, context: dict[str, Any]) -> dict[str, Any]:
        results: dict[str, Any] = {}
        for layer in self.plan():
            outcomes = await asyncio.gather(
                *(self._attempt(self.steps[name], context, results) for name in layer),
                return_exceptions=True,
            )
            for name, outcome in zip(layer, outcomes):
                if isinstance(outcome, Exception) and self.steps[name].is_critical:
                    if isinstance(outcome, RetryExhausted):
                        raise StepFailed(name, outcome.attempts, outcome.last_error)
                    raise StepFailed(name, 1, outcome)
                if isinstance(outcome, Exception):
                    logger.warning("Optional step %s failed: %s", name, outcome)
                results[name] = outcome
        return results
