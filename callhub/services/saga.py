"""Ordered steps with compensating actions for two-system consistency."""

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from callhub.infra.metrics import saga_compensations_total

logger = logging.getLogger(__name__)

StepFn = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]


@dataclass
class SagaStep:
    """
    One step of a saga.

    action receives the shared state dict; its return value is stored under
    the step name. compensation, when set, undoes the action and runs only
    if a later step fails.
    """
    name: str
    action: StepFn
    compensation: Optional[StepFn] = None


@dataclass
class Saga:
    name: str
    steps: List[SagaStep] = field(default_factory=list)

    def add_step(self, name: str, action: StepFn, compensation: Optional[StepFn] = None) -> "Saga":
        self.steps.append(SagaStep(name=name, action=action, compensation=compensation))
        return self

    async def run(self, state: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run every step in order.

        On failure the compensations of completed steps run in reverse order
        and the original exception is re-raised. A failing compensation is
        logged and does not stop the remaining ones.

        Returns:
            The shared state dict, with each step's result under its name
        """
        state = state if state is not None else {}
        completed: List[SagaStep] = []

        for step in self.steps:
            try:
                state[step.name] = await _call(step.action, state)
            except Exception as e:
                logger.warning(
                    f"Saga {self.name} failed at step {step.name}: {e}",
                    extra={"saga": self.name, "step": step.name},
                )
                await self._compensate(completed, state)
                raise
            completed.append(step)

        return state

    async def _compensate(self, completed: List[SagaStep], state: Dict[str, Any]) -> None:
        for step in reversed(completed):
            if step.compensation is None:
                continue
            try:
                await _call(step.compensation, state)
                saga_compensations_total.labels(saga=self.name, status="success").inc()
                logger.info(
                    f"Compensated step {step.name}",
                    extra={"saga": self.name, "step": step.name},
                )
            except Exception as e:
                saga_compensations_total.labels(saga=self.name, status="failure").inc()
                logger.error(
                    f"Compensation for step {step.name} failed: {e}",
                    extra={"saga": self.name, "step": step.name},
                    exc_info=True,
                )


async def _call(fn: StepFn, state: Dict[str, Any]) -> Any:
    result = fn(state)
    if inspect.isawaitable(result):
        result = await result
    return result
