"""Minimal saga: ordered local steps with compensating actions."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..errors import TranscriptionError

logger = logging.getLogger(__name__)


# An action receives the results of the steps that ran before it, keyed by step name
StepAction = Callable[[Dict[str, Any]], Any]
Compensation = Callable[[Dict[str, Any]], None]
ErrorMapper = Callable[[Exception], Exception]


@dataclass
class SagaStep:
    name: str
    action: StepAction
    compensation: Optional[Compensation] = None
    best_effort: bool = False
    error: Optional[ErrorMapper] = None


class Saga:
    """Runs steps in order.

    A failing critical step triggers the compensations of every completed step in
    reverse order, then raises the step's mapped error. A failing best-effort step
    is logged and skipped.
    """

    def __init__(self, name: str):
        self.name = name
        self.steps: List[SagaStep] = []
        self.results: Dict[str, Any] = {}

    def step(self, name: str, action: StepAction, compensation: Optional[Compensation] = None,
             best_effort: bool = False, error: Optional[ErrorMapper] = None) -> "Saga":
        """Append a step.

        Args:
            name: Step name; its result is stored under this key
            action: Callable receiving the results dict
            compensation: Undo (or audit) action run if a later critical step fails
            best_effort: Failure is logged and does not stop the saga
            error: Maps the raised exception to the one the saga raises
        """
        self.steps.append(SagaStep(name, action, compensation, best_effort, error))
        return self

    def run(self) -> Dict[str, Any]:
        completed: List[SagaStep] = []
        for step in self.steps:
            try:
                self.results[step.name] = step.action(self.results)
            except Exception as e:
                if step.best_effort:
                    logger.warning(f"[{self.name}] best-effort step '{step.name}' failed: {e}")
                    self.results[step.name] = None
                    continue

                logger.error(f"[{self.name}] step '{step.name}' failed: {e}")
                self._compensate(completed)
                mapped = step.error(e) if step.error is not None else e
                if mapped is e:
                    raise
                raise mapped from e

            completed.append(step)
            logger.debug(f"[{self.name}] step '{step.name}' done")
        return self.results

    def _compensate(self, completed: List[SagaStep]) -> None:
        for step in reversed(completed):
            if step.compensation is None:
                continue
            try:
                step.compensation(self.results)
                logger.info(f"[{self.name}] compensated step '{step.name}'")
            except Exception as e:
                # Compensation failures must not mask the original error
                logger.error(f"[{self.name}] compensation of '{step.name}' failed: {e}")


def wrap_error(error_cls, message: str, code: Optional[str] = None, passthrough: bool = True) -> ErrorMapper:
    """Error mapper wrapping a failed step's exception into `error_cls`.

    Args:
        error_cls: Engine error class to raise
        message: Message of the raised error
        code: Code of the raised error (the class default when None)
        passthrough: Let engine errors of other classes through unchanged. When
            False every exception is wrapped and kept as the cause.
    """
    def mapper(exc: Exception) -> Exception:
        if passthrough and isinstance(exc, TranscriptionError) and not isinstance(exc, error_cls):
            return exc
        return error_cls(message, code=code, cause=exc)
    return mapper
