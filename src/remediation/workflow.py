"""Human-gated remediation workflow.

A finding moves through ``DETECTED -> NOTIFIED -> DISPATCHED -> REMEDIATED``
(or ``FAILED``). The step from NOTIFIED to DISPATCHED only happens when an
operator invokes a custom action, so the gate is an explicit state that can
be inspected and audited. Re-dispatching a remediated or failed finding is
allowed because every remediator converges to the same end state.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional

from .schemas import Finding, RemediationResult, WorkflowState

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[WorkflowState, FrozenSet[WorkflowState]] = {
    WorkflowState.DETECTED: frozenset({WorkflowState.NOTIFIED}),
    WorkflowState.NOTIFIED: frozenset({WorkflowState.DISPATCHED}),
    WorkflowState.DISPATCHED: frozenset({WorkflowState.REMEDIATED, WorkflowState.FAILED}),
    WorkflowState.REMEDIATED: frozenset({WorkflowState.DISPATCHED}),
    WorkflowState.FAILED: frozenset({WorkflowState.DISPATCHED}),
}


class InvalidTransitionError(RuntimeError):
    """Raised when a workflow is moved to a state it cannot reach."""


@dataclass(frozen=True)
class Transition:
    state: WorkflowState
    at: datetime
    note: str = ""


@dataclass
class RemediationWorkflow:
    """Audit record of one finding's path through the pipeline."""
    finding: Finding
    available_actions: List[str] = field(default_factory=list)
    history: List[Transition] = field(default_factory=list)
    results: List[RemediationResult] = field(default_factory=list)
    # None until the finding has been routed
    notification_delivered: Optional[bool] = None

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append(Transition(WorkflowState.DETECTED, datetime.now(timezone.utc)))

    @property
    def state(self) -> WorkflowState:
        return self.history[-1].state

    @property
    def awaiting_operator(self) -> bool:
        """True while the finding is notified and waiting on a human decision."""
        return self.state == WorkflowState.NOTIFIED

    def can_transition(self, target: WorkflowState) -> bool:
        return target in TRANSITIONS[self.state]

    def transition(self, target: WorkflowState, note: str = "") -> None:
        if not self.can_transition(target):
            raise InvalidTransitionError(
                f"Finding {self.finding.id}: cannot move from {self.state.value} to {target.value}"
            )
        self.history.append(Transition(target, datetime.now(timezone.utc), note))
        logger.info(f"Finding {self.finding.id} ({self.finding.type}) -> {target.value} {note}".rstrip())

    def record(self, result: RemediationResult) -> None:
        """Close a dispatch with the remediator's result."""
        self.results.append(result)
        target = WorkflowState.REMEDIATED if result.success else WorkflowState.FAILED
        self.transition(target, note=result.action_id)

    @property
    def last_result(self) -> Optional[RemediationResult]:
        return self.results[-1] if self.results else None
