"""Custom action dispatch: maps invoked action targets to bound remediators."""

import logging
from typing import Any, Dict, List, Mapping

from .registry import action_target_arn
from .remediators import RemediationContext, Remediator
from .schemas import CUSTOM_ACTION_DETAIL_TYPE, SECURITYHUB_SOURCE, CustomActionEvent, RemediationResult

logger = logging.getLogger(__name__)


def custom_action_pattern(action_target_arn: str) -> Dict[str, Any]:
    """EventBridge pattern for custom action events of one action target."""
    return {
        "source": [SECURITYHUB_SOURCE],
        "detail-type": [CUSTOM_ACTION_DETAIL_TYPE],
        "resources": [action_target_arn],
    }


class CustomActionDispatcher:
    """Routes custom action events to the one remediator bound to each target.

    Each binding behaves like one EventBridge rule: an event is dispatched to
    a remediator only if its ``resources`` name that remediator's action
    target. Events for unbound targets are logged and ignored.
    """

    def __init__(self, region: str, account_id: str, dry_run: bool = False):
        self.region = region
        self.account_id = account_id
        self.dry_run = dry_run
        self._bindings: Dict[str, Remediator] = {}

    def bind(self, action_id: str, remediator: Remediator) -> None:
        if action_id in self._bindings:
            raise ValueError(f"Action target {action_id} is already bound to {self._bindings[action_id].name}")
        self._bindings[action_id] = remediator

    @property
    def bindings(self) -> Mapping[str, Remediator]:
        return dict(self._bindings)

    def arn_for(self, action_id: str) -> str:
        return action_target_arn(action_id, self.region, self.account_id)

    def dispatch(self, event: Dict[str, Any]) -> List[RemediationResult]:
        """Invoke the remediator of every bound action target the event names."""
        parsed = CustomActionEvent.model_validate(event)
        if not parsed.is_custom_action():
            logger.warning(
                f"Ignoring event from {parsed.source} ({parsed.detail_type}); not a custom action"
            )
            return []

        results: List[RemediationResult] = []
        for action_id, remediator in self._bindings.items():
            if not parsed.targets(self.arn_for(action_id)):
                continue
            logger.info(
                f"Dispatching custom action {action_id} to {remediator.name} "
                f"for {len(parsed.detail.findings)} finding(s)"
            )
            context = RemediationContext(action_id=action_id, event=parsed, dry_run=self.dry_run)
            result = remediator.remediate(context)
            logger.info(f"Remediation {action_id} finished: success={result.success} changed={result.changed}")
            results.append(result)

        if not results:
            logger.warning(f"No bound action target in event resources {parsed.resources}")
        return results
