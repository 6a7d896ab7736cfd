"""In-process model of the detection, notification and remediation flow.

The deployed system wires these stages together with EventBridge rules; the
pipeline here runs the same router, dispatcher and remediators locally so the
whole flow can be exercised from the CLI and from tests.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from .catalog import (
    ACTION_BINDINGS,
    ACTION_TARGETS,
    FINDING_RULES,
    PASSWORD_POLICY_REMEDIATOR,
    QUARANTINE_REMEDIATOR,
)
from .dispatcher import CustomActionDispatcher
from .notifier import SnsNotifier
from .remediators import PasswordPolicyRemediator, QuarantineInstanceRemediator, Remediator
from .router import FindingRouter
from .schemas import (
    CUSTOM_ACTION_DETAIL_TYPE,
    SECURITYHUB_SOURCE,
    ActionTarget,
    Finding,
    RemediationResult,
    WorkflowState,
)
from .workflow import RemediationWorkflow

logger = logging.getLogger(__name__)


class UnknownActionError(KeyError):
    """Raised when an operator invokes an action target that has no remediator."""


class RemediationPipeline:
    """Detect -> notify -> (operator) -> remediate."""

    def __init__(
        self,
        router: FindingRouter,
        dispatcher: CustomActionDispatcher,
        action_targets: Sequence[ActionTarget] = tuple(ACTION_TARGETS),
    ):
        self.router = router
        self.dispatcher = dispatcher
        self.action_targets = {target.id: target for target in action_targets}

    def ingest(self, event: Dict[str, Any]) -> RemediationWorkflow:
        """Route a finding event. Never triggers a remediation by itself."""
        finding = Finding.from_event(event)
        workflow = RemediationWorkflow(finding)

        rules = self.router.matching_rules(event)
        if not rules:
            logger.info(f"Finding {finding.id} ({finding.type}) matched no rule; not notified")
            return workflow

        for rule in rules:
            for action_id in rule.actions:
                if action_id not in workflow.available_actions:
                    workflow.available_actions.append(action_id)

        # Notification never gates remediation: a matched finding reaches the
        # operator gate even when delivery fails.
        deliveries = self.router.route(event)
        workflow.notification_delivered = any(d.sink == "notification" and d.delivered for d in deliveries)
        note = ",".join(rule.name for rule in rules)
        if not workflow.notification_delivered:
            logger.error(f"Finding {finding.id} matched {len(rules)} rule(s) but no notification was delivered")
            note += " (notification not delivered)"
        workflow.transition(WorkflowState.NOTIFIED, note=note)
        return workflow

    def custom_action_event(self, finding: Finding, action_id: str) -> Dict[str, Any]:
        """The event Security Hub emits when an operator invokes ``action_id`` on ``finding``."""
        target = self.action_targets[action_id]
        return {
            "version": "0",
            "id": str(uuid.uuid4()),
            "detail-type": CUSTOM_ACTION_DETAIL_TYPE,
            "source": SECURITYHUB_SOURCE,
            "account": self.dispatcher.account_id,
            "time": datetime.now(timezone.utc).isoformat(),
            "region": self.dispatcher.region,
            "resources": [self.dispatcher.arn_for(action_id)],
            "detail": {
                "actionName": target.name,
                "actionDescription": target.description,
                "findings": [finding.to_asff()],
            },
        }

    def invoke_action(self, workflow: RemediationWorkflow, action_id: str) -> RemediationResult:
        """Operator decision: invoke a custom action on a notified finding.

        Raises:
            UnknownActionError: If no remediator is bound to ``action_id``.
            InvalidTransitionError: If the finding was never notified.
        """
        if action_id not in self.dispatcher.bindings or action_id not in self.action_targets:
            raise UnknownActionError(action_id)
        if action_id not in workflow.available_actions:
            logger.warning(
                f"Action {action_id} is not offered for {workflow.finding.type}; invoking on operator request"
            )

        workflow.transition(WorkflowState.DISPATCHED, note=action_id)
        try:
            results = self.dispatcher.dispatch(self.custom_action_event(workflow.finding, action_id))
            result = results[0]
        except Exception as e:
            # A dispatched workflow is always closed with a result
            logger.error(f"Remediation {action_id} for finding {workflow.finding.id} raised: {str(e)}")
            result = RemediationResult(
                action_id=action_id,
                remediator=self.dispatcher.bindings[action_id].name,
                success=False,
                dry_run=self.dispatcher.dry_run,
                error=str(e),
            )
        workflow.record(result)
        return result


def build_remediators(
    ec2_client,
    iam_client,
    fallback_instance_id: Optional[str] = None,
) -> Dict[str, Remediator]:
    """Remediator instances keyed by the names used in ``ACTION_BINDINGS``."""
    return {
        QUARANTINE_REMEDIATOR: QuarantineInstanceRemediator(ec2_client, fallback_instance_id),
        PASSWORD_POLICY_REMEDIATOR: PasswordPolicyRemediator(iam_client),
    }


def build_pipeline(
    *,
    region: str,
    account_id: str,
    notifier: SnsNotifier,
    ec2_client,
    iam_client,
    fallback_instance_id: Optional[str] = None,
    dry_run: bool = False,
) -> RemediationPipeline:
    """Assemble the pipeline from the fixed catalog."""
    router = FindingRouter(FINDING_RULES, sinks={"notification": notifier})
    dispatcher = CustomActionDispatcher(region, account_id, dry_run=dry_run)
    remediators = build_remediators(ec2_client, iam_client, fallback_instance_id)
    for action_id, remediator_name in ACTION_BINDINGS.items():
        dispatcher.bind(action_id, remediators[remediator_name])
    return RemediationPipeline(router, dispatcher)
