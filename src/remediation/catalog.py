"""Fixed catalog of routing rules and custom action targets.

Both the CDK stack and the local pipeline are built from these definitions.
"""

from typing import Dict, List

from .router import RoutingRule
from .schemas import GUARDDUTY_SOURCE, ActionTarget, FindingType

QUARANTINE_ACTION_ID = "GDRemeEC2"
PASSWORD_POLICY_ACTION_ID = "GDRemeIAM"

QUARANTINE_REMEDIATOR = "quarantine"
PASSWORD_POLICY_REMEDIATOR = "password-policy"

ACTION_TARGETS: List[ActionTarget] = [
    ActionTarget(
        id=QUARANTINE_ACTION_ID,
        name=QUARANTINE_ACTION_ID,
        description="Stop or Quarantine Malicious EC2",
    ),
    ActionTarget(
        id=PASSWORD_POLICY_ACTION_ID,
        name=PASSWORD_POLICY_ACTION_ID,
        description="Update Password Policy",
    ),
]

# Action target id -> remediator key. Every action target has exactly one.
ACTION_BINDINGS: Dict[str, str] = {
    QUARANTINE_ACTION_ID: QUARANTINE_REMEDIATOR,
    PASSWORD_POLICY_ACTION_ID: PASSWORD_POLICY_REMEDIATOR,
}

FINDING_RULES: List[RoutingRule] = [
    RoutingRule(
        name="GuardDuty-IAM-Finding",
        source=GUARDDUTY_SOURCE,
        finding_type=FindingType.PASSWORD_POLICY_CHANGE.value,
        actions=(PASSWORD_POLICY_ACTION_ID,),
        description="GuardDuty IAM Event",
    ),
    # Notify-only: no action target is bound to port scans.
    RoutingRule(
        name="GuardDuty-EC2-Finding",
        source=GUARDDUTY_SOURCE,
        finding_type=FindingType.PORT_SCAN.value,
        description="GuardDuty EC2 Event",
    ),
]


def get_action_target(target_id: str) -> ActionTarget:
    for target in ACTION_TARGETS:
        if target.id == target_id:
            return target
    raise KeyError(f"Unknown action target: {target_id}")
