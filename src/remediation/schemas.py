"""Event and result schemas for the finding remediation pipeline.

This module defines Pydantic models for the GuardDuty finding envelope
delivered by EventBridge, the Security Hub custom action event raised when an
operator invokes an action target, and the results produced by remediators.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

GUARDDUTY_SOURCE = "aws.guardduty"
SECURITYHUB_SOURCE = "aws.securityhub"
GUARDDUTY_DETAIL_TYPE = "GuardDuty Finding"
CUSTOM_ACTION_DETAIL_TYPE = "Security Hub Findings - Custom Action"

EC2_INSTANCE_RESOURCE_TYPE = "AwsEc2Instance"


class FindingType(str, Enum):
    """GuardDuty finding types recognised by the routing rules."""
    PASSWORD_POLICY_CHANGE = "Stealth:IAMUser/PasswordPolicyChange"
    PORT_SCAN = "Recon:EC2/Portscan"


class WorkflowState(str, Enum):
    """States of the human-gated remediation workflow."""
    DETECTED = "detected"
    NOTIFIED = "notified"
    DISPATCHED = "dispatched"
    REMEDIATED = "remediated"
    FAILED = "failed"


class Finding(BaseModel):
    """A GuardDuty finding as delivered through EventBridge."""
    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    source: str = GUARDDUTY_SOURCE
    account: Optional[str] = None
    region: Optional[str] = None
    severity: float = 0.0
    resource_type: Optional[str] = None
    instance_id: Optional[str] = None
    timestamp: datetime

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, v):
        """Parse EventBridge ISO-8601 timestamps."""
        if isinstance(v, str):
            return datetime.fromisoformat(v.replace("Z", "+00:00"))
        return v

    @classmethod
    def from_event(cls, event: Dict[str, Any]) -> "Finding":
        """Build a finding from a raw EventBridge envelope.

        Raises:
            ValueError: If the envelope carries no ``detail.type``.
        """
        detail = event.get("detail") or {}
        finding_type = detail.get("type")
        if not finding_type:
            raise ValueError("Event has no detail.type; not a finding")

        resource = detail.get("resource") or {}
        instance = resource.get("instanceDetails") or {}

        return cls(
            id=detail.get("id") or event.get("id") or "unknown",
            type=finding_type,
            source=event.get("source", ""),
            account=event.get("account") or detail.get("accountId"),
            region=event.get("region") or detail.get("region"),
            severity=float(detail.get("severity") or 0.0),
            resource_type=resource.get("resourceType"),
            instance_id=instance.get("instanceId"),
            timestamp=event.get("time") or detail.get("updatedAt") or detail.get("createdAt"),
        )

    def instance_arn(self) -> Optional[str]:
        """Return the EC2 instance ARN named by this finding, if any."""
        if not self.instance_id:
            return None
        return f"arn:aws:ec2:{self.region or ''}:{self.account or ''}:instance/{self.instance_id}"

    def to_asff(self) -> Dict[str, Any]:
        """Render the finding the way Security Hub embeds it in custom action events."""
        resources: List[Dict[str, Any]] = []
        arn = self.instance_arn()
        if arn:
            resources.append({"Type": EC2_INSTANCE_RESOURCE_TYPE, "Id": arn})
        elif self.account:
            resources.append({"Type": "AwsAccount", "Id": f"AWS::::Account:{self.account}"})

        return {
            "Id": self.id,
            "Types": [self.type],
            "ProductArn": f"arn:aws:securityhub:{self.region or ''}::product/aws/guardduty",
            "Resources": resources,
        }


class AsffResource(BaseModel):
    """A resource entry inside an ASFF finding."""
    model_config = ConfigDict(extra="allow")

    Type: str
    Id: str


class AsffFinding(BaseModel):
    """The subset of an ASFF finding the remediators read."""
    model_config = ConfigDict(extra="allow")

    Id: str = ""
    Types: List[str] = Field(default_factory=list)
    Resources: List[AsffResource] = Field(default_factory=list)


class CustomActionDetail(BaseModel):
    """Detail block of a Security Hub custom action event."""
    model_config = ConfigDict(extra="allow")

    actionName: Optional[str] = None
    actionDescription: Optional[str] = None
    findings: List[AsffFinding] = Field(default_factory=list)


class CustomActionEvent(BaseModel):
    """EventBridge event emitted when an operator invokes a custom action."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    source: str
    detail_type: str = Field(alias="detail-type")
    account: Optional[str] = None
    region: Optional[str] = None
    resources: List[str] = Field(default_factory=list)
    detail: CustomActionDetail = Field(default_factory=CustomActionDetail)

    def is_custom_action(self) -> bool:
        return self.source == SECURITYHUB_SOURCE and self.detail_type == CUSTOM_ACTION_DETAIL_TYPE

    def targets(self, action_target_arn: str) -> bool:
        """True when this event was raised for the given action target."""
        return self.is_custom_action() and action_target_arn in self.resources

    def instance_ids(self) -> List[str]:
        """EC2 instance ids named by the findings attached to the event, in order."""
        ids: List[str] = []
        for finding in self.detail.findings:
            for resource in finding.Resources:
                if resource.Type != EC2_INSTANCE_RESOURCE_TYPE:
                    continue
                instance_id = resource.Id.rsplit("/", 1)[-1]
                if instance_id and instance_id not in ids:
                    ids.append(instance_id)
        return ids


class ActionTarget(BaseModel):
    """A Security Hub custom action target registration record."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=20)
    description: str
    arn: Optional[str] = None


class RegistryResult(BaseModel):
    """Outcome of a registry create/delete call."""
    target_id: str
    arn: Optional[str] = None
    success: bool
    error: Optional[str] = None


class RemediationResult(BaseModel):
    """Outcome of a single remediation invocation. Logged, never persisted."""
    action_id: str
    remediator: str
    success: bool
    changed: bool = False
    dry_run: bool = False
    resources: List[str] = Field(default_factory=list)
    response: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
