"""Remediators: one idempotent corrective operation each.

Every remediator is written as a desired end state plus an ``apply`` step.
``remediate`` reads the current state, skips the mutation when the resource
already matches the desired state, and otherwise performs exactly one
provider call. Provider errors are caught and logged and the result carries
whatever response was obtained, so the invocation itself never fails.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, ConfigDict

from .schemas import CustomActionEvent, RemediationResult

logger = logging.getLogger(__name__)

# Instance states from which no stop call is needed
HALTED_STATES = frozenset({"stopping", "stopped", "shutting-down", "terminated"})


@dataclass
class RemediationContext:
    """Inputs available to a remediator for one invocation."""
    action_id: str
    event: Optional[CustomActionEvent] = None
    dry_run: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)


class Remediator(ABC):
    """Base class for remediators."""

    name: str = "remediator"

    @abstractmethod
    def remediate(self, context: RemediationContext) -> RemediationResult:
        ...

    def _result(self, context: RemediationContext, **kwargs) -> RemediationResult:
        return RemediationResult(
            action_id=context.action_id,
            remediator=self.name,
            dry_run=context.dry_run,
            **kwargs,
        )


class PasswordPolicy(BaseModel):
    """Account password policy, field names as the IAM API expects them."""
    model_config = ConfigDict(frozen=True)

    MinimumPasswordLength: int
    RequireSymbols: bool
    RequireNumbers: bool
    RequireUppercaseCharacters: bool
    RequireLowercaseCharacters: bool
    AllowUsersToChangePassword: bool
    MaxPasswordAge: int
    PasswordReusePrevention: int
    HardExpiry: bool

    @classmethod
    def from_api(cls, policy: Dict[str, Any]) -> "PasswordPolicy":
        """Build from a GetAccountPasswordPolicy response body.

        IAM omits MaxPasswordAge, PasswordReusePrevention and HardExpiry when
        they are unset, so those default to their disabled values.
        """
        return cls(
            MinimumPasswordLength=policy.get("MinimumPasswordLength", 0),
            RequireSymbols=policy.get("RequireSymbols", False),
            RequireNumbers=policy.get("RequireNumbers", False),
            RequireUppercaseCharacters=policy.get("RequireUppercaseCharacters", False),
            RequireLowercaseCharacters=policy.get("RequireLowercaseCharacters", False),
            AllowUsersToChangePassword=policy.get("AllowUsersToChangePassword", False),
            MaxPasswordAge=policy.get("MaxPasswordAge", 0),
            PasswordReusePrevention=policy.get("PasswordReusePrevention", 0),
            HardExpiry=policy.get("HardExpiry", False),
        )


HARDENED_PASSWORD_POLICY = PasswordPolicy(
    MinimumPasswordLength=14,
    RequireSymbols=True,
    RequireNumbers=True,
    RequireUppercaseCharacters=True,
    RequireLowercaseCharacters=True,
    AllowUsersToChangePassword=True,
    MaxPasswordAge=90,
    PasswordReusePrevention=24,
    HardExpiry=True,
)


class PasswordPolicyRemediator(Remediator):
    """Overwrites the account password policy with the hardened configuration."""

    name = "password-policy"

    def __init__(self, iam_client, desired: PasswordPolicy = HARDENED_PASSWORD_POLICY):
        self.client = iam_client
        self.desired = desired

    def current_state(self) -> Optional[PasswordPolicy]:
        """Current policy, or None when no policy is set or it cannot be read."""
        try:
            response = self.client.get_account_password_policy()
        except (ClientError, BotoCoreError) as e:
            code = e.response.get("Error", {}).get("Code") if isinstance(e, ClientError) else None
            if code != "NoSuchEntity":
                logger.warning(f"Could not read account password policy: {str(e)}")
            return None
        return PasswordPolicy.from_api(response.get("PasswordPolicy", {}))

    def apply(self) -> Dict[str, Any]:
        return self.client.update_account_password_policy(**self.desired.model_dump())

    def remediate(self, context: RemediationContext) -> RemediationResult:
        resources = ["AWS::IAM::AccountPasswordPolicy"]
        if self.current_state() == self.desired:
            logger.info("Account password policy already hardened; nothing to do")
            return self._result(context, success=True, changed=False, resources=resources)

        if context.dry_run:
            logger.info(f"DRY RUN: would update account password policy to {self.desired.model_dump()}")
            return self._result(context, success=True, changed=True, resources=resources)

        response = None
        try:
            response = self.apply()
            logger.info("Account password policy updated to hardened configuration")
            return self._result(context, success=True, changed=True, resources=resources, response=response)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to update account password policy: {str(e)}")
            return self._result(
                context, success=False, resources=resources, response=response, error=str(e)
            )


class QuarantineInstanceRemediator(Remediator):
    """Stops the EC2 instances named by the triggering findings.

    Instance ids are taken from the ``AwsEc2Instance`` resources of the
    findings attached to the custom action event. The configured
    ``fallback_instance_id`` is used only when the event names none.
    """

    name = "quarantine"

    def __init__(self, ec2_client, fallback_instance_id: Optional[str] = None):
        self.client = ec2_client
        self.fallback_instance_id = fallback_instance_id

    def target_instances(self, context: RemediationContext) -> List[str]:
        ids = context.event.instance_ids() if context.event else []
        if not ids and self.fallback_instance_id:
            logger.info(f"Event names no instance; using configured instance {self.fallback_instance_id}")
            ids = [self.fallback_instance_id]
        return ids

    def current_state(self, instance_ids: List[str]) -> Dict[str, str]:
        """Map instance id to state name. Unreadable instances are left out."""
        states: Dict[str, str] = {}
        try:
            response = self.client.describe_instances(InstanceIds=instance_ids)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not describe instances {instance_ids}: {str(e)}")
            return states
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                states[instance["InstanceId"]] = instance.get("State", {}).get("Name", "")
        return states

    def apply(self, instance_ids: List[str]) -> Dict[str, Any]:
        return self.client.stop_instances(InstanceIds=instance_ids)

    def remediate(self, context: RemediationContext) -> RemediationResult:
        instance_ids = self.target_instances(context)
        if not instance_ids:
            logger.error("No instance to quarantine: event names none and no instance is configured")
            return self._result(context, success=False, error="no target instance")

        states = self.current_state(instance_ids)
        pending = [i for i in instance_ids if states.get(i) not in HALTED_STATES]
        if not pending:
            logger.info(f"Instances {instance_ids} already halted; nothing to do")
            return self._result(context, success=True, changed=False, resources=instance_ids)

        if context.dry_run:
            logger.info(f"DRY RUN: would stop instances {pending}")
            return self._result(context, success=True, changed=True, resources=pending)

        response = None
        try:
            response = self.apply(pending)
            logger.info(f"Stop requested for instances {pending}")
            return self._result(context, success=True, changed=True, resources=pending, response=response)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to stop instances {pending}: {str(e)}")
            return self._result(
                context, success=False, resources=pending, response=response, error=str(e)
            )
