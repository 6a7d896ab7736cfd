"""Action target registry backed by Security Hub.

The registry is stateless: an action target's ARN is always derived from its
id together with the region and account, so deletion never depends on a
stored handle. Provider errors are logged and reported as soft failures.
"""

import logging
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from .schemas import ActionTarget, RegistryResult

logger = logging.getLogger(__name__)

CONFLICT_ERROR_CODES = ("ResourceConflictException",)
NOT_FOUND_ERROR_CODES = ("ResourceNotFoundException",)


def action_target_arn(target_id: str, region: str, account_id: str) -> str:
    """Deterministic Security Hub ARN for a custom action target id."""
    return f"arn:aws:securityhub:{region}:{account_id}:action/custom/{target_id}"


def _error_code(error: Exception) -> str:
    if not isinstance(error, ClientError):
        return ""
    return error.response.get("Error", {}).get("Code", "")


class ActionTargetRegistry:
    """Registers and unregisters Security Hub custom action targets."""

    def __init__(self, securityhub_client, region: str, account_id: str):
        self.client = securityhub_client
        self.region = region
        self.account_id = account_id

    def arn_for(self, target_id: str) -> str:
        return action_target_arn(target_id, self.region, self.account_id)

    def register(self, target: ActionTarget) -> RegistryResult:
        """Create the action target.

        A conflict means the target already exists and already provides the
        handle, so it is logged and treated as success.
        """
        try:
            response = self.client.create_action_target(
                Name=target.name,
                Description=target.description,
                Id=target.id,
            )
            arn = response["ActionTargetArn"]
            logger.info(f"Registered action target {target.id} as {arn}")
            return RegistryResult(target_id=target.id, arn=arn, success=True)
        except (ClientError, BotoCoreError) as e:
            if _error_code(e) in CONFLICT_ERROR_CODES:
                arn = self.arn_for(target.id)
                logger.warning(f"Action target {target.id} already exists, reusing {arn}")
                return RegistryResult(target_id=target.id, arn=arn, success=True, error=str(e))
            logger.error(f"Failed to register action target {target.id}: {str(e)}")
            return RegistryResult(target_id=target.id, success=False, error=str(e))

    def unregister(self, target_id: str) -> RegistryResult:
        """Delete the action target. A target that is already gone is not an error."""
        arn = self.arn_for(target_id)
        try:
            self.client.delete_action_target(ActionTargetArn=arn)
            logger.info(f"Unregistered action target {target_id} ({arn})")
            return RegistryResult(target_id=target_id, arn=arn, success=True)
        except (ClientError, BotoCoreError) as e:
            if _error_code(e) in NOT_FOUND_ERROR_CODES:
                logger.warning(f"Action target {target_id} not found, nothing to delete")
                return RegistryResult(target_id=target_id, arn=arn, success=True, error=str(e))
            logger.error(f"Failed to unregister action target {target_id}: {str(e)}")
            return RegistryResult(target_id=target_id, arn=arn, success=False, error=str(e))

    def lookup(self, target_id: str) -> Optional[str]:
        """Return the ARN if Security Hub currently knows the target, else None."""
        arn = self.arn_for(target_id)
        try:
            response = self.client.describe_action_targets(ActionTargetArns=[arn])
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to describe action target {target_id}: {str(e)}")
            return None
        targets = response.get("ActionTargets", [])
        return arn if targets else None
