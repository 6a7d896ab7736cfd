"""Remediation Lambda entry points.

Each remediation function is the single target of one custom action rule.
The handler rebuilds a one-binding dispatcher from its environment, checks
that the event was raised for its own action target, and runs the bound
remediator. Remediation results are logged and returned; provider errors
never make the invocation fail.

Environment:
    ACTION_TARGET_ID   id of the custom action target this function serves
    INSTANCE_ID        fallback EC2 instance for the quarantine remediator
    DRY_RUN            report planned changes without mutating ("true"/"false")
    LOG_LEVEL          logging level (default INFO)
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import boto3
from pydantic import ValidationError

from remediation.catalog import PASSWORD_POLICY_ACTION_ID, QUARANTINE_ACTION_ID
from remediation.config import setup_logging
from remediation.dispatcher import CustomActionDispatcher
from remediation.remediators import PasswordPolicyRemediator, QuarantineInstanceRemediator, Remediator

logger = logging.getLogger(__name__)


@dataclass
class RuntimeSettings:
    """Settings a remediation function reads from its environment."""
    action_target_id: str
    region: str
    fallback_instance_id: Optional[str] = None
    dry_run: bool = False

    @classmethod
    def from_env(cls, default_action_target_id: str) -> "RuntimeSettings":
        return cls(
            action_target_id=os.environ.get("ACTION_TARGET_ID", default_action_target_id),
            region=os.environ.get("AWS_REGION", "us-east-1"),
            fallback_instance_id=os.environ.get("INSTANCE_ID") or None,
            dry_run=os.environ.get("DRY_RUN", "false").lower() in ("1", "true", "yes"),
        )


def _account_id(event: Dict[str, Any], context: Any) -> str:
    arn = getattr(context, "invoked_function_arn", None)
    if arn:
        return arn.split(":")[4]
    return event.get("account", "")


def run(event: Dict[str, Any], context: Any, settings: RuntimeSettings, remediator: Remediator) -> Dict[str, Any]:
    """Dispatch ``event`` to ``remediator`` and summarise the outcome."""
    dispatcher = CustomActionDispatcher(settings.region, _account_id(event, context), dry_run=settings.dry_run)
    dispatcher.bind(settings.action_target_id, remediator)

    try:
        results = dispatcher.dispatch(event)
    except ValidationError as e:
        logger.error(f"Malformed custom action event: {str(e)}")
        return {"status": "error", "error": str(e), "results": []}

    if not results:
        return {"status": "skipped", "results": []}

    status = "ok" if all(r.success for r in results) else "failed"
    return {"status": status, "results": [r.model_dump(mode="json") for r in results]}


def quarantine_handler(event: Dict[str, Any], context: Any, ec2_client=None) -> Dict[str, Any]:
    """Stop or quarantine the EC2 instance(s) named by the invoked findings."""
    setup_logging()
    settings = RuntimeSettings.from_env(QUARANTINE_ACTION_ID)
    client = ec2_client or boto3.client("ec2", region_name=settings.region)
    remediator = QuarantineInstanceRemediator(client, settings.fallback_instance_id)
    return run(event, context, settings, remediator)


def password_policy_handler(event: Dict[str, Any], context: Any, iam_client=None) -> Dict[str, Any]:
    """Apply the hardened account password policy."""
    setup_logging()
    settings = RuntimeSettings.from_env(PASSWORD_POLICY_ACTION_ID)
    client = iam_client or boto3.client("iam")
    remediator = PasswordPolicyRemediator(client)
    return run(event, context, settings, remediator)
