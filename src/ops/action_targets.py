"""Action target custom resource Lambda.

CloudFormation calls this through the CDK provider framework to register a
Security Hub custom action target on Create and remove it on Delete. Action
targets have no update operation, so an Update with the same id keeps the
existing registration; an Update that changes the id registers the new
target and lets CloudFormation delete the old one.

Conflicts on Create and not-found on Delete are soft failures handled by the
registry. Any other failure is raised so the provider framework reports
FAILED to CloudFormation.
"""
import logging
import os
from typing import Any, Dict, Optional

import boto3

from remediation.config import setup_logging
from remediation.registry import ActionTargetRegistry
from remediation.schemas import ActionTarget

logger = logging.getLogger(__name__)


class ActionTargetError(RuntimeError):
    """Raised when an action target cannot be registered or removed."""


def _account_id(context: Any) -> str:
    # arn:aws:lambda:<region>:<account>:function:<name>
    return context.invoked_function_arn.split(":")[4]


def _target_from(properties: Dict[str, Any]) -> ActionTarget:
    return ActionTarget(
        id=properties["Id"],
        name=properties["Name"],
        description=properties.get("Description", ""),
    )


def _registry(context: Any, securityhub_client=None) -> ActionTargetRegistry:
    region = os.environ.get("Region") or os.environ.get("AWS_REGION", "us-east-1")
    client = securityhub_client or boto3.client("securityhub", region_name=region)
    return ActionTargetRegistry(client, region, _account_id(context))


def _create(registry: ActionTargetRegistry, target: ActionTarget) -> Dict[str, Any]:
    result = registry.register(target)
    if not result.success:
        raise ActionTargetError(f"Could not register action target {target.id}: {result.error}")
    return {"PhysicalResourceId": result.arn, "Data": {"Arn": result.arn}}


def on_event(event: Dict[str, Any], context: Any, securityhub_client=None) -> Dict[str, Any]:
    """Provider framework ``onEvent`` entry point."""
    setup_logging()
    request_type = event["RequestType"]
    target = _target_from(event.get("ResourceProperties", {}))
    registry = _registry(context, securityhub_client)
    logger.info(f"{request_type} request for action target {target.id}")

    if request_type == "Create":
        return _create(registry, target)

    if request_type == "Update":
        old_id: Optional[str] = (event.get("OldResourceProperties") or {}).get("Id")
        if old_id and old_id != target.id:
            logger.info(f"Action target id changed from {old_id} to {target.id}; registering replacement")
            return _create(registry, target)
        arn = event.get("PhysicalResourceId") or registry.arn_for(target.id)
        logger.info(f"Action target {target.id} is immutable; keeping {arn}")
        return {"PhysicalResourceId": arn, "Data": {"Arn": arn}}

    if request_type == "Delete":
        result = registry.unregister(target.id)
        if not result.success:
            raise ActionTargetError(f"Could not remove action target {target.id}: {result.error}")
        return {"PhysicalResourceId": event.get("PhysicalResourceId") or result.arn}

    raise ActionTargetError(f"Unsupported request type: {request_type}")
