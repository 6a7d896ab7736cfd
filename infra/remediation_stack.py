"""Finding Remediation CDK Stack.

This stack wires GuardDuty findings to notification and operator-invoked
remediation:
- SNS topic with email subscriptions for matched findings
- EventBridge rules routing GuardDuty findings to the topic
- Security Hub custom action targets registered through a custom resource
- One remediation Lambda per action target behind a custom action rule
- Optional GuardDuty threat list bucket and detector
"""

from pathlib import Path
from typing import Any, Dict, Union

from pydantic import BaseModel

from aws_cdk import (
    CfnOutput,
    CustomResource,
    Duration,
    RemovalPolicy,
    Stack,
    Tags,
)
from aws_cdk import (
    aws_events as events,
)
from aws_cdk import (
    aws_events_targets as targets,
)
from aws_cdk import (
    aws_guardduty as guardduty,
)
from aws_cdk import (
    aws_iam as iam,
)
from aws_cdk import (
    aws_lambda as _lambda,
)
from aws_cdk import (
    aws_logs as logs,
)
from aws_cdk import (
    aws_s3 as s3,
)
from aws_cdk import (
    aws_sns as sns,
)
from aws_cdk import (
    aws_sns_subscriptions as sns_subs,
)
from aws_cdk import custom_resources as cr
from constructs import Construct

from remediation.catalog import (
    ACTION_BINDINGS,
    ACTION_TARGETS,
    FINDING_RULES,
    PASSWORD_POLICY_REMEDIATOR,
    QUARANTINE_REMEDIATOR,
)
from remediation.dispatcher import custom_action_pattern

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC_DIR = (PROJECT_ROOT / "src").resolve()

# Remediator key -> Lambda handler and the exact API calls it may make
REMEDIATION_FUNCTIONS: Dict[str, Dict[str, Any]] = {
    QUARANTINE_REMEDIATOR: {
        "handler": "dispatch.handler.quarantine_handler",
        "description": "Stop or quarantine EC2 instances named by GuardDuty findings",
        "actions": ["ec2:DescribeInstances", "ec2:StopInstances"],
    },
    PASSWORD_POLICY_REMEDIATOR: {
        "handler": "dispatch.handler.password_policy_handler",
        "description": "Apply the hardened IAM account password policy",
        "actions": ["iam:GetAccountPasswordPolicy", "iam:UpdateAccountPasswordPolicy"],
    },
}


class FindingRemediationStack(Stack):
    """CDK Stack for GuardDuty finding notification and remediation."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        # `config` may be a plain dict or a Pydantic model (Config)
        config: Union[Dict[str, Any], BaseModel],
        # Explicit overrides take precedence over config values
        quarantine_instance_id: str | None = None,
        enable_threat_list_bucket: bool | None = None,
        enable_guardduty_detector: bool | None = None,
        **kwargs
    ) -> None:
        """Initialize the Finding Remediation Stack.

        Args:
            scope: CDK scope
            construct_id: Stack identifier
            config: Configuration from the config loader
            quarantine_instance_id: Fallback instance for the quarantine remediator
            enable_threat_list_bucket: Create the GuardDuty threat list bucket
            enable_guardduty_detector: Create a GuardDuty detector in this account
            **kwargs: Additional stack arguments
        """
        super().__init__(scope, construct_id, **kwargs)

        if isinstance(config, BaseModel):
            self.config = config.model_dump(by_alias=True)
        else:
            self.config = config

        features = self.config.get("features", {}) or {}
        remediation_cfg = self.config.get("remediation", {}) or {}
        self.app_name = self.config.get("app_name", "guardduty-remediation")
        self.environment_name = self.config.get("environment", "dev")
        self.quarantine_instance_id = quarantine_instance_id or remediation_cfg.get("quarantine_instance_id")
        self.remediation_timeout = int(remediation_cfg.get("timeout_seconds", 35))
        self.dry_run = bool(remediation_cfg.get("dry_run", False))
        self.log_level = (self.config.get("logging", {}) or {}).get("level", "INFO")

        if enable_threat_list_bucket is None:
            enable_threat_list_bucket = features.get("enable_threat_list_bucket", True)
        if enable_guardduty_detector is None:
            enable_guardduty_detector = features.get("enable_guardduty_detector", False)

        self.lambda_code = self._lambda_code()

        # Detection (optional)
        self.detector = self._create_detector() if enable_guardduty_detector else None
        self.threat_list_bucket = self._create_threat_list_bucket() if enable_threat_list_bucket else None

        # Notification path
        self.findings_topic = self._create_findings_topic()
        self.finding_rules = self._create_finding_rules()

        # Human-gated remediation path
        self.action_targets = self._create_action_targets()
        self.remediation_functions: Dict[str, _lambda.Function] = {}
        self.remediation_rules: Dict[str, events.Rule] = {}
        for action_id, remediator in ACTION_BINDINGS.items():
            self._create_remediation(action_id, remediator)

        self._create_outputs()
        self._apply_tags()

    def _lambda_code(self) -> _lambda.Code:
        """Code asset holding the packages and their pydantic/PyYAML dependencies.

        The asset must be built by ``scripts/package_lambda.py``; the raw source
        tree lacks the dependencies the Lambda runtime does not provide.
        """
        asset_path = Path((self.config.get("lambda", {}) or {}).get("asset_path", "dist/lambda"))
        if not asset_path.is_absolute():
            asset_path = PROJECT_ROOT / asset_path
        asset_path = asset_path.resolve()

        if asset_path == SRC_DIR or SRC_DIR in asset_path.parents:
            raise ValueError(f"Lambda asset must be a built directory, not the source tree: {asset_path}")
        if not asset_path.is_dir():
            raise FileNotFoundError(
                f"Lambda asset not found: {asset_path}. Run scripts/package_lambda.py --apply first."
            )
        return _lambda.Code.from_asset(str(asset_path), exclude=["__pycache__", "*.pyc"])

    def _create_detector(self) -> guardduty.CfnDetector:
        """Enable GuardDuty in this account and region."""
        return guardduty.CfnDetector(
            self, "GuardDutyDetector",
            enable=True,
            finding_publishing_frequency="FIFTEEN_MINUTES"
        )

    def _create_threat_list_bucket(self) -> s3.Bucket:
        """Create the S3 bucket holding GuardDuty threat lists."""
        bucket_name = (self.config.get("threat_list", {}) or {}).get("bucket_name") \
            or f"s3-gd-{self.account}-{self.region}"

        bucket = s3.Bucket(
            self, "GDThreatListBucket",
            bucket_name=bucket_name,
            encryption=s3.BucketEncryption.S3_MANAGED,
            versioned=True,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            enforce_ssl=True,
            removal_policy=RemovalPolicy.RETAIN,
            lifecycle_rules=[
                s3.LifecycleRule(
                    id="ThreatListCleanup",
                    enabled=True,
                    abort_incomplete_multipart_upload_after=Duration.days(3),
                    noncurrent_version_expiration=Duration.days(3)
                )
            ]
        )
        Tags.of(bucket).add("Description", "S3 Bucket for GD Threat List")
        return bucket

    def _create_findings_topic(self) -> sns.Topic:
        """Create the SNS topic findings are published to."""
        alerts = self.config.get("alerts", {}) or {}
        topic = sns.Topic(
            self, "FindingsTopic",
            topic_name=alerts.get("sns_topic_name"),
            display_name="GuardDuty Findings"
        )

        for email in alerts.get("email_endpoints", []):
            topic.add_subscription(sns_subs.EmailSubscription(email))

        # EventBridge publishes matched findings directly to the topic
        topic.add_to_resource_policy(
            iam.PolicyStatement(
                sid="AllowEventBridgePublish",
                effect=iam.Effect.ALLOW,
                principals=[iam.ServicePrincipal("events.amazonaws.com")],
                actions=["sns:Publish"],
                resources=[topic.topic_arn]
            )
        )
        return topic

    def _create_finding_rules(self) -> Dict[str, events.Rule]:
        """One EventBridge rule per routing rule, all targeting the findings topic."""
        rules: Dict[str, events.Rule] = {}
        for routing_rule in FINDING_RULES:
            pattern = routing_rule.event_pattern()
            rule = events.Rule(
                self, routing_rule.name.replace("-", ""),
                rule_name=f"{routing_rule.name}-{self.environment_name}",
                description=routing_rule.description,
                event_pattern=events.EventPattern(
                    source=pattern["source"],
                    detail=pattern["detail"]
                )
            )
            if "notification" in routing_rule.sinks:
                rule.add_target(targets.SnsTopic(self.findings_topic))
            rules[routing_rule.name] = rule
        return rules

    def _create_action_targets(self) -> Dict[str, CustomResource]:
        """Register the custom action targets through a provider-backed custom resource."""
        role = iam.Role(
            self, "ActionTargetFunctionRole",
            assumed_by=iam.ServicePrincipal("lambda.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("service-role/AWSLambdaBasicExecutionRole")
            ]
        )
        role.add_to_policy(iam.PolicyStatement(
            actions=["securityhub:CreateActionTarget", "securityhub:DeleteActionTarget"],
            resources=["*"]
        ))

        function_name = f"{self.app_name}-action-targets-{self.environment_name}"
        fn = _lambda.Function(
            self, "ActionTargetFunction",
            function_name=function_name,
            description="Custom resource to create an action target in Security Hub",
            runtime=_lambda.Runtime.PYTHON_3_11,
            handler="ops.action_targets.on_event",
            code=self.lambda_code,
            role=role,
            memory_size=256,
            timeout=Duration.seconds(60),
            log_group=self._create_log_group("ActionTargetLogGroup", function_name),
            environment={"Region": self.region, "LOG_LEVEL": self.log_level}
        )

        provider = cr.Provider(self, "ActionTargetProvider", on_event_handler=fn)

        resources: Dict[str, CustomResource] = {}
        for target in ACTION_TARGETS:
            resources[target.id] = CustomResource(
                self, f"{target.id}ActionTarget",
                service_token=provider.service_token,
                resource_type="Custom::ActionTarget",
                properties={
                    "Name": target.name,
                    "Description": target.description,
                    "Id": target.id,
                }
            )
        self.action_target_function = fn
        return resources

    def _create_remediation(self, action_id: str, remediator: str) -> None:
        """Create the remediation function and the custom action rule that invokes it."""
        function_def = REMEDIATION_FUNCTIONS[remediator]
        prefix = action_id

        # Least-privilege role: basic logging plus the remediator's own API calls
        role = iam.Role(
            self, f"{prefix}RemediateRole",
            assumed_by=iam.ServicePrincipal("lambda.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("service-role/AWSLambdaBasicExecutionRole")
            ]
        )
        role.add_to_policy(iam.PolicyStatement(actions=function_def["actions"], resources=["*"]))

        environment = {
            "ACTION_TARGET_ID": action_id,
            "DRY_RUN": "true" if self.dry_run else "false",
            "LOG_LEVEL": self.log_level,
        }
        if remediator == QUARANTINE_REMEDIATOR and self.quarantine_instance_id:
            environment["INSTANCE_ID"] = self.quarantine_instance_id

        function_name = f"{self.app_name}-{remediator}-{self.environment_name}"
        fn = _lambda.Function(
            self, f"{prefix}RemediateLambda",
            function_name=function_name,
            description=function_def["description"],
            runtime=_lambda.Runtime.PYTHON_3_11,
            handler=function_def["handler"],
            code=self.lambda_code,
            role=role,
            timeout=Duration.seconds(self.remediation_timeout),
            log_group=self._create_log_group(f"{prefix}RemediateLogGroup", function_name),
            environment=environment
        )

        target_arn = self.action_targets[action_id].get_att_string("Arn")
        pattern = custom_action_pattern(target_arn)
        rule = events.Rule(
            self, f"{prefix}RemediateRule",
            rule_name=f"{prefix}RemediateRule-{self.environment_name}",
            description=f"{prefix} - {function_def['description']}",
            event_pattern=events.EventPattern(
                source=pattern["source"],
                detail_type=pattern["detail-type"],
                resources=pattern["resources"]
            )
        )
        # LambdaFunction adds the lambda:InvokeFunction permission scoped to this rule
        rule.add_target(targets.LambdaFunction(fn))

        self.remediation_functions[action_id] = fn
        self.remediation_rules[action_id] = rule

    def _create_log_group(self, construct_id: str, function_name: str) -> logs.LogGroup:
        """Create the CloudWatch log group a function writes to."""
        return logs.LogGroup(
            self, construct_id,
            log_group_name=f"/aws/lambda/{function_name}",
            retention=logs.RetentionDays.ONE_MONTH,
            removal_policy=RemovalPolicy.RETAIN
        )

    def _create_outputs(self) -> None:
        CfnOutput(self, "FindingsTopicArn",
                  value=self.findings_topic.topic_arn,
                  description="SNS topic receiving GuardDuty findings")
        for action_id, resource in self.action_targets.items():
            CfnOutput(self, f"{action_id}ActionTargetArn",
                      value=resource.get_att_string("Arn"),
                      description=f"Security Hub custom action target {action_id}")

    def _apply_tags(self) -> None:
        """Apply consistent tags to all resources."""
        tags = {
            "Application": self.app_name,
            "Environment": self.environment_name,
            "CostCenter": "SecurityAutomation",
            "ManagedBy": "CDK"
        }

        for key, value in tags.items():
            Tags.of(self).add(key, value)
