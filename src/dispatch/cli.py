#!/usr/bin/env python3
"""CLI interface for the finding remediation pipeline.

This script provides command-line access to the routing rules, the local
detect/notify/remediate pipeline and the Security Hub action targets for
testing, debugging and manual operation.
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import boto3

from deployer_guard import require_deploy_allowed_or_exit
from remediation.catalog import ACTION_TARGETS, FINDING_RULES, get_action_target
from remediation.config import Config, load_config, setup_logging
from remediation.notifier import SnsNotifier
from remediation.pipeline import UnknownActionError, build_pipeline
from remediation.registry import ActionTargetRegistry
from remediation.router import FindingRouter
from remediation.workflow import InvalidTransitionError

logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="guardduty-remediation",
        description="GuardDuty finding routing and Security Hub custom action remediation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show which rules a finding matches
  guardduty-remediation route --input finding.json

  # Notify and remediate a finding locally (dry-run)
  guardduty-remediation simulate --input finding.json --action GDRemeIAM

  # Register the custom action targets for real
  ALLOW_AWS_DEPLOY=1 DEPLOY_CONFIRM=I_ACCEPT_COSTS guardduty-remediation targets register --apply
        """
    )
    parser.add_argument("--environment", "-e", default=None, help="Configuration environment (default: $ENVIRONMENT or dev)")
    parser.add_argument("--output", "-o", type=Path, help="Output JSON file (default: stdout)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    sub = parser.add_subparsers(dest="command", required=True)

    route = sub.add_parser("route", help="Evaluate routing rules against findings")
    _add_input_args(route)

    simulate = sub.add_parser("simulate", help="Run findings through the local pipeline")
    _add_input_args(simulate)
    simulate.add_argument("--action", help="Custom action id the operator invokes on each notified finding")
    simulate.add_argument("--topic-arn", help="SNS topic ARN (default: derived from config)")
    simulate.add_argument("--account-id", help="AWS account id (default: from STS)")
    simulate.add_argument("--apply", action="store_true", help="Publish and remediate for real (default: dry-run)")

    targets = sub.add_parser("targets", help="Manage Security Hub custom action targets")
    targets.add_argument("operation", choices=["register", "unregister", "status"])
    targets.add_argument("--id", dest="target_id", help="Action target id (default: all catalog targets)")
    targets.add_argument("--account-id", help="AWS account id (default: from STS)")
    targets.add_argument("--apply", action="store_true", help="Perform register/unregister for real (default: dry-run)")

    args = parser.parse_args(argv)

    try:
        config = load_config(args.environment)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    setup_logging("DEBUG" if args.verbose else config.logging.level)

    try:
        if args.command == "route":
            output = cmd_route(_load_events(args))
        elif args.command == "simulate":
            output = cmd_simulate(args, config, _load_events(args))
        else:
            output = cmd_targets(args, config)
    except (ValueError, KeyError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    output["processed_at"] = datetime.now(timezone.utc).isoformat()
    if args.output:
        with open(args.output, 'w') as f:
            json.dump(output, f, indent=2, default=str)
        print(f"Results written to {args.output}")
    else:
        print(json.dumps(output, indent=2, default=str))
    return 0


def _add_input_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--input", "-i", type=Path, help="JSON file with one finding event or a list of them")
    group.add_argument("--test", action="store_true", help="Use synthetic GuardDuty findings")


def _load_events(args: argparse.Namespace) -> List[Dict[str, Any]]:
    if args.test:
        return _generate_test_events()
    if not args.input.exists():
        raise ValueError(f"Input file not found: {args.input}")
    with open(args.input, 'r') as f:
        data = json.load(f)
    return data if isinstance(data, list) else [data]


def _session(config: Config) -> boto3.Session:
    if config.aws.profile:
        return boto3.Session(profile_name=config.aws.profile, region_name=config.aws.region)
    return boto3.Session(region_name=config.aws.region)


def _account_id(session: boto3.Session, explicit: Optional[str]) -> str:
    if explicit:
        return explicit
    return session.client("sts").get_caller_identity()["Account"]


def cmd_route(events: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Report matching rules without delivering anything."""
    router = FindingRouter(FINDING_RULES)
    results = []
    for event in events:
        rules = router.matching_rules(event)
        results.append({
            "type": (event.get("detail") or {}).get("type"),
            "source": event.get("source"),
            "rules": [rule.name for rule in rules],
            "sinks": sorted({sink for rule in rules for sink in rule.sinks}),
            "actions": [action for rule in rules for action in rule.actions],
        })
    return {"total_events": len(events), "results": results}


class _DryRunNotifier:
    """Stands in for SNS in dry-run mode: logs instead of publishing."""

    def __init__(self, topic_arn: str):
        self.topic_arn = topic_arn

    def __call__(self, event: Dict[str, Any]) -> str:
        detail = event.get("detail") or {}
        logger.info(f"DRY RUN: would publish {detail.get('type')} to {self.topic_arn}")
        return "dry-run"


def cmd_simulate(args: argparse.Namespace, config: Config, events: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Run each finding through detect -> notify -> (optional) operator action."""
    session = _session(config)
    region = config.aws.region
    account_id = _account_id(session, args.account_id)
    topic_arn = args.topic_arn or f"arn:aws:sns:{region}:{account_id}:{config.alerts.sns_topic_name}"
    dry_run = not args.apply or config.remediation.dry_run

    if args.apply:
        require_deploy_allowed_or_exit("Simulation with --apply publishes and remediates in the target account.")
        notifier = SnsNotifier(session.client("sns"), topic_arn)
    else:
        notifier = _DryRunNotifier(topic_arn)

    pipeline = build_pipeline(
        region=region,
        account_id=account_id,
        notifier=notifier,
        ec2_client=session.client("ec2"),
        iam_client=session.client("iam"),
        fallback_instance_id=config.remediation.quarantine_instance_id,
        dry_run=dry_run,
    )

    results = []
    for event in events:
        workflow = pipeline.ingest(event)
        entry: Dict[str, Any] = {
            "finding_id": workflow.finding.id,
            "type": workflow.finding.type,
            "available_actions": workflow.available_actions,
        }
        if args.action:
            try:
                result = pipeline.invoke_action(workflow, args.action)
                entry["result"] = result.model_dump(mode="json")
            except InvalidTransitionError as e:
                entry["error"] = str(e)
            except UnknownActionError:
                raise ValueError(f"Unknown action target: {args.action}")
        entry["state"] = workflow.state.value
        entry["history"] = [
            {"state": t.state.value, "at": t.at.isoformat(), "note": t.note} for t in workflow.history
        ]
        results.append(entry)

    return {"dry_run": dry_run, "total_events": len(events), "results": results}


def cmd_targets(args: argparse.Namespace, config: Config) -> Dict[str, Any]:
    """Register, unregister or report the catalog's action targets."""
    selected = [get_action_target(args.target_id)] if args.target_id else list(ACTION_TARGETS)

    session = _session(config)
    registry = ActionTargetRegistry(
        session.client("securityhub"),
        config.aws.region,
        _account_id(session, args.account_id),
    )

    if args.operation == "status":
        return {"targets": [
            {"id": t.id, "arn": registry.arn_for(t.id), "registered": registry.lookup(t.id) is not None}
            for t in selected
        ]}

    if not args.apply:
        return {"dry_run": True, "targets": [
            {"id": t.id, "operation": args.operation, "arn": registry.arn_for(t.id)} for t in selected
        ]}

    require_deploy_allowed_or_exit(f"Action target {args.operation} modifies Security Hub in the target account.")
    if args.operation == "register":
        outcomes = [registry.register(t) for t in selected]
    else:
        outcomes = [registry.unregister(t.id) for t in selected]
    return {"dry_run": False, "targets": [o.model_dump() for o in outcomes]}


def _generate_test_events() -> List[Dict[str, Any]]:
    """Generate synthetic GuardDuty finding events for testing."""
    return [
        {
            "version": "0",
            "id": "c8c4daa7-a20c-2f03-0070-b7393dd542ad",
            "detail-type": "GuardDuty Finding",
            "source": "aws.guardduty",
            "account": "123456789012",
            "time": "2024-01-01T12:00:00Z",
            "region": "us-east-1",
            "resources": [],
            "detail": {
                "schemaVersion": "2.0",
                "accountId": "123456789012",
                "region": "us-east-1",
                "id": "7ab9d1cb6248e05a0e419a79528761cb",
                "type": "Stealth:IAMUser/PasswordPolicyChange",
                "severity": 2,
                "resource": {
                    "resourceType": "AccessKey",
                    "accessKeyDetails": {"userName": "test-user", "userType": "IAMUser"}
                },
                "createdAt": "2024-01-01T11:58:00Z",
                "updatedAt": "2024-01-01T12:00:00Z"
            }
        },
        {
            "version": "0",
            "id": "4f1b2a3c-1d2e-4f5a-8b9c-0d1e2f3a4b5c",
            "detail-type": "GuardDuty Finding",
            "source": "aws.guardduty",
            "account": "123456789012",
            "time": "2024-01-01T12:05:00Z",
            "region": "us-east-1",
            "resources": [],
            "detail": {
                "schemaVersion": "2.0",
                "accountId": "123456789012",
                "region": "us-east-1",
                "id": "96b9d1cb6248e05a0e419a79528761cc",
                "type": "Recon:EC2/Portscan",
                "severity": 5,
                "resource": {
                    "resourceType": "Instance",
                    "instanceDetails": {"instanceId": "i-0123456789abcdef0"}
                },
                "createdAt": "2024-01-01T12:03:00Z",
                "updatedAt": "2024-01-01T12:05:00Z"
            }
        }
    ]


if __name__ == "__main__":
    sys.exit(main())
