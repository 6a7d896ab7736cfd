"""Deploy the GuardDuty remediation stack.

This script builds the Lambda asset when asked, synthesizes the CDK app and
deploys it. It defaults to dry-run mode and requires explicit --apply flag
for actual deployment.
"""

import argparse
import os
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict

# Add the project root and src to path for config access
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from deployer_guard import require_deploy_allowed_or_exit
from remediation.config import load_config

from scripts.package_lambda import build_asset

CDK_APP = "python infra/app.py"


def run_command(cmd: list, dry_run: bool = True, check: bool = True) -> subprocess.CompletedProcess:
    """Run a command with optional dry-run mode.

    Args:
        cmd: Command to run as list of strings
        dry_run: If True, just print the command
        check: If True, raise exception on non-zero exit

    Returns:
        CompletedProcess result
    """
    if dry_run:
        print(f"DRY RUN: {' '.join(cmd)}")
        return subprocess.CompletedProcess(cmd, 0)

    print(f"Running: {' '.join(cmd)}")
    return subprocess.run(cmd, check=check, capture_output=True, text=True)


def cdk_synth(environment: str, dry_run: bool = True) -> None:
    """Synthesize CDK templates."""
    print(f"\n📋 Synthesizing CDK templates for {environment}...")
    os.environ["ENVIRONMENT"] = environment

    cmd = ["cdk", "synth", "--app", CDK_APP, "--strict"]
    result = run_command(cmd, dry_run=dry_run, check=False)
    if not dry_run and result.returncode != 0:
        print(f"❌ CDK synth failed: {result.stderr}")
        sys.exit(1)

    print("✅ CDK synthesis complete")


def cdk_deploy(environment: str, dry_run: bool = True) -> None:
    """Deploy the CDK stack."""
    print(f"\n🚀 Deploying remediation stack for {environment}...")
    os.environ["ENVIRONMENT"] = environment

    cmd = ["cdk", "deploy", "--app", CDK_APP, "--require-approval", "never", "--strict"]
    result = run_command(cmd, dry_run=dry_run, check=False)
    if not dry_run and result.returncode != 0:
        print(f"❌ CDK deploy failed: {result.stderr}")
        sys.exit(1)

    print("✅ Stack deployment complete")


def validate_prerequisites(config: Dict[str, Any]) -> None:
    """Validate that the AWS and CDK CLIs and credentials are usable.

    Raises:
        RuntimeError: If prerequisites are not met
    """
    print("🔍 Validating deployment prerequisites...")

    for tool in ("aws", "cdk"):
        try:
            result = subprocess.run([tool, "--version"], capture_output=True, text=True)
        except FileNotFoundError:
            raise RuntimeError(f"{tool} CLI not installed")
        if result.returncode != 0:
            raise RuntimeError(f"{tool} CLI not found")
        print(f"  ✅ {tool} CLI available")

    aws_profile = config.get("aws", {}).get("profile")
    if aws_profile:
        env = os.environ.copy()
        env["AWS_PROFILE"] = aws_profile
        result = subprocess.run(
            ["aws", "sts", "get-caller-identity"],
            env=env,
            capture_output=True,
            text=True
        )
        if result.returncode != 0:
            raise RuntimeError(f"AWS credentials not valid for profile: {aws_profile}")
        print(f"  ✅ AWS credentials valid for profile: {aws_profile}")

    print("✅ Prerequisites validation complete")


def summarize_resources(config) -> Dict[str, int]:
    """Synthesize the stack in-process and count resources by type."""
    from aws_cdk import App, assertions

    from infra.remediation_stack import FindingRemediationStack

    stack = FindingRemediationStack(App(), "ResourceSummaryStack", config=config)
    resources = assertions.Template.from_stack(stack).to_json().get("Resources", {})

    counts: Dict[str, int] = {}
    for res in resources.values():
        rtype = res.get("Type")
        counts[rtype] = counts.get(rtype, 0) + 1

    print("  ➤ Resource counts:")
    for rtype, count in sorted(counts.items()):
        print(f"    - {rtype}: {count}")
    return counts


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Deploy the GuardDuty remediation stack")
    parser.add_argument(
        "--environment",
        default=os.getenv("ENVIRONMENT", "dev"),
        help="Target environment (default: dev)"
    )
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Actually perform the deployment (default: dry-run)"
    )
    parser.add_argument(
        "--synth-only",
        action="store_true",
        help="Only synthesize templates, don't deploy"
    )
    parser.add_argument(
        "--package-lambda",
        action="store_true",
        help="Build the Lambda asset before deployment (dry-run by default)"
    )
    parser.add_argument(
        "--skip-summary",
        action="store_true",
        help="Skip the in-process resource summary"
    )
    args = parser.parse_args()

    dry_run = not args.apply
    if args.apply:
        require_deploy_allowed_or_exit(
            "Deployment requested. Confirm by setting DEPLOY_CONFIRM=I_ACCEPT_COSTS"
        )

    config = load_config(args.environment)

    try:
        print(f"🎯 Deployment target: {args.environment}")
        print(f"🔒 Mode: {'APPLY' if not dry_run else 'DRY-RUN'}")

        validate_prerequisites(config.model_dump())

        if args.package_lambda:
            build_asset(PROJECT_ROOT / config.lambda_.asset_path, dry_run=dry_run)

        if not args.skip_summary:
            try:
                summarize_resources(config)
            except Exception as e:
                # The asset directory only exists once packaging ran for real
                if not dry_run:
                    raise
                print(f"DRY RUN: Resource summary failed: {e}")

        cdk_synth(args.environment, dry_run=dry_run)
        if not args.synth_only:
            cdk_deploy(args.environment, dry_run=dry_run)

        if dry_run:
            print("\n💡 Use --apply flag to perform actual deployment")
        else:
            print("\n🎉 Deployment complete!")

    except Exception as e:
        print(f"❌ Deployment failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
