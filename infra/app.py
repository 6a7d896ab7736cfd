"""CDK App entry point for the finding remediation infrastructure."""

import os
import sys
from pathlib import Path

# Add the project root and src to path so infra and the remediation packages import
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))
sys.path.insert(0, str(ROOT / "src"))

from aws_cdk import App, Environment
from remediation.config import is_aws_deploy_allowed, load_config

from infra.remediation_stack import FindingRemediationStack


def main():
    """Main CDK app entry point."""
    app = App()

    env_name = os.getenv("ENVIRONMENT", "dev")
    config = load_config(env_name)

    # Safety check for AWS deployment
    if not is_aws_deploy_allowed():
        print("WARNING: ALLOW_AWS_DEPLOY not set. This is a dry-run synthesis only.")
        print("Set ALLOW_AWS_DEPLOY=1 to enable actual AWS deployments.")

    env = Environment(
        account=os.getenv("CDK_DEFAULT_ACCOUNT"),
        region=config.aws.region
    )

    FindingRemediationStack(
        app,
        f"GuardDutyRemediation-{config.environment}",
        config=config,
        env=env,
        description=f"GuardDuty findings with Security Hub remediation ({config.environment})"
    )

    app.synth()


if __name__ == "__main__":
    main()
