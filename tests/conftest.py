import sys
from pathlib import Path

import pytest

# Add the project root to sys.path so tests can import infra and scripts directly.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
# Also add src/ so tests import `remediation`, `dispatch` and `ops` as top-level packages.
SRC = str(ROOT / "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

ACCOUNT_ID = "123456789012"
REGION = "us-east-1"


def guardduty_event(finding_type: str, instance_id: str | None = None, source: str = "aws.guardduty") -> dict:
    """A GuardDuty finding as EventBridge delivers it."""
    resource = {"resourceType": "AccessKey"}
    if instance_id:
        resource = {"resourceType": "Instance", "instanceDetails": {"instanceId": instance_id}}
    return {
        "version": "0",
        "id": "evt-1",
        "detail-type": "GuardDuty Finding",
        "source": source,
        "account": ACCOUNT_ID,
        "time": "2024-01-01T12:00:00Z",
        "region": REGION,
        "resources": [],
        "detail": {
            "id": "finding-1",
            "type": finding_type,
            "severity": 5,
            "resource": resource,
        },
    }


def custom_action_event(action_id: str, instance_ids=(), account_id: str = ACCOUNT_ID) -> dict:
    """A Security Hub custom action event for ``action_id``."""
    resources = [
        {"Type": "AwsEc2Instance", "Id": f"arn:aws:ec2:{REGION}:{account_id}:instance/{i}"}
        for i in instance_ids
    ]
    return {
        "version": "0",
        "id": "evt-2",
        "detail-type": "Security Hub Findings - Custom Action",
        "source": "aws.securityhub",
        "account": account_id,
        "time": "2024-01-01T12:10:00Z",
        "region": REGION,
        "resources": [f"arn:aws:securityhub:{REGION}:{account_id}:action/custom/{action_id}"],
        "detail": {
            "actionName": action_id,
            "actionDescription": "test",
            "findings": [{"Id": "finding-1", "Types": ["Recon:EC2/Portscan"], "Resources": resources}],
        },
    }


@pytest.fixture
def lambda_context():
    class Context:
        invoked_function_arn = f"arn:aws:lambda:{REGION}:{ACCOUNT_ID}:function:test"
    return Context()
