import pytest
from pydantic import ValidationError

from remediation.schemas import (
    ActionTarget,
    CustomActionEvent,
    Finding,
    FindingType,
)

from conftest import custom_action_event, guardduty_event


def test_finding_from_event_reads_detail():
    finding = Finding.from_event(guardduty_event(FindingType.PORT_SCAN.value, instance_id="i-0abc"))

    assert finding.id == "finding-1"
    assert finding.type == "Recon:EC2/Portscan"
    assert finding.source == "aws.guardduty"
    assert finding.account == "123456789012"
    assert finding.severity == 5.0
    assert finding.instance_id == "i-0abc"
    assert finding.timestamp.year == 2024
    assert finding.timestamp.tzinfo is not None


def test_finding_from_event_without_type_raises():
    event = guardduty_event("x")
    event["detail"].pop("type")
    with pytest.raises(ValueError):
        Finding.from_event(event)


def test_finding_to_asff_names_instance():
    finding = Finding.from_event(guardduty_event(FindingType.PORT_SCAN.value, instance_id="i-0abc"))
    asff = finding.to_asff()

    assert asff["Types"] == ["Recon:EC2/Portscan"]
    assert asff["Resources"] == [
        {"Type": "AwsEc2Instance", "Id": "arn:aws:ec2:us-east-1:123456789012:instance/i-0abc"}
    ]


def test_finding_to_asff_falls_back_to_account():
    finding = Finding.from_event(guardduty_event(FindingType.PASSWORD_POLICY_CHANGE.value))
    assert finding.instance_arn() is None
    assert finding.to_asff()["Resources"][0]["Type"] == "AwsAccount"


def test_custom_action_event_parses_alias_and_instances():
    event = CustomActionEvent.model_validate(custom_action_event("GDRemeEC2", ["i-1", "i-2", "i-1"]))

    assert event.detail_type == "Security Hub Findings - Custom Action"
    assert event.is_custom_action()
    assert event.instance_ids() == ["i-1", "i-2"]
    assert event.targets("arn:aws:securityhub:us-east-1:123456789012:action/custom/GDRemeEC2")
    assert not event.targets("arn:aws:securityhub:us-east-1:123456789012:action/custom/GDRemeIAM")


def test_custom_action_event_requires_detail_type():
    raw = custom_action_event("GDRemeEC2")
    raw.pop("detail-type")
    with pytest.raises(ValidationError):
        CustomActionEvent.model_validate(raw)


def test_guardduty_event_is_not_custom_action():
    raw = guardduty_event(FindingType.PORT_SCAN.value)
    assert not CustomActionEvent.model_validate(raw).is_custom_action()


@pytest.mark.parametrize("target_id", ["", "A" * 21])
def test_action_target_id_length(target_id):
    with pytest.raises(ValidationError):
        ActionTarget(id=target_id, name="name", description="d")
