import boto3
import pytest
from botocore.exceptions import EndpointConnectionError
from botocore.stub import Stubber

from remediation.pipeline import UnknownActionError, build_pipeline
from remediation.remediators import HARDENED_PASSWORD_POLICY
from remediation.schemas import WorkflowState
from remediation.workflow import InvalidTransitionError

from conftest import guardduty_event

IAM_TYPE = "Stealth:IAMUser/PasswordPolicyChange"
PORTSCAN_TYPE = "Recon:EC2/Portscan"


class DummyNotifier:
    def __init__(self, result="msg-1"):
        self.published = []
        self.result = result

    def __call__(self, event):
        self.published.append(event)
        return self.result


class DummyEC2:
    def __init__(self, state="running"):
        self.state = state
        self.stopped = []
        self.fail_with = None

    def describe_instances(self, InstanceIds):
        return {"Reservations": [{"Instances": [
            {"InstanceId": i, "State": {"Name": self.state}} for i in InstanceIds
        ]}]}

    def stop_instances(self, InstanceIds):
        if self.fail_with is not None:
            raise self.fail_with
        self.stopped.extend(InstanceIds)
        return {"StoppingInstances": [{"InstanceId": i} for i in InstanceIds]}


def broken_remediate(context):
    raise RuntimeError("unexpected")


class TestRemediationPipeline:
    def setup_method(self):
        self.iam = boto3.client('iam', region_name='us-east-1')
        self.stub = Stubber(self.iam)
        self.ec2 = DummyEC2()
        self.notifier = DummyNotifier()
        self.pipeline = build_pipeline(
            region="us-east-1",
            account_id="123456789012",
            notifier=self.notifier,
            ec2_client=self.ec2,
            iam_client=self.iam,
        )

    def teardown_method(self):
        self.stub.deactivate()

    def test_password_policy_change_is_notified_then_hardened(self):
        self.stub.add_response('get_account_password_policy', {'PasswordPolicy': {'MinimumPasswordLength': 6}})
        self.stub.add_response('update_account_password_policy', {}, HARDENED_PASSWORD_POLICY.model_dump())
        self.stub.activate()

        workflow = self.pipeline.ingest(guardduty_event(IAM_TYPE))
        assert workflow.state == WorkflowState.NOTIFIED
        assert workflow.available_actions == ["GDRemeIAM"]
        assert len(self.notifier.published) == 1

        result = self.pipeline.invoke_action(workflow, "GDRemeIAM")

        assert result.success and result.changed
        assert workflow.state == WorkflowState.REMEDIATED
        self.stub.assert_no_pending_responses()

    def test_ingest_never_remediates(self):
        self.stub.activate()

        workflow = self.pipeline.ingest(guardduty_event(IAM_TYPE))

        assert workflow.awaiting_operator
        assert workflow.results == []
        self.stub.assert_no_pending_responses()

    def test_port_scan_is_notify_only(self):
        workflow = self.pipeline.ingest(guardduty_event(PORTSCAN_TYPE, instance_id="i-0abc"))

        assert workflow.state == WorkflowState.NOTIFIED
        assert workflow.available_actions == []
        assert self.ec2.stopped == []

    def test_operator_can_quarantine_scanned_instance(self):
        workflow = self.pipeline.ingest(guardduty_event(PORTSCAN_TYPE, instance_id="i-0abc"))

        result = self.pipeline.invoke_action(workflow, "GDRemeEC2")

        assert result.success
        assert self.ec2.stopped == ["i-0abc"]
        assert workflow.state == WorkflowState.REMEDIATED

    def test_reinvoking_action_converges(self):
        workflow = self.pipeline.ingest(guardduty_event(PORTSCAN_TYPE, instance_id="i-0abc"))
        self.pipeline.invoke_action(workflow, "GDRemeEC2")
        self.ec2.state = "stopping"

        second = self.pipeline.invoke_action(workflow, "GDRemeEC2")

        assert second.success and not second.changed
        assert self.ec2.stopped == ["i-0abc"]
        assert len(workflow.results) == 2

    def test_unrouted_finding_stays_detected(self):
        workflow = self.pipeline.ingest(guardduty_event("UnauthorizedAccess:EC2/SSHBruteForce"))

        assert workflow.state == WorkflowState.DETECTED
        assert self.notifier.published == []
        with pytest.raises(InvalidTransitionError):
            self.pipeline.invoke_action(workflow, "GDRemeEC2")

    def test_unknown_action_rejected(self):
        workflow = self.pipeline.ingest(guardduty_event(IAM_TYPE))
        with pytest.raises(UnknownActionError):
            self.pipeline.invoke_action(workflow, "NotAnAction")

    def test_failed_notification_does_not_block_remediation(self):
        self.pipeline.router.sinks["notification"] = DummyNotifier(result=False)

        workflow = self.pipeline.ingest(guardduty_event(PORTSCAN_TYPE, instance_id="i-0abc"))

        assert workflow.state == WorkflowState.NOTIFIED
        assert workflow.notification_delivered is False
        assert "notification not delivered" in workflow.history[-1].note

        result = self.pipeline.invoke_action(workflow, "GDRemeEC2")

        assert result.success
        assert self.ec2.stopped == ["i-0abc"]
        assert workflow.state == WorkflowState.REMEDIATED

    def test_delivered_notification_is_recorded(self):
        workflow = self.pipeline.ingest(guardduty_event(IAM_TYPE))
        assert workflow.notification_delivered is True

    def test_network_error_fails_the_dispatch_and_allows_retry(self):
        self.ec2.fail_with = EndpointConnectionError(endpoint_url="https://ec2.us-east-1.amazonaws.com")
        workflow = self.pipeline.ingest(guardduty_event(PORTSCAN_TYPE, instance_id="i-0abc"))

        first = self.pipeline.invoke_action(workflow, "GDRemeEC2")

        assert not first.success
        assert workflow.state == WorkflowState.FAILED

        self.ec2.fail_with = None
        second = self.pipeline.invoke_action(workflow, "GDRemeEC2")

        assert second.success
        assert self.ec2.stopped == ["i-0abc"]
        assert workflow.state == WorkflowState.REMEDIATED

    def test_unexpected_remediator_error_closes_the_dispatch(self):
        self.pipeline.dispatcher.bindings["GDRemeEC2"].remediate = broken_remediate
        workflow = self.pipeline.ingest(guardduty_event(PORTSCAN_TYPE, instance_id="i-0abc"))

        result = self.pipeline.invoke_action(workflow, "GDRemeEC2")

        assert not result.success
        assert result.remediator == "quarantine"
        assert result.error == "unexpected"
        assert workflow.state == WorkflowState.FAILED
