import json

import boto3
from botocore.exceptions import EndpointConnectionError
from botocore.stub import ANY, Stubber

from remediation.notifier import MAX_SUBJECT_LENGTH, SnsNotifier, build_subject

from conftest import guardduty_event

TOPIC_ARN = "arn:aws:sns:us-east-1:123456789012:findings"


def test_subject_names_finding_type():
    assert build_subject(guardduty_event("Recon:EC2/Portscan")) == "GuardDuty finding: Recon:EC2/Portscan"


def test_subject_is_truncated():
    assert len(build_subject(guardduty_event("X" * 200))) == MAX_SUBJECT_LENGTH


def test_publish_sends_raw_event():
    sns = boto3.client('sns', region_name='us-east-1')
    stub = Stubber(sns)
    event = guardduty_event("Recon:EC2/Portscan")
    stub.add_response(
        'publish',
        {'MessageId': 'msg-1'},
        {'TopicArn': TOPIC_ARN, 'Subject': ANY, 'Message': json.dumps(event)},
    )
    stub.activate()

    assert SnsNotifier(sns, TOPIC_ARN)(event) == 'msg-1'
    stub.assert_no_pending_responses()
    stub.deactivate()


def test_publish_failure_returns_false():
    sns = boto3.client('sns', region_name='us-east-1')
    stub = Stubber(sns)
    stub.add_client_error('publish', service_error_code='AuthorizationError')
    stub.activate()

    assert SnsNotifier(sns, TOPIC_ARN).publish(guardduty_event("Recon:EC2/Portscan")) is False
    stub.deactivate()


def test_publish_connection_error_returns_false():
    class UnreachableSNS:
        def publish(self, **kwargs):
            raise EndpointConnectionError(endpoint_url='https://sns.us-east-1.amazonaws.com')

    assert SnsNotifier(UnreachableSNS(), TOPIC_ARN)(guardduty_event("Recon:EC2/Portscan")) is False
