import boto3
from botocore.exceptions import EndpointConnectionError
from botocore.stub import Stubber

from remediation.catalog import ACTION_TARGETS, QUARANTINE_ACTION_ID
from remediation.registry import ActionTargetRegistry, action_target_arn

ARN = "arn:aws:securityhub:us-east-1:123456789012:action/custom/GDRemeEC2"


def make_registry():
    client = boto3.client('securityhub', region_name='us-east-1')
    return ActionTargetRegistry(client, 'us-east-1', '123456789012'), Stubber(client)


def test_action_target_arn_is_derived_from_id():
    assert action_target_arn('GDRemeEC2', 'us-east-1', '123456789012') == ARN


def test_register_creates_target():
    registry, stub = make_registry()
    target = ACTION_TARGETS[0]
    stub.add_response(
        'create_action_target',
        {'ActionTargetArn': ARN},
        {'Name': target.name, 'Description': target.description, 'Id': target.id},
    )
    stub.activate()

    result = registry.register(target)

    assert result.success
    assert result.arn == ARN
    stub.assert_no_pending_responses()
    stub.deactivate()


def test_register_conflict_is_soft_success():
    registry, stub = make_registry()
    stub.add_client_error('create_action_target', service_error_code='ResourceConflictException')
    stub.activate()

    result = registry.register(ACTION_TARGETS[0])

    assert result.success
    assert result.arn == ARN
    assert 'ResourceConflictException' in result.error
    stub.deactivate()


def test_register_other_error_fails():
    registry, stub = make_registry()
    stub.add_client_error('create_action_target', service_error_code='InvalidAccessException')
    stub.activate()

    result = registry.register(ACTION_TARGETS[0])

    assert not result.success
    assert result.arn is None
    stub.deactivate()


def test_unregister_uses_derived_arn():
    registry, stub = make_registry()
    stub.add_response('delete_action_target', {'ActionTargetArn': ARN}, {'ActionTargetArn': ARN})
    stub.activate()

    result = registry.unregister(QUARANTINE_ACTION_ID)

    assert result.success
    stub.assert_no_pending_responses()
    stub.deactivate()


def test_unregister_missing_target_is_soft_success():
    registry, stub = make_registry()
    stub.add_client_error('delete_action_target', service_error_code='ResourceNotFoundException')
    stub.activate()

    assert registry.unregister(QUARANTINE_ACTION_ID).success
    stub.deactivate()


def test_unregister_access_denied_fails():
    registry, stub = make_registry()
    stub.add_client_error('delete_action_target', service_error_code='InvalidAccessException')
    stub.activate()

    assert not registry.unregister(QUARANTINE_ACTION_ID).success
    stub.deactivate()


def test_lookup_reports_registered_target():
    registry, stub = make_registry()
    stub.add_response(
        'describe_action_targets',
        {'ActionTargets': [{'ActionTargetArn': ARN, 'Name': 'GDRemeEC2', 'Description': 'd'}]},
        {'ActionTargetArns': [ARN]},
    )
    stub.add_response('describe_action_targets', {'ActionTargets': []}, {'ActionTargetArns': [ARN]})
    stub.activate()

    assert registry.lookup(QUARANTINE_ACTION_ID) == ARN
    assert registry.lookup(QUARANTINE_ACTION_ID) is None
    stub.deactivate()


def test_recreate_after_delete_of_missing_target():
    registry, stub = make_registry()
    stub.add_client_error('delete_action_target', service_error_code='ResourceNotFoundException')
    stub.add_response('create_action_target', {'ActionTargetArn': ARN})
    stub.activate()

    assert registry.unregister(QUARANTINE_ACTION_ID).success
    result = registry.register(ACTION_TARGETS[0])

    assert result.success
    assert result.arn == registry.arn_for(QUARANTINE_ACTION_ID)
    stub.deactivate()


class UnreachableSecurityHub:
    def create_action_target(self, **kwargs):
        raise EndpointConnectionError(endpoint_url='https://securityhub.us-east-1.amazonaws.com')

    def delete_action_target(self, **kwargs):
        raise EndpointConnectionError(endpoint_url='https://securityhub.us-east-1.amazonaws.com')


def test_connection_errors_are_soft_failures():
    registry = ActionTargetRegistry(UnreachableSecurityHub(), 'us-east-1', '123456789012')

    assert not registry.register(ACTION_TARGETS[0]).success
    assert not registry.unregister(QUARANTINE_ACTION_ID).success
