import pytest

from remediation.schemas import Finding, RemediationResult, WorkflowState
from remediation.workflow import InvalidTransitionError, RemediationWorkflow

from conftest import guardduty_event


def make_workflow():
    return RemediationWorkflow(Finding.from_event(guardduty_event("Stealth:IAMUser/PasswordPolicyChange")))


def result(success):
    return RemediationResult(action_id="GDRemeIAM", remediator="password-policy", success=success)


def test_starts_detected():
    workflow = make_workflow()
    assert workflow.state == WorkflowState.DETECTED
    assert len(workflow.history) == 1


def test_happy_path_records_history():
    workflow = make_workflow()
    workflow.transition(WorkflowState.NOTIFIED)
    assert workflow.awaiting_operator

    workflow.transition(WorkflowState.DISPATCHED, note="GDRemeIAM")
    workflow.record(result(True))

    assert workflow.state == WorkflowState.REMEDIATED
    assert [t.state for t in workflow.history] == [
        WorkflowState.DETECTED,
        WorkflowState.NOTIFIED,
        WorkflowState.DISPATCHED,
        WorkflowState.REMEDIATED,
    ]
    assert workflow.last_result.success


def test_failed_result_moves_to_failed_and_allows_retry():
    workflow = make_workflow()
    workflow.transition(WorkflowState.NOTIFIED)
    workflow.transition(WorkflowState.DISPATCHED)
    workflow.record(result(False))

    assert workflow.state == WorkflowState.FAILED
    assert workflow.can_transition(WorkflowState.DISPATCHED)


def test_cannot_dispatch_without_notification():
    workflow = make_workflow()
    with pytest.raises(InvalidTransitionError):
        workflow.transition(WorkflowState.DISPATCHED)


def test_cannot_remediate_without_dispatch():
    workflow = make_workflow()
    workflow.transition(WorkflowState.NOTIFIED)
    with pytest.raises(InvalidTransitionError):
        workflow.record(result(True))
