"""Tests for the escalation desk and its push into the workgroup coordinator."""

import pytest

from application import (
    EVENT_HANDLERS,
    AuthorizationError,
    CreateEscalationCommand,
    CreateEscalationUseCase,
    GetEscalationUseCase,
    InvalidArgumentError,
    ListEscalationsQuery,
    ListEscalationsUseCase,
    NotFoundError,
    ResolveEscalationCommand,
    ResolveEscalationUseCase,
    UpdateEscalationStatusCommand,
    UpdateEscalationStatusUseCase,
    UpdateWorkgroupStatusCommand,
    UpdateWorkgroupStatusUseCase,
)
from model import EscalationCreated


def _escalate(uow, actor, workgroup, **overrides):
    values = dict(
        acting_user_id=actor,
        workgroup_id=workgroup.id,
        center_id=workgroup.center_id,
        group_id=workgroup.group_id,
        type="assessor",
        reason="Structural damage beyond crew skill",
        assessment_id=workgroup.assessment_id,
    )
    values.update(overrides)
    return CreateEscalationUseCase().execute(CreateEscalationCommand(**values), uow)


def _list(uow, actor, **filters):
    return ListEscalationsUseCase().execute(ListEscalationsQuery(acting_user_id=actor, **filters), uow)


class TestCreate:
    def test_escalation_forces_workgroup_into_needs_escalation(self, uow, people, workgroup) -> None:
        escalation = _escalate(uow, people.lead, workgroup)
        assert escalation.status == "pending"
        assert escalation.created_by == people.lead
        assert uow.workgroups.get(workgroup.id).task_status == "needsEscalation"

    def test_completed_workgroup_is_still_escalated(self, uow, people, workgroup) -> None:
        UpdateWorkgroupStatusUseCase().execute(
            UpdateWorkgroupStatusCommand(acting_user_id=people.lead, workgroup_id=workgroup.id, status="completed"),
            uow,
        )
        _escalate(uow, people.lead, workgroup)
        assert uow.workgroups.get(workgroup.id).task_status == "needsEscalation"

    def test_assessor_may_escalate(self, uow, people, workgroup) -> None:
        assert _escalate(uow, people.assessor, workgroup).created_by == people.assessor

    def test_worker_cannot_escalate(self, uow, people, workgroup) -> None:
        with pytest.raises(AuthorizationError):
            _escalate(uow, people.worker, workgroup)
        assert _list(uow, people.admin) == []
        assert uow.workgroups.get(workgroup.id).task_status == "notStarted"

    def test_requested_roles_cannot_escalate(self, uow, people, workgroup) -> None:
        with pytest.raises(AuthorizationError):
            _escalate(uow, people.requester, workgroup)
        assert _list(uow, people.admin) == []
        assert uow.workgroups.get(workgroup.id).task_status == "notStarted"

    def test_missing_reason(self, uow, people, workgroup) -> None:
        with pytest.raises(InvalidArgumentError, match="reason"):
            _escalate(uow, people.lead, workgroup, reason="")

    def test_unknown_type(self, uow, people, workgroup) -> None:
        with pytest.raises(InvalidArgumentError, match="type"):
            _escalate(uow, people.lead, workgroup, type="urgent")

    def test_missing_workgroup_surfaces_error_but_keeps_escalation(self, uow, people, workgroup) -> None:
        with pytest.raises(NotFoundError, match="Workgroup"):
            _escalate(uow, people.lead, workgroup, workgroup_id="vanished")
        stored = _list(uow, people.admin)
        assert len(stored) == 1
        assert stored[0].workgroup_id == "vanished"

    def test_event_handler_is_registered(self) -> None:
        assert EVENT_HANDLERS[EscalationCreated]


class TestWorkflow:
    def test_lead_updates_status_and_assignee(self, uow, people, workgroup) -> None:
        escalation = _escalate(uow, people.assessor, workgroup)
        result = UpdateEscalationStatusUseCase().execute(
            UpdateEscalationStatusCommand(
                acting_user_id=people.lead,
                escalation_id=escalation.id,
                status="inProgress",
                assigned_to=people.admin,
            ),
            uow,
        )
        assert result.status == "inProgress"
        assert result.assigned_to == people.admin

    def test_assessor_cannot_change_status(self, uow, people, workgroup) -> None:
        escalation = _escalate(uow, people.assessor, workgroup)
        with pytest.raises(AuthorizationError):
            UpdateEscalationStatusUseCase().execute(
                UpdateEscalationStatusCommand(
                    acting_user_id=people.assessor, escalation_id=escalation.id, status="rejected"
                ),
                uow,
            )

    def test_resolution_leaves_workgroup_escalated(self, uow, people, workgroup) -> None:
        escalation = _escalate(uow, people.lead, workgroup)
        result = ResolveEscalationUseCase().execute(
            ResolveEscalationCommand(
                acting_user_id=people.admin,
                escalation_id=escalation.id,
                resolution="Contractor engaged",
            ),
            uow,
        )
        assert result.status == "resolved"
        assert result.resolution == "Contractor engaged"
        assert result.resolved_at is not None
        assert uow.workgroups.get(workgroup.id).task_status == "needsEscalation"

    def test_resolve_unknown_escalation(self, uow, people) -> None:
        with pytest.raises(NotFoundError):
            ResolveEscalationUseCase().execute(
                ResolveEscalationCommand(acting_user_id=people.admin, escalation_id="nope", resolution="x"),
                uow,
            )

    def test_resolution_text_required(self, uow, people, workgroup) -> None:
        escalation = _escalate(uow, people.lead, workgroup)
        with pytest.raises(InvalidArgumentError, match="resolution"):
            ResolveEscalationUseCase().execute(
                ResolveEscalationCommand(acting_user_id=people.admin, escalation_id=escalation.id, resolution=""),
                uow,
            )


class TestQueries:
    def test_get_escalation(self, uow, people, workgroup) -> None:
        escalation = _escalate(uow, people.lead, workgroup)
        assert GetEscalationUseCase().execute(people.worker, escalation.id, uow).reason == escalation.reason

    def test_list_filters_by_status(self, uow, people, workgroup) -> None:
        first = _escalate(uow, people.lead, workgroup)
        second = _escalate(uow, people.lead, workgroup, reason="Asbestos suspected")
        ResolveEscalationUseCase().execute(
            ResolveEscalationCommand(acting_user_id=people.lead, escalation_id=first.id, resolution="Done"),
            uow,
        )
        assert [e.id for e in _list(uow, people.admin, status="resolved")] == [first.id]
        assert [e.id for e in _list(uow, people.admin, status="pending")] == [second.id]
        assert [e.id for e in _list(uow, people.admin, workgroup_id=workgroup.id)] == [second.id, first.id]
