"""Tests for the assessment registry: ownership, reassessment counting, review flag."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from application import (
    AuthorizationError,
    CreateAssessmentUseCase,
    GetAssessmentUseCase,
    InvalidArgumentError,
    ListAssessmentsQuery,
    ListAssessmentsUseCase,
    NotFoundError,
    ReassessAssessmentCommand,
    ReassessAssessmentUseCase,
    UnauthenticatedError,
    UpdateAssessmentCommand,
    UpdateAssessmentUseCase,
)


def _reassess(uow, actor, assessment_id, updates=None, flag=None):
    return ReassessAssessmentUseCase().execute(
        ReassessAssessmentCommand(
            acting_user_id=actor,
            assessment_id=assessment_id,
            updates=updates if updates is not None else {},
            flag_for_review=flag,
        ),
        uow,
    )


class TestCreate:
    def test_assessor_owns_new_assessment(self, assessment, people) -> None:
        assert assessment.assessor_id == people.assessor
        assert assessment.reassessment_count == 0
        assert assessment.flagged_for_review is False
        assert assessment.severity == "high"

    def test_worker_cannot_create(self, uow, people, center, group, make_assessment_command) -> None:
        with pytest.raises(AuthorizationError):
            CreateAssessmentUseCase().execute(
                make_assessment_command(people.worker, center.id, group.id), uow
            )

    def test_requested_assessor_role_cannot_create(
        self, uow, people, center, group, make_assessment_command
    ) -> None:
        with pytest.raises(AuthorizationError, match="assessors"):
            CreateAssessmentUseCase().execute(
                make_assessment_command(people.requester, center.id, group.id), uow
            )
        assert uow.assessments.query() == []

    def test_requires_authentication(self, uow, center, group, make_assessment_command) -> None:
        with pytest.raises(UnauthenticatedError):
            CreateAssessmentUseCase().execute(make_assessment_command(None, center.id, group.id), uow)

    def test_missing_fields_reported_before_role(
        self, uow, people, center, group, make_assessment_command
    ) -> None:
        cmd = make_assessment_command(people.worker, center.id, group.id, place_name="", needs=None)
        with pytest.raises(InvalidArgumentError, match="place_name, needs"):
            CreateAssessmentUseCase().execute(cmd, uow)

    def test_negative_affected_people_rejected(
        self, uow, people, center, group, make_assessment_command
    ) -> None:
        cmd = make_assessment_command(people.assessor, center.id, group.id, affected_people=-1)
        with pytest.raises(InvalidArgumentError, match="affected_people"):
            CreateAssessmentUseCase().execute(cmd, uow)

    def test_zero_affected_people_allowed(
        self, uow, people, center, group, make_assessment_command
    ) -> None:
        cmd = make_assessment_command(people.assessor, center.id, group.id, affected_people=0)
        assert CreateAssessmentUseCase().execute(cmd, uow).affected_people == 0

    def test_unknown_severity_rejected(self, uow, people, center, group, make_assessment_command) -> None:
        cmd = make_assessment_command(people.assessor, center.id, group.id, severity="catastrophic")
        with pytest.raises(InvalidArgumentError, match="severity"):
            CreateAssessmentUseCase().execute(cmd, uow)


class TestUpdate:
    def test_owner_can_update_but_not_reassign(self, uow, people, assessment) -> None:
        updated = UpdateAssessmentUseCase().execute(
            UpdateAssessmentCommand(
                acting_user_id=people.assessor,
                assessment_id=assessment.id,
                updates={"needs": "Generator", "assessor_id": people.other_assessor},
            ),
            uow,
        )
        assert updated.needs == "Generator"
        assert updated.assessor_id == people.assessor

    def test_other_assessor_cannot_update(self, uow, people, assessment) -> None:
        with pytest.raises(AuthorizationError):
            UpdateAssessmentUseCase().execute(
                UpdateAssessmentCommand(
                    acting_user_id=people.other_assessor,
                    assessment_id=assessment.id,
                    updates={"needs": "Generator"},
                ),
                uow,
            )
        assert uow.assessments.get(assessment.id).needs == "Tarp, mucking crew"

    def test_admin_can_update(self, uow, people, assessment) -> None:
        updated = UpdateAssessmentUseCase().execute(
            UpdateAssessmentCommand(
                acting_user_id=people.admin,
                assessment_id=assessment.id,
                updates={"severity": "critical"},
            ),
            uow,
        )
        assert updated.severity == "critical"

    def test_update_cannot_touch_counter(self, uow, people, assessment) -> None:
        updated = UpdateAssessmentUseCase().execute(
            UpdateAssessmentCommand(
                acting_user_id=people.assessor,
                assessment_id=assessment.id,
                updates={"reassessment_count": 99, "damages": "Roof gone"},
            ),
            uow,
        )
        assert updated.reassessment_count == 0

    def test_missing_assessment_is_not_found_before_role_check(self, uow, people) -> None:
        with pytest.raises(NotFoundError):
            UpdateAssessmentUseCase().execute(
                UpdateAssessmentCommand(
                    acting_user_id=people.worker, assessment_id="nope", updates={"needs": "x"}
                ),
                uow,
            )

    def test_missing_updates_rejected(self, uow, people, assessment) -> None:
        with pytest.raises(InvalidArgumentError, match="updates"):
            UpdateAssessmentUseCase().execute(
                UpdateAssessmentCommand(
                    acting_user_id=people.assessor, assessment_id=assessment.id, updates=None
                ),
                uow,
            )


class TestReassess:
    def test_counter_tracks_successful_reassessments(self, uow, people, assessment) -> None:
        for _ in range(3):
            result = _reassess(uow, people.assessor, assessment.id, {"needs": "More tarps"})
        assert result.reassessment_count == 3

    def test_any_assessor_may_reassess(self, uow, people, assessment) -> None:
        result = _reassess(uow, people.other_assessor, assessment.id, {"damages": "Mold"})
        assert result.damages == "Mold"
        assert result.assessor_id == people.assessor

    def test_flag_is_cleared_when_omitted(self, uow, people, assessment) -> None:
        assert _reassess(uow, people.assessor, assessment.id, flag=True).flagged_for_review is True
        assert _reassess(uow, people.assessor, assessment.id).flagged_for_review is False

    def test_flag_cannot_be_set_through_updates(self, uow, people, assessment) -> None:
        result = _reassess(uow, people.assessor, assessment.id, {"flagged_for_review": True})
        assert result.flagged_for_review is False

    def test_worker_cannot_reassess(self, uow, people, assessment) -> None:
        with pytest.raises(AuthorizationError):
            _reassess(uow, people.worker, assessment.id)
        assert uow.assessments.get(assessment.id).reassessment_count == 0

    def test_failed_reassessment_does_not_count(self, uow, people, assessment) -> None:
        with pytest.raises(InvalidArgumentError):
            _reassess(uow, people.assessor, assessment.id, {"severity": "apocalyptic"})
        assert uow.assessments.get(assessment.id).reassessment_count == 0

    def test_concurrent_reassessments_lose_no_count(self, uow, people, assessment) -> None:
        actors = [people.assessor, people.other_assessor] * 10
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda a: _reassess(uow, a, assessment.id, {"needs": a}), actors))
        assert uow.assessments.get(assessment.id).reassessment_count == len(actors)


class TestQueries:
    def test_get_assessment(self, uow, people, assessment) -> None:
        assert GetAssessmentUseCase().execute(people.worker, assessment.id, uow).id == assessment.id

    def test_list_is_newest_first(self, uow, people, center, group, assessment, make_assessment_command) -> None:
        second = CreateAssessmentUseCase().execute(
            make_assessment_command(people.assessor, center.id, group.id, place_name="Second"), uow
        )
        third = CreateAssessmentUseCase().execute(
            make_assessment_command(people.other_assessor, center.id, group.id, place_name="Third"), uow
        )
        listed = ListAssessmentsUseCase().execute(ListAssessmentsQuery(acting_user_id=people.worker), uow)
        assert [a.id for a in listed] == [third.id, second.id, assessment.id]

    def test_list_respects_limit_and_filters(
        self, uow, people, center, group, assessment, make_assessment_command
    ) -> None:
        CreateAssessmentUseCase().execute(
            make_assessment_command(people.assessor, "other-center", group.id), uow
        )
        listed = ListAssessmentsUseCase().execute(
            ListAssessmentsQuery(acting_user_id=people.worker, center_id=center.id), uow
        )
        assert [a.id for a in listed] == [assessment.id]
        limited = ListAssessmentsUseCase().execute(
            ListAssessmentsQuery(acting_user_id=people.worker, limit=1), uow
        )
        assert len(limited) == 1

    def test_list_flagged_only(self, uow, people, assessment) -> None:
        _reassess(uow, people.assessor, assessment.id, flag=True)
        listed = ListAssessmentsUseCase().execute(
            ListAssessmentsQuery(acting_user_id=people.admin, flagged_for_review=True), uow
        )
        assert [a.id for a in listed] == [assessment.id]
