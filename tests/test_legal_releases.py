"""Tests for volunteer waivers and property-access releases."""

import pytest

from application import (
    AuthorizationError,
    CreateLegalReleaseCommand,
    CreateLegalReleaseUseCase,
    GetLegalReleaseUseCase,
    InvalidArgumentError,
    SignLegalReleaseCommand,
    SignLegalReleaseUseCase,
)


def _create(uow, actor, user_id, release_type="volunteer", **extra):
    return CreateLegalReleaseUseCase().execute(
        CreateLegalReleaseCommand(acting_user_id=actor, user_id=user_id, release_type=release_type, **extra),
        uow,
    )


class TestCreate:
    def test_volunteer_waiver_is_tracked_on_profile(self, uow, people) -> None:
        release = _create(uow, people.worker, people.worker, document_url="https://docs/waiver.pdf")
        profile = uow.users.get(people.worker)
        assert profile.legal_release_id == release.id
        assert profile.legal_release_signed is False

    def test_property_access_release_leaves_profile_alone(self, uow, people, assessment) -> None:
        _create(uow, people.assessor, people.assessor, "propertyAccess", assessment_id=assessment.id)
        assert uow.users.get(people.assessor).legal_release_id is None

    def test_cannot_create_for_someone_else(self, uow, people) -> None:
        with pytest.raises(AuthorizationError):
            _create(uow, people.lead, people.worker)

    def test_admin_can_create_for_anyone(self, uow, people) -> None:
        assert _create(uow, people.admin, people.worker).user_id == people.worker

    def test_unknown_release_type(self, uow, people) -> None:
        with pytest.raises(InvalidArgumentError, match="release_type"):
            _create(uow, people.worker, people.worker, "liability")


class TestSign:
    def test_signing_marks_release_and_profile(self, uow, people) -> None:
        release = _create(uow, people.worker, people.worker)
        signed = SignLegalReleaseUseCase().execute(
            SignLegalReleaseCommand(
                acting_user_id=people.worker, release_id=release.id, signature_image_url="sig.png"
            ),
            uow,
        )
        assert signed.signed_digitally is True
        assert signed.signed_at is not None
        assert signed.signature_image_url == "sig.png"
        assert uow.users.get(people.worker).legal_release_signed is True

    def test_cannot_sign_someone_elses_release(self, uow, people) -> None:
        release = _create(uow, people.admin, people.worker)
        with pytest.raises(AuthorizationError):
            SignLegalReleaseUseCase().execute(
                SignLegalReleaseCommand(acting_user_id=people.admin, release_id=release.id), uow
            )


class TestView:
    def test_owner_and_admin_can_view(self, uow, people) -> None:
        release = _create(uow, people.worker, people.worker)
        assert GetLegalReleaseUseCase().execute(people.worker, release.id, uow).id == release.id
        assert GetLegalReleaseUseCase().execute(people.admin, release.id, uow).id == release.id

    def test_others_cannot_view(self, uow, people) -> None:
        release = _create(uow, people.worker, people.worker)
        with pytest.raises(AuthorizationError):
            GetLegalReleaseUseCase().execute(people.lead, release.id, uow)
