"""Tests for the identity & role directory: registration, approval, profiles."""

import pytest

from application import (
    ApproveUserRoleCommand,
    ApproveUserRoleUseCase,
    AuthorizationError,
    GetUserUseCase,
    InvalidArgumentError,
    ListUsersQuery,
    ListUsersUseCase,
    NotFoundError,
    RegisterUserCommand,
    RegisterUserUseCase,
    UnauthenticatedError,
    UpdateUserProfileCommand,
    UpdateUserProfileUseCase,
    authorize,
)
from model import UserRole


def _register(uow, user_id="newcomer-1", **overrides):
    values = dict(
        acting_user_id=user_id,
        email=f"{user_id}@relief.test",
        phone_number="555-0199",
        communication_preference="sms",
        requested_roles=["assessor", "worker"],
    )
    values.update(overrides)
    return RegisterUserUseCase().execute(RegisterUserCommand(**values), uow)


class TestRegistration:
    def test_register_creates_pending_profile_without_roles(self, uow) -> None:
        user = _register(uow)
        assert user.id == "newcomer-1"
        assert user.roles == []
        assert user.requested_roles == ["assessor", "worker"]
        assert user.role_approval_status == "pending"
        assert user.legal_release_signed is False

    def test_register_requires_authentication(self, uow) -> None:
        with pytest.raises(UnauthenticatedError):
            _register(uow, user_id=None)

    def test_register_lists_missing_fields(self, uow) -> None:
        with pytest.raises(InvalidArgumentError, match="phone_number"):
            _register(uow, phone_number="")

    def test_register_rejects_unknown_role(self, uow) -> None:
        with pytest.raises(InvalidArgumentError):
            _register(uow, requested_roles=["superuser"])

    def test_reregistering_overwrites_profile(self, uow, people) -> None:
        user = _register(uow, user_id=people.assessor, requested_roles=["worker"])
        assert user.roles == []
        assert uow.users.get(people.assessor).roles == []


class TestRoleApproval:
    def test_approval_grants_requested_roles_by_default(self, uow, people) -> None:
        _register(uow)
        user = ApproveUserRoleUseCase().execute(
            ApproveUserRoleCommand(acting_user_id=people.admin, user_id="newcomer-1", approve=True),
            uow,
        )
        assert user.roles == ["assessor", "worker"]
        assert user.role_approval_status == "approved"

    def test_approval_can_grant_explicit_roles(self, uow, people) -> None:
        _register(uow)
        user = ApproveUserRoleUseCase().execute(
            ApproveUserRoleCommand(
                acting_user_id=people.admin, user_id="newcomer-1", approve=True, roles=["worker"]
            ),
            uow,
        )
        assert user.roles == ["worker"]

    def test_explicit_empty_role_list_grants_nothing(self, uow, people) -> None:
        user = ApproveUserRoleUseCase().execute(
            ApproveUserRoleCommand(
                acting_user_id=people.admin, user_id=people.pending, approve=True, roles=[]
            ),
            uow,
        )
        assert user.roles == []
        assert user.role_approval_status == "approved"
        assert uow.users.get(people.pending).roles == []

    def test_rejection_keeps_existing_roles(self, uow, people) -> None:
        user = ApproveUserRoleUseCase().execute(
            ApproveUserRoleCommand(acting_user_id=people.admin, user_id=people.assessor, approve=False),
            uow,
        )
        assert user.role_approval_status == "rejected"
        assert user.roles == ["assessor"]

    def test_requested_role_does_not_authorize(self, uow, people) -> None:
        with pytest.raises(AuthorizationError):
            ApproveUserRoleUseCase().execute(
                ApproveUserRoleCommand(acting_user_id=people.pending, user_id=people.worker, approve=True),
                uow,
            )
        assert uow.users.get(people.worker).roles == [UserRole.WORKER]

    def test_non_admin_cannot_approve(self, uow, people) -> None:
        with pytest.raises(AuthorizationError):
            ApproveUserRoleUseCase().execute(
                ApproveUserRoleCommand(acting_user_id=people.lead, user_id=people.worker, approve=True),
                uow,
            )

    def test_approve_flag_is_required(self, uow, people) -> None:
        with pytest.raises(InvalidArgumentError, match="approve"):
            ApproveUserRoleUseCase().execute(
                ApproveUserRoleCommand(acting_user_id=people.admin, user_id=people.worker, approve=None),
                uow,
            )

    def test_unknown_user_is_not_found(self, uow, people) -> None:
        with pytest.raises(NotFoundError):
            ApproveUserRoleUseCase().execute(
                ApproveUserRoleCommand(acting_user_id=people.admin, user_id="ghost", approve=True),
                uow,
            )


class TestProfileUpdates:
    def test_self_update_drops_role_fields(self, uow, people) -> None:
        user = UpdateUserProfileUseCase().execute(
            UpdateUserProfileCommand(
                acting_user_id=people.worker,
                user_id=people.worker,
                updates={
                    "phone_number": "555-0999",
                    "roles": ["administrator"],
                    "role_approval_status": "approved",
                    "legal_release_signed": True,
                },
            ),
            uow,
        )
        assert user.phone_number == "555-0999"
        assert user.roles == ["worker"]
        assert user.legal_release_signed is False

    def test_cannot_update_someone_else(self, uow, people) -> None:
        with pytest.raises(AuthorizationError):
            UpdateUserProfileUseCase().execute(
                UpdateUserProfileCommand(
                    acting_user_id=people.worker, user_id=people.lead, updates={"phone_number": "1"}
                ),
                uow,
            )

    def test_admin_can_update_anyone(self, uow, people) -> None:
        user = UpdateUserProfileUseCase().execute(
            UpdateUserProfileCommand(
                acting_user_id=people.admin,
                user_id=people.lead,
                updates={"communication_preference": "email"},
            ),
            uow,
        )
        assert user.communication_preference == "email"

    def test_unknown_field_is_rejected(self, uow, people) -> None:
        with pytest.raises(InvalidArgumentError, match="nickname"):
            UpdateUserProfileUseCase().execute(
                UpdateUserProfileCommand(
                    acting_user_id=people.worker, user_id=people.worker, updates={"nickname": "Bo"}
                ),
                uow,
            )

    def test_updated_at_moves_forward(self, uow, people) -> None:
        before = uow.users.get(people.worker).updated_at
        UpdateUserProfileUseCase().execute(
            UpdateUserProfileCommand(
                acting_user_id=people.worker, user_id=people.worker, updates={"phone_number": "2"}
            ),
            uow,
        )
        assert uow.users.get(people.worker).updated_at >= before


class TestLookup:
    def test_get_user(self, uow, people) -> None:
        assert GetUserUseCase().execute(people.lead, people.lead, uow).roles == ["workGroupLead"]

    def test_get_requires_authentication(self, uow, people) -> None:
        with pytest.raises(UnauthenticatedError):
            GetUserUseCase().execute(None, people.lead, uow)

    def test_list_users_by_role(self, uow, people) -> None:
        users = ListUsersUseCase().execute(ListUsersQuery(acting_user_id=people.admin, role="assessor"), uow)
        assert {u.id for u in users} == {people.assessor, people.other_assessor}

    def test_list_users_by_group(self, uow, people, group) -> None:
        users = ListUsersUseCase().execute(ListUsersQuery(acting_user_id=people.admin, group_id=group.id), uow)
        assert {u.id for u in users} == {people.lead, people.worker, people.assessor}


class TestAuthorize:
    def test_approved_role_passes(self, uow, people) -> None:
        assert authorize(uow, people.admin, [UserRole.ADMINISTRATOR])

    def test_requested_role_fails(self, uow, people) -> None:
        assert not authorize(uow, people.pending, [UserRole.ADMINISTRATOR])

    def test_unknown_caller_fails(self, uow) -> None:
        assert not authorize(uow, "ghost", [UserRole.WORKER])
