# tests/conftest.py: shared fixtures, a fresh in-memory store per test with seeded people
import os

os.environ["RELIEF_MCP_ENABLED"] = "false"

from types import SimpleNamespace

import pytest

from application import (
    CreateAssessmentCommand,
    CreateAssessmentUseCase,
    CreateCenterCommand,
    CreateCenterUseCase,
    CreateGroupCommand,
    CreateGroupUseCase,
    CreateWorkgroupCommand,
    CreateWorkgroupUseCase,
)
from infrastructure import InMemoryDatabase, InMemoryUnitOfWork
from model import RoleApprovalStatus, User, UserRole


PEOPLE = SimpleNamespace(
    admin="admin-1",
    assessor="assessor-a",
    other_assessor="assessor-b",
    lead="lead-1",
    worker="worker-1",
    outsider="outsider-1",
    pending="pending-1",
    requester="requester-1",
)


def _user(user_id, *roles, requested=None, status=RoleApprovalStatus.APPROVED):
    return User(
        id=user_id,
        email=f"{user_id}@relief.test",
        phone_number="555-0100",
        roles=list(roles),
        requested_roles=list(requested if requested is not None else roles),
        role_approval_status=status,
    )


def seed_people(uow):
    uow.users.add(_user(PEOPLE.admin, UserRole.ADMINISTRATOR))
    uow.users.add(_user(PEOPLE.assessor, UserRole.ASSESSOR))
    uow.users.add(_user(PEOPLE.other_assessor, UserRole.ASSESSOR))
    uow.users.add(_user(PEOPLE.lead, UserRole.WORK_GROUP_LEAD))
    uow.users.add(_user(PEOPLE.worker, UserRole.WORKER))
    uow.users.add(_user(PEOPLE.outsider, UserRole.WORKER))
    # Asked for administrator but was never approved
    uow.users.add(_user(
        PEOPLE.pending,
        requested=[UserRole.ADMINISTRATOR],
        status=RoleApprovalStatus.PENDING,
    ))
    # Asked for assessor and lead roles, still awaiting approval
    uow.users.add(_user(
        PEOPLE.requester,
        requested=[UserRole.ASSESSOR, UserRole.WORK_GROUP_LEAD],
        status=RoleApprovalStatus.PENDING,
    ))


@pytest.fixture
def people():
    return PEOPLE


@pytest.fixture
def db():
    return InMemoryDatabase()


@pytest.fixture
def uow(db):
    uow = InMemoryUnitOfWork(db)
    seed_people(uow)
    return uow


@pytest.fixture
def group(uow):
    return CreateGroupUseCase().execute(
        CreateGroupCommand(
            acting_user_id=PEOPLE.admin,
            name="Coastal Flood 2026",
            event_type="flood",
            user_ids=[PEOPLE.lead, PEOPLE.worker, PEOPLE.assessor],
        ),
        uow,
    )


@pytest.fixture
def center(uow, group):
    return CreateCenterUseCase().execute(
        CreateCenterCommand(
            acting_user_id=PEOPLE.admin,
            name="First Baptist Gym",
            address="12 Church St",
            group_id=group.id,
            lead_user_ids=[PEOPLE.lead],
        ),
        uow,
    )


def assessment_command(acting_user_id, center_id, group_id, **overrides):
    values = dict(
        acting_user_id=acting_user_id,
        place_name="Miller residence",
        address="4 Elm Ave",
        center_id=center_id,
        group_id=group_id,
        damages="Roof torn, water in basement",
        needs="Tarp, mucking crew",
        affected_people=4,
        severity="high",
    )
    values.update(overrides)
    return CreateAssessmentCommand(**values)


@pytest.fixture
def make_assessment_command():
    return assessment_command


@pytest.fixture
def assessment(uow, center, group):
    return CreateAssessmentUseCase().execute(
        assessment_command(PEOPLE.assessor, center.id, group.id), uow
    )


@pytest.fixture
def workgroup(uow, center, group, assessment):
    return CreateWorkgroupUseCase().execute(
        CreateWorkgroupCommand(
            acting_user_id=PEOPLE.lead,
            name="Muck-out crew A",
            center_id=center.id,
            group_id=group.id,
            lead_user_id=PEOPLE.lead,
            assessment_id=assessment.id,
            task_description="Remove wet drywall and flooring",
            worker_user_ids=[PEOPLE.worker],
        ),
        uow,
    )
