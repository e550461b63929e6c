"""
application.py

Application layer for the Faith Responders disaster-relief coordination service.

Overview
--------
The application layer sits between the presentation layer (API) and the
domain / service layer.  It is responsible for:

  1. Defining clean output DTOs (dataclasses) so no raw domain objects are
     leaked upward.
  2. Declaring the abstract document Repository and the UnitOfWork so that
     the application layer remains persistence-agnostic (the in-memory
     implementation lives in infrastructure.py).
  3. Dispatching domain events to the component that owns the reaction
     (EscalationCreated → Workgroup Coordinator).
  4. Implementing Use Case handlers, one class per remote operation, that
     check authentication, validate input, load the target, apply the
     service's change set and perform any dependent second write.

Structure
---------
Exceptions
    ApplicationError, UnauthenticatedError, InvalidArgumentError,
    AuthorizationError, NotFoundError

DTOs
    UserDTO, GroupDTO, CenterDTO, AssessmentDTO, WorkgroupDTO,
    ProgressNoteDTO, EscalationDTO, MessageDTO, LegalReleaseDTO

Use Cases
    --- Identity & roles ---
    RegisterUserUseCase, ApproveUserRoleUseCase, UpdateUserProfileUseCase,
    GetUserUseCase, ListUsersUseCase

    --- Groups & centers ---
    CreateGroupUseCase, UpdateGroupUseCase, GetGroupUseCase,
    ListGroupsUseCase, AddUserToGroupUseCase,
    CreateCenterUseCase, UpdateCenterUseCase, GetCenterUseCase,
    ListCentersUseCase

    --- Assessments ---
    CreateAssessmentUseCase, UpdateAssessmentUseCase, ReassessAssessmentUseCase,
    GetAssessmentUseCase, ListAssessmentsUseCase

    --- Workgroups ---
    CreateWorkgroupUseCase, UpdateWorkgroupUseCase, UpdateWorkgroupStatusUseCase,
    AddWorkerUseCase, GetWorkgroupUseCase, ListWorkgroupsUseCase

    --- Escalations ---
    CreateEscalationUseCase, UpdateEscalationStatusUseCase,
    ResolveEscalationUseCase, GetEscalationUseCase, ListEscalationsUseCase

    --- Messaging & legal releases ---
    SendMessageUseCase, SendGroupMessageUseCase, GetMessagesUseCase,
    CreateLegalReleaseUseCase, SignLegalReleaseUseCase, GetLegalReleaseUseCase

Design notes
------------
- Every use case checks for an authenticated caller before reading any data.
- Writes that span two documents (escalation → workgroup status, center →
  group / lead membership, group → member users) are sequential and not
  transactional.  If the second write fails the first stays persisted, the
  error is logged and re-raised to the caller; nothing is rolled back.
- All timestamps flowing out are ISO-8601 strings (UTC).
"""

from __future__ import annotations

import abc
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Type

from model import (
    Assessment,
    Center,
    Escalation,
    EscalationCreated,
    Group,
    LegalRelease,
    Message,
    ProgressNote,
    User,
    UserRole,
    Workgroup,
)
from service import (
    AccessDenied,
    AssessmentService,
    CenterService,
    EscalationService,
    GroupService,
    IdentityService,
    LegalReleaseService,
    MessagingService,
    WorkgroupService,
    authorize as _authorize_user,
)

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 100


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ApplicationError(Exception):
    """Base class for errors surfaced verbatim to the caller."""


class UnauthenticatedError(ApplicationError):
    """Raised when no caller identity accompanies the request."""


class InvalidArgumentError(ApplicationError):
    """Raised when required fields are missing or structurally wrong."""


class AuthorizationError(ApplicationError):
    """Raised when the acting user lacks the required role, ownership or membership."""


class NotFoundError(ApplicationError):
    """Raised when a requested entity does not exist."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fmt(dt: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO-8601 UTC string, or None."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _values(items: Iterable) -> List[str]:
    return [getattr(i, "value", i) for i in items]


@contextmanager
def _domain_errors():
    """Translate service-level failures into the application error taxonomy."""
    try:
        yield
    except AccessDenied as exc:
        raise AuthorizationError(str(exc)) from exc
    except ValueError as exc:
        raise InvalidArgumentError(str(exc)) from exc


# ===========================================================================
# DTO DEFINITIONS
# ===========================================================================

@dataclass
class UserDTO:
    id: str
    email: str
    phone_number: str
    communication_preference: str
    roles: List[str]
    requested_roles: List[str]
    role_approval_status: str
    group_ids: List[str]
    center_ids: List[str]
    legal_release_id: Optional[str]
    legal_release_signed: bool
    created_at: str
    updated_at: str


@dataclass
class GroupDTO:
    id: str
    name: str
    event_type: str
    description: str
    user_ids: List[str]
    center_ids: List[str]
    created_by: str
    created_at: str
    updated_at: str


@dataclass
class CenterDTO:
    id: str
    name: str
    address: str
    latitude: Optional[float]
    longitude: Optional[float]
    group_id: str
    lead_user_ids: List[str]
    created_by: str
    created_at: str
    updated_at: str


@dataclass
class AssessmentDTO:
    id: str
    place_name: str
    address: str
    latitude: Optional[float]
    longitude: Optional[float]
    assessor_id: str
    center_id: str
    group_id: str
    damages: str
    needs: str
    affected_people: int
    severity: str
    photo_urls: List[str]
    legal_release_url: Optional[str]
    reassessment_count: int
    flagged_for_review: bool
    created_at: str
    updated_at: str


@dataclass
class ProgressNoteDTO:
    note: str
    user_id: str
    timestamp: str


@dataclass
class WorkgroupDTO:
    id: str
    name: str
    center_id: str
    group_id: str
    lead_user_id: str
    worker_user_ids: List[str]
    assessment_id: str
    task_description: str
    task_status: str
    progress_notes: List[ProgressNoteDTO]
    photo_urls: List[str]
    created_by: str
    created_at: str
    updated_at: str


@dataclass
class EscalationDTO:
    id: str
    workgroup_id: str
    assessment_id: Optional[str]
    center_id: str
    group_id: str
    type: str
    status: str
    reason: str
    created_by: str
    assigned_to: Optional[str]
    resolution: Optional[str]
    resolved_at: Optional[str]
    created_at: str
    updated_at: str


@dataclass
class MessageDTO:
    id: str
    thread_id: str
    sender_id: str
    recipient_ids: List[str]
    content: str
    type: str
    group_id: Optional[str]
    center_id: Optional[str]
    workgroup_id: Optional[str]
    created_at: str


@dataclass
class LegalReleaseDTO:
    id: str
    user_id: str
    release_type: str
    document_url: Optional[str]
    signature_image_url: Optional[str]
    signed_digitally: bool
    signed_at: Optional[str]
    assessment_id: Optional[str]
    created_at: str
    updated_at: str


# ===========================================================================
# DTO ASSEMBLERS
# ===========================================================================

class _Assembler:
    """Converts domain model instances into DTOs."""

    @staticmethod
    def user(u: User) -> UserDTO:
        return UserDTO(
            id=u.id,
            email=u.email,
            phone_number=u.phone_number,
            communication_preference=u.communication_preference.value,
            roles=_values(u.roles),
            requested_roles=_values(u.requested_roles),
            role_approval_status=u.role_approval_status.value,
            group_ids=list(u.group_ids),
            center_ids=list(u.center_ids),
            legal_release_id=u.legal_release_id,
            legal_release_signed=u.legal_release_signed,
            created_at=_fmt(u.created_at),
            updated_at=_fmt(u.updated_at),
        )

    @staticmethod
    def group(g: Group) -> GroupDTO:
        return GroupDTO(
            id=g.id,
            name=g.name,
            event_type=g.event_type,
            description=g.description,
            user_ids=list(g.user_ids),
            center_ids=list(g.center_ids),
            created_by=g.created_by,
            created_at=_fmt(g.created_at),
            updated_at=_fmt(g.updated_at),
        )

    @staticmethod
    def center(c: Center) -> CenterDTO:
        return CenterDTO(
            id=c.id,
            name=c.name,
            address=c.address,
            latitude=c.latitude,
            longitude=c.longitude,
            group_id=c.group_id,
            lead_user_ids=list(c.lead_user_ids),
            created_by=c.created_by,
            created_at=_fmt(c.created_at),
            updated_at=_fmt(c.updated_at),
        )

    @staticmethod
    def assessment(a: Assessment) -> AssessmentDTO:
        return AssessmentDTO(
            id=a.id,
            place_name=a.place_name,
            address=a.address,
            latitude=a.latitude,
            longitude=a.longitude,
            assessor_id=a.assessor_id,
            center_id=a.center_id,
            group_id=a.group_id,
            damages=a.damages,
            needs=a.needs,
            affected_people=a.affected_people,
            severity=a.severity.value,
            photo_urls=list(a.photo_urls),
            legal_release_url=a.legal_release_url,
            reassessment_count=a.reassessment_count,
            flagged_for_review=a.flagged_for_review,
            created_at=_fmt(a.created_at),
            updated_at=_fmt(a.updated_at),
        )

    @staticmethod
    def progress_note(n: ProgressNote) -> ProgressNoteDTO:
        return ProgressNoteDTO(note=n.note, user_id=n.user_id, timestamp=_fmt(n.timestamp))

    @staticmethod
    def workgroup(w: Workgroup) -> WorkgroupDTO:
        return WorkgroupDTO(
            id=w.id,
            name=w.name,
            center_id=w.center_id,
            group_id=w.group_id,
            lead_user_id=w.lead_user_id,
            worker_user_ids=list(w.worker_user_ids),
            assessment_id=w.assessment_id,
            task_description=w.task_description,
            task_status=w.task_status.value,
            progress_notes=[_Assembler.progress_note(n) for n in w.progress_notes],
            photo_urls=list(w.photo_urls),
            created_by=w.created_by,
            created_at=_fmt(w.created_at),
            updated_at=_fmt(w.updated_at),
        )

    @staticmethod
    def escalation(e: Escalation) -> EscalationDTO:
        return EscalationDTO(
            id=e.id,
            workgroup_id=e.workgroup_id,
            assessment_id=e.assessment_id,
            center_id=e.center_id,
            group_id=e.group_id,
            type=e.type.value,
            status=e.status.value,
            reason=e.reason,
            created_by=e.created_by,
            assigned_to=e.assigned_to,
            resolution=e.resolution,
            resolved_at=_fmt(e.resolved_at),
            created_at=_fmt(e.created_at),
            updated_at=_fmt(e.updated_at),
        )

    @staticmethod
    def message(m: Message) -> MessageDTO:
        return MessageDTO(
            id=m.id,
            thread_id=m.thread_id,
            sender_id=m.sender_id,
            recipient_ids=list(m.recipient_ids),
            content=m.content,
            type=m.type.value,
            group_id=m.group_id,
            center_id=m.center_id,
            workgroup_id=m.workgroup_id,
            created_at=_fmt(m.created_at),
        )

    @staticmethod
    def legal_release(r: LegalRelease) -> LegalReleaseDTO:
        return LegalReleaseDTO(
            id=r.id,
            user_id=r.user_id,
            release_type=r.release_type.value,
            document_url=r.document_url,
            signature_image_url=r.signature_image_url,
            signed_digitally=r.signed_digitally,
            signed_at=_fmt(r.signed_at),
            assessment_id=r.assessment_id,
            created_at=_fmt(r.created_at),
            updated_at=_fmt(r.updated_at),
        )


# ===========================================================================
# REPOSITORY INTERFACE
# ===========================================================================

class AbstractDocumentRepository(abc.ABC):
    """
    One collection of flat documents keyed by id.

    `update` must apply the whole change set atomically for that document,
    resolving model field transforms (Increment, ArrayUnion, ArrayAppend,
    ServerTimestamp) against the stored value, and raise NotFoundError when
    the document does not exist.

    `query` filters with equality (`where`) and array membership
    (`contains`); filters whose value is None are ignored.
    """

    @abc.abstractmethod
    def get(self, doc_id: str) -> Optional[Any]: ...
    @abc.abstractmethod
    def add(self, entity: Any) -> None: ...
    @abc.abstractmethod
    def update(self, doc_id: str, changes: Dict[str, Any]) -> Any: ...
    @abc.abstractmethod
    def query(
        self,
        where: Optional[Dict[str, Any]] = None,
        contains: Optional[Dict[str, Any]] = None,
        newest_first: bool = False,
        limit: Optional[int] = None,
    ) -> List[Any]: ...


# ===========================================================================
# UNIT OF WORK
# ===========================================================================

class AbstractUnitOfWork(abc.ABC):
    """
    Groups all repositories under a single boundary.
    Use as a context manager:

        with uow:
            uow.assessments.add(assessment)
            uow.commit()
    """
    users: AbstractDocumentRepository
    groups: AbstractDocumentRepository
    centers: AbstractDocumentRepository
    assessments: AbstractDocumentRepository
    workgroups: AbstractDocumentRepository
    escalations: AbstractDocumentRepository
    messages: AbstractDocumentRepository
    legal_releases: AbstractDocumentRepository

    def __enter__(self) -> "AbstractUnitOfWork":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()
        else:
            self.commit()

    @abc.abstractmethod
    def commit(self) -> None: ...

    @abc.abstractmethod
    def rollback(self) -> None: ...


# ===========================================================================
# SERVICE SINGLETONS (shared across use cases)
# ===========================================================================

_identity_svc = IdentityService()
_group_svc = GroupService()
_center_svc = CenterService()
_assessment_svc = AssessmentService()
_workgroup_svc = WorkgroupService()
_escalation_svc = EscalationService()
_messaging_svc = MessagingService()
_release_svc = LegalReleaseService()


# ===========================================================================
# DOMAIN EVENTS
# ===========================================================================

def _escalate_workgroup(event: EscalationCreated, uow: AbstractUnitOfWork) -> None:
    uow.workgroups.update(event.workgroup_id, _workgroup_svc.escalation_changes(event))
    logger.info(
        "Workgroup %s set to needsEscalation by escalation %s",
        event.workgroup_id, event.escalation_id,
    )


EVENT_HANDLERS: Dict[Type, List[Callable[[Any, AbstractUnitOfWork], None]]] = {
    EscalationCreated: [_escalate_workgroup],
}


def dispatch(event: Any, uow: AbstractUnitOfWork) -> None:
    """Run every handler registered for the event's type, in order."""
    for handler in EVENT_HANDLERS.get(type(event), []):
        handler(event, uow)


# ===========================================================================
# USE CASE HELPERS
# ===========================================================================

def _require_authenticated(acting_user_id: Optional[str]) -> str:
    if not acting_user_id:
        raise UnauthenticatedError("User must be authenticated.")
    return acting_user_id


def _get_or_raise(repo: AbstractDocumentRepository, doc_id: str, label: str) -> Any:
    entity = repo.get(doc_id) if doc_id else None
    if entity is None:
        raise NotFoundError(f"{label} not found.")
    return entity


def _require_arguments(**values: Any) -> None:
    missing = [k for k, v in values.items() if v is None or v == ""]
    if missing:
        raise InvalidArgumentError(f"Missing required fields: {', '.join(missing)}")


def authorize(uow: AbstractUnitOfWork, caller_id: str, required_roles: Iterable[UserRole]) -> bool:
    """Role check for a caller id against the approved roles on record."""
    return _authorize_user(uow.users.get(caller_id), required_roles)


# ===========================================================================
# USE CASES — IDENTITY & ROLE DIRECTORY
# ===========================================================================

@dataclass
class RegisterUserCommand:
    acting_user_id: Optional[str]
    email: str
    phone_number: str
    communication_preference: str
    requested_roles: List[str]


class RegisterUserUseCase:
    """
    Create the caller's profile keyed by their principal id.  Registering
    again overwrites the existing profile, approved roles included.
    """

    def execute(self, cmd: RegisterUserCommand, uow: AbstractUnitOfWork) -> UserDTO:
        with uow:
            principal_id = _require_authenticated(cmd.acting_user_id)
            with _domain_errors():
                user = _identity_svc.register_user(
                    principal_id=principal_id,
                    email=cmd.email,
                    phone_number=cmd.phone_number,
                    communication_preference=cmd.communication_preference,
                    requested_roles=cmd.requested_roles,
                )
            if uow.users.get(principal_id) is not None:
                logger.warning("User %s re-registered; existing profile overwritten", principal_id)
            uow.users.add(user)
            uow.commit()
            logger.info("User %s registered, requested roles %s", user.id, _values(user.requested_roles))
            return _Assembler.user(user)


@dataclass
class ApproveUserRoleCommand:
    acting_user_id: Optional[str]
    user_id: str
    approve: Optional[bool]
    roles: Optional[List[str]] = None


class ApproveUserRoleUseCase:
    def execute(self, cmd: ApproveUserRoleCommand, uow: AbstractUnitOfWork) -> UserDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            _require_arguments(user_id=cmd.user_id, approve=cmd.approve)
            with _domain_errors():
                _identity_svc.require_administrator(uow.users.get(actor_id), "approve roles")
            user = _get_or_raise(uow.users, cmd.user_id, "User")
            with _domain_errors():
                changes = _identity_svc.role_approval_changes(user, cmd.approve, cmd.roles)
            user = uow.users.update(user.id, changes)
            uow.commit()
            logger.info(
                "User %s role approval %s by %s",
                user.id, user.role_approval_status.value, actor_id,
            )
            return _Assembler.user(user)


@dataclass
class UpdateUserProfileCommand:
    acting_user_id: Optional[str]
    user_id: str
    updates: Dict[str, Any] = field(default_factory=dict)


class UpdateUserProfileUseCase:
    """Role and approval fields are dropped from the payload, not rejected."""

    def execute(self, cmd: UpdateUserProfileCommand, uow: AbstractUnitOfWork) -> UserDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            _require_arguments(user_id=cmd.user_id, updates=cmd.updates)
            with _domain_errors():
                _identity_svc.require_self_or_admin(actor_id, uow.users.get(actor_id), cmd.user_id)
            _get_or_raise(uow.users, cmd.user_id, "User")
            with _domain_errors():
                changes = _identity_svc.profile_changes(cmd.updates)
            user = uow.users.update(cmd.user_id, changes)
            uow.commit()
            return _Assembler.user(user)


class GetUserUseCase:
    def execute(self, acting_user_id: Optional[str], user_id: str, uow: AbstractUnitOfWork) -> UserDTO:
        with uow:
            _require_authenticated(acting_user_id)
            _require_arguments(user_id=user_id)
            return _Assembler.user(_get_or_raise(uow.users, user_id, "User"))


@dataclass
class ListUsersQuery:
    acting_user_id: Optional[str]
    role: Optional[str] = None
    group_id: Optional[str] = None
    center_id: Optional[str] = None
    limit: int = DEFAULT_LIST_LIMIT


class ListUsersUseCase:
    def execute(self, q: ListUsersQuery, uow: AbstractUnitOfWork) -> List[UserDTO]:
        with uow:
            _require_authenticated(q.acting_user_id)
            users = uow.users.query(
                contains={"roles": q.role, "group_ids": q.group_id, "center_ids": q.center_id},
                limit=q.limit,
            )
            return [_Assembler.user(u) for u in users]


# ===========================================================================
# USE CASES — GROUPS
# ===========================================================================

@dataclass
class CreateGroupCommand:
    acting_user_id: Optional[str]
    name: str
    event_type: str
    description: str = ""
    user_ids: List[str] = field(default_factory=list)
    center_ids: List[str] = field(default_factory=list)


class CreateGroupUseCase:
    """
    Create the group, then record it on each member's `group_ids`.  The
    member fan-out is a second, best-effort write.
    """

    def execute(self, cmd: CreateGroupCommand, uow: AbstractUnitOfWork) -> GroupDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            with _domain_errors():
                group = _group_svc.create_group(
                    actor=uow.users.get(actor_id),
                    name=cmd.name,
                    event_type=cmd.event_type,
                    description=cmd.description,
                    user_ids=cmd.user_ids,
                    center_ids=cmd.center_ids,
                )
            uow.groups.add(group)
            logger.info("Group %s created by %s", group.id, actor_id)
            for user_id in group.user_ids:
                try:
                    uow.users.update(user_id, _group_svc.member_link_changes(group))
                except NotFoundError:
                    logger.warning(
                        "Group %s stored but member %s could not be linked", group.id, user_id
                    )
                    raise
            uow.commit()
            return _Assembler.group(group)


@dataclass
class UpdateGroupCommand:
    acting_user_id: Optional[str]
    group_id: str
    updates: Dict[str, Any] = field(default_factory=dict)


class UpdateGroupUseCase:
    def execute(self, cmd: UpdateGroupCommand, uow: AbstractUnitOfWork) -> GroupDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            _require_arguments(group_id=cmd.group_id, updates=cmd.updates)
            _get_or_raise(uow.groups, cmd.group_id, "Group")
            with _domain_errors():
                changes = _group_svc.update_changes(uow.users.get(actor_id), cmd.updates)
            group = uow.groups.update(cmd.group_id, changes)
            uow.commit()
            return _Assembler.group(group)


class GetGroupUseCase:
    def execute(self, acting_user_id: Optional[str], group_id: str, uow: AbstractUnitOfWork) -> GroupDTO:
        with uow:
            _require_authenticated(acting_user_id)
            _require_arguments(group_id=group_id)
            return _Assembler.group(_get_or_raise(uow.groups, group_id, "Group"))


class ListGroupsUseCase:
    def execute(
        self, acting_user_id: Optional[str], uow: AbstractUnitOfWork, limit: int = DEFAULT_LIST_LIMIT
    ) -> List[GroupDTO]:
        with uow:
            _require_authenticated(acting_user_id)
            return [_Assembler.group(g) for g in uow.groups.query(limit=limit)]


@dataclass
class AddUserToGroupCommand:
    acting_user_id: Optional[str]
    group_id: str
    user_id: str


class AddUserToGroupUseCase:
    """Maintain both sides of the group ↔ user reference."""

    def execute(self, cmd: AddUserToGroupCommand, uow: AbstractUnitOfWork) -> GroupDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            _require_arguments(group_id=cmd.group_id, user_id=cmd.user_id)
            with _domain_errors():
                group_changes, user_changes = _group_svc.membership_changes(
                    uow.users.get(actor_id), cmd.group_id, cmd.user_id
                )
            _get_or_raise(uow.groups, cmd.group_id, "Group")
            _get_or_raise(uow.users, cmd.user_id, "User")
            group = uow.groups.update(cmd.group_id, group_changes)
            uow.users.update(cmd.user_id, user_changes)
            uow.commit()
            logger.info("User %s added to group %s by %s", cmd.user_id, cmd.group_id, actor_id)
            return _Assembler.group(group)


# ===========================================================================
# USE CASES — CENTERS
# ===========================================================================

@dataclass
class CreateCenterCommand:
    acting_user_id: Optional[str]
    name: str
    address: str
    group_id: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    lead_user_ids: List[str] = field(default_factory=list)


class CreateCenterUseCase:
    """
    Store the center, then copy its id into the parent group's and each
    lead's `center_ids`.  Each link is a separate write; a missing group or
    lead surfaces as NotFoundError with the center already stored.
    """

    def execute(self, cmd: CreateCenterCommand, uow: AbstractUnitOfWork) -> CenterDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            with _domain_errors():
                center = _center_svc.create_center(
                    actor=uow.users.get(actor_id),
                    name=cmd.name,
                    address=cmd.address,
                    group_id=cmd.group_id,
                    latitude=cmd.latitude,
                    longitude=cmd.longitude,
                    lead_user_ids=cmd.lead_user_ids,
                )
            uow.centers.add(center)
            logger.info("Center %s created in group %s by %s", center.id, center.group_id, actor_id)
            try:
                uow.groups.update(center.group_id, _center_svc.group_link_changes(center))
                for lead_id in center.lead_user_ids:
                    uow.users.update(lead_id, _center_svc.lead_link_changes(center))
            except NotFoundError:
                logger.warning(
                    "Center %s stored but its group/lead membership could not be linked",
                    center.id,
                )
                raise
            uow.commit()
            return _Assembler.center(center)


@dataclass
class UpdateCenterCommand:
    acting_user_id: Optional[str]
    center_id: str
    updates: Dict[str, Any] = field(default_factory=dict)


class UpdateCenterUseCase:
    def execute(self, cmd: UpdateCenterCommand, uow: AbstractUnitOfWork) -> CenterDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            _require_arguments(center_id=cmd.center_id, updates=cmd.updates)
            _get_or_raise(uow.centers, cmd.center_id, "Center")
            with _domain_errors():
                changes = _center_svc.update_changes(uow.users.get(actor_id), cmd.updates)
            center = uow.centers.update(cmd.center_id, changes)
            uow.commit()
            return _Assembler.center(center)


class GetCenterUseCase:
    def execute(self, acting_user_id: Optional[str], center_id: str, uow: AbstractUnitOfWork) -> CenterDTO:
        with uow:
            _require_authenticated(acting_user_id)
            _require_arguments(center_id=center_id)
            return _Assembler.center(_get_or_raise(uow.centers, center_id, "Center"))


class ListCentersUseCase:
    def execute(
        self,
        acting_user_id: Optional[str],
        uow: AbstractUnitOfWork,
        group_id: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[CenterDTO]:
        with uow:
            _require_authenticated(acting_user_id)
            centers = uow.centers.query(where={"group_id": group_id}, limit=limit)
            return [_Assembler.center(c) for c in centers]


# ===========================================================================
# USE CASES — ASSESSMENTS
# ===========================================================================

@dataclass
class CreateAssessmentCommand:
    acting_user_id: Optional[str]
    place_name: str
    address: str
    center_id: str
    group_id: str
    damages: str
    needs: str
    affected_people: Optional[int]
    severity: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    photo_urls: List[str] = field(default_factory=list)
    legal_release_url: Optional[str] = None


class CreateAssessmentUseCase:
    def execute(self, cmd: CreateAssessmentCommand, uow: AbstractUnitOfWork) -> AssessmentDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            values = {k: v for k, v in vars(cmd).items() if k != "acting_user_id"}
            with _domain_errors():
                assessment = _assessment_svc.create_assessment(uow.users.get(actor_id), values)
            uow.assessments.add(assessment)
            uow.commit()
            logger.info("Assessment %s created by %s", assessment.id, actor_id)
            return _Assembler.assessment(assessment)


@dataclass
class UpdateAssessmentCommand:
    acting_user_id: Optional[str]
    assessment_id: str
    updates: Dict[str, Any] = field(default_factory=dict)


class UpdateAssessmentUseCase:
    """The owning assessor or an administrator; ownership fields are stripped."""

    def execute(self, cmd: UpdateAssessmentCommand, uow: AbstractUnitOfWork) -> AssessmentDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            _require_arguments(assessment_id=cmd.assessment_id, updates=cmd.updates)
            assessment = _get_or_raise(uow.assessments, cmd.assessment_id, "Assessment")
            with _domain_errors():
                changes = _assessment_svc.update_changes(
                    uow.users.get(actor_id), assessment, cmd.updates
                )
            assessment = uow.assessments.update(assessment.id, changes)
            uow.commit()
            return _Assembler.assessment(assessment)


@dataclass
class ReassessAssessmentCommand:
    acting_user_id: Optional[str]
    assessment_id: str
    updates: Dict[str, Any] = field(default_factory=dict)
    flag_for_review: Optional[bool] = None


class ReassessAssessmentUseCase:
    """
    Any assessor may reassess.  The counter moves by an atomic increment in
    the same document update as the field changes, so concurrent
    reassessments cannot lose a count.
    """

    def execute(self, cmd: ReassessAssessmentCommand, uow: AbstractUnitOfWork) -> AssessmentDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            _require_arguments(assessment_id=cmd.assessment_id)
            if cmd.updates is None:
                raise InvalidArgumentError("Missing required fields: updates")
            _get_or_raise(uow.assessments, cmd.assessment_id, "Assessment")
            with _domain_errors():
                changes = _assessment_svc.reassessment_changes(
                    uow.users.get(actor_id), cmd.updates, cmd.flag_for_review
                )
            assessment = uow.assessments.update(cmd.assessment_id, changes)
            uow.commit()
            logger.info(
                "Assessment %s reassessed by %s (count=%d, flagged=%s)",
                assessment.id, actor_id, assessment.reassessment_count,
                assessment.flagged_for_review,
            )
            return _Assembler.assessment(assessment)


class GetAssessmentUseCase:
    def execute(
        self, acting_user_id: Optional[str], assessment_id: str, uow: AbstractUnitOfWork
    ) -> AssessmentDTO:
        with uow:
            _require_authenticated(acting_user_id)
            _require_arguments(assessment_id=assessment_id)
            return _Assembler.assessment(_get_or_raise(uow.assessments, assessment_id, "Assessment"))


@dataclass
class ListAssessmentsQuery:
    acting_user_id: Optional[str]
    center_id: Optional[str] = None
    group_id: Optional[str] = None
    flagged_for_review: Optional[bool] = None
    limit: int = DEFAULT_LIST_LIMIT


class ListAssessmentsUseCase:
    def execute(self, q: ListAssessmentsQuery, uow: AbstractUnitOfWork) -> List[AssessmentDTO]:
        with uow:
            _require_authenticated(q.acting_user_id)
            assessments = uow.assessments.query(
                where={
                    "center_id": q.center_id,
                    "group_id": q.group_id,
                    "flagged_for_review": q.flagged_for_review,
                },
                newest_first=True,
                limit=q.limit,
            )
            return [_Assembler.assessment(a) for a in assessments]


# ===========================================================================
# USE CASES — WORKGROUPS
# ===========================================================================

@dataclass
class CreateWorkgroupCommand:
    acting_user_id: Optional[str]
    name: str
    center_id: str
    group_id: str
    lead_user_id: str
    assessment_id: str
    task_description: str
    worker_user_ids: List[str] = field(default_factory=list)


class CreateWorkgroupUseCase:
    def execute(self, cmd: CreateWorkgroupCommand, uow: AbstractUnitOfWork) -> WorkgroupDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            values = {k: v for k, v in vars(cmd).items() if k != "acting_user_id"}
            with _domain_errors():
                workgroup = _workgroup_svc.create_workgroup(uow.users.get(actor_id), values)
            uow.workgroups.add(workgroup)
            uow.commit()
            logger.info(
                "Workgroup %s created for assessment %s by %s",
                workgroup.id, workgroup.assessment_id, actor_id,
            )
            return _Assembler.workgroup(workgroup)


@dataclass
class UpdateWorkgroupCommand:
    acting_user_id: Optional[str]
    workgroup_id: str
    updates: Dict[str, Any] = field(default_factory=dict)


class UpdateWorkgroupUseCase:
    """Lead, any listed worker, or an administrator."""

    def execute(self, cmd: UpdateWorkgroupCommand, uow: AbstractUnitOfWork) -> WorkgroupDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            _require_arguments(workgroup_id=cmd.workgroup_id, updates=cmd.updates)
            workgroup = _get_or_raise(uow.workgroups, cmd.workgroup_id, "Workgroup")
            with _domain_errors():
                changes = _workgroup_svc.update_changes(
                    actor_id, uow.users.get(actor_id), workgroup, cmd.updates
                )
            workgroup = uow.workgroups.update(workgroup.id, changes)
            uow.commit()
            return _Assembler.workgroup(workgroup)


@dataclass
class UpdateWorkgroupStatusCommand:
    acting_user_id: Optional[str]
    workgroup_id: str
    status: str
    note: Optional[str] = None
    photo_urls: List[str] = field(default_factory=list)


class UpdateWorkgroupStatusUseCase:
    def execute(self, cmd: UpdateWorkgroupStatusCommand, uow: AbstractUnitOfWork) -> WorkgroupDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            _require_arguments(workgroup_id=cmd.workgroup_id, status=cmd.status)
            workgroup = _get_or_raise(uow.workgroups, cmd.workgroup_id, "Workgroup")
            with _domain_errors():
                changes = _workgroup_svc.status_changes(
                    actor_id,
                    uow.users.get(actor_id),
                    workgroup,
                    status=cmd.status,
                    note=cmd.note,
                    photo_urls=cmd.photo_urls,
                )
            workgroup = uow.workgroups.update(workgroup.id, changes)
            uow.commit()
            logger.info(
                "Workgroup %s status -> %s by %s",
                workgroup.id, workgroup.task_status.value, actor_id,
            )
            return _Assembler.workgroup(workgroup)


@dataclass
class AddWorkerCommand:
    acting_user_id: Optional[str]
    workgroup_id: str
    user_id: str


class AddWorkerUseCase:
    """Lead or administrator only; adding an existing worker is a no-op."""

    def execute(self, cmd: AddWorkerCommand, uow: AbstractUnitOfWork) -> WorkgroupDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            _require_arguments(workgroup_id=cmd.workgroup_id, user_id=cmd.user_id)
            workgroup = _get_or_raise(uow.workgroups, cmd.workgroup_id, "Workgroup")
            with _domain_errors():
                changes = _workgroup_svc.add_worker_changes(
                    actor_id, uow.users.get(actor_id), workgroup, cmd.user_id
                )
            workgroup = uow.workgroups.update(workgroup.id, changes)
            uow.commit()
            return _Assembler.workgroup(workgroup)


class GetWorkgroupUseCase:
    def execute(
        self, acting_user_id: Optional[str], workgroup_id: str, uow: AbstractUnitOfWork
    ) -> WorkgroupDTO:
        with uow:
            _require_authenticated(acting_user_id)
            _require_arguments(workgroup_id=workgroup_id)
            return _Assembler.workgroup(_get_or_raise(uow.workgroups, workgroup_id, "Workgroup"))


@dataclass
class ListWorkgroupsQuery:
    acting_user_id: Optional[str]
    center_id: Optional[str] = None
    group_id: Optional[str] = None
    assessment_id: Optional[str] = None
    limit: int = DEFAULT_LIST_LIMIT


class ListWorkgroupsUseCase:
    def execute(self, q: ListWorkgroupsQuery, uow: AbstractUnitOfWork) -> List[WorkgroupDTO]:
        with uow:
            _require_authenticated(q.acting_user_id)
            workgroups = uow.workgroups.query(
                where={
                    "center_id": q.center_id,
                    "group_id": q.group_id,
                    "assessment_id": q.assessment_id,
                },
                newest_first=True,
                limit=q.limit,
            )
            return [_Assembler.workgroup(w) for w in workgroups]


# ===========================================================================
# USE CASES — ESCALATIONS
# ===========================================================================

@dataclass
class CreateEscalationCommand:
    acting_user_id: Optional[str]
    workgroup_id: str
    center_id: str
    group_id: str
    type: str
    reason: str
    assessment_id: Optional[str] = None


class CreateEscalationUseCase:
    """
    Store the escalation, then dispatch EscalationCreated so the workgroup is
    forced into needsEscalation.  The two writes are sequential: if the
    workgroup push fails the escalation stays stored and the error is
    returned to the caller.
    """

    def execute(self, cmd: CreateEscalationCommand, uow: AbstractUnitOfWork) -> EscalationDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            values = {k: v for k, v in vars(cmd).items() if k != "acting_user_id"}
            with _domain_errors():
                escalation, event = _escalation_svc.create_escalation(
                    uow.users.get(actor_id), values
                )
            uow.escalations.add(escalation)
            logger.info(
                "Escalation %s raised on workgroup %s by %s",
                escalation.id, escalation.workgroup_id, actor_id,
            )
            try:
                dispatch(event, uow)
            except NotFoundError:
                logger.warning(
                    "Escalation %s stored but workgroup %s was not escalated",
                    escalation.id, escalation.workgroup_id,
                )
                raise
            uow.commit()
            return _Assembler.escalation(escalation)


@dataclass
class UpdateEscalationStatusCommand:
    acting_user_id: Optional[str]
    escalation_id: str
    status: str
    assigned_to: Optional[str] = None


class UpdateEscalationStatusUseCase:
    def execute(self, cmd: UpdateEscalationStatusCommand, uow: AbstractUnitOfWork) -> EscalationDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            _require_arguments(escalation_id=cmd.escalation_id, status=cmd.status)
            _get_or_raise(uow.escalations, cmd.escalation_id, "Escalation")
            with _domain_errors():
                changes = _escalation_svc.status_changes(
                    uow.users.get(actor_id), cmd.status, cmd.assigned_to
                )
            escalation = uow.escalations.update(cmd.escalation_id, changes)
            uow.commit()
            return _Assembler.escalation(escalation)


@dataclass
class ResolveEscalationCommand:
    acting_user_id: Optional[str]
    escalation_id: str
    resolution: str


class ResolveEscalationUseCase:
    """Resolving does not move the linked workgroup out of needsEscalation."""

    def execute(self, cmd: ResolveEscalationCommand, uow: AbstractUnitOfWork) -> EscalationDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            _require_arguments(escalation_id=cmd.escalation_id, resolution=cmd.resolution)
            _get_or_raise(uow.escalations, cmd.escalation_id, "Escalation")
            with _domain_errors():
                changes = _escalation_svc.resolution_changes(uow.users.get(actor_id), cmd.resolution)
            escalation = uow.escalations.update(cmd.escalation_id, changes)
            uow.commit()
            logger.info("Escalation %s resolved by %s", escalation.id, actor_id)
            return _Assembler.escalation(escalation)


class GetEscalationUseCase:
    def execute(
        self, acting_user_id: Optional[str], escalation_id: str, uow: AbstractUnitOfWork
    ) -> EscalationDTO:
        with uow:
            _require_authenticated(acting_user_id)
            _require_arguments(escalation_id=escalation_id)
            return _Assembler.escalation(_get_or_raise(uow.escalations, escalation_id, "Escalation"))


@dataclass
class ListEscalationsQuery:
    acting_user_id: Optional[str]
    center_id: Optional[str] = None
    group_id: Optional[str] = None
    workgroup_id: Optional[str] = None
    status: Optional[str] = None
    limit: int = DEFAULT_LIST_LIMIT


class ListEscalationsUseCase:
    def execute(self, q: ListEscalationsQuery, uow: AbstractUnitOfWork) -> List[EscalationDTO]:
        with uow:
            _require_authenticated(q.acting_user_id)
            escalations = uow.escalations.query(
                where={
                    "center_id": q.center_id,
                    "group_id": q.group_id,
                    "workgroup_id": q.workgroup_id,
                    "status": q.status,
                },
                newest_first=True,
                limit=q.limit,
            )
            return [_Assembler.escalation(e) for e in escalations]


# ===========================================================================
# USE CASES — MESSAGING
# ===========================================================================

def _deliver(message: Message) -> None:
    # SMS / email providers are not integrated; delivery is the stored record.
    logger.info(
        "Message %s (%s) delivered to %d recipient(s) on thread %s",
        message.id, message.type.value, len(message.recipient_ids), message.thread_id,
    )


@dataclass
class SendMessageCommand:
    acting_user_id: Optional[str]
    thread_id: str
    recipient_ids: List[str]
    content: str
    type: str


class SendMessageUseCase:
    def execute(self, cmd: SendMessageCommand, uow: AbstractUnitOfWork) -> MessageDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            with _domain_errors():
                message = _messaging_svc.compose(
                    sender_id=actor_id,
                    thread_id=cmd.thread_id,
                    recipient_ids=cmd.recipient_ids,
                    content=cmd.content,
                    type=cmd.type,
                )
            uow.messages.add(message)
            uow.commit()
            _deliver(message)
            return _Assembler.message(message)


@dataclass
class SendGroupMessageCommand:
    acting_user_id: Optional[str]
    content: str
    type: str
    group_id: Optional[str] = None
    center_id: Optional[str] = None
    workgroup_id: Optional[str] = None


class SendGroupMessageUseCase:
    """
    Resolve recipients from the most specific target given (workgroup, then
    center, then group) and post to that target's thread.
    """

    def execute(self, cmd: SendGroupMessageCommand, uow: AbstractUnitOfWork) -> MessageDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            _require_arguments(content=cmd.content, type=cmd.type)
            if not (cmd.group_id or cmd.center_id or cmd.workgroup_id):
                raise InvalidArgumentError(
                    "Must specify at least one of: group_id, center_id, workgroup_id"
                )
            if cmd.workgroup_id:
                recipients = _messaging_svc.resolve_recipients(
                    workgroup=uow.workgroups.get(cmd.workgroup_id))
            elif cmd.center_id:
                recipients = _messaging_svc.resolve_recipients(
                    center=uow.centers.get(cmd.center_id))
            else:
                recipients = _messaging_svc.resolve_recipients(
                    group=uow.groups.get(cmd.group_id))
            if not recipients:
                raise NotFoundError("No recipients found.")

            with _domain_errors():
                message = _messaging_svc.compose(
                    sender_id=actor_id,
                    thread_id=cmd.workgroup_id or cmd.center_id or cmd.group_id,
                    recipient_ids=recipients,
                    content=cmd.content,
                    type=cmd.type,
                    group_id=cmd.group_id,
                    center_id=cmd.center_id,
                    workgroup_id=cmd.workgroup_id,
                )
            uow.messages.add(message)
            uow.commit()
            _deliver(message)
            return _Assembler.message(message)


class GetMessagesUseCase:
    def execute(
        self,
        acting_user_id: Optional[str],
        thread_id: str,
        uow: AbstractUnitOfWork,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[MessageDTO]:
        with uow:
            _require_authenticated(acting_user_id)
            _require_arguments(thread_id=thread_id)
            messages = uow.messages.query(
                where={"thread_id": thread_id}, newest_first=True, limit=limit
            )
            return [_Assembler.message(m) for m in messages]


# ===========================================================================
# USE CASES — LEGAL RELEASES
# ===========================================================================

@dataclass
class CreateLegalReleaseCommand:
    acting_user_id: Optional[str]
    user_id: str
    release_type: str
    document_url: Optional[str] = None
    signature_image_url: Optional[str] = None
    signed_digitally: bool = False
    assessment_id: Optional[str] = None


class CreateLegalReleaseUseCase:
    def execute(self, cmd: CreateLegalReleaseCommand, uow: AbstractUnitOfWork) -> LegalReleaseDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            with _domain_errors():
                release = _release_svc.create_release(
                    actor_id,
                    uow.users.get(actor_id),
                    user_id=cmd.user_id,
                    release_type=cmd.release_type,
                    document_url=cmd.document_url,
                    signature_image_url=cmd.signature_image_url,
                    signed_digitally=cmd.signed_digitally,
                    assessment_id=cmd.assessment_id,
                )
            uow.legal_releases.add(release)
            user_changes = _release_svc.user_link_changes(release)
            if user_changes:
                uow.users.update(release.user_id, user_changes)
            uow.commit()
            return _Assembler.legal_release(release)


@dataclass
class SignLegalReleaseCommand:
    acting_user_id: Optional[str]
    release_id: str
    signature_image_url: Optional[str] = None


class SignLegalReleaseUseCase:
    def execute(self, cmd: SignLegalReleaseCommand, uow: AbstractUnitOfWork) -> LegalReleaseDTO:
        with uow:
            actor_id = _require_authenticated(cmd.acting_user_id)
            _require_arguments(release_id=cmd.release_id)
            release = _get_or_raise(uow.legal_releases, cmd.release_id, "Legal release")
            with _domain_errors():
                changes = _release_svc.sign_changes(actor_id, release, cmd.signature_image_url)
            release = uow.legal_releases.update(release.id, changes)
            user_changes = _release_svc.user_signed_changes(release)
            if user_changes:
                uow.users.update(release.user_id, user_changes)
            uow.commit()
            logger.info("Legal release %s signed by %s", release.id, actor_id)
            return _Assembler.legal_release(release)


class GetLegalReleaseUseCase:
    def execute(
        self, acting_user_id: Optional[str], release_id: str, uow: AbstractUnitOfWork
    ) -> LegalReleaseDTO:
        with uow:
            actor_id = _require_authenticated(acting_user_id)
            _require_arguments(release_id=release_id)
            release = _get_or_raise(uow.legal_releases, release_id, "Legal release")
            with _domain_errors():
                _release_svc.require_can_view(actor_id, uow.users.get(actor_id), release)
            return _Assembler.legal_release(release)
