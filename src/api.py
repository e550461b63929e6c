"""
api.py

REST API layer for the Faith Responders disaster-relief coordination service.

Framework : FastAPI
Auth      : Bearer token. The token is the caller's principal id, issued by
            the external identity provider and trusted as-is.  The
            get_current_user_id dependency rejects requests without one
            before any document is read; every endpoint passes the resolved
            id to its use case as `acting_user_id`.

Structure
---------
  Routers (all prefixed under /api/v1)
  ├── /users              — registration, role approval, profiles
  ├── /groups             — disaster-response efforts and members
  ├── /centers            — relief sites
  ├── /assessments        — damage assessments and reassessment
  ├── /workgroups         — crews, task status, roster
  ├── /escalations        — escalations and their resolution
  ├── /messages           — direct and group messages
  └── /legal-releases     — waivers and property-access releases

Error handling
--------------
  UnauthenticatedError → 401
  InvalidArgumentError → 400
  AuthorizationError   → 403
  NotFoundError        → 404
  ApplicationError     → 422
  Request body shape   → 422 (FastAPI default)

Response envelope
-----------------
  Success  : { "success": true, "data": <payload> }  (+ "<kind>_id" on create)
  Error    : { "detail": "<message>" }

Running
-------
  uvicorn main:app --reload
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Path, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_mcp import FastApiMCP
from pydantic import BaseModel, EmailStr, Field, field_validator

from application import (
    # Exceptions
    ApplicationError,
    AuthorizationError,
    InvalidArgumentError,
    NotFoundError,
    UnauthenticatedError,
    # Commands / queries
    AddUserToGroupCommand,
    AddWorkerCommand,
    ApproveUserRoleCommand,
    CreateAssessmentCommand,
    CreateCenterCommand,
    CreateEscalationCommand,
    CreateGroupCommand,
    CreateLegalReleaseCommand,
    CreateWorkgroupCommand,
    ListAssessmentsQuery,
    ListEscalationsQuery,
    ListUsersQuery,
    ListWorkgroupsQuery,
    ReassessAssessmentCommand,
    RegisterUserCommand,
    ResolveEscalationCommand,
    SendGroupMessageCommand,
    SendMessageCommand,
    SignLegalReleaseCommand,
    UpdateAssessmentCommand,
    UpdateCenterCommand,
    UpdateEscalationStatusCommand,
    UpdateGroupCommand,
    UpdateUserProfileCommand,
    UpdateWorkgroupCommand,
    UpdateWorkgroupStatusCommand,
    # Use cases
    AddUserToGroupUseCase,
    AddWorkerUseCase,
    ApproveUserRoleUseCase,
    CreateAssessmentUseCase,
    CreateCenterUseCase,
    CreateEscalationUseCase,
    CreateGroupUseCase,
    CreateLegalReleaseUseCase,
    CreateWorkgroupUseCase,
    GetAssessmentUseCase,
    GetCenterUseCase,
    GetEscalationUseCase,
    GetGroupUseCase,
    GetLegalReleaseUseCase,
    GetMessagesUseCase,
    GetUserUseCase,
    GetWorkgroupUseCase,
    ListAssessmentsUseCase,
    ListCentersUseCase,
    ListEscalationsUseCase,
    ListGroupsUseCase,
    ListUsersUseCase,
    ListWorkgroupsUseCase,
    ReassessAssessmentUseCase,
    RegisterUserUseCase,
    ResolveEscalationUseCase,
    SendGroupMessageUseCase,
    SendMessageUseCase,
    SignLegalReleaseUseCase,
    UpdateAssessmentUseCase,
    UpdateCenterUseCase,
    UpdateEscalationStatusUseCase,
    UpdateGroupUseCase,
    UpdateUserProfileUseCase,
    UpdateWorkgroupStatusUseCase,
    UpdateWorkgroupUseCase,
    AbstractUnitOfWork,
)
from config import get_settings
from infrastructure import InMemoryUnitOfWork
from model import (
    AssessmentSeverity,
    CommunicationPreference,
    EscalationStatus,
    EscalationType,
    MessageType,
    ReleaseType,
    RoleApprovalStatus,
    User,
    UserRole,
    WorkgroupTaskStatus,
)

logger = logging.getLogger(__name__)

settings = get_settings()


# ---------------------------------------------------------------------------
# App bootstrap
# ---------------------------------------------------------------------------

app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description=(
        "Coordination API for disaster-relief volunteers: role approval, "
        "damage assessments, work crews, escalations, messaging and "
        "legal releases."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_uow() -> AbstractUnitOfWork:
    """Returns the in-memory Unit of Work (no database required)."""
    return InMemoryUnitOfWork()


def get_current_user_id(authorization: Optional[str] = Header(default=None)) -> str:
    """Resolve `Authorization: Bearer <principal id>` to the caller id."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthenticatedError("User must be authenticated.")
    return token.strip()


@app.on_event("startup")
def seed_bootstrap_admin():
    """
    Ensure the configured bootstrap administrator exists so a fresh
    deployment has someone able to approve roles.
    """
    if not settings.bootstrap_admin_id:
        return
    uow = app.dependency_overrides.get(get_uow, get_uow)()
    if uow.users.get(settings.bootstrap_admin_id) is None:
        uow.users.add(User(
            id=settings.bootstrap_admin_id,
            email=settings.bootstrap_admin_email,
            roles=[UserRole.ADMINISTRATOR],
            requested_roles=[UserRole.ADMINISTRATOR],
            role_approval_status=RoleApprovalStatus.APPROVED,
        ))
        logger.info("Bootstrap administrator seeded: %s", settings.bootstrap_admin_id)


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------

@app.exception_handler(UnauthenticatedError)
async def unauthenticated_handler(request, exc: UnauthenticatedError):
    return JSONResponse(status_code=401, content={"detail": str(exc)})


@app.exception_handler(InvalidArgumentError)
async def invalid_argument_handler(request, exc: InvalidArgumentError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(AuthorizationError)
async def authorization_handler(request, exc: AuthorizationError):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ApplicationError)
async def application_error_handler(request, exc: ApplicationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Envelope helper
# ---------------------------------------------------------------------------

def _ok(data: Any, **refs: Any) -> Dict:
    """Wrap a DTO or list of DTOs in the standard success envelope."""
    if dataclasses.is_dataclass(data):
        payload = dataclasses.asdict(data)
    elif isinstance(data, list):
        payload = [
            dataclasses.asdict(item) if dataclasses.is_dataclass(item) else item
            for item in data
        ]
    else:
        payload = data
    return {"success": True, **refs, "data": payload}


def _one_of(enum_cls, field_name: str, v: str) -> str:
    valid = {m.value for m in enum_cls}
    if v not in valid:
        raise ValueError(f"{field_name} must be one of: {sorted(valid)}")
    return v


# ===========================================================================
# REQUEST BODY SCHEMAS  (Pydantic v2)
# ===========================================================================

class UpdatesRequest(BaseModel):
    """Generic partial update; protected fields are dropped server-side."""
    updates: Dict[str, Any] = Field(..., description="Field name → new value.")


# ---------------------------------------------------------------------------
# User schemas
# ---------------------------------------------------------------------------

class RegisterUserRequest(BaseModel):
    email: EmailStr
    phone_number: str = Field(..., min_length=1, max_length=50)
    communication_preference: str
    requested_roles: List[str]

    @field_validator("communication_preference")
    @classmethod
    def validate_preference(cls, v: str) -> str:
        return _one_of(CommunicationPreference, "communication_preference", v)

    @field_validator("requested_roles")
    @classmethod
    def validate_roles(cls, v: List[str]) -> List[str]:
        valid = {r.value for r in UserRole}
        bad = [r for r in v if r not in valid]
        if bad:
            raise ValueError(f"requested_roles must be drawn from: {sorted(valid)}")
        return v


class ApproveRoleRequest(BaseModel):
    approve: bool
    roles: Optional[List[str]] = Field(
        default=None, description="Roles to grant; defaults to the user's requested roles."
    )


# ---------------------------------------------------------------------------
# Group & center schemas
# ---------------------------------------------------------------------------

class CreateGroupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    event_type: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="")
    user_ids: List[str] = Field(default_factory=list)
    center_ids: List[str] = Field(default_factory=list)


class AddMemberRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class CreateCenterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    address: str = Field(..., min_length=1)
    group_id: str = Field(..., min_length=1)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    lead_user_ids: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Assessment schemas
# ---------------------------------------------------------------------------

class CreateAssessmentRequest(BaseModel):
    place_name: str = Field(..., min_length=1, max_length=200)
    address: str = Field(..., min_length=1)
    center_id: str = Field(..., min_length=1)
    group_id: str = Field(..., min_length=1)
    damages: str = Field(..., min_length=1)
    needs: str = Field(..., min_length=1)
    affected_people: int = Field(..., ge=0)
    severity: str = Field(..., description="One of: low, medium, high, critical")
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    photo_urls: List[str] = Field(default_factory=list)
    legal_release_url: Optional[str] = None

    @field_validator("severity")
    @classmethod
    def validate_severity(cls, v: str) -> str:
        return _one_of(AssessmentSeverity, "severity", v)


class ReassessRequest(BaseModel):
    updates: Dict[str, Any] = Field(default_factory=dict)
    flag_for_review: Optional[bool] = None


# ---------------------------------------------------------------------------
# Workgroup schemas
# ---------------------------------------------------------------------------

class CreateWorkgroupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    center_id: str = Field(..., min_length=1)
    group_id: str = Field(..., min_length=1)
    lead_user_id: str = Field(..., min_length=1)
    assessment_id: str = Field(..., min_length=1)
    task_description: str = Field(..., min_length=1)
    worker_user_ids: List[str] = Field(default_factory=list)


class WorkgroupStatusRequest(BaseModel):
    status: str = Field(
        ...,
        description="One of: notStarted, inProgress, partiallyCompleted, completed, needsEscalation",
    )
    note: Optional[str] = None
    photo_urls: List[str] = Field(default_factory=list)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        return _one_of(WorkgroupTaskStatus, "status", v)


class AddWorkerRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Escalation schemas
# ---------------------------------------------------------------------------

class CreateEscalationRequest(BaseModel):
    workgroup_id: str = Field(..., min_length=1)
    center_id: str = Field(..., min_length=1)
    group_id: str = Field(..., min_length=1)
    type: str = Field(..., description="One of: assessor, administrative, thirdParty")
    reason: str = Field(..., min_length=1, max_length=2000)
    assessment_id: Optional[str] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        return _one_of(EscalationType, "type", v)


class EscalationStatusRequest(BaseModel):
    status: str = Field(..., description="One of: pending, inProgress, resolved, rejected")
    assigned_to: Optional[str] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        return _one_of(EscalationStatus, "status", v)


class ResolveEscalationRequest(BaseModel):
    resolution: str = Field(..., min_length=1, max_length=2000)


# ---------------------------------------------------------------------------
# Messaging & legal release schemas
# ---------------------------------------------------------------------------

class SendMessageRequest(BaseModel):
    thread_id: str = Field(..., min_length=1)
    recipient_ids: List[str] = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    type: str = Field(..., description="One of: sms, email, inApp")

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        return _one_of(MessageType, "type", v)


class SendGroupMessageRequest(BaseModel):
    content: str = Field(..., min_length=1)
    type: str = Field(..., description="One of: sms, email, inApp")
    group_id: Optional[str] = None
    center_id: Optional[str] = None
    workgroup_id: Optional[str] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        return _one_of(MessageType, "type", v)


class CreateLegalReleaseRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    release_type: str = Field(..., description="One of: volunteer, propertyAccess")
    document_url: Optional[str] = None
    signature_image_url: Optional[str] = None
    signed_digitally: bool = False
    assessment_id: Optional[str] = None

    @field_validator("release_type")
    @classmethod
    def validate_release_type(cls, v: str) -> str:
        return _one_of(ReleaseType, "release_type", v)


class SignLegalReleaseRequest(BaseModel):
    signature_image_url: Optional[str] = None


# ===========================================================================
# ROUTERS
# ===========================================================================

api_v1 = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

user_router = APIRouter(prefix="/users", tags=["Users"])


@user_router.post("/register", status_code=status.HTTP_201_CREATED,
                  summary="Register the authenticated caller")
def register_user(
    body: RegisterUserRequest,
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Creates the caller's profile keyed by their principal id with no
    approved roles; an administrator must approve the requested roles.
    """
    cmd = RegisterUserCommand(
        acting_user_id=current_user_id,
        email=str(body.email),
        phone_number=body.phone_number,
        communication_preference=body.communication_preference,
        requested_roles=body.requested_roles,
    )
    result = RegisterUserUseCase().execute(cmd, uow)
    return _ok(result, user_id=result.id)


@user_router.post("/{user_id}/role-approval", summary="Approve or reject a user's roles")
def approve_user_role(
    body: ApproveRoleRequest,
    user_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ApproveUserRoleCommand(
        acting_user_id=current_user_id,
        user_id=user_id,
        approve=body.approve,
        roles=body.roles,
    )
    return _ok(ApproveUserRoleUseCase().execute(cmd, uow))


@user_router.patch("/{user_id}", summary="Update a user profile")
def update_user_profile(
    body: UpdatesRequest,
    user_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateUserProfileCommand(
        acting_user_id=current_user_id, user_id=user_id, updates=body.updates
    )
    return _ok(UpdateUserProfileUseCase().execute(cmd, uow))


@user_router.get("/{user_id}", summary="Get a user by ID")
def get_user(
    user_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetUserUseCase().execute(current_user_id, user_id, uow))


@user_router.get("", summary="List users")
def list_users(
    role: Optional[str] = Query(default=None),
    group_id: Optional[str] = Query(default=None),
    center_id: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    q = ListUsersQuery(
        acting_user_id=current_user_id,
        role=role,
        group_id=group_id,
        center_id=center_id,
        limit=settings.resolve_limit(limit),
    )
    return _ok(ListUsersUseCase().execute(q, uow))


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------

group_router = APIRouter(prefix="/groups", tags=["Groups"])


@group_router.post("", status_code=status.HTTP_201_CREATED, summary="Create a group")
def create_group(
    body: CreateGroupRequest,
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = CreateGroupCommand(acting_user_id=current_user_id, **body.model_dump())
    result = CreateGroupUseCase().execute(cmd, uow)
    return _ok(result, group_id=result.id)


@group_router.patch("/{group_id}", summary="Update a group")
def update_group(
    body: UpdatesRequest,
    group_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateGroupCommand(acting_user_id=current_user_id, group_id=group_id, updates=body.updates)
    return _ok(UpdateGroupUseCase().execute(cmd, uow))


@group_router.get("/{group_id}", summary="Get a group by ID")
def get_group(
    group_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetGroupUseCase().execute(current_user_id, group_id, uow))


@group_router.get("", summary="List groups")
def list_groups(
    limit: Optional[int] = Query(default=None, ge=1),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(ListGroupsUseCase().execute(current_user_id, uow, limit=settings.resolve_limit(limit)))


@group_router.post("/{group_id}/members", summary="Add a user to a group")
def add_user_to_group(
    body: AddMemberRequest,
    group_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AddUserToGroupCommand(acting_user_id=current_user_id, group_id=group_id, user_id=body.user_id)
    return _ok(AddUserToGroupUseCase().execute(cmd, uow))


# ---------------------------------------------------------------------------
# Centers
# ---------------------------------------------------------------------------

center_router = APIRouter(prefix="/centers", tags=["Centers"])


@center_router.post("", status_code=status.HTTP_201_CREATED, summary="Create a relief center")
def create_center(
    body: CreateCenterRequest,
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Also records the center on its group and on each lead's profile.
    """
    cmd = CreateCenterCommand(acting_user_id=current_user_id, **body.model_dump())
    result = CreateCenterUseCase().execute(cmd, uow)
    return _ok(result, center_id=result.id)


@center_router.patch("/{center_id}", summary="Update a relief center")
def update_center(
    body: UpdatesRequest,
    center_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateCenterCommand(acting_user_id=current_user_id, center_id=center_id, updates=body.updates)
    return _ok(UpdateCenterUseCase().execute(cmd, uow))


@center_router.get("/{center_id}", summary="Get a relief center by ID")
def get_center(
    center_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetCenterUseCase().execute(current_user_id, center_id, uow))


@center_router.get("", summary="List relief centers")
def list_centers(
    group_id: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(ListCentersUseCase().execute(
        current_user_id, uow, group_id=group_id, limit=settings.resolve_limit(limit)
    ))


# ---------------------------------------------------------------------------
# Assessments
# ---------------------------------------------------------------------------

assessment_router = APIRouter(prefix="/assessments", tags=["Assessments"])


@assessment_router.post("", status_code=status.HTTP_201_CREATED, summary="Create a damage assessment")
def create_assessment(
    body: CreateAssessmentRequest,
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = CreateAssessmentCommand(acting_user_id=current_user_id, **body.model_dump())
    result = CreateAssessmentUseCase().execute(cmd, uow)
    return _ok(result, assessment_id=result.id)


@assessment_router.patch("/{assessment_id}", summary="Update an assessment")
def update_assessment(
    body: UpdatesRequest,
    assessment_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """Owning assessor or administrator.  `assessor_id` can never be changed."""
    cmd = UpdateAssessmentCommand(
        acting_user_id=current_user_id, assessment_id=assessment_id, updates=body.updates
    )
    return _ok(UpdateAssessmentUseCase().execute(cmd, uow))


@assessment_router.post("/{assessment_id}/reassessments", summary="Reassess an assessment")
def reassess_assessment(
    body: ReassessRequest,
    assessment_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Any assessor may reassess.  Omitting `flag_for_review` clears the flag.
    """
    cmd = ReassessAssessmentCommand(
        acting_user_id=current_user_id,
        assessment_id=assessment_id,
        updates=body.updates,
        flag_for_review=body.flag_for_review,
    )
    return _ok(ReassessAssessmentUseCase().execute(cmd, uow))


@assessment_router.get("/{assessment_id}", summary="Get an assessment by ID")
def get_assessment(
    assessment_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetAssessmentUseCase().execute(current_user_id, assessment_id, uow))


@assessment_router.get("", summary="List assessments, newest first")
def list_assessments(
    center_id: Optional[str] = Query(default=None),
    group_id: Optional[str] = Query(default=None),
    flagged_for_review: Optional[bool] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    q = ListAssessmentsQuery(
        acting_user_id=current_user_id,
        center_id=center_id,
        group_id=group_id,
        flagged_for_review=flagged_for_review,
        limit=settings.resolve_limit(limit),
    )
    return _ok(ListAssessmentsUseCase().execute(q, uow))


# ---------------------------------------------------------------------------
# Workgroups
# ---------------------------------------------------------------------------

workgroup_router = APIRouter(prefix="/workgroups", tags=["Workgroups"])


@workgroup_router.post("", status_code=status.HTTP_201_CREATED, summary="Create a workgroup")
def create_workgroup(
    body: CreateWorkgroupRequest,
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = CreateWorkgroupCommand(acting_user_id=current_user_id, **body.model_dump())
    result = CreateWorkgroupUseCase().execute(cmd, uow)
    return _ok(result, workgroup_id=result.id)


@workgroup_router.patch("/{workgroup_id}", summary="Update a workgroup")
def update_workgroup(
    body: UpdatesRequest,
    workgroup_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateWorkgroupCommand(
        acting_user_id=current_user_id, workgroup_id=workgroup_id, updates=body.updates
    )
    return _ok(UpdateWorkgroupUseCase().execute(cmd, uow))


@workgroup_router.post("/{workgroup_id}/status", summary="Report workgroup task status")
def update_workgroup_status(
    body: WorkgroupStatusRequest,
    workgroup_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Lead, worker or administrator.  The note and photos are appended to the
    workgroup's progress log.
    """
    cmd = UpdateWorkgroupStatusCommand(
        acting_user_id=current_user_id,
        workgroup_id=workgroup_id,
        status=body.status,
        note=body.note,
        photo_urls=body.photo_urls,
    )
    return _ok(UpdateWorkgroupStatusUseCase().execute(cmd, uow))


@workgroup_router.post("/{workgroup_id}/workers", summary="Add a worker to a workgroup")
def add_worker(
    body: AddWorkerRequest,
    workgroup_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AddWorkerCommand(acting_user_id=current_user_id, workgroup_id=workgroup_id, user_id=body.user_id)
    return _ok(AddWorkerUseCase().execute(cmd, uow))


@workgroup_router.get("/{workgroup_id}", summary="Get a workgroup by ID")
def get_workgroup(
    workgroup_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetWorkgroupUseCase().execute(current_user_id, workgroup_id, uow))


@workgroup_router.get("", summary="List workgroups, newest first")
def list_workgroups(
    center_id: Optional[str] = Query(default=None),
    group_id: Optional[str] = Query(default=None),
    assessment_id: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    q = ListWorkgroupsQuery(
        acting_user_id=current_user_id,
        center_id=center_id,
        group_id=group_id,
        assessment_id=assessment_id,
        limit=settings.resolve_limit(limit),
    )
    return _ok(ListWorkgroupsUseCase().execute(q, uow))


# ---------------------------------------------------------------------------
# Escalations
# ---------------------------------------------------------------------------

escalation_router = APIRouter(prefix="/escalations", tags=["Escalations"])


@escalation_router.post("", status_code=status.HTTP_201_CREATED, summary="Raise an escalation")
def create_escalation(
    body: CreateEscalationRequest,
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Also forces the referenced workgroup into `needsEscalation`.
    """
    cmd = CreateEscalationCommand(acting_user_id=current_user_id, **body.model_dump())
    result = CreateEscalationUseCase().execute(cmd, uow)
    return _ok(result, escalation_id=result.id)


@escalation_router.post("/{escalation_id}/status", summary="Change an escalation's status")
def update_escalation_status(
    body: EscalationStatusRequest,
    escalation_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateEscalationStatusCommand(
        acting_user_id=current_user_id,
        escalation_id=escalation_id,
        status=body.status,
        assigned_to=body.assigned_to,
    )
    return _ok(UpdateEscalationStatusUseCase().execute(cmd, uow))


@escalation_router.post("/{escalation_id}/resolve", summary="Resolve an escalation")
def resolve_escalation(
    body: ResolveEscalationRequest,
    escalation_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ResolveEscalationCommand(
        acting_user_id=current_user_id, escalation_id=escalation_id, resolution=body.resolution
    )
    return _ok(ResolveEscalationUseCase().execute(cmd, uow))


@escalation_router.get("/{escalation_id}", summary="Get an escalation by ID")
def get_escalation(
    escalation_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetEscalationUseCase().execute(current_user_id, escalation_id, uow))


@escalation_router.get("", summary="List escalations, newest first")
def list_escalations(
    center_id: Optional[str] = Query(default=None),
    group_id: Optional[str] = Query(default=None),
    workgroup_id: Optional[str] = Query(default=None),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    limit: Optional[int] = Query(default=None, ge=1),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    q = ListEscalationsQuery(
        acting_user_id=current_user_id,
        center_id=center_id,
        group_id=group_id,
        workgroup_id=workgroup_id,
        status=status_filter,
        limit=settings.resolve_limit(limit),
    )
    return _ok(ListEscalationsUseCase().execute(q, uow))


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

message_router = APIRouter(prefix="/messages", tags=["Messages"])


@message_router.post("", status_code=status.HTTP_201_CREATED, summary="Send a message")
def send_message(
    body: SendMessageRequest,
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = SendMessageCommand(acting_user_id=current_user_id, **body.model_dump())
    result = SendMessageUseCase().execute(cmd, uow)
    return _ok(result, message_id=result.id)


@message_router.post("/broadcast", status_code=status.HTTP_201_CREATED,
                     summary="Message a workgroup, center or group")
def send_group_message(
    body: SendGroupMessageRequest,
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = SendGroupMessageCommand(acting_user_id=current_user_id, **body.model_dump())
    result = SendGroupMessageUseCase().execute(cmd, uow)
    return _ok(result, message_id=result.id)


@message_router.get("", summary="Messages on a thread, newest first")
def get_messages(
    thread_id: str = Query(...),
    limit: Optional[int] = Query(default=None, ge=1),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetMessagesUseCase().execute(
        current_user_id, thread_id, uow, limit=settings.resolve_limit(limit)
    ))


# ---------------------------------------------------------------------------
# Legal releases
# ---------------------------------------------------------------------------

release_router = APIRouter(prefix="/legal-releases", tags=["Legal Releases"])


@release_router.post("", status_code=status.HTTP_201_CREATED, summary="Create a legal release")
def create_legal_release(
    body: CreateLegalReleaseRequest,
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = CreateLegalReleaseCommand(acting_user_id=current_user_id, **body.model_dump())
    result = CreateLegalReleaseUseCase().execute(cmd, uow)
    return _ok(result, release_id=result.id)


@release_router.post("/{release_id}/sign", summary="Sign your own legal release")
def sign_legal_release(
    body: SignLegalReleaseRequest,
    release_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = SignLegalReleaseCommand(
        acting_user_id=current_user_id,
        release_id=release_id,
        signature_image_url=body.signature_image_url,
    )
    return _ok(SignLegalReleaseUseCase().execute(cmd, uow))


@release_router.get("/{release_id}", summary="Get a legal release by ID")
def get_legal_release(
    release_id: str = Path(...),
    current_user_id: str = Depends(get_current_user_id),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetLegalReleaseUseCase().execute(current_user_id, release_id, uow))


# ===========================================================================
# REGISTER ROUTERS
# ===========================================================================

api_v1.include_router(user_router)
api_v1.include_router(group_router)
api_v1.include_router(center_router)
api_v1.include_router(assessment_router)
api_v1.include_router(workgroup_router)
api_v1.include_router(escalation_router)
api_v1.include_router(message_router)
api_v1.include_router(release_router)

app.include_router(api_v1)


# ===========================================================================
# HEALTH CHECK
# ===========================================================================

@app.get("/health", tags=["Health"], summary="Service health check")
def health():
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# MCP Server — exposes all API routes as MCP tools
# Accessible at: http://localhost:8000/mcp
# ---------------------------------------------------------------------------
if settings.mcp_enabled:
    mcp = FastApiMCP(app)
    mcp.mount()
