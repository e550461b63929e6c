"""
model.py

Domain models for the Faith Responders disaster-relief coordination service.

Entities
--------
- User
- Group
- Center
- Assessment
- Workgroup (with embedded ProgressNote entries)
- Escalation
- Message
- LegalRelease

Domain events
-------------
- EscalationCreated

Field transforms
----------------
- Increment, ArrayUnion, ArrayAppend, ServerTimestamp

All models use Python dataclasses for clean, framework-agnostic definitions.
Identifiers are opaque strings: server-generated for every entity except
User, whose id is the authenticated principal id.
Timestamps are always stored in UTC.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional, Tuple


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class UserRole(str, Enum):
    """Roles an administrator may grant to a registered user."""
    ADMINISTRATOR = "administrator"
    ASSESSOR = "assessor"
    WORK_GROUP_LEAD = "workGroupLead"
    WORKER = "worker"
    THIRD_PARTY = "thirdParty"


class RoleApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CommunicationPreference(str, Enum):
    EMAIL = "email"
    SMS = "sms"


class AssessmentSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class WorkgroupTaskStatus(str, Enum):
    """
    Task status of a workgroup.

    NOT_STARTED        – Initial status on creation.
    IN_PROGRESS        – Crew is on site.
    PARTIALLY_COMPLETED
    COMPLETED          – Terminal for display purposes only; the server
                         accepts any later status.
    NEEDS_ESCALATION   – Forced whenever an escalation is raised against
                         the workgroup.
    """
    NOT_STARTED = "notStarted"
    IN_PROGRESS = "inProgress"
    PARTIALLY_COMPLETED = "partiallyCompleted"
    COMPLETED = "completed"
    NEEDS_ESCALATION = "needsEscalation"


class EscalationType(str, Enum):
    ASSESSOR = "assessor"
    ADMINISTRATIVE = "administrative"
    THIRD_PARTY = "thirdParty"


class EscalationStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "inProgress"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class MessageType(str, Enum):
    SMS = "sms"
    EMAIL = "email"
    IN_APP = "inApp"


class ReleaseType(str, Enum):
    VOLUNTEER = "volunteer"
    PROPERTY_ACCESS = "propertyAccess"


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@dataclass
class User:
    """
    A registered volunteer or church representative.

    `roles` is authoritative for every authorization decision;
    `requested_roles` only records what the user asked for at registration
    and is never consulted by a role gate.
    """
    id: str = field(default_factory=new_id)     # principal id from the auth provider
    email: str = ""
    phone_number: str = ""
    communication_preference: CommunicationPreference = CommunicationPreference.EMAIL

    roles: List[UserRole] = field(default_factory=list)
    requested_roles: List[UserRole] = field(default_factory=list)
    role_approval_status: RoleApprovalStatus = RoleApprovalStatus.PENDING

    # Denormalised membership, maintained by group / center operations
    group_ids: List[str] = field(default_factory=list)
    center_ids: List[str] = field(default_factory=list)

    legal_release_id: Optional[str] = None
    legal_release_signed: bool = False

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Response effort structure
# ---------------------------------------------------------------------------


@dataclass
class Group:
    """A named disaster-response effort (e.g. a storm or flood deployment)."""
    id: str = field(default_factory=new_id)
    name: str = ""
    event_type: str = ""        # e.g. "storm", "flood", "conference"
    description: str = ""
    user_ids: List[str] = field(default_factory=list)
    center_ids: List[str] = field(default_factory=list)
    created_by: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Center:
    """
    A physical relief site belonging to exactly one Group.

    Its id is copied into the parent Group's `center_ids` and into each
    lead's `center_ids` when the center is created.
    """
    id: str = field(default_factory=new_id)
    name: str = ""
    address: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    group_id: str = ""          # FK → Group.id
    lead_user_ids: List[str] = field(default_factory=list)
    created_by: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Field work
# ---------------------------------------------------------------------------


@dataclass
class Assessment:
    """
    A damage report for one place, owned by the assessor who created it.

    `reassessment_count` only ever moves through the reassessment operation,
    one atomic increment per call.
    """
    id: str = field(default_factory=new_id)
    place_name: str = ""
    address: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    assessor_id: str = ""       # FK → User.id; never client-overridable
    center_id: str = ""
    group_id: str = ""
    damages: str = ""
    needs: str = ""
    affected_people: int = 0
    severity: AssessmentSeverity = AssessmentSeverity.LOW
    photo_urls: List[str] = field(default_factory=list)
    legal_release_url: Optional[str] = None
    reassessment_count: int = 0
    flagged_for_review: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ProgressNote:
    """An immutable, attributed entry in a workgroup's progress log."""
    note: str
    user_id: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class Workgroup:
    """A crew (lead + workers) remediating one Assessment."""
    id: str = field(default_factory=new_id)
    name: str = ""
    center_id: str = ""
    group_id: str = ""
    lead_user_id: str = ""
    worker_user_ids: List[str] = field(default_factory=list)
    assessment_id: str = ""     # FK → Assessment.id
    task_description: str = ""
    task_status: WorkgroupTaskStatus = WorkgroupTaskStatus.NOT_STARTED
    progress_notes: List[ProgressNote] = field(default_factory=list)    # append-only
    photo_urls: List[str] = field(default_factory=list)                 # append-only
    created_by: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def is_member(self, user_id: str) -> bool:
        return user_id == self.lead_user_id or user_id in self.worker_user_ids


@dataclass
class Escalation:
    """A problem a workgroup cannot resolve on its own."""
    id: str = field(default_factory=new_id)
    workgroup_id: str = ""      # FK → Workgroup.id (mandatory)
    assessment_id: Optional[str] = None
    center_id: str = ""
    group_id: str = ""
    type: EscalationType = EscalationType.ADMINISTRATIVE
    status: EscalationStatus = EscalationStatus.PENDING
    reason: str = ""
    created_by: str = ""
    assigned_to: Optional[str] = None
    resolution: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Communication & paperwork
# ---------------------------------------------------------------------------


@dataclass
class Message:
    id: str = field(default_factory=new_id)
    thread_id: str = ""
    sender_id: str = ""
    recipient_ids: List[str] = field(default_factory=list)
    content: str = ""
    type: MessageType = MessageType.IN_APP
    group_id: Optional[str] = None
    center_id: Optional[str] = None
    workgroup_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class LegalRelease:
    """A volunteer waiver or property-access release signed by a user."""
    id: str = field(default_factory=new_id)
    user_id: str = ""
    release_type: ReleaseType = ReleaseType.VOLUNTEER
    document_url: Optional[str] = None
    signature_image_url: Optional[str] = None
    signed_digitally: bool = False
    signed_at: Optional[datetime] = None
    assessment_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Domain events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EscalationCreated:
    """Raised after an escalation is stored; its workgroup must be escalated."""
    escalation_id: str
    workgroup_id: str
    raised_by: str
    occurred_at: datetime = field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Field transforms
#
# Values that a document store resolves against the stored value inside a
# single per-document update, so read-modify-write races cannot lose data.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Increment:
    amount: int = 1


@dataclass(frozen=True)
class ArrayUnion:
    """Append each value not already present."""
    values: Tuple[Any, ...]

    def __init__(self, *values: Any):
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class ArrayAppend:
    """Append every value, duplicates included."""
    values: Tuple[Any, ...]

    def __init__(self, *values: Any):
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class ServerTimestamp:
    """Resolves to the store clock, never earlier than the stored value."""
