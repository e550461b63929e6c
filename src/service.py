"""
service.py

Service layer for the Faith Responders disaster-relief coordination service.

Responsibilities
----------------
Each service class encapsulates the business rules for its component.
Services receive domain model instances (from model.py) and return either
new, unsaved entities or a per-document change set (field -> value or
field transform) that the caller hands to a repository as one atomic update.
No persistence is handled here.

Services
--------
- IdentityService       – Registration, role approval, profile updates
- GroupService          – Disaster-response efforts and their membership
- CenterService         – Relief sites and their leads
- AssessmentService     – Damage assessments and reassessment
- WorkgroupService      – Crew task status, progress notes, roster
- EscalationService     – Escalation records and status workflow
- MessagingService      – Message composition and recipient resolution
- LegalReleaseService   – Volunteer / property-access releases

Design notes
------------
- `authorize(user, roles)` is the one role gate.  A caller passes when their
  approved `roles` intersect the required set; administrators are never
  implied, so call sites list UserRole.ADMINISTRATOR explicitly.
- Invalid input raises ValueError; a failed role, ownership or membership
  guard raises AccessDenied.
- Update payloads go through `_prepare_changes`, which silently drops
  protected fields, rejects unknown ones and coerces enum values.
"""

from __future__ import annotations

from dataclasses import fields as dataclass_fields
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type

from model import (
    ArrayAppend,
    ArrayUnion,
    Assessment,
    AssessmentSeverity,
    Center,
    CommunicationPreference,
    Escalation,
    EscalationCreated,
    EscalationStatus,
    EscalationType,
    Group,
    Increment,
    LegalRelease,
    Message,
    MessageType,
    ProgressNote,
    ReleaseType,
    RoleApprovalStatus,
    ServerTimestamp,
    User,
    UserRole,
    Workgroup,
    WorkgroupTaskStatus,
    utcnow,
)


class AccessDenied(Exception):
    """Raised when the acting user lacks the role, ownership or membership required."""


# Never writable through a generic update payload.
_ALWAYS_PROTECTED = frozenset({"id", "created_at", "updated_at"})


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def authorize(user: Optional[User], required_roles: Iterable[UserRole]) -> bool:
    """True if the user's approved roles intersect `required_roles`."""
    if user is None:
        return False
    return not set(user.roles).isdisjoint(required_roles)


def _require_role(user: Optional[User], *allowed_roles: UserRole, message: str = "") -> None:
    """Raise AccessDenied if the user does not hold one of the allowed roles."""
    if not authorize(user, allowed_roles):
        raise AccessDenied(
            message
            or f"Requires one of the roles: {[r.value for r in allowed_roles]}."
        )


def _is_admin(user: Optional[User]) -> bool:
    return authorize(user, {UserRole.ADMINISTRATOR})


def _require_fields(values: Dict[str, Any], *names: str) -> None:
    missing = [
        n for n in names
        if values.get(n) is None or (isinstance(values[n], str) and not values[n].strip())
    ]
    if missing:
        raise ValueError(f"Missing required fields: {', '.join(missing)}")


def _coerce_enum(enum_cls, value, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        valid = sorted(m.value for m in enum_cls)
        raise ValueError(f"{field_name} must be one of: {valid}") from None


def _coerce_enum_list(enum_cls, values, field_name: str) -> List:
    if not isinstance(values, (list, tuple)):
        raise ValueError(f"{field_name} must be a list.")
    coerced = []
    for v in values:
        item = _coerce_enum(enum_cls, v, field_name)
        if item not in coerced:
            coerced.append(item)
    return coerced


def _require_str_list(value: Any, field_name: str) -> List[str]:
    if not isinstance(value, (list, tuple)) or not all(
        isinstance(v, str) and v.strip() for v in value
    ):
        raise ValueError(f"{field_name} must be a list of non-empty strings.")
    return list(value)


def _validate_affected_people(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError("affected_people must be a non-negative integer.")
    return value


def _prepare_changes(
    entity_cls: Type,
    updates: Dict[str, Any],
    protected: Iterable[str] = (),
    enum_fields: Optional[Dict[str, Any]] = None,
    enum_list_fields: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Turn a client update payload into a change set.

    Protected fields are dropped without error so identity and audit fields
    cannot be forged; names that are not fields of `entity_cls` are rejected.
    Other list fields must hold plain string ids or urls.
    """
    if not isinstance(updates, dict):
        raise ValueError("updates must be an object.")
    entity_fields = dataclass_fields(entity_cls)
    known = {f.name for f in entity_fields}
    list_fields = {f.name for f in entity_fields if f.default_factory is list}
    dropped = _ALWAYS_PROTECTED.union(protected)
    enum_fields = enum_fields or {}
    enum_list_fields = enum_list_fields or {}

    changes: Dict[str, Any] = {}
    unknown = []
    for name, value in updates.items():
        if name in dropped:
            continue
        if name not in known:
            unknown.append(name)
            continue
        if name in enum_fields:
            value = _coerce_enum(enum_fields[name], value, name)
        elif name in enum_list_fields:
            value = _coerce_enum_list(enum_list_fields[name], value, name)
        elif name in list_fields:
            value = _require_str_list(value, name)
        changes[name] = value
    if unknown:
        raise ValueError(f"Unknown fields: {', '.join(sorted(unknown))}")

    changes["updated_at"] = ServerTimestamp()
    return changes


# ---------------------------------------------------------------------------
# IdentityService
# ---------------------------------------------------------------------------

class IdentityService:
    """
    Maps authenticated principals to profiles and approved roles.
    """

    PROFILE_PROTECTED = (
        "roles",
        "role_approval_status",
        "group_ids",
        "center_ids",
        "legal_release_id",
        "legal_release_signed",
    )

    def register_user(
        self,
        principal_id: str,
        email: str,
        phone_number: str,
        communication_preference: str,
        requested_roles: List[str],
    ) -> User:
        """Create and return a new User (unsaved) with no approved roles."""
        _require_fields(
            {
                "email": email,
                "phone_number": phone_number,
                "communication_preference": communication_preference,
                "requested_roles": requested_roles,
            },
            "email", "phone_number", "communication_preference", "requested_roles",
        )
        now = utcnow()
        return User(
            id=principal_id,
            email=email,
            phone_number=phone_number,
            communication_preference=_coerce_enum(
                CommunicationPreference, communication_preference, "communication_preference"
            ),
            roles=[],
            requested_roles=_coerce_enum_list(UserRole, requested_roles, "requested_roles"),
            role_approval_status=RoleApprovalStatus.PENDING,
            legal_release_signed=False,
            created_at=now,
            updated_at=now,
        )

    def require_administrator(self, actor: Optional[User], action: str) -> None:
        _require_role(
            actor, UserRole.ADMINISTRATOR,
            message=f"Only administrators can {action}.",
        )

    def role_approval_changes(
        self,
        user: User,
        approve: bool,
        roles: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Approving grants `roles` if given, otherwise the user's own requested
        roles; an explicit empty list grants none.  Rejecting only flips the
        status; approved roles stay as they are.
        """
        if not approve:
            return {
                "role_approval_status": RoleApprovalStatus.REJECTED,
                "updated_at": ServerTimestamp(),
            }
        granted = (
            _coerce_enum_list(UserRole, roles, "roles")
            if roles is not None
            else list(user.requested_roles)
        )
        return {
            "roles": granted,
            "role_approval_status": RoleApprovalStatus.APPROVED,
            "updated_at": ServerTimestamp(),
        }

    def require_self_or_admin(self, actor_id: str, actor: Optional[User], user_id: str) -> None:
        if actor_id != user_id and not _is_admin(actor):
            raise AccessDenied("Permission denied.")

    def profile_changes(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        return _prepare_changes(
            User,
            updates,
            protected=self.PROFILE_PROTECTED,
            enum_fields={"communication_preference": CommunicationPreference},
            enum_list_fields={"requested_roles": UserRole},
        )


# ---------------------------------------------------------------------------
# GroupService
# ---------------------------------------------------------------------------

class GroupService:
    """Administrator-managed disaster-response efforts."""

    def create_group(
        self,
        actor: Optional[User],
        name: str,
        event_type: str,
        description: str = "",
        user_ids: Optional[List[str]] = None,
        center_ids: Optional[List[str]] = None,
    ) -> Group:
        _require_fields({"name": name, "event_type": event_type}, "name", "event_type")
        _require_role(actor, UserRole.ADMINISTRATOR,
                      message="Only administrators can perform this action.")
        now = utcnow()
        return Group(
            name=name,
            event_type=event_type,
            description=description or "",
            user_ids=list(dict.fromkeys(user_ids or [])),
            center_ids=list(dict.fromkeys(center_ids or [])),
            created_by=actor.id,
            created_at=now,
            updated_at=now,
        )

    def update_changes(self, actor: Optional[User], updates: Dict[str, Any]) -> Dict[str, Any]:
        _require_role(actor, UserRole.ADMINISTRATOR,
                      message="Only administrators can perform this action.")
        return _prepare_changes(Group, updates, protected=("created_by",))

    def member_link_changes(self, group: Group) -> Dict[str, Any]:
        return {"group_ids": ArrayUnion(group.id), "updated_at": ServerTimestamp()}

    def membership_changes(
        self, actor: Optional[User], group_id: str, user_id: str
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Return the (group, user) change sets that link a user to a group."""
        _require_role(actor, UserRole.ADMINISTRATOR,
                      message="Only administrators can perform this action.")
        return (
            {"user_ids": ArrayUnion(user_id), "updated_at": ServerTimestamp()},
            {"group_ids": ArrayUnion(group_id), "updated_at": ServerTimestamp()},
        )


# ---------------------------------------------------------------------------
# CenterService
# ---------------------------------------------------------------------------

class CenterService:
    """Relief sites within a group."""

    def create_center(
        self,
        actor: Optional[User],
        name: str,
        address: str,
        group_id: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        lead_user_ids: Optional[List[str]] = None,
    ) -> Center:
        _require_fields(
            {"name": name, "address": address, "group_id": group_id},
            "name", "address", "group_id",
        )
        _require_role(actor, UserRole.ADMINISTRATOR,
                      message="Only administrators can perform this action.")
        now = utcnow()
        return Center(
            name=name,
            address=address,
            latitude=latitude,
            longitude=longitude,
            group_id=group_id,
            lead_user_ids=list(dict.fromkeys(lead_user_ids or [])),
            created_by=actor.id,
            created_at=now,
            updated_at=now,
        )

    def update_changes(self, actor: Optional[User], updates: Dict[str, Any]) -> Dict[str, Any]:
        _require_role(actor, UserRole.ADMINISTRATOR,
                      message="Only administrators can perform this action.")
        return _prepare_changes(Center, updates, protected=("created_by",))

    def group_link_changes(self, center: Center) -> Dict[str, Any]:
        return {"center_ids": ArrayUnion(center.id), "updated_at": ServerTimestamp()}

    def lead_link_changes(self, center: Center) -> Dict[str, Any]:
        return {"center_ids": ArrayUnion(center.id), "updated_at": ServerTimestamp()}


# ---------------------------------------------------------------------------
# AssessmentService
# ---------------------------------------------------------------------------

class AssessmentService:
    """
    Damage assessments.  There is no status machine, only the monotonic
    reassessment counter and the review flag.
    """

    UPDATE_PROTECTED = ("assessor_id", "reassessment_count")
    REQUIRED = (
        "place_name", "address", "center_id", "group_id",
        "damages", "needs", "affected_people", "severity",
    )

    def create_assessment(self, actor: Optional[User], values: Dict[str, Any]) -> Assessment:
        """Create and return a new Assessment (unsaved) owned by `actor`."""
        _require_fields(values, *self.REQUIRED)
        affected_people = _validate_affected_people(values["affected_people"])
        severity = _coerce_enum(AssessmentSeverity, values["severity"], "severity")
        _require_role(actor, UserRole.ASSESSOR,
                      message="Only assessors can perform this action.")
        now = utcnow()
        return Assessment(
            place_name=values["place_name"],
            address=values["address"],
            latitude=values.get("latitude"),
            longitude=values.get("longitude"),
            assessor_id=actor.id,
            center_id=values["center_id"],
            group_id=values["group_id"],
            damages=values["damages"],
            needs=values["needs"],
            affected_people=affected_people,
            severity=severity,
            photo_urls=list(values.get("photo_urls") or []),
            legal_release_url=values.get("legal_release_url"),
            reassessment_count=0,
            flagged_for_review=False,
            created_at=now,
            updated_at=now,
        )

    def _changes(self, updates: Dict[str, Any], protected: Iterable[str]) -> Dict[str, Any]:
        changes = _prepare_changes(
            Assessment, updates,
            protected=protected,
            enum_fields={"severity": AssessmentSeverity},
        )
        if "affected_people" in changes:
            _validate_affected_people(changes["affected_people"])
        return changes

    def update_changes(
        self,
        actor: Optional[User],
        assessment: Assessment,
        updates: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Administrators, or the assessor who owns the assessment."""
        is_owner = actor is not None and assessment.assessor_id == actor.id
        if not _is_admin(actor) and not (authorize(actor, {UserRole.ASSESSOR}) and is_owner):
            raise AccessDenied("Permission denied.")
        return self._changes(updates, self.UPDATE_PROTECTED)

    def reassessment_changes(
        self,
        actor: Optional[User],
        updates: Dict[str, Any],
        flag_for_review: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Any assessor may reassess any assessment; ownership is not checked.
        The review flag is overwritten, so omitting it clears a prior flag.
        """
        _require_role(actor, UserRole.ASSESSOR,
                      message="Only assessors can perform this action.")
        changes = self._changes(
            updates, self.UPDATE_PROTECTED + ("flagged_for_review",)
        )
        changes["reassessment_count"] = Increment(1)
        changes["flagged_for_review"] = bool(flag_for_review)
        return changes


# ---------------------------------------------------------------------------
# WorkgroupService
# ---------------------------------------------------------------------------

class WorkgroupService:
    """
    Crews remediating an assessment.

    Task status moves notStarted → inProgress → {partiallyCompleted,
    completed, needsEscalation}, but any status may be set at any time:
    `completed` is terminal only in the UI, and `needsEscalation` may be
    cleared by a manual status update.
    """

    REQUIRED = (
        "name", "center_id", "group_id", "lead_user_id",
        "assessment_id", "task_description",
    )
    # progress_notes and photo_urls only grow through status_changes
    UPDATE_PROTECTED = ("created_by", "progress_notes", "photo_urls")

    def create_workgroup(self, actor: Optional[User], values: Dict[str, Any]) -> Workgroup:
        _require_fields(values, *self.REQUIRED)
        worker_ids = _require_str_list(values.get("worker_user_ids") or [], "worker_user_ids")
        _require_role(
            actor, UserRole.WORK_GROUP_LEAD, UserRole.ADMINISTRATOR,
            message="Only work group leads or administrators can perform this action.",
        )
        now = utcnow()
        return Workgroup(
            name=values["name"],
            center_id=values["center_id"],
            group_id=values["group_id"],
            lead_user_id=values["lead_user_id"],
            worker_user_ids=list(dict.fromkeys(worker_ids)),
            assessment_id=values["assessment_id"],
            task_description=values["task_description"],
            task_status=WorkgroupTaskStatus.NOT_STARTED,
            progress_notes=[],
            photo_urls=[],
            created_by=actor.id,
            created_at=now,
            updated_at=now,
        )

    def require_member_or_admin(
        self, actor_id: str, actor: Optional[User], workgroup: Workgroup
    ) -> None:
        if not _is_admin(actor) and not workgroup.is_member(actor_id):
            raise AccessDenied("Permission denied.")

    def update_changes(
        self,
        actor_id: str,
        actor: Optional[User],
        workgroup: Workgroup,
        updates: Dict[str, Any],
    ) -> Dict[str, Any]:
        self.require_member_or_admin(actor_id, actor, workgroup)
        return _prepare_changes(
            Workgroup, updates,
            protected=self.UPDATE_PROTECTED,
            enum_fields={"task_status": WorkgroupTaskStatus},
        )

    def status_changes(
        self,
        actor_id: str,
        actor: Optional[User],
        workgroup: Workgroup,
        status: str,
        note: Optional[str] = None,
        photo_urls: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Overwrite the task status; the note and photos are appended, never
        replacing what is already recorded.
        """
        self.require_member_or_admin(actor_id, actor, workgroup)
        changes: Dict[str, Any] = {
            "task_status": _coerce_enum(WorkgroupTaskStatus, status, "status"),
            "updated_at": ServerTimestamp(),
        }
        if note:
            changes["progress_notes"] = ArrayAppend(
                ProgressNote(note=note, user_id=actor_id, timestamp=utcnow())
            )
        if photo_urls:
            changes["photo_urls"] = ArrayAppend(*photo_urls)
        return changes

    def add_worker_changes(
        self,
        actor_id: str,
        actor: Optional[User],
        workgroup: Workgroup,
        user_id: str,
    ) -> Dict[str, Any]:
        if not _is_admin(actor) and actor_id != workgroup.lead_user_id:
            raise AccessDenied("Only work group leads or administrators can add workers.")
        return {"worker_user_ids": ArrayUnion(user_id), "updated_at": ServerTimestamp()}

    def escalation_changes(self, event: EscalationCreated) -> Dict[str, Any]:
        """Applied for every EscalationCreated, whatever the current status."""
        return {
            "task_status": WorkgroupTaskStatus.NEEDS_ESCALATION,
            "updated_at": ServerTimestamp(),
        }


# ---------------------------------------------------------------------------
# EscalationService
# ---------------------------------------------------------------------------

class EscalationService:
    """
    Escalations raised against a workgroup.  Status changes are role-gated
    only: any lead may move any escalation to any status.
    """

    REQUIRED = ("workgroup_id", "center_id", "group_id", "type", "reason")

    def create_escalation(
        self, actor: Optional[User], values: Dict[str, Any]
    ) -> Tuple[Escalation, EscalationCreated]:
        """Return the new escalation (unsaved) and the event to dispatch once it is stored."""
        _require_fields(values, *self.REQUIRED)
        escalation_type = _coerce_enum(EscalationType, values["type"], "type")
        _require_role(
            actor, UserRole.WORK_GROUP_LEAD, UserRole.ASSESSOR,
            message="Only work group leads or assessors can create escalations.",
        )
        now = utcnow()
        escalation = Escalation(
            workgroup_id=values["workgroup_id"],
            assessment_id=values.get("assessment_id"),
            center_id=values["center_id"],
            group_id=values["group_id"],
            type=escalation_type,
            status=EscalationStatus.PENDING,
            reason=values["reason"],
            created_by=actor.id,
            created_at=now,
            updated_at=now,
        )
        event = EscalationCreated(
            escalation_id=escalation.id,
            workgroup_id=escalation.workgroup_id,
            raised_by=actor.id,
        )
        return escalation, event

    def _require_manager(self, actor: Optional[User]) -> None:
        _require_role(actor, UserRole.ADMINISTRATOR, UserRole.WORK_GROUP_LEAD,
                      message="Permission denied.")

    def status_changes(
        self,
        actor: Optional[User],
        status: str,
        assigned_to: Optional[str] = None,
    ) -> Dict[str, Any]:
        self._require_manager(actor)
        changes: Dict[str, Any] = {
            "status": _coerce_enum(EscalationStatus, status, "status"),
            "updated_at": ServerTimestamp(),
        }
        if assigned_to:
            changes["assigned_to"] = assigned_to
        return changes

    def resolution_changes(self, actor: Optional[User], resolution: str) -> Dict[str, Any]:
        """Resolve the escalation.  The linked workgroup keeps its status."""
        self._require_manager(actor)
        return {
            "status": EscalationStatus.RESOLVED,
            "resolution": resolution,
            "resolved_at": ServerTimestamp(),
            "updated_at": ServerTimestamp(),
        }


# ---------------------------------------------------------------------------
# MessagingService
# ---------------------------------------------------------------------------

class MessagingService:

    def compose(
        self,
        sender_id: str,
        thread_id: str,
        recipient_ids: List[str],
        content: str,
        type: str,
        group_id: Optional[str] = None,
        center_id: Optional[str] = None,
        workgroup_id: Optional[str] = None,
    ) -> Message:
        _require_fields(
            {"thread_id": thread_id, "recipient_ids": recipient_ids,
             "content": content, "type": type},
            "thread_id", "recipient_ids", "content", "type",
        )
        return Message(
            thread_id=thread_id,
            sender_id=sender_id,
            recipient_ids=list(recipient_ids),
            content=content,
            type=_coerce_enum(MessageType, type, "type"),
            group_id=group_id,
            center_id=center_id,
            workgroup_id=workgroup_id,
            created_at=utcnow(),
        )

    def resolve_recipients(
        self,
        workgroup: Optional[Workgroup] = None,
        center: Optional[Center] = None,
        group: Optional[Group] = None,
    ) -> List[str]:
        """
        Recipients of the most specific target supplied: a workgroup's lead
        and workers, a center's leads, or a group's members.
        """
        if workgroup is not None:
            ids = [workgroup.lead_user_id, *workgroup.worker_user_ids]
        elif center is not None:
            ids = list(center.lead_user_ids)
        elif group is not None:
            ids = list(group.user_ids)
        else:
            ids = []
        return [i for i in dict.fromkeys(ids) if i]


# ---------------------------------------------------------------------------
# LegalReleaseService
# ---------------------------------------------------------------------------

class LegalReleaseService:

    def create_release(
        self,
        actor_id: str,
        actor: Optional[User],
        user_id: str,
        release_type: str,
        document_url: Optional[str] = None,
        signature_image_url: Optional[str] = None,
        signed_digitally: bool = False,
        assessment_id: Optional[str] = None,
    ) -> LegalRelease:
        """Users create their own releases; administrators may create one for anyone."""
        _require_fields({"user_id": user_id, "release_type": release_type},
                        "user_id", "release_type")
        kind = _coerce_enum(ReleaseType, release_type, "release_type")
        if actor_id != user_id and not _is_admin(actor):
            raise AccessDenied("Permission denied.")
        now = utcnow()
        return LegalRelease(
            user_id=user_id,
            release_type=kind,
            document_url=document_url,
            signature_image_url=signature_image_url,
            signed_digitally=bool(signed_digitally),
            assessment_id=assessment_id,
            created_at=now,
            updated_at=now,
        )

    def user_link_changes(self, release: LegalRelease) -> Optional[Dict[str, Any]]:
        """Only a volunteer waiver is tracked on the user profile."""
        if release.release_type != ReleaseType.VOLUNTEER:
            return None
        return {
            "legal_release_id": release.id,
            "legal_release_signed": False,
            "updated_at": ServerTimestamp(),
        }

    def sign_changes(
        self,
        actor_id: str,
        release: LegalRelease,
        signature_image_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        if release.user_id != actor_id:
            raise AccessDenied("Can only sign your own releases.")
        return {
            "signed_digitally": True,
            "signed_at": ServerTimestamp(),
            "signature_image_url": signature_image_url or release.signature_image_url,
            "updated_at": ServerTimestamp(),
        }

    def user_signed_changes(self, release: LegalRelease) -> Optional[Dict[str, Any]]:
        if release.release_type != ReleaseType.VOLUNTEER:
            return None
        return {"legal_release_signed": True, "updated_at": ServerTimestamp()}

    def require_can_view(self, actor_id: str, actor: Optional[User], release: LegalRelease) -> None:
        if release.user_id != actor_id and not _is_admin(actor):
            raise AccessDenied("Permission denied.")
