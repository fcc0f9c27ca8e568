"""
Assignment targets for the manual override path.

A payment is assigned to exactly one of:
- MemberTarget: linked to a member, identification becomes the member's VS
- ProjectTarget: linked to a project, identification becomes one of its identifiers
- Unassigned: both links cleared, identification set explicitly
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from reconciliation.errors import InvalidAssignment


class AssignType(str, Enum):
    MEMBER = "member"
    PROJECT = "project"
    UNASSIGNED = "unassigned"


# Legacy names accepted from older admin clients
_ASSIGN_TYPE_ALIASES = {
    "user": AssignType.MEMBER,
    "unmatched": AssignType.UNASSIGNED,
    "": AssignType.UNASSIGNED,
}


@dataclass(frozen=True)
class MemberTarget:
    member_id: int


@dataclass(frozen=True)
class ProjectTarget:
    project_id: int


@dataclass(frozen=True)
class Unassigned:
    identification: str = ""


AssignmentTarget = Union[MemberTarget, ProjectTarget, Unassigned]


def parse_assign_type(value: Optional[str]) -> AssignType:
    value = (value or "").strip().lower()
    if value in _ASSIGN_TYPE_ALIASES:
        return _ASSIGN_TYPE_ALIASES[value]
    try:
        return AssignType(value)
    except ValueError:
        raise InvalidAssignment(f"Unknown assign_type: {value!r}")


def build_target(
    assign_type: Optional[str],
    member_id: Optional[int] = None,
    project_id: Optional[int] = None,
    identification: str = "",
) -> AssignmentTarget:
    """
    Build the target from the flat request fields.

    Raises:
        InvalidAssignment: Unknown type or missing id for the chosen type
    """
    kind = parse_assign_type(assign_type)

    if kind == AssignType.MEMBER:
        if member_id is None:
            raise InvalidAssignment("member_id required")
        return MemberTarget(member_id=member_id)

    if kind == AssignType.PROJECT:
        if project_id is None:
            raise InvalidAssignment("project_id required")
        return ProjectTarget(project_id=project_id)

    return Unassigned(identification=(identification or "").strip())
