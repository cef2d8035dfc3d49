from app.platform.security.assignment import (
    AssignmentOutcome,
    AssignmentPolicy,
    BulkAssignmentResult,
    BulkItemResult,
    assignment_policy,
)
from app.platform.security.context import MANAGERIAL_ROLES, Principal, Role
from app.platform.security.errors import PermissionDeniedError, PolicyError, RecordNotFoundError
from app.platform.security.hierarchy import TeamHierarchyResolver, get_team_member_ids, team_hierarchy_resolver
from app.platform.security.repository import BaseRepository
from app.platform.security.visibility import (
    ResourceDescriptor,
    VisibilityScope,
    apply_visibility_filter,
    filter_visible,
    resolve_scope,
    unassigned_is_visible,
)

__all__ = [
    "AssignmentOutcome",
    "AssignmentPolicy",
    "BulkAssignmentResult",
    "BulkItemResult",
    "assignment_policy",
    "MANAGERIAL_ROLES",
    "Principal",
    "Role",
    "PermissionDeniedError",
    "PolicyError",
    "RecordNotFoundError",
    "TeamHierarchyResolver",
    "get_team_member_ids",
    "team_hierarchy_resolver",
    "BaseRepository",
    "ResourceDescriptor",
    "VisibilityScope",
    "apply_visibility_filter",
    "filter_visible",
    "resolve_scope",
    "unassigned_is_visible",
]
