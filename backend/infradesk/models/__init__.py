from .auth import Role, User, SessionToken
from .projects import Project, ProjectMember, Phase, ResourceTemplate, Resource, MAX_APPROVAL_LEVELS
from .requests import (
    RequestStatus,
    ApprovalStatus,
    ResourceRequest,
    ApprovalRecord,
    OPEN_STATUSES,
    GRANTED_STATUSES,
)

__all__ = [
    'Role', 'User', 'SessionToken',
    'Project', 'ProjectMember', 'Phase', 'ResourceTemplate', 'Resource', 'MAX_APPROVAL_LEVELS',
    'RequestStatus', 'ApprovalStatus', 'ResourceRequest', 'ApprovalRecord',
    'OPEN_STATUSES', 'GRANTED_STATUSES',
]
