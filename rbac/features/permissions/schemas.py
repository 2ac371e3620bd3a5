"""
Pydantic schemas for access management.

Request and response models for roles, permissions, principal access and audit logs.
"""
from datetime import datetime
from typing import Dict, Any, List, Literal, Optional
from pydantic import BaseModel, Field, ConfigDict


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionResponse(BaseModel):
    """Schema for permission response."""
    id: str
    name: str
    display_name: str
    resource: str
    action: str

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Role Schemas
# ============================================================================

class RoleResponse(BaseModel):
    """Schema for role response."""
    id: str
    name: str
    display_name: str

    model_config = ConfigDict(from_attributes=True)


class RoleSummary(RoleResponse):
    """Role with the number of permissions it grants."""
    permissions_count: int = 0


class MatrixPermission(BaseModel):
    """One cell of the role permission editor."""
    id: str
    name: str
    display_name: str
    action: str
    assigned: bool = False


class ResourcePermissions(BaseModel):
    """Permissions sharing a resource prefix."""
    resource: str
    permissions: List[MatrixPermission] = []


class RolePermissionMatrix(BaseModel):
    """Every permission grouped by resource, flagged for one role."""
    role: RoleResponse
    resources: List[ResourcePermissions] = []


class RoleWithPermissionIds(RoleResponse):
    """Role with the ids of the permissions it grants."""
    permission_ids: List[str] = []


# ============================================================================
# Principal Schemas
# ============================================================================

class PrincipalSummary(BaseModel):
    """Row of the principal listing."""
    id: str
    email: str
    name: Optional[str] = None
    is_active: bool = True
    roles: List[str] = Field(default_factory=list, description="Display names of the principal's roles")
    direct_permissions_count: int = 0
    created_at: Optional[datetime] = None


class PrincipalPage(BaseModel):
    """Schema for paginated principal list."""
    items: List[PrincipalSummary]
    total: int
    page: int
    page_size: int
    pages: int


class PrincipalAccess(BaseModel):
    """Everything needed to edit one principal's access."""
    principal_id: str
    roles: List[RoleWithPermissionIds] = []
    permissions: List[PermissionResponse] = []
    role_ids: List[str] = []
    direct_permission_ids: List[str] = []


# ============================================================================
# Assignment Schemas
# ============================================================================

class RoleAssignment(BaseModel):
    """Schema for granting or revoking one role."""
    role: str = Field(..., min_length=1, max_length=50, description="Role name")


class PermissionAssignment(BaseModel):
    """Schema for granting or revoking one direct permission."""
    permission: str = Field(..., min_length=1, max_length=100, description="Permission name")


class SyncRolesRequest(BaseModel):
    """Replace the roles of a principal. An empty list removes every role."""
    roles: List[str] = []


class SyncPermissionsRequest(BaseModel):
    """Replace a set of permissions. An empty list removes every permission."""
    permissions: List[str] = []


class MutationResponse(BaseModel):
    """Outcome of an access change."""
    kind: str
    subject_id: str
    applied: List[str] = []
    previous: List[str] = []
    attached: List[str] = []
    detached: List[str] = []
    absorbed: List[str] = Field(default_factory=list, description="Direct permissions dropped or skipped because a role grants them")
    detached_permissions: List[str] = []
    changed: bool = False

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Access Check Schemas
# ============================================================================

class AccessCheckRequest(BaseModel):
    """Schema for checking roles and permissions of a principal."""
    principal_id: Optional[str] = Field(None, description="Principal to check (current user if not provided)")
    permissions: List[str] = []
    roles: List[str] = []
    mode: Literal["any", "all"] = "all"


class AccessCheckResponse(BaseModel):
    """Schema for access check response."""
    principal_id: str
    allowed: bool
    permissions: Dict[str, bool] = {}
    roles: Dict[str, bool] = {}


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    actor_id: Optional[str]
    subject_id: str
    action: str
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
