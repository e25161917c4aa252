"""
Pydantic schemas for permission and role management.
"""
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict

from app.core import config
from app.features.access.catalog import Resource, Scope


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionResponse(BaseModel):
    """Schema for permission response."""
    id: str
    key: str
    resource: str
    action: str
    name: str
    category: str
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Role Schemas
# ============================================================================

class RoleBase(BaseModel):
    """Base role schema."""
    name: str = Field(
        ..., min_length=1, max_length=config.ROLE_NAME_MAX_LENGTH, description="Role name, unique in the organization"
    )
    description: Optional[str] = Field(None, max_length=500, description="Role description")


class RoleCreate(RoleBase):
    """Schema for creating a new role."""
    permission_ids: List[str] = Field(default_factory=list, description="Permission IDs granted by the role")
    scopes: Dict[Resource, Scope] = Field(default_factory=dict, description="Scope per resource")


class RoleUpdate(BaseModel):
    """Schema for updating a role. Omitted fields are left unchanged."""
    name: Optional[str] = Field(None, min_length=1, max_length=config.ROLE_NAME_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=500)
    permission_ids: Optional[List[str]] = Field(None, description="Replaces the role's permission set")
    scopes: Optional[Dict[Resource, Scope]] = Field(None, description="Replaces the role's scope map")


class RoleResponse(BaseModel):
    """Schema for role response."""
    id: str
    name: str
    description: Optional[str]
    organization_id: Optional[str]
    is_system_role: bool
    permissions: List[PermissionResponse] = []
    scopes: Dict[str, str] = {}
    member_count: int = 0
    created_at: datetime
    updated_at: datetime


class RoleListResponse(BaseModel):
    """Schema for paginated role list."""
    items: List[RoleResponse]
    total: int
    page: int
    page_size: int
    pages: int
