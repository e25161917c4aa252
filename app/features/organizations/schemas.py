"""
Pydantic schemas for organization membership.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class MemberCreate(BaseModel):
    """Schema for adding a user to the organization."""
    user_id: str = Field(..., description="User ID")
    role_id: str = Field(..., description="Role ID")
    project_ids: List[str] = Field(default_factory=list, description="Projects to grant access to")


class MemberUpdate(BaseModel):
    """Schema for changing a member's role."""
    role_id: str = Field(..., description="Role ID")


class MemberResponse(BaseModel):
    """Schema for member response."""
    id: str
    organization_id: str
    user_id: str
    role_id: str
    role_name: str
    project_ids: List[str] = []
    created_at: datetime


class ProjectAccessUpdate(BaseModel):
    """Schema replacing a member's project access list."""
    project_ids: List[str] = Field(default_factory=list)


class ProjectAccessGrant(BaseModel):
    """Schema for granting access to one project."""
    project_id: str


class ProjectAccessResponse(BaseModel):
    member_id: str
    project_ids: List[str]
    role_name: Optional[str] = None
