"""
Pydantic schemas for access introspection.
"""
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from app.features.access.catalog import Action, Resource, Scope


class AccessMeResponse(BaseModel):
    """Resolved access of the calling member, used by clients as UI hints."""
    organization_id: str
    user_id: str
    role: str
    member_id: Optional[str] = None
    permissions: List[str] = Field(default_factory=list, description="Granted permission keys")
    scopes: Dict[Resource, Scope] = Field(default_factory=dict)
    accessible_project_ids: Optional[List[str]] = Field(
        None, description="Only present for roles limited to assigned projects"
    )


class AccessCheckRequest(BaseModel):
    """Schema for checking whether the caller may perform an action."""
    resource: Resource
    action: Action
    project_id: Optional[str] = Field(None, description="Project the action would touch")


class AccessCheckResponse(BaseModel):
    allowed: bool
    scope: Scope
    reason: Optional[str] = None
