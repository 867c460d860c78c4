"""
Pydantic schemas for the permission API.

Request field names follow the persisted matrix shape (camelCase) and also
accept snake_case.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict

from app.features.permissions.matrix import ModuleGrant
from app.features.permissions.navigation import NavigationItem


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Schema for checking a module/action pair for the current user."""
    model_config = ConfigDict(populate_by_name=True)

    module_key: str = Field(..., alias="moduleKey", min_length=1, description="Module key, bare or role-prefixed")
    action: str = Field(..., description="One of: all, create, read, update, delete, print, export, approve")
    sub_module_name: Optional[str] = Field(None, alias="subModuleName", description="Optional submodule name")


class PermissionEvaluateRequest(PermissionCheckRequest):
    """Schema for checking a module/action pair against an inline matrix."""
    permissions: List[Dict[str, Any]] = Field(default_factory=list, description="Matrix in its persisted shape")


class PermissionCheckResponse(BaseModel):
    """Schema for permission check response."""
    allowed: bool
    reason: Optional[str] = None


# ============================================================================
# Permission Edit Schemas
# ============================================================================

class PermissionEditRequest(BaseModel):
    """Schema for toggling a single flag."""
    model_config = ConfigDict(populate_by_name=True)

    module_key: str = Field(..., alias="moduleKey", min_length=1)
    action: str = Field(...)
    value: bool = Field(...)
    sub_module_name: Optional[str] = Field(None, alias="subModuleName")
    expected_version: Optional[int] = Field(None, alias="expectedVersion", ge=0)


class PermissionSaveRequest(BaseModel):
    """Schema for replacing a whole matrix."""
    model_config = ConfigDict(populate_by_name=True)

    permissions: List[ModuleGrant] = Field(default_factory=list)
    expected_version: Optional[int] = Field(None, alias="expectedVersion", ge=0)
    is_active: bool = Field(True, alias="isActive")


class PermissionDocumentResponse(BaseModel):
    """Schema for a stored permission document."""
    id: Optional[str] = None
    subject_type: str
    subject_id: str
    role: str
    permissions: List[ModuleGrant] = []
    version: int = 0
    is_active: bool = True
    granted_by_id: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Navigation Schemas
# ============================================================================

class NavigationResponse(BaseModel):
    role: str
    items: List[NavigationItem] = []


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    user_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
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
