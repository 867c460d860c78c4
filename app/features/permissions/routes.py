"""
Permission API routes.

Provides endpoints for reading, editing and checking permission matrices.
"""
from typing import Literal, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.limiter import limiter
from app.features.users.dependencies import get_current_user, get_current_editor, get_current_admin_user
from app.features.users.models import User
from app.features.permissions.catalog import DEFAULT_CATALOG
from app.features.permissions.editor import complete_matrix, full_access_matrix, set_action, validate_shape
from app.features.permissions.engine import can_grant, is_allowed, ungrantable_actions
from app.features.permissions.errors import (
    InvalidAction,
    PermissionMatrixError,
    StaleDocument,
    UnknownModule,
    UnknownSubModule,
)
from app.features.permissions.matrix import PermissionMatrix, parse_action
from app.features.permissions.models import AuditLog, PermissionDocument
from app.features.permissions.navigation import visible_navigation
from app.features.permissions.schemas import (
    PermissionCheckRequest,
    PermissionCheckResponse,
    PermissionEvaluateRequest,
    PermissionEditRequest,
    PermissionSaveRequest,
    PermissionDocumentResponse,
    NavigationResponse,
    AuditLogResponse,
    AuditLogListResponse,
)
from app.features.permissions.dependencies import (
    create_audit_log,
    ensure_can_edit,
    ensure_can_view,
    get_governing_document,
    get_grantor_matrix,
    get_permission_document,
    has_permission,
    matrix_from_document,
    save_matrix,
    stored_matrix,
)
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

SubjectType = Literal["admin", "clinic", "doctor", "agent"]


def _edit_error(e: PermissionMatrixError) -> HTTPException:
    if isinstance(e, InvalidAction):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, (UnknownModule, UnknownSubModule)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, StaleDocument):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _document_response(
    document: Optional[PermissionDocument],
    subject_type: str,
    subject_id: str,
    role: str,
) -> PermissionDocumentResponse:
    """Stored document with every catalog module present."""
    matrix = complete_matrix(stored_matrix(document), DEFAULT_CATALOG)
    return PermissionDocumentResponse(
        id=document.id if document else None,
        subject_type=subject_type,
        subject_id=subject_id,
        role=role,
        permissions=matrix.root,
        version=document.version if document else 0,
        is_active=document.is_active if document else True,
        granted_by_id=document.granted_by_id if document else None,
        updated_at=document.updated_at if document else None,
    )


def _client_info(request: Request) -> dict:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


# ============================================================================
# Catalog
# ============================================================================

@router.get("/catalog")
async def get_catalog(current_user: User = Depends(get_current_user)):
    """Modules and sub-modules that can be granted."""
    return DEFAULT_CATALOG.to_list()


# ============================================================================
# Permission Check Routes
# ============================================================================

@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    check_request: PermissionCheckRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Check if the current user holds a module/action grant."""
    allowed = await has_permission(
        db,
        current_user,
        check_request.module_key,
        check_request.action,
        check_request.sub_module_name,
    )
    return PermissionCheckResponse(
        allowed=allowed,
        reason=None if allowed else "Permission denied"
    )


@router.post("/evaluate", response_model=PermissionCheckResponse)
async def evaluate_permission(
    evaluate_request: PermissionEvaluateRequest,
    current_user: User = Depends(get_current_user)
):
    """Check a module/action pair against a matrix supplied by the caller."""
    allowed = is_allowed(
        evaluate_request.permissions,
        evaluate_request.module_key,
        evaluate_request.action,
        evaluate_request.sub_module_name,
    )
    return PermissionCheckResponse(
        allowed=allowed,
        reason=None if allowed else "Permission denied"
    )


@router.get("/me/navigation", response_model=NavigationResponse)
async def get_my_navigation(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Sidebar modules the current user may see."""
    if current_user.is_admin:
        matrix = full_access_matrix(DEFAULT_CATALOG)
    else:
        matrix = matrix_from_document(await get_governing_document(db, current_user))

    return NavigationResponse(
        role=current_user.role,
        items=visible_navigation(matrix, DEFAULT_CATALOG),
    )


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    skip: int = 0,
    limit: int = 50,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)  # Admin only
):
    """List audit logs with optional filtering."""
    stmt = select(AuditLog)

    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource_id:
        stmt = stmt.where(AuditLog.resource_id == resource_id)

    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_result = await db.execute(count_stmt)
    total = total_result.scalar() or 0

    stmt = stmt.order_by(AuditLog.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )


# ============================================================================
# Permission Document Routes
# ============================================================================

@router.get("/{subject_type}/{subject_id}", response_model=PermissionDocumentResponse)
async def get_permissions(
    subject_type: SubjectType,
    subject_id: str,
    role: Optional[SubjectType] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get a subject's matrix, completed with every catalog module."""
    await ensure_can_view(db, current_user, subject_type, subject_id, role)
    role = role or subject_type
    document = await get_permission_document(db, subject_type, subject_id, role)
    return _document_response(document, subject_type, subject_id, role)


@router.put("/{subject_type}/{subject_id}", response_model=PermissionDocumentResponse)
@limiter.limit(config.EDIT_RATE_LIMIT)
async def replace_permissions(
    request: Request,
    subject_type: SubjectType,
    subject_id: str,
    save_request: PermissionSaveRequest,
    role: Optional[SubjectType] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_editor)
):
    """Replace a subject's whole matrix."""
    await ensure_can_edit(db, current_user, subject_type, subject_id, role)
    role = role or subject_type
    matrix = PermissionMatrix(save_request.permissions)

    try:
        validate_shape(matrix, DEFAULT_CATALOG)
    except PermissionMatrixError as e:
        raise _edit_error(e)

    grantor = await get_grantor_matrix(db, current_user)
    if grantor is not None:
        exceeding = ungrantable_actions(matrix, grantor)
        if exceeding:
            log.warning(f"User {current_user.id} tried to grant beyond own permissions: {exceeding}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Cannot grant permissions you do not hold: {', '.join(exceeding)}"
            )

    try:
        document = await save_matrix(
            db,
            subject_type,
            subject_id,
            matrix,
            granted_by=current_user,
            role=role,
            expected_version=save_request.expected_version,
            is_active=save_request.is_active,
        )
    except StaleDocument as e:
        raise _edit_error(e)

    await create_audit_log(
        db=db,
        user_id=current_user.id,
        action="replace",
        resource_type="permission_document",
        resource_id=document.id,
        details={"subject": f"{subject_type}:{subject_id}", "role": role, "version": document.version},
        **_client_info(request),
    )

    return _document_response(document, subject_type, subject_id, role)


@router.patch("/{subject_type}/{subject_id}", response_model=PermissionDocumentResponse)
@limiter.limit(config.EDIT_RATE_LIMIT)
async def edit_permission(
    request: Request,
    subject_type: SubjectType,
    subject_id: str,
    edit_request: PermissionEditRequest,
    role: Optional[SubjectType] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_editor)
):
    """Toggle one action (or the "all" flag) of a module or sub-module."""
    await ensure_can_edit(db, current_user, subject_type, subject_id, role)
    role = role or subject_type

    document = await get_permission_document(db, subject_type, subject_id, role)
    current = stored_matrix(document)

    try:
        action = parse_action(edit_request.action)
        updated = set_action(
            current,
            edit_request.module_key,
            action,
            edit_request.value,
            edit_request.sub_module_name,
            DEFAULT_CATALOG,
        )
    except PermissionMatrixError as e:
        raise _edit_error(e)

    if edit_request.value:
        grantor = await get_grantor_matrix(db, current_user)
        if grantor is not None and not can_grant(
            grantor, edit_request.module_key, action, edit_request.sub_module_name
        ):
            log.warning(f"User {current_user.id} tried to grant {action.value} on {edit_request.module_key} without holding it")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Cannot grant {action.value} on {edit_request.module_key}: you do not hold it"
            )

    expected_version = edit_request.expected_version
    if expected_version is None:
        expected_version = document.version if document else 0

    try:
        document = await save_matrix(
            db,
            subject_type,
            subject_id,
            updated,
            granted_by=current_user,
            role=role,
            expected_version=expected_version,
            is_active=document.is_active if document else True,
        )
    except StaleDocument as e:
        raise _edit_error(e)

    await create_audit_log(
        db=db,
        user_id=current_user.id,
        action="set_action",
        resource_type="permission_document",
        resource_id=document.id,
        details={
            "subject": f"{subject_type}:{subject_id}",
            "role": role,
            "module": edit_request.module_key,
            "sub_module": edit_request.sub_module_name,
            "action": action.value,
            "value": edit_request.value,
            "version": document.version,
        },
        **_client_info(request),
    )

    return _document_response(document, subject_type, subject_id, role)
