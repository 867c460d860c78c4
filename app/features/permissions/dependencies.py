"""
Permission storage helpers and FastAPI dependencies.

Implements:
- Loading and saving permission documents (optimistic concurrency on save)
- Permission checks for the current user
- FastAPI dependencies for route protection
- Audit logging helpers
"""
from typing import Dict, Any, Optional, Tuple
from fastapi import Depends, HTTPException, status
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from app.core.database.engine import get_db
from app.features.permissions.editor import canonicalize_matrix
from app.features.permissions.engine import is_allowed
from app.features.permissions.errors import StaleDocument
from app.features.permissions.matrix import PermissionMatrix, repair_matrix
from app.features.permissions.models import AuditLog, PermissionDocument
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

# Roles a clinic can hand default grants to through a role-scoped document
CLINIC_SCOPED_ROLES = ("doctor", "agent")


# ============================================================================
# Subjects
# ============================================================================

def subject_for_user(user: User) -> Tuple[str, str]:
    """
    Return ``(subject_type, subject_id)`` of the document governing ``user``.

    Clinic owners are governed by their clinic's document; everyone else by
    their own.
    """
    if user.role == "clinic":
        return "clinic", user.clinic_id or user.id
    return user.role, user.id


# ============================================================================
# Documents
# ============================================================================

async def get_permission_document(
    db: AsyncSession,
    subject_type: str,
    subject_id: str,
    role: Optional[str] = None,
) -> Optional[PermissionDocument]:
    """Fetch the document for a subject, or None if it has never been saved."""
    stmt = select(PermissionDocument).where(
        PermissionDocument.subject_type == subject_type,
        PermissionDocument.subject_id == subject_id,
        PermissionDocument.role == (role or subject_type),
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def get_governing_document(db: AsyncSession, user: User) -> Optional[PermissionDocument]:
    """
    The document a user's checks run against.

    A doctor or agent without a document of its own falls back to the
    document its clinic keeps for that role.
    """
    subject_type, subject_id = subject_for_user(user)
    document = await get_permission_document(db, subject_type, subject_id)
    if document is None and user.role in CLINIC_SCOPED_ROLES and user.clinic_id:
        document = await get_permission_document(db, "clinic", user.clinic_id, user.role)
    return document


def stored_matrix(document: Optional[PermissionDocument]) -> PermissionMatrix:
    """
    Parse and repair the matrix a document holds, active or not.

    Used wherever the stored values are shown or edited. A missing document,
    or one that no longer parses, yields an empty matrix.
    """
    if document is None:
        return PermissionMatrix()
    try:
        matrix = PermissionMatrix.from_document(document.permissions)
    except ValidationError as e:
        log.warning(f"Stored permissions of document {document.id} are malformed: {e}")
        return PermissionMatrix()
    return repair_matrix(matrix)


def matrix_from_document(document: Optional[PermissionDocument]) -> PermissionMatrix:
    """
    Matrix to check access against.

    Same as ``stored_matrix`` except that an inactive document grants
    nothing.
    """
    if document is not None and not document.is_active:
        return PermissionMatrix()
    return stored_matrix(document)


async def load_matrix(
    db: AsyncSession,
    subject_type: str,
    subject_id: str,
    role: Optional[str] = None,
) -> PermissionMatrix:
    document = await get_permission_document(db, subject_type, subject_id, role)
    return matrix_from_document(document)


async def _latest_version(db: AsyncSession, subject_type: str, subject_id: str, role: Optional[str]) -> int:
    result = await db.execute(
        select(PermissionDocument.version).where(
            PermissionDocument.subject_type == subject_type,
            PermissionDocument.subject_id == subject_id,
            PermissionDocument.role == (role or subject_type),
        )
    )
    return result.scalar() or 0


async def save_matrix(
    db: AsyncSession,
    subject_type: str,
    subject_id: str,
    matrix: PermissionMatrix,
    granted_by: Optional[User] = None,
    role: Optional[str] = None,
    expected_version: Optional[int] = None,
    is_active: bool = True,
) -> PermissionDocument:
    """
    Create or replace the document of a subject.

    The matrix is stored with canonical module keys and consistent ``all``
    flags. A document that does not exist yet has version 0. The UPDATE only
    applies while the stored version is still the one that was read, so of
    two saves racing from the same version exactly one wins.

    Raises:
        StaleDocument: if ``expected_version`` differs from the stored
            version, or another save got in first
    """
    document = await get_permission_document(db, subject_type, subject_id, role)
    current_version = document.version if document is not None else 0

    if expected_version is not None and expected_version != current_version:
        raise StaleDocument(expected_version, current_version)

    payload = repair_matrix(canonicalize_matrix(matrix)).to_document()

    if document is None:
        document = PermissionDocument(
            subject_type=subject_type,
            subject_id=subject_id,
            role=role or subject_type,
            permissions=payload,
            is_active=is_active,
            granted_by_id=granted_by.id if granted_by else None,
        )
        db.add(document)
    else:
        document.permissions = payload
        # a save always bumps the version, even when nothing changed
        flag_modified(document, "permissions")
        document.is_active = is_active
        document.granted_by_id = granted_by.id if granted_by else None

    try:
        await db.commit()
    except (StaleDataError, IntegrityError) as e:
        await db.rollback()
        latest = await _latest_version(db, subject_type, subject_id, role)
        log.info(f"Concurrent save of {subject_type}:{subject_id} rejected ({type(e).__name__})")
        raise StaleDocument(current_version, latest) from e
    await db.refresh(document)

    log.info(
        f"Saved permissions for {subject_type}:{subject_id} role={document.role} "
        f"version={document.version} modules={len(payload)}"
    )
    return document


# ============================================================================
# Permission Checking Functions
# ============================================================================

async def has_permission(
    db: AsyncSession,
    user: User,
    module_key: str,
    action: str,
    sub_module_name: Optional[str] = None,
) -> bool:
    """
    Check if user may perform an action on a module or sub-module.

    Admins are always allowed. Everyone else is evaluated against the
    document that governs them; no document means no access.
    """
    if user.is_admin:
        log.debug(f"User {user.id} is admin - granted {action} on {module_key}")
        return True

    matrix = matrix_from_document(await get_governing_document(db, user))
    allowed = is_allowed(matrix, module_key, action, sub_module_name)

    target = f"{module_key}/{sub_module_name}" if sub_module_name else module_key
    log.debug(f"User {user.id} {'granted' if allowed else 'denied'} {action} on {target}")
    return allowed


async def get_grantor_matrix(db: AsyncSession, editor: User) -> Optional[PermissionMatrix]:
    """The most an editor may grant, or None when unrestricted (admins)."""
    if editor.is_admin:
        return None
    return matrix_from_document(await get_governing_document(db, editor))


async def ensure_can_edit(
    db: AsyncSession,
    editor: User,
    subject_type: str,
    subject_id: str,
    role: Optional[str] = None,
) -> None:
    """
    Verify that ``editor`` may change the document of a subject.

    Admins may edit any document. A clinic may edit the doctor and agent
    documents of its own clinic. Clinics and doctors may edit users of
    their own clinic and users they created.

    Raises:
        HTTPException: 403 if not allowed, 404 if the subject user is unknown
    """
    if editor.is_admin:
        return

    if subject_type == "clinic":
        if (
            editor.role == "clinic"
            and role in CLINIC_SCOPED_ROLES
            and subject_for_user(editor) == ("clinic", subject_id)
        ):
            return
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only admins can edit clinic permissions",
        )

    if subject_type not in ("agent", "doctor") or (role or subject_type) != subject_type:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only admins can edit this document",
        )

    result = await db.execute(select(User).where(User.id == subject_id))
    subject = result.scalar_one_or_none()
    if subject is None or subject.role != subject_type:
        raise HTTPException(status_code=404, detail=f"{subject_type.capitalize()} not found")

    if subject.created_by_id == editor.id:
        return
    if editor.clinic_id and subject.clinic_id == editor.clinic_id:
        return

    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


async def ensure_can_view(
    db: AsyncSession,
    user: User,
    subject_type: str,
    subject_id: str,
    role: Optional[str] = None,
) -> None:
    """Users may always read their own documents; otherwise edit rights are required."""
    if subject_for_user(user) == (subject_type, subject_id):
        return
    if not user.is_editor:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    await ensure_can_edit(db, user, subject_type, subject_id, role)


# ============================================================================
# FastAPI Dependencies
# ============================================================================

def require_permission(module_key: str, action: str, sub_module_name: Optional[str] = None):
    """
    FastAPI dependency to require a module/action grant.

    Usage:
        @router.post("/jobs")
        async def create_job(
            user: User = Depends(require_permission("clinic_jobs", "create", "Job Posting"))
        ):
            ...

    Raises:
        HTTPException: 403 if the user's matrix does not grant the action
    """
    async def permission_dependency(
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user)
    ) -> User:
        if not await has_permission(db, current_user, module_key, action, sub_module_name):
            target = f"submodule {sub_module_name}" if sub_module_name else f"module {module_key}"
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {action} action not allowed for {target}"
            )
        return current_user

    return permission_dependency


# ============================================================================
# Audit Logging
# ============================================================================

async def create_audit_log(
    db: AsyncSession,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None
) -> AuditLog:
    """
    Create an audit log entry.

    Args:
        db: Database session
        user_id: User performing the action
        action: Action performed (e.g., "set_action", "replace")
        resource_type: Type of resource (e.g., "permission_document")
        resource_id: ID of the resource
        details: Additional details
        ip_address: Client IP address
        user_agent: Client user agent
    """
    audit_log = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    log.info(f"Audit: user={user_id} action={action} resource={resource_type}:{resource_id}")

    return audit_log
