"""
Stored permission documents and the audit trail of edits.

A permission document holds the whole matrix of one role assignment (one
agent, one clinic, one doctor) as JSON. It is read, edited and saved as a
unit; ``version`` increases on every save so concurrent editors can detect a
stale copy.
"""
from typing import Any, Dict, List
from sqlalchemy import String, ForeignKey, JSON, Text, Boolean, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from ulid import ULID

from app.core.database.base import Base, TimestampMixin


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ULID())


SUBJECT_TYPES = ("admin", "clinic", "doctor", "agent")


class PermissionDocument(Base, TimestampMixin):
    """
    Permission matrix of one role assignment.

    Examples:
    - subject_type="agent", subject_id=<agent user id>, role="agent"
    - subject_type="clinic", subject_id=<clinic id>, role="doctor"
      (grants a clinic gives to its doctors)
    """
    __tablename__ = "permission_documents"
    __table_args__ = (
        UniqueConstraint("subject_type", "subject_id", "role", name="uq_permission_document_subject_role"),
    )

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Owner of the matrix
    subject_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)

    # Matrix in its persisted JSON shape
    permissions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    # Optimistic concurrency: every UPDATE is conditional on the loaded version
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    granted_by_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<PermissionDocument(id={self.id}, subject={self.subject_type}:{self.subject_id}, "
            f"role={self.role}, version={self.version})>"
        )


class AuditLog(Base, TimestampMixin):
    """
    Audit log for permission edits.

    Tracks who changed which document, when, and from where.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Actor
    user_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, resource={self.resource_type})>"
