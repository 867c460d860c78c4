"""
User model with ULID primary keys.
"""
from datetime import datetime
from sqlalchemy import String, Boolean, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from ulid import ULID

from app.core.database.base import Base, TimestampMixin


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ULID())


USER_ROLES = ("admin", "clinic", "doctor", "agent")

# Roles allowed to edit other users' permission documents
EDITOR_ROLES = ("admin", "clinic", "doctor")


class User(Base, TimestampMixin):
    """
    User model representing authenticated users.

    ``role`` decides which permission document governs the user: agents and
    doctors are checked against their own document, admins bypass checks.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Appwrite user ID (for linking with Appwrite authentication)
    appwrite_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="agent", index=True)

    # Clinic the user works for (agents and doctors)
    clinic_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    # Who created this account; agents may only be edited by their creator or clinic
    created_by_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_editor(self) -> bool:
        return self.role in EDITOR_ROLES

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, role={self.role})>"
