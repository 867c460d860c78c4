"""
SQLAlchemy declarative base and common model utilities.

Every table of the application (users, permission documents, audit logs)
inherits from ``Base`` so ``init_db`` can create them in one pass.
"""
from datetime import datetime
from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    """
    Adds ``created_at`` and ``updated_at``, both set by the database.

    ``updated_at`` moves on every UPDATE, which is what the permission API
    reports as the time of the last edit.
    """
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
