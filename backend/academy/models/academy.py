from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, Enum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from academy.db.base import Base, IDMixin, TimestampMixin
from academy.models.enums import Role


class Academy(IDMixin, TimestampMixin, Base):
    __tablename__ = "academies"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)

    users: Mapped[list["User"]] = relationship(back_populates="academy")


class User(IDMixin, TimestampMixin, Base):
    __tablename__ = "users"

    academy_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("academies.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    role: Mapped[Role] = mapped_column(Enum(Role, name="user_role"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    academy: Mapped[Optional["Academy"]] = relationship(back_populates="users")
