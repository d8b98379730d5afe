"""
Permission model.

Global catalog of named capabilities, e.g. "board.delete".
"""
from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from tenant_authz.models.base import Base, TimestampMixin


class Permission(Base, TimestampMixin):
    """
    Permission catalog entry.

    Names are globally unique; permissions are not scoped to an organisation.
    """
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(150), unique=True, nullable=False, index=True)
    guard_name: Mapped[str] = mapped_column(String(50), nullable=False, default="api")
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)

    def __repr__(self):
        return f"<Permission(id={self.id}, name={self.name!r})>"
