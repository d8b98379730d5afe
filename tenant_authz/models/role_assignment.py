"""
Role assignment model.

Edge between a principal and a Role inside an organisation.
"""
from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from tenant_authz.models.base import Base, TimestampMixin


USER_MODEL_TYPE = "user"


class RoleAssignment(Base, TimestampMixin):
    """
    Principal to role edge.

    The composite primary key over all four columns is the safety net for
    concurrent check-then-insert assignment.
    """
    __tablename__ = "model_has_roles"

    role_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("roles.id", ondelete="CASCADE"),
        primary_key=True
    )
    model_id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    model_type: Mapped[str] = mapped_column(String(100), primary_key=True, default=USER_MODEL_TYPE)
    organisation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("organisations.id", ondelete="CASCADE"),
        primary_key=True,
        index=True
    )

    # Relationships
    role = relationship("Role")

    def __repr__(self):
        return (
            f"<RoleAssignment(role_id={self.role_id}, model={self.model_type}:{self.model_id}, "
            f"org_id={self.organisation_id})>"
        )
