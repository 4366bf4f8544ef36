"""Branch and location models."""

import uuid

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import TenantScopedModel


class Branch(TenantScopedModel):
    """A physical site of the business."""

    __tablename__ = "branches"

    name: Mapped[str] = mapped_column(String(150), nullable=False)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    locations = relationship("Location", back_populates="branch", lazy="selectin")


class Location(TenantScopedModel):
    """A room or hall inside a branch."""

    __tablename__ = "locations"
    __table_args__ = (
        Index(
            "idx_locations_tenant_branch",
            "tenant_id",
            "branch_id",
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    name: Mapped[str] = mapped_column(String(150), nullable=False)
    branch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("branches.id", ondelete="CASCADE"),
        nullable=False,
    )
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    branch = relationship("Branch", back_populates="locations", lazy="selectin")
