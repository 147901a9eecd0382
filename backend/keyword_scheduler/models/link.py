"""GroupLink model: a directed internal-link recommendation between groups.

The primary key is "{from_group_id}__{to_group_id}", so writing the same
pair again overwrites the previous recommendation.
"""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import DateTime, Float, ForeignKey, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from keyword_scheduler.core.database import Base


class LinkReason(str, Enum):
    """Why one group links to another."""

    HIERARCHY = "hierarchy"
    SIBLING = "sibling"
    HUB = "hub"


def link_id(from_group_id: str, to_group_id: str) -> str:
    return f"{from_group_id}__{to_group_id}"


class GroupLink(Base):
    """GroupLink model.

    Attributes:
        id: "{from_group_id}__{to_group_id}"
        project_id: Reference to the owning project
        theme_id: Reference to the owning theme
        from_group_id: Linking group
        to_group_id: Linked group
        reason: hierarchy, sibling or hub
        weight: similarity x authority x target priority, 3 decimals
    """

    __tablename__ = "group_links"

    id: Mapped[str] = mapped_column(String(80), primary_key=True)

    project_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    theme_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("themes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    from_group_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), nullable=False, index=True
    )

    to_group_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), nullable=False, index=True
    )

    reason: Mapped[str] = mapped_column(String(20), nullable=False)

    weight: Mapped[float] = mapped_column(Float, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=text("now()"),
        onupdate=lambda: datetime.now(UTC),
    )

    def __repr__(self) -> str:
        return f"<GroupLink(id={self.id!r}, reason={self.reason!r}, weight={self.weight!r})>"
