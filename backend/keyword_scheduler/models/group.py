"""KeywordGroup model: a cluster of related keywords.

- title: text of the representative keyword
- keyword_ids: member keyword ids, kept consistent with Keyword.group_id
- priority_score: written by Stage C
- summary: outline {outlineTitle, h2, h3, faq}; {"disabled": true} once cleared
- summary_disabled_at: set when the outline was soft-disabled
- post_url: URL of the published article
"""

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import DateTime, Float, ForeignKey, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from keyword_scheduler.core.database import Base


class KeywordGroup(Base):
    """KeywordGroup model.

    Attributes:
        id: UUID primary key
        project_id: Reference to the owning project
        theme_id: Reference to the owning theme
        title: Representative keyword text
        keyword_ids: Member keyword ids
        intent: Search intent of the group
        priority_score: Score from Stage C
        cluster_stats: {size, topKw}
        summary: Outline summary, or None
        summary_disabled_at: When the outline was soft-disabled
        post_url: Published article URL
    """

    __tablename__ = "keyword_groups"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
        server_default=text("gen_random_uuid()"),
    )

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

    title: Mapped[str] = mapped_column(Text, nullable=False)

    keyword_ids: Mapped[list[str]] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        server_default=text("'[]'::jsonb"),
    )

    intent: Mapped[str] = mapped_column(
        String(20), nullable=False, default="info", server_default=text("'info'")
    )

    priority_score: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0, server_default=text("0"), index=True
    )

    cluster_stats: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )

    summary: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)

    summary_disabled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    post_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=text("now()"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=text("now()"),
        onupdate=lambda: datetime.now(UTC),
    )

    @property
    def has_active_summary(self) -> bool:
        """True when an outline exists and has not been soft-disabled."""
        if not self.summary or self.summary_disabled_at is not None:
            return False
        return not self.summary.get("disabled", False)

    @property
    def cluster_size(self) -> int:
        return int(self.cluster_stats.get("size", 0) or 0)

    def __repr__(self) -> str:
        return (
            f"<KeywordGroup(id={self.id!r}, title={self.title!r}, "
            f"priority={self.priority_score!r})>"
        )
