"""Keyword model: a discovered search term.

Keywords are unique per theme by dedupe_hash (see services.normalization).
Stage B assigns group_id and moves status to `grouped`; the group's
keyword_ids list is written in the same stage.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import DateTime, Float, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy import text as sql_text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from keyword_scheduler.core.database import Base


class KeywordStatus(str, Enum):
    """Lifecycle status of a keyword."""

    NEW = "new"
    SCORED = "scored"
    GROUPED = "grouped"


class Keyword(Base):
    """Keyword model.

    Attributes:
        id: UUID primary key
        project_id: Reference to the owning project
        theme_id: Reference to the owning theme
        text: Normalized keyword text
        dedupe_hash: 32 hex char digest of text, unique within the theme
        metrics: {avgMonthly, competition, cpc}
        score: Keyword score (0 until scored)
        group_id: Group the keyword was clustered into
        status: Lifecycle status
        versions: Metric snapshots [{metrics, score, at}]
        locale: Language of the keyword
        source_node_id: Node whose idea call produced the keyword
    """

    __tablename__ = "keywords"
    __table_args__ = (
        UniqueConstraint("theme_id", "dedupe_hash", name="uq_keywords_theme_hash"),
    )

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
        server_default=sql_text("gen_random_uuid()"),
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

    text: Mapped[str] = mapped_column(Text, nullable=False)

    dedupe_hash: Mapped[str] = mapped_column(String(32), nullable=False)

    metrics: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=sql_text("'{}'::jsonb"),
    )

    score: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0, server_default=sql_text("0")
    )

    group_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        nullable=True,
        index=True,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=KeywordStatus.NEW.value,
        server_default=sql_text("'new'"),
        index=True,
    )

    versions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        server_default=sql_text("'[]'::jsonb"),
    )

    locale: Mapped[str] = mapped_column(
        String(10), nullable=False, default="ja", server_default=sql_text("'ja'")
    )

    source_node_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=sql_text("now()"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=sql_text("now()"),
        onupdate=lambda: datetime.now(UTC),
    )

    def __repr__(self) -> str:
        return f"<Keyword(id={self.id!r}, text={self.text!r}, status={self.status!r})>"
