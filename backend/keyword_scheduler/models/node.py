"""Node model: a seed topic that drives keyword discovery.

A node is eligible for keyword discovery while its status is `ready` or
`ideas-pending` and last_ideas_at is missing or older than the configured
stale window. Discovery sets status to `ideas-done`.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from keyword_scheduler.core.database import Base


class NodeStatus(str, Enum):
    """Discovery status of a node."""

    READY = "ready"
    IDEAS_PENDING = "ideas-pending"
    IDEAS_DONE = "ideas-done"


class Intent(str, Enum):
    """Search intent classification."""

    INFO = "info"
    TRANS = "trans"
    LOCAL = "local"
    MIXED = "mixed"


class Node(Base):
    """Node model.

    Attributes:
        id: UUID primary key
        project_id: Reference to the owning project
        theme_id: Reference to the owning theme
        title: Seed text sent to the keyword idea provider
        depth: Depth in the theme's topic tree
        intent: Search intent of the topic
        status: Discovery status
        last_ideas_at: When keyword ideas were last fetched
    """

    __tablename__ = "nodes"

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

    depth: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )

    intent: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=Intent.INFO.value,
        server_default=text("'info'"),
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=NodeStatus.READY.value,
        server_default=text("'ready'"),
        index=True,
    )

    last_ideas_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

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

    def __repr__(self) -> str:
        return f"<Node(id={self.id!r}, title={self.title!r}, status={self.status!r})>"
