"""Create keyword pipeline tables.

Tables: projects, themes, nodes, keywords, keyword_groups, group_links,
pipeline_jobs, pipeline_locks.

Revision ID: 0001
Revises: None
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=False),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _project_fk() -> sa.Column:
    return sa.Column(
        "project_id",
        postgresql.UUID(as_uuid=False),
        sa.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )


def _theme_fk() -> sa.Column:
    return sa.Column(
        "theme_id",
        postgresql.UUID(as_uuid=False),
        sa.ForeignKey("themes.id", ondelete="CASCADE"),
        nullable=False,
    )


def _jsonb(name: str, default: str | None) -> sa.Column:
    if default is None:
        return sa.Column(name, postgresql.JSONB(astext_type=sa.Text()), nullable=True)
    return sa.Column(
        name,
        postgresql.JSONB(astext_type=sa.Text()),
        server_default=sa.text(f"'{default}'::jsonb"),
        nullable=False,
    )


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    """Create pipeline tables."""
    op.create_table(
        "projects",
        _uuid_pk(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("halt", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        _jsonb("settings", "{}"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "themes",
        _uuid_pk(),
        _project_fk(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column(
            "auto_update", sa.Boolean(), server_default=sa.text("true"), nullable=False
        ),
        _jsonb("settings", None),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_themes_project_id"), "themes", ["project_id"], unique=False)

    op.create_table(
        "nodes",
        _uuid_pk(),
        _project_fk(),
        _theme_fk(),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("depth", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column(
            "intent", sa.String(length=20), server_default=sa.text("'info'"), nullable=False
        ),
        sa.Column(
            "status", sa.String(length=20), server_default=sa.text("'ready'"), nullable=False
        ),
        sa.Column("last_ideas_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_nodes_project_id"), "nodes", ["project_id"], unique=False)
    op.create_index(op.f("ix_nodes_theme_id"), "nodes", ["theme_id"], unique=False)
    op.create_index(op.f("ix_nodes_status"), "nodes", ["status"], unique=False)

    op.create_table(
        "keywords",
        _uuid_pk(),
        _project_fk(),
        _theme_fk(),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("dedupe_hash", sa.String(length=32), nullable=False),
        _jsonb("metrics", "{}"),
        sa.Column("score", sa.Float(), server_default=sa.text("0"), nullable=False),
        sa.Column("group_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column(
            "status", sa.String(length=20), server_default=sa.text("'new'"), nullable=False
        ),
        _jsonb("versions", "[]"),
        sa.Column(
            "locale", sa.String(length=10), server_default=sa.text("'ja'"), nullable=False
        ),
        sa.Column("source_node_id", postgresql.UUID(as_uuid=False), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("theme_id", "dedupe_hash", name="uq_keywords_theme_hash"),
    )
    op.create_index(op.f("ix_keywords_project_id"), "keywords", ["project_id"], unique=False)
    op.create_index(op.f("ix_keywords_theme_id"), "keywords", ["theme_id"], unique=False)
    op.create_index(op.f("ix_keywords_group_id"), "keywords", ["group_id"], unique=False)
    op.create_index(op.f("ix_keywords_status"), "keywords", ["status"], unique=False)

    op.create_table(
        "keyword_groups",
        _uuid_pk(),
        _project_fk(),
        _theme_fk(),
        sa.Column("title", sa.Text(), nullable=False),
        _jsonb("keyword_ids", "[]"),
        sa.Column(
            "intent", sa.String(length=20), server_default=sa.text("'info'"), nullable=False
        ),
        sa.Column(
            "priority_score", sa.Float(), server_default=sa.text("0"), nullable=False
        ),
        _jsonb("cluster_stats", "{}"),
        _jsonb("summary", None),
        sa.Column("summary_disabled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("post_url", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_keyword_groups_project_id"), "keyword_groups", ["project_id"], unique=False
    )
    op.create_index(
        op.f("ix_keyword_groups_theme_id"), "keyword_groups", ["theme_id"], unique=False
    )
    op.create_index(
        op.f("ix_keyword_groups_priority_score"),
        "keyword_groups",
        ["priority_score"],
        unique=False,
    )

    op.create_table(
        "group_links",
        sa.Column("id", sa.String(length=80), nullable=False),
        _project_fk(),
        _theme_fk(),
        sa.Column("from_group_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("to_group_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("reason", sa.String(length=20), nullable=False),
        sa.Column("weight", sa.Float(), nullable=False),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_group_links_project_id"), "group_links", ["project_id"], unique=False
    )
    op.create_index(op.f("ix_group_links_theme_id"), "group_links", ["theme_id"], unique=False)
    op.create_index(
        op.f("ix_group_links_from_group_id"), "group_links", ["from_group_id"], unique=False
    )
    op.create_index(
        op.f("ix_group_links_to_group_id"), "group_links", ["to_group_id"], unique=False
    )

    op.create_table(
        "pipeline_jobs",
        _uuid_pk(),
        _project_fk(),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column(
            "status",
            sa.String(length=20),
            server_default=sa.text("'running'"),
            nullable=False,
        ),
        _jsonb("payload", "{}"),
        _jsonb("counters", "{}"),
        _jsonb("errors", "[]"),
        _timestamp("started_at"),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_pipeline_jobs_project_id"), "pipeline_jobs", ["project_id"], unique=False
    )
    op.create_index(op.f("ix_pipeline_jobs_status"), "pipeline_jobs", ["status"], unique=False)

    op.create_table(
        "pipeline_locks",
        sa.Column(
            "project_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("job_id", postgresql.UUID(as_uuid=False), nullable=True),
        _timestamp("locked_at"),
        sa.PrimaryKeyConstraint("project_id"),
    )


def downgrade() -> None:
    """Drop pipeline tables."""
    op.drop_table("pipeline_locks")
    op.drop_index(op.f("ix_pipeline_jobs_status"), table_name="pipeline_jobs")
    op.drop_index(op.f("ix_pipeline_jobs_project_id"), table_name="pipeline_jobs")
    op.drop_table("pipeline_jobs")
    op.drop_index(op.f("ix_group_links_to_group_id"), table_name="group_links")
    op.drop_index(op.f("ix_group_links_from_group_id"), table_name="group_links")
    op.drop_index(op.f("ix_group_links_theme_id"), table_name="group_links")
    op.drop_index(op.f("ix_group_links_project_id"), table_name="group_links")
    op.drop_table("group_links")
    op.drop_index(op.f("ix_keyword_groups_priority_score"), table_name="keyword_groups")
    op.drop_index(op.f("ix_keyword_groups_theme_id"), table_name="keyword_groups")
    op.drop_index(op.f("ix_keyword_groups_project_id"), table_name="keyword_groups")
    op.drop_table("keyword_groups")
    op.drop_index(op.f("ix_keywords_status"), table_name="keywords")
    op.drop_index(op.f("ix_keywords_group_id"), table_name="keywords")
    op.drop_index(op.f("ix_keywords_theme_id"), table_name="keywords")
    op.drop_index(op.f("ix_keywords_project_id"), table_name="keywords")
    op.drop_table("keywords")
    op.drop_index(op.f("ix_nodes_status"), table_name="nodes")
    op.drop_index(op.f("ix_nodes_theme_id"), table_name="nodes")
    op.drop_index(op.f("ix_nodes_project_id"), table_name="nodes")
    op.drop_table("nodes")
    op.drop_index(op.f("ix_themes_project_id"), table_name="themes")
    op.drop_table("themes")
    op.drop_table("projects")
