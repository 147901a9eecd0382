"""Models layer - SQLAlchemy ORM models.

All models inherit from the Base class defined in core.database.
"""

from keyword_scheduler.core.database import Base
from keyword_scheduler.models.group import KeywordGroup
from keyword_scheduler.models.job import JobStatus, JobType, PipelineJob, PipelineLock
from keyword_scheduler.models.keyword import Keyword, KeywordStatus
from keyword_scheduler.models.link import GroupLink, LinkReason, link_id
from keyword_scheduler.models.node import Intent, Node, NodeStatus
from keyword_scheduler.models.project import Project, Theme

__all__ = [
    "Base",
    "GroupLink",
    "Intent",
    "JobStatus",
    "JobType",
    "Keyword",
    "KeywordGroup",
    "KeywordStatus",
    "LinkReason",
    "Node",
    "NodeStatus",
    "PipelineJob",
    "PipelineLock",
    "Project",
    "Theme",
    "link_id",
]
