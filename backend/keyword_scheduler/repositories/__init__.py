"""Repositories layer - the persistence gateway used by the pipeline."""

from keyword_scheduler.repositories.pipeline import (
    GroupDraft,
    KeywordDraft,
    KeywordGroupingUpdate,
    LinkDraft,
    PipelineRepository,
    ProjectContext,
)

__all__ = [
    "GroupDraft",
    "KeywordDraft",
    "KeywordGroupingUpdate",
    "LinkDraft",
    "PipelineRepository",
    "ProjectContext",
]
