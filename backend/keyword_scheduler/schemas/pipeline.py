"""Schemas for pipeline runs and collaborator payloads.

- StageFlags: which of the six stages run; every field is required
- RunOptions: what a full run was asked to do
- PipelineCounters: aggregate counters written to the job ledger
- StageError: one collected failure, summarized by type on the job
- KeywordMetrics / KeywordIdea: idea provider output
- GroupSummary: outline drafted for a group
- InlineResult: return value of the single-stage runners
"""

from dataclasses import asdict, dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_MODEL = "gemini"


@dataclass(frozen=True)
class StageFlags:
    """Toggle for each pipeline stage, in execution order."""

    ideas: bool
    clustering: bool
    scoring: bool
    outline: bool
    links: bool
    blogging: bool

    @classmethod
    def all_enabled(cls) -> "StageFlags":
        return cls(
            ideas=True,
            clustering=True,
            scoring=True,
            outline=True,
            links=True,
            blogging=True,
        )

    @classmethod
    def only(cls, *stages: str) -> "StageFlags":
        """Flags with just the named stages enabled."""
        disabled = {name: False for name in asdict(cls.all_enabled())}
        return cls(**{**disabled, **{name: True for name in stages}})


@dataclass
class RunOptions:
    """Options for one full pipeline run.

    Attributes:
        project_id: Project to run.
        theme_ids: Restrict the run to these auto-update themes.
        manual: Recorded as job type manual when true, else daily.
        stages: Stage flags; defaults to every stage enabled.
        model: Language model for clustering, outlines and articles.
    """

    project_id: str
    theme_ids: list[str] | None = None
    manual: bool = True
    stages: StageFlags = field(default_factory=StageFlags.all_enabled)
    model: str = DEFAULT_MODEL


@dataclass
class PipelineCounters:
    nodes_processed: int = 0
    new_keywords: int = 0
    groups_created: int = 0
    groups_updated: int = 0
    outlines_created: int = 0
    links_updated: int = 0
    posts_created: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class StageError:
    """A failure collected during a run.

    `type` is "pipeline", "fatal" or "theme:<theme id>".
    """

    type: str
    error: BaseException

    def to_summary(self) -> dict[str, Any]:
        return {"type": self.type, "message": str(self.error), "count": 1}


class KeywordMetrics(BaseModel):
    """Volume metrics for one keyword."""

    model_config = ConfigDict(extra="ignore")

    avg_monthly: int | None = Field(None, description="Average monthly searches")
    competition: float | None = Field(None, description="Competition index 0-1")
    cpc_micros: int | None = Field(None, description="Top of page bid in micros")

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class KeywordIdea(BaseModel):
    """One keyword idea returned by the idea provider."""

    keyword: str
    metrics: KeywordMetrics = Field(default_factory=KeywordMetrics)


class EmbeddingRequest(BaseModel):
    id: str
    text: str


class Embedding(BaseModel):
    id: str
    vector: list[float]


class FaqItem(BaseModel):
    q: str
    a: str


class GroupSummary(BaseModel):
    """Outline drafted for a group."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    outline_title: str = Field(..., alias="outlineTitle")
    h2: list[str] = Field(default_factory=list)
    h3: dict[str, list[str]] = Field(default_factory=dict)
    faq: list[FaqItem] = Field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class Article(BaseModel):
    """Article generated from an outline."""

    title: str = ""
    html: str = ""


@dataclass
class InlineResult:
    """Result of a single-stage runner."""

    status: str
    job_id: str
    counters: PipelineCounters
    group_ids: list[str] = field(default_factory=list)
