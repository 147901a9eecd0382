"""Pydantic v2 schemas for project and theme pipeline settings.

Settings are stored as JSON on Project.settings (complete document) and
Theme.settings (partial override). merge_settings combines the two into the
effective settings used for one theme:
- pipeline, pipeline.limits, ads, thresholds, weights, links merge key by key
- blog is replaced as a whole when the override supplies one
- ads.max_results falls back to pipeline.limits.ideas_per_node
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class PipelineLimits(BaseModel):
    """Per-run processing limits for a theme."""

    nodes_per_run: int = Field(10, ge=0, description="Nodes sent to Stage A per run")
    ideas_per_node: int = Field(200, ge=0, description="Keyword ideas requested per node")
    groups_outline_per_run: int = Field(10, ge=0, description="Outlines drafted per run")
    groups_blog_per_run: int = Field(1, ge=0, description="Articles posted per run")


class PipelineSection(BaseModel):
    stale_days: int = Field(14, ge=0, description="Days before a node is re-queried")
    limits: PipelineLimits = Field(default_factory=PipelineLimits)


class AdsSettings(BaseModel):
    """Keyword idea provider request options."""

    location_ids: list[int] = Field(default_factory=lambda: [2392])
    language_id: int = Field(1005)
    max_results: int | None = Field(
        None, description="Ideas kept per node; defaults to ideas_per_node"
    )


class Thresholds(BaseModel):
    min_volume: int = Field(10, ge=0, description="Drop ideas below this monthly volume")
    max_competition: float = Field(
        0.8, ge=0, le=1, description="Drop ideas above this competition"
    )


class ScoreWeights(BaseModel):
    """Weights of the four priority score terms."""

    volume: float = Field(0.5, ge=0)
    competition: float = Field(0.3, ge=0)
    intent: float = Field(0.15, ge=0)
    novelty: float = Field(0.05, ge=0)


class LinkSettings(BaseModel):
    max_per_group: int = Field(3, ge=0, description="Links kept per source group")


class WordpressTarget(BaseModel):
    """WordPress publishing target (REST API, application password)."""

    platform: Literal["wordpress"] = "wordpress"
    url: str
    username: str
    password: str


class HatenaTarget(BaseModel):
    """Hatena Blog publishing target (AtomPub)."""

    platform: Literal["hatena"] = "hatena"
    hatena_id: str
    blog_id: str
    api_key: str


BlogTarget = Annotated[WordpressTarget | HatenaTarget, Field(discriminator="platform")]


class ProjectSettings(BaseModel):
    """Effective pipeline settings for a project or theme."""

    model_config = ConfigDict(extra="ignore")

    pipeline: PipelineSection = Field(default_factory=PipelineSection)
    ads: AdsSettings = Field(default_factory=AdsSettings)
    thresholds: Thresholds = Field(default_factory=Thresholds)
    weights: ScoreWeights = Field(default_factory=ScoreWeights)
    links: LinkSettings = Field(default_factory=LinkSettings)
    blog: BlogTarget | None = None
    blog_language: str = "ja"

    @property
    def max_results(self) -> int:
        """Ideas kept per node."""
        if self.ads.max_results:
            return self.ads.max_results
        return self.pipeline.limits.ideas_per_node


_DEEP_MERGED_SECTIONS = ("pipeline", "ads", "thresholds", "weights", "links")


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def merge_settings(
    base: ProjectSettings, override: dict[str, Any] | None
) -> ProjectSettings:
    """Merge a theme's partial settings override over the project settings.

    Args:
        base: Complete project settings.
        override: Partial settings dict from Theme.settings, or None.

    Returns:
        A new ProjectSettings; `base` is not modified.
    """
    data = base.model_dump()
    if override:
        for section in _DEEP_MERGED_SECTIONS:
            if isinstance(override.get(section), dict):
                data[section] = _deep_merge(data[section], override[section])
        if override.get("blog"):
            data["blog"] = override["blog"]
        if override.get("blog_language"):
            data["blog_language"] = override["blog_language"]

    merged = ProjectSettings.model_validate(data)
    if not merged.ads.max_results:
        merged.ads.max_results = merged.pipeline.limits.ideas_per_node
    return merged


def parse_project_settings(raw: dict[str, Any] | None) -> ProjectSettings:
    """Validate a stored settings document, filling defaults."""
    return ProjectSettings.model_validate(raw or {})
