"""Exceptions raised by the pipeline services and repository."""


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    pass


class ProjectNotFoundError(PipelineError):
    """Raised when a project does not exist."""

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class ThemeNotFoundError(PipelineError):
    """Raised when a theme does not exist in the project."""

    def __init__(self, project_id: str, theme_id: str):
        self.project_id = project_id
        self.theme_id = theme_id
        super().__init__(f"Theme not found: {theme_id} (project {project_id})")


class GroupNotFoundError(PipelineError):
    """Raised when a write targets a group that no longer exists."""

    def __init__(self, group_id: str):
        self.group_id = group_id
        super().__init__(f"Group not found: {group_id}")


class AlreadyLockedError(PipelineError):
    """Raised when another run already holds the project lock."""

    def __init__(self, project_id: str, holder_job_id: str | None):
        self.project_id = project_id
        self.holder_job_id = holder_job_id
        super().__init__(
            f"Project {project_id} is already locked by job {holder_job_id or 'unknown'}"
        )


class JobAlreadyFinalizedError(PipelineError):
    """Raised when finalize is called twice for the same job."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job already finalized: {job_id}")


class ArticleGenerationError(PipelineError):
    """Raised when the article generator returns no title or no html."""

    def __init__(self, group_id: str, missing: str):
        self.group_id = group_id
        self.missing = missing
        super().__init__(f"Article generation returned no {missing} for group {group_id}")


class UnsupportedPlatformError(PipelineError):
    """Raised when no publisher exists for a blog target platform."""

    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(f"Unsupported blog platform: {platform}")


class ModelNotConfiguredError(PipelineError):
    """Raised when a run asks for a language model that has no client."""

    def __init__(self, model: str):
        self.model = model
        super().__init__(f"Language model not configured: {model}")
