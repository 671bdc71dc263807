"""Configuration for taskbridge.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Tokens use dedicated `TASKBRIDGE_*` variable names so they don't collide with
other tools that read `GITHUB_TOKEN` or `JIRA_TOKEN`.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from taskbridge.orchestrator.errors import ConfigurationError
from taskbridge.orchestrator.providers.base import ProviderKind

DEFAULT_JQL = (
    'assignee = currentUser() AND status IN ("To Do", "In Progress", "Ready for Development")'
)


class TaskBridgeSettings(BaseSettings):
    """Settings for the tracker/provider bridge.

    Credentials are optional at load time. Commands that only read local state
    work without them; building a tracker or provider client validates the
    fields it needs (see :meth:`require`).

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `TaskBridgeSettings(_env_file=path_to_env)`.
    """

    # Tracker (Jira)
    jira_base_url: str = Field(default="", validation_alias="JIRA_BASE_URL")
    jira_username: str = Field(default="", validation_alias="JIRA_USERNAME")
    jira_api_token: str = Field(
        default="",
        validation_alias="TASKBRIDGE_JIRA_TOKEN",
        description="Jira API token used with the username for basic auth",
    )
    jira_jql: str = Field(
        default=DEFAULT_JQL,
        validation_alias="JIRA_JQL",
        description="JQL selecting the open work items to sync",
    )
    jira_max_results: int = Field(default=100, gt=0, validation_alias="JIRA_MAX_RESULTS")

    # Repository provider
    repository_provider: ProviderKind = Field(
        default=ProviderKind.BITBUCKET,
        validation_alias="TASKBRIDGE_REPOSITORY_PROVIDER",
        description="Which repository provider implementation to wire",
    )
    bitbucket_base_url: str = Field(
        default="https://api.bitbucket.org", validation_alias="BITBUCKET_BASE_URL"
    )
    bitbucket_username: str = Field(default="", validation_alias="BITBUCKET_USERNAME")
    bitbucket_token: str = Field(
        default="",
        validation_alias="TASKBRIDGE_BITBUCKET_TOKEN",
        description="Bitbucket app password or API token",
    )
    bitbucket_workspace: str = Field(default="", validation_alias="BITBUCKET_WORKSPACE")
    github_token: str = Field(default="", validation_alias="TASKBRIDGE_GITHUB_TOKEN")
    github_base_url: str = Field(
        default="https://api.github.com",
        validation_alias="GITHUB_BASE_URL",
        description="GitHub API base URL (useful for GitHub Enterprise)",
    )
    github_owner: str = Field(
        default="",
        validation_alias="GITHUB_OWNER",
        description="Organisation or user whose repositories form the catalog",
    )

    # Storage / runtime
    database_url: str = Field(
        default="sqlite:///taskbridge.db",
        validation_alias="TASKBRIDGE_DATABASE_URL",
        description="SQLAlchemy database URL for the local store",
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias="TASKBRIDGE_REQUEST_TIMEOUT_SECONDS",
        description="Timeout applied to every tracker/provider HTTP request",
    )
    max_concurrent_tasks: int = Field(
        default=3,
        ge=1,
        validation_alias="TASKBRIDGE_MAX_CONCURRENT_TASKS",
        description="Upper bound on work items processed in parallel",
    )

    # Workflow
    match_min_keywords: int = Field(
        default=1,
        ge=0,
        validation_alias="TASKBRIDGE_MATCH_MIN_KEYWORDS",
        description=(
            "Minimum number of task keywords a repository must match to be assigned "
            "automatically. 0 accepts the best-scoring repository even with no matches."
        ),
    )
    auto_create_branches: bool = Field(
        default=True, validation_alias="TASKBRIDGE_AUTO_CREATE_BRANCHES"
    )
    auto_update_tracker: bool = Field(
        default=True,
        validation_alias="TASKBRIDGE_AUTO_UPDATE_TRACKER",
        description="Post a comment on the tracker issue after a branch is created",
    )
    tracker_done_status: str = Field(
        default="",
        validation_alias="TASKBRIDGE_TRACKER_DONE_STATUS",
        description="Tracker status to transition to when a task is completed (empty = skip)",
    )

    # HTTP API. Dev-friendly CORS for a local approval UI.
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="TASKBRIDGE_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def require(self, *fields: str) -> None:
        """Raise ConfigurationError unless every named field is non-empty."""

        missing = [name for name in fields if not str(getattr(self, name)).strip()]
        if missing:
            aliases = [
                str(type(self).model_fields[name].validation_alias or name).upper()
                for name in missing
            ]
            raise ConfigurationError(f"Missing required settings: {', '.join(aliases)}")
