"""GitHub provider.

Wraps PyGithub for catalog listing and the REST git refs API (via `requests`)
for branch creation, keeping GitHub calls out of engine code and easy to fake
in tests.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import requests
from github import Auth, Github, GithubException

from taskbridge.orchestrator.errors import (
    NotFoundError,
    TransientError,
    ValidationError,
    raise_for_status,
    wrap_request_error,
)
from taskbridge.orchestrator.providers.base import (
    ProviderKind,
    RepositoryInfo,
    RepositoryProvider,
    register_provider,
)

if TYPE_CHECKING:
    from taskbridge.orchestrator.config import TaskBridgeSettings

logger = logging.getLogger(__name__)


class GitHubProvider(RepositoryProvider):
    """Repository provider backed by a GitHub organisation or user account."""

    kind = ProviderKind.GITHUB

    def __init__(
        self,
        *,
        token: str,
        owner: str,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        github_api: Github | None = None,
        session: requests.Session | None = None,
    ) -> None:
        if not token:
            raise ValueError("GitHub token is required")
        if not owner:
            raise ValueError("GitHub owner is required")

        self._owner = owner
        self._rest_base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "taskbridge",
            }
        )
        self._github = github_api or Github(
            auth=Auth.Token(token), base_url=base_url, timeout=int(timeout)
        )

    def _repo_url(self, *, repository: RepositoryInfo, path: str) -> str:
        owner = repository.project_key or self._owner
        path = path.lstrip("/")
        return f"{self._rest_base_url}/repos/{owner}/{repository.name}/{path}".rstrip("/")

    def _request(self, method: str, url: str, what: str, **kwargs: Any) -> requests.Response:
        try:
            return self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.RequestException as e:
            raise wrap_request_error(e, what) from e

    def list_active(self) -> list[RepositoryInfo]:
        try:
            try:
                repos = list(self._github.get_organization(self._owner).get_repos())
            except GithubException as e:
                if e.status != 404:
                    raise
                # Not an organisation; fall back to a user account.
                repos = list(self._github.get_user(self._owner).get_repos())
        except GithubException as e:
            if e.status == 404:
                raise NotFoundError(f"GitHub owner not found: {self._owner}") from e
            if e.status == 429 or e.status >= 500:
                raise TransientError(f"List GitHub repositories failed: {e}") from e
            raise ValidationError(f"List GitHub repositories failed: {e}") from e
        except requests.RequestException as e:
            raise wrap_request_error(e, "List GitHub repositories") from e

        result = [
            RepositoryInfo(
                name=repo.name,
                clone_url=repo.clone_url,
                provider=ProviderKind.GITHUB,
                default_branch=repo.default_branch or "main",
                is_active=not repo.archived,
                description=repo.description or "",
                project_key=repo.owner.login,
            )
            for repo in repos
        ]
        logger.info(
            "Retrieved repositories from GitHub", extra={"owner": self._owner, "count": len(result)}
        )
        return result

    def default_branch(self, repository: RepositoryInfo) -> str:
        resp = self._request(
            "GET", self._repo_url(repository=repository, path=""), "Get GitHub repository"
        )
        raise_for_status(resp, "Get GitHub repository")
        data: dict[str, Any] = resp.json()
        default_branch = data.get("default_branch")
        if not isinstance(default_branch, str) or not default_branch.strip():
            return "main"
        return default_branch

    def get_branch_head_sha(self, *, repository: RepositoryInfo, branch: str) -> str | None:
        if not branch.strip():
            raise ValidationError("branch is required")
        resp = self._request(
            "GET",
            self._repo_url(repository=repository, path=f"git/ref/heads/{branch}"),
            "Get GitHub branch ref",
        )
        if resp.status_code == 404:
            return None
        raise_for_status(resp, "Get GitHub branch ref")
        obj = resp.json().get("object")
        if not isinstance(obj, dict):
            return None
        sha = obj.get("sha")
        if not isinstance(sha, str) or not sha.strip():
            return None
        return sha

    def create_branch(
        self, repository: RepositoryInfo, branch_name: str, base_branch: str | None = None
    ) -> bool:
        if not branch_name.strip():
            raise ValidationError("branch_name is required")
        base = (base_branch or repository.default_branch or "main").strip()

        base_sha = self.get_branch_head_sha(repository=repository, branch=base)
        if base_sha is None:
            logger.error(
                "Base branch not found",
                extra={"repository": repository.name, "base_branch": base},
            )
            return False

        resp = self._request(
            "POST",
            self._repo_url(repository=repository, path="git/refs"),
            "Create GitHub branch",
            json={"ref": f"refs/heads/{branch_name}", "sha": base_sha},
        )
        if resp.status_code == 422 and "already exists" in resp.text.lower():
            logger.info(
                "Branch already exists",
                extra={"repository": repository.name, "branch": branch_name},
            )
            return True
        if resp.ok:
            logger.info(
                "Created branch",
                extra={"repository": repository.name, "branch": branch_name, "base": base},
            )
            return True
        if resp.status_code == 429 or resp.status_code >= 500:
            raise_for_status(resp, "Create GitHub branch")

        logger.error(
            "GitHub rejected branch creation",
            extra={
                "repository": repository.name,
                "branch": branch_name,
                "status": resp.status_code,
                "response": resp.text[:300],
            },
        )
        return False

    def close(self) -> None:
        try:
            self._github.close()
        finally:
            self._session.close()


@register_provider(ProviderKind.GITHUB)
def _build(settings: TaskBridgeSettings) -> RepositoryProvider:
    settings.require("github_token", "github_owner")
    return GitHubProvider(
        token=settings.github_token,
        owner=settings.github_owner,
        base_url=settings.github_base_url,
        timeout=settings.request_timeout_seconds,
    )
