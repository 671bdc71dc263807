"""Bitbucket Cloud provider (REST API 2.0)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import requests

from taskbridge.orchestrator.errors import (
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


class BitbucketProvider(RepositoryProvider):
    """Small wrapper around the Bitbucket REST API for the calls the engine needs."""

    kind = ProviderKind.BITBUCKET

    def __init__(
        self,
        *,
        workspace: str,
        username: str,
        token: str,
        base_url: str = "https://api.bitbucket.org",
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        if not workspace:
            raise ValueError("Bitbucket workspace is required")

        self._workspace = workspace
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        if username and token:
            self._session.auth = (username, token)
        self._session.headers.update(
            {"Accept": "application/json", "User-Agent": "taskbridge"}
        )

    def _url(self, path: str) -> str:
        return f"{self._base_url}/2.0/repositories/{quote(self._workspace)}/{path.lstrip('/')}"

    def _request(self, method: str, url: str, what: str, **kwargs: Any) -> requests.Response:
        try:
            return self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.RequestException as e:
            raise wrap_request_error(e, what) from e

    def list_active(self) -> list[RepositoryInfo]:
        url: str | None = self._url("")
        repos: list[RepositoryInfo] = []
        # Follow `next` links; cap pages so a misbehaving API can't loop forever.
        for _ in range(20):
            if url is None:
                break
            resp = self._request("GET", url, "List Bitbucket repositories")
            raise_for_status(resp, "List Bitbucket repositories")
            data: dict[str, Any] = resp.json()
            for raw in data.get("values") or []:
                if isinstance(raw, dict):
                    repos.append(self._to_info(raw))
            next_url = data.get("next")
            url = next_url if isinstance(next_url, str) and next_url else None

        logger.info(
            "Retrieved repositories from Bitbucket",
            extra={"workspace": self._workspace, "count": len(repos)},
        )
        return repos

    def create_branch(
        self, repository: RepositoryInfo, branch_name: str, base_branch: str | None = None
    ) -> bool:
        if not branch_name.strip():
            raise ValidationError("branch_name is required")
        base = (base_branch or repository.default_branch or "main").strip()
        slug = quote(repository.name)

        commit_hash = self._branch_head(slug, base)
        if not commit_hash:
            logger.error(
                "Could not resolve base branch commit",
                extra={"repository": repository.name, "base_branch": base},
            )
            return False

        resp = self._request(
            "POST",
            self._url(f"{slug}/refs/branches"),
            "Create Bitbucket branch",
            json={"name": branch_name, "target": {"hash": commit_hash}},
        )
        if resp.ok:
            logger.info(
                "Created branch",
                extra={"repository": repository.name, "branch": branch_name, "base": base},
            )
            return True

        if resp.status_code == 429 or resp.status_code >= 500:
            raise_for_status(resp, "Create Bitbucket branch")

        logger.error(
            "Bitbucket rejected branch creation",
            extra={
                "repository": repository.name,
                "branch": branch_name,
                "status": resp.status_code,
                "response": resp.text[:300],
            },
        )
        return False

    def default_branch(self, repository: RepositoryInfo) -> str:
        resp = self._request("GET", self._url(quote(repository.name)), "Get Bitbucket repository")
        raise_for_status(resp, "Get Bitbucket repository")
        return _main_branch(resp.json())

    def close(self) -> None:
        self._session.close()

    def _branch_head(self, slug: str, branch: str) -> str | None:
        resp = self._request(
            "GET",
            self._url(f"{slug}/refs/branches/{quote(branch, safe='')}"),
            "Get Bitbucket base branch",
        )
        if resp.status_code == 404:
            return None
        raise_for_status(resp, "Get Bitbucket base branch")
        target = resp.json().get("target")
        if isinstance(target, dict):
            value = target.get("hash")
            if isinstance(value, str) and value.strip():
                return value
        return None

    def _to_info(self, raw: dict[str, Any]) -> RepositoryInfo:
        project = raw.get("project")
        project_key = project.get("key") if isinstance(project, dict) else None
        return RepositoryInfo(
            name=str(raw.get("slug") or raw.get("name") or ""),
            clone_url=_clone_url(raw),
            provider=ProviderKind.BITBUCKET,
            default_branch=_main_branch(raw),
            is_active=True,
            description=str(raw.get("description") or ""),
            project_key=project_key if isinstance(project_key, str) else None,
        )


def _clone_url(raw: dict[str, Any]) -> str:
    links = raw.get("links")
    if not isinstance(links, dict):
        return ""
    clones = links.get("clone")
    if not isinstance(clones, list):
        return ""
    # Prefer https over ssh when both are present.
    hrefs = {c.get("name"): c.get("href") for c in clones if isinstance(c, dict)}
    href = hrefs.get("https") or next((h for h in hrefs.values() if h), "")
    return href if isinstance(href, str) else ""


def _main_branch(raw: dict[str, Any]) -> str:
    main = raw.get("mainbranch")
    if isinstance(main, dict):
        name = main.get("name")
        if isinstance(name, str) and name.strip():
            return name
    return "main"


@register_provider(ProviderKind.BITBUCKET)
def _build(settings: TaskBridgeSettings) -> RepositoryProvider:
    settings.require("bitbucket_workspace", "bitbucket_username", "bitbucket_token")
    return BitbucketProvider(
        workspace=settings.bitbucket_workspace,
        username=settings.bitbucket_username,
        token=settings.bitbucket_token,
        base_url=settings.bitbucket_base_url,
        timeout=settings.request_timeout_seconds,
    )
