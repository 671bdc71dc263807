"""Repository provider contract and registry.

Exactly one provider is wired at a time. Providers register themselves against
a :class:`ProviderKind`; adding a provider means adding a kind and a module, not
editing a dispatch switch.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskbridge.orchestrator.config import TaskBridgeSettings

logger = logging.getLogger(__name__)


class ProviderKind(str, Enum):
    BITBUCKET = "bitbucket"
    GITHUB = "github"


@dataclass(frozen=True, slots=True)
class RepositoryInfo:
    """Immutable repository snapshot passed between the store, matcher and providers."""

    name: str
    clone_url: str
    provider: ProviderKind
    default_branch: str = "main"
    is_active: bool = True
    description: str = ""
    project_key: str | None = None
    id: int | None = None


class RepositoryProvider(ABC):
    """A source-control host the engine can list repositories on and branch in.

    Implementations raise :mod:`taskbridge.orchestrator.errors` exceptions for
    transport failures and return ``False`` when the host rejects a branch.
    """

    kind: ProviderKind

    @abstractmethod
    def list_active(self) -> list[RepositoryInfo]:
        """Return the repositories currently available on the host."""

    @abstractmethod
    def create_branch(
        self, repository: RepositoryInfo, branch_name: str, base_branch: str | None = None
    ) -> bool:
        """Create `branch_name` from `base_branch` (default: the repository default branch)."""

    @abstractmethod
    def default_branch(self, repository: RepositoryInfo) -> str:
        """Return the repository's default branch name."""

    def close(self) -> None:  # noqa: B027 (optional hook)
        """Release network resources."""


ProviderFactory = Callable[["TaskBridgeSettings"], RepositoryProvider]

_REGISTRY: dict[ProviderKind, ProviderFactory] = {}


def register_provider(kind: ProviderKind) -> Callable[[ProviderFactory], ProviderFactory]:
    """Class/function decorator registering a provider factory for `kind`."""

    def decorator(factory: ProviderFactory) -> ProviderFactory:
        _REGISTRY[kind] = factory
        return factory

    return decorator


def build_provider(settings: TaskBridgeSettings) -> RepositoryProvider:
    """Build the provider selected by `settings.repository_provider`.

    Raises:
        ValueError: If no factory is registered for the kind.
    """

    kind = settings.repository_provider
    factory = _REGISTRY.get(kind)
    if factory is None:
        raise ValueError(f"Unsupported repository provider: {kind.value}")

    logger.info("Creating repository provider", extra={"provider": kind.value})
    return factory(settings)
