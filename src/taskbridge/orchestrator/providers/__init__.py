"""Repository providers (source-control hosts).

Importing the package registers the built-in Bitbucket and GitHub providers.
"""

from taskbridge.orchestrator.providers import bitbucket, github  # noqa: F401
from taskbridge.orchestrator.providers.base import (
    ProviderKind,
    RepositoryInfo,
    RepositoryProvider,
    build_provider,
    register_provider,
)

__all__ = [
    "ProviderKind",
    "RepositoryInfo",
    "RepositoryProvider",
    "build_provider",
    "register_provider",
]
