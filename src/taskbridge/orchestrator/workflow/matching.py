"""Keyword-based repository matching.

Scoring is deliberately simple: the share of task keywords that appear as
substrings of a repository's name and description. Both the keyword policy and
the acceptance threshold are injectable.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from taskbridge.orchestrator.providers.base import RepositoryInfo

logger = logging.getLogger(__name__)

STOP_WORDS: frozenset[str] = frozenset(
    {
        "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
        "by", "is", "are", "was", "were", "be", "been", "have", "has", "had",
        "do", "does", "did", "will", "would", "should", "could", "can", "may",
        "might", "must", "shall",
    }
)  # fmt: skip

TRAILING_PUNCTUATION = ".,!?;:"


class HasText(Protocol):
    title: str
    description: str


class KeywordExtractor(Protocol):
    def __call__(self, text: str) -> list[str]: ...


@dataclass(frozen=True, slots=True)
class DefaultKeywordExtractor:
    """Lower-case, split on whitespace, strip trailing punctuation, drop stop words
    and short tokens, de-duplicate keeping first-seen order."""

    stop_words: frozenset[str] = STOP_WORDS
    min_length: int = 4

    def __call__(self, text: str) -> list[str]:
        seen: dict[str, None] = {}
        for raw in text.lower().split():
            word = raw.rstrip(TRAILING_PUNCTUATION)
            if len(word) < self.min_length or word in self.stop_words:
                continue
            seen.setdefault(word, None)
        return list(seen)


@dataclass(frozen=True, slots=True)
class MatchScore:
    repository: RepositoryInfo
    matches: int
    score: float


@dataclass(slots=True)
class RepositoryMatcher:
    """Pick the catalog repository that best fits a work item's text.

    Args:
        min_keyword_matches: A repository must match at least this many keywords
            to be suitable. 0 means the best-scoring active repository is always
            returned, even with no matching keywords.
        extractor: Keyword extraction policy.
    """

    min_keyword_matches: int = 1
    extractor: KeywordExtractor = field(default_factory=DefaultKeywordExtractor)

    def keywords_for(self, title: str, description: str) -> list[str]:
        return self.extractor(f"{title} {description}")

    def score(self, repository: RepositoryInfo, keywords: Sequence[str]) -> MatchScore:
        haystack = f"{repository.name} {repository.description}".lower()
        matches = sum(1 for keyword in keywords if keyword in haystack)
        return MatchScore(
            repository=repository, matches=matches, score=matches / max(len(keywords), 1)
        )

    def rank(self, item: HasText, catalog: Iterable[RepositoryInfo]) -> list[MatchScore]:
        """Score every active repository, best first; ties keep catalog order."""

        keywords = self.keywords_for(item.title or "", item.description or "")
        scores = [self.score(repo, keywords) for repo in catalog if repo.is_active]
        # sorted() is stable, so equal scores keep catalog order.
        return sorted(scores, key=lambda s: s.score, reverse=True)

    def find_suitable(
        self, item: HasText, catalog: Iterable[RepositoryInfo]
    ) -> RepositoryInfo | None:
        ranked = self.rank(item, catalog)
        if not ranked:
            return None

        best = ranked[0]
        if best.matches < self.min_keyword_matches:
            logger.info(
                "Best repository below match threshold",
                extra={
                    "repository": best.repository.name,
                    "matches": best.matches,
                    "threshold": self.min_keyword_matches,
                },
            )
            return None

        logger.debug(
            "Repository matched",
            extra={"repository": best.repository.name, "score": round(best.score, 3)},
        )
        return best.repository
