"""Threshold policy on top of identity store search."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from faceid.logging_config import get_logger
from faceid.store import IdentityStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class MatchResult:
    """Nearest enrolled identity for a query.

    Attributes:
        name: Closest enrolled name
        distance: Squared Euclidean distance to it
        is_known: True if distance <= threshold
    """

    name: str
    distance: float
    is_known: bool

    def __repr__(self) -> str:
        return (
            f"MatchResult(name='{self.name}', distance={self.distance:.4f}, "
            f"is_known={self.is_known})"
        )


class IdentityMatcher:
    """Accepts the nearest enrolled identity when it is close enough.

    The matcher owns no state besides the store it queries. A query whose
    nearest identity is farther than the threshold is a normal "unknown"
    outcome, not an error.

    Example:
        >>> matcher = IdentityMatcher(store)
        >>> matcher.match_best(query_embedding, threshold=0.8)
        'alice'
    """

    def __init__(self, store: IdentityStore):
        self.store = store

    @staticmethod
    def _check_threshold(threshold: float) -> None:
        if not threshold >= 0.0:
            raise ValueError(f"Threshold must be >= 0, got {threshold}")

    def match(self, query: np.ndarray, threshold: float) -> Optional[MatchResult]:
        """Return the nearest identity with its distance, or None if the store is empty."""
        self._check_threshold(threshold)

        results = self.store.search(query, limit=1)
        if not results:
            logger.debug("No identities enrolled, nothing to match")
            return None

        name, distance = results[0]
        result = MatchResult(name=name, distance=distance, is_known=distance <= threshold)

        if result.is_known:
            logger.debug(f"Recognized: {name} (distance={distance:.4f}, threshold={threshold:.4f})")
        else:
            logger.debug(
                f"Unknown face (best match: {name} with distance={distance:.4f}, "
                f"above threshold={threshold:.4f})"
            )

        return result

    def match_best(self, query: np.ndarray, threshold: float) -> Optional[str]:
        """Return the nearest enrolled name if within ``threshold``, else None.

        Args:
            query: L2-normalized query embedding, shape [D]
            threshold: Maximum accepted squared Euclidean distance (>= 0)

        Raises:
            ValueError: If threshold is negative or the query has the wrong shape.
        """
        result = self.match(query, threshold)
        if result is None or not result.is_known:
            return None
        return result.name

    def __repr__(self) -> str:
        return f"IdentityMatcher(store={self.store!r})"
