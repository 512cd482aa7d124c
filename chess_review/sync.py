"""Best-effort push of finished reviews to a remote service.

The orchestrator calls ``push_review`` after the review is safely stored
locally and ignores any failure, so a remote outage never costs the
user their analysis.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import requests

from chess_review.models import GameReview, PuzzleRecord

logger = logging.getLogger(__name__)


class RemoteSync(Protocol):
    def push_review(self, review: GameReview, puzzles: list[PuzzleRecord]) -> None: ...


class NullSync:
    """Sync target used when no remote is configured."""

    def push_review(self, review: GameReview, puzzles: list[PuzzleRecord]) -> None:
        logger.debug("Remote sync disabled, skipping review %s", review.id)


class HttpSync:
    """POST the review, its moves and its puzzles as one JSON payload."""

    def __init__(self, url: str, token: str | None = None, timeout: float = 10.0) -> None:
        self._url = url.rstrip("/")
        self._token = token
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def build_payload(self, review: GameReview, puzzles: list[PuzzleRecord]) -> dict[str, Any]:
        return {
            "review": review.to_dict(include_moves=False),
            "moves": [m.to_dict() for m in review.moves],
            "puzzles": [p.to_dict() for p in puzzles],
        }

    def push_review(self, review: GameReview, puzzles: list[PuzzleRecord]) -> None:
        """Send the review.

        Raises:
            requests.RequestException: On network failure or an HTTP error status.
        """
        response = requests.post(
            f"{self._url}/reviews",
            json=self.build_payload(review, puzzles),
            headers=self._headers(),
            timeout=self._timeout,
        )
        response.raise_for_status()
        logger.info("Synced review %s (%d puzzles)", review.id, len(puzzles))


def sync_from_url(url: str | None, token: str | None = None) -> RemoteSync:
    return HttpSync(url, token=token) if url else NullSync()
