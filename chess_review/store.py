"""JSON file persistence for reviews and their moves.

One document per review under ``<data_dir>/reviews/<id>.json``. Writes
go through a temp file and os.replace() so a crash never leaves a
half-written review. A corrupt document is backed up as .bak and
treated as missing. The puzzle store shares the same file helpers.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import threading
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from chess_review.models import (
    AccuracySummary,
    AnalyzedMove,
    GameReview,
    OpeningInfo,
    ReviewStatus,
)

logger = logging.getLogger(__name__)


class ReviewStore(Protocol):
    """Persistence collaborator used by the orchestrator."""

    def create_review(self, review: GameReview) -> str: ...

    def update_progress(self, review_id: str, fraction: float, status: ReviewStatus) -> None: ...

    def save_moves(self, review_id: str, moves: list[AnalyzedMove]) -> None: ...

    def save_opening(
        self, review_id: str, opening: OpeningInfo | None, book_version: int | None
    ) -> None: ...

    def complete_review(
        self, review_id: str, white: AccuracySummary, black: AccuracySummary
    ) -> None: ...

    def fail_review(self, review_id: str, error: str) -> None: ...


def write_json_atomic(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".tmp")
    tmp_path.write_text(
        json.dumps(data, indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    os.replace(tmp_path, path)


def read_json(path: Path, expected_type: type):
    """Load a JSON document, backing up and ignoring a corrupt one.

    Returns:
        The parsed document, or None if missing or corrupt.
    """
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, expected_type):
            raise ValueError(f"{path.name} must contain a JSON {expected_type.__name__}")
        return data
    except (json.JSONDecodeError, ValueError) as exc:
        logger.warning("Corrupt file %s (%s), backing up", path, exc)
        shutil.copy2(path, path.with_suffix(".bak"))
        return None


class JsonReviewStore:
    """ReviewStore backed by one JSON file per review."""

    def __init__(self, data_dir: str | Path = "data") -> None:
        self._reviews_dir = Path(data_dir) / "reviews"
        self._lock = threading.Lock()

    def _path(self, review_id: str) -> Path:
        return self._reviews_dir / f"{review_id}.json"

    def _load(self, review_id: str) -> dict:
        data = read_json(self._path(review_id), dict)
        if data is None:
            raise KeyError(f"Review not found: {review_id}")
        return data

    def _update(self, review_id: str, **fields) -> None:
        with self._lock:
            data = self._load(review_id)
            data.update(fields)
            write_json_atomic(self._path(review_id), data)

    # -- ReviewStore --------------------------------------------------------

    def create_review(self, review: GameReview) -> str:
        with self._lock:
            write_json_atomic(self._path(review.id), review.to_dict())
        logger.debug("Created review %s", review.id)
        return review.id

    def update_progress(self, review_id: str, fraction: float, status: ReviewStatus) -> None:
        self._update(review_id, progress=round(fraction, 4), status=status.value)

    def save_moves(self, review_id: str, moves: list[AnalyzedMove]) -> None:
        self._update(review_id, moves=[m.to_dict() for m in moves])

    def save_opening(
        self, review_id: str, opening: OpeningInfo | None, book_version: int | None
    ) -> None:
        self._update(
            review_id,
            opening=asdict(opening) if opening else None,
            book_version=book_version,
        )

    def complete_review(
        self, review_id: str, white: AccuracySummary, black: AccuracySummary
    ) -> None:
        self._update(
            review_id,
            status=ReviewStatus.COMPLETED.value,
            progress=1.0,
            white_summary=white.to_dict(),
            black_summary=black.to_dict(),
            analyzed_at=datetime.now(timezone.utc).isoformat(),
        )

    def fail_review(self, review_id: str, error: str) -> None:
        self._update(review_id, status=ReviewStatus.FAILED.value, error_message=error)

    # -- Queries ------------------------------------------------------------

    def get_review(self, review_id: str) -> GameReview | None:
        data = read_json(self._path(review_id), dict)
        return GameReview.from_dict(data) if data else None

    def get_moves(self, review_id: str) -> list[AnalyzedMove]:
        review = self.get_review(review_id)
        return review.moves if review else []

    def list_reviews(self) -> list[dict]:
        """Review headers (no moves), newest first."""
        if not self._reviews_dir.exists():
            return []
        reviews = []
        for path in self._reviews_dir.glob("*.json"):
            data = read_json(path, dict)
            if data is None:
                continue
            data.pop("moves", None)
            reviews.append(data)
        reviews.sort(key=lambda r: r.get("created_at", ""), reverse=True)
        return reviews
