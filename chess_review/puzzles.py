"""Practice puzzles built from a player's reviewed mistakes.

Each inaccuracy, mistake, blunder or miss the player made, where the
engine knew a better move, becomes a puzzle: the position before the
move with the engine's move as the solution. Puzzles are stored in one
JSON array, deduplicated by position.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from pathlib import Path

import chess

from chess_review.models import AnalyzedMove, PuzzleRecord
from chess_review.store import read_json, write_json_atomic

logger = logging.getLogger(__name__)


def _normalize_fen(fen: str) -> str:
    """Normalize FEN for deduplication (strip move counters)."""
    parts = fen.split()
    return " ".join(parts[:4])


def infer_theme(fen: str, solution_uci: str) -> str | None:
    """Name the shape of the solution move.

    Checkmate wins over castling, castling over check, check over capture.

    Returns:
        "checkmate", "castling", "check", "capture", or None for a quiet move
        or unreadable input.
    """
    try:
        board = chess.Board(fen)
        move = chess.Move.from_uci(solution_uci)
    except ValueError:
        return None
    if not board.is_legal(move):
        return None

    is_castling = board.is_castling(move)
    is_capture = board.is_capture(move)
    gives_check = board.gives_check(move)
    board.push(move)

    if board.is_checkmate():
        return "checkmate"
    if is_castling:
        return "castling"
    if gives_check:
        return "check"
    if is_capture:
        return "capture"
    return None


class PuzzleGenerator:
    """Turns a review's puzzle-worthy moves into PuzzleRecords."""

    def generate(
        self,
        review_id: str,
        moves: Iterable[AnalyzedMove],
        player_color: str,
        user_id: str = "local",
    ) -> list[PuzzleRecord]:
        puzzles = []
        for move in moves:
            if move.color != player_color or not move.classification.is_puzzle_worthy:
                continue
            if not move.best_move_uci or not move.best_move:
                continue
            puzzles.append(
                PuzzleRecord(
                    review_id=review_id,
                    move_id=move.id,
                    user_id=user_id,
                    fen=move.fen,
                    solution_uci=move.best_move_uci,
                    solution_san=move.best_move,
                    classification=move.classification.value,
                    player_move=move.san,
                    centipawn_loss=move.centipawn_loss,
                    theme=infer_theme(move.fen, move.best_move_uci),
                )
            )
        logger.debug("Generated %d puzzles for review %s", len(puzzles), review_id)
        return puzzles


class PuzzleStore:
    """Puzzle records in a single JSON array file."""

    def __init__(self, puzzles_path: str | Path = "data/puzzles.json") -> None:
        self._path = Path(puzzles_path)
        self._lock = threading.Lock()
        self._puzzles: list[dict] = self._load()

    def _load(self) -> list[dict]:
        return read_json(self._path, list) or []

    def _save(self) -> None:
        write_json_atomic(self._path, self._puzzles)

    def add_puzzles(self, puzzles: Iterable[PuzzleRecord]) -> list[PuzzleRecord]:
        """Store new puzzles, skipping positions already stored.

        Returns:
            The puzzles that were actually added.
        """
        with self._lock:
            seen_fens = {_normalize_fen(p["fen"]) for p in self._puzzles}
            added = []
            for puzzle in puzzles:
                norm = _normalize_fen(puzzle.fen)
                if norm in seen_fens:
                    continue
                seen_fens.add(norm)
                self._puzzles.append(puzzle.to_dict())
                added.append(puzzle)
            if added:
                self._save()
        return added

    def all_puzzles(self) -> list[PuzzleRecord]:
        return [PuzzleRecord.from_dict(p) for p in self._puzzles]

    def puzzles_for_review(self, review_id: str) -> list[PuzzleRecord]:
        return [
            PuzzleRecord.from_dict(p) for p in self._puzzles
            if p.get("review_id") == review_id
        ]
