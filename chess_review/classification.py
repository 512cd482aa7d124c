"""Centipawn-loss to label mapping.

``classify`` is a pure function of the loss, the contextual flags and
the threshold table. Special labels (book, brilliant, forced) win over
the loss bands; the loss itself is discounted by game phase first.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from chess_review.config import (
    LATE_GAME_MULTIPLIER,
    PHASE_FORGIVENESS,
    SHALLOW,
    ClassificationThresholds,
)
from chess_review.models import Classification


@dataclass(frozen=True)
class MoveFlags:
    is_best: bool = False
    is_book: bool = False
    is_brilliant: bool = False
    is_great: bool = False
    is_miss: bool = False
    is_forced: bool = False


def phase_multiplier(move_number: int) -> float:
    """Forgiveness factor for the full-move number."""
    for last_move, multiplier in PHASE_FORGIVENESS:
        if move_number <= last_move:
            return multiplier
    return LATE_GAME_MULTIPLIER


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def adjusted_loss(centipawn_loss: int, move_number: int | None) -> int:
    if move_number is None:
        return centipawn_loss
    return _round_half_up(centipawn_loss * phase_multiplier(move_number))


def classify(
    centipawn_loss: int,
    flags: MoveFlags = MoveFlags(),
    move_number: int | None = None,
    eval_before: int | None = None,
    eval_after: int | None = None,
    is_check: bool = False,
    thresholds: ClassificationThresholds = SHALLOW,
) -> Classification:
    """Map a move's centipawn loss and context to a Classification.

    Args:
        centipawn_loss: Non-negative loss from the mover's perspective.
        flags: Contextual flags computed by the caller.
        move_number: Full-move number, enables phase forgiveness.
        eval_before: Mover-perspective centipawns before the move.
        eval_after: Mover-perspective centipawns after the move.
        is_check: Whether the move gives check.
        thresholds: Band table to compare the adjusted loss against.

    Returns:
        The label for the move.
    """
    if flags.is_book:
        return Classification.BOOK
    if flags.is_brilliant:
        return Classification.BRILLIANT
    if flags.is_forced:
        return Classification.FORCED

    loss = adjusted_loss(centipawn_loss, move_number)

    # Already winning comfortably, and still winning
    if eval_before is not None and eval_after is not None:
        if (
            eval_before >= thresholds.dominant
            and eval_after >= thresholds.still_winning
            and loss <= thresholds.miss
        ):
            return Classification.GOOD

    # A played best move can never be a miss
    if flags.is_best or loss == 0:
        return Classification.BEST

    if flags.is_great or (is_check and loss <= thresholds.best):
        return Classification.GREAT

    if flags.is_miss:
        return Classification.MISS

    if loss <= thresholds.best:
        return Classification.BEST
    if loss <= thresholds.good:
        return Classification.GOOD
    if loss <= thresholds.inaccuracy:
        return Classification.INACCURACY
    if loss <= thresholds.miss:
        return Classification.MISS
    if loss <= thresholds.mistake:
        return Classification.MISTAKE
    return Classification.BLUNDER
