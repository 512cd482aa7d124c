"""Per-side accuracy from classified moves."""

from __future__ import annotations

import math
from collections.abc import Iterable

from chess_review.models import AccuracySummary, AnalyzedMove, Classification

# Labels that say nothing about the player's skill
_UNCOUNTED = (Classification.BOOK, Classification.FORCED, Classification.NONE)


def accuracy_from_mean_loss(mean_loss: float) -> float:
    """Convert mean centipawn loss to an accuracy in [0, 100]."""
    raw = 103.1668 * math.exp(-0.04354 * mean_loss) - 3.1669
    return max(0.0, min(100.0, raw))


def summarize(moves: Iterable[AnalyzedMove]) -> AccuracySummary:
    """Tally labels and compute accuracy for one side's moves.

    Moves labelled NONE are neither counted nor scored, so the label
    counts always add up to ``total_moves``.
    """
    summary = AccuracySummary()
    losses = []
    for move in moves:
        label = move.classification
        if label is Classification.NONE:
            continue
        setattr(summary, label.value, summary.count(label) + 1)
        summary.total_moves += 1
        if label not in _UNCOUNTED:
            losses.append(move.centipawn_loss)

    if losses:
        summary.accuracy = round(accuracy_from_mean_loss(sum(losses) / len(losses)), 1)
    return summary
