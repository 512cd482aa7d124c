"""Response schemas and minification for MCP tool responses.

Minifies review payloads to reduce LLM context token waste. Stored
review documents are NOT affected, only MCP return values.

Move lists are rendered as one annotated transcript string
(1.e4 e5 2.Qh5?? ...) which is natural for the LLM agent to read.
"""

from __future__ import annotations

import os


# ---------------------------------------------------------------------------
# Minification functions
# ---------------------------------------------------------------------------


def minify_summary(summary: dict | None) -> dict | None:
    """Keep accuracy and the non-zero label counts of an AccuracySummary dict."""
    if summary is None:
        return None
    result = {"accuracy": summary.get("accuracy", 0.0)}
    for key, value in summary.items():
        if key in ("accuracy", "total_moves"):
            continue
        if value:
            result[key] = value
    result["total_moves"] = summary.get("total_moves", 0)
    return result


def minify_review(review: dict) -> dict:
    """Minify a GameReview dict for MCP response.

    Drops timestamps, headers and per-move details; moves become an
    annotated transcript string and summaries keep only non-zero counts.

    Args:
        review: Full GameReview dict (from GameReview.to_dict()).

    Returns:
        Minified dict.
    """
    result = {}

    for key in ("id", "status", "player_color", "progress", "error_message"):
        result[key] = review.get(key)

    opening = review.get("opening")
    result["opening"] = (
        f"{opening.get('eco')} {opening.get('name')}" if isinstance(opening, dict) else None
    )

    result["white"] = minify_summary(review.get("white_summary"))
    result["black"] = minify_summary(review.get("black_summary"))

    moves = review.get("moves")
    if isinstance(moves, list):
        result["moves"] = _moves_to_annotated_string(moves)
        result["mistakes"] = [
            minify_move(m) for m in moves
            if m.get("color") == review.get("player_color")
            and m.get("classification") in ("inaccuracy", "mistake", "blunder", "miss")
        ]

    # Removed fields: user_id, game_id, depth, headers, created_at, analyzed_at

    return result


def minify_move(move: dict) -> dict:
    """Minify an AnalyzedMove dict for MCP response.

    Removes ids and FEN, folds mate scores into eval fields.

    Args:
        move: Full AnalyzedMove dict.

    Returns:
        Minified dict.
    """
    result = {
        "ply": move.get("ply"),
        "san": move.get("san"),
        "classification": move.get("classification"),
        "cp_loss": move.get("centipawn_loss", 0),
    }

    mate_after = move.get("mate_after")
    if mate_after is not None:
        result["eval_after"] = f"M{mate_after}"
    else:
        result["eval_after"] = move.get("eval_after")

    best = move.get("best_move")
    if best and move.get("best_move_uci") != move.get("uci"):
        result["best_move"] = best

    return result


def minify_puzzle(puzzle: dict) -> dict:
    """Keep what is needed to present a puzzle."""
    return {
        "id": puzzle.get("id"),
        "fen": puzzle.get("fen"),
        "solution_san": puzzle.get("solution_san"),
        "theme": puzzle.get("theme"),
        "classification": puzzle.get("classification"),
    }


# ---------------------------------------------------------------------------
# Helper: move list to annotated transcript
# ---------------------------------------------------------------------------

_ANNOTATIONS = {
    "brilliant": "!!",
    "great": "!",
    "inaccuracy": "?!",
    "mistake": "?",
    "miss": "?",
    "blunder": "??",
}


def _moves_to_annotated_string(moves: list[dict]) -> str:
    """Render moves as a transcript with quality glyphs.

    E.g., [e4 (book), e5 (book), Qh5 (mistake)] -> '1.e4 e5 2.Qh5?'

    Args:
        moves: AnalyzedMove dicts in play order.

    Returns:
        Transcript string.
    """
    parts = []
    for index, move in enumerate(moves):
        san = move.get("san", "") + _ANNOTATIONS.get(move.get("classification"), "")
        is_white = move.get("color") == "white"
        fen = move.get("fen", "")
        fields = fen.split()
        number = fields[5] if len(fields) == 6 else str(index // 2 + 1)
        if is_white:
            parts.append(f"{number}.{san}")
        elif index == 0:
            parts.append(f"{number}...{san}")
        else:
            parts.append(san)
    return " ".join(parts)


# ---------------------------------------------------------------------------
# Validation schemas (dict-based)
# ---------------------------------------------------------------------------

REVIEW_SCHEMA = {
    "id": str,
    "status": str,
    "player_color": str,
    "progress": (int, float),
    "error_message": (str, type(None)),
    "opening": (str, type(None)),
    "white": (dict, type(None)),
    "black": (dict, type(None)),
}

MOVES_SCHEMA = {
    "review_id": str,
    "moves": list,
}

PUZZLES_SCHEMA = {
    "review_id": str,
    "puzzles": list,
}

BOOK_SCHEMA = {
    "is_book": bool,
    "opening": (dict, type(None)),
}

ERROR_SCHEMA = {
    "error": str,
}


def validate_response(response: dict, schema: dict) -> list[str]:
    """Validate a response dict against a schema.

    Only runs when CHESS_REVIEW_VALIDATE=1 env var is set.

    Args:
        response: Response dict to validate.
        schema: Dict mapping key names to expected types (or tuple of types).

    Returns:
        List of validation error strings (empty = valid).
    """
    if os.environ.get("CHESS_REVIEW_VALIDATE") != "1":
        return []

    errors = []

    if not isinstance(response, dict):
        errors.append(f"Response is not a dict: {type(response).__name__}")
        return errors

    for key, expected_types in schema.items():
        if key not in response:
            errors.append(f"Missing key: {key}")
            continue

        value = response[key]
        if isinstance(expected_types, tuple):
            if not isinstance(value, expected_types):
                type_names = ", ".join(t.__name__ for t in expected_types)
                errors.append(
                    f"Key '{key}': expected ({type_names}), "
                    f"got {type(value).__name__}"
                )
        else:
            if not isinstance(value, expected_types):
                errors.append(
                    f"Key '{key}': expected {expected_types.__name__}, "
                    f"got {type(value).__name__}"
                )

    return errors
