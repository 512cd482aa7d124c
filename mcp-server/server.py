"""MCP server for chess game reviews.

Exposes the review pipeline to an LLM agent via FastMCP. Reviews and
puzzles are persisted under data/ so they survive server restarts.
Only one review runs at a time; a second request gets an error.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

# Add project root and mcp-server dir to path for imports
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_MCP_SERVER_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(_PROJECT_ROOT))
sys.path.insert(0, str(_MCP_SERVER_DIR))

import chess
from mcp.server.fastmcp import FastMCP

from chess_review.analyzer import GameAnalyzer
from chess_review.config import load_config
from chess_review.engine import EngineSessionManager
from chess_review.errors import AnalysisInProgressError
from chess_review.openings import default_book
from chess_review.puzzles import PuzzleStore
from chess_review.store import JsonReviewStore
from chess_review.sync import sync_from_url

from response_schemas import (  # noqa: E402
    minify_move,
    minify_puzzle,
    minify_review,
)

logger = logging.getLogger(__name__)

mcp = FastMCP("chess-review")

_config = load_config()
_DATA_DIR = Path(_config.data_dir)
if not _DATA_DIR.is_absolute():
    _DATA_DIR = _PROJECT_ROOT / _DATA_DIR

_store = JsonReviewStore(_DATA_DIR)
_puzzle_store = PuzzleStore(_DATA_DIR / "puzzles.json")
_analyzer = GameAnalyzer(
    EngineSessionManager(stockfish_path=_config.stockfish_path),
    _store,
    puzzle_store=_puzzle_store,
    sync=sync_from_url(_config.sync_url),
    config=_config,
)


@mcp.tool()
async def review_game(pgn: str, player_color: str = "white", game_id: str | None = None) -> dict:
    """Analyze a finished game and classify every move.

    Runs Stockfish over each non-book position, labels moves (brilliant,
    best, inaccuracy, blunder, ...), scores both sides' accuracy and saves
    puzzles from the player's mistakes. The analysis runs in a worker
    thread so cancel_review can be served while it is in flight.

    Args:
        pgn: Game transcript in PGN or plain SAN move list form.
        player_color: "white" or "black", the side the user played.
        game_id: Optional id of the source game.

    Returns:
        Minified review dict (status, accuracy per side, annotated moves,
        player's mistakes), or {"error": ...}.
    """
    if player_color not in ("white", "black"):
        return {"error": f"player_color must be 'white' or 'black', got {player_color!r}"}

    try:
        review = await asyncio.to_thread(
            _analyzer.analyze, pgn, game_id=game_id, player_color=player_color
        )
    except AnalysisInProgressError as exc:
        return {"error": str(exc)}

    result = minify_review(review.to_dict())
    result["puzzles_created"] = len(_analyzer.last_puzzles)
    return result


@mcp.tool()
def get_review(review_id: str) -> dict:
    """Fetch a stored review.

    Args:
        review_id: UUID returned by review_game.

    Returns:
        Minified review dict, or {"error": ...} if not found.
    """
    review = _store.get_review(review_id)
    if review is None:
        return {"error": f"Review not found: {review_id}"}
    return minify_review(review.to_dict())


@mcp.tool()
def list_reviews(limit: int = 10) -> dict:
    """List stored reviews, newest first.

    Args:
        limit: Maximum number of reviews to return.

    Returns:
        Dict with a reviews list of id/status/opening/accuracy entries.
    """
    reviews = []
    for data in _store.list_reviews()[:limit]:
        minified = minify_review(data)
        reviews.append({
            "id": minified["id"],
            "status": minified["status"],
            "opening": minified["opening"],
            "player_color": minified["player_color"],
            "white_accuracy": (minified["white"] or {}).get("accuracy"),
            "black_accuracy": (minified["black"] or {}).get("accuracy"),
        })
    return {"reviews": reviews}


@mcp.tool()
def get_review_moves(
    review_id: str,
    color: str | None = None,
    classification: str | None = None,
) -> dict:
    """List the analyzed moves of a review.

    Args:
        review_id: UUID of the review.
        color: Optional "white" or "black" filter.
        classification: Optional label filter, e.g. "blunder".

    Returns:
        Dict with review_id and a moves list, or {"error": ...}.
    """
    review = _store.get_review(review_id)
    if review is None:
        return {"error": f"Review not found: {review_id}"}

    moves = review.moves
    if color is not None:
        moves = [m for m in moves if m.color == color]
    if classification is not None:
        moves = [m for m in moves if m.classification.value == classification.lower()]
    return {"review_id": review_id, "moves": [minify_move(m.to_dict()) for m in moves]}


@mcp.tool()
def get_review_puzzles(review_id: str) -> dict:
    """Puzzles generated from a review's mistakes.

    Args:
        review_id: UUID of the review.

    Returns:
        Dict with review_id and a puzzles list.
    """
    puzzles = _puzzle_store.puzzles_for_review(review_id)
    return {"review_id": review_id, "puzzles": [minify_puzzle(p.to_dict()) for p in puzzles]}


@mcp.tool()
def cancel_review() -> dict:
    """Cancel the review currently running, if any.

    Returns:
        Dict with a cancelled flag.
    """
    if not _analyzer.is_analyzing:
        return {"cancelled": False, "message": "No review is running"}
    _analyzer.cancel()
    return {"cancelled": True, "message": "Cancellation requested"}


@mcp.tool()
def check_book_move(fen: str, move: str, ply: int = 1) -> dict:
    """Check whether a move is a known opening book move.

    Args:
        fen: Position before the move.
        move: Move in SAN or UCI notation.
        ply: 1-based ply number of the move in its game.

    Returns:
        Dict with is_book and opening ({eco, name} or None), or {"error": ...}.
    """
    try:
        board = chess.Board(fen)
    except ValueError as exc:
        return {"error": f"Invalid FEN: {exc}"}

    try:
        chess_move = board.parse_san(move)
    except ValueError:
        try:
            chess_move = chess.Move.from_uci(move)
        except ValueError:
            return {"error": f"Unreadable move: {move}"}

    match = default_book().is_book_move(fen, chess_move.uci(), ply)
    opening = None
    if match.opening is not None:
        opening = {"eco": match.opening.eco, "name": match.opening.name}
    return {"is_book": match.is_book, "opening": opening}


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    mcp.run()
