"""Best-effort transcript parser.

Turns a PGN-style transcript into an ordered list of ParsedMove records.
Anything that is not a legal SAN move in the current position is skipped
and parsing continues, so one corrupt token never loses the rest of the
game.

Usage:
    from chess_review.pgn_parser import parse_moves
    moves = parse_moves("1. e4 e5 2. Nf3 {main line} Nc6 1-0")
"""

from __future__ import annotations

import logging
import re

import chess

from chess_review.models import ParsedMove

logger = logging.getLogger(__name__)

_HEADER_RE = re.compile(r'^\s*\[(\w+)\s+"((?:[^"\\]|\\.)*)"\s*\]\s*$', re.MULTILINE)
_HEADER_LINE_RE = re.compile(r"^\s*\[.*\]\s*$", re.MULTILINE)
_COMMENT_RE = re.compile(r"\{[^}]*\}")
_LINE_COMMENT_RE = re.compile(r";[^\n]*")
_VARIATION_RE = re.compile(r"\([^()]*\)")
_OPEN_VARIATION_RE = re.compile(r"\([^\n]*")
_NAG_RE = re.compile(r"\$\d+")
_MOVE_NUMBER_RE = re.compile(r"\d+\.(?:\.\.)?")
_RESULT_RE = re.compile(r"(?:1-0|0-1|1/2-1/2|\*)\s*$")
_GLYPH_RE = re.compile(r"[!?]+$")
_RESULT_TOKENS = {"1-0", "0-1", "1/2-1/2", "*"}


def parse_headers(pgn: str) -> dict[str, str]:
    """Return the tag pairs of a transcript, e.g. {"White": "Carlsen"}."""
    return {
        name: value.replace('\\"', '"')
        for name, value in _HEADER_RE.findall(pgn)
    }


def _strip_annotations(pgn: str) -> str:
    """Reduce a transcript to whitespace-separated move tokens."""
    text = _HEADER_LINE_RE.sub(" ", pgn)
    text = _COMMENT_RE.sub(" ", text)
    text = _LINE_COMMENT_RE.sub(" ", text)

    # Variations nest, so peel them from the inside out
    previous = None
    while previous != text:
        previous = text
        text = _VARIATION_RE.sub(" ", text)

    # An unclosed variation runs to the end of its line
    text = _OPEN_VARIATION_RE.sub(" ", text).replace(")", " ")

    text = _NAG_RE.sub(" ", text)
    text = _MOVE_NUMBER_RE.sub(" ", text)
    return _RESULT_RE.sub(" ", text)


def _starting_board(headers: dict[str, str]) -> chess.Board:
    fen = headers.get("FEN")
    if fen:
        try:
            return chess.Board(fen)
        except ValueError:
            logger.warning("Ignoring invalid FEN header: %s", fen)
    return chess.Board()


def parse_moves(pgn: str) -> list[ParsedMove]:
    """Parse a transcript into legal moves.

    Args:
        pgn: Game transcript. May contain headers (a ``[FEN "..."]`` tag
            sets the start position), comments, variations, NAGs, move
            numbers and a result marker.

    Returns:
        ParsedMove list in play order. Empty if nothing parsed.
    """
    board = _starting_board(parse_headers(pgn))
    moves: list[ParsedMove] = []

    for raw in _strip_annotations(pgn).split():
        token = _GLYPH_RE.sub("", raw)
        if not token or token in _RESULT_TOKENS:
            continue
        try:
            move = board.parse_san(token)
        except ValueError:
            logger.debug("Skipping unparseable token %r at ply %d", raw, len(moves) + 1)
            continue

        fen_before = board.fen()
        side = "white" if board.turn == chess.WHITE else "black"
        legal_count = board.legal_moves.count()
        move_number = board.fullmove_number
        san = board.san(move)
        board.push(move)
        moves.append(
            ParsedMove(
                ply=len(moves) + 1,
                san=san,
                uci=move.uci(),
                side_to_move=side,
                fen_before=fen_before,
                fen_after=board.fen(),
                legal_move_count=legal_count,
                move_number=move_number,
            )
        )

    return moves
