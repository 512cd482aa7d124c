"""Opening book lookup keyed by normalized position.

The static table in ``opening_lines`` is expanded once into a map from
position key (FEN fields 1-4: placement, side, castling, en passant) to
opening metadata. Every position along each stored line is a key, so a
game that follows a stored line is in book on every ply of it.

Usage:
    from chess_review.openings import default_book
    match = default_book().is_book_move(fen_before, "e2e4", ply=1)
"""

from __future__ import annotations

import functools
import json
import logging
from pathlib import Path
from typing import NamedTuple

import chess

from chess_review.models import OpeningInfo
from chess_review.opening_lines import OPENING_LINES, OPENING_LINES_VERSION

logger = logging.getLogger(__name__)

# Plies after which no move is considered book
MAX_BOOK_PLY = 25


class BookMatch(NamedTuple):
    is_book: bool
    opening: OpeningInfo | None = None


_NOT_BOOK = BookMatch(False, None)


def position_key(fen: str) -> str:
    """Normalize a FEN to its first four fields."""
    return chess.Board(fen).epd()


class OpeningBook:
    """Static opening table pre-expanded into a position map.

    ``version`` identifies the table; None for a table loaded from a file.
    """

    def __init__(
        self,
        lines=OPENING_LINES,
        max_book_ply: int = MAX_BOOK_PLY,
        version: int | None = OPENING_LINES_VERSION,
    ) -> None:
        self.version = version
        self._max_book_ply = max_book_ply
        # Final position of a named line -> that line
        self._named: dict[str, OpeningInfo] = {}
        # Every position along any line -> first line reaching it
        self._positions: dict[str, OpeningInfo] = {}
        for eco, name, moves in lines:
            self._add_line(eco, name, moves)

    def _add_line(self, eco: str, name: str, moves: str) -> None:
        info = OpeningInfo(eco=eco, name=name)
        board = chess.Board()
        keys = []
        for san in moves.split():
            try:
                board.push_san(san)
            except ValueError:
                logger.warning("Skipping opening %s %r: bad move %r", eco, name, san)
                return
            keys.append(board.epd())

        for key in keys:
            self._positions.setdefault(key, info)
        if keys:
            self._named[keys[-1]] = info

    @classmethod
    def from_json(cls, path: str | Path, max_book_ply: int = MAX_BOOK_PLY) -> OpeningBook:
        """Load a replacement table of ``{eco, name, moves}`` objects.

        Falls back to the built-in table if the file is missing or corrupt.
        """
        path = Path(path)
        if not path.exists():
            return cls(max_book_ply=max_book_ply)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            lines = [(row["eco"], row["name"], row["moves"]) for row in data]
        except (json.JSONDecodeError, OSError, KeyError, TypeError) as exc:
            logger.warning("Opening table %s unreadable (%s), using built-in", path, exc)
            return cls(max_book_ply=max_book_ply)
        book = cls(lines, max_book_ply=max_book_ply, version=None)
        logger.info("Loaded opening table %s (%d positions)", path, book.size)
        return book

    @property
    def size(self) -> int:
        return len(self._positions)

    def _lookup(self, key: str) -> OpeningInfo | None:
        return self._named.get(key) or self._positions.get(key)

    def opening_for_position(self, fen: str) -> OpeningInfo | None:
        try:
            return self._lookup(position_key(fen))
        except ValueError:
            return None

    def is_book_move(self, fen_before: str, move_uci: str, ply: int) -> BookMatch:
        """Decide whether a move is a known book move.

        Args:
            fen_before: Position before the move.
            move_uci: The move in UCI notation.
            ply: 1-based ply number of the move in the game.

        Returns:
            BookMatch. Illegal moves and malformed input give not-book.
        """
        if ply > self._max_book_ply:
            return _NOT_BOOK

        try:
            board = chess.Board(fen_before)
            move = chess.Move.from_uci(move_uci)
            if not board.is_legal(move):
                return _NOT_BOOK
            before_key = board.epd()
            board.push(move)
        except ValueError:
            logger.debug("Book lookup failed for %s %s", fen_before, move_uci)
            return _NOT_BOOK

        opening = self._lookup(board.epd())
        if opening is not None:
            return BookMatch(True, opening)

        # Already inside a known line, so this move extends it
        opening = self._lookup(before_key)
        if opening is not None:
            return BookMatch(True, opening)

        return _NOT_BOOK

    def identify_opening(
        self, uci_moves: list[str], starting_fen: str = chess.STARTING_FEN
    ) -> OpeningInfo | None:
        """Deepest named opening reached by a move sequence."""
        try:
            board = chess.Board(starting_fen)
        except ValueError:
            return None

        best = None
        for uci in uci_moves:
            try:
                move = chess.Move.from_uci(uci)
            except ValueError:
                break
            if not board.is_legal(move):
                break
            board.push(move)
            key = board.epd()
            if key in self._named:
                best = self._named[key]
            elif key not in self._positions:
                break
        return best


@functools.lru_cache(maxsize=None)
def default_book() -> OpeningBook:
    """Process-wide book built from the built-in table on first use."""
    return OpeningBook()
