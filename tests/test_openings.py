"""Tests for the opening book.

Covers:
- Every ply of a stored line is book, and the line is identified
- Unknown openings, late plies, illegal moves and bad FENs are not book
- Moves that leave a known position extend it
- Deepest named opening wins in identification
- Replacement tables from JSON, with fallback to the built-in table
"""

from __future__ import annotations

import json

import chess
import pytest

from chess_review.models import OpeningInfo
from chess_review.opening_lines import OPENING_LINES, OPENING_LINES_VERSION
from chess_review.openings import (
    MAX_BOOK_PLY,
    OpeningBook,
    default_book,
    position_key,
)

_NAJDORF = "e4 c5 Nf3 d6 d4 cxd4 Nxd4 Nf6 Nc3 a6"


def _walk(sans: str, book: OpeningBook):
    """Yield (ply, BookMatch) for each move of a SAN sequence."""
    board = chess.Board()
    for ply, san in enumerate(sans.split(), start=1):
        move = board.parse_san(san)
        yield ply, book.is_book_move(board.fen(), move.uci(), ply)
        board.push(move)


def _uci_line(sans: str) -> list[str]:
    board = chess.Board()
    return [board.push_san(san).uci() for san in sans.split()]


@pytest.fixture(scope="module")
def book():
    return OpeningBook()


class TestBookMoves:
    def test_every_ply_of_stored_line_is_book(self, book):
        matches = list(_walk(_NAJDORF, book))
        assert all(match.is_book for _, match in matches)

    def test_final_ply_names_the_line(self, book):
        *_, (_, last) = _walk(_NAJDORF, book)
        assert last.opening.eco == "B90"

    def test_unknown_opening_never_book(self, book):
        assert not any(match.is_book for _, match in _walk("a3 a6 h3 h6", book))

    def test_move_out_of_known_position_extends_it(self, book):
        board = chess.Board()
        for san in _NAJDORF.split():
            board.push_san(san)
        match = book.is_book_move(board.fen(), "c1e3", 11)
        assert match.is_book
        assert match.opening.name == "Sicilian Defense: Najdorf Variation"

    def test_ply_ceiling(self, book):
        assert book.is_book_move(chess.STARTING_FEN, "e2e4", MAX_BOOK_PLY).is_book
        assert not book.is_book_move(chess.STARTING_FEN, "e2e4", MAX_BOOK_PLY + 1).is_book

    def test_illegal_move_not_book(self, book):
        assert not book.is_book_move(chess.STARTING_FEN, "e2e5", 1).is_book

    @pytest.mark.parametrize("fen, move", [
        ("not a fen", "e2e4"),
        (chess.STARTING_FEN, "nonsense"),
    ])
    def test_malformed_input_not_book(self, book, fen, move):
        match = book.is_book_move(fen, move, 1)
        assert not match.is_book
        assert match.opening is None

    def test_transposition_ignores_move_counters(self, book):
        board = chess.Board()
        board.push_san("e4")
        fen = board.fen().rsplit(" ", 2)[0] + " 0 7"
        assert book.is_book_move(fen, "c7c5", 2).is_book


class TestIdentification:
    def test_deepest_named_match(self, book):
        assert book.identify_opening(_uci_line(_NAJDORF)).eco == "B90"

    def test_stops_when_leaving_book(self, book):
        opening = book.identify_opening(_uci_line("e4 c5 Nf3 d6 d4 cxd4 Nxd4 Nf6 a3 a6"))
        assert opening.eco == "B50"

    def test_no_match(self, book):
        assert book.identify_opening(_uci_line("a3 a6")) is None
        assert book.identify_opening([]) is None

    def test_bad_start_fen(self, book):
        assert book.identify_opening(["e2e4"], starting_fen="garbage") is None

    def test_opening_for_position(self, book):
        board = chess.Board()
        board.push_san("d4")
        assert book.opening_for_position(board.fen()) == OpeningInfo("D00", "Queen's Pawn Opening")
        assert book.opening_for_position("garbage") is None


class TestConstruction:
    def test_position_key_drops_counters(self):
        assert position_key(chess.STARTING_FEN) == (
            "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq -"
        )

    def test_bad_line_skipped(self):
        book = OpeningBook([("X00", "Broken", "e4 Ke5"), ("B20", "Sicilian", "e4 c5")])
        assert book.size == 2

    def test_first_line_wins_shared_prefix(self):
        book = OpeningBook([("A", "First", "e4 e5 Nf3"), ("B", "Second", "e4 e5 Nc3")])
        board = chess.Board()
        board.push_san("e4")
        assert book.opening_for_position(board.fen()).name == "First"

    def test_default_book_is_shared(self):
        assert default_book() is default_book()
        assert default_book().size > len(OPENING_LINES)
        assert default_book().version == OPENING_LINES_VERSION

    def test_from_json(self, tmp_path):
        path = tmp_path / "openings.json"
        path.write_text(json.dumps([{"eco": "C20", "name": "King's Pawn Game", "moves": "e4 e5"}]))
        book = OpeningBook.from_json(path)
        assert book.size == 2
        assert book.version is None
        assert book.identify_opening(_uci_line("e4 e5")).name == "King's Pawn Game"

    def test_from_json_missing_falls_back(self, tmp_path):
        assert OpeningBook.from_json(tmp_path / "missing.json").size == default_book().size

    def test_from_json_corrupt_falls_back(self, tmp_path):
        path = tmp_path / "openings.json"
        path.write_text("{not json")
        assert OpeningBook.from_json(path).size == default_book().size
