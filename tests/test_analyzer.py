"""Tests for the analysis orchestrator.

Covers:
- A queen sacrifice game: brilliant, forced and mating moves, accuracy
- A quiet game with one queen blunder: book plies, critical re-evaluation,
  puzzle generation and storage
- Label/loss consistency and summary counts
- Cancellation, re-entry, engine contention, empty input
- Failure paths: persistence errors fail the review, sync errors do not
- Progress reporting and checkpoints
"""

from __future__ import annotations

import threading

import chess
import chess.engine
import pytest
import requests

from chess_review.analyzer import (
    CANCELLED_MESSAGE,
    MAX_CENTIPAWN_LOSS,
    RunState,
    centipawn_loss,
)
from chess_review.config import AnalysisConfig
from chess_review.engine import EngineSessionManager
from chess_review.errors import AnalysisInProgressError
from chess_review.models import Classification, EvaluationResult, ReviewStatus
from chess_review.opening_lines import OPENING_LINES_VERSION
from chess_review.puzzles import PuzzleStore
from chess_review.store import JsonReviewStore

from conftest import BlockingEngine, position_after

_SMOTHER_FEN = "4r2k/pp4pp/7N/3Q4/8/8/5PPP/6K1 w - - 0 1"
_SMOTHER_PGN = f"""[Event "Training"]
[FEN "{_SMOTHER_FEN}"]
[SetUp "1"]

1. Qg8+ Rxg8 2. Nf7# 1-0
"""

_BLUNDER_MOVES = (
    "e4 e5 Nc3 Nc6 Bc4 Nf6 d3 Bc5 Be3 Bxe3 fxe3 d6 "
    "a3 O-O b4 a6 Nd5 Nxd5 Qg4 Bxg4"
)
_BLUNDER_PGN = (
    "1. e4 e5 2. Nc3 Nc6 3. Bc4 Nf6 4. d3 Bc5 5. Be3 Bxe3 6. fxe3 d6 "
    "7. a3 O-O 8. b4 a6 9. Nd5 Nxd5 10. Qg4?? Bxg4 0-1"
)

_NAJDORF_PGN = "1. e4 c5 2. Nf3 d6 3. d4 cxd4 4. Nxd4 Nf6 5. Nc3 a6"


def _script_smother(engine) -> None:
    engine.set_score(chess.Board(_SMOTHER_FEN), chess.engine.Cp(150), best="d5g8")
    engine.set_score(position_after("Qg8+", _SMOTHER_FEN), chess.engine.Mate(1))
    engine.set_score(
        position_after("Qg8+ Rxg8", _SMOTHER_FEN), chess.engine.Mate(1), best="h6f7"
    )


def _script_blunder(engine) -> None:
    engine.set_score(position_after(_BLUNDER_MOVES), chess.engine.Cp(-900))
    engine.set_score(position_after(_BLUNDER_MOVES.rsplit(" ", 1)[0]), chess.engine.Cp(-900))


def _assert_consistent(review) -> None:
    for move in review.moves:
        if move.classification is Classification.BEST:
            assert move.centipawn_loss == 0, move.san
    for color, summary in (("white", review.white_summary), ("black", review.black_summary)):
        side = review.moves_for_color(color)
        counted = sum(summary.count(label) for label in Classification)
        assert counted == summary.total_moves == len(side)


# ---------------------------------------------------------------------------
# Centipawn loss
# ---------------------------------------------------------------------------


class TestCentipawnLoss:
    def test_mover_relative(self):
        before = EvaluationResult(chess.engine.Cp(-50), 12)
        after = EvaluationResult(chess.engine.Cp(100), 12)
        assert centipawn_loss(before, after, chess.BLACK) == 150
        assert centipawn_loss(before, after, chess.WHITE) == 0

    def test_clamped_for_lost_mate(self):
        before = EvaluationResult(chess.engine.Mate(2), 12)
        after = EvaluationResult(chess.engine.Cp(0), 12)
        assert centipawn_loss(before, after, chess.WHITE) == MAX_CENTIPAWN_LOSS


# ---------------------------------------------------------------------------
# Full games
# ---------------------------------------------------------------------------


class TestSacrificeGame:
    def test_labels(self, fake_engine, make_analyzer):
        _script_smother(fake_engine)
        review = make_analyzer().analyze(_SMOTHER_PGN)

        assert review.status is ReviewStatus.COMPLETED
        labels = [m.classification for m in review.moves]
        assert labels == [
            Classification.BRILLIANT,
            Classification.FORCED,
            Classification.GOOD,
        ]
        _assert_consistent(review)

    def test_accuracy_and_headers(self, fake_engine, make_analyzer):
        _script_smother(fake_engine)
        review = make_analyzer().analyze(_SMOTHER_PGN)

        assert review.white_summary.brilliant == 1
        assert review.white_summary.accuracy == 100.0
        assert review.black_summary.forced == 1
        assert review.black_summary.accuracy == 0.0
        assert review.headers["Event"] == "Training"
        assert review.opening is None

    def test_mating_move_scored_without_engine(self, fake_engine, make_analyzer):
        _script_smother(fake_engine)
        review = make_analyzer().analyze(_SMOTHER_PGN)

        mate = review.moves[-1]
        assert mate.mate_after == 0
        final_fen = position_after("Qg8+ Rxg8 Nf7#", _SMOTHER_FEN).fen()
        assert all(fen != final_fen for fen, _ in fake_engine.calls)

    def test_no_puzzles_from_good_moves(self, fake_engine, make_analyzer):
        _script_smother(fake_engine)
        analyzer = make_analyzer()
        analyzer.analyze(_SMOTHER_PGN)
        assert analyzer.last_puzzles == []


class TestBlunderGame:
    def test_book_plies(self, fake_engine, make_analyzer):
        _script_blunder(fake_engine)
        review = make_analyzer().analyze(_BLUNDER_PGN)

        book = [m.ply for m in review.moves if m.classification is Classification.BOOK]
        assert book == [1, 2, 3, 4]
        assert review.opening.eco == "C25"
        assert review.moves[0].eval_before is None

    def test_queen_blunder(self, fake_engine, make_analyzer):
        _script_blunder(fake_engine)
        review = make_analyzer().analyze(_BLUNDER_PGN)

        qg4 = review.moves[18]
        assert qg4.san == "Qg4"
        assert qg4.classification is Classification.BLUNDER
        assert qg4.centipawn_loss == 920
        assert qg4.has_puzzle
        assert qg4.display_string == "10.Qg4"
        _assert_consistent(review)

    def test_suspicious_move_rechecked_deeper(self, fake_engine, make_analyzer):
        _script_blunder(fake_engine)
        make_analyzer().analyze(_BLUNDER_PGN)

        before_qg4 = position_after(_BLUNDER_MOVES.rsplit(" ", 2)[0]).fen()
        depths = [depth for fen, depth in fake_engine.calls if fen == before_qg4]
        assert 12 in depths and 18 in depths

    def test_puzzle_generated_and_stored(self, tmp_path, fake_engine, make_analyzer):
        _script_blunder(fake_engine)
        puzzle_store = PuzzleStore(tmp_path / "puzzles.json")
        analyzer = make_analyzer(puzzle_store=puzzle_store)
        review = analyzer.analyze(_BLUNDER_PGN, user_id="alice")

        assert len(analyzer.last_puzzles) == 1
        stored = puzzle_store.puzzles_for_review(review.id)
        assert len(stored) == 1
        assert stored[0].player_move == "Qg4"
        assert stored[0].classification == "blunder"
        assert stored[0].user_id == "alice"

    def test_black_player_gets_no_puzzle_for_white_blunder(self, fake_engine, make_analyzer):
        _script_blunder(fake_engine)
        analyzer = make_analyzer()
        review = analyzer.analyze(_BLUNDER_PGN, player_color="black")

        assert analyzer.last_puzzles == []
        assert not any(m.has_puzzle for m in review.moves)

    def test_review_persisted(self, tmp_path, fake_engine, make_analyzer):
        _script_blunder(fake_engine)
        store = JsonReviewStore(tmp_path)
        review = make_analyzer(store=store).analyze(_BLUNDER_PGN, game_id="g-1")

        loaded = store.get_review(review.id)
        assert loaded.status is ReviewStatus.COMPLETED
        assert loaded.game_id == "g-1"
        assert len(loaded.moves) == 20
        assert loaded.white_summary == review.white_summary
        assert loaded.opening == review.opening
        assert loaded.opening.eco == "C25"
        assert loaded.book_version == OPENING_LINES_VERSION
        assert store.list_reviews()[0]["opening"]["eco"] == "C25"


class TestBookOnlyGame:
    def test_no_engine_calls(self, fake_engine, make_analyzer):
        review = make_analyzer().analyze(_NAJDORF_PGN)

        assert fake_engine.calls == []
        assert all(m.classification is Classification.BOOK for m in review.moves)
        assert review.white_summary.book == 5
        assert review.white_summary.accuracy == 0.0
        assert review.opening.name == "Sicilian Defense: Najdorf Variation"


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_cancel_from_progress_callback(self, tmp_path, session_manager, make_analyzer):
        store = JsonReviewStore(tmp_path)
        analyzer = make_analyzer(store=store)

        review = analyzer.analyze(_BLUNDER_PGN, on_progress=lambda update: analyzer.cancel())

        assert review.status is ReviewStatus.FAILED
        assert review.error_message == CANCELLED_MESSAGE
        assert len(review.moves) == 1
        assert analyzer.state is RunState.CANCELLED
        assert not session_manager.is_in_use
        assert store.get_review(review.id).status is ReviewStatus.FAILED

    def test_cancel_from_another_thread_stops_search(self, tmp_path, make_analyzer):
        engine = BlockingEngine()
        store = JsonReviewStore(tmp_path)
        analyzer = make_analyzer(
            store=store,
            session_manager=EngineSessionManager(engine_factory=lambda: engine),
        )
        results = []
        worker = threading.Thread(target=lambda: results.append(analyzer.analyze(_BLUNDER_PGN)))
        worker.start()

        assert engine.search_started.wait(5)
        assert analyzer.is_analyzing
        analyzer.cancel()
        worker.join(5)

        [review] = results
        assert review.error_message == CANCELLED_MESSAGE
        assert len(engine.searches) == 1
        assert engine.searches[0].stopped
        loaded = store.get_review(review.id)
        assert loaded.status is ReviewStatus.FAILED
        assert loaded.opening.eco == "C25"

    def test_next_run_after_cancel_starts_fresh(self, make_analyzer):
        analyzer = make_analyzer()
        analyzer.analyze(_NAJDORF_PGN, on_progress=lambda update: analyzer.cancel())
        review = analyzer.analyze(_NAJDORF_PGN)
        assert review.status is ReviewStatus.COMPLETED

    def test_reentrant_analyze_rejected(self, make_analyzer):
        analyzer = make_analyzer()
        rejected = []

        def reenter(update):
            if rejected:
                return
            assert analyzer.is_analyzing
            with pytest.raises(AnalysisInProgressError):
                analyzer.analyze(_NAJDORF_PGN)
            rejected.append(update)

        review = analyzer.analyze(_NAJDORF_PGN, on_progress=reenter)

        assert rejected
        assert review.status is ReviewStatus.COMPLETED
        assert not analyzer.is_analyzing

    def test_engine_held_by_another_owner(self, session_manager, make_analyzer):
        session_manager.acquire("someone-else", AnalysisConfig(threads=1))
        review = make_analyzer().analyze(_NAJDORF_PGN)

        assert review.status is ReviewStatus.FAILED
        assert review.error_message
        assert session_manager.owner == "someone-else"

    def test_empty_game_fails(self, session_manager, make_analyzer):
        review = make_analyzer().analyze('[Event "Nothing"]\n\n1-0')

        assert review.status is ReviewStatus.FAILED
        assert "No legal moves" in review.error_message
        assert not session_manager.is_in_use

    def test_persistence_failure_fails_review(self, tmp_path, make_analyzer):
        class BrokenStore(JsonReviewStore):
            def save_moves(self, review_id, moves):
                raise OSError("disk full")

        store = BrokenStore(tmp_path)
        analyzer = make_analyzer(store=store)
        review = analyzer.analyze(_NAJDORF_PGN)

        assert review.status is ReviewStatus.FAILED
        assert review.error_message == "disk full"
        assert analyzer.state is RunState.FAILED
        assert store.get_review(review.id).error_message == "disk full"
        assert analyzer.last_puzzles == []

    def test_sync_failure_keeps_review(self, fake_engine, make_analyzer):
        class DownSync:
            def push_review(self, review, puzzles):
                raise requests.ConnectionError("remote down")

        _script_blunder(fake_engine)
        analyzer = make_analyzer(sync=DownSync())
        review = analyzer.analyze(_BLUNDER_PGN)

        assert review.status is ReviewStatus.COMPLETED
        assert analyzer.state is RunState.COMPLETED

    def test_sync_receives_final_review(self, fake_engine, make_analyzer):
        pushed = []

        class RecordingSync:
            def push_review(self, review, puzzles):
                pushed.append((review.status, len(puzzles)))

        _script_blunder(fake_engine)
        make_analyzer(sync=RecordingSync()).analyze(_BLUNDER_PGN)

        assert pushed == [(ReviewStatus.COMPLETED, 1)]


class TestProgress:
    def test_monotone_and_complete(self, make_analyzer):
        updates = []
        analyzer = make_analyzer()
        analyzer.subscribe(updates.append)
        analyzer.analyze(_BLUNDER_PGN)

        fractions = [u.progress for u in updates]
        assert fractions == sorted(fractions)
        assert fractions[-1] == 1.0
        assert updates[-1].state == RunState.COMPLETED.value

    def test_unsubscribe(self, make_analyzer):
        updates = []
        analyzer = make_analyzer()
        analyzer.subscribe(updates.append)
        analyzer.unsubscribe(updates.append)
        analyzer.analyze(_NAJDORF_PGN)
        assert updates == []

    def test_checkpoints(self, tmp_path, make_analyzer):
        checkpoints = []

        class CountingStore(JsonReviewStore):
            def update_progress(self, review_id, fraction, status):
                checkpoints.append(round(fraction, 2))
                super().update_progress(review_id, fraction, status)

        # 12 plies with a checkpoint every 5 moves and one on the last
        make_analyzer(store=CountingStore(tmp_path)).analyze(_NAJDORF_PGN + " 6. Be3 e5")
        assert checkpoints == [round(5 / 12, 2), round(10 / 12, 2), 1.0]
