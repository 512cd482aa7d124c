"""Shared test fixtures with dual-mode support (scripted vs real Stockfish).

Usage:
    uv run pytest tests/                  # Fast, scripted engine (no Stockfish)
    uv run pytest tests/ --e2e            # Also run real Stockfish tests

Fixtures:
    fake_engine        - Scripted UCI engine speaking python-chess's analysis API.
    BlockingEngine     - Scripted engine whose searches stall until stopped.
    session_manager    - EngineSessionManager that opens fake_engine.
    make_analyzer      - Builds a GameAnalyzer on tmp_path stores and the fake engine.
    enable_validation  - Sets CHESS_REVIEW_VALIDATE=1 for schema validation.
"""

from __future__ import annotations

import os
import threading

import chess
import chess.engine
import pytest

from chess_review.analyzer import GameAnalyzer
from chess_review.config import AnalysisConfig
from chess_review.engine import EngineSessionManager
from chess_review.puzzles import PuzzleStore
from chess_review.store import JsonReviewStore


# ---------------------------------------------------------------------------
# CLI option and marker registration
# ---------------------------------------------------------------------------


def pytest_addoption(parser):
    """Register --e2e CLI flag for real Stockfish tests."""
    parser.addoption(
        "--e2e",
        action="store_true",
        default=False,
        help="Run with real Stockfish engine (no fakes).",
    )


def pytest_configure(config):
    """Register the e2e marker."""
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end (requires real Stockfish)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip e2e tests unless --e2e is passed."""
    if config.getoption("--e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="needs --e2e and a Stockfish binary")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


# ---------------------------------------------------------------------------
# Scripted engine
# ---------------------------------------------------------------------------


def position_after(sans: str, fen: str = chess.STARTING_FEN) -> chess.Board:
    """Board reached by playing space-separated SAN moves from ``fen``."""
    board = chess.Board(fen)
    for san in sans.split():
        board.push_san(san)
    return board


class FakeAnalysis:
    """Stand-in for python-chess's SimpleAnalysisResult."""

    def __init__(self, infos: list[dict]) -> None:
        self._infos = infos
        self.stopped = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.stop()

    def __iter__(self):
        for info in self._infos:
            if self.stopped:
                return
            yield info

    def stop(self) -> None:
        self.stopped = True


class FakeEngine:
    """Scripted engine keyed by position (FEN fields 1-4).

    ``scores`` hold White-perspective scores; the engine reports them from
    the side to move, like a real UCI engine. Unscripted positions score
    ``default`` with the first legal move (by UCI string) as best move.
    ``max_depth`` caps the deepest info line, simulating a time-out.
    """

    def __init__(
        self,
        scores: dict[str, chess.engine.Score] | None = None,
        best_moves: dict[str, str] | None = None,
        default: chess.engine.Score = chess.engine.Cp(20),
        max_depth: int | None = None,
    ) -> None:
        self.scores = scores or {}
        self.best_moves = best_moves or {}
        self.default = default
        self.max_depth = max_depth
        self.calls: list[tuple[str, int]] = []
        self.options: dict = {}
        self.quit_count = 0
        self.terminated = False

    def set_score(self, board: chess.Board, score: chess.engine.Score, best: str | None = None):
        self.scores[board.epd()] = score
        if best is not None:
            self.best_moves[board.epd()] = best

    def configure(self, options: dict) -> None:
        self.options.update(options)

    def ping(self) -> None:
        if self.terminated:
            raise chess.engine.EngineTerminatedError("engine process died")

    def quit(self) -> None:
        self.quit_count += 1

    def analysis(self, board: chess.Board, limit: chess.engine.Limit) -> FakeAnalysis:
        if self.terminated:
            raise chess.engine.EngineTerminatedError("engine process died")
        self.calls.append((board.fen(), limit.depth))

        key = board.epd()
        white_score = self.scores.get(key, self.default)
        relative = white_score if board.turn == chess.WHITE else -white_score
        pov = chess.engine.PovScore(relative, board.turn)

        if key in self.best_moves:
            best = chess.Move.from_uci(self.best_moves[key])
        else:
            best = min(board.legal_moves, key=lambda m: m.uci())

        top = limit.depth if self.max_depth is None else min(limit.depth, self.max_depth)
        infos = [{"depth": d, "score": pov, "pv": [best]} for d in range(1, top + 1)]
        return FakeAnalysis(infos)


class BlockingAnalysis(FakeAnalysis):
    """Analysis that stalls after its first info line until stopped."""

    def __init__(self, infos: list[dict], started: threading.Event, timeout: float = 5.0) -> None:
        super().__init__(infos)
        self._started = started
        self._released = threading.Event()
        self._timeout = timeout

    def __iter__(self):
        yield self._infos[0]
        self._started.set()
        self._released.wait(self._timeout)
        yield from super().__iter__()

    def stop(self) -> None:
        super().stop()
        self._released.set()


class BlockingEngine(FakeEngine):
    """FakeEngine whose searches hang mid-flight, for cross-thread cancellation."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.search_started = threading.Event()
        self.searches: list[BlockingAnalysis] = []

    def analysis(self, board: chess.Board, limit: chess.engine.Limit) -> BlockingAnalysis:
        scripted = super().analysis(board, limit)
        search = BlockingAnalysis(scripted._infos, self.search_started)
        self.searches.append(search)
        return search


@pytest.fixture()
def fake_engine():
    return FakeEngine()


@pytest.fixture()
def session_manager(fake_engine):
    return EngineSessionManager(engine_factory=lambda: fake_engine)


@pytest.fixture()
def make_analyzer(tmp_path, session_manager):
    """Factory building an analyzer on tmp_path with the scripted engine."""

    def _make(store=None, **kwargs):
        config = kwargs.pop("config", None) or AnalysisConfig(
            quick_depth=12, critical_depth=18, threads=1, data_dir=str(tmp_path)
        )
        return GameAnalyzer(
            kwargs.pop("session_manager", session_manager),
            store or JsonReviewStore(tmp_path),
            puzzle_store=kwargs.pop("puzzle_store", PuzzleStore(tmp_path / "puzzles.json")),
            config=config,
            **kwargs,
        )

    return _make


# ---------------------------------------------------------------------------
# Schema validation fixture
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def enable_validation():
    """Set CHESS_REVIEW_VALIDATE=1 for the test session.

    Restores the original env var value after the test.
    """
    original = os.environ.get("CHESS_REVIEW_VALIDATE")
    os.environ["CHESS_REVIEW_VALIDATE"] = "1"
    yield
    if original is None:
        os.environ.pop("CHESS_REVIEW_VALIDATE", None)
    else:
        os.environ["CHESS_REVIEW_VALIDATE"] = original
