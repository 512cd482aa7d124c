"""Stockfish session leasing and position evaluation.

Wraps Stockfish via the python-chess UCI interface. Provides:
- EngineSessionManager: one engine process leased to one owner at a time
- PositionEvaluator: depth/time bounded search with a per-run cache and
  scores normalized to White's perspective
"""

from __future__ import annotations

import enum
import logging
import shutil
import threading
import time
from pathlib import Path
from typing import Callable

import chess
import chess.engine

from chess_review.config import AnalysisConfig
from chess_review.errors import EngineBusyError, EngineUnavailableError
from chess_review.models import EvaluationResult

logger = logging.getLogger(__name__)

# Stockfish search paths in priority order
_STOCKFISH_PATHS = [
    "/opt/homebrew/bin/stockfish",
    "/usr/local/bin/stockfish",
    "/usr/bin/stockfish",
    "/usr/games/stockfish",
]


def find_stockfish() -> str:
    """Auto-detect Stockfish binary path.

    Checks known install paths, then falls back to PATH lookup.

    Returns:
        Path to Stockfish binary.

    Raises:
        EngineUnavailableError: If Stockfish is not found anywhere.
    """
    for path_str in _STOCKFISH_PATHS:
        if Path(path_str).is_file():
            return path_str

    which_result = shutil.which("stockfish")
    if which_result is not None:
        return which_result

    raise EngineUnavailableError(
        "Stockfish not found. Install it or set CHESS_REVIEW_STOCKFISH."
    )


# ---------------------------------------------------------------------------
# Session leasing
# ---------------------------------------------------------------------------


class EngineSession:
    """Handle given to the current owner of the engine process."""

    def __init__(self, manager: EngineSessionManager, owner_id: str) -> None:
        self._manager = manager
        self.owner_id = owner_id

    @property
    def engine(self) -> chess.engine.SimpleEngine:
        return self._manager._engine_for(self.owner_id)

    def restart(self) -> chess.engine.SimpleEngine:
        """Replace a crashed engine process with a fresh one."""
        return self._manager._restart(self.owner_id)


class EngineSessionManager:
    """Leases a single Stockfish process to at most one owner at a time.

    ``acquire`` by a second owner while the lease is held raises
    EngineBusyError instead of blocking. ``release`` quits the process.
    """

    def __init__(
        self,
        stockfish_path: str | None = None,
        engine_factory: Callable[[], chess.engine.SimpleEngine] | None = None,
    ) -> None:
        self._stockfish_path = stockfish_path
        self._engine_factory = engine_factory or self._popen
        self._lock = threading.Lock()
        self._owner: str | None = None
        self._engine: chess.engine.SimpleEngine | None = None
        self._config: AnalysisConfig | None = None

    def _popen(self) -> chess.engine.SimpleEngine:
        path = self._stockfish_path or find_stockfish()
        try:
            return chess.engine.SimpleEngine.popen_uci(path)
        except (OSError, chess.engine.EngineError) as exc:
            raise EngineUnavailableError(f"Could not start {path}: {exc}") from exc

    def _open_engine(self, config: AnalysisConfig) -> chess.engine.SimpleEngine:
        """Open a fresh engine process and apply the run's options."""
        engine = self._engine_factory()
        engine.configure({"Threads": config.threads, "Hash": config.hash_size_mb})
        logger.info(
            "Engine started (threads=%d, hash=%dMB)", config.threads, config.hash_size_mb
        )
        return engine

    def _ensure_engine(self) -> None:
        """Ensure engine process is alive, restart once if terminated."""
        try:
            self._engine.ping()
        except chess.engine.EngineTerminatedError:
            logger.warning("Engine process died, restarting")
            self._engine = self._open_engine(self._config)

    @property
    def owner(self) -> str | None:
        with self._lock:
            return self._owner

    @property
    def is_in_use(self) -> bool:
        return self.owner is not None

    def acquire(self, owner_id: str, config: AnalysisConfig) -> EngineSession:
        """Lease the engine to ``owner_id``.

        Args:
            owner_id: Identifier of the caller taking the lease.
            config: Resolved run configuration (threads, hash).

        Returns:
            EngineSession handle for the owner.

        Raises:
            EngineBusyError: If another owner holds the lease.
            EngineUnavailableError: If Stockfish cannot be started.
        """
        config = config.resolved()
        with self._lock:
            if self._owner is not None and self._owner != owner_id:
                raise EngineBusyError(self._owner)
            if self._engine is None or config != self._config:
                self._quit_engine()
                self._config = config
                self._engine = self._open_engine(config)
            else:
                self._ensure_engine()
            self._owner = owner_id
            return EngineSession(self, owner_id)

    def release(self, owner_id: str) -> None:
        """Give the lease back and stop the engine process.

        Releasing a lease held by someone else is a no-op.
        """
        with self._lock:
            if self._owner != owner_id:
                logger.debug("Ignoring release by non-owner %s", owner_id)
                return
            self._quit_engine()
            self._owner = None

    def close(self) -> None:
        """Stop the engine regardless of owner."""
        with self._lock:
            self._quit_engine()
            self._owner = None

    def _quit_engine(self) -> None:
        if self._engine is None:
            return
        try:
            self._engine.quit()
        except chess.engine.EngineTerminatedError:
            logger.debug("Engine already terminated on quit")
        self._engine = None

    def _engine_for(self, owner_id: str) -> chess.engine.SimpleEngine:
        with self._lock:
            if self._owner != owner_id or self._engine is None:
                raise EngineBusyError(self._owner or "nobody")
            return self._engine

    def _restart(self, owner_id: str) -> chess.engine.SimpleEngine:
        with self._lock:
            if self._owner != owner_id:
                raise EngineBusyError(self._owner or "nobody")
            self._quit_engine()
            self._engine = self._open_engine(self._config)
            return self._engine


# ---------------------------------------------------------------------------
# Position evaluation
# ---------------------------------------------------------------------------


class SearchState(enum.Enum):
    IDLE = "idle"
    POSITION_SUBMITTED = "position_submitted"
    SEARCHING = "searching"
    DEPTH_REACHED = "depth_reached"
    TIMED_OUT = "timed_out"
    COMPLETED = "completed"


class PositionEvaluator:
    """Evaluates positions on a leased session, caching by FEN.

    One evaluator belongs to one analysis run; its cache is discarded
    with it. Scores are stored from White's perspective.
    """

    def __init__(
        self,
        session: EngineSession,
        max_move_time_ms: int = 3000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session = session
        self._time_budget = max_move_time_ms / 1000
        self._clock = clock
        self._cache: dict[str, EvaluationResult] = {}
        self._active: chess.engine.SimpleAnalysisResult | None = None
        self.state = SearchState.IDLE
        self.engine_calls = 0

    def evaluate(
        self, fen: str, required_depth: int, need_best_move: bool = False
    ) -> EvaluationResult:
        """Evaluate a position to at least ``required_depth``.

        Args:
            fen: Position to evaluate.
            required_depth: Target search depth.
            need_best_move: Whether a cached result must carry a best move.

        Returns:
            EvaluationResult. If the time budget ran out first, the deepest
            result observed so far.
        """
        cached = self._cache.get(fen)
        if cached is not None and cached.depth_reached >= required_depth:
            if cached.best_move_uci is not None or not need_best_move:
                return cached

        board = chess.Board(fen)
        if not any(board.legal_moves):
            result = self._terminal_result(board, required_depth)
        else:
            try:
                result = self._search(board, required_depth)
            except chess.engine.EngineTerminatedError:
                logger.warning("Engine terminated during search, retrying once")
                self._active = None
                self._session.restart()
                result = self._search(board, required_depth)

        self._cache[fen] = result
        return result

    def stop(self) -> None:
        """Force-stop the in-flight search, if any."""
        active = self._active
        self._active = None
        if active is not None:
            active.stop()

    @staticmethod
    def _terminal_result(board: chess.Board, depth: int) -> EvaluationResult:
        if board.is_checkmate():
            score = chess.engine.PovScore(chess.engine.Mate(0), board.turn).white()
        else:
            score = chess.engine.Cp(0)
        return EvaluationResult(score=score, depth_reached=depth)

    def _search(self, board: chess.Board, required_depth: int) -> EvaluationResult:
        """Internal search without crash recovery."""
        self.stop()
        self.state = SearchState.POSITION_SUBMITTED
        self.engine_calls += 1
        limit = chess.engine.Limit(depth=required_depth, time=self._time_budget)
        deadline = self._clock() + self._time_budget

        depth = 0
        score = None
        pv: list[chess.Move] = []
        engine = self._session.engine
        with engine.analysis(board, limit) as analysis:
            self._active = analysis
            self.state = SearchState.SEARCHING
            for info in analysis:
                info_depth = info.get("depth")
                info_score = info.get("score")
                if info_depth is None or info_score is None:
                    continue
                if info.get("lowerbound") or info.get("upperbound"):
                    continue
                if info_depth >= depth:
                    depth = info_depth
                    score = info_score.white()
                    if info.get("pv"):
                        pv = list(info["pv"])
                if depth >= required_depth:
                    self.state = SearchState.DEPTH_REACHED
                    break
                if self._clock() >= deadline:
                    self.state = SearchState.TIMED_OUT
                    break
            else:
                self.state = (
                    SearchState.DEPTH_REACHED if depth >= required_depth
                    else SearchState.TIMED_OUT
                )
        self._active = None

        if self.state is SearchState.TIMED_OUT:
            logger.debug("Search timed out at depth %d/%d", depth, required_depth)
        if score is None:
            logger.warning("No score from engine for %s", board.fen())
            score = chess.engine.Cp(0)

        legal_pv = self._legal_prefix(board, pv)
        best_uci = best_san = None
        if legal_pv:
            best_uci = legal_pv[0].uci()
            best_san = board.san(legal_pv[0])

        self.state = SearchState.COMPLETED
        return EvaluationResult(
            score=score,
            depth_reached=depth,
            best_move_uci=best_uci,
            best_move_san=best_san,
            pv=tuple(m.uci() for m in legal_pv),
        )

    @staticmethod
    def _legal_prefix(board: chess.Board, pv: list[chess.Move]) -> list[chess.Move]:
        """Longest leading part of ``pv`` that is legal from ``board``.

        A line left over from a superseded search fails on its first move.
        """
        line = []
        temp = board.copy(stack=False)
        for move in pv:
            if move not in temp.legal_moves:
                break
            line.append(move)
            temp.push(move)
        if pv and not line:
            logger.debug("Discarding stale best move %s for %s", pv[0], board.fen())
        return line
