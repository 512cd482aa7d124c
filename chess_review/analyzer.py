"""Analysis orchestrator: transcript in, classified GameReview out.

Drives one game through the pipeline:

    parse -> per move: book check -> evaluate before/after -> brilliance
          -> classify -> summarize -> persist -> puzzles -> sync

Only one run per analyzer at a time. The engine lease is released on
every exit path. A run always ends with a COMPLETED review or a FAILED
review carrying a readable error message.
"""

from __future__ import annotations

import enum
import logging
import threading
import uuid
from collections.abc import Callable

import chess

from chess_review.accuracy import summarize
from chess_review.brilliance import BrilliantContext, BrilliantMoveClassifier
from chess_review.classification import MoveFlags, classify
from chess_review.config import AnalysisConfig, thresholds_for_depth
from chess_review.engine import EngineSessionManager, PositionEvaluator
from chess_review.errors import AnalysisCancelled, AnalysisInProgressError, EmptyGameError
from chess_review.models import (
    AnalysisProgress,
    AnalyzedMove,
    Classification,
    EvaluationResult,
    GameReview,
    ParsedMove,
    PuzzleRecord,
)
from chess_review.openings import BookMatch, OpeningBook, default_book
from chess_review.pgn_parser import parse_headers, parse_moves
from chess_review.puzzles import PuzzleGenerator, PuzzleStore
from chess_review.store import ReviewStore
from chess_review.sync import NullSync, RemoteSync

logger = logging.getLogger(__name__)

# Centipawn loss is clamped to this so a lost mate does not dominate averages
MAX_CENTIPAWN_LOSS = 1000

CANCELLED_MESSAGE = "Analysis cancelled"

ProgressCallback = Callable[[AnalysisProgress], None]


class RunState(enum.Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    PARSING = "parsing"
    PER_MOVE_LOOP = "per_move_loop"
    SUMMARIZING = "summarizing"
    PERSISTING = "persisting"
    PUZZLE_GENERATION = "puzzle_generation"
    SYNCING = "syncing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


def centipawn_loss(
    before: EvaluationResult, after: EvaluationResult, color: chess.Color
) -> int:
    """Mover-relative drop in evaluation, clamped to [0, MAX_CENTIPAWN_LOSS]."""
    loss = before.for_color(color) - after.for_color(color)
    return max(0, min(MAX_CENTIPAWN_LOSS, loss))


class GameAnalyzer:
    """Runs game analyses against a leased Stockfish session.

    Collaborators are injected so tests can substitute fakes for the
    engine, the store and the sync target.
    """

    def __init__(
        self,
        session_manager: EngineSessionManager,
        store: ReviewStore,
        puzzle_generator: PuzzleGenerator | None = None,
        puzzle_store: PuzzleStore | None = None,
        sync: RemoteSync | None = None,
        config: AnalysisConfig | None = None,
        book: OpeningBook | None = None,
        classifier: BrilliantMoveClassifier | None = None,
    ) -> None:
        self._sessions = session_manager
        self._store = store
        self._puzzle_generator = puzzle_generator or PuzzleGenerator()
        self._puzzle_store = puzzle_store
        self._sync = sync or NullSync()
        self._config = config or AnalysisConfig()
        self._book = book or default_book()
        self._classifier = classifier or BrilliantMoveClassifier()

        self._run_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._cancel = threading.Event()
        self._state = RunState.IDLE
        self._progress = 0.0
        self._evaluator: PositionEvaluator | None = None
        self._subscribers: list[ProgressCallback] = []
        self.last_puzzles: list[PuzzleRecord] = []

    # -- Observation --------------------------------------------------------

    @property
    def state(self) -> RunState:
        with self._state_lock:
            return self._state

    @property
    def progress(self) -> float:
        with self._state_lock:
            return self._progress

    @property
    def is_analyzing(self) -> bool:
        return self._run_lock.locked()

    def subscribe(self, callback: ProgressCallback) -> None:
        with self._state_lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: ProgressCallback) -> None:
        with self._state_lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def cancel(self) -> None:
        """Request cooperative cancellation of the active run."""
        self._cancel.set()
        evaluator = self._evaluator
        if evaluator is not None:
            evaluator.stop()

    def _set_state(self, state: RunState) -> None:
        with self._state_lock:
            self._state = state
        logger.debug("Analyzer state -> %s", state.value)

    def _check_cancelled(self) -> None:
        if self._cancel.is_set():
            raise AnalysisCancelled(CANCELLED_MESSAGE)

    def _report(
        self,
        review: GameReview,
        fraction: float,
        message: str,
        on_progress: ProgressCallback | None,
    ) -> None:
        with self._state_lock:
            self._progress = max(self._progress, min(1.0, fraction))
            review.progress = self._progress
            update = AnalysisProgress(self._progress, message, self._state.value)
            listeners = list(self._subscribers)
        if on_progress is not None:
            listeners.append(on_progress)
        for listener in listeners:
            listener(update)

    # -- Run ----------------------------------------------------------------

    def analyze(
        self,
        pgn: str,
        user_id: str = "local",
        game_id: str | None = None,
        player_color: str = "white",
        on_progress: ProgressCallback | None = None,
    ) -> GameReview:
        """Analyze one game.

        Args:
            pgn: Game transcript.
            user_id: Owner of the review.
            game_id: Optional id of the source game.
            player_color: Side the user played; puzzles come from its moves.
            on_progress: Called with every progress update of this run.

        Returns:
            The finished review, COMPLETED or FAILED.

        Raises:
            AnalysisInProgressError: If this analyzer is already running.
        """
        if not self._run_lock.acquire(blocking=False):
            raise AnalysisInProgressError("An analysis is already running")
        try:
            return self._run(pgn, user_id, game_id, player_color, on_progress)
        finally:
            self._run_lock.release()

    def _run(
        self,
        pgn: str,
        user_id: str,
        game_id: str | None,
        player_color: str,
        on_progress: ProgressCallback | None,
    ) -> GameReview:
        self._cancel.clear()
        with self._state_lock:
            self._progress = 0.0

        config = self._config.resolved()
        owner_id = f"analysis-{uuid.uuid4()}"
        review = GameReview(
            user_id=user_id,
            game_id=game_id,
            player_color=player_color,
            depth=config.critical_depth,
            headers=parse_headers(pgn),
        )
        leased = False

        try:
            self._set_state(RunState.INITIALIZING)
            review.start()
            self._store.create_review(review)
            self._check_cancelled()
            session = self._sessions.acquire(owner_id, config)
            leased = True
            self._evaluator = PositionEvaluator(session, config.max_move_time_ms)

            self._set_state(RunState.PARSING)
            parsed = parse_moves(pgn)
            if not parsed:
                raise EmptyGameError("No legal moves found in the game transcript")
            review.opening = self._book.identify_opening(
                [m.uci for m in parsed], parsed[0].fen_before
            )
            review.book_version = self._book.version
            self._store.save_opening(review.id, review.opening, review.book_version)
            logger.info("Analyzing %d moves (review %s)", len(parsed), review.id)

            self._set_state(RunState.PER_MOVE_LOOP)
            self._analyze_moves(review, parsed, config, on_progress)

            self._set_state(RunState.SUMMARIZING)
            white = summarize(review.moves_for_color("white"))
            black = summarize(review.moves_for_color("black"))

            self._set_state(RunState.PERSISTING)
            self._store.save_moves(review.id, review.moves)
            self._store.complete_review(review.id, white, black)
            review.complete(white, black)

            self._set_state(RunState.PUZZLE_GENERATION)
            puzzles = self._generate_puzzles(review)

            self._set_state(RunState.SYNCING)
            try:
                self._sync.push_review(review, puzzles)
            except Exception as exc:
                logger.warning("Remote sync failed for review %s: %s", review.id, exc)

            self._set_state(RunState.COMPLETED)
            self._report(review, 1.0, "Analysis complete", on_progress)
            logger.info(
                "Review %s complete: white %.1f%%, black %.1f%% (%d engine searches)",
                review.id, white.accuracy, black.accuracy, self._evaluator.engine_calls,
            )
        except AnalysisCancelled:
            logger.info("Review %s cancelled", review.id)
            self._set_state(RunState.CANCELLED)
            self._fail(review, CANCELLED_MESSAGE)
        except Exception as exc:
            logger.exception("Review %s failed", review.id)
            self._set_state(RunState.FAILED)
            self._fail(review, str(exc) or type(exc).__name__)
        finally:
            self._evaluator = None
            if leased:
                self._sessions.release(owner_id)

        return review

    def _fail(self, review: GameReview, message: str) -> None:
        if review.is_finalized:
            return
        review.fail(message)
        try:
            self._store.fail_review(review.id, message)
        except Exception:
            logger.exception("Could not record failure of review %s", review.id)

    def _analyze_moves(
        self,
        review: GameReview,
        parsed: list[ParsedMove],
        config: AnalysisConfig,
        on_progress: ProgressCallback | None,
    ) -> None:
        book_cache: dict[tuple[str, str], BookMatch] = {}
        total = len(parsed)
        for index, move in enumerate(parsed, start=1):
            self._check_cancelled()
            analyzed = self._analyze_move(review, move, config, book_cache)
            review.moves.append(analyzed)
            self._report(
                review, index / total, f"Analyzed move {index}/{total}", on_progress
            )
            if index % config.checkpoint_every == 0 or index == total:
                self._store.update_progress(review.id, review.progress, review.status)

    def _book_match(
        self, move: ParsedMove, cache: dict[tuple[str, str], BookMatch]
    ) -> BookMatch:
        key = (move.fen_before, move.uci)
        if key not in cache:
            cache[key] = self._book.is_book_move(move.fen_before, move.uci, move.ply)
        return cache[key]

    def _evaluate_pair(
        self, move: ParsedMove, depth: int
    ) -> tuple[EvaluationResult, EvaluationResult]:
        before = self._evaluator.evaluate(move.fen_before, depth, need_best_move=True)
        self._check_cancelled()
        after = self._evaluator.evaluate(move.fen_after, depth)
        self._check_cancelled()
        return before, after

    def _analyze_move(
        self,
        review: GameReview,
        move: ParsedMove,
        config: AnalysisConfig,
        book_cache: dict[tuple[str, str], BookMatch],
    ) -> AnalyzedMove:
        if self._book_match(move, book_cache).is_book:
            return AnalyzedMove(
                review_id=review.id,
                ply=move.ply,
                color=move.side_to_move,
                fen=move.fen_before,
                san=move.san,
                uci=move.uci,
                classification=Classification.BOOK,
            )

        color = chess.WHITE if move.is_white else chess.BLACK
        before, after = self._evaluate_pair(move, config.quick_depth)
        loss = centipawn_loss(before, after, color)

        # Suspicious moves get a second, deeper look
        quick_bands = thresholds_for_depth(config.quick_depth)
        if loss > quick_bands.inaccuracy and config.critical_depth > config.quick_depth:
            before, after = self._evaluate_pair(move, config.critical_depth)
            loss = centipawn_loss(before, after, color)

        thresholds = thresholds_for_depth(min(before.depth_reached, after.depth_reached))

        brilliant = self._classifier.is_brilliant(
            BrilliantContext(
                fen_before=move.fen_before,
                move_san=move.san,
                move_uci=move.uci,
                eval_before=before.cp(),
                eval_after=after.cp(),
                is_white_move=move.is_white,
                centipawn_loss=loss,
                legal_move_count=move.legal_move_count,
                mate_before=before.mate_in_moves,
                mate_after=after.mate_in_moves,
            )
        )

        # Mate-based miss detection stays off; shallow mates are too noisy
        flags = MoveFlags(
            is_best=before.best_move_uci == move.uci,
            is_brilliant=brilliant,
            is_forced=move.legal_move_count == 1,
        )
        classification = classify(
            loss,
            flags,
            move_number=move.move_number,
            eval_before=before.for_color(color),
            eval_after=after.for_color(color),
            is_check=chess.Board(move.fen_after).is_check(),
            thresholds=thresholds,
        )
        if classification is Classification.BEST:
            loss = 0

        return AnalyzedMove(
            review_id=review.id,
            ply=move.ply,
            color=move.side_to_move,
            fen=move.fen_before,
            san=move.san,
            uci=move.uci,
            classification=classification,
            eval_before=before.centipawns,
            eval_after=after.centipawns,
            mate_before=before.mate_in_moves,
            mate_after=after.mate_in_moves,
            best_move=before.best_move_san,
            best_move_uci=before.best_move_uci,
            centipawn_loss=loss,
            has_puzzle=(
                move.side_to_move == review.player_color
                and classification.is_puzzle_worthy
                and before.best_move_uci is not None
            ),
        )

    def _generate_puzzles(self, review: GameReview) -> list[PuzzleRecord]:
        """Build and store puzzles. The review is already final here."""
        try:
            puzzles = self._puzzle_generator.generate(
                review.id, review.moves, review.player_color, user_id=review.user_id
            )
            if self._puzzle_store is not None:
                self._puzzle_store.add_puzzles(puzzles)
        except Exception:
            logger.exception("Puzzle generation failed for review %s", review.id)
            puzzles = []
        self.last_puzzles = puzzles
        return puzzles
