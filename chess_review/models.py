"""Shared data models for the chess review pipeline.

The parser, evaluator, classifiers, orchestrator, stores and the MCP
server all exchange these records. Scores are held as python-chess
``Score`` values from White's perspective; mover-relative numbers are
derived at the point of use.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

import chess
import chess.engine

from chess_review.errors import ReviewFinalizedError

# Centipawn value substituted for a forced mate when comparing scores
MATE_SCORE = 100_000


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Parsed transcript
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParsedMove:
    """One legal move recovered from a game transcript."""

    ply: int
    san: str
    uci: str
    side_to_move: str
    fen_before: str
    fen_after: str
    legal_move_count: int
    move_number: int

    @property
    def is_white(self) -> bool:
        return self.side_to_move == "white"


# ---------------------------------------------------------------------------
# Engine evaluation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EvaluationResult:
    """Result of evaluating one position.

    ``score`` is always from White's perspective. ``best_move_uci`` is
    None when the engine produced no legal candidate (terminal position
    or a search stopped before the first principal variation).
    """

    score: chess.engine.Score
    depth_reached: int
    best_move_uci: str | None = None
    best_move_san: str | None = None
    pv: tuple[str, ...] = ()

    @property
    def centipawns(self) -> int | None:
        return self.score.score()

    @property
    def mate_in_moves(self) -> int | None:
        return self.score.mate()

    @property
    def is_mate(self) -> bool:
        return self.score.is_mate()

    def cp(self, mate_score: int = MATE_SCORE) -> int:
        """Collapse the score to centipawns, mapping mates to +/- mate_score."""
        return self.score.score(mate_score=mate_score)

    def for_color(self, color: chess.Color) -> int:
        """Centipawn score from the given side's perspective."""
        value = self.cp()
        return value if color == chess.WHITE else -value


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class Classification(enum.Enum):
    """Quality label attached to every analyzed move."""

    BOOK = "book"
    BRILLIANT = "brilliant"
    GREAT = "great"
    BEST = "best"
    GOOD = "good"
    INACCURACY = "inaccuracy"
    MISS = "miss"
    MISTAKE = "mistake"
    BLUNDER = "blunder"
    FORCED = "forced"
    NONE = "none"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def symbol(self) -> str:
        return _SYMBOLS[self]

    @property
    def color(self) -> str:
        """Hex colour used when rendering the label."""
        return _COLORS[self]

    @property
    def is_puzzle_worthy(self) -> bool:
        return self in (
            Classification.INACCURACY,
            Classification.MISTAKE,
            Classification.BLUNDER,
            Classification.MISS,
        )

    @classmethod
    def from_json(cls, value: str | None) -> Classification:
        """Parse a stored label, falling back to NONE for unknown values."""
        if value is None:
            return cls.NONE
        try:
            return cls(value.lower())
        except ValueError:
            return cls.NONE


_SYMBOLS = {
    Classification.BOOK: "\U0001F4D6",
    Classification.BRILLIANT: "!!",
    Classification.GREAT: "!",
    Classification.BEST: "✓",
    Classification.GOOD: "",
    Classification.INACCURACY: "?!",
    Classification.MISS: "×",
    Classification.MISTAKE: "?",
    Classification.BLUNDER: "??",
    Classification.FORCED: "□",
    Classification.NONE: "",
}

_COLORS = {
    Classification.BOOK: "#A88B5A",
    Classification.BRILLIANT: "#26C2A3",
    Classification.GREAT: "#5C8BB0",
    Classification.BEST: "#96BC4B",
    Classification.GOOD: "#97AF8B",
    Classification.INACCURACY: "#F7C631",
    Classification.MISS: "#DB6C50",
    Classification.MISTAKE: "#E58F2A",
    Classification.BLUNDER: "#CA3431",
    Classification.FORCED: "#808080",
    Classification.NONE: "#808080",
}


# ---------------------------------------------------------------------------
# Review records
# ---------------------------------------------------------------------------


@dataclass
class AnalyzedMove:
    """One move of a review with its evaluations and label.

    ``eval_before``/``eval_after`` are White-perspective centipawns (None
    when the score was a mate); ``mate_before``/``mate_after`` carry the
    signed mate distance instead. ``centipawn_loss`` is mover-relative.
    """

    review_id: str
    ply: int
    color: str
    fen: str
    san: str
    uci: str
    classification: Classification
    eval_before: int | None = None
    eval_after: int | None = None
    mate_before: int | None = None
    mate_after: int | None = None
    best_move: str | None = None
    best_move_uci: str | None = None
    centipawn_loss: int = 0
    has_puzzle: bool = False
    id: str = field(default_factory=_new_id)

    @property
    def full_move_number(self) -> int:
        fields = self.fen.split()
        if len(fields) == 6 and fields[5].isdigit():
            return int(fields[5])
        return (self.ply + 1) // 2

    @property
    def is_white(self) -> bool:
        return self.color == "white"

    @property
    def display_string(self) -> str:
        """Move in transcript form, e.g. ``12.Nf3`` or ``12...Nf6``."""
        prefix = f"{self.full_move_number}." if self.is_white else f"{self.full_move_number}..."
        return f"{prefix}{self.san}"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["classification"] = self.classification.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> AnalyzedMove:
        values = dict(data)
        values["classification"] = Classification.from_json(values.get("classification"))
        return cls(**values)


@dataclass
class AccuracySummary:
    """Per-side label counts and the accuracy score derived from them."""

    brilliant: int = 0
    great: int = 0
    best: int = 0
    good: int = 0
    book: int = 0
    inaccuracy: int = 0
    mistake: int = 0
    blunder: int = 0
    miss: int = 0
    forced: int = 0
    total_moves: int = 0
    accuracy: float = 0.0

    def count(self, classification: Classification) -> int:
        if classification is Classification.NONE:
            return 0
        return getattr(self, classification.value)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict | None) -> AccuracySummary:
        if not data:
            return cls()
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


class ReviewStatus(enum.Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class GameReview:
    """A review record and its lifecycle.

    Status moves pending -> analyzing -> completed | failed. The two
    terminal transitions are mutually exclusive and happen once.
    """

    user_id: str
    player_color: str
    game_id: str | None = None
    status: ReviewStatus = ReviewStatus.PENDING
    progress: float = 0.0
    moves: list[AnalyzedMove] = field(default_factory=list)
    white_summary: AccuracySummary | None = None
    black_summary: AccuracySummary | None = None
    depth: int = 0
    opening: OpeningInfo | None = None
    book_version: int | None = None
    headers: dict = field(default_factory=dict)
    error_message: str | None = None
    created_at: str = field(default_factory=_now)
    analyzed_at: str | None = None
    id: str = field(default_factory=_new_id)

    @property
    def is_finalized(self) -> bool:
        return self.status in (ReviewStatus.COMPLETED, ReviewStatus.FAILED)

    @property
    def player_summary(self) -> AccuracySummary | None:
        return self.white_summary if self.player_color == "white" else self.black_summary

    @property
    def opponent_summary(self) -> AccuracySummary | None:
        return self.black_summary if self.player_color == "white" else self.white_summary

    def moves_for_color(self, color: str) -> list[AnalyzedMove]:
        return [m for m in self.moves if m.color == color]

    @property
    def puzzle_worthy_moves(self) -> list[AnalyzedMove]:
        return [
            m for m in self.moves_for_color(self.player_color)
            if m.classification.is_puzzle_worthy
        ]

    def start(self) -> None:
        self.status = ReviewStatus.ANALYZING

    def complete(self, white: AccuracySummary, black: AccuracySummary) -> None:
        if self.is_finalized:
            raise ReviewFinalizedError(f"Review {self.id} is already {self.status.value}")
        self.white_summary = white
        self.black_summary = black
        self.status = ReviewStatus.COMPLETED
        self.progress = 1.0
        self.analyzed_at = _now()

    def fail(self, message: str) -> None:
        if self.is_finalized:
            raise ReviewFinalizedError(f"Review {self.id} is already {self.status.value}")
        self.status = ReviewStatus.FAILED
        self.error_message = message

    def to_dict(self, include_moves: bool = True) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "game_id": self.game_id,
            "player_color": self.player_color,
            "status": self.status.value,
            "progress": self.progress,
            "depth": self.depth,
            "opening": asdict(self.opening) if self.opening else None,
            "book_version": self.book_version,
            "headers": dict(self.headers),
            "white_summary": self.white_summary.to_dict() if self.white_summary else None,
            "black_summary": self.black_summary.to_dict() if self.black_summary else None,
            "error_message": self.error_message,
            "created_at": self.created_at,
            "analyzed_at": self.analyzed_at,
        }
        if include_moves:
            data["moves"] = [m.to_dict() for m in self.moves]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> GameReview:
        opening = data.get("opening")
        white = data.get("white_summary")
        black = data.get("black_summary")
        return cls(
            id=data["id"],
            user_id=data.get("user_id", "local"),
            game_id=data.get("game_id"),
            player_color=data.get("player_color", "white"),
            status=ReviewStatus(data.get("status", "pending")),
            progress=data.get("progress", 0.0),
            depth=data.get("depth", 0),
            opening=OpeningInfo(**opening) if opening else None,
            book_version=data.get("book_version"),
            headers=data.get("headers") or {},
            white_summary=AccuracySummary.from_dict(white) if white else None,
            black_summary=AccuracySummary.from_dict(black) if black else None,
            error_message=data.get("error_message"),
            created_at=data.get("created_at") or _now(),
            analyzed_at=data.get("analyzed_at"),
            moves=[AnalyzedMove.from_dict(m) for m in data.get("moves", [])],
        )


@dataclass(frozen=True)
class AnalysisProgress:
    """Progress snapshot broadcast to subscribers."""

    progress: float
    message: str
    state: str


# ---------------------------------------------------------------------------
# Openings and puzzles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OpeningInfo:
    eco: str
    name: str


@dataclass
class PuzzleRecord:
    """A practice position built from a reviewed move."""

    review_id: str
    move_id: str
    fen: str
    solution_uci: str
    solution_san: str
    classification: str
    player_move: str
    centipawn_loss: int
    theme: str | None = None
    user_id: str = "local"
    created_at: str = field(default_factory=_now)
    id: str = field(default_factory=_new_id)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> PuzzleRecord:
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)
