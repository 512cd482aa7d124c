"""Brilliant move detection.

A move is brilliant when it is near-best, not forced, played in a
competitive position, and leaves material en prise that the opponent
would profit from taking by static exchange, without simply being a
favourable trade. The gates run in order and the first failing gate
rejects the move.

Usage:
    from chess_review.brilliance import BrilliantContext, BrilliantMoveClassifier
    classifier = BrilliantMoveClassifier()
    classifier.is_brilliant(ctx)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import chess

from chess_review.config import BrilliantConfig

logger = logging.getLogger(__name__)

PIECE_VALUES = {
    chess.PAWN: 100,
    chess.KNIGHT: 320,
    chess.BISHOP: 330,
    chess.ROOK: 500,
    chess.QUEEN: 900,
    chess.KING: 20000,
}

# Scores beyond this magnitude encode a forced mate
_MATE_THRESHOLD = 90_000


def piece_value(piece_type: chess.PieceType) -> int:
    return PIECE_VALUES[piece_type]


@dataclass(frozen=True)
class BrilliantContext:
    """Everything the classifier needs about one played move.

    ``eval_before``/``eval_after`` are White-perspective centipawns with
    mates folded in as large values. ``mate_before``/``mate_after`` are the
    signed mate distances (White perspective) or None when not mate.
    """

    fen_before: str
    move_san: str
    move_uci: str
    eval_before: int
    eval_after: int
    is_white_move: bool
    centipawn_loss: int
    legal_move_count: int
    mate_before: int | None = None
    mate_after: int | None = None


@dataclass(frozen=True)
class SacrificeSignal:
    moved_piece_is_capturable: bool
    opponent_best_see_gain: int
    immediate_sacrifice: bool
    immediate_sac_amount: int
    immediate_material_gain: int
    is_brilliant_signal: bool


# ---------------------------------------------------------------------------
# Capture helpers and static exchange evaluation
# ---------------------------------------------------------------------------


def legal_captures_to(board: chess.Board, square: chess.Square) -> list[chess.Move]:
    """Legal captures landing on ``square``, one per origin square.

    Promotion variants of the same pawn capture collapse to one move.
    """
    if board.piece_at(square) is None:
        return []
    seen = set()
    captures = []
    for move in board.generate_legal_moves(to_mask=chess.BB_SQUARES[square]):
        if move.from_square in seen:
            continue
        seen.add(move.from_square)
        captures.append(move)
    return captures


def _attacker_value(board: chess.Board, move: chess.Move) -> int:
    piece = board.piece_at(move.from_square)
    return piece_value(piece.piece_type) if piece else PIECE_VALUES[chess.QUEEN]


def least_valuable_capture(board: chess.Board, square: chess.Square) -> chess.Move | None:
    captures = legal_captures_to(board, square)
    if not captures:
        return None
    return min(captures, key=lambda m: _attacker_value(board, m))


def static_exchange_gain(
    board: chess.Board,
    first_capture: chess.Move,
    square: chess.Square,
    max_plies: int = 12,
) -> int:
    """Net material won by starting an exchange with ``first_capture``.

    Both sides then recapture with their least valuable piece, either
    side may stop at any point, and the first attacker's own value is
    subtracted at the end (a king costs nothing). Never negative.
    """
    victim = board.piece_at(square)
    gains = [piece_value(victim.piece_type) if victim else 0]

    attacker = board.piece_at(first_capture.from_square)
    if attacker is None or attacker.piece_type == chess.KING:
        first_attacker_value = 0 if attacker else PIECE_VALUES[chess.PAWN]
    else:
        first_attacker_value = piece_value(attacker.piece_type)

    current = board.copy(stack=False)
    current.push(first_capture)

    ply = 1
    while ply < max_plies:
        recapture = least_valuable_capture(current, square)
        if recapture is None:
            break
        current_victim = current.piece_at(square)
        victim_value = piece_value(current_victim.piece_type) if current_victim else 0
        current.push(recapture)
        gains.append(victim_value - gains[ply - 1])
        ply += 1

    # Fold back: each side keeps the better of stopping or continuing
    for i in range(len(gains) - 1, 0, -1):
        gains[i - 1] = max(gains[i - 1], -gains[i])

    return max(0, gains[0] - first_attacker_value)


def best_see_gain(board: chess.Board, square: chess.Square, max_plies: int = 12) -> int:
    """Best static exchange gain over every legal first capture on ``square``."""
    best = 0
    captures = sorted(legal_captures_to(board, square), key=lambda m: _attacker_value(board, m))
    for capture in captures:
        best = max(best, static_exchange_gain(board, capture, square, max_plies))
    return best


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class BrilliantMoveClassifier:
    """Layered gate deciding whether a move is a genuine sacrifice."""

    def __init__(self, config: BrilliantConfig | None = None) -> None:
        self.config = config or BrilliantConfig()

    def is_brilliant(self, ctx: BrilliantContext) -> bool:
        """Run every gate; any internal failure counts as not brilliant."""
        try:
            return self._is_brilliant(ctx)
        except Exception as exc:
            logger.debug("Brilliance check failed for %s: %s", ctx.move_uci, exc)
            return False

    def _is_brilliant(self, ctx: BrilliantContext) -> bool:
        cfg = self.config

        # Near-best and not forced
        if ctx.centipawn_loss > cfg.max_cp_loss:
            return False
        if ctx.legal_move_count <= 1:
            return False

        player_eval_before = ctx.eval_before if ctx.is_white_move else -ctx.eval_before
        improvement = (
            ctx.eval_after - ctx.eval_before if ctx.is_white_move
            else ctx.eval_before - ctx.eval_after
        )

        # Stability and competitive window
        if improvement < cfg.min_improvement:
            return False
        if not cfg.min_eval_before <= player_eval_before <= cfg.max_eval_before:
            return False

        board = chess.Board(ctx.fen_before)
        move = chess.Move.from_uci(ctx.move_uci)
        if not board.is_legal(move):
            return False

        moved = board.piece_at(move.from_square).piece_type
        captured = self._captured_piece_type(board, move)
        target = move.to_square

        after = board.copy(stack=False)
        after.push(move)

        winning_mate_now = self._is_winning_mate_now(ctx)

        # Capture killer: an equal or cheap trade needs mate or a big swing
        if captured is not None:
            mover_v = piece_value(moved)
            cap_v = piece_value(captured)
            equalish = abs(mover_v - cap_v) <= cfg.capture_equal_tolerance
            if equalish or mover_v - cap_v < cfg.min_immediate_capture_sac:
                if not winning_mate_now and improvement < cfg.capture_big_swing:
                    return False

        # Queen killer: a hanging queen must be the engine's move and must pay off
        if moved == chess.QUEEN and legal_captures_to(after, target):
            if cfg.queen_sac_requires_best and ctx.centipawn_loss != 0:
                return False
            if not winning_mate_now and improvement < cfg.queen_min_swing:
                return False

        signal = self.sacrifice_signal(board, move)
        if not signal.is_brilliant_signal:
            return False

        if self._is_trivial_exchange(after, target, moved):
            return False

        if self._is_normal_winning_capture(signal):
            return False

        if captured is not None and not signal.immediate_sacrifice and signal.immediate_material_gain > 0:
            return False

        return True

    @staticmethod
    def _captured_piece_type(board: chess.Board, move: chess.Move) -> chess.PieceType | None:
        if board.is_en_passant(move):
            return chess.PAWN
        if board.is_castling(move):
            return None
        piece = board.piece_at(move.to_square)
        return piece.piece_type if piece else None

    @staticmethod
    def _is_winning_mate_now(ctx: BrilliantContext) -> bool:
        """Mate appeared with this move and favours the mover."""
        mate_now = ctx.mate_after is not None or abs(ctx.eval_after) > _MATE_THRESHOLD
        mate_before = ctx.mate_before is not None or abs(ctx.eval_before) > _MATE_THRESHOLD
        if not mate_now or mate_before:
            return False
        return ctx.eval_after > 0 if ctx.is_white_move else ctx.eval_after < 0

    def sacrifice_signal(self, board: chess.Board, move: chess.Move) -> SacrificeSignal:
        """Measure how much the opponent gains by taking the moved piece."""
        cfg = self.config
        mover_v = piece_value(board.piece_at(move.from_square).piece_type)
        captured = self._captured_piece_type(board, move)
        captured_v = piece_value(captured) if captured is not None else 0

        sac_amount = mover_v - captured_v if captured is not None else 0
        immediate_sacrifice = captured is not None and sac_amount >= cfg.min_immediate_capture_sac
        material_gain = max(0, captured_v - mover_v) if captured is not None else 0

        after = board.copy(stack=False)
        after.push(move)
        capturable = bool(legal_captures_to(after, move.to_square))

        see = 0
        if capturable:
            see = best_see_gain(after, move.to_square, cfg.see_max_plies)

        is_signal = capturable and see >= cfg.min_see_gain_for_opponent
        return SacrificeSignal(
            moved_piece_is_capturable=capturable,
            opponent_best_see_gain=see,
            immediate_sacrifice=immediate_sacrifice,
            immediate_sac_amount=sac_amount,
            immediate_material_gain=material_gain,
            is_brilliant_signal=is_signal,
        )

    def _is_trivial_exchange(
        self, after: chess.Board, square: chess.Square, moved: chess.PieceType
    ) -> bool:
        """Opponent takes and we take back with a similar-value piece."""
        tolerance = self.config.exchange_value_tolerance
        for opp_capture in legal_captures_to(after, square):
            opp_piece = after.piece_at(opp_capture.from_square).piece_type
            opp_value = piece_value(opp_piece)

            reply = after.copy(stack=False)
            reply.push(opp_capture)
            recaptures = legal_captures_to(reply, square)

            # Queen for queen
            if moved == chess.QUEEN and opp_piece == chess.QUEEN and recaptures:
                return True

            for recapture in recaptures:
                our_value = piece_value(reply.piece_at(recapture.from_square).piece_type)
                if abs(opp_value - our_value) <= tolerance:
                    return True
        return False

    def _is_normal_winning_capture(self, signal: SacrificeSignal) -> bool:
        cfg = self.config
        if signal.immediate_material_gain >= cfg.max_immediate_gain and not signal.immediate_sacrifice:
            return True
        return signal.opponent_best_see_gain < cfg.min_see_gain_for_opponent
