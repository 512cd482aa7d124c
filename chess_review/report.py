"""Terminal report and command-line entry point.

Usage:
    chess-review game.pgn --player-color black
    chess-review game.pgn --json > review.json
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from rich.console import Console, Group
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table
from rich.text import Text

from chess_review.analyzer import GameAnalyzer
from chess_review.config import load_config
from chess_review.engine import EngineSessionManager
from chess_review.errors import ReviewError
from chess_review.models import AccuracySummary, AnalyzedMove, Classification, GameReview
from chess_review.puzzles import PuzzleStore
from chess_review.store import JsonReviewStore
from chess_review.sync import sync_from_url

logger = logging.getLogger(__name__)

# Rows shown in the per-side summary, in display order
_SUMMARY_ROWS = (
    Classification.BRILLIANT,
    Classification.GREAT,
    Classification.BEST,
    Classification.GOOD,
    Classification.BOOK,
    Classification.INACCURACY,
    Classification.MISS,
    Classification.MISTAKE,
    Classification.BLUNDER,
    Classification.FORCED,
)


def _format_eval(move: AnalyzedMove) -> str:
    if move.mate_after is not None:
        return f"M{move.mate_after}"
    if move.eval_after is None:
        return ""
    return f"{move.eval_after / 100:+.2f}"


def _label(classification: Classification) -> Text:
    text = f"{classification.symbol} {classification.display_name}".strip()
    return Text(text, style=f"bold {classification.color}")


def render_moves(review: GameReview) -> Table:
    """Move-by-move table with labels, evals and the engine's choice."""
    table = Table(title="Moves", show_lines=False, header_style="bold")
    table.add_column("Move", justify="left")
    table.add_column("Label")
    table.add_column("Eval", justify="right")
    table.add_column("Loss", justify="right")
    table.add_column("Best")

    for move in review.moves:
        best = ""
        if move.best_move and move.best_move_uci != move.uci:
            best = move.best_move
        table.add_row(
            move.display_string,
            _label(move.classification),
            _format_eval(move),
            str(move.centipawn_loss) if move.centipawn_loss else "",
            best,
        )
    return table


def render_summary(title: str, summary: AccuracySummary | None) -> Panel:
    if summary is None:
        return Panel("No summary", title=title, border_style="dim")
    parts = [f"[bold]Accuracy:[/bold] {summary.accuracy:.1f}%", ""]
    for classification in _SUMMARY_ROWS:
        count = summary.count(classification)
        if count:
            parts.append(
                f"[{classification.color}]{classification.display_name:<11}[/] {count}"
            )
    return Panel("\n".join(parts), title=title, border_style="green")


def render_review(review: GameReview) -> Group:
    """Full report for one review."""
    if review.error_message:
        header = Text(f"Review failed: {review.error_message}", style="bold red")
    elif review.opening:
        header = Text(f"{review.opening.eco} {review.opening.name}", style="bold")
    else:
        header = Text("Unknown opening", style="dim")

    summaries = Table.grid(padding=(0, 2))
    summaries.add_row(
        render_summary("White", review.white_summary),
        render_summary("Black", review.black_summary),
    )
    return Group(header, render_moves(review), summaries)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Post-game review: classify every move and score both sides"
    )
    parser.add_argument("pgn", type=Path, help="PGN file of a finished game")
    parser.add_argument(
        "--player-color", choices=["white", "black"], default="white",
        help="Side you played (puzzles come from its mistakes)",
    )
    parser.add_argument("--depth", type=int, default=None, help="Quick search depth")
    parser.add_argument(
        "--critical-depth", type=int, default=None,
        help="Depth used to re-check suspicious moves",
    )
    parser.add_argument("--move-time", type=int, default=None, help="Per-position budget (ms)")
    parser.add_argument("--threads", type=int, default=None, help="Engine threads (0 = auto)")
    parser.add_argument("--hash", type=int, default=None, help="Engine hash size (MB)")
    parser.add_argument("--data-dir", type=str, default=None, help="Where reviews are stored")
    parser.add_argument("--json", action="store_true", help="Print the review as JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    console = Console(stderr=args.json)
    try:
        config = load_config(
            quick_depth=args.depth,
            critical_depth=args.critical_depth,
            max_move_time_ms=args.move_time,
            threads=args.threads,
            hash_size_mb=args.hash,
            data_dir=args.data_dir,
        )
        pgn = args.pgn.read_text(encoding="utf-8")
    except (ReviewError, OSError) as exc:
        console.print(f"[red]{exc}[/red]")
        return 1

    data_dir = Path(config.data_dir)
    analyzer = GameAnalyzer(
        EngineSessionManager(stockfish_path=config.stockfish_path),
        JsonReviewStore(data_dir),
        puzzle_store=PuzzleStore(data_dir / "puzzles.json"),
        sync=sync_from_url(config.sync_url),
        config=config,
    )

    with Progress(
        TextColumn("{task.description}"), BarColumn(), console=console, transient=True
    ) as progress:
        task = progress.add_task("Analyzing", total=1.0)
        review = analyzer.analyze(
            pgn,
            player_color=args.player_color,
            game_id=args.pgn.stem,
            on_progress=lambda p: progress.update(task, completed=p.progress, description=p.message),
        )

    if args.json:
        print(json.dumps(review.to_dict(), indent=2, ensure_ascii=False))
    else:
        console.print(render_review(review))
        if analyzer.last_puzzles:
            console.print(f"{len(analyzer.last_puzzles)} puzzle(s) saved from your mistakes.")

    return 0 if review.error_message is None else 1


if __name__ == "__main__":
    sys.exit(main())
