"""Configuration for analysis runs and the classification tables.

AnalysisConfig values can be overridden from the environment with
``CHESS_REVIEW_*`` variables (see ``load_config``). The threshold and
brilliance tables are plain frozen dataclasses so they can be swapped
out in tests.
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass

from chess_review.errors import ConfigError

# Depth at which the deeper threshold calibration applies
DEEP_CALIBRATION_DEPTH = 18


@dataclass(frozen=True)
class AnalysisConfig:
    """Tunables for one analysis run.

    ``threads == 0`` means "all cores but one"; call ``resolved()`` once
    per run to pin it to a concrete value.
    """

    quick_depth: int = 12
    critical_depth: int = 18
    max_move_time_ms: int = 3000
    threads: int = 0
    hash_size_mb: int = 32
    checkpoint_every: int = 5
    data_dir: str = "data"
    sync_url: str | None = None
    stockfish_path: str | None = None

    def resolved(self) -> AnalysisConfig:
        """Return a copy with automatic values replaced by concrete ones."""
        if self.threads > 0:
            return self
        cores = os.cpu_count() or 1
        return dataclasses.replace(self, threads=max(1, cores - 1))


# env var suffix -> (field name, parser)
_ENV_FIELDS = {
    "QUICK_DEPTH": ("quick_depth", int),
    "CRITICAL_DEPTH": ("critical_depth", int),
    "MOVE_TIME_MS": ("max_move_time_ms", int),
    "THREADS": ("threads", int),
    "HASH_MB": ("hash_size_mb", int),
    "CHECKPOINT_EVERY": ("checkpoint_every", int),
    "DATA_DIR": ("data_dir", str),
    "SYNC_URL": ("sync_url", str),
    "STOCKFISH": ("stockfish_path", str),
}

_ENV_PREFIX = "CHESS_REVIEW_"


def load_config(environ: dict | None = None, **overrides) -> AnalysisConfig:
    """Build an AnalysisConfig from defaults, environment, then overrides.

    Args:
        environ: Mapping to read variables from. Defaults to os.environ.
        **overrides: Field values that win over the environment. None
            values are ignored so argparse namespaces can be passed through.

    Returns:
        The merged configuration.

    Raises:
        ConfigError: If an integer variable cannot be parsed.
    """
    env = os.environ if environ is None else environ
    values: dict = {}
    for suffix, (name, parser) in _ENV_FIELDS.items():
        raw = env.get(_ENV_PREFIX + suffix)
        if raw is None or raw == "":
            continue
        try:
            values[name] = parser(raw)
        except ValueError as exc:
            raise ConfigError(f"{_ENV_PREFIX}{suffix}={raw!r} is not a valid integer") from exc

    for name, value in overrides.items():
        if value is None:
            continue
        if name not in AnalysisConfig.__dataclass_fields__:
            raise ConfigError(f"Unknown config field: {name}")
        values[name] = value

    config = AnalysisConfig(**values)
    if config.quick_depth < 1 or config.critical_depth < 1:
        raise ConfigError("Search depths must be positive")
    if config.max_move_time_ms <= 0:
        raise ConfigError("max_move_time_ms must be positive")
    return config


# ---------------------------------------------------------------------------
# Classification tables
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClassificationThresholds:
    """Upper bounds (inclusive) of each centipawn-loss band."""

    best: int
    good: int
    inaccuracy: int
    miss: int
    mistake: int
    dominant: int = 500
    still_winning: int = 400


# Calibrated for depth >= 18
DEEP = ClassificationThresholds(best=15, good=35, inaccuracy=60, miss=100, mistake=200)

# Shallower searches are noisier, so the bands are wider
SHALLOW = ClassificationThresholds(best=20, good=50, inaccuracy=90, miss=140, mistake=280)


def thresholds_for_depth(depth: int) -> ClassificationThresholds:
    return DEEP if depth >= DEEP_CALIBRATION_DEPTH else SHALLOW


# (last move number of the band, multiplier applied to the loss)
PHASE_FORGIVENESS = (
    (6, 0.85),
    (20, 0.95),
    (25, 1.0),
)
LATE_GAME_MULTIPLIER = 0.9


@dataclass(frozen=True)
class BrilliantConfig:
    """Gates used by the brilliance classifier. Values are centipawns."""

    max_cp_loss: int = 25
    max_eval_before: int = 450
    min_eval_before: int = -80
    min_improvement: int = -40
    min_see_gain_for_opponent: int = 120
    max_immediate_gain: int = 200
    min_immediate_capture_sac: int = 150
    capture_equal_tolerance: int = 120
    capture_big_swing: int = 250
    see_max_plies: int = 12
    exchange_value_tolerance: int = 120
    queen_sac_requires_best: bool = True
    queen_min_swing: int = 250
