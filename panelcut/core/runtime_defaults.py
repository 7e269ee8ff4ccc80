"""
Runtime defaults for segmentation and flattening.

Values can be overridden via environment variables so that batch jobs can be
tuned without touching call sites. Invalid or out-of-range values fall back to
the built-in default silently.
"""

from __future__ import annotations

from dataclasses import dataclass
import os


ENV_KMEANS_MAX_ITERATIONS = "PANELCUT_KMEANS_MAX_ITERATIONS"
ENV_SEGMENT_TIMEOUT = "PANELCUT_SEGMENT_TIMEOUT"
ENV_SMOOTHING_PASSES = "PANELCUT_SMOOTHING_PASSES"
ENV_RELAXATION_ITERATIONS = "PANELCUT_RELAXATION_ITERATIONS"
ENV_RANDOM_SEED = "PANELCUT_RANDOM_SEED"


@dataclass(frozen=True)
class RuntimeDefaults:
    kmeans_max_iterations: int
    segment_timeout: float
    smoothing_passes: int
    relaxation_iterations: int
    random_seed: int


def _read_int_env(
    env_name: str,
    default: int,
    *,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    raw = os.environ.get(env_name)
    if raw is None:
        return default
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return default

    if min_value is not None and value < min_value:
        return default
    if max_value is not None and value > max_value:
        return default
    return value


def _read_float_env(
    env_name: str,
    default: float,
    *,
    min_value: float | None = None,
    max_value: float | None = None,
) -> float:
    raw = os.environ.get(env_name)
    if raw is None:
        return default
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return default

    if value != value:  # NaN
        return default
    if min_value is not None and value < min_value:
        return default
    if max_value is not None and value > max_value:
        return default
    return value


def load_runtime_defaults() -> RuntimeDefaults:
    return RuntimeDefaults(
        kmeans_max_iterations=_read_int_env(ENV_KMEANS_MAX_ITERATIONS, 50, min_value=1, max_value=1000),
        segment_timeout=_read_float_env(ENV_SEGMENT_TIMEOUT, 2.0, min_value=0.001, max_value=3600.0),
        smoothing_passes=_read_int_env(ENV_SMOOTHING_PASSES, 3, min_value=0, max_value=100),
        relaxation_iterations=_read_int_env(ENV_RELAXATION_ITERATIONS, 200, min_value=1, max_value=100000),
        random_seed=_read_int_env(ENV_RANDOM_SEED, 0, min_value=0),
    )


DEFAULTS = load_runtime_defaults()
