"""
Model checking for fitted movement HMMs.

- compare_n_states     : refit with 2, 3, ... states and compare AIC/BIC
- leave_one_track_out  : LOBO-style validation, held-out log-likelihood per fix
- state_summary        : step/angle statistics of each decoded state
- state_occupancy_by_covariate : decoded state fractions per covariate bin

中文：与单纯看训练集似然不同，留一法在未见过的轨迹上评估模型。
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from trackhmm.config import HMMConfig
from trackhmm.features import TrajectoryProcessor
from trackhmm.models import MovementHMM

logger = logging.getLogger(__name__)


def compare_n_states(
    X: np.ndarray,
    lengths: List[int],
    config: HMMConfig,
    candidates: Sequence[int] = (2, 3),
) -> pd.DataFrame:
    """Fit one model per candidate state count and tabulate the fit criteria.

    Rows are sorted by BIC (best first). A candidate whose every start fails
    is reported with NaN criteria instead of aborting the comparison.
    """
    rows = []
    for k in candidates:
        cfg = config if k == config.n_states else config.with_states(k)
        hmm = MovementHMM(cfg)
        try:
            hmm.fit(X, lengths)
        except RuntimeError as exc:
            logger.warning("n_states=%d could not be fitted: %s", k, exc)
            rows.append({"n_states": k, "log_likelihood": np.nan, "aic": np.nan, "bic": np.nan, "converged": False})
            continue
        rows.append({
            "n_states": k,
            "log_likelihood": hmm.log_likelihood,
            "aic": hmm.aic(X, lengths),
            "bic": hmm.bic(X, lengths),
            "converged": hmm.converged,
        })
    table = pd.DataFrame(rows).sort_values("bic", na_position="last").reset_index(drop=True)
    logger.info("Model selection:\n%s", table.to_string(index=False))
    return table


def leave_one_track_out(
    df: pd.DataFrame,
    config: HMMConfig,
    n_folds: int = 5,
    random_state: int = 42,
    id_col: str = "track_id",
    min_length: int = 2,
) -> pd.DataFrame:
    """
    Hold out whole tracks, train on the others, score the held-out track.

    Parameters
    ----------
    df : output of ``TrajectoryProcessor.preprocess`` (must contain the
        feature columns of ``config``).
    n_folds : number of held-out tracks, drawn without replacement; capped
        at the number of tracks.

    Returns
    -------
    DataFrame with one row per fold: held-out track, number of scored fixes,
    log-likelihood per fix and the fraction of fixes decoded in each state.
    """
    ids = np.array(sorted(df[id_col].unique()))
    if len(ids) < 2:
        raise ValueError("Need at least 2 tracks for leave-one-track-out validation.")

    processor = TrajectoryProcessor(id_col=id_col)
    rng = np.random.default_rng(random_state)
    n_folds = min(n_folds, len(ids))
    test_ids = rng.choice(ids, size=n_folds, replace=False)

    rows = []
    for k, test_id in enumerate(test_ids, start=1):
        train_df = df[df[id_col] != test_id]
        test_df = df[df[id_col] == test_id]
        try:
            X_train, len_train, _ = processor.build_sequences(train_df, config.features, min_length)
            X_test, len_test, _ = processor.build_sequences(test_df, config.features, min_length)
        except ValueError as exc:
            logger.warning("[Fold %d/%d] %s skipped: %s", k, n_folds, test_id, exc)
            continue

        hmm = MovementHMM(config)
        try:
            hmm.fit(X_train, len_train)
        except RuntimeError as exc:
            logger.warning("[Fold %d/%d] %s training failed: %s", k, n_folds, test_id, exc)
            continue

        states = hmm.decode(X_test, len_test)
        row = {
            "fold": k,
            "test_track": str(test_id),
            "n_obs": int(len(X_test)),
            "train_loglik_per_obs": hmm.log_likelihood / len(X_train),
            "test_loglik_per_obs": hmm.score(X_test, len_test) / len(X_test),
        }
        for state, label in hmm.state_labels().items():
            row[f"frac_{label}"] = float(np.mean(states == state))
        rows.append(row)
        logger.info(
            "[Fold %d/%d] %s: test loglik/obs=%.3f", k, n_folds, test_id, row["test_loglik_per_obs"]
        )

    return pd.DataFrame(rows)


def state_summary(df: pd.DataFrame, state_col: str = "state") -> pd.DataFrame:
    """Count, median step and mean absolute turning angle per decoded state."""
    decoded = df.dropna(subset=[state_col])
    grouped = decoded.groupby(state_col)
    out = pd.DataFrame({
        "n_obs": grouped.size(),
        "median_step": grouped["step"].median(),
        "mean_abs_angle": grouped["angle"].apply(lambda a: float(np.nanmean(np.abs(a))) if a.notna().any() else np.nan),
    })
    out["fraction"] = out["n_obs"] / out["n_obs"].sum()
    return out.reset_index()


def state_occupancy_by_covariate(
    df: pd.DataFrame,
    covariate: str,
    state_col: str = "state",
    bins: int = 4,
) -> Optional[pd.DataFrame]:
    """Fraction of fixes in each decoded state per quantile bin of ``covariate``.

    Returns None when the covariate is absent or has no usable values.
    """
    if covariate not in df.columns:
        logger.info("Covariate %r not in data; skipping occupancy table.", covariate)
        return None
    sub = df.dropna(subset=[covariate, state_col])
    if sub.empty or sub[covariate].nunique() < 2:
        logger.info("Covariate %r has too few distinct values.", covariate)
        return None

    binned = pd.qcut(sub[covariate], q=bins, duplicates="drop")
    table = pd.crosstab(binned, sub[state_col], normalize="index")
    table.index = table.index.astype(str)
    table.index.name = f"{covariate}_bin"
    return table.reset_index()
