# src/trackhmm/models.py
from __future__ import annotations

import logging
import warnings
from typing import Dict, List, Optional

import joblib
import numpy as np
from hmmlearn.hmm import GaussianHMM

from trackhmm.config import HMMConfig

logger = logging.getLogger(__name__)

STATE_NAMES: Dict[int, List[str]] = {
    2: ["encamped", "exploratory"],
    3: ["resting", "foraging", "travelling"],
}


def init_means_from_quantiles(X: np.ndarray, n_states: int) -> np.ndarray:
    """
    Initialize state means from evenly spaced quantiles (20%..80%) of the
    first feature; the other features start at their overall mean.
    中文：用分位数初始化均值，帮助 EM 不乱跑。
    """
    X = np.asarray(X, dtype=float)
    if n_states == 1:
        qs = np.array([0.5])
    else:
        qs = np.linspace(0.2, 0.8, n_states)
    means = np.tile(X.mean(axis=0), (n_states, 1))
    means[:, 0] = np.quantile(X[:, 0], qs)
    return means


class MovementHMM:
    """运动状态识别 HMM 模型封装 (hmmlearn GaussianHMM, diag covariance)."""

    def __init__(self, config: Optional[HMMConfig] = None):
        self.config = (config or HMMConfig()).validate()
        self.model: Optional[GaussianHMM] = None
        self.is_fitted = False
        self.log_likelihood: float = float("nan")
        self.best_start: Optional[int] = None

    @property
    def n_states(self) -> int:
        return self.config.n_states

    def _build(self, X: np.ndarray, start: int, rng: np.random.Generator) -> GaussianHMM:
        cfg = self.config
        # 第一次使用给定/分位数均值，之后的重启在其基础上加扰动
        if cfg.means_init is not None:
            means = np.asarray(cfg.means_init, dtype=float)
        else:
            means = init_means_from_quantiles(X, cfg.n_states)
        if start > 0:
            means = means + rng.normal(0.0, 0.25, size=means.shape) * X.std(axis=0)

        if cfg.covars_init is not None:
            covars = np.asarray(cfg.covars_init, dtype=float)
        else:
            var = X.var(axis=0)
            var = np.where(np.isfinite(var) & (var > 1e-6), var, 1.0)
            covars = np.tile(var, (cfg.n_states, 1))

        init_params = "st"
        if cfg.startprob_init is not None:
            init_params = init_params.replace("s", "")
        if cfg.transmat_init is not None:
            init_params = init_params.replace("t", "")

        model = GaussianHMM(
            n_components=cfg.n_states,
            covariance_type=cfg.covariance_type,
            n_iter=cfg.n_iter,
            tol=cfg.tol,
            random_state=cfg.random_state + 97 * start,
            init_params=init_params,
            params="stmc",
        )
        # init_params 不含 'm'/'c'，所以可以手动指定 means_ 和 covars_
        model.means_ = means
        model.covars_ = covars
        if cfg.startprob_init is not None:
            model.startprob_ = np.asarray(cfg.startprob_init, dtype=float)
        if cfg.transmat_init is not None:
            model.transmat_ = np.asarray(cfg.transmat_init, dtype=float)
        return model

    def fit(self, X: np.ndarray, lengths: List[int]) -> "MovementHMM":
        """Fit with ``n_starts`` starting points and keep the best log-likelihood."""
        X = np.asarray(X, dtype=float)
        if X.ndim != 2 or X.shape[1] != self.config.n_features:
            raise ValueError(f"X must have shape (n, {self.config.n_features}), got {X.shape}")
        if sum(lengths) != len(X):
            raise ValueError("sum(lengths) must equal the number of rows in X.")

        rng = np.random.default_rng(self.config.random_state)
        best: Optional[GaussianHMM] = None
        best_ll = -np.inf
        for start in range(self.config.n_starts):
            model = self._build(X, start, rng)
            try:
                with warnings.catch_warnings():
                    warnings.simplefilter("ignore")
                    model.fit(X, lengths)
                ll = float(model.score(X, lengths))
            except (ValueError, np.linalg.LinAlgError) as exc:
                logger.warning("Start %d failed: %s", start, exc)
                continue
            if not np.isfinite(ll):
                logger.warning("Start %d gave a non-finite log-likelihood.", start)
                continue
            logger.debug(
                "Start %d: log-likelihood=%.3f converged=%s", start, ll, model.monitor_.converged
            )
            if ll > best_ll:
                best, best_ll, self.best_start = model, ll, start

        if best is None:
            raise RuntimeError(f"All {self.config.n_starts} HMM starts failed.")

        self.model = best
        self.log_likelihood = best_ll
        self.is_fitted = True
        logger.info(
            "HMM Training Complete (n=%d): log-likelihood=%.3f from start %d, converged=%s",
            self.n_states, best_ll, self.best_start, best.monitor_.converged,
        )
        for k, label in self.state_labels().items():
            logger.info(" - State %d [%s]: means=%s", k, label, np.round(best.means_[k], 3).tolist())
        return self

    def _require_fitted(self) -> GaussianHMM:
        if not self.is_fitted or self.model is None:
            raise ValueError("Model not fitted yet.")
        return self.model

    def decode(self, X: np.ndarray, lengths: List[int]) -> np.ndarray:
        """Viterbi 状态序列."""
        return self._require_fitted().predict(X, lengths)

    def state_probabilities(self, X: np.ndarray, lengths: List[int]) -> np.ndarray:
        return self._require_fitted().predict_proba(X, lengths)

    def score(self, X: np.ndarray, lengths: List[int]) -> float:
        return float(self._require_fitted().score(X, lengths))

    def aic(self, X: np.ndarray, lengths: List[int]) -> float:
        return float(self._require_fitted().aic(X, lengths))

    def bic(self, X: np.ndarray, lengths: List[int]) -> float:
        return float(self._require_fitted().bic(X, lengths))

    @property
    def converged(self) -> bool:
        return bool(self._require_fitted().monitor_.converged)

    def state_order(self) -> np.ndarray:
        """State indices sorted by mean of the first feature (low -> high)."""
        return np.argsort(self._require_fitted().means_[:, 0])

    def state_labels(self) -> Dict[int, str]:
        """Map state index -> behaviour label, robust to label switching."""
        order = self.state_order()
        names = STATE_NAMES.get(self.n_states, [f"state_{i}" for i in range(self.n_states)])
        return {int(k): names[rank] for rank, k in enumerate(order)}

    def save(self, path: str):
        joblib.dump({"config": self.config, "model": self._require_fitted()}, path)

    @classmethod
    def load(cls, path: str) -> "MovementHMM":
        payload = joblib.load(path)
        hmm = cls(payload["config"])
        hmm.model = payload["model"]
        hmm.is_fitted = True
        return hmm
