"""Explicit configuration for the HMM and for a full pipeline run."""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

DEFAULT_FEATURES: Tuple[str, ...] = ("log_step", "angle")


@dataclass
class HMMConfig:
    """Observation model and starting values for ``MovementHMM``.

    ``means_init`` / ``covars_init`` are (n_states, n_features). When
    ``means_init`` is None the means are taken from quantiles of the first
    feature (see ``init_means_from_quantiles``).
    """

    n_states: int = 2
    features: Tuple[str, ...] = DEFAULT_FEATURES
    covariance_type: str = "diag"
    n_iter: int = 100
    tol: float = 1e-3
    random_state: int = 42
    n_starts: int = 3
    means_init: Optional[List[List[float]]] = None
    covars_init: Optional[List[List[float]]] = None
    startprob_init: Optional[List[float]] = None
    transmat_init: Optional[List[List[float]]] = None
    # log(step + eps)，避免 step=0 时出现 -inf
    eps: float = 1e-3

    @property
    def n_features(self) -> int:
        return len(self.features)

    def validate(self) -> "HMMConfig":
        if self.n_states < 1:
            raise ValueError(f"n_states must be >= 1, got {self.n_states}")
        if not self.features:
            raise ValueError("At least one feature is required.")
        if self.n_starts < 1:
            raise ValueError(f"n_starts must be >= 1, got {self.n_starts}")
        if self.covariance_type != "diag":
            raise ValueError("Only covariance_type='diag' is supported.")

        k, d = self.n_states, self.n_features
        for name, value, shape in (
            ("means_init", self.means_init, (k, d)),
            ("covars_init", self.covars_init, (k, d)),
            ("transmat_init", self.transmat_init, (k, k)),
            ("startprob_init", self.startprob_init, (k,)),
        ):
            if value is None:
                continue
            arr = np.asarray(value, dtype=float)
            if arr.shape != shape:
                raise ValueError(f"{name} must have shape {shape}, got {arr.shape}")
        if self.covars_init is not None and np.any(np.asarray(self.covars_init) <= 0):
            raise ValueError("covars_init must be strictly positive.")
        for name, value in (("startprob_init", self.startprob_init), ("transmat_init", self.transmat_init)):
            if value is not None and not np.allclose(np.sum(value, axis=-1), 1.0):
                raise ValueError(f"{name} rows must sum to 1.")
        return self

    def with_states(self, n_states: int) -> "HMMConfig":
        """Copy with a different number of states and no state-shaped initial values."""

        return HMMConfig(
            n_states=n_states,
            features=self.features,
            covariance_type=self.covariance_type,
            n_iter=self.n_iter,
            tol=self.tol,
            random_state=self.random_state,
            n_starts=self.n_starts,
            eps=self.eps,
        )


@dataclass
class PipelineConfig:
    source: str
    out_dir: str = "outputs"
    crs: Optional[str] = None
    max_gap: str = "2h"
    min_duration: str = "24h"
    interval: str = "30min"
    regularize_method: str = "pad"
    covariate: Optional[str] = "temp"
    n_folds: int = 0
    compare_states: Sequence[int] = (2, 3)
    plot_limit: int = 1000
    make_plots: bool = True
    hmm: HMMConfig = field(default_factory=HMMConfig)

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "PipelineConfig":
        hmm = HMMConfig(
            n_states=args.n_states,
            features=tuple(args.features),
            n_iter=args.n_iter,
            tol=args.tol,
            random_state=args.random_state,
            n_starts=args.n_starts,
        ).validate()
        return cls(
            source=args.csv,
            out_dir=args.out_dir,
            crs=args.crs,
            max_gap=args.max_gap,
            min_duration=args.min_duration,
            interval=args.interval,
            regularize_method=args.method,
            covariate=args.covariate or None,
            n_folds=args.n_folds,
            compare_states=tuple(args.compare_states),
            plot_limit=args.plot_limit,
            make_plots=not args.no_plots,
            hmm=hmm,
        )
