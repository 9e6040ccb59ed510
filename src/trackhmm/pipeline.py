#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
pipeline.py: end-to-end behavioural-state analysis of animal GPS tracks.

Steps:
  1. load a Movebank CSV (path or URL) and project lon/lat to metres
  2. clean, split tracks at gaps > max-gap, drop sub-tracks shorter than min-duration
  3. regularize onto a fixed time grid (NA padding or linear interpolation)
  4. step length / turning angle, Gaussian HMM fit, Viterbi decoding
  5. model selection (BIC), optional leave-one-track-out validation, plots

Typical run:
  python -m trackhmm --csv "data/raw/tracks.csv" --max-gap 2h --min-duration 24h --interval 30min

Outputs (in --out-dir):
  predictions.csv, model.joblib, state_summary.csv, model_selection.csv,
  validation.csv, covariate_occupancy.csv, *.png
"""

from __future__ import annotations

import argparse
import logging
import os
import re
import sys
from typing import List, Optional, Sequence

import pandas as pd

from trackhmm.config import DEFAULT_FEATURES, PipelineConfig
from trackhmm.features import TrajectoryProcessor
from trackhmm.io import add_projected_coordinates, load_movebank, save_dataframe
from trackhmm.models import MovementHMM
from trackhmm.segmentation import InvalidInput, summarize_tracks
from trackhmm.validate import (
    compare_n_states,
    leave_one_track_out,
    state_occupancy_by_covariate,
    state_summary,
)

logger = logging.getLogger(__name__)


def _safe_name(text) -> str:
    """Track ids and labels as file-name fragments."""
    return re.sub(r"[^\w.-]+", "_", str(text))


def decode_tracks(df: pd.DataFrame, hmm: MovementHMM, processor: TrajectoryProcessor) -> pd.DataFrame:
    """Attach Viterbi ``state``, its ``behaviour`` label and state probabilities.

    Rows outside any complete feature run (missing fixes, track ends) keep
    ``<NA>`` states.
    """
    X, lengths, index = processor.build_sequences(df, hmm.config.features)
    states = hmm.decode(X, lengths)
    probs = hmm.state_probabilities(X, lengths)
    labels = hmm.state_labels()

    out = df.copy()
    out["state"] = pd.array([pd.NA] * len(out), dtype="Int64")
    out.loc[index, "state"] = states
    out["behaviour"] = out["state"].map(labels)
    for k, label in labels.items():
        out[f"p_{label}"] = float("nan")
        out.loc[index, f"p_{label}"] = probs[:, k]
    return out


def run(cfg: PipelineConfig) -> pd.DataFrame:
    """Run the whole analysis and write every artefact to ``cfg.out_dir``."""
    os.makedirs(cfg.out_dir, exist_ok=True)

    raw = load_movebank(cfg.source)
    raw = add_projected_coordinates(raw, crs=cfg.crs)

    processor = TrajectoryProcessor(eps=cfg.hmm.eps)
    df = processor.preprocess(
        raw,
        max_gap=cfg.max_gap,
        min_duration=cfg.min_duration,
        interval=cfg.interval,
        method=cfg.regularize_method,
    )
    if df.empty:
        raise InvalidInput(
            f"No track spans at least {cfg.min_duration} after splitting at {cfg.max_gap} gaps."
        )

    for s in summarize_tracks(df):
        logger.debug("%s: %d rows, %s -> %s", s.track_id, s.n_points, s.start, s.end)

    X, lengths, _ = processor.build_sequences(df, cfg.hmm.features)
    print(f"Data processed. {df['track_id'].nunique()} sub-tracks, {len(df)} rows, {len(X)} complete observations.")

    selection = compare_n_states(X, lengths, cfg.hmm, candidates=sorted(set(cfg.compare_states)))
    save_dataframe(selection, os.path.join(cfg.out_dir, "model_selection.csv"))

    hmm = MovementHMM(cfg.hmm).fit(X, lengths)
    hmm.save(os.path.join(cfg.out_dir, "model.joblib"))

    pred = decode_tracks(df, hmm, processor)
    save_dataframe(pred, os.path.join(cfg.out_dir, "predictions.csv"))

    summary = state_summary(pred)
    summary["behaviour"] = summary["state"].map(hmm.state_labels())
    save_dataframe(summary, os.path.join(cfg.out_dir, "state_summary.csv"))
    print("\n=== State summary ===")
    print(summary.to_string(index=False))

    if cfg.covariate:
        occupancy = state_occupancy_by_covariate(pred, cfg.covariate)
        if occupancy is not None:
            save_dataframe(occupancy, os.path.join(cfg.out_dir, "covariate_occupancy.csv"))

    if cfg.n_folds > 0:
        if pred["track_id"].nunique() < 2:
            logger.warning("Only one sub-track; skipping leave-one-track-out validation.")
        else:
            validation = leave_one_track_out(pred, cfg.hmm, n_folds=cfg.n_folds, random_state=cfg.hmm.random_state)
            save_dataframe(validation, os.path.join(cfg.out_dir, "validation.csv"))

    if cfg.make_plots:
        _make_plots(pred, hmm, cfg)

    return pred


def _make_plots(pred: pd.DataFrame, hmm: MovementHMM, cfg: PipelineConfig) -> None:
    from trackhmm import plots

    labels = hmm.state_labels()
    plots.plot_tracks(pred, os.path.join(cfg.out_dir, "tracks.png"))
    plots.plot_track_states(pred, os.path.join(cfg.out_dir, "track_states.png"), labels=labels)
    plots.plot_step_histograms(pred, os.path.join(cfg.out_dir, "state_distributions.png"), labels=labels)

    # example plot: pick track with most points
    top = pred["track_id"].value_counts().index[0]
    plots.plot_state_timeseries(
        pred, top, os.path.join(cfg.out_dir, f"timeseries_{_safe_name(top)}.png"), labels=labels, limit=cfg.plot_limit
    )
    for k, label in labels.items():
        sub = pred[pred["state"].eq(k).fillna(False).astype(bool)]
        if len(sub) < 10:
            logger.warning("Too few '%s' points for a density map.", label)
            continue
        plots.plot_state_density(
            sub["x"], sub["y"],
            title=f"Density of '{label}' locations",
            path=os.path.join(cfg.out_dir, f"density_{_safe_name(label)}.png"),
        )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="trackhmm", description="Behavioural-state HMMs for animal GPS tracks.")
    p.add_argument("--csv", required=True, help="Movebank CSV path or URL")
    p.add_argument("--out-dir", default="outputs")
    p.add_argument("--crs", default=None, help="target CRS, e.g. epsg:32719 (default: UTM zone of the data)")
    p.add_argument("--max-gap", default="2h")
    p.add_argument("--min-duration", default="24h")
    p.add_argument("--interval", default="30min")
    p.add_argument("--method", choices=["pad", "linear"], default="pad")
    p.add_argument("--n-states", type=int, default=2)
    p.add_argument("--features", nargs="+", default=list(DEFAULT_FEATURES))
    p.add_argument("--n-iter", type=int, default=100)
    p.add_argument("--tol", type=float, default=1e-3)
    p.add_argument("--n-starts", type=int, default=3)
    p.add_argument("--random-state", type=int, default=42)
    p.add_argument("--compare-states", type=int, nargs="+", default=[2, 3])
    p.add_argument("--n-folds", type=int, default=0, help="leave-one-track-out folds (0 = off)")
    p.add_argument("--covariate", default="temp")
    p.add_argument("--plot-limit", type=int, default=1000)
    p.add_argument("--no-plots", action="store_true")
    p.add_argument("-v", "--verbose", action="store_true")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    try:
        cfg = PipelineConfig.from_args(args)
        run(cfg)
    except FileNotFoundError as exc:
        print(f"Error: 找不到输入文件 {exc.filename or args.csv}", file=sys.stderr)
        return 1
    except OSError as exc:
        # 网络或磁盘错误，例如 URL 无法访问
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except (ValueError, RuntimeError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"\nDone. Outputs in {cfg.out_dir}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
