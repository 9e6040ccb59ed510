# src/trackhmm/features.py
from __future__ import annotations

import logging
from typing import Any, List, Sequence, Tuple

import numpy as np
import pandas as pd

from trackhmm.segmentation import InvalidInput, as_duration, split_at_gaps

logger = logging.getLogger(__name__)


class TrajectoryProcessor:
    """轨迹清洗、正则化与运动特征 (step / turning angle)."""

    def __init__(
        self,
        id_col: str = "track_id",
        time_col: str = "timestamp",
        x_col: str = "x",
        y_col: str = "y",
        eps: float = 1e-3,
    ):
        self.id_col = id_col
        self.time_col = time_col
        self.x_col = x_col
        self.y_col = y_col
        self.eps = eps

    def clean(self, df: pd.DataFrame) -> pd.DataFrame:
        """Drop unusable fixes and sort by (track, time).

        Rows without a timestamp or coordinates are removed, and only the first
        of several fixes sharing a timestamp within a track is kept.
        """
        df = df.copy()
        df[self.time_col] = pd.to_datetime(df[self.time_col], errors="coerce")
        n0 = len(df)
        df = df.dropna(subset=[self.id_col, self.time_col, self.x_col, self.y_col])
        df = df.sort_values([self.id_col, self.time_col], kind="mergesort")
        # 移除重复时间戳
        df = df.drop_duplicates(subset=[self.id_col, self.time_col], keep="first")
        df = df.reset_index(drop=True)
        if len(df) < n0:
            logger.info("Cleaning removed %d of %d rows", n0 - len(df), n0)
        return df

    def regularize(self, df: pd.DataFrame, interval: Any, method: str = "pad") -> pd.DataFrame:
        """Put every track on a regular time grid starting at its first fix.

        method="pad": each fix is moved to the nearest grid time (first fix wins
        a slot); grid times without a fix become rows with NaN coordinates, so
        the HMM can treat them as missing observations.
        method="linear": numeric columns are linearly interpolated onto the grid.
        """
        step = as_duration(interval, "interval")
        if method not in ("pad", "linear"):
            raise InvalidInput(f"Unknown regularization method {method!r}; use 'pad' or 'linear'.")
        if df.empty:
            return df.copy().reset_index(drop=True)

        df = df.copy()
        df[self.time_col] = pd.to_datetime(df[self.time_col])
        step_s = step.total_seconds()
        numeric_cols = [
            c for c in df.columns
            if c not in (self.id_col, self.time_col) and pd.api.types.is_numeric_dtype(df[c])
        ]
        other_cols = [c for c in df.columns if c not in numeric_cols and c not in (self.id_col, self.time_col)]

        frames: List[pd.DataFrame] = []
        for track_id, g in df.groupby(self.id_col, sort=False):
            g = g.sort_values(self.time_col)
            t0 = g[self.time_col].iloc[0]
            secs = (g[self.time_col] - t0).dt.total_seconds().to_numpy()
            n_slots = int(np.floor(secs[-1] / step_s)) + 1
            grid_secs = np.arange(n_slots) * step_s

            out = pd.DataFrame({
                self.id_col: track_id,
                self.time_col: t0 + pd.to_timedelta(grid_secs, unit="s"),
            })

            if method == "linear":
                for c in numeric_cols:
                    vals = g[c].to_numpy(dtype=float)
                    ok = np.isfinite(vals)
                    if ok.sum() >= 2:
                        out[c] = np.interp(grid_secs, secs[ok], vals[ok])
                    elif ok.sum() == 1:
                        out[c] = vals[ok][0]
                    else:
                        out[c] = np.nan
                for c in other_cols:
                    out[c] = g[c].iloc[0]
            else:
                slot = np.rint(secs / step_s).astype(int)
                slot = np.minimum(slot, n_slots - 1)
                first = ~pd.Series(slot).duplicated().to_numpy()
                placed = g.iloc[first].copy()
                placed.index = slot[first]
                placed = placed.drop(columns=[self.id_col, self.time_col])
                out = out.join(placed)

            frames.append(out)

        result = pd.concat(frames, ignore_index=True)
        n_missing = int(result[self.x_col].isna().sum()) if self.x_col in result else 0
        logger.info(
            "Regularized %d tracks onto a %s grid (%s): %d rows, %d missing locations",
            len(frames), step, method, len(result), n_missing,
        )
        return result

    def add_movement_metrics(self, df: pd.DataFrame) -> pd.DataFrame:
        """Add ``step`` (m, to the next fix), ``angle`` (rad) and ``log_step``.

        The turning angle at a fix is the change of heading between the
        incoming and the outgoing segment, wrapped to (-pi, pi].
        """
        df = df.copy()
        grouper = df.groupby(self.id_col, sort=False)
        x = df[self.x_col].astype(float)
        y = df[self.y_col].astype(float)

        # 注意：shift 在 groupby 内进行，不会跨个体计算差分
        dx_next = grouper[self.x_col].shift(-1).astype(float) - x
        dy_next = grouper[self.y_col].shift(-1).astype(float) - y
        dx_prev = x - grouper[self.x_col].shift(1).astype(float)
        dy_prev = y - grouper[self.y_col].shift(1).astype(float)

        step = np.hypot(dx_next, dy_next)
        heading_out = np.arctan2(dy_next, dx_next)
        heading_in = np.arctan2(dy_prev, dx_prev)
        turn = heading_out - heading_in
        # wrap to (-pi, pi]
        turn = -((-turn + np.pi) % (2 * np.pi) - np.pi)

        degenerate = (np.hypot(dx_prev, dy_prev) == 0) | (step == 0)
        df["step"] = step
        df["angle"] = turn.where(~degenerate)
        df["log_step"] = np.log(df["step"] + self.eps)
        return df

    def preprocess(
        self,
        df: pd.DataFrame,
        max_gap: Any = "2h",
        min_duration: Any = "24h",
        interval: Any = "30min",
        method: str = "pad",
    ) -> pd.DataFrame:
        """执行完整的数据清洗管道: clean -> split at gaps -> regularize -> metrics."""
        df = self.clean(df)
        df = split_at_gaps(df, max_gap, min_duration, id_col=self.id_col, time_col=self.time_col)
        if df.empty:
            logger.warning("No sub-track survived the %s minimum duration.", min_duration)
            return df
        df = self.regularize(df, interval, method=method)
        return self.add_movement_metrics(df)

    def build_sequences(
        self,
        df: pd.DataFrame,
        features: Sequence[str],
        min_length: int = 2,
    ) -> Tuple[np.ndarray, List[int], np.ndarray]:
        """
        Concatenate per-track runs of complete rows into X and lengths.
        A row with any missing feature ends the current run, so the HMM never
        links observations across a gap or across individuals.

        Returns
        -------
        X : (N, n_features) array
        lengths : run lengths, sum(lengths) == N
        index : ``df.index`` labels of the rows in X
        """
        missing = [f for f in features if f not in df.columns]
        if missing:
            raise ValueError(f"DataFrame lacks feature columns {missing}.")

        xs: List[np.ndarray] = []
        lengths: List[int] = []
        idx: List[np.ndarray] = []
        for _, g in df.groupby(self.id_col, sort=False):
            vals = g[list(features)].to_numpy(dtype=float)
            complete = np.isfinite(vals).all(axis=1)
            # run id changes at every incomplete row
            run_id = np.cumsum(~complete)
            for r in np.unique(run_id[complete]):
                sel = complete & (run_id == r)
                n = int(sel.sum())
                if n < min_length:
                    continue
                xs.append(vals[sel])
                lengths.append(n)
                idx.append(g.index.to_numpy()[sel])

        if not xs:
            raise ValueError("No sequences: check filtering, features and min_length.")
        return np.vstack(xs), lengths, np.concatenate(idx)
