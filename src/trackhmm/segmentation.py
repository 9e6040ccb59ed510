"""Split location tracks into sub-tracks at long time gaps.

A GPS tag that stops transmitting for a few hours leaves a hole that no
regular-grid model should bridge. ``split_at_gaps`` cuts every track where the
gap between consecutive fixes exceeds ``max_gap`` and then drops the pieces
that are too short to be worth modelling.

中文：按时间间隔切分轨迹，过短的子轨迹整段丢弃。
"""

from __future__ import annotations

import logging
import numbers
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class InvalidInput(ValueError):
    """Raised when a track table or a threshold violates the segmenter contract."""


@dataclass(frozen=True, slots=True)
class LocationRecord:
    """A single fix of one tracked animal.

    Attributes:
        track_id: Identifier of the track (individual or sub-track).
        timestamp: Time of the fix.
        x: Easting (projected metres) or longitude.
        y: Northing (projected metres) or latitude.
        covariates: Extra per-fix values, e.g. ``{"temp": 21.5}``.
    """

    track_id: str
    timestamp: datetime
    x: float
    y: float
    covariates: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TrackSummary:
    """Extent and sampling of one track."""

    track_id: str
    n_points: int
    start: pd.Timestamp
    end: pd.Timestamp
    duration: pd.Timedelta
    max_gap: pd.Timedelta | None


def as_duration(value: Any, name: str, allow_zero: bool = False) -> pd.Timedelta:
    """Coerce a timedelta-like value ("2h", timedelta, Timedelta) and check its sign."""

    if isinstance(value, numbers.Number):
        raise InvalidInput(f"{name} must be a duration such as '2h', got bare number {value!r}")
    if not isinstance(value, (str, timedelta, np.timedelta64)):
        raise InvalidInput(f"{name} must be a duration, got {type(value).__name__}")
    try:
        td = pd.Timedelta(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"Cannot parse {name}={value!r} as a duration") from exc
    if pd.isna(td):
        raise InvalidInput(f"{name} must not be NaT")
    if td < pd.Timedelta(0) or (td == pd.Timedelta(0) and not allow_zero):
        bound = "non-negative" if allow_zero else "positive"
        raise InvalidInput(f"{name} must be a {bound} duration, got {td}")
    return td


def _check_columns(df: pd.DataFrame, id_col: str, time_col: str) -> pd.Series:
    missing = [c for c in (id_col, time_col) if c not in df.columns]
    if missing:
        raise InvalidInput(f"Missing required columns: {missing}")
    if df[id_col].isna().any():
        raise InvalidInput(f"Column {id_col!r} contains null track ids")
    times = pd.to_datetime(df[time_col])
    if times.isna().any():
        raise InvalidInput(f"Column {time_col!r} contains null timestamps")
    return times


def split_at_gaps(
    df: pd.DataFrame,
    max_gap: Any,
    min_duration: Any,
    id_col: str = "track_id",
    time_col: str = "timestamp",
) -> pd.DataFrame:
    """Relabel tracks so that no sub-track contains a gap longer than ``max_gap``.

    Args:
        df: One row per fix. Rows of the same track must already be in
            non-decreasing time order; rows of different tracks may interleave.
        max_gap: Largest allowed gap inside a sub-track. A gap exactly equal to
            ``max_gap`` does not split.
        min_duration: Sub-tracks spanning less than this are dropped. Zero keeps
            everything, including single-fix sub-tracks.
        id_col: Track identifier column.
        time_col: Timestamp column.

    Returns:
        New DataFrame with the same columns. ``id_col`` holds ``"<id>_<n>"``
        (n counted from 1) for tracks that were split, and the original id as a
        string for tracks that were not. May be empty.

    Raises:
        InvalidInput: Bad thresholds, missing columns, null ids/timestamps, a
            track whose timestamps go backwards, or ids that would merge two
            tracks once turned into strings or suffixed.
    """

    max_gap = as_duration(max_gap, "max_gap")
    min_duration = as_duration(min_duration, "min_duration", allow_zero=True)
    df = df.reset_index(drop=True)
    times = _check_columns(df, id_col, time_col)

    if df.empty:
        return df.copy()

    ids = df[id_col]
    by_track = times.groupby(ids, sort=False)
    dt = by_track.diff()

    backwards = dt < pd.Timedelta(0)
    if backwards.any():
        bad = sorted({str(v) for v in ids[backwards]})
        raise InvalidInput(f"Timestamps decrease within track(s): {bad}")

    # 子轨迹编号：每遇到一次 > max_gap 的间隔就 +1
    sub_n = (dt > max_gap).astype(int).groupby(ids, sort=False).cumsum() + 1
    n_subs = sub_n.groupby(ids, sort=False).transform("max")

    base = ids.astype(str)
    if base.nunique() != ids.nunique():
        raise InvalidInput(f"Distinct track ids share a string form: {_shared_strings(ids)}")
    new_ids = base.where(n_subs == 1, base + "_" + sub_n.astype(str))

    # 新编号不能与已有轨迹 id 重名，否则两只个体的记录会被合并
    derived = set(new_ids[n_subs > 1])
    taken = sorted(derived & set(base))
    if taken:
        raise InvalidInput(f"Sub-track ids collide with existing track ids: {taken}")

    by_sub = times.groupby(new_ids, sort=False)
    span = by_sub.transform("max") - by_sub.transform("min")
    keep = span >= min_duration

    out = df.loc[keep].copy()
    out[id_col] = new_ids[keep]
    out = out.reset_index(drop=True)

    n_split = int((n_subs.groupby(ids, sort=False).first() > 1).sum())
    n_dropped_tracks = new_ids[~keep].nunique()
    logger.info(
        "Split %d of %d tracks at gaps > %s; dropped %d sub-tracks (%d rows) shorter than %s",
        n_split,
        ids.nunique(),
        max_gap,
        n_dropped_tracks,
        int((~keep).sum()),
        min_duration,
    )
    return out


def _shared_strings(ids: pd.Series) -> List[str]:
    originals = pd.Series(ids.unique())
    as_str = originals.astype(str)
    return sorted(as_str[as_str.duplicated(keep=False)].unique())


def split_records(
    records: Sequence[LocationRecord],
    max_gap: Any,
    min_duration: Any,
) -> List[LocationRecord]:
    """``split_at_gaps`` over a sequence of ``LocationRecord``.

    Kept records are returned unchanged apart from ``track_id``.
    """

    df = pd.DataFrame({
        "track_id": [rec.track_id for rec in records],
        "timestamp": pd.to_datetime(pd.Series([rec.timestamp for rec in records], dtype=object)),
        "position": np.arange(len(records)),
    })
    out = split_at_gaps(df, max_gap, min_duration)
    return [
        replace(records[int(pos)], track_id=track_id)
        for pos, track_id in zip(out["position"], out["track_id"])
    ]


def summarize_tracks(
    df: pd.DataFrame,
    id_col: str = "track_id",
    time_col: str = "timestamp",
) -> List[TrackSummary]:
    """Per-track point count, time range and largest sampling gap."""

    times = _check_columns(df, id_col, time_col)
    summaries: List[TrackSummary] = []
    for track_id, t in times.groupby(df[id_col], sort=False):
        t = t.sort_values()
        gaps = t.diff().dropna()
        summaries.append(
            TrackSummary(
                track_id=str(track_id),
                n_points=len(t),
                start=t.iloc[0],
                end=t.iloc[-1],
                duration=t.iloc[-1] - t.iloc[0],
                max_gap=gaps.max() if len(gaps) else None,
            )
        )
    return summaries
