"""Loading Movebank exports, projecting to metres, and saving tables."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from pyproj import Transformer

logger = logging.getLogger(__name__)

# canonical name -> Movebank candidates, first match wins
MOVEBANK_COLUMNS: Dict[str, Sequence[str]] = {
    "track_id": ("individual-local-identifier", "tag-local-identifier", "ID", "track_id"),
    "timestamp": ("timestamp", "study-local-timestamp", "time"),
    "lon": ("location-long", "longitude", "lon"),
    "lat": ("location-lat", "latitude", "lat"),
}
OPTIONAL_COLUMNS: Dict[str, Sequence[str]] = {
    "temp": ("external-temperature", "temperature", "temp"),
}


def _find_column(columns: Sequence[str], candidates: Sequence[str]) -> Optional[str]:
    for col in candidates:
        if col in columns:
            return col
    return None


def load_movebank(source: str | Path, extra_columns: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Read a Movebank CSV (local path or URL) into canonical columns.

    The result has ``track_id`` (str), ``timestamp`` (datetime), ``lon``,
    ``lat`` and, when present, ``temp`` plus any ``extra_columns`` kept
    under their original names.

    Raises:
        ValueError: If a required column is missing.
    """

    logger.info("Reading %s", source)
    raw = pd.read_csv(source, low_memory=False)
    cols = list(raw.columns)

    rename: Dict[str, str] = {}
    missing: List[str] = []
    for name, candidates in MOVEBANK_COLUMNS.items():
        found = _find_column(cols, candidates)
        if found is None:
            missing.append(name)
        else:
            rename[found] = name
    if missing:
        raise ValueError(f"Missing required columns {missing}. Available: {cols}")
    for name, candidates in OPTIONAL_COLUMNS.items():
        found = _find_column(cols, candidates)
        if found is not None:
            rename[found] = name

    keep = list(rename) + [c for c in (extra_columns or ()) if c in cols and c not in rename]
    df = raw[keep].rename(columns=rename)
    df["track_id"] = df["track_id"].astype(str)
    df["timestamp"] = pd.to_datetime(df["timestamp"], errors="coerce")
    logger.info("Loaded %d rows for %d tracks", len(df), df["track_id"].nunique())
    return df


def utm_crs_for(lon: float, lat: float) -> str:
    """EPSG code of the WGS84 UTM zone containing (lon, lat)."""

    if not (np.isfinite(lon) and np.isfinite(lat)):
        raise ValueError("Cannot pick a UTM zone without finite coordinates.")
    zone = int((lon + 180.0) // 6.0) % 60 + 1
    base = 32600 if lat >= 0 else 32700
    return f"epsg:{base + zone}"


def add_projected_coordinates(
    df: pd.DataFrame,
    crs: Optional[str] = None,
    lon_col: str = "lon",
    lat_col: str = "lat",
) -> pd.DataFrame:
    """Add planar ``x``/``y`` columns (metres) projected from lon/lat.

    When ``crs`` is None the UTM zone of the mean position is used. Rows with
    missing lon/lat get NaN x/y.
    """

    if lon_col not in df.columns or lat_col not in df.columns:
        raise ValueError("Longitude and latitude columns are required for projection.")

    lon = df[lon_col].to_numpy(dtype=float)
    lat = df[lat_col].to_numpy(dtype=float)
    if crs is None:
        crs = utm_crs_for(float(np.nanmean(lon)), float(np.nanmean(lat)))

    transformer = Transformer.from_crs("epsg:4326", crs, always_xy=True)
    x, y = transformer.transform(lon, lat)
    df = df.copy()
    df["x"] = np.where(np.isfinite(lon) & np.isfinite(lat), x, np.nan)
    df["y"] = np.where(np.isfinite(lon) & np.isfinite(lat), y, np.nan)
    logger.info("Projected coordinates using CRS=%s", crs)
    return df


def save_dataframe(df: pd.DataFrame, path: str | Path) -> Path:
    """Write a DataFrame to CSV, creating parent directories."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    logger.info("Saved %d rows to %s", len(df), path)
    return path
