"""Figures for decoded tracks. Every function saves a PNG and closes its figure."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from scipy.stats import gaussian_kde

logger = logging.getLogger(__name__)

PALETTE = ["tab:blue", "tab:orange", "tab:red", "tab:green", "tab:purple", "tab:brown"]


def _save(fig, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    logger.info("Saved plot: %s", path)
    return path


def _state_colors(states) -> Dict[int, str]:
    return {int(s): PALETTE[i % len(PALETTE)] for i, s in enumerate(sorted(states))}


def plot_tracks(df: pd.DataFrame, path: str | Path, id_col: str = "track_id") -> Path:
    """All tracks in projected coordinates, one line per (sub-)track."""
    fig, ax = plt.subplots(figsize=(10, 8))
    for track_id, g in df.groupby(id_col, sort=False):
        ax.plot(g["x"], g["y"], linewidth=0.8, alpha=0.8, label=str(track_id))
    ax.set_xlabel("x (m)")
    ax.set_ylabel("y (m)")
    ax.set_aspect("equal", adjustable="datalim")
    if df[id_col].nunique() <= 12:
        ax.legend(fontsize=7)
    ax.set_title("Tracks after gap splitting")
    return _save(fig, path)


def plot_track_states(
    df: pd.DataFrame,
    path: str | Path,
    labels: Optional[Dict[int, str]] = None,
    state_col: str = "state",
) -> Path:
    """Locations coloured by decoded state on top of the grey track lines."""
    labels = labels or {}
    fig, ax = plt.subplots(figsize=(10, 8))
    for _, g in df.groupby("track_id", sort=False):
        ax.plot(g["x"], g["y"], color="gray", linewidth=0.5, alpha=0.4)
    decoded = df.dropna(subset=[state_col])
    colors = _state_colors(decoded[state_col].unique())
    for s, color in colors.items():
        m = decoded[state_col] == s
        ax.scatter(decoded.loc[m, "x"], decoded.loc[m, "y"], s=6, color=color, label=labels.get(s, f"state {s}"))
    ax.set_xlabel("x (m)")
    ax.set_ylabel("y (m)")
    ax.set_aspect("equal", adjustable="datalim")
    ax.legend()
    ax.set_title("Decoded states (Viterbi)")
    return _save(fig, path)


def plot_state_timeseries(
    df: pd.DataFrame,
    track_id: str,
    path: str | Path,
    labels: Optional[Dict[int, str]] = None,
    state_col: str = "state",
    limit: int = 1000,
) -> Path:
    """
    Step length over time for one track with colours by decoded state.
    中文：画 step 时间序列，用颜色标注预测行为。
    """
    labels = labels or {}
    g = df[df["track_id"] == track_id].head(limit)
    fig, ax = plt.subplots(figsize=(14, 5))
    ax.plot(g["timestamp"], g["step"], color="gray", alpha=0.3, label="Step (m)")
    decoded = g.dropna(subset=[state_col])
    for s, color in _state_colors(df[state_col].dropna().unique()).items():
        m = decoded[state_col] == s
        if m.any():
            ax.scatter(decoded.loc[m, "timestamp"], decoded.loc[m, "step"], s=12, color=color,
                       label=labels.get(s, f"state {s}"))
    ax.set_title(f"{track_id}: step length by decoded state")
    ax.set_xlabel("Time")
    ax.set_ylabel("Step (m)")
    ax.grid(True, alpha=0.25)
    ax.legend(ncol=3)
    return _save(fig, path)


def plot_step_histograms(
    df: pd.DataFrame,
    path: str | Path,
    labels: Optional[Dict[int, str]] = None,
    state_col: str = "state",
) -> Path:
    """Histograms of log step and turning angle per decoded state."""
    labels = labels or {}
    decoded = df.dropna(subset=[state_col])
    fig, axes = plt.subplots(1, 2, figsize=(12, 4.5))
    for s, color in _state_colors(decoded[state_col].unique()).items():
        sub = decoded[decoded[state_col] == s]
        name = labels.get(s, f"state {s}")
        axes[0].hist(sub["log_step"].dropna(), bins=40, alpha=0.5, color=color, density=True, label=name)
        axes[1].hist(sub["angle"].dropna(), bins=36, range=(-np.pi, np.pi), alpha=0.5, color=color,
                     density=True, label=name)
    axes[0].set_xlabel("log step")
    axes[1].set_xlabel("turning angle (rad)")
    for ax in axes:
        ax.set_ylabel("density")
        ax.legend()
    return _save(fig, path)


def plot_state_density(
    x,
    y,
    title: str,
    path: str | Path,
    cmap: str = "Reds",
) -> Optional[Path]:
    """
    使用 Gaussian KDE 绘制空间密度热力图 (e.g. where one state concentrates).
    Returns None when the KDE cannot be computed (too few / collinear points).
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    ok = np.isfinite(x) & np.isfinite(y)
    x, y = x[ok], y[ok]
    try:
        # bw_method 控制平滑度，越小越细碎，越大越平滑
        kde = gaussian_kde(np.vstack([x, y]), bw_method=0.2)
    except (ValueError, np.linalg.LinAlgError) as e:
        logger.warning("KDE failed for %r (too few points?): %s", title, e)
        return None

    xmin, xmax = x.min(), x.max()
    ymin, ymax = y.min(), y.max()
    pad_x = (xmax - xmin) * 0.1
    pad_y = (ymax - ymin) * 0.1
    xmin -= pad_x; xmax += pad_x
    ymin -= pad_y; ymax += pad_y

    X, Y = np.mgrid[xmin:xmax:100j, ymin:ymax:100j]
    Z = np.reshape(kde(np.vstack([X.ravel(), Y.ravel()])).T, X.shape)

    fig, ax = plt.subplots(figsize=(10, 8))
    im = ax.imshow(np.rot90(Z), cmap=cmap, extent=[xmin, xmax, ymin, ymax], aspect="auto", alpha=0.9)
    ax.scatter(x, y, c="k", s=1, alpha=0.1)
    ax.set_title(title, fontsize=14)
    ax.set_xlabel("x (m)")
    ax.set_ylabel("y (m)")
    fig.colorbar(im, ax=ax, label="Density")
    return _save(fig, path)
