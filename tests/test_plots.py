import numpy as np
import pandas as pd
import pytest

from trackhmm import plots


@pytest.fixture
def decoded():
    rng = np.random.default_rng(0)
    n = 60
    return pd.DataFrame({
        "track_id": ["A"] * 30 + ["B"] * 30,
        "timestamp": pd.date_range("2024-01-01", periods=n, freq="30min"),
        "x": np.cumsum(rng.normal(10, 5, n)),
        "y": np.cumsum(rng.normal(0, 5, n)),
        "step": rng.gamma(2.0, 10.0, n),
        "log_step": rng.normal(2.0, 1.0, n),
        "angle": rng.uniform(-np.pi, np.pi, n),
        "state": pd.array([0, 1] * 29 + [pd.NA, pd.NA], dtype="Int64"),
    })


def test_plot_files_are_written(tmp_path, decoded):
    labels = {0: "encamped", 1: "exploratory"}
    paths = [
        plots.plot_tracks(decoded, tmp_path / "tracks.png"),
        plots.plot_track_states(decoded, tmp_path / "states.png", labels=labels),
        plots.plot_state_timeseries(decoded, "A", tmp_path / "ts.png", labels=labels, limit=20),
        plots.plot_step_histograms(decoded, tmp_path / "hist.png", labels=labels),
        plots.plot_state_density(decoded["x"], decoded["y"], "density", tmp_path / "nested" / "kde.png"),
    ]
    for p in paths:
        assert p.exists() and p.stat().st_size > 0


def test_density_with_too_few_points_is_skipped(tmp_path):
    out = plots.plot_state_density([1.0], [2.0], "one point", tmp_path / "kde.png")
    assert out is None
    assert not (tmp_path / "kde.png").exists()
