import urllib.error

import pandas as pd

from trackhmm import pipeline
from trackhmm.pipeline import _safe_name, main


def _args(csv, out_dir, *extra):
    return ["--csv", str(csv), "--out-dir", str(out_dir), "--min-duration", "12h",
            "--n-starts", "1", "--compare-states", "2", *extra]


def test_pipeline_writes_outputs(tmp_path, movebank_csv):
    out_dir = tmp_path / "out"
    assert main(_args(movebank_csv, out_dir, "--n-folds", "2", "--no-plots")) == 0

    pred = pd.read_csv(out_dir / "predictions.csv")
    # bird-0 has a 5.5 h hole and is split in two
    assert sorted(pred["track_id"].unique()) == ["bird-0_1", "bird-0_2", "bird-1"]
    assert set(pred["behaviour"].dropna()) <= {"encamped", "exploratory"}
    assert pred["state"].notna().mean() > 0.9
    for name in ["model.joblib", "state_summary.csv", "model_selection.csv",
                 "validation.csv", "covariate_occupancy.csv"]:
        assert (out_dir / name).exists(), name

    summary = pd.read_csv(out_dir / "state_summary.csv").set_index("behaviour")
    assert summary.loc["exploratory", "median_step"] > summary.loc["encamped", "median_step"]


def test_pipeline_makes_plots(tmp_path, movebank_csv):
    out_dir = tmp_path / "out"
    assert main(_args(movebank_csv, out_dir, "--method", "linear")) == 0
    assert (out_dir / "tracks.png").exists()
    assert (out_dir / "track_states.png").exists()
    assert list(out_dir.glob("timeseries_*.png"))


def test_pipeline_reports_known_failures(tmp_path, movebank_csv, capsys):
    assert main(["--csv", str(tmp_path / "missing.csv"), "--out-dir", str(tmp_path)]) == 1
    assert main(_args(movebank_csv, tmp_path / "o", "--min-duration", "1000D")) == 1
    assert main(_args(movebank_csv, tmp_path / "o", "--max-gap", "0s")) == 1
    assert "Error" in capsys.readouterr().err


def test_pipeline_reports_unreachable_url(tmp_path, monkeypatch, capsys):
    def unreachable(source, extra_columns=None):
        raise urllib.error.URLError("connection refused")

    monkeypatch.setattr(pipeline, "load_movebank", unreachable)
    assert main(["--csv", "https://example.org/tracks.csv", "--out-dir", str(tmp_path)]) == 1
    assert "connection refused" in capsys.readouterr().err


def test_safe_name_for_plot_files():
    assert _safe_name("bird 1/a") == "bird_1_a"
    assert _safe_name("bird-0_2") == "bird-0_2"
    assert _safe_name(7) == "7"
