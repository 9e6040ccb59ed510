import numpy as np
import pandas as pd
import pytest

from trackhmm.io import add_projected_coordinates, load_movebank, save_dataframe, utm_crs_for


def test_load_movebank_renames_columns(movebank_csv):
    df = load_movebank(movebank_csv)
    assert {"track_id", "timestamp", "lon", "lat", "temp"} <= set(df.columns)
    assert "event-id" not in df.columns
    assert pd.api.types.is_datetime64_any_dtype(df["timestamp"])
    assert sorted(df["track_id"].unique()) == ["bird-0", "bird-1"]


def test_load_movebank_keeps_extra_columns(movebank_csv):
    df = load_movebank(movebank_csv, extra_columns=["event-id"])
    assert "event-id" in df.columns


def test_load_movebank_missing_columns(tmp_path):
    path = tmp_path / "bad.csv"
    pd.DataFrame({"timestamp": ["2024-01-01"], "location-long": [1.0]}).to_csv(path, index=False)
    with pytest.raises(ValueError, match="Missing required columns"):
        load_movebank(path)


def test_load_movebank_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_movebank(tmp_path / "nope.csv")


@pytest.mark.parametrize(
    "lon, lat, expected",
    [(-77.0, -12.0, "epsg:32718"), (13.0, 52.0, "epsg:32633"), (179.9, 10.0, "epsg:32660"), (-180.0, 0.0, "epsg:32601")],
)
def test_utm_crs_for(lon, lat, expected):
    assert utm_crs_for(lon, lat) == expected


def test_add_projected_coordinates():
    df = pd.DataFrame({"lon": [15.0, 15.0, np.nan], "lat": [0.0, 0.001, 0.0]})
    out = add_projected_coordinates(df, crs="epsg:32633")

    assert out["x"].iloc[0] == pytest.approx(500000.0, abs=1e-3)
    assert out["y"].iloc[0] == pytest.approx(0.0, abs=1e-3)
    assert out["y"].iloc[1] == pytest.approx(110.6, abs=1.0)
    assert np.isnan(out["x"].iloc[2])
    assert "x" not in df.columns


def test_add_projected_coordinates_picks_utm_zone():
    df = pd.DataFrame({"lon": [15.0, 15.01], "lat": [0.0, 0.0]})
    out = add_projected_coordinates(df)
    assert out["x"].iloc[1] - out["x"].iloc[0] == pytest.approx(1113.0, rel=0.01)


def test_save_dataframe_creates_directories(tmp_path):
    path = save_dataframe(pd.DataFrame({"a": [1, 2]}), tmp_path / "sub" / "out.csv")
    assert path.exists()
    assert pd.read_csv(path)["a"].tolist() == [1, 2]
