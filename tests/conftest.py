import numpy as np
import pandas as pd
import pytest


def make_track(minutes, track_id="A", t0="2024-01-01 00:00:00"):
    start = pd.Timestamp(t0)
    return pd.DataFrame({
        "track_id": track_id,
        "timestamp": [start + pd.Timedelta(minutes=m) for m in minutes],
        "x": np.arange(len(minutes), dtype=float),
        "y": np.zeros(len(minutes)),
    })


def two_regime_features(n_blocks=8, block=40, seed=0):
    """Alternating slow/tortuous and fast/directed blocks; returns (X, truth)."""
    rng = np.random.default_rng(seed)
    xs, truth = [], []
    for b in range(n_blocks):
        fast = b % 2 == 1
        log_step = rng.normal(5.0 if fast else 1.0, 0.3, block)
        angle = rng.normal(0.0, 0.3 if fast else 1.5, block)
        xs.append(np.column_stack([log_step, angle]))
        truth.append(np.full(block, int(fast)))
    return np.vstack(xs), np.concatenate(truth)


def write_movebank_csv(path, n_birds=2, hours=72, gap_bird=0, seed=1):
    """Synthetic Movebank export: 30-min fixes, resting and travelling bouts, one 5 h gap."""
    rng = np.random.default_rng(seed)
    rows = []
    start = pd.Timestamp("2024-03-01 00:00:00")
    for b in range(n_birds):
        lon, lat = 15.0 + 0.1 * b, 0.5
        n = hours * 2
        for i in range(n):
            t = start + pd.Timedelta(minutes=30 * i)
            if b == gap_bird and n // 2 <= i < n // 2 + 10:
                continue
            travelling = (i // 12) % 2 == 1
            scale = 0.005 if travelling else 0.0001
            lon += rng.normal(scale, scale / 5)
            lat += rng.normal(0.0, scale / 2)
            rows.append({
                "event-id": len(rows),
                "timestamp": t.strftime("%Y-%m-%d %H:%M:%S.000"),
                "location-long": lon,
                "location-lat": lat,
                "external-temperature": 20.0 + 5 * np.sin(i / 10.0),
                "individual-local-identifier": f"bird-{b}",
            })
    pd.DataFrame(rows).to_csv(path, index=False)
    return path


@pytest.fixture
def regime_data():
    return two_regime_features()


@pytest.fixture
def movebank_csv(tmp_path):
    return write_movebank_csv(tmp_path / "tracks.csv")
