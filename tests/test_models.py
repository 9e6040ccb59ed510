import numpy as np
import pytest

from trackhmm.config import HMMConfig
from trackhmm.models import MovementHMM, init_means_from_quantiles


def _accuracy(hmm, states, truth):
    labels = hmm.state_labels()
    fast = np.array([labels[int(s)] == "exploratory" for s in states])
    return float(np.mean(fast == truth.astype(bool)))


def test_two_state_fit_recovers_regimes(regime_data):
    X, truth = regime_data
    hmm = MovementHMM(HMMConfig(n_states=2, n_starts=2)).fit(X, [160, 160])

    states = hmm.decode(X, [160, 160])
    assert _accuracy(hmm, states, truth) > 0.95
    assert np.isfinite(hmm.log_likelihood)
    assert hmm.best_start in (0, 1)

    labels = hmm.state_labels()
    slow = [k for k, v in labels.items() if v == "encamped"][0]
    assert hmm.model.means_[slow, 0] == pytest.approx(1.0, abs=0.2)


def test_state_probabilities_rows_sum_to_one(regime_data):
    X, _ = regime_data
    hmm = MovementHMM(HMMConfig(n_starts=1)).fit(X, [len(X)])
    probs = hmm.state_probabilities(X, [len(X)])
    assert probs.shape == (len(X), 2)
    np.testing.assert_allclose(probs.sum(axis=1), 1.0)


def test_explicit_initial_values(regime_data):
    X, truth = regime_data
    cfg = HMMConfig(
        n_states=2,
        n_starts=1,
        means_init=[[1.0, 0.0], [5.0, 0.0]],
        covars_init=[[0.1, 2.0], [0.1, 0.1]],
        startprob_init=[0.5, 0.5],
        transmat_init=[[0.95, 0.05], [0.05, 0.95]],
    )
    hmm = MovementHMM(cfg).fit(X, [len(X)])
    assert _accuracy(hmm, hmm.decode(X, [len(X)]), truth) > 0.95


def test_three_state_labels(regime_data):
    X, _ = regime_data
    hmm = MovementHMM(HMMConfig(n_states=3, n_starts=1)).fit(X, [len(X)])
    assert sorted(hmm.state_labels().values()) == ["foraging", "resting", "travelling"]
    means = hmm.model.means_[:, 0]
    assert list(np.argsort(means)) == list(hmm.state_order())


def test_information_criteria(regime_data):
    X, _ = regime_data
    hmm = MovementHMM(HMMConfig(n_starts=1)).fit(X, [len(X)])
    assert hmm.bic(X, [len(X)]) > hmm.aic(X, [len(X)])
    assert hmm.score(X, [len(X)]) == pytest.approx(hmm.log_likelihood)


def test_unfitted_model_raises():
    hmm = MovementHMM()
    with pytest.raises(ValueError, match="not fitted"):
        hmm.decode(np.zeros((3, 2)), [3])


def test_fit_checks_shapes():
    hmm = MovementHMM()
    with pytest.raises(ValueError):
        hmm.fit(np.zeros((10, 3)), [10])
    with pytest.raises(ValueError):
        hmm.fit(np.zeros((10, 2)), [5])


def test_save_and_load(tmp_path, regime_data):
    X, _ = regime_data
    hmm = MovementHMM(HMMConfig(n_starts=1)).fit(X, [len(X)])
    path = tmp_path / "model.joblib"
    hmm.save(str(path))

    loaded = MovementHMM.load(str(path))
    assert loaded.config == hmm.config
    np.testing.assert_array_equal(loaded.decode(X, [len(X)]), hmm.decode(X, [len(X)]))


def test_init_means_from_quantiles():
    X = np.column_stack([np.arange(101, dtype=float), np.full(101, 3.0)])
    means = init_means_from_quantiles(X, 3)
    assert means.shape == (3, 2)
    np.testing.assert_allclose(means[:, 0], [20.0, 50.0, 80.0])
    np.testing.assert_allclose(means[:, 1], 3.0)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"n_states": 0},
        {"features": ()},
        {"means_init": [[1.0, 0.0]]},
        {"covars_init": [[1.0, -1.0], [1.0, 1.0]]},
        {"transmat_init": [[0.5, 0.4], [0.5, 0.5]]},
        {"covariance_type": "full"},
    ],
)
def test_config_validation(kwargs):
    with pytest.raises(ValueError):
        HMMConfig(**kwargs).validate()
