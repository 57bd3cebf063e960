import numpy as np
import pytest

from bayes101 import blp, checkpoint, diagnostics, quasi_bayes


@pytest.fixture(scope="module")
def gmm_fit(market_data):
    return quasi_bayes.gmm_estimate(market_data, concentrate=False, two_step=False)


@pytest.fixture(scope="module")
def one_rc_data():
    return blp.simulate_market_data(n_markets=15, n_products=3, sigma=(0.0, 1.0, 0.0),
                                    n_sim=30, seed=3)


def _true_theta(data):
    return np.concatenate([data["beta"], data["sigma"][data["rc"]]])


def test_objective_smaller_at_truth(market_data):
    theta = _true_theta(market_data)
    shifted = theta.copy()
    shifted[0] += 1.0
    q_true = quasi_bayes.gmm_objective(theta, market_data, concentrate=False)
    q_shift = quasi_bayes.gmm_objective(shifted, market_data, concentrate=False)
    assert 0 <= q_true < q_shift


def test_concentrated_objective_is_profile_minimum(market_data):
    theta = _true_theta(market_data)
    sigma_rc = market_data["sigma"][market_data["rc"]]
    q_conc = quasi_bayes.gmm_objective(sigma_rc, market_data, concentrate=True)
    q_full = quasi_bayes.gmm_objective(theta, market_data, concentrate=False)
    assert q_conc <= q_full + 1e-8


def test_objective_negative_sigma_and_bad_size(market_data):
    assert quasi_bayes.gmm_objective([-0.1, 0.5], market_data) == np.inf
    assert quasi_bayes.gmm_objective([0.5, -0.1], market_data,
                                     return_details=True)["Q"] == np.inf
    with pytest.raises(ValueError):
        quasi_bayes.gmm_objective([0.5, 0.5, 0.5], market_data)


def test_objective_details(market_data):
    out = quasi_bayes.gmm_objective([1.0, 0.5], market_data, return_details=True)
    assert set(out) == {"Q", "beta", "sigma", "delta", "xi", "g"}
    assert out["xi"].shape == market_data["shares"].shape
    assert out["g"].shape == (7,)
    np.testing.assert_allclose(out["sigma"], [0.0, 1.0, 0.5])
    np.testing.assert_allclose(out["delta"], market_data["delta"], atol=1e-6)


def test_efficient_weight_homoskedastic_case(market_data):
    Z = market_data["Z"]
    Zf = Z.reshape(-1, Z.shape[-1])
    W = quasi_bayes.efficient_weight(np.ones(Zf.shape[0]), Z)
    np.testing.assert_allclose(W, np.linalg.inv(Zf.T @ Zf / Zf.shape[0]), rtol=1e-8)


def test_default_log_prior():
    assert quasi_bayes.default_log_prior([1.0, 2.0, 0.0], n_beta=2) == 0.0
    assert quasi_bayes.default_log_prior([0.0, -0.1], n_beta=1) == -np.inf
    assert quasi_bayes.default_log_prior([10.0], n_beta=0) == pytest.approx(-0.5)


def test_quasi_log_posterior():
    def objective(theta):
        return float(theta @ theta)

    theta = np.array([1.0, 2.0])
    assert quasi_bayes.quasi_log_posterior(theta, objective) == pytest.approx(-2.5)
    assert quasi_bayes.quasi_log_posterior(theta, lambda t: np.inf) == -np.inf
    assert quasi_bayes.quasi_log_posterior(theta, objective,
                                           log_prior=lambda t: -np.inf) == -np.inf
    assert quasi_bayes.quasi_log_posterior(theta, objective,
                                           log_prior=lambda t: 1.0) == pytest.approx(-1.5)


def test_parameter_names(market_data):
    assert quasi_bayes.parameter_names(market_data, concentrate=True) == ["sigma[1]", "sigma[2]"]
    assert quasi_bayes.parameter_names(market_data) == [
        "beta[0]", "beta[1]", "beta[2]", "sigma[1]", "sigma[2]"]


def test_gmm_estimate_layout_and_fit(market_data, gmm_fit):
    K = market_data["X"].shape[-1]
    assert gmm_fit["theta"].shape == (K + 2,)
    np.testing.assert_allclose(gmm_fit["theta"][:K], gmm_fit["beta"])
    np.testing.assert_allclose(gmm_fit["theta"][K:], gmm_fit["sigma"][market_data["rc"]])
    assert np.all(gmm_fit["sigma"] >= 0)
    assert gmm_fit["sigma"][0] == 0.0
    q_start = quasi_bayes.gmm_objective([0.5, 0.5], market_data, W=gmm_fit["W"])
    assert gmm_fit["objective"] <= q_start


def test_gmm_estimate_two_step_uses_efficient_weight(one_rc_data):
    est = quasi_bayes.gmm_estimate(one_rc_data, theta0=[0.8])
    Zf = one_rc_data["Z"].reshape(-1, one_rc_data["Z"].shape[-1])
    assert est["theta"].shape == (1,)
    assert est["theta"][0] >= 0
    assert not np.allclose(est["W"], np.linalg.inv(Zf.T @ Zf / Zf.shape[0]))


def test_quasi_bayes_chain(one_rc_data):
    out = quasi_bayes.quasi_bayes(one_rc_data, n_draws=150, n_warmup=100,
                                  concentrate=True, seed=1)
    chain = out["chain"]
    assert chain.shape == (150, 1)
    assert np.all(np.isfinite(chain))
    assert np.all(chain >= 0)
    assert list(out["names"]) == ["sigma[1]"]
    table = diagnostics.summarize(chain, list(out["names"]))
    assert list(table.index) == ["sigma[1]"]
    np.testing.assert_allclose(out["mean"], chain.mean(axis=0))
    assert 0.0 < out["accept_rate"] < 1.0


def test_quasi_bayes_full_layout(one_rc_data):
    out = quasi_bayes.quasi_bayes(one_rc_data, n_draws=100, n_warmup=100, seed=4)
    chain = out["chain"]
    assert chain.shape == (100, 4)
    assert np.all(np.isfinite(chain))
    assert np.all(chain[:, 3] >= 0)
    assert list(out["names"]) == ["beta[0]", "beta[1]", "beta[2]", "sigma[1]"]
    assert out["gmm_theta"].shape == (4,)
    np.testing.assert_allclose(out["gmm_theta"][:3], out["gmm_beta"])
    assert out["W"].shape == (7, 7)


def test_quasi_bayes_result_is_checkpointable(one_rc_data, tmp_path):
    kwargs = dict(n_draws=60, n_warmup=40, concentrate=True, seed=2)
    first = checkpoint.cached_run(tmp_path / "qb", quasi_bayes.quasi_bayes, one_rc_data,
                                  cache_key="T15_d60", **kwargs)
    loaded = checkpoint.cached_run(tmp_path / "qb", quasi_bayes.quasi_bayes, one_rc_data,
                                   cache_key="T15_d60", **kwargs)
    np.testing.assert_array_equal(first["chain"], loaded["chain"])
    assert loaded["gmm_objective"] == pytest.approx(first["gmm_objective"])
    table = diagnostics.summarize(loaded["chain"], list(loaded["names"]))
    assert list(table.index) == ["sigma[1]"]


def test_proposal_cov_inverse_hessian():
    A = np.array([[2.0, 0.3], [0.3, 1.0]])
    cov = quasi_bayes._proposal_cov(lambda th: 0.5 * th @ A @ th, np.array([1.0, 1.0]))
    np.testing.assert_allclose(cov, np.linalg.inv(A), rtol=1e-4)


def test_proposal_cov_diagonal_at_sigma_boundary():
    def neg_log_post(theta):
        return np.inf if np.any(theta < 0) else 0.5 * theta @ theta

    with pytest.warns(RuntimeWarning, match="diagonal"):
        cov = quasi_bayes._proposal_cov(neg_log_post, np.array([1.0, 0.0]))
    np.testing.assert_allclose(cov, np.diag([0.1 ** 2, 0.01 ** 2]))
