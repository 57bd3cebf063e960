import numpy as np
import pytest

from bayes101 import ols_posterior
from bayes101.utils import numerical_gradient, ols_fit


def test_simulate_data_shapes():
    data = ols_posterior.simulate_data(n=50, beta=(0.0, 1.0), seed=1)
    assert data["X"].shape == (50, 2)
    assert data["y"].shape == (50,)
    assert np.all(data["X"][:, 0] == 1.0)


def test_diffuse_conjugate_posterior_centres_on_ols(regression_data):
    X, y = regression_data["X"], regression_data["y"]
    k = X.shape[1]
    post = ols_posterior.conjugate_posterior(X, y, V0=1e8 * np.eye(k), a0=1e-3, d0=1e-3)
    b, _, e, _ = ols_fit(X, y)
    np.testing.assert_allclose(post["b_n"], b, atol=1e-5)
    # d_n -> d0 + SSR / 2 as the prior becomes flat
    assert post["d_n"] == pytest.approx(1e-3 + 0.5 * (e @ e), rel=1e-5)
    assert post["a_n"] == pytest.approx(1e-3 + X.shape[0] / 2)


def test_conjugate_posterior_shrinks_toward_prior_mean(regression_data):
    X, y = regression_data["X"], regression_data["y"]
    k = X.shape[1]
    loose = ols_posterior.conjugate_posterior(X, y, V0=100 * np.eye(k))
    tight = ols_posterior.conjugate_posterior(X, y, V0=1e-5 * np.eye(k))
    assert np.all(np.abs(tight["beta_mean"]) < np.abs(loose["beta_mean"]))
    assert np.all(np.abs(tight["beta_mean"]) < 0.01)


def test_conjugate_posterior_rejects_mismatched_inputs(regression_data):
    with pytest.raises(ValueError):
        ols_posterior.conjugate_posterior(regression_data["X"], regression_data["y"][:-1])


def test_draw_conjugate_moments(conjugate):
    n = 20000
    draws = ols_posterior.draw_conjugate(conjugate, n, seed=5)
    assert draws["beta"].shape == (n, 3)
    assert np.all(draws["sigma2"] > 0)

    sd_beta = np.sqrt(np.diag(conjugate["beta_cov"]))
    assert np.all(np.abs(draws["beta"].mean(axis=0) - conjugate["beta_mean"]) < 5 * sd_beta / np.sqrt(n))
    np.testing.assert_allclose(draws["beta"].std(axis=0), sd_beta, rtol=0.05)
    assert draws["sigma2"].mean() == pytest.approx(conjugate["sigma2_mean"], rel=0.02)


def test_make_prior():
    prior = ols_posterior.make_prior(3, b0=1.0, prior_var=[1.0, 4.0, 9.0])
    np.testing.assert_allclose(prior["b0"], np.ones(3))
    np.testing.assert_allclose(np.diag(prior["B0_inv"]), [1.0, 0.25, 1 / 9])
    with pytest.raises(ValueError):
        ols_posterior.make_prior(3, a0=0.0)


def test_gradient_matches_finite_differences(regression_data, prior):
    X, y = regression_data["X"], regression_data["y"]
    theta = np.array([0.8, 1.7, -0.3, 0.1])
    lp, g = ols_posterior.log_posterior_grad(theta, X, y, prior)
    assert lp == pytest.approx(ols_posterior.log_posterior(theta, X, y, prior))
    g_num = numerical_gradient(ols_posterior.log_posterior, theta, args=(X, y, prior))
    np.testing.assert_allclose(g, g_num, rtol=1e-4, atol=1e-3)


def test_log_posterior_peaks_near_ols(regression_data, prior, regression_start):
    X, y = regression_data["X"], regression_data["y"]
    theta0, _ = regression_start
    lp_hat = ols_posterior.log_posterior(theta0, X, y, prior)
    assert lp_hat > ols_posterior.log_posterior(theta0 + 0.5, X, y, prior)
    assert lp_hat > ols_posterior.log_posterior(theta0 - 0.5, X, y, prior)


def test_log_posterior_non_finite_is_minus_inf(regression_data, prior):
    X, y = regression_data["X"], regression_data["y"]
    theta = np.array([1.0, 2.0, -0.5, -500.0])
    with np.errstate(over="ignore", invalid="ignore"):
        assert ols_posterior.log_posterior(theta, X, y, prior) == -np.inf
        lp, g = ols_posterior.log_posterior_grad(theta, X, y, prior)
    assert lp == -np.inf
    assert np.all(g == 0)
