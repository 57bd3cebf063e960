from functools import partial

import numpy as np
import pytest

from bayes101 import metropolis, ols_posterior


def test_mh_step_rejects_non_finite_proposal():
    theta = np.zeros(2)
    new, lp, acc = metropolis.mh_step(lambda t: -np.inf, theta, -1.0, np.ones(2))
    assert not acc
    assert lp == -1.0
    assert new is theta


def test_mh_step_always_accepts_uphill_moves():
    np.random.seed(0)
    log_p = lambda t: -0.5 * t @ t  # noqa: E731
    for _ in range(50):
        _, lp, acc = metropolis.mh_step(log_p, np.array([3.0]), -4.5, np.array([1.0]))
        assert acc
        assert lp == -0.5


def test_random_walk_mh_gaussian_moments(gaussian_2d):
    out = metropolis.random_walk_mh(gaussian_2d["log_p"], np.zeros(2), 20000,
                                    n_warmup=2000, seed=11)
    chain = out["chain"]
    assert chain.shape == (20000, 2)
    assert out["log_p"].shape == (20000,)
    assert 0.1 < out["accept_rate"] < 0.5
    np.testing.assert_allclose(chain.mean(axis=0), 0.0, atol=0.15)
    np.testing.assert_allclose(np.cov(chain.T), gaussian_2d["cov"], atol=0.25)


def test_random_walk_mh_adapts_toward_target(gaussian_2d):
    # start with a far too large proposal: adaptation must shrink it
    out = metropolis.random_walk_mh(gaussian_2d["log_p"], np.zeros(2), 2000,
                                    n_warmup=3000, scale=50.0, seed=3)
    assert out["scale"] < 50.0
    assert 0.1 < out["accept_rate"] < 0.45


def test_random_walk_mh_regression_posterior(regression_data, prior,
                                             regression_start, conjugate):
    X, y = regression_data["X"], regression_data["y"]
    theta0, cov = regression_start
    log_p = partial(ols_posterior.log_posterior, X=X, y=y, prior=prior)
    out = metropolis.random_walk_mh(log_p, theta0, 6000, n_warmup=2000,
                                    proposal_cov=cov, seed=21)
    beta_mean = out["chain"][:, :3].mean(axis=0)
    np.testing.assert_allclose(beta_mean, conjugate["beta_mean"], atol=0.05)
    sigma2 = np.exp(2 * out["chain"][:, 3])
    assert sigma2.mean() == pytest.approx(conjugate["sigma2_mean"], rel=0.1)


def test_random_walk_mh_rejects_bad_start():
    with pytest.raises(ValueError):
        metropolis.random_walk_mh(lambda t: -np.inf, np.zeros(2), 10)
    with pytest.raises(ValueError):
        metropolis.random_walk_mh(lambda t: 0.0, np.zeros(2), 0)
