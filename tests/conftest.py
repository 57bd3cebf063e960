import numpy as np
import pytest

from bayes101 import blp, ols_posterior
from bayes101.utils import ols_fit


@pytest.fixture(scope="session")
def regression_data():
    # n large enough that the posterior is tight, small enough to sample fast
    return ols_posterior.simulate_data(n=200, beta=(1.0, 2.0, -0.5), sigma=1.0, seed=123)


@pytest.fixture(scope="session")
def prior(regression_data):
    return ols_posterior.make_prior(regression_data["X"].shape[1])


@pytest.fixture(scope="session")
def regression_start(regression_data):
    """OLS point estimate and a proposal covariance on the (beta, log sigma) scale."""
    X, y = regression_data["X"], regression_data["y"]
    b, se, _, s2 = ols_fit(X, y)
    theta0 = np.append(b, 0.5 * np.log(s2))
    cov = np.diag(np.append(se ** 2, 1.0 / (2 * X.shape[0])))
    return theta0, cov


@pytest.fixture(scope="session")
def conjugate(regression_data):
    return ols_posterior.conjugate_posterior(regression_data["X"], regression_data["y"])


def make_gaussian(cov):
    """
    Log density and (log density, gradient) of N(0, cov).
    """
    prec = np.linalg.inv(cov)

    def log_p(theta):
        return -0.5 * theta @ prec @ theta

    def log_p_grad(theta):
        return -0.5 * theta @ prec @ theta, -prec @ theta

    return log_p, log_p_grad


@pytest.fixture
def gaussian_2d():
    cov = np.array([[1.0, 0.6], [0.6, 2.0]])
    log_p, log_p_grad = make_gaussian(cov)
    return dict(cov=cov, log_p=log_p, log_p_grad=log_p_grad)


@pytest.fixture(scope="session")
def market_data():
    return blp.simulate_market_data(n_markets=20, n_products=3, n_sim=50, seed=7)
