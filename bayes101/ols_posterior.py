"""
Section 1: The Linear Regression Posterior

Model:  y = X beta + eps,  eps ~ N(0, sigma^2 I).

Two priors are used throughout the notes:

  * conjugate:    beta | sigma^2 ~ N(b0, sigma^2 V0),  sigma^2 ~ IG(a0, d0)
    The posterior is normal-inverse-gamma in closed form, which gives an
    exact benchmark for the samplers.

  * independent:  beta ~ N(b0, B0),  sigma^2 ~ IG(a0, d0)
    No closed form for the joint posterior, but both full conditionals are
    standard (Section 3), and the log density on the unconstrained scale
    theta = (beta, log sigma) feeds the MH / HMC / NUTS samplers.
"""

import numpy as np
from scipy import stats

from .utils import add_const


def simulate_data(n=200, beta=(1.0, 2.0, -0.5), sigma=1.0, seed=None):
    """
    Simulate a linear regression with a constant and standard normal
    regressors.

    Parameters
    ----------
    n : int
        Sample size.
    beta : sequence of float
        True coefficients; beta[0] is the intercept.
    sigma : float
        Error standard deviation.
    seed : int or None

    Returns
    -------
    dict with keys: X, y, beta, sigma
    """
    if seed is not None:
        np.random.seed(seed)
    beta = np.asarray(beta, dtype=float)
    k = beta.size
    X = add_const(np.random.normal(0, 1, (n, k - 1)))
    y = X @ beta + np.random.normal(0, sigma, n)
    return dict(X=X, y=y, beta=beta, sigma=sigma)


def make_prior(k, b0=0.0, prior_var=100.0, a0=2.0, d0=2.0):
    """
    Independent normal / inverse-gamma prior.

    beta ~ N(b0, prior_var * I),  sigma^2 ~ IG(a0, d0)  (shape, scale).

    Returns
    -------
    dict with keys: b0, B0, B0_inv, a0, d0
    """
    b0 = np.broadcast_to(np.asarray(b0, dtype=float), (k,)).copy()
    prior_var = np.asarray(prior_var, dtype=float)
    if prior_var.ndim == 2:
        B0 = prior_var
    else:
        B0 = np.diag(np.broadcast_to(prior_var, (k,)))
    if a0 <= 0 or d0 <= 0:
        raise ValueError(f"Inverse-gamma prior needs a0 > 0, d0 > 0. Got a0={a0}, d0={d0}.")
    return dict(b0=b0, B0=B0, B0_inv=np.linalg.inv(B0), a0=float(a0), d0=float(d0))


def conjugate_posterior(X, y, b0=None, V0=None, a0=2.0, d0=2.0):
    """
    Closed-form normal-inverse-gamma posterior.

        V_n = (V0^{-1} + X'X)^{-1}
        b_n = V_n (V0^{-1} b0 + X'y)
        a_n = a0 + n/2
        d_n = d0 + (y'y + b0'V0^{-1}b0 - b_n'V_n^{-1}b_n) / 2

    The marginal posterior of beta is multivariate t with 2 a_n degrees of
    freedom, location b_n and scale (d_n / a_n) V_n.

    Parameters
    ----------
    X : ndarray, shape (n, k)
    y : ndarray, shape (n,)
    b0 : ndarray, shape (k,) or None
        Prior mean (default zeros).
    V0 : ndarray, shape (k, k) or None
        Prior scale relative to sigma^2 (default 100 * I).
    a0, d0 : float
        Inverse-gamma shape and scale for sigma^2.

    Returns
    -------
    dict with keys:
        b_n, V_n, a_n, d_n : posterior hyperparameters
        beta_mean          : E[beta | y] (= b_n)
        beta_cov           : Var(beta | y), defined for a_n > 1
        sigma2_mean        : E[sigma^2 | y], defined for a_n > 1
    """
    n, k = X.shape
    if y.shape[0] != n:
        raise ValueError(f"X has {n} rows but y has {y.shape[0]} entries.")
    b0 = np.zeros(k) if b0 is None else np.asarray(b0, dtype=float)
    V0 = 100.0 * np.eye(k) if V0 is None else np.asarray(V0, dtype=float)

    V0_inv = np.linalg.inv(V0)
    Vn_inv = V0_inv + X.T @ X
    V_n = np.linalg.inv(Vn_inv)
    b_n = V_n @ (V0_inv @ b0 + X.T @ y)
    a_n = a0 + n / 2
    d_n = d0 + 0.5 * (y @ y + b0 @ V0_inv @ b0 - b_n @ Vn_inv @ b_n)

    sigma2_mean = d_n / (a_n - 1) if a_n > 1 else np.inf
    return dict(
        b_n=b_n, V_n=V_n, a_n=a_n, d_n=d_n,
        beta_mean=b_n,
        beta_cov=sigma2_mean * V_n,
        sigma2_mean=sigma2_mean,
    )


def draw_conjugate(post, n_draws, seed=None):
    """
    Exact iid draws from the normal-inverse-gamma posterior.

    sigma^2 ~ IG(a_n, d_n), then beta | sigma^2 ~ N(b_n, sigma^2 V_n).

    Returns
    -------
    dict with keys:
        beta   : ndarray, shape (n_draws, k)
        sigma2 : ndarray, shape (n_draws,)
    """
    if seed is not None:
        np.random.seed(seed)
    sigma2 = stats.invgamma.rvs(post["a_n"], scale=post["d_n"], size=n_draws)
    L = np.linalg.cholesky(post["V_n"])
    z = np.random.normal(0, 1, (n_draws, post["b_n"].size))
    beta = post["b_n"] + np.sqrt(sigma2)[:, None] * (z @ L.T)
    return dict(beta=beta, sigma2=sigma2)


def _split(theta):
    theta = np.asarray(theta, dtype=float)
    return theta[:-1], theta[-1]


def log_posterior(theta, X, y, prior):
    """
    Log posterior (up to a constant) on the unconstrained scale
    theta = (beta, eta) with eta = log sigma.

    The inverse-gamma prior on sigma^2 picks up the Jacobian
    |d sigma^2 / d eta| = 2 exp(2 eta), so

        log p(theta | y) = -n eta - SSR(beta) exp(-2 eta) / 2
                           - (beta - b0)' B0^{-1} (beta - b0) / 2
                           - 2 a0 eta - d0 exp(-2 eta)

    Returns -inf when the value is not finite.
    """
    beta, eta = _split(theta)
    n = y.shape[0]
    e = y - X @ beta
    dev = beta - prior["b0"]
    inv_s2 = np.exp(-2 * eta)
    lp = (-n * eta - 0.5 * (e @ e) * inv_s2
          - 0.5 * dev @ prior["B0_inv"] @ dev
          - 2 * prior["a0"] * eta - prior["d0"] * inv_s2)
    return lp if np.isfinite(lp) else -np.inf


def log_posterior_grad(theta, X, y, prior):
    """
    Log posterior and its analytic gradient.

        d/d beta = X'(y - X beta) exp(-2 eta) - B0^{-1}(beta - b0)
        d/d eta  = -n + SSR exp(-2 eta) - 2 a0 + 2 d0 exp(-2 eta)

    Returns
    -------
    lp : float
    grad : ndarray, shape (k + 1,)
    """
    beta, eta = _split(theta)
    n = y.shape[0]
    e = y - X @ beta
    dev = beta - prior["b0"]
    ssr = e @ e
    inv_s2 = np.exp(-2 * eta)
    lp = (-n * eta - 0.5 * ssr * inv_s2
          - 0.5 * dev @ prior["B0_inv"] @ dev
          - 2 * prior["a0"] * eta - prior["d0"] * inv_s2)
    if not np.isfinite(lp):
        return -np.inf, np.zeros(beta.size + 1)
    g_beta = X.T @ e * inv_s2 - prior["B0_inv"] @ dev
    g_eta = -n + ssr * inv_s2 - 2 * prior["a0"] + 2 * prior["d0"] * inv_s2
    return lp, np.append(g_beta, g_eta)
