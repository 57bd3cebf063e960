"""
Section 7: Random-Coefficients Logit Demand (BLP)

Consumer i in market t gets utility from product j

    u_ijt = delta_jt + sum_k x_jtk sigma_k nu_ik + eps_ijt,
    delta_jt = x_jt' beta + xi_jt,

with eps_ijt type-I extreme value and the outside good's utility
normalised to zero. Integrating over nu by simulation gives the share
function

    s_jt(delta_t, sigma) = 1/S sum_i exp(delta_jt + mu_ijt)
                                 / (1 + sum_l exp(delta_lt + mu_ilt)).

Estimation needs its inverse: for given sigma, the mean utilities delta_t
that reproduce the observed shares. Berry (1994) shows the map
delta <- delta + log s_obs - log s(delta, sigma) is a contraction; here
Newton's method (scipy.optimize.root) is tried first and the contraction,
started from the plain-logit inverse log s_j - log s_0, is the fallback.

Array layout: shares (T, J), X (T, J, K), Z (T, J, L), simulation draws
nu (S, K) shared by all markets or (T, S, K) per market.
"""

import warnings

import numpy as np
from scipy.optimize import root

from .utils import ols_fit, tsls_fit

RESID_TOL = 1e-8


def _check_shares(shares):
    shares = np.asarray(shares, dtype=float)
    if shares.ndim != 2:
        raise ValueError(f"shares must be (markets, products). Got shape {shares.shape}.")
    if np.any(shares <= 0) or np.any(shares.sum(axis=1) >= 1):
        raise ValueError("Shares must be positive with inside shares summing to less than one.")
    return shares


def _random_utility(sigma, X, nu):
    """mu_ijt = x_jt' (sigma * nu_i), shape (T, J, S)."""
    sigma = np.asarray(sigma, dtype=float)
    if nu.ndim == 2:
        return np.einsum("tjk,sk->tjs", X, nu * sigma)
    return np.einsum("tjk,tsk->tjs", X, nu * sigma)


def _choice_probs(delta, mu):
    """
    Individual choice probabilities for inside goods.

    delta has shape (..., J) and mu (..., J, S); product axis is -2.
    """
    u = delta[..., :, None] + mu
    u_max = np.maximum(u.max(axis=-2, keepdims=True), 0.0)
    eu = np.exp(u - u_max)
    return eu / (np.exp(-u_max) + eu.sum(axis=-2, keepdims=True))


def market_shares(delta, sigma, X, nu):
    """
    Simulated market shares.

    Parameters
    ----------
    delta : ndarray, shape (T, J)
        Mean utilities.
    sigma : ndarray, shape (K,)
        Standard deviations of the random coefficients (zero = none).
    X : ndarray, shape (T, J, K)
    nu : ndarray, shape (S, K) or (T, S, K)

    Returns
    -------
    ndarray, shape (T, J)
    """
    return _choice_probs(np.asarray(delta, dtype=float),
                         _random_utility(sigma, X, nu)).mean(axis=-1)


def _probs_jacobian(P):
    """ds/ddelta from individual choice probabilities P of shape (..., J, S)."""
    S = P.shape[-1]
    s = P.mean(axis=-1)
    J = s.shape[-1]
    return s[..., :, None] * np.eye(J) - np.einsum("...js,...ls->...jl", P, P) / S


def share_jacobian(delta, sigma, X, nu):
    """
    Derivative of shares with respect to mean utilities, per market.

        ds_j/ddelta_l = 1/S sum_i p_ij (1{j = l} - p_il)

    Returns
    -------
    ndarray, shape (T, J, J)
    """
    P = _choice_probs(np.asarray(delta, dtype=float), _random_utility(sigma, X, nu))
    return _probs_jacobian(P)


def logit_inverse(shares):
    """Plain-logit inversion: delta_jt = log s_jt - log s_0t."""
    shares = np.asarray(shares, dtype=float)
    return np.log(shares) - np.log(1 - shares.sum(axis=-1, keepdims=True))


def contraction(shares, sigma, X, nu, delta0=None, tol=1e-12, max_iter=10000):
    """
    BLP contraction mapping, all markets at once.

        delta <- delta + log s_obs - log s(delta, sigma)

    Parameters
    ----------
    shares : ndarray, shape (T, J)
    sigma, X, nu : see `market_shares`
    delta0 : ndarray, shape (T, J) or None
        Starting value (default: logit inverse).
    tol : float
        Convergence tolerance on max |log s_obs - log s(delta)|.
    max_iter : int

    Returns
    -------
    dict with keys:
        delta     : ndarray, shape (T, J)
        converged : bool
        n_iter    : int
    """
    shares = _check_shares(shares)
    mu = _random_utility(sigma, X, nu)
    log_s = np.log(shares)
    delta = logit_inverse(shares) if delta0 is None else np.array(delta0, dtype=float)

    for it in range(1, max_iter + 1):
        step = log_s - np.log(_choice_probs(delta, mu).mean(axis=-1))
        delta = delta + step
        if np.max(np.abs(step)) < tol:
            return dict(delta=delta, converged=True, n_iter=it)
    return dict(delta=delta, converged=False, n_iter=max_iter)


def _solve_market(log_s, mu, delta0, tol):
    """Newton-type solve of log s(delta) = log s_obs in one market."""
    def residual(d):
        p = _choice_probs(d, mu)
        s = p.mean(axis=-1)
        jac = _probs_jacobian(p) / s[:, None]
        return np.log(s) - log_s, jac

    try:
        sol = root(residual, delta0, jac=True, method="hybr", tol=tol)
    except (ValueError, ArithmeticError, np.linalg.LinAlgError):
        return delta0, False
    ok = np.all(np.isfinite(sol.x)) and np.max(np.abs(sol.fun)) < RESID_TOL
    return sol.x, bool(ok)


def invert_shares(shares, sigma, X, nu, delta0=None, tol=1e-10):
    """
    Mean utilities that rationalise observed shares for given sigma.

    Each market is solved with scipy.optimize.root (hybrid Powell, analytic
    Jacobian) on log shares. A market counts as solved when the
    log-share residual is below RESID_TOL. Otherwise the logit inverse is
    substituted as starting value and the solve retried; any market that
    still fails is handed to the contraction mapping started
    from the logit inverse, with a RuntimeWarning.

    Parameters
    ----------
    shares : ndarray, shape (T, J)
    sigma : ndarray, shape (K,)
    X : ndarray, shape (T, J, K)
    nu : ndarray, shape (S, K) or (T, S, K)
    delta0 : ndarray, shape (T, J) or None
        Warm start (default: logit inverse).
    tol : float

    Returns
    -------
    delta : ndarray, shape (T, J)
    """
    shares = _check_shares(shares)
    mu = _random_utility(sigma, X, nu)
    log_s = np.log(shares)
    logit_start = logit_inverse(shares)
    start = logit_start if delta0 is None else np.asarray(delta0, dtype=float)

    delta = np.empty_like(shares)
    failed = []
    for t in range(shares.shape[0]):
        d, ok = _solve_market(log_s[t], mu[t], start[t], tol)
        if not ok and delta0 is not None:
            d, ok = _solve_market(log_s[t], mu[t], logit_start[t], tol)
        if not ok:
            failed.append(t)
        delta[t] = d

    if failed:
        warnings.warn(
            f"Share inversion failed in {len(failed)} market(s); "
            f"falling back to the contraction mapping.",
            RuntimeWarning,
        )
        nu_f = nu[failed] if nu.ndim == 3 else nu
        res = contraction(shares[failed], sigma, X[failed], nu_f,
                          delta0=logit_start[failed])
        if not res["converged"]:
            warnings.warn(
                f"Contraction mapping stopped after {res['n_iter']} iterations "
                f"without converging.",
                RuntimeWarning,
            )
        delta[failed] = res["delta"]

    return delta


def simulate_market_data(n_markets=50, n_products=4, beta=(1.0, 1.0, -1.0),
                         sigma=(0.0, 1.0, 0.5), n_sim=100, xi_sd=0.5, seed=None):
    """
    Simulate a market-level dataset from the random-coefficients logit.

    Characteristics are [1, x, price] with x ~ N(0, 1). Price responds to
    a cost shifter w ~ U(0, 1) and to the demand shock xi, so it is
    endogenous:

        price = 1 + w + 0.5 x + 0.5 xi + N(0, 0.1^2)

    Instruments are the exogenous characteristics, the cost shifter, their
    squares, and sums of rivals' x and w (BLP instruments).

    Parameters
    ----------
    n_markets, n_products : int
    beta : sequence of float, length 3
    sigma : sequence of float, length 3
        Random-coefficient standard deviations; nonzero entries define
        which coefficients are random (`rc`).
    n_sim : int
        Simulation draws nu per market share integral.
    xi_sd : float
        Standard deviation of the demand shock.
    seed : int or None

    Returns
    -------
    dict with keys:
        shares : (T, J) observed shares
        X      : (T, J, 3) characteristics
        Z      : (T, J, 7) instruments
        nu     : (n_sim, 3) simulation draws
        xi, delta : true demand shocks and mean utilities
        beta, sigma, rc : true parameters, random-coefficient indices
    """
    if seed is not None:
        np.random.seed(seed)
    T, J = n_markets, n_products
    beta = np.asarray(beta, dtype=float)
    sigma = np.asarray(sigma, dtype=float)

    x = np.random.normal(0, 1, (T, J))
    w = np.random.uniform(0, 1, (T, J))
    xi = np.random.normal(0, xi_sd, (T, J))
    price = 1 + w + 0.5 * x + 0.5 * xi + np.random.normal(0, 0.1, (T, J))

    X = np.stack([np.ones((T, J)), x, price], axis=-1)
    rivals_x = x.sum(axis=1, keepdims=True) - x
    rivals_w = w.sum(axis=1, keepdims=True) - w
    Z = np.stack([np.ones((T, J)), x, w, x ** 2, w ** 2, rivals_x, rivals_w], axis=-1)

    nu = np.random.normal(0, 1, (n_sim, X.shape[-1]))
    delta = X @ beta + xi
    shares = market_shares(delta, sigma, X, nu)

    return dict(
        shares=shares, X=X, Z=Z, nu=nu,
        xi=xi, delta=delta,
        beta=beta, sigma=sigma, rc=np.flatnonzero(sigma),
    )


def logit_iv(data):
    """
    Plain logit demand (sigma = 0) by OLS and 2SLS.

    log s_jt - log s_0t = x_jt' beta + xi_jt is linear, so beta is
    estimated by regressing the logit inverse on X with Z as instruments.

    Returns
    -------
    dict with keys:
        beta_iv  : 2SLS estimates
        beta_ols : OLS estimates (biased: price is correlated with xi)
        xi       : 2SLS residuals, shape (T, J)
    """
    y = logit_inverse(data["shares"]).ravel()
    K = data["X"].shape[-1]
    Xf = data["X"].reshape(-1, K)
    Zf = data["Z"].reshape(-1, data["Z"].shape[-1])
    b_iv = tsls_fit(Xf, Zf, y)
    b_ols = ols_fit(Xf, y)[0]
    return dict(beta_iv=b_iv, beta_ols=b_ols,
                xi=(y - Xf @ b_iv).reshape(data["shares"].shape))
