"""
Section 8: Quasi-Bayesian GMM (Chernozhukov & Hong, 2003)

GMM estimates theta by minimising

    Q_N(theta) = N g_N(theta)' W g_N(theta),   g_N = 1/N sum_i z_i xi_i(theta).

The objective is often badly behaved (non-convex, flat regions, local
minima), which makes the minimiser and its standard errors unreliable.
Chernozhukov & Hong treat exp(-Q_N/2) as if it were a likelihood and
form the quasi-posterior

    p_N(theta) ∝ exp(-Q_N(theta) / 2) pi(theta).

It is a proper density that MCMC can explore. Its mean is a consistent,
asymptotically normal estimator, and when W is the efficient weight
matrix its quantiles give valid confidence intervals.

Applied here to the random-coefficients logit of Section 7 with
xi(theta) = delta(sigma) - X beta. theta is either (beta, sigma_rc) or,
with `concentrate=True`, sigma_rc alone with beta replaced by its linear
GMM value given delta(sigma).
"""

import warnings

import numpy as np
from scipy.optimize import minimize

from .blp import invert_shares
from .metropolis import random_walk_mh
from .utils import numerical_hessian, tsls_fit

PRIOR_SCALE = 10.0


def _flat(data):
    K = data["X"].shape[-1]
    return data["X"].reshape(-1, K), data["Z"].reshape(-1, data["Z"].shape[-1])


def full_sigma(sigma_rc, rc, K):
    """Embed the random-coefficient standard deviations into a length-K vector."""
    sigma = np.zeros(K)
    sigma[np.asarray(rc, dtype=int)] = sigma_rc
    return sigma


def parameter_names(data, concentrate=False, rc=None):
    """Labels for theta, e.g. beta[0], ..., sigma[1]."""
    K = data["X"].shape[-1]
    rc = data["rc"] if rc is None else rc
    names = [f"sigma[{k}]" for k in rc]
    if concentrate:
        return names
    return [f"beta[{k}]" for k in range(K)] + names


def gmm_objective(theta, data, W=None, concentrate=True, rc=None,
                  return_details=False):
    """
    GMM objective for the random-coefficients logit.

    Parameters
    ----------
    theta : ndarray
        sigma_rc if `concentrate`, else (beta, sigma_rc).
    data : dict
        shares, X, Z, nu, rc -- see `blp.simulate_market_data`.
    W : ndarray, shape (L, L) or None
        Weighting matrix (default (Z'Z / N)^{-1}).
    concentrate : bool
        Profile beta out by linear GMM.
    rc : sequence of int or None
        Indices of random coefficients (default data["rc"]).
    return_details : bool
        Also return beta, delta, xi and the moment vector.

    Returns
    -------
    Q : float
        N g' W g; inf when any sigma is negative.
    or, if return_details, dict with keys Q, beta, sigma, delta, xi, g.
    """
    theta = np.atleast_1d(np.asarray(theta, dtype=float))
    K = data["X"].shape[-1]
    rc = data["rc"] if rc is None else rc
    n_beta = 0 if concentrate else K
    if theta.size != n_beta + len(rc):
        raise ValueError(f"theta has {theta.size} entries; expected {n_beta + len(rc)}.")

    sigma_rc = theta[n_beta:]
    if np.any(sigma_rc < 0):
        return dict(Q=np.inf) if return_details else np.inf

    sigma = full_sigma(sigma_rc, rc, K)
    delta = invert_shares(data["shares"], sigma, data["X"], data["nu"])
    Xf, Zf = _flat(data)
    d = delta.ravel()
    N = d.size
    if W is None:
        W = np.linalg.inv(Zf.T @ Zf / N)

    beta = tsls_fit(Xf, Zf, d, W) if concentrate else theta[:K]
    xi = d - Xf @ beta
    g = Zf.T @ xi / N
    Q = float(N * g @ W @ g)
    if not return_details:
        return Q
    return dict(Q=Q, beta=beta, sigma=sigma, delta=delta,
                xi=xi.reshape(delta.shape), g=g)


def efficient_weight(xi, Z):
    """
    Efficient GMM weight matrix (heteroskedasticity robust).

        W = (1/N sum_i z_i z_i' xi_i^2)^{-1}
    """
    xi = np.ravel(xi)
    Zf = Z.reshape(-1, Z.shape[-1])
    N = xi.size
    return np.linalg.inv((Zf * xi[:, None] ** 2).T @ Zf / N)


def default_log_prior(theta, n_beta, scale=PRIOR_SCALE):
    """Flat on beta; independent half-normal(0, scale^2) on sigma."""
    sigma_rc = np.asarray(theta, dtype=float)[n_beta:]
    if np.any(sigma_rc < 0):
        return -np.inf
    return -0.5 * np.sum((sigma_rc / scale) ** 2)


def quasi_log_posterior(theta, objective, log_prior=None):
    """
    log p_N(theta) = -Q(theta) / 2 + log pi(theta)   (up to a constant).

    Parameters
    ----------
    theta : ndarray
    objective : callable
        theta -> Q(theta).
    log_prior : callable or None
        theta -> log pi(theta); None means a flat prior.
    """
    lp = 0.0 if log_prior is None else log_prior(theta)
    if not np.isfinite(lp):
        return -np.inf
    q = objective(theta)
    if not np.isfinite(q):
        return -np.inf
    return -0.5 * q + lp


def gmm_estimate(data, theta0=None, W=None, concentrate=True, rc=None,
                 two_step=True, verbose=False):
    """
    GMM estimate of the random-coefficients logit.

    The search is always over sigma_rc with beta concentrated out
    (Nelder-Mead); the joint minimiser over (beta, sigma) is the same
    point. With `two_step`, the first-step residuals give the efficient
    weight matrix and the objective is minimised again.

    Parameters
    ----------
    data : dict
    theta0 : ndarray or None
        Starting sigma_rc (default 0.5 for every random coefficient).
    W : ndarray or None
        First-step weight matrix (default (Z'Z / N)^{-1}).
    concentrate : bool
        Layout of the returned `theta`: sigma_rc, or (beta, sigma_rc).
    rc : sequence of int or None
    two_step : bool
    verbose : bool

    Returns
    -------
    dict with keys:
        theta     : estimate in the requested layout
        beta      : linear parameters
        sigma     : full length-K sigma
        objective : Q at the estimate
        W         : weight matrix used in the final step
        xi        : demand shocks at the estimate
        converged : bool
    """
    rc = data["rc"] if rc is None else rc
    start = np.full(len(rc), 0.5) if theta0 is None else np.atleast_1d(theta0)
    if W is None:
        Zf = _flat(data)[1]
        W = np.linalg.inv(Zf.T @ Zf / Zf.shape[0])

    def search(W_, x0):
        return minimize(gmm_objective, x0, args=(data, W_, True, rc),
                        method="Nelder-Mead",
                        options=dict(xatol=1e-6, fatol=1e-8, maxiter=2000))

    res = search(W, start)
    if verbose:
        print(f"  [GMM] step 1: Q={res.fun:.4f}  sigma={np.round(res.x, 4)}")
    if two_step:
        details = gmm_objective(res.x, data, W, True, rc, return_details=True)
        W = efficient_weight(details["xi"], data["Z"])
        res = search(W, res.x)
        if verbose:
            print(f"  [GMM] step 2: Q={res.fun:.4f}  sigma={np.round(res.x, 4)}")

    details = gmm_objective(res.x, data, W, True, rc, return_details=True)
    theta = res.x if concentrate else np.concatenate([details["beta"], res.x])
    return dict(
        theta=theta,
        beta=details["beta"],
        sigma=details["sigma"],
        objective=details["Q"],
        W=W,
        xi=details["xi"],
        converged=bool(res.success),
    )


def _proposal_cov(neg_log_post, theta):
    """Inverse Hessian of -log p_N at theta, or a diagonal guess if unusable."""
    H = numerical_hessian(neg_log_post, theta, eps=1e-3)
    if np.all(np.isfinite(H)):
        try:
            cov = np.linalg.inv(H)
            np.linalg.cholesky(cov)
            return cov
        except np.linalg.LinAlgError:
            pass
    warnings.warn("Quasi-posterior Hessian is not positive definite; "
                  "using a diagonal proposal.", RuntimeWarning)
    return np.diag((0.1 * np.maximum(np.abs(theta), 0.1)) ** 2)


def quasi_bayes(data, n_draws=2000, n_warmup=500, theta0=None, W=None,
                concentrate=False, rc=None, log_prior=None, two_step=True,
                seed=None, verbose=False):
    """
    Sample the GMM quasi-posterior of the random-coefficients logit.

    1. GMM estimate (two-step efficient weights by default).
    2. Proposal covariance: inverse numerical Hessian of Q/2 - log pi at
       the estimate (the quasi-posterior's Laplace approximation).
    3. Random-walk Metropolis-Hastings from the estimate.

    Parameters
    ----------
    data : dict
        See `blp.simulate_market_data`.
    n_draws, n_warmup : int
    theta0 : ndarray or None
        Starting sigma_rc for the GMM search.
    W : ndarray or None
        First-step weight matrix.
    concentrate : bool
        Sample sigma_rc only (profile quasi-posterior) instead of
        (beta, sigma_rc). Off by default so the quasi-posterior also
        covers beta; `gmm_objective` and `gmm_estimate` default to the
        concentrated form because their search is over sigma_rc alone.
    rc : sequence of int or None
    log_prior : callable or None
        Defaults to `default_log_prior`.
    two_step : bool
    seed : int or None
    verbose : bool

    Returns
    -------
    dict of arrays and scalars (storable with `checkpoint.cached_run`):
        chain         : ndarray, shape (n_draws, d)
        log_p         : quasi-log-posterior at each draw
        names         : parameter labels, ndarray of str
        mean          : quasi-posterior mean (the point estimator)
        accept_rate   : MH acceptance rate
        gmm_theta     : GMM estimate in the layout of `chain`
        gmm_beta      : GMM estimate of beta
        gmm_sigma     : GMM estimate of the full length-K sigma
        gmm_objective : Q at the GMM estimate
        gmm_converged : bool
        W             : weight matrix of the quasi-posterior

    `diagnostics.summarize(out["chain"], list(out["names"]))` gives the
    posterior table.
    """
    rc = data["rc"] if rc is None else rc
    n_beta = 0 if concentrate else data["X"].shape[-1]
    if log_prior is None:
        def log_prior(theta):
            return default_log_prior(theta, n_beta)

    est = gmm_estimate(data, theta0=theta0, W=W, concentrate=concentrate,
                       rc=rc, two_step=two_step, verbose=verbose)

    def objective(theta):
        return gmm_objective(theta, data, est["W"], concentrate, rc)

    def log_post(theta):
        return quasi_log_posterior(theta, objective, log_prior)

    cov = _proposal_cov(lambda th: -log_post(th), est["theta"])
    mh = random_walk_mh(log_post, est["theta"], n_draws, n_warmup=n_warmup,
                        proposal_cov=cov, seed=seed, verbose=verbose)

    return dict(
        chain=mh["chain"],
        log_p=mh["log_p"],
        names=np.array(parameter_names(data, concentrate, rc)),
        mean=mh["chain"].mean(axis=0),
        accept_rate=mh["accept_rate"],
        gmm_theta=est["theta"],
        gmm_beta=est["beta"],
        gmm_sigma=est["sigma"],
        gmm_objective=est["objective"],
        gmm_converged=est["converged"],
        W=est["W"],
    )
