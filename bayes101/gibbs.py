"""
Section 3: Gibbs Sampling

When the parameter vector splits into blocks whose full conditionals are
easy to draw from, cycling through them

    theta_1 ~ p(theta_1 | theta_2, ..., y)
    theta_2 ~ p(theta_2 | theta_1, ..., y)
    ...

is an MCMC sampler with acceptance probability one. For the linear
regression with an independent normal / inverse-gamma prior both blocks
are standard distributions:

    beta | sigma^2, y ~ N(m, V),
        V = (B0^{-1} + X'X / sigma^2)^{-1},  m = V (B0^{-1} b0 + X'y / sigma^2)
    sigma^2 | beta, y ~ IG(a0 + n/2, d0 + SSR(beta)/2)
"""

import numpy as np

from .ols_posterior import make_prior


def gibbs(blocks, state0, n_draws, n_warmup=500, thin=1, seed=None):
    """
    Generic block Gibbs sampler.

    Parameters
    ----------
    blocks : dict
        Ordered mapping name -> conditional sampler. Each sampler receives
        the current state dict and returns a new draw for its block.
    state0 : dict
        Initial value for every block.
    n_draws : int
        Number of sweeps kept.
    n_warmup : int
        Sweeps discarded before storing.
    thin : int
        Keep every `thin`-th sweep.
    seed : int or None

    Returns
    -------
    dict mapping block name -> ndarray of draws, shape (n_draws, ...).
    """
    if n_draws <= 0 or thin < 1:
        raise ValueError(f"Need n_draws > 0 and thin >= 1. Got {n_draws}, {thin}.")
    missing = set(blocks) - set(state0)
    if missing:
        raise ValueError(f"state0 has no initial value for blocks: {sorted(missing)}")
    if seed is not None:
        np.random.seed(seed)

    state = dict(state0)
    draws = {name: [] for name in blocks}
    for it in range(n_warmup + n_draws * thin):
        for name, sampler in blocks.items():
            state[name] = sampler(state)
        if it >= n_warmup and (it - n_warmup) % thin == 0:
            for name in blocks:
                draws[name].append(np.copy(state[name]))

    return {name: np.array(v) for name, v in draws.items()}


def regression_conditionals(X, y, prior):
    """
    Full conditionals of the linear regression with independent prior.

    Returns
    -------
    dict with keys beta, sigma2 -- conditional samplers for `gibbs`.
    """
    n = y.shape[0]
    XtX = X.T @ X
    Xty = X.T @ y
    prec0_b0 = prior["B0_inv"] @ prior["b0"]
    a_n = prior["a0"] + n / 2

    def draw_beta(state):
        V = np.linalg.inv(prior["B0_inv"] + XtX / state["sigma2"])
        m = V @ (prec0_b0 + Xty / state["sigma2"])
        return m + np.linalg.cholesky(V) @ np.random.normal(0, 1, m.size)

    def draw_sigma2(state):
        e = y - X @ state["beta"]
        d_n = prior["d0"] + 0.5 * (e @ e)
        # IG(a, d) is 1 / Gamma(a, rate=d)
        return 1.0 / np.random.gamma(a_n, 1.0 / d_n)

    return dict(beta=draw_beta, sigma2=draw_sigma2)


def gibbs_linear_regression(X, y, prior=None, n_draws=2000, n_warmup=500,
                            thin=1, beta0=None, sigma2_0=None, seed=None):
    """
    Gibbs sampler for y = X beta + eps with an independent prior.

    Parameters
    ----------
    X : ndarray, shape (n, k)
    y : ndarray, shape (n,)
    prior : dict or None
        From `make_prior` (default: make_prior(k)).
    beta0, sigma2_0 : starting values (default: zeros and var(y)).

    Returns
    -------
    dict with keys:
        beta   : ndarray, shape (n_draws, k)
        sigma2 : ndarray, shape (n_draws,)
        chain  : ndarray, shape (n_draws, k + 1), columns (beta, log sigma)
                 -- same parameterisation as the MH / HMC / NUTS chains
    """
    k = X.shape[1]
    prior = make_prior(k) if prior is None else prior
    state0 = dict(
        beta=np.zeros(k) if beta0 is None else np.asarray(beta0, dtype=float),
        sigma2=float(np.var(y)) if sigma2_0 is None else float(sigma2_0),
    )
    out = gibbs(regression_conditionals(X, y, prior), state0,
                n_draws=n_draws, n_warmup=n_warmup, thin=thin, seed=seed)
    chain = np.column_stack([out["beta"], 0.5 * np.log(out["sigma2"])])
    return dict(beta=out["beta"], sigma2=out["sigma2"], chain=chain)
