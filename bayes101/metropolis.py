"""
Section 2: Metropolis-Hastings

Given a target density p (known up to a constant) and a proposal
q(theta' | theta), one MH step proposes theta' and accepts it with
probability

    alpha = min{1, p(theta') q(theta | theta') / [p(theta) q(theta' | theta)]}.

For a symmetric random walk the q terms cancel. The random-walk sampler
below tunes its proposal scale during warmup (Robbins-Monro on the log
scale) toward the 0.234 acceptance rate that is optimal for Gaussian-like
targets in moderate dimension, then freezes it so the kept draws come from
a proper Markov chain.
"""

import numpy as np

TARGET_ACCEPT = 0.234
ADAPT_EXPONENT = 0.6


def mh_step(log_p, theta, lp, proposal, log_q_ratio=0.0):
    """
    One Metropolis-Hastings accept/reject decision.

    Parameters
    ----------
    log_p : callable
        Log target density, log_p(theta) -> float.
    theta : ndarray
        Current state.
    lp : float
        log_p(theta), cached.
    proposal : ndarray
        Proposed state theta'.
    log_q_ratio : float
        log q(theta | theta') - log q(theta' | theta); zero for symmetric
        proposals.

    Returns
    -------
    theta : ndarray
        New state (proposal if accepted, else the current state).
    lp : float
        Log density at the new state.
    accepted : bool
    """
    lp_new = log_p(proposal)
    if not np.isfinite(lp_new):
        return theta, lp, False
    if np.log(np.random.uniform()) < lp_new - lp + log_q_ratio:
        return proposal, lp_new, True
    return theta, lp, False


def random_walk_mh(log_p, theta0, n_draws, n_warmup=1000, proposal_cov=None,
                   scale=None, target_accept=TARGET_ACCEPT, seed=None,
                   verbose=False):
    """
    Gaussian random-walk Metropolis with warmup scale adaptation.

    theta' = theta + scale * L z,  z ~ N(0, I),  L L' = proposal_cov.

    Parameters
    ----------
    log_p : callable
        Log target density.
    theta0 : array-like, shape (d,)
        Starting value; log_p(theta0) must be finite.
    n_draws : int
        Number of draws kept after warmup.
    n_warmup : int
        Adaptation iterations (discarded).
    proposal_cov : ndarray, shape (d, d) or None
        Proposal covariance shape (default identity).
    scale : float or None
        Initial proposal scale (default 2.38 / sqrt(d)).
    target_accept : float
        Acceptance rate targeted during warmup.
    seed : int or None
    verbose : bool
        Print progress.

    Returns
    -------
    dict with keys:
        chain         : ndarray, shape (n_draws, d)
        log_p         : log density at each kept draw
        accept_rate   : acceptance rate after warmup
        warmup_accept : acceptance rate during warmup
        scale         : final proposal scale
    """
    if n_draws <= 0:
        raise ValueError(f"n_draws must be positive. Got {n_draws}.")
    if seed is not None:
        np.random.seed(seed)

    theta = np.array(theta0, dtype=float).ravel()
    d = theta.size
    lp = log_p(theta)
    if not np.isfinite(lp):
        raise ValueError(f"log_p(theta0) is not finite ({lp}); choose another start.")

    cov = np.eye(d) if proposal_cov is None else np.atleast_2d(proposal_cov)
    L = np.linalg.cholesky(cov)
    log_scale = np.log(2.38 / np.sqrt(d) if scale is None else scale)

    n_acc_warm = 0
    for t in range(n_warmup):
        proposal = theta + np.exp(log_scale) * (L @ np.random.normal(0, 1, d))
        theta, lp, acc = mh_step(log_p, theta, lp, proposal)
        n_acc_warm += acc
        log_scale += (acc - target_accept) / (t + 1) ** ADAPT_EXPONENT

    step = np.exp(log_scale)
    if verbose and n_warmup > 0:
        print(f"  [MH] warmup done: accept={n_acc_warm / n_warmup:.3f}  "
              f"scale={step:.4f}")

    chain = np.empty((n_draws, d))
    lps = np.empty(n_draws)
    n_acc = 0
    report = max(n_draws // 10, 1)
    for i in range(n_draws):
        proposal = theta + step * (L @ np.random.normal(0, 1, d))
        theta, lp, acc = mh_step(log_p, theta, lp, proposal)
        n_acc += acc
        chain[i] = theta
        lps[i] = lp
        if verbose and (i + 1) % report == 0:
            print(f"  [MH] draw {i + 1}/{n_draws}  accept={n_acc / (i + 1):.3f}")

    return dict(
        chain=chain,
        log_p=lps,
        accept_rate=n_acc / n_draws,
        warmup_accept=n_acc_warm / n_warmup if n_warmup > 0 else np.nan,
        scale=step,
    )
