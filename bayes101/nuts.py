"""
Section 5: The No-U-Turn Sampler (NUTS)

HMC needs a trajectory length L. Too short and it behaves like a random
walk; too long and trajectories double back, wasting gradient
evaluations. NUTS (Hoffman & Gelman, 2014) picks L on the fly: it builds
a balanced binary tree of leapfrog states by repeatedly doubling the
trajectory in a random direction, and stops once the two ends start to
move toward each other,

    (theta+ - theta-) . M^{-1} r-  < 0   or   (theta+ - theta-) . M^{-1} r+  < 0.

A slice variable u ~ U(0, exp(-H_0)) makes every state in the tree with
exp(-H) >= u a valid candidate, and the next draw is chosen among them
so that detailed balance holds. The step size is tuned by the dual
averaging scheme from Section 4, with the average acceptance probability
over all states in the trajectory as the adaptation statistic.
"""

import numpy as np

from .hmc import (
    MAX_ENERGY_ERROR,
    _as_inv_mass,
    dual_averaging_init,
    dual_averaging_update,
    find_reasonable_epsilon,
    leapfrog,
    sample_momentum,
)

MAX_TREE_DEPTH = 10


def _joint(lp, r, inv_mass):
    joint = lp - 0.5 * np.sum(inv_mass * r * r)
    return joint if np.isfinite(joint) else -np.inf


def no_u_turn(theta_minus, theta_plus, r_minus, r_plus, inv_mass):
    """True while neither end of the trajectory has started to turn back."""
    dtheta = theta_plus - theta_minus
    return (dtheta @ (inv_mass * r_minus) >= 0) and (dtheta @ (inv_mass * r_plus) >= 0)


def build_tree(theta, r, grad, log_u, v, j, eps, joint0, log_p_grad, inv_mass):
    """
    Recursively build a subtree of 2^j leapfrog steps in direction v.

    Parameters
    ----------
    theta, r, grad : ndarray
        State at the edge of the current trajectory the subtree grows from.
    log_u : float
        Log slice variable.
    v : int
        Direction, -1 (backwards) or +1 (forwards).
    j : int
        Subtree height.
    eps : float
        Step size.
    joint0 : float
        -H at the start of the transition.

    Returns
    -------
    dict with keys:
        theta_minus, r_minus, grad_minus : leftmost state
        theta_plus, r_plus, grad_plus    : rightmost state
        theta, lp, grad                  : candidate sampled from the subtree
        n          : number of states inside the slice
        s          : False once a U-turn or divergence is detected
        alpha      : summed acceptance probabilities
        n_alpha    : number of states behind alpha
        divergent  : bool
        n_leapfrog : leapfrog steps taken
    """
    if j == 0:
        th, r1, lp1, g1 = leapfrog(theta, r, grad, v * eps, log_p_grad, inv_mass)
        joint = _joint(lp1, r1, inv_mass)
        divergent = log_u - MAX_ENERGY_ERROR >= joint
        return dict(
            theta_minus=th, r_minus=r1, grad_minus=g1,
            theta_plus=th, r_plus=r1, grad_plus=g1,
            theta=th, lp=lp1, grad=g1,
            n=int(log_u <= joint),
            s=not divergent,
            alpha=float(np.exp(min(0.0, joint - joint0))),
            n_alpha=1,
            divergent=divergent,
            n_leapfrog=1,
        )

    tree = build_tree(theta, r, grad, log_u, v, j - 1, eps, joint0,
                      log_p_grad, inv_mass)
    if not tree["s"]:
        return tree

    if v == -1:
        other = build_tree(tree["theta_minus"], tree["r_minus"], tree["grad_minus"],
                           log_u, v, j - 1, eps, joint0, log_p_grad, inv_mass)
        tree["theta_minus"] = other["theta_minus"]
        tree["r_minus"] = other["r_minus"]
        tree["grad_minus"] = other["grad_minus"]
    else:
        other = build_tree(tree["theta_plus"], tree["r_plus"], tree["grad_plus"],
                           log_u, v, j - 1, eps, joint0, log_p_grad, inv_mass)
        tree["theta_plus"] = other["theta_plus"]
        tree["r_plus"] = other["r_plus"]
        tree["grad_plus"] = other["grad_plus"]

    n_tot = tree["n"] + other["n"]
    if n_tot > 0 and np.random.uniform() < other["n"] / n_tot:
        tree["theta"], tree["lp"], tree["grad"] = other["theta"], other["lp"], other["grad"]

    tree["n"] = n_tot
    tree["alpha"] += other["alpha"]
    tree["n_alpha"] += other["n_alpha"]
    tree["divergent"] = tree["divergent"] or other["divergent"]
    tree["n_leapfrog"] += other["n_leapfrog"]
    tree["s"] = other["s"] and no_u_turn(tree["theta_minus"], tree["theta_plus"],
                                         tree["r_minus"], tree["r_plus"], inv_mass)
    return tree


def nuts_step(theta, lp, grad, log_p_grad, eps, inv_mass, max_depth=MAX_TREE_DEPTH):
    """
    One NUTS transition.

    Returns
    -------
    dict with keys:
        theta, lp, grad : new state
        tree_depth      : number of doublings
        n_leapfrog      : gradient evaluations used
        accept_stat     : mean acceptance probability over the tree
        divergent       : bool
    """
    r0 = sample_momentum(inv_mass)
    joint0 = _joint(lp, r0, inv_mass)
    log_u = joint0 - np.random.exponential()

    theta_minus = theta_plus = theta
    r_minus = r_plus = r0
    grad_minus = grad_plus = grad
    new_theta, new_lp, new_grad = theta, lp, grad

    n, s, depth = 1, True, 0
    alpha, n_alpha, n_leapfrog, divergent = 0.0, 0, 0, False
    while s and depth < max_depth:
        v = -1 if np.random.uniform() < 0.5 else 1
        if v == -1:
            tree = build_tree(theta_minus, r_minus, grad_minus, log_u, v, depth,
                              eps, joint0, log_p_grad, inv_mass)
            theta_minus, r_minus, grad_minus = (tree["theta_minus"], tree["r_minus"],
                                                tree["grad_minus"])
        else:
            tree = build_tree(theta_plus, r_plus, grad_plus, log_u, v, depth,
                              eps, joint0, log_p_grad, inv_mass)
            theta_plus, r_plus, grad_plus = (tree["theta_plus"], tree["r_plus"],
                                             tree["grad_plus"])

        if tree["s"] and np.random.uniform() < tree["n"] / n:
            new_theta, new_lp, new_grad = tree["theta"], tree["lp"], tree["grad"]
        n += tree["n"]
        alpha += tree["alpha"]
        n_alpha += tree["n_alpha"]
        n_leapfrog += tree["n_leapfrog"]
        divergent = divergent or tree["divergent"]
        s = tree["s"] and no_u_turn(theta_minus, theta_plus, r_minus, r_plus, inv_mass)
        depth += 1

    return dict(
        theta=new_theta, lp=new_lp, grad=new_grad,
        tree_depth=depth,
        n_leapfrog=n_leapfrog,
        accept_stat=alpha / n_alpha if n_alpha > 0 else 0.0,
        divergent=divergent,
    )


def nuts(log_p_grad, theta0, n_draws, n_warmup=500, target_accept=0.8,
         max_depth=MAX_TREE_DEPTH, step_size=None, inv_mass=None, seed=None,
         verbose=False):
    """
    NUTS with dual-averaging step size adaptation.

    Parameters
    ----------
    log_p_grad : callable
        theta -> (log p, grad log p).
    theta0 : array-like, shape (d,)
    n_draws : int
        Draws kept after warmup.
    n_warmup : int
        Adaptation iterations (discarded).
    target_accept : float
        Target mean acceptance statistic (delta in Hoffman & Gelman).
    max_depth : int
        Cap on tree doublings; at most 2^max_depth - 1 leapfrog steps.
    step_size : float or None
        Fixed step size; disables adaptation.
    inv_mass : ndarray, shape (d,) or None
    seed : int or None
    verbose : bool

    Returns
    -------
    dict with keys:
        chain       : ndarray, shape (n_draws, d)
        log_p       : ndarray, shape (n_draws,)
        step_size   : step size after warmup
        accept_stat : ndarray, shape (n_draws,)
        tree_depth  : int ndarray, shape (n_draws,)
        n_leapfrog  : int ndarray, shape (n_draws,)
        divergent   : bool ndarray, shape (n_draws,)
    """
    if n_draws <= 0 or max_depth < 1:
        raise ValueError(f"Need n_draws > 0 and max_depth >= 1. Got {n_draws}, {max_depth}.")
    if seed is not None:
        np.random.seed(seed)

    theta = np.array(theta0, dtype=float).ravel()
    inv_mass = _as_inv_mass(inv_mass, theta.size)
    lp, grad = log_p_grad(theta)
    if not np.isfinite(lp):
        raise ValueError(f"log_p(theta0) is not finite ({lp}); choose another start.")

    adapt = step_size is None
    eps = find_reasonable_epsilon(theta, log_p_grad, inv_mass) if adapt else step_size
    da = dual_averaging_init(eps)

    for _ in range(n_warmup):
        out = nuts_step(theta, lp, grad, log_p_grad, eps, inv_mass, max_depth)
        theta, lp, grad = out["theta"], out["lp"], out["grad"]
        if adapt:
            da = dual_averaging_update(da, out["accept_stat"], target_accept)
            eps = np.exp(da["log_eps"])
    if adapt and n_warmup > 0:
        eps = np.exp(da["log_eps_bar"])
    if verbose:
        print(f"  [NUTS] step size after warmup: {eps:.4f}")

    d = theta.size
    chain = np.empty((n_draws, d))
    lps = np.empty(n_draws)
    accept = np.empty(n_draws)
    depth = np.empty(n_draws, dtype=int)
    n_lf = np.empty(n_draws, dtype=int)
    divergent = np.zeros(n_draws, dtype=bool)
    report = max(n_draws // 10, 1)
    for i in range(n_draws):
        out = nuts_step(theta, lp, grad, log_p_grad, eps, inv_mass, max_depth)
        theta, lp, grad = out["theta"], out["lp"], out["grad"]
        chain[i] = theta
        lps[i] = lp
        accept[i] = out["accept_stat"]
        depth[i] = out["tree_depth"]
        n_lf[i] = out["n_leapfrog"]
        divergent[i] = out["divergent"]
        if verbose and (i + 1) % report == 0:
            print(f"  [NUTS] draw {i + 1}/{n_draws}  "
                  f"mean tree depth={depth[:i + 1].mean():.2f}")

    if verbose:
        print(f"  [NUTS] mean accept={accept.mean():.3f}  divergent={divergent.sum()}")

    return dict(
        chain=chain,
        log_p=lps,
        step_size=eps,
        accept_stat=accept,
        tree_depth=depth,
        n_leapfrog=n_lf,
        divergent=divergent,
    )
