"""
Section 4: Hamiltonian Monte Carlo

Augment theta with a momentum r ~ N(0, M) and simulate the dynamics of

    H(theta, r) = -log p(theta) + r' M^{-1} r / 2

with the leapfrog integrator, which is volume preserving and reversible.
The endpoint of L leapfrog steps is accepted with probability
min{1, exp(H_0 - H_L)}, correcting for discretisation error. Because
trajectories follow the gradient, HMC makes long moves with high
acceptance where random-walk MH would crawl.

The step size is tuned during warmup by Nesterov dual averaging
(Hoffman & Gelman, 2014, Section 3.2); the same machinery is reused by
the NUTS sampler in Section 5. M is diagonal throughout and is passed as
its inverse, `inv_mass`.
"""

import numpy as np

MAX_ENERGY_ERROR = 1000.0

# dual averaging constants (Hoffman & Gelman 2014)
DA_GAMMA = 0.05
DA_T0 = 10.0
DA_KAPPA = 0.75


def _as_inv_mass(inv_mass, d):
    if inv_mass is None:
        return np.ones(d)
    inv_mass = np.asarray(inv_mass, dtype=float)
    if inv_mass.shape != (d,) or np.any(inv_mass <= 0):
        raise ValueError(f"inv_mass must be a positive vector of length {d}.")
    return inv_mass


def hamiltonian(lp, r, inv_mass):
    """Total energy: potential -log p plus kinetic r' M^{-1} r / 2."""
    return -lp + 0.5 * np.sum(inv_mass * r * r)


def sample_momentum(inv_mass):
    """Draw r ~ N(0, M) for diagonal M = diag(1 / inv_mass)."""
    return np.random.normal(0, 1, inv_mass.size) / np.sqrt(inv_mass)


def leapfrog(theta, r, grad, eps, log_p_grad, inv_mass):
    """
    One leapfrog step of size eps.

        r     <- r + eps/2 * grad log p(theta)
        theta <- theta + eps * M^{-1} r
        r     <- r + eps/2 * grad log p(theta)

    Parameters
    ----------
    theta, r, grad : ndarray, shape (d,)
        Position, momentum and gradient at theta.
    eps : float
        Step size (negative integrates backwards in time).
    log_p_grad : callable
        theta -> (log p(theta), grad log p(theta)).
    inv_mass : ndarray, shape (d,)

    Returns
    -------
    theta, r, lp, grad at the new position.
    """
    r = r + 0.5 * eps * grad
    theta = theta + eps * inv_mass * r
    lp, grad = log_p_grad(theta)
    r = r + 0.5 * eps * grad
    return theta, r, lp, grad


def find_reasonable_epsilon(theta, log_p_grad, inv_mass=None, eps=1.0,
                            max_iter=100):
    """
    Heuristic initial step size (Hoffman & Gelman 2014, Algorithm 4).

    Double or halve eps until the acceptance probability of a single
    leapfrog step crosses 1/2.
    """
    theta = np.asarray(theta, dtype=float)
    inv_mass = _as_inv_mass(inv_mass, theta.size)
    lp, grad = log_p_grad(theta)
    r = sample_momentum(inv_mass)
    h0 = hamiltonian(lp, r, inv_mass)

    def log_ratio(step):
        _, r1, lp1, _ = leapfrog(theta, r, grad, step, log_p_grad, inv_mass)
        delta = h0 - hamiltonian(lp1, r1, inv_mass)
        return delta if np.isfinite(delta) else -np.inf

    lr = log_ratio(eps)
    a = 1.0 if lr > np.log(0.5) else -1.0
    for _ in range(max_iter):
        if not a * lr > -a * np.log(2.0):
            break
        eps *= 2.0 ** a
        lr = log_ratio(eps)
    return eps


def dual_averaging_init(eps):
    """Initial dual-averaging state for a starting step size eps."""
    return dict(mu=np.log(10 * eps), log_eps=np.log(eps), log_eps_bar=0.0,
                h_bar=0.0, m=0)


def dual_averaging_update(state, accept_stat, target=0.8):
    """
    One dual-averaging update of log step size.

        H_m          = (1 - 1/(m + t0)) H_{m-1} + (target - alpha_m)/(m + t0)
        log eps_m    = mu - sqrt(m) / gamma * H_m
        log epsbar_m = m^{-kappa} log eps_m + (1 - m^{-kappa}) log epsbar_{m-1}

    Use exp(log_eps) while adapting and exp(log_eps_bar) afterwards.
    """
    m = state["m"] + 1
    w = 1.0 / (m + DA_T0)
    h_bar = (1 - w) * state["h_bar"] + w * (target - accept_stat)
    log_eps = state["mu"] - np.sqrt(m) / DA_GAMMA * h_bar
    eta = m ** -DA_KAPPA
    log_eps_bar = eta * log_eps + (1 - eta) * state["log_eps_bar"]
    return dict(mu=state["mu"], log_eps=log_eps, log_eps_bar=log_eps_bar,
                h_bar=h_bar, m=m)


def hmc_step(theta, lp, grad, log_p_grad, eps, n_steps, inv_mass):
    """
    One HMC transition.

    Returns
    -------
    dict with keys:
        theta, lp, grad : new state
        accept_stat     : min(1, exp(H_0 - H_L))
        accepted        : bool
        divergent       : bool, energy error above MAX_ENERGY_ERROR
    """
    r0 = sample_momentum(inv_mass)
    h0 = hamiltonian(lp, r0, inv_mass)

    th, r, lp1, g1 = theta, r0, lp, grad
    for _ in range(n_steps):
        th, r, lp1, g1 = leapfrog(th, r, g1, eps, log_p_grad, inv_mass)
        if not np.isfinite(lp1):
            break

    energy_err = hamiltonian(lp1, r, inv_mass) - h0
    if not np.isfinite(energy_err):
        accept_stat, divergent = 0.0, True
    else:
        accept_stat = float(np.exp(min(0.0, -energy_err)))
        divergent = energy_err > MAX_ENERGY_ERROR

    if np.random.uniform() < accept_stat:
        return dict(theta=th, lp=lp1, grad=g1, accept_stat=accept_stat,
                    accepted=True, divergent=divergent)
    return dict(theta=theta, lp=lp, grad=grad, accept_stat=accept_stat,
                accepted=False, divergent=divergent)


def hmc(log_p_grad, theta0, n_draws, n_warmup=500, step_size=None, n_steps=20,
        target_accept=0.8, inv_mass=None, jitter=0.1, seed=None, verbose=False):
    """
    Hamiltonian Monte Carlo with a fixed number of leapfrog steps.

    Parameters
    ----------
    log_p_grad : callable
        theta -> (log p, grad log p). See `utils.with_gradient`.
    theta0 : array-like, shape (d,)
    n_draws : int
        Draws kept after warmup.
    n_warmup : int
        Warmup iterations; the step size is adapted by dual averaging
        unless `step_size` is given.
    step_size : float or None
    n_steps : int
        Leapfrog steps per transition.
    target_accept : float
        Mean acceptance statistic targeted by dual averaging.
    inv_mass : ndarray, shape (d,) or None
        Diagonal inverse mass matrix (default identity).
    jitter : float
        After warmup each transition uses eps * U(1 - jitter, 1 + jitter),
        which breaks periodic trajectories.
    seed : int or None
    verbose : bool

    Returns
    -------
    dict with keys:
        chain       : ndarray, shape (n_draws, d)
        log_p       : ndarray, shape (n_draws,)
        accept_rate : fraction of accepted proposals after warmup
        accept_stat : mean acceptance statistic after warmup
        step_size   : step size used after warmup
        divergent   : bool ndarray, shape (n_draws,)
    """
    if n_draws <= 0 or n_steps <= 0:
        raise ValueError(f"Need n_draws > 0 and n_steps > 0. Got {n_draws}, {n_steps}.")
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
        out = hmc_step(theta, lp, grad, log_p_grad, eps, n_steps, inv_mass)
        theta, lp, grad = out["theta"], out["lp"], out["grad"]
        if adapt:
            da = dual_averaging_update(da, out["accept_stat"], target_accept)
            eps = np.exp(da["log_eps"])
    if adapt and n_warmup > 0:
        eps = np.exp(da["log_eps_bar"])
    if verbose:
        print(f"  [HMC] step size {eps:.4f}, {n_steps} leapfrog steps")

    d = theta.size
    chain = np.empty((n_draws, d))
    lps = np.empty(n_draws)
    stats = np.empty(n_draws)
    divergent = np.zeros(n_draws, dtype=bool)
    n_acc = 0
    for i in range(n_draws):
        e = eps * np.random.uniform(1 - jitter, 1 + jitter) if jitter else eps
        out = hmc_step(theta, lp, grad, log_p_grad, e, n_steps, inv_mass)
        theta, lp, grad = out["theta"], out["lp"], out["grad"]
        chain[i] = theta
        lps[i] = lp
        stats[i] = out["accept_stat"]
        divergent[i] = out["divergent"]
        n_acc += out["accepted"]

    if verbose:
        print(f"  [HMC] accept={n_acc / n_draws:.3f}  divergent={divergent.sum()}")

    return dict(
        chain=chain,
        log_p=lps,
        accept_rate=n_acc / n_draws,
        accept_stat=stats.mean(),
        step_size=eps,
        divergent=divergent,
    )
