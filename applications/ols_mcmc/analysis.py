"""
MCMC Sampling Methods on a Linear Regression
=============================================

Simulates y = X beta + eps and samples the posterior of (beta, log sigma)
four ways -- random-walk Metropolis-Hastings, Gibbs, HMC and NUTS --
comparing each to the closed-form conjugate posterior, using the
bayes101 package.
"""

import argparse
import os
import sys
from functools import partial

import numpy as np
import pandas as pd

# Add project root to path so bayes101 is importable without installing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from bayes101 import ols_posterior as m_post
from bayes101 import metropolis as m_mh
from bayes101 import gibbs as m_gibbs
from bayes101 import hmc as m_hmc
from bayes101 import nuts as m_nuts
from bayes101 import diagnostics as m_diag
from bayes101.checkpoint import cached_run
from bayes101.utils import ols_fit


def run_tag(args):
    """Settings that determine a chain; part of every checkpoint name and key."""
    return f"n{args.n}_d{args.draws}_w{args.warmup}_s{args.seed}"


def run_sampler(name, func, cache_dir, tag, *args, **kwargs):
    """Run a sampler, through a checkpoint file when cache_dir is set."""
    if cache_dir is None:
        return func(*args, **kwargs)
    return cached_run(os.path.join(cache_dir, f"ols_{name}_{tag}"), func, *args,
                      cache_key=tag, **kwargs)


def main():
    parser = argparse.ArgumentParser(
        description="Posterior sampling for a linear regression"
    )
    parser.add_argument("--n", type=int, default=200, help="sample size (default: 200)")
    parser.add_argument("--draws", type=int, default=2000,
                        help="draws kept per sampler (default: 2000)")
    parser.add_argument("--warmup", type=int, default=1000,
                        help="warmup iterations per sampler (default: 1000)")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--cache-dir", default=None,
                        help="directory for sampler checkpoints (default: no caching)")
    args = parser.parse_args()

    print("=" * 60)
    print("MCMC Sampling Methods -- Linear Regression Posterior")
    print("=" * 60)

    data = m_post.simulate_data(n=args.n, seed=args.seed)
    X, y = data["X"], data["y"]
    k = X.shape[1]
    tag = run_tag(args)
    names = [f"beta[{j}]" for j in range(k)] + ["log_sigma"]
    print(f"\n[Data] n={args.n}  beta={data['beta']}  sigma={data['sigma']}")

    b_ols, se_ols, _, s2 = ols_fit(X, y)
    print(f"\n[OLS] beta_hat = {np.round(b_ols, 4)}  SE = {np.round(se_ols, 4)}")
    print(f"  sigma_hat = {np.sqrt(s2):.4f}")

    # --- 1) Conjugate posterior, exact draws ---
    post = m_post.conjugate_posterior(X, y)
    exact = m_post.draw_conjugate(post, args.draws, seed=args.seed)
    exact_chain = np.column_stack([exact["beta"], 0.5 * np.log(exact["sigma2"])])
    print("\n[Conjugate] E[beta|y] =", np.round(post["beta_mean"], 4))
    print(f"  E[sigma^2|y] = {post['sigma2_mean']:.4f}")

    # --- 2) Samplers on the independent-prior posterior ---
    prior = m_post.make_prior(k)
    log_p = partial(m_post.log_posterior, X=X, y=y, prior=prior)
    log_p_grad = partial(m_post.log_posterior_grad, X=X, y=y, prior=prior)
    theta0 = np.append(b_ols, np.log(np.sqrt(s2)))

    # Random-walk MH with the OLS covariance as proposal shape
    prop_cov = np.diag(np.append(se_ols ** 2, 1.0 / (2 * args.n)))
    mh = run_sampler("mh", m_mh.random_walk_mh, args.cache_dir, tag, log_p, theta0,
                     args.draws, n_warmup=args.warmup, proposal_cov=prop_cov,
                     seed=args.seed)
    print(f"\n[MH] acceptance rate: {mh['accept_rate']:.3f}  scale: {mh['scale']:.3f}")

    gb = run_sampler("gibbs", m_gibbs.gibbs_linear_regression, args.cache_dir, tag,
                     X, y, prior=prior, n_draws=args.draws, n_warmup=args.warmup,
                     seed=args.seed)
    print("[Gibbs] done")

    hm = run_sampler("hmc", m_hmc.hmc, args.cache_dir, tag, log_p_grad, theta0,
                     args.draws, n_warmup=args.warmup, n_steps=10, seed=args.seed)
    print(f"[HMC] acceptance rate: {hm['accept_rate']:.3f}  "
          f"step size: {hm['step_size']:.4f}  divergent: {int(np.sum(hm['divergent']))}")

    nt = run_sampler("nuts", m_nuts.nuts, args.cache_dir, tag, log_p_grad, theta0,
                     args.draws, n_warmup=args.warmup, seed=args.seed)
    print(f"[NUTS] mean accept stat: {np.mean(nt['accept_stat']):.3f}  "
          f"mean tree depth: {np.mean(nt['tree_depth']):.2f}  "
          f"divergent: {int(np.sum(nt['divergent']))}")

    # --- 3) Summaries ---
    chains = {
        "Exact": exact_chain,
        "MH": mh["chain"],
        "Gibbs": gb["chain"],
        "HMC": hm["chain"],
        "NUTS": nt["chain"],
    }
    with pd.option_context("display.float_format", "{:.4f}".format,
                           "display.width", 120):
        for label, chain in chains.items():
            print(f"\n[{label}] posterior summary")
            print(m_diag.summarize(chain, names).to_string())

        ess = pd.DataFrame({
            label: [m_diag.effective_sample_size(chain[:, j]) for j in range(k + 1)]
            for label, chain in chains.items()
        }, index=names)
        print("\n[ESS] effective sample size per sampler")
        print(ess.round(0).to_string())


if __name__ == "__main__":
    main()
