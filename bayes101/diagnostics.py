"""
Section 6: MCMC Diagnostics

Draws from a Markov chain are autocorrelated, so n draws carry less
information than n independent ones. This section computes, from scratch,
the usual checks reported alongside a posterior summary:

  * autocorrelation function (via FFT)
  * effective sample size, with Geyer's initial monotone sequence
    estimator applied to the multi-chain autocorrelation
  * split-R-hat: compares within- and between-chain variance after
    splitting every chain in half, so drifts within a chain show up too
  * Monte Carlo standard error of the posterior mean: sd / sqrt(ESS)
"""

import numpy as np
import pandas as pd


def _autocovariance(x):
    """Biased (divide by n) autocovariance of a 1-d series via FFT."""
    n = x.size
    xc = x - x.mean()
    n_fft = 1 << (2 * n - 1).bit_length()
    f = np.fft.rfft(xc, n=n_fft)
    return np.fft.irfft(f * np.conj(f), n=n_fft)[:n] / n


def autocorrelation(x, max_lag=None):
    """
    Sample autocorrelation function.

    Parameters
    ----------
    x : ndarray, shape (n,)
    max_lag : int or None
        Largest lag returned (default n - 1).

    Returns
    -------
    ndarray, shape (max_lag + 1,)
        rho_0 = 1, rho_1, ..., rho_max_lag. NaN for a constant series.
    """
    x = np.asarray(x, dtype=float)
    if x.ndim != 1:
        raise ValueError(f"autocorrelation expects a 1-d series. Got shape {x.shape}.")
    max_lag = x.size - 1 if max_lag is None else min(max_lag, x.size - 1)
    acov = _autocovariance(x)
    if acov[0] <= 0:
        return np.full(max_lag + 1, np.nan)
    return acov[:max_lag + 1] / acov[0]


def _as_chains(draws):
    x = np.asarray(draws, dtype=float)
    if x.ndim == 1:
        x = x[None, :]
    if x.ndim != 2:
        raise ValueError(f"Expected draws of shape (n,) or (m, n). Got {x.shape}.")
    return x


def effective_sample_size(draws):
    """
    Effective sample size of one parameter.

    Combines chains through

        rho_t = 1 - (W - mean_c acov_c(t)) / var_plus,

    then sums autocorrelation pairs rho_{2k} + rho_{2k+1} while positive,
    forcing them to be non-increasing (Geyer 1992):

        ESS = m n / (-1 + 2 sum_k P_k).

    Parameters
    ----------
    draws : ndarray, shape (n,) or (m, n)
        One chain or m chains of equal length.

    Returns
    -------
    float
    """
    x = _as_chains(draws)
    m, n = x.shape
    if n < 4:
        return np.nan

    acov = np.array([_autocovariance(c) for c in x])
    W = np.mean(acov[:, 0]) * n / (n - 1)
    B_over_n = np.var(x.mean(axis=1), ddof=1) if m > 1 else 0.0
    var_plus = W * (n - 1) / n + B_over_n
    if var_plus <= 0:
        return np.nan

    rho = 1 - (W - acov.mean(axis=0)) / var_plus
    rho[0] = 1.0

    total, prev = 0.0, np.inf
    for k in range(n // 2):
        pair = rho[2 * k] + rho[2 * k + 1]
        if pair <= 0:
            break
        pair = min(pair, prev)
        total += pair
        prev = pair

    tau = max(-1 + 2 * total, 1 / np.log10(m * n))
    return m * n / tau


def split_rhat(draws):
    """
    Split-R-hat for one parameter.

    Every chain is cut in half (dropping the middle draw when n is odd)
    and the classic Gelman-Rubin statistic is computed on the 2m halves:

        R_hat = sqrt(var_plus / W),  var_plus = (n'-1)/n' W + B/n'

    Values near 1 indicate the halves agree; > 1.01 is a warning sign.
    """
    x = _as_chains(draws)
    m, n = x.shape
    half = n // 2
    if half < 2:
        return np.nan
    halves = np.vstack([x[:, :half], x[:, n - half:]])
    W = np.mean(np.var(halves, axis=1, ddof=1))
    if W <= 0:
        return np.nan
    B_over_n = np.var(halves.mean(axis=1), ddof=1)
    var_plus = W * (half - 1) / half + B_over_n
    return np.sqrt(var_plus / W)


def mcse(draws):
    """Monte Carlo standard error of the posterior mean: sd / sqrt(ESS)."""
    x = _as_chains(draws)
    return np.std(x, ddof=1) / np.sqrt(effective_sample_size(x))


def summarize(chain, names=None, quantiles=(0.025, 0.5, 0.975)):
    """
    Posterior summary table.

    Parameters
    ----------
    chain : ndarray, shape (n,), (n, d) or (m, n, d)
        Draws from one or several chains.
    names : list of str or None
        Parameter names (default theta[0], theta[1], ...).
    quantiles : sequence of float

    Returns
    -------
    pandas.DataFrame
        One row per parameter with columns mean, sd, mcse, the requested
        quantiles (q2.5, q50, q97.5), ess, r_hat.
    """
    x = np.asarray(chain, dtype=float)
    if x.ndim == 1:
        x = x[None, :, None]
    elif x.ndim == 2:
        x = x[None, :, :]
    elif x.ndim != 3:
        raise ValueError(f"chain must be (n,), (n, d) or (m, n, d). Got {x.shape}.")
    d = x.shape[2]
    if names is None:
        names = [f"theta[{j}]" for j in range(d)]
    if len(names) != d:
        raise ValueError(f"Got {len(names)} names for {d} parameters.")

    rows = []
    for j in range(d):
        draws = x[:, :, j]
        flat = draws.ravel()
        row = dict(mean=flat.mean(), sd=flat.std(ddof=1), mcse=mcse(draws))
        for q, val in zip(quantiles, np.quantile(flat, quantiles)):
            row[f"q{100 * q:g}"] = val
        row["ess"] = effective_sample_size(draws)
        row["r_hat"] = split_rhat(draws)
        rows.append(row)

    return pd.DataFrame(rows, index=pd.Index(names, name="parameter"))
