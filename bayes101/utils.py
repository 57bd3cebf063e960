"""
Shared numeric helpers used across the estimation sections.

Linear regression building blocks (OLS, linear GMM) and finite-difference
derivatives for log densities that do not come with an analytic gradient.
"""

import numpy as np


def add_const(x):
    """
    Prepend a column of ones (intercept) to the design matrix.

    Parameters
    ----------
    x : ndarray
        1-d array or 2-d matrix of regressors.

    Returns
    -------
    X : ndarray, shape (n, k+1)
        Design matrix with leading ones column.
    """
    x = np.atleast_2d(x).T if x.ndim == 1 else x
    return np.column_stack([np.ones(x.shape[0]), x])


def ols_fit(X, y):
    """
    OLS estimation via the normal equations.

    Parameters
    ----------
    X : ndarray, shape (n, k)
        Design matrix.
    y : ndarray, shape (n,)
        Outcome vector.

    Returns
    -------
    b : ndarray, shape (k,)
        Coefficient estimates  beta_hat = (X'X)^{-1} X'y.
    se : ndarray, shape (k,)
        Homoskedastic standard errors.
    e : ndarray, shape (n,)
        Residuals  y - X @ b.
    s2 : float
        Estimated error variance  e'e / (n - k).
    """
    n, k = X.shape
    if n <= k:
        raise ValueError(f"Need n > k for OLS. Got n={n}, k={k}.")
    b = np.linalg.lstsq(X, y, rcond=None)[0]
    e = y - X @ b
    s2 = (e @ e) / (n - k)
    se = np.sqrt(np.diag(s2 * np.linalg.inv(X.T @ X)))
    return b, se, e, s2


def tsls_fit(X, Z, y, W=None):
    """
    Linear GMM / two-stage least squares.

        b = (X'Z W Z'X)^{-1} X'Z W Z'y

    With W = (Z'Z)^{-1} (the default) this is 2SLS.

    Parameters
    ----------
    X : ndarray, shape (n, k)
        Regressors (endogenous and exogenous).
    Z : ndarray, shape (n, m)
        Instruments, m >= k.
    y : ndarray, shape (n,)
    W : ndarray, shape (m, m) or None
        Moment weighting matrix.

    Returns
    -------
    ndarray, shape (k,)
    """
    if Z.shape[1] < X.shape[1]:
        raise ValueError(
            f"Need at least as many instruments as regressors. "
            f"Got {Z.shape[1]} instruments for {X.shape[1]} regressors."
        )
    if W is None:
        W = np.linalg.inv(Z.T @ Z)
    XZ = X.T @ Z
    A = XZ @ W @ XZ.T
    return np.linalg.solve(A, XZ @ W @ (Z.T @ y))


def numerical_gradient(f, theta, eps=1e-6, args=()):
    """
    Central finite-difference gradient of a scalar function.

    Parameters
    ----------
    f : callable
        f(theta, *args) -> float.
    theta : ndarray, shape (d,)
    eps : float
        Step, scaled by max(1, |theta_j|) per coordinate.

    Returns
    -------
    ndarray, shape (d,)
    """
    theta = np.asarray(theta, dtype=float)
    g = np.empty(theta.size)
    for j in range(theta.size):
        h = eps * max(1.0, abs(theta[j]))
        up = theta.copy()
        dn = theta.copy()
        up[j] += h
        dn[j] -= h
        g[j] = (f(up, *args) - f(dn, *args)) / (2 * h)
    return g


def numerical_hessian(f, theta, eps=1e-4, args=()):
    """
    Numerical Hessian of f at theta.

        H_ij = [f(+h_i +h_j) - f(+h_i -h_j) - f(-h_i +h_j) + f(-h_i -h_j)]
               / (4 h_i h_j)

    Returns
    -------
    H : ndarray, shape (d, d)
    """
    theta = np.asarray(theta, dtype=float)
    d = theta.size
    h = eps * np.maximum(1.0, np.abs(theta))
    H = np.empty((d, d))
    for i in range(d):
        for j in range(i, d):
            vals = []
            for si, sj in ((1, 1), (1, -1), (-1, 1), (-1, -1)):
                x = theta.copy()
                x[i] += si * h[i]
                x[j] += sj * h[j]
                vals.append(f(x, *args))
            H[i, j] = H[j, i] = (vals[0] - vals[1] - vals[2] + vals[3]) / (4 * h[i] * h[j])
    return H


def with_gradient(log_p, grad=None, eps=1e-6):
    """
    Wrap a log density into the (log_p, grad) form the gradient-based
    samplers expect.

    If `grad` is None the gradient is computed numerically. Non-finite
    log densities are returned with a zero gradient; the samplers treat
    them as rejections.
    """
    def log_p_grad(theta):
        lp = log_p(theta)
        if not np.isfinite(lp):
            return -np.inf, np.zeros(np.size(theta))
        if grad is None:
            return lp, numerical_gradient(log_p, theta, eps=eps)
        return lp, np.asarray(grad(theta), dtype=float)

    return log_p_grad
