import numpy as np
import pytest

from bayes101.utils import (
    add_const,
    numerical_gradient,
    numerical_hessian,
    ols_fit,
    tsls_fit,
    with_gradient,
)


def _quadratic():
    A = np.array([[2.0, 0.5, 0.0], [0.5, 1.0, 0.3], [0.0, 0.3, 3.0]])
    return A, (lambda x: 0.5 * x @ A @ x)


def test_add_const_prepends_ones():
    X = add_const(np.arange(5.0))
    assert X.shape == (5, 2)
    assert np.all(X[:, 0] == 1.0)
    assert np.all(add_const(np.ones((4, 3)))[:, 0] == 1.0)


def test_ols_fit_matches_lstsq(regression_data):
    X, y = regression_data["X"], regression_data["y"]
    b, se, e, s2 = ols_fit(X, y)
    np.testing.assert_allclose(b, np.linalg.lstsq(X, y, rcond=None)[0], atol=1e-10)
    np.testing.assert_allclose(X.T @ e, 0.0, atol=1e-8)
    assert se.shape == (3,)
    assert s2 > 0


def test_ols_fit_raises_when_n_leq_k():
    with pytest.raises(ValueError):
        ols_fit(np.ones((3, 3)), np.ones(3))


def test_tsls_equals_ols_when_instruments_are_regressors(regression_data):
    X, y = regression_data["X"], regression_data["y"]
    np.testing.assert_allclose(tsls_fit(X, X, y), ols_fit(X, y)[0], atol=1e-8)


def test_tsls_raises_when_underidentified(regression_data):
    X, y = regression_data["X"], regression_data["y"]
    with pytest.raises(ValueError):
        tsls_fit(X, X[:, :2], y)


def test_numerical_gradient_of_quadratic():
    A, f = _quadratic()
    x = np.array([0.3, -1.2, 2.0])
    np.testing.assert_allclose(numerical_gradient(f, x), A @ x, atol=1e-6)


def test_numerical_hessian_of_quadratic():
    A, f = _quadratic()
    H = numerical_hessian(f, np.array([0.3, -1.2, 2.0]))
    np.testing.assert_allclose(H, A, atol=1e-5)
    np.testing.assert_allclose(H, H.T)


def test_with_gradient_numeric_and_analytic_agree():
    A, f = _quadratic()
    x = np.array([1.0, 0.5, -0.5])
    lp_num, g_num = with_gradient(f)(x)
    lp_an, g_an = with_gradient(f, grad=lambda t: A @ t)(x)
    assert lp_num == lp_an
    np.testing.assert_allclose(g_num, g_an, atol=1e-6)


def test_with_gradient_non_finite_density():
    lp, g = with_gradient(lambda t: -np.inf)(np.zeros(2))
    assert lp == -np.inf
    assert np.all(g == 0)
