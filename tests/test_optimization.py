from collections import deque

import numpy as np
import pytest

from chaincrf.optimization import QNMinimizer


def quadratic(a, b):
    """f(x) = 0.5 * sum(a * x^2) - b.x, minimized at b / a."""
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)

    def fn(x):
        return 0.5 * float(np.sum(a * x * x)) - float(b @ x), a * x - b
    return fn


def dense_quadratic(seed=0, dim=5):
    rng = np.random.default_rng(seed)
    m = rng.normal(size=(dim, dim))
    A = m @ m.T + np.eye(dim)
    b = rng.normal(size=dim)

    def fn(x):
        return 0.5 * float(x @ A @ x) - float(b @ x), A @ x - b
    return fn, np.linalg.solve(A, b)


class TestQNMinimizer:

    def test_diagonal_quadratic(self):
        minimizer = QNMinimizer(m=5)
        x = minimizer.minimize(quadratic([1, 2, 3], [1, -1, 2]), 1e-12, np.zeros(3))
        assert x == pytest.approx([1.0, -0.5, 2.0 / 3.0], abs=1e-4)
        assert minimizer.iterations > 0
        assert minimizer.values[0] == 0.0

    def test_dense_quadratic(self):
        fn, expected = dense_quadratic()
        x = QNMinimizer().minimize(fn, 1e-12, np.zeros(5))
        assert x == pytest.approx(expected, abs=1e-4)

    def test_initial_point_not_modified(self):
        initial = np.ones(3)
        QNMinimizer().minimize(quadratic([1, 2, 3], [1, -1, 2]), 1e-8, initial)
        assert list(initial) == [1.0, 1.0, 1.0]

    def test_zero_dimensional(self):
        def fn(x):
            raise AssertionError("should not be evaluated")
        x = QNMinimizer().minimize(fn, 1e-6, np.zeros(0))
        assert x.shape == (0,)

    def test_max_iterations_and_monitor(self):
        seen = []
        minimizer = QNMinimizer(max_iterations=3, monitor=lambda i, x, v: seen.append(i))
        minimizer.minimize(quadratic([1, 10, 100], [1, 1, 1]), 1e-12, np.zeros(3))
        assert minimizer.iterations == 3
        assert seen == [1, 2, 3]
        assert len(minimizer.values) == 4

    def test_verbose_prints_iterations(self, capsys):
        QNMinimizer(max_iterations=2, verbose=True).minimize(
            quadratic([1, 2], [1, 1]), 1e-12, np.zeros(2))
        out = capsys.readouterr().out
        assert "iter 001" in out and "iter 002" in out

    def test_linear_function_stops_at_start(self):
        c = np.array([1.0, -2.0])
        minimizer = QNMinimizer()
        initial = np.array([0.5, 0.5])
        x = minimizer.minimize(lambda x: (float(c @ x), c.copy()), 1e-6, initial)
        assert np.array_equal(x, initial)
        assert minimizer.iterations == 0

    def test_zero_gradient_at_start(self):
        minimizer = QNMinimizer()
        x = minimizer.minimize(quadratic([1, 1], [0, 0]), 1e-6, np.zeros(2))
        assert list(x) == [0.0, 0.0]
        assert minimizer.iterations == 0

    def test_out_of_memory_shrinks_history(self):
        minimizer = QNMinimizer(m=10)
        base = quadratic([1, 2, 3, 4], [1, 1, 1, 1])
        raised = []

        def fn(x):
            if minimizer.iterations >= 2 and not raised:
                raised.append(True)
                raise MemoryError()
            return base(x)

        x = minimizer.minimize(fn, 1e-12, np.zeros(4))
        assert raised
        assert minimizer.m == 2
        assert x == pytest.approx([1.0, 0.5, 1.0 / 3.0, 0.25], abs=1e-4)

    def test_out_of_memory_without_history(self):
        calls = []

        def fn(x):
            calls.append(1)
            if len(calls) > 1:
                raise MemoryError()
            return 1.0, np.ones_like(x)

        with pytest.raises(MemoryError):
            QNMinimizer().minimize(fn, 1e-6, np.zeros(2))


class TestConvergence:

    def test_needs_history(self):
        minimizer = QNMinimizer()
        minimizer.values = [5.0, 4.0, 4.0, 4.0, 4.0]
        assert not minimizer.converged(1e-4)

    def test_relative_improvement(self):
        minimizer = QNMinimizer()
        minimizer.values = [10.0, 9.0, 8.0, 7.0, 6.0, 5.0]
        assert not minimizer.converged(0.1)
        assert minimizer.converged(0.5)
        minimizer.values = [1.0] * 7
        assert minimizer.converged(1e-8)


class TestDirection:

    def test_no_history_is_gradient(self):
        grad = np.array([1.0, -2.0])
        d = QNMinimizer.direction(grad, deque(), deque())
        assert list(d) == [1.0, -2.0]
        assert d is not grad

    def test_recovers_inverse_hessian_of_quadratic(self):
        A = np.diag([2.0, 5.0])
        s_list = deque([np.array([1.0, 0.0]), np.array([0.0, 1.0])])
        y_list = deque([A @ s for s in s_list])
        grad = np.array([4.0, 10.0])
        assert QNMinimizer.direction(grad, s_list, y_list) == pytest.approx([2.0, 2.0])
