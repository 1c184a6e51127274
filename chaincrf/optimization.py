"""
Limited-memory quasi-Newton minimization.

``QNMinimizer`` minimizes a differentiable function given as a callable
returning ``(value, gradient)`` for a point ``x``.
"""

import logging
from collections import deque
from typing import Callable, Deque, List, Optional, Tuple

import numpy as np

from .exceptions import ChainCRFError

logger = logging.getLogger(__name__)

DiffFunction = Callable[[np.ndarray], Tuple[float, np.ndarray]]

DEFAULT_MEMORY = 20
C1 = 0.01
STEP_SHRINK = 0.1
MIN_STEP = 1e-20


class SurpriseConvergence(ChainCRFError):
    """The minimizer cannot make progress; the best point so far is kept."""


class QNMinimizer:
    """
    L-BFGS with a backtracking (Armijo) line search.

    Args:
        m: Number of (s, y) correction pairs kept; 0 means up to 20
        max_iterations: Stop after this many iterations (None: no limit)
        monitor: Called as ``monitor(iteration, x, value)`` after each iteration
        verbose: Print one line per iteration
    """

    def __init__(
        self,
        m: int = 0,
        max_iterations: Optional[int] = None,
        monitor: Optional[Callable[[int, np.ndarray, float], None]] = None,
        verbose: bool = False
    ):
        self.m = m if m > 0 else DEFAULT_MEMORY
        self.max_iterations = max_iterations
        self.monitor = monitor
        self.verbose = verbose
        self.values: List[float] = []
        self.iterations = 0

    # ------------------------------------------------------------------
    # Two-loop recursion
    # ------------------------------------------------------------------

    @staticmethod
    def direction(grad: np.ndarray, s_list: Deque[np.ndarray], y_list: Deque[np.ndarray]) -> np.ndarray:
        """Approximate ``H^-1 grad`` from the stored correction pairs."""
        q = grad.copy()
        rhos = [1.0 / float(s @ y) for s, y in zip(s_list, y_list)]
        alphas = []
        for s, y, rho in zip(reversed(s_list), reversed(y_list), reversed(rhos)):
            alpha = rho * float(s @ q)
            q -= alpha * y
            alphas.append(alpha)
        if s_list:
            s, y = s_list[-1], y_list[-1]
            q *= float(s @ y) / float(y @ y)
        for s, y, rho, alpha in zip(s_list, y_list, rhos, reversed(alphas)):
            beta = rho * float(y @ q)
            q += s * (alpha - beta)
        return q

    # ------------------------------------------------------------------
    # Line search
    # ------------------------------------------------------------------

    @staticmethod
    def line_search(
        fn: DiffFunction,
        x: np.ndarray,
        value: float,
        direction: np.ndarray,
        slope: float,
        step: float
    ) -> Tuple[np.ndarray, float, np.ndarray]:
        """
        Shrink ``step`` until the sufficient-decrease condition holds.

        Raises:
            SurpriseConvergence: if the step falls below 1e-20
        """
        while True:
            new_x = x + step * direction
            new_value, new_grad = fn(new_x)
            if new_value <= value + C1 * step * slope:
                return new_x, new_value, new_grad
            step *= STEP_SHRINK
            if step < MIN_STEP:
                raise SurpriseConvergence("line search failure")

    # ------------------------------------------------------------------
    # Convergence
    # ------------------------------------------------------------------

    def converged(self, tolerance: float) -> bool:
        """Average relative improvement over the last (up to) 10 iterations below ``tolerance``."""
        if len(self.values) <= 5:
            return False
        k = min(10, len(self.values) - 1)
        current = self.values[-1]
        improvement = (self.values[-1 - k] - current) / k
        scale = abs(current) if current != 0 else 1.0
        return improvement / scale < tolerance

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def minimize(self, fn: DiffFunction, tolerance: float, initial: np.ndarray) -> np.ndarray:
        """
        Minimize ``fn`` starting at ``initial``.

        Args:
            fn: Returns ``(value, gradient)`` at a point
            tolerance: Relative-improvement convergence threshold
            initial: Starting point (not modified)

        Returns:
            The best point found
        """
        x = np.array(initial, dtype=np.float64)
        self.values = []
        self.iterations = 0
        if x.size == 0:
            return x

        s_list: Deque[np.ndarray] = deque()
        y_list: Deque[np.ndarray] = deque()

        try:
            value, grad = fn(x)
            best_x, best_value = x.copy(), value
            self.values.append(value)
            logger.info("QNMinimizer: %d dimensions, memory %d, initial value %.6f", x.size, self.m, value)

            while self.max_iterations is None or self.iterations < self.max_iterations:
                if not np.any(grad):
                    logger.info("QNMinimizer: zero gradient")
                    break
                try:
                    d = -self.direction(grad, s_list, y_list)
                    slope = float(d @ grad)
                    if slope >= 0:
                        # not a descent direction: restart from steepest descent
                        s_list.clear()
                        y_list.clear()
                        d = -grad
                        slope = float(d @ grad)
                    step = 0.1 if self.iterations < 2 else 1.0
                    new_x, new_value, new_grad = self.line_search(fn, x, value, d, slope, step)

                    s = new_x - x
                    y = new_grad - grad
                    if float(y @ y) == 0:
                        raise SurpriseConvergence("y'y is 0")
                    if float(s @ y) == 0:
                        raise SurpriseConvergence("s'y is 0")
                    if len(s_list) >= self.m:
                        s_list.popleft()
                        y_list.popleft()
                    s_list.append(s)
                    y_list.append(y)
                except MemoryError:
                    if not s_list:
                        raise
                    self.m = max(1, len(s_list))
                    logger.warning("QNMinimizer: out of memory, reducing memory to %d", self.m)
                    s_list.popleft()
                    y_list.popleft()
                    continue

                x, value, grad = new_x, new_value, new_grad
                self.iterations += 1
                self.values.append(value)
                if value < best_value:
                    best_x, best_value = x.copy(), value
                if self.verbose:
                    print(f"  iter {self.iterations:03d} | value={value:.6f} | |g|={np.linalg.norm(grad):.4e}")
                if self.monitor is not None:
                    self.monitor(self.iterations, x, value)
                if self.converged(tolerance):
                    logger.info("QNMinimizer: converged after %d iterations", self.iterations)
                    break
        except SurpriseConvergence as e:
            logger.info("QNMinimizer aborted due to surprise convergence: %s", e)
            if not self.values:
                return x

        logger.info("QNMinimizer: final value %.6f after %d iterations", best_value, self.iterations)
        return best_x
