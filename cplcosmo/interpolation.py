"""Differentiable cubic spline interpolation for cplcosmo.

Provides a cubic spline class registered as a JAX pytree, so it can live
inside other pytrees (e.g., NeutrinoIntegralTable) and flow through
jit/grad/vmap.

Boundary conditions are natural (S'' = 0) by default, or clamped to a given
first derivative at either end. Outside the knot range the spline either
clamps to the boundary value or extends the boundary cubic (extrapolation).

The tridiagonal system is solved with the Thomas algorithm via
jax.lax.fori_loop; interval lookup uses jnp.searchsorted.
"""

from __future__ import annotations

from typing import Optional

import jax
import jax.numpy as jnp
from jaxtyping import Array, Float


@jax.tree_util.register_pytree_node_class
class CubicSpline:
    """Cubic spline interpolation, registered as a JAX pytree.

    Attributes:
        x: knot positions, shape (N,), strictly increasing
        y: knot values, shape (N,)
        d2y: second derivatives at knots, shape (N,), from tridiagonal solve
        extrapolate: if True, evaluate the boundary cubic outside [x[0], x[-1]];
            otherwise clamp evaluation points to the knot range
    """

    def __init__(
        self,
        x: Float[Array, "N"],
        y: Float[Array, "N"],
        dy_start: Optional[float] = None,
        dy_end: Optional[float] = None,
        extrapolate: bool = False,
    ):
        """Build cubic spline from knot positions and values.

        Args:
            x: knot positions, shape (N,), N >= 3, strictly increasing
            y: knot values, shape (N,)
            dy_start: first derivative at x[0] (clamped end); None for natural
            dy_end: first derivative at x[-1] (clamped end); None for natural
            extrapolate: extend the boundary cubics beyond the knot range
        """
        self.x = jnp.asarray(x)
        self.y = jnp.asarray(y)
        self.d2y = _compute_spline_coeffs(self.x, self.y, dy_start, dy_end)
        self.extrapolate = extrapolate

    def _locate(self, x_eval):
        x_eval = jnp.asarray(x_eval)
        if not self.extrapolate:
            x_eval = jnp.clip(x_eval, self.x[0], self.x[-1])
        idx = jnp.searchsorted(self.x, x_eval, side="right") - 1
        idx = jnp.clip(idx, 0, len(self.x) - 2)

        h = self.x[idx + 1] - self.x[idx]
        A = (self.x[idx + 1] - x_eval) / h
        B = (x_eval - self.x[idx]) / h
        return idx, h, A, B

    def evaluate(self, x_eval: Float[Array, "..."]) -> Float[Array, "..."]:
        """Evaluate the spline at given points.

        S(x) = A*y_i + B*y_{i+1} + (A^3 - A)*d2y_i*h^2/6 + (B^3 - B)*d2y_{i+1}*h^2/6
        where A = (x_{i+1} - x) / h, B = (x - x_i) / h, h = x_{i+1} - x_i.
        """
        idx, h, A, B = self._locate(x_eval)
        return (
            A * self.y[idx]
            + B * self.y[idx + 1]
            + ((A**3 - A) * self.d2y[idx] + (B**3 - B) * self.d2y[idx + 1])
            * h**2
            / 6.0
        )

    def __call__(self, x_eval):
        return self.evaluate(x_eval)

    def derivative(self, x_eval: Float[Array, "..."]) -> Float[Array, "..."]:
        """Evaluate the first derivative of the spline.

        S'(x) = (y_{i+1} - y_i)/h - (3A^2 - 1)*d2y_i*h/6 + (3B^2 - 1)*d2y_{i+1}*h/6
        """
        idx, h, A, B = self._locate(x_eval)
        return (
            (self.y[idx + 1] - self.y[idx]) / h
            - (3.0 * A**2 - 1.0) * self.d2y[idx] * h / 6.0
            + (3.0 * B**2 - 1.0) * self.d2y[idx + 1] * h / 6.0
        )

    # --- JAX pytree registration ---

    def tree_flatten(self):
        children = (self.x, self.y, self.d2y)
        aux_data = self.extrapolate
        return children, aux_data

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        obj = object.__new__(cls)
        obj.x, obj.y, obj.d2y = children
        obj.extrapolate = aux_data
        return obj


def _compute_spline_coeffs(
    x: Float[Array, "N"],
    y: Float[Array, "N"],
    dy_start: Optional[float] = None,
    dy_end: Optional[float] = None,
) -> Float[Array, "N"]:
    """Compute second derivatives at the knots via the Thomas algorithm.

    Interior rows (i = 1..N-2):
        h_{i-1} M_{i-1} + 2(h_{i-1} + h_i) M_i + h_i M_{i+1}
            = 6 [(y_{i+1}-y_i)/h_i - (y_i-y_{i-1})/h_{i-1}]
    Boundary rows:
        natural: M_0 = 0 (resp. M_{N-1} = 0)
        clamped: 2 h_0 M_0 + h_0 M_1 = 6 [(y_1-y_0)/h_0 - y'_0]
                 h_{N-2} M_{N-2} + 2 h_{N-2} M_{N-1} = 6 [y'_{N-1} - (y_{N-1}-y_{N-2})/h_{N-2}]

    Args:
        x: knot positions, shape (N,)
        y: knot values, shape (N,)
        dy_start, dy_end: clamped end slopes, or None for natural ends

    Returns:
        d2y: second derivatives at knots, shape (N,)
    """
    n = x.shape[0]
    h = x[1:] - x[:-1]  # (N-1,)
    slope = (y[1:] - y[:-1]) / h  # (N-1,)

    zero = jnp.zeros(1, dtype=h.dtype)
    one = jnp.ones(1, dtype=h.dtype)

    # Sub-diagonal lower[i] couples row i to M_{i-1} (lower[0] unused)
    # Super-diagonal upper[i] couples row i to M_{i+1} (upper[N-1] unused)
    lower_int = h[:-1]
    diag_int = 2.0 * (h[:-1] + h[1:])
    upper_int = h[1:]
    rhs_int = 6.0 * (slope[1:] - slope[:-1])

    if dy_start is None:
        diag_0, upper_0, rhs_0 = one, zero, zero
    else:
        diag_0 = 2.0 * h[:1]
        upper_0 = h[:1]
        rhs_0 = 6.0 * (slope[:1] - dy_start)

    if dy_end is None:
        lower_n, diag_n, rhs_n = zero, one, zero
    else:
        lower_n = h[-1:]
        diag_n = 2.0 * h[-1:]
        rhs_n = 6.0 * (dy_end - slope[-1:])

    lower = jnp.concatenate([zero, lower_int, lower_n])
    diag = jnp.concatenate([diag_0, diag_int, diag_n])
    upper = jnp.concatenate([upper_0, upper_int, zero])
    rhs = jnp.concatenate([rhs_0, rhs_int, rhs_n])

    # Thomas algorithm: forward sweep
    def forward_step(i, carry):
        d, r = carry
        w = lower[i] / d[i - 1]
        d = d.at[i].set(d[i] - w * upper[i - 1])
        r = r.at[i].set(r[i] - w * r[i - 1])
        return (d, r)

    diag_mod, rhs_mod = jax.lax.fori_loop(1, n, forward_step, (diag, rhs))

    # Thomas algorithm: back substitution
    d2y = jnp.zeros(n, dtype=h.dtype)
    d2y = d2y.at[-1].set(rhs_mod[-1] / diag_mod[-1])

    def backward_step(i, d2y):
        j = n - 2 - i  # counts down from n-2 to 0
        d2y = d2y.at[j].set((rhs_mod[j] - upper[j] * d2y[j + 1]) / diag_mod[j])
        return d2y

    d2y = jax.lax.fori_loop(0, n - 1, backward_step, d2y)
    return d2y
