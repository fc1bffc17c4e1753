"""Quadrature rules for cplcosmo.

Two families:
    - Fixed-order Gauss rules (Gauss-Legendre on a finite interval,
      Gauss-Laguerre on [0, inf)). Nodes come from numpy.polynomial and
      are computed once per order. These are the fast production paths.
    - Adaptive Gauss-Kronrod via quadax.quadgk. Used to build the neutrino
      table and for the reference (validation) distance integrals.

Adaptive results are returned as a QuadratureResult carrying the error
estimate and a SolveStatus, so a caller can tell a converged integral
from one that merely came close.
"""

from __future__ import annotations

import functools
import logging
from typing import NamedTuple, Optional

import jax
import jax.numpy as jnp
import numpy as np
import quadax
from jaxtyping import Array, Float

from cplcosmo.errors import IntegrationError, SolveStatus

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Fixed-order Gauss rules
# ---------------------------------------------------------------------------

@functools.lru_cache(maxsize=None)
def _legendre_nodes(order: int):
    return np.polynomial.legendre.leggauss(order)


@functools.lru_cache(maxsize=None)
def _laguerre_nodes(order: int):
    return np.polynomial.laguerre.laggauss(order)


def gauss_legendre(order: int, lo, hi):
    """Gauss-Legendre nodes and weights mapped from [-1, 1] to [lo, hi].

    x -> (hi - lo)/2 * x + (hi + lo)/2,  w -> (hi - lo)/2 * w.
    `lo` and `hi` may be traced; `order` is static.
    """
    x, w = _legendre_nodes(order)
    half = 0.5 * (hi - lo)
    mid = 0.5 * (hi + lo)
    return half * jnp.asarray(x) + mid, half * jnp.asarray(w)


def gauss_laguerre(order: int):
    """Gauss-Laguerre nodes and weights for the measure e^{-x} on [0, inf)."""
    x, w = _laguerre_nodes(order)
    return jnp.asarray(x), jnp.asarray(w)


# ---------------------------------------------------------------------------
# Adaptive Gauss-Kronrod (quadax)
# ---------------------------------------------------------------------------

class QuadratureResult(NamedTuple):
    """Outcome of an adaptive integration (possibly batched)."""
    value: Float[Array, "..."]
    error: Float[Array, "..."]
    status: SolveStatus
    rtol: float
    domain: Optional[tuple] = None

    @property
    def achieved_rtol(self) -> float:
        value = np.abs(np.asarray(self.value))
        error = np.asarray(self.error)
        with np.errstate(divide="ignore", invalid="ignore"):
            rel = np.where(value > 0, error / value, error)
        return float(np.max(rel)) if rel.size else 0.0

    def unwrap(self, what: str = "integral"):
        """Return `value`, raising IntegrationError if the integration failed."""
        if self.status is SolveStatus.FAILED:
            raise IntegrationError(
                f"{what} did not converge",
                requested_rtol=self.rtol,
                achieved_rtol=self.achieved_rtol,
                domain=self.domain,
            )
        if self.status is SolveStatus.DEGRADED:
            logger.warning(
                "%s: requested rtol %.1e not met (achieved %.2e), result kept",
                what, self.rtol, self.achieved_rtol,
            )
        return self.value


def classify(value, error, rtol, atol=0.0, degraded_factor=100.0) -> SolveStatus:
    """Grade an adaptive integral by comparing its error estimate to the tolerance.

    SUCCESS if err <= max(atol, rtol*|value|) everywhere, DEGRADED if the
    result is finite and within `degraded_factor` of that, FAILED otherwise.
    """
    value = np.asarray(value)
    error = np.asarray(error)
    if not (np.all(np.isfinite(value)) and np.all(np.isfinite(error))):
        return SolveStatus.FAILED
    tol = np.maximum(atol, rtol * np.abs(value))
    if np.all(error <= tol):
        return SolveStatus.SUCCESS
    if np.all(error <= degraded_factor * tol):
        return SolveStatus.DEGRADED
    return SolveStatus.FAILED


@functools.partial(
    jax.jit, static_argnames=("fun", "rtol", "atol", "order", "max_ninter")
)
def _quadgk_batch(fun, intervals, batched, shared, rtol, atol, order, max_ninter):
    def single(interval, row):
        y, info = quadax.quadgk(
            fun, interval, args=(row, shared),
            epsabs=atol, epsrel=rtol, order=order, max_ninter=max_ninter,
        )
        return y, info.err

    return jax.vmap(single)(intervals, batched)


def integrate(
    fun,
    intervals: Float[Array, "B K"],
    batched,
    shared=None,
    rtol: float = 1e-10,
    atol: float = 0.0,
    order: int = 21,
    max_ninter: int = 256,
    degraded_factor: float = 100.0,
    domain: Optional[tuple] = None,
) -> QuadratureResult:
    """Integrate `fun(t, row, shared)` over one interval per batch row.

    Args:
        fun: integrand, a hashable (module-level) function, elementwise in t
        intervals: shape (B, K); row b holds the limits and K-2 breakpoints
            of integral b, np.inf allowed as an upper limit
        batched: pytree whose leaves have leading dimension B, one row per integral
        shared: pytree passed unchanged to every integral (e.g. BackgroundArgs)
        rtol, atol: requested tolerances
        order: Gauss-Kronrod order (15, 21, 31, 41, 51 or 61)
        max_ninter: maximum number of subintervals (static)
        degraded_factor: tolerance multiple still accepted as DEGRADED
        domain: description of the integration domain for error messages

    Returns:
        QuadratureResult with value and error of shape (B,)
    """
    value, error = _quadgk_batch(
        fun, jnp.asarray(intervals), batched, shared,
        rtol=rtol, atol=atol, order=order, max_ninter=max_ninter,
    )
    status = classify(value, error, rtol, atol, degraded_factor)
    return QuadratureResult(value, error, status, rtol, domain)
