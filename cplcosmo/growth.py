"""Linear growth of structure for cplcosmo.

Integrates the growth equation in log(a) for the state u = [D, dD/dln a]:

    du_1/dln a = u_2
    du_2/dln a = -(2 + dln E/dln a) u_2 + 1.5 Omega_m(a) u_1

from a_min = 1/139 (deep in matter domination, D ~ a) to a_max = 1.01,
with u(a_min) = [a_min, a_min]. The growth rate is f = u_2 / u_1.

Key functions:
    solve_growth(params, z=None) -> GrowthSolution
    D_of_z, f_of_z, D_f_of_z

Design choices:
    - Diffrax Tsit5 with PID step control (the growth equation is not stiff
      once radiation is subdominant).
    - Saved mode stores only the unique requested log(a), ascending; results
      are mapped back to the caller's z order.
    - D is not renormalized by default; D(0) differs from 1 by the
      early-time approximation. normalize=True returns D(z)/D(0).
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Any, Optional

import diffrax
import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, Float

from cplcosmo.background import (
    BackgroundArgs,
    _dlogE_dloga_kernel,
    _Omega_m_kernel,
    background_args,
)
from cplcosmo.errors import DomainError, GrowthSolverError, SolveStatus
from cplcosmo.neutrinos import check_neutrino_range
from cplcosmo.ode import StepStats, first_nonfinite, grade_solution, solve_nonstiff, step_stats
from cplcosmo.params import CosmologicalParameters, PrecisionParams

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Right-hand side
# ---------------------------------------------------------------------------

def growth_rhs(loga, u: Float[Array, "2"], bg: BackgroundArgs) -> Float[Array, "2"]:
    """Derivative of [D, dD/dln a] with respect to ln a. Pure; returns a new array."""
    a = jnp.exp(loga)
    D, dD = u[0], u[1]
    ddD = -(2.0 + _dlogE_dloga_kernel(a, bg)) * dD + 1.5 * _Omega_m_kernel(a, bg) * D
    return jnp.stack([dD, ddD])


@functools.partial(
    jax.jit, static_argnames=("dense", "rtol", "atol", "max_steps", "adjoint")
)
def _integrate(bg, t0, t1, loga_save, dense, rtol, atol, max_steps, adjoint):
    if dense:
        saveat = diffrax.SaveAt(t1=True, dense=True)
    else:
        saveat = diffrax.SaveAt(ts=loga_save)
    a_min = jnp.exp(t0)
    y0 = jnp.stack([a_min, a_min])
    return solve_nonstiff(
        growth_rhs, t0, t1, y0, saveat, args=bg,
        rtol=rtol, atol=atol, max_steps=max_steps, adjoint=adjoint,
    )


# ---------------------------------------------------------------------------
# GrowthSolution
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GrowthSolution:
    """Result of one growth integration.

    Dense mode (no redshifts requested): evaluate / D_of_z / f_of_z at any
    log(a) in the span. Saved mode: `loga` and `ys` hold the state at the
    requested points, ascending in a.
    """

    params: CosmologicalParameters
    loga_span: tuple
    status: SolveStatus
    stats: Any
    sol: Any
    dense: bool

    @property
    def loga(self):
        if self.sol is None:
            return jnp.zeros((0,))
        return self.sol.ts

    @property
    def ys(self):
        if self.sol is None:
            return jnp.zeros((0, 2))
        return self.sol.ys

    def _check_loga(self, loga):
        lo, hi = self.loga_span
        loga_np = np.asarray(loga)
        if np.any(loga_np < lo) or np.any(loga_np > hi):
            raise DomainError(
                f"log(a) outside the solved span [{lo:.6g}, {hi:.6g}]"
            )

    def evaluate(self, loga) -> Float[Array, "... 2"]:
        """State [D, dD/dln a] at log(a), from the dense interpolant."""
        if not self.dense:
            raise ValueError("evaluate() needs a dense solution; call solve_growth without z")
        loga = jnp.asarray(loga, dtype=float)
        self._check_loga(loga)
        u = jax.vmap(self.sol.evaluate)(jnp.ravel(loga))
        return u.reshape(loga.shape + (2,))

    def D_of_z(self, z):
        z = jnp.asarray(z, dtype=float)
        return self.evaluate(-jnp.log1p(z))[..., 0]

    def f_of_z(self, z):
        z = jnp.asarray(z, dtype=float)
        u = self.evaluate(-jnp.log1p(z))
        return u[..., 1] / u[..., 0]


# ---------------------------------------------------------------------------
# Solve
# ---------------------------------------------------------------------------

def _loga_span(prec: PrecisionParams):
    return (float(np.log(prec.growth_a_min)), float(np.log(prec.growth_a_max)))


def _loga_of_z(z, prec: PrecisionParams):
    """-log1p(z), checked against the solved span and clipped onto it."""
    z = np.asarray(z, dtype=float)
    lo, hi = _loga_span(prec)
    z_lo = 1.0 / prec.growth_a_max - 1.0
    z_hi = 1.0 / prec.growth_a_min - 1.0
    slack = 1e-12 * max(abs(z_hi), 1.0)
    if np.any(~np.isfinite(z)) or np.any(z < z_lo - slack) or np.any(z > z_hi + slack):
        raise DomainError(
            f"growth redshifts must lie in [{z_lo:.6g}, {z_hi:.6g}], "
            f"got min {np.min(z):.6g}, max {np.max(z):.6g}"
        )
    return np.clip(-np.log1p(z), lo, hi)


def solve_growth(
    params: CosmologicalParameters,
    z=None,
    prec: Optional[PrecisionParams] = None,
    table=None,
) -> GrowthSolution:
    """Integrate the growth equation for one parameter set.

    Args:
        params: cosmological parameters
        z: redshifts to save at; None for a dense solution
        prec: precision parameters
        table: neutrino table to use instead of the shared one

    Returns:
        GrowthSolution (saved mode holds the unique log(a) values, ascending;
        an empty z skips the integration)

    Raises:
        DomainError: if a redshift lies outside the solved span
        GrowthSolverError: if the integration fails
    """
    prec = prec or PrecisionParams()
    loga_save = None if z is None else np.unique(_loga_of_z(z, prec).ravel())
    return _solve(params, loga_save, prec, table)


def _solve(params, loga_save, prec: PrecisionParams, table) -> GrowthSolution:
    bg = background_args(params, table, prec)
    if bg.table is not None:
        check_neutrino_range(params, prec.growth_a_max, bg.table, prec)
    t0, t1 = _loga_span(prec)

    dense = loga_save is None
    if not dense and np.size(loga_save) == 0:
        # Nothing to save; diffrax rejects an empty SaveAt.
        return GrowthSolution(
            params=params, loga_span=(t0, t1), status=SolveStatus.SUCCESS,
            stats=StepStats(0, 0, 0), sol=None, dense=False,
        )
    if not dense:
        loga_save = jnp.asarray(loga_save, dtype=float)

    sol = _integrate(
        bg, t0, t1, loga_save, dense=dense,
        rtol=prec.growth_rtol, atol=prec.growth_atol,
        max_steps=prec.growth_max_steps, adjoint=prec.ode_adjoint,
    )
    status = grade_solution(
        sol, sol.ys, prec.growth_max_rejected_steps,
        prec.growth_degraded_rejected_fraction,
    )
    stats = step_stats(sol)
    logger.debug(
        "growth solve: %d steps (%d accepted, %d rejected)",
        stats.num_steps, stats.num_accepted_steps, stats.num_rejected_steps,
    )

    if status is SolveStatus.FAILED:
        bad = first_nonfinite(sol.ys)
        if bad is None or dense:
            loga_fail = t1
        else:
            loga_fail = float(loga_save[bad])
        raise GrowthSolverError(
            f"growth integration failed ({stats.num_rejected_steps} rejected of "
            f"{stats.num_steps} steps)",
            loga=loga_fail,
            params=params,
        )
    if status is SolveStatus.DEGRADED:
        logger.warning(
            "growth solve degraded: %d of %d steps rejected",
            stats.num_rejected_steps, stats.num_steps,
        )
    return GrowthSolution(
        params=params, loga_span=(t0, t1), status=status,
        stats=stats, sol=sol, dense=dense,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def D_f_of_z(
    z,
    params: CosmologicalParameters,
    normalize: bool = False,
    prec: Optional[PrecisionParams] = None,
    table=None,
):
    """Growth factor D(z) and growth rate f(z) from a single solve.

    Results follow the order (and shape) of `z`; duplicates are allowed.

    Args:
        z: redshift, scalar or array
        params: cosmological parameters
        normalize: return D(z)/D(0) instead of the raw solution
        prec: precision parameters
        table: neutrino table to use instead of the shared one

    Returns:
        (D, f), each with the shape of z
    """
    prec = prec or PrecisionParams()
    z = np.asarray(z, dtype=float)
    if z.size == 0:
        background_args(params, table, prec)
        return jnp.zeros(z.shape), jnp.zeros(z.shape)
    loga = _loga_of_z(z, prec).ravel()
    if normalize:
        loga = np.concatenate([loga, [0.0]])
    loga_unique, inverse = np.unique(loga, return_inverse=True)
    inverse = inverse.ravel()

    growth = _solve(params, loga_unique, prec, table)
    ys = np.asarray(growth.ys)[inverse]

    D = ys[:, 0]
    f = ys[:, 1] / D
    if normalize:
        D = D[:-1] / D[-1]
        f = f[:-1]

    if z.ndim == 0:
        if D.size != 1 or not (np.isfinite(D[0]) and np.isfinite(f[0])):
            raise GrowthSolverError(
                "expected exactly one finite growth value",
                loga=float(loga[0]) if loga.size else None,
                params=params,
            )
    return jnp.asarray(D.reshape(z.shape)), jnp.asarray(f.reshape(z.shape))


def D_of_z(z, params: CosmologicalParameters, normalize: bool = False, prec=None, table=None):
    """Linear growth factor D(z)."""
    return D_f_of_z(z, params, normalize=normalize, prec=prec, table=table)[0]


def f_of_z(z, params: CosmologicalParameters, prec=None, table=None):
    """Linear growth rate f(z) = dln D / dln a."""
    return D_f_of_z(z, params, prec=prec, table=table)[1]
