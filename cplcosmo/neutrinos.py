"""Massive neutrino phase-space integrals for cplcosmo.

The energy density of one massive neutrino species, relative to the photon
density, is set by the Fermi-Dirac integral

    F(y) = int_0^inf x^2 sqrt(x^2 + y^2) / (1 + e^x) dx,
    y = m_nu a / (k_B T_nu),

and its y-derivative

    dF/dy(y) = y int_0^inf x^2 / [(1 + e^x) sqrt(x^2 + y^2)] dx.

Both are evaluated by adaptive Gauss-Kronrod quadrature (quadax) to 1e-12
relative tolerance. Since they are needed at many (a, m_nu) pairs, a cubic
spline table over y is built once and shared read-only afterwards.

Key functions:
    F_of_y, dFdy_of_y            direct quadrature (slow, exact)
    get_neutrino_table(prec)     lazily built, cached NeutrinoIntegralTable
    check_neutrino_range(...)    extrapolation policy for large masses
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, Float

from cplcosmo import constants as const
from cplcosmo.errors import DomainError
from cplcosmo.interpolation import CubicSpline
from cplcosmo.params import CosmologicalParameters, PrecisionParams, _concrete
from cplcosmo.quadrature import integrate

logger = logging.getLogger(__name__)


def y_of_mass(m_nu, a):
    """Dimensionless mass-to-temperature ratio y = m_nu a / (k_B T_nu)."""
    return m_nu * a / (const.k_B_eV * const.T_nu)


# ---------------------------------------------------------------------------
# Integrands (written with e^{-x} so nothing overflows at large x)
# ---------------------------------------------------------------------------

def _fermi_dirac(x):
    e = jnp.exp(-x)
    return e / (1.0 + e)


def _F_integrand(x, y, shared):
    return x**2 * jnp.sqrt(x**2 + y**2) * _fermi_dirac(x)


def _dFdy_integrand(x, y, shared):
    r = jnp.sqrt(x**2 + y**2)
    # x^2 / r -> 0 at x = y = 0
    ratio = jnp.where(r > 0.0, x**2 / jnp.where(r > 0.0, r, 1.0), 0.0)
    return y * ratio * _fermi_dirac(x)


def _integrate_over_x(integrand, y, prec: PrecisionParams, what: str):
    y = jnp.asarray(y, dtype=float)
    y_flat = jnp.ravel(y)
    intervals = jnp.broadcast_to(jnp.array([0.0, jnp.inf]), (y_flat.shape[0], 2))
    result = integrate(
        integrand, intervals, y_flat,
        rtol=prec.nu_rtol, atol=prec.nu_atol,
        order=prec.nu_quad_order, max_ninter=prec.quad_max_ninter,
        degraded_factor=prec.quad_degraded_factor,
        domain=(0.0, float("inf")),
    )
    return result.unwrap(what).reshape(y.shape)


def F_of_y(y, prec: Optional[PrecisionParams] = None):
    """F(y) by direct adaptive quadrature. Raises IntegrationError on non-convergence."""
    prec = prec or PrecisionParams()
    return _integrate_over_x(_F_integrand, y, prec, "F(y)")


def dFdy_of_y(y, prec: Optional[PrecisionParams] = None):
    """dF/dy(y) by direct adaptive quadrature. Raises IntegrationError on non-convergence."""
    prec = prec or PrecisionParams()
    return _integrate_over_x(_dFdy_integrand, y, prec, "dF/dy(y)")


# ---------------------------------------------------------------------------
# NeutrinoIntegralTable
# ---------------------------------------------------------------------------

@jax.tree_util.register_pytree_node_class
@dataclass(frozen=True)
class NeutrinoIntegralTable:
    """Cubic spline tables of F(y) and dF/dy(y).

    Splines extrapolate beyond the grid; whether that is allowed is decided
    by check_neutrino_range before a table is used.
    """

    y: Float[Array, "N"]
    F_spline: CubicSpline
    dFdy_spline: CubicSpline

    @property
    def y_max(self) -> float:
        return float(self.y[-1])

    def F(self, y):
        return self.F_spline.evaluate(y)

    def dFdy(self, y):
        return self.dFdy_spline.evaluate(y)

    @classmethod
    def from_values(cls, y, F_values, dFdy_values) -> NeutrinoIntegralTable:
        """Build the splines from tabulated values on the grid `y` (y[0] = 0)."""
        y = jnp.asarray(y)
        F_values = jnp.asarray(F_values)
        dFdy_values = jnp.asarray(dFdy_values)
        F_spline = CubicSpline(
            y, F_values, dy_start=0.0, dy_end=dFdy_values[-1], extrapolate=True,
        )
        dFdy_spline = CubicSpline(
            y, dFdy_values, dy_start=const.d2F_dy2_massless, extrapolate=True,
        )
        return cls(y=y, F_spline=F_spline, dFdy_spline=dFdy_spline)

    def tree_flatten(self):
        return (self.y, self.F_spline, self.dFdy_spline), None

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        return cls(*children)


def neutrino_y_grid(prec: PrecisionParams) -> np.ndarray:
    """Linear on [0, nu_y_linear_max], geometric from there to nu_y_max."""
    y_lin = np.linspace(0.0, prec.nu_y_linear_max, prec.nu_n_linear)
    y_log = np.geomspace(prec.nu_y_linear_max, prec.nu_y_max, prec.nu_n_log)
    return np.concatenate([y_lin, y_log[1:]])


def build_neutrino_table(prec: Optional[PrecisionParams] = None) -> NeutrinoIntegralTable:
    """Tabulate F and dF/dy by adaptive quadrature and fit the splines."""
    prec = prec or PrecisionParams()
    y = neutrino_y_grid(prec)
    t0 = time.perf_counter()
    F_values = F_of_y(y, prec)
    dFdy_values = dFdy_of_y(y, prec)
    table = NeutrinoIntegralTable.from_values(y, F_values, dFdy_values)
    logger.debug(
        "built neutrino table: %d points on y in [0, %.3g] in %.2f s",
        y.size, prec.nu_y_max, time.perf_counter() - t0,
    )
    return table


# ---------------------------------------------------------------------------
# Shared table cache
# ---------------------------------------------------------------------------

_TABLES: dict = {}
_TABLES_LOCK = threading.Lock()


def get_neutrino_table(prec: Optional[PrecisionParams] = None) -> NeutrinoIntegralTable:
    """Return the shared table for `prec`, building it on first use."""
    prec = prec or PrecisionParams()
    key = prec.neutrino_table_key()
    table = _TABLES.get(key)
    if table is None:
        with _TABLES_LOCK:
            table = _TABLES.get(key)
            if table is None:
                table = build_neutrino_table(prec)
                _TABLES[key] = table
    return table


def set_neutrino_table(table: NeutrinoIntegralTable, prec: Optional[PrecisionParams] = None):
    """Install `table` as the shared table for `prec` (e.g. a restricted table in tests)."""
    prec = prec or PrecisionParams()
    with _TABLES_LOCK:
        _TABLES[prec.neutrino_table_key()] = table


def clear_neutrino_tables():
    """Drop all cached tables; the next use rebuilds them."""
    with _TABLES_LOCK:
        _TABLES.clear()


def check_neutrino_range(
    params: CosmologicalParameters,
    a_max,
    table: NeutrinoIntegralTable,
    prec: Optional[PrecisionParams] = None,
):
    """Apply the extrapolation policy for y beyond the table range.

    The largest y needed is max(m_nu) * a_max / (k_B T_nu). Beyond
    table.y_max the splines extrapolate: with prec.nu_extrapolate this is
    logged as a warning, otherwise DomainError is raised. A traced a_max
    cannot be checked and is skipped.
    """
    prec = prec or PrecisionParams()
    masses = params.massive_species
    a_max = _concrete(a_max)
    if not masses or a_max is None:
        return
    y_needed = float(y_of_mass(max(masses), a_max))
    y_max = table.y_max
    if y_needed <= y_max:
        return
    if not prec.nu_extrapolate:
        raise DomainError(
            f"neutrino y = {y_needed:.4g} (m_nu = {max(masses)} eV, a = {a_max:.4g}) "
            f"exceeds the table range y_max = {y_max:.4g}"
        )
    logger.warning(
        "neutrino y = %.4g exceeds table range y_max = %.4g; extrapolating",
        y_needed, y_max,
    )
