"""Background expansion for cplcosmo.

Normalized Hubble rate of a flat w0waCDM universe,

    E(a)^2 = Omega_g0 a^-4 + Omega_cb0 a^-3 + Omega_de0 rho_de(a) + Omega_nu E^2(a),

with CPL dark energy rho_de(a) = a^{-3(1+w0+wa)} e^{3 wa (a-1)} and the
massive-neutrino term built from the Fermi-Dirac integral table. The
dark-energy density today is fixed by flatness,
Omega_de0 = 1 - (Omega_g0 + Omega_cb0 + Omega_nu0).

Key functions:
    background_args(params) -> BackgroundArgs
    E_of_a, E_of_z, Omega_m_of_a, dlogE_dloga

Design choices:
    - Each quantity is a scalar kernel of (a, BackgroundArgs), mapped
      elementwise with jax.vmap and compiled with jax.jit.
    - Massless species contribute nothing; with no massive species the
      table is None and the neutrino terms vanish without being evaluated.
    - The closure is checked when the arguments are assembled, so a
      negative Omega_de0 raises instead of producing NaN.
"""

from __future__ import annotations

from typing import NamedTuple, Optional

import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, Float

from cplcosmo import constants as const
from cplcosmo.errors import InvalidCosmologyError
from cplcosmo.neutrinos import (
    NeutrinoIntegralTable,
    check_neutrino_range,
    get_neutrino_table,
    y_of_mass,
)
from cplcosmo.params import CosmologicalParameters, PrecisionParams, _concrete


# ---------------------------------------------------------------------------
# Closed-form pieces (elementwise in a, z)
# ---------------------------------------------------------------------------

def a_of_z(z):
    """Scale factor a = 1/(1+z)."""
    return 1.0 / (1.0 + z)


def w_de_of_a(a, w0, wa):
    """CPL equation of state w(a) = w0 + wa (1 - a)."""
    return w0 + wa * (1.0 - a)


def rho_de_of_a(a, w0, wa):
    """Dark energy density relative to today, rho_de(a)/rho_de(1)."""
    return jnp.power(a, -3.0 * (1.0 + w0 + wa)) * jnp.exp(3.0 * wa * (a - 1.0))


def rho_de_of_z(z, w0, wa):
    """rho_de as a function of redshift."""
    return jnp.power(1.0 + z, 3.0 * (1.0 + w0 + wa)) * jnp.exp(-3.0 * wa * z / (1.0 + z))


def drho_de_da(a, w0, wa):
    """d rho_de / da = 3 (-(1+w0+wa)/a + wa) rho_de."""
    return 3.0 * (-(1.0 + w0 + wa) / a + wa) * rho_de_of_a(a, w0, wa)


# ---------------------------------------------------------------------------
# BackgroundArgs
# ---------------------------------------------------------------------------

class BackgroundArgs(NamedTuple):
    """Everything the background kernels need, as a pytree.

    m_nu holds the massive species only; table is None when there are none.
    """
    Omega_cb0: Float[Array, ""]
    Omega_g0: Float[Array, ""]
    Omega_nu0: Float[Array, ""]
    Omega_de0: Float[Array, ""]
    m_nu: Float[Array, "n_nu"]
    w0: Float[Array, ""]
    wa: Float[Array, ""]
    table: Optional[NeutrinoIntegralTable]


def _omega_nu_E2(a, bg: BackgroundArgs):
    if bg.table is None:
        return jnp.zeros_like(a)
    F = bg.table.F(y_of_mass(bg.m_nu, a))
    return const.nu_prefactor * bg.Omega_g0 / a**4 * jnp.sum(F)


def _domega_nu_E2_da(a, bg: BackgroundArgs):
    if bg.table is None:
        return jnp.zeros_like(a)
    y = y_of_mass(bg.m_nu, a)
    dy_da = bg.m_nu / (const.k_B_eV * const.T_nu)
    terms = -4.0 * bg.table.F(y) / a**5 + bg.table.dFdy(y) * dy_da / a**4
    return const.nu_prefactor * bg.Omega_g0 * jnp.sum(terms)


def background_args(
    params: CosmologicalParameters,
    table: Optional[NeutrinoIntegralTable] = None,
    prec: Optional[PrecisionParams] = None,
) -> BackgroundArgs:
    """Assemble the density parameters today and close the budget.

    Raises:
        InvalidCosmologyError: if Omega_de0 = 1 - (Omega_g0 + Omega_cb0 + Omega_nu0) < 0
        DomainError: if the neutrino table does not cover a = 1 and
            extrapolation is disabled
    """
    prec = prec or PrecisionParams()
    masses = params.massive_species
    if masses:
        table = table if table is not None else get_neutrino_table(prec)
        check_neutrino_range(params, 1.0, table, prec)
    else:
        table = None

    Omega_cb0 = params.Omega_cb0
    Omega_g0 = const.Omega_g_h2 / params.h**2
    bg = BackgroundArgs(
        Omega_cb0=Omega_cb0,
        Omega_g0=Omega_g0,
        Omega_nu0=jnp.zeros(()),
        Omega_de0=jnp.zeros(()),
        m_nu=jnp.asarray(masses, dtype=float).reshape(len(masses)),
        w0=params.w0,
        wa=params.wa,
        table=table,
    )
    Omega_nu0 = _omega_nu_E2(jnp.asarray(1.0), bg)
    Omega_de0 = 1.0 - (Omega_g0 + Omega_cb0 + Omega_nu0)

    closure = _concrete(Omega_de0)
    if closure is not None and not closure >= 0.0:
        raise InvalidCosmologyError(
            f"flatness closure Omega_de0 = {closure:.6g} is negative or not finite "
            f"(Omega_cb0 = {float(Omega_cb0):.6g}, Omega_nu0 = {float(Omega_nu0):.6g})"
        )
    return bg._replace(Omega_nu0=Omega_nu0, Omega_de0=Omega_de0)


# ---------------------------------------------------------------------------
# Scalar kernels
# ---------------------------------------------------------------------------

def _E2_kernel(a, bg: BackgroundArgs):
    return (
        bg.Omega_g0 / a**4
        + bg.Omega_cb0 / a**3
        + bg.Omega_de0 * rho_de_of_a(a, bg.w0, bg.wa)
        + _omega_nu_E2(a, bg)
    )


def _E_kernel(a, bg: BackgroundArgs):
    return jnp.sqrt(_E2_kernel(a, bg))


def _Omega_m_kernel(a, bg: BackgroundArgs):
    return bg.Omega_cb0 / a**3 / _E2_kernel(a, bg)


def _dlogE_dloga_kernel(a, bg: BackgroundArgs):
    dE2_da = (
        -3.0 * bg.Omega_cb0 / a**4
        - 4.0 * bg.Omega_g0 / a**5
        + bg.Omega_de0 * drho_de_da(a, bg.w0, bg.wa)
        + _domega_nu_E2_da(a, bg)
    )
    return a / (2.0 * _E2_kernel(a, bg)) * dE2_da


_omega_nu_E2_batch = jax.jit(jax.vmap(_omega_nu_E2, in_axes=(0, None)))
_domega_nu_E2_da_batch = jax.jit(jax.vmap(_domega_nu_E2_da, in_axes=(0, None)))
_E_batch = jax.jit(jax.vmap(_E_kernel, in_axes=(0, None)))
_Omega_m_batch = jax.jit(jax.vmap(_Omega_m_kernel, in_axes=(0, None)))
_dlogE_dloga_batch = jax.jit(jax.vmap(_dlogE_dloga_kernel, in_axes=(0, None)))


def _max_concrete(x):
    """Largest element of x, or None if x is traced."""
    try:
        x = np.asarray(x)
        return float(np.max(x)) if x.size else None
    except (TypeError, jax.errors.ConcretizationTypeError, jax.errors.TracerArrayConversionError):
        return None


def _prepare(a, params, table, prec):
    bg = background_args(params, table, prec)
    a = jnp.asarray(a, dtype=float)
    a_max = _max_concrete(a)
    if bg.table is not None and a_max is not None and a_max > 1.0:
        check_neutrino_range(params, a_max, bg.table, prec)
    return a, bg


def _apply(batch_fn, a, bg):
    return batch_fn(jnp.ravel(a), bg).reshape(a.shape)


# ---------------------------------------------------------------------------
# Public API (scalar or array input, same shape out)
# ---------------------------------------------------------------------------

def Omega_nu_E2(a, params: CosmologicalParameters, table=None, prec=None):
    """Massive-neutrino energy density in units of the critical density today."""
    a, bg = _prepare(a, params, table, prec)
    return _apply(_omega_nu_E2_batch, a, bg)


def dOmega_nu_E2_da(a, params: CosmologicalParameters, table=None, prec=None):
    """Derivative of Omega_nu_E2 with respect to a."""
    a, bg = _prepare(a, params, table, prec)
    return _apply(_domega_nu_E2_da_batch, a, bg)


def E_of_a(a, params: CosmologicalParameters, table=None, prec=None):
    """Normalized Hubble rate E(a) = H(a)/H0.

    Args:
        a: scale factor, scalar or array
        params: cosmological parameters
        table: neutrino table to use instead of the shared one
        prec: precision parameters

    Returns:
        E(a), same shape as a
    """
    a, bg = _prepare(a, params, table, prec)
    return _apply(_E_batch, a, bg)


def E_of_z(z, params: CosmologicalParameters, table=None, prec=None):
    """Normalized Hubble rate E(z) = H(z)/H0."""
    return E_of_a(a_of_z(jnp.asarray(z, dtype=float)), params, table, prec)


def Omega_m_of_a(a, params: CosmologicalParameters, table=None, prec=None):
    """Baryon + CDM density fraction Omega_cb0 a^-3 / E(a)^2."""
    a, bg = _prepare(a, params, table, prec)
    return _apply(_Omega_m_batch, a, bg)


def dlogE_dloga(a, params: CosmologicalParameters, table=None, prec=None):
    """Logarithmic derivative d ln E / d ln a, used by the growth equation."""
    a, bg = _prepare(a, params, table, prec)
    return _apply(_dlogE_dloga_batch, a, bg)
