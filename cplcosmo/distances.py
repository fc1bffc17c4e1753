"""Cosmological distances and the sound horizon for cplcosmo.

Conformal distance  r~(z) = int_0^z dz' / E(z')
Comoving distance   r(z)  = c_0 / (100 h) r~(z)                [Mpc]
Sound horizon       r_s(z) = c_0 / (100 h) int_z^inf c_s(z') / E(z') dz',
                    c_s = 1 / sqrt(3 (1 + R)),  R = 3.0328e4 omega_b / (1+z')

Two paths for each integral:
    - production: fixed-order Gauss quadrature (9-point Gauss-Legendre on
      [0, z]; 16-point Gauss-Laguerre on [z, inf) with nodes shifted by z and
      weights multiplied by e^x). Differentiable and jit-compiled. The
      Laguerre rule truncates the power-law tail of the sound-horizon
      integrand and underestimates r_s at the drag epoch by ~97%.
    - reference: adaptive Gauss-Kronrod (quadax) to 1e-12 (distances) and
      1e-10 (sound horizon, truncated at z = 1e7). Concrete inputs only;
      raises IntegrationError on non-convergence.

cf. CLASS background.c (conformal distance, rs) and the Effort.jl
background module for the Gauss-rule production paths.
"""

from __future__ import annotations

import functools
from typing import Optional

import jax
import jax.numpy as jnp

from cplcosmo import constants as const
from cplcosmo.background import _E_kernel, a_of_z, background_args
from cplcosmo.params import CosmologicalParameters, PrecisionParams
from cplcosmo.quadrature import gauss_laguerre, gauss_legendre, integrate


def _hubble_distance(params: CosmologicalParameters):
    """c_0 / H0 in Mpc."""
    return const.c_0 / (100.0 * params.h)


def _sound_speed(z, omega_b):
    R = const.R_baryon_coeff * omega_b / (1.0 + z)
    return 1.0 / jnp.sqrt(3.0 * (1.0 + R))


# ---------------------------------------------------------------------------
# Fixed-order kernels
# ---------------------------------------------------------------------------

def _conformal_distance_kernel(z, bg, order):
    z_nodes, weights = gauss_legendre(order, 0.0, z)
    inv_E = jax.vmap(lambda zz: 1.0 / _E_kernel(a_of_z(zz), bg))(z_nodes)
    return jnp.dot(weights, inv_E)


def _sound_horizon_kernel(z, bg, omega_b, order):
    x, weights = gauss_laguerre(order)
    z_nodes = x + z
    g = jax.vmap(lambda zz: _sound_speed(zz, omega_b) / _E_kernel(a_of_z(zz), bg))(z_nodes)
    return jnp.dot(weights, jnp.exp(x) * g)


@functools.partial(jax.jit, static_argnames=("order",))
def _conformal_distance_batch(z, bg, order):
    return jax.vmap(_conformal_distance_kernel, in_axes=(0, None, None))(z, bg, order)


@functools.partial(jax.jit, static_argnames=("order",))
def _sound_horizon_batch(z, bg, omega_b, order):
    return jax.vmap(_sound_horizon_kernel, in_axes=(0, None, None, None))(z, bg, omega_b, order)


# ---------------------------------------------------------------------------
# Production API
# ---------------------------------------------------------------------------

def conformal_distance(z, params: CosmologicalParameters, table=None, prec: Optional[PrecisionParams] = None):
    """Dimensionless conformal distance r~(z) by Gauss-Legendre quadrature.

    Args:
        z: redshift, scalar or array
        params: cosmological parameters
        table: neutrino table to use instead of the shared one
        prec: precision parameters (gl_order sets the number of nodes)

    Returns:
        r~(z), same shape as z; exactly 0 at z = 0
    """
    prec = prec or PrecisionParams()
    bg = background_args(params, table, prec)
    z = jnp.asarray(z, dtype=float)
    return _conformal_distance_batch(jnp.ravel(z), bg, prec.gl_order).reshape(z.shape)


def comoving_distance(z, params: CosmologicalParameters, table=None, prec=None):
    """Comoving distance r(z) = c_0/(100 h) r~(z) in Mpc."""
    return _hubble_distance(params) * conformal_distance(z, params, table, prec)


def conformal_angular_diameter_distance(z, params: CosmologicalParameters, table=None, prec=None):
    """Conformal angular diameter distance r~(z) / (1+z)."""
    z = jnp.asarray(z, dtype=float)
    return conformal_distance(z, params, table, prec) / (1.0 + z)


def angular_diameter_distance(z, params: CosmologicalParameters, table=None, prec=None):
    """Angular diameter distance d_A(z) = r(z) / (1+z) in Mpc."""
    z = jnp.asarray(z, dtype=float)
    return comoving_distance(z, params, table, prec) / (1.0 + z)


def luminosity_distance(z, params: CosmologicalParameters, table=None, prec=None):
    """Luminosity distance d_L(z) = (1+z) r(z) in Mpc."""
    z = jnp.asarray(z, dtype=float)
    return (1.0 + z) * comoving_distance(z, params, table, prec)


def sound_horizon(
    z,
    params: CosmologicalParameters,
    omega_b=None,
    table=None,
    prec: Optional[PrecisionParams] = None,
):
    """Comoving sound horizon r_s(z) in Mpc by Gauss-Laguerre quadrature.

    The rule is sum_i w_i e^{x_i} c_s/E at z + x_i. Its nodes only reach
    x ~ 51 for 16 points, while c_s/E decays as a power law of (1+z') with
    scale 1+z. At the drag epoch this keeps about 3% of the integral
    (5.3 Mpc against 165.8 Mpc from sound_horizon_reference for a
    Planck-like massless set). Use sound_horizon_reference for values of
    r_s; this path is a fast, differentiable proxy.

    Args:
        z: redshift, scalar or array (typically the drag epoch)
        params: cosmological parameters
        omega_b: baryon density entering R; defaults to params.omega_b
        table: neutrino table to use instead of the shared one
        prec: precision parameters (glag_order sets the number of nodes)
    """
    prec = prec or PrecisionParams()
    omega_b = params.omega_b if omega_b is None else omega_b
    bg = background_args(params, table, prec)
    z = jnp.asarray(z, dtype=float)
    r = _sound_horizon_batch(jnp.ravel(z), bg, omega_b, prec.glag_order).reshape(z.shape)
    return _hubble_distance(params) * r


# ---------------------------------------------------------------------------
# Reference (adaptive) paths
# ---------------------------------------------------------------------------

def _inv_E_integrand(zz, row, bg):
    return jnp.vectorize(lambda t: 1.0 / _E_kernel(a_of_z(t), bg))(zz)


def _sound_horizon_integrand(zz, row, shared):
    bg, omega_b = shared
    return jnp.vectorize(
        lambda t: _sound_speed(t, omega_b) / _E_kernel(a_of_z(t), bg)
    )(zz)


def conformal_distance_reference(z, params: CosmologicalParameters, table=None, prec: Optional[PrecisionParams] = None):
    """r~(z) by adaptive Gauss-Kronrod quadrature on [0, z] (rtol prec.dist_ref_rtol).

    Raises:
        IntegrationError: if the requested tolerance is not reached
    """
    prec = prec or PrecisionParams()
    bg = background_args(params, table, prec)
    z = jnp.asarray(z, dtype=float)
    z_flat = jnp.ravel(z)
    # Zero-length intervals integrate to exactly 0.
    at_origin = z_flat == 0.0
    z_upper = jnp.where(at_origin, 1.0, z_flat)
    intervals = jnp.stack([jnp.zeros_like(z_upper), z_upper], axis=-1)
    result = integrate(
        _inv_E_integrand, intervals, z_upper, bg,
        rtol=prec.dist_ref_rtol, order=prec.quad_order,
        max_ninter=prec.quad_max_ninter, degraded_factor=prec.quad_degraded_factor,
        domain=(0.0, float(jnp.max(z_flat)) if z_flat.size else 0.0),
    )
    value = jnp.where(at_origin, 0.0, result.unwrap("conformal distance"))
    return value.reshape(z.shape)


def comoving_distance_reference(z, params: CosmologicalParameters, table=None, prec=None):
    """Comoving distance in Mpc from the adaptive reference path."""
    return _hubble_distance(params) * conformal_distance_reference(z, params, table, prec)


def _geometric_breakpoints(z, z_max, n_breaks):
    """Limits [z, z_max] with n_breaks interior points, evenly spaced in log(1+z)."""
    frac = jnp.linspace(0.0, 1.0, n_breaks + 2)
    log_lo = jnp.log1p(z)[:, None]
    log_hi = jnp.log1p(z_max)
    return jnp.expm1(log_lo + frac[None, :] * (log_hi - log_lo))


def sound_horizon_reference(
    z,
    params: CosmologicalParameters,
    omega_b=None,
    table=None,
    prec: Optional[PrecisionParams] = None,
):
    """r_s(z) in Mpc by adaptive quadrature on [z, prec.rs_ref_z_max].

    Raises:
        IntegrationError: if the requested tolerance is not reached
    """
    prec = prec or PrecisionParams()
    omega_b = params.omega_b if omega_b is None else omega_b
    bg = background_args(params, table, prec)
    z = jnp.asarray(z, dtype=float)
    z_flat = jnp.ravel(z)
    intervals = _geometric_breakpoints(z_flat, prec.rs_ref_z_max, prec.rs_ref_n_breaks)
    result = integrate(
        _sound_horizon_integrand, intervals, z_flat, (bg, omega_b),
        rtol=prec.rs_ref_rtol, order=prec.quad_order,
        max_ninter=prec.quad_max_ninter, degraded_factor=prec.quad_degraded_factor,
        domain=(float(jnp.min(z_flat)) if z_flat.size else 0.0, prec.rs_ref_z_max),
    )
    r = result.unwrap("sound horizon").reshape(z.shape)
    return _hubble_distance(params) * r
