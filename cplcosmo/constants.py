"""Physical and numerical constants used by the background engine.

Values follow the conventions of the Effort.jl / jaxeffort emulator pipeline,
which this engine feeds: photon density from T_cmb = 2.7255 K, neutrino
temperature T_nu = 0.71611 * T_cmb, N_eff = 3.044.
"""

import math

# --- Fundamental constants ---
c_0 = 2.99792458e5
"""Speed of light in km/s."""

k_B_eV = 8.617342e-5
"""Boltzmann constant in eV/K."""

# --- CMB and neutrino temperatures ---
T_cmb_default = 2.7255
"""CMB temperature today in Kelvin (Fixsen 2009)."""

T_nu_over_T_cmb = 0.71611
"""Neutrino-to-photon temperature ratio (CLASS T_ncdm default)."""

T_nu = T_nu_over_T_cmb * T_cmb_default
"""Neutrino temperature today in Kelvin."""

N_eff = 3.044
"""Effective number of relativistic species."""

# --- Density coefficients ---
Omega_g_h2 = 2.469e-5
"""Photon density parameter times h^2, Omega_g0 = Omega_g_h2 / h^2."""

R_baryon_coeff = 3.0328e4
"""Baryon-to-photon momentum ratio coefficient, R(z) = R_baryon_coeff * omega_b / (1+z)."""

# --- Neutrino phase-space integral ---
Gamma_nu = (4.0 / 11.0) ** (1.0 / 3.0) * (N_eff / 3.0) ** 0.25
"""Neutrino-to-photon temperature ratio including the N_eff correction."""

nu_prefactor = 15.0 / math.pi**4 * Gamma_nu**4
"""Prefactor of Omega_nu E^2 in units of Omega_g0 / a^4."""

F_massless = 7.0 * math.pi**4 / 120.0
"""F(0): the Fermi-Dirac energy integral in the massless limit."""

d2F_dy2_massless = math.pi**2 / 12.0
"""d^2F/dy^2 at y=0, i.e. the integral of x / (1 + e^x) over [0, inf)."""

# --- Sound horizon / quadrature bounds ---
z_drag_default = 1059.94
"""Fiducial baryon drag redshift (Planck 2018), used as a default evaluation point."""
