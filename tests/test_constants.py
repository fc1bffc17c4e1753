"""Test that physical constants match the emulator pipeline's values exactly."""

import math

from cplcosmo import constants as const


def test_speed_of_light():
    assert const.c_0 == 2.99792458e5


def test_boltzmann_constant():
    assert const.k_B_eV == 8.617342e-5


def test_tcmb_default():
    assert const.T_cmb_default == 2.7255


def test_neutrino_temperature():
    assert abs(const.T_nu - 0.71611 * 2.7255) < 1e-15


def test_n_eff():
    assert const.N_eff == 3.044


def test_photon_density():
    assert const.Omega_g_h2 == 2.469e-5


def test_gamma_nu():
    expected = (4.0 / 11.0) ** (1.0 / 3.0) * (3.044 / 3.0) ** 0.25
    assert abs(const.Gamma_nu - expected) < 1e-15


def test_massless_limit():
    """F(0) = 7 pi^4 / 120 ~ 5.6822."""
    assert abs(const.F_massless - 5.682196976983475) < 1e-12
    assert abs(const.d2F_dy2_massless - math.pi**2 / 12.0) < 1e-15
