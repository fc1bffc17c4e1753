"""Test the background expansion: E(a), Omega_m(a), dlnE/dlna, neutrino terms.

Checks closed-form limits, the flatness closure, scalar/array dispatch and
gradients against finite differences.
"""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from cplcosmo import constants as const
from cplcosmo.background import (
    E_of_a,
    E_of_z,
    Omega_m_of_a,
    Omega_nu_E2,
    a_of_z,
    background_args,
    dlogE_dloga,
    dOmega_nu_E2_da,
    drho_de_da,
    rho_de_of_a,
    rho_de_of_z,
    w_de_of_a,
)
from cplcosmo.errors import InvalidCosmologyError
from cplcosmo.neutrinos import NeutrinoIntegralTable
from cplcosmo.params import CosmologicalParameters
from tests.conftest import assert_close


A_GRID = jnp.geomspace(1e-3, 1.0, 40)


class TestDarkEnergy:

    def test_lambda_limit(self):
        a = jnp.linspace(0.1, 1.0, 10)
        np.testing.assert_allclose(rho_de_of_a(a, -1.0, 0.0), 1.0, rtol=1e-15)
        np.testing.assert_allclose(drho_de_da(a, -1.0, 0.0), 0.0, atol=1e-15)

    def test_today_is_one(self):
        assert float(rho_de_of_a(1.0, -0.8, 0.3)) == pytest.approx(1.0, rel=1e-15)

    def test_z_form_matches_a_form(self):
        z = jnp.array([0.0, 0.5, 1.0, 3.0])
        assert_close(rho_de_of_z(z, -0.9, 0.2), rho_de_of_a(a_of_z(z), -0.9, 0.2), 1e-13)

    def test_derivative_matches_autodiff(self):
        grad = jax.vmap(jax.grad(lambda a: rho_de_of_a(a, -0.9, 0.2)))(A_GRID[10:])
        assert_close(drho_de_da(A_GRID[10:], -0.9, 0.2), grad, 1e-12, name="drho_de/da")

    def test_equation_of_state(self):
        assert float(w_de_of_a(1.0, -0.9, 0.2)) == pytest.approx(-0.9)
        assert float(w_de_of_a(0.0, -0.9, 0.2)) == pytest.approx(-0.7)


class TestExpansion:

    def test_E_today_is_one_lcdm(self, planck):
        """Massless, Lambda: flatness closure forces E(a=1) = 1."""
        assert abs(float(E_of_a(1.0, planck)) - 1.0) < 1e-14
        assert abs(float(E_of_z(0.0, planck)) - 1.0) < 1e-14

    def test_E_today_is_one_w0wa_massive(self, massive, nu_table):
        assert abs(float(E_of_a(1.0, massive, table=nu_table)) - 1.0) < 1e-14

    def test_matter_radiation_limit(self, planck):
        """Without neutrinos and Lambda, E^2 = Omega_g0 a^-4 + Omega_cb0 a^-3 + Omega_de0."""
        bg = background_args(planck)
        a = A_GRID
        expected = jnp.sqrt(bg.Omega_g0 / a**4 + bg.Omega_cb0 / a**3 + bg.Omega_de0)
        assert_close(E_of_a(a, planck), expected, 1e-14, name="E(a)", coordinate=a)

    def test_E_monotone_non_phantom(self, planck, massive, nu_table):
        a = jnp.linspace(0.05, 1.0, 200)
        for p, t in ((planck, None), (massive, nu_table)):
            E = np.asarray(E_of_a(a, p, table=t))
            assert np.all(np.diff(E) <= 0.0)

    def test_E_of_z_is_E_of_a(self, massive, nu_table):
        z = jnp.array([0.0, 0.3, 1.0, 2.5])
        assert_close(E_of_z(z, massive, table=nu_table), E_of_a(a_of_z(z), massive, table=nu_table), 1e-14)

    def test_scalar_input_gives_0d(self, planck):
        assert E_of_a(0.5, planck).shape == ()
        assert E_of_a(jnp.ones((2, 3)), planck).shape == (2, 3)

    def test_omega_m(self, planck):
        bg = background_args(planck)
        assert_close(Omega_m_of_a(1.0, planck), bg.Omega_cb0, 1e-14)
        a = jnp.array([0.01, 0.1, 0.5])
        expected = bg.Omega_cb0 / a**3 / E_of_a(a, planck) ** 2
        assert_close(Omega_m_of_a(a, planck), expected, 1e-14)

    def test_dlogE_dloga_matches_autodiff(self, massive, nu_table):
        bg = background_args(massive, table=nu_table)
        from cplcosmo.background import _E_kernel

        def logE(loga):
            return jnp.log(_E_kernel(jnp.exp(loga), bg))

        loga = jnp.log(A_GRID[5:])
        expected = jax.vmap(jax.grad(logE))(loga)
        assert_close(dlogE_dloga(A_GRID[5:], massive, table=nu_table), expected, 1e-5,
                     name="dlnE/dlna", coordinate=A_GRID[5:])

    def test_dlogE_dloga_matter_era(self, planck):
        """Deep in matter domination dlnE/dlna -> -3/2."""
        assert abs(float(dlogE_dloga(0.05, planck)) + 1.5) < 0.02


class TestClosure:

    def test_negative_closure_raises(self):
        p = CosmologicalParameters(3.0, 0.96, 0.3, 0.05, 0.1)
        with pytest.raises(InvalidCosmologyError):
            E_of_a(1.0, p)

    def test_closure_values(self, massive, nu_table):
        bg = background_args(massive, table=nu_table)
        total = bg.Omega_g0 + bg.Omega_cb0 + bg.Omega_nu0 + bg.Omega_de0
        assert abs(float(total) - 1.0) < 1e-15
        assert float(bg.Omega_g0) == pytest.approx(2.469e-5 / 0.6736**2, rel=1e-14)

    def test_nan_closure_raises(self, massive, nu_table):
        """A non-finite Omega_de0 is rejected like a negative one."""
        y = nu_table.y
        nan_table = NeutrinoIntegralTable.from_values(
            y, jnp.full_like(y, jnp.nan), jnp.full_like(y, jnp.nan),
        )
        with pytest.raises(InvalidCosmologyError):
            background_args(massive, table=nan_table)


class TestNeutrinos:

    def test_massless_branch_never_builds_table(self, planck, monkeypatch):
        import cplcosmo.neutrinos as nu

        def boom(prec=None):
            raise AssertionError("table should not be built for massless neutrinos")

        monkeypatch.setattr(nu, "get_neutrino_table", boom)
        monkeypatch.setattr("cplcosmo.background.get_neutrino_table", boom)
        bg = background_args(planck)
        assert bg.table is None
        assert float(Omega_nu_E2(0.5, planck)) == 0.0
        assert float(dOmega_nu_E2_da(0.5, planck)) == 0.0

    def test_zero_masses_dropped(self, nu_table):
        p1 = CosmologicalParameters(3.0, 0.96, 0.7, 0.022, 0.12, m_nu=0.06)
        p2 = CosmologicalParameters(3.0, 0.96, 0.7, 0.022, 0.12, m_nu=[0.0, 0.06, 0.0])
        a = jnp.array([0.2, 0.7, 1.0])
        assert_close(Omega_nu_E2(a, p2, table=nu_table), Omega_nu_E2(a, p1, table=nu_table), 1e-15)

    def test_sequence_is_sum_of_species(self, nu_table):
        base = dict(ln10A_s=3.0, n_s=0.96, h=0.7, omega_b=0.022, omega_c=0.12)
        p12 = CosmologicalParameters(**base, m_nu=[0.05, 0.1])
        p1 = CosmologicalParameters(**base, m_nu=0.05)
        p2 = CosmologicalParameters(**base, m_nu=0.1)
        a = jnp.array([1e-3, 0.01, 0.3, 1.0])
        total = Omega_nu_E2(a, p12, table=nu_table)
        parts = Omega_nu_E2(a, p1, table=nu_table) + Omega_nu_E2(a, p2, table=nu_table)
        assert_close(total, parts, 1e-14, name="Omega_nu E^2 sum")

    def test_single_element_sequence_equals_scalar(self, nu_table):
        base = dict(ln10A_s=3.0, n_s=0.96, h=0.7, omega_b=0.022, omega_c=0.12)
        a = jnp.array([0.1, 1.0])
        assert_close(
            E_of_a(a, CosmologicalParameters(**base, m_nu=[0.06]), table=nu_table),
            E_of_a(a, CosmologicalParameters(**base, m_nu=0.06), table=nu_table),
            1e-15,
        )

    def test_relativistic_limit(self, nu_table):
        """At early times a massive species behaves like F(0) radiation."""
        p = CosmologicalParameters(3.0, 0.96, 0.7, 0.022, 0.12, m_nu=0.06)
        a = 1e-6
        expected = const.nu_prefactor * const.Omega_g_h2 / 0.7**2 / a**4 * const.F_massless
        assert_close(Omega_nu_E2(a, p, table=nu_table), expected, 1e-6)

    def test_derivative_matches_autodiff(self, massive, nu_table):
        bg = background_args(massive, table=nu_table)
        from cplcosmo.background import _omega_nu_E2

        a = jnp.array([0.01, 0.1, 0.5, 1.0])
        expected = jax.vmap(jax.grad(lambda x: _omega_nu_E2(x, bg)))(a)
        assert_close(dOmega_nu_E2_da(a, massive, table=nu_table), expected, 1e-5,
                     name="dOmega_nu E^2/da")


class TestBackgroundGradients:
    """Test that gradients through E(a) are correct."""

    def test_dE_dh(self, massive, nu_table):
        """dE(a=0.5)/dh: AD vs finite differences."""

        def E_half(h):
            return E_of_a(0.5, massive.replace(h=h), table=nu_table)

        h0 = 0.6736
        grad_ad = float(jax.grad(E_half)(h0))

        eps = 1e-5
        grad_fd = float((E_half(h0 + eps) - E_half(h0 - eps)) / (2 * eps))

        rel_err = abs(grad_ad - grad_fd) / abs(grad_fd)
        assert rel_err < 1e-6, (
            f"dE/dh: AD={grad_ad:.6e}, FD={grad_fd:.6e}, rel err={rel_err:.4%}"
        )

    def test_dE_dw0(self, planck):
        def E_z1(w0):
            return E_of_z(1.0, planck.replace(w0=w0))

        grad_ad = float(jax.grad(E_z1)(-1.0))
        eps = 1e-6
        grad_fd = float((E_z1(-1.0 + eps) - E_z1(-1.0 - eps)) / (2 * eps))
        assert abs(grad_ad - grad_fd) / abs(grad_fd) < 1e-6
