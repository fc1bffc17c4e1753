"""Test fixtures for the cplcosmo test suite.

Provides:
- Fiducial CosmologicalParameters (Planck-like LCDM, massive neutrinos, w0wa)
- A coarse neutrino table shared by the whole session
- --fast flag for quick regression checks
- relative_error / assert_close helpers
"""

# Enable 64-bit JAX before anything builds arrays
import jax
jax.config.update("jax_enable_x64", True)

import numpy as np
import pytest

from cplcosmo.neutrinos import build_neutrino_table
from cplcosmo.params import CosmologicalParameters, PrecisionParams


def pytest_addoption(parser):
    parser.addoption(
        "--fast", action="store_true", default=False,
        help="Run fast subset of tests (coarser grids)"
    )


@pytest.fixture
def fast_mode(request):
    return request.config.getoption("--fast")


@pytest.fixture
def planck():
    """Planck 2018-like LCDM, massless neutrinos."""
    return CosmologicalParameters(
        ln10A_s=3.0, n_s=0.96, h=0.6736, omega_b=0.02237, omega_c=0.1200,
    )


@pytest.fixture
def lcdm_03():
    """Omega_cb0 = 0.3, h = 0.7, massless neutrinos, Lambda."""
    return CosmologicalParameters(
        ln10A_s=3.0, n_s=0.96, h=0.7, omega_b=0.02, omega_c=0.127,
    )


@pytest.fixture
def massive():
    """w0waCDM with one 0.06 eV species."""
    return CosmologicalParameters(
        ln10A_s=3.044, n_s=0.9649, h=0.6736, omega_b=0.02237, omega_c=0.1200,
        m_nu=0.06, w0=-0.9, wa=0.1,
    )


@pytest.fixture(scope="session")
def nu_prec():
    """Cheaper table settings; accuracy is still far below the test tolerances."""
    return PrecisionParams(nu_rtol=1e-10, nu_n_linear=401, nu_y_max=2.0e3, nu_n_log=120)


@pytest.fixture(scope="session")
def nu_table(nu_prec):
    """Neutrino table built once per session."""
    return build_neutrino_table(nu_prec)


def relative_error(computed, reference, eps=1e-30):
    """Compute relative error, avoiding division by zero."""
    return np.abs(computed - reference) / (np.abs(reference) + eps)


def max_relative_error(computed, reference, eps=1e-30):
    """Return (max_rel_err, index_of_max)."""
    rel = np.atleast_1d(relative_error(computed, reference, eps))
    idx = np.argmax(rel)
    return float(rel[idx]), int(idx)


def assert_close(computed, reference, rtol, name="quantity", coordinate=None):
    """Assert computed matches reference within rtol, with clear error message."""
    computed = np.atleast_1d(np.asarray(computed, dtype=float))
    reference = np.atleast_1d(np.asarray(reference, dtype=float))
    max_err, idx = max_relative_error(computed, reference)
    if max_err > rtol:
        coord_str = f" at index {idx}"
        if coordinate is not None:
            coord_str = f" at {np.atleast_1d(coordinate)[idx]:.6g}"
        msg = (
            f"{name}: max rel error {max_err:.4%}{coord_str}"
            f" (expected {reference[idx]:.6e}, got {computed[idx]:.6e})"
            f" -- tolerance {rtol:.4%}"
        )
        raise AssertionError(msg)
