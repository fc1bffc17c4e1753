"""cplcosmo: differentiable w0waCDM background and linear growth in JAX.

Usage:
    import cplcosmo

    # Define parameters
    params = cplcosmo.CosmologicalParameters(
        ln10A_s=3.0, n_s=0.96, h=0.6736, omega_b=0.02237, omega_c=0.1200,
        m_nu=0.06, w0=-0.9, wa=0.1,
    )

    # Expansion rate, distances, growth
    E = cplcosmo.E_of_z(jnp.array([0.0, 0.5, 1.0]), params)
    dA = cplcosmo.angular_diameter_distance(1.0, params)   # Mpc
    D, f = cplcosmo.D_f_of_z([0.0, 0.5, 1.0], params)

    # Differentiate
    dE_dh = jax.grad(lambda h: cplcosmo.E_of_a(0.5, params.replace(h=h)))(0.6736)
"""

import logging

import jax
jax.config.update("jax_enable_x64", True)

from cplcosmo.constants import *  # noqa: F401,F403
from cplcosmo.errors import (  # noqa: F401
    CosmologyEngineError,
    DomainError,
    GrowthSolverError,
    IntegrationError,
    InvalidCosmologyError,
    SolveStatus,
)
from cplcosmo.params import CosmologicalParameters, PrecisionParams  # noqa: F401
from cplcosmo.neutrinos import (  # noqa: F401
    NeutrinoIntegralTable,
    F_of_y,
    dFdy_of_y,
    y_of_mass,
    build_neutrino_table,
    get_neutrino_table,
    set_neutrino_table,
    clear_neutrino_tables,
)
from cplcosmo.background import (  # noqa: F401
    BackgroundArgs,
    background_args,
    a_of_z,
    w_de_of_a,
    rho_de_of_a,
    rho_de_of_z,
    drho_de_da,
    Omega_nu_E2,
    dOmega_nu_E2_da,
    E_of_a,
    E_of_z,
    Omega_m_of_a,
    dlogE_dloga,
)
from cplcosmo.distances import (  # noqa: F401
    conformal_distance,
    comoving_distance,
    conformal_angular_diameter_distance,
    angular_diameter_distance,
    luminosity_distance,
    sound_horizon,
    conformal_distance_reference,
    comoving_distance_reference,
    sound_horizon_reference,
)
from cplcosmo.growth import GrowthSolution, growth_rhs, solve_growth, D_of_z, f_of_z, D_f_of_z  # noqa: F401

logging.getLogger(__name__).addHandler(logging.NullHandler())
