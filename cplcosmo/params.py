"""Parameter containers for cplcosmo.

CosmologicalParameters: w0waCDM parameters, an immutable value registered as
    a JAX pytree (float fields are traced for autodiff).
PrecisionParams: numerical precision settings, static (not traced).

Neither container caches derived quantities: Omega_cb0 and friends are
computed on demand from the stored fields.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Sequence, Union

import jax

from cplcosmo.errors import InvalidCosmologyError


def _concrete(x):
    """Return float(x), or None when x is a JAX tracer."""
    try:
        return float(x)
    except (TypeError, jax.errors.ConcretizationTypeError):
        return None


def _as_masses(m_nu):
    if isinstance(m_nu, (list, tuple)) or getattr(m_nu, "ndim", 0) > 0:
        return tuple(float(m) for m in m_nu)
    return float(m_nu)


# ---------------------------------------------------------------------------
# CosmologicalParameters: traced by JAX for autodiff
# ---------------------------------------------------------------------------

@jax.tree_util.register_pytree_node_class
@dataclass(frozen=True)
class CosmologicalParameters:
    """Cosmological parameters for w0waCDM. All float fields except m_nu are JAX-traceable.

    The neutrino masses are static (they select the zero-mass branch and fix
    the shape of the per-species sum), so they are carried as pytree aux data.

    Units:
        - omega_b, omega_c: physical density parameters Omega_x h^2
        - h: dimensionless Hubble parameter H0/(100 km/s/Mpc)
        - m_nu: neutrino mass in eV, a single value or one value per species
        - w0, wa: CPL dark energy equation of state w(a) = w0 + wa*(1-a)
    """

    # Primordial (carried through for the emulator, unused by the background)
    ln10A_s: float
    n_s: float

    # Hubble
    h: float

    # Densities
    omega_b: float
    omega_c: float

    # Neutrinos (STATIC, not traced)
    m_nu: Union[float, Sequence[float]] = 0.0

    # Dark energy
    w0: float = -1.0
    wa: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "m_nu", _as_masses(self.m_nu))
        self._validate()

    def _validate(self):
        h = _concrete(self.h)
        if h is not None and not h > 0.0:
            raise InvalidCosmologyError(f"h must be positive, got {h}")
        for name in ("omega_b", "omega_c"):
            value = _concrete(getattr(self, name))
            if value is not None and not value >= 0.0:
                raise InvalidCosmologyError(f"{name} must be non-negative, got {value}")
        negative = [m for m in self.masses if not m >= 0.0]
        if negative:
            raise InvalidCosmologyError(f"neutrino masses must be non-negative, got {negative}")

    @property
    def Omega_cb0(self):
        """Baryon + CDM density parameter today, (omega_b + omega_c) / h^2."""
        return (self.omega_b + self.omega_c) / self.h**2

    @property
    def masses(self) -> tuple[float, ...]:
        """All neutrino masses as a tuple, one entry per species."""
        if isinstance(self.m_nu, tuple):
            return self.m_nu
        return (self.m_nu,)

    @property
    def massive_species(self) -> tuple[float, ...]:
        """Neutrino masses strictly greater than zero."""
        return tuple(m for m in self.masses if m > 0.0)

    # --- PyTree registration ---
    def tree_flatten(self):
        children = []
        child_names = []
        for f in fields(self):
            if f.name == "m_nu":
                continue
            children.append(getattr(self, f.name))
            child_names.append(f.name)
        aux_data = {"m_nu": self.m_nu, "child_names": tuple(child_names)}
        return children, aux_data

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        # Bypass __post_init__: leaves may be tracers or placeholders.
        obj = object.__new__(cls)
        for name, value in zip(aux_data["child_names"], children):
            object.__setattr__(obj, name, value)
        object.__setattr__(obj, "m_nu", aux_data["m_nu"])
        return obj

    def replace(self, **kwargs) -> CosmologicalParameters:
        """Return a new CosmologicalParameters with specified fields replaced."""
        current = {f.name: getattr(self, f.name) for f in fields(self)}
        current.update(kwargs)
        return CosmologicalParameters(**current)


# ---------------------------------------------------------------------------
# PrecisionParams: NOT traced by JAX (static, controls array shapes)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PrecisionParams:
    """Numerical precision parameters. These are NOT JAX-traced.

    They control grid sizes, quadrature orders, tolerances and solver budgets.
    The defaults reproduce the reference emulator pipeline.
    """

    # Neutrino integral table
    nu_rtol: float = 1e-12          # adaptive quadrature tolerance for F, dF/dy
    nu_atol: float = 0.0
    nu_quad_order: int = 61         # Gauss-Kronrod order for the table build
    nu_y_linear_max: float = 10.0   # linear grid on [0, nu_y_linear_max]
    nu_n_linear: int = 201
    nu_y_max: float = 2.0e4         # geometric grid up to nu_y_max
    nu_n_log: int = 400
    nu_extrapolate: bool = True     # extrapolate (with a warning) beyond nu_y_max

    # Fixed-order quadrature
    gl_order: int = 9               # Gauss-Legendre, conformal distance
    glag_order: int = 16            # Gauss-Laguerre, sound horizon

    # Adaptive reference quadrature
    dist_ref_rtol: float = 1e-12
    rs_ref_rtol: float = 1e-10
    rs_ref_z_max: float = 1.0e7
    rs_ref_n_breaks: int = 8        # geometric breakpoints in (1+z) on [z, rs_ref_z_max]
    quad_order: int = 21
    quad_max_ninter: int = 256
    quad_degraded_factor: float = 100.0

    # Growth ODE
    growth_a_min: float = 1.0 / 139.0   # deep matter domination, D ~ a
    growth_a_max: float = 1.01
    growth_rtol: float = 1e-5
    growth_atol: float = 1e-8
    growth_max_steps: int = 4096
    growth_max_rejected_steps: int = 1024
    growth_degraded_rejected_fraction: float = 0.5
    ode_adjoint: str = "recursive_checkpoint"  # or "direct"

    def neutrino_table_key(self) -> tuple:
        """Settings that determine the neutrino table (cache key)."""
        return (
            self.nu_rtol, self.nu_atol, self.nu_quad_order,
            self.nu_y_linear_max, self.nu_n_linear,
            self.nu_y_max, self.nu_n_log,
        )

    @staticmethod
    def fast():
        """Fast preset for quick scans: coarser table, looser growth tolerance."""
        return PrecisionParams(
            nu_rtol=1e-8,
            nu_quad_order=21,
            nu_n_linear=101,
            nu_n_log=150,
            growth_rtol=1e-4,
            growth_atol=1e-7,
        )

    @staticmethod
    def reference():
        """Tight preset for validating the default settings."""
        return PrecisionParams(
            nu_n_linear=401,
            nu_n_log=800,
            gl_order=32,
            glag_order=64,
            growth_rtol=1e-8,
            growth_atol=1e-11,
            growth_max_steps=16384,
        )
