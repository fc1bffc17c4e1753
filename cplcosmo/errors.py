"""
Exception classes and result status for cplcosmo.
"""
import enum


class SolveStatus(enum.Enum):
    """Outcome of an adaptive numerical method."""
    SUCCESS = "success"
    DEGRADED = "degraded"  # finite answer, requested tolerance not fully met
    FAILED = "failed"


class CosmologyEngineError(Exception):
    """Base exception for cplcosmo."""
    pass


class InvalidCosmologyError(CosmologyEngineError, ValueError):
    """Unphysical parameter set (h <= 0, negative density or mass, negative closure)."""
    pass


class DomainError(CosmologyEngineError, ValueError):
    """Evaluation point outside the range covered by a table or a solve."""
    pass


class IntegrationError(CosmologyEngineError):
    """Adaptive quadrature did not reach the requested tolerance."""

    def __init__(self, message, requested_rtol=None, achieved_rtol=None, domain=None):
        self.requested_rtol = requested_rtol
        self.achieved_rtol = achieved_rtol
        self.domain = domain
        details = []
        if requested_rtol is not None:
            details.append(f"requested rtol {requested_rtol:.1e}")
        if achieved_rtol is not None:
            details.append(f"achieved {achieved_rtol:.2e}")
        if domain is not None:
            details.append(f"domain {domain}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)


class GrowthSolverError(CosmologyEngineError):
    """The growth ODE integration failed."""

    def __init__(self, message, loga=None, params=None):
        self.loga = loga
        self.params = params
        if loga is not None:
            message = f"{message} at log(a) = {loga:.6g}"
        super().__init__(message)
