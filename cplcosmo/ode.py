"""ODE solver wrapper around Diffrax for cplcosmo.

Provides a non-stiff (Tsit5) interface with configurable adjoint for
reverse-mode AD, plus grading of the outcome into a SolveStatus.

The solve never throws inside the compiled code (throw=False); failures are
read back from sol.result and the step statistics and reported by the
caller as exceptions.

References:
    Diffrax docs: https://docs.kidger.site/diffrax/
"""

from typing import NamedTuple

import diffrax
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, Float

from cplcosmo.errors import SolveStatus


class StepStats(NamedTuple):
    """Step counts of one solve, read from sol.stats."""
    num_steps: int
    num_accepted_steps: int
    num_rejected_steps: int


def solve_nonstiff(
    rhs_fn,
    t0: float,
    t1: float,
    y0: Float[Array, "D"],
    saveat: diffrax.SaveAt,
    args=None,
    rtol: float = 1e-5,
    atol: float = 1e-8,
    max_steps: int = 4096,
    adjoint: str = "recursive_checkpoint",
):
    """Solve a non-stiff ODE system using Tsit5 (explicit RK4/5).

    Args:
        rhs_fn: callable (t, y, args) -> dy, the ODE right-hand side
        t0: initial time
        t1: final time
        y0: initial state vector
        saveat: Diffrax SaveAt specification (e.g., SaveAt(ts=time_grid))
        args: additional arguments passed to rhs_fn
        rtol: relative tolerance
        atol: absolute tolerance
        max_steps: maximum number of solver steps
        adjoint: "recursive_checkpoint" or "direct"

    Returns:
        Diffrax solution object with .ys, .ts, .result and .stats
    """
    solver = diffrax.Tsit5()
    controller = diffrax.PIDController(rtol=rtol, atol=atol)
    adjoint_obj = _get_adjoint(adjoint)

    sol = diffrax.diffeqsolve(
        diffrax.ODETerm(rhs_fn),
        solver=solver,
        t0=t0,
        t1=t1,
        dt0=None,
        y0=y0,
        saveat=saveat,
        stepsize_controller=controller,
        adjoint=adjoint_obj,
        max_steps=max_steps,
        args=args,
        throw=False,
    )
    return sol


def step_stats(sol) -> StepStats:
    """Extract step counts from a solution (concrete values)."""
    stats = sol.stats
    return StepStats(
        num_steps=int(stats["num_steps"]),
        num_accepted_steps=int(stats["num_accepted_steps"]),
        num_rejected_steps=int(stats["num_rejected_steps"]),
    )


def grade_solution(sol, ys, max_rejected_steps: int, degraded_rejected_fraction: float) -> SolveStatus:
    """Classify a finished solve.

    FAILED if diffrax did not report success, the saved state is not finite,
    or more than `max_rejected_steps` steps were rejected. DEGRADED if the
    fraction of rejected steps exceeds `degraded_rejected_fraction`.
    """
    if not bool(sol.result == diffrax.RESULTS.successful):
        return SolveStatus.FAILED
    if not bool(jnp.all(jnp.isfinite(ys))):
        return SolveStatus.FAILED
    stats = step_stats(sol)
    if stats.num_rejected_steps > max_rejected_steps:
        return SolveStatus.FAILED
    if stats.num_rejected_steps > degraded_rejected_fraction * max(stats.num_steps, 1):
        return SolveStatus.DEGRADED
    return SolveStatus.SUCCESS


def first_nonfinite(ys):
    """Index of the first saved state that is not finite, or None.

    Saves past the point where a solve stopped are filled with inf.
    """
    bad = ~np.all(np.isfinite(np.asarray(ys)), axis=-1)
    if not np.any(bad):
        return None
    return int(np.argmax(bad))


def _get_adjoint(adjoint: str):
    """Return the Diffrax adjoint method from string name."""
    if adjoint == "recursive_checkpoint":
        return diffrax.RecursiveCheckpointAdjoint()
    elif adjoint == "direct":
        return diffrax.DirectAdjoint()
    else:
        raise ValueError(f"Unknown adjoint method: {adjoint}")
