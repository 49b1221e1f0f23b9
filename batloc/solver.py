"""
TDOA Multilateration Solver
Levenberg-Marquardt range-difference fit in a frame centred on the reference sensor
"""

import time
import logging
import numpy as np
from typing import Optional
from dataclasses import dataclass
from scipy.optimize import least_squares

from .errors import ConfigurationError, ConvergenceFailure
from .geometry import compute_az_el
from .config import SPEED_OF_SOUND


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalizationEstimate:
    """Result of one multilateration solve"""
    position: np.ndarray          # (3,) absolute coordinates
    azimuth_deg: float            # relative to sensor 0, NaN if position == sensor 0
    elevation_deg: float
    error: Optional[float] = None  # meters, when the true source is known
    residual_rms: float = 0.0     # meters
    cost: float = 0.0
    nfev: int = 0
    status: int = 0


class _SolveTimeout(Exception):
    pass


def tdoa_residuals(
    x: np.ndarray,
    rel_positions: np.ndarray,
    range_differences: np.ndarray
) -> np.ndarray:
    """
    Range-difference residuals in the reference-sensor frame

    r_i(x) = |p_i - x| - |x| - c * tau_i, where p_i is sensor i relative to
    sensor 0 and c * tau_i is passed in as range_differences.
    """
    return (np.linalg.norm(rel_positions - x, axis=1)
            - np.linalg.norm(-x)
            - range_differences)


def solve_tdoa(
    delays: np.ndarray,
    sensor_positions: np.ndarray,
    speed_of_sound: float = SPEED_OF_SOUND,
    true_source: Optional[np.ndarray] = None,
    max_nfev: int = 1000,
    ftol: float = 1e-10,
    xtol: float = 1e-10,
    degeneracy_tol: float = 1e-8,
    timeout_s: Optional[float] = None
) -> LocalizationEstimate:
    """
    Estimate the source position from delays relative to sensor 0

    The fit starts at the centroid of the non-reference sensor offsets and
    is unconstrained. There is no retry from other starting points.

    Args:
        delays: (N-1,) delays in seconds of sensors 1..N-1 relative to sensor 0
        sensor_positions: (N, 3) sensor coordinates
        speed_of_sound: m/s
        true_source: Optional ground truth, fills LocalizationEstimate.error
        max_nfev: Maximum residual evaluations
        ftol: Relative cost tolerance
        xtol: Relative step tolerance
        degeneracy_tol: Minimum ratio of smallest to largest singular value
            of the final Jacobian
        timeout_s: Wall-clock limit for the solve

    Returns:
        LocalizationEstimate

    Raises:
        ConfigurationError: wrong number of delays or fewer than 4 sensors
        ConvergenceFailure: no convergence, timeout, non-finite input or
            result, or a geometry too degenerate to invert
    """
    mics = np.asarray(sensor_positions, dtype=float)
    tau = np.asarray(getattr(delays, 'delays', delays), dtype=float).ravel()

    if mics.ndim != 2 or mics.shape[1] != 3:
        raise ConfigurationError(f"Sensor positions must be an (N, 3) array, got shape {mics.shape}")
    if len(mics) < 4:
        raise ConfigurationError(f"Need at least 4 sensors for a 3D solve, got {len(mics)}")
    if len(tau) != len(mics) - 1:
        raise ConfigurationError(f"Expected {len(mics) - 1} delays, got {len(tau)}")

    if not np.all(np.isfinite(tau)):
        raise ConvergenceFailure("Delay estimates contain non-finite values")

    ref_pos = mics[0]
    rel_pos = mics[1:] - ref_pos
    range_diff = speed_of_sound * tau
    x0 = np.mean(rel_pos, axis=0)

    deadline = None if timeout_s is None else time.monotonic() + timeout_s

    def objective(x):
        if deadline is not None and time.monotonic() > deadline:
            raise _SolveTimeout()
        return tdoa_residuals(x, rel_pos, range_diff)

    try:
        result = least_squares(
            objective,
            x0,
            method='lm',
            max_nfev=max_nfev,
            ftol=ftol,
            xtol=xtol
        )
    except _SolveTimeout:
        raise ConvergenceFailure(f"Multilateration exceeded {timeout_s:.3g} s") from None

    if not result.success or result.status <= 0:
        raise ConvergenceFailure(f"Multilateration did not converge: {result.message}")

    if not np.all(np.isfinite(result.x)):
        raise ConvergenceFailure("Multilateration returned a non-finite position")

    s = np.linalg.svd(np.atleast_2d(result.jac), compute_uv=False)
    if len(s) < 3 or s[0] == 0 or s[-1] / s[0] < degeneracy_tol:
        conditioning = 0.0 if len(s) < 3 or s[0] == 0 else s[-1] / s[0]
        raise ConvergenceFailure(
            f"Sensor geometry too degenerate to invert (conditioning {conditioning:.2e})"
        )

    position = result.x + ref_pos
    azimuth, elevation = compute_az_el(position, ref_pos)

    error = None
    if true_source is not None:
        error = float(np.linalg.norm(position - np.asarray(true_source, dtype=float)))

    logger.debug(f"Solved in {result.nfev} evaluations, cost {result.cost:.3e}")

    return LocalizationEstimate(
        position=position,
        azimuth_deg=azimuth,
        elevation_deg=elevation,
        error=error,
        residual_rms=float(np.sqrt(np.mean(result.fun**2))),
        cost=float(result.cost),
        nfev=int(result.nfev),
        status=int(result.status)
    )
