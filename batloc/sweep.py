"""
Grid Sweep Driver
Repeats call propagation, TDOA estimation and multilateration over a 3D grid
of source positions and collects one error record per point
"""

import os
import csv
import logging
import threading
import numpy as np
from typing import List, Optional, Sequence
from dataclasses import dataclass, field
from concurrent.futures import ProcessPoolExecutor, as_completed

from .config import SimulationConfig, SweepOptions, validate_config
from .errors import ConfigurationError, ConvergenceFailure
from .geometry import is_coplanar, max_baseline
from .signal import SyntheticCall, generate_call_from_config
from .channel import propagate
from .rx_frontend import estimate_tdoa
from .solver import solve_tdoa
from .metrics import (
    RECORD_FIELDS, SweepRecord, SweepSummary, summarize_sweep,
    position_error_cm, plot_localization
)


logger = logging.getLogger(__name__)


@dataclass
class GridSweepResult:
    """Records of a sweep in grid order"""
    records: List[SweepRecord] = field(default_factory=list)
    n_failed: int = 0
    cancelled: bool = False

    def __len__(self) -> int:
        return len(self.records)

    def summary(self) -> SweepSummary:
        return summarize_sweep(self.records)


def grid_points(
    x_vals: Sequence[float],
    y_vals: Sequence[float],
    z_vals: Sequence[float]
) -> np.ndarray:
    """Cartesian product as (P, 3), x outermost and z innermost"""
    X, Y, Z = np.meshgrid(
        np.asarray(x_vals, dtype=float),
        np.asarray(y_vals, dtype=float),
        np.asarray(z_vals, dtype=float),
        indexing='ij'
    )
    return np.column_stack([X.ravel(), Y.ravel(), Z.ravel()])


def _lag_window(config: SimulationConfig) -> Optional[float]:
    if not config.restrict_lags_to_array:
        return None
    return max_baseline(config.positions) / config.speed_of_sound


def _point_seed(config: SimulationConfig, index: int) -> Optional[int]:
    if config.random_seed is None:
        return None
    return int(config.random_seed) + int(index)


def localize_point(
    config: SimulationConfig,
    call: SyntheticCall,
    source: Sequence[float],
    index: int = 0,
    plot_dir: Optional[str] = None
) -> SweepRecord:
    """
    Run the full pipeline for one source position

    A ConvergenceFailure is logged and turned into a record whose estimate
    fields are NaN. Configuration errors propagate.

    Args:
        config: Simulation parameters
        call: Call shared by every point of the sweep
        source: (3,) source position
        index: Point index, used to derive the noise seed and plot name
        plot_dir: Directory for a diagnostic plot of this point

    Returns:
        SweepRecord
    """
    mics = config.positions
    source = np.asarray(source, dtype=float)

    received = propagate(
        call,
        mics,
        source,
        config.snr_db,
        speed_of_sound=config.speed_of_sound,
        attenuation_coeff=config.attenuation_coeff,
        rng=_point_seed(config, index)
    )

    record = SweepRecord(
        source_x=float(source[0]),
        source_y=float(source[1]),
        source_z=float(source[2]),
        source_azimuth_deg=received.azimuth_deg,
        source_elevation_deg=received.elevation_deg
    )

    try:
        tdoa = estimate_tdoa(
            received,
            max_delay=_lag_window(config),
            subsample=config.subsample_refinement
        )
        estimate = solve_tdoa(
            tdoa.delays,
            mics,
            speed_of_sound=config.speed_of_sound,
            true_source=source,
            max_nfev=config.max_nfev,
            ftol=config.ftol,
            xtol=config.xtol,
            degeneracy_tol=config.degeneracy_tol,
            timeout_s=config.point_timeout_s
        )
    except ConvergenceFailure as e:
        logger.warning(f"Point {index} at {source.tolist()}: {e}")
        estimate = None
    else:
        record.estimated_x, record.estimated_y, record.estimated_z = (float(v) for v in estimate.position)
        record.position_error_cm = position_error_cm(estimate.position, source)
        record.estimated_azimuth_deg = estimate.azimuth_deg
        record.estimated_elevation_deg = estimate.elevation_deg

    if plot_dir:
        plot_localization(
            mics,
            source,
            None if estimate is None else estimate.position,
            save_path=os.path.join(plot_dir, f'point_{index:05d}.png')
        )

    return record


def check_grid_clear_of_sensors(points: np.ndarray, sensor_positions: np.ndarray):
    """
    Raise ConfigurationError if any grid point sits exactly on a sensor
    """
    mics = np.asarray(sensor_positions, dtype=float)
    for k, mic in enumerate(mics):
        hits = np.flatnonzero(np.all(points == mic, axis=1))
        if len(hits):
            raise ConfigurationError(
                f"Grid point {points[hits[0]].tolist()} coincides with sensor {k}"
            )


def run_grid_sweep(
    config: SimulationConfig,
    x_vals: Sequence[float],
    y_vals: Sequence[float],
    z_vals: Sequence[float],
    options: Optional[SweepOptions] = None,
    cancel_event: Optional[threading.Event] = None
) -> GridSweepResult:
    """
    Localise a source at every point of a 3D grid

    The call is generated once. Points run serially, or in a process pool
    when options.max_workers > 1; records come back in grid order either way
    and are written to options.csv_file when it is set.

    Args:
        config: Simulation parameters
        x_vals, y_vals, z_vals: Grid coordinates per axis
        options: Sweep options (defaults if None)
        cancel_event: Set it to stop the sweep between points

    Returns:
        GridSweepResult

    Raises:
        ConfigurationError: invalid configuration or a grid point on a sensor
        NotImplementedError: SRP-PHAT localisation requested
    """
    options = options or SweepOptions()
    validate_config(config)

    if options.srp_phat:
        raise NotImplementedError("SRP-PHAT localisation is not available")
    if options.max_workers < 1:
        raise ConfigurationError(f"max_workers must be at least 1, got {options.max_workers}")

    mics = config.positions
    if is_coplanar(mics):
        logger.warning("Sensor array is coplanar; 3D solves may be ill-conditioned")

    points = grid_points(x_vals, y_vals, z_vals)
    check_grid_clear_of_sensors(points, mics)

    call = generate_call_from_config(config)

    logger.info(
        f"Starting sweep: {len(points)} points, {config.n_sensors} sensors, "
        f"{options.max_workers} worker(s)"
    )

    results = {}
    cancelled = False

    if options.max_workers == 1:
        for index, source in enumerate(points):
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                break
            results[index] = localize_point(config, call, source, index, options.plot_dir)
    else:
        with ProcessPoolExecutor(max_workers=options.max_workers) as executor:
            future_to_index = {
                executor.submit(localize_point, config, call, source, index, options.plot_dir): index
                for index, source in enumerate(points)
            }

            for future in as_completed(future_to_index):
                results[future_to_index[future]] = future.result()

                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    for pending in future_to_index:
                        pending.cancel()
                    break

        if cancelled:
            # Points already running when the sweep was cancelled still count
            for future, index in future_to_index.items():
                if index not in results and future.done() and not future.cancelled():
                    results[index] = future.result()

    records = [results[i] for i in sorted(results)]
    n_failed = sum(1 for r in records if r.failed)
    result = GridSweepResult(records=records, n_failed=n_failed, cancelled=cancelled)

    if cancelled:
        logger.info(f"Sweep cancelled after {len(records)} of {len(points)} points")
    else:
        logger.info(f"Sweep finished: {len(records)} points, {n_failed} failed")

    if options.csv_file:
        write_results_csv(records, options.csv_file)

    return result


def _csv_value(value: float):
    return 'NaN' if np.isnan(value) else value


def write_results_csv(records: Sequence[SweepRecord], path: str) -> str:
    """
    Write sweep records with a header row, NaN for missing values

    Returns:
        Path of the written file
    """
    os.makedirs(os.path.dirname(path) or '.', exist_ok=True)

    with open(path, 'w', newline='') as csvfile:
        writer = csv.DictWriter(csvfile, fieldnames=list(RECORD_FIELDS))
        writer.writeheader()
        for record in records:
            writer.writerow({k: _csv_value(v) for k, v in record.as_row().items()})

    logger.info(f"Results saved to {path}")
    return path


def read_results_csv(path: str) -> List[SweepRecord]:
    """Read records written by write_results_csv"""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Results file not found: {path}")

    with open(path, 'r', newline='') as csvfile:
        reader = csv.DictReader(csvfile)
        missing = [name for name in RECORD_FIELDS if name not in (reader.fieldnames or [])]
        if missing:
            raise ConfigurationError(f"{path} is missing columns: {missing}")
        return [SweepRecord.from_row(row) for row in reader]
