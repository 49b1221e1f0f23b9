"""
Bat Call Localisation Simulation
Waveform-level simulation of ultrasonic calls with TDOA multilateration over sensor arrays
"""

from .errors import BatlocError, ConfigurationError, UnsupportedGeometryError, ConvergenceFailure
from .config import (
    SimulationConfig, GridSpec, SweepOptions, ExperimentConfig,
    load_config, parse_config, save_config, validate_config
)
from .geometry import (
    ArrayGeometry, default_tetrahedron, make_array, validate_sensor_positions,
    is_coplanar, max_baseline, save_positions_csv, load_positions_csv,
    plot_array, compute_az_el
)
from .signal import SyntheticCall, generate_call, generate_call_from_config
from .channel import PropagatedSignalSet, propagate, add_awgn, apply_attenuation, fractional_delay
from .rx_frontend import DelayEstimate, estimate_tdoa, normalized_xcorr
from .solver import LocalizationEstimate, solve_tdoa
from .metrics import (
    RECORD_FIELDS, SweepRecord, SweepSummary, position_error_cm, angular_error_deg,
    summarize_sweep, plot_localization, plot_error_summary
)
from .sweep import (
    GridSweepResult, localize_point, run_grid_sweep, write_results_csv, read_results_csv
)

__version__ = "1.0.0"

__all__ = [
    # Errors
    "BatlocError", "ConfigurationError", "UnsupportedGeometryError", "ConvergenceFailure",
    # Config
    "SimulationConfig", "GridSpec", "SweepOptions", "ExperimentConfig",
    "load_config", "parse_config", "save_config", "validate_config",
    # Geometry
    "ArrayGeometry", "default_tetrahedron", "make_array", "validate_sensor_positions",
    "is_coplanar", "max_baseline", "save_positions_csv", "load_positions_csv",
    "plot_array", "compute_az_el",
    # Signal
    "SyntheticCall", "generate_call", "generate_call_from_config",
    # Channel
    "PropagatedSignalSet", "propagate", "add_awgn", "apply_attenuation", "fractional_delay",
    # Receiver
    "DelayEstimate", "estimate_tdoa", "normalized_xcorr",
    # Solver
    "LocalizationEstimate", "solve_tdoa",
    # Metrics
    "RECORD_FIELDS", "SweepRecord", "SweepSummary", "position_error_cm", "angular_error_deg",
    "summarize_sweep", "plot_localization", "plot_error_summary",
    # Sweep
    "GridSweepResult", "localize_point", "run_grid_sweep", "write_results_csv", "read_results_csv",
]
