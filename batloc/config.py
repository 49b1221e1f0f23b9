"""
Configuration Management for Bat Call Localisation
Immutable simulation parameters, sweep grid and output options loaded from YAML
"""

import yaml
import os
from typing import Dict, Any, Optional, Tuple
from dataclasses import dataclass, field, replace
import numpy as np

from .errors import ConfigurationError
from .geometry import (
    ArrayGeometry, default_tetrahedron, make_array, load_positions_csv,
    validate_sensor_positions
)


SPEED_OF_SOUND = 343.0  # m/s
ATTENUATION_COEFF = 0.0002  # dB/m per kHz^2


def _as_position_tuple(positions) -> Tuple[Tuple[float, float, float], ...]:
    pos = np.asarray(positions, dtype=float)
    return tuple(tuple(float(v) for v in row) for row in pos.reshape(-1, 3)) if pos.size else ()


@dataclass(frozen=True)
class SimulationConfig:
    """Simulation parameters shared by every grid point of a run"""

    # Call settings
    sample_rate: float = 384e3      # Hz
    duration: float = 5e-3          # seconds
    start_freq: float = 25e3        # Hz
    end_freq: float = 80e3          # Hz
    taper_percent: float = 50.0     # silence before/after the call, % of call samples

    # Channel settings
    snr_db: Optional[float] = 60.0  # None disables noise
    speed_of_sound: float = SPEED_OF_SOUND
    attenuation_coeff: float = ATTENUATION_COEFF
    random_seed: Optional[int] = None

    # Array settings (sensor 0 is the reference)
    sensor_positions: Optional[Tuple[Tuple[float, float, float], ...]] = None
    sensor_spacing: float = 0.5     # edge length of the default tetrahedron

    # TDOA settings
    restrict_lags_to_array: bool = False
    subsample_refinement: bool = False

    # Solver settings
    max_nfev: int = 1000
    ftol: float = 1e-10
    xtol: float = 1e-10
    degeneracy_tol: float = 1e-8
    point_timeout_s: Optional[float] = 10.0

    def __post_init__(self):
        if self.sensor_positions is None:
            positions = default_tetrahedron(self.sensor_spacing)
        else:
            positions = self.sensor_positions
        object.__setattr__(self, 'sensor_positions', _as_position_tuple(positions))

    @property
    def positions(self) -> np.ndarray:
        """(N, 3) sensor positions as a fresh array"""
        return np.array(self.sensor_positions, dtype=float)

    @property
    def n_sensors(self) -> int:
        return len(self.sensor_positions)

    def with_positions(self, positions) -> 'SimulationConfig':
        """Copy of this config using another sensor array"""
        return replace(self, sensor_positions=_as_position_tuple(positions))


@dataclass(frozen=True)
class GridSpec:
    """Source positions to sweep, inclusive ranges per axis (meters)"""
    x_start: float = -5.0
    x_stop: float = 5.0
    x_step: float = 0.5
    y_start: float = -5.0
    y_stop: float = 5.0
    y_step: float = 0.5
    z_start: float = -5.0
    z_stop: float = 5.0
    z_step: float = 0.5

    @staticmethod
    def _axis(start: float, stop: float, step: float) -> np.ndarray:
        if step <= 0:
            raise ConfigurationError(f"Grid step must be positive, got {step}")
        if stop < start:
            raise ConfigurationError(f"Grid stop ({stop}) is below start ({start})")
        n = int(np.floor((stop - start) / step + 1e-9)) + 1
        return start + step * np.arange(n)

    def axes(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        return (
            self._axis(self.x_start, self.x_stop, self.x_step),
            self._axis(self.y_start, self.y_stop, self.y_step),
            self._axis(self.z_start, self.z_stop, self.z_step),
        )

    @property
    def n_points(self) -> int:
        x, y, z = self.axes()
        return len(x) * len(y) * len(z)


@dataclass(frozen=True)
class SweepOptions:
    """How a grid sweep is run and where its results go"""
    srp_phat: bool = False              # secondary localisation method (not implemented)
    plot_dir: Optional[str] = None      # per-point diagnostic plots when set
    csv_file: Optional[str] = 'localisation_results.csv'
    max_workers: int = 1                # >1 runs points in a process pool


@dataclass
class ExperimentConfig:
    """Complete experiment: simulation, grid and output settings"""
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    grid: GridSpec = field(default_factory=GridSpec)
    options: SweepOptions = field(default_factory=SweepOptions)
    geometry: Optional[ArrayGeometry] = None
    array_label: Optional[str] = None   # output name for explicit positions


def load_config(config_path: str) -> ExperimentConfig:
    """
    Load configuration from YAML file

    Args:
        config_path: Path to YAML configuration file

    Returns:
        ExperimentConfig object
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        yaml_config = yaml.safe_load(f) or {}

    return parse_config(yaml_config)


def parse_config(yaml_config: Dict[str, Any]) -> ExperimentConfig:
    """
    Parse YAML configuration into an ExperimentConfig

    Missing sections and keys keep their defaults.

    Args:
        yaml_config: Dictionary from YAML file

    Returns:
        ExperimentConfig object
    """
    defaults = SimulationConfig()
    sim_kwargs: Dict[str, Any] = {}
    geometry = None
    array_label = None

    # Parse call section
    if 'call' in yaml_config:
        call = yaml_config['call']
        sim_kwargs['sample_rate'] = float(call.get('sample_rate', defaults.sample_rate))
        sim_kwargs['duration'] = float(call.get('duration', defaults.duration))
        sim_kwargs['start_freq'] = float(call.get('start_freq', defaults.start_freq))
        sim_kwargs['end_freq'] = float(call.get('end_freq', defaults.end_freq))
        sim_kwargs['taper_percent'] = float(call.get('taper_percent', defaults.taper_percent))

    # Parse channel section
    if 'channel' in yaml_config:
        chan = yaml_config['channel']
        snr = chan.get('snr_db', defaults.snr_db)
        sim_kwargs['snr_db'] = None if snr is None else float(snr)
        sim_kwargs['speed_of_sound'] = float(chan.get('speed_of_sound', defaults.speed_of_sound))
        sim_kwargs['attenuation_coeff'] = float(chan.get('attenuation_coeff', defaults.attenuation_coeff))
        sim_kwargs['random_seed'] = chan.get('random_seed', defaults.random_seed)

    # Parse array section
    if 'array' in yaml_config:
        arr = yaml_config['array']
        spacing = float(arr.get('spacing', defaults.sensor_spacing))
        sim_kwargs['sensor_spacing'] = spacing

        if arr.get('geometry'):
            geometry = ArrayGeometry.from_name(arr['geometry'])

        # Explicit positions win over a CSV file, which wins over a named geometry
        if arr.get('positions') is not None:
            sim_kwargs['sensor_positions'] = arr['positions']
            array_label = geometry.file_stem if geometry is not None else 'Custom'
        elif arr.get('positions_csv'):
            sim_kwargs['sensor_positions'] = load_positions_csv(arr['positions_csv'])
            array_label = os.path.splitext(os.path.basename(arr['positions_csv']))[0]
        elif geometry is not None:
            sim_kwargs['sensor_positions'] = make_array(geometry, spacing)

    # Parse tdoa section
    if 'tdoa' in yaml_config:
        tdoa = yaml_config['tdoa']
        sim_kwargs['restrict_lags_to_array'] = bool(tdoa.get('restrict_lags_to_array', defaults.restrict_lags_to_array))
        sim_kwargs['subsample_refinement'] = bool(tdoa.get('subsample_refinement', defaults.subsample_refinement))

    # Parse solver section
    if 'solver' in yaml_config:
        sol = yaml_config['solver']
        sim_kwargs['max_nfev'] = int(sol.get('max_nfev', defaults.max_nfev))
        sim_kwargs['ftol'] = float(sol.get('ftol', defaults.ftol))
        sim_kwargs['xtol'] = float(sol.get('xtol', defaults.xtol))
        sim_kwargs['degeneracy_tol'] = float(sol.get('degeneracy_tol', defaults.degeneracy_tol))
        timeout = sol.get('point_timeout_s', defaults.point_timeout_s)
        sim_kwargs['point_timeout_s'] = None if timeout is None else float(timeout)

    simulation = SimulationConfig(**sim_kwargs)

    # Parse grid section
    grid_kwargs: Dict[str, float] = {}
    if 'grid' in yaml_config:
        grid = yaml_config['grid']
        for axis in ('x', 'y', 'z'):
            if axis in grid:
                for key in ('start', 'stop', 'step'):
                    if key in grid[axis]:
                        grid_kwargs[f'{axis}_{key}'] = float(grid[axis][key])
    grid_spec = GridSpec(**grid_kwargs)

    # Parse output section
    opt_defaults = SweepOptions()
    out_kwargs: Dict[str, Any] = {}
    if 'output' in yaml_config:
        out = yaml_config['output']
        out_kwargs['csv_file'] = out.get('csv_file', opt_defaults.csv_file)
        out_kwargs['plot_dir'] = out.get('plot_dir', opt_defaults.plot_dir)
        out_kwargs['max_workers'] = int(out.get('max_workers', opt_defaults.max_workers))
        out_kwargs['srp_phat'] = bool(out.get('srp_phat', opt_defaults.srp_phat))
    options = SweepOptions(**out_kwargs)

    return ExperimentConfig(
        simulation=simulation,
        grid=grid_spec,
        options=options,
        geometry=geometry,
        array_label=array_label
    )


def save_config(config: ExperimentConfig, path: str):
    """
    Save configuration to YAML file

    Sensor positions are written explicitly so the file reproduces the run
    even when they came from a named geometry or a CSV file.

    Args:
        config: ExperimentConfig object
        path: Output file path
    """
    sim = config.simulation
    grid = config.grid
    opts = config.options

    yaml_dict = {
        'call': {
            'sample_rate': sim.sample_rate,
            'duration': sim.duration,
            'start_freq': sim.start_freq,
            'end_freq': sim.end_freq,
            'taper_percent': sim.taper_percent
        },
        'channel': {
            'snr_db': sim.snr_db,
            'speed_of_sound': sim.speed_of_sound,
            'attenuation_coeff': sim.attenuation_coeff,
            'random_seed': sim.random_seed
        },
        'array': {
            'geometry': config.geometry.value if config.geometry else None,
            'spacing': sim.sensor_spacing,
            'positions': [list(p) for p in sim.sensor_positions]
        },
        'tdoa': {
            'restrict_lags_to_array': sim.restrict_lags_to_array,
            'subsample_refinement': sim.subsample_refinement
        },
        'solver': {
            'max_nfev': sim.max_nfev,
            'ftol': sim.ftol,
            'xtol': sim.xtol,
            'degeneracy_tol': sim.degeneracy_tol,
            'point_timeout_s': sim.point_timeout_s
        },
        'grid': {
            axis: {
                'start': getattr(grid, f'{axis}_start'),
                'stop': getattr(grid, f'{axis}_stop'),
                'step': getattr(grid, f'{axis}_step')
            }
            for axis in ('x', 'y', 'z')
        },
        'output': {
            'csv_file': opts.csv_file,
            'plot_dir': opts.plot_dir,
            'max_workers': opts.max_workers,
            'srp_phat': opts.srp_phat
        }
    }

    with open(path, 'w') as f:
        yaml.dump(yaml_dict, f, default_flow_style=False, sort_keys=False)


def validate_config(config: SimulationConfig) -> bool:
    """
    Validate simulation parameters for consistency

    Args:
        config: SimulationConfig object

    Returns:
        True if valid

    Raises:
        ConfigurationError if invalid
    """
    if config.sample_rate <= 0:
        raise ConfigurationError(f"Sample rate must be positive, got {config.sample_rate}")

    if config.duration <= 0:
        raise ConfigurationError(f"Call duration must be positive, got {config.duration}")

    if int(round(config.duration * config.sample_rate)) < 1:
        raise ConfigurationError("Call duration is shorter than one sample")

    nyquist = config.sample_rate / 2
    for name in ('start_freq', 'end_freq'):
        freq = getattr(config, name)
        if not 0 < freq < nyquist:
            raise ConfigurationError(f"{name} ({freq} Hz) must lie in (0, {nyquist} Hz)")

    if config.taper_percent < 0:
        raise ConfigurationError(f"Taper percent cannot be negative, got {config.taper_percent}")

    if config.speed_of_sound <= 0:
        raise ConfigurationError(f"Speed of sound must be positive, got {config.speed_of_sound}")

    if config.attenuation_coeff < 0:
        raise ConfigurationError(f"Attenuation coefficient cannot be negative, got {config.attenuation_coeff}")

    if config.max_nfev < 1:
        raise ConfigurationError(f"max_nfev must be at least 1, got {config.max_nfev}")

    if config.point_timeout_s is not None and config.point_timeout_s <= 0:
        raise ConfigurationError(f"Point timeout must be positive, got {config.point_timeout_s}")

    validate_sensor_positions(config.positions)

    return True
