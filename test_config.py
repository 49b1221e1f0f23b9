#!/usr/bin/env python3
"""
Tests for configuration loading and array geometry
"""

import os
import sys
import tempfile
import numpy as np
import matplotlib
matplotlib.use('Agg')

from batloc.config import (
    SimulationConfig, GridSpec, SweepOptions, ExperimentConfig,
    load_config, parse_config, save_config, validate_config
)
from batloc.errors import ConfigurationError, UnsupportedGeometryError
from batloc.geometry import (
    ArrayGeometry, default_tetrahedron, make_array, is_coplanar, max_baseline,
    positions_filename, save_positions_csv, load_positions_csv, plot_array,
    validate_sensor_positions
)


HERE = os.path.dirname(os.path.abspath(__file__))


def test_defaults():
    print("=" * 60)
    print("Testing Configuration Defaults")
    print("=" * 60)

    config = SimulationConfig()
    assert config.sample_rate == 384e3
    assert config.duration == 5e-3
    assert (config.start_freq, config.end_freq) == (25e3, 80e3)
    assert config.taper_percent == 50
    assert config.speed_of_sound == 343.0
    assert config.n_sensors == 4
    assert np.array_equal(config.positions[0], [0.0, 0.0, 0.0]), "Sensor 0 is the origin"
    assert validate_config(config)

    # positions is a fresh array each time
    config.positions[0, 0] = 99.0
    assert config.positions[0, 0] == 0.0
    print("✓ Defaults and immutability")


def test_default_tetrahedron_is_regular():
    mics = default_tetrahedron(0.5)
    diffs = mics[:, None, :] - mics[None, :, :]
    dists = np.linalg.norm(diffs, axis=2)[np.triu_indices(4, 1)]
    assert np.allclose(dists, 0.5), f"All edges should be 0.5 m, got {dists}"
    assert np.isclose(max_baseline(mics), 0.5)
    assert not is_coplanar(mics)


def test_grid_spec():
    grid = GridSpec()
    x, y, z = grid.axes()
    assert len(x) == 21 and x[0] == -5.0 and np.isclose(x[-1], 5.0), "Stop is inclusive"
    assert grid.n_points == 21**3

    x, _, _ = GridSpec(x_start=1, x_stop=3, x_step=1).axes()
    assert np.allclose(x, [1, 2, 3])

    for bad in (GridSpec(x_step=0), GridSpec(y_start=2, y_stop=1)):
        try:
            bad.axes()
        except ConfigurationError:
            continue
        assert False, "Invalid grid should raise ConfigurationError"
    print("✓ Grid axes")


def test_yaml_round_trip():
    """save_config then load_config reproduces the experiment"""
    experiment = ExperimentConfig(
        simulation=SimulationConfig(
            snr_db=None, random_seed=12, subsample_refinement=True,
            point_timeout_s=2.5
        ).with_positions(make_array(ArrayGeometry.PYRAMID, 0.4)),
        grid=GridSpec(x_start=-1, x_stop=1, x_step=0.25),
        options=SweepOptions(csv_file='out.csv', plot_dir='plots', max_workers=3),
        geometry=ArrayGeometry.PYRAMID
    )

    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, 'experiment.yaml')
        save_config(experiment, path)
        loaded = load_config(path)

    assert loaded.simulation == experiment.simulation, "Simulation settings should round-trip"
    assert loaded.grid == experiment.grid
    assert loaded.options == experiment.options
    assert loaded.geometry == ArrayGeometry.PYRAMID
    print("✓ YAML round trip")


def test_parse_array_section():
    """Positions win over a CSV file, which wins over a named geometry"""
    parsed = parse_config({'array': {'geometry': 'octahedron', 'spacing': 0.6}})
    assert parsed.geometry == ArrayGeometry.OCTAHEDRON
    assert np.allclose(parsed.simulation.positions, make_array('Octahedron', 0.6))

    explicit = [[0, 0, 0], [1, 0, 0], [0, 1, 0], [0, 0, 1]]
    parsed = parse_config({'array': {'geometry': 'Cube Corners', 'positions': explicit}})
    assert np.allclose(parsed.simulation.positions, explicit)

    with tempfile.TemporaryDirectory() as tmp:
        csv_path = save_positions_csv(make_array('Stacked Squares', 0.5), tmp, geometry='Stacked Squares')
        parsed = parse_config({'array': {'geometry': 'Tetrahedron', 'positions_csv': csv_path}})
        assert parsed.simulation.n_sensors == 8

    parsed = parse_config({'channel': {'snr_db': None}, 'output': {'csv_file': None}})
    assert parsed.simulation.snr_db is None
    assert parsed.options.csv_file is None


def test_default_yaml_loads():
    experiment = load_config(os.path.join(HERE, 'configs', 'default.yaml'))
    assert experiment.geometry == ArrayGeometry.TETRAHEDRON
    assert experiment.grid.n_points == 21**3
    assert validate_config(experiment.simulation)


def test_missing_config_file():
    try:
        load_config('/nonexistent/config.yaml')
    except FileNotFoundError:
        return
    assert False, "Missing config should raise FileNotFoundError"


def test_validation_errors():
    """Inconsistent settings raise ConfigurationError"""
    bad_configs = [
        SimulationConfig(sample_rate=-1),
        SimulationConfig(end_freq=200e3),
        SimulationConfig(speed_of_sound=0),
        SimulationConfig(attenuation_coeff=-0.1),
        SimulationConfig(max_nfev=0),
        SimulationConfig(point_timeout_s=0),
        SimulationConfig(sensor_positions=[[0, 0, 0], [1, 0, 0], [0, 1, 0]]),
        SimulationConfig(sensor_positions=[[0, 0, 0], [1, 0, 0], [0, 1, 0], [1, 0, 0]]),
    ]

    for config in bad_configs:
        try:
            validate_config(config)
        except ConfigurationError:
            continue
        assert False, f"Expected ConfigurationError for {config}"

    # Configuration errors are also ValueErrors
    try:
        validate_config(SimulationConfig(duration=0))
    except ValueError:
        pass
    print(f"✓ {len(bad_configs)} invalid configurations rejected")


def test_geometry_lookup():
    print("=" * 60)
    print("Testing Array Geometries")
    print("=" * 60)

    assert ArrayGeometry.from_name('Square (Planar)') == ArrayGeometry.SQUARE_PLANAR
    assert ArrayGeometry.from_name('square_planar') == ArrayGeometry.SQUARE_PLANAR
    assert ArrayGeometry.from_name('CUBE CORNERS') == ArrayGeometry.CUBE_CORNERS
    assert ArrayGeometry.from_name(ArrayGeometry.PYRAMID) == ArrayGeometry.PYRAMID

    for name in ('Dodecahedron', ''):
        try:
            ArrayGeometry.from_name(name)
        except UnsupportedGeometryError as e:
            assert isinstance(e, ConfigurationError)
            continue
        assert False, f"{name!r} should raise UnsupportedGeometryError"
    print("✓ Enum lookup")


def test_named_arrays():
    coplanar = {ArrayGeometry.SQUARE_PLANAR, ArrayGeometry.PLANAR_HEXAGON}

    for geometry in ArrayGeometry:
        mics = make_array(geometry, 0.5)
        assert mics.shape == (geometry.n_sensors, 3)
        validate_sensor_positions(mics)
        assert is_coplanar(mics) == (geometry in coplanar), f"{geometry.value} coplanarity"
        print(f"✓ {geometry.value}: {len(mics)} sensors, baseline {max_baseline(mics):.3f} m")

    assert positions_filename('Square (Planar)') == '4mics_Square_(Planar).csv'


def test_positions_csv():
    mics = make_array('Planar Hexagon', 0.5)

    with tempfile.TemporaryDirectory() as tmp:
        path = save_positions_csv(mics, tmp, geometry='Planar Hexagon')
        assert os.path.basename(path) == '6mics_Planar_Hexagon.csv'
        assert np.allclose(load_positions_csv(path), mics)

        bad = os.path.join(tmp, 'bad.csv')
        np.savetxt(bad, np.ones((4, 2)), delimiter=',')
        try:
            load_positions_csv(bad)
        except ConfigurationError:
            pass
        else:
            assert False, "Two columns should raise ConfigurationError"

    try:
        load_positions_csv('/nonexistent/positions.csv')
    except FileNotFoundError:
        pass
    else:
        assert False, "Missing file should raise FileNotFoundError"


def test_plot_array():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, 'array.png')
        plot_array(make_array('Pyramid', 0.5), title='Pyramid', save_path=path)
        assert os.path.exists(path)


def main():
    """Run all configuration tests"""
    print("\n" + "=" * 60)
    print("CONFIGURATION TEST SUITE")
    print("=" * 60 + "\n")

    try:
        test_defaults()
        test_default_tetrahedron_is_regular()
        test_grid_spec()
        test_yaml_round_trip()
        test_parse_array_section()
        test_default_yaml_loads()
        test_missing_config_file()
        test_validation_errors()
        test_geometry_lookup()
        test_named_arrays()
        test_positions_csv()
        test_plot_array()

        print("\n✅ ALL TESTS PASSED!")
        return True

    except AssertionError as e:
        print(f"\n❌ TEST FAILED: {e}")
        return False


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
