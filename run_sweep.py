#!/usr/bin/env python3
"""
Grid sweep over one or more microphone array geometries
Writes one results CSV per array plus the positions of each named geometry
"""

import argparse
import logging
import os
import sys
from dataclasses import replace

import matplotlib

from batloc import (
    ArrayGeometry, ConfigurationError, ExperimentConfig, load_config, make_array,
    run_grid_sweep, save_positions_csv, plot_error_summary
)

DEFAULT_GEOMETRIES = [
    ArrayGeometry.TETRAHEDRON,
    ArrayGeometry.SQUARE_PLANAR,
    ArrayGeometry.PYRAMID,
    ArrayGeometry.OCTAHEDRON,
]


def run_array(experiment, positions, name, results_dir, max_workers=None, save_plots=True):
    """Sweep the configured grid with one sensor array, results named after it"""
    stem = name.replace(' ', '_')
    options = replace(
        experiment.options,
        csv_file=os.path.join(results_dir, f"{stem}.csv")
    )
    if max_workers is not None:
        options = replace(options, max_workers=max_workers)

    print(f"\n{name} ({len(positions)} mics)")
    print("-" * 40)

    x_vals, y_vals, z_vals = experiment.grid.axes()
    sim = experiment.simulation.with_positions(positions)
    result = run_grid_sweep(sim, x_vals, y_vals, z_vals, options)
    summary = result.summary()

    print(f"  Points: {summary.n_points}, failed: {summary.n_failed}")
    print(f"  Position RMSE: {summary.position_rmse_cm:.2f} cm")
    print(f"  Median error: {summary.position_percentiles_cm.get(50, float('nan')):.2f} cm")
    print(f"  Median angular error: {summary.median_angular_error_deg:.2f} deg")
    print(f"  Saved: {options.csv_file}")

    if save_plots:
        plot_path = os.path.join(results_dir, f"{stem}_summary.png")
        plot_error_summary(result.records, save_path=plot_path)
        print(f"  Saved: {plot_path}")

    return result


def run_geometry(experiment, geometry, results_dir, positions_dir, max_workers=None, save_plots=True):
    """Build a named geometry at the configured spacing, save it and sweep it"""
    positions = make_array(geometry, experiment.simulation.sensor_spacing)
    save_positions_csv(positions, positions_dir, geometry=geometry)
    return run_array(experiment, positions, geometry.value, results_dir,
                     max_workers=max_workers, save_plots=save_plots)


def main(argv=None):
    parser = argparse.ArgumentParser(description='Bat call localisation grid sweep')
    parser.add_argument('-c', '--config', type=str, help='YAML configuration file')
    parser.add_argument('-g', '--geometry', type=str, action='append',
                        help='Array geometry (repeatable, default: config positions, '
                             'config geometry or the 4-mic set)')
    parser.add_argument('-o', '--results-dir', type=str, default='results',
                        help='Directory for result CSVs (default: results)')
    parser.add_argument('-p', '--positions-dir', type=str, default='configs',
                        help='Directory for array position CSVs (default: configs)')
    parser.add_argument('-j', '--workers', type=int, default=None,
                        help='Worker processes (default: from config)')
    parser.add_argument('--no-plots', action='store_true', help='Skip summary plots')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    # Plots are only written to files
    matplotlib.use('Agg')

    try:
        experiment = load_config(args.config) if args.config else ExperimentConfig()

        geometries = []
        if args.geometry:
            geometries = [ArrayGeometry.from_name(g) for g in args.geometry]
        elif experiment.array_label is None:
            geometries = [experiment.geometry] if experiment.geometry is not None else DEFAULT_GEOMETRIES
    except (ConfigurationError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print("=" * 60)
    print("Bat Call Localisation Sweep")
    print("=" * 60)
    print(f"  Grid points: {experiment.grid.n_points}")
    if geometries:
        print(f"  Geometries: {', '.join(g.value for g in geometries)}")
    else:
        print(f"  Array: {experiment.array_label} (positions from config)")

    os.makedirs(args.results_dir, exist_ok=True)

    try:
        if not geometries:
            run_array(experiment, experiment.simulation.positions, experiment.array_label,
                      args.results_dir, max_workers=args.workers, save_plots=not args.no_plots)
        for geometry in geometries:
            run_geometry(experiment, geometry, args.results_dir, args.positions_dir,
                         max_workers=args.workers, save_plots=not args.no_plots)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
